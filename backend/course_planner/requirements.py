from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from course_planner.catalog import Catalog
from course_planner.models import Requirement


logger = logging.getLogger(__name__)

REQUIREMENT_FIELDS = {"title", "category", "priority", "credits", "description", "is_completed", "course_options"}


def normalize_course_options(options: Optional[list]) -> list[dict]:
    out = []
    for opt in options or []:
        code = str((opt or {}).get("code") or "").strip()
        if not code:
            continue
        out.append({"code": code, "name": (opt.get("name") or "").strip()})
    return out


def create_requirement(db: Session, user_id: str, data: dict) -> Requirement:
    """Create a requirement owned by user_id"""
    values = {k: v for k, v in data.items() if k in REQUIREMENT_FIELDS}
    values["course_options"] = normalize_course_options(values.get("course_options"))
    r = Requirement(user_id=user_id, **values)
    db.add(r)
    db.commit()
    db.refresh(r)
    return r


def get_requirement(db: Session, user_id: str, requirement_id: str) -> Optional[Requirement]:
    return db.scalar(select(Requirement).where(Requirement.id == requirement_id, Requirement.user_id == user_id))


def get_requirements(db: Session, user_id: str) -> List[Requirement]:
    """All requirements for a user, newest first"""
    stmt = select(Requirement).where(Requirement.user_id == user_id).order_by(Requirement.created_at.desc())
    return list(db.scalars(stmt).all())


def get_requirements_by_category(db: Session, user_id: str, category: str) -> List[Requirement]:
    stmt = (
        select(Requirement)
        .where(Requirement.user_id == user_id, Requirement.category == category)
        .order_by(Requirement.priority.desc())
    )
    return list(db.scalars(stmt).all())


def update_requirement(db: Session, user_id: str, requirement_id: str, updates: dict) -> Optional[Requirement]:
    r = get_requirement(db, user_id, requirement_id)
    if not r:
        return None
    for key, value in updates.items():
        if key not in REQUIREMENT_FIELDS:
            continue
        if key == "course_options":
            value = normalize_course_options(value)
        setattr(r, key, value)
    db.commit()
    db.refresh(r)
    return r


def delete_requirement(db: Session, user_id: str, requirement_id: str) -> bool:
    r = get_requirement(db, user_id, requirement_id)
    if not r:
        return False
    db.delete(r)
    db.commit()
    return True


def toggle_requirement_completion(db: Session, user_id: str, requirement_id: str, is_completed: bool) -> Optional[Requirement]:
    return update_requirement(db, user_id, requirement_id, {"is_completed": is_completed})


def catalog_credits(course: Optional[dict]) -> Optional[int]:
    if not course or not course.get("semester_hours"):
        return None
    try:
        return int(float(course["semester_hours"]))
    except (TypeError, ValueError):
        return None


def load_user_requirements(db: Session, user_id: str, catalog: Catalog) -> list[dict]:
    """
    Incomplete requirements grouped for the semester planner.

    One group per requirement that lists at least one course option; each option
    becomes a course entry carrying catalog data where the catalog knows it.
    """
    stmt = (
        select(Requirement)
        .where(Requirement.user_id == user_id, Requirement.is_completed.is_(False))
        .order_by(Requirement.category.asc(), Requirement.priority.desc())
    )
    groups = []
    for req in db.scalars(stmt).all():
        options = req.course_options or []
        if not options:
            continue
        group = {
            "id": req.id,
            "name": req.title,
            "category": req.category,
            "description": req.description,
            "credits": req.credits,
            "courses": [],
        }
        for opt in options:
            course = catalog.get_course_by_number(opt.get("code"))
            group["courses"].append(
                {
                    "code": opt.get("code"),
                    "name": opt.get("name") or (course or {}).get("title") or opt.get("code"),
                    "credits": catalog_credits(course) or req.credits or 3,
                    "semesters": (course or {}).get("semester") or [],
                    "description": (course or {}).get("description") or "",
                    "category": req.category,
                    "requirementId": req.id,
                    "requirementTitle": req.title,
                    "scheduled": False,
                    "scheduledSemester": None,
                    "fromCatalog": course is not None,
                }
            )
        groups.append(group)
    groups.sort(key=lambda g: (g["category"] or "", g["name"] or ""))
    return groups


def _legacy_requirements_stmt():
    return select(Requirement).where(Requirement.course_code.is_not(None), Requirement.course_options.is_(None))


def check_migration_needed(db: Session) -> bool:
    return db.scalar(_legacy_requirements_stmt().limit(1)) is not None


def migrate_requirements_schema(db: Session) -> dict:
    """Convert single course_code requirements to the course_options list format."""
    rows = db.scalars(_legacy_requirements_stmt()).all()
    if not rows:
        logger.info("No requirements need migration")
        return {"success": True, "migrated": 0}
    logger.info("Found %d requirements to migrate", len(rows))
    for r in rows:
        # Display name is filled from the catalog when the option is shown.
        r.course_options = [{"code": r.course_code, "name": ""}]
    db.commit()
    logger.info("Migrated %d requirements", len(rows))
    return {"success": True, "migrated": len(rows)}
