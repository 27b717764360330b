from __future__ import annotations

from datetime import date
from typing import Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from course_planner.db import serialize
from course_planner.models import CREDIT_BEARING_STATUSES, AcademicYear, ScheduledCourse, Semester


ACADEMIC_YEAR_FIELDS = {"name", "start_date", "end_date", "is_active"}
SEMESTER_FIELDS = {"academic_year_id", "name", "term_type", "year", "start_date", "end_date", "max_credits"}
SCHEDULED_COURSE_FIELDS = {"semester_id", "requirement_id", "course_code", "course_name", "credits", "status", "position_index"}


def _apply(instance, updates: dict, allowed: set[str]) -> None:
    for key, value in updates.items():
        if key in allowed:
            setattr(instance, key, value)


# ===== ACADEMIC YEARS =====


def create_academic_year(db: Session, user_id: str, data: dict) -> AcademicYear:
    y = AcademicYear(user_id=user_id, **{k: v for k, v in data.items() if k in ACADEMIC_YEAR_FIELDS})
    db.add(y)
    db.commit()
    db.refresh(y)
    return y


def get_academic_year(db: Session, user_id: str, year_id: str) -> Optional[AcademicYear]:
    return db.scalar(select(AcademicYear).where(AcademicYear.id == year_id, AcademicYear.user_id == user_id))


def get_academic_years(db: Session, user_id: str) -> List[AcademicYear]:
    stmt = select(AcademicYear).where(AcademicYear.user_id == user_id).order_by(AcademicYear.start_date.asc())
    return list(db.scalars(stmt).all())


def update_academic_year(db: Session, user_id: str, year_id: str, updates: dict) -> Optional[AcademicYear]:
    y = get_academic_year(db, user_id, year_id)
    if not y:
        return None
    _apply(y, updates, ACADEMIC_YEAR_FIELDS)
    db.commit()
    db.refresh(y)
    return y


def delete_academic_year(db: Session, user_id: str, year_id: str) -> bool:
    y = get_academic_year(db, user_id, year_id)
    if not y:
        return False
    semester_ids = db.scalars(select(Semester.id).where(Semester.user_id == user_id, Semester.academic_year_id == year_id)).all()
    if semester_ids:
        db.execute(delete(ScheduledCourse).where(ScheduledCourse.user_id == user_id, ScheduledCourse.semester_id.in_(semester_ids)))
        db.execute(delete(Semester).where(Semester.id.in_(semester_ids)))
    db.delete(y)
    db.commit()
    return True


def set_active_academic_year(db: Session, user_id: str, year_id: str) -> Optional[AcademicYear]:
    """Make one year active and every other year of the same user inactive."""
    y = get_academic_year(db, user_id, year_id)
    if not y:
        return None
    db.execute(update(AcademicYear).where(AcademicYear.user_id == user_id, AcademicYear.id != year_id).values(is_active=False))
    y.is_active = True
    db.commit()
    db.refresh(y)
    return y


# ===== SEMESTERS =====


def create_semester(db: Session, user_id: str, data: dict) -> Semester:
    s = Semester(user_id=user_id, **{k: v for k, v in data.items() if k in SEMESTER_FIELDS})
    db.add(s)
    db.commit()
    db.refresh(s)
    return s


def get_semester(db: Session, user_id: str, semester_id: str) -> Optional[Semester]:
    return db.scalar(select(Semester).where(Semester.id == semester_id, Semester.user_id == user_id))


def get_semesters(db: Session, user_id: str, academic_year_id: Optional[str] = None) -> List[Semester]:
    stmt = select(Semester).where(Semester.user_id == user_id)
    if academic_year_id:
        stmt = stmt.where(Semester.academic_year_id == academic_year_id)
    return list(db.scalars(stmt.order_by(Semester.year.asc(), Semester.term_type.asc())).all())


def update_semester(db: Session, user_id: str, semester_id: str, updates: dict) -> Optional[Semester]:
    s = get_semester(db, user_id, semester_id)
    if not s:
        return None
    _apply(s, updates, SEMESTER_FIELDS)
    db.commit()
    db.refresh(s)
    return s


def delete_semester(db: Session, user_id: str, semester_id: str) -> bool:
    s = get_semester(db, user_id, semester_id)
    if not s:
        return False
    db.execute(delete(ScheduledCourse).where(ScheduledCourse.user_id == user_id, ScheduledCourse.semester_id == semester_id))
    db.delete(s)
    db.commit()
    return True


# ===== SCHEDULED COURSES =====


def schedule_course(db: Session, user_id: str, data: dict) -> Optional[ScheduledCourse]:
    """Place a course in one of the user's semesters; None when the semester is not theirs."""
    if not get_semester(db, user_id, data.get("semester_id")):
        return None
    c = ScheduledCourse(user_id=user_id, **{k: v for k, v in data.items() if k in SCHEDULED_COURSE_FIELDS})
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


def get_scheduled_course(db: Session, user_id: str, course_id: str) -> Optional[ScheduledCourse]:
    return db.scalar(select(ScheduledCourse).where(ScheduledCourse.id == course_id, ScheduledCourse.user_id == user_id))


def get_scheduled_courses(db: Session, user_id: str, semester_id: Optional[str] = None) -> List[ScheduledCourse]:
    stmt = select(ScheduledCourse).where(ScheduledCourse.user_id == user_id)
    if semester_id:
        stmt = stmt.where(ScheduledCourse.semester_id == semester_id)
    return list(db.scalars(stmt.order_by(ScheduledCourse.position_index.asc(), ScheduledCourse.created_at.asc())).all())


def update_scheduled_course(db: Session, user_id: str, course_id: str, updates: dict) -> Optional[ScheduledCourse]:
    c = get_scheduled_course(db, user_id, course_id)
    if not c:
        return None
    if "semester_id" in updates and not get_semester(db, user_id, updates["semester_id"]):
        return None
    _apply(c, updates, SCHEDULED_COURSE_FIELDS)
    db.commit()
    db.refresh(c)
    return c


def delete_scheduled_course(db: Session, user_id: str, course_id: str) -> bool:
    c = get_scheduled_course(db, user_id, course_id)
    if not c:
        return False
    db.delete(c)
    db.commit()
    return True


def move_course_between_semesters(
    db: Session, user_id: str, course_id: str, new_semester_id: str, new_position: int = 0
) -> Optional[ScheduledCourse]:
    return update_scheduled_course(db, user_id, course_id, {"semester_id": new_semester_id, "position_index": new_position})


# ===== VIEWS =====


def get_semester_with_courses(db: Session, user_id: str, semester_id: str) -> Optional[dict]:
    s = get_semester(db, user_id, semester_id)
    if not s:
        return None
    courses = get_scheduled_courses(db, user_id, semester_id)
    return {**serialize(s), "courses": [serialize(c) for c in courses], "current_credits": calculate_semester_credits(courses)}


def get_all_semesters_with_courses(db: Session, user_id: str, academic_year_id: Optional[str] = None) -> list[dict]:
    semesters = get_semesters(db, user_id, academic_year_id)
    stmt = select(ScheduledCourse).where(ScheduledCourse.user_id == user_id)
    if academic_year_id:
        stmt = stmt.where(ScheduledCourse.semester_id.in_([s.id for s in semesters]))
    by_semester: dict[str, list[ScheduledCourse]] = {}
    for c in db.scalars(stmt.order_by(ScheduledCourse.position_index.asc(), ScheduledCourse.created_at.asc())).all():
        by_semester.setdefault(c.semester_id, []).append(c)
    out = []
    for s in semesters:
        courses = by_semester.get(s.id, [])
        out.append({**serialize(s), "courses": [serialize(c) for c in courses], "current_credits": calculate_semester_credits(courses)})
    return out


# ===== VALIDATION =====


def validate_credit_limit(semester: dict, new_course_credits: float) -> bool:
    """Advisory check only; nothing in the store enforces max_credits."""
    total = (semester.get("current_credits") or 0) + new_course_credits
    return total <= semester.get("max_credits", 0)


def calculate_semester_credits(courses: Iterable) -> float:
    total = 0.0
    for c in courses:
        status = c["status"] if isinstance(c, dict) else c.status
        credits = c.get("credits") if isinstance(c, dict) else c.credits
        if status in CREDIT_BEARING_STATUSES:
            total += credits or 0
    return total


# ===== QUICK SETUP =====


def create_default_academic_year(db: Session, user_id: str, start_year: Optional[int] = None) -> AcademicYear:
    start_year = start_year or date.today().year
    return create_academic_year(
        db,
        user_id,
        {
            "name": f"{start_year}-{start_year + 1}",
            "start_date": date(start_year, 8, 15),
            "end_date": date(start_year + 1, 5, 15),
            "is_active": True,
        },
    )


def create_default_semesters(db: Session, user_id: str, academic_year_id: str, start_year: Optional[int] = None) -> List[Semester]:
    start_year = start_year or date.today().year
    plans = [
        ("Fall", start_year, date(start_year, 8, 15), date(start_year, 12, 15), 18),
        ("Spring", start_year + 1, date(start_year + 1, 1, 15), date(start_year + 1, 5, 15), 18),
        ("Summer", start_year + 1, date(start_year + 1, 6, 1), date(start_year + 1, 8, 1), 12),
    ]
    return [
        create_semester(
            db,
            user_id,
            {
                "academic_year_id": academic_year_id,
                "name": f"{term} {year}",
                "term_type": term,
                "year": year,
                "start_date": start,
                "end_date": end,
                "max_credits": max_credits,
            },
        )
        for term, year, start, end, max_credits in plans
    ]
