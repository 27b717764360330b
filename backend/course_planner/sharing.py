"""Share links: issue, validate and enforce permission on schedule share tokens.

A share token is a bearer capability over one owner's schedule. Validation and
every read or write made on behalf of a link holder go through
``ServiceRoleStore``; share management by the owner goes through the owner's
own session.

Public functions return a ``Result`` and never raise to their caller.
"""
from __future__ import annotations

import functools
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from course_planner.auth import SessionContext
from course_planner.catalog import Catalog
from course_planner.config import settings
from course_planner.db import as_naive_utc, serialize, utcnow
from course_planner.errors import (
    AuthError,
    ExpiredError,
    InvalidRequestError,
    NotFoundError,
    PermissionDeniedError,
    Result,
    ShareError,
    StoreError,
)
from course_planner.models import PERMISSION_LEVELS, AuditLog, ScheduleShare
from course_planner.service_role import ServiceRoleStore


logger = logging.getLogger(__name__)

SHARE_UPDATE_FIELDS = {"permission_level", "description", "expires_at"}
DEFAULT_COURSE_CREDITS = 3.0


@dataclass
class ShareValidation:
    share_id: str
    owner_id: str
    permission_level: str
    description: Optional[str]
    expires_at: Optional[datetime]
    created_at: datetime

    def to_dict(self) -> dict:
        return asdict(self)


def returns_result(fn):
    """Turn the share error taxonomy and any other failure into a failed Result."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs) -> Result:
        try:
            return Result.ok(fn(*args, **kwargs))
        except ShareError as exc:
            return Result.fail(exc)
        except SQLAlchemyError:
            logger.exception("Store failure in %s", fn.__name__)
            return Result.fail(StoreError("Store operation failed"))
        except Exception:
            logger.exception("Unexpected failure in %s", fn.__name__)
            return Result.fail(StoreError("Store operation failed"))

    return wrapper


def share_url(token: str) -> str:
    return f"{settings.public_base_url}?share={token}"


def share_payload(share: ScheduleShare, with_stats: bool = False) -> dict:
    out = {
        "id": share.id,
        "share_token": share.share_token,
        "permission_level": share.permission_level,
        "description": share.description,
        "expires_at": share.expires_at,
        "created_at": share.created_at,
        "share_url": share_url(share.share_token),
    }
    if with_stats:
        out["last_accessed"] = share.last_accessed
        out["access_count"] = share.access_count
        out["is_expired"] = share.is_expired()
    return out


def _write_audit(db: Session, actor: str, action: str, entity_id: str, payload: Optional[dict] = None) -> None:
    db.add(
        AuditLog(
            actor_user_id=actor,
            action=action,
            entity_type="ScheduleShare",
            entity_id=entity_id,
            payload=json.dumps(payload, default=str) if payload is not None else None,
        )
    )
    db.commit()


def _require_user(ctx: SessionContext) -> str:
    if not ctx.is_authenticated:
        raise AuthError("User not authenticated")
    return ctx.user_id


def _check_permission_level(level: str) -> str:
    if level not in PERMISSION_LEVELS:
        raise InvalidRequestError("permission_level must be view or edit")
    return level


def _owned_share(db: Session, owner_id: str, share_id: str) -> ScheduleShare:
    share = db.scalar(select(ScheduleShare).where(ScheduleShare.id == share_id, ScheduleShare.owner_id == owner_id))
    if not share:
        raise NotFoundError("Share not found")
    return share


# ===== OWNER-SIDE MANAGEMENT =====


@returns_result
def create_share(
    db: Session,
    ctx: SessionContext,
    permission_level: str = "view",
    description: Optional[str] = None,
    expires_at: Optional[datetime] = None,
) -> dict:
    owner_id = _require_user(ctx)
    share = ScheduleShare(
        owner_id=owner_id,
        permission_level=_check_permission_level(permission_level),
        description=description,
        expires_at=as_naive_utc(expires_at),
    )
    db.add(share)
    db.commit()
    db.refresh(share)
    _write_audit(db, owner_id, "CREATE", share.id, {"permission_level": share.permission_level, "expires_at": share.expires_at})
    logger.info("User %s created %s share %s", owner_id, share.permission_level, share.id)
    return share_payload(share)


@returns_result
def list_user_shares(db: Session, ctx: SessionContext) -> list[dict]:
    owner_id = _require_user(ctx)
    stmt = select(ScheduleShare).where(ScheduleShare.owner_id == owner_id).order_by(ScheduleShare.created_at.desc())
    return [share_payload(s, with_stats=True) for s in db.scalars(stmt).all()]


@returns_result
def update_share(db: Session, ctx: SessionContext, share_id: str, updates: dict) -> dict:
    owner_id = _require_user(ctx)
    share = _owned_share(db, owner_id, share_id)
    for key, value in updates.items():
        if key not in SHARE_UPDATE_FIELDS:
            continue
        if key == "permission_level":
            value = _check_permission_level(value)
        elif key == "expires_at":
            value = as_naive_utc(value)
        setattr(share, key, value)
    db.commit()
    db.refresh(share)
    _write_audit(db, owner_id, "UPDATE", share.id, {k: v for k, v in updates.items() if k in SHARE_UPDATE_FIELDS})
    return share_payload(share)


@returns_result
def delete_share(db: Session, ctx: SessionContext, share_id: str) -> None:
    owner_id = _require_user(ctx)
    share = _owned_share(db, owner_id, share_id)
    db.delete(share)
    db.commit()
    _write_audit(db, owner_id, "DELETE", share_id)
    return None


# ===== LINK-HOLDER PIPELINE =====


def _validate(store: ServiceRoleStore, token: str) -> ShareValidation:
    share = store.find_share_by_token(token) if token else None
    if not share:
        raise NotFoundError("Share link not found")
    # Expiry is checked before the access counter moves.
    if share.is_expired():
        raise ExpiredError("Share link has expired")
    store.record_share_access(share.id)
    return ShareValidation(
        share_id=share.id,
        owner_id=share.owner_id,
        permission_level=share.permission_level,
        description=share.description,
        expires_at=share.expires_at,
        created_at=share.created_at,
    )


@returns_result
def validate_share_token(store: ServiceRoleStore, token: str) -> ShareValidation:
    return _validate(store, token)


def _require_edit(validation: ShareValidation) -> None:
    if validation.permission_level != "edit":
        raise PermissionDeniedError("Edit permission required")


@returns_result
def require_edit_permission(validation: ShareValidation) -> None:
    _require_edit(validation)


def _materialize(store: ServiceRoleStore, catalog: Catalog, owner_id: str) -> dict:
    requirements = []
    for r in store.owner_requirements(owner_id):
        row = serialize(r)
        row["course_options"] = [catalog.enhance_course_option(opt) for opt in (r.course_options or [])]
        requirements.append(row)
    return {
        "requirements": requirements,
        "semesters": [serialize(s) for s in store.owner_semesters(owner_id)],
        "scheduled_courses": [serialize(c) for c in store.owner_scheduled_courses(owner_id)],
    }


@returns_result
def materialize_shared_view(store: ServiceRoleStore, catalog: Catalog, owner_id: str) -> dict:
    return _materialize(store, catalog, owner_id)


def _course_credits(course_data: dict) -> float:
    raw = course_data.get("credits") or course_data.get("credit_hours")
    try:
        return float(raw) if raw else DEFAULT_COURSE_CREDITS
    except (TypeError, ValueError):
        return DEFAULT_COURSE_CREDITS


def _apply_move(
    store: ServiceRoleStore,
    owner_id: str,
    course_code: str,
    target_semester_id: Optional[str],
    course_data: Optional[dict] = None,
    actor: Optional[str] = None,
) -> Optional[dict]:
    if not target_semester_id:
        removed = store.remove_scheduled_course(owner_id, course_code)
        if actor and removed:
            store.write_audit(actor, "SHARED_UNSCHEDULE", "ScheduledCourse", course_code)
        return None

    if not store.owner_semester(owner_id, target_semester_id):
        raise NotFoundError("Semester not found")
    course_data = course_data or {}
    placement = store.replace_scheduled_course(
        owner_id,
        course_code,
        target_semester_id,
        course_name=course_data.get("name") or course_data.get("title") or course_code,
        credits=_course_credits(course_data),
    )
    if actor:
        store.write_audit(actor, "SHARED_SCHEDULE", "ScheduledCourse", placement.id, json.dumps({"semester_id": target_semester_id}))
    return serialize(placement)


@returns_result
def apply_shared_course_move(
    store: ServiceRoleStore,
    owner_id: str,
    course_code: str,
    target_semester_id: Optional[str],
    course_data: Optional[dict] = None,
    actor: Optional[str] = None,
) -> Optional[dict]:
    return _apply_move(store, owner_id, course_code, target_semester_id, course_data, actor)


@returns_result
def move_shared_course(
    store: ServiceRoleStore,
    token: str,
    course_code: str,
    target_semester_id: Optional[str],
    course_data: Optional[dict] = None,
) -> Optional[dict]:
    validation = _validate(store, token)
    _require_edit(validation)
    return _apply_move(
        store, validation.owner_id, course_code, target_semester_id, course_data, actor=f"share:{validation.share_id}"
    )


def load_shared_schedule(store: ServiceRoleStore, catalog: Catalog, token: Optional[str]) -> Optional[dict]:
    """Page-load pre-processing: a broken or expired link means no shared view, never a failed page."""
    if not token:
        return None
    try:
        validation = validate_share_token(store, token)
        if not validation.success:
            return None
        view = materialize_shared_view(store, catalog, validation.data.owner_id)
        if not view.success:
            return None
        return {
            "share_data": validation.data.to_dict(),
            "schedule_data": view.data,
            "share_token": token,
            "is_shared_mode": True,
        }
    except Exception:
        logger.exception("Error processing shared schedule")
        return None
