"""Privileged data access for share links.

Every other module reads and writes through a session filtered by the signed-in
user's id. ``ServiceRoleStore`` is the one path that takes an owner id as a plain
argument, so it is kept as its own type, bound to its own engine, and only the
share pipeline is handed one.
"""
from __future__ import annotations

from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from course_planner.config import settings
from course_planner.db import make_engine, utcnow
from course_planner.models import AuditLog, Requirement, ScheduledCourse, ScheduleShare, Semester


service_engine = make_engine(settings.effective_service_role_url)
ServiceRoleSessionLocal = sessionmaker(bind=service_engine, autoflush=False, autocommit=False, future=True)


class ServiceRoleStore:
    def __init__(self, session: Session):
        self.session = session

    def find_share_by_token(self, token: str) -> Optional[ScheduleShare]:
        return self.session.scalar(select(ScheduleShare).where(ScheduleShare.share_token == token))

    def record_share_access(self, share_id: str) -> None:
        # Relative update so concurrent validations never lose an increment.
        self.session.execute(
            update(ScheduleShare)
            .where(ScheduleShare.id == share_id)
            .values(access_count=ScheduleShare.access_count + 1, last_accessed=utcnow())
        )
        self.session.commit()

    def owner_requirements(self, owner_id: str) -> List[Requirement]:
        stmt = select(Requirement).where(Requirement.user_id == owner_id).order_by(Requirement.created_at.asc())
        return list(self.session.scalars(stmt).all())

    def owner_semesters(self, owner_id: str) -> List[Semester]:
        stmt = select(Semester).where(Semester.user_id == owner_id).order_by(Semester.year.asc(), Semester.term_type.asc())
        return list(self.session.scalars(stmt).all())

    def owner_semester(self, owner_id: str, semester_id: str) -> Optional[Semester]:
        return self.session.scalar(select(Semester).where(Semester.id == semester_id, Semester.user_id == owner_id))

    def owner_scheduled_courses(self, owner_id: str) -> List[ScheduledCourse]:
        stmt = (
            select(ScheduledCourse)
            .where(ScheduledCourse.user_id == owner_id)
            .order_by(ScheduledCourse.position_index.asc(), ScheduledCourse.created_at.asc())
        )
        return list(self.session.scalars(stmt).all())

    def replace_scheduled_course(
        self, owner_id: str, course_code: str, semester_id: str, course_name: str, credits: float
    ) -> ScheduledCourse:
        """Delete any placement of course_code and insert the new one in a single transaction."""
        try:
            self.session.execute(
                delete(ScheduledCourse).where(ScheduledCourse.user_id == owner_id, ScheduledCourse.course_code == course_code)
            )
            placement = ScheduledCourse(
                user_id=owner_id,
                course_code=course_code,
                course_name=course_name,
                semester_id=semester_id,
                credits=credits,
                status="planned",
            )
            self.session.add(placement)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(placement)
        return placement

    def remove_scheduled_course(self, owner_id: str, course_code: str) -> int:
        try:
            result = self.session.execute(
                delete(ScheduledCourse).where(ScheduledCourse.user_id == owner_id, ScheduledCourse.course_code == course_code)
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return int(result.rowcount or 0)

    def write_audit(self, actor: str, action: str, entity: str, entity_id: str, payload: Optional[str] = None) -> None:
        self.session.add(AuditLog(actor_user_id=actor, action=action, entity_type=entity, entity_id=entity_id, payload=payload))
        self.session.commit()


def get_service_store():
    session = ServiceRoleSessionLocal()
    try:
        yield ServiceRoleStore(session)
    finally:
        session.close()
