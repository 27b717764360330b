from __future__ import annotations

import secrets
from datetime import date, datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from course_planner.db import Base, new_id, utcnow


PERMISSION_LEVELS = ("view", "edit")
COURSE_STATUSES = ("planned", "enrolled", "completed", "dropped")
CREDIT_BEARING_STATUSES = ("planned", "enrolled", "completed")
TERM_TYPES = ("Fall", "Spring", "Summer", "Winter")


def new_share_token() -> str:
    return secrets.token_urlsafe(32)


class User(Base):
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    username: Mapped[str] = mapped_column(String, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class AuditLog(Base):
    __tablename__ = "audit_log"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    actor_user_id: Mapped[str] = mapped_column(String)
    action: Mapped[str] = mapped_column(String)
    entity_type: Mapped[str] = mapped_column(String)
    entity_id: Mapped[str] = mapped_column(String)
    payload: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Requirement(Base):
    __tablename__ = "requirements"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True)
    title: Mapped[str] = mapped_column(String)
    category: Mapped[str] = mapped_column(String, default="General")
    priority: Mapped[int] = mapped_column(Integer, default=3)
    credits: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    # [{"code": "MATH 101", "name": "Calculus I"}, ...]; alternatives, any one satisfies.
    course_options: Mapped[Optional[list]] = mapped_column(JSON(none_as_null=True), nullable=True)
    # Single-course format used before course_options existed.
    course_code: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class AcademicYear(Base):
    __tablename__ = "academic_years"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True)
    name: Mapped[str] = mapped_column(String)
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Semester(Base):
    __tablename__ = "semesters"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True)
    academic_year_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("academic_years.id"), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String)
    term_type: Mapped[str] = mapped_column(String)
    year: Mapped[int] = mapped_column(Integer)
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    max_credits: Mapped[float] = mapped_column(Float, default=18.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class ScheduledCourse(Base):
    __tablename__ = "scheduled_courses"
    __table_args__ = (UniqueConstraint("user_id", "course_code", name="uq_scheduled_courses_user_course"),)
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True)
    semester_id: Mapped[str] = mapped_column(String, ForeignKey("semesters.id"), index=True)
    requirement_id: Mapped[Optional[str]] = mapped_column(String, ForeignKey("requirements.id"), nullable=True)
    course_code: Mapped[str] = mapped_column(String)
    course_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    credits: Mapped[float] = mapped_column(Float, default=3.0)
    status: Mapped[str] = mapped_column(String, default="planned")
    position_index: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class ScheduleShare(Base):
    __tablename__ = "schedule_shares"
    id: Mapped[str] = mapped_column(String, primary_key=True, default=new_id)
    owner_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), index=True)
    share_token: Mapped[str] = mapped_column(String, unique=True, index=True, default=new_share_token)
    permission_level: Mapped[str] = mapped_column(String, default="view")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_accessed: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    access_count: Mapped[int] = mapped_column(Integer, default=0)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())
