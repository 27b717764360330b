from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from course_planner import requirements as req_store
from course_planner import semesters as sem_store
from course_planner import sharing
from course_planner.auth import SessionContext, current_user, hash_password, issue_session_token, session_context, verify_password
from course_planner.catalog import Catalog, format_course_for_display, get_catalog
from course_planner.config import settings
from course_planner.db import Base, engine, ensure_runtime_migrations, get_db, serialize
from course_planner.errors import Result
from course_planner.models import User
from course_planner.service_role import ServiceRoleStore, get_service_store, service_engine


logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Course Planner")
app.add_middleware(CORSMiddleware, allow_origins=settings.cors_origins, allow_credentials=True, allow_methods=["*"], allow_headers=["*"])

TermType = Literal["Fall", "Spring", "Summer", "Winter"]
CourseStatus = Literal["planned", "enrolled", "completed", "dropped"]
PermissionLevel = Literal["view", "edit"]

RESULT_STATUS = {"auth": 401, "not_found": 404, "expired": 404, "permission": 403, "invalid": 400, "store": 500}
LINK_UNAVAILABLE = "Share link is not available"


class RegisterIn(BaseModel):
    username: str = Field(min_length=3, max_length=80)
    password: str = Field(min_length=8)


class LoginIn(BaseModel):
    username: str
    password: str


class CourseOptionIn(BaseModel):
    code: str
    name: Optional[str] = None


class RequirementIn(BaseModel):
    title: str
    category: str = "General"
    priority: int = Field(default=3, ge=1, le=5)
    credits: Optional[float] = Field(default=None, ge=0)
    description: Optional[str] = None
    is_completed: bool = False
    course_options: list[CourseOptionIn] = Field(default_factory=list)


class RequirementUpdateIn(BaseModel):
    title: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=1, le=5)
    credits: Optional[float] = Field(default=None, ge=0)
    description: Optional[str] = None
    is_completed: Optional[bool] = None
    course_options: Optional[list[CourseOptionIn]] = None


class AcademicYearIn(BaseModel):
    name: str
    start_date: date
    end_date: date
    is_active: bool = False


class AcademicYearUpdateIn(BaseModel):
    name: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class DefaultYearIn(BaseModel):
    start_year: Optional[int] = Field(default=None, ge=1900, le=2200)


class SemesterIn(BaseModel):
    name: str
    term_type: TermType
    year: int
    academic_year_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    max_credits: float = Field(default=18.0, gt=0)


class SemesterUpdateIn(BaseModel):
    name: Optional[str] = None
    term_type: Optional[TermType] = None
    year: Optional[int] = None
    academic_year_id: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    max_credits: Optional[float] = Field(default=None, gt=0)


class ScheduledCourseIn(BaseModel):
    semester_id: str
    course_code: str
    course_name: Optional[str] = None
    credits: float = Field(default=3.0, ge=0)
    status: CourseStatus = "planned"
    requirement_id: Optional[str] = None
    position_index: int = Field(default=0, ge=0)


class ScheduledCourseUpdateIn(BaseModel):
    course_name: Optional[str] = None
    credits: Optional[float] = Field(default=None, ge=0)
    status: Optional[CourseStatus] = None
    requirement_id: Optional[str] = None
    position_index: Optional[int] = Field(default=None, ge=0)


class MoveIn(BaseModel):
    semester_id: str
    position: int = Field(default=0, ge=0)


class ShareIn(BaseModel):
    permission_level: PermissionLevel = "view"
    description: Optional[str] = None
    expires_at: Optional[datetime] = None


class ShareUpdateIn(BaseModel):
    permission_level: Optional[PermissionLevel] = None
    description: Optional[str] = None
    expires_at: Optional[datetime] = None


class SharedCourseUpdateIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    course_id: str = Field(alias="courseId")
    to_semester_id: Optional[str] = Field(default=None, alias="toSemesterId")
    course_data: Optional[dict] = Field(default=None, alias="courseData")


def unwrap(result: Result):
    if result.success:
        return result.data
    raise HTTPException(status_code=RESULT_STATUS.get(result.kind, 400), detail=result.error)


@app.on_event("startup")
def startup():
    Base.metadata.create_all(engine)
    if service_engine.url != engine.url:
        Base.metadata.create_all(service_engine)
    ensure_runtime_migrations()
    get_catalog()


@app.get("/health")
def health():
    return {"status": "ok"}


# ===== AUTH =====


@app.post("/auth/register")
def register(payload: RegisterIn, db: Session = Depends(get_db)):
    if db.scalar(select(User).where(User.username == payload.username)):
        raise HTTPException(status_code=400, detail="Username already taken")
    user = User(username=payload.username, password_hash=hash_password(payload.password))
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s", user.id)
    return {"session_token": issue_session_token(user), "user_id": user.id}


@app.post("/auth/login")
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = db.scalar(select(User).where(User.username == payload.username))
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return {"session_token": issue_session_token(user), "user_id": user.id}


@app.get("/auth/me")
def me(user: User = Depends(current_user)):
    return {"id": user.id, "username": user.username, "created_at": user.created_at}


# ===== CATALOG =====


@app.get("/catalog/search")
def catalog_search(q: str = "", limit: int = Query(10, ge=1, le=100), catalog: Catalog = Depends(get_catalog)):
    return catalog.search_courses(q, limit)


@app.get("/catalog/departments")
def catalog_departments(catalog: Catalog = Depends(get_catalog)):
    return catalog.get_departments()


@app.get("/catalog/departments/{department}")
def catalog_department_courses(department: str, catalog: Catalog = Depends(get_catalog)):
    return [format_course_for_display(c) for c in catalog.get_courses_by_department(department)]


@app.get("/catalog/courses/{course_number}")
def catalog_course(course_number: str, catalog: Catalog = Depends(get_catalog)):
    course = catalog.get_course_by_number(course_number)
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    return course


# ===== REQUIREMENTS =====


@app.post("/requirements")
def create_requirement(payload: RequirementIn, db: Session = Depends(get_db), user: User = Depends(current_user)):
    return serialize(req_store.create_requirement(db, user.id, payload.model_dump()))


@app.get("/requirements")
def list_requirements(category: Optional[str] = None, db: Session = Depends(get_db), user: User = Depends(current_user)):
    if category:
        rows = req_store.get_requirements_by_category(db, user.id, category)
    else:
        rows = req_store.get_requirements(db, user.id)
    return [serialize(r) for r in rows]


@app.get("/requirements/planner")
def planner_requirements(
    db: Session = Depends(get_db), user: User = Depends(current_user), catalog: Catalog = Depends(get_catalog)
):
    return req_store.load_user_requirements(db, user.id, catalog)


@app.put("/requirements/{requirement_id}")
def update_requirement(
    requirement_id: str, payload: RequirementUpdateIn, db: Session = Depends(get_db), user: User = Depends(current_user)
):
    r = req_store.update_requirement(db, user.id, requirement_id, payload.model_dump(exclude_unset=True))
    if not r:
        raise HTTPException(status_code=404, detail="Requirement not found")
    return serialize(r)


@app.post("/requirements/{requirement_id}/completion")
def set_requirement_completion(
    requirement_id: str, is_completed: bool, db: Session = Depends(get_db), user: User = Depends(current_user)
):
    r = req_store.toggle_requirement_completion(db, user.id, requirement_id, is_completed)
    if not r:
        raise HTTPException(status_code=404, detail="Requirement not found")
    return serialize(r)


@app.delete("/requirements/{requirement_id}")
def delete_requirement(requirement_id: str, db: Session = Depends(get_db), user: User = Depends(current_user)):
    if not req_store.delete_requirement(db, user.id, requirement_id):
        raise HTTPException(status_code=404, detail="Requirement not found")
    return {"status": "deleted"}


# ===== ACADEMIC YEARS =====


@app.post("/academic-years")
def create_academic_year(payload: AcademicYearIn, db: Session = Depends(get_db), user: User = Depends(current_user)):
    if payload.end_date <= payload.start_date:
        raise HTTPException(status_code=400, detail="end_date must be after start_date")
    return serialize(sem_store.create_academic_year(db, user.id, payload.model_dump()))


@app.post("/academic-years/default")
def create_default_academic_year(payload: DefaultYearIn, db: Session = Depends(get_db), user: User = Depends(current_user)):
    year = sem_store.create_default_academic_year(db, user.id, payload.start_year)
    semesters = sem_store.create_default_semesters(db, user.id, year.id, payload.start_year)
    return {"academic_year": serialize(year), "semesters": [serialize(s) for s in semesters]}


@app.get("/academic-years")
def list_academic_years(db: Session = Depends(get_db), user: User = Depends(current_user)):
    return [serialize(y) for y in sem_store.get_academic_years(db, user.id)]


@app.put("/academic-years/{year_id}")
def update_academic_year(year_id: str, payload: AcademicYearUpdateIn, db: Session = Depends(get_db), user: User = Depends(current_user)):
    y = sem_store.update_academic_year(db, user.id, year_id, payload.model_dump(exclude_unset=True))
    if not y:
        raise HTTPException(status_code=404, detail="Academic year not found")
    return serialize(y)


@app.post("/academic-years/{year_id}/activate")
def activate_academic_year(year_id: str, db: Session = Depends(get_db), user: User = Depends(current_user)):
    y = sem_store.set_active_academic_year(db, user.id, year_id)
    if not y:
        raise HTTPException(status_code=404, detail="Academic year not found")
    return serialize(y)


@app.delete("/academic-years/{year_id}")
def delete_academic_year(year_id: str, db: Session = Depends(get_db), user: User = Depends(current_user)):
    if not sem_store.delete_academic_year(db, user.id, year_id):
        raise HTTPException(status_code=404, detail="Academic year not found")
    return {"status": "deleted"}


# ===== SEMESTERS =====


@app.post("/semesters")
def create_semester(payload: SemesterIn, db: Session = Depends(get_db), user: User = Depends(current_user)):
    if payload.academic_year_id and not sem_store.get_academic_year(db, user.id, payload.academic_year_id):
        raise HTTPException(status_code=404, detail="Academic year not found")
    return serialize(sem_store.create_semester(db, user.id, payload.model_dump()))


@app.get("/semesters")
def list_semesters(
    academic_year_id: Optional[str] = None,
    with_courses: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(current_user),
):
    if with_courses:
        return sem_store.get_all_semesters_with_courses(db, user.id, academic_year_id)
    return [serialize(s) for s in sem_store.get_semesters(db, user.id, academic_year_id)]


@app.get("/semesters/{semester_id}")
def get_semester(semester_id: str, db: Session = Depends(get_db), user: User = Depends(current_user)):
    s = sem_store.get_semester_with_courses(db, user.id, semester_id)
    if not s:
        raise HTTPException(status_code=404, detail="Semester not found")
    return s


@app.get("/semesters/{semester_id}/credit-check")
def semester_credit_check(
    semester_id: str, credits: float = Query(..., ge=0), db: Session = Depends(get_db), user: User = Depends(current_user)
):
    s = sem_store.get_semester_with_courses(db, user.id, semester_id)
    if not s:
        raise HTTPException(status_code=404, detail="Semester not found")
    return {
        "allowed": sem_store.validate_credit_limit(s, credits),
        "current_credits": s["current_credits"],
        "max_credits": s["max_credits"],
    }


@app.put("/semesters/{semester_id}")
def update_semester(semester_id: str, payload: SemesterUpdateIn, db: Session = Depends(get_db), user: User = Depends(current_user)):
    s = sem_store.update_semester(db, user.id, semester_id, payload.model_dump(exclude_unset=True))
    if not s:
        raise HTTPException(status_code=404, detail="Semester not found")
    return serialize(s)


@app.delete("/semesters/{semester_id}")
def delete_semester(semester_id: str, db: Session = Depends(get_db), user: User = Depends(current_user)):
    if not sem_store.delete_semester(db, user.id, semester_id):
        raise HTTPException(status_code=404, detail="Semester not found")
    return {"status": "deleted"}


# ===== SCHEDULED COURSES =====


@app.post("/scheduled-courses")
def schedule_course(payload: ScheduledCourseIn, db: Session = Depends(get_db), user: User = Depends(current_user)):
    try:
        c = sem_store.schedule_course(db, user.id, payload.model_dump())
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail="Course already scheduled") from exc
    if not c:
        raise HTTPException(status_code=404, detail="Semester not found")
    return serialize(c)


@app.get("/scheduled-courses")
def list_scheduled_courses(semester_id: Optional[str] = None, db: Session = Depends(get_db), user: User = Depends(current_user)):
    return [serialize(c) for c in sem_store.get_scheduled_courses(db, user.id, semester_id)]


@app.put("/scheduled-courses/{course_id}")
def update_scheduled_course(
    course_id: str, payload: ScheduledCourseUpdateIn, db: Session = Depends(get_db), user: User = Depends(current_user)
):
    c = sem_store.update_scheduled_course(db, user.id, course_id, payload.model_dump(exclude_unset=True))
    if not c:
        raise HTTPException(status_code=404, detail="Scheduled course not found")
    return serialize(c)


@app.post("/scheduled-courses/{course_id}/move")
def move_scheduled_course(course_id: str, payload: MoveIn, db: Session = Depends(get_db), user: User = Depends(current_user)):
    c = sem_store.move_course_between_semesters(db, user.id, course_id, payload.semester_id, payload.position)
    if not c:
        raise HTTPException(status_code=404, detail="Scheduled course or semester not found")
    return serialize(c)


@app.delete("/scheduled-courses/{course_id}")
def delete_scheduled_course(course_id: str, db: Session = Depends(get_db), user: User = Depends(current_user)):
    if not sem_store.delete_scheduled_course(db, user.id, course_id):
        raise HTTPException(status_code=404, detail="Scheduled course not found")
    return {"status": "deleted"}


# ===== SHARES (owner side) =====


@app.post("/shares")
def create_share(payload: ShareIn, db: Session = Depends(get_db), ctx: SessionContext = Depends(session_context)):
    return unwrap(sharing.create_share(db, ctx, payload.permission_level, payload.description, payload.expires_at))


@app.get("/shares")
def list_shares(db: Session = Depends(get_db), ctx: SessionContext = Depends(session_context)):
    return unwrap(sharing.list_user_shares(db, ctx))


@app.put("/shares/{share_id}")
def update_share(share_id: str, payload: ShareUpdateIn, db: Session = Depends(get_db), ctx: SessionContext = Depends(session_context)):
    return unwrap(sharing.update_share(db, ctx, share_id, payload.model_dump(exclude_unset=True)))


@app.delete("/shares/{share_id}")
def delete_share(share_id: str, db: Session = Depends(get_db), ctx: SessionContext = Depends(session_context)):
    unwrap(sharing.delete_share(db, ctx, share_id))
    return {"status": "deleted"}


# ===== SHARED LINKS (link-holder side) =====


@app.get("/shared")
def shared_view(
    share: Optional[str] = None,
    store: ServiceRoleStore = Depends(get_service_store),
    catalog: Catalog = Depends(get_catalog),
):
    if not share:
        raise HTTPException(status_code=400, detail="Share token required")
    validation = sharing.validate_share_token(store, share)
    if not validation.success:
        status = 500 if validation.kind == "store" else 404
        raise HTTPException(status_code=status, detail=LINK_UNAVAILABLE if status == 404 else validation.error)
    view = unwrap(sharing.materialize_shared_view(store, catalog, validation.data.owner_id))
    return {"share": validation.data.to_dict(), "schedule": view}


@app.get("/page-data")
def page_data(
    share: Optional[str] = None,
    store: ServiceRoleStore = Depends(get_service_store),
    catalog: Catalog = Depends(get_catalog),
):
    shared = sharing.load_shared_schedule(store, catalog, share)
    if shared:
        return {"shared_schedule": shared}
    return {}


@app.post("/api/update-shared-course")
async def update_shared_course(
    request: Request,
    share: Optional[str] = None,
    store: ServiceRoleStore = Depends(get_service_store),
):
    # Same steps as sharing.move_shared_course, split so each failing step keeps its own status.
    # The body is read only after the token and permission checks pass.
    if not share:
        return JSONResponse(status_code=400, content={"success": False, "error": "Share token required"})
    try:
        validation = await run_in_threadpool(sharing.validate_share_token, store, share)
        if not validation.success:
            if validation.kind == "store":
                return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})
            return JSONResponse(status_code=404, content={"success": False, "error": LINK_UNAVAILABLE})

        gate = sharing.require_edit_permission(validation.data)
        if not gate.success:
            return JSONResponse(status_code=403, content=gate.to_dict())

        try:
            payload = SharedCourseUpdateIn.model_validate(await request.json())
        except ValueError:
            return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request body"})

        result = await run_in_threadpool(
            sharing.apply_shared_course_move,
            store,
            validation.data.owner_id,
            payload.course_id,
            payload.to_semester_id,
            payload.course_data,
            actor=f"share:{validation.data.share_id}",
        )
        return JSONResponse(status_code=200, content=jsonable_encoder(result.to_dict()))
    except Exception:
        logger.exception("Shared course update failed")
        return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})
