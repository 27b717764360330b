import os

os.environ.setdefault("PLANNER_DATABASE_URL", "sqlite://")
os.environ.setdefault("PLANNER_SESSION_SECRET", "test-secret")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from course_planner.auth import SessionContext, hash_password, issue_session_token  # noqa: E402
from course_planner.catalog import Catalog, get_catalog  # noqa: E402
from course_planner.db import Base, get_db  # noqa: E402
from course_planner.main import app  # noqa: E402
from course_planner.models import Semester, User  # noqa: E402
from course_planner.service_role import ServiceRoleStore, get_service_store  # noqa: E402


SAMPLE_COURSES = [
    {"course_number": "MATH 101", "title": "Calculus I", "semester_hours": "4", "description": "Limits and derivatives.", "url": "u/math-101", "semester": ["Fall", "Spring"]},
    {"course_number": "MATH 215", "title": "Linear Algebra", "semester_hours": "3", "description": "Matrices.", "url": "u/math-215", "semester": ["Spring"]},
    {"course_number": "STAT 200", "title": "Statistics for Math Majors", "semester_hours": "3", "description": "Inference.", "url": "u/stat-200", "semester": ["Fall"]},
    {"course_number": "CS 101", "title": "Introduction to Programming", "semester_hours": "3", "description": "Programming.", "url": "u/cs-101", "semester": []},
    {"course_number": "PHYS 201", "title": "Physics I", "semester_hours": "4", "description": "Mechanics.", "url": "u/phys-201", "semester": ["Fall"]},
    {"course_number": "HIST 120", "title": "Mathematics in History", "semester_hours": "3", "description": "History.", "url": "u/hist-120", "semester": ["Winter", "Fall"]},
]


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool, future=True)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def store(db):
    return ServiceRoleStore(db)


@pytest.fixture
def catalog():
    return Catalog(SAMPLE_COURSES)


def make_user(db, username):
    user = User(username=username, password_hash=hash_password("password123"))
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_semester(db, user, term_type="Fall", year=2025, max_credits=18):
    s = Semester(user_id=user.id, name=f"{term_type} {year}", term_type=term_type, year=year, max_credits=max_credits)
    db.add(s)
    db.commit()
    db.refresh(s)
    return s


@pytest.fixture
def owner(db):
    return make_user(db, "owner")


@pytest.fixture
def other_user(db):
    return make_user(db, "someone_else")


@pytest.fixture
def owner_ctx(owner):
    return SessionContext(user=owner)


@pytest.fixture
def client(session_factory, catalog):
    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def override_store():
        session = session_factory()
        try:
            yield ServiceRoleStore(session)
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_service_store] = override_store
    app.dependency_overrides[get_catalog] = lambda: catalog
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def owner_token(owner):
    return issue_session_token(owner)
