"""Tests for the share-link pipeline: issuing, validation, permission gate and shared mutation."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError

from conftest import make_semester
from course_planner import sharing
from course_planner.auth import SessionContext
from course_planner.db import utcnow
from course_planner.models import AuditLog, Requirement, ScheduledCourse, ScheduleShare
from course_planner.sharing import ShareValidation


def make_share(db, owner, level="view", expires_at=None):
    share = ScheduleShare(owner_id=owner.id, permission_level=level, expires_at=expires_at)
    db.add(share)
    db.commit()
    db.refresh(share)
    return share


def placements(db, owner):
    return db.scalars(select(ScheduledCourse).where(ScheduledCourse.user_id == owner.id)).all()


def validation_for(level):
    return ShareValidation(
        share_id="s1", owner_id="o1", permission_level=level, description=None, expires_at=None, created_at=utcnow()
    )


class TestCreateShare:
    def test_requires_authenticated_caller(self, db):
        result = sharing.create_share(db, SessionContext(), "edit")
        assert result.success is False
        assert result.kind == "auth"
        assert result.error == "User not authenticated"
        assert db.scalars(select(ScheduleShare)).all() == []

    def test_share_is_always_owned_by_caller(self, db, owner, owner_ctx):
        result = sharing.create_share(db, owner_ctx, "view", "for my advisor")
        assert result.success
        share = db.get(ScheduleShare, result.data["id"])
        assert share.owner_id == owner.id
        assert share.access_count == 0
        assert result.data["share_url"].endswith(f"?share={share.share_token}")
        audit = db.scalars(select(AuditLog).where(AuditLog.entity_id == share.id)).all()
        assert [a.action for a in audit] == ["CREATE"]

    def test_tokens_are_unique(self, db, owner_ctx):
        a = sharing.create_share(db, owner_ctx).data["share_token"]
        b = sharing.create_share(db, owner_ctx).data["share_token"]
        assert a != b
        assert len(a) >= 32

    def test_rejects_unknown_permission_level(self, db, owner_ctx):
        result = sharing.create_share(db, owner_ctx, "admin")
        assert result.success is False
        assert result.kind == "invalid"

    def test_aware_expiry_is_stored_as_naive_utc(self, db, owner_ctx):
        expires = datetime(2030, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        result = sharing.create_share(db, owner_ctx, "view", expires_at=expires)
        assert db.get(ScheduleShare, result.data["id"]).expires_at == datetime(2030, 1, 1, 10, 0)


class TestValidateShareToken:
    def test_unknown_token_is_not_found_and_mutates_nothing(self, db, store, owner):
        share = make_share(db, owner)
        result = sharing.validate_share_token(store, "no-such-token")
        assert result.success is False
        assert result.kind == "not_found"
        assert result.error == "Share link not found"
        db.refresh(share)
        assert share.access_count == 0
        assert share.last_accessed is None

    def test_empty_token_is_not_found(self, store):
        assert sharing.validate_share_token(store, "").kind == "not_found"

    def test_expired_token_never_counts_access(self, db, store, owner):
        share = make_share(db, owner, expires_at=utcnow() - timedelta(days=1))
        for _ in range(3):
            result = sharing.validate_share_token(store, share.share_token)
            assert result.success is False
            assert result.kind == "expired"
            assert result.error == "Share link has expired"
        db.refresh(share)
        assert share.access_count == 0
        assert share.last_accessed is None

    def test_each_success_counts_exactly_one_access(self, db, store, owner, monkeypatch):
        share = make_share(db, owner, "edit", expires_at=utcnow() + timedelta(days=1))
        first, second = datetime(2030, 1, 1, 9, 0), datetime(2030, 1, 1, 9, 5)

        monkeypatch.setattr("course_planner.service_role.utcnow", lambda: first)
        assert sharing.validate_share_token(store, share.share_token).success
        db.refresh(share)
        assert share.access_count == 1
        assert share.last_accessed == first

        monkeypatch.setattr("course_planner.service_role.utcnow", lambda: second)
        assert sharing.validate_share_token(store, share.share_token).success
        db.refresh(share)
        assert share.access_count == 2
        assert share.last_accessed == second

    def test_result_describes_share_without_echoing_token(self, db, store, owner):
        share = make_share(db, owner, "edit")
        share.description = "study group"
        db.commit()
        result = sharing.validate_share_token(store, share.share_token)
        data = result.data.to_dict()
        assert data["owner_id"] == owner.id
        assert data["permission_level"] == "edit"
        assert data["description"] == "study group"
        assert data["expires_at"] is None
        assert share.share_token not in data.values()


class TestRequireEditPermission:
    def test_edit_passes(self):
        assert sharing.require_edit_permission(validation_for("edit")).success is True

    def test_view_is_rejected(self):
        result = sharing.require_edit_permission(validation_for("view"))
        assert result.success is False
        assert result.kind == "permission"
        assert result.error == "Edit permission required"


class TestMaterializeSharedView:
    def test_returns_only_owner_rows_with_enriched_options(self, db, store, catalog, owner, other_user):
        db.add(Requirement(user_id=owner.id, title="Calculus", category="Math", course_options=[{"code": "MATH 101", "name": ""}, {"code": "ZZZ 1", "name": "Custom"}]))
        db.add(Requirement(user_id=other_user.id, title="Not mine", category="Math", course_options=[]))
        spring = make_semester(db, owner, "Spring", 2026)
        fall = make_semester(db, owner, "Fall", 2025)
        make_semester(db, other_user, "Fall", 2025)
        db.add(ScheduledCourse(user_id=owner.id, semester_id=fall.id, course_code="MATH 101", course_name="Calculus I", credits=4))
        db.commit()

        result = sharing.materialize_shared_view(store, catalog, owner.id)
        assert result.success
        view = result.data
        assert [r["title"] for r in view["requirements"]] == ["Calculus"]
        options = view["requirements"][0]["course_options"]
        assert options[0]["name"] == "Calculus I"
        assert options[0]["fromCatalog"] is True
        assert options[1]["fromCatalog"] is False
        assert options[1]["semesters"] == []
        assert [s["id"] for s in view["semesters"]] == [fall.id, spring.id]
        assert [c["course_code"] for c in view["scheduled_courses"]] == ["MATH 101"]


class TestMoveSharedCourse:
    def test_view_share_cannot_mutate(self, db, store, owner):
        share = make_share(db, owner, "view")
        fall = make_semester(db, owner)
        result = sharing.move_shared_course(store, share.share_token, "MATH 101", fall.id)
        assert result.success is False
        assert result.error == "Edit permission required"
        assert placements(db, owner) == []

    def test_expired_share_cannot_mutate(self, db, store, owner):
        share = make_share(db, owner, "edit", expires_at=utcnow() - timedelta(minutes=1))
        fall = make_semester(db, owner)
        result = sharing.move_shared_course(store, share.share_token, "MATH 101", fall.id)
        assert result.kind == "expired"
        assert placements(db, owner) == []

    def test_move_replaces_previous_placement(self, db, store, owner):
        share = make_share(db, owner, "edit")
        fall = make_semester(db, owner, "Fall", 2025)
        spring = make_semester(db, owner, "Spring", 2026)
        db.add(ScheduledCourse(user_id=owner.id, semester_id=fall.id, course_code="MATH 101", course_name="Calculus I", credits=4, status="enrolled"))
        db.commit()

        result = sharing.move_shared_course(store, share.share_token, "MATH 101", spring.id, {"name": "Calculus I", "credits": 4})
        assert result.success
        rows = placements(db, owner)
        assert len(rows) == 1
        assert rows[0].semester_id == spring.id
        assert rows[0].status == "planned"
        assert rows[0].credits == 4
        assert result.data["id"] == rows[0].id

    def test_display_fields_fall_back(self, db, store, owner):
        share = make_share(db, owner, "edit")
        fall = make_semester(db, owner)
        sharing.move_shared_course(store, share.share_token, "CS 101", fall.id, {"title": "Intro Programming", "credit_hours": "4"})
        sharing.move_shared_course(store, share.share_token, "PHYS 201", fall.id)
        rows = {r.course_code: r for r in placements(db, owner)}
        assert rows["CS 101"].course_name == "Intro Programming"
        assert rows["CS 101"].credits == 4
        assert rows["PHYS 201"].course_name == "PHYS 201"
        assert rows["PHYS 201"].credits == 3

    def test_null_target_removes_and_is_idempotent(self, db, store, owner):
        share = make_share(db, owner, "edit")
        fall = make_semester(db, owner)
        sharing.move_shared_course(store, share.share_token, "MATH 101", fall.id)
        assert len(placements(db, owner)) == 1

        first = sharing.move_shared_course(store, share.share_token, "MATH 101", None)
        second = sharing.move_shared_course(store, share.share_token, "MATH 101", None)
        assert first.success and second.success
        assert first.data is None
        assert placements(db, owner) == []

    def test_target_semester_must_belong_to_owner(self, db, store, owner, other_user):
        share = make_share(db, owner, "edit")
        mine = make_semester(db, owner)
        theirs = make_semester(db, other_user)
        sharing.move_shared_course(store, share.share_token, "MATH 101", mine.id)

        result = sharing.move_shared_course(store, share.share_token, "MATH 101", theirs.id)
        assert result.kind == "not_found"
        assert result.error == "Semester not found"
        rows = placements(db, owner)
        assert [r.semester_id for r in rows] == [mine.id]

    def test_failed_insert_keeps_old_placement(self, db, store, owner, monkeypatch):
        share = make_share(db, owner, "edit")
        fall = make_semester(db, owner, "Fall", 2025)
        spring = make_semester(db, owner, "Spring", 2026)
        sharing.move_shared_course(store, share.share_token, "MATH 101", fall.id)

        def broken_commit():
            raise SQLAlchemyError("write failed")

        monkeypatch.setattr(store, "record_share_access", lambda share_id: None)
        monkeypatch.setattr(store.session, "commit", broken_commit)
        result = sharing.move_shared_course(store, share.share_token, "MATH 101", spring.id)
        monkeypatch.undo()

        assert result.success is False
        assert result.kind == "store"
        rows = placements(db, owner)
        assert [r.semester_id for r in rows] == [fall.id]

    def test_mutations_are_audited_against_the_share(self, db, store, owner):
        share = make_share(db, owner, "edit")
        fall = make_semester(db, owner)
        sharing.move_shared_course(store, share.share_token, "MATH 101", fall.id)
        sharing.move_shared_course(store, share.share_token, "MATH 101", None)
        actions = db.scalars(select(AuditLog.action).where(AuditLog.actor_user_id == f"share:{share.id}")).all()
        assert sorted(actions) == ["SHARED_SCHEDULE", "SHARED_UNSCHEDULE"]


class TestShareManagement:
    def test_list_includes_access_stats(self, db, owner, owner_ctx):
        make_share(db, owner, "view", expires_at=utcnow() - timedelta(days=1))
        make_share(db, owner, "edit")
        result = sharing.list_user_shares(db, owner_ctx)
        assert result.success
        assert len(result.data) == 2
        assert sorted(s["is_expired"] for s in result.data) == [False, True]
        assert all(s["access_count"] == 0 for s in result.data)

    def test_update_and_delete_own_share(self, db, owner, owner_ctx):
        share = make_share(db, owner, "view")
        updated = sharing.update_share(db, owner_ctx, share.id, {"permission_level": "edit", "description": "tutor"})
        assert updated.data["permission_level"] == "edit"
        assert updated.data["description"] == "tutor"
        assert sharing.delete_share(db, owner_ctx, share.id).success
        assert db.get(ScheduleShare, share.id) is None

    def test_cannot_touch_another_owners_share(self, db, owner, other_user):
        share = make_share(db, owner, "view")
        intruder = SessionContext(user=other_user)
        assert sharing.update_share(db, intruder, share.id, {"permission_level": "edit"}).kind == "not_found"
        assert sharing.delete_share(db, intruder, share.id).kind == "not_found"
        db.refresh(share)
        assert share.permission_level == "view"

    def test_management_requires_login(self, db):
        assert sharing.list_user_shares(db, SessionContext()).kind == "auth"


class TestUnexpectedFailures:
    def test_corrupt_course_options_fail_as_a_value(self, db, store, catalog, owner):
        r = Requirement(user_id=owner.id, title="Calculus", category="Math", course_options=[{"code": "MATH 101", "name": ""}])
        db.add(r)
        db.commit()
        db.execute(text("UPDATE requirements SET course_options = 'not json' WHERE id = :id"), {"id": r.id})
        db.commit()
        db.expire_all()

        result = sharing.materialize_shared_view(store, catalog, owner.id)
        assert result.success is False
        assert result.kind == "store"

    def test_non_store_exception_during_validation_fails_as_a_value(self, db, store, owner, monkeypatch):
        share = make_share(db, owner, "edit")

        def explode(token):
            raise RuntimeError("driver went away")

        monkeypatch.setattr(store, "find_share_by_token", explode)
        result = sharing.validate_share_token(store, share.share_token)
        assert result.success is False
        assert result.kind == "store"
        assert sharing.move_shared_course(store, share.share_token, "MATH 101", None).success is False


class TestLoadSharedSchedule:
    def test_valid_link_yields_shared_view(self, db, store, catalog, owner):
        share = make_share(db, owner, "view")
        shared = sharing.load_shared_schedule(store, catalog, share.share_token)
        assert shared["is_shared_mode"] is True
        assert shared["share_data"]["owner_id"] == owner.id
        assert set(shared["schedule_data"]) == {"requirements", "semesters", "scheduled_courses"}

    def test_broken_links_degrade_to_none(self, db, store, catalog, owner):
        expired = make_share(db, owner, "view", expires_at=utcnow() - timedelta(hours=1))
        assert sharing.load_shared_schedule(store, catalog, None) is None
        assert sharing.load_shared_schedule(store, catalog, "garbage") is None
        assert sharing.load_shared_schedule(store, catalog, expired.share_token) is None

    def test_unexpected_failure_is_swallowed(self, db, store, catalog, owner, monkeypatch):
        share = make_share(db, owner, "view")

        def explode(token):
            raise RuntimeError("store offline")

        monkeypatch.setattr(store, "find_share_by_token", explode)
        assert sharing.load_shared_schedule(store, catalog, share.share_token) is None


@pytest.mark.parametrize("level,allowed", [("view", False), ("edit", True)])
def test_permission_gate_is_total(level, allowed):
    assert sharing.require_edit_permission(validation_for(level)).success is allowed
