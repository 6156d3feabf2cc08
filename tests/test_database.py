"""Tests for the SQLite persistence layer."""

import sqlite3

import pytest

from portal.database import CONFIG_KEY, Database
from portal.errors import CorruptRecord
from portal.models import Application, ApplicationStatus, InviteCode


def _application(app_id, submitted_at="2026-02-01T10:00:00.000Z", **overrides):
    fields = dict(
        id=app_id,
        email=f"{app_id}@example.com",
        full_name=app_id.title(),
        why_join="",
        status=ApplicationStatus.PENDING,
        submitted_at=submitted_at,
    )
    fields.update(overrides)
    return Application(**fields)


def _code(code, application_id, used=False):
    return InviteCode(
        id=f"id-{application_id}",
        code=code,
        email=f"{application_id}@example.com",
        application_id=application_id,
        used=used,
        generated_at="2026-02-01T10:00:00.000Z",
    )


class TestApplications:
    def test_list_is_newest_first(self, db):
        db.insert_application(_application("older", "2026-01-01T00:00:00.000Z"))
        db.insert_application(_application("newer", "2026-03-01T00:00:00.000Z"))

        assert [a.id for a in db.list_applications()] == ["newer", "older"]

    def test_get_unknown_application_returns_none(self, db):
        assert db.get_application("missing") is None

    def test_save_application_round_trips(self, db):
        application = _application("a1")
        db.insert_application(application)

        application.status = ApplicationStatus.APPROVED
        application.admin_note = "Looks great"
        assert db.save_application(application) is True

        stored = db.get_application("a1")
        assert stored.status is ApplicationStatus.APPROVED
        assert stored.admin_note == "Looks great"

    def test_save_unknown_application_returns_false(self, db):
        assert db.save_application(_application("ghost")) is False

    def test_count_by_status(self, db):
        db.insert_application(_application("a1"))
        db.insert_application(_application("a2", status=ApplicationStatus.APPROVED))

        assert db.count_by_status() == {"pending": 1, "approved": 1, "rejected": 0}

    def test_corrupt_blob_raises(self, db):
        with sqlite3.connect(db.db_file) as conn:
            conn.execute(
                "INSERT INTO applications (id, email, status, submitted_at, data) VALUES (?, ?, ?, ?, ?)",
                ("bad", "x@y.z", "pending", "2026-01-01", "{not json"),
            )

        with pytest.raises(CorruptRecord):
            db.get_application("bad")


class TestInviteCodes:
    def test_codes_are_listed_in_issuance_order(self, db):
        db.insert_code(_code("TCP-BBBBBB", "a1"))
        db.insert_code(_code("TCP-AAAAAA", "a2"))

        assert [c.code for c in db.list_codes()] == ["TCP-BBBBBB", "TCP-AAAAAA"]

    def test_one_code_per_application(self, db):
        assert db.insert_code(_code("TCP-AAAAAA", "a1")) is True

        assert db.insert_code(InviteCode("other", "TCP-CCCCCC", "x@y.z", "a1", False, "")) is False
        assert [c.code for c in db.list_codes()] == ["TCP-AAAAAA"]

    def test_duplicate_code_string_is_refused(self, db):
        db.insert_code(_code("TCP-AAAAAA", "a1"))

        assert db.insert_code(InviteCode("other", "TCP-AAAAAA", "x@y.z", "a2", False, "")) is False

    def test_mark_code_used_only_flips_once(self, db):
        db.insert_code(_code("TCP-AAAAAA", "a1"))

        assert db.mark_code_used("TCP-AAAAAA") is True
        assert db.mark_code_used("TCP-AAAAAA") is False
        assert db.get_code("TCP-AAAAAA").used is True

    def test_lookup_by_application(self, db):
        db.insert_code(_code("TCP-AAAAAA", "a1"))

        assert db.get_code_for_application("a1").code == "TCP-AAAAAA"
        assert db.get_code_for_application("a2") is None


class TestSettings:
    def test_set_get_and_overwrite(self, db):
        db.set_setting(CONFIG_KEY, {"title": "First"})
        db.set_setting(CONFIG_KEY, {"title": "Second"})

        assert db.get_setting(CONFIG_KEY) == {"title": "Second"}

    def test_delete_setting(self, db):
        db.set_setting("flag", True)

        assert db.delete_setting("flag") is True
        assert db.delete_setting("flag") is False
        assert db.get_setting("flag") is None

    def test_corrupt_setting_raises(self, db):
        with sqlite3.connect(db.db_file) as conn:
            conn.execute("INSERT INTO settings (key, value) VALUES (?, ?)", ("broken", "{oops"))

        with pytest.raises(CorruptRecord):
            db.get_setting("broken")

    def test_database_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "shared.db")
        Database(path).set_setting("k", [1, 2])

        assert Database(path).get_setting("k") == [1, 2]
