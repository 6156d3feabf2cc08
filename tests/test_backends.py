"""
Tests for the record store backends and backend selection.

LocalBackend runs against a temporary SQLite file; RemoteBackend runs against a
mocked RemoteClient so the action/verb/payload contract can be asserted directly.
"""

from unittest.mock import MagicMock

import pytest

from portal.backends import (
    LocalBackend,
    RemoteBackend,
    get_backend,
    resolve_backend_url,
    set_backend_url,
)
from portal.database import CONFIG_KEY
from portal.errors import BackendUnavailable, CorruptRecord, NotFound, ValidationError
from portal.models import ApplicationStatus, default_class_config
from portal.remote_client import RemoteClient


def _fields(**overrides):
    fields = {"email": "ada@example.com", "fullName": "Ada Lovelace", "whyJoin": "Curious"}
    fields.update(overrides)
    return fields


# ============================================
# LocalBackend
# ============================================


class TestLocalApplications:
    def test_create_assigns_id_status_and_timestamp(self, backend):
        application = backend.create_application(
            _fields(id="forged", status="approved", submittedAt="1999-01-01")
        )

        assert application.id != "forged"
        assert application.status is ApplicationStatus.PENDING
        assert application.submitted_at.startswith("20")
        assert backend.get_application(application.id) == application

    def test_ids_are_unique(self, backend):
        ids = {backend.create_application(_fields()).id for _ in range(20)}
        assert len(ids) == 20

    def test_update_merges_fields(self, backend):
        application = backend.create_application(_fields())

        returned = backend.update_application(application.id, {"adminNote": "Great fit", "wave": 3})

        stored = backend.get_application(application.id)
        assert returned == stored
        assert stored.admin_note == "Great fit"
        assert stored.wave == 3
        assert stored.full_name == "Ada Lovelace"

    def test_update_cannot_reassign_id(self, backend):
        application = backend.create_application(_fields())

        backend.update_application(application.id, {"id": "other", "submittedAt": "x"})

        stored = backend.get_application(application.id)
        assert stored.submitted_at == application.submitted_at

    def test_update_unknown_id_raises_not_found(self, backend):
        with pytest.raises(NotFound):
            backend.update_application("missing", {"adminNote": "x"})

    def test_set_status(self, backend):
        application = backend.create_application(_fields())

        backend.set_application_status(application.id, "approved")

        assert backend.get_application(application.id).status is ApplicationStatus.APPROVED

    def test_set_invalid_status_raises_validation_error(self, backend):
        application = backend.create_application(_fields())

        with pytest.raises(ValidationError):
            backend.set_application_status(application.id, "archived")

    def test_set_status_unknown_id_raises_not_found(self, backend):
        with pytest.raises(NotFound):
            backend.set_application_status("missing", "approved")


class TestLocalConfig:
    def test_unset_config_falls_back_to_default(self, backend):
        assert backend.stored_config() is None
        assert backend.get_config() == default_class_config()

    def test_round_trip(self, backend):
        config = default_class_config()
        config.title = "Spring Cohort"
        config.accepting_applications = False

        backend.set_config(config)

        assert backend.get_config() == config

    def test_legacy_document_is_migrated_on_read(self, backend, db):
        db.set_setting(
            CONFIG_KEY,
            {"title": "Legacy", "description": "", "date": "May 1, 2026", "time": "5:00 PM"},
        )

        config = backend.get_config()

        assert config.title == "Legacy"
        assert config.sessions[0].date == "May 1, 2026"

    def test_corrupt_document_raises(self, backend, db):
        db.set_setting(CONFIG_KEY, {"description": "no title"})

        with pytest.raises(CorruptRecord):
            backend.get_config()


class TestLocalCodes:
    def test_issue_and_redeem(self, backend):
        invite, created = backend.issue_code("app1", "a@example.com")

        assert created is True
        assert backend.list_codes() == [invite]
        assert backend.redeem_code(invite.code).valid is True


# ============================================
# RemoteBackend
# ============================================


@pytest.fixture
def client():
    return MagicMock(spec=RemoteClient)


@pytest.fixture
def remote(client):
    return RemoteBackend(client)


class TestRemoteBackend:
    def test_list_applications_uses_get(self, remote, client):
        client.call.return_value = [
            {"id": "a1", "email": "a@b.co", "fullName": "A", "status": "approved", "submittedAt": "t"}
        ]

        applications = remote.list_applications()

        client.call.assert_called_once_with("get_applications", "GET", None)
        assert applications[0].status is ApplicationStatus.APPROVED

    def test_get_application_scans_the_list(self, remote, client):
        client.call.return_value = [{"id": "a1", "email": "a@b.co"}]

        assert remote.get_application("a1").email == "a@b.co"
        with pytest.raises(NotFound):
            remote.get_application("a2")

    def test_malformed_list_is_backend_unavailable(self, remote, client):
        client.call.return_value = {"not": "a list"}

        with pytest.raises(BackendUnavailable):
            remote.list_applications()

    def test_create_application_sends_stamped_record(self, remote, client):
        client.call.side_effect = lambda action, verb, data: {"success": True, "app": data}

        application = remote.create_application(_fields())

        action, verb, sent = client.call.call_args[0]
        assert (action, verb) == ("submit_application", "POST")
        assert sent["id"] == application.id
        assert sent["status"] == "pending"
        assert sent["submittedAt"] == application.submitted_at

    def test_update_application_payload(self, remote, client):
        client.call.return_value = {
            "success": True,
            "app": {"id": "a1", "email": "a@b.co", "adminNote": "hi"},
        }

        application = remote.update_application("a1", {"adminNote": "hi"})

        client.call.assert_called_once_with(
            "update_application", "POST", {"id": "a1", "updates": {"adminNote": "hi"}}
        )
        assert application.admin_note == "hi"

    def test_update_application_refetches_when_no_record_returned(self, remote, client):
        replies = {
            "update_application": {"success": True},
            "get_applications": [{"id": "a1", "email": "a@b.co", "adminNote": "hi"}],
        }
        client.call.side_effect = lambda action, verb, data=None: replies[action]

        application = remote.update_application("a1", {"adminNote": "hi"})

        assert application.admin_note == "hi"
        assert [c[0][0] for c in client.call.call_args_list] == [
            "update_application",
            "get_applications",
        ]

    def test_set_status_validates_before_sending(self, remote, client):
        with pytest.raises(ValidationError):
            remote.set_application_status("a1", "archived")
        client.call.assert_not_called()

        remote.set_application_status("a1", ApplicationStatus.REJECTED)
        client.call.assert_called_once_with("update_status", "POST", {"id": "a1", "status": "rejected"})

    def test_empty_remote_config_means_default(self, remote, client):
        client.call.return_value = {}

        assert remote.get_config() == default_class_config()

    def test_issue_code_new_and_resent(self, remote, client):
        client.call.return_value = {
            "id": "i1",
            "code": "TCP-ABC123",
            "email": "a@b.co",
            "applicationId": "a1",
            "used": False,
            "generatedAt": "t",
        }
        invite, created = remote.issue_code("a1", "a@b.co")
        assert created is True
        assert invite.code == "TCP-ABC123"

        client.call.return_value = {"code": "TCP-ABC123", "message": "Resent existing code"}
        invite, created = remote.issue_code("a1", "a@b.co")
        assert created is False
        assert invite.application_id == "a1"

    def test_issue_code_without_code_is_backend_unavailable(self, remote, client):
        client.call.return_value = {"message": "??"}

        with pytest.raises(BackendUnavailable):
            remote.issue_code("a1", "a@b.co")

    def test_redeem_code_normalizes_and_defaults_message(self, remote, client):
        client.call.return_value = {"valid": False}

        result = remote.redeem_code(" tcp-abc123 ")

        client.call.assert_called_once_with("use_code", "POST", {"code": "TCP-ABC123"})
        assert result.valid is False
        assert result.message

    def test_trigger_reminders_returns_count(self, remote, client):
        client.call.return_value = {"sent": 4}
        assert remote.trigger_reminders() == 4

    def test_remote_delegates_side_effects(self, remote):
        assert remote.delegates_side_effects is True
        assert LocalBackend.delegates_side_effects is False


# ============================================
# Backend selection
# ============================================


class TestBackendSelection:
    def test_local_by_default(self, db):
        assert resolve_backend_url(db) is None
        assert isinstance(get_backend(db), LocalBackend)

    def test_stored_url_selects_remote(self, db):
        set_backend_url(db, " https://script.google.com/macros/s/abc/exec ")

        backend = get_backend(db)

        assert isinstance(backend, RemoteBackend)
        assert backend.client.base_url == "https://script.google.com/macros/s/abc/exec"

    def test_config_url_is_the_fallback(self, db, set_config):
        set_config("backend.url", "https://collab.example.com/exec")
        assert resolve_backend_url(db) == "https://collab.example.com/exec"

    def test_clearing_url_switches_back_to_local(self, db):
        set_backend_url(db, "https://collab.example.com/exec")
        set_backend_url(db, "")

        assert isinstance(get_backend(db), LocalBackend)
