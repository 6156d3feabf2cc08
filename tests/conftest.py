"""Shared fixtures for portal tests.

Provides:
- db / backend / service: a LocalBackend over a throwaway SQLite file
- sent_emails: records notification emails instead of sending them
- set_config: overrides one APP_CONFIG value for a single test
- challenge_config: a class config with a curriculum module and challenges
"""

import os

# Set env vars before any portal imports: config is loaded at import time
os.environ["PORTAL_CONFIG_FILE"] = os.path.join(os.path.dirname(__file__), "no-such-config.yaml")
os.environ["PORTAL_ADMIN_PASSWORD"] = "test-admin-pass"
os.environ["PORTAL_BACKEND_URL"] = ""
os.environ["RESEND_API_KEY"] = ""

import pytest

from portal import config, mailer
from portal.backends import LocalBackend
from portal.database import Database
from portal.models import ClassConfig, default_class_config
from portal.service import PortalService


@pytest.fixture
def db(tmp_path):
    return Database(str(tmp_path / "portal.db"))


@pytest.fixture
def backend(db):
    return LocalBackend(db)


@pytest.fixture
def service(backend):
    return PortalService(backend)


@pytest.fixture
def sent_emails(monkeypatch):
    """Captures (to, subject, html) for every email the mailer would send."""
    outbox = []

    def fake_send(to_email, subject, html_content):
        outbox.append((to_email, subject, html_content))
        return True

    monkeypatch.setattr(mailer, "send_email", fake_send)
    return outbox


@pytest.fixture
def set_config(monkeypatch):
    def _set(path, value):
        section, key = path.split(".")
        monkeypatch.setitem(config.APP_CONFIG[section], key, value)

    return _set


@pytest.fixture
def challenge_config():
    raw = default_class_config().to_dict()
    raw["modules"] = [
        {
            "id": "m1",
            "title": "Week 1: Foundations",
            "order": 1,
            "challenges": [
                {"id": "c1", "title": "Build a landing page", "proofType": "link", "xp": 100},
                {"id": "c2", "title": "Screenshot your setup", "proofType": "image", "xp": 50},
                {"id": "c3", "title": "Describe your idea", "proofType": "text", "xp": 25},
            ],
        }
    ]
    return ClassConfig.from_dict(raw)


@pytest.fixture
def make_application(service):
    """Submits a minimal valid application."""

    def _submit(email="ada@example.com", full_name="Ada Lovelace", **fields):
        payload = {"email": email, "fullName": full_name, "whyJoin": "To build things"}
        payload.update(fields)
        return service.submit_application(payload)

    return _submit
