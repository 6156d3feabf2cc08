"""Admin sign-in for the dashboard, persisted in local settings."""

import hmac
import logging

from portal.config import get_config_value
from portal.database import ADMIN_AUTH_KEY, Database

logger = logging.getLogger(__name__)


def login_admin(db: Database, password: str) -> bool:
    """Checks the admin password and remembers a successful sign-in."""
    expected = get_config_value("admin.password")
    if not expected:
        logger.error("Admin login refused: admin.password (PORTAL_ADMIN_PASSWORD) is not configured.")
        return False

    if not hmac.compare_digest(str(expected).encode(), (password or "").encode()):
        logger.warning("Admin login failed: wrong password.")
        return False

    db.set_setting(ADMIN_AUTH_KEY, True)
    logger.info("Admin signed in.")
    return True


def logout_admin(db: Database) -> None:
    db.delete_setting(ADMIN_AUTH_KEY)
    logger.info("Admin signed out.")


def is_admin_authenticated(db: Database) -> bool:
    return db.get_setting(ADMIN_AUTH_KEY) is True
