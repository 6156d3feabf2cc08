"""
Record store backends.

LocalBackend keeps everything in the SQLite database; RemoteBackend forwards each
operation as a named action to the remote endpoint. Both expose the same interface,
and get_backend() picks one from the configured backend URL.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from portal.actions import ACTIONS
from portal.codes import CodeIssuer, generate_id
from portal.config import get_config_value
from portal.database import BACKEND_URL_KEY, CONFIG_KEY, Database
from portal.errors import BackendUnavailable, CorruptRecord, NotFound, ValidationError
from portal.models import (
    Application,
    ApplicationStatus,
    ClassConfig,
    InviteCode,
    RedemptionResult,
    default_class_config,
    migrate_config,
    utc_now_iso,
)
from portal.remote_client import RemoteClient

logger = logging.getLogger(__name__)

# Fields a caller may never overwrite through update_application
PROTECTED_FIELDS = ("id", "submittedAt")


def new_application(fields: Dict[str, Any]) -> Application:
    """Stamps id, status and submission time onto submitted fields."""
    record = {k: v for k, v in fields.items() if k not in ("id", "status", "submittedAt")}
    record.update(
        {
            "id": generate_id(),
            "status": ApplicationStatus.PENDING.value,
            "submittedAt": utc_now_iso(),
        }
    )
    return Application.from_dict(record)


class RecordStore(ABC):
    """Uniform interface over the local and remote media."""

    # True when the medium sends its own notification emails
    delegates_side_effects = False

    @abstractmethod
    def list_applications(self) -> List[Application]:
        """All applications, most recent first."""

    def get_application(self, application_id: str) -> Application:
        for application in self.list_applications():
            if application.id == application_id:
                return application
        raise NotFound("Application", application_id)

    @abstractmethod
    def create_application(self, fields: Dict[str, Any]) -> Application:
        ...

    @abstractmethod
    def update_application(self, application_id: str, updates: Dict[str, Any]) -> Application:
        """Merges wire-shaped fields into the record and returns the merged record."""

    @abstractmethod
    def set_application_status(self, application_id: str, status: Any) -> None:
        ...

    @abstractmethod
    def get_config(self) -> ClassConfig:
        ...

    @abstractmethod
    def set_config(self, config: ClassConfig) -> None:
        ...

    @abstractmethod
    def list_codes(self) -> List[InviteCode]:
        ...

    @abstractmethod
    def issue_code(self, application_id: str, email: str) -> Tuple[InviteCode, bool]:
        ...

    @abstractmethod
    def redeem_code(self, code: str) -> RedemptionResult:
        ...


def _parse_status(status: Any) -> ApplicationStatus:
    try:
        return ApplicationStatus.parse(status)
    except ValueError:
        raise ValidationError(f"Invalid application status: {status!r}", field="status")


class LocalBackend(RecordStore):
    """Record store on the local SQLite database."""

    def __init__(self, db: Database):
        self.db = db
        self.codes = CodeIssuer(db)
        self.logger = logging.getLogger(self.__class__.__name__)

    def list_applications(self) -> List[Application]:
        return self.db.list_applications()

    def get_application(self, application_id: str) -> Application:
        application = self.db.get_application(application_id)
        if application is None:
            raise NotFound("Application", application_id)
        return application

    def create_application(self, fields: Dict[str, Any]) -> Application:
        application = new_application(fields)
        self.db.insert_application(application)
        return application

    def update_application(self, application_id: str, updates: Dict[str, Any]) -> Application:
        current = self.get_application(application_id).to_dict()
        current.update({k: v for k, v in updates.items() if k not in PROTECTED_FIELDS})
        try:
            merged = Application.from_dict(current)
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid update for application {application_id}: {e}")
        if not self.db.save_application(merged):
            raise NotFound("Application", application_id)
        return merged

    def set_application_status(self, application_id: str, status: Any) -> None:
        new_status = _parse_status(status)
        application = self.get_application(application_id)
        previous = application.status
        application.status = new_status
        if not self.db.save_application(application):
            raise NotFound("Application", application_id)
        self.logger.info(
            f"Application {application_id} status {previous.value} -> {new_status.value}"
        )

    def stored_config(self) -> Optional[ClassConfig]:
        """The saved config, or None if the admin never saved one."""
        raw = self.db.get_setting(CONFIG_KEY)
        if raw is None:
            return None
        try:
            return migrate_config(raw)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            self.logger.error(f"Stored class config cannot be parsed: {e}")
            raise CorruptRecord(f"Stored class config cannot be parsed: {e}")

    def get_config(self) -> ClassConfig:
        return self.stored_config() or default_class_config()

    def set_config(self, config: ClassConfig) -> None:
        self.db.set_setting(CONFIG_KEY, config.to_dict())
        self.logger.info("Class config saved")

    def list_codes(self) -> List[InviteCode]:
        return self.db.list_codes()

    def issue_code(self, application_id: str, email: str) -> Tuple[InviteCode, bool]:
        return self.codes.issue_code(application_id, email)

    def redeem_code(self, code: str) -> RedemptionResult:
        config = None
        if get_config_value("codes.expire_after_last_session", False):
            config = self.get_config()
        return self.codes.redeem_code(code, config=config)


class RemoteBackend(RecordStore):
    """Record store behind the remote action endpoint."""

    delegates_side_effects = True

    def __init__(self, client: RemoteClient):
        self.client = client
        self.logger = logging.getLogger(self.__class__.__name__)

    def _call(self, action: str, data: Any = None) -> Any:
        return self.client.call(action, ACTIONS[action].verb, data)

    def _expect_list(self, action: str, body: Any) -> List[Dict[str, Any]]:
        if not isinstance(body, list):
            raise BackendUnavailable(f"expected a list, got {type(body).__name__}", action=action)
        return body

    def list_applications(self) -> List[Application]:
        body = self._expect_list("get_applications", self._call("get_applications"))
        try:
            return [Application.from_dict(item) for item in body]
        except (KeyError, TypeError, ValueError) as e:
            raise BackendUnavailable(f"malformed application: {e}", action="get_applications")

    def create_application(self, fields: Dict[str, Any]) -> Application:
        # Spreadsheet collaborators store what they are sent, so stamp it here
        application = new_application(fields)
        body = self._call("submit_application", application.to_dict())
        if isinstance(body, dict) and isinstance(body.get("app"), dict):
            try:
                return Application.from_dict(body["app"])
            except (KeyError, TypeError, ValueError) as e:
                raise BackendUnavailable(f"malformed application: {e}", action="submit_application")
        return application

    def update_application(self, application_id: str, updates: Dict[str, Any]) -> Application:
        body = self._call("update_application", {"id": application_id, "updates": updates})
        if isinstance(body, dict) and isinstance(body.get("app"), dict):
            try:
                return Application.from_dict(body["app"])
            except (KeyError, TypeError, ValueError) as e:
                raise BackendUnavailable(f"malformed application: {e}", action="update_application")
        # Spreadsheet collaborators only answer {success: true}
        return self.get_application(application_id)

    def set_application_status(self, application_id: str, status: Any) -> None:
        new_status = _parse_status(status)
        self._call("update_status", {"id": application_id, "status": new_status.value})

    def get_config(self) -> ClassConfig:
        body = self._call("get_config")
        if not isinstance(body, dict) or not body.get("title"):
            return default_class_config()
        try:
            return migrate_config(body)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise BackendUnavailable(f"malformed config: {e}", action="get_config")

    def set_config(self, config: ClassConfig) -> None:
        self._call("update_config", config.to_dict())

    def list_codes(self) -> List[InviteCode]:
        body = self._expect_list("get_codes", self._call("get_codes"))
        try:
            return [InviteCode.from_dict(item) for item in body]
        except (KeyError, TypeError, ValueError) as e:
            raise BackendUnavailable(f"malformed invite code: {e}", action="get_codes")

    def issue_code(self, application_id: str, email: str) -> Tuple[InviteCode, bool]:
        body = self._call("generate_code", {"applicationId": application_id, "email": email})
        if not isinstance(body, dict) or not body.get("code"):
            raise BackendUnavailable("response has no code", action="generate_code")
        # Re-sent codes come back without their full record
        created = "id" in body
        record = {"applicationId": application_id, "email": email, **body}
        return InviteCode.from_dict(record), created

    def redeem_code(self, code: str) -> RedemptionResult:
        body = self._call("use_code", {"code": code.strip().upper()})
        if not isinstance(body, dict) or "valid" not in body:
            raise BackendUnavailable("response has no validity flag", action="use_code")
        valid = bool(body["valid"])
        message = body.get("message")
        if not valid and not message:
            message = "Invalid or expired code (Remote)"
        return RedemptionResult(valid, message)

    def trigger_reminders(self) -> int:
        body = self._call("trigger_reminders")
        try:
            return int(body.get("sent", 0))
        except (AttributeError, TypeError, ValueError):
            raise BackendUnavailable("response has no sent count", action="trigger_reminders")


def resolve_backend_url(db: Database) -> Optional[str]:
    """Admin-set URL first, then backend.url / PORTAL_BACKEND_URL."""
    stored = db.get_setting(BACKEND_URL_KEY)
    if stored:
        return str(stored)
    return get_config_value("backend.url") or None


def set_backend_url(db: Database, url: Optional[str]) -> None:
    """Stores the backend URL; an empty value switches back to the local store."""
    if url and url.strip():
        db.set_setting(BACKEND_URL_KEY, url.strip())
        logger.info("Backend URL configured; using the remote record store")
    else:
        db.delete_setting(BACKEND_URL_KEY)
        logger.info("Backend URL cleared; using the local record store")


def get_backend(db: Database) -> RecordStore:
    url = resolve_backend_url(db)
    if url:
        logger.debug("Using remote record store")
        return RemoteBackend(RemoteClient(url))
    logger.debug("Using local record store")
    return LocalBackend(db)
