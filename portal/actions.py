"""
The action table shared by the remote client and the portal server.

Each wire action is registered once with its HTTP verb and a handler that turns the
request `data` into a typed PortalService call and the result back into the wire
shape. RemoteBackend reads the verbs from ACTIONS; the server dispatches through it.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from portal.errors import NotFound, PortalError, ValidationError
from portal.models import migrate_config

if TYPE_CHECKING:
    from portal.service import PortalService

logger = logging.getLogger(__name__)

Handler = Callable[["PortalService", Any], Any]


@dataclass(frozen=True)
class Action:
    name: str
    verb: str
    handler: Handler


ACTIONS: Dict[str, Action] = {}


def action(name: str, verb: Optional[str] = None) -> Callable[[Handler], Handler]:
    """Registers a handler. Actions named get_* default to GET, the rest to POST."""

    def register(handler: Handler) -> Handler:
        if name in ACTIONS:
            raise ValueError(f"Action '{name}' registered twice")
        ACTIONS[name] = Action(name, verb or ("GET" if name.startswith("get_") else "POST"), handler)
        return handler

    return register


def _require(data: Any, *keys: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValidationError("Request data must be an object")
    missing = [key for key in keys if data.get(key) in (None, "")]
    if missing:
        raise ValidationError(f"Missing field(s): {', '.join(missing)}", field=missing[0])
    return data


def _failure(error: PortalError) -> Dict[str, Any]:
    return {"success": False, "message": error.message, "errorCode": error.error_code}


@action("get_config")
def _get_config(service: "PortalService", data: Any) -> Dict[str, Any]:
    config = service.stored_config()
    payload = config.to_dict() if config else {}
    counts = service.stats()
    payload["stats"] = {"approved": counts["approved"], "total": counts["total"]}
    return payload


@action("update_config")
def _update_config(service: "PortalService", data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict) or not data.get("title"):
        raise ValidationError("Config must be an object with a title", field="title")
    try:
        # Admin UIs that predate sessions still post v1 documents
        config = migrate_config(data)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ValidationError(f"Malformed config: {e}")
    config.stats = None
    service.save_config(config, stamp=False)
    return {"success": True}


@action("submit_application")
def _submit_application(service: "PortalService", data: Any) -> Dict[str, Any]:
    application = service.submit_application(_require(data))
    return {"success": True, "app": application.to_dict()}


@action("get_applications")
def _get_applications(service: "PortalService", data: Any) -> Any:
    return [application.to_dict() for application in service.list_applications()]


@action("update_application")
def _update_application(service: "PortalService", data: Any) -> Dict[str, Any]:
    data = _require(data, "id")
    updates = data.get("updates") or {}
    if not isinstance(updates, dict):
        raise ValidationError("updates must be an object", field="updates")
    try:
        application = service.update_application(str(data["id"]).strip(), updates)
    except (NotFound, ValidationError) as e:
        return _failure(e)
    return {"success": True, "app": application.to_dict()}


@action("update_status")
def _update_status(service: "PortalService", data: Any) -> Dict[str, Any]:
    data = _require(data, "id", "status")
    try:
        service.set_status(str(data["id"]).strip(), data["status"])
    except (NotFound, ValidationError) as e:
        return _failure(e)
    return {"success": True}


@action("generate_code")
def _generate_code(service: "PortalService", data: Any) -> Dict[str, Any]:
    data = _require(data, "applicationId", "email")
    invite, created = service.issue_code(str(data["applicationId"]).strip(), data["email"])
    if not created:
        return {"code": invite.code, "message": "Resent existing code"}
    return invite.to_dict()


@action("get_codes")
def _get_codes(service: "PortalService", data: Any) -> Any:
    return [invite.to_dict() for invite in service.list_codes()]


@action("use_code")
def _use_code(service: "PortalService", data: Any) -> Dict[str, Any]:
    code = data.get("code") if isinstance(data, dict) else None
    return service.redeem_code(str(code or "")).to_dict()


@action("trigger_reminders")
def _trigger_reminders(service: "PortalService", data: Any) -> Dict[str, Any]:
    return {"sent": service.trigger_reminders()}


@action("batch_approve")
def _batch_approve(service: "PortalService", data: Any) -> Dict[str, Any]:
    ids = data.get("ids") if isinstance(data, dict) else None
    if not isinstance(ids, list) or not ids:
        return {"success": False, "message": "No IDs provided"}
    result = service.batch_approve([str(i).strip() for i in ids])
    return {"success": True, "count": result.count, "failed": result.failed}


def dispatch(service: "PortalService", name: Optional[str], data: Any = None) -> Any:
    """
    Runs one wire action and returns the JSON-ready response.

    Errors are reported in the payload, never raised: {"error": ..., "errorCode": ...}.
    """
    if not name:
        return {"error": "No action specified"}
    entry = ACTIONS.get(name)
    if entry is None:
        return {"error": f"Unknown action: {name}"}
    try:
        return entry.handler(service, data)
    except PortalError as e:
        logger.warning(f"Action '{name}' failed: {e.message}")
        return {"error": e.message, "errorCode": e.error_code}
