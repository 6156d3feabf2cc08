"""Client for the remote action endpoint (spreadsheet-backed script or portal server)."""

import json
import logging
from typing import Any, Dict, Optional

import requests

from portal.config import get_config_value
from portal.errors import BackendUnavailable, NotFound, PortalError, ValidationError

# Error codes a collaborator may attach to {"error": ...} / {"success": false} payloads
_ERROR_CODE_TYPES = {
    "VALIDATION_ERROR": ValidationError,
    "NOT_FOUND": NotFound,
}


class RemoteClient:
    """
    Sends named actions to the remote endpoint.

    GET actions go out as `?action=name`; everything else is a POST whose body is
    `{"action": name, "data": ...}` with a text/plain content type, which Apps Script
    web apps accept without a CORS preflight. No retries and no caching: any transport
    error, timeout, non-2xx status or unparseable body raises BackendUnavailable.
    """

    def __init__(self, base_url: str, timeout: Optional[float] = None):
        self.logger = logging.getLogger(self.__class__.__name__)
        if not base_url:
            self.logger.critical("Missing backend URL at client initialization.")
            raise ValueError("Missing backend URL")

        self.base_url = base_url.strip()
        self.timeout = timeout or get_config_value("backend.timeout_seconds", 10)
        self.session = requests.Session()
        self.session.headers.update(
            {"User-Agent": "ClassPortal/1.0", "Accept": "application/json"}
        )

    def _log_api_call(
        self,
        method: str,
        action: str,
        payload: Any = None,
        response: Optional[requests.Response] = None,
    ) -> None:
        """Log API calls in debug mode"""
        if not get_config_value("portal_settings.debug_mode", False):
            return

        log_data = {
            "method": method,
            "action": action,
            "payload": payload,
            "status_code": response.status_code if response is not None else None,
            # Inline image proofs can be megabytes long
            "response_body": response.text[:1000] if response is not None else None,
        }
        self.logger.debug(f"Backend API Call: {json.dumps(log_data, indent=2, default=str)[:4000]}")

    def _raise_for_error_payload(self, action: str, body: Any) -> None:
        if not isinstance(body, dict):
            return
        if "error" in body:
            error_type = _ERROR_CODE_TYPES.get(body.get("errorCode"))
            message = str(body["error"])
            self.logger.error(f"Backend reported an error for '{action}': {message}")
            if error_type is ValidationError:
                raise ValidationError(message)
            if error_type is NotFound:
                raise NotFound("Record", action, message=message)
            raise BackendUnavailable(message, action=action)
        if body.get("success") is False:
            message = str(body.get("message") or "Request was not successful")
            self.logger.warning(f"Backend rejected '{action}': {message}")
            if body.get("errorCode") == "NOT_FOUND" or "not found" in message.lower():
                raise NotFound("Record", action, message=message)
            if body.get("errorCode") == "VALIDATION_ERROR":
                raise ValidationError(message)
            raise PortalError(message)

    def call(self, action: str, method: str, data: Any = None) -> Any:
        """
        Performs one action and returns the decoded JSON body.

        Raises:
            BackendUnavailable: network failure, timeout, non-2xx or malformed JSON
            NotFound, ValidationError, PortalError: the collaborator refused the action
        """
        method = method.upper()
        try:
            if method == "GET":
                response = self.session.get(
                    self.base_url, params={"action": action}, timeout=self.timeout
                )
            else:
                response = self.session.post(
                    self.base_url,
                    data=json.dumps({"action": action, "data": data}),
                    headers={"Content-Type": "text/plain;charset=utf-8"},
                    timeout=self.timeout,
                )
        except requests.exceptions.Timeout as e:
            self.logger.error(f"Timed out after {self.timeout}s calling '{action}': {e}")
            raise BackendUnavailable(f"timed out after {self.timeout}s", action=action)
        except requests.exceptions.RequestException as e:
            self.logger.error(f"Network error calling '{action}': {e}")
            raise BackendUnavailable(f"network error: {e}", action=action)

        self._log_api_call(method, action, payload=data, response=response)

        if not 200 <= response.status_code < 300:
            self.logger.error(
                f"Backend call '{action}' failed with status {response.status_code}"
            )
            raise BackendUnavailable(f"HTTP {response.status_code}", action=action)

        try:
            body = response.json()
        except ValueError as e:
            self.logger.error(f"Failed to parse JSON from '{action}' response: {e}")
            self.logger.debug(f"Raw response text: {response.text[:500]}")
            raise BackendUnavailable("malformed JSON response", action=action)

        self._raise_for_error_payload(action, body)
        return body

    def close(self) -> None:
        self.session.close()
