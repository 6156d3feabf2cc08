"""Tests for the HTTP client of the remote action endpoint."""

import json
from unittest.mock import MagicMock

import pytest
import requests

from portal.errors import BackendUnavailable, NotFound, PortalError, ValidationError
from portal.remote_client import RemoteClient

URL = "https://script.google.com/macros/s/abc/exec"


def _response(status_code=200, body=None, text=None):
    response = MagicMock()
    response.status_code = status_code
    response.text = text if text is not None else json.dumps(body)
    if text is not None:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def client():
    c = RemoteClient(URL)
    c.session = MagicMock()
    return c


class TestRequests:
    def test_requires_a_url(self):
        with pytest.raises(ValueError):
            RemoteClient("")

    def test_get_sends_action_as_query_param(self, client):
        client.session.get.return_value = _response(body=[])

        assert client.call("get_codes", "GET") == []
        client.session.get.assert_called_once_with(URL, params={"action": "get_codes"}, timeout=10)

    def test_post_sends_text_plain_json_body(self, client):
        client.session.post.return_value = _response(body={"success": True})

        client.call("update_status", "POST", {"id": "a1", "status": "approved"})

        kwargs = client.session.post.call_args.kwargs
        assert json.loads(kwargs["data"]) == {
            "action": "update_status",
            "data": {"id": "a1", "status": "approved"},
        }
        assert kwargs["headers"]["Content-Type"].startswith("text/plain")
        assert kwargs["timeout"] == 10


class TestFailures:
    def test_timeout(self, client):
        client.session.get.side_effect = requests.exceptions.Timeout("slow")

        with pytest.raises(BackendUnavailable) as exc_info:
            client.call("get_config", "GET")
        assert exc_info.value.action == "get_config"

    def test_connection_error(self, client):
        client.session.post.side_effect = requests.exceptions.ConnectionError("down")

        with pytest.raises(BackendUnavailable):
            client.call("use_code", "POST", {"code": "X"})

    def test_non_2xx(self, client):
        client.session.get.return_value = _response(status_code=502, body={})

        with pytest.raises(BackendUnavailable):
            client.call("get_applications", "GET")

    def test_malformed_json(self, client):
        client.session.get.return_value = _response(text="<html>login</html>")

        with pytest.raises(BackendUnavailable):
            client.call("get_applications", "GET")

    def test_error_payload(self, client):
        client.session.post.return_value = _response(body={"error": "Server Error: boom"})

        with pytest.raises(BackendUnavailable):
            client.call("generate_code", "POST", {})

    def test_error_payload_with_validation_code(self, client):
        client.session.post.return_value = _response(
            body={"error": "Full name is required", "errorCode": "VALIDATION_ERROR"}
        )

        with pytest.raises(ValidationError):
            client.call("submit_application", "POST", {})

    def test_unsuccessful_not_found(self, client):
        client.session.post.return_value = _response(
            body={"success": False, "message": "Application not found"}
        )

        with pytest.raises(NotFound) as excinfo:
            client.call("update_status", "POST", {"id": "x", "status": "approved"})
        assert str(excinfo.value) == "Application not found"

    def test_error_payload_with_not_found_code_keeps_message(self, client):
        client.session.post.return_value = _response(
            body={"error": "Application 'x' not found", "errorCode": "NOT_FOUND"}
        )

        with pytest.raises(NotFound) as excinfo:
            client.call("update_application", "POST", {"id": "x", "updates": {}})
        assert excinfo.value.message == "Application 'x' not found"

    def test_unsuccessful_other(self, client):
        client.session.post.return_value = _response(
            body={"success": False, "message": "No IDs provided"}
        )

        with pytest.raises(PortalError):
            client.call("batch_approve", "POST", {"ids": []})
