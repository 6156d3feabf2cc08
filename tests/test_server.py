"""
Tests for the collaborator HTTP endpoint.

Drives the FastAPI app with TestClient, and runs RemoteBackend against it through a
requests-compatible session so both ends of the protocol are exercised together.
"""

import base64
import json

import pytest
from fastapi.testclient import TestClient

from portal.backends import RemoteBackend
from portal.errors import NotFound
from portal.models import ApplicationStatus, default_class_config
from portal.remote_client import RemoteClient
from portal.server import create_app
from portal.service import PortalService

PNG_URI = "data:image/png;base64," + base64.b64encode(b"\x89PNG tiny").decode()


@pytest.fixture
def http(tmp_path, sent_emails):
    app = create_app(
        db_path=str(tmp_path / "collab.db"),
        blob_dir=str(tmp_path / "uploads"),
        public_base_url="http://testserver/uploads",
    )
    with TestClient(app) as client:
        yield client


def _post(http, action, data=None):
    response = http.post(
        "/exec",
        content=json.dumps({"action": action, "data": data}),
        headers={"Content-Type": "text/plain;charset=utf-8"},
    )
    assert response.status_code == 200
    return response.json()


class TestProtocol:
    def test_health(self, http):
        assert http.get("/health").json() == {"status": "ok"}

    def test_get_without_action(self, http):
        assert http.get("/").json() == {"error": "No action specified"}

    def test_unknown_action(self, http):
        assert _post(http, "explode") == {"error": "Unknown action: explode"}

    def test_malformed_body(self, http):
        response = http.post("/", content="{not json", headers={"Content-Type": "text/plain"})
        assert response.status_code == 200
        assert response.json()["error"].startswith("Server Error")

    def test_get_config_reports_stats(self, http):
        assert http.get("/exec", params={"action": "get_config"}).json() == {
            "stats": {"approved": 0, "total": 0}
        }

    def test_submit_list_and_approve(self, http, sent_emails):
        app = _post(http, "submit_application", {"email": "ada@example.com", "fullName": "Ada"})["app"]

        assert _post(http, "update_status", {"id": app["id"], "status": "approved"}) == {"success": True}
        code = _post(http, "generate_code", {"applicationId": app["id"], "email": app["email"]})

        listed = http.get("/", params={"action": "get_applications"}).json()
        assert listed[0]["status"] == "approved"
        assert _post(http, "use_code", {"code": code["code"]}) == {"valid": True}
        assert len(sent_emails) == 1

    def test_inline_image_is_uploaded_and_served(self, http):
        payload = default_class_config().to_dict()
        payload["tasks"] = [{"id": "shot", "description": "Screenshot", "proofType": "image"}]
        assert _post(http, "update_config", payload) == {"success": True}

        app = _post(
            http,
            "submit_application",
            {"email": "a@example.com", "fullName": "A", "taskProofs": {"shot": PNG_URI}},
        )["app"]

        url = app["taskProofs"]["shot"]
        assert url.startswith("http://testserver/uploads/")
        served = http.get(url.replace("http://testserver", ""))
        assert served.status_code == 200
        assert served.content == b"\x89PNG tiny"


class _TestClientSession:
    """Adapts TestClient to the subset of requests.Session that RemoteClient uses."""

    def __init__(self, client):
        self.client = client
        self.headers = {}

    def get(self, url, params=None, timeout=None):
        return self.client.get("/exec", params=params)

    def post(self, url, data=None, headers=None, timeout=None):
        return self.client.post("/exec", content=data, headers=headers)

    def close(self):
        pass


class TestRemoteBackendAgainstServer:
    @pytest.fixture
    def remote_service(self, http):
        client = RemoteClient("http://testserver/exec")
        client.session = _TestClientSession(http)
        return PortalService(RemoteBackend(client))

    def test_full_flow(self, remote_service, sent_emails):
        application = remote_service.submit_application(
            {"email": "Ada@Example.com", "fullName": "Ada", "taskProofs": {"t1": "@handle"}}
        )

        invite = remote_service.approve(application.id)

        stored = remote_service.get_application(application.id)
        assert stored.status is ApplicationStatus.APPROVED
        assert stored.email == "ada@example.com"
        assert remote_service.redeem_code(invite.code).valid is True
        assert remote_service.redeem_code(invite.code).valid is True
        # The collaborator sent the email, not the remote caller
        assert len(sent_emails) == 1

    def test_not_found_round_trips(self, remote_service):
        with pytest.raises(NotFound):
            remote_service.backend.update_application("missing", {"adminNote": "x"})

    def test_batch_approve_over_the_wire(self, remote_service, sent_emails):
        ids = [
            remote_service.submit_application({"email": f"s{i}@example.com", "fullName": "S"}).id
            for i in range(3)
        ]

        result = remote_service.batch_approve(ids + ["missing"])

        assert result.count == 3
        assert list(result.failed) == ["missing"]
        assert len(remote_service.list_codes()) == 3

    def test_inline_proof_is_hosted_by_the_collaborator(self, remote_service, http, challenge_config):
        remote_service.save_config(challenge_config)
        application = remote_service.submit_application({"email": "a@example.com", "fullName": "A"})

        proof = remote_service.submit_proof(application.id, "c2", PNG_URI)

        assert proof.ref.startswith("http://testserver/uploads/")
        stored = remote_service.get_application(application.id).task_proofs["c2"]
        assert stored == proof
        served = http.get(proof.ref.replace("http://testserver", ""))
        assert served.content == b"\x89PNG tiny"
