"""
Tests for the HTTP API.

Test coverage:
1. Create, status, listing and unlock over HTTP
2. Error codes map to HTTP statuses
3. Malformed input is rejected with 422
"""

import base64

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import CREATOR, RECIPIENT, STRANGER, UPLOAD_URL
from timecapsule.api.app import create_app, status_for
from timecapsule.core.orchestrator import UnlockOrchestrator
from timecapsule.core.state_machine import CapsuleStateMachine
from timecapsule.protocol.errors import CapsuleNotFound, NotYetUnlockable, StorageUnavailable
from timecapsule.storage.content_store import ContentStore

PAYLOAD = b"see you in ten years"


@pytest.fixture
def client(network, cipher, pipeline, submitter):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(network.handler))
    store = ContentStore(http_client, network.gateways, upload_url=UPLOAD_URL, retry_backoff=0.0)
    orchestrator = UnlockOrchestrator(
        store=store,
        cipher=cipher,
        pipeline=pipeline,
        state_machine=CapsuleStateMachine(submitter=submitter),
    )
    with TestClient(create_app(orchestrator, on_shutdown=http_client.aclose)) as test_client:
        yield test_client


def _create(client, target, payload=PAYLOAD):
    return client.post(
        "/capsules",
        json={
            "creator": CREATOR,
            "recipient": RECIPIENT,
            "title": "Letter",
            "content": base64.b64encode(payload).decode("ascii"),
            "contentType": "text/plain",
            "condition": {"kind": "timestamp", "target": target},
        },
    )


class TestCapsuleEndpoints:
    def test_create_then_unlock(self, client, clock):
        created = _create(client, clock.timestamp)
        assert created.status_code == 201
        assert created.json()["capsuleId"] == 1
        assert created.json()["state"] == "locked"

        resp = client.post("/capsules/1/unlock", json={"requester": RECIPIENT})
        assert resp.status_code == 200
        body = resp.json()
        assert base64.b64decode(body["content"]) == PAYLOAD
        assert body["contentType"] == "text/plain"
        assert body["cached"] is False
        assert body["decision"]["approved"] is True

        again = client.post("/capsules/1/unlock", json={"requester": RECIPIENT})
        assert again.json()["cached"] is True
        assert client.get("/capsules/1").json()["state"] == "unlocked"

    def test_status_reports_remaining_time(self, client, clock):
        _create(client, clock.timestamp + 120)
        status = client.get("/capsules/1").json()
        assert status["remaining"] == 120
        assert status["unit"] == "seconds"
        assert status["condition"]["kind"] == "timestamp"
        assert status["title"] == "Letter"

    def test_list_by_recipient_and_creator(self, client, clock):
        _create(client, clock.timestamp + 60)
        _create(client, clock.timestamp)
        client.post("/capsules/2/unlock", json={"requester": RECIPIENT})

        received = client.get("/capsules", params={"recipient": RECIPIENT.lower()})
        assert received.status_code == 200
        capsules = received.json()["capsules"]
        assert [c["capsuleId"] for c in capsules] == [1, 2]
        assert [c["state"] for c in capsules] == ["locked", "unlocked"]
        assert capsules[0]["remaining"] == 60

        assert len(client.get("/capsules", params={"creator": CREATOR}).json()["capsules"]) == 2
        assert client.get("/capsules", params={"recipient": STRANGER}).json() == {"capsules": []}


class TestErrorMapping:
    def test_unknown_capsule_is_404(self, client):
        resp = client.get("/capsules/42")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "capsule_not_found"

    def test_too_early_is_425(self, client, clock):
        _create(client, clock.timestamp + 60)
        resp = client.post("/capsules/1/unlock", json={"requester": RECIPIENT})
        assert resp.status_code == 425
        error = resp.json()["error"]
        assert error["retryable"] is True
        assert error["details"]["remaining"] == 60

    def test_non_recipient_is_403(self, client, clock):
        _create(client, clock.timestamp)
        resp = client.post("/capsules/1/unlock", json={"requester": STRANGER})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "verification_failed"
        assert resp.json()["error"]["details"]["failedValidators"] == ["authorization"]

    def test_gateway_outage_is_502(self, client, clock, network):
        _create(client, clock.timestamp)
        network.take_down()
        resp = client.post("/capsules/1/unlock", json={"requester": RECIPIENT})
        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "content_not_retrievable"

    def test_status_for_codes(self):
        assert status_for(CapsuleNotFound(1)) == 404
        assert status_for(NotYetUnlockable(5)) == 425
        assert status_for(StorageUnavailable("down")) == 502


class TestInputValidation:
    def test_bad_base64_is_422(self, client, clock):
        resp = client.post(
            "/capsules",
            json={
                "creator": CREATOR,
                "recipient": RECIPIENT,
                "content": "not base64!!",
                "condition": {"kind": "timestamp", "target": clock.timestamp},
            },
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "invalid_input"

    def test_missing_requester_is_422(self, client):
        assert client.post("/capsules/1/unlock", json={}).status_code == 422

    def test_listing_needs_exactly_one_identity(self, client):
        assert client.get("/capsules").status_code == 422
        both = client.get("/capsules", params={"recipient": RECIPIENT, "creator": CREATOR})
        assert both.status_code == 422
        assert both.json()["error"]["code"] == "invalid_input"
