"""HTTP surface tests (FastAPI TestClient)."""
import pytest
from fastapi.testclient import TestClient

from voicecall.main import create_app


@pytest.fixture
def client(make_session, config):
    session, _ = make_session(auto_ack=True)
    app = create_app(session=session, config=config)
    with TestClient(app) as c:
        yield c


class TestUniversalEndpoints:

    def test_healthz(self, client):
        body = client.get("/healthz").json()
        assert body["ok"] is True
        assert body["service"] == "voicecall"
        assert body["call"]["state"] == "IDLE"


class TestCallEndpoints:

    def test_view_envelope(self, client):
        body = client.get("/v1/call", headers={"X-Correlation-ID": "req_test"}).json()
        assert body["ok"] is True
        assert body["operation"] == "call_view"
        assert body["correlation_id"] == "req_test"
        assert body["data"]["state"] == "IDLE"
        assert body["data"]["status_text"] == "Ready to connect"

    def test_generated_correlation_id(self, client):
        body = client.get("/v1/call").json()
        assert body["correlation_id"].startswith("req_")
        assert len(body["correlation_id"]) == 16

    def test_start_talk_end(self, client):
        body = client.post("/v1/call/start", json={"assistant_id": "asst-http"}).json()
        assert body["data"]["accepted"] is True
        assert body["data"]["view"]["state"] == "ACTIVE"
        assert body["data"]["view"]["status_text"] == "Listening..."

        client.post("/v1/call/events", json={"type": "transcript", "role": "user", "transcript": "hello"})
        body = client.post(
            "/v1/call/events", json={"type": "transcript", "role": "assistant", "transcript": "hi"},
        ).json()
        assert body["data"]["processed"] is True
        assert [t["text"] for t in body["data"]["view"]["turns"]] == ["hello", "hi"]

        body = client.post("/v1/call/end").json()
        assert body["data"]["view"]["state"] == "ENDED"
        assert body["data"]["view"]["status_text"] == "Call ended"

    def test_start_without_body_uses_configured_assistant(self, client):
        body = client.post("/v1/call/start").json()
        assert body["data"]["accepted"] is True

    def test_rejected_command_is_not_an_http_error(self, client):
        resp = client.post("/v1/call/end")
        assert resp.status_code == 200
        assert resp.json()["ok"] is True
        assert resp.json()["data"]["accepted"] is False

    def test_mute(self, client):
        client.post("/v1/call/start", json={})
        body = client.post("/v1/call/mute", json={"muted": True}).json()
        assert body["data"]["accepted"] is True
        assert body["data"]["view"]["muted"] is True

    def test_mute_requires_flag(self, client):
        assert client.post("/v1/call/mute", json={}).status_code == 422

    def test_unrecognized_event_is_reported(self, client):
        body = client.post("/v1/call/events", json=[1, 2, 3]).json()
        assert body["ok"] is True
        assert body["data"]["processed"] is False

    def test_invalid_json(self, client):
        resp = client.post(
            "/v1/call/events", content=b"{broken", headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_JSON"

    def test_diagnostics(self, client):
        client.post("/v1/call/events", json={"type": "mystery", "token": "abc"})
        body = client.get("/v1/call/diagnostics").json()
        recent = body["data"]["recent"]
        assert recent[-1]["category"] == "unrecognized"
        assert recent[-1]["detail"]["token"] == "[REDACTED]"
        assert body["data"]["stats"]["total"] >= 1
