"""Integration tests for API endpoints using FastAPI TestClient."""

from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from hydra_router.config import get_settings
from hydra_router.dependencies import build_engine
from hydra_router.domain.enums import ProviderId
from hydra_router.domain.exceptions import ProviderCallError
from hydra_router.main import create_app
from hydra_router.shared.providers.catalog import AUTO_BEST, GEMINI_FLASH, GROQ_LLAMA


@pytest.fixture
def settings():
    return get_settings(max_attempts=4, history_limit=6)


@pytest.fixture
def adapters(scripted_adapter):
    return {p: scripted_adapter(p, default=("Hello", " world")) for p in ProviderId}


@pytest.fixture
def engine(settings, adapters, credential_env):
    return build_engine(settings, credential_source=lambda: credential_env, adapters=adapters)


@pytest.fixture
def client(settings, engine):
    return TestClient(create_app(settings, engine=engine))


def _events(resp) -> list[dict]:
    return [
        json.loads(line[len("data: "):])
        for line in resp.text.splitlines()
        if line.startswith("data: ")
    ]


def _new_session(client, **body) -> str:
    resp = client.post("/api/v1/sessions", json=body)
    assert resp.status_code == 201
    return resp.json()["session_id"]


class TestHealthEndpoints:
    def test_health_check(self, client):
        resp = client.get("/api/v1/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["providers_online"] == len(ProviderId)
        assert "version" in data

    def test_degraded_without_credentials(self, settings, adapters):
        engine = build_engine(settings, credential_source=lambda: {}, adapters=adapters)
        client = TestClient(create_app(settings, engine=engine))
        assert client.get("/api/v1/health").json()["status"] == "degraded"

    def test_metrics_endpoint(self, client):
        client.get("/api/v1/health")
        resp = client.get("/api/v1/metrics")
        assert resp.status_code == 200
        assert b"http_requests_total" in resp.content
        assert b"provider_credentials" in resp.content

    def test_request_id_header(self, client):
        resp = client.get("/api/v1/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"


class TestModelEndpoints:
    def test_list_models(self, client):
        resp = client.get("/api/v1/models")
        assert resp.status_code == 200
        models = {m["model_id"]: m for m in resp.json()}
        assert models[GEMINI_FLASH]["supports_vision"] is True
        assert models[GEMINI_FLASH]["available"] is True
        assert models[GEMINI_FLASH]["fallbacks"][0] == GROQ_LLAMA
        assert models[GEMINI_FLASH]["race_candidates"] == []
        assert GROQ_LLAMA in models[AUTO_BEST]["race_candidates"]
        assert models[AUTO_BEST]["available"] is True


class TestProviderEndpoints:
    def test_health_snapshot(self, client):
        resp = client.get("/api/v1/providers/health")
        assert resp.status_code == 200
        snaps = {s["provider_id"]: s for s in resp.json()}
        assert set(snaps) == {p.value for p in ProviderId}
        assert snaps["GEMINI"]["credential_count"] == 2
        assert snaps["GEMINI"]["status"] == "HEALTHY"

    def test_reload_with_overrides(self, client):
        resp = client.post("/api/v1/providers/reload", json={"overrides": {"groq": ["extra-1"]}})
        assert resp.status_code == 200
        assert resp.json()["credential_counts"]["GROQ"] == 2

    def test_reload_without_body(self, client):
        resp = client.post("/api/v1/providers/reload")
        assert resp.status_code == 200
        assert resp.json()["credential_counts"]["GEMINI"] == 2

    def test_reload_unknown_provider(self, client):
        resp = client.post("/api/v1/providers/reload", json={"overrides": {"acme": ["k"]}})
        assert resp.status_code == 404

    def test_reset_clears_cooldown(self, client, engine, adapters):
        adapters[ProviderId.GEMINI].script = [
            ProviderCallError("GEMINI", "Quota exceeded, limit: 0", status_code=429)
        ]
        session_id = _new_session(client)
        client.post(f"/api/v1/sessions/{session_id}/messages", json={"text": "hi"})
        assert not engine.monitor.is_healthy(ProviderId.GEMINI)

        resp = client.post("/api/v1/providers/gemini/reset")
        assert resp.status_code == 200
        assert resp.json() == {"status": "reset", "provider_id": "GEMINI"}
        assert engine.monitor.is_healthy(ProviderId.GEMINI)

    def test_reset_unknown_provider(self, client):
        assert client.post("/api/v1/providers/acme/reset").status_code == 404


class TestSessionEndpoints:
    def test_create_session(self, client):
        resp = client.post(
            "/api/v1/sessions",
            json={
                "model_id": GROQ_LLAMA,
                "tools": [
                    {
                        "name": "lookup",
                        "parameters": [{"name": "id", "type": "integer", "required": True}],
                    }
                ],
            },
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["model_id"] == GROQ_LLAMA
        assert data["tools"] == ["lookup"]

    def test_invalid_tool_declaration(self, client):
        resp = client.post(
            "/api/v1/sessions",
            json={"tools": [{"name": "lookup", "parameters": [{"name": "x", "type": "date"}]}]},
        )
        assert resp.status_code == 422

    def test_send_message_streams_events(self, client):
        session_id = _new_session(client)
        resp = client.post(f"/api/v1/sessions/{session_id}/messages", json={"text": "hi"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")

        events = _events(resp)
        assert [e["text"] for e in events if "text" in e] == ["Hello", " world"]
        assert events[-1]["metadata"]["kind"] == "COMPLETED"
        assert events[-1]["metadata"]["provider"] == "GEMINI"

        history = client.get(f"/api/v1/sessions/{session_id}/history").json()
        assert history["limit"] == 6
        assert history["turns"] == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "Hello world"},
        ]

    def test_reroute_notice_is_streamed(self, client, adapters):
        adapters[ProviderId.GEMINI].script = [
            ProviderCallError("GEMINI", "Rate limit reached", status_code=429)
        ]
        session_id = _new_session(client)
        events = _events(
            client.post(f"/api/v1/sessions/{session_id}/messages", json={"text": "hi"})
        )
        assert events[0]["metadata"]["kind"] == "REROUTE"
        assert events[0]["metadata"]["category"] == "RATE_LIMITED"
        assert events[-1]["metadata"]["provider"] == "GROQ"

    def test_empty_message_rejected(self, client):
        session_id = _new_session(client)
        resp = client.post(f"/api/v1/sessions/{session_id}/messages", json={"text": ""})
        assert resp.status_code == 422

    def test_unknown_session(self, client):
        resp = client.post("/api/v1/sessions/missing/messages", json={"text": "hi"})
        assert resp.status_code == 404
        assert resp.json()["code"] == "SESSION_NOT_FOUND"

    def test_tool_result_for_undeclared_tool(self, client):
        session_id = _new_session(client)
        resp = client.post(
            f"/api/v1/sessions/{session_id}/tool-results",
            json={"tool_name": "lookup", "result": {"ok": True}},
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "VALIDATION_ERROR"

    def test_tool_result_streams(self, client):
        session_id = _new_session(client, tools=[{"name": "lookup"}])
        resp = client.post(
            f"/api/v1/sessions/{session_id}/tool-results",
            json={"tool_name": "lookup", "result": {"ok": True}},
        )
        assert _events(resp)[-1]["metadata"]["kind"] == "COMPLETED"

    def test_switch_model(self, client):
        session_id = _new_session(client)
        resp = client.put(f"/api/v1/sessions/{session_id}/model", json={"model_id": GROQ_LLAMA})
        assert resp.status_code == 200
        assert resp.json()["model_id"] == GROQ_LLAMA

        resp = client.put(f"/api/v1/sessions/{session_id}/model", json={"model_id": "made-up"})
        assert resp.status_code == 404
        assert resp.json()["code"] == "UNKNOWN_MODEL"

    def test_delete_session(self, client):
        session_id = _new_session(client)
        assert client.delete(f"/api/v1/sessions/{session_id}").status_code == 204
        assert client.get(f"/api/v1/sessions/{session_id}/history").status_code == 404
