import pytest
from fastapi.testclient import TestClient

from voicevisit.api_server import app
from voicevisit.auth.tokens import create_auth_token
from voicevisit.config import Config
from voicevisit.provisioning import router as provisioning_router
from voicevisit.provisioning.router import UpstreamSessionError, build_instructions

UPSTREAM = {
    "id": "sess_123",
    "model": "gpt-4o-realtime-preview-2025-08-28",
    "expires_at": 1893456000,
    "client_secret": {"value": "ek_abc", "expires_at": 1893456060},
    "ice_servers": [{"urls": ["stun:stun.example.com:3478"]}],
}


@pytest.fixture
def upstream(monkeypatch):
    calls = []

    async def fake_create(payload):
        calls.append(payload)
        return UPSTREAM

    monkeypatch.setattr(provisioning_router, "create_upstream_session", fake_create)
    return calls


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_header():
    token = create_auth_token(sub="patient-001", role="patient", username="patient.one@example.com")
    return {"Authorization": f"Bearer {token}"}


def test_session_is_provisioned(client, upstream, auth_header, monkeypatch):
    monkeypatch.setattr(Config, "REQUIRE_MANUAL_MIC_ENABLE", True)
    monkeypatch.setattr(Config, "REQUIRE_ENGLISH_GREETINGS", True)

    response = client.post("/api/realtime/session", json={}, headers=auth_header)

    assert response.status_code == 200
    assert response.json() == {
        "sessionId": "sess_123",
        "model": "gpt-4o-realtime-preview-2025-08-28",
        "expiresAt": 1893456000,
        "clientSecret": {"value": "ek_abc", "expiresAt": 1893456060},
        "iceServers": [{"urls": ["stun:stun.example.com:3478"]}],
        "settings": {"requireManualMicEnable": True, "requireEnglishGreeting": True},
    }

    request = upstream[0]
    assert request["model"] == Config.OPENAI_REALTIME_MODEL
    assert request["voice"] == Config.REALTIME_VOICE
    assert request["instructions"].startswith("Respond strictly in English.")


def test_voice_and_hints_are_forwarded(client, upstream, auth_header):
    response = client.post(
        "/api/realtime/session",
        json={"voice": "alloy", "hints": ["Patient prefers short answers."]},
        headers=auth_header,
    )
    assert response.status_code == 200
    assert upstream[0]["voice"] == "alloy"
    assert upstream[0]["instructions"].endswith("\nPatient prefers short answers.")


def test_missing_token(client, upstream):
    response = client.post("/api/realtime/session", json={})
    assert response.status_code == 401
    assert response.json() == {"error": "MISSING_TOKEN"}
    assert upstream == []


def test_non_bearer_token(client, upstream):
    response = client.post("/api/realtime/session", json={}, headers={"Authorization": "Basic abc"})
    assert response.status_code == 401
    assert response.json() == {"error": "MISSING_TOKEN"}


def test_invalid_token(client, upstream):
    response = client.post("/api/realtime/session", json={}, headers={"Authorization": "Bearer not.a.jwt"})
    assert response.status_code == 401
    assert response.json() == {"error": "INVALID_TOKEN"}
    assert upstream == []


def test_invalid_body(client, upstream, auth_header):
    response = client.post("/api/realtime/session", json={"hints": "not-a-list"}, headers=auth_header)
    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"
    assert "hints" in response.json()["details"]


def test_upstream_rejection_is_a_bad_gateway(client, auth_header, monkeypatch):
    async def rejecting(payload):
        raise UpstreamSessionError(401, "Unauthorized", '{"error": "bad key"}')

    monkeypatch.setattr(provisioning_router, "create_upstream_session", rejecting)
    response = client.post("/api/realtime/session", json={}, headers=auth_header)
    assert response.status_code == 502
    assert response.json() == {"error": "OPENAI_SESSION_INIT_FAILED", "details": "Unauthorized"}


def test_unexpected_failure_is_internal_error(client, auth_header, monkeypatch):
    async def broken(payload):
        raise RuntimeError("boom")

    monkeypatch.setattr(provisioning_router, "create_upstream_session", broken)
    response = client.post("/api/realtime/session", json={}, headers=auth_header)
    assert response.status_code == 500
    assert response.json() == {"error": "INTERNAL_SERVER_ERROR"}


def test_instructions_without_english_policy(monkeypatch):
    monkeypatch.setattr(Config, "REQUIRE_ENGLISH_GREETINGS", False)
    assert build_instructions() == Config.DEFAULT_GREETING_INSTRUCTIONS
    assert build_instructions(["a", "b"]) == f"{Config.DEFAULT_GREETING_INSTRUCTIONS}\na\nb"
