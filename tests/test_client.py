import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from voicevisit.client import create_realtime_session, login
from voicevisit.errors import AuthenticationError, ProvisioningError

SESSION = {
    "sessionId": "sess_123",
    "model": "gpt-4o-realtime-preview-2025-08-28",
    "expiresAt": 1893456000,
    "clientSecret": {"value": "ek_abc", "expiresAt": 1893456060},
    "iceServers": [{"urls": "stun:stun.example.com:3478"}],
    "settings": {"requireManualMicEnable": True, "requireEnglishGreeting": False},
}


@pytest.fixture
async def api():
    seen = []

    async def handle_login(request):
        body = await request.json()
        seen.append(("login", body))
        if body.get("password") != "PatientDemo!123":
            return web.json_response({"error": "INVALID_CREDENTIALS"}, status=401)
        return web.json_response(
            {
                "accessToken": "token-abc",
                "tokenType": "Bearer",
                "expiresIn": 900,
                "user": {"id": "patient-001", "role": "patient", "username": body["username"]},
            }
        )

    async def handle_session(request):
        seen.append(("session", request.headers.get("Authorization"), await request.json()))
        if request.headers.get("Authorization") != "Bearer token-abc":
            return web.json_response({"error": "INVALID_TOKEN"}, status=401)
        return web.json_response(SESSION)

    app = web.Application()
    app.router.add_post("/api/login", handle_login)
    app.router.add_post("/api/realtime/session", handle_session)
    server = TestServer(app)
    await server.start_server()
    server.seen = seen
    server.base = str(server.make_url("")).rstrip("/")
    try:
        yield server
    finally:
        await server.close()


async def test_login(api):
    result = await login("patient.one@example.com", "PatientDemo!123", "1985-04-12", api_base=api.base)
    assert result.accessToken == "token-abc"
    assert result.user.id == "patient-001"
    assert api.seen[0] == (
        "login",
        {"username": "patient.one@example.com", "password": "PatientDemo!123", "dob": "1985-04-12"},
    )


async def test_login_failure_includes_server_body(api):
    with pytest.raises(AuthenticationError) as excinfo:
        await login("patient.one@example.com", "wrong-password", "1985-04-12", api_base=api.base)
    message = str(excinfo.value)
    assert message.startswith("Invalid credentials. Please verify your details and try again.")
    assert "INVALID_CREDENTIALS" in message


async def test_login_unreachable():
    with pytest.raises(AuthenticationError):
        await login("patient.one@example.com", "PatientDemo!123", "1985-04-12", api_base="http://127.0.0.1:1")


async def test_create_realtime_session(api):
    details = await create_realtime_session("token-abc", api_base=api.base, voice="verse", hints=["Be brief."])

    assert details.sessionId == "sess_123"
    assert details.clientSecret.value == "ek_abc"
    assert details.iceServers[0].urls == ["stun:stun.example.com:3478"]
    assert details.settings.requireManualMicEnable is True
    assert details.settings.requireEnglishGreeting is False
    assert api.seen[0] == ("session", "Bearer token-abc", {"voice": "verse", "hints": ["Be brief."]})


async def test_create_realtime_session_failure(api):
    with pytest.raises(ProvisioningError, match="Unable to initialize voice session. .*INVALID_TOKEN"):
        await create_realtime_session("stale-token", api_base=api.base)


@pytest.fixture
async def html_api():
    async def handle(request):
        return web.Response(text="<html>maintenance</html>", content_type="text/html")

    app = web.Application()
    app.router.add_post("/api/login", handle)
    app.router.add_post("/api/realtime/session", handle)
    server = TestServer(app)
    await server.start_server()
    try:
        yield str(server.make_url("")).rstrip("/")
    finally:
        await server.close()


async def test_login_with_non_json_success_body(html_api):
    with pytest.raises(AuthenticationError, match="Unexpected sign-in response"):
        await login("patient.one@example.com", "PatientDemo!123", "1985-04-12", api_base=html_api)


async def test_create_realtime_session_with_non_json_success_body(html_api):
    with pytest.raises(ProvisioningError, match="Unexpected response"):
        await create_realtime_session("token-abc", api_base=html_api)
