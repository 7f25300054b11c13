"""FastAPI router that provisions short-lived realtime sessions."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import aiohttp
import jwt
from fastapi import APIRouter, Body, Header
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from ..auth.router import field_errors
from ..auth.tokens import verify_auth_token
from ..config import Config

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/realtime", tags=["realtime"])


class SessionRequest(BaseModel):
    """Optional voice and extra instruction hints for the session."""
    voice: Optional[str] = None
    hints: Optional[List[str]] = None


class UpstreamSessionError(Exception):
    """The realtime API refused to create a session."""

    def __init__(self, status: int, reason: str, body: str) -> None:
        super().__init__(f"HTTP {status}: {reason}")
        self.status = status
        self.reason = reason
        self.body = body


def build_instructions(hints: Optional[List[str]] = None) -> str:
    instructions = Config.DEFAULT_GREETING_INSTRUCTIONS
    if Config.REQUIRE_ENGLISH_GREETINGS:
        instructions = (
            "Respond strictly in English. Do not use any other language even if the patient does. "
            f"{instructions}"
        )
    if hints:
        instructions = "\n".join([instructions, *hints])
    return instructions


async def create_upstream_session(payload: dict) -> dict:
    """POST to the realtime sessions API with the server key and return its JSON."""
    headers = {
        "Authorization": f"Bearer {Config.OPENAI_API_KEY}",
        "Content-Type": "application/json",
    }
    async with aiohttp.ClientSession() as session:
        async with session.post(f"{Config.OPENAI_API_BASE}/realtime/sessions", json=payload, headers=headers) as response:
            if not 200 <= response.status < 300:
                raise UpstreamSessionError(response.status, response.reason or "", await response.text())
            return await response.json()


@router.post("/session")
async def create_session(
    payload: Any = Body(default=None),
    authorization: Optional[str] = Header(default=None),
):
    """Verify the caller's token and return realtime connection credentials."""
    if not authorization or not authorization.startswith("Bearer "):
        return JSONResponse(status_code=401, content={"error": "MISSING_TOKEN"})

    token = authorization[len("Bearer "):]
    try:
        verify_auth_token(token)
    except jwt.InvalidTokenError as error:
        logger.warning("Invalid auth token: %s", error)
        return JSONResponse(status_code=401, content={"error": "INVALID_TOKEN"})

    try:
        request = SessionRequest.model_validate(payload if payload is not None else {})
    except ValidationError as error:
        return JSONResponse(
            status_code=400,
            content={"error": "VALIDATION_ERROR", "details": field_errors(error)},
        )

    body = {
        "model": Config.OPENAI_REALTIME_MODEL,
        "voice": request.voice or Config.REALTIME_VOICE,
        "modalities": ["text", "audio", "video"],
        "instructions": build_instructions(request.hints),
    }

    try:
        upstream = await create_upstream_session(body)
    except UpstreamSessionError as error:
        logger.error("Failed to create OpenAI session: status=%s body=%s", error.status, error.body)
        return JSONResponse(
            status_code=502,
            content={"error": "OPENAI_SESSION_INIT_FAILED", "details": error.reason},
        )
    except Exception as error:
        logger.error("Unexpected error creating realtime session: %s", error, exc_info=True)
        return JSONResponse(status_code=500, content={"error": "INTERNAL_SERVER_ERROR"})

    client_secret = upstream.get("client_secret") or {}
    return {
        "sessionId": upstream.get("id"),
        "model": upstream.get("model"),
        "expiresAt": upstream.get("expires_at"),
        "clientSecret": {
            "value": client_secret.get("value"),
            "expiresAt": client_secret.get("expires_at"),
        },
        "iceServers": upstream.get("ice_servers") or [],
        "settings": {
            "requireManualMicEnable": Config.REQUIRE_MANUAL_MIC_ENABLE,
            "requireEnglishGreeting": Config.REQUIRE_ENGLISH_GREETINGS,
        },
    }
