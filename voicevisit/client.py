"""HTTP client for the credential and session-provisioning services."""

from __future__ import annotations

import logging
from typing import Optional

import aiohttp
from pydantic import BaseModel, ValidationError

from .config import Config
from .errors import AuthenticationError, ProvisioningError
from .realtime.models import RealtimeSessionDetails

logger = logging.getLogger(__name__)


class UserSummary(BaseModel):
    id: str
    username: str
    role: str


class LoginResponse(BaseModel):
    accessToken: str
    tokenType: str
    expiresIn: int
    user: UserSummary


async def _post_json(
    session: Optional[aiohttp.ClientSession],
    url: str,
    payload: dict,
    headers: Optional[dict] = None,
) -> tuple[int, str, Optional[dict]]:
    owns_session = session is None
    if owns_session:
        session = aiohttp.ClientSession()
    try:
        async with session.post(url, json=payload, headers=headers) as response:
            text = await response.text()
            body = None
            if 200 <= response.status < 300:
                body = await response.json(content_type=None)
            return response.status, text, body
    finally:
        if owns_session:
            await session.close()


async def login(
    username: str,
    password: str,
    dob: str,
    *,
    api_base: str = Config.API_BASE,
    session: Optional[aiohttp.ClientSession] = None,
) -> LoginResponse:
    """Exchange patient credentials for a bearer token."""
    try:
        status, text, body = await _post_json(
            session,
            f"{api_base}/api/login",
            {"username": username, "password": password, "dob": dob},
        )
    except aiohttp.ClientError as error:
        raise AuthenticationError(f"Unable to reach the sign-in service: {error}") from error
    except ValueError as error:
        raise AuthenticationError(f"Unexpected sign-in response: {error}") from error

    if body is None:
        logger.warning("Login rejected with HTTP %s", status)
        raise AuthenticationError(f"{AuthenticationError.default_message} {text}".strip())
    try:
        return LoginResponse.model_validate(body)
    except ValidationError as error:
        raise AuthenticationError(f"Unexpected sign-in response: {error}") from error


async def create_realtime_session(
    access_token: str,
    *,
    api_base: str = Config.API_BASE,
    session: Optional[aiohttp.ClientSession] = None,
    voice: Optional[str] = None,
    hints: Optional[list[str]] = None,
) -> RealtimeSessionDetails:
    """Ask the provisioning service for short-lived realtime credentials."""
    payload: dict = {}
    if voice:
        payload["voice"] = voice
    if hints:
        payload["hints"] = list(hints)

    try:
        status, text, body = await _post_json(
            session,
            f"{api_base}/api/realtime/session",
            payload,
            headers={"Authorization": f"Bearer {access_token}"},
        )
    except aiohttp.ClientError as error:
        raise ProvisioningError(f"Unable to initialize voice session. {error}") from error
    except ValueError as error:
        raise ProvisioningError(f"Unable to initialize voice session. Unexpected response: {error}") from error

    if body is None:
        logger.warning("Session provisioning failed with HTTP %s", status)
        raise ProvisioningError(f"Unable to initialize voice session. {text}")
    try:
        details = RealtimeSessionDetails.model_validate(body)
    except ValidationError as error:
        raise ProvisioningError(f"Unable to initialize voice session. {error}") from error

    logger.info("Provisioned realtime session %s (%s)", details.sessionId, details.model)
    return details
