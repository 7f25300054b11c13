"""FastAPI router for patient sign-in."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from ..config import Config
from .demo_users import find_demo_user, verify_password
from .tokens import create_auth_token

logger = logging.getLogger(__name__)
router = APIRouter(tags=["auth"])


class LoginRequest(BaseModel):
    """Credentials a patient signs in with."""
    username: str = Field(min_length=3, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(min_length=8)
    dob: str = Field(pattern=r"\d{4}-\d{2}-\d{2}")


def field_errors(error: ValidationError) -> dict[str, list[str]]:
    """Flatten pydantic errors into ``{field: [messages]}``."""
    details: dict[str, list[str]] = {}
    for item in error.errors():
        field = ".".join(str(part) for part in item["loc"]) or "body"
        details.setdefault(field, []).append(item["msg"])
    return details


@router.post("/api/login")
async def login(payload: Any = Body(default=None)):
    """Verify username, password and date of birth, then issue a bearer token."""
    try:
        request = LoginRequest.model_validate(payload if payload is not None else {})
    except ValidationError as error:
        return JSONResponse(
            status_code=400,
            content={"error": "VALIDATION_ERROR", "details": field_errors(error)},
        )

    user = find_demo_user(request.username)
    if user is None or user.dob != request.dob or not verify_password(user, request.password):
        logger.info("Rejected sign-in for %s", request.username)
        return JSONResponse(status_code=401, content={"error": "INVALID_CREDENTIALS"})

    token = create_auth_token(sub=user.id, role=user.role, username=user.username)
    logger.info("Issued access token for %s", user.id)
    return {
        "accessToken": token,
        "tokenType": "Bearer",
        "expiresIn": Config.ACCESS_TOKEN_TTL_SECONDS,
        "user": {
            "id": user.id,
            "role": user.role,
            "username": user.username,
        },
    }
