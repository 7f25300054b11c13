"""In-memory demo patient directory with scrypt password hashes."""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Optional, Tuple

from ..config import Config

logger = logging.getLogger(__name__)

SCRYPT_N = 16384
SCRYPT_R = 8
SCRYPT_P = 1
SCRYPT_KEY_LENGTH = 64


@dataclass(frozen=True)
class DemoUser:
    id: str
    username: str
    dob: str  # ISO YYYY-MM-DD
    role: str
    password_salt: str
    password_hash: str


def hash_password(password: str, salt: str) -> str:
    digest = hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
        dklen=SCRYPT_KEY_LENGTH,
    )
    return digest.hex()


def derive_password_material(
    password: str = Config.DEMO_USER_PASSWORD,
    encoded: Optional[str] = Config.DEMO_USER_PASSWORD_HASH,
) -> Tuple[str, str]:
    """Return ``(salt, hash)`` from ``salt:hash`` config, or hash ``password`` with a fresh salt."""
    if encoded:
        salt, _, digest = encoded.partition(":")
        if not salt or not digest:
            raise ValueError('DEMO_USER_PASSWORD_HASH must be in format "salt:hash"')
        return salt, digest
    salt = secrets.token_hex(16)
    return salt, hash_password(password, salt)


def _build_users() -> list[DemoUser]:
    salt, digest = derive_password_material()
    return [
        DemoUser(
            id="patient-001",
            username="patient.one@example.com",
            dob="1985-04-12",
            role="patient",
            password_salt=salt,
            password_hash=digest,
        ),
    ]


_users = _build_users()


def find_demo_user(username: str) -> Optional[DemoUser]:
    wanted = username.lower()
    for user in _users:
        if user.username.lower() == wanted:
            return user
    return None


def verify_password(user: DemoUser, password: str) -> bool:
    computed = hash_password(password, user.password_salt)
    return hmac.compare_digest(computed, user.password_hash)
