"""Exception hierarchy for the voice visit client and services."""

from __future__ import annotations

from typing import ClassVar, Optional


class VoiceVisitError(Exception):
    """Base exception for all voice visit errors."""

    default_message: ClassVar[str] = "Voice visit error."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigurationError(VoiceVisitError):
    """Required credentials or devices are missing; raised before any network call."""

    default_message = "Audio device or session credentials missing."


class AuthenticationError(VoiceVisitError):
    default_message = "Invalid credentials. Please verify your details and try again."


class ProvisioningError(VoiceVisitError):
    default_message = "Unable to initialize voice session."


class CaptureUnavailableError(VoiceVisitError):
    default_message = "Microphone capture is unavailable."


class HandshakeError(VoiceVisitError):
    """The signaling exchange failed or returned an unusable remote description."""

    default_message = "Failed to complete WebRTC handshake."

    def __init__(self, message: Optional[str] = None, *, status: Optional[int] = None, body: str = "") -> None:
        self.status = status
        self.body = body
        super().__init__(message)


class ConnectionLostError(VoiceVisitError):
    default_message = "Connection lost."


class ChannelError(VoiceVisitError):
    default_message = "Realtime channel error"


class SessionClosedError(VoiceVisitError):
    default_message = "Session was closed before negotiation finished."
