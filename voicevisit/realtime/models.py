"""Connection credentials handed to a realtime session."""

from __future__ import annotations

from typing import List, Optional, Union

from aiortc import RTCConfiguration, RTCIceServer
from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class ClientSecret(_Frozen):
    value: str
    expiresAt: Optional[Union[str, int]] = Field(default=None, alias="expires_at")


class IceServerDescriptor(_Frozen):
    urls: List[str]
    username: Optional[str] = None
    credential: Optional[str] = None

    @field_validator("urls", mode="before")
    @classmethod
    def _wrap_single_url(cls, value):
        return [value] if isinstance(value, str) else value

    def to_rtc(self) -> RTCIceServer:
        return RTCIceServer(urls=list(self.urls), username=self.username, credential=self.credential)


class SessionSettings(_Frozen):
    """Policy flags set by the provisioning service."""

    requireManualMicEnable: bool = Field(default=True, alias="require_manual_mic_enable")
    requireEnglishGreeting: bool = Field(default=True, alias="require_english_greeting")


class RealtimeSessionDetails(_Frozen):
    """Everything needed to negotiate one session; immutable once issued."""

    sessionId: str = Field(default="", alias="session_id")
    model: str
    expiresAt: Optional[Union[str, int]] = Field(default=None, alias="expires_at")
    clientSecret: ClientSecret = Field(alias="client_secret")
    iceServers: List[IceServerDescriptor] = Field(default_factory=list, alias="ice_servers")
    settings: SessionSettings = Field(default_factory=SessionSettings)

    @field_validator("settings", mode="before")
    @classmethod
    def _default_settings(cls, value):
        return {} if value is None else value

    def rtc_configuration(self) -> Optional[RTCConfiguration]:
        if not self.iceServers:
            return None
        return RTCConfiguration(iceServers=[server.to_rtc() for server in self.iceServers])
