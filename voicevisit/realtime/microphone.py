"""Consent gate between microphone capture and transmission."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from aiortc import MediaStreamTrack
from av import AudioFrame
from av.frame import Frame

from .callbacks import invoke

logger = logging.getLogger(__name__)


def silence_like(frame: AudioFrame) -> AudioFrame:
    """Return a zeroed frame with the same shape and timing as ``frame``."""
    silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
    for plane in silent.planes:
        plane.update(bytes(plane.buffer_size))
    silent.pts = frame.pts
    silent.sample_rate = frame.sample_rate
    if frame.time_base is not None:
        silent.time_base = frame.time_base
    return silent


class GatedAudioTrack(MediaStreamTrack):
    """Audio track that forwards captured frames only while enabled.

    While disabled it keeps pulling from the capture and sends silence instead,
    so muting never stops the hardware.
    """

    kind = "audio"

    def __init__(self, source: MediaStreamTrack) -> None:
        super().__init__()
        self.source = source
        self.enabled = False

    async def recv(self) -> Frame:
        frame = await self.source.recv()
        if self.enabled or not isinstance(frame, AudioFrame):
            return frame
        return silence_like(frame)

    def stop(self) -> None:
        super().stop()
        self.source.stop()


class MicrophoneGate:
    """Two-state gate (disabled/enabled) over a :class:`GatedAudioTrack`.

    Transmission can only be enabled while a live capture is attached, and the
    caller is notified on every real transition.
    """

    def __init__(
        self,
        *,
        on_change: Optional[Callable[[bool], None]] = None,
        auto_enable_allowed: bool = False,
    ) -> None:
        self.on_change = on_change
        self.auto_enable_allowed = auto_enable_allowed
        self._track: Optional[GatedAudioTrack] = None
        self._enabled = False
        self._auto_enable_fired = False

    @property
    def captured(self) -> bool:
        track = self._track
        return track is not None and track.readyState == "live" and track.source.readyState == "live"

    @property
    def enabled(self) -> bool:
        return self._enabled and self.captured

    def attach(self, track: GatedAudioTrack) -> None:
        track.enabled = self._enabled
        self._track = track

        def on_ended() -> None:
            if track is self._track:
                self._capture_ended()

        track.on("ended", on_ended)
        track.source.on("ended", on_ended)

    def set_enabled(self, enabled: bool) -> bool:
        """Move the gate to ``enabled``. Returns True if the state changed."""
        if enabled and not self.captured:
            logger.debug("Ignoring microphone enable without an active capture")
            return False
        if enabled == self._enabled:
            return False

        self._enabled = enabled
        if self._track is not None:
            self._track.enabled = enabled
        logger.info("Microphone %s", "enabled" if enabled else "disabled")
        invoke(self.on_change, enabled, name="on_microphone_state_change")
        return True

    def enable(self) -> bool:
        return self.set_enabled(True)

    def disable(self) -> bool:
        return self.set_enabled(False)

    def auto_enable(self) -> bool:
        """Enable once after the greeting, unless the policy requires manual control."""
        if not self.auto_enable_allowed or self._auto_enable_fired:
            return False
        self._auto_enable_fired = True
        return self.enable()

    def _capture_ended(self) -> None:
        if not self._enabled:
            return
        logger.warning("Microphone capture ended; transmission disabled")
        self._enabled = False
        self._track.enabled = False
        invoke(self.on_change, False, name="on_microphone_state_change")

    def release(self) -> None:
        """Disable transmission and forget the capture (session close)."""
        self.disable()
        self._track = None
