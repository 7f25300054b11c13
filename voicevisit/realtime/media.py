"""Local microphone capture and remote audio output for a realtime session."""

from __future__ import annotations

import logging
from typing import Callable, Optional, Union

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder
from av.error import FFmpegError
from av.frame import Frame

from ..config import Config
from ..errors import CaptureUnavailableError

logger = logging.getLogger(__name__)

AudioSink = Union[MediaRecorder, MediaBlackhole]


class MicrophoneCapture:
    """Owns the hardware capture for the lifetime of one session."""

    def __init__(self, track: MediaStreamTrack, player: Optional[MediaPlayer] = None) -> None:
        self.track = track
        self._player = player

    @classmethod
    def open(
        cls,
        device: str = Config.MIC_DEVICE,
        format: Optional[str] = Config.MIC_FORMAT,
    ) -> MicrophoneCapture:
        """
        Open the microphone through FFmpeg.

        Args:
            device: FFmpeg input name, e.g. ``default`` for PulseAudio or ``:0`` for AVFoundation
            format: FFmpeg input format (``pulse``, ``alsa``, ``avfoundation``, ``dshow``)

        Raises:
            CaptureUnavailableError: the device cannot be opened or has no audio stream
        """
        try:
            player = MediaPlayer(device, format=format)
        except (FFmpegError, OSError) as error:
            raise CaptureUnavailableError(f"Microphone capture is unavailable: {error}") from error

        if player.audio is None:
            raise CaptureUnavailableError(f"No audio stream on capture device {device!r}")

        logger.info("Microphone capture opened on %s (%s)", device, format or "auto")
        return cls(player.audio, player)

    @property
    def active(self) -> bool:
        return self.track.readyState == "live"

    def stop(self) -> None:
        if self.active:
            self.track.stop()
            logger.info("Microphone capture stopped")


class FirstFrameRelay(MediaStreamTrack):
    """Relays an inbound track and reports when its first frame arrives."""

    def __init__(self, source: MediaStreamTrack, on_first_frame: Callable[[], None]) -> None:
        super().__init__()
        self.kind = source.kind
        self.source = source
        self._on_first_frame: Optional[Callable[[], None]] = on_first_frame

    async def recv(self) -> Frame:
        frame = await self.source.recv()
        if self._on_first_frame is not None:
            callback, self._on_first_frame = self._on_first_frame, None
            callback()
        return frame


def create_audio_sink(
    output: Optional[str] = Config.AUDIO_OUTPUT,
    format: Optional[str] = Config.AUDIO_OUTPUT_FORMAT,
) -> AudioSink:
    """Return where assistant audio goes: a recorder/device, or nowhere."""
    if output:
        logger.info("Assistant audio routed to %s (%s)", output, format or "auto")
        return MediaRecorder(output, format=format)
    return MediaBlackhole()
