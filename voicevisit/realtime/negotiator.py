"""Peer-connection negotiation with the realtime endpoint."""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Union

import aiohttp
from aiortc import MediaStreamTrack, RTCDataChannel, RTCPeerConnection, RTCSessionDescription
from aiortc.contrib.media import MediaBlackhole

from ..config import Config
from ..errors import (
    CaptureUnavailableError,
    ChannelError,
    ConfigurationError,
    ConnectionLostError,
    HandshakeError,
    SessionClosedError,
)
from .callbacks import invoke
from .events import CONTROL_CHANNEL_LABEL, Event, encode_event, event_type
from .media import AudioSink, FirstFrameRelay, MicrophoneCapture
from .microphone import GatedAudioTrack, MicrophoneGate
from .models import RealtimeSessionDetails
from .timeline import Milestone, Timeline

logger = logging.getLogger(__name__)

MicrophoneFactory = Callable[[], Union[MicrophoneCapture, Awaitable[MicrophoneCapture]]]


class NegotiatorState(str, Enum):
    IDLE = "idle"
    NEGOTIATING = "negotiating"
    OPEN = "open"
    CLOSED = "closed"
    FAILED = "failed"


class SessionNegotiator:
    """Owns the peer connection, the local capture and the control channel.

    ``connect()`` walks idle -> negotiating -> open. Any failure on the way
    releases what was acquired and leaves the negotiator ``failed``.
    """

    def __init__(
        self,
        details: RealtimeSessionDetails,
        *,
        timeline: Timeline,
        gate: MicrophoneGate,
        sink: Optional[AudioSink] = None,
        microphone_factory: Optional[MicrophoneFactory] = MicrophoneCapture.open,
        peer_connection_factory: Callable[..., RTCPeerConnection] = RTCPeerConnection,
        http_session: Optional[aiohttp.ClientSession] = None,
        signaling_base: str = Config.OPENAI_REALTIME_BASE,
        channel_wait_timeout: float = Config.CHANNEL_WAIT_TIMEOUT,
        channel_poll_interval: float = Config.CHANNEL_POLL_INTERVAL,
        on_channel_open: Optional[Callable[[RTCDataChannel], None]] = None,
        on_channel_message: Optional[Callable[[Union[str, bytes]], None]] = None,
        on_status: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        self.details = details
        self.timeline = timeline
        self.gate = gate
        self.state = NegotiatorState.IDLE
        self.on_channel_open = on_channel_open
        self.on_channel_message = on_channel_message
        self.on_status = on_status
        self.on_error = on_error

        self._sink = sink
        self._microphone_factory = microphone_factory
        self._peer_connection_factory = peer_connection_factory
        self._http_session = http_session
        self._signaling_base = signaling_base
        self._channel_wait_timeout = channel_wait_timeout
        self._channel_poll_interval = channel_poll_interval

        self.pc: Optional[RTCPeerConnection] = None
        self.capture: Optional[MicrophoneCapture] = None
        self.local_track: Optional[GatedAudioTrack] = None
        self.channel: Optional[RTCDataChannel] = None
        self._sinks: List[AudioSink] = []
        self._closed = False

    @property
    def channel_open(self) -> bool:
        return self.channel is not None and self.channel.readyState == "open"

    async def connect(self) -> None:
        """Acquire the microphone, exchange descriptions and wait for the control channel."""
        self._check_not_closed()
        if self.state is not NegotiatorState.IDLE:
            raise RuntimeError(f"Negotiator already used (state={self.state.value})")
        self._validate()

        try:
            capture = self._microphone_factory()
            if inspect.isawaitable(capture):
                capture = await capture
        except CaptureUnavailableError:
            raise
        except Exception as error:
            raise CaptureUnavailableError(f"Microphone capture is unavailable: {error}") from error

        self.capture = capture
        if self._closed:
            await self._release()
            raise SessionClosedError()

        self._set_state(NegotiatorState.NEGOTIATING)
        try:
            await self._negotiate()
        except Exception as error:
            await self._release()
            if not self._closed:
                self._set_state(NegotiatorState.FAILED)
            elif not isinstance(error, SessionClosedError):
                raise SessionClosedError() from error
            raise

    def send(self, event: Event) -> bool:
        """Send one event if the control channel is open; otherwise drop it."""
        channel = self.channel
        if channel is None or channel.readyState != "open":
            logger.debug("Dropping %s event: control channel not open", event_type(event))
            return False
        try:
            channel.send(encode_event(event))
        except Exception as error:
            logger.warning("Failed to send %s event: %s", event_type(event), error)
            return False
        return True

    async def close(self) -> None:
        """Tear everything down. Safe from any state and on repeated calls."""
        if self._closed:
            return
        self._closed = True
        logger.info("Closing realtime session %s", self.details.sessionId or "(unnamed)")
        await self._release()
        if self.state is not NegotiatorState.FAILED:
            self._set_state(NegotiatorState.CLOSED)

    def _validate(self) -> None:
        if self._microphone_factory is None:
            raise ConfigurationError("No microphone capture device configured.")
        if not self.details.model:
            raise ConfigurationError("Realtime session is missing a model identifier.")
        if not self.details.clientSecret.value:
            raise ConfigurationError("Realtime session is missing its client secret.")

    async def _negotiate(self) -> None:
        pc = self._peer_connection_factory(configuration=self.details.rtc_configuration())
        self.pc = pc

        self.local_track = GatedAudioTrack(self.capture.track)
        self.gate.attach(self.local_track)
        pc.addTrack(self.local_track)

        pc.on("track", self._handle_track)
        pc.on("datachannel", self._handle_remote_channel)
        pc.on("connectionstatechange", self._handle_connection_state)

        # The channel has to exist before the offer for it to be negotiated.
        self._attach_channel(pc.createDataChannel(CONTROL_CHANNEL_LABEL))

        offer = await pc.createOffer()
        self.timeline.mark(Milestone.OFFER_CREATED)
        await pc.setLocalDescription(offer)
        self._check_not_closed()

        answer_sdp = await self._exchange(pc.localDescription.sdp)
        self.timeline.mark(Milestone.ANSWER_RECEIVED)
        self._check_not_closed()
        try:
            await pc.setRemoteDescription(RTCSessionDescription(sdp=answer_sdp, type="answer"))
        except (ValueError, IndexError, KeyError) as error:
            raise HandshakeError(f"Malformed remote description: {error}", body=answer_sdp) from error
        self._check_not_closed()

        self._set_state(NegotiatorState.OPEN)

        if not self.channel_open and not await self._wait_for_channel():
            self._check_not_closed()
            logger.warning("Control channel did not open within %.1fs", self._channel_wait_timeout)
            invoke(self.on_status, "Realtime channel unavailable.", name="on_status")

    async def _exchange(self, offer_sdp: str) -> str:
        """POST the offer to the signaling endpoint and return the answer SDP."""
        headers = {
            "Authorization": f"Bearer {self.details.clientSecret.value}",
            "Content-Type": "application/sdp",
        }
        session = self._http_session
        owns_session = session is None
        if owns_session:
            session = aiohttp.ClientSession()
        try:
            async with session.post(
                self._signaling_base,
                params={"model": self.details.model},
                data=offer_sdp,
                headers=headers,
            ) as response:
                body = await response.text()
                if not 200 <= response.status < 300:
                    logger.error("Signaling failed with HTTP %s", response.status)
                    raise HandshakeError(
                        f"Failed to complete WebRTC handshake: {body}",
                        status=response.status,
                        body=body,
                    )
                return body
        except aiohttp.ClientError as error:
            raise HandshakeError(f"Failed to complete WebRTC handshake: {error}") from error
        finally:
            if owns_session:
                await session.close()

    async def _wait_for_channel(self) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._channel_wait_timeout
        while not self.channel_open:
            if self._closed or loop.time() >= deadline:
                return False
            await asyncio.sleep(self._channel_poll_interval)
        return True

    def _attach_channel(self, channel: RTCDataChannel) -> None:
        self.channel = channel

        def on_open() -> None:
            self._handle_channel_open(channel)

        def on_message(message: Union[str, bytes]) -> None:
            invoke(self.on_channel_message, message, name="on_channel_message")

        def on_error(error: Any = None) -> None:
            logger.error("Control channel %s error: %s", channel.label, error)
            invoke(self.on_error, ChannelError(), name="on_error")

        def on_close() -> None:
            logger.info("Control channel %s closed", channel.label)

        channel.on("open", on_open)
        channel.on("message", on_message)
        channel.on("error", on_error)
        channel.on("close", on_close)

        # A remotely opened channel can already be open when it is announced.
        if channel.readyState == "open":
            self._handle_channel_open(channel)

    def _handle_channel_open(self, channel: RTCDataChannel) -> None:
        if channel is not self.channel or self._closed:
            logger.debug("Ignoring open event from superseded channel %s", channel.label)
            return
        logger.info("Control channel %s open", channel.label)
        invoke(self.on_status, "Voice channel open. Awaiting greeting...", name="on_status")
        invoke(self.on_channel_open, channel, name="on_channel_open")

    def _handle_remote_channel(self, channel: RTCDataChannel) -> None:
        if channel.label != CONTROL_CHANNEL_LABEL:
            logger.debug("Ignoring unexpected data channel %s", channel.label)
            return
        if channel is self.channel:
            return
        logger.info("Remote peer opened control channel %s", channel.label)
        self._close_channel(self.channel)
        self._attach_channel(channel)

    def _handle_track(self, track: MediaStreamTrack) -> None:
        logger.info("Remote %s track received", track.kind)
        if track.kind == "audio" and not any(sink is self._sink for sink in self._sinks):
            relay = FirstFrameRelay(track, lambda: self.timeline.mark(Milestone.AUDIO_STARTED))
            sink = self._sink if self._sink is not None else MediaBlackhole()
            sink.addTrack(relay)
        else:
            # Unplayed tracks are drained.
            sink = MediaBlackhole()
            sink.addTrack(track)
        self._sinks.append(sink)
        task = asyncio.ensure_future(sink.start())
        task.add_done_callback(self._log_sink_failure)

    @staticmethod
    def _log_sink_failure(task: asyncio.Future) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error("Remote audio output failed: %s", task.exception())

    async def _handle_connection_state(self) -> None:
        if self.pc is None:
            return
        state = self.pc.connectionState
        logger.info("Connection state: %s", state)
        invoke(self.on_status, f"Connection state: {state}", name="on_status")
        if state in ("failed", "disconnected") and not self._closed:
            self._set_state(NegotiatorState.FAILED)
            invoke(self.on_error, ConnectionLostError(f"Connection {state}"), name="on_error")

    def _check_not_closed(self) -> None:
        if self._closed:
            raise SessionClosedError()

    @staticmethod
    def _close_channel(channel: Optional[RTCDataChannel]) -> None:
        if channel is None:
            return
        try:
            channel.close()
        except Exception:
            logger.debug("Ignoring error while closing control channel %s", channel.label, exc_info=True)

    def _set_state(self, state: NegotiatorState) -> None:
        if state is not self.state:
            logger.debug("Negotiator %s -> %s", self.state.value, state.value)
            self.state = state

    async def _release(self) -> None:
        """Best-effort release of every acquired resource; each step is independent."""
        channel, self.channel = self.channel, None
        self._close_channel(channel)

        self.gate.release()

        pc, self.pc = self.pc, None
        if pc is not None:
            try:
                await pc.close()
            except Exception:
                logger.debug("Ignoring error while closing peer connection", exc_info=True)

        sinks, self._sinks = self._sinks, []
        for sink in sinks:
            try:
                await sink.stop()
            except Exception:
                logger.debug("Ignoring error while stopping audio output", exc_info=True)

        track, self.local_track = self.local_track, None
        if track is not None:
            try:
                track.stop()
            except Exception:
                logger.debug("Ignoring error while stopping local track", exc_info=True)

        capture, self.capture = self.capture, None
        if capture is not None:
            try:
                capture.stop()
            except Exception:
                logger.debug("Ignoring error while stopping microphone capture", exc_info=True)
