"""Public handle for a realtime greeting session."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple, Union

import aiohttp
from aiortc import RTCDataChannel, RTCPeerConnection

from ..config import Config
from ..errors import SessionClosedError
from .callbacks import invoke
from .events import (
    AUDIO_TRANSCRIPT_DONE,
    CONVERSATION_ITEM_CREATED,
    RESPONSE_FINISHED_TYPES,
    Event,
    decode_event,
    event_type,
    extract_text_delta,
    extract_user_text,
    response_create,
    response_id_of,
    session_update,
    user_image_item,
    user_text_item,
)
from .media import AudioSink, MicrophoneCapture, create_audio_sink
from .microphone import MicrophoneGate
from .models import RealtimeSessionDetails, SessionSettings
from .negotiator import MicrophoneFactory, NegotiatorState, SessionNegotiator
from .timeline import Milestone, Timeline, TimelineSnapshot
from .transcript import Speaker, TranscriptAssembler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GreetingScript:
    """Events sent once per control-channel open to start the greeting."""

    system_prompt: str
    response_instructions: str
    session_modalities: Tuple[str, ...] = ("text", "audio")
    response_modalities: Tuple[str, ...] = ("audio", "text")

    @classmethod
    def for_settings(cls, settings: SessionSettings) -> GreetingScript:
        return cls(
            system_prompt=Config.GREETING_SYSTEM_PROMPT,
            response_instructions=Config.greeting_instructions(settings.requireEnglishGreeting),
        )

    def events(self) -> List[Event]:
        return [
            session_update(self.system_prompt, self.session_modalities),
            response_create(self.response_instructions, self.system_prompt, self.response_modalities),
        ]


class GreetingSession:
    """One live session: negotiation, greeting, transcript, timeline and microphone consent.

    All state is per instance and discarded on :meth:`close`.
    """

    def __init__(
        self,
        details: RealtimeSessionDetails,
        *,
        sink: Optional[AudioSink] = None,
        on_transcript: Optional[Callable[[str], Any]] = None,
        on_status: Optional[Callable[[str], Any]] = None,
        on_error: Optional[Callable[[Exception], Any]] = None,
        on_timeline_update: Optional[Callable[[TimelineSnapshot], Any]] = None,
        on_microphone_state_change: Optional[Callable[[bool], Any]] = None,
        script: Optional[GreetingScript] = None,
        microphone_factory: Optional[MicrophoneFactory] = MicrophoneCapture.open,
        peer_connection_factory: Callable[..., RTCPeerConnection] = RTCPeerConnection,
        http_session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], float] = time.monotonic,
        signaling_base: str = Config.OPENAI_REALTIME_BASE,
        channel_wait_timeout: float = Config.CHANNEL_WAIT_TIMEOUT,
        channel_poll_interval: float = Config.CHANNEL_POLL_INTERVAL,
    ) -> None:
        self.details = details
        self.require_manual_mic = details.settings.requireManualMicEnable
        self.script = script or GreetingScript.for_settings(details.settings)
        self.on_status = on_status
        self.on_error = on_error
        self.greetings_sent = 0

        self._timeline = Timeline(clock=clock, on_update=on_timeline_update)
        self._transcript = TranscriptAssembler(on_transcript=on_transcript)
        self._gate = MicrophoneGate(
            on_change=on_microphone_state_change,
            auto_enable_allowed=not self.require_manual_mic,
        )
        self._negotiator = SessionNegotiator(
            details,
            timeline=self._timeline,
            gate=self._gate,
            sink=sink,
            microphone_factory=microphone_factory,
            peer_connection_factory=peer_connection_factory,
            http_session=http_session,
            signaling_base=signaling_base,
            channel_wait_timeout=channel_wait_timeout,
            channel_poll_interval=channel_poll_interval,
            on_channel_open=self._send_greeting,
            on_channel_message=self.handle_message,
            on_status=on_status,
            on_error=self._report_error,
        )

    @property
    def state(self) -> NegotiatorState:
        return self._negotiator.state

    @property
    def timeline(self) -> TimelineSnapshot:
        return self._timeline.snapshot()

    @property
    def transcript(self) -> str:
        return self._transcript.render()

    @property
    def transcript_segments(self):
        return self._transcript.segments

    @property
    def microphone_enabled(self) -> bool:
        return self._gate.enabled

    @property
    def microphone_captured(self) -> bool:
        return self._gate.captured

    async def start(self) -> GreetingSession:
        """Negotiate the session. Fatal start errors go to ``on_error`` once and are re-raised."""
        self._timeline.mark(Milestone.SESSION_CREATED)
        try:
            await self._negotiator.connect()
        except SessionClosedError:
            logger.info("Session closed before negotiation finished")
            raise
        except Exception as error:
            logger.error("Failed to start realtime session: %s", error)
            self._report_error(error)
            raise
        logger.info("Realtime session %s open", self.details.sessionId or "(unnamed)")
        return self

    def send_text(self, text: str) -> bool:
        """Send a user text message; a no-op when the control channel is not open."""
        if not text or not text.strip():
            return False
        return self._negotiator.send(user_text_item(text))

    def send_image(self, image: bytes) -> bool:
        """Send an image (base64-encoded on the wire); a no-op when the channel is not open."""
        if not image:
            return False
        return self._negotiator.send(user_image_item(bytes(image)))

    def set_microphone_enabled(self, enabled: bool) -> bool:
        return self._gate.set_enabled(enabled)

    async def close(self) -> None:
        await self._negotiator.close()

    def handle_message(self, raw: Union[str, bytes]) -> None:
        """Entry point for every inbound control-channel frame. Never raises."""
        try:
            self._process_event(raw)
        except Exception as e:
            logger.warning("Failed to process realtime event: %s", e, exc_info=True)

    def _process_event(self, raw: Union[str, bytes]) -> None:
        payload = decode_event(raw)
        if payload is None:
            return

        kind = event_type(payload)
        logger.debug("Realtime event %s", kind)
        response_id = response_id_of(payload)

        delta = extract_text_delta(payload)
        if delta and self._transcript.append_fragment(Speaker.ASSISTANT, delta, response_id):
            self._timeline.mark(Milestone.FIRST_TRANSCRIPT)

        if kind in RESPONSE_FINISHED_TYPES:
            invoke(self.on_status, "Greeting delivered.", name="on_status")
        elif kind == AUDIO_TRANSCRIPT_DONE:
            transcript = payload.get("transcript")
            if isinstance(transcript, str) and response_id:
                if self._transcript.set_final_transcript(response_id, transcript):
                    self._timeline.mark(Milestone.FIRST_TRANSCRIPT)
                if self._gate.auto_enable():
                    invoke(self.on_status, "Greeting complete. Your microphone is live.", name="on_status")
        elif kind == CONVERSATION_ITEM_CREATED:
            item = payload.get("item")
            if isinstance(item, dict) and item.get("role") == "user":
                user_text = extract_user_text(item)
                if user_text:
                    self._transcript.append_fragment(Speaker.PATIENT, user_text)

    def _send_greeting(self, channel: RTCDataChannel) -> None:
        sent = [self._negotiator.send(event) for event in self.script.events()]
        if all(sent):
            self.greetings_sent += 1
            logger.info("Greeting sequence sent on channel %s", channel.label)
        else:
            logger.warning("Greeting sequence only partially sent on channel %s", channel.label)

    def _report_error(self, error: Exception) -> None:
        invoke(self.on_error, error, name="on_error")


async def start_realtime_greeting(
    details: RealtimeSessionDetails,
    *,
    sink: Optional[AudioSink] = None,
    **options: Any,
) -> GreetingSession:
    """Create and start a :class:`GreetingSession`, playing assistant audio into ``sink``."""
    session = GreetingSession(details, sink=sink if sink is not None else create_audio_sink(), **options)
    try:
        return await session.start()
    except Exception:
        await session.close()
        raise
