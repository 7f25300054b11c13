from __future__ import annotations

import asyncio
import inspect
import itertools
import json
from collections import defaultdict
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from aiortc import MediaStreamTrack, RTCSessionDescription
from av import AudioFrame

from voicevisit.config import Config
from voicevisit.realtime.models import RealtimeSessionDetails

OFFER_SDP = "v=0\r\no=- 1 1 IN IP4 127.0.0.1\r\ns=-\r\nt=0 0\r\na=fake-offer\r\n"
ANSWER_SDP = "v=0\r\no=- 2 2 IN IP4 127.0.0.1\r\ns=-\r\nt=0 0\r\na=fake-answer\r\n"


class _Emitter:
    def __init__(self) -> None:
        self._handlers: Dict[str, List[Callable[..., Any]]] = defaultdict(list)

    def on(self, event: str, handler: Optional[Callable[..., Any]] = None):
        def register(f):
            self._handlers[event].append(f)
            return f

        return register(handler) if handler is not None else register

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers[event]):
            handler(*args)

    async def emit_async(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers[event]):
            result = handler(*args)
            if inspect.isawaitable(result):
                await result


class FakeChannel(_Emitter):
    def __init__(self, label: str, ready_state: str = "connecting") -> None:
        super().__init__()
        self.label = label
        self.readyState = ready_state
        self.sent: List[str] = []
        self.fail_on_close = False

    @property
    def sent_events(self) -> List[dict]:
        return [json.loads(data) for data in self.sent]

    def open(self) -> None:
        self.readyState = "open"
        self.emit("open")

    def send(self, data: str) -> None:
        if self.readyState != "open":
            raise RuntimeError("channel not open")
        self.sent.append(data)

    def close(self) -> None:
        if self.fail_on_close:
            raise RuntimeError("already closed")
        self.readyState = "closed"


class FakePeerConnection(_Emitter):
    def __init__(self, configuration=None, *, auto_open: bool = True) -> None:
        super().__init__()
        self.configuration = configuration
        self.auto_open = auto_open
        self.tracks: List[MediaStreamTrack] = []
        self.channels: List[FakeChannel] = []
        self.connectionState = "new"
        self.localDescription: Optional[RTCSessionDescription] = None
        self.remoteDescription: Optional[RTCSessionDescription] = None
        self.closed = False

    def addTrack(self, track: MediaStreamTrack) -> None:
        self.tracks.append(track)

    def createDataChannel(self, label: str) -> FakeChannel:
        channel = FakeChannel(label)
        self.channels.append(channel)
        return channel

    async def createOffer(self) -> RTCSessionDescription:
        return RTCSessionDescription(sdp=OFFER_SDP, type="offer")

    async def setLocalDescription(self, description: RTCSessionDescription) -> None:
        self.localDescription = description

    async def setRemoteDescription(self, description: RTCSessionDescription) -> None:
        if not description.sdp.startswith("v=0"):
            raise ValueError("SDP does not start with v=0")
        self.remoteDescription = description
        self.connectionState = "connected"
        if self.auto_open:
            for channel in self.channels:
                channel.open()

    async def close(self) -> None:
        self.closed = True
        self.connectionState = "closed"


class FakeSourceTrack(MediaStreamTrack):
    """Audio track producing 20 ms s16 mono frames filled with a constant."""

    kind = "audio"

    def __init__(self) -> None:
        super().__init__()
        self._pts = 0

    async def recv(self) -> AudioFrame:
        frame = AudioFrame(format="s16", layout="mono", samples=960)
        for plane in frame.planes:
            plane.update(b"\x01" * plane.buffer_size)
        frame.sample_rate = 48000
        frame.pts = self._pts
        self._pts += 960
        return frame


class FakeCapture:
    def __init__(self) -> None:
        self.track = FakeSourceTrack()
        self.stop_calls = 0

    @property
    def active(self) -> bool:
        return self.track.readyState == "live"

    def stop(self) -> None:
        self.stop_calls += 1
        if self.active:
            self.track.stop()


class FakeSink:
    def __init__(self) -> None:
        self.tracks: List[MediaStreamTrack] = []
        self.frames = 0
        self.stopped = False

    def addTrack(self, track: MediaStreamTrack) -> None:
        self.tracks.append(track)

    async def start(self) -> None:
        for track in self.tracks:
            await track.recv()
            self.frames += 1

    async def stop(self) -> None:
        self.stopped = True


class PeerConnections:
    def __init__(self) -> None:
        self.created: List[FakePeerConnection] = []
        self.auto_open = True

    def __call__(self, configuration=None) -> FakePeerConnection:
        pc = FakePeerConnection(configuration, auto_open=self.auto_open)
        self.created.append(pc)
        return pc

    @property
    def last(self) -> FakePeerConnection:
        return self.created[-1]


class Microphones:
    def __init__(self) -> None:
        self.opened: List[FakeCapture] = []
        self.error: Optional[Exception] = None

    def __call__(self) -> FakeCapture:
        if self.error is not None:
            raise self.error
        capture = FakeCapture()
        self.opened.append(capture)
        return capture


class Recorder:
    """Collects every callback invocation for assertions."""

    def __init__(self) -> None:
        self.transcripts: List[str] = []
        self.statuses: List[str] = []
        self.errors: List[Exception] = []
        self.timelines: List[dict] = []
        self.microphone: List[bool] = []

    def callbacks(self) -> Dict[str, Callable[..., None]]:
        return {
            "on_transcript": self.transcripts.append,
            "on_status": self.statuses.append,
            "on_error": self.errors.append,
            "on_timeline_update": lambda snapshot: self.timelines.append(dict(snapshot)),
            "on_microphone_state_change": self.microphone.append,
        }


def make_details(*, manual_mic: bool = True, english_only: bool = True, secret: str = "ek_test_secret") -> RealtimeSessionDetails:
    return RealtimeSessionDetails.model_validate(
        {
            "sessionId": "sess_test",
            "model": "gpt-4o-realtime-preview-2025-08-28",
            "expiresAt": "2030-01-01T00:00:00Z",
            "clientSecret": {"value": secret, "expiresAt": "2030-01-01T00:01:00Z"},
            "iceServers": [{"urls": ["stun:stun.example.com:3478"]}],
            "settings": {
                "requireManualMicEnable": manual_mic,
                "requireEnglishGreeting": english_only,
            },
        }
    )


@pytest.fixture(autouse=True)
def server_secrets(monkeypatch):
    monkeypatch.setattr(Config, "JWT_SECRET", "test-secret-" + "x" * 40)
    monkeypatch.setattr(Config, "OPENAI_API_KEY", "sk-test")


@pytest.fixture
def peer_connections() -> PeerConnections:
    return PeerConnections()


@pytest.fixture
def microphones() -> Microphones:
    return Microphones()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def clock() -> Callable[[], float]:
    counter = itertools.count(start=100)
    return lambda: float(next(counter))


@pytest.fixture
async def signaling_server():
    state = SimpleNamespace(status=200, body=ANSWER_SDP, delay=0.0, requests=[])

    async def handle_offer(request: web.Request) -> web.Response:
        state.requests.append(
            {
                "authorization": request.headers.get("Authorization"),
                "model": request.query.get("model"),
                "content_type": request.content_type,
                "body": await request.text(),
            }
        )
        if state.delay:
            await asyncio.sleep(state.delay)
        return web.Response(status=state.status, text=state.body, content_type="application/sdp")

    app = web.Application()
    app.router.add_post("/v1/realtime", handle_offer)
    server = TestServer(app)
    await server.start_server()
    state.url = str(server.make_url("/v1/realtime"))
    try:
        yield state
    finally:
        await server.close()
