"""WebRTC session with the realtime endpoint: negotiation, event codec and transcript."""

from .models import RealtimeSessionDetails
from .negotiator import NegotiatorState, SessionNegotiator
from .session import GreetingScript, GreetingSession, start_realtime_greeting
from .timeline import Milestone, Timeline, elapsed_since_start
from .transcript import Speaker, TranscriptAssembler

__all__ = [
    "GreetingScript",
    "GreetingSession",
    "Milestone",
    "NegotiatorState",
    "RealtimeSessionDetails",
    "SessionNegotiator",
    "Speaker",
    "Timeline",
    "TranscriptAssembler",
    "elapsed_since_start",
    "start_realtime_greeting",
]
