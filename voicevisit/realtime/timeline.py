"""Latency instrumentation for a single realtime session."""

from __future__ import annotations

import logging
import time
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Optional

from .callbacks import invoke

logger = logging.getLogger(__name__)


class Milestone(str, Enum):
    SESSION_CREATED = "sessionCreated"
    OFFER_CREATED = "offerCreated"
    ANSWER_RECEIVED = "answerReceived"
    AUDIO_STARTED = "audioStarted"
    FIRST_TRANSCRIPT = "firstTranscript"


TimelineSnapshot = Mapping[Milestone, float]


class Timeline:
    """Write-once monotonic timestamps per milestone."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        on_update: Optional[Callable[[TimelineSnapshot], None]] = None,
    ) -> None:
        self._clock = clock
        self._marks: Dict[Milestone, float] = {}
        self.on_update = on_update

    def mark(self, milestone: Milestone) -> bool:
        """Record ``milestone`` the first time only. Returns True if it was recorded now."""
        if milestone in self._marks:
            return False
        self._marks[milestone] = self._clock()
        logger.debug("Timeline %s at %.3f", milestone.value, self._marks[milestone])
        if self.on_update:
            invoke(self.on_update, self.snapshot(), name="on_timeline_update")
        return True

    def get(self, milestone: Milestone) -> Optional[float]:
        return self._marks.get(milestone)

    def snapshot(self) -> TimelineSnapshot:
        return MappingProxyType(dict(self._marks))


def elapsed_since_start(snapshot: TimelineSnapshot) -> Dict[Milestone, Optional[float]]:
    """Seconds from ``SESSION_CREATED`` to every later milestone (``None`` if unset)."""
    base = snapshot.get(Milestone.SESSION_CREATED)
    result: Dict[Milestone, Optional[float]] = {}
    for milestone in Milestone:
        if milestone is Milestone.SESSION_CREATED:
            continue
        value = snapshot.get(milestone)
        result[milestone] = None if base is None or value is None else value - base
    return result
