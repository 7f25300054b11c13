"""Speaker-attributed transcript built from streamed fragments."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from .callbacks import invoke
from .events import normalize_text

logger = logging.getLogger(__name__)

_NO_SPACE_AFTER = re.compile(r"[\s(\[{\"]")
_NO_SPACE_BEFORE = re.compile(r"[,.;!?%)\]}]")


class Speaker(str, Enum):
    ASSISTANT = "assistant"
    PATIENT = "patient"

    @property
    def label(self) -> str:
        return "Assistant" if self is Speaker.ASSISTANT else "Patient"


@dataclass
class TranscriptSegment:
    speaker: Speaker
    text: str
    turn_id: Optional[str] = None

    def render(self) -> str:
        return f"{self.speaker.label}: {self.text.strip()}"


def should_insert_space(previous: str, following: str) -> bool:
    """Decide whether joining two fragments needs a separating space."""
    if not previous or not following:
        return False
    if _NO_SPACE_AFTER.match(previous[-1]):
        return False
    if _NO_SPACE_BEFORE.match(following):
        return False
    return True


class TranscriptAssembler:
    """Merges assistant/patient fragments into an append-only list of segments.

    Segments are never reordered or removed. Only the trailing segment grows in
    place, and an assistant turn's segment may be replaced wholesale by its final
    transcript.
    """

    def __init__(self, on_transcript: Optional[Callable[[str], None]] = None) -> None:
        self.on_transcript = on_transcript
        self._segments: List[TranscriptSegment] = []
        self._turn_index: Dict[str, int] = {}
        self._finalized: Set[str] = set()

    @property
    def segments(self) -> Tuple[TranscriptSegment, ...]:
        return tuple(TranscriptSegment(s.speaker, s.text, s.turn_id) for s in self._segments)

    def render(self) -> str:
        return "\n\n".join(segment.render() for segment in self._segments)

    def append_fragment(self, speaker: Speaker, fragment: str, turn_id: Optional[str] = None) -> bool:
        """Extend the trailing segment or start a new one. Returns False when nothing changed."""
        normalized = normalize_text(fragment)
        if not normalized:
            return False
        if speaker is Speaker.ASSISTANT and turn_id in self._finalized:
            logger.debug("Dropping late fragment for finalized turn %s", turn_id)
            return False

        last = self._segments[-1] if self._segments else None
        if last is not None and last.speaker is speaker and (turn_id is None or last.turn_id == turn_id):
            if should_insert_space(last.text, normalized):
                last.text = f"{last.text} {normalized}"
            else:
                last.text = f"{last.text}{normalized}"
        else:
            self._segments.append(TranscriptSegment(speaker, normalized, turn_id))
            if speaker is Speaker.ASSISTANT and turn_id is not None:
                self._turn_index.setdefault(turn_id, len(self._segments) - 1)

        self._emit()
        return True

    def set_final_transcript(self, turn_id: str, full_text: str) -> bool:
        """Replace the assistant text for ``turn_id`` with the authoritative transcript."""
        normalized = normalize_text(full_text)
        if not normalized:
            return False

        index = self._turn_index.get(turn_id)
        if index is None:
            self._segments.append(TranscriptSegment(Speaker.ASSISTANT, normalized, turn_id))
            self._turn_index[turn_id] = len(self._segments) - 1
            logger.debug("Final transcript for %s arrived before any delta", turn_id)
        else:
            self._segments[index].text = normalized
        self._finalized.add(turn_id)

        self._emit()
        return True

    def _emit(self) -> None:
        if self.on_transcript:
            invoke(self.on_transcript, self.render(), name="on_transcript")
