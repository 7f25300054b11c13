"""Wire codec for the realtime control-channel event protocol.

Inbound frames are JSON objects discriminated by ``type``. The remote endpoint
streams assistant text through several overlapping delta encodings, so text
extraction is a single ordered table of ``type`` -> extractor with a universal
"no fragment" fallback. Nothing in this module raises on bad input.
"""

from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

CONTROL_CHANNEL_LABEL = "oai-events"

# Inbound event types.
OUTPUT_TEXT_DELTA = "response.output_text.delta"
AUDIO_TRANSCRIPT_DELTA = "response.audio_transcript.delta"
RESPONSE_DELTA = "response.delta"
RESPONSE_UPDATED = "response.updated"
RESPONSE_COMPLETED = "response.completed"
RESPONSE_FINALIZED = "response.finalized"
AUDIO_TRANSCRIPT_DONE = "response.audio_transcript.done"
CONVERSATION_ITEM_CREATED = "conversation.item.created"

RESPONSE_FINISHED_TYPES = frozenset({RESPONSE_COMPLETED, RESPONSE_FINALIZED})

# Outbound event types.
SESSION_UPDATE = "session.update"
RESPONSE_CREATE = "response.create"
CONVERSATION_ITEM_CREATE = "conversation.item.create"

_WHITESPACE_RE = re.compile(r"\s+")

Event = Dict[str, Any]


def normalize_text(value: str) -> str:
    """Collapse whitespace runs to one space and trim both ends."""
    return _WHITESPACE_RE.sub(" ", value).strip()


def decode_event(raw: Union[str, bytes, bytearray]) -> Optional[Event]:
    """Parse one inbound frame, returning ``None`` for anything that is not a JSON object."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("Non-UTF-8 realtime frame (%d bytes)", len(raw))
            return None
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug("Non-JSON event: %r", raw[:200] if isinstance(raw, str) else raw)
        return None
    if not isinstance(payload, dict):
        logger.debug("Ignoring non-object realtime frame: %r", payload)
        return None
    return payload


def encode_event(event: Event) -> str:
    return json.dumps(event, separators=(",", ":"), ensure_ascii=False)


def event_type(payload: Any) -> Optional[str]:
    if isinstance(payload, dict) and isinstance(payload.get("type"), str):
        return payload["type"]
    return None


def response_id_of(payload: Any) -> Optional[str]:
    """Return the ``response_id`` that keys a turn, when the event carries one."""
    if isinstance(payload, dict):
        value = payload.get("response_id")
        if isinstance(value, str) and value:
            return value
    return None


def _string_delta(payload: Event) -> Optional[str]:
    delta = payload.get("delta")
    return delta if isinstance(delta, str) else None


def _composite_delta(payload: Event) -> Optional[str]:
    raw_delta = payload.get("delta")
    if not raw_delta:
        return None
    pieces = raw_delta if isinstance(raw_delta, list) else [raw_delta]
    texts = []
    for piece in pieces:
        if isinstance(piece, dict) and piece.get("type") == "output_text_delta":
            text = piece.get("text")
            texts.append(text if isinstance(text, str) else "")
    return "".join(texts)


def _response_snapshot(payload: Event) -> Optional[str]:
    response = payload.get("response")
    if not isinstance(response, dict):
        return None
    output = response.get("output")
    if not isinstance(output, list):
        return ""
    texts = []
    for item in output:
        content = item.get("content") if isinstance(item, dict) else None
        if not isinstance(content, list):
            continue
        for block in content:
            if (
                isinstance(block, dict)
                and block.get("type") == "output_text"
                and isinstance(block.get("text"), str)
            ):
                texts.append(block["text"])
    return "".join(texts)


# Checked in order. New delta encodings belong in this table.
TEXT_EXTRACTORS: Tuple[Tuple[str, Callable[[Event], Optional[str]]], ...] = (
    (OUTPUT_TEXT_DELTA, _string_delta),
    (AUDIO_TRANSCRIPT_DELTA, _string_delta),
    (RESPONSE_DELTA, _composite_delta),
    (RESPONSE_UPDATED, _response_snapshot),
)


def extract_text_delta(payload: Any) -> Optional[str]:
    """Return the assistant text fragment carried by ``payload``, or ``None``.

    A recognised composite event with no qualifying parts yields ``""``; callers
    treat empty and ``None`` alike.
    """
    kind = event_type(payload)
    if kind is None:
        return None
    for tag, extractor in TEXT_EXTRACTORS:
        if tag == kind:
            try:
                return extractor(payload)
            except (AttributeError, TypeError):
                logger.debug("Malformed %s payload ignored", kind, exc_info=True)
                return None
    return None


def _part_text(part: Any) -> Optional[str]:
    if not isinstance(part, dict):
        return None
    transcript = part.get("transcript")
    if isinstance(transcript, str):
        return transcript
    if isinstance(transcript, list):
        joined = " ".join(chunk for chunk in transcript if isinstance(chunk, str))
        if joined:
            return joined
    for key in ("text", "value"):
        if isinstance(part.get(key), str):
            return part[key]
    return None


def extract_user_text(item: Any) -> Optional[str]:
    """Pull the patient's words out of a ``conversation.item.created`` item.

    Parts are read transcript -> text -> value. When no top-level part yields
    text, the first part's own ``content`` array is tried one level deeper, then
    the item's ``formatted`` block.
    """
    if not isinstance(item, dict):
        return None

    collected: List[str] = []
    content = item.get("content")
    if isinstance(content, list):
        for part in content:
            text = _part_text(part)
            if text is not None:
                collected.append(text)

        if not collected and content and isinstance(content[0], dict):
            nested = content[0].get("content")
            if isinstance(nested, list):
                nested_text = " ".join(text for text in map(_part_text, nested) if text)
                if nested_text:
                    collected.append(nested_text)

    if collected:
        return normalize_text(" ".join(collected)) or None

    formatted = item.get("formatted")
    if isinstance(formatted, dict):
        for key in ("transcript", "text"):
            if isinstance(formatted.get(key), str):
                return normalize_text(formatted[key]) or None
    return None


def session_update(instructions: str, modalities: Sequence[str] = ("text", "audio")) -> Event:
    return {
        "type": SESSION_UPDATE,
        "session": {
            "instructions": instructions,
            "modalities": list(modalities),
        },
    }


def response_create(
    instructions: str,
    system_prompt: str,
    modalities: Sequence[str] = ("audio", "text"),
) -> Event:
    """Request a response seeded with an inline system-role conversation."""
    return {
        "type": RESPONSE_CREATE,
        "response": {
            "modalities": list(modalities),
            "conversation": [
                {
                    "role": "system",
                    "content": [{"type": "input_text", "text": system_prompt}],
                },
            ],
            "instructions": instructions,
        },
    }


def _user_message(part: Event) -> Event:
    return {
        "type": CONVERSATION_ITEM_CREATE,
        "item": {
            "type": "message",
            "role": "user",
            "content": [part],
        },
    }


def user_text_item(text: str) -> Event:
    return _user_message({"type": "input_text", "text": text})


def user_image_item(image: bytes, detail: str = "high") -> Event:
    encoded = base64.b64encode(image).decode("ascii")
    return _user_message({"type": "input_image", "image": encoded, "detail": detail})
