"""
OpenAI Realtime wire events.

AI-bound messages are built here, and AI-emitted events are normalized to one
closed set of semantic kinds. The Realtime API has renamed several events
across versions (`response.audio.delta` vs `response.output_audio.delta` vs
`output_audio.delta`, ...); every known spelling lives in the tables below and
nowhere else.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import msgspec

decoder = msgspec.json.Decoder()
encoder = msgspec.json.Encoder()

# G.711 mu-law 8kHz on both legs of the bridge.
AUDIO_FORMAT = "g711_ulaw"


class RealtimeEventKind(str, Enum):
    AUDIO_DELTA = "audio_delta"
    TEXT_DELTA = "text_delta"
    TURN_COMPLETE = "turn_complete"
    COMMIT_REQUESTED = "commit_requested"
    ERROR = "error"
    OTHER = "other"


_EVENT_SYNONYMS: dict[RealtimeEventKind, frozenset[str]] = {
    RealtimeEventKind.AUDIO_DELTA: frozenset(
        {
            "response.audio.delta",
            "response.output_audio.delta",
            "output_audio.delta",
        }
    ),
    RealtimeEventKind.TEXT_DELTA: frozenset(
        {
            "response.text.delta",
            "response.output_text.delta",
            "output_text.delta",
            "response.audio_transcript.delta",
            "response.output_audio_transcript.delta",
        }
    ),
    RealtimeEventKind.TURN_COMPLETE: frozenset(
        {
            "response.done",
            "response.completed",
            "response.audio.done",
            "response.output_audio.done",
            "output_audio.done",
        }
    ),
    # Not "input_audio_buffer.committed": that is the server acknowledging a
    # commit, and echoing it would loop.
    RealtimeEventKind.COMMIT_REQUESTED: frozenset(
        {
            "input_audio_buffer.commit",
            "input_audio_buffer.commit_request",
            "input_audio_buffer.commit_requested",
        }
    ),
    RealtimeEventKind.ERROR: frozenset({"error"}),
}

_KIND_BY_TYPE: dict[str, RealtimeEventKind] = {
    name: kind for kind, names in _EVENT_SYNONYMS.items() for name in names
}


@dataclass(frozen=True)
class RealtimeEvent:
    """One AI-emitted event after normalization."""

    kind: RealtimeEventKind
    type: str
    audio: Optional[str] = None
    text: Optional[str] = None
    raw: Optional[dict] = None


def classify_event_type(event_type: Any) -> RealtimeEventKind:
    if not isinstance(event_type, str):
        return RealtimeEventKind.OTHER
    return _KIND_BY_TYPE.get(event_type, RealtimeEventKind.OTHER)


def _first_str(event: dict, *keys: str) -> Optional[str]:
    for key in keys:
        value = event.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def normalize_realtime_event(event: dict) -> RealtimeEvent:
    """
    Map a decoded Realtime event onto a `RealtimeEvent`.

    Audio and text deltas without a usable payload degrade to `OTHER` so the
    caller never has to re-check for empty fragments.
    """
    event_type = event.get("type")
    kind = classify_event_type(event_type)

    if kind == RealtimeEventKind.AUDIO_DELTA:
        audio = _first_str(event, "delta", "audio")
        if audio is None:
            kind = RealtimeEventKind.OTHER
        return RealtimeEvent(kind=kind, type=str(event_type), audio=audio, raw=event)

    if kind == RealtimeEventKind.TEXT_DELTA:
        text = _first_str(event, "delta", "text", "transcript")
        if text is None:
            kind = RealtimeEventKind.OTHER
        return RealtimeEvent(kind=kind, type=str(event_type), text=text, raw=event)

    return RealtimeEvent(kind=kind, type=str(event_type or ""), raw=event)


def parse_realtime_message(raw_message: Any) -> RealtimeEvent:
    """
    Decode and normalize one raw Realtime websocket frame.

    Raises:
        ValueError: If the frame is not a JSON object
    """
    if isinstance(raw_message, str):
        raw_message = raw_message.encode("utf-8")
    try:
        event = decoder.decode(raw_message)
    except msgspec.DecodeError as e:
        raise ValueError(f"Invalid JSON: {e}")
    if not isinstance(event, dict):
        raise ValueError("Invalid JSON: expected an object")
    return normalize_realtime_event(event)


def encode_message(message: dict) -> str:
    return encoder.encode(message).decode("utf-8")


def create_session_update(
    *,
    instructions: str,
    voice: str,
    vad_threshold: float = 0.5,
    text_output: bool = True,
) -> dict:
    """Session configuration sent first on every call."""
    return {
        "type": "session.update",
        "session": {
            "instructions": instructions,
            "modalities": ["audio", "text"] if text_output else ["audio"],
            "voice": voice,
            "input_audio_format": AUDIO_FORMAT,
            "output_audio_format": AUDIO_FORMAT,
            "turn_detection": {
                "type": "server_vad",
                "threshold": vad_threshold,
            },
        },
    }


def create_greeting_request(instructions: str, *, text_output: bool = True) -> dict:
    """Ask the model to speak first, before any caller audio."""
    return {
        "type": "response.create",
        "response": {
            "modalities": ["audio", "text"] if text_output else ["audio"],
            "instructions": instructions,
        },
    }


def create_audio_append(payload_b64: str) -> dict:
    return {
        "type": "input_audio_buffer.append",
        "audio": payload_b64,
        "format": AUDIO_FORMAT,
    }


def create_audio_commit() -> dict:
    return {"type": "input_audio_buffer.commit"}
