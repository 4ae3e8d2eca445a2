"""
Twilio Media Streams WebSocket Protocol Handler.

Inbound events the bridge acts on:
- start: Stream started, carries streamSid and callSid
- media: Caller audio as base64 mu-law 8kHz
- stop: Stream stopped

`connected`, `mark` and `dtmf` are recognised but come back as the raw dict;
the relay has nothing to do with them.

Outbound frames:
- media: Model audio on the outbound track
- mark: End-of-turn marker

Audio payloads stay as the base64 text Twilio sends; both sides of the bridge
speak mu-law 8kHz so nothing is decoded here.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import msgspec
import structlog

logger = structlog.get_logger(__name__)

# Create global msgspec encoder/decoder
decoder = msgspec.json.Decoder()
encoder = msgspec.json.Encoder()

OUTBOUND_TRACK = "outbound"
TURN_DONE_MARK = "done"


class TwilioEventType(str, Enum):
    """Twilio WebSocket event types."""
    CONNECTED = "connected"
    START = "start"
    MEDIA = "media"
    MARK = "mark"
    DTMF = "dtmf"
    STOP = "stop"


@dataclass(frozen=True)
class TwilioStartEvent:
    """Identifiers announced by the `start` event."""
    stream_sid: str
    call_sid: str

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "TwilioStartEvent":
        # Older payloads only carry streamSid inside the start block.
        start = message.get("start") or {}
        return cls(
            stream_sid=message.get("streamSid") or start.get("streamSid", ""),
            call_sid=start.get("callSid", ""),
        )


@dataclass(frozen=True)
class TwilioMediaEvent:
    """One inbound audio frame."""
    stream_sid: str
    payload: str

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "TwilioMediaEvent":
        payload = (message.get("media") or {}).get("payload", "")
        return cls(
            stream_sid=message.get("streamSid", ""),
            payload=payload if isinstance(payload, str) else "",
        )


_EVENT_PARSERS = {
    TwilioEventType.START: TwilioStartEvent.from_message,
    TwilioEventType.MEDIA: TwilioMediaEvent.from_message,
}


def parse_twilio_message(raw_message: str) -> tuple[TwilioEventType, Any]:
    """
    Parse a raw Twilio WebSocket message.

    Args:
        raw_message: Raw JSON string from Twilio

    Returns:
        Tuple of (event_type, parsed_event). Events without a parser are
        returned as the decoded dict.

    Raises:
        ValueError: If message cannot be parsed or the event is unknown
    """
    try:
        message = decoder.decode(raw_message.encode("utf-8") if isinstance(raw_message, str) else raw_message)
    except msgspec.DecodeError as e:
        raise ValueError(f"Invalid JSON: {e}")

    if not isinstance(message, dict):
        raise ValueError("Invalid JSON: expected an object")

    event_type_str = message.get("event", "")

    try:
        event_type = TwilioEventType(event_type_str)
    except ValueError:
        raise ValueError(f"Unknown event type: {event_type_str}")

    parser = _EVENT_PARSERS.get(event_type)
    return event_type, parser(message) if parser else message


def _encode_frame(event: str, stream_sid: Optional[str], body: Dict[str, Any]) -> str:
    message: Dict[str, Any] = {"event": event}
    if stream_sid:
        message["streamSid"] = stream_sid
    message[event] = body
    return encoder.encode(message).decode("utf-8")


def create_media_message(
    stream_sid: Optional[str],
    payload_b64: str,
    track: str = OUTBOUND_TRACK,
) -> str:
    """
    Create a Twilio media message.

    Args:
        stream_sid: The stream SID, omitted from the frame when unknown
        payload_b64: Base64 mu-law audio
        track: Track marker for the frame

    Returns:
        JSON string to send to Twilio
    """
    return _encode_frame("media", stream_sid, {"payload": payload_b64, "track": track})


def create_mark_message(stream_sid: Optional[str], name: str) -> str:
    """Create a Twilio mark message; Twilio echoes it back once playback reaches it."""
    return _encode_frame("mark", stream_sid, {"name": name})


class TwilioProtocolHandler:
    """Remembers the stream and call SIDs announced by the `start` event."""

    def __init__(self):
        self.stream_sid: str = ""
        self.call_sid: str = ""

    def handle_start(self, event: TwilioStartEvent) -> None:
        self.stream_sid = event.stream_sid
        self.call_sid = event.call_sid
        logger.info("Call started", stream_sid=self.stream_sid, call_sid=self.call_sid)

    def handle_stop(self) -> None:
        logger.info("Call stopped", stream_sid=self.stream_sid, call_sid=self.call_sid)
