"""
Protocol translation between Twilio Media Streams and OpenAI Realtime.

Pure mapping: no sockets, no session state. The session coordinator feeds
parsed events in and acts on the returned translations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from src.bridge.config import Config
from src.bridge.readiness import Lane
from src.bridge.realtime_protocol import (
    RealtimeEvent,
    RealtimeEventKind,
    create_audio_append,
    create_audio_commit,
    create_greeting_request,
    create_session_update,
    encode_message,
)
from src.bridge.twilio_protocol import (
    OUTBOUND_TRACK,
    TURN_DONE_MARK,
    TwilioEventType,
    TwilioMediaEvent,
    create_mark_message,
    create_media_message,
)


@dataclass(frozen=True)
class AIBoundMessage:
    lane: Lane
    message: str


@dataclass(frozen=True)
class TelephonyTranslation:
    """What a telephony event produces on the AI side."""

    ai_messages: tuple[AIBoundMessage, ...] = ()
    close_ai: bool = False


@dataclass(frozen=True)
class RealtimeTranslation:
    """What an AI event produces: telephony frames, AI replies, tag-extractor input."""

    telephony_messages: tuple[str, ...] = ()
    ai_messages: tuple[AIBoundMessage, ...] = ()
    text_fragment: Optional[str] = None
    turn_complete: bool = False
    is_audio: bool = False


_NOTHING_TO_AI = TelephonyTranslation()
_NOTHING_TO_TELEPHONY = RealtimeTranslation()


class ProtocolTranslator:
    """
    Stateless translator for one call's configuration.

    `instructions` and `greeting` are resolved once per call by the caller
    (see `prompt_utils`) so translation never touches the filesystem.
    """

    def __init__(self, config: Config, *, instructions: str, greeting: str):
        self.config = config
        self.instructions = instructions
        self.greeting = greeting

    def session_start_messages(self) -> tuple[AIBoundMessage, ...]:
        text_output = self.config.openai_realtime_text_output
        session_update = create_session_update(
            instructions=self.instructions,
            voice=self.config.openai_realtime_voice,
            vad_threshold=self.config.openai_realtime_vad_threshold,
            text_output=text_output,
        )
        greeting = create_greeting_request(self.greeting, text_output=text_output)
        return (
            AIBoundMessage(Lane.CONTROL, encode_message(session_update)),
            AIBoundMessage(Lane.CONTROL, encode_message(greeting)),
        )

    @staticmethod
    def commit_message() -> AIBoundMessage:
        # Commit rides the audio lane so it can never overtake buffered audio.
        return AIBoundMessage(Lane.AUDIO, encode_message(create_audio_commit()))

    def from_telephony(self, event_type: TwilioEventType, event: Any) -> TelephonyTranslation:
        if event_type == TwilioEventType.START:
            return TelephonyTranslation(ai_messages=self.session_start_messages())

        if event_type == TwilioEventType.MEDIA:
            if not isinstance(event, TwilioMediaEvent) or not event.payload:
                return _NOTHING_TO_AI
            append = create_audio_append(event.payload)
            return TelephonyTranslation(
                ai_messages=(AIBoundMessage(Lane.AUDIO, encode_message(append)),)
            )

        if event_type == TwilioEventType.STOP:
            return TelephonyTranslation(ai_messages=(self.commit_message(),), close_ai=True)

        # connected / mark / dtmf carry nothing for the model.
        return _NOTHING_TO_AI

    def from_realtime(self, event: RealtimeEvent, stream_sid: Optional[str]) -> RealtimeTranslation:
        stream_sid = stream_sid or None

        if event.kind == RealtimeEventKind.AUDIO_DELTA and event.audio:
            return RealtimeTranslation(
                telephony_messages=(create_media_message(stream_sid, event.audio, OUTBOUND_TRACK),),
                is_audio=True,
            )

        if event.kind == RealtimeEventKind.TEXT_DELTA and event.text:
            return RealtimeTranslation(text_fragment=event.text)

        if event.kind == RealtimeEventKind.TURN_COMPLETE:
            return RealtimeTranslation(
                telephony_messages=(create_mark_message(stream_sid, TURN_DONE_MARK),),
                turn_complete=True,
            )

        if event.kind == RealtimeEventKind.COMMIT_REQUESTED:
            return RealtimeTranslation(ai_messages=(self.commit_message(),))

        return _NOTHING_TO_TELEPHONY
