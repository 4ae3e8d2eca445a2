"""
Per-call session coordinator: Twilio Media Streams <-> OpenAI Realtime.

Twilio (g711_ulaw 8kHz) -> OpenAI Realtime -> Twilio (g711_ulaw 8kHz)

One `CallSession` per accepted Twilio websocket:
- opens exactly one Realtime connection in the background on `start()`,
- holds AI-bound frames in a `ReadinessBuffer` until that connection is open,
  then drains it (configuration, greeting, caller audio) and goes direct,
- relays model audio and turn marks back to Twilio, feeding streamed text to
  the routing tag extractor instead,
- tears both sides down together. There is no reconnect.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog
import websockets
from websockets.exceptions import ConnectionClosed

from src.bridge.config import Config, get_config
from src.bridge.diagnostics import DiagnosticSink, get_diagnostic_sink
from src.bridge.prompt_utils import build_greeting_instructions, build_session_instructions
from src.bridge.readiness import ReadinessBuffer
from src.bridge.realtime_protocol import RealtimeEventKind, parse_realtime_message
from src.bridge.tags import TagExtractor
from src.bridge.translator import AIBoundMessage, ProtocolTranslator
from src.bridge.twilio_protocol import (
    TwilioEventType,
    TwilioProtocolHandler,
    TwilioStartEvent,
    parse_twilio_message,
)

logger = structlog.get_logger(__name__)


class SessionState(str, Enum):
    INIT = "init"
    CONFIGURING = "configuring"
    STREAMING = "streaming"
    CLOSED = "closed"


class CallSession:
    """
    Coordinates one phone call.

    `send_message` writes a text frame to the Twilio websocket and
    `close_transport` closes it; the server owns the socket itself. `connect`
    defaults to `websockets.connect` and is injectable for tests.
    """

    def __init__(
        self,
        send_message: Callable[[str], Awaitable[None]],
        close_transport: Callable[[], Awaitable[None]],
        *,
        config: Optional[Config] = None,
        sink: Optional[DiagnosticSink] = None,
        connect: Optional[Callable[..., Awaitable[Any]]] = None,
        instructions: Optional[str] = None,
        greeting: Optional[str] = None,
    ):
        self.config = config or get_config()
        self._send_message = send_message
        self._close_transport = close_transport
        self._sink = sink or get_diagnostic_sink()
        self._connect = connect or websockets.connect

        self._protocol = TwilioProtocolHandler()
        self._translator = ProtocolTranslator(
            self.config,
            instructions=instructions if instructions is not None else build_session_instructions(self.config),
            greeting=greeting if greeting is not None else build_greeting_instructions(self.config),
        )
        self._tags = TagExtractor(self.config.route_destinations)
        self._buffer = ReadinessBuffer()

        self._state: SessionState = SessionState.INIT
        self._ready: bool = False
        self._stop_requested: bool = False
        self._telephony_closed: bool = False
        self._missing_sid_logged: bool = False

        self._realtime_ws: Optional[Any] = None
        self._realtime_task: Optional[asyncio.Task] = None

        self._frames_to_telephony: int = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def is_closed(self) -> bool:
        return self._state == SessionState.CLOSED

    @property
    def call_sid(self) -> str:
        return self._protocol.call_sid

    @property
    def stream_sid(self) -> str:
        return self._protocol.stream_sid

    @property
    def frames_to_telephony(self) -> int:
        return self._frames_to_telephony

    @property
    def turn_text(self) -> str:
        return self._tags.text

    @property
    def pending_frames(self) -> int:
        return len(self._buffer)

    async def start(self) -> None:
        """Begin opening the Realtime connection without waiting for it."""
        if self._realtime_task is not None or self.is_closed:
            return
        self._realtime_task = asyncio.create_task(self._run_realtime())

    # ------------------------------------------------------------------
    # Twilio -> OpenAI
    # ------------------------------------------------------------------

    async def handle_message(self, raw_message: str) -> None:
        if self.is_closed:
            return

        try:
            event_type, event = parse_twilio_message(raw_message)
        except ValueError as e:
            logger.debug("Ignoring Twilio frame", error=str(e))
            return

        if event_type == TwilioEventType.START:
            await self._handle_start(event)
            return

        if event_type == TwilioEventType.MEDIA:
            # Audio before `start` would overtake the session configuration.
            if self._state == SessionState.INIT or self._stop_requested:
                return
            for message in self._translator.from_telephony(event_type, event).ai_messages:
                await self._send_ai(message)
            return

        if event_type == TwilioEventType.STOP:
            await self._handle_stop()
            return

        if event_type == TwilioEventType.CONNECTED:
            logger.debug("Twilio stream connected")

    async def _handle_start(self, event: TwilioStartEvent) -> None:
        if self._state != SessionState.INIT:
            logger.warning("Duplicate Twilio start ignored", call_sid=event.call_sid)
            return

        self._protocol.handle_start(event)
        self._state = SessionState.STREAMING if self._ready else SessionState.CONFIGURING
        self._sink.emit(
            "call_identified",
            call_sid=event.call_sid,
            stream_sid=event.stream_sid,
        )

        for message in self._translator.from_telephony(TwilioEventType.START, event).ai_messages:
            await self._send_ai(message)

    async def _handle_stop(self) -> None:
        if self._stop_requested:
            return
        self._stop_requested = True
        self._protocol.handle_stop()

        translation = self._translator.from_telephony(TwilioEventType.STOP, None)
        for message in translation.ai_messages:
            await self._send_ai(message)

        if not translation.close_ai:
            return
        if self._ready:
            await self.close("telephony_stop")
        else:
            # Flushed behind the buffered audio once the connection opens.
            logger.info(
                "Twilio stop before Realtime ready; commit queued",
                call_sid=self.call_sid,
                pending_frames=len(self._buffer),
            )

    async def _send_ai(self, message: AIBoundMessage) -> None:
        if self.is_closed:
            return

        if not self._ready:
            self._buffer.append(message.lane, message.message)
            return

        ws = self._realtime_ws
        if ws is None:
            return
        try:
            await ws.send(message.message)
        except ConnectionClosed as e:
            logger.info("OpenAI Realtime connection closed on send", call_sid=self.call_sid, code=getattr(e, "code", None))
            await self.close("realtime_closed")
        except Exception as e:
            logger.error("OpenAI send failed", call_sid=self.call_sid, error=str(e))
            await self.close("realtime_send_failed")

    # ------------------------------------------------------------------
    # OpenAI -> Twilio
    # ------------------------------------------------------------------

    async def _run_realtime(self) -> None:
        headers = {
            "Authorization": f"Bearer {self.config.openai_api_key}",
            "OpenAI-Beta": "realtime=v1",
        }

        try:
            ws = await self._connect(
                self.config.realtime_url,
                additional_headers=headers,
                open_timeout=self.config.openai_realtime_open_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("OpenAI Realtime connection failed", call_sid=self.call_sid, error=str(e))
            await self.close("realtime_open_failed")
            return

        if self.is_closed:
            await self._close_quietly(ws)
            return

        self._realtime_ws = ws
        reason = "realtime_closed"
        try:
            await self._on_realtime_open()
            if self._stop_requested:
                reason = "telephony_stop"
            else:
                async for raw in ws:
                    await self._handle_realtime_message(raw)
                    if self.is_closed:
                        break
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            logger.info("OpenAI Realtime connection closed", call_sid=self.call_sid, code=getattr(e, "code", None))
        except Exception as e:
            logger.error("OpenAI receive loop failed", call_sid=self.call_sid, error=str(e))
            reason = "realtime_error"

        await self.close(reason)

    async def _on_realtime_open(self) -> None:
        logger.info(
            "OpenAI Realtime connected",
            call_sid=self.call_sid,
            model=self.config.openai_realtime_model,
            voice=self.config.openai_realtime_voice,
            pending_frames=len(self._buffer),
        )

        flushed = await self._buffer.drain(self._realtime_ws.send)

        # No await between the drain finishing and this flag flipping.
        self._ready = True
        if self._state == SessionState.CONFIGURING:
            self._state = SessionState.STREAMING

        if flushed:
            logger.info("Readiness buffer flushed", call_sid=self.call_sid, frames=flushed)

    async def _handle_realtime_message(self, raw: Any) -> None:
        try:
            event = parse_realtime_message(raw)
        except ValueError:
            return

        if event.kind == RealtimeEventKind.ERROR:
            logger.error("OpenAI Realtime error", call_sid=self.call_sid, details=event.raw)
            return

        translation = self._translator.from_realtime(event, self.stream_sid)

        if translation.text_fragment:
            self._tags.feed(translation.text_fragment)

        if translation.telephony_messages and not self.stream_sid and not self._missing_sid_logged:
            self._missing_sid_logged = True
            logger.warning("Sending Twilio frames without streamSid", call_sid=self.call_sid)

        for message in translation.telephony_messages:
            await self._send_telephony(message)

        if translation.is_audio:
            self._frames_to_telephony += 1
            milestone = self.config.audio_milestone_frames
            if milestone > 0 and self._frames_to_telephony % milestone == 0:
                self._sink.emit(
                    "audio_milestone",
                    call_sid=self.call_sid,
                    frames=self._frames_to_telephony,
                )

        if translation.turn_complete:
            tag = self._tags.complete_turn()
            if tag:
                self._sink.emit("routing_tag", call_sid=self.call_sid, tag=tag)

        for message in translation.ai_messages:
            await self._send_ai(message)

    async def _send_telephony(self, message: str) -> None:
        if self.is_closed or self._telephony_closed:
            return
        try:
            await self._send_message(message)
        except Exception as e:
            logger.warning("Failed to send Twilio message", call_sid=self.call_sid, error=str(e))
            await self.close("telephony_send_failed")

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def handle_telephony_closed(self) -> None:
        """
        The Twilio socket is gone; close the Realtime side only.

        After a `stop` that arrived before the Realtime connection opened, the
        handshake is left running so the buffered audio and commit still get
        flushed; `_run_realtime` closes the session once the drain is done or
        the open fails.
        """
        self._telephony_closed = True
        if self.is_closed:
            return

        task = self._realtime_task
        if self._stop_requested and not self._ready and task is not None and not task.done():
            logger.info(
                "Twilio closed after stop; holding Realtime open for flush",
                call_sid=self.call_sid,
                pending_frames=len(self._buffer),
            )
            return

        await self.close("telephony_closed")

    async def close(self, reason: str = "closed") -> None:
        if self.is_closed:
            return
        self._state = SessionState.CLOSED

        task = self._realtime_task
        if task and task is not asyncio.current_task() and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        ws = self._realtime_ws
        self._realtime_ws = None
        if ws is not None:
            await self._close_quietly(ws)

        dropped = self._buffer.discard()

        if not self._telephony_closed:
            self._telephony_closed = True
            try:
                await self._close_transport()
            except Exception as e:
                logger.debug("Twilio close failed", call_sid=self.call_sid, error=str(e))

        self._sink.emit(
            "session_closed",
            call_sid=self.call_sid,
            reason=reason,
            frames_to_telephony=self._frames_to_telephony,
            dropped_frames=dropped,
        )

    @staticmethod
    async def _close_quietly(ws: Any) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.debug("OpenAI Realtime close failed", error=str(e))
