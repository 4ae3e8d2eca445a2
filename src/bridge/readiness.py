"""
Readiness buffer for AI-bound frames.

Everything the call produces for the Realtime connection before it has
finished opening is held here, in two lanes:

- CONTROL: session configuration and the greeting request
- AUDIO: caller audio appends (and a trailing commit when the call stops early)

`drain()` sends the control lane first and the audio lane second, each in
arrival order, exactly once. A drained buffer is closed for good; later frames
go straight to the connection.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class Lane(str, Enum):
    CONTROL = "control"
    AUDIO = "audio"


class BufferDrainedError(RuntimeError):
    """Raised when appending to a buffer that has already been drained."""


@dataclass(frozen=True)
class QueuedFrame:
    """A serialized AI-bound message and its arrival position."""

    position: int
    lane: Lane
    message: str


class ReadinessBuffer:
    def __init__(self) -> None:
        self._lanes: dict[Lane, deque[QueuedFrame]] = {
            Lane.CONTROL: deque(),
            Lane.AUDIO: deque(),
        }
        self._next_position = 0
        self._drained = False

    def __len__(self) -> int:
        return sum(len(lane) for lane in self._lanes.values())

    @property
    def is_drained(self) -> bool:
        return self._drained

    def pending(self, lane: Lane) -> int:
        return len(self._lanes[lane])

    def append(self, lane: Lane, message: str) -> QueuedFrame:
        if self._drained:
            raise BufferDrainedError("readiness buffer already drained")
        frame = QueuedFrame(position=self._next_position, lane=lane, message=message)
        self._next_position += 1
        self._lanes[lane].append(frame)
        return frame

    def pop_next(self) -> Optional[QueuedFrame]:
        """Pop the next frame in drain order, or None when both lanes are empty."""
        for lane in (Lane.CONTROL, Lane.AUDIO):
            if self._lanes[lane]:
                return self._lanes[lane].popleft()
        return None

    async def drain(self, send: Callable[[str], Awaitable[None]]) -> int:
        """
        Send every held frame through `send` and close the buffer.

        Frames appended while a send is in flight are picked up by the same
        pass. If `send` raises, the failing frame is dropped, the rest stay
        queued and the exception propagates.
        """
        if self._drained:
            return 0

        sent = 0
        while True:
            frame = self.pop_next()
            if frame is None:
                break
            await send(frame.message)
            sent += 1

        self._drained = True
        logger.debug("Readiness buffer drained", frames=sent)
        return sent

    def discard(self) -> int:
        """Drop all held frames and close the buffer. Returns how many were dropped."""
        dropped = len(self)
        for lane in self._lanes.values():
            lane.clear()
        self._drained = True
        return dropped
