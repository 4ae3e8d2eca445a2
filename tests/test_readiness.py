"""
Tests for the readiness buffer.
"""

import asyncio

import pytest

from src.bridge.readiness import BufferDrainedError, Lane, ReadinessBuffer


@pytest.mark.asyncio
async def test_drain_sends_control_lane_before_audio_lane():
    buffer = ReadinessBuffer()
    buffer.append(Lane.AUDIO, "a1")
    buffer.append(Lane.CONTROL, "config")
    buffer.append(Lane.AUDIO, "a2")
    buffer.append(Lane.CONTROL, "greeting")

    sent = []

    async def send(message):
        sent.append(message)

    count = await buffer.drain(send)

    assert count == 4
    assert sent == ["config", "greeting", "a1", "a2"]
    assert buffer.is_drained
    assert len(buffer) == 0


@pytest.mark.asyncio
async def test_frames_appended_during_drain_are_sent_once():
    buffer = ReadinessBuffer()
    for i in range(3):
        buffer.append(Lane.AUDIO, f"a{i}")

    sent = []

    async def slow_send(message):
        sent.append(message)
        if message == "a0":
            buffer.append(Lane.AUDIO, "late")
        await asyncio.sleep(0)

    await buffer.drain(slow_send)

    assert sent == ["a0", "a1", "a2", "late"]
    assert await buffer.drain(slow_send) == 0
    assert sent.count("late") == 1


def test_positions_increase_across_lanes():
    buffer = ReadinessBuffer()
    first = buffer.append(Lane.CONTROL, "config")
    second = buffer.append(Lane.AUDIO, "a1")

    assert (first.position, second.position) == (0, 1)
    assert buffer.pending(Lane.CONTROL) == 1
    assert buffer.pending(Lane.AUDIO) == 1


@pytest.mark.asyncio
async def test_append_after_drain_is_rejected():
    buffer = ReadinessBuffer()

    async def send(message):
        pass

    await buffer.drain(send)

    with pytest.raises(BufferDrainedError):
        buffer.append(Lane.AUDIO, "too late")


@pytest.mark.asyncio
async def test_failed_send_keeps_remaining_frames():
    buffer = ReadinessBuffer()
    buffer.append(Lane.AUDIO, "a1")
    buffer.append(Lane.AUDIO, "a2")

    async def failing_send(message):
        raise ConnectionError("gone")

    with pytest.raises(ConnectionError):
        await buffer.drain(failing_send)

    assert buffer.is_drained is False
    assert len(buffer) == 1


def test_discard_drops_everything():
    buffer = ReadinessBuffer()
    buffer.append(Lane.CONTROL, "config")
    buffer.append(Lane.AUDIO, "a1")

    assert buffer.discard() == 2
    assert len(buffer) == 0
    assert buffer.is_drained
