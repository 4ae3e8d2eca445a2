"""
Tests for Twilio <-> Realtime translation.
"""

import json
from dataclasses import replace

import pytest

from src.bridge.config import get_config
from src.bridge.readiness import Lane
from src.bridge.realtime_protocol import normalize_realtime_event
from src.bridge.translator import ProtocolTranslator
from src.bridge.twilio_protocol import TwilioEventType, TwilioMediaEvent, TwilioStartEvent


@pytest.fixture
def translator():
    return ProtocolTranslator(get_config(), instructions="Be brief.", greeting="Say hi.")


def _start_event():
    return TwilioStartEvent(stream_sid="MZ1", call_sid="CA1")


def _media_event(payload):
    return TwilioMediaEvent(stream_sid="MZ1", payload=payload)


class TestFromTelephony:
    def test_start_emits_config_then_greeting_on_control_lane(self, translator):
        translation = translator.from_telephony(TwilioEventType.START, _start_event())

        assert [m.lane for m in translation.ai_messages] == [Lane.CONTROL, Lane.CONTROL]
        first, second = (json.loads(m.message) for m in translation.ai_messages)
        assert first["type"] == "session.update"
        assert first["session"]["instructions"] == "Be brief."
        assert second["type"] == "response.create"
        assert second["response"]["instructions"] == "Say hi."
        assert translation.close_ai is False

    def test_vad_threshold_and_modalities_follow_config(self):
        config = replace(get_config(), openai_realtime_vad_threshold=0.8, openai_realtime_text_output=False)
        translator = ProtocolTranslator(config, instructions="", greeting="")

        translation = translator.from_telephony(TwilioEventType.START, _start_event())
        session = json.loads(translation.ai_messages[0].message)["session"]

        assert session["turn_detection"]["threshold"] == 0.8
        assert session["modalities"] == ["audio"]

    def test_media_is_one_audio_append(self, translator):
        translation = translator.from_telephony(TwilioEventType.MEDIA, _media_event("AAA"))

        assert len(translation.ai_messages) == 1
        message = translation.ai_messages[0]
        assert message.lane == Lane.AUDIO
        assert json.loads(message.message) == {
            "type": "input_audio_buffer.append",
            "audio": "AAA",
            "format": "g711_ulaw",
        }

    def test_empty_media_is_dropped(self, translator):
        assert translator.from_telephony(TwilioEventType.MEDIA, _media_event("")).ai_messages == ()

    def test_stop_commits_on_audio_lane_and_closes(self, translator):
        translation = translator.from_telephony(TwilioEventType.STOP, {})

        assert translation.close_ai is True
        assert [m.lane for m in translation.ai_messages] == [Lane.AUDIO]
        assert json.loads(translation.ai_messages[0].message) == {"type": "input_audio_buffer.commit"}

    @pytest.mark.parametrize("event_type", [TwilioEventType.CONNECTED, TwilioEventType.MARK, TwilioEventType.DTMF])
    def test_informational_events_produce_nothing(self, translator, event_type):
        translation = translator.from_telephony(event_type, {})
        assert translation.ai_messages == ()
        assert translation.close_ai is False


class TestFromRealtime:
    def test_audio_delta_becomes_outbound_media(self, translator):
        event = normalize_realtime_event({"type": "response.output_audio.delta", "delta": "XYZ"})
        translation = translator.from_realtime(event, "MZ1")

        assert translation.is_audio is True
        assert [json.loads(m) for m in translation.telephony_messages] == [
            {"event": "media", "streamSid": "MZ1", "media": {"payload": "XYZ", "track": "outbound"}}
        ]

    def test_audio_delta_without_stream_sid(self, translator):
        event = normalize_realtime_event({"type": "response.audio.delta", "delta": "XYZ"})
        translation = translator.from_realtime(event, "")

        assert "streamSid" not in json.loads(translation.telephony_messages[0])

    def test_text_delta_is_never_forwarded(self, translator):
        event = normalize_realtime_event({"type": "response.text.delta", "delta": "[[ROUTE:JAY]]"})
        translation = translator.from_realtime(event, "MZ1")

        assert translation.telephony_messages == ()
        assert translation.text_fragment == "[[ROUTE:JAY]]"

    @pytest.mark.parametrize(
        "event_type",
        ["response.done", "response.completed", "output_audio.done", "response.audio.done"],
    )
    def test_turn_complete_spellings_emit_done_mark(self, translator, event_type):
        translation = translator.from_realtime(normalize_realtime_event({"type": event_type}), "MZ1")

        assert translation.turn_complete is True
        assert [json.loads(m) for m in translation.telephony_messages] == [
            {"event": "mark", "streamSid": "MZ1", "mark": {"name": "done"}}
        ]

    def test_commit_request_is_sent_back_to_ai(self, translator):
        event = normalize_realtime_event({"type": "input_audio_buffer.commit"})
        translation = translator.from_realtime(event, "MZ1")

        assert translation.telephony_messages == ()
        assert [json.loads(m.message) for m in translation.ai_messages] == [{"type": "input_audio_buffer.commit"}]

    def test_unknown_event_is_ignored(self, translator):
        translation = translator.from_realtime(normalize_realtime_event({"type": "rate_limits.updated"}), "MZ1")

        assert translation.telephony_messages == ()
        assert translation.ai_messages == ()
        assert translation.text_fragment is None
        assert translation.turn_complete is False
