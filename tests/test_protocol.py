"""Tests for the timer message wire format."""

import json

import pytest
from pydantic import ValidationError

from src.protocol import TimerMessage, TimerMessageType, parse_message


class TestTimerMessage:
    def test_parse_wire_names(self):
        msg = parse_message(
            '{"type":"timer_update","sessionId":"abc","duration":12,"exerciseId":"Row"}'
        )
        assert msg.type == TimerMessageType.UPDATE
        assert msg.session_id == "abc"
        assert msg.duration == 12
        assert msg.exercise_id == "Row"

    def test_optional_fields_absent(self):
        msg = parse_message('{"type":"timer_pause"}')
        assert msg.session_id is None
        assert msg.duration is None
        assert msg.exercise_id is None

    def test_extra_fields_ignored(self):
        msg = parse_message('{"type":"timer_start","sessionId":"abc","sentAt":"now"}')
        assert msg.type == TimerMessageType.START

    def test_to_json_omits_absent_fields(self):
        msg = TimerMessage(type=TimerMessageType.RESET, session_id="abc")
        assert json.loads(msg.to_json()) == {"type": "timer_reset", "sessionId": "abc"}

    def test_to_json_uses_wire_names(self):
        msg = TimerMessage(
            type=TimerMessageType.UPDATE, session_id="abc", duration=0, exercise_id="Plank"
        )
        assert json.loads(msg.to_json()) == {
            "type": "timer_update",
            "sessionId": "abc",
            "duration": 0,
            "exerciseId": "Plank",
        }

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "[]",
            '{"sessionId":"abc"}',
            '{"type":"timer_stop"}',
            '{"type":"timer_update","duration":-1}',
            '{"type":"timer_update","duration":1.5}',
        ],
    )
    def test_rejects_malformed(self, raw):
        with pytest.raises(ValidationError):
            parse_message(raw)

    def test_message_type_values(self):
        assert {t.value for t in TimerMessageType} == {
            "timer_start",
            "timer_pause",
            "timer_reset",
            "timer_update",
        }
