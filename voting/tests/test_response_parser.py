"""Tests for voter response parsing."""

import pytest

from voting.src.models import Subtask
from voting.src.response_parser import (
    MAX_REASONING_LENGTH,
    MalformedResponseError,
    extract_json_object,
    parse_confidence,
    parse_entities,
    parse_subtasks,
    parse_vote_response,
)


class TestExtractJsonObject:
    """Tests for locating a JSON object in free text."""

    def test_plain_object(self):
        assert extract_json_object('{"intent": "ayuda"}') == {"intent": "ayuda"}

    def test_fenced_block(self):
        text = 'Here you go:\n```json\n{"intent": "ayuda", "confidence": 0.7}\n```\nThanks'
        assert extract_json_object(text) == {"intent": "ayuda", "confidence": 0.7}

    def test_object_after_prose(self):
        text = 'I think {this} is it. {"intent": "crear_issue", "confidence": 0.8}'
        assert extract_json_object(text)["intent"] == "crear_issue"

    def test_no_object(self):
        assert extract_json_object("no json here") is None


class TestParseConfidence:
    """Tests for confidence normalization."""

    @pytest.mark.parametrize("value, expected", [
        (0.85, 0.85),
        ("0.5", 0.5),
        (85, 0.85),
        ("85%", 0.85),
        (1, 1.0),
        (-0.2, 0.0),
        (250, 1.0),
    ])
    def test_normalizes(self, value, expected):
        assert parse_confidence(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", [None, True, "high"])
    def test_rejects_non_numeric(self, value):
        with pytest.raises(MalformedResponseError):
            parse_confidence(value)


class TestParseEntitiesAndSubtasks:
    """Tests for entity and subtask coercion."""

    def test_entities_are_strings(self):
        entities = parse_entities({"city": "Madrid", "days": 3, "skip": None, "tags": ["a"]})
        assert entities == {"city": "Madrid", "days": "3", "tags": '["a"]'}

    def test_entities_not_a_dict(self):
        assert parse_entities(["city"]) == {}

    def test_subtasks_from_strings_and_dicts(self):
        subtasks = parse_subtasks([
            "speak",
            {"action": "fetch_weather", "priority": "high", "city": "Madrid"},
            {"priority": 2},
            "",
        ])
        assert subtasks == (Subtask("speak", 1), Subtask("fetch_weather", 3))
        assert subtasks[1].params == {"city": "Madrid"}

    def test_subtasks_not_a_list(self):
        assert parse_subtasks("speak") == ()


class TestParseVoteResponse:
    """Tests for parse_vote_response."""

    def test_json_response(self):
        fields = parse_vote_response(
            '{"intent": "consultar_tiempo", "confidence": 0.9, '
            '"entities": {"city": "Madrid"}, "subtasks": ["fetch_weather"], '
            '"reasoning": "asks about weather"}'
        )
        assert fields["intent"] == "consultar_tiempo"
        assert fields["confidence"] == 0.9
        assert fields["entities"] == {"city": "Madrid"}
        assert fields["subtasks"] == (Subtask("fetch_weather"),)
        assert fields["reasoning"] == "asks about weather"

    def test_text_fallback(self):
        fields = parse_vote_response(
            "INTENT: crear_proyecto\nCONFIDENCE: 0.75\nREASONING: wants a new project"
        )
        assert fields["intent"] == "crear_proyecto"
        assert fields["confidence"] == 0.75
        assert fields["reasoning"] == "wants a new project"
        assert fields["entities"] == {}

    def test_reasoning_is_truncated(self):
        fields = parse_vote_response(
            '{"intent": "ayuda", "confidence": 0.5, "reasoning": "' + "x" * 1000 + '"}'
        )
        assert len(fields["reasoning"]) == MAX_REASONING_LENGTH

    @pytest.mark.parametrize("text", [
        "",
        "   ",
        "I am not sure what you mean",
        '{"confidence": 0.9}',
        '{"intent": "ayuda"}',
        '{"intent": "ayuda", "confidence": "very"}',
    ])
    def test_malformed(self, text):
        with pytest.raises(MalformedResponseError):
            parse_vote_response(text)
