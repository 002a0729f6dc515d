"""Unit tests for the structured-record codec."""

import json

import pytest

from gamal.llm.codec import (
    FIELDS,
    RecordCodec,
    decode_json,
    decode_text,
    encode_json,
    encode_text,
)


class TestDecodeText:
    """Test decoding of 'field: value' text."""

    def test_decodes_all_fields(self):
        """Test every field is extracted from well-formed output."""
        text = (
            "tool: Google\n"
            "language: French\n"
            "thought: Cela concerne la géographie\n"
            "keyphrases: lac de Pitch Trinidad\n"
            "observation: Le plus grand dépôt d'asphalte.\n"
            "topic: géographie"
        )

        record = decode_text(text)

        assert record == {
            "tool": "Google",
            "language": "French",
            "thought": "Cela concerne la géographie",
            "keyphrases": "lac de Pitch Trinidad",
            "observation": "Le plus grand dépôt d'asphalte.",
            "topic": "géographie",
        }

    def test_field_name_inside_value_is_not_a_marker(self):
        """Test a thought mentioning another field name keeps its content."""
        text = (
            "thought: the keyphrases: should mention the topic: carefully\n"
            "keyphrases: largest planet\n"
            "topic: astronomy"
        )

        record = decode_text(text)

        assert record["topic"] == "astronomy"
        assert record["keyphrases"] == "largest planet"
        assert record["thought"] == "the keyphrases: should mention the topic: carefully"

    def test_anchor_value_spans_lines(self):
        """Test the last field keeps multi-line content."""
        record = decode_text("keyphrases: a\ntopic: line one\nline two")

        assert record["topic"] == "line one\nline two"

    def test_non_anchor_keeps_first_line(self):
        """Test non-terminal fields keep only their first line."""
        record = decode_text("thought: first\nsecond\nkeyphrases: k\ntopic: t")

        assert record["thought"] == "first"

    def test_markers_ignore_case(self):
        """Test upper-case markers are recognized."""
        record = decode_text("TOOL: Google.\nTHOUGHT: x\nKEYPHRASES: y\nTOPIC: z")

        assert record == {"tool": "Google.", "thought": "x", "keyphrases": "y", "topic": "z"}

    def test_anchors_on_last_present_field_without_topic(self):
        """Test a record without topic still decodes."""
        record = decode_text("tool: Google\nlanguage: English\nkeyphrases: rarest mineral")

        assert record == {"tool": "Google", "language": "English", "keyphrases": "rarest mineral"}

    def test_no_markers_gives_empty_record(self):
        """Test unrelated text yields an empty record."""
        assert decode_text("I cannot help with that.") == {}
        assert decode_text("") == {}


class TestEncodeText:
    """Test encoding to 'field: value' text."""

    def test_emits_non_empty_fields_in_order(self):
        """Test field order and omission of empty values."""
        text = encode_text({"topic": "t", "tool": "Google", "thought": "", "keyphrases": "k"})

        assert text == "tool: Google\nkeyphrases: k\ntopic: t"

    @pytest.mark.parametrize("record", [
        {"tool": "Google", "language": "English", "keyphrases": "largest planet", "topic": "astronomy"},
        {"inquiry": "Who?", "answer": "Someone [citation:1]."},
        {"thought": "a thought", "observation": "an observation"},
        {field: f"value of {field}" for field in FIELDS},
    ])
    def test_round_trip(self, record):
        """Test decode(encode(record)) returns the record."""
        assert decode_text(encode_text(record)) == record


class TestJSON:
    """Test JSON decoding with truncation repair."""

    def test_decodes_complete_json(self):
        """Test plain JSON objects decode to string fields."""
        record = decode_json('{"tool": "Google", "keyphrases": "k", "topic": "t"}')

        assert record == {"tool": "Google", "keyphrases": "k", "topic": "t"}

    def test_repairs_missing_brace(self):
        """Test a completion cut before the closing brace."""
        record = decode_json('{"tool": "Google", "topic": "astronomy"')

        assert record == {"tool": "Google", "topic": "astronomy"}

    def test_repairs_missing_quote_and_brace(self):
        """Test a completion cut inside a string value."""
        record = decode_json('{"tool": "Google", "topic": "astron')

        assert record == {"tool": "Google", "topic": "astron"}

    def test_unrecoverable_gives_empty_record(self):
        """Test garbage decodes to an empty record without raising."""
        assert decode_json('{"tool": ') == {}
        assert decode_json("not json") == {}
        assert decode_json('["a", "b"]') == {}

    def test_drops_unknown_and_non_scalar_fields(self):
        """Test only known scalar fields are kept."""
        record = decode_json('{"tool": "Google", "extra": "x", "keyphrases": ["a"], "topic": 42}')

        assert record == {"tool": "Google", "topic": "42"}

    def test_encode_json_orders_fields(self):
        """Test JSON encoding keeps field order and non-ASCII text."""
        text = encode_json({"topic": "géographie", "tool": "Google", "thought": ""})

        assert list(json.loads(text).keys()) == ["tool", "topic"]
        assert "géographie" in text


class TestRecordCodec:
    """Test codec selection by output mode."""

    def test_text_mode_encodes_lines(self):
        """Test text mode encodes 'field: value' lines."""
        assert RecordCodec().encode({"tool": "Google"}) == "tool: Google"

    def test_json_mode_encodes_json(self):
        """Test JSON mode encodes objects."""
        assert json.loads(RecordCodec(json_mode=True).encode({"tool": "Google"})) == {"tool": "Google"}

    def test_decode_detects_format(self):
        """Test decode accepts either format in either mode."""
        codec = RecordCodec(json_mode=False)

        assert codec.decode('{"topic": "t"}') == {"topic": "t"}
        assert RecordCodec(json_mode=True).decode("topic: t") == {"topic": "t"}
