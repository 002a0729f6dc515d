"""Structured-record codec for LLM output.

A record is a plain dict mapping a fixed, ordered set of field names to text.
Two encodings are supported:

- line text, one ``field: value`` per line (what small models follow best)
- a JSON object (used with JSON-schema constrained completions)

Decoding never raises. Input that cannot be understood yields an empty
record, which callers treat as "required field missing".
"""

import json
import re
from typing import Dict, Iterable, Optional, Sequence


Record = Dict[str, str]

# The last field is the anchor: its value is the only one allowed to span lines.
FIELDS = (
    "inquiry",
    "tool",
    "language",
    "thought",
    "keyphrases",
    "observation",
    "answer",
    "topic",
)


def _last_marker(text: str, field: str) -> Optional[re.Match]:
    """Return the right-most ``field:`` marker in text (case-insensitive)."""
    last = None
    for match in re.finditer(re.escape(field) + ":", text, re.IGNORECASE):
        last = match
    return last


def decode_text(text: str, fields: Sequence[str] = FIELDS) -> Record:
    """
    Break down ``field: value`` text into a record.

    Models often repeat field names inside a value (a thought mentioning the
    word "topic:"), so parsing starts from the right: the anchor is the last
    occurrence of the last field (in ``fields`` order) present in the text,
    and every other field takes the right-most marker left of what has
    already been consumed. The anchor value runs to the end of the text;
    other values keep only their first line.

    Args:
        text: Raw completion text
        fields: Ordered field names (default: FIELDS)

    Returns:
        Record with the fields that were found

    Example:
        >>> decode_text("tool: Google\\nlanguage: French\\ntopic: géographie")
        {'topic': 'géographie', 'language': 'French', 'tool': 'Google'}
    """
    record: Record = {}
    anchor = None
    anchor_match = None
    for field in reversed(fields):
        anchor_match = _last_marker(text, field)
        if anchor_match:
            anchor = field
            break

    if anchor is None:
        return record

    record[anchor] = text[anchor_match.end():].strip()
    remaining = text[:anchor_match.start()]

    for field in reversed(fields):
        if field == anchor:
            continue
        match = _last_marker(remaining, field)
        if match:
            value = remaining[match.end():].strip()
            record[field] = value.split("\n")[0].strip()
            remaining = remaining[:match.start()]

    return record


def encode_text(record: Record, fields: Sequence[str] = FIELDS) -> str:
    """
    Construct ``field: value`` lines from a record.

    Only non-empty values are emitted, in field order.
    """
    lines = []
    for field in fields:
        value = record.get(field)
        if value:
            lines.append(f"{field}: {value}")
    return "\n".join(lines)


def _load_json_object(text: str) -> Optional[dict]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else {}


def decode_json(text: str, fields: Iterable[str] = FIELDS) -> Record:
    """
    Parse a JSON record, repairing truncation at the end.

    Streamed completions can stop at any token, so after a plain parse
    fails, a closing brace and then a closing quote plus brace are tried.

    Args:
        text: JSON text, possibly truncated
        fields: Known field names; anything else is dropped

    Returns:
        Record with known scalar fields as strings, or {} if unrecoverable
    """
    text = text.strip()
    data = None
    for suffix in ("", "}", '"}'):
        data = _load_json_object(text + suffix)
        if data is not None:
            break

    if not data:
        return {}

    record: Record = {}
    for field in fields:
        value = data.get(field)
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            record[field] = str(value)
    return record


def encode_json(record: Record, fields: Sequence[str] = FIELDS) -> str:
    """Serialize the non-empty fields of a record as pretty JSON, in field order."""
    ordered = {field: record[field] for field in fields if record.get(field)}
    return json.dumps(ordered, indent=2, ensure_ascii=False)


class RecordCodec:
    """
    Encoder/decoder pair selected by output mode.

    In JSON mode records are written as JSON; decoding accepts either form
    since models in JSON mode can still fall back to plain lines and vice
    versa.
    """

    def __init__(self, json_mode: bool = False, fields: Sequence[str] = FIELDS):
        self.json_mode = json_mode
        self.fields = tuple(fields)

    def encode(self, record: Record) -> str:
        if self.json_mode:
            return encode_json(record, self.fields)
        return encode_text(record, self.fields)

    def decode(self, text: str) -> Record:
        if text.lstrip().startswith("{"):
            return decode_json(text, self.fields)
        return decode_text(text, self.fields)
