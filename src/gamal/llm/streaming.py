"""Server-sent events parser for streaming completions.

This module decodes ``text/event-stream`` bodies from chunked async streams,
with buffering of lines that span network reads.
"""

import json
from typing import AsyncIterator, Optional

from gamal.utils.logging import get_logger


logger = get_logger(__name__)

DONE_SENTINEL = "[DONE]"


def _parse_data_line(line: str, line_number: int) -> Optional[dict]:
    """Parse the JSON payload of one ``data:`` line, or None if unusable."""
    payload = line[len("data:"):].strip()
    if not payload:
        return None

    try:
        obj = json.loads(payload)
    except json.JSONDecodeError as e:
        logger.warning(
            "sse_malformed_json",
            line_number=line_number,
            line=line[:200],
            error=e.msg,
            position=e.pos,
        )
        return None

    if not isinstance(obj, dict):
        logger.warning(
            "sse_unexpected_payload",
            line_number=line_number,
            payload_type=type(obj).__name__,
        )
        return None

    return obj


async def parse_sse_stream(stream: AsyncIterator[str]) -> AsyncIterator[dict]:
    """
    Parse SSE ``data:`` events from a chunked async text stream.

    Input: arbitrary chunks ('data: {"cho', 'ices": [...]}\\n\\nda', ...)
    Output: the JSON object of each complete ``data:`` line

    Handling:
    - Blank lines and other SSE fields (event:, id:) → skipped
    - Comment lines (starting with ':') → skipped
    - ``data: [DONE]`` → parsing stops, the rest of the stream is ignored
    - Invalid JSON payload → logged and skipped
    - Unterminated final line → parsed if it is a complete data line

    Args:
        stream: Async iterator yielding text chunks from the response body

    Yields:
        Parsed JSON objects (dicts) as complete lines arrive

    Example:
        ```python
        async def body():
            yield 'data: {"choices": [{"delta": {"con'
            yield 'tent": "Hi"}}]}\\n\\n'
            yield 'data: [DONE]\\n\\n'

        async for event in parse_sse_stream(body()):
            print(event)  # {"choices": [{"delta": {"content": "Hi"}}]}
        ```
    """
    buffer = ""
    line_number = 0

    async for chunk in stream:
        buffer += chunk

        while "\n" in buffer:
            line_end = buffer.index("\n")
            line = buffer[:line_end].strip()
            buffer = buffer[line_end + 1:]
            line_number += 1

            if not line or line.startswith(":"):
                continue

            if not line.startswith("data:"):
                continue

            if line[len("data:"):].strip() == DONE_SENTINEL:
                logger.debug("sse_done", line_number=line_number)
                return

            obj = _parse_data_line(line, line_number)
            if obj is not None:
                yield obj

    line = buffer.strip()
    if line.startswith("data:") and line[len("data:"):].strip() != DONE_SENTINEL:
        obj = _parse_data_line(line, line_number + 1)
        if obj is not None:
            yield obj
