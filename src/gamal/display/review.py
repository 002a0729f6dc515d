"""Rendering of pipeline stage traces (the /review command)."""

import json
from typing import Any, Sequence

from rich.text import Text

from gamal.models.chat import Reference, Stage


def _reference_dict(reference: Any) -> dict:
    if isinstance(reference, Reference):
        return reference.model_dump()
    return dict(reference)


def _format_value(value: Any) -> str:
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, indent=2, ensure_ascii=False, default=str)
    return "" if value is None else str(value)


def format_review(stages: Sequence[Stage]) -> str:
    """Plain-text stage trace, for the HTTP and Telegram surfaces."""
    buffer = "Pipeline review:\n"
    for index, stage in enumerate(stages, start=1):
        buffer += f"\nStage #{index} {stage.name} [{stage.duration} ms]\n"
        for key, value in stage.fields.items():
            if key == "references":
                lines = []
                for reference in value:
                    ref = _reference_dict(reference)
                    lines.append(
                        f"[{ref.get('position')}] {ref.get('title', '')} ({ref.get('url')})\n"
                        f"{ref.get('snippet', '')}"
                    )
                buffer += f"{key}: \n" + "\n".join(lines) + "\n"
            else:
                buffer += f"{key}: {_format_value(value)}\n"
    return buffer


def render_review(stages: Sequence[Stage]) -> Text:
    """Colored stage trace for the terminal."""
    text = Text()
    text.append("Pipeline review\n", style="magenta")
    text.append("---------------\n")
    for index, stage in enumerate(stages, start=1):
        text.append(f"⇢ Stage #{index} ", style="green")
        text.append(stage.name, style="yellow")
        text.append(f" [{stage.duration} ms]\n", style="bright_black")
        for key, value in stage.fields.items():
            text.append(f"{key}: ", style="bright_black")
            if key == "references":
                for reference in value:
                    ref = _reference_dict(reference)
                    text.append(f"\n[{ref.get('position')}]", style="blue")
                    text.append(f" {ref.get('title', '')}", style="bold")
                    text.append(f" ({ref.get('url')})", style="bright_black")
                    text.append(f"\n{ref.get('snippet', '')}")
                text.append("\n")
            else:
                text.append(_format_value(value) + "\n")
    return text
