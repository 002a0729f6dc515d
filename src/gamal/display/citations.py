"""Incremental rewriting of inline citation markers for display.

Answers cite references as ``[citation:N]`` where N is the reference's search
rank. For display, markers are renumbered in first-seen order, so the first
reference cited is always shown as [1], the second distinct one as [2], and
so on.
"""

import re
from typing import Callable, List, Optional, Sequence, Tuple

from gamal.models.chat import Reference


# Mixed bracket styles like "(citation:3]" are accepted on purpose
PATTERN = re.compile(r"[\[(]citation[:\s](\d+)[\])]", re.IGNORECASE)

# Longest raw tail that is withheld while waiting for a marker to complete
MAX_LOOKAHEAD = 3 * len("[citation:x]")

Printer = Callable[[str], None]
Citer = Callable[[int], str]


def plain_cite(ordinal: int) -> str:
    return f"[{ordinal}]"


class CitationDisplay:
    """
    Citation rewriter for one streamed answer.

    Text is pushed as it arrives; rewritten text is handed to ``print`` as
    soon as it cannot be part of a marker still being received. Only raw
    text is withheld, never rewritten output, so a formatted marker is
    never split across two prints. The concatenation of everything printed
    is the same whatever the chunking of the input.

    Example:
        >>> out = []
        >>> display = CitationDisplay(out.append)
        >>> display.push("See [citation:2] and [cita")
        >>> display.push("tion:5].")
        >>> display.flush()
        [2, 5]
        >>> "".join(out)
        'See [1] and [2].'
    """

    def __init__(self, print: Optional[Printer] = None, cite: Citer = plain_cite):
        self.print = print
        self.cite = cite
        self.buffer = ""
        self.refs: List[int] = []

    def _ordinal(self, number: int) -> int:
        if number not in self.refs:
            self.refs.append(number)
        return self.refs.index(number) + 1

    def _emit(self, text: str) -> None:
        if text and self.print:
            self.print(text)

    def push(self, text: str) -> None:
        """Append streamed text, printing everything that is safe to print."""
        self.buffer += text

        output = []
        position = 0
        for match in PATTERN.finditer(self.buffer):
            output.append(self.buffer[position:match.start()])
            output.append(self.cite(self._ordinal(int(match.group(1)))))
            position = match.end()

        rest = self.buffer[position:]
        if len(rest) > MAX_LOOKAHEAD:
            output.append(rest[:-MAX_LOOKAHEAD])
            rest = rest[-MAX_LOOKAHEAD:]

        self.buffer = rest
        self._emit("".join(output))

    def flush(self) -> List[int]:
        """
        Print whatever is left at end of stream and reset.

        Returns:
            Cited reference numbers in first-seen order (index + 1 is the
            displayed ordinal)
        """
        self._emit(self.buffer)
        refs = self.refs
        self.buffer = ""
        self.refs = []
        return refs


def rewrite_citations(text: str, cite: Citer = plain_cite) -> Tuple[str, List[int]]:
    """Rewrite all citation markers of a complete text."""
    output: List[str] = []
    display = CitationDisplay(output.append, cite)
    display.push(text)
    refs = display.flush()
    return "".join(output), refs


def strip_citations(text: str) -> str:
    """Remove citation markers, e.g. before reading an answer aloud."""
    return PATTERN.sub("", text)


def cited_urls(refs: Sequence[int], references: Sequence[Reference]) -> List[Tuple[int, str]]:
    """
    Map displayed ordinals to reference URLs.

    A cited number with no matching reference (the model invented it) is
    skipped, but keeps its ordinal.
    """
    by_position = {reference.position: reference for reference in references}
    urls = []
    for ordinal, number in enumerate(refs, start=1):
        reference = by_position.get(number)
        if reference and reference.url:
            urls.append((ordinal, reference.url))
    return urls


def format_answer(answer: str, references: Sequence[Reference]) -> str:
    """Plain-text answer with [n] citations followed by a References list."""
    text, refs = rewrite_citations(answer)
    urls = cited_urls(refs, references)
    if urls:
        text += "\n\nReferences:\n"
        text += "".join(f"[{ordinal}] {url}\n" for ordinal, url in urls)
    return text
