"""Test-spec evaluator.

A test spec is a plain text file of ``Role: content`` lines::

    Story: Geography
    User: What is the capital of France?
    Assistant: /Paris/
    Pipeline.Reason.Language: /English/

``Story`` starts a fresh conversation, ``User`` runs the pipeline, and the
remaining roles assert against the last turn. Expected text may hold one or
more ``/regex/`` segments, each matched case-insensitively; text without
any segment is used as a single regex. ``#`` starts a comment.
"""

import re
from pathlib import Path
from typing import List, Optional, Pattern, Sequence, Tuple

from pydantic import BaseModel, Field
from rich.console import Console
from rich.text import Text

from gamal.display.citations import cited_urls, rewrite_citations
from gamal.display.review import render_review
from gamal.models.chat import Turn
from gamal.pipeline.runner import Pipeline
from gamal.services.exceptions import EvaluationError
from gamal.utils.logging import get_logger


logger = get_logger(__name__)

Span = Tuple[int, int]

ASSERTION_ROLES = ("Assistant", "Pipeline.Reason.Keyphrases", "Pipeline.Reason.Language")


def regexify(expected: str) -> List[Pattern]:
    """
    Turn expected text into case-insensitive regexes.

    Example:
        >>> [r.pattern for r in regexify("/Paris/ is the /capital/")]
        ['Paris', 'capital']
    """
    regexes = []
    pos = 0
    while pos < len(expected):
        start = expected.find("/", pos)
        if start < 0:
            break
        end = start + 1
        while end < len(expected):
            if expected[end] == "/" and expected[end - 1] != "\\":
                break
            end += 1
        if end >= len(expected):
            break
        regexes.append(re.compile(expected[start + 1:end], re.IGNORECASE))
        pos = end + 1

    if not regexes:
        regexes.append(re.compile(expected, re.IGNORECASE))
    return regexes


def match_spans(text: str, regexes: Sequence[Pattern]) -> List[Span]:
    """Return the first match span of each regex that matches."""
    spans = []
    for regex in regexes:
        match = regex.search(text)
        if match:
            spans.append(match.span())
    return spans


def highlight(text: str, regexes: Sequence[Pattern], style: str = "bold green") -> Tuple[Text, List[int]]:
    """
    Render an answer for the terminal with matched parts highlighted.

    Citations are rewritten first, so the regexes are matched against the
    displayed text.

    Returns:
        Styled text and the cited reference numbers in display order
    """
    display, refs = rewrite_citations(text)
    styled = Text(display)
    styled.highlight_regex(r"\[\d+\]", "bright_black")
    for start, end in match_spans(display, regexes):
        styled.stylize(style, start, end)
    return styled, refs


def parse_line(line: str) -> Optional[Tuple[str, str]]:
    """Split a spec line into (role, content); None for blank/comment lines."""
    text = line.strip()
    marker = text.find("#")
    if marker >= 0:
        text = text[:marker].strip()
    if ":" not in text:
        return None
    role, content = text.split(":", 1)
    return role, content.strip()


class EvaluationReport(BaseModel):
    """Tally of one evaluated test-spec file."""

    path: str
    total: int = 0
    failures: int = 0
    messages: List[str] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.failures == 0


class Evaluator:
    """
    Runs test-spec files against a pipeline and prints the outcome.

    Example:
        >>> evaluator = Evaluator(pipeline)
        >>> report = await evaluator.run_file(Path("tests/geography.txt"))
        >>> report.passed
        True
    """

    def __init__(
        self,
        pipeline: Pipeline,
        console: Optional[Console] = None,
        fail_fast: bool = False,
        verbose: bool = False,
    ):
        self.pipeline = pipeline
        self.console = console or Console()
        self.fail_fast = fail_fast
        self.verbose = verbose

    async def run_file(self, path: Path) -> EvaluationReport:
        """
        Evaluate every line of a test-spec file.

        Raises:
            EvaluationError: Unknown role, or an assertion before any answer
            PipelineError: The pipeline failed on a User line
        """
        report = EvaluationReport(path=str(path))
        history: List[Turn] = []

        logger.info("evaluation_started", path=str(path))

        lines = Path(path).read_text(encoding="utf-8").split("\n")
        for line_number, line in enumerate(lines, start=1):
            parsed = parse_line(line)
            if parsed is None:
                continue
            role, content = parsed

            if role == "Story":
                self.console.print()
                self.console.print("-----------------------------------")
                self.console.print(Text.assemble("Story: ", (content, "bold magenta")))
                self.console.print("-----------------------------------")
                history = []

            elif role == "User":
                self.console.print()
                result = await self.pipeline.run(content, history)
                history.append(Turn.from_result(content, result))
                report.total += 1

            elif role in ASSERTION_ROLES:
                if not history:
                    raise EvaluationError("There is no answer yet!", line_number=line_number)
                passed = self._check(role, content, history[-1], report)
                if not passed and self.fail_fast:
                    break

            else:
                raise EvaluationError(f"Unknown role: {role}!", line_number=line_number)

        logger.info(
            "evaluation_completed",
            path=str(path),
            total=report.total,
            failures=report.failures,
        )

        if report.passed:
            self.console.print(Text.assemble(("✓", "green"), " SUCCESS: ", (f"{report.total} test(s)", "green"), "."))
        else:
            self.console.print(Text.assemble(
                ("✘", "red"),
                " FAIL: ",
                (f"{report.total} test(s), ", "bright_black"),
                (f"{report.failures} failure(s)", "red"),
                ".",
            ))
        return report

    def _check(self, role: str, expected: str, last: Turn, report: EvaluationReport) -> bool:
        if role == "Assistant":
            target = last.answer
        elif role == "Pipeline.Reason.Keyphrases":
            target = last.keyphrases or ""
        else:
            target = last.language or ""

        regexes = regexify(expected)
        spans = match_spans(target, regexes)

        if len(spans) == len(regexes):
            if role == "Assistant":
                self.console.print(Text.assemble(
                    ("✓ ", "green"),
                    (last.inquiry, "cyan"),
                    (f" [{last.duration} ms]", "bright_black"),
                ))
                styled, refs = highlight(target, regexes)
                self.console.print(Text("  ") + styled)
                for ordinal, url in cited_urls(refs, last.references):
                    self.console.print(f"  [{ordinal}] {url}", style="bright_black", markup=False, highlight=False)
                if self.verbose:
                    self.console.print(render_review(last.stages))
            else:
                styled, _ = highlight(target, regexes, style="green")
                self.console.print(Text.assemble(("    ⇢ ", ""), (f"{role}: ", "bright_black")) + styled)
            return True

        report.failures += 1
        pattern_list = ",".join(f"/{regex.pattern}/" for regex in regexes)
        report.messages.append(f"{last.inquiry}: expected {role} to contain {pattern_list}")
        logger.warning(
            "evaluation_assertion_failed",
            role=role,
            inquiry=last.inquiry,
            expected=pattern_list,
            actual=target,
        )

        if role == "Assistant":
            self.console.print(Text.assemble(
                ("✘ ", "red"),
                (last.inquiry, "yellow"),
                (f" [{last.duration} ms]", "bright_black"),
            ))
        self.console.print(Text.assemble(
            (f"Expected {role} to contain: ", "red"),
            (pattern_list, "cyan"),
        ))
        self.console.print(Text.assemble(
            (f"Actual {role}: ", "red"),
            (target, "magenta"),
        ))
        self.console.print(render_review(last.stages))
        return False
