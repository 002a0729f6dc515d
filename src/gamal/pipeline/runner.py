"""Pipeline runner: Reason → Search → Respond."""

import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from gamal.llm.client import CompletionClient
from gamal.llm.codec import RecordCodec
from gamal.models.chat import PipelineResult, Stage, Turn
from gamal.pipeline import reason, respond, search
from gamal.pipeline.context import Context, PipelineDelegates
from gamal.services.exceptions import PipelineError
from gamal.services.searxng import SearchClient
from gamal.utils.logging import get_logger


logger = get_logger(__name__)

StageStep = Callable[[Context], Awaitable[Tuple[Context, Dict[str, Any]]]]


class Pipeline:
    """
    Answers one inquiry at a time by running the three stages in order.

    A Pipeline holds no conversation state; history is passed in by the
    caller and is never modified.

    Example:
        >>> pipeline = Pipeline(CompletionClient(config.llm), SearchClient(config.search))
        >>> result = await pipeline.run("Which planet is the largest?")
        >>> result.answer
        'Jupiter is the largest planet in the Solar System [citation:1].'
    """

    def __init__(
        self,
        llm: CompletionClient,
        searcher: SearchClient,
        json_mode: Optional[bool] = None,
    ):
        """
        Initialize pipeline.

        Args:
            llm: Completion client used by Reason and Respond
            searcher: Search client used by Search
            json_mode: Structured JSON output for reasoning (default: from
                the LLM config)
        """
        self.llm = llm
        self.searcher = searcher
        if json_mode is None:
            json_mode = llm.config.json_schema
        self.codec = RecordCodec(json_mode=json_mode)

    def _steps(self) -> List[Tuple[str, StageStep]]:
        return [
            (reason.NAME, lambda context: reason.reason(context, self.llm, self.codec)),
            (search.NAME, lambda context: search.search(context, self.searcher)),
            (respond.NAME, lambda context: respond.respond(context, self.llm)),
        ]

    async def run(
        self,
        inquiry: str,
        history: Sequence[Turn] = (),
        delegates: Optional[PipelineDelegates] = None,
    ) -> PipelineResult:
        """
        Answer an inquiry.

        Args:
            inquiry: The user's question
            history: Earlier turns of the conversation, oldest first
            delegates: Optional observer of stages and streamed answer

        Returns:
            PipelineResult with the raw answer, references and stage trace

        Raises:
            PipelineError: A stage failed; the cause is chained
        """
        delegates = delegates or PipelineDelegates()
        context = Context(inquiry=inquiry, history=tuple(history), delegates=delegates)
        stages: List[Stage] = []
        start = time.monotonic()

        logger.info("pipeline_started", inquiry=inquiry, history_length=len(context.history))

        for name, step in self._steps():
            delegates.on_stage_enter(name)
            timestamp = time.time()
            stage_start = time.monotonic()
            try:
                context, fields = await step(context)
            except Exception as e:
                fields = {"error": str(e)}
                stages.append(Stage(
                    name=name,
                    timestamp=timestamp,
                    duration=int((time.monotonic() - stage_start) * 1000),
                    fields=fields,
                ))
                delegates.on_stage_leave(name, fields)
                logger.error(
                    "pipeline_stage_failed",
                    stage=name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise PipelineError(f"{name} failed: {e}", stage=name) from e

            stages.append(Stage(
                name=name,
                timestamp=timestamp,
                duration=int((time.monotonic() - stage_start) * 1000),
                fields=fields,
            ))
            delegates.on_stage_leave(name, fields)

        duration = int((time.monotonic() - start) * 1000)
        logger.info(
            "pipeline_completed",
            duration_ms=duration,
            reference_count=len(context.references),
            answer_length=len(context.answer),
        )

        return PipelineResult(
            answer=context.answer,
            topic=context.topic,
            language=context.language,
            thought=context.thought,
            keyphrases=context.keyphrases,
            observation=context.observation,
            references=list(context.references),
            stages=stages,
            warnings=list(context.warnings),
            duration=duration,
        )
