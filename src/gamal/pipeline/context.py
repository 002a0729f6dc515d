"""Pipeline state and caller-supplied delegates."""

from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from gamal.models.chat import Reference, Turn


class PipelineDelegates:
    """
    Side effects the caller wants to observe during a pipeline run.

    Subclass and override what you need; every hook defaults to a no-op.
    Enter and leave are called once per executed stage, in matching pairs.
    Partial answers are delivered only during the Respond stage, and only
    when ``streams_answer`` is true.
    """

    streams_answer = False

    def on_stage_enter(self, name: str) -> None:
        pass

    def on_stage_leave(self, name: str, fields: Dict[str, Any]) -> None:
        pass

    def on_partial_answer(self, text: str) -> None:
        pass


class Context(BaseModel):
    """
    State threaded through the pipeline stages.

    Each stage returns a copy with its outputs merged in
    (``context.model_copy(update=...)``); history is read-only.
    """

    inquiry: str
    history: Tuple[Turn, ...] = ()
    thought: Optional[str] = None
    keyphrases: Optional[str] = None
    observation: Optional[str] = None
    topic: Optional[str] = None
    language: Optional[str] = None
    references: List[Reference] = Field(default_factory=list)
    answer: str = ""
    warnings: List[str] = Field(default_factory=list)
    delegates: PipelineDelegates = Field(default_factory=PipelineDelegates)

    model_config = {"frozen": True, "arbitrary_types_allowed": True}
