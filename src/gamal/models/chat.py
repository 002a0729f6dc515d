"""Pydantic models for conversations, references and pipeline results."""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional, Tuple


class Message(BaseModel):
    """A single chat message sent to the completion backend."""

    role: Literal["system", "user", "assistant"]
    content: str

    model_config = {"frozen": True}


class Reference(BaseModel):
    """
    A ranked search result normalized for citation.

    The position is the number the model cites as [citation:N].
    """

    position: int = Field(..., ge=1, description="1-based relevance rank")
    url: str
    title: str = ""
    snippet: str = ""

    model_config = {"frozen": True}


class Stage(BaseModel):
    """
    Audit record of one executed pipeline stage.

    Used for diagnostics (/review) only; not part of the answer contract.
    """

    name: str
    timestamp: float = Field(..., description="Unix epoch seconds at stage entry")
    duration: int = Field(default=0, ge=0, description="Milliseconds between enter and leave")
    fields: Dict[str, Any] = Field(default_factory=dict)


class PipelineResult(BaseModel):
    """Outcome of one successful pipeline invocation."""

    answer: str = ""
    topic: Optional[str] = None
    language: Optional[str] = None
    thought: Optional[str] = None
    keyphrases: Optional[str] = None
    observation: Optional[str] = None
    references: List[Reference] = Field(default_factory=list)
    stages: List[Stage] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    duration: int = Field(default=0, ge=0, description="Total milliseconds")


class Turn(BaseModel):
    """
    One completed exchange, as kept in conversation history.

    Turns are frozen: later invocations read them but never change them.
    """

    inquiry: str
    answer: str = ""
    topic: Optional[str] = None
    thought: Optional[str] = None
    keyphrases: Optional[str] = None
    language: Optional[str] = None
    references: Tuple[Reference, ...] = ()
    duration: int = 0
    stages: Tuple[Stage, ...] = ()

    @classmethod
    def from_result(cls, inquiry: str, result: PipelineResult) -> "Turn":
        """Build a history entry from a pipeline result."""
        return cls(
            inquiry=inquiry,
            answer=result.answer,
            topic=result.topic,
            thought=result.thought,
            keyphrases=result.keyphrases,
            language=result.language,
            references=tuple(result.references),
            duration=result.duration,
            stages=tuple(result.stages),
        )

    model_config = {"frozen": True}
