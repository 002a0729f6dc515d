"""Response stage: write the cited answer from the references."""

from typing import Any, Dict, Tuple

from gamal.llm.client import CompletionClient
from gamal.llm.prompts import build_respond_messages
from gamal.pipeline.context import Context
from gamal.utils.logging import get_logger


logger = get_logger(__name__)

NAME = "Respond"

NO_REFERENCES_WARNING = "No references to cite"


async def respond(context: Context, llm: CompletionClient) -> Tuple[Context, Dict[str, Any]]:
    """
    Run the response stage.

    The answer keeps its raw [citation:N] markers; rewriting them is left to
    whoever displays it. Fragments are streamed to the delegates when they
    ask for it.
    """
    fields: Dict[str, Any] = {"inquiry": context.inquiry}
    warnings = list(context.warnings)

    if not context.references:
        logger.warning("respond_no_references", inquiry=context.inquiry)
        warnings.append(NO_REFERENCES_WARNING)
        fields["warning"] = NO_REFERENCES_WARNING

    messages = build_respond_messages(
        context.inquiry,
        context.history,
        context.references,
        context.language,
    )

    delegates = context.delegates
    on_partial = delegates.on_partial_answer if delegates.streams_answer else None
    answer = await llm.complete(messages, None, on_partial)

    logger.info("respond_completed", answer_length=len(answer))

    return context.model_copy(update={"answer": answer, "warnings": warnings}), fields
