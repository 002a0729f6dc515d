"""Reasoning stage: derive language, topic and search keyphrases from an inquiry."""

from typing import Any, Dict, Optional, Tuple

from gamal.llm.client import CompletionClient
from gamal.llm.codec import Record, RecordCodec, encode_json
from gamal.llm.prompts import (
    REASON_HINT,
    REASON_REPAIR_REQUEST,
    REASON_SCHEMA,
    build_reason_messages,
    repair_hint,
)
from gamal.models.chat import Message
from gamal.pipeline.context import Context
from gamal.utils.logging import get_logger


logger = get_logger(__name__)

NAME = "Reason"

FALLBACK_TOPIC = "general knowledge."

# Chat-template tokens some backends leak into completions
TEMPLATE_ARTIFACTS = ("<|start_header_id|>", "<|end_header_id|>")


def clean_completion(completion: str) -> str:
    """Strip chat-template artifacts and a leading role name."""
    remark = completion
    for artifact in TEMPLATE_ARTIFACTS:
        remark = remark.replace(artifact, "", 1)
    if remark.startswith("assistant"):
        remark = remark[len("assistant"):]
    return remark.strip()


def breakdown(hint: str, completion: str, codec: RecordCodec) -> Record:
    """
    Decode a reasoning completion into a record.

    The completion continues the assistant prefill, so the hint is put back
    in front of it unless the model repeated it. A record without a topic
    gets the fallback topic.
    """
    remark = clean_completion(completion)
    text = remark if remark.startswith(hint) else hint + remark

    if text.startswith("{"):
        record = codec.decode(text)
        if not record.get("topic"):
            record["topic"] = FALLBACK_TOPIC
        return record

    record = codec.decode(text)
    if not record.get("topic"):
        record = codec.decode(f"{text}\ntopic: {FALLBACK_TOPIC}")
    return record


async def reason(
    context: Context,
    llm: CompletionClient,
    codec: RecordCodec,
) -> Tuple[Context, Dict[str, Any]]:
    """
    Run the reasoning stage.

    Missing keyphrases trigger exactly one repair request. In line-text mode
    the repair prefills the thought and asks the model to continue with the
    keyphrases; in JSON mode the partial record is shown back to the model
    with a request for the complete one.

    Returns:
        Updated context and the fields reported to on_stage_leave
    """
    json_mode = codec.json_mode
    schema = REASON_SCHEMA if json_mode else None
    hint = "" if json_mode else REASON_HINT

    messages = build_reason_messages(context.inquiry, context.history, codec, hint or None)
    completion = await llm.complete(messages, schema)
    record = breakdown(hint, completion, codec)

    if not record.get("keyphrases"):
        logger.warning(
            "reason_keyphrases_missing",
            json_mode=json_mode,
            completion=completion[:500],
        )
        if json_mode:
            repair_messages = list(messages) + [
                Message(role="assistant", content=encode_json(record) if record else completion),
                Message(role="user", content=REASON_REPAIR_REQUEST),
            ]
        else:
            hint = repair_hint(record.get("thought"))
            repair_messages = list(messages[:-1]) + [Message(role="assistant", content=hint)]

        completion = await llm.complete(repair_messages, schema)
        repaired = breakdown(hint, completion, codec)
        # Fields the repair left out keep their first-pass values
        record = {**record, **{key: value for key, value in repaired.items() if value}}

    fields: Dict[str, Optional[str]] = {
        "language": record.get("language"),
        "topic": record.get("topic"),
        "thought": record.get("thought"),
        "keyphrases": record.get("keyphrases"),
        "observation": record.get("observation"),
    }

    logger.info(
        "reason_completed",
        language=fields["language"],
        topic=fields["topic"],
        keyphrases=fields["keyphrases"],
    )

    return context.model_copy(update=fields), dict(fields)
