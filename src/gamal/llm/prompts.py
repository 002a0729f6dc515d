"""Prompt templates for the reasoning and response stages."""

import json
from typing import Dict, List, Optional, Sequence

from gamal.llm.codec import RecordCodec
from gamal.models.chat import Message, Reference, Turn


REASON_PROMPT = """You are Gamal, a world-class answering assistant.
You are interacting with a human who gives you an inquiry.
Your task is as follows.

Focus on the last message from the user.
If necessary, refer to the relevant part of the previous conversation history.
This is particulary useful when the inquiry is a follow-up question with pronouns, or when the inquiry contains pronouns referring to the earlier discussion.

Use Google to search for the answer. Think step by step. Fix any misspelings.
Do not refuse to search for future events beyond your knowledge cutoff, because Google will still find it for you.

Use the same language as the inquiry.

Always output your thought in the following format"""

REASON_GUIDELINE = {
    "tool": "the search engine to use (must be Google)",
    "language": "the language of the inquiry e.g. French, Spanish, Mandarin, etc",
    "thought": "describe your thoughts about the inquiry",
    "keyphrases": "the important key phrases to search for",
    "observation": "the concise result of the search tool",
    "topic": "the specific topic covering the inquiry",
}

REASON_EXAMPLES = [
    (
        '# Example 1\n\nGiven an inquiry "Pour quoi le lac de Pitch à Trinidad est-il célèbre?", '
        "you will output:",
        {
            "tool": "Google",
            "language": "French",
            "thought": "Cela concerne la géographie, je vais utiliser la recherche Google",
            "keyphrases": "Pitch Lake in Trinidad famerenommée du lac de Pitch à Trinidad",
            "observation": "Le lac de Pitch à Trinidad est le plus grand dépôt naturel d'asphalte.",
            "topic": "géographie",
        },
    ),
    (
        '# Example 2\n\nGiven an inquiry "What mineral was once considered the rarest in the world?", '
        "you will output:",
        {
            "tool": "Google",
            "language": "English",
            "thought": "This is about mineralogy, I will use Google to search for the answer",
            "keyphrases": "rarest mineral in the world",
            "observation": (
                "Painite was once considered the rarest mineral in the world, with only a "
                "handful of specimens known until new deposits were discovered in the early 2000s."
            ),
            "topic": "mineralogy",
        },
    ),
]

REASON_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        field: {"type": "string"}
        for field in ("tool", "language", "thought", "keyphrases", "observation", "topic")
    },
    "required": ["tool", "language", "thought", "keyphrases", "observation", "topic"],
}

# Assistant prefill for line-text mode; the completion continues after it
REASON_HINT = "tool: Google\nlanguage: "

REASON_REPAIR_REQUEST = (
    "Your previous output is incomplete. Output the complete record again, "
    "with every field filled in, including keyphrases (the important key "
    "phrases to search for)."
)

RESPOND_PROMPT = """You are a world-renowned research assistant.
You are given a user question, and please write clean, concise and accurate answer to the question.
You will be given a set of related references to the question, each starting with a reference number like [citation:x], where x is a number.
Please use only 3 most relevant references, not all of them.
Cite each reference at the end of each sentence.

You are expected to provide an answer that is accurate, correct, and reflect expert knowledge.
Your answer must maintain an unbiased and professional tone.
Your answer should not exceed 3 sentences in length, unless the instruction is to do so.

Do not give any information that is not related to the question.
No need to mention "according to the references..." and other internal references.

Use plain text only, no markdown or HTML.

After every sentence, always cite the reference with the citation numbers, in the format [citation:x].
If a sentence comes from multiple references, please list all applicable citations, like [citation:3][citation:5].

Here are the set of references:

{REFERENCES}

Remember, don't blindly repeat the references verbatim.
Only supply the answer and do not add any additional commentaries, notes, remarks, list of citations, literature references, extra translations, postanalysis.

Your answer must be in the same language as the inquiry, i.e. {LANGUAGE}."""

DEFAULT_LANGUAGE = "English"


def structure(prefix: str, record: Dict[str, str], codec: RecordCodec) -> str:
    """Render a heading followed by a record, in the codec's output mode."""
    if codec.json_mode:
        return f"{prefix} (JSON with this schema)\n{json.dumps(record, indent=2, ensure_ascii=False)}\n"
    return f"{prefix}\n\n{codec.encode(record)}\n"


def format_history(turns: Sequence[Turn]) -> str:
    """Condense recent turns into a bulleted history section."""
    if not turns:
        return ""
    lines = ["\n\n# Conversation History\n\nYou and the user recently discussed:\n\n"]
    for turn in turns:
        lines.append(f"  * {turn.inquiry}\n")
        lines.append(f"  * {turn.answer}\n")
    return "".join(lines)


def build_reason_prompt(history: Sequence[Turn], codec: RecordCodec) -> str:
    """System prompt for the reasoning stage, with the last 3 turns."""
    prompt = structure(REASON_PROMPT, REASON_GUIDELINE, codec)
    for heading, example in REASON_EXAMPLES:
        prompt += structure("\n" + heading, example, codec)
    prompt += format_history(list(history)[-3:])
    return prompt


def build_reason_messages(
    inquiry: str,
    history: Sequence[Turn],
    codec: RecordCodec,
    hint: Optional[str] = None,
) -> List[Message]:
    """Messages for the reasoning stage; the hint becomes an assistant prefill."""
    messages = [
        Message(role="system", content=build_reason_prompt(history, codec)),
        Message(role="user", content=inquiry),
    ]
    if hint:
        messages.append(Message(role="assistant", content=hint))
    return messages


def repair_hint(thought: Optional[str]) -> str:
    """Prefill asking the model to continue straight into keyphrases."""
    return f"tool: Google\nthought: {thought or ''}\nkeyphrases: "


def format_references(references: Sequence[Reference]) -> str:
    return "\n".join(f"[citation:{ref.position}] {ref.snippet}" for ref in references)


def build_respond_messages(
    inquiry: str,
    history: Sequence[Turn],
    references: Sequence[Reference],
    language: Optional[str] = None,
) -> List[Message]:
    """
    Messages for the response stage.

    Without references there is nothing to cite, so only the inquiry is sent.
    """
    messages = []
    if references:
        prompt = RESPOND_PROMPT.replace("{LANGUAGE}", language or DEFAULT_LANGUAGE)
        prompt = prompt.replace("{REFERENCES}", format_references(references))
        prompt += format_history(list(history)[-2:])
        messages.append(Message(role="system", content=prompt))
    messages.append(Message(role="user", content=inquiry))
    return messages
