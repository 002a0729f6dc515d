"""Per-conversation history owned by the hosting surface."""

import asyncio
from typing import Dict, Hashable, List, Optional, Tuple

from pydantic import BaseModel

from gamal.display.review import format_review
from gamal.models.chat import Stage, Turn
from gamal.utils.logging import get_logger


logger = get_logger(__name__)

RESET_COMMANDS = ("/reset", "!reset")
REVIEW_COMMANDS = ("/review", "!review")

HISTORY_CLEARED = "History cleared."
NOTHING_TO_REVIEW = "Nothing to review yet!"


class ConversationStore:
    """
    Conversation histories keyed by conversation id.

    The CLI uses a single key, the HTTP server a single global key, and the
    Telegram poller the chat id. Turns are appended only after a successful
    pipeline run. Hold ``lock(key)`` while running a turn so two inquiries
    of the same conversation never interleave.
    """

    def __init__(self):
        self._histories: Dict[Hashable, List[Turn]] = {}
        self._locks: Dict[Hashable, asyncio.Lock] = {}

    def history(self, key: Hashable) -> Tuple[Turn, ...]:
        return tuple(self._histories.get(key, ()))

    def last(self, key: Hashable) -> Optional[Turn]:
        turns = self._histories.get(key)
        return turns[-1] if turns else None

    def append(self, key: Hashable, turn: Turn) -> None:
        self._histories.setdefault(key, []).append(turn)
        logger.debug("conversation_turn_appended", key=str(key), turns=len(self._histories[key]))

    def reset(self, key: Hashable) -> None:
        self._histories.pop(key, None)
        logger.info("conversation_reset", key=str(key))

    def lock(self, key: Hashable) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]


class CommandReply(BaseModel):
    """Outcome of a conversation command (/reset or /review)."""

    command: str
    text: str
    stages: Tuple[Stage, ...] = ()

    model_config = {"frozen": True}


def handle_command(inquiry: str, store: ConversationStore, key: Hashable) -> Optional[CommandReply]:
    """
    Intercept /reset and /review (also spelled !reset and !review).

    Returns:
        CommandReply when the inquiry is a command, None when it should go
        to the pipeline
    """
    command = inquiry.strip()
    if command in RESET_COMMANDS:
        store.reset(key)
        return CommandReply(command="reset", text=HISTORY_CLEARED)

    if command in REVIEW_COMMANDS:
        last = store.last(key)
        if last is None:
            return CommandReply(command="review", text=NOTHING_TO_REVIEW)
        return CommandReply(command="review", text=format_review(last.stages), stages=last.stages)

    return None
