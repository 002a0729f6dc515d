"""Structured logging setup for Gamal."""

import sys
from pathlib import Path
from typing import Any, Hashable, Optional, TextIO
import os

import structlog


DEFAULT_LOG_FILE = Path.home() / ".cache" / "gamal" / "logs" / "gamal.log"

VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _open_log_target(target: str) -> TextIO:
    if target == "-":
        return sys.stderr
    path = Path(target).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return open(path, "a")


def configure_logging(level: Optional[str] = None, target: Optional[str] = None) -> None:
    """
    Configure structlog for JSON lines, one event per line.

    The terminal belongs to the answers, so by default events go to
    ~/.cache/gamal/logs/gamal.log. Servers and bots running under a process
    supervisor usually want them on stderr instead (GAMAL_LOG_FILE=-).

    Args:
        level: DEBUG, INFO, WARNING or ERROR (default: GAMAL_LOG_LEVEL, else
            INFO). DEBUG adds LLM payloads, raw SSE lines and search
            parameters.
        target: Log file path, or "-" for stderr (default: GAMAL_LOG_FILE,
            else ~/.cache/gamal/logs/gamal.log)

    Example:
        GAMAL_LOG_LEVEL=DEBUG gamal ask "Which planet is the largest?"
        tail -f ~/.cache/gamal/logs/gamal.log | jq .
    """
    log_level = (level or os.environ.get("GAMAL_LOG_LEVEL", "INFO")).upper()
    if log_level not in VALID_LEVELS:
        log_level = "INFO"

    log_target = target or os.environ.get("GAMAL_LOG_FILE") or str(DEFAULT_LOG_FILE)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=_open_log_target(log_target)),
        cache_logger_on_first_use=True,
    )


def conversation_context(key: Hashable):
    """
    Tag every event logged inside the block with the conversation id.

    Example:
        >>> with conversation_context(chat_id):
        ...     result = await pipeline.run(inquiry, history)
    """
    return structlog.contextvars.bound_contextvars(conversation=str(key))


def get_logger(name: str) -> Any:
    """Get a structured logger; ``name`` is the calling module's __name__."""
    return structlog.get_logger(name)
