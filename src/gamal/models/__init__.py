"""Pydantic data models for Gamal."""

from gamal.models.chat import Message, PipelineResult, Reference, Stage, Turn
from gamal.models.config import (
    Config,
    LLMConfig,
    SearchConfig,
    ServerConfig,
    TelegramConfig,
    VoiceConfig,
)

__all__ = [
    "Config",
    "LLMConfig",
    "Message",
    "PipelineResult",
    "Reference",
    "SearchConfig",
    "ServerConfig",
    "Stage",
    "TelegramConfig",
    "Turn",
    "VoiceConfig",
]
