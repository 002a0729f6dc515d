"""Wire formats for chat-completion backends.

Two backend shapes are supported:

- OpenAI-compatible ``/chat/completions`` (OpenRouter, OpenAI, llama.cpp,
  Ollama's /v1, ...), streamed as token deltas
- Google Gemini ``generateContent``, streamed as content-block events

The format is picked once from the configured base URL.
"""

from typing import Any, Dict, List, Optional, Sequence

from gamal.models.chat import Message
from gamal.models.config import LLMConfig


GEMINI_HOST_MARKER = "generativelanguage.google"


class WireFormat:
    """Request building and response extraction for one backend shape."""

    name = "base"

    def __init__(self, config: LLMConfig):
        self.config = config

    def url(self, stream: bool) -> str:
        raise NotImplementedError

    def headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def payload(
        self,
        messages: Sequence[Message],
        schema: Optional[Dict[str, Any]],
        stream: bool,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def extract_text(self, data: Dict[str, Any]) -> str:
        """Return the first candidate's full text from a non-streamed body."""
        raise NotImplementedError

    def extract_fragment(self, data: Dict[str, Any]) -> Optional[str]:
        """Return the text carried by one streamed event, if any."""
        raise NotImplementedError


class OpenAIWireFormat(WireFormat):
    """
    OpenAI-style chat completions.

    Streamed events look like:
    {
        "choices": [{
            "delta": {"content": "..."},
            "finish_reason": null
        }]
    }
    """

    name = "openai"

    def url(self, stream: bool) -> str:
        return f"{self.config.base_url}/chat/completions"

    def headers(self) -> Dict[str, str]:
        headers = super().headers()
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def payload(self, messages, schema, stream):
        payload = {
            "messages": [message.model_dump() for message in messages],
            "model": self.config.model,
            "stop": list(self.config.stop),
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "stream": stream,
        }
        if schema:
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "schema": schema,
                    "name": "response",
                    "strict": True,
                },
            }
        return payload

    def extract_text(self, data):
        try:
            choice = data["choices"][0]
            content = choice["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return ""
        return content if isinstance(content, str) else ""

    def extract_fragment(self, data):
        try:
            choice = data["choices"][0]
            content = choice["delta"].get("content")
        except (KeyError, IndexError, TypeError, AttributeError):
            return None
        return content if isinstance(content, str) else None


def _without_additional_properties(schema: Dict[str, Any]) -> Dict[str, Any]:
    # Gemini rejects schemas carrying additionalProperties
    return {key: value for key, value in schema.items() if key != "additionalProperties"}


class GeminiWireFormat(WireFormat):
    """
    Gemini generateContent API.

    Every event (and the non-streamed body) carries content blocks:
    {
        "candidates": [{
            "content": {"parts": [{"text": "..."}], "role": "model"}
        }]
    }
    The text of an event is the concatenation of its parts.
    """

    name = "gemini"

    def url(self, stream: bool) -> str:
        generate = "streamGenerateContent?alt=sse&" if stream else "generateContent?"
        return (
            f"{self.config.base_url}/models/{self.config.model}:{generate}"
            f"key={self.config.api_key or ''}"
        )

    def payload(self, messages, schema, stream):
        system_instruction = None
        contents: List[Dict[str, Any]] = []
        for message in messages:
            block = {"parts": [{"text": message.content}]}
            if message.role == "system":
                if system_instruction is None:
                    system_instruction = block
                continue
            block["role"] = "model" if message.role == "assistant" else "user"
            contents.append(block)

        generation_config: Dict[str, Any] = {
            "temperature": self.config.temperature,
            "response_mime_type": "application/json" if schema else "text/plain",
            "maxOutputTokens": self.config.max_tokens,
        }
        if schema:
            generation_config["response_schema"] = _without_additional_properties(schema)

        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": generation_config,
        }
        if system_instruction is not None:
            payload["system_instruction"] = system_instruction
        return payload

    def _candidate_text(self, data: Dict[str, Any]) -> Optional[str]:
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            return None
        return "".join(part.get("text", "") for part in parts if isinstance(part, dict))

    def extract_text(self, data):
        return self._candidate_text(data) or ""

    def extract_fragment(self, data):
        return self._candidate_text(data)


def resolve_wire_format(config: LLMConfig) -> WireFormat:
    """Pick the wire format for the configured base URL."""
    if GEMINI_HOST_MARKER in config.base_url:
        return GeminiWireFormat(config)
    return OpenAIWireFormat(config)
