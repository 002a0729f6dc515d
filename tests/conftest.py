"""Shared test fixtures for all test modules."""

import json

import httpx
import pytest

from gamal.llm.client import CompletionClient
from gamal.models.config import LLMConfig, SearchConfig
from gamal.pipeline.runner import Pipeline
from gamal.services.searxng import SearchClient


def sse_body(fragments):
    """Encode answer fragments as an OpenAI-style SSE body."""
    lines = [": keep-alive\n\n"]
    for fragment in fragments:
        event = {"choices": [{"delta": {"content": fragment}, "finish_reason": None}]}
        lines.append(f"data: {json.dumps(event)}\n\n")
    lines.append("data: [DONE]\n\n")
    return "".join(lines)


class ScriptedLLM:
    """
    Fake OpenAI-compatible backend answering from a script.

    Each request pops the next reply. A reply is either a string (the
    completion text), an int (an HTTP status to fail with), or an exception
    instance to raise from the transport.
    """

    def __init__(self, replies):
        self.replies = list(replies)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append(payload)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]

        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, int):
            return httpx.Response(reply, text="backend unavailable")
        if payload.get("stream"):
            # Split into small pieces to exercise incremental decoding
            pieces = [reply[i:i + 5] for i in range(0, len(reply), 5)]
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                text=sse_body(pieces),
            )
        return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": reply}}]})

    @property
    def transport(self):
        return httpx.MockTransport(self)


class ScriptedSearch:
    """Fake SearXNG instance returning fixed results."""

    def __init__(self, results, status_code=200):
        self.results = results
        self.status_code = status_code
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code)
        return httpx.Response(200, json={"query": request.url.params.get("q"), "results": self.results})

    @property
    def transport(self):
        return httpx.MockTransport(self)


JUPITER_RESULTS = [
    {
        "url": "https://en.wikipedia.org/wiki/Jupiter",
        "title": "Jupiter",
        "content": "Jupiter is the largest planet in the Solar System.",
    }
]

REASONING = (
    "English\n"
    "thought: This is about astronomy, I will use Google to search for the answer\n"
    "keyphrases: largest planet in the solar system\n"
    "observation: Jupiter is the largest planet.\n"
    "topic: astronomy"
)


@pytest.fixture
def llm_config():
    """Create test LLM configuration."""
    return LLMConfig(
        base_url="https://llm.test/v1",
        api_key="test-key",
        model="test-model",
    )


@pytest.fixture
def search_config():
    """Create test search configuration."""
    return SearchConfig(url="https://searx.test")


@pytest.fixture
def make_pipeline(llm_config, search_config):
    """Factory building a pipeline on top of scripted backends."""

    def _make(llm: ScriptedLLM, search: ScriptedSearch, json_mode: bool = False) -> Pipeline:
        config = llm_config.model_copy(update={"json_schema": json_mode})
        return Pipeline(
            CompletionClient(config, transport=llm.transport),
            SearchClient(search_config, transport=search.transport),
        )

    return _make


@pytest.fixture
def scripted_llm():
    """The ScriptedLLM class, for building fake completion backends."""
    return ScriptedLLM


@pytest.fixture
def scripted_search():
    """The ScriptedSearch class, for building fake search backends."""
    return ScriptedSearch
