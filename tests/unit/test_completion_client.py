"""Unit tests for CompletionClient."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from gamal.llm.client import CompletionClient
from gamal.models.chat import Message
from gamal.models.config import LLMConfig
from gamal.services.exceptions import RemoteError, RequestTimeoutError, StreamInterruptedError


MESSAGES = [Message(role="user", content="What is the capital of France?")]


def streaming_response(body: str) -> httpx.Response:
    return httpx.Response(200, headers={"content-type": "text/event-stream"}, text=body)


class TestComplete:
    """Test non-streamed and streamed completions."""

    @pytest.mark.asyncio
    async def test_non_streaming_trims_and_notifies_once(self, llm_config, scripted_llm):
        """Test the full answer is trimmed and passed to the handler once."""
        backend = scripted_llm(["\n  Paris is the capital.  \n"])
        client = CompletionClient(llm_config.model_copy(update={"streaming": False}), transport=backend.transport)
        partials = []

        answer = await client.complete(MESSAGES, on_partial=partials.append)

        assert answer == "Paris is the capital."
        assert partials == ["Paris is the capital."]
        assert backend.requests[0]["stream"] is False

    @pytest.mark.asyncio
    async def test_no_handler_means_no_streaming(self, llm_config, scripted_llm):
        """Test a request without partial handler is not streamed."""
        backend = scripted_llm(["Paris"])
        client = CompletionClient(llm_config, transport=backend.transport)

        assert await client.complete(MESSAGES) == "Paris"
        assert backend.requests[0]["stream"] is False

    @pytest.mark.asyncio
    async def test_streaming_forwards_fragments(self, llm_config):
        """Test fragments are forwarded verbatim after the first is left-trimmed."""
        events = ["", "\n", "  Paris", " is", " the capital.\n"]
        body = "".join(
            f"data: {json.dumps({'choices': [{'delta': {'content': e}}]})}\n\n" for e in events
        ) + "data: [DONE]\n\n"
        client = CompletionClient(llm_config, transport=httpx.MockTransport(lambda r: streaming_response(body)))
        partials = []

        answer = await client.complete(MESSAGES, on_partial=partials.append)

        assert answer == "Paris is the capital.\n"
        assert partials == ["Paris", " is", " the capital.\n"]

    @pytest.mark.asyncio
    async def test_streaming_gemini_content_blocks(self):
        """Test Gemini events are extracted from their content blocks."""
        config = LLMConfig(
            base_url="https://generativelanguage.googleapis.com/v1beta",
            api_key="k",
            model="gemini-1.5-flash",
        )
        events = [
            {"candidates": [{"content": {"parts": [{"text": "Paris is"}], "role": "model"}}]},
            {"candidates": [{"content": {"parts": [{"text": " the capital."}], "role": "model"}}]},
        ]
        body = "".join(f"data: {json.dumps(e)}\r\n\r\n" for e in events)
        seen = []

        def handler(request):
            seen.append(request)
            return streaming_response(body)

        client = CompletionClient(config, transport=httpx.MockTransport(handler))
        partials = []

        answer = await client.complete(MESSAGES, on_partial=partials.append)

        assert answer == "Paris is the capital."
        assert partials == ["Paris is", " the capital."]
        assert "streamGenerateContent" in str(seen[0].url)
        assert seen[0].url.params["alt"] == "sse"


class TestErrors:
    """Test error mapping and the retry policy."""

    @pytest.mark.asyncio
    async def test_retries_twice_then_succeeds(self, llm_config, scripted_llm):
        """Test two failures cost exactly two delays before the third attempt succeeds."""
        backend = scripted_llm([503, httpx.ReadTimeout("slow"), "Paris"])
        client = CompletionClient(llm_config, transport=backend.transport)

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            answer = await client.complete(MESSAGES)

        assert answer == "Paris"
        assert len(backend.requests) == 3
        assert [call.args[0] for call in mock_sleep.await_args_list] == [1.5, 3.0]
        # The identical request is re-sent
        assert backend.requests[0] == backend.requests[2]

    @pytest.mark.asyncio
    async def test_always_failing_gives_up_after_three_attempts(self, llm_config, scripted_llm):
        """Test the final error propagates after three attempts."""
        backend = scripted_llm([500])
        client = CompletionClient(llm_config, transport=backend.transport)

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(RemoteError) as exc_info:
                await client.complete(MESSAGES)

        assert exc_info.value.status_code == 500
        assert len(backend.requests) == 3
        assert mock_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_timeout_maps_to_timeout_error(self, llm_config, scripted_llm):
        """Test transport timeouts surface as TimeoutError."""
        backend = scripted_llm([httpx.ConnectTimeout("deadline")])
        client = CompletionClient(llm_config, transport=backend.transport)

        with patch("asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(RequestTimeoutError) as exc_info:
                await client.complete(MESSAGES)

        assert isinstance(exc_info.value, TimeoutError)
        assert len(backend.requests) == 3

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self, llm_config, scripted_llm):
        """Test a connection reset propagates immediately."""
        backend = scripted_llm([httpx.ConnectError("connection reset")])
        client = CompletionClient(llm_config, transport=backend.transport)

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(httpx.ConnectError):
                await client.complete(MESSAGES)

        assert len(backend.requests) == 1
        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_streaming_error_status(self, llm_config):
        """Test a failed streaming request raises RemoteError."""
        client = CompletionClient(
            llm_config.model_copy(update={"max_attempts": 1}),
            transport=httpx.MockTransport(lambda r: httpx.Response(429, text="rate limited")),
        )

        with pytest.raises(RemoteError) as exc_info:
            await client.complete(MESSAGES, on_partial=lambda text: None)

        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_stream_stalling_midway_is_not_retried(self, llm_config):
        """Test a stream timing out after forwarding text fails without a second attempt."""
        attempts = []

        class StallingStream(httpx.AsyncByteStream):
            async def __aiter__(self):
                yield b'data: {"choices": [{"delta": {"content": "Jupiter is"}}]}\n\n'
                raise httpx.ReadTimeout("stalled")

        def handler(request):
            attempts.append(request)
            return httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=StallingStream())

        client = CompletionClient(llm_config, transport=httpx.MockTransport(handler))
        partials = []

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(StreamInterruptedError):
                await client.complete(MESSAGES, on_partial=partials.append)

        assert partials == ["Jupiter is"]
        assert len(attempts) == 1
        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stream_stalling_before_text_is_retried(self, llm_config):
        """Test a stream timing out before any text is retried as a timeout."""
        attempts = []

        class SilentStream(httpx.AsyncByteStream):
            async def __aiter__(self):
                yield b": keep-alive\n\n"
                raise httpx.ReadTimeout("stalled")

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                return httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=SilentStream())
            return streaming_response('data: {"choices": [{"delta": {"content": "Paris."}}]}\n\ndata: [DONE]\n\n')

        client = CompletionClient(llm_config, transport=httpx.MockTransport(handler))
        partials = []

        with patch("asyncio.sleep", new_callable=AsyncMock):
            answer = await client.complete(MESSAGES, on_partial=partials.append)

        assert answer == "Paris."
        assert partials == ["Paris."]
        assert len(attempts) == 2


class TestCheck:
    """Test the readiness probe."""

    @pytest.mark.asyncio
    async def test_check_asks_canary_question(self, llm_config, scripted_llm):
        """Test check sends the canary question and returns the answer."""
        backend = scripted_llm(["Paris."])
        client = CompletionClient(llm_config, transport=backend.transport)

        assert await client.check() == "Paris."
        assert backend.requests[0]["messages"][-1]["content"] == "What is the capital of France?"


class TestRequestId:
    """Test request ids used in log events."""

    @pytest.mark.asyncio
    async def test_request_id_is_task_name(self, llm_config):
        """Test the current task's name identifies the request."""
        client = CompletionClient(llm_config)

        async def named():
            return client._request_id()

        assert await asyncio.create_task(named(), name="telegram-42") == "telegram-42"
