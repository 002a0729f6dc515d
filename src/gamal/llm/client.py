"""Chat-completion client with SSE streaming support."""

import asyncio
from typing import Any, Callable, Dict, Optional, Sequence

import httpx

from gamal.llm.streaming import parse_sse_stream
from gamal.llm.wire import WireFormat, resolve_wire_format
from gamal.models.chat import Message
from gamal.models.config import LLMConfig
from gamal.services.exceptions import RemoteError, RequestTimeoutError, StreamInterruptedError
from gamal.utils.logging import get_logger
from gamal.utils.retry import retry_async


logger = get_logger(__name__)

PartialHandler = Callable[[str], None]

CANARY_MESSAGES = (
    Message(role="system", content="Answer concisely."),
    Message(role="user", content="What is the capital of France?"),
)


class CompletionClient:
    """
    HTTP client for chat-completion backends.

    Supports OpenAI-compatible APIs and the Gemini API (picked from the base
    URL), non-streamed JSON bodies and SSE streams, with bounded retries on
    timeouts and non-success statuses.
    """

    def __init__(self, config: LLMConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize completion client.

        Args:
            config: LLM configuration (base URL, API key, model, limits)
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.config = config
        self.wire: WireFormat = resolve_wire_format(config)
        self.transport = transport
        self.timeout = httpx.Timeout(config.timeout)

    def _request_id(self) -> str:
        current_task = asyncio.current_task()
        task_name = current_task.get_name() if current_task else None
        return task_name or "unknown"

    async def complete(
        self,
        messages: Sequence[Message],
        schema: Optional[Dict[str, Any]] = None,
        on_partial: Optional[PartialHandler] = None,
    ) -> str:
        """
        Request a completion and return its text.

        The answer is streamed when streaming is enabled and a partial
        handler is given. Each streamed fragment is forwarded to the handler
        as it arrives; a non-streamed answer is forwarded once, whole.

        Args:
            messages: Conversation to send (re-sent unchanged on retry)
            schema: Optional JSON schema constraining the output
            on_partial: Optional callback receiving answer fragments

        Returns:
            Completion text (leading whitespace removed)

        Raises:
            RequestTimeoutError: No response within the deadline, after retries
            RemoteError: Non-success status, after retries
            StreamInterruptedError: The stream timed out after fragments
                were forwarded (not retried, so no text is forwarded twice)
            httpx.HTTPError: Other transport failures (not retried)

        Example:
            >>> client = CompletionClient(config.llm)
            >>> await client.complete([Message(role="user", content="Hi")])
            'Hello! How can I help you today?'
        """
        stream = self.config.streaming and on_partial is not None
        messages = tuple(messages)
        payload = self.wire.payload(messages, schema, stream)
        request_id = self._request_id()

        logger.info(
            "llm_request_started",
            request_id=request_id,
            model=self.config.model,
            base_url=self.config.base_url,
            provider=self.wire.name,
            message_count=len(messages),
            stream=stream,
            structured=schema is not None,
        )
        logger.debug("llm_request_payload", request_id=request_id, payload=payload)

        async def attempt() -> str:
            return await self._request(payload, stream, on_partial, request_id)

        answer = await retry_async(
            attempt,
            max_attempts=self.config.max_attempts,
            backoff=self.config.retry_backoff,
            label="llm",
        )

        logger.info(
            "llm_request_completed",
            request_id=request_id,
            answer_length=len(answer),
        )
        return answer

    async def _request(
        self,
        payload: Dict[str, Any],
        stream: bool,
        on_partial: Optional[PartialHandler],
        request_id: str,
    ) -> str:
        url = self.wire.url(stream)
        headers = self.wire.headers()
        answer = ""

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                if not stream:
                    response = await client.post(url, json=payload, headers=headers)
                    self._check_status(response, request_id)
                    answer = self.wire.extract_text(response.json()).strip()
                    logger.debug("llm_response_body", request_id=request_id, answer=answer)
                    if answer and on_partial:
                        on_partial(answer)
                    return answer

                async with client.stream("POST", url, json=payload, headers=headers) as response:
                    if not response.is_success:
                        await response.aread()
                    self._check_status(response, request_id)

                    async for event in parse_sse_stream(response.aiter_text()):
                        fragment = self.wire.extract_fragment(event)
                        if not fragment:
                            continue
                        if not answer:
                            # Avoid a leading newline in the rendered answer
                            fragment = fragment.lstrip()
                            if not fragment:
                                continue
                        answer += fragment
                        if on_partial:
                            on_partial(fragment)

                    logger.debug("llm_response_streamed", request_id=request_id, answer=answer)
                    return answer

        except httpx.TimeoutException as e:
            if answer:
                logger.warning(
                    "llm_stream_interrupted",
                    request_id=request_id,
                    forwarded_length=len(answer),
                    error=str(e),
                )
                raise StreamInterruptedError(
                    f"Answer from {self.config.base_url} stopped after {len(answer)} characters"
                ) from e
            logger.warning(
                "llm_request_timeout",
                request_id=request_id,
                timeout=self.config.timeout,
                error=str(e),
            )
            raise RequestTimeoutError(
                f"No response from {self.config.base_url} within {self.config.timeout:g} seconds"
            ) from e

    def _check_status(self, response: httpx.Response, request_id: str) -> None:
        if response.is_success:
            return
        logger.warning(
            "llm_http_error",
            request_id=request_id,
            status_code=response.status_code,
            response_text=response.text[:500],
        )
        raise RemoteError(
            f"HTTP error with the status: {response.status_code} {response.reason_phrase}",
            status_code=response.status_code,
        )

    async def check(self) -> str:
        """
        Readiness probe: ask a trivial question and return the answer.

        Raises the same errors as complete() when the backend is not ready.
        """
        logger.info("llm_check_started", base_url=self.config.base_url, model=self.config.model)
        answer = await self.complete(CANARY_MESSAGES)
        logger.info("llm_check_completed", answer=answer[:100])
        return answer
