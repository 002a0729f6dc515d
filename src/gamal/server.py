"""HTTP surface: plain-text streaming answers over GET /chat."""

import asyncio
from typing import Optional
from urllib.parse import unquote

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse

from gamal.display.citations import CitationDisplay, cited_urls
from gamal.models.chat import Turn
from gamal.pipeline.context import PipelineDelegates
from gamal.pipeline.runner import Pipeline
from gamal.services.conversations import ConversationStore, handle_command
from gamal.services.exceptions import PipelineError
from gamal.utils.logging import conversation_context, get_logger


logger = get_logger(__name__)

# The HTTP surface serves one shared conversation
CONVERSATION = "http"


class StreamingGenerator:
    """Async queue bridging pipeline callbacks and the response body."""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self._finished = False

    def add(self, data: str) -> None:
        if not self._finished and data:
            self.queue.put_nowait(data)

    def finish(self) -> None:
        if not self._finished:
            self._finished = True
            self.queue.put_nowait(None)

    async def stream(self):
        while True:
            data = await self.queue.get()
            if data is None:
                break
            yield data


class StreamingDelegates(PipelineDelegates):
    """Feeds streamed answer fragments through the citation rewriter."""

    streams_answer = True

    def __init__(self, display: CitationDisplay):
        self.display = display

    def on_partial_answer(self, text: str) -> None:
        self.display.push(text)


def decode_inquiry(request: Request) -> str:
    """The inquiry is the whole URL-decoded query string, or the q parameter."""
    if "q" in request.query_params:
        return request.query_params["q"].strip()
    return unquote(request.url.query).strip()


def create_app(pipeline: Pipeline, store: Optional[ConversationStore] = None) -> FastAPI:
    """
    Build the HTTP application.

    Routes:
        GET /health: "OK"
        GET /chat?<inquiry>: answer streamed as text/plain, citations shown
            as [n], followed by the list of cited URLs

    Args:
        pipeline: Pipeline answering the inquiries
        store: Conversation store (default: a fresh one)
    """
    app = FastAPI(title="Gamal", docs_url=None, redoc_url=None)
    app.state.pipeline = pipeline
    app.state.store = store or ConversationStore()

    @app.get("/health", response_class=PlainTextResponse)
    async def health() -> str:
        return "OK"

    @app.get("/chat")
    async def chat(request: Request):
        inquiry = decode_inquiry(request)
        store: ConversationStore = request.app.state.store

        reply = handle_command(inquiry, store, CONVERSATION)
        if reply is not None:
            return PlainTextResponse(reply.text)

        if not inquiry:
            return Response(status_code=400)

        logger.info("http_chat_started", inquiry=inquiry)

        generator = StreamingGenerator()
        display = CitationDisplay(generator.add)
        delegates = StreamingDelegates(display)

        async def run_task():
            try:
                async with store.lock(CONVERSATION):
                    with conversation_context(CONVERSATION):
                        result = await request.app.state.pipeline.run(
                            inquiry,
                            store.history(CONVERSATION),
                            delegates,
                        )
                    store.append(CONVERSATION, Turn.from_result(inquiry, result))

                refs = display.flush()
                urls = cited_urls(refs, result.references)
                if urls:
                    generator.add("\n\n")
                    generator.add("".join(f"[{ordinal}] {url}\n" for ordinal, url in urls))
                logger.info("http_chat_completed", inquiry=inquiry, duration_ms=result.duration)

            except PipelineError as e:
                display.flush()
                logger.error("http_chat_failed", inquiry=inquiry, error=str(e))
                generator.add(f"\n\nError: {e}")
            finally:
                generator.finish()

        request.app.state.last_task = asyncio.create_task(run_task())

        return StreamingResponse(
            generator.stream(),
            media_type="text/plain",
            headers={"Cache-Control": "no-cache"},
        )

    return app
