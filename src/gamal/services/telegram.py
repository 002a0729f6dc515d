"""Telegram bot surface (long polling of the Bot API)."""

import asyncio
from typing import Any, Dict, Optional

import httpx

from gamal.display.citations import format_answer
from gamal.models.chat import Turn
from gamal.models.config import TelegramConfig
from gamal.pipeline.runner import Pipeline
from gamal.services.conversations import ConversationStore, handle_command
from gamal.services.exceptions import PipelineError
from gamal.utils.logging import conversation_context, get_logger


logger = get_logger(__name__)

TELEGRAM_API = "https://api.telegram.org"


class TelegramPoller:
    """
    Answers Telegram messages, one conversation per chat id.

    Updates are fetched with getUpdates and processed in order; replies go
    out with sendMessage. Network errors are logged and polling continues.
    """

    def __init__(
        self,
        config: TelegramConfig,
        pipeline: Pipeline,
        store: Optional[ConversationStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        api_url: str = TELEGRAM_API,
    ):
        self.config = config
        self.pipeline = pipeline
        self.store = store or ConversationStore()
        self.transport = transport
        self.base_url = f"{api_url}/bot{config.token}"
        self.timeout = httpx.Timeout(config.timeout)

    async def send(self, chat_id: int, text: str) -> None:
        """Send a message; failures are logged, not raised."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/sendMessage",
                    json={"chat_id": chat_id, "text": text},
                )
            if not response.is_success:
                logger.error("telegram_send_failed", chat_id=chat_id, status_code=response.status_code)
        except httpx.HTTPError as e:
            logger.error("telegram_send_failed", chat_id=chat_id, error=str(e))

    async def answer(self, chat_id: int, inquiry: str) -> str:
        """Produce the reply text for one inquiry of a chat."""
        reply = handle_command(inquiry, self.store, chat_id)
        if reply is not None:
            return reply.text

        async with self.store.lock(chat_id):
            with conversation_context(chat_id):
                try:
                    result = await self.pipeline.run(inquiry, self.store.history(chat_id))
                except PipelineError as e:
                    logger.error("telegram_answer_failed", chat_id=chat_id, error=str(e))
                    return f"Error: {e}"
            self.store.append(chat_id, Turn.from_result(inquiry, result))

        logger.info("telegram_answer_completed", chat_id=chat_id, duration_ms=result.duration)
        return format_answer(result.answer, result.references)

    async def handle_update(self, update: Dict[str, Any]) -> None:
        message = update.get("message") or {}
        text = message.get("text")
        chat = message.get("chat") or {}
        chat_id = chat.get("id")
        if not text or chat_id is None:
            logger.debug("telegram_update_skipped", update_id=update.get("update_id"))
            return

        logger.info("telegram_message_received", chat_id=chat_id, inquiry=text)
        reply = await self.answer(chat_id, text)
        await self.send(chat_id, reply)

    async def poll_once(self, offset: int) -> int:
        """
        Fetch and process pending updates.

        Returns:
            Offset for the next poll (last update_id + 1)
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(f"{self.base_url}/getUpdates", params={"offset": offset})
        except httpx.HTTPError as e:
            logger.error("telegram_poll_failed", error=str(e), error_type=type(e).__name__)
            return offset

        if not response.is_success:
            logger.error("telegram_poll_failed", status_code=response.status_code)
            return offset

        try:
            updates = response.json().get("result") or []
        except (ValueError, AttributeError) as e:
            logger.error("telegram_poll_invalid_body", error=str(e), body=response.text[:200])
            return offset

        for update in updates:
            update_id = update.get("update_id")
            if isinstance(update_id, int):
                offset = max(offset, update_id + 1)
            await self.handle_update(update)

        return offset

    async def run(self) -> None:
        """Poll forever."""
        logger.info("telegram_polling_started")
        offset = 0
        while True:
            offset = await self.poll_once(offset)
            await asyncio.sleep(self.config.poll_interval)
