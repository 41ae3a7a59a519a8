"""
Minimal Telegram Bot API client.

Long-polls getUpdates and sends plain-text replies over aiohttp.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import aiohttp

logger = logging.getLogger("pagewatch.telegram")


class TelegramError(Exception):
    def __init__(self, method: str, description: str, error_code: Optional[int] = None) -> None:
        super().__init__(f"{method} failed: {description}")
        self.method = method
        self.description = description
        self.error_code = error_code


@dataclass(frozen=True)
class TelegramConfig:
    token: str
    api_base: str = "https://api.telegram.org"
    poll_timeout_s: int = 30
    request_timeout_s: float = 45.0
    error_backoff_s: float = 5.0


@dataclass(frozen=True)
class IncomingMessage:
    update_id: int
    chat_id: str
    text: str


def parse_update(update: dict[str, Any]) -> Optional[IncomingMessage]:
    message = update.get("message") or update.get("edited_message")
    if not isinstance(message, dict):
        return None
    text = message.get("text")
    chat = message.get("chat") or {}
    if not isinstance(text, str) or "id" not in chat:
        return None
    return IncomingMessage(update_id=int(update["update_id"]), chat_id=str(chat["id"]), text=text)


MessageHandler = Callable[[IncomingMessage], Awaitable[None]]


class TelegramClient:
    def __init__(self, config: TelegramConfig, session: aiohttp.ClientSession | None = None) -> None:
        self._config = config
        self._session = session
        self._owns_session = session is None
        self._offset: Optional[int] = None

    def _url(self, method: str) -> str:
        return f"{self._config.api_base.rstrip('/')}/bot{self._config.token}/{method}"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.request_timeout_s)
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def call(self, method: str, payload: dict[str, Any]) -> Any:
        session = await self._get_session()
        async with session.post(self._url(method), json=payload) as response:
            try:
                data = await response.json(content_type=None)
            except ValueError as exc:
                raise TelegramError(method, f"non-JSON response (HTTP {response.status})") from exc
        if not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description", "unknown error") if isinstance(data, dict) else "unknown error"
            error_code = data.get("error_code") if isinstance(data, dict) else None
            raise TelegramError(method, description, error_code)
        return data.get("result")

    async def get_updates(self, offset: Optional[int] = None, timeout_s: Optional[int] = None) -> list[dict[str, Any]]:
        payload: dict[str, Any] = {
            "timeout": self._config.poll_timeout_s if timeout_s is None else timeout_s,
            "allowed_updates": ["message"],
        }
        if offset is not None:
            payload["offset"] = offset
        result = await self.call("getUpdates", payload)
        return list(result or [])

    async def send_message(self, chat_id: str, text: str) -> None:
        await self.call(
            "sendMessage",
            {"chat_id": chat_id, "text": text, "disable_web_page_preview": True},
        )

    async def poll_once(self, handler: MessageHandler) -> int:
        """Fetch one batch of updates and dispatch them. Returns the batch size."""
        updates = await self.get_updates(offset=self._offset)
        for update in updates:
            self._offset = int(update["update_id"]) + 1
            message = parse_update(update)
            if message is None:
                continue
            try:
                await handler(message)
            except Exception as exc:
                logger.exception("[Telegram] Handler failed for update %s: %s", update.get("update_id"), exc)
        return len(updates)

    async def run_polling(self, handler: MessageHandler, stop: asyncio.Event) -> None:
        logger.info("[Telegram] Polling started")
        while not stop.is_set():
            poll = asyncio.ensure_future(self.poll_once(handler))
            stopper = asyncio.ensure_future(stop.wait())
            try:
                await asyncio.wait({poll, stopper}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                stopper.cancel()
            if not poll.done():
                poll.cancel()
                await asyncio.gather(poll, return_exceptions=True)
                break
            try:
                poll.result()
            except (aiohttp.ClientError, asyncio.TimeoutError, TelegramError) as exc:
                logger.warning("[Telegram] Polling error: %s; retrying in %.0fs", exc, self._config.error_backoff_s)
                try:
                    await asyncio.wait_for(stop.wait(), timeout=self._config.error_backoff_s)
                except asyncio.TimeoutError:
                    pass
        logger.info("[Telegram] Polling stopped")
