"""
WatchBot - operator command handling.

Commands:
- /start: greeting and usage
- /scrape <url>: start watching a page for the order button
- /stop: cancel the active watch in this chat

Every admitted session runs as its own task. The operator always gets exactly
one final message per session, and the registry slot is always released.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Optional, Protocol

from pagewatch.core.contracts import (
    AdmissionConflict,
    ElementSnapshot,
    Outcome,
    OutcomeKind,
    ValidationError,
    WatchRequest,
)
from pagewatch.core.registry import CancellationHandle, SessionRegistry
from pagewatch.core.watch_session import Renderer, WatchConfig, WatchSession
from pagewatch.telegram import IncomingMessage

logger = logging.getLogger("pagewatch.bot")

COMMAND_RE = re.compile(r"^/(?P<name>[A-Za-z_]+)(?:@\S+)?(?:\s+(?P<args>.*))?$", re.DOTALL)

GREETING = (
    "Hello! I watch product pages for you. Use /scrape <url> to check the product page.\n"
    "Use /stop to cancel an active scrape."
)
USAGE = "Usage: /scrape <url>"
INVALID_URL = "Invalid URL provided."
ALREADY_RUNNING = (
    "A scraping process is already running. Use /stop to cancel it before starting a new one."
)
STOPPED = "Scraping has been stopped."
NOTHING_TO_STOP = "No active scraping process to stop."
SHUTTING_DOWN = "Scraping stopped: bot is shutting down."


class MessageSender(Protocol):
    async def send_message(self, chat_id: str, text: str) -> None: ...


def parse_command(text: str) -> Optional[tuple[str, str]]:
    """Split ``/name@bot args`` into (name, args). Returns None for plain text."""
    match = COMMAND_RE.match(text.strip())
    if not match:
        return None
    return match.group("name").lower(), (match.group("args") or "").strip()


def format_outcome(outcome: Outcome) -> str:
    if outcome.kind == OutcomeKind.FOUND:
        snapshot = outcome.snapshot or ElementSnapshot(text="")
        return (
            "Button found!\n"
            f"Text: {snapshot.text}\n"
            f"Aria Label: {snapshot.aria_label or 'none'}\n"
            f"Data Link: {snapshot.data_link or 'none'}"
        )
    if outcome.kind == OutcomeKind.CANCELLED:
        return outcome.reason or "Scraping stopped by user."
    return f"Scraping failed: {outcome.reason}"


class WatchBot:
    """Routes operator commands to watch sessions through the registry."""

    def __init__(
        self,
        sender: MessageSender,
        registry: SessionRegistry,
        renderer: Renderer,
        watch_config: WatchConfig | None = None,
    ) -> None:
        self._sender = sender
        self._registry = registry
        self._renderer = renderer
        self._watch_config = watch_config or WatchConfig()
        self._tasks: dict[str, asyncio.Task[Outcome]] = {}

    @property
    def active_tasks(self) -> dict[str, asyncio.Task[Outcome]]:
        return dict(self._tasks)

    async def handle_message(self, message: IncomingMessage) -> None:
        parsed = parse_command(message.text)
        if parsed is None:
            return
        name, args = parsed
        if name == "start":
            await self.handle_start(message.chat_id)
        elif name == "scrape":
            await self.handle_scrape(message.chat_id, args)
        elif name == "stop":
            await self.handle_stop(message.chat_id)

    async def handle_start(self, chat_id: str) -> None:
        await self._sender.send_message(chat_id, GREETING)

    async def handle_scrape(self, chat_id: str, raw_url: str) -> Optional[asyncio.Task[Outcome]]:
        """
        Validate, admit and launch a watch session.

        Validation and admission failures are answered immediately and no
        session is created.

        Returns:
            The session task, or None when the request was rejected
        """
        if not raw_url:
            await self._sender.send_message(chat_id, USAGE)
            return None
        try:
            request = WatchRequest.parse(raw_url)
        except ValidationError as exc:
            logger.info("[Bot] Rejected scrape request from %s: %s", chat_id, exc)
            await self._sender.send_message(chat_id, INVALID_URL)
            return None

        try:
            cancellation = self._registry.admit(chat_id)
        except AdmissionConflict:
            await self._sender.send_message(chat_id, ALREADY_RUNNING)
            return None

        logger.info("[Bot] Received scraping request for URL: %s", request.url)
        task = asyncio.create_task(
            self._run_watch(chat_id, request, cancellation),
            name=f"watch-{chat_id}",
        )
        self._tasks[chat_id] = task
        task.add_done_callback(lambda _: self._forget(chat_id, task))
        return task

    async def handle_stop(self, chat_id: str) -> None:
        if self._registry.cancel(chat_id):
            await self._sender.send_message(chat_id, STOPPED)
        else:
            await self._sender.send_message(chat_id, NOTHING_TO_STOP)

    def _forget(self, chat_id: str, task: asyncio.Task[Outcome]) -> None:
        if self._tasks.get(chat_id) is task:
            del self._tasks[chat_id]

    async def _run_watch(
        self,
        chat_id: str,
        request: WatchRequest,
        cancellation: CancellationHandle,
    ) -> Outcome:
        session = WatchSession(request, self._renderer, self._watch_config)
        try:
            try:
                await self._notify(chat_id, f"Watching {request.url} for the order button...")
                outcome = await session.run(cancellation)
            except asyncio.CancelledError:
                logger.info("[Bot] Session for %s interrupted by shutdown", chat_id)
                await self._notify(chat_id, SHUTTING_DOWN)
                raise
            except Exception as exc:
                logger.exception("[Bot] Watch session for %s crashed", chat_id)
                outcome = Outcome.failed(exc, attempts=session.attempts)
            logger.info(
                "[Bot] Session for %s finished: %s",
                chat_id,
                json.dumps(outcome.to_dict(), default=str),
            )
            await self._notify(chat_id, format_outcome(outcome))
            return outcome
        finally:
            self._registry.release(chat_id, cancellation)

    async def _notify(self, chat_id: str, text: str) -> None:
        try:
            await self._sender.send_message(chat_id, text)
        except Exception as exc:
            logger.error("[Bot] Failed to deliver message to %s: %s", chat_id, exc)

    async def shutdown(self, grace_s: float = 10.0) -> None:
        """Cancel every session, give them ``grace_s`` to finish, then force it."""
        tasks = list(self._tasks.values())
        if not tasks:
            return
        cancelled = self._registry.cancel_all()
        logger.info("[Bot] Shutting down %d session(s)", cancelled)
        _, pending = await asyncio.wait(tasks, timeout=grace_s)
        for task in pending:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
