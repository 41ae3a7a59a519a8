"""
Watch session - poll one page until the order button appears.

    starting -> polling -> found | cancelled | failed

The polling loop has no retry limit and no backoff growth. Per-attempt
failures (timeouts, page errors, missing or hidden button) are logged and
retried after a fixed interval. Only fatal engine errors and operator
cancellation end the session early.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from pagewatch.core.contracts import (
    ElementSnapshot,
    EngineLaunchFailure,
    FatalSessionError,
    NavigationTimeout,
    Outcome,
    SessionState,
    WatchRequest,
)
from pagewatch.core.deadline import with_deadline
from pagewatch.core.registry import CancellationHandle

logger = logging.getLogger("pagewatch.session")


class Renderer(Protocol):
    async def open(self, url: str) -> Any: ...

    async def navigate(self, handle: Any) -> None: ...

    async def extract(self, handle: Any) -> Optional[ElementSnapshot]: ...

    async def close(self, handle: Any) -> None: ...


@dataclass(frozen=True)
class WatchConfig:
    retry_interval_ms: int = 5_000
    navigation_timeout_ms: int = 30_000


class WatchSession:
    def __init__(
        self,
        request: WatchRequest,
        renderer: Renderer,
        config: WatchConfig | None = None,
    ) -> None:
        self._request = request
        self._renderer = renderer
        self._config = config or WatchConfig()
        self.state = SessionState.STARTING
        self.attempts = 0

    @property
    def request(self) -> WatchRequest:
        return self._request

    def _transition(self, state: SessionState) -> None:
        if self.state.terminal:
            raise RuntimeError(f"Session already finished as {self.state.value}")
        logger.debug("[Watch] %s -> %s", self.state.value, state.value)
        self.state = state

    def _finish(self, outcome: Outcome) -> Outcome:
        self._transition(SessionState(outcome.kind.value))
        return outcome

    async def run(self, cancellation: CancellationHandle) -> Outcome:
        """Poll until found, cancelled or a fatal engine error. Produces one outcome."""
        if self.state != SessionState.STARTING:
            raise RuntimeError(f"Session already finished as {self.state.value}")
        url = self._request.url
        try:
            handle = await self._renderer.open(url)
        except EngineLaunchFailure as exc:
            logger.error("[Watch] Could not start browser for %s: %s", url, exc)
            return self._finish(Outcome.failed(exc, attempts=0))

        try:
            self._transition(SessionState.POLLING)
            retry_s = self._config.retry_interval_ms / 1000.0
            while True:
                if cancellation.cancelled:
                    logger.info("[Watch] Scraping cancelled by user after %d attempt(s)", self.attempts)
                    return self._finish(Outcome.cancelled(attempts=self.attempts))

                self.attempts += 1
                try:
                    snapshot = await self._render_and_extract(handle)
                except FatalSessionError as exc:
                    logger.error("[Watch] Fatal engine error on attempt %d: %s", self.attempts, exc)
                    return self._finish(Outcome.failed(exc, attempts=self.attempts))

                if snapshot is not None:
                    logger.info("[Watch] Button found on attempt %d", self.attempts)
                    return self._finish(Outcome.found(snapshot, attempts=self.attempts))

                logger.info(
                    "[Watch] Button not found or is hidden. Retrying in %.1f seconds...",
                    retry_s,
                )
                await cancellation.wait(retry_s)
        finally:
            await self._renderer.close(handle)

    async def _render_and_extract(self, handle: Any) -> Optional[ElementSnapshot]:
        """One attempt. Returns None for every retryable miss."""
        try:
            await with_deadline(
                self._renderer.navigate(handle),
                self._config.navigation_timeout_ms,
                "Page navigation timed out",
                error_type=NavigationTimeout,
            )
            return await self._renderer.extract(handle)
        except FatalSessionError:
            raise
        except NavigationTimeout as exc:
            logger.warning(
                "[Watch] Attempt %d: %s after %d ms",
                self.attempts,
                exc.reason,
                exc.duration_ms,
            )
            await self._discard(exc.abandoned)
            return None
        except Exception as exc:
            logger.error("[Watch] Error during scraping attempt %d: %s", self.attempts, exc)
            return None

    async def _discard(self, task: Optional[asyncio.Future[Any]]) -> None:
        # The next attempt reuses the same page; drop the stalled navigation first.
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
