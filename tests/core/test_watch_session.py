import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import pytest

from pagewatch.core.contracts import (
    ElementSnapshot,
    EngineDisconnected,
    EngineLaunchFailure,
    OutcomeKind,
    SessionState,
    WatchRequest,
)
from pagewatch.core.registry import CancellationHandle
from pagewatch.core.watch_session import WatchConfig, WatchSession

HANG = "hang"
FAST = WatchConfig(retry_interval_ms=1, navigation_timeout_ms=1_000)


@dataclass
class FakeRenderer:
    """Scripted renderer.

    ``navigations`` and ``extractions`` are consumed one per attempt; an item
    can be a value to return, an exception to raise, or HANG.
    """

    extractions: list[Any] = field(default_factory=list)
    navigations: list[Any] = field(default_factory=list)
    launch_error: Optional[Exception] = None
    after_extract: Optional[Callable[[int], None]] = None
    open_calls: int = 0
    navigate_calls: int = 0
    extract_calls: int = 0
    close_calls: int = 0
    abandoned_navigations: int = 0

    async def open(self, url: str) -> str:
        self.open_calls += 1
        if self.launch_error is not None:
            raise self.launch_error
        return f"handle:{url}"

    async def navigate(self, handle: str) -> None:
        self.navigate_calls += 1
        step = self.navigations.pop(0) if self.navigations else None
        if step == HANG:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.abandoned_navigations += 1
                raise
        if isinstance(step, BaseException):
            raise step

    async def extract(self, handle: str) -> Optional[ElementSnapshot]:
        self.extract_calls += 1
        step = self.extractions.pop(0) if self.extractions else None
        if self.after_extract is not None:
            self.after_extract(self.extract_calls)
        if isinstance(step, BaseException):
            raise step
        return step

    async def close(self, handle: str) -> None:
        self.close_calls += 1


def _session(renderer: FakeRenderer, config: WatchConfig = FAST) -> WatchSession:
    return WatchSession(WatchRequest.parse("https://shop.example.com/item/1"), renderer, config)


@pytest.mark.asyncio
async def test_found_on_third_attempt() -> None:
    snapshot = ElementSnapshot(text="Buy now", aria_label="Order", data_link="/cart/1")
    renderer = FakeRenderer(extractions=[None, None, snapshot, ElementSnapshot(text="never")])
    session = _session(renderer)

    outcome = await session.run(CancellationHandle())

    assert outcome.kind == OutcomeKind.FOUND
    assert outcome.snapshot == snapshot
    assert outcome.attempts == 3
    assert renderer.navigate_calls == 3
    assert renderer.extract_calls == 3
    assert renderer.close_calls == 1
    assert session.state == SessionState.FOUND


@pytest.mark.asyncio
async def test_hidden_button_keeps_polling_until_cancelled() -> None:
    # The renderer reports a hidden button as None, same as a missing one.
    cancellation = CancellationHandle()

    def stop_after_five(calls: int) -> None:
        if calls == 5:
            cancellation.cancel()

    renderer = FakeRenderer(after_extract=stop_after_five)
    outcome = await _session(renderer).run(cancellation)

    assert outcome.kind == OutcomeKind.CANCELLED
    assert renderer.extract_calls == 5
    assert renderer.close_calls == 1


@pytest.mark.asyncio
async def test_cancellation_between_attempts_stops_before_next_navigation() -> None:
    cancellation = CancellationHandle()

    def cancel_after_second(calls: int) -> None:
        if calls == 2:
            cancellation.cancel()

    renderer = FakeRenderer(after_extract=cancel_after_second)
    session = _session(renderer)

    outcome = await session.run(cancellation)

    assert outcome.kind == OutcomeKind.CANCELLED
    assert outcome.reason == "Scraping stopped by user."
    assert renderer.navigate_calls == 2
    assert session.state == SessionState.CANCELLED
    assert renderer.close_calls == 1


@pytest.mark.asyncio
async def test_cancel_during_retry_wait_ends_session_promptly() -> None:
    renderer = FakeRenderer()
    cancellation = CancellationHandle()
    session = _session(renderer, WatchConfig(retry_interval_ms=60_000, navigation_timeout_ms=1_000))

    task = asyncio.create_task(session.run(cancellation))
    while renderer.extract_calls < 1:
        await asyncio.sleep(0.001)
    cancellation.cancel()
    outcome = await asyncio.wait_for(task, timeout=1.0)

    assert outcome.kind == OutcomeKind.CANCELLED
    assert renderer.navigate_calls == 1


@pytest.mark.asyncio
async def test_already_cancelled_handle_never_navigates() -> None:
    renderer = FakeRenderer()
    cancellation = CancellationHandle()
    cancellation.cancel()

    outcome = await _session(renderer).run(cancellation)

    assert outcome.kind == OutcomeKind.CANCELLED
    assert renderer.navigate_calls == 0
    assert renderer.close_calls == 1


@pytest.mark.asyncio
async def test_hanging_navigation_times_out_and_retries() -> None:
    snapshot = ElementSnapshot(text="Buy now")
    renderer = FakeRenderer(navigations=[HANG, None], extractions=[snapshot])
    session = _session(renderer, WatchConfig(retry_interval_ms=1, navigation_timeout_ms=50))

    started = time.monotonic()
    outcome = await asyncio.wait_for(session.run(CancellationHandle()), timeout=2.0)
    elapsed = time.monotonic() - started

    assert outcome.kind == OutcomeKind.FOUND
    assert outcome.attempts == 2
    assert renderer.navigate_calls == 2
    # The timed-out attempt never reached extraction.
    assert renderer.extract_calls == 1
    assert renderer.abandoned_navigations == 1
    assert elapsed < 1.0


@pytest.mark.asyncio
async def test_attempt_errors_are_retried() -> None:
    snapshot = ElementSnapshot(text="Buy now")
    renderer = FakeRenderer(
        navigations=[RuntimeError("net::ERR_CONNECTION_RESET"), None, None],
        extractions=[ValueError("evaluate failed"), snapshot],
    )

    outcome = await _session(renderer).run(CancellationHandle())

    assert outcome.kind == OutcomeKind.FOUND
    assert outcome.attempts == 3
    assert renderer.close_calls == 1


@pytest.mark.asyncio
async def test_engine_launch_failure_fails_without_retrying() -> None:
    renderer = FakeRenderer(launch_error=EngineLaunchFailure("Failed to launch browser: no chromium"))
    session = _session(renderer)

    outcome = await session.run(CancellationHandle())

    assert outcome.kind == OutcomeKind.FAILED
    assert isinstance(outcome.error, EngineLaunchFailure)
    assert "no chromium" in outcome.reason
    assert outcome.attempts == 0
    assert renderer.open_calls == 1
    assert renderer.navigate_calls == 0
    assert renderer.close_calls == 0
    assert session.state == SessionState.FAILED


@pytest.mark.asyncio
async def test_disconnected_engine_is_fatal() -> None:
    renderer = FakeRenderer(navigations=[None, EngineDisconnected("Browser is no longer connected")])

    outcome = await _session(renderer).run(CancellationHandle())

    assert outcome.kind == OutcomeKind.FAILED
    assert isinstance(outcome.error, EngineDisconnected)
    assert outcome.attempts == 2
    assert renderer.close_calls == 1


@pytest.mark.asyncio
async def test_task_cancellation_still_closes_renderer() -> None:
    renderer = FakeRenderer(navigations=[HANG])
    session = _session(renderer, WatchConfig(retry_interval_ms=1, navigation_timeout_ms=60_000))

    task = asyncio.create_task(session.run(CancellationHandle()))
    while renderer.navigate_calls < 1:
        await asyncio.sleep(0.001)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await asyncio.sleep(0)

    assert renderer.close_calls == 1
    assert renderer.abandoned_navigations == 1


@pytest.mark.asyncio
async def test_session_runs_only_once() -> None:
    renderer = FakeRenderer(extractions=[ElementSnapshot(text="x")])
    session = _session(renderer)
    await session.run(CancellationHandle())

    with pytest.raises(RuntimeError):
        await session.run(CancellationHandle())

    # The second call must not launch another browser.
    assert renderer.open_calls == 1
    assert renderer.close_calls == 1
