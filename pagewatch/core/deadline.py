from __future__ import annotations

import asyncio
from typing import Any, Awaitable, TypeVar

from pagewatch.core.contracts import DeadlineExceeded

T = TypeVar("T")


def _consume_result(task: asyncio.Future[Any]) -> None:
    if task.cancelled():
        return
    # Retrieve the exception so a late failure is not reported as unhandled.
    task.exception()


async def with_deadline(
    operation: Awaitable[T],
    duration_ms: int,
    reason: str,
    error_type: type[DeadlineExceeded] = DeadlineExceeded,
) -> T:
    """Await ``operation`` for at most ``duration_ms``.

    On expiry ``error_type(reason)`` is raised and the operation keeps running;
    the pending task is exposed as ``abandoned`` on the error so the caller can
    decide what to do with it. The guard never cancels it unless the caller
    itself is cancelled while waiting.
    """
    task = asyncio.ensure_future(operation)
    timeout_s = max(0.0, duration_ms / 1000.0)
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout_s)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done:
        return task.result()

    task.add_done_callback(_consume_result)
    raise error_type(reason, duration_ms=duration_ms, abandoned=task)
