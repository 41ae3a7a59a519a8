from __future__ import annotations

import asyncio
import logging
import threading
from typing import Optional

from pagewatch.core.contracts import AdmissionConflict

logger = logging.getLogger("pagewatch.registry")


class CancellationHandle:
    """One-way cancellation flag shared between the registry and a session.

    Once cancelled it stays cancelled; every admitted session gets a new one.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        self._event.set()

    async def wait(self, timeout_s: float) -> bool:
        """Sleep up to ``timeout_s``, returning early (True) once cancelled."""
        if self._cancelled:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, timeout_s))
        except asyncio.TimeoutError:
            return False
        return True


class SessionRegistry:
    """Conversation id -> cancellation handle of its running watch session."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: dict[str, CancellationHandle] = {}

    def admit(self, conversation_id: str) -> CancellationHandle:
        key = str(conversation_id)
        with self._lock:
            if key in self._handles:
                raise AdmissionConflict(key)
            handle = CancellationHandle()
            self._handles[key] = handle
        logger.info("[Registry] Admitted session for conversation %s", key)
        return handle

    def cancel(self, conversation_id: str) -> bool:
        key = str(conversation_id)
        with self._lock:
            handle = self._handles.get(key)
            if handle is None:
                return False
            handle.cancel()
        logger.info("[Registry] Cancellation requested for conversation %s", key)
        return True

    def release(self, conversation_id: str, handle: Optional[CancellationHandle] = None) -> None:
        key = str(conversation_id)
        with self._lock:
            current = self._handles.get(key)
            if current is None:
                return
            if handle is not None and current is not handle:
                # A newer session owns the slot now.
                return
            del self._handles[key]
        logger.info("[Registry] Released session for conversation %s", key)

    def cancel_all(self) -> int:
        with self._lock:
            handles = list(self._handles.values())
            for handle in handles:
                handle.cancel()
        return len(handles)

    def is_active(self, conversation_id: str) -> bool:
        with self._lock:
            return str(conversation_id) in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)
