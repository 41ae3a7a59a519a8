from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlsplit


ALLOWED_SCHEMES = ("http", "https")


class WatchError(Exception):
    """Base class for every pagewatch failure."""


class ValidationError(WatchError):
    """The operator supplied something that is not a usable absolute URL."""


class AdmissionConflict(WatchError):
    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"A watch session is already active for conversation {conversation_id}")
        self.conversation_id = conversation_id


class DeadlineExceeded(WatchError, TimeoutError):
    def __init__(self, reason: str, duration_ms: int = 0, abandoned: Optional[asyncio.Future[Any]] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.duration_ms = duration_ms
        self.abandoned = abandoned


class NavigationTimeout(DeadlineExceeded):
    pass


class FatalSessionError(WatchError):
    """Raised when no future attempt of the session can succeed."""


class EngineLaunchFailure(FatalSessionError):
    pass


class EngineDisconnected(FatalSessionError):
    pass


@dataclass(frozen=True)
class WatchRequest:
    url: str

    @classmethod
    def parse(cls, raw: str) -> "WatchRequest":
        candidate = (raw or "").strip()
        if not candidate or any(ch.isspace() for ch in candidate):
            raise ValidationError(f"Invalid URL: {raw!r}")
        try:
            parts = urlsplit(candidate)
            # Accessing .port validates the port component.
            parts.port
        except ValueError as exc:
            raise ValidationError(f"Invalid URL: {raw!r}") from exc
        if parts.scheme.lower() not in ALLOWED_SCHEMES or not parts.hostname:
            raise ValidationError(f"Invalid URL: {raw!r}")
        return cls(url=candidate)


@dataclass(frozen=True)
class ElementSnapshot:
    text: str
    aria_label: Optional[str] = None
    data_link: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ElementSnapshot":
        return cls(
            text=str(payload.get("text") or "").strip(),
            aria_label=payload.get("ariaLabel"),
            data_link=payload.get("dataLink"),
        )


class SessionState(str, Enum):
    STARTING = "starting"
    POLLING = "polling"
    FOUND = "found"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.FOUND, SessionState.CANCELLED, SessionState.FAILED)


class OutcomeKind(str, Enum):
    FOUND = "found"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    snapshot: Optional[ElementSnapshot] = None
    reason: str = ""
    error: Optional[BaseException] = None
    attempts: int = 0

    @classmethod
    def found(cls, snapshot: ElementSnapshot, attempts: int = 0) -> "Outcome":
        return cls(kind=OutcomeKind.FOUND, snapshot=snapshot, attempts=attempts)

    @classmethod
    def cancelled(cls, reason: str = "Scraping stopped by user.", attempts: int = 0) -> "Outcome":
        return cls(kind=OutcomeKind.CANCELLED, reason=reason, attempts=attempts)

    @classmethod
    def failed(cls, error: BaseException, attempts: int = 0) -> "Outcome":
        reason = str(error) or type(error).__name__
        return cls(kind=OutcomeKind.FAILED, reason=reason, error=error, attempts=attempts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "snapshot": None
            if self.snapshot is None
            else {
                "text": self.snapshot.text,
                "aria_label": self.snapshot.aria_label,
                "data_link": self.snapshot.data_link,
            },
            "reason": self.reason,
            "error_type": type(self.error).__name__ if self.error else None,
            "attempts": self.attempts,
        }
