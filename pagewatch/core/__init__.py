"""Core watch-session modules."""

from pagewatch.core.contracts import (
    AdmissionConflict,
    DeadlineExceeded,
    ElementSnapshot,
    EngineDisconnected,
    EngineLaunchFailure,
    FatalSessionError,
    NavigationTimeout,
    Outcome,
    OutcomeKind,
    SessionState,
    ValidationError,
    WatchError,
    WatchRequest,
)
from pagewatch.core.deadline import with_deadline
from pagewatch.core.registry import CancellationHandle, SessionRegistry
from pagewatch.core.renderer import PageRenderer, RendererConfig, RenderHandle
from pagewatch.core.watch_session import WatchConfig, WatchSession

__all__ = [
    "AdmissionConflict",
    "CancellationHandle",
    "DeadlineExceeded",
    "ElementSnapshot",
    "EngineDisconnected",
    "EngineLaunchFailure",
    "FatalSessionError",
    "NavigationTimeout",
    "Outcome",
    "OutcomeKind",
    "PageRenderer",
    "RenderHandle",
    "RendererConfig",
    "SessionRegistry",
    "SessionState",
    "ValidationError",
    "WatchConfig",
    "WatchError",
    "WatchRequest",
    "WatchSession",
    "with_deadline",
]
