"""
Diagnostics side channel for the capture pipeline.

Pipeline components never raise into the host application. Failures that
would otherwise vanish (persistence, heartbeat, delivery) are published here
as immutable events. Subscribers receive every event; when debug mode is on
each event is also written through loguru.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol

from loguru import logger


class DiagnosticLevel(str, Enum):
    """Diagnostic severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class DiagnosticEvent:
    """Immutable diagnostic record.

    Attributes:
        component: Emitting component (e.g., "scheduler", "overflow", "heartbeat")
        level: Severity
        message: Human-readable summary
        error: ``"ExcType: message"`` of the underlying exception, if any
        context: Extra structured fields
    """

    component: str
    level: DiagnosticLevel
    message: str
    error: str | None = None
    context: dict[str, Any] = field(default_factory=dict)


class DiagnosticSubscriber(Protocol):
    """Plain callable accepting a DiagnosticEvent.

    Exceptions are caught and logged so one broken subscriber cannot affect
    the pipeline or other subscribers.
    """

    def __call__(self, event: DiagnosticEvent) -> None: ...


class Diagnostics:
    """In-process pub/sub bus for pipeline diagnostics.

    Synchronous so it can be used from non-async handlers (enqueue paths,
    unload) as well as from tasks.

    Example:
        diagnostics = Diagnostics(debug=True)
        diagnostics.subscribe(lambda evt: seen.append(evt))
        pipeline = CapturePipeline(settings, diagnostics=diagnostics)
    """

    def __init__(self, debug: bool = False) -> None:
        self.debug = debug
        self._subs: list[DiagnosticSubscriber] = []

    def subscribe(self, callback: DiagnosticSubscriber) -> None:
        if callback not in self._subs:
            self._subs.append(callback)

    def unsubscribe(self, callback: DiagnosticSubscriber) -> None:
        """Remove a subscriber. No-op if it was never added."""
        try:
            self._subs.remove(callback)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    def emit(self, event: DiagnosticEvent) -> None:
        if self.debug:
            suffix = f" ({event.error})" if event.error else ""
            logger.log(
                event.level.value.upper(),
                f"[SpectraView] {event.component}: {event.message}{suffix}",
            )

        if not self._subs:
            return

        for callback in list(self._subs):
            try:
                callback(event)
            except Exception as exc:
                logger.debug(f"Diagnostics subscriber error (ignored): {type(exc).__name__}: {exc}")

    # --- convenience emitters

    def debug_event(self, component: str, message: str, **context: Any) -> None:
        self.emit(DiagnosticEvent(component, DiagnosticLevel.DEBUG, message, context=context))

    def info(self, component: str, message: str, **context: Any) -> None:
        self.emit(DiagnosticEvent(component, DiagnosticLevel.INFO, message, context=context))

    def warning(self, component: str, message: str, **context: Any) -> None:
        self.emit(DiagnosticEvent(component, DiagnosticLevel.WARNING, message, context=context))

    def error(
        self,
        component: str,
        message: str,
        exc: Optional[BaseException] = None,
        **context: Any,
    ) -> None:
        err = f"{type(exc).__name__}: {exc}" if exc is not None else None
        self.emit(DiagnosticEvent(component, DiagnosticLevel.ERROR, message, err, context))
