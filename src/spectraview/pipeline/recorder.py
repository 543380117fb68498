"""
Capture pipeline facade.

One ``CapturePipeline`` per host context, owned by the host application.
Wires buffers, flush scheduler, heartbeat, overflow store, codec and
transport together and exposes the producer-facing capture API.

Every capture call returns normally: delivery, persistence and compression
failures are absorbed by the pipeline and surface only on the diagnostics bus.
"""

from __future__ import annotations

import json
import traceback
from pathlib import Path
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from ..config import PipelineSettings
from ..delivery.codec import DeflateCodec
from ..delivery.overflow import FileOverflowStore, MemoryOverflowStore, OverflowManager, OverflowStore
from ..delivery.transport import HttpxTransport, Transport
from ..diagnostics import Diagnostics
from ..models import CustomEvent, ErrorEvent, ErrorType, EventContext, Session
from ..sanitize import Sanitizer, sanitize
from ..utils import USER_AGENT, Clock, generate_session_id, now_ms
from .buffer import BufferManager
from .heartbeat import HeartbeatEmitter
from .scheduler import FlushScheduler, FlushTrigger

ContextProvider = Callable[[], EventContext]


def default_context() -> EventContext:
    return EventContext(user_agent=USER_AGENT)


class CapturePipeline:
    """
    Buffers telemetry and delivers it to the collector.

    Usage:
        async with CapturePipeline(PipelineSettings(api_endpoint="https://c.example", api_key="k")) as sv:
            sv.on_visual_event({"type": 2, "data": {...}, "timestamp": 1700000000000})
            sv.capture("checkout", {"total": 42})
        # stop(): final flush + session end

    Collaborators (transport, codec, store, diagnostics, sanitizer, context
    provider, clock) are injectable; defaults are built from ``settings``.
    """

    def __init__(
        self,
        settings: Optional[PipelineSettings] = None,
        *,
        transport: Optional[Transport] = None,
        codec: Optional[DeflateCodec] = None,
        store: Optional[OverflowStore] = None,
        diagnostics: Optional[Diagnostics] = None,
        sanitizer: Sanitizer = sanitize,
        context_provider: ContextProvider = default_context,
        clock: Clock = now_ms,
    ):
        self.settings = settings or PipelineSettings()
        cfg = self.settings

        self.diagnostics = diagnostics or Diagnostics(debug=cfg.debug)
        if cfg.api_key is None:
            self.diagnostics.warning("pipeline", "No API key provided")
        if cfg.offline:
            self.diagnostics.warning("pipeline", "No API endpoint provided, running in offline mode")

        self._clock = clock
        self._sanitize = sanitizer
        self._context = context_provider
        self.transport = transport or HttpxTransport(
            timeout=cfg.request_timeout,
            best_effort_timeout=cfg.best_effort_timeout,
            diagnostics=self.diagnostics,
        )
        self.codec = codec or DeflateCodec(diagnostics=self.diagnostics)

        self.overflow: Optional[OverflowManager] = None
        if cfg.enable_local_storage:
            if store is None:
                store = (
                    FileOverflowStore(cfg.storage_path)
                    if cfg.storage_path is not None
                    else MemoryOverflowStore()
                )
            self.overflow = OverflowManager(
                store,
                max_local_events=cfg.max_local_events,
                diagnostics=self.diagnostics,
                clock=clock,
            )

        self.buffers = BufferManager(batch_size=cfg.batch_size)
        self.scheduler = FlushScheduler(
            self.buffers,
            self.transport,
            codec=self.codec,
            overflow=self.overflow,
            api_endpoint=cfg.api_endpoint,
            api_key=cfg.api_key,
            flush_interval=cfg.flush_interval,
            diagnostics=self.diagnostics,
            clock=clock,
        )
        self.buffers.on_flush_request = self.scheduler.request
        self.heartbeat = HeartbeatEmitter(
            self.transport,
            api_endpoint=cfg.api_endpoint,
            headers=self.scheduler.headers,
            interval=cfg.heartbeat_interval,
            diagnostics=self.diagnostics,
            clock=clock,
        )

        self.session: Optional[Session] = None
        self.session_metadata: dict[str, Any] = {}
        self._user_id: Optional[str] = cfg.user_id
        self._recording = False

    # --------------- context management

    async def __aenter__(self) -> "CapturePipeline":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    # --------------- lifecycle

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def session_id(self) -> Optional[str]:
        return self.session.session_id if self.session else None

    async def start(self) -> None:
        if self._recording:
            self.diagnostics.warning("pipeline", "Already recording")
            return

        self.session = Session(
            session_id=generate_session_id(),
            user_id=self._user_id,
            app_id=self.settings.app_id,
            start_time=self._clock(),
        )
        if self.overflow is not None:
            await self.overflow.enforce_capacity()
        await self.transport.start()

        self.scheduler.start(self.session)
        self.heartbeat.start(self.session)
        self._recording = True

        self.diagnostics.info(
            "pipeline",
            "SDK initialized",
            session_id=self.session.session_id,
            user_id=self.session.user_id,
            app_id=self.session.app_id,
        )

        if not self.settings.offline:
            await self._send_session_start()

    async def stop(self) -> None:
        if not self._recording:
            return
        await self.heartbeat.stop()
        await self.scheduler.stop()
        self._recording = False
        self.session.end_time = self._clock()
        if not self.settings.offline:
            await self._send_session_end()
        if self.overflow is not None:
            await self.overflow.settle()
        await self.transport.aclose()
        self.diagnostics.info("pipeline", "Recording stopped")

    # --------------- producer-facing API

    def on_visual_event(self, event: Any) -> None:
        """Recording-engine callback: one visual event per call, in arrival order."""
        if not self._recording:
            return
        self.session.stats.event_count += 1
        if self.overflow is not None:
            try:
                key = self.overflow.schedule_event(event, self.session.session_id)
            except RuntimeError as exc:
                self.diagnostics.error("pipeline", "Cannot mirror event without event loop", exc)
            else:
                self.scheduler.track_event_key(key)
        self.buffers.enqueue_visual(event)

    def capture(self, event_type: str, data: Any = None) -> None:
        """Record a custom event. Ignored while not recording."""
        if not self._recording:
            return
        try:
            event = CustomEvent(
                event_type=event_type,
                data=self._sanitize(data),
                timestamp=self._clock(),
                session_id=self.session.session_id,
                context=self._context(),
            )
        except (ValidationError, TypeError, ValueError) as exc:
            self.diagnostics.error("pipeline", "Error capturing custom event", exc, event_type=event_type)
            return
        self.buffers.enqueue_custom(event)

    def capture_click(self, data: dict) -> None:
        if not self._recording:
            return
        self.capture("click", data)
        self.session.stats.click_count += 1

    def capture_error(
        self,
        message: str,
        *,
        error_type: Union[ErrorType, str] = ErrorType.JAVASCRIPT_ERROR,
        stack: Optional[str] = None,
        filename: Optional[str] = None,
        lineno: Optional[int] = None,
        colno: Optional[int] = None,
        timestamp: Optional[int] = None,
    ) -> None:
        """Record an error report and request an immediate flush."""
        if not self._recording:
            return
        ctx = self._context()
        try:
            event = ErrorEvent(
                type=error_type,
                message=message,
                stack=stack,
                filename=filename,
                lineno=lineno,
                colno=colno,
                timestamp=timestamp if timestamp is not None else self._clock(),
                session_id=self.session.session_id,
                context=EventContext(url=ctx.url, user_agent=ctx.user_agent),
            )
        except ValidationError as exc:
            self.diagnostics.error("pipeline", "Error capturing error event", exc)
            return
        self.session.stats.error_count += 1
        self.buffers.enqueue_error(event)

    def capture_exception(
        self, exc: BaseException, *, error_type: Union[ErrorType, str] = ErrorType.JAVASCRIPT_ERROR
    ) -> None:
        tb = exc.__traceback__
        frame = traceback.extract_tb(tb)[-1] if tb is not None else None
        self.capture_error(
            f"{type(exc).__name__}: {exc}",
            error_type=error_type,
            stack="".join(traceback.format_exception(exc.__class__, exc, tb)),
            filename=frame.filename if frame else None,
            lineno=frame.lineno if frame else None,
        )

    def set_user(self, user_id: str, metadata: Optional[dict] = None) -> None:
        self._user_id = user_id
        if self.session is not None:
            self.session.user_id = user_id
        self.capture("identify", {"userId": user_id, "metadata": metadata or {}})

    def add_context(self, context: dict) -> None:
        self.session_metadata = {**self.session_metadata, **context}
        self.capture("context", context)

    def on_visibility_change(self, hidden: bool) -> None:
        """Host visibility signal; hiding flushes."""
        if not self._recording:
            return
        self.capture("visibility", {"state": "hidden" if hidden else "visible", "hidden": hidden})
        if hidden:
            self.scheduler.request(FlushTrigger.VISIBILITY)

    def on_unload(self) -> None:
        """Host is going away: best-effort send of everything still buffered."""
        self.scheduler.flush_sync()

    async def flush(self) -> bool:
        return await self.scheduler.flush(FlushTrigger.MANUAL)

    # --------------- consumer-facing API

    def export_events(self) -> dict[str, Any]:
        """Full in-memory state. Does not touch the buffers."""
        snap = self.buffers.export()
        session = self.session
        return {
            "events": snap["events"],
            "metadata": {
                "sessionId": session.session_id if session else None,
                "userId": self._user_id,
                "appId": self.settings.app_id,
                "startTime": session.start_time if session else None,
                "eventCount": len(snap["events"]),
                "customEvents": snap["customEvents"],
                "errors": snap["errors"],
            },
        }

    def download_events(self, directory: Union[str, Path] = ".") -> Path:
        """Write ``export_events()`` to ``spectraview-session-<id>.json``."""
        data = self.export_events()
        path = Path(directory) / f"spectraview-session-{data['metadata']['sessionId']}.json"
        path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
        self.diagnostics.info("pipeline", f"Downloaded {len(data['events'])} events", path=str(path))
        return path

    def get_replay_events(self) -> list:
        return self.buffers.visual_events

    # --------------- session lifecycle calls

    async def _send_session_start(self) -> None:
        session = self.session
        ctx = self._context().model_dump(by_alias=True, exclude_none=True)
        body = {
            "sessionId": session.session_id,
            "userId": session.user_id,
            "appId": session.app_id,
            "startTime": session.start_time,
            "metadata": {**ctx, **self.session_metadata},
        }
        ok = await self._post_quiet(
            f"{self.settings.api_endpoint}/sessions/start",
            body,
            self.scheduler.headers(with_session=False),
        )
        if ok:
            self.diagnostics.info("pipeline", "Session started")
        else:
            self.diagnostics.error("pipeline", "Failed to start session")

    async def _send_session_end(self) -> None:
        session = self.session
        body = {
            "endTime": session.end_time,
            "stats": {"startTime": session.start_time, **session.stats.model_dump(by_alias=True)},
        }
        await self._post_quiet(
            f"{self.settings.api_endpoint}/sessions/{session.session_id}/end",
            body,
            self.scheduler.headers(),
        )

    async def _post_quiet(self, url: str, body: dict, headers: dict) -> bool:
        try:
            return await self.transport.send(url, body, headers)
        except Exception as exc:
            self.diagnostics.error("pipeline", "Session call raised", exc, url=url)
            return False
