"""
Flush scheduler.

Folds every flush trigger (size threshold, custom threshold, error, periodic
timer, visibility change, manual, stop) into one ``flush()`` operation and
owns the retry path:

    IDLE -> FLUSHING -> IDLE                  (delivered; overflow copies purged)
    IDLE -> FLUSHING -> RETRYING -> IDLE      (requeued ahead of newer events; batch persisted)

Unload uses ``flush_sync()`` instead: same payload, best-effort transport,
buffers untouched.
"""

from __future__ import annotations

import asyncio
import contextlib
from enum import Enum
from time import monotonic
from typing import Any, Coroutine, Optional, Union

from ..delivery.codec import DeflateCodec
from ..delivery.overflow import OverflowManager
from ..delivery.transport import Transport
from ..diagnostics import Diagnostics
from ..metrics.registry import metrics_registry
from ..models import Batch, Session
from ..utils import Clock, now_ms
from .buffer import BufferManager


class FlushState(str, Enum):
    IDLE = "idle"
    FLUSHING = "flushing"
    RETRYING = "retrying"


class FlushTrigger(str, Enum):
    SIZE = "size"
    CUSTOM_THRESHOLD = "custom_threshold"
    ERROR = "error"
    TIMER = "timer"
    VISIBILITY = "visibility"
    UNLOAD = "unload"
    MANUAL = "manual"
    STOP = "stop"


class FlushScheduler:
    """Coordinates flush triggers into single flush attempts.

    The snapshot-and-clear of the buffers happens before the first await, so
    events enqueued while a delivery is in flight always land in the next
    batch. Concurrent triggers are not queued: each runs its own flush and may
    find the buffers already drained.

    Args:
        buffers: Buffer manager to drain
        transport: Delivery transport
        codec: Visual-event codec (default: DeflateCodec)
        overflow: Overflow manager, or None when local storage is disabled
        api_endpoint: Collector base URL; None means offline (nothing is sent
            and buffers are never cleared)
        api_key: Sent as ``X-API-Key`` when set
        flush_interval: Periodic timer period in seconds
    """

    def __init__(
        self,
        buffers: BufferManager,
        transport: Transport,
        *,
        codec: Optional[DeflateCodec] = None,
        overflow: Optional[OverflowManager] = None,
        api_endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        flush_interval: float = 30.0,
        diagnostics: Optional[Diagnostics] = None,
        clock: Clock = now_ms,
    ):
        if flush_interval <= 0:
            raise ValueError("flush_interval must be > 0")
        self._buffers = buffers
        self._transport = transport
        self._diag = diagnostics or Diagnostics()
        self._codec = codec or DeflateCodec(diagnostics=self._diag)
        self._overflow = overflow
        self._endpoint = api_endpoint
        self._api_key = api_key
        self._interval = flush_interval
        self._clock = clock

        self._session: Optional[Session] = None
        self._state = FlushState.IDLE
        self._running = False
        self._timer_task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

        # overflow keys of events currently held in the buffers
        self._pending_event_keys: list[str] = []
        self._pending_batch_keys: list[str] = []

        # failed batches sitting at the buffer front, oldest first:
        # (order, visual, custom, errors)
        self._requeued: list[tuple[int, int, int, int]] = []
        self._order = 0

        self._best_effort_version: Optional[int] = None

    # --------------- lifecycle

    def start(self, session: Session) -> None:
        if self._running:
            return
        self._session = session
        self._running = True
        self._state = FlushState.IDLE
        self._timer_task = asyncio.get_running_loop().create_task(self._timer_loop())

    async def stop(self) -> None:
        """Cancel the timer, wait for in-flight flushes, then flush once more."""
        if not self._running:
            return
        if self._timer_task is not None:
            self._timer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer_task
            self._timer_task = None
        await self.drain()
        await self.flush(FlushTrigger.STOP)
        self._running = False

    async def drain(self) -> None:
        """Wait until every scheduled flush task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def state(self) -> FlushState:
        return self._state

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # --------------- triggers

    def request(self, trigger: Union[str, FlushTrigger]) -> None:
        """Schedule a flush from synchronous code. Never blocks."""
        if not self._running:
            return
        trigger = FlushTrigger(trigger)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._diag.warning("scheduler", "No running event loop; flush deferred", trigger=trigger.value)
            return
        self._spawn(loop, self.flush(trigger))

    def track_event_key(self, key: str) -> None:
        """Tie an overflow record to the events currently buffered."""
        self._pending_event_keys.append(key)

    async def flush(self, trigger: Union[str, FlushTrigger] = FlushTrigger.MANUAL) -> bool:
        """Drain all buffers into one batch and deliver it. Returns True if delivered."""
        trigger = FlushTrigger(trigger)
        if not self._running or self._session is None:
            return False
        if self._buffers.is_empty:
            return False

        if self._endpoint is None:
            # offline: keep everything buffered for export; nothing is encoded
            visual, custom, errors = self._buffers.counts()
            metrics_registry.flush_total.labels(outcome="offline").inc()
            self._diag.info(
                "scheduler",
                "Offline mode: would send",
                trigger=trigger.value,
                eventCount=visual,
                customEventCount=custom,
                errorCount=errors,
            )
            return False

        batch = self._take_batch()
        self._state = FlushState.FLUSHING

        t0 = monotonic()
        try:
            payload = self.build_payload(batch)
            ok = await self._transport.send(self.events_url(), payload, self.headers())
        except Exception as exc:
            self._diag.error("scheduler", "Flush attempt raised", exc)
            ok = False
        metrics_registry.flush_latency_ms.observe((monotonic() - t0) * 1000.0)

        if ok:
            self._state = FlushState.IDLE
            self._record_delivered(batch)
            self._diag.info(
                "scheduler",
                f"Flushed {len(batch.visual_events)} events, {len(batch.custom_events)} "
                f"custom events, {len(batch.errors)} errors",
                trigger=trigger.value,
            )
            await self._purge(batch)
            return True

        self._state = FlushState.RETRYING
        metrics_registry.flush_total.labels(outcome="failure").inc()
        self._diag.error(
            "scheduler", "Failed to flush events", trigger=trigger.value, size=batch.size
        )
        self._requeue(batch)
        if self._overflow is not None:
            key = await self._overflow.save_failed_batch(batch, self._session)
            if key is not None:
                self._pending_batch_keys.append(key)
        self._state = FlushState.IDLE
        return False

    def flush_sync(self) -> bool:
        """Best-effort emission of the current buffers (unload path).

        Buffers are not cleared and the outcome is not observed. A repeated
        call with no buffer mutation in between is ignored.
        """
        if not self._running or self._session is None or self._buffers.is_empty:
            return False
        if self._endpoint is None:
            self._diag.debug_event("scheduler", "Offline mode: skipping best-effort send")
            return False
        version = self._buffers.version
        if self._best_effort_version == version:
            return False

        visual, custom, errors = self._buffers.snapshot(clear=False)
        try:
            payload = self.build_payload(
                Batch(visual, custom, errors, created_at=self._clock()), final=True
            )
            self._transport.send_best_effort(self.events_url(), payload, self.headers())
            self._diag.debug_event("scheduler", "Sent best-effort batch")
        except Exception as exc:
            self._diag.error("scheduler", "Failed to send best-effort batch", exc)
        self._best_effort_version = version
        metrics_registry.flush_total.labels(outcome="best_effort").inc()
        return True

    # --------------- payload

    def events_url(self) -> str:
        return f"{self._endpoint}/sessions/{self._session.session_id}/events"

    def headers(self, *, with_session: bool = True) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["X-API-Key"] = self._api_key
        if with_session and self._session is not None:
            headers["X-Session-ID"] = self._session.session_id
        return headers

    def build_payload(self, batch: Batch, *, final: bool = False) -> dict[str, Any]:
        session = self._session
        metadata: dict[str, Any] = {
            "timestamp": self._clock(),
            "eventCount": len(batch.visual_events),
            "customEventCount": len(batch.custom_events),
            "errorCount": len(batch.errors),
        }
        if final:
            metadata["final"] = True
        return {
            "sessionId": session.session_id,
            "userId": session.user_id,
            "appId": session.app_id,
            "events": self._codec.encode(batch.visual_events),
            "customEvents": [e.model_dump(by_alias=True, mode="json") for e in batch.custom_events],
            "errors": [e.model_dump(by_alias=True, mode="json") for e in batch.errors],
            "metadata": metadata,
        }

    # --------------- internals

    def _take_batch(self) -> Batch:
        visual, custom, errors = self._buffers.snapshot(clear=True)
        # a batch carrying requeued events is as old as the oldest of them
        if self._requeued:
            order = self._requeued[0][0]
        else:
            self._order += 1
            order = self._order
        batch = Batch(
            visual,
            custom,
            errors,
            created_at=self._clock(),
            event_keys=self._pending_event_keys,
            batch_keys=self._pending_batch_keys,
            order=order,
        )
        self._pending_event_keys = []
        self._pending_batch_keys = []
        self._requeued = []
        return batch

    def _requeue(self, batch: Batch) -> None:
        """Reinsert a failed batch after older requeued batches, ahead of newer ones."""
        idx = 0
        v = c = e = 0
        for order, nv, nc, ne in self._requeued:
            if order > batch.order:
                break
            idx += 1
            v, c, e = v + nv, c + nc, e + ne
        self._buffers.requeue(batch.visual_events, batch.custom_events, batch.errors, at=(v, c, e))
        self._requeued.insert(
            idx, (batch.order, len(batch.visual_events), len(batch.custom_events), len(batch.errors))
        )
        self._pending_event_keys.extend(batch.event_keys)
        self._pending_batch_keys.extend(batch.batch_keys)

    async def _purge(self, batch: Batch) -> None:
        if self._overflow is None:
            return
        await self._overflow.mark_synced(batch.event_keys)
        await self._overflow.clear_synced()
        await self._overflow.delete_batches(batch.batch_keys)

    def _record_delivered(self, batch: Batch) -> None:
        metrics_registry.flush_total.labels(outcome="success").inc()
        metrics_registry.events_delivered_total.labels(kind="visual").inc(len(batch.visual_events))
        metrics_registry.events_delivered_total.labels(kind="custom").inc(len(batch.custom_events))
        metrics_registry.events_delivered_total.labels(kind="error").inc(len(batch.errors))

    def _spawn(self, loop: asyncio.AbstractEventLoop, coro: Coroutine) -> None:
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _timer_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            if not self._buffers.is_empty:
                self.request(FlushTrigger.TIMER)
