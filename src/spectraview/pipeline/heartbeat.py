from __future__ import annotations

import asyncio
import contextlib
from typing import Callable, Mapping, Optional

from ..delivery.transport import Transport
from ..diagnostics import Diagnostics
from ..metrics.registry import metrics_registry
from ..models import Session
from ..utils import Clock, now_ms


class HeartbeatEmitter:
    """Periodic liveness ping carrying the session's cumulative stats.

    Runs on its own interval, independent of flushes. Failures are reported to
    diagnostics and otherwise ignored: no retry, nothing raised.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        api_endpoint: Optional[str],
        headers: Callable[[], Mapping[str, str]],
        interval: float = 60.0,
        diagnostics: Optional[Diagnostics] = None,
        clock: Clock = now_ms,
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self._transport = transport
        self._endpoint = api_endpoint
        self._headers = headers
        self._interval = interval
        self._diag = diagnostics or Diagnostics()
        self._clock = clock
        self._session: Optional[Session] = None
        self._task: Optional[asyncio.Task] = None
        self.beats = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, session: Session) -> None:
        if self._endpoint is None or self.running:
            return
        self._session = session
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def beat(self) -> bool:
        """Send one heartbeat now. Returns whether the collector accepted it."""
        if self._endpoint is None or self._session is None:
            return False
        session = self._session
        body = {
            "timestamp": self._clock(),
            "stats": {"startTime": session.start_time, **session.stats.model_dump(by_alias=True)},
        }
        try:
            ok = await self._transport.send(
                f"{self._endpoint}/sessions/{session.session_id}/heartbeat", body, self._headers()
            )
        except Exception as exc:
            ok = False
            self._diag.error("heartbeat", "Heartbeat raised", exc)
        self.beats += 1
        metrics_registry.heartbeat_total.labels(outcome="ok" if ok else "error").inc()
        if not ok:
            self._diag.debug_event("heartbeat", "Heartbeat not delivered")
        return ok

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.beat()
