"""
Replay of persisted failed batches.

Batch records left in the overflow store (by this process or an earlier one)
are re-sent to the events endpoint of the session they belong to. Delivered
records are deleted; failed ones get ``retryCount`` bumped and, when
``max_retries`` is given, are dropped once they reach it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ..diagnostics import Diagnostics
from ..models import BatchRecord
from ..utils import Clock, now_ms
from .codec import DeflateCodec
from .overflow import OverflowManager
from .transport import Transport


@dataclass
class ReplayReport:
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    dropped: int = 0
    delivered_keys: list[str] = field(default_factory=list)


class OverflowReplayer:
    """Re-send batch records from an overflow store.

    Example:
        replayer = OverflowReplayer(manager, transport, api_endpoint="https://c.example", api_key="k")
        report = await replayer.replay(limit=20)
    """

    def __init__(
        self,
        overflow: OverflowManager,
        transport: Transport,
        *,
        api_endpoint: str,
        api_key: Optional[str] = None,
        codec: Optional[DeflateCodec] = None,
        diagnostics: Optional[Diagnostics] = None,
        clock: Clock = now_ms,
    ):
        self._overflow = overflow
        self._transport = transport
        self._endpoint = api_endpoint.rstrip("/")
        self._api_key = api_key
        self._diag = diagnostics or Diagnostics()
        self._codec = codec or DeflateCodec(diagnostics=self._diag)
        self._clock = clock

    def payload_for(self, record: BatchRecord) -> dict:
        return {
            "sessionId": record.session_id,
            "userId": record.user_id,
            "appId": record.app_id,
            "events": self._codec.encode(record.events),
            "customEvents": record.custom_events,
            "errors": record.errors,
            "metadata": {
                "timestamp": self._clock(),
                "eventCount": len(record.events),
                "customEventCount": len(record.custom_events),
                "errorCount": len(record.errors),
                "retryCount": record.retry_count,
            },
        }

    def headers_for(self, record: BatchRecord) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "X-Session-ID": record.session_id}
        if self._api_key:
            headers["X-API-Key"] = self._api_key
        return headers

    async def replay(self, limit: Optional[int] = None, max_retries: Optional[int] = None) -> ReplayReport:
        """Replay up to ``limit`` batch records, oldest first."""
        report = ReplayReport()
        records = await self._overflow.batch_records()
        if limit is not None:
            records = records[:limit]

        for key, record in records:
            report.attempted += 1
            url = f"{self._endpoint}/sessions/{record.session_id}/events"
            try:
                ok = await self._transport.send(url, self.payload_for(record), self.headers_for(record))
            except Exception as exc:
                self._diag.error("replay", "Transport raised during replay", exc, key=key)
                ok = False

            if ok:
                await self._overflow.delete_batches([key])
                report.delivered += 1
                report.delivered_keys.append(key)
                continue

            report.failed += 1
            bumped = await self._overflow.bump_retry(key, record)
            if max_retries is not None and bumped.retry_count >= max_retries:
                await self._overflow.delete_batches([key])
                report.dropped += 1
                self._diag.warning(
                    "replay", "Dropping batch after max retries", key=key, retries=bumped.retry_count
                )

        self._diag.info(
            "replay",
            f"Replayed {report.attempted} batches: {report.delivered} delivered, {report.failed} failed",
        )
        return report
