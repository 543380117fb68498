"""
Durable overflow store.

Holds mirrored single events and failed batches so they can be retried (or
exported) after a delivery failure, including from a later process.

Two layers:
- ``OverflowStore``: key-addressable storage with per-key atomic operations
  (``MemoryOverflowStore``, ``FileOverflowStore``)
- ``OverflowManager``: record semantics on top of a store (capacity
  eviction, synced bookkeeping, failed-batch records). Never raises.
"""

from __future__ import annotations

import asyncio
import copy
import json
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from ..diagnostics import Diagnostics
from ..errors import OverflowStoreError
from ..metrics.registry import metrics_registry
from ..models import Batch, BatchRecord, EventRecord, Session
from ..utils import Clock, batch_key, event_key, is_batch_key, is_event_key, now_ms

_KEY_RE = re.compile(r"^[A-Za-z0-9_\-]+$")


class OverflowStore(ABC):
    """Async key/value store for overflow records (JSON-serializable dicts)."""

    @abstractmethod
    async def put(self, key: str, record: dict) -> None: ...

    @abstractmethod
    async def get(self, key: str) -> Optional[dict]: ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete ``key``. Deleting a missing key is a no-op."""

    @abstractmethod
    async def list_keys(self) -> list[str]: ...


class MemoryOverflowStore(OverflowStore):
    """Dict-backed store. Survives one pipeline lifetime only."""

    def __init__(self) -> None:
        self._data: dict[str, dict] = {}

    async def put(self, key: str, record: dict) -> None:
        self._data[key] = copy.deepcopy(record)

    async def get(self, key: str) -> Optional[dict]:
        rec = self._data.get(key)
        return copy.deepcopy(rec) if rec is not None else None

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_keys(self) -> list[str]:
        return sorted(self._data)

    def __len__(self) -> int:
        return len(self._data)


class FileOverflowStore(OverflowStore):
    """One JSON file per key under ``root``.

    Writes land in a temp file in the same directory and are moved into place
    with ``os.replace``, so a reader (including a stale pipeline in another
    process) sees either the old record or the new one, never a partial file.
    """

    SUFFIX = ".json"

    def __init__(self, root: str | Path, *, mkdirs: bool = True):
        self.root = Path(root)
        if mkdirs:
            self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise OverflowStoreError(f"invalid overflow key: {key!r}")
        return self.root / f"{key}{self.SUFFIX}"

    async def put(self, key: str, record: dict) -> None:
        path = self._path(key)
        data = json.dumps(record, separators=(",", ":"))
        await asyncio.to_thread(self._write_atomic, path, data)

    async def get(self, key: str) -> Optional[dict]:
        return await asyncio.to_thread(self._read, self._path(key))

    async def delete(self, key: str) -> None:
        path = self._path(key)
        await asyncio.to_thread(path.unlink, missing_ok=True)

    async def list_keys(self) -> list[str]:
        return await asyncio.to_thread(self._scan)

    # --------------- blocking helpers (run in a worker thread)

    def _write_atomic(self, path: Path, data: str) -> None:
        fd, tmp = tempfile.mkstemp(dir=self.root, prefix=".tmp-", suffix=self.SUFFIX)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def _read(self, path: Path) -> Optional[dict]:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise OverflowStoreError(f"corrupt overflow record {path.name}: {exc}") from exc

    def _scan(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(
            p.name[: -len(self.SUFFIX)]
            for p in self.root.iterdir()
            if p.name.endswith(self.SUFFIX) and not p.name.startswith(".tmp-")
        )


class OverflowManager:
    """Record semantics and capacity policy over an ``OverflowStore``.

    Single-event records are capped at ``max_local_events``; after each
    insertion the oldest (by timestamp) are evicted until the cap holds.
    Eviction ignores the ``synced`` flag and never touches batch records.

    Every public coroutine swallows store failures: durability degrades to
    memory-only and a diagnostic is emitted instead.
    """

    def __init__(
        self,
        store: OverflowStore,
        *,
        max_local_events: int = 1000,
        diagnostics: Optional[Diagnostics] = None,
        clock: Clock = now_ms,
    ):
        if max_local_events <= 0:
            raise ValueError("max_local_events must be > 0")
        self.store = store
        self.max_local_events = max_local_events
        self._diag = diagnostics or Diagnostics()
        self._clock = clock
        self._pending: set[asyncio.Task] = set()
        self._evict_lock = asyncio.Lock()
        self._batch_lock = asyncio.Lock()

    # --------------- single events

    async def save_event(
        self, event: Any, session_id: str, *, key: str | None = None, timestamp: int | None = None
    ) -> str | None:
        """Mirror one visual event; returns its key, or None if the write failed."""
        ts = timestamp if timestamp is not None else self._clock()
        key = key or event_key(ts)
        record = EventRecord(event=event, session_id=session_id, timestamp=ts)
        try:
            await self.store.put(key, record.model_dump(by_alias=True))
        except Exception as exc:
            metrics_registry.overflow_writes_total.labels(kind="event", outcome="error").inc()
            self._diag.error("overflow", "Failed to save event locally", exc, key=key)
            return None
        metrics_registry.overflow_writes_total.labels(kind="event", outcome="ok").inc()
        await self.enforce_capacity()
        return key

    def schedule_event(self, event: Any, session_id: str) -> str:
        """Mirror an event from synchronous code.

        The key is allocated immediately so the caller can tie it to the
        buffered event; the write itself runs as a tracked task.
        """
        ts = self._clock()
        key = event_key(ts)
        task = asyncio.get_running_loop().create_task(
            self.save_event(event, session_id, key=key, timestamp=ts)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return key

    async def settle(self) -> None:
        """Wait for every scheduled write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def enforce_capacity(self) -> int:
        """Evict oldest single-event records beyond the cap. Returns evicted count."""
        async with self._evict_lock:
            try:
                keys = [k for k in await self.store.list_keys() if is_event_key(k)]
                if len(keys) <= self.max_local_events:
                    return 0

                stamped = []
                for k in keys:
                    rec = await self._get_quiet(k)
                    stamped.append(((rec or {}).get("timestamp", 0), k))
                stamped.sort(reverse=True)

                victims = [k for _, k in stamped[self.max_local_events :]]
                for k in victims:
                    await self.store.delete(k)
            except Exception as exc:
                self._diag.error("overflow", "Failed to evict old events", exc)
                return 0

        metrics_registry.overflow_evictions_total.inc(len(victims))
        self._diag.debug_event("overflow", f"Evicted {len(victims)} old events")
        return len(victims)

    async def mark_synced(self, keys: list[str]) -> None:
        if not keys:
            return
        await self.settle()
        try:
            for k in keys:
                rec = await self.store.get(k)
                if rec is None:
                    continue
                rec["synced"] = True
                await self.store.put(k, rec)
        except Exception as exc:
            self._diag.error("overflow", "Failed to mark events synced", exc)

    async def clear_synced(self) -> int:
        """Delete every single-event record marked synced."""
        removed = 0
        try:
            for k in await self.store.list_keys():
                if not is_event_key(k):
                    continue
                rec = await self._get_quiet(k)
                if rec is not None and rec.get("synced"):
                    await self.store.delete(k)
                    removed += 1
        except Exception as exc:
            self._diag.error("overflow", "Failed to clear synced events", exc)
        return removed

    # --------------- failed batches

    async def save_failed_batch(self, batch: Batch, session: Session) -> str | None:
        """Persist a batch whose delivery failed; returns its key, or None on failure.

        Keys are ``batch_<ts>``; a batch failing in the same millisecond as an
        existing record gets a ``_<n>`` suffix instead of overwriting it.
        """
        ts = self._clock()
        key = batch_key(ts)
        try:
            record = BatchRecord(
                events=batch.visual_events,
                custom_events=[e.model_dump(by_alias=True, mode="json") for e in batch.custom_events],
                errors=[e.model_dump(by_alias=True, mode="json") for e in batch.errors],
                session_id=session.session_id,
                user_id=session.user_id,
                app_id=session.app_id,
                timestamp=ts,
            )
            async with self._batch_lock:
                n = 0
                while await self.store.get(key) is not None:
                    n += 1
                    key = f"{batch_key(ts)}_{n}"
                await self.store.put(key, record.model_dump(by_alias=True))
        except Exception as exc:
            metrics_registry.overflow_writes_total.labels(kind="batch", outcome="error").inc()
            self._diag.error("overflow", "Failed to save failed batch", exc, key=key)
            return None
        metrics_registry.overflow_writes_total.labels(kind="batch", outcome="ok").inc()
        return key

    async def delete_batches(self, keys: list[str]) -> None:
        try:
            for k in keys:
                await self.store.delete(k)
        except Exception as exc:
            self._diag.error("overflow", "Failed to delete batch records", exc)

    async def bump_retry(self, key: str, record: BatchRecord) -> BatchRecord:
        bumped = record.model_copy(update={"retry_count": record.retry_count + 1})
        try:
            await self.store.put(key, bumped.model_dump(by_alias=True))
        except Exception as exc:
            self._diag.error("overflow", "Failed to update retry count", exc, key=key)
        return bumped

    # --------------- enumeration

    async def event_records(self) -> list[tuple[str, EventRecord]]:
        return [(k, r) for k, r in await self._records(is_event_key, EventRecord)]

    async def batch_records(self) -> list[tuple[str, BatchRecord]]:
        return [(k, r) for k, r in await self._records(is_batch_key, BatchRecord)]

    async def _records(self, match, model) -> list:
        out = []
        try:
            keys = [k for k in await self.store.list_keys() if match(k)]
        except Exception as exc:
            self._diag.error("overflow", "Failed to list overflow records", exc)
            return out
        for k in keys:
            raw = await self._get_quiet(k)
            if raw is None:
                continue
            try:
                out.append((k, model.model_validate(raw)))
            except ValidationError as exc:
                self._diag.error("overflow", "Skipping malformed overflow record", exc, key=k)
        out.sort(key=lambda kr: (kr[1].timestamp, kr[0]))
        return out

    async def _get_quiet(self, key: str) -> Optional[dict]:
        try:
            return await self.store.get(key)
        except Exception as exc:
            self._diag.error("overflow", "Failed to read overflow record", exc, key=key)
            return None
