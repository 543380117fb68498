from __future__ import annotations

from typing import Any, Callable, List, Optional

from ..models import CustomEvent, ErrorEvent

# Custom events flush at a fixed depth, independent of batch_size.
CUSTOM_FLUSH_THRESHOLD = 10

FlushRequest = Callable[[str], None]


class BufferManager:
    """
    Three in-memory queues (visual, custom, error) with size-based flush requests.

    Never drops events. Flush requests are delivered through ``on_flush_request``
    with a trigger name ("size", "custom_threshold", "error"); the callback must
    not block.

    Usage:
        buffers = BufferManager(batch_size=50, on_flush_request=scheduler.request)
        buffers.enqueue_visual(rrweb_event)
    """

    def __init__(self, batch_size: int = 50, on_flush_request: Optional[FlushRequest] = None):
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self.batch_size = batch_size
        self.on_flush_request = on_flush_request

        # Buffers
        self._visual: List[Any] = []
        self._custom: List[CustomEvent] = []
        self._errors: List[ErrorEvent] = []

        self._version = 0

    # --------------- enqueue

    def enqueue_visual(self, event: Any) -> None:
        self._visual.append(event)
        self._version += 1
        if len(self._visual) >= self.batch_size:
            self._request("size")

    def enqueue_custom(self, event: CustomEvent) -> None:
        self._custom.append(event)
        self._version += 1
        if len(self._custom) >= CUSTOM_FLUSH_THRESHOLD:
            self._request("custom_threshold")

    def enqueue_error(self, event: ErrorEvent) -> None:
        self._errors.append(event)
        self._version += 1
        # errors are delivery-urgent
        self._request("error")

    # --------------- flush support

    def snapshot(self, *, clear: bool) -> tuple[list, list, list]:
        """Copy all three queues in one step, optionally clearing them."""
        snap = (list(self._visual), list(self._custom), list(self._errors))
        if clear:
            self._visual.clear()
            self._custom.clear()
            self._errors.clear()
            self._version += 1
        return snap

    def requeue(
        self,
        visual: List[Any],
        custom: List[CustomEvent],
        errors: List[ErrorEvent],
        at: tuple[int, int, int] = (0, 0, 0),
    ) -> None:
        """Put events back ahead of anything enqueued since.

        ``at`` is the insertion offset into each queue (visual, custom, errors);
        the default is the front.
        """
        v, c, e = at
        self._visual[v:v] = visual
        self._custom[c:c] = custom
        self._errors[e:e] = errors
        self._version += 1

    def counts(self) -> tuple[int, int, int]:
        return len(self._visual), len(self._custom), len(self._errors)

    # --------------- inspection

    @property
    def visual_events(self) -> List[Any]:
        return list(self._visual)

    @property
    def custom_events(self) -> List[CustomEvent]:
        return list(self._custom)

    @property
    def errors(self) -> List[ErrorEvent]:
        return list(self._errors)

    @property
    def version(self) -> int:
        """Bumped on every mutation."""
        return self._version

    @property
    def is_empty(self) -> bool:
        return not (self._visual or self._custom or self._errors)

    def __len__(self) -> int:
        return len(self._visual) + len(self._custom) + len(self._errors)

    def export(self) -> dict:
        return {
            "events": list(self._visual),
            "customEvents": [e.model_dump(by_alias=True, mode="json") for e in self._custom],
            "errors": [e.model_dump(by_alias=True, mode="json") for e in self._errors],
        }

    # --------------- internals

    def _request(self, trigger: str) -> None:
        if self.on_flush_request is not None:
            self.on_flush_request(trigger)
