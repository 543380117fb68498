"""Buffering, flush scheduling and heartbeat."""

from .buffer import CUSTOM_FLUSH_THRESHOLD, BufferManager
from .heartbeat import HeartbeatEmitter
from .recorder import CapturePipeline
from .scheduler import FlushScheduler, FlushState, FlushTrigger

__all__ = [
    "CUSTOM_FLUSH_THRESHOLD",
    "BufferManager",
    "FlushScheduler",
    "FlushState",
    "FlushTrigger",
    "HeartbeatEmitter",
    "CapturePipeline",
]
