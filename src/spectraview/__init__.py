"""
SpectraView capture pipeline

Buffers session-recording telemetry (visual DOM-mutation events, custom
events, errors) and delivers it to a remote collector with batching,
compression, retry and a durable overflow store.

Usage:
    from spectraview import CapturePipeline, PipelineSettings

    settings = PipelineSettings(api_endpoint="https://collector.example", api_key="...")
    async with CapturePipeline(settings) as sv:
        recorder.on_event(sv.on_visual_event)
        sv.capture("checkout", {"total": 42})
"""

from .config import PipelineSettings, get_settings
from .diagnostics import DiagnosticEvent, DiagnosticLevel, Diagnostics
from .delivery import (
    DeflateCodec,
    FileOverflowStore,
    HttpxTransport,
    MemoryOverflowStore,
    OverflowManager,
    OverflowReplayer,
    OverflowStore,
    Transport,
)
from .models import CustomEvent, ErrorEvent, ErrorType, EventContext, Session, Viewport
from .pipeline import BufferManager, CapturePipeline, FlushScheduler, FlushState, HeartbeatEmitter
from .sanitize import sanitize

__version__ = "1.0.0"
__all__ = [
    # facade
    "CapturePipeline",
    "PipelineSettings",
    "get_settings",
    # pipeline
    "BufferManager",
    "FlushScheduler",
    "FlushState",
    "HeartbeatEmitter",
    # delivery
    "DeflateCodec",
    "Transport",
    "HttpxTransport",
    "OverflowStore",
    "MemoryOverflowStore",
    "FileOverflowStore",
    "OverflowManager",
    "OverflowReplayer",
    # models
    "CustomEvent",
    "ErrorEvent",
    "ErrorType",
    "EventContext",
    "Session",
    "Viewport",
    # tooling
    "Diagnostics",
    "DiagnosticEvent",
    "DiagnosticLevel",
    "sanitize",
]
