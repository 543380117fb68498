"""Codec, transport and overflow persistence for collector delivery."""

from .codec import DeflateCodec, EncodedEvents
from .overflow import FileOverflowStore, MemoryOverflowStore, OverflowManager, OverflowStore
from .replay import OverflowReplayer, ReplayReport
from .transport import HttpxTransport, Transport

__all__ = [
    "DeflateCodec",
    "EncodedEvents",
    "OverflowStore",
    "MemoryOverflowStore",
    "FileOverflowStore",
    "OverflowManager",
    "OverflowReplayer",
    "ReplayReport",
    "Transport",
    "HttpxTransport",
]
