"""
Compression codec for visual events.

``encode`` never raises: if the events cannot be serialized or compressed the
caller gets them back uncompressed, and delivery proceeds with that shape.
"""

from __future__ import annotations

import base64
import binascii
import json
import zlib
from typing import Any, Optional, Sequence, TypedDict, Union

from ..errors import CompressionError
from ..diagnostics import Diagnostics


class EncodedEvents(TypedDict):
    compressed: bool
    data: Union[str, list]


class DeflateCodec:
    """zlib deflate + base64 over compact JSON.

    Matches what browser collectors expect from ``pako.deflate`` followed by
    ``btoa``: a zlib-wrapped stream, standard base64 alphabet.
    """

    def __init__(
        self,
        level: int = zlib.Z_DEFAULT_COMPRESSION,
        diagnostics: Optional[Diagnostics] = None,
    ):
        self._level = level
        self._diag = diagnostics or Diagnostics()

    def encode(self, events: Sequence[Any]) -> EncodedEvents:
        events = list(events)
        try:
            raw = json.dumps(events, separators=(",", ":"), allow_nan=False).encode("utf-8")
            packed = zlib.compress(raw, self._level)
            return {"compressed": True, "data": base64.b64encode(packed).decode("ascii")}
        except (TypeError, ValueError, zlib.error) as exc:
            self._diag.error("codec", "Failed to compress events", exc, count=len(events))
            return {"compressed": False, "data": events}

    def decode(self, encoded: EncodedEvents) -> list:
        """Inverse of ``encode``; accepts both the compressed and fallback shape."""
        if not encoded.get("compressed"):
            return list(encoded.get("data") or [])
        try:
            raw = zlib.decompress(base64.b64decode(encoded["data"], validate=True))
            return json.loads(raw.decode("utf-8"))
        except (binascii.Error, zlib.error, ValueError) as exc:
            raise CompressionError(f"cannot decode events: {exc}") from exc
