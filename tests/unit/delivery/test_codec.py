"""
Unit tests for DeflateCodec.
"""

import base64
import json
import zlib

import pytest

from spectraview.delivery.codec import DeflateCodec
from spectraview.diagnostics import Diagnostics
from spectraview.errors import CompressionError


def test_encode_produces_zlib_base64_of_compact_json():
    """Encoded data is base64(zlib(compact JSON)), readable by any inflate."""
    events = [{"type": 2, "timestamp": 1, "data": {"node": "x"}}, {"type": 3, "timestamp": 2}]
    out = DeflateCodec().encode(events)

    assert out["compressed"] is True
    raw = zlib.decompress(base64.b64decode(out["data"]))
    assert raw == json.dumps(events, separators=(",", ":")).encode()


def test_encode_is_deterministic():
    events = [{"a": 1}, {"b": [1, 2, 3]}]
    codec = DeflateCodec()
    assert codec.encode(events) == codec.encode(list(events))


def test_encode_empty_sequence():
    out = DeflateCodec().encode([])
    assert out["compressed"] is True
    assert DeflateCodec().decode(out) == []


def test_encode_failure_degrades_to_uncompressed():
    """Non-serializable events come back uncompressed, with a diagnostic."""
    seen = []
    diag = Diagnostics()
    diag.subscribe(seen.append)
    bad = [{"ok": 1}, object()]

    out = DeflateCodec(diagnostics=diag).encode(bad)

    assert out["compressed"] is False
    assert out["data"] == bad
    assert len(seen) == 1
    assert seen[0].component == "codec"
    assert "TypeError" in seen[0].error


def test_encode_rejects_nan_without_raising():
    out = DeflateCodec().encode([{"v": float("nan")}])
    assert out["compressed"] is False


def test_decode_accepts_both_shapes():
    codec = DeflateCodec()
    events = [{"type": 4, "data": {"href": "https://x"}}]
    assert codec.decode(codec.encode(events)) == events
    assert codec.decode({"compressed": False, "data": events}) == events


def test_decode_garbage_raises_compression_error():
    with pytest.raises(CompressionError):
        DeflateCodec().decode({"compressed": True, "data": "not base64!!"})
