"""
Tests for Prometheus metrics recorded by the pipeline.
"""

import pytest
from prometheus_client import REGISTRY

from spectraview.delivery.overflow import MemoryOverflowStore, OverflowManager
from spectraview.pipeline.recorder import CapturePipeline


def _sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels or None) or 0.0


@pytest.mark.asyncio
async def test_flush_outcomes_counted(settings, transport_factory, clock):
    before_ok = _sample("spectraview_flush_total", outcome="success")
    before_fail = _sample("spectraview_flush_total", outcome="failure")
    before_visual = _sample("spectraview_events_delivered_total", kind="visual")

    transport = transport_factory(outcomes=[False, True])
    async with CapturePipeline(settings, transport=transport, clock=clock) as sv:
        sv.on_visual_event({"n": 1})
        sv.on_visual_event({"n": 2})
        await sv.flush()
        await sv.flush()

    assert _sample("spectraview_flush_total", outcome="failure") == before_fail + 1
    assert _sample("spectraview_flush_total", outcome="success") == before_ok + 1
    assert _sample("spectraview_events_delivered_total", kind="visual") == before_visual + 2


@pytest.mark.asyncio
async def test_evictions_counted(clock):
    before = _sample("spectraview_overflow_evictions_total")
    mgr = OverflowManager(MemoryOverflowStore(), max_local_events=1, clock=clock)
    for i in range(3):
        await mgr.save_event({"n": i}, "s-1")
    assert _sample("spectraview_overflow_evictions_total") == before + 2
