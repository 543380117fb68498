"""
Unit tests for OverflowReplayer.
"""

import pytest

from spectraview.delivery.codec import DeflateCodec
from spectraview.delivery.overflow import MemoryOverflowStore, OverflowManager
from spectraview.delivery.replay import OverflowReplayer
from spectraview.models import Batch, Session


async def _seed(mgr: OverflowManager, sessions=("s-1", "s-2")) -> list[str]:
    keys = []
    for i, sid in enumerate(sessions):
        session = Session(session_id=sid, user_id="u", app_id="app", start_time=0)
        batch = Batch([{"n": i}], [], [], created_at=0)
        keys.append(await mgr.save_failed_batch(batch, session))
    return keys


@pytest.fixture
def manager(clock):
    return OverflowManager(MemoryOverflowStore(), clock=clock)


@pytest.mark.asyncio
async def test_replay_delivers_and_deletes(manager, transport, clock):
    keys = await _seed(manager)
    replayer = OverflowReplayer(
        manager, transport, api_endpoint="https://collector.test/", api_key="k", clock=clock
    )

    report = await replayer.replay()

    assert (report.attempted, report.delivered, report.failed) == (2, 2, 0)
    assert report.delivered_keys == keys
    assert await manager.batch_records() == []

    urls = [c[0] for c in transport.calls]
    assert urls == [
        "https://collector.test/sessions/s-1/events",
        "https://collector.test/sessions/s-2/events",
    ]
    _, payload, headers = transport.calls[0]
    assert DeflateCodec().decode(payload["events"]) == [{"n": 0}]
    assert payload["metadata"]["retryCount"] == 0
    assert headers == {"Content-Type": "application/json", "X-Session-ID": "s-1", "X-API-Key": "k"}


@pytest.mark.asyncio
async def test_replay_failure_bumps_retry(manager, failing_transport, clock):
    await _seed(manager, sessions=("s-1",))
    replayer = OverflowReplayer(manager, failing_transport, api_endpoint="https://c.test", clock=clock)

    await replayer.replay()
    report = await replayer.replay()

    assert report.failed == 1 and report.dropped == 0
    [(_, rec)] = await manager.batch_records()
    assert rec.retry_count == 2
    assert failing_transport.calls[-1][1]["metadata"]["retryCount"] == 1


@pytest.mark.asyncio
async def test_replay_drops_after_max_retries(manager, failing_transport, clock):
    await _seed(manager, sessions=("s-1",))
    replayer = OverflowReplayer(manager, failing_transport, api_endpoint="https://c.test", clock=clock)

    first = await replayer.replay(max_retries=2)
    second = await replayer.replay(max_retries=2)

    assert first.dropped == 0
    assert second.dropped == 1
    assert await manager.batch_records() == []


@pytest.mark.asyncio
async def test_replay_limit(manager, transport, clock):
    await _seed(manager, sessions=("s-1", "s-2", "s-3"))
    replayer = OverflowReplayer(manager, transport, api_endpoint="https://c.test", clock=clock)

    report = await replayer.replay(limit=1)

    assert report.attempted == 1
    assert len(await manager.batch_records()) == 2
