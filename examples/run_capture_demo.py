"""
Capture Pipeline Demo: Flaky Collector

Runs a CapturePipeline against an in-process collector (httpx.MockTransport)
that rejects every other events POST, showing failed batches being requeued,
persisted to the overflow store and delivered on the next flush.

No network access needed.
"""

import asyncio
import json

import httpx
from loguru import logger

from spectraview import CapturePipeline, DiagnosticEvent, Diagnostics, PipelineSettings
from spectraview.delivery import HttpxTransport


class FlakyCollector:
    """Accepts session calls, fails every other events POST with a 503."""

    def __init__(self):
        self.event_posts = 0
        self.delivered = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if not request.url.path.endswith("/events"):
            return httpx.Response(200)
        self.event_posts += 1
        if self.event_posts % 2 == 1:
            return httpx.Response(503)
        body = json.loads(request.content)
        self.delivered += body["metadata"]["eventCount"]
        return httpx.Response(200)


async def main():
    logger.info("🚀 Capture pipeline demo (flaky collector)")
    logger.info("=" * 70)

    collector = FlakyCollector()
    diagnostics = Diagnostics()

    def observer(event: DiagnosticEvent):
        if event.component == "scheduler":
            logger.info(f"📡 {event.level.value.upper()} - {event.message}")

    diagnostics.subscribe(observer)

    settings = PipelineSettings(
        api_endpoint="https://collector.local",
        api_key="demo-key",
        app_id="demo",
        batch_size=10,
        _env_file=None,
    )
    transport = HttpxTransport(
        async_transport=httpx.MockTransport(collector), diagnostics=diagnostics
    )

    async with CapturePipeline(settings, transport=transport, diagnostics=diagnostics) as sv:
        for i in range(25):
            sv.on_visual_event({"type": 3, "data": {"source": 1, "x": i}, "timestamp": i})
            await asyncio.sleep(0.01)
        sv.capture("checkout", {"total": 42, "email": "buyer@example.com"})

        await sv.scheduler.drain()
        pending = await sv.overflow.batch_records()
        logger.info(f"📦 Failed batches persisted so far: {len(pending)}")
        logger.info(f"   Still buffered: {len(sv.buffers)} events")

    logger.info("")
    logger.info(f"✅ Collector accepted {collector.delivered} visual events "
                f"over {collector.event_posts} POSTs")


if __name__ == "__main__":
    asyncio.run(main())
