"""
Host-side producers.

Adapters that observe the host process and feed the pipeline through the
same capture calls the recording engine uses:

- ``console_sink``: loguru sink turning host log records into ``console`` events
- ``network_event_hooks``: httpx event hooks turning requests into ``network`` events
- ``install_exception_hooks``: uncaught exceptions and unretrieved task
  exceptions become error events
"""

from __future__ import annotations

import asyncio
import re
import sys
from time import perf_counter
from typing import TYPE_CHECKING, Callable, Optional

import httpx

from .models import ErrorType

if TYPE_CHECKING:
    from .pipeline.recorder import CapturePipeline

CONSOLE_MESSAGE_LIMIT = 1000

# static assets are not interesting as network events
_ASSET_RE = re.compile(r"\.(js|css|png|jpg|jpeg|gif|svg|woff|woff2|ttf|eot)$", re.IGNORECASE)


def console_sink(pipeline: "CapturePipeline") -> Callable:
    """Build a loguru sink recording host log messages.

    Records logged from ``spectraview`` itself are skipped.

    Example:
        logger.add(console_sink(pipeline), level="INFO")
    """

    def _sink(message) -> None:
        record = message.record
        if (record.get("name") or "").startswith("spectraview"):
            return
        pipeline.capture(
            "console",
            {
                "level": record["level"].name.lower(),
                "message": str(record["message"])[:CONSOLE_MESSAGE_LIMIT],
            },
        )

    return _sink


def network_event_hooks(pipeline: "CapturePipeline") -> dict:
    """httpx ``event_hooks`` for ``httpx.Client`` recording outgoing requests.

    Use ``async_network_event_hooks`` for ``httpx.AsyncClient``.

    Example:
        client = httpx.Client(event_hooks=network_event_hooks(pipeline))
    """
    return {"request": [_on_request], "response": [_response_hook(pipeline)]}


def async_network_event_hooks(pipeline: "CapturePipeline") -> dict:
    record = _response_hook(pipeline)

    async def on_request(request: httpx.Request) -> None:
        _on_request(request)

    async def on_response(response: httpx.Response) -> None:
        record(response)

    return {"request": [on_request], "response": [on_response]}


def _on_request(request: httpx.Request) -> None:
    request.extensions["spectraview_start"] = perf_counter()


def _response_hook(pipeline: "CapturePipeline") -> Callable[[httpx.Response], None]:
    def _on_response(response: httpx.Response) -> None:
        request = response.request
        url = str(request.url)
        if _ASSET_RE.search(request.url.path):
            return
        started = request.extensions.get("spectraview_start")
        duration = (perf_counter() - started) * 1000.0 if started is not None else None
        pipeline.capture(
            "network",
            {
                "type": "httpx",
                "url": url,
                "method": request.method,
                "status": response.status_code,
                "duration": duration,
                "ok": response.is_success,
            },
        )

    return _on_response


def install_exception_hooks(
    pipeline: "CapturePipeline", loop: Optional[asyncio.AbstractEventLoop] = None
) -> Callable[[], None]:
    """Report uncaught exceptions to the pipeline.

    ``sys.excepthook`` failures become ``javascript_error`` events; exceptions
    reaching the asyncio loop's exception handler become ``unhandled_rejection``
    events. Previous hooks are still called. Returns a function restoring them.
    """
    prev_excepthook = sys.excepthook

    def _excepthook(exc_type, exc, tb):
        try:
            pipeline.capture_exception(exc.with_traceback(tb), error_type=ErrorType.JAVASCRIPT_ERROR)
        finally:
            prev_excepthook(exc_type, exc, tb)

    sys.excepthook = _excepthook

    prev_handler = None
    if loop is not None:
        prev_handler = loop.get_exception_handler()

        def _loop_handler(lp: asyncio.AbstractEventLoop, context: dict) -> None:
            exc = context.get("exception")
            if exc is not None:
                pipeline.capture_exception(exc, error_type=ErrorType.UNHANDLED_REJECTION)
            else:
                pipeline.capture_error(
                    str(context.get("message", "unhandled loop error")),
                    error_type=ErrorType.UNHANDLED_REJECTION,
                )
            if prev_handler is not None:
                prev_handler(lp, context)
            else:
                lp.default_exception_handler(context)

        loop.set_exception_handler(_loop_handler)

    def uninstall() -> None:
        sys.excepthook = prev_excepthook
        if loop is not None:
            loop.set_exception_handler(prev_handler)

    return uninstall
