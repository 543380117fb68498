"""
Delivery transport to the collector.

Two modes:
- ``send``: asynchronous, awaits the response; ``True`` only for 2xx
- ``send_best_effort``: synchronous fire-and-forget used on unload, when the
  event loop may not live long enough to see an asynchronous response
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

import httpx

from ..diagnostics import Diagnostics
from ..errors import DeliveryError


class Transport(ABC):
    """Base class for collector transports."""

    async def start(self) -> None:
        """Acquire connections. Optional."""

    async def aclose(self) -> None:
        """Release connections. Optional."""

    @abstractmethod
    async def send(self, url: str, payload: Any, headers: Mapping[str, str]) -> bool:
        """POST ``payload`` as JSON. Must not raise; any failure is ``False``."""

    @abstractmethod
    def send_best_effort(self, url: str, payload: Any, headers: Mapping[str, str]) -> None:
        """POST without observing the outcome. Must not raise."""


class HttpxTransport(Transport):
    """httpx-backed transport.

    Non-2xx responses and network errors map to the same failure signal;
    no retryable/non-retryable classification is made here.

    Example:
        transport = HttpxTransport(timeout=5.0)
        await transport.start()
        ok = await transport.send(url, payload, {"X-API-Key": "..."})
        await transport.aclose()
    """

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        best_effort_timeout: float = 2.0,
        diagnostics: Optional[Diagnostics] = None,
        async_transport: Optional[httpx.AsyncBaseTransport] = None,
        sync_transport: Optional[httpx.BaseTransport] = None,
        event_hooks: Optional[dict] = None,
    ):
        self._timeout = timeout
        self._best_effort_timeout = best_effort_timeout
        self._diag = diagnostics or Diagnostics()
        self._async_transport = async_transport
        self._sync_transport = sync_transport
        self._event_hooks = event_hooks
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._async_transport,
            event_hooks=self._event_hooks,
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send(self, url: str, payload: Any, headers: Mapping[str, str]) -> bool:
        if self._client is None:
            await self.start()
        try:
            resp = await self._client.post(url, json=payload, headers=dict(headers))
        except (httpx.HTTPError, TypeError, ValueError) as exc:
            self._diag.error("transport", "Request failed", exc, url=url)
            return False

        if 200 <= resp.status_code < 300:
            return True

        err = DeliveryError(f"HTTP error! status: {resp.status_code}", resp.status_code)
        self._diag.error("transport", "Collector rejected request", err, url=url)
        return False

    def send_best_effort(self, url: str, payload: Any, headers: Mapping[str, str]) -> None:
        try:
            with httpx.Client(
                timeout=self._best_effort_timeout, transport=self._sync_transport
            ) as client:
                client.post(url, json=payload, headers=dict(headers))
        except (httpx.HTTPError, TypeError, ValueError) as exc:
            self._diag.error("transport", "Best-effort send failed", exc, url=url)
