from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer
from loguru import logger

from .delivery.overflow import FileOverflowStore, OverflowManager
from .delivery.replay import OverflowReplayer
from .delivery.transport import HttpxTransport
from .diagnostics import Diagnostics

app = typer.Typer(help="SpectraView overflow store operational CLI")

# ---------------------------
# Common options
# ---------------------------


def path_opt() -> Path:
    return typer.Option(
        ..., "--path", envvar="SPECTRAVIEW_STORAGE_PATH", help="Overflow store directory"
    )


def endpoint_opt() -> str:
    return typer.Option(
        ..., "--endpoint", envvar="SPECTRAVIEW_API_ENDPOINT", help="Collector base URL"
    )


def api_key_opt() -> Optional[str]:
    return typer.Option(None, "--api-key", envvar="SPECTRAVIEW_API_KEY", help="Collector API key")


def _manager(
    path: Path, max_local_events: int = 1000, diagnostics: Optional[Diagnostics] = None
) -> OverflowManager:
    if not path.is_dir():
        typer.echo(f"no overflow store at {path}", err=True)
        raise typer.Exit(code=1)
    return OverflowManager(
        FileOverflowStore(path, mkdirs=False),
        max_local_events=max_local_events,
        diagnostics=diagnostics,
    )


# ---------------------------
# Inspection
# ---------------------------


@app.command("overflow-list")
def overflow_list(path: Path = path_opt()):
    """List overflow records, one JSON line each."""

    async def _run():
        mgr = _manager(path)
        for key, rec in await mgr.event_records():
            typer.echo(
                json.dumps(
                    {
                        "key": key,
                        "kind": "event",
                        "sessionId": rec.session_id,
                        "timestamp": rec.timestamp,
                        "synced": rec.synced,
                    }
                )
            )
        for key, rec in await mgr.batch_records():
            typer.echo(
                json.dumps(
                    {
                        "key": key,
                        "kind": "batch",
                        "sessionId": rec.session_id,
                        "timestamp": rec.timestamp,
                        "retryCount": rec.retry_count,
                        "size": rec.size,
                    }
                )
            )

    asyncio.run(_run())


@app.command("overflow-export")
def overflow_export(
    out: Path = typer.Argument(..., help="Output JSON file"),
    path: Path = path_opt(),
    session_id: Optional[str] = typer.Option(None, "--session-id", help="Only this session"),
):
    """Export mirrored events and failed batches as one JSON document."""

    async def _run():
        mgr = _manager(path)
        events = [r for _, r in await mgr.event_records()]
        batches = [r for _, r in await mgr.batch_records()]
        if session_id:
            events = [r for r in events if r.session_id == session_id]
            batches = [r for r in batches if r.session_id == session_id]
        doc = {
            "events": [r.model_dump(by_alias=True) for r in events],
            "batches": [r.model_dump(by_alias=True) for r in batches],
        }
        out.write_text(json.dumps(doc, indent=2, default=str), encoding="utf-8")
        typer.echo(f"wrote {len(events)} events, {len(batches)} batches → {out}")

    asyncio.run(_run())


# ---------------------------
# Maintenance
# ---------------------------


@app.command("overflow-replay")
def overflow_replay(
    path: Path = path_opt(),
    endpoint: str = endpoint_opt(),
    api_key: Optional[str] = api_key_opt(),
    limit: Optional[int] = typer.Option(None, "--limit", help="Replay at most N batches"),
    max_retries: Optional[int] = typer.Option(
        None, "--max-retries", help="Drop batches whose retry count reaches N"
    ),
    debug: bool = typer.Option(False, "--debug", help="Log diagnostics"),
):
    """Re-send failed batches to the collector."""

    async def _run():
        diag = Diagnostics(debug=debug)
        mgr = _manager(path, diagnostics=diag)
        transport = HttpxTransport(diagnostics=diag)
        await transport.start()
        try:
            replayer = OverflowReplayer(
                mgr, transport, api_endpoint=endpoint, api_key=api_key, diagnostics=diag
            )
            report = await replayer.replay(limit=limit, max_retries=max_retries)
        finally:
            await transport.aclose()
        typer.echo(
            json.dumps(
                {
                    "attempted": report.attempted,
                    "delivered": report.delivered,
                    "failed": report.failed,
                    "dropped": report.dropped,
                },
                indent=2,
            )
        )
        if report.failed:
            logger.warning(f"{report.failed} batches still pending")

    asyncio.run(_run())


@app.command("overflow-prune")
def overflow_prune(
    path: Path = path_opt(),
    max_local_events: int = typer.Option(
        1000, "--max-local-events", min=1, help="Keep at most N single-event records"
    ),
    synced: bool = typer.Option(True, "--synced/--no-synced", help="Also delete synced events"),
):
    """Apply the capacity policy (and drop synced events) offline."""

    async def _run():
        mgr = _manager(path, max_local_events=max_local_events)
        removed = await mgr.clear_synced() if synced else 0
        evicted = await mgr.enforce_capacity()
        typer.echo(json.dumps({"synced_removed": removed, "evicted": evicted}, indent=2))

    asyncio.run(_run())


if __name__ == "__main__":
    app()
