"""
Run orchestration -- catalog, probing, selection, download, upload.

``run_speedtest`` is an async generator.  The measurement pipeline runs as
a producer task that pushes events into an ``asyncio.Queue``; the generator
is the consumer side.  The display layer only iterates::

    async for event in run_speedtest(config):
        ...

Setting *cancel_event* (or closing the generator) aborts the run.  A
cancelled run ends with ``Failed(Cancelled())`` and never with a report.
"""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

from .catalog import fetch_client_config, fetch_servers
from .config import SpeedtestConfig
from .errors import Cancelled, SpeedtestError
from .events import Completed, Event, Failed, Phase, ProgressEvent, is_terminal
from .latency import LatencyProber, rank_servers
from .report import Report, aggregate
from .selector import select_servers
from .throughput import ThroughputEngine
from .transport import HttpTransport, TransferKind

logger = logging.getLogger(__name__)

_DONE = object()

Emit = Callable[[object], None]


async def run_speedtest(
    config: Optional[SpeedtestConfig] = None,
    transport=None,  # noqa: ANN001 (HttpTransport-compatible)
    cancel_event: Optional[asyncio.Event] = None,
) -> AsyncIterator[Event]:
    """Yield progress events, ending with ``Completed`` or ``Failed``."""
    config = config or SpeedtestConfig()
    cancel_event = cancel_event or asyncio.Event()
    queue: asyncio.Queue = asyncio.Queue()

    producer = asyncio.create_task(_produce(config, transport, cancel_event, queue.put_nowait))
    try:
        while True:
            event = await queue.get()
            if event is _DONE:
                break
            yield event
            if is_terminal(event):
                break
        await producer
    finally:
        if not producer.done():
            producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)


# ---------------------------------------------------------------------------
# Producer
# ---------------------------------------------------------------------------

async def _produce(
    config: SpeedtestConfig,
    transport,  # noqa: ANN001
    cancel_event: asyncio.Event,
    emit: Emit,
) -> None:
    try:
        if transport is None:
            async with HttpTransport(config) as http:
                report = await _measure(config, http, cancel_event, emit)
        else:
            report = await _measure(config, transport, cancel_event, emit)
        emit(Completed(report))
    except SpeedtestError as exc:
        logger.info("Speedtest ended: %s", exc)
        emit(Failed(exc))
    finally:
        emit(_DONE)


async def _until_cancelled(aw: Awaitable, cancel_event: asyncio.Event):  # noqa: ANN201
    """Await *aw*, aborting with ``Cancelled`` as soon as *cancel_event* is set."""
    task = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
        await asyncio.gather(task, waiter, return_exceptions=True)

    if cancel_event.is_set():
        raise Cancelled()
    return task.result()


async def _measure(
    config: SpeedtestConfig,
    transport,  # noqa: ANN001
    cancel_event: asyncio.Event,
    emit: Emit,
) -> Report:
    # -- Catalog -------------------------------------------------------------
    emit(ProgressEvent(Phase.CATALOG, "Fetching server list"))
    client_config = await _until_cancelled(fetch_client_config(config, transport), cancel_event)
    servers = await _until_cancelled(fetch_servers(config, transport, client_config), cancel_event)
    emit(ProgressEvent(Phase.CATALOG, f"{len(servers)} candidate server(s)", fraction=1.0))

    # -- Latency -------------------------------------------------------------
    prober = LatencyProber(
        sample_count=config.ping_count,
        timeout=config.ping_timeout,
        parallelism=config.probe_parallelism,
        method=config.probe_method,
    )

    def _probed(server, done: int, total: int) -> None:  # noqa: ANN001
        emit(ProgressEvent(
            Phase.PROBING,
            f"Probed {server.host}",
            server=server,
            fraction=done / total if total else 1.0,
        ))

    emit(ProgressEvent(Phase.PROBING, "Measuring latency"))
    await _until_cancelled(prober.probe(servers, transport, on_result=_probed), cancel_event)

    # -- Selection -----------------------------------------------------------
    chosen = select_servers(rank_servers(servers), config.select_count)
    emit(ProgressEvent(Phase.SELECTING, f"Selected {chosen[0].label}", server=chosen[0], fraction=1.0))

    # -- Throughput ----------------------------------------------------------
    def _progress(kind: TransferKind, server, fraction: float, total: int, mbps: float) -> None:  # noqa: ANN001
        phase = Phase.DOWNLOAD if kind is TransferKind.DOWNLOAD else Phase.UPLOAD
        emit(ProgressEvent(
            phase,
            server=server,
            fraction=fraction,
            bytes_total=total,
            speed_mbps=mbps,
        ))

    engine = ThroughputEngine(config, transport, cancel_event=cancel_event, on_progress=_progress)

    emit(ProgressEvent(Phase.DOWNLOAD, "Testing download speed", server=chosen[0]))
    download = await engine.run(TransferKind.DOWNLOAD, chosen)

    # Upload starts on the server that served the download.
    upload_order = [download.server] + [s for s in chosen if s is not download.server]
    emit(ProgressEvent(Phase.UPLOAD, "Testing upload speed", server=download.server))
    upload = await engine.run(TransferKind.UPLOAD, upload_order)

    if cancel_event.is_set():
        raise Cancelled()

    best = download.server
    client = client_config.client if client_config is not None else None
    return aggregate(best, best.latency, download, upload, candidates=servers, client=client)
