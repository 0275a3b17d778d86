"""
Throughput engine -- concurrent download / upload measurement.

One generic session routine serves both directions; ``TransferKind`` picks
the endpoint.  Each session opens ``connections`` streams that feed a shared
``ByteCounter``.  A sampler task snapshots the counter every
``sample_interval`` seconds; the final rate is taken over the samples after
the warm-up window:

    bps = (bytes_last - bytes_at_warmup) * 8 / (t_last - t_warmup)

If every stream on a server fails, the engine falls back to the next server
of the priority list.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Set, Tuple

from .catalog import Server
from .constants import EMA_ALPHA
from .errors import (
    AllStreamsFailed,
    Cancelled,
    NoServerAvailable,
    ThroughputTimeout,
)
from .transport import NETWORK_ERRORS, TransferKind

logger = logging.getLogger(__name__)

Sample = Tuple[float, int]  # (elapsed seconds, total bytes)

ProgressCallback = Callable[[TransferKind, Server, float, int, float], None]


# ---------------------------------------------------------------------------
# Shared counter
# ---------------------------------------------------------------------------

class ByteCounter:
    """Increment-only byte counter shared by all streams of a session.

    The lock is held only for the addition itself, so streams running on
    threads never lose an update.
    """

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def add(self, n: int) -> None:
        if n < 0:
            raise ValueError("ByteCounter only counts up")
        with self._lock:
            self._value += n

    @property
    def value(self) -> int:
        return self._value


# ---------------------------------------------------------------------------
# Session / result
# ---------------------------------------------------------------------------

@dataclass
class TransferSession:
    """State of one throughput test against one server."""

    kind: TransferKind
    server: Server
    concurrency: int
    duration: float
    counter: ByteCounter = field(default_factory=ByteCounter)
    started: float = 0.0
    samples: List[Sample] = field(default_factory=list)
    active: int = 0
    finished: int = 0
    failed: int = 0
    established: Set[int] = field(default_factory=set)
    end_reason: str = ""
    stop: asyncio.Event = field(default_factory=asyncio.Event)

    def elapsed(self) -> float:
        return time.perf_counter() - self.started

    def record_sample(self) -> Sample:
        sample = (self.elapsed(), self.counter.value)
        self.samples.append(sample)
        return sample

    def end(self, reason: str) -> None:
        """Stop the session; the first reason given wins."""
        if not self.end_reason:
            self.end_reason = reason
        self.stop.set()


@dataclass(frozen=True)
class ThroughputResult:
    """Final, immutable outcome of one successful session."""

    kind: TransferKind
    server: Server = field(compare=False)
    bits_per_second: float
    bytes_measured: int
    elapsed: float
    bytes_total: int
    duration: float
    streams: int
    failed_streams: int = 0
    samples: Tuple[float, ...] = ()
    stopped_early: bool = False

    @property
    def mbps(self) -> float:
        return self.bits_per_second / 1_000_000

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "server_id": self.server.id,
            "speed_bps": round(self.bits_per_second, 2),
            "speed_mbps": round(self.mbps, 2),
            "bytes_measured": self.bytes_measured,
            "elapsed_s": round(self.elapsed, 3),
            "bytes_total": self.bytes_total,
            "duration_s": round(self.duration, 3),
            "streams": self.streams,
            "failed_streams": self.failed_streams,
            "samples": [round(s, 2) for s in self.samples],
            "stopped_early": self.stopped_early,
        }


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def compute_throughput(samples: List[Sample], warm_up: float) -> Tuple[float, int, float]:
    """Return ``(bits_per_second, bytes, seconds)`` measured after *warm_up*.

    The baseline is the first sample at or past the warm-up.  When no
    sample after it exists the whole window from ``(0, 0)`` is used.
    """
    if not samples:
        return 0.0, 0, 0.0

    last = samples[-1]
    base = next((s for s in samples if s[0] >= warm_up), None)
    if base is None or base is last:
        base = (0.0, 0)

    elapsed = last[0] - base[0]
    measured = last[1] - base[1]
    if elapsed <= 0:
        return 0.0, measured, 0.0
    return measured * 8 / elapsed, measured, elapsed


def window_rates(samples: List[Sample], warm_up: float = 0.0) -> List[float]:
    """Mbps between consecutive samples, skipping windows inside the warm-up."""
    rates: List[float] = []
    for (t0, b0), (t1, b1) in zip(samples, samples[1:]):
        if t0 < warm_up or t1 <= t0:
            continue
        rates.append((b1 - b0) * 8 / (t1 - t0) / 1_000_000)
    return rates


class StabilityDetector:
    """Detects when the post-warm-up rate has settled.

    The rate is stable once every consecutive pair of sampling windows
    differs by less than *threshold* (relative) for *window* seconds.
    """

    def __init__(self, threshold: float, window: float, warm_up: float) -> None:
        self.threshold = threshold
        self.window = window
        self.warm_up = warm_up
        self._prev_rate: Optional[float] = None
        self._stable_since: Optional[float] = None

    def update(self, samples: List[Sample]) -> bool:
        if len(samples) < 2:
            return False
        (t0, b0), (t1, b1) = samples[-2:]
        if t0 < self.warm_up or t1 <= t0:
            return False

        rate = (b1 - b0) / (t1 - t0)
        prev, self._prev_rate = self._prev_rate, rate
        if not prev:
            self._stable_since = None
            return False

        if abs(rate - prev) / prev < self.threshold:
            if self._stable_since is None:
                self._stable_since = t0
            return t1 - self._stable_since >= self.window

        self._stable_since = None
        return False


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class ThroughputEngine:
    """
    Parallel download / upload throughput tester.

    Each stream runs ``transport.transfer`` until the session stops.  A
    stream that errors is dropped while the others continue; the session
    fails only when no stream is left.
    """

    def __init__(
        self,
        config,  # noqa: ANN001 (SpeedtestConfig)
        transport,  # noqa: ANN001 (HttpTransport)
        cancel_event: Optional[asyncio.Event] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.cancel_event = cancel_event
        self.on_progress = on_progress

    # -- Fallback over the priority list ------------------------------------

    async def run(self, kind: TransferKind, servers: List[Server]) -> ThroughputResult:
        last_exc: Optional[Exception] = None
        for server in servers:
            try:
                return await self.measure(kind, server)
            except (AllStreamsFailed, ThroughputTimeout) as exc:
                logger.warning("%s test on %s failed: %s", kind.value, server.host, exc)
                last_exc = exc
        raise NoServerAvailable(len(servers)) from last_exc

    # -- One session --------------------------------------------------------

    async def measure(self, kind: TransferKind, server: Server) -> ThroughputResult:
        cfg = self.config
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise Cancelled()

        duration = cfg.download_duration if kind is TransferKind.DOWNLOAD else cfg.upload_duration
        session = TransferSession(
            kind=kind,
            server=server,
            concurrency=cfg.connections,
            duration=duration,
        )
        logger.info(
            "Starting %s on %s with %d stream(s) for %.1f s",
            kind.value, server.host, cfg.connections, duration,
        )

        session.started = time.perf_counter()
        session.active = cfg.connections
        tasks = [asyncio.create_task(self._stream(session, i)) for i in range(cfg.connections)]
        tasks.append(asyncio.create_task(self._sampler(session)))
        if self.cancel_event is not None:
            tasks.append(asyncio.create_task(self._watch_cancel(session)))

        try:
            try:
                await asyncio.wait_for(session.stop.wait(), timeout=duration)
            except asyncio.TimeoutError:
                session.end("deadline")
            session.record_sample()
        finally:
            session.stop.set()
            for t in tasks:
                t.cancel()
            outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        for outcome in outcomes:
            if isinstance(outcome, Exception):
                raise outcome

        return self._finish(session)

    def _finish(self, session: TransferSession) -> ThroughputResult:
        cfg = self.config
        server = session.server

        if session.end_reason == "cancelled":
            logger.info("%s on %s cancelled; partial data discarded", session.kind.value, server.host)
            raise Cancelled()
        if session.end_reason == "all_failed" and session.failed >= session.concurrency:
            raise AllStreamsFailed(server.host, session.concurrency)
        if session.counter.value == 0:
            raise ThroughputTimeout(server.host, session.duration)

        bps, measured, elapsed = compute_throughput(session.samples, cfg.warm_up)
        result = ThroughputResult(
            kind=session.kind,
            server=server,
            bits_per_second=bps,
            bytes_measured=measured,
            elapsed=elapsed,
            bytes_total=session.counter.value,
            duration=session.samples[-1][0],
            streams=session.concurrency,
            failed_streams=session.failed,
            samples=tuple(window_rates(session.samples, cfg.warm_up)),
            stopped_early=session.end_reason == "stable",
        )
        logger.info(
            "%s on %s: %.2f Mbps (%d bytes in %.2f s after warm-up)",
            session.kind.value, server.host, result.mbps, measured, elapsed,
        )
        return result

    # -- Tasks --------------------------------------------------------------

    async def _stream(self, session: TransferSession, sid: int) -> None:
        def on_chunk(n: int) -> None:
            session.established.add(sid)
            session.counter.add(n)

        try:
            await self.transport.transfer(session.kind, session.server, on_chunk)
            session.finished += 1
        except NETWORK_ERRORS as exc:
            session.failed += 1
            logger.debug(
                "Stream %d to %s dropped (%s): %r",
                sid, session.server.host,
                "after data" if sid in session.established else "never established",
                exc,
            )

        session.active -= 1
        if session.active <= 0:
            session.end("all_failed" if session.failed else "exhausted")

    async def _sampler(self, session: TransferSession) -> None:
        cfg = self.config
        detector = None
        if cfg.early_stop:
            detector = StabilityDetector(cfg.stability_threshold, cfg.stability_window, cfg.warm_up)

        prev_time, prev_bytes = 0.0, 0
        smoothed = 0.0

        while not session.stop.is_set():
            await asyncio.sleep(cfg.sample_interval)
            now, total = session.record_sample()

            dt = now - prev_time
            if dt > 0 and total >= prev_bytes:
                mbps = (total - prev_bytes) * 8 / dt / 1_000_000
                smoothed = mbps if smoothed == 0.0 else EMA_ALPHA * mbps + (1 - EMA_ALPHA) * smoothed
            prev_time, prev_bytes = now, total

            if self.on_progress:
                fraction = min(now / session.duration, 1.0)
                self.on_progress(session.kind, session.server, fraction, total, smoothed)

            if detector is not None and detector.update(session.samples):
                logger.info("%s rate stable after %.1f s; stopping early", session.kind.value, now)
                session.end("stable")

    async def _watch_cancel(self, session: TransferSession) -> None:
        await self.cancel_event.wait()
        session.end("cancelled")
