"""
Latency probing and server ranking.

Each server gets ``sample_count`` sequential round-trips, either plain HTTP
``GET latency.txt`` requests or Ookla WebSocket ``PING``/``PONG`` exchanges.
Servers are probed concurrently up to a bounded parallelism.

WebSocket protocol flow::

    1. Connect to  wss://{host}/ws
    2. Receive  HELLO {version}
    3. Receive  YOURIP {ip}
    4. Receive  CAPABILITIES ...
    5. Send     PING {timestamp_ms}
    6. Receive  PONG {server_timestamp}
    7. Repeat 5-6 for the desired number of samples.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional

import websockets
import websockets.exceptions

from .catalog import Server
from .constants import (
    COMMON_HEADERS,
    DEFAULT_PING_COUNT,
    DEFAULT_PING_TIMEOUT,
    DEFAULT_PROBE_PARALLELISM,
    MAX_PROBE_PARALLELISM,
)
from .stats import LatencyStats
from .transport import NETWORK_ERRORS

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tunables
# ---------------------------------------------------------------------------

_WS_CONNECT_TIMEOUT = 5.0    # seconds to establish the WS connection
_HANDSHAKE_TIMEOUT = 2.0     # max wait for HELLO/YOURIP/CAPABILITIES
_MSG_TIMEOUT = 0.5           # per-message timeout during handshake

_WS_ERRORS = NETWORK_ERRORS + (websockets.exceptions.WebSocketException,)


# ---------------------------------------------------------------------------
# Sample collection
# ---------------------------------------------------------------------------

def build_stats(raw_samples: List[float], lost: int, attempts: int) -> Optional[LatencyStats]:
    """Turn the raw successful round-trips of one server into stats.

    The first sample carries connection setup and is discarded unless it
    is the only one.  Returns ``None`` when nothing succeeded.
    """
    if not raw_samples:
        return None
    recorded = raw_samples[1:] if len(raw_samples) > 1 else list(raw_samples)
    stats = LatencyStats(samples=recorded, lost=lost, attempts=attempts)
    stats.calculate()
    return stats


def rank_key(server: Server) -> tuple:
    stats = server.latency
    distance = server.distance if server.distance is not None else float("inf")
    return (stats.trimmed_mean, distance, stats.min)


def rank_servers(servers: List[Server]) -> List[Server]:
    """Reachable servers ordered by trimmed-mean latency, then distance, then min."""
    ranked = [s for s in servers if s.reachable and s.latency is not None and s.latency.valid]
    ranked.sort(key=rank_key)
    return ranked


# ---------------------------------------------------------------------------
# Prober
# ---------------------------------------------------------------------------

class LatencyProber:
    """Probe latency to a set of servers and record stats on each."""

    def __init__(
        self,
        sample_count: int = DEFAULT_PING_COUNT,
        timeout: float = DEFAULT_PING_TIMEOUT,
        parallelism: int = DEFAULT_PROBE_PARALLELISM,
        method: str = "http",
    ) -> None:
        self.sample_count = sample_count
        self.timeout = timeout
        self.parallelism = max(1, min(parallelism, MAX_PROBE_PARALLELISM))
        self.method = method

    # -- Multiple servers ---------------------------------------------------

    async def probe(
        self,
        servers: List[Server],
        transport,  # noqa: ANN001 (HttpTransport)
        on_result: Optional[Callable[[Server, int, int], None]] = None,
    ) -> None:
        """Probe every server in place.

        *on_result* is called as ``(server, done, total)`` each time a
        server finishes, in completion order.
        """
        sem = asyncio.Semaphore(self.parallelism)
        done = 0
        total = len(servers)

        async def _guarded(srv: Server) -> None:
            nonlocal done
            async with sem:
                await self.probe_server(srv, transport)
            done += 1
            if on_result:
                on_result(srv, done, total)

        await asyncio.gather(*[_guarded(s) for s in servers])

    # -- Single server ------------------------------------------------------

    async def probe_server(self, server: Server, transport) -> None:  # noqa: ANN001
        if self.method == "ws":
            raw, lost = await self._collect_ws(server)
        else:
            raw, lost = await self._collect_http(server, transport)

        server.latency = build_stats(raw, lost, self.sample_count)
        server.reachable = server.latency is not None

        if server.reachable:
            logger.debug(
                "Server %s: trimmed mean %.1f ms over %d sample(s), %d lost",
                server.host, server.latency.trimmed_mean, server.latency.count, lost,
            )
        else:
            logger.info("Server %s unreachable: all %d probe(s) failed", server.host, lost)

    async def _collect_http(self, server: Server, transport) -> tuple:  # noqa: ANN001
        raw: List[float] = []
        lost = 0
        for attempt in range(self.sample_count):
            try:
                rtt = await asyncio.wait_for(transport.ping(server, attempt), timeout=self.timeout)
            except NETWORK_ERRORS as exc:
                lost += 1
                logger.debug("Ping %d to %s dropped: %r", attempt, server.host, exc)
                continue
            raw.append(rtt)
        return raw, lost

    async def _collect_ws(self, server: Server) -> tuple:
        raw: List[float] = []
        lost = 0
        try:
            async with websockets.connect(
                server.ws_url,
                additional_headers=COMMON_HEADERS,
                ping_interval=None,
                close_timeout=2,
                open_timeout=_WS_CONNECT_TIMEOUT,
            ) as ws:
                await self._read_handshake(ws)
                for attempt in range(self.sample_count):
                    try:
                        raw.append(await self._ping_once(ws))
                    except (asyncio.TimeoutError, ValueError) as exc:
                        lost += 1
                        logger.debug("WS ping %d to %s dropped: %r", attempt, server.host, exc)
        except _WS_ERRORS as exc:
            logger.debug("WS connection to %s failed: %r", server.host, exc)
            lost = self.sample_count - len(raw)
        return raw, lost

    # -- WebSocket internals ------------------------------------------------

    @staticmethod
    async def _read_handshake(ws) -> None:  # noqa: ANN001
        """Consume HELLO / YOURIP / CAPABILITIES messages."""
        start = time.perf_counter()
        received = 0

        while time.perf_counter() - start < _HANDSHAKE_TIMEOUT:
            try:
                msg = await asyncio.wait_for(ws.recv(), timeout=_MSG_TIMEOUT)
            except asyncio.TimeoutError:
                break

            if isinstance(msg, str) and msg.startswith("HELLO"):
                logger.debug("WS server version: %s", msg.partition(" ")[2])

            received += 1
            if received >= 3:
                break

    async def _ping_once(self, ws) -> float:  # noqa: ANN001
        """Send PING, receive PONG, return RTT in ms."""
        send_time = time.perf_counter() * 1000
        await ws.send(f"PING {int(send_time)}")
        msg = await asyncio.wait_for(ws.recv(), timeout=self.timeout)
        recv_time = time.perf_counter() * 1000

        if not (isinstance(msg, str) and msg.startswith("PONG")):
            raise ValueError(f"Unexpected response: {str(msg)[:50]}")
        return recv_time - send_time
