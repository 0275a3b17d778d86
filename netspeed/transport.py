"""
HTTP transport for catalog, latency and throughput requests.

All HTTP work goes through a single ``aiohttp.ClientSession`` managed via
async-context-manager protocol (``async with HttpTransport(cfg) as t: ...``).
The measurement modules only talk to this interface, so tests can swap in
a fake transport with the same four coroutines.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import os
import time
import uuid
from typing import Callable, Optional

import aiohttp

from .constants import COMMON_HEADERS, UPLOAD_BUFFER_SIZE

logger = logging.getLogger(__name__)

# Exceptions that mean "this request failed" rather than "this code is wrong".
NETWORK_ERRORS = (aiohttp.ClientError, OSError, asyncio.TimeoutError)

_LATENCY_BODY = b"test=test"
_YIELD_EVERY = 256 * 1024  # give the event loop a turn every 256 KB


class TransferKind(enum.Enum):
    """Direction of a throughput session."""

    DOWNLOAD = "download"
    UPLOAD = "upload"


class BadResponse(aiohttp.ClientError):
    """The server answered, but not with what the endpoint contract promises."""


class HttpTransport:
    """Async context manager owning the run's ``aiohttp.ClientSession``."""

    def __init__(self, config) -> None:  # noqa: ANN001 (SpeedtestConfig)
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None
        # Pre-generate upload payload once per run.
        self._upload_buffer = os.urandom(UPLOAD_BUFFER_SIZE)

    # -- Context manager ----------------------------------------------------

    async def __aenter__(self) -> HttpTransport:
        cfg = self.config
        local_addr = (cfg.source_address, 0) if cfg.source_address else None
        connector = aiohttp.TCPConnector(
            limit=max(cfg.connections, cfg.probe_parallelism) * 2,
            force_close=False,
            enable_cleanup_closed=True,
            local_addr=local_addr,
        )
        timeout = aiohttp.ClientTimeout(
            total=None,
            connect=cfg.connect_timeout,
            sock_read=cfg.read_timeout,
        )
        headers = {**COMMON_HEADERS, "Accept-Encoding": "identity"}
        self._session = aiohttp.ClientSession(
            headers=headers,
            connector=connector,
            timeout=timeout,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._session:
            await self._session.close()
            self._session = None

    # -- Internal helpers ---------------------------------------------------

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError(
                "HttpTransport must be used as an async context manager "
                "(async with HttpTransport(config) as transport: ...)"
            )
        return self._session

    # -- Public methods -----------------------------------------------------

    async def fetch_text(self, url: str) -> str:
        """GET *url* and return the body as text."""
        session = self._ensure_session()
        timeout = aiohttp.ClientTimeout(
            total=self.config.connect_timeout + self.config.read_timeout * 2,
        )
        async with session.get(url, timeout=timeout) as resp:
            resp.raise_for_status()
            return await resp.text()

    async def ping(self, server, attempt: int = 0) -> float:  # noqa: ANN001 (Server)
        """Time one ``latency.txt`` round-trip in milliseconds."""
        session = self._ensure_session()
        stamp = int(time.time() * 1000)
        params = {"x": f"{stamp}.{attempt}"}

        start = time.perf_counter()
        async with session.get(server.latency_url, params=params) as resp:
            body = await resp.read()
            elapsed = (time.perf_counter() - start) * 1000

        if resp.status != 200 or not body.startswith(_LATENCY_BODY):
            raise BadResponse(f"Unexpected latency response from {server.host}: HTTP {resp.status}")
        return elapsed

    async def transfer(
        self,
        kind: TransferKind,
        server,  # noqa: ANN001 (Server)
        on_chunk: Callable[[int], None],
    ) -> None:
        """Run one transfer stream until cancelled.

        Requests are issued back to back; *on_chunk* is called with the size
        of every chunk as it is received (download) or handed to the socket
        (upload).  Errors propagate to the caller, which drops the stream.
        """
        if kind is TransferKind.DOWNLOAD:
            while True:
                await self._download_once(server, on_chunk)
        else:
            while True:
                await self._upload_once(server, on_chunk)

    # -- Transfers ----------------------------------------------------------

    async def _download_once(self, server, on_chunk: Callable[[int], None]) -> None:  # noqa: ANN001
        session = self._ensure_session()
        params = {"nocache": uuid.uuid4().hex, "size": str(self.config.download_size)}
        chunk_size = self.config.chunk_size

        async with session.get(server.download_url, params=params) as resp:
            resp.raise_for_status()
            while True:
                chunk = await resp.content.read(chunk_size)
                if not chunk:
                    break
                on_chunk(len(chunk))

    async def _upload_once(self, server, on_chunk: Callable[[int], None]) -> None:  # noqa: ANN001
        session = self._ensure_session()
        headers = {"Content-Type": "application/octet-stream"}
        params = {"nocache": uuid.uuid4().hex}

        async with session.post(
            server.upload_url,
            params=params,
            data=self._upload_body(on_chunk),
            headers=headers,
        ) as resp:
            resp.raise_for_status()
            await resp.read()

    async def _upload_body(self, on_chunk: Callable[[int], None]):
        """Stream ``upload_size`` bytes cycled from the random buffer."""
        buffer = self._upload_buffer
        buffer_size = len(buffer)
        chunk_size = self.config.chunk_size
        remaining = self.config.upload_size
        pos = 0
        since_yield = 0

        while remaining > 0:
            size = min(chunk_size, remaining)
            end = pos + size
            if end > buffer_size:
                chunk = buffer[pos:] + buffer[: end - buffer_size]
                pos = end - buffer_size
            else:
                chunk = buffer[pos:end]
                pos = end

            remaining -= size
            on_chunk(size)

            since_yield += size
            if since_yield >= _YIELD_EVERY:
                since_yield = 0
                await asyncio.sleep(0)

            yield chunk
