"""
Error taxonomy for a speedtest run.

Every error that can end a run derives from ``SpeedtestError`` so callers
can catch the whole family in one place.  Per-sample and per-stream
failures never surface as exceptions; they are absorbed and counted.
"""
from __future__ import annotations

from typing import Optional


class SpeedtestError(Exception):
    """Base class for all run-terminating errors."""


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class CatalogError(SpeedtestError):
    """The server catalog could not be obtained."""


class CatalogUnreachable(CatalogError):
    def __init__(self, urls: Optional[list] = None, message: str = "") -> None:
        self.urls = list(urls or [])
        if not message:
            message = f"Server catalog unreachable (tried {len(self.urls)} URL(s))"
        super().__init__(message)


class CatalogMalformed(CatalogError):
    def __init__(self, url: str = "", message: str = "") -> None:
        self.url = url
        if not message:
            message = f"Malformed server catalog from {url or 'unknown source'}"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Selector
# ---------------------------------------------------------------------------

class SelectorError(SpeedtestError):
    """No usable server could be selected."""


class NoServersAvailable(SelectorError):
    def __init__(self, message: str = "No server answered the latency probe") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Throughput
# ---------------------------------------------------------------------------

class ThroughputError(SpeedtestError):
    """A throughput measurement failed."""


class AllStreamsFailed(ThroughputError):
    def __init__(self, host: str = "", streams: int = 0) -> None:
        self.host = host
        self.streams = streams
        super().__init__(f"All {streams} transfer stream(s) to {host or 'server'} failed")


class ThroughputTimeout(ThroughputError):
    def __init__(self, host: str = "", duration: float = 0.0) -> None:
        self.host = host
        self.duration = duration
        super().__init__(
            f"No data transferred with {host or 'server'} within {duration:.1f} s"
        )


class NoServerAvailable(ThroughputError):
    def __init__(self, tried: int = 0) -> None:
        self.tried = tried
        super().__init__(f"Throughput test failed on all {tried} candidate server(s)")


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

class Cancelled(SpeedtestError):
    def __init__(self, message: str = "Speedtest cancelled") -> None:
        super().__init__(message)
