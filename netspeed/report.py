"""
Result aggregation.

``aggregate`` is a pure function: it never performs I/O and never fails.
A measurement that could not be taken is carried as ``None`` and rendered
as ``"unavailable"`` -- never as a numeric default.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .catalog import ClientInfo, Server
from .stats import LatencyStats
from .throughput import ThroughputResult

UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class Report:
    """Final outcome of one speedtest run."""

    server: Optional[Server]
    latency: Optional[LatencyStats]
    download: Optional[ThroughputResult]
    upload: Optional[ThroughputResult]
    candidates: List[Server] = field(default_factory=list)
    client: Optional[ClientInfo] = None

    @property
    def ping_ms(self) -> Optional[float]:
        return self.latency.trimmed_mean if self.latency and self.latency.valid else None

    @property
    def jitter_ms(self) -> Optional[float]:
        return self.latency.jitter if self.latency and self.latency.valid else None

    @property
    def download_mbps(self) -> Optional[float]:
        return self.download.mbps if self.download else None

    @property
    def upload_mbps(self) -> Optional[float]:
        return self.upload.mbps if self.upload else None

    def to_dict(self) -> Dict[str, Any]:
        def _num(value: Optional[float], digits: int) -> Any:
            return UNAVAILABLE if value is None else round(value, digits)

        return {
            "client": self.client.to_dict() if self.client else UNAVAILABLE,
            "server": self.server.to_dict() if self.server else UNAVAILABLE,
            "ping_ms": _num(self.ping_ms, 3),
            "jitter_ms": _num(self.jitter_ms, 3),
            "download_mbps": _num(self.download_mbps, 2),
            "upload_mbps": _num(self.upload_mbps, 2),
            "latency": self.latency.to_dict() if self.latency else UNAVAILABLE,
            "download": self.download.to_dict() if self.download else UNAVAILABLE,
            "upload": self.upload.to_dict() if self.upload else UNAVAILABLE,
            "candidates": [s.to_dict() for s in self.candidates],
        }


def aggregate(
    server: Optional[Server],
    latency: Optional[LatencyStats],
    download: Optional[ThroughputResult],
    upload: Optional[ThroughputResult],
    candidates: Sequence[Server] = (),
    client: Optional[ClientInfo] = None,
) -> Report:
    """Combine latency and throughput measurements into a ``Report``."""
    return Report(
        server=server,
        latency=latency,
        download=download,
        upload=upload,
        candidates=list(candidates),
        client=client,
    )
