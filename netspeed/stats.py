"""
Network measurement statistics.

Pure functions and lightweight dataclasses -- no I/O, no side effects.
Everything here is deterministic and easy to unit-test.
"""
from __future__ import annotations

import math
import statistics
from dataclasses import dataclass, field
from typing import List

from .constants import MIN_SAMPLES_FOR_TRIM, OUTLIER_FRACTION


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass
class LatencyStats:
    """Latency statistics for one server.

    ``samples`` holds the recorded round-trips in milliseconds, in the order
    they were measured.  ``lost`` counts samples that errored or timed out;
    they are never folded into the numbers as zeros.
    """

    samples: List[float] = field(default_factory=list)
    lost: int = 0
    attempts: int = 0
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    median: float = 0.0
    trimmed_mean: float = 0.0
    jitter: float = 0.0
    count: int = 0

    @property
    def valid(self) -> bool:
        return bool(self.samples)

    @property
    def packet_loss(self) -> float:
        """Percentage of attempted samples that were dropped."""
        if self.attempts <= 0:
            return 0.0
        return self.lost / self.attempts * 100

    def calculate(self) -> None:
        if not self.samples:
            return
        self.count = len(self.samples)
        self.min = min(self.samples)
        self.max = max(self.samples)
        self.mean = statistics.mean(self.samples)
        self.median = statistics.median(self.samples)
        self.trimmed_mean = calculate_trimmed_mean(self.samples)
        self.jitter = calculate_jitter(self.samples)

    def to_dict(self) -> dict:
        return {
            "samples": [round(s, 3) for s in self.samples],
            "min": round(self.min, 3),
            "max": round(self.max, 3),
            "mean": round(self.mean, 3),
            "median": round(self.median, 3),
            "trimmed_mean": round(self.trimmed_mean, 3),
            "jitter": round(self.jitter, 3),
            "count": self.count,
            "lost": self.lost,
            "packet_loss": round(self.packet_loss, 1),
        }


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------

def outlier_count(n: int, fraction: float = OUTLIER_FRACTION) -> int:
    """Number of highest samples dropped from a set of *n*.

    Fewer than ``MIN_SAMPLES_FOR_TRIM`` samples are too few to tell an
    outlier apart, so nothing is dropped.
    """
    if n < MIN_SAMPLES_FOR_TRIM or fraction <= 0:
        return 0
    return min(n - 1, math.ceil(n * fraction))


def calculate_trimmed_mean(samples: List[float], fraction: float = OUTLIER_FRACTION) -> float:
    """Mean of *samples* after dropping the top *fraction* as outliers."""
    if not samples:
        return 0.0
    ordered = sorted(samples)
    drop = outlier_count(len(ordered), fraction)
    kept = ordered[: len(ordered) - drop]
    return statistics.mean(kept)


def calculate_jitter(samples: List[float]) -> float:
    """Mean absolute difference between consecutive samples (Ookla method)."""
    if len(samples) < 2:
        return 0.0
    diffs = [abs(samples[i] - samples[i - 1]) for i in range(1, len(samples))]
    return statistics.mean(diffs)


def haversine_km(origin: tuple, destination: tuple) -> float:
    """Great-circle distance between two ``(lat, lon)`` points in km."""
    lat1, lon1 = origin
    lat2, lon2 = destination
    radius = 6371

    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2
    )
    return radius * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_speed(speed_mbps: float) -> str:
    """Human-readable speed string."""
    if speed_mbps >= 1000:
        return f"{speed_mbps / 1000:.2f} Gbps"
    return f"{speed_mbps:.2f} Mbps"


def format_latency(latency_ms: float) -> str:
    """Human-readable latency string."""
    if latency_ms >= 1000:
        return f"{latency_ms / 1000:.2f} s"
    return f"{latency_ms:.1f} ms"


def format_bytes(n: int) -> str:
    """Human-readable byte count (binary units)."""
    value = float(n)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} TB"
