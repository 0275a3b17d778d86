"""
Progress events produced by ``run_speedtest``.

The stream is a sequence of ``ProgressEvent`` values followed by exactly
one terminal event: ``Completed`` carrying the report, or ``Failed``
carrying the error (``Cancelled`` included).
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Union

from .catalog import Server
from .errors import SpeedtestError
from .report import Report


class Phase(enum.Enum):
    CATALOG = "catalog"
    PROBING = "probing"
    SELECTING = "selecting"
    DOWNLOAD = "download"
    UPLOAD = "upload"


@dataclass(frozen=True)
class ProgressEvent:
    phase: Phase
    message: str = ""
    server: Optional[Server] = None
    fraction: float = 0.0
    bytes_total: int = 0
    speed_mbps: float = 0.0


@dataclass(frozen=True)
class Completed:
    report: Report


@dataclass(frozen=True)
class Failed:
    error: SpeedtestError


Event = Union[ProgressEvent, Completed, Failed]


def is_terminal(event: Event) -> bool:
    return isinstance(event, (Completed, Failed))
