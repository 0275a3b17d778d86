"""netspeed -- server discovery, latency ranking and throughput measurement."""

from .catalog import ClientConfig, ClientInfo, Server, fetch_client_config, fetch_servers
from .config import SpeedtestConfig, load_config, save_config
from .errors import (
    AllStreamsFailed,
    Cancelled,
    CatalogError,
    CatalogMalformed,
    CatalogUnreachable,
    NoServerAvailable,
    NoServersAvailable,
    SelectorError,
    SpeedtestError,
    ThroughputError,
    ThroughputTimeout,
)
from .events import Completed, Failed, Phase, ProgressEvent
from .latency import LatencyProber, rank_servers
from .report import Report, aggregate
from .runner import run_speedtest
from .selector import select_servers
from .stats import LatencyStats, calculate_jitter, calculate_trimmed_mean, format_latency, format_speed
from .throughput import (
    ByteCounter,
    ThroughputEngine,
    ThroughputResult,
    TransferSession,
    compute_throughput,
)
from .transport import HttpTransport, TransferKind

__version__ = "0.1.0"

__all__ = [
    "AllStreamsFailed",
    "ByteCounter",
    "Cancelled",
    "CatalogError",
    "CatalogMalformed",
    "CatalogUnreachable",
    "ClientConfig",
    "ClientInfo",
    "Completed",
    "Failed",
    "HttpTransport",
    "LatencyProber",
    "LatencyStats",
    "NoServerAvailable",
    "NoServersAvailable",
    "Phase",
    "ProgressEvent",
    "Report",
    "SelectorError",
    "Server",
    "SpeedtestConfig",
    "SpeedtestError",
    "ThroughputEngine",
    "ThroughputError",
    "ThroughputResult",
    "ThroughputTimeout",
    "TransferKind",
    "TransferSession",
    "aggregate",
    "calculate_jitter",
    "calculate_trimmed_mean",
    "compute_throughput",
    "fetch_client_config",
    "fetch_servers",
    "format_latency",
    "format_speed",
    "load_config",
    "rank_servers",
    "run_speedtest",
    "save_config",
    "select_servers",
]
