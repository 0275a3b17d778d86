"""
Run configuration and user configuration file support.

A ``SpeedtestConfig`` carries every tunable of a run with a documented
default.  Values can be persisted in ``~/.netspeed/config.json``; CLI flags
override whatever the file holds.

Supported keys::

    server_id = 12345          # pin one server
    exclude_ids = [1, 2]       # never test against these
    server_limit = 10          # candidates taken from the catalog
    ping_count = 10            # latency samples per server
    select_count = 3           # servers kept as fallback priority list
    connections = 4            # concurrent transfer streams
    download_duration = 10.0
    upload_duration = 10.0
    warm_up = 2.0
    early_stop = false
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from .constants import (
    CATALOG_URLS,
    CHUNK_SIZE,
    CLIENT_CONFIG_URLS,
    CONNECT_TIMEOUT,
    DEFAULT_CONNECTIONS,
    DEFAULT_DURATION,
    DEFAULT_PING_COUNT,
    DEFAULT_PING_TIMEOUT,
    DEFAULT_PROBE_PARALLELISM,
    DEFAULT_SELECT_COUNT,
    DEFAULT_SERVER_LIMIT,
    DOWNLOAD_SIZE,
    MAX_CONNECTIONS,
    MAX_DURATION,
    MAX_PING_COUNT,
    MAX_PROBE_PARALLELISM,
    MIN_CONNECTIONS,
    MIN_DURATION,
    MIN_PING_COUNT,
    READ_TIMEOUT,
    SAMPLE_INTERVAL,
    STABILITY_THRESHOLD,
    STABILITY_WINDOW,
    UPLOAD_BUFFER_SIZE,
    UPLOAD_SIZE,
    WARMUP_SECONDS,
)

logger = logging.getLogger(__name__)

_CONFIG_DIR = os.path.join(Path.home(), ".netspeed")
_CONFIG_FILE = "config.json"

PROBE_METHODS = ("http", "ws")


def _config_path() -> str:
    return os.path.join(_CONFIG_DIR, _CONFIG_FILE)


# ---------------------------------------------------------------------------
# Config model
# ---------------------------------------------------------------------------

@dataclass
class SpeedtestConfig:
    """All knobs of a single speedtest run."""

    # Catalog
    catalog_urls: List[str] = field(default_factory=lambda: list(CATALOG_URLS))
    client_config_urls: List[str] = field(default_factory=lambda: list(CLIENT_CONFIG_URLS))
    server_limit: int = DEFAULT_SERVER_LIMIT
    server_id: Optional[int] = None
    exclude_ids: List[int] = field(default_factory=list)

    # Latency
    ping_count: int = DEFAULT_PING_COUNT
    ping_timeout: float = DEFAULT_PING_TIMEOUT
    probe_parallelism: int = DEFAULT_PROBE_PARALLELISM
    probe_method: str = "http"

    # Selection
    select_count: int = DEFAULT_SELECT_COUNT

    # Throughput
    connections: int = DEFAULT_CONNECTIONS
    download_duration: float = DEFAULT_DURATION
    upload_duration: float = DEFAULT_DURATION
    warm_up: float = WARMUP_SECONDS
    sample_interval: float = SAMPLE_INTERVAL
    chunk_size: int = CHUNK_SIZE
    download_size: int = DOWNLOAD_SIZE
    upload_size: int = UPLOAD_SIZE
    early_stop: bool = False
    stability_threshold: float = STABILITY_THRESHOLD
    stability_window: float = STABILITY_WINDOW

    # Networking
    connect_timeout: float = CONNECT_TIMEOUT
    read_timeout: float = READ_TIMEOUT
    source_address: Optional[str] = None
    secure: bool = True

    # -- Constructors -------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SpeedtestConfig:
        """Build a config from *data*, ignoring (and logging) unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            if key in known:
                kwargs[key] = value
            else:
                logger.warning("Ignoring unknown config key %r", key)
        return cls(**kwargs)

    def replace(self, **overrides: Any) -> SpeedtestConfig:
        """Return a copy with every non-``None`` override applied."""
        data = asdict(self)
        data.update({k: v for k, v in overrides.items() if v is not None})
        return SpeedtestConfig(**data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    # -- Validation ---------------------------------------------------------

    def validate(self) -> None:
        """Raise ``ValueError`` if any parameter is out of range."""
        if not MIN_PING_COUNT <= self.ping_count <= MAX_PING_COUNT:
            raise ValueError(f"Ping count must be between {MIN_PING_COUNT} and {MAX_PING_COUNT}")
        if not MIN_DURATION <= self.download_duration <= MAX_DURATION:
            raise ValueError(f"Download duration must be between {MIN_DURATION} and {MAX_DURATION} s")
        if not MIN_DURATION <= self.upload_duration <= MAX_DURATION:
            raise ValueError(f"Upload duration must be between {MIN_DURATION} and {MAX_DURATION} s")
        if not MIN_CONNECTIONS <= self.connections <= MAX_CONNECTIONS:
            raise ValueError(f"Connections must be between {MIN_CONNECTIONS} and {MAX_CONNECTIONS}")
        if not 1 <= self.probe_parallelism <= MAX_PROBE_PARALLELISM:
            raise ValueError(f"Probe parallelism must be between 1 and {MAX_PROBE_PARALLELISM}")
        if self.probe_method not in PROBE_METHODS:
            raise ValueError(f"Probe method must be one of {', '.join(PROBE_METHODS)}")
        if self.server_limit < 1:
            raise ValueError("Server limit must be at least 1")
        if self.select_count < 1:
            raise ValueError("Select count must be at least 1")
        if self.ping_timeout <= 0:
            raise ValueError("Ping timeout must be positive")
        if self.warm_up < 0:
            raise ValueError("Warm-up must not be negative")
        for name, duration in (("download", self.download_duration), ("upload", self.upload_duration)):
            if self.warm_up >= duration:
                raise ValueError(f"Warm-up must be shorter than the {name} duration")
        if self.sample_interval <= 0:
            raise ValueError("Sample interval must be positive")
        if self.chunk_size <= 0 or self.download_size <= 0 or self.upload_size <= 0:
            raise ValueError("Transfer sizes must be positive")
        if self.chunk_size > UPLOAD_BUFFER_SIZE:
            raise ValueError(f"Chunk size must not exceed {UPLOAD_BUFFER_SIZE} bytes")
        if not self.catalog_urls:
            raise ValueError("At least one catalog URL is required")


# ---------------------------------------------------------------------------
# Read / Write
# ---------------------------------------------------------------------------

def load_config() -> SpeedtestConfig:
    """Load config from disk, returning defaults for missing keys."""
    path = _config_path()

    if not os.path.isfile(path):
        return SpeedtestConfig()

    try:
        with open(path, encoding="utf-8") as fh:
            user = json.load(fh)
    except (json.JSONDecodeError, IOError) as exc:
        logger.warning("Could not read %s (%s); using defaults", path, exc)
        return SpeedtestConfig()

    if not isinstance(user, dict):
        logger.warning("Config file %s is not a JSON object; using defaults", path)
        return SpeedtestConfig()

    try:
        return SpeedtestConfig.from_dict(user)
    except TypeError as exc:
        logger.warning("Invalid config in %s (%s); using defaults", path, exc)
        return SpeedtestConfig()


def save_config(config: SpeedtestConfig) -> str:
    """Write *config* to disk.  Returns the file path."""
    path = _config_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)

    with open(path, "w", encoding="utf-8") as fh:
        json.dump(config.to_dict(), fh, indent=2, ensure_ascii=False)

    return path


def config_path() -> str:
    """Return the config file path (for display purposes)."""
    return _config_path()
