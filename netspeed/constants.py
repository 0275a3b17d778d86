"""
Shared constants used across all netspeed modules.

Centralises magic numbers, default headers, and tunables so they live in
exactly one place.
"""

# ---------------------------------------------------------------------------
# HTTP headers (browser-like, required by Ookla servers)
# ---------------------------------------------------------------------------

USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36"
)

COMMON_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Origin": "https://www.speedtest.net",
    "Referer": "https://www.speedtest.net/",
}

# ---------------------------------------------------------------------------
# Catalog endpoints (tried in order)
# ---------------------------------------------------------------------------

CATALOG_URLS = (
    "https://www.speedtest.net/api/js/servers?engine=js&https_functional=true&limit=100",
    "https://www.speedtest.net/speedtest-servers.php",
    "https://www.speedtest.net/speedtest-servers-static.php",
    "https://c.speedtest.net/speedtest-servers.php",
    "https://c.speedtest.net/speedtest-servers-static.php",
)

CLIENT_CONFIG_URLS = (
    "https://www.speedtest.net/speedtest-config.php",
    "https://c.speedtest.net/speedtest-config.php",
)

# ---------------------------------------------------------------------------
# Connection limits
# ---------------------------------------------------------------------------

MIN_CONNECTIONS = 1
MAX_CONNECTIONS = 32
DEFAULT_CONNECTIONS = 4

DEFAULT_SERVER_LIMIT = 10
DEFAULT_SELECT_COUNT = 3
DEFAULT_PROBE_PARALLELISM = 10
MAX_PROBE_PARALLELISM = 32

# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

DEFAULT_PING_COUNT = 10
DEFAULT_PING_TIMEOUT = 5.0       # seconds per latency sample
DEFAULT_DURATION = 10.0          # seconds for download / upload
MIN_DURATION = 1.0
MAX_DURATION = 300.0
MIN_PING_COUNT = 1
MAX_PING_COUNT = 100

WARMUP_SECONDS = 2.0             # discard samples in this window
SAMPLE_INTERVAL = 0.2            # 200 ms between byte-counter samples

CONNECT_TIMEOUT = 5.0
READ_TIMEOUT = 5.0

# ---------------------------------------------------------------------------
# Data transfer
# ---------------------------------------------------------------------------

CHUNK_SIZE = 64 * 1024           # 64 KB per read / write
DOWNLOAD_SIZE = 50_000_000       # 50 MB request size
UPLOAD_SIZE = 10_000_000         # 10 MB per POST body
UPLOAD_BUFFER_SIZE = 1024 * 1024 # 1 MB pre-generated random buffer

# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

OUTLIER_FRACTION = 0.1           # top 10% of latency samples dropped
MIN_SAMPLES_FOR_TRIM = 3

STABILITY_THRESHOLD = 0.05       # 5% relative change between windows
STABILITY_WINDOW = 3.0           # seconds of stable rate before early stop

EMA_ALPHA = 0.25                 # smoothing weight of the live speed readout
