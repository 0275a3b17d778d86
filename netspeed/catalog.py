"""
Server catalog -- discovery of candidate measurement servers.

Two document formats are understood: the JSON server API
(``/api/js/servers``) and the legacy XML server list
(``speedtest-servers.php``).  Catalog URLs are tried in order and the first
document that parses wins.  Every call returns a fresh list; nothing is
cached between runs.
"""
from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .errors import CatalogMalformed, CatalogUnreachable
from .stats import LatencyStats, haversine_km
from .transport import NETWORK_ERRORS

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

@dataclass
class Server:
    """A single candidate measurement server."""

    id: int
    host: str
    name: str = ""
    sponsor: str = ""
    url: str = ""
    country: str = ""
    cc: str = ""
    lat: float = 0.0
    lon: float = 0.0
    distance: Optional[float] = None
    scheme: str = "https"

    # Filled in by the latency prober / selector.
    latency: Optional[LatencyStats] = field(default=None, repr=False)
    reachable: bool = True
    selected: bool = False

    # -- Constructors -------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict) -> Server:
        """Build from one entry of the JSON server API."""
        host = data.get("host", "")
        if not host and data.get("hostname"):
            host = f"{data['hostname']}:{int(data.get('port', 8080))}"
        distance = data.get("distance")
        return cls(
            id=int(data.get("id", 0)),
            host=host,
            name=data.get("name", ""),
            sponsor=data.get("sponsor", ""),
            url=data.get("url", ""),
            country=data.get("country", ""),
            cc=data.get("cc", ""),
            lat=float(data.get("lat", 0)),
            lon=float(data.get("lon", 0)),
            distance=float(distance) if distance not in (None, "") else None,
        )

    @classmethod
    def from_xml_attrs(cls, attrs: Dict[str, str]) -> Server:
        """Build from the attributes of a ``<server/>`` element."""
        return cls(
            id=int(attrs["id"]),
            host=attrs["host"],
            name=attrs.get("name", ""),
            sponsor=attrs.get("sponsor", ""),
            url=attrs.get("url", ""),
            country=attrs.get("country", ""),
            cc=attrs.get("cc", ""),
            lat=float(attrs.get("lat", 0)),
            lon=float(attrs.get("lon", 0)),
        )

    # -- Derived URLs -------------------------------------------------------

    @property
    def hostname(self) -> str:
        return self.host.rsplit(":", 1)[0] if ":" in self.host else self.host

    @property
    def _path_prefix(self) -> str:
        if self.url:
            path = urlparse(self.url).path
            return path.rsplit("/", 1)[0]
        return "/speedtest"

    @property
    def latency_url(self) -> str:
        return f"{self.scheme}://{self.host}{self._path_prefix}/latency.txt"

    @property
    def download_url(self) -> str:
        return f"{self.scheme}://{self.host}/download"

    @property
    def upload_url(self) -> str:
        return f"{self.scheme}://{self.host}/upload"

    @property
    def ws_url(self) -> str:
        """WebSocket endpoint for latency testing."""
        ws_scheme = "wss" if self.scheme == "https" else "ws"
        return f"{ws_scheme}://{self.host}/ws?"

    @property
    def label(self) -> str:
        if self.sponsor:
            return f"{self.name} ({self.sponsor})"
        return self.name or self.host

    # -- Serialisation ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "sponsor": self.sponsor,
            "host": self.host,
            "country": self.country,
            "cc": self.cc,
            "lat": self.lat,
            "lon": self.lon,
            "distance": self.distance,
            "reachable": self.reachable,
            "selected": self.selected,
        }
        if self.latency is not None:
            result["latency"] = self.latency.to_dict()
        return result


@dataclass
class ClientInfo:
    """Information about the client as seen by speedtest.net."""

    ip: str
    isp: str
    lat: float
    lon: float
    country: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ip": self.ip,
            "isp": self.isp,
            "lat": self.lat,
            "lon": self.lon,
            "country": self.country,
        }


@dataclass
class ClientConfig:
    """The parts of ``speedtest-config.php`` this client cares about."""

    client: ClientInfo
    ignore_ids: List[int] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_catalog(text: str, source: str = "") -> List[Server]:
    """Parse a JSON or XML server list.  Raises ``CatalogMalformed``."""
    body = text.strip()
    if not body:
        raise CatalogMalformed(source, f"Empty server catalog from {source or 'unknown source'}")
    if body.startswith("<"):
        return _parse_xml_catalog(body, source)
    return _parse_json_catalog(body, source)


def _parse_json_catalog(body: str, source: str) -> List[Server]:
    try:
        data = json.loads(body)
    except ValueError as exc:
        raise CatalogMalformed(source, f"Invalid JSON catalog from {source}: {exc}") from exc

    if isinstance(data, dict):
        data = data.get("servers", data)
    if not isinstance(data, list):
        raise CatalogMalformed(source, f"Expected a list of servers from {source}")

    try:
        return [Server.from_dict(entry) for entry in data]
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise CatalogMalformed(source, f"Bad server entry from {source}: {exc}") from exc


def _parse_xml_catalog(body: str, source: str) -> List[Server]:
    try:
        root = ET.fromstring(body)
    except ET.ParseError as exc:
        raise CatalogMalformed(source, f"Invalid XML catalog from {source}: {exc}") from exc

    servers: List[Server] = []
    for element in root.iter("server"):
        try:
            servers.append(Server.from_xml_attrs(element.attrib))
        except (KeyError, ValueError) as exc:
            raise CatalogMalformed(source, f"Bad server element from {source}: {exc}") from exc

    if not servers and root.tag != "servers" and root.find("servers") is None:
        raise CatalogMalformed(source, f"No <servers> element in catalog from {source}")
    return servers


def parse_client_config(text: str) -> ClientConfig:
    """Parse ``speedtest-config.php``.  Raises ``ValueError`` on bad input."""
    try:
        root = ET.fromstring(text.strip())
    except ET.ParseError as exc:
        raise ValueError(f"Malformed client configuration: {exc}") from exc

    client_el = root.find("client")
    if client_el is None:
        raise ValueError("Client configuration has no <client> element")
    attrs = client_el.attrib
    client = ClientInfo(
        ip=attrs.get("ip", ""),
        isp=attrs.get("isp", ""),
        lat=float(attrs.get("lat", 0) or 0),
        lon=float(attrs.get("lon", 0) or 0),
        country=attrs.get("country", ""),
    )

    ignore_ids: List[int] = []
    server_config = root.find("server-config")
    if server_config is not None:
        raw = server_config.attrib.get("ignoreids", "")
        ignore_ids = [int(i) for i in raw.split(",") if i.strip().isdigit()]

    return ClientConfig(client=client, ignore_ids=ignore_ids)


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------

def filter_servers(
    servers: List[Server],
    *,
    limit: int,
    server_id: Optional[int] = None,
    exclude_ids: Optional[List[int]] = None,
    client_config: Optional[ClientConfig] = None,
    scheme: str = "https",
) -> List[Server]:
    """Apply ignore/exclude/pin rules, fill distances, sort and truncate."""
    excluded = set(exclude_ids or [])
    if client_config is not None:
        excluded.update(client_config.ignore_ids)

    kept: List[Server] = []
    seen = set()
    for server in servers:
        if server.id in seen or server.id in excluded:
            continue
        if server_id is not None and server.id != server_id:
            continue
        seen.add(server.id)
        server.scheme = scheme
        if server.distance is None and client_config is not None:
            client = client_config.client
            server.distance = haversine_km((client.lat, client.lon), (server.lat, server.lon))
        kept.append(server)

    kept.sort(key=lambda s: s.distance if s.distance is not None else float("inf"))
    return kept[:limit]


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------

async def fetch_client_config(config, transport) -> Optional[ClientConfig]:  # noqa: ANN001
    """Fetch the client configuration, or ``None`` if no mirror answers."""
    for url in config.client_config_urls:
        try:
            text = await transport.fetch_text(url)
            return parse_client_config(text)
        except NETWORK_ERRORS as exc:
            logger.debug("Client config %s unreachable: %s", url, exc)
        except ValueError as exc:
            logger.warning("Client config %s unusable: %s", url, exc)
    logger.warning("No client configuration available; ignore list and distances skipped")
    return None


async def fetch_servers(
    config,  # noqa: ANN001 (SpeedtestConfig)
    transport,  # noqa: ANN001 (HttpTransport)
    client_config: Optional[ClientConfig] = None,
) -> List[Server]:
    """Return the filtered candidate servers for one run.

    Raises ``CatalogUnreachable`` when no catalog URL could be retrieved and
    ``CatalogMalformed`` when documents were retrieved but none parsed.
    """
    malformed: Optional[CatalogMalformed] = None

    for url in config.catalog_urls:
        try:
            text = await transport.fetch_text(url)
        except NETWORK_ERRORS as exc:
            logger.debug("Catalog %s unreachable: %s", url, exc)
            continue
        except UnicodeDecodeError as exc:
            malformed = CatalogMalformed(url, f"Undecodable server catalog from {url}: {exc}")
            logger.warning("%s", malformed)
            continue

        try:
            servers = parse_catalog(text, url)
        except CatalogMalformed as exc:
            logger.warning("%s", exc)
            malformed = exc
            continue

        logger.info("Fetched %d server(s) from %s", len(servers), url)
        return filter_servers(
            servers,
            limit=config.server_limit,
            server_id=config.server_id,
            exclude_ids=config.exclude_ids,
            client_config=client_config,
            scheme="https" if config.secure else "http",
        )

    if malformed is not None:
        raise malformed
    raise CatalogUnreachable(config.catalog_urls)
