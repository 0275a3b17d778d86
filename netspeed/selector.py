"""Pick the best N servers from the prober's ranking."""
from __future__ import annotations

import logging
from typing import List

from .catalog import Server
from .errors import NoServersAvailable

logger = logging.getLogger(__name__)


def select_servers(ranked: List[Server], n: int) -> List[Server]:
    """Return up to *n* servers in ranking order, as a fallback priority list.

    Servers without valid latency stats are skipped.  Raises
    ``NoServersAvailable`` when nothing qualifies and ``ValueError`` when
    *n* is not positive.
    """
    if n < 1:
        raise ValueError(f"Server count must be at least 1, got {n}")
    usable = [
        s for s in ranked
        if s.reachable and s.latency is not None and s.latency.valid
    ]
    if not usable:
        raise NoServersAvailable()

    chosen = usable[:n]
    for server in chosen:
        server.selected = True

    logger.info(
        "Selected %s",
        ", ".join(f"{s.host} ({s.latency.trimmed_mean:.1f} ms)" for s in chosen),
    )
    return chosen
