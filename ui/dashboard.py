"""
Rich-based terminal output for speedtest progress and results.

All formatting helpers live in ``netspeed.stats`` -- this module only does
presentation via the ``rich`` library.
"""
from __future__ import annotations

from typing import List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from netspeed.catalog import ClientInfo, Server
from netspeed.report import Report
from netspeed.stats import LatencyStats, format_bytes, format_latency, format_speed
from netspeed.throughput import ThroughputResult

console = Console()

_NA = "[dim]unavailable[/dim]"


# ---------------------------------------------------------------------------
# Histogram helper
# ---------------------------------------------------------------------------

_BARS = "▁▂▃▄▅▆▇█"


def create_histogram(values: List[float]) -> str:
    """Return a single-line Unicode bar-chart."""
    if not values:
        return "No data"

    lo, hi = min(values), max(values)
    span = hi - lo if hi > lo else 1.0
    top = len(_BARS) - 1
    return "".join(_BARS[min(int((v - lo) / span * top), top)] for v in values)


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------

def print_header() -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]netspeed[/bold cyan]\n"
            "[dim]Latency, download and upload measurement[/dim]",
            border_style="cyan",
        )
    )
    console.print()


def print_client_info(client: Optional[ClientInfo]) -> None:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column(style="dim")
    table.add_column(style="bold")
    if client is None:
        table.add_row("Client:", _NA)
    else:
        table.add_row("IP Address:", client.ip or _NA)
        table.add_row("ISP:", client.isp or _NA)
        if client.country:
            table.add_row("Location:", client.country)
    console.print(Panel(table, title="[bold]Client Info[/bold]", border_style="blue"))


def print_server_list(servers: List[Server]) -> None:
    """Catalog listing for ``--list-servers``."""
    table = Table(title="Available Servers", box=box.ROUNDED)
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Server", style="bold")
    table.add_column("Sponsor")
    table.add_column("Distance", justify="right")
    for s in servers:
        distance = f"{s.distance:.0f} km" if s.distance is not None else "?"
        table.add_row(str(s.id), s.name, s.sponsor, distance)
    console.print(table)


def print_server_selection(servers: List[Server]) -> None:
    table = Table(title="Server Selection", box=box.ROUNDED)
    table.add_column("#", style="dim", width=4)
    table.add_column("Server", style="bold")
    table.add_column("Sponsor")
    table.add_column("Distance", justify="right")
    table.add_column("Latency", justify="right")
    table.add_column("Jitter", justify="right")
    table.add_column("Loss", justify="right")

    for i, server in enumerate(servers[:10]):
        style = "green" if server.selected else None
        marker = ">" if server.selected else " "
        stats = server.latency
        ok = server.reachable and stats is not None
        table.add_row(
            f"{marker}{i + 1}",
            server.name,
            server.sponsor,
            f"{server.distance:.0f} km" if server.distance is not None else "?",
            format_latency(stats.trimmed_mean) if ok else "N/A",
            f"{stats.jitter:.2f} ms" if ok else "N/A",
            f"{stats.packet_loss:.0f}%" if ok else "100%",
            style=style,
        )

    console.print(table)


def print_latency_details(stats: Optional[LatencyStats]) -> None:
    """Print detailed latency statistics and a histogram."""
    if stats is None or not stats.samples:
        console.print("[dim]No latency samples recorded[/dim]")
        return

    table = Table(title="Latency Details", box=box.ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Min", format_latency(stats.min))
    table.add_row("Max", format_latency(stats.max))
    table.add_row("Mean", format_latency(stats.mean))
    table.add_row("Trimmed mean", format_latency(stats.trimmed_mean))
    table.add_row("Median", format_latency(stats.median))
    table.add_row("Jitter", f"{stats.jitter:.2f} ms")
    table.add_row("Samples", f"{stats.count} ({stats.lost} lost)")
    console.print(table)

    console.print(
        Panel(
            f"[cyan]{create_histogram(stats.samples)}[/cyan]\n"
            f"[dim]Min: {stats.min:.1f} ms  Max: {stats.max:.1f} ms[/dim]",
            title="Ping Histogram",
        )
    )


def print_speed_result(result: ThroughputResult, title: str, color: str = "green") -> None:
    """Print a download or upload result panel."""
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Speed", f"[bold {color}]{format_speed(result.mbps)}[/bold {color}]")
    table.add_row("Server", result.server.host)
    table.add_row("Data Transferred", format_bytes(result.bytes_total))
    table.add_row("Measured Window", f"{result.elapsed:.1f} s of {result.duration:.1f} s")
    table.add_row("Streams", f"{result.streams - result.failed_streams}/{result.streams}")
    if result.stopped_early:
        table.add_row("Stopped", "early (rate stable)")
    console.print(table)

    if result.samples:
        console.print(
            Panel(
                f"[{color}]{create_histogram(list(result.samples))}[/{color}]\n"
                f"[dim]Min: {min(result.samples):.1f} Mbps  "
                f"Max: {max(result.samples):.1f} Mbps[/dim]",
                title="Speed Over Time",
            )
        )


def print_final_results(report: Report) -> None:
    server = report.server
    ping = f"{report.ping_ms:.1f} ms" if report.ping_ms is not None else _NA
    jitter = f"{report.jitter_ms:.2f} ms" if report.jitter_ms is not None else _NA
    dl = format_speed(report.download_mbps) if report.download_mbps is not None else _NA
    ul = format_speed(report.upload_mbps) if report.upload_mbps is not None else _NA

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Server:[/bold cyan] {server.label if server else _NA}\n\n"
            f"[bold white]   Ping:[/bold white]  [bold yellow]{ping}[/bold yellow]  "
            f"[dim](jitter: {jitter})[/dim]\n"
            f"[bold white]   Download:[/bold white]  [bold green]{dl}[/bold green]\n"
            f"[bold white]   Upload:[/bold white]  [bold blue]{ul}[/bold blue]",
            title="[bold]Results[/bold]",
            border_style="cyan",
        )
    )
    console.print()


def format_simple(report: Report) -> str:
    """Plain-text summary for ``--simple``."""

    def _fmt(value: Optional[float], unit: str, digits: int) -> str:
        return "unavailable" if value is None else f"{value:.{digits}f} {unit}"

    client = report.client
    lines = [
        f"Client: {f'{client.ip} ({client.isp})' if client else 'unavailable'}",
        f"Server: {report.server.label if report.server else 'unavailable'}",
        f"Ping: {_fmt(report.ping_ms, 'ms', 1)}",
        f"Jitter: {_fmt(report.jitter_ms, 'ms', 2)}",
        f"Download: {_fmt(report.download_mbps, 'Mbps', 2)}",
        f"Upload: {_fmt(report.upload_mbps, 'Mbps', 2)}",
    ]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Progress display
# ---------------------------------------------------------------------------

class ProgressDisplay:
    """Manages a ``rich`` progress bar during download / upload tests."""

    def __init__(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(bar_width=40),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("[bold cyan]{task.fields[speed]}[/bold cyan]"),
            TimeElapsedColumn(),
            console=console,
        )
        self._task_id = None
        self._last_speed = 0.0
        self._last_prog = 0.0

    def start(self, description: str) -> None:
        self.progress.start()
        self._task_id = self.progress.add_task(description, total=100, speed="")
        self._last_speed = 0.0
        self._last_prog = 0.0

    def update(self, progress: float, speed_mbps: float = 0) -> None:
        if self._task_id is None:
            return
        # Debounce: only update when values change noticeably
        if abs(progress - self._last_prog) < 0.01 and abs(speed_mbps - self._last_speed) < 1.0:
            return
        speed_str = format_speed(speed_mbps) if speed_mbps > 0 else "..."
        self.progress.update(self._task_id, completed=progress * 100, speed=speed_str)
        self._last_prog = progress
        self._last_speed = speed_mbps

    def stop(self) -> None:
        if self._task_id is None:
            return
        self.progress.stop()
        self._task_id = None
