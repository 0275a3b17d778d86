#!/usr/bin/env python3
"""
netspeed CLI -- latency, download and upload measurement from the terminal.

Usage::

    python netspeed_cli.py                       # rich dashboard
    python netspeed_cli.py --simple              # plain text
    python netspeed_cli.py --list-servers        # show candidates and exit
    python netspeed_cli.py --server 12345        # pin one server
    python netspeed_cli.py --exclude 1 --exclude 2
    python netspeed_cli.py --early-stop -v       # stop once the rate is stable
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from netspeed.catalog import fetch_client_config, fetch_servers
from netspeed.config import SpeedtestConfig, load_config
from netspeed.errors import Cancelled, SpeedtestError
from netspeed.events import Completed, Failed, Phase, ProgressEvent
from netspeed.runner import run_speedtest
from netspeed.transport import HttpTransport
from ui.dashboard import (
    ProgressDisplay,
    console,
    format_simple,
    print_client_info,
    print_final_results,
    print_header,
    print_latency_details,
    print_server_list,
    print_server_selection,
    print_speed_result,
)

logger = logging.getLogger("netspeed")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130

_TRANSFER_LABELS = {Phase.DOWNLOAD: "Downloading", Phase.UPLOAD: "Uploading"}


# ---------------------------------------------------------------------------
# Argument handling
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="netspeed -- network latency and throughput measurement",
    )
    # Output modes
    parser.add_argument("--simple", "-s", action="store_true", help="Simple output mode (no dashboard)")
    parser.add_argument("--verbose", "-v", action="count", default=0, help="Log progress to stderr (-vv for debug)")

    # Server selection
    parser.add_argument("--server", type=int, metavar="ID", help="Use specific server by ID")
    parser.add_argument("--exclude", type=int, action="append", metavar="ID", help="Never use this server (repeatable)")
    parser.add_argument("--list-servers", action="store_true", help="List candidate servers and exit")
    parser.add_argument("--select", type=int, metavar="N", help="Keep the N best servers as fallbacks (default: 3)")

    # Test parameters
    parser.add_argument("--ping-count", type=int, metavar="N", help="Number of ping samples per server (default: 10)")
    parser.add_argument("--download-duration", type=float, metavar="SECS", help="Download test duration in seconds (default: 10)")
    parser.add_argument("--upload-duration", type=float, metavar="SECS", help="Upload test duration in seconds (default: 10)")
    parser.add_argument("--connections", type=int, metavar="N", help="Number of concurrent connections (default: 4)")
    parser.add_argument("--warm-up", type=float, metavar="SECS", help="Seconds excluded from the rate at the start (default: 2)")
    parser.add_argument("--early-stop", action="store_true", default=None, help="Stop a transfer once its rate is stable")
    parser.add_argument("--ws-ping", action="store_true", help="Measure latency over the WebSocket PING/PONG socket")

    # Networking
    parser.add_argument("--source", type=str, metavar="IP", help="Source address to bind to")
    parser.add_argument("--no-secure", action="store_true", help="Use plain HTTP instead of HTTPS")

    return parser


def build_config(args: argparse.Namespace, base: Optional[SpeedtestConfig] = None) -> SpeedtestConfig:
    """Overlay CLI flags on the stored configuration."""
    base = base if base is not None else load_config()
    return base.replace(
        server_id=args.server,
        exclude_ids=args.exclude,
        select_count=args.select,
        ping_count=args.ping_count,
        download_duration=args.download_duration,
        upload_duration=args.upload_duration,
        connections=args.connections,
        warm_up=args.warm_up,
        early_stop=args.early_stop,
        probe_method="ws" if args.ws_ping else None,
        source_address=args.source,
        secure=False if args.no_secure else None,
    )


def configure_logging(verbosity: int) -> None:
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


# ---------------------------------------------------------------------------
# Run modes
# ---------------------------------------------------------------------------

async def list_servers(config: SpeedtestConfig) -> int:
    async with HttpTransport(config) as transport:
        try:
            client_config = await fetch_client_config(config, transport)
            servers = await fetch_servers(config, transport, client_config)
        except SpeedtestError as exc:
            console.print(f"[red]Error: {exc}[/red]")
            return EXIT_FAILED
    print_server_list(servers)
    return EXIT_OK


def _install_interrupt(cancel_event: asyncio.Event) -> bool:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except (NotImplementedError, RuntimeError):
        # Windows event loops have no signal handlers; KeyboardInterrupt applies.
        return False
    return True


async def run(config: SpeedtestConfig, simple: bool = False, transport=None) -> int:  # noqa: ANN001
    """Drive one speedtest and render its events.  Returns the exit status."""
    show_ui = not simple
    cancel_event = asyncio.Event()
    installed = _install_interrupt(cancel_event)
    progress = ProgressDisplay()
    phase: Optional[Phase] = None

    if show_ui:
        print_header()

    events = run_speedtest(config, transport=transport, cancel_event=cancel_event)
    try:
        async for event in events:
            if isinstance(event, ProgressEvent):
                if event.phase is not phase:
                    progress.stop()
                    phase = event.phase
                if show_ui:
                    _render_progress(event, progress)
            elif isinstance(event, Completed):
                progress.stop()
                _render_report(event, simple)
                return EXIT_OK
            elif isinstance(event, Failed):
                progress.stop()
                return _render_failure(event)
    finally:
        await events.aclose()
        progress.stop()
        if installed:
            asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)

    logger.error("Event stream ended without a result")
    return EXIT_FAILED


def _render_progress(event: ProgressEvent, progress: ProgressDisplay) -> None:
    if event.phase in _TRANSFER_LABELS:
        if event.message:
            console.print(f"\n[bold]{event.message}...[/bold]")
            progress.start(_TRANSFER_LABELS[event.phase])
        else:
            progress.update(event.fraction, event.speed_mbps)
    elif event.phase is Phase.SELECTING and event.server is not None:
        console.print(f"\n[green]Selected server:[/green] {event.server.label}")
        print_latency_details(event.server.latency)
    elif event.message and event.server is None:
        console.print(f"[dim]{event.message}...[/dim]")


def _render_report(event: Completed, simple: bool) -> None:
    report = event.report
    if simple:
        print(format_simple(report))
        return

    print_client_info(report.client)
    print_server_selection(report.candidates)
    if report.download is not None:
        print_speed_result(report.download, "Download Results", "green")
    if report.upload is not None:
        print_speed_result(report.upload, "Upload Results", "blue")
    print_final_results(report)


def _render_failure(event: Failed) -> int:
    if isinstance(event.error, Cancelled):
        console.print("\n[yellow]Test cancelled by user[/yellow]")
        return EXIT_CANCELLED
    console.print(f"\n[red]Error: {event.error}[/red]")
    return EXIT_FAILED


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    config = build_config(args)
    try:
        config.validate()
    except ValueError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(EXIT_FAILED)

    try:
        if args.list_servers:
            status = asyncio.run(list_servers(config))
        else:
            status = asyncio.run(run(config, simple=args.simple))
    except KeyboardInterrupt:
        console.print("\n[yellow]Test cancelled by user[/yellow]")
        sys.exit(EXIT_CANCELLED)

    sys.exit(status)


if __name__ == "__main__":
    main()
