"""UI layer -- rich rendering of netspeed progress events and reports."""

from .dashboard import (
    ProgressDisplay,
    console,
    create_histogram,
    format_simple,
    print_client_info,
    print_final_results,
    print_header,
    print_latency_details,
    print_server_list,
    print_server_selection,
    print_speed_result,
)

__all__ = [
    "ProgressDisplay",
    "console",
    "create_histogram",
    "format_simple",
    "print_client_info",
    "print_final_results",
    "print_header",
    "print_latency_details",
    "print_server_list",
    "print_server_selection",
    "print_speed_result",
]
