"""
Command line entry point.

Usage:
    usb-gadget-keepalive                      # run the daemon
    usb-gadget-keepalive run --debug          # with verbose decision trace
    usb-gadget-keepalive status               # print persisted link state
    python -m gadget_keepalive --interfaces usb0
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .config import Settings, load_settings
from .monitor import KeepaliveMonitor
from .state_store import read_record

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
TRACE_LOGGER = "gadget_keepalive.trace"


def configure_logging(settings: Settings) -> None:
    """Set up the operational log stream and the gated trace channel."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file is not None:
        try:
            settings.log_file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(settings.log_file))
        except OSError as e:
            print(f"Cannot open log file {settings.log_file}: {e}", file=sys.stderr)

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, handlers=handlers, force=True)

    trace = logging.getLogger(TRACE_LOGGER)
    if settings.debug:
        logging.getLogger("gadget_keepalive").setLevel(logging.DEBUG)
        trace.setLevel(logging.DEBUG)
    else:
        trace.setLevel(logging.CRITICAL + 1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="usb-gadget-keepalive",
        description="Keep USB Ethernet gadget links usable across host sleep and cable events",
    )
    parser.add_argument("command", nargs="?", default="run", choices=["run", "status"],
                        help="run the daemon (default) or print persisted state")
    parser.add_argument("--debug", action="store_true", default=None,
                        help="enable verbose decision trace")
    parser.add_argument("--interfaces", type=str,
                        help="comma-separated interfaces to monitor (default: usb0,usb1)")
    parser.add_argument("--state-file", type=Path,
                        help="persisted state file location")
    return parser


def print_status(settings: Settings) -> int:
    """Print one line per monitored interface from the state file."""
    if not settings.state_file.exists():
        print(f"No state file at {settings.state_file}")
        return 1

    for name in settings.interfaces:
        record = read_record(settings.state_file, name)
        if record is None:
            print(f"{name}: no record")
            continue
        print(
            f"{name}: {record.status.value}"
            f" host={record.host_ip or '-'}"
            f" connected_once={'yes' if record.connected_once else 'no'}"
        )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(
            interfaces=args.interfaces,
            state_file=args.state_file,
            debug=args.debug,
        )
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 2

    if args.command == "status":
        return print_status(settings)

    configure_logging(settings)
    monitor = KeepaliveMonitor.from_settings(settings)
    monitor.install_signal_handlers()
    monitor.run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
