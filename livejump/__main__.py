"""Command line entry point for livejump."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import datetime as dt
import logging
import signal
import sys
import time
from collections.abc import Sequence

from livejump.errors import ConfigError, InputError
from livejump.server import ControlServer
from livejump.session import StreamSession
from livejump.settings import LiveJumpSettings, get_settings
from livejump.simulator import SimulatedLiveStream
from livejump.timeparse import ParseError, parse_and_normalize_24h
from livejump.timezone import DEFAULT_ZONE, epoch_candidates, today_in_zone

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8930
DEFAULT_WINDOW_SEC = 4 * 3600.0


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="livejump",
        description="Jump live DVR streams to a wall clock time in any time zone.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: persisted setting or WARNING)",
    )
    parser.add_argument(
        "--config-dir",
        default=None,
        help="Directory holding settings.json (default: ~/.config/livejump)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    parse_cmd = subparsers.add_parser("parse", help="Normalize a 24 hour time string")
    parse_cmd.add_argument("text", help="Time such as 7:5, 0830 or 23:59:59")

    resolve_cmd = subparsers.add_parser(
        "resolve", help="Show the epoch candidates for a local time in a zone"
    )
    resolve_cmd.add_argument("text", help="Local time")
    resolve_cmd.add_argument("--zone", default=None, help="IANA zone (default: persisted setting)")
    resolve_cmd.add_argument(
        "--date", type=dt.date.fromisoformat, default=None, help="Base date, YYYY-MM-DD"
    )

    serve_cmd = subparsers.add_parser(
        "serve", help="Run the control server against a simulated live stream"
    )
    serve_cmd.add_argument("--host", default="127.0.0.1", help="Interface to bind")
    serve_cmd.add_argument("--port", type=int, default=None, help=f"Port (default: {DEFAULT_PORT})")
    serve_cmd.add_argument(
        "--window",
        type=float,
        default=DEFAULT_WINDOW_SEC,
        help="Seekable DVR window in seconds",
    )
    serve_cmd.add_argument(
        "--latency", type=float, default=None, help="Assumed broadcast latency in seconds"
    )
    serve_cmd.add_argument(
        "--anomaly-lead",
        type=float,
        default=0.0,
        help="Seconds the simulated seekable end runs ahead of the playable data",
    )
    serve_cmd.add_argument("--zone", default=None, help="Default zone for jump requests")
    return parser.parse_args(argv)


def _configure_logging(level: str | None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or "WARNING").upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _cmd_parse(args: argparse.Namespace) -> int:
    result = parse_and_normalize_24h(args.text)
    if isinstance(result, ParseError):
        print(f"error ({result.category}): {result.error}", file=sys.stderr)
        return 1
    extra = f" (+{result.day_offset} day)" if result.overflow else ""
    print(f"{result.normalized}{extra}")
    return 0


def _cmd_resolve(args: argparse.Namespace, settings: LiveJumpSettings) -> int:
    result = parse_and_normalize_24h(args.text)
    if isinstance(result, ParseError):
        print(f"error ({result.category}): {result.error}", file=sys.stderr)
        return 1
    zone = args.zone or settings.default_zone or DEFAULT_ZONE
    try:
        base = args.date or today_in_zone(zone)
        candidates = epoch_candidates(zone, result.hms, base, day_offset=result.day_offset)
    except InputError as err:
        print(f"error ({err.category}): {err}", file=sys.stderr)
        return 1
    for candidate in candidates:
        flags = [name for name in ("ambiguous", "gap") if getattr(candidate, name)]
        print(
            f"{candidate.tag:<9} {candidate.resolved.wall} {zone}"
            f"  epoch={candidate.epoch}{'  ' + ','.join(flags) if flags else ''}"
        )
    return 0


async def _cmd_serve(args: argparse.Namespace, settings: LiveJumpSettings) -> int:
    settings.update(latency_sec=args.latency, default_zone=args.zone, listen_port=args.port)
    try:
        config = settings.calibration_config()
    except (ConfigError, TypeError) as err:
        logger.error("Invalid calibration settings: %s", err)
        return 1

    loop = asyncio.get_running_loop()
    stream = SimulatedLiveStream(
        epoch_origin=time.time() - config.latency_sec - args.window,
        latency_sec=config.latency_sec,
        window_sec=args.window,
        anomaly_lead_sec=args.anomaly_lead,
    )
    session = StreamSession(loop, config)
    session.attach(stream)

    shutdown = asyncio.Event()

    def signal_handler() -> None:
        logger.debug("Received interrupt signal, shutting down...")
        shutdown.set()

    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, signal_handler)
        loop.add_signal_handler(signal.SIGTERM, signal_handler)

    port = settings.listen_port or DEFAULT_PORT
    try:
        async with ControlServer(
            session, port, host=args.host, default_zone=settings.default_zone
        ) as server:
            print(f"livejump control server running at {server.url}")
            await shutdown.wait()
    except OSError as err:
        logger.error("Failed to start control server on port %d: %s", port, err)
        return 1
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)
            loop.remove_signal_handler(signal.SIGTERM)
        session.detach()
        await settings.flush()
    return 0


async def _run(args: argparse.Namespace) -> int:
    settings = await get_settings(args.config_dir)
    _configure_logging(args.log_level or settings.log_level)
    if args.command == "parse":
        return _cmd_parse(args)
    if args.command == "resolve":
        return _cmd_resolve(args, settings)
    return await _cmd_serve(args, settings)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the livejump CLI."""
    args = parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
