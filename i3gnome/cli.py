"""Command-line entry point: ``i3-gnome-session``."""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from . import __version__
from .config import ConfigurationError, Settings, load_settings
from .coordinator import SessionCoordinator
from .diagnostics import run_diagnostics
from .launcher import ProcessLauncher
from .models import ExitCode
from .probes import DBusPeerProbe

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="i3-gnome-session",
        description="Start i3 inside a GNOME session once session services are ready.",
    )
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    parser.add_argument(
        "--diagnostics",
        action="store_true",
        help="check environment and endpoints, then exit (0 ok, 1 critical, 2 warnings)",
    )
    parser.add_argument("--metrics-file", metavar="PATH", help="write Prometheus metrics here")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def run_session(settings: Settings) -> int:
    """Run a full session with signal-driven shutdown."""
    coordinator = SessionCoordinator(
        settings,
        probe=DBusPeerProbe(),
        launcher=ProcessLauncher(startup_grace=settings.startup_grace),
    )
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT, signal.SIGHUP):
        loop.add_signal_handler(signum, coordinator.request_shutdown)
    try:
        return int(await coordinator.run())
    finally:
        for signum in (signal.SIGTERM, signal.SIGINT, signal.SIGHUP):
            loop.remove_signal_handler(signum)


async def run_diagnostics_report(settings: Settings) -> int:
    """Run diagnostics and print a per-tier summary."""
    code, results = await run_diagnostics(settings, DBusPeerProbe())
    for tier, result in results.items():
        verdict = "OK" if result.satisfied else "FAIL"
        print(f"[{verdict}] {tier}: {result.ready_count}/{result.total} ready")
        for name in result.not_ready:
            print(f"    not ready: {name}")
    return code


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    overrides = {}
    if args.debug:
        overrides["debug"] = True
    if args.metrics_file:
        overrides["metrics_file"] = args.metrics_file

    try:
        settings = load_settings(**overrides)
    except ConfigurationError as e:
        configure_logging(args.debug)
        logger.error(str(e))
        return int(ExitCode.CONFIGURATION_ERROR)

    configure_logging(settings.debug)
    if args.diagnostics:
        return asyncio.run(run_diagnostics_report(settings))
    return asyncio.run(run_session(settings))


if __name__ == "__main__":
    sys.exit(main())
