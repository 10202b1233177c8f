# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""Command line entry point.

Usage:
    manjaro-upkeep              # full maintenance run
    manjaro-upkeep health       # SMART gate only
    manjaro-upkeep serve        # read-only MCP server on stdio
    manjaro-upkeep --help
"""

import argparse
import asyncio
import logging
import sys
from typing import Awaitable, Callable, List, Optional

from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from . import cleanup
from . import console as ui
from . import overview
from . import pacfiles
from . import replacements
from .config import UpkeepConfig
from .disk_health import disk_health_gate
from .session import Session
from .snapshots import snapshot_gate

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_INTERRUPTED = 130

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(config: UpkeepConfig, verbose: bool = False) -> None:
    """Debug log file always; rich output on stderr with --verbose."""
    config.debug_log.parent.mkdir(parents=True, exist_ok=True)
    handlers: List[logging.Handler] = [logging.FileHandler(config.debug_log, mode="a")]
    if verbose:
        handlers.append(RichHandler(console=Console(stderr=True), show_path=False))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
    )


async def _overview(session: Session) -> None:
    cfg = session.config
    data = await overview.collect_overview(cfg.home, cfg.log_prefix)
    poll = await overview.fetch_stable_update_poll(cfg.forum_category_url)
    if poll.get("error"):
        ui.failure(f"Stable update poll unavailable: {poll['message']}")
        poll = None
    overview.show_overview(data, poll)


async def _pacfiles(session: Session) -> None:
    await pacfiles.handle_pacfiles(session)
    await pacfiles.prune_old_backups(session)


async def _clean_home(session: Session) -> None:
    cleanup.purge_home_dirs(session)
    await cleanup.review_orphaned_app_dirs(session)


# name -> (flow, needs sudo)
SINGLE_FLOWS = {
    "health": (disk_health_gate, True),
    "snapshots": (snapshot_gate, True),
    "overview": (_overview, False),
    "report": (replacements.show_repo_report, False),
    "pacfiles": (_pacfiles, True),
    "clean-home": (_clean_home, False),
}


async def run_single(
    config: UpkeepConfig,
    flow: Callable[[Session], Awaitable[object]],
    needs_sudo: bool,
) -> None:
    """
    Run one flow outside a full update.

    No session log is written so the "time since last update" stays tied
    to complete runs.
    """
    session = Session(config)
    if needs_sudo:
        await session.prime_sudo()
    try:
        await flow(session)
    finally:
        ui.console.print()
        session.ledger.print_summary()
        await session.stop_sudo_keepalive()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="manjaro-upkeep",
        description="Guided Manjaro maintenance: safety gates, updates, cleanup and config file review",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    subparsers.add_parser("run", help="Full maintenance run (default)")
    subparsers.add_parser("health", help="Check SMART health of the root disk")
    subparsers.add_parser("snapshots", help="Make sure a recent snapper snapshot exists")
    subparsers.add_parser("overview", help="Show last update age, community poll, counts and disk usage")
    subparsers.add_parser("report", help="List AUR packages and Flatpaks, marking those in the repos")
    subparsers.add_parser("pacfiles", help="Review .pacnew/.pacsave files and prune old backups")
    subparsers.add_parser("clean-home", help="Purge throwaway dirs and review orphaned app data")
    subparsers.add_parser("serve", help="Run the read-only MCP server on stdio")
    return parser


async def dispatch(command: str, config: UpkeepConfig) -> None:
    if command == "run":
        from .workflow import run_update

        await run_update(config)
    elif command == "serve":
        from .server import serve

        await serve()
    else:
        flow, needs_sudo = SINGLE_FLOWS[command]
        await run_single(config, flow, needs_sudo)


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    command = args.command or "run"

    config = UpkeepConfig.from_env()
    setup_logging(config, args.verbose)
    logger.info(f"manjaro-upkeep {__version__}: {command}")

    try:
        asyncio.run(dispatch(command, config))
    except ui.RunDeclined as e:
        logger.info(f"Declined: {e}")
        return EXIT_OK
    except ui.AbortRun as e:
        logger.info(f"Aborted: {e}")
        return EXIT_ABORTED
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
