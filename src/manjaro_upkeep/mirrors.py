# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Mirror refresh with pacman-mirrors.
"""

import logging
import re
import time
from pathlib import Path
from typing import List, Optional

from . import console as ui
from .session import Session

logger = logging.getLogger(__name__)

SERVER_LINE = re.compile(r"^Server\s*=\s*")


def count_mirrors(mirrorlist: Path) -> int:
    """Number of active `Server =` lines in a mirrorlist."""
    try:
        with open(mirrorlist, "r") as f:
            return sum(1 for line in f if SERVER_LINE.match(line))
    except FileNotFoundError:
        return 0


def mirrorlist_age_seconds(mirrorlist: Path, now: Optional[float] = None) -> Optional[float]:
    """Seconds since the mirrorlist was written, None if it does not exist."""
    try:
        mtime = mirrorlist.stat().st_mtime
    except FileNotFoundError:
        return None
    return (time.time() if now is None else now) - mtime


def fasttrack_command(branch: str) -> List[str]:
    return ["sudo", "pacman-mirrors", "--fasttrack", "10", "--api", "--protocols", "all", "--set-branch", branch]


def global_mirrors_command(branch: str) -> List[str]:
    return ["sudo", "pacman-mirrors", "--country", "all", "--api", "--protocols", "all", "--set-branch", branch]


async def _refresh(session: Session, cmd: List[str]) -> Optional[int]:
    """Run a refresh command; returns the saved mirror count or None on failure."""
    ok, _ = await session.run_step(cmd)
    if not ok:
        return None
    count = count_mirrors(session.config.mirrorlist)
    ui.console.print(f"\nMirrors saved: [orange3]{count}[/orange3]")
    return count


async def refresh_mirrors(session: Session) -> bool:
    """
    Interactive mirror refresh.

    Skips (after asking) when the mirrorlist is fresh. Otherwise ranks mirrors
    with fasttrack; a failure or too few mirrors leads to a menu of retry,
    global mirrors, continue or exit.

    Returns:
        True when a refresh produced enough mirrors, False when skipped or
        continued despite problems

    Raises:
        AbortRun: the user exits
    """
    cfg = session.config

    age = mirrorlist_age_seconds(cfg.mirrorlist)
    if age is not None and age < cfg.mirror_fresh_seconds:
        answer = await ui.ask(
            "Mirrorlist refreshed within the last 2 hours. (r)efresh anyway or any other key to continue: "
        )
        if answer.lower() != "r":
            logger.info("Mirror refresh skipped, mirrorlist is fresh")
            return False

    status_prompt_shown = False

    while True:
        count = await _refresh(session, fasttrack_command(cfg.branch))
        if count is not None and count >= cfg.min_mirrors:
            return True

        if count is None:
            ui.failure("Failed to refresh mirrors.")
        else:
            if not status_prompt_shown:
                answer = await ui.ask(
                    f"Synced mirrors are less than {cfg.min_mirrors}.  "
                    "(o)pen Manjaro status of mirrors page, or any other key to continue: "
                )
                if answer.lower() == "o":
                    ui.open_url(cfg.mirror_status_url)
                status_prompt_shown = True
            ui.failure("Mirror count too low.")

        while True:
            choice = await ui.ask_choice(
                "(r)etry Fasttrack  (u)se Global mirrors  (c)ontinue script  or (e)xit: ",
                ["r", "u", "c", "e"],
                "Invalid choice. Please try again.",
            )
            if choice == "r":
                break
            if choice == "u":
                count = await _refresh(session, global_mirrors_command(cfg.branch))
                if count is None:
                    ui.failure("Global mirrors refresh failed.")
                elif count >= cfg.min_mirrors:
                    return True
                else:
                    ui.failure("Mirror count too low.")
                continue
            if choice == "c":
                ui.info("Continuing script despite mirror issues...")
                return False
            ui.failure("Exiting.")
            raise ui.AbortRun("mirror refresh")
