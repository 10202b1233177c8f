# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
GNOME Shell extensions: user updates through gext and removal of the
extensions the distribution ships system-wide.
"""

import logging
from pathlib import Path
from typing import List

from . import console as ui
from .session import Session
from .utils import count_lines, run_command

logger = logging.getLogger(__name__)


async def update_user_extensions(session: Session) -> bool:
    ok, _ = await session.run_step(["gext", "update", "-y"])
    if not ok:
        ui.failure("User extensions updates failed, continuing...")
    return ok


async def count_user_extensions() -> int:
    try:
        exit_code, stdout, _ = await run_command(["gext", "list"], timeout=30)
    except FileNotFoundError:
        return 0
    return count_lines(stdout) if exit_code == 0 else 0


def find_unwanted_extensions(extensions_dir: Path, keep_pattern: str = "pamac") -> List[Path]:
    """
    System extension directories to delete: everything whose name does not
    contain keep_pattern (case-insensitive).
    """
    if not extensions_dir.is_dir():
        return []
    keep = keep_pattern.lower()
    return sorted(
        p for p in extensions_dir.iterdir()
        if p.is_dir() and keep not in p.name.lower()
    )


async def remove_distro_extensions(session: Session) -> List[Path]:
    cfg = session.config
    ui.info("Checking for unwanted Manjaro Gnome extensions...")

    unwanted = find_unwanted_extensions(cfg.gnome_extensions_dir, cfg.keep_extension_pattern)
    if not unwanted:
        ui.info("No Manjaro Gnome extensions found.")
        return []

    ok, _ = await session.run_step(["sudo", "rm", "-rf", *[str(p) for p in unwanted]])
    if ok:
        ui.success("Manjaro Gnome extensions deleted.")
        return unwanted

    ui.failure("Failed to delete Manjaro Gnome extensions, continuing...")
    return []
