# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
AUR helper operations (yay or paru).
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from . import console as ui
from .session import Session
from .utils import get_aur_helper

logger = logging.getLogger(__name__)

UPGRADE_FLAGS: Dict[str, List[str]] = {
    "yay": [
        "-Syu", "--devel", "--timeupdate", "--noconfirm", "--cleanafter",
        "--editmenu=false", "--combinedupgrade",
    ],
    "paru": [
        "-Syu", "--devel", "--noconfirm", "--cleanafter", "--skipreview",
        "--combinedupgrade",
    ],
}

# yay/paru -Scc ask once per cache
CACHE_CLEAN_ANSWERS = "y\ny\ny\n"


def upgrade_command(helper: str) -> List[str]:
    return [helper, *UPGRADE_FLAGS.get(helper, ["-Syu", "--noconfirm"])]


def helper_cache_dir(home: Path, helper: str) -> Path:
    return home / ".cache" / helper


async def upgrade(session: Session, helper: Optional[str] = None) -> bool:
    """
    Upgrade AUR packages.

    Returns:
        True on success, or when no helper is installed
    """
    helper = helper or get_aur_helper()
    if helper is None:
        ui.notice("No AUR helper (yay or paru) found, skipping AUR updates.")
        return True

    ok, _ = await session.run_step(upgrade_command(helper))
    if not ok:
        ui.failure(f"{helper.capitalize()} update failed.")
    return ok


async def remove_package(session: Session, helper: str, package: str) -> bool:
    ok, _ = await session.run_step([helper, "-Rns", "--noconfirm", package])
    return ok


async def install_package(session: Session, helper: str, package: str) -> bool:
    ok, _ = await session.run_step([helper, "-S", "--noconfirm", package])
    return ok


async def clean_cache(session: Session, helper: Optional[str] = None) -> bool:
    """
    Empty the helper's build cache, deleting ~/.cache/<helper>/* directly if
    `-Scc` fails.
    """
    helper = helper or get_aur_helper()
    if helper is None:
        return True

    ok, _ = await session.run_step([helper, "-Scc"], input_data=CACHE_CLEAN_ANSWERS)
    if ok:
        return True

    ui.failure(f"Failed to clean package cache with {helper} -Scc, trying manual cache deletion...")
    entries = [str(p) for p in helper_cache_dir(session.config.home, helper).glob("*")]
    if not entries:
        return True
    ok, _ = await session.run_step(["rm", "-rf", *entries])
    return ok
