# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Manjaro Upkeep

Guided maintenance for Manjaro GNOME systems: disk health and snapshot
gates, package updates across pacman, the AUR and Flatpak, cleanup and
.pacnew/.pacsave review, plus a read-only MCP server for the checks.
"""

__version__ = "0.1.0"

from .config import UpkeepConfig
from .console import AbortRun, RunDeclined
from .disk_health import check_disk_health
from .matching import (
    ExclusionList,
    find_replacements,
    flatpak_base_from_appid,
    fuzzy_candidates,
    normalize_key,
    strip_variant_suffix,
)
from .overview import collect_overview, fetch_stable_update_poll
from .pacfiles import find_pacfiles
from .pacman import check_updates_dry_run, list_orphan_packages
from .snapshots import list_recent_snapshots
from .utils import IS_ARCH, IS_MANJARO

__all__ = [
    # Config / control flow
    "UpkeepConfig",
    "AbortRun",
    "RunDeclined",
    # Checks
    "check_disk_health",
    "list_recent_snapshots",
    "collect_overview",
    "fetch_stable_update_poll",
    "check_updates_dry_run",
    "list_orphan_packages",
    "find_pacfiles",
    # Matching
    "ExclusionList",
    "find_replacements",
    "flatpak_base_from_appid",
    "fuzzy_candidates",
    "normalize_key",
    "strip_variant_suffix",
    # Utils
    "IS_ARCH",
    "IS_MANJARO",
]
