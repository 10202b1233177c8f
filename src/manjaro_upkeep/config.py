# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Run configuration.

Every setting has a default matching a stock Manjaro GNOME install and can be
overridden with an UPKEEP_* environment variable.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

ENV_PREFIX = "UPKEEP_"

FORUM_STABLE_UPDATES_URL = "https://forum.manjaro.org/c/announcements/stable-updates/12"
MIRROR_STATUS_URL = "https://repo.manjaro.org/"


def _env_list(value: str) -> List[str]:
    return [item for item in value.replace(",", " ").split() if item]


def _env_bool(value: str) -> bool:
    return value.strip().lower() not in ("0", "false", "no", "off", "")


@dataclass
class UpkeepConfig:
    """Settings for a maintenance run."""

    home: Path = field(default_factory=Path.home)
    work_dir: Path = Path("/tmp/manjaro")
    log_prefix: str = "Update-"

    # Snapshot gate
    snapshots_dir: Path = Path("/.snapshots")
    snapshot_max_age_days: int = 7
    grub_config: Path = Path("/boot/grub/grub.cfg")

    # Community poll
    forum_category_url: str = FORUM_STABLE_UPDATES_URL
    poll_min_percent: int = 85
    poll_min_voters: int = 200

    # Mirrors
    mirrorlist: Path = Path("/etc/pacman.d/mirrorlist")
    mirror_fresh_seconds: int = 7200
    min_mirrors: int = 6
    branch: str = "stable"
    mirror_status_url: str = MIRROR_STATUS_URL

    # Packages
    repo_sections: Tuple[str, ...] = ("core", "extra", "multilib")
    keyrings: Tuple[str, ...] = ("archlinux", "manjaro")

    # Cleanup
    orphan_fuzzy: bool = True
    purge_dirs: Tuple[str, ...] = (".cache/thumbnails", "Screenshots", "Downloads")
    gnome_extensions_dir: Path = Path("/usr/share/gnome-shell/extensions")
    keep_extension_pattern: str = "pamac"

    # Config file review
    backup_max_age_days: int = 30
    merge_tool: str = "meld"
    editor: str = "gnome-text-editor"

    @property
    def aur_exclude_file(self) -> Path:
        return self.home / ".aur_excluded_pkg"

    @property
    def flatpak_exclude_file(self) -> Path:
        return self.home / ".flatpak_excluded_app"

    @property
    def home_exclude_file(self) -> Path:
        return self.home / ".orphaned_home_apps.exclude"

    @property
    def staging_dir(self) -> Path:
        return self.home / "meld-temp"

    @property
    def debug_log(self) -> Path:
        return self.home / ".cache" / "manjaro-upkeep" / "debug.log"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "UpkeepConfig":
        """
        Build a config from UPKEEP_* variables.

        ORPHAN_FUZZY is also honoured without the prefix.

        Args:
            environ: Mapping to read (defaults to os.environ)

        Returns:
            UpkeepConfig
        """
        env = os.environ if environ is None else environ
        overrides: Dict[str, object] = {}

        path_keys = ("home", "work_dir", "snapshots_dir", "grub_config", "mirrorlist", "gnome_extensions_dir")
        int_keys = (
            "snapshot_max_age_days", "poll_min_percent", "poll_min_voters",
            "mirror_fresh_seconds", "min_mirrors", "backup_max_age_days",
        )
        str_keys = (
            "log_prefix", "forum_category_url", "branch", "mirror_status_url",
            "keep_extension_pattern", "merge_tool", "editor",
        )
        tuple_keys = ("repo_sections", "keyrings", "purge_dirs")

        for key in path_keys:
            value = env.get(ENV_PREFIX + key.upper())
            if value:
                overrides[key] = Path(value).expanduser()

        for key in int_keys:
            value = env.get(ENV_PREFIX + key.upper())
            if value:
                try:
                    overrides[key] = int(value)
                except ValueError:
                    logger.warning(f"Ignoring non-integer {ENV_PREFIX}{key.upper()}={value!r}")

        for key in str_keys:
            value = env.get(ENV_PREFIX + key.upper())
            if value:
                overrides[key] = value

        for key in tuple_keys:
            value = env.get(ENV_PREFIX + key.upper())
            if value:
                overrides[key] = tuple(_env_list(value))

        fuzzy = env.get(ENV_PREFIX + "ORPHAN_FUZZY", env.get("ORPHAN_FUZZY"))
        if fuzzy is not None:
            overrides["orphan_fuzzy"] = _env_bool(fuzzy)

        return cls(**overrides)
