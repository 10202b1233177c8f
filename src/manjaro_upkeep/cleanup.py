# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Home directory hygiene.

Empties throwaway directories and walks the user through app config/cache
directories that no installed package or Flatpak seems to own.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Set

from rich.markup import escape

from . import console as ui
from . import flatpak
from . import pacman
from .matching import ExclusionList, normalize_key
from .session import Session

logger = logging.getLogger(__name__)

SCAN_ROOTS = (".config", ".cache", ".local/share", ".local/state")

KEEP_BASENAMES = {"Trash", "dconf", "gtk-3.0", "gtk-4.0", "fontconfig", "pulse", "pipewire"}

MIN_KEY_LENGTH = 3
MIN_FUZZY_KEY_LENGTH = 4

CANDIDATES_FILE = "orphaned_home_apps.txt"


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def purge_directory(directory: Path) -> str:
    """
    Delete the contents of a directory, keeping the directory itself.

    Every entry is attempted; one that cannot be removed does not stop the rest.

    Returns:
        "cleaned", "empty", "missing" or "failed"
    """
    if not directory.is_dir():
        return "missing"

    try:
        entries = list(directory.iterdir())
    except OSError as e:
        logger.error(f"Failed to list {directory}: {e}")
        return "failed"
    if not entries:
        return "empty"

    failed = 0
    for entry in entries:
        try:
            _remove(entry)
        except OSError as e:
            logger.error(f"Failed to remove {entry}: {e}")
            failed += 1
    return "failed" if failed else "cleaned"


def purge_home_dirs(session: Session) -> Dict[str, str]:
    ui.info("Checking thumbnails, screenshots, and downloads...")
    ui.console.print()

    results = {}
    for relative in session.config.purge_dirs:
        directory = session.config.home / relative
        status = purge_directory(directory)
        results[str(directory)] = status

        if status == "cleaned":
            ui.success(f"Cleaned: {escape(str(directory))}")
        elif status == "empty":
            ui.info(f"Nothing to clean in: {escape(str(directory))}")
        elif status == "missing":
            ui.notice(f"Directory not found: {escape(str(directory))}")
        else:
            ui.failure(f"Failed to clean: {escape(str(directory))}")
            session.ledger.record(f"clean {directory}", 1, "home purge")
    return results


def build_installed_keys(packages: Iterable[str], appids: Iterable[str]) -> Set[str]:
    """Normalized keys of pacman packages, Flatpak ids and their last segment."""
    keys = set()
    for name in packages:
        keys.add(normalize_key(name))
    for appid in appids:
        keys.add(normalize_key(appid))
        keys.add(normalize_key(appid.split(".")[-1]))
    keys.discard("")
    return keys


def matches_installed(basename: str, installed: Set[str], fuzzy: bool = True) -> bool:
    """
    True when a directory name plausibly belongs to something installed.

    Keys shorter than three characters always count as matched so they are
    never offered for deletion.
    """
    key = normalize_key(basename)
    if len(key) < MIN_KEY_LENGTH or key in installed:
        return True

    if fuzzy:
        for other in installed:
            if len(other) < MIN_FUZZY_KEY_LENGTH:
                continue
            if other in key or key in other:
                return True
    return False


def scan_roots(home: Path) -> List[Path]:
    return [home / relative for relative in SCAN_ROOTS]


def within_scan_roots(path: Path, home: Path) -> bool:
    """True for paths strictly below one of the scan roots."""
    for root in scan_roots(home):
        root = Path(os.path.realpath(root))
        if path != root and root in path.parents:
            return True
    return False


def find_orphaned_app_dirs(
    home: Path,
    installed: Set[str],
    exclusions: ExclusionList,
    fuzzy: bool = True,
) -> List[Path]:
    """
    First-level directories of the scan roots that look orphaned.

    Returns:
        Resolved paths in scan order
    """
    candidates = []
    for root in scan_roots(home):
        if not root.is_dir():
            continue
        for entry in sorted(root.iterdir()):
            if not entry.is_dir():
                continue
            if entry.name in KEEP_BASENAMES:
                continue
            if matches_installed(entry.name, installed, fuzzy):
                continue

            resolved = Path(os.path.realpath(entry))
            if str(resolved) in exclusions:
                continue
            candidates.append(resolved)
    return candidates


def save_candidates(work_dir: Path, candidates: Sequence[Path]) -> Path:
    work_dir.mkdir(parents=True, exist_ok=True)
    outfile = work_dir / CANDIDATES_FILE
    outfile.write_text("".join(f"{path}\n" for path in candidates))
    return outfile


async def review_orphaned_app_dirs(session: Session) -> List[Path]:
    """
    Ask about each probable orphan: (e)xclude forever, (d)elete or (s)kip.

    Returns:
        Deleted paths
    """
    cfg = session.config
    ui.info("Checking orphaned app configs...")
    ui.console.print()

    exclusions = ExclusionList.load(cfg.home_exclude_file)
    os.chmod(cfg.home_exclude_file, 0o600)

    installed = build_installed_keys(
        await pacman.list_installed_packages(),
        await flatpak.list_app_ids(),
    )
    candidates = find_orphaned_app_dirs(cfg.home, installed, exclusions, cfg.orphan_fuzzy)
    outfile = save_candidates(cfg.work_dir, candidates)

    if not candidates:
        ui.info("No orphaned app configs detected.")
        return []

    ui.console.print(f"[orange3]Probable orphaned app directories found ({len(candidates)}).[/orange3]")
    ui.console.print(f"[blue]Saved list:[/blue] {escape(str(outfile))}")
    ui.console.print(f"[blue]Exclude list:[/blue] {escape(str(cfg.home_exclude_file))}")
    ui.console.print()

    deleted = []
    for candidate in candidates:
        if not candidate.is_dir():
            continue

        if not within_scan_roots(candidate, cfg.home):
            ui.console.print(f"[red]Refusing to touch outside scan roots:[/red] {escape(str(candidate))}")
            continue

        ui.plain(str(candidate))
        action = (await ui.ask("(e)xclude forever  (d)elete permanently  (s)kip: ")).lower()

        if action in ("e", ""):
            exclusions.add(str(candidate))
            ui.console.print(f"[green]Excluded:[/green] {escape(str(candidate))}")
        elif action == "d":
            try:
                shutil.rmtree(candidate)
            except OSError as e:
                logger.error(f"Failed to delete {candidate}: {e}")
                ui.console.print(f"[red]Failed to delete:[/red] {escape(str(candidate))}")
                session.ledger.record(f"rm -rf {candidate}", 1, "orphaned app data")
            else:
                ui.console.print(f"[green]Deleted:[/green] {escape(str(candidate))}")
                deleted.append(candidate)
        else:
            ui.console.print(f"[cyan]Skipped:[/cyan] {escape(str(candidate))}")
        ui.console.print()

    if deleted:
        ui.success("Orphaned app configs cleaned.")
    return deleted
