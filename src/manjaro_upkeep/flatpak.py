# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Flatpak maintenance: updates, repairs, unused runtimes, leftover app data
and unused remotes, for both the system and the user installation.
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from . import console as ui
from .session import Session
from .utils import check_command_exists, run_command

logger = logging.getLogger(__name__)

SCOPES = ("user", "system")


@dataclass
class FlatpakApp:
    """An installed Flatpak application."""

    appid: str
    origin: Optional[str] = None
    scope: str = "system"


def scope_prefix(scope: str) -> List[str]:
    """`flatpak --user` or `sudo flatpak --system`."""
    if scope == "user":
        return ["flatpak", "--user"]
    return ["sudo", "flatpak", "--system"]


def parse_app_list(output: str) -> List[FlatpakApp]:
    """
    Parse `flatpak list --app --columns=application,origin,installation`.

    Returns:
        Unique apps sorted by id
    """
    apps = {}
    for line in output.splitlines():
        parts = line.split()
        if not parts:
            continue
        origin = parts[1] if len(parts) > 1 else None
        scope = parts[2] if len(parts) > 2 else "system"
        apps[(parts[0], scope)] = FlatpakApp(parts[0], origin, scope)
    return [apps[key] for key in sorted(apps)]


async def list_apps() -> List[FlatpakApp]:
    try:
        exit_code, stdout, stderr = await run_command(
            ["flatpak", "list", "--app", "--columns=application,origin,installation"],
            timeout=60,
        )
    except FileNotFoundError:
        logger.info("flatpak not installed")
        return []
    if exit_code != 0:
        logger.error(f"flatpak list failed: {stderr}")
        return []
    return parse_app_list(stdout)


async def list_app_ids() -> List[str]:
    return sorted({app.appid for app in await list_apps()})


async def update_all(session: Session) -> None:
    """Update the system installation, then the user one."""
    ok, _ = await session.run_step(["sudo", "flatpak", "update", "-y"])
    if not ok:
        ui.failure("Flatpak update (sudo) failed, continuing...")

    ok, _ = await session.run_step(["flatpak", "update", "-y"])
    if not ok:
        ui.failure("Flatpak update (user) failed, continuing...")


async def repair(session: Session) -> None:
    ok, _ = await session.run_step(["sudo", "flatpak", "repair"])
    if not ok:
        ui.failure("Flatpak system repair failed, continuing...")

    ok, _ = await session.run_step(["flatpak", "repair", "--user"])
    if not ok:
        ui.failure("Flatpak user repair failed, continuing...")


async def remove_unused(session: Session) -> None:
    """Drop runtimes nothing depends on and data of uninstalled apps."""
    ok, _ = await session.run_step(["flatpak", "uninstall", "--unused", "-y"])
    if not ok:
        ui.failure("Flatpak clean orphaned components failed, continuing...")

    # Without a ref --delete-data removes all unowned app data
    ok, _ = await session.run_step(["flatpak", "uninstall", "--delete-data", "-y"])
    if not ok:
        ui.failure("Flatpak unowned app data cleanup failed, continuing...")


def find_leftover_data(var_app_dir: Path, installed: Sequence[str]) -> List[Path]:
    """Directories in ~/.var/app whose app is no longer installed."""
    if not var_app_dir.is_dir():
        return []
    installed_set = set(installed)
    return sorted(p for p in var_app_dir.iterdir() if p.name not in installed_set)


async def remove_leftover_data(session: Session) -> List[Path]:
    ui.info("Checking for leftover Flatpak app data...")
    leftovers = find_leftover_data(session.config.home / ".var" / "app", await list_app_ids())
    if not leftovers:
        ui.info("No leftover Flatpak app data found.")
        return []

    failed = False
    for path in leftovers:
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
        except OSError as e:
            logger.error(f"Failed to remove {path}: {e}")
            session.ledger.record(f"rm -rf {path}", 1, "leftover Flatpak data")
            failed = True

    if failed:
        ui.failure("Failed to remove some leftover Flatpak app data, continuing...")
    else:
        ui.success("Leftover Flatpak app data deleted.")
    return leftovers


def _column(output: str) -> List[str]:
    return sorted({line.strip() for line in output.splitlines() if line.strip()})


async def find_unused_remotes(scope: str) -> List[str]:
    """Remotes of one installation that no installed app originates from."""
    prefix = scope_prefix(scope)
    _, remotes_out, _ = await run_command([*prefix, "remote-list", "--columns=name"], timeout=30)
    _, origins_out, _ = await run_command([*prefix, "list", "--app", "--columns=origin"], timeout=30)
    used = set(_column(origins_out))
    return [remote for remote in _column(remotes_out) if remote not in used]


async def cleanup_remotes(session: Session, scope: str) -> List[str]:
    """
    Offer to delete unused remotes of one installation.

    Returns:
        Remotes removed
    """
    unused = await find_unused_remotes(scope)
    if not unused:
        ui.info(f"No unused {scope} Flatpak remotes detected.")
        return []

    ui.notice(f"Unused {scope} Flatpak remotes:")
    for remote in unused:
        ui.plain(remote)
    ui.console.print()

    if not await ui.confirm("Remove these remotes? (y)es or any other key to skip: "):
        ui.info(f"Skipping {scope} remotes cleanup.")
        return []

    removed = []
    for remote in unused:
        ui.console.print(f"[cyan]Removing {scope} remote: [/cyan][orange3]{remote}[/orange3]")
        ok, _ = await session.run_step([*scope_prefix(scope), "remote-delete", "--force", remote])
        if ok:
            removed.append(remote)
        else:
            ui.failure(f"Failed to remove remote: {remote}")

    ui.success(f"{scope} remotes cleanup done.")
    return removed


async def cleanup(session: Session) -> None:
    """Repair, prune and tidy both installations."""
    if not check_command_exists("flatpak"):
        ui.notice("flatpak not installed, skipping Flatpak cleanup.")
        return

    await repair(session)
    await remove_unused(session)
    await remove_leftover_data(session)

    ui.info("Checking Flatpak remotes for unused entries...")
    for scope in SCOPES:
        await cleanup_remotes(session, scope)
