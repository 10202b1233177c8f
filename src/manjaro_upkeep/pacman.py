# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Pacman interface module.
System upgrade with database rescue and keyring recovery, lock handling,
package listings, orphans and cache cleanup.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

from . import console as ui
from .session import Session
from .utils import (
    check_command_exists,
    create_error_response,
    run_command,
)

logger = logging.getLogger(__name__)

DB_LOCK = Path("/var/lib/pacman/db.lck")
SYNC_DB_DIR = Path("/var/lib/pacman/sync")
PACKAGE_CACHE_DIR = Path("/var/cache/pacman/pkg")
GNUPG_DIR = "/etc/pacman.d/gnupg"

LOCK_RETRY_SECONDS = 5

# Failures that a fresh copy of the sync databases usually fixes
RESCUE_PATTERN = re.compile(r"invalid or corrupted package|failed to commit transaction|database", re.IGNORECASE)

PGP_ERROR_PATTERN = re.compile(
    r"signature.*(could not be verified|invalid|error|unknown|revoked|failed)",
    re.IGNORECASE,
)

# pacman -Scc asks twice (packages, then unused repos)
CACHE_CLEAN_ANSWERS = "y\ny\n"


def has_pgp_errors(output: str) -> bool:
    return bool(PGP_ERROR_PATTERN.search(output))


def needs_database_rescue(output: str) -> bool:
    return bool(RESCUE_PATTERN.search(output))


async def resolve_db_lock(session: Session, lock: Path = DB_LOCK) -> None:
    """
    Wait for, or remove, a stale pacman database lock.

    Raises:
        AbortRun: the user exits
    """
    while lock.exists():
        choice = await ui.ask_choice(
            "Pacman database is locked. (r)etry  (d)elete lock  (e)xit: ",
            ["r", "d", "e"],
            "Invalid choice. Try again.",
        )

        if choice == "r":
            ui.info(f"Retrying in {LOCK_RETRY_SECONDS} seconds...")
            await asyncio.sleep(LOCK_RETRY_SECONDS)
        elif choice == "d":
            # fuser exits 0 when some process holds the file
            in_use, _, _ = await run_command(["sudo", "fuser", "-v", str(lock)], timeout=10)
            if in_use == 0:
                ui.failure("Warning: lock file is in use by a running process; not deleting it.")
                continue
            ui.info("Deleting pacman lock file...")
            locks = [str(p) for p in lock.parent.glob(f"{lock.name}*")]
            exit_code, _, stderr = await run_command(["sudo", "rm", "-f", *locks], timeout=10)
            if exit_code != 0:
                ui.failure(
                    "Warning: Failed to delete lock file. It may still be in use or require manual removal."
                )
                logger.error(f"Lock removal failed: {stderr}")
        else:
            ui.failure("Exiting due to pacman lock.")
            raise ui.AbortRun("pacman database locked")


async def purge_sync_databases(session: Session) -> bool:
    files = [str(p) for p in SYNC_DB_DIR.glob("*")]
    if not files:
        return True
    ok, _ = await session.run_step(["sudo", "rm", "-f", *files])
    return ok


async def pacman_rescue(session: Session, args: Sequence[str]) -> Tuple[bool, str]:
    """
    Run `sudo pacman ARGS`; on a database-type failure wipe the sync
    databases and force a full refresh.

    Returns:
        Tuple of (succeeded, combined output of every attempt)
    """
    ok, output = await session.run_step(["sudo", "pacman", *args])
    if ok:
        return True, output

    if not needs_database_rescue(output):
        return False, output

    ui.failure("Pacman error detected; purging sync databases and forcing full refresh...")
    await purge_sync_databases(session)
    rescue_ok, rescue_output = await session.run_step(["sudo", "pacman", "-Syyu", "--noconfirm"])
    return rescue_ok, output + "\n" + rescue_output


async def reset_keyring(session: Session) -> None:
    """Recreate the pacman keyring from scratch."""
    await session.run_step(["sudo", "rm", "-rf", GNUPG_DIR])
    await session.run_step(["sudo", "pacman-key", "--init"])
    await session.run_step(["sudo", "pacman-key", "--populate", *session.config.keyrings])


async def system_upgrade(session: Session) -> bool:
    """
    Full system upgrade, resetting the keyring and retrying while PGP
    signature errors show up.

    Returns:
        True when the last pacman attempt succeeded
    """
    while True:
        ok, output = await pacman_rescue(session, ["-Syyu", "--noconfirm"])

        if has_pgp_errors(output):
            ui.failure("PGP signature errors detected in pacman output.")
            await ui.press_enter("Press Enter to reset keyring and retry pacman update...")
            await reset_keyring(session)
            ui.info("Retrying pacman update after keyring reset...")
            continue

        ui.console.print("[orange3]No PGP signature errors detected. [/orange3][cyan]Continuing...[/cyan]")
        return ok


def _names(output: str, column: int = 0) -> List[str]:
    names = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) > column:
            names.append(parts[column])
    return names


async def list_repo_packages(sections: Sequence[str] = ("core", "extra", "multilib")) -> List[str]:
    """
    Names of every package in the given sync repositories, sorted and unique.
    """
    exit_code, stdout, stderr = await run_command(["pacman", "-Sl", *sections], timeout=60)
    if exit_code != 0:
        logger.error(f"pacman -Sl failed: {stderr}")
    return sorted(set(_names(stdout, column=1)))


async def list_foreign_packages() -> List[str]:
    """Installed packages not found in any sync repository (AUR and local builds)."""
    exit_code, stdout, _ = await run_command(["pacman", "-Qm"], timeout=30)
    return sorted(_names(stdout)) if exit_code == 0 else []


async def list_installed_packages() -> List[str]:
    exit_code, stdout, _ = await run_command(["pacman", "-Qq"], timeout=30)
    return _names(stdout) if exit_code == 0 else []


async def count_explicit_packages() -> int:
    exit_code, stdout, _ = await run_command(["pacman", "-Qe"], timeout=30)
    return len(_names(stdout)) if exit_code == 0 else 0


async def check_updates_dry_run() -> Dict[str, Any]:
    """
    Check for available system updates without applying them.

    Requires checkupdates from pacman-contrib.

    Returns:
        Dict with list of available updates or error response
    """
    logger.info("Checking for system updates (dry run)")

    if not check_command_exists("checkupdates"):
        return create_error_response(
            "CommandNotFound",
            "checkupdates command not found",
            "Install pacman-contrib package: pacman -S pacman-contrib",
        )

    try:
        exit_code, stdout, stderr = await run_command(["checkupdates"], timeout=60)
    except Exception as e:
        logger.error(f"Update check failed: {e}")
        return create_error_response("UpdateCheckError", f"Failed to check for updates: {str(e)}")

    # Exit code 2: no updates available
    if exit_code == 2 or (exit_code == 0 and not stdout.strip()):
        logger.info("No updates available")
        return {"updates_available": False, "count": 0, "packages": []}

    if exit_code != 0:
        logger.error(f"checkupdates failed with code {exit_code}: {stderr}")
        return create_error_response(
            "CommandError",
            f"checkupdates command failed: {stderr}",
            f"Exit code: {exit_code}",
        )

    updates = _parse_checkupdates_output(stdout)
    logger.info(f"Found {len(updates)} available updates")
    return {"updates_available": True, "count": len(updates), "packages": updates}


def _parse_checkupdates_output(output: str) -> List[Dict[str, str]]:
    """
    Parse checkupdates command output.

    Format: "package current_version -> new_version"
    """
    updates = []
    for line in output.strip().split("\n"):
        match = re.match(r"^(\S+)\s+(\S+)\s+->\s+(\S+)$", line.strip())
        if match:
            updates.append({
                "package": match.group(1),
                "current_version": match.group(2),
                "new_version": match.group(3),
            })
    return updates


async def list_orphan_packages() -> Dict[str, Any]:
    """
    List all orphaned packages (dependencies no longer required).

    Returns:
        Dict with list of orphan packages
    """
    logger.info("Listing orphan packages")

    exit_code, stdout, stderr = await run_command(["pacman", "-Qtdq"], timeout=30)

    # Exit code 1 with no output means no orphans
    if exit_code == 1 and not stdout.strip():
        return {"orphan_count": 0, "orphans": []}

    if exit_code != 0:
        logger.error(f"Failed to list orphans: {stderr}")
        return create_error_response(
            "CommandError",
            f"Failed to list orphan packages: {stderr}",
            f"Exit code: {exit_code}",
        )

    orphans = [pkg.strip() for pkg in stdout.strip().split("\n") if pkg.strip()]
    logger.info(f"Found {len(orphans)} orphan packages")
    return {"orphan_count": len(orphans), "orphans": orphans}


async def remove_orphans(session: Session) -> Dict[str, Any]:
    """Remove every orphan with `pacman -Rns`, without confirmation."""
    ui.info("Checking for orphaned packages...")

    result = await list_orphan_packages()
    if result.get("error"):
        ui.failure("Failed to list orphaned packages, continuing...")
        session.ledger.record("pacman -Qtdq", 1, "orphan listing")
        return result

    orphans = result["orphans"]
    if not orphans:
        ui.info("No orphaned packages found.")
        return {"removed_count": 0, "packages": []}

    ok, _ = await session.run_step(["sudo", "pacman", "-Rns", "--noconfirm", *orphans])
    if ok:
        ui.success("Orphaned packages removed.")
        return {"success": True, "removed_count": len(orphans), "packages": orphans}

    ui.failure("Failed to remove orphaned packages, continuing...")
    return create_error_response("RemovalError", "Failed to remove orphan packages")


async def clean_package_cache(session: Session) -> bool:
    """
    Empty the pacman package cache, deleting the files directly if
    `pacman -Scc` fails.
    """
    ok, _ = await session.run_step(["sudo", "pacman", "-Scc"], input_data=CACHE_CLEAN_ANSWERS)
    if ok:
        return True

    ui.failure("Failed to clean package cache with pacman -Scc, trying manual cache deletion...")
    files = [str(p) for p in PACKAGE_CACHE_DIR.glob("*")]
    if not files:
        return True
    ok, _ = await session.run_step(["sudo", "rm", "-rf", *files])
    return ok
