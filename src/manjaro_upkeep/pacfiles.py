# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
.pacnew / .pacsave review.

Files are copied to a private staging directory, reviewed there with a merge
tool or editor, and only written back to / when the user finalizes.
"""

import getpass
import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.markup import escape

from . import console as ui
from .session import Session
from .utils import create_error_response, run_attached, run_command

logger = logging.getLogger(__name__)

PAC_SUFFIXES = (".pacnew", ".pacsave")
BACKUP_DATE = re.compile(r"\.backup-(\d{8})-")
BACKUP_STAMP_FORMAT = "%Y%m%d-%H%M%S"

FIND_PRUNE = ["(", "-path", "/.snapshots", "-prune", ")", "-o"]


def is_pacfile(path: str) -> bool:
    return path.endswith(PAC_SUFFIXES)


def config_base_name(pacfile: Path) -> str:
    """foo.conf.pacnew -> foo.conf"""
    name = pacfile.name
    for suffix in PAC_SUFFIXES:
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


def _lines(output: str) -> List[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]


async def find_pacfiles() -> Dict[str, Any]:
    """
    Locate every .pacnew and .pacsave on the system, skipping snapshots.

    Returns:
        Dict with count and files, or an error response
    """
    logger.info("Searching for .pacnew/.pacsave files")
    exit_code, stdout, stderr = await run_command(
        ["sudo", "find", "/", *FIND_PRUNE,
         "-regextype", "posix-extended", "-regex", r".+\.pac(new|save)", "-print"],
        timeout=None,
    )

    files = _lines(stdout)
    # find exits non-zero on unreadable pseudo filesystems; only an empty
    # result is treated as a failure
    if exit_code != 0 and not files:
        logger.error(f"find failed: {stderr}")
        return create_error_response("CommandError", "Failed to search for .pacnew/.pacsave files", stderr.strip())

    return {"count": len(files), "files": sorted(files)}


def _is_file(path: Path) -> bool:
    try:
        return path.is_file()
    except OSError as e:
        logger.debug(f"Cannot stat {path}: {e}")
        return False


def _glob(directory: Path, pattern: str) -> List[Path]:
    try:
        return sorted(directory.glob(pattern))
    except OSError as e:
        logger.debug(f"Cannot list {directory}: {e}")
        return []


def find_sibling(pacfile: Path) -> Optional[Path]:
    """
    The live config a pacfile belongs to.

    The exact base name wins; otherwise the first regular file in the same
    directory that starts with it (backups and other pacfiles excluded).
    Directories the user cannot read yield no sibling.
    """
    base = config_base_name(pacfile)
    exact = pacfile.parent / base
    if _is_file(exact):
        return exact

    for entry in _glob(pacfile.parent, f"{base}*"):
        if entry == pacfile or is_pacfile(entry.name) or ".backup-" in entry.name:
            continue
        if _is_file(entry):
            return entry
    return None


def backup_name(sibling: Path, now: Optional[datetime] = None) -> Path:
    now = now or datetime.now()
    return sibling.with_name(f"{sibling.name}.backup-{now.strftime(BACKUP_STAMP_FORMAT)}")


def staged_path(staging_dir: Path, path: Path) -> Path:
    """Mirror an absolute path inside the staging directory."""
    return staging_dir / path.relative_to(path.anchor)


@dataclass
class PacfileReview:
    """State of one review pass."""

    staging_dir: Path
    pacfiles: List[Path]
    siblings: Dict[Path, Path] = field(default_factory=dict)

    def staged(self, path: Path) -> Path:
        return staged_path(self.staging_dir, path)


async def backup_sibling(session: Session, sibling: Path) -> Path:
    """Replace older backups of sibling with a fresh timestamped copy."""
    old = [str(p) for p in _glob(sibling.parent, f"{sibling.name}.backup-*")]
    if old:
        await session.run_step(["sudo", "rm", "-f", *old])

    backup = backup_name(sibling)
    ui.console.print(f"[cyan]Backing up sibling:[/cyan] {escape(str(sibling))} -> {escape(str(backup))}")
    await session.run_step(["sudo", "cp", "-a", str(sibling), str(backup)])
    return backup


def prepare_staging(staging_dir: Path) -> None:
    shutil.rmtree(staging_dir, ignore_errors=True)
    staging_dir.mkdir(parents=True)
    os.chmod(staging_dir, 0o700)


async def stage_file(session: Session, staging_dir: Path, path: Path) -> Path:
    """Copy a root-owned file into staging and hand it to the user."""
    dest = staged_path(staging_dir, path)
    dest.parent.mkdir(parents=True, exist_ok=True)
    user = getpass.getuser()
    await session.run_step(["sudo", "cp", "-a", str(path), str(dest)])
    await session.run_step(["sudo", "chown", f"{user}:{user}", str(dest)])
    return dest


async def prepare_review(session: Session, pacfiles: List[Path]) -> PacfileReview:
    review = PacfileReview(session.config.staging_dir, pacfiles)
    prepare_staging(review.staging_dir)

    for pacfile in pacfiles:
        sibling = find_sibling(pacfile)
        if sibling is not None:
            review.siblings[pacfile] = sibling
            await backup_sibling(session, sibling)

    for pacfile in pacfiles:
        await stage_file(session, review.staging_dir, pacfile)
        sibling = review.siblings.get(pacfile)
        if sibling is not None:
            await stage_file(session, review.staging_dir, sibling)

    return review


async def review_files(session: Session, review: PacfileReview) -> None:
    """Open each staged pair in the merge tool, lone files in the editor."""
    cfg = session.config
    processed = set()

    for pacfile in review.pacfiles:
        if pacfile in processed:
            continue

        temp_file = review.staged(pacfile)
        sibling = review.siblings.get(pacfile)
        ui.console.print()
        ui.console.print(f"[cyan]Processing:[/cyan] {escape(str(temp_file))}")
        ui.console.print()

        if sibling is not None and review.staged(sibling).is_file():
            sibling_temp = review.staged(sibling)
            ui.console.print(f"[cyan]Launching {cfg.merge_tool} for:[/cyan]")
            ui.plain(f"{temp_file}\n{sibling_temp}")
            await run_attached([cfg.merge_tool, str(sibling_temp), str(temp_file)])
            processed.add(sibling)
        else:
            ui.console.print(f"[cyan]Opening in {cfg.editor}:[/cyan] {escape(str(temp_file))}")
            await run_attached([cfg.editor, str(temp_file)])
        processed.add(pacfile)

        if temp_file.exists() and await ui.confirm(f"Delete {escape(str(temp_file))}? (y)es or any other key: "):
            temp_file.unlink()
            ui.plain(f"removed '{temp_file}'")

        await ui.press_enter("Press Enter to continue to next file...")


async def _differs(staged: Path, original: Path) -> bool:
    exit_code, _, _ = await run_command(["sudo", "cmp", "-s", str(staged), str(original)], timeout=30)
    return exit_code != 0


async def finalize(session: Session, review: PacfileReview) -> Dict[str, int]:
    """
    Write reviewed files back to the system.

    Missing staged files delete their original.

    Returns:
        Sibling summary {"total", "updated", "unchanged"}
    """
    for pacfile in review.pacfiles:
        temp_file = review.staged(pacfile)
        if temp_file.is_file():
            if await _differs(temp_file, pacfile):
                ui.info(f"Copying back: {escape(str(temp_file))}  {escape(str(pacfile))}")
                await session.run_step(["sudo", "cp", "-a", str(temp_file), str(pacfile)])
            else:
                ui.console.print(f"[cyan]Unchanged:[/cyan] {escape(str(pacfile))}")
        else:
            ui.failure(f"Removing: {escape(str(pacfile))}")
            await session.run_step(["sudo", "rm", "-f", str(pacfile)])

    summary = {"total": 0, "updated": 0, "unchanged": 0}
    for pacfile in review.pacfiles:
        sibling = review.siblings.get(pacfile)
        if sibling is None:
            continue
        summary["total"] += 1
        sibling_temp = review.staged(sibling)
        if sibling_temp.is_file():
            if await _differs(sibling_temp, sibling):
                ui.info(f"Copying back: {escape(str(sibling_temp))}  {escape(str(sibling))}")
                await session.run_step(["sudo", "cp", "-a", str(sibling_temp), str(sibling)])
                summary["updated"] += 1
            else:
                ui.console.print(f"[yellow]Unchanged:[/yellow] {escape(str(sibling))}")
                summary["unchanged"] += 1
        else:
            ui.failure(f"Removing sibling: {escape(str(sibling))}")
            await session.run_step(["sudo", "rm", "-f", str(sibling)])

    if summary["total"]:
        ui.console.print(
            f"\n[cyan]Config files sync summary:[/cyan]  [blue]Total: {summary['total']}[/blue]"
            f"  [green]Updated: {summary['updated']}[/green]"
            f"  [yellow]Unchanged: {summary['unchanged']}[/yellow]"
        )
    return summary


async def handle_pacfiles(session: Session) -> Optional[Dict[str, int]]:
    """
    Find pacfiles and, if the user agrees, review and finalize them.

    Returns:
        Finalize summary, or None when nothing was written back
    """
    ui.info("Checking for .pacnew and .pacsave files...")
    result = await find_pacfiles()
    if result.get("error"):
        ui.failure(result["message"])
        session.ledger.record("find / -regex .+\\.pac(new|save)", 1, "pacfile discovery")
        return None

    if not result["files"]:
        ui.console.print()
        ui.info("No .pacnew or .pacsave found.")
        return None

    ui.console.print()
    ui.failure(f"Found: {result['count']} files")
    for path in result["files"]:
        ui.plain(path)
    ui.console.print()

    if (await ui.ask("Deal with .pacsave/.pacnew? (n)o or any other key: ")).lower() == "n":
        ui.info("Skipping .pacnew/.pacsave handling")
        return None

    await ui.press_enter("Press Enter to review...")

    summary = None
    try:
        review = await prepare_review(session, [Path(p) for p in result["files"]])
        await review_files(session, review)
        if await ui.confirm("Finalize all changes to files? (y)es or any key to continue with the script: "):
            summary = await finalize(session, review)
        else:
            ui.info("Continuing without syncing changes...")
    finally:
        shutil.rmtree(session.config.staging_dir, ignore_errors=True)
    return summary


def is_old_file(path: str, now: datetime, max_age_days: int = 30, mtime: Optional[float] = None) -> bool:
    """
    Backups age by the date in their name, pacfiles by modification time.
    """
    cutoff = max_age_days * 86400

    match = BACKUP_DATE.search(path)
    if match:
        try:
            stamp = datetime.strptime(match.group(1), "%Y%m%d")
        except ValueError:
            return False
        return (now - stamp).total_seconds() > cutoff

    if is_pacfile(path) and mtime is not None:
        return now.timestamp() - mtime > cutoff
    return False


def _mtime(path: str) -> Optional[float]:
    try:
        return os.stat(path).st_mtime
    except OSError as e:
        logger.debug(f"Cannot stat {path}: {e}")
        return None


async def find_old_files(max_age_days: int = 30, now: Optional[datetime] = None) -> List[str]:
    now = now or datetime.now()
    _, stdout, _ = await run_command(
        ["sudo", "find", "/", *FIND_PRUNE, "-type", "f",
         "(", "-name", "*.pacnew", "-o", "-name", "*.pacsave", "-o", "-name", "*.backup-[0-9]*", ")",
         "-print"],
        timeout=None,
    )
    return [
        path for path in _lines(stdout)
        if is_old_file(path, now, max_age_days, None if BACKUP_DATE.search(path) else _mtime(path))
    ]


async def prune_old_backups(session: Session) -> Dict[str, int]:
    """
    Offer to delete config backups and pacfiles older than the cutoff.

    Returns:
        {"total", "deleted", "skipped"}
    """
    days = session.config.backup_max_age_days
    ui.console.print("\n")
    ui.info(f"Checking for .pacnew, .pacsave, and config backup files older than {days} days...")

    old_files = await find_old_files(days)
    summary = {"total": len(old_files), "deleted": 0, "skipped": 0}
    if not old_files:
        ui.console.print()
        ui.info("No files found")
        return summary

    ui.console.print()
    ui.failure(f"Found: {len(old_files)} files")
    for path in old_files:
        ui.plain(path)
    ui.console.print()

    for path in old_files:
        if await ui.confirm(f"Delete {escape(path)}? (y)es or any other key: "):
            await session.run_step(["sudo", "rm", "-f", path])
            ui.failure(f"Deleted: {escape(path)}")
            summary["deleted"] += 1
        else:
            ui.console.print(f"[blue]Skipped: {escape(path)}[/blue]")
            summary["skipped"] += 1

    ui.console.print(
        f"\n[cyan]Cleanup summary:[/cyan]  [cyan]Total: {summary['total']}[/cyan]"
        f"  [red]Deleted: {summary['deleted']}[/red]   [yellow]Skipped: {summary['skipped']}[/yellow]"
    )
    return summary
