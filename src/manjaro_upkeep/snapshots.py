# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Snapper safety gate.
Makes sure a recent btrfs snapshot of / exists before packages are touched.
"""

import logging
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.markup import escape

from . import console as ui
from .session import Session
from .utils import check_command_exists, create_error_response, run_command

logger = logging.getLogger(__name__)

DEFAULT_SNAPPER_CONFIG = "root"
SNAPSHOT_DATE_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%a %d %b %Y %H:%M:%S")


def parse_snapper_configs(output: str) -> Optional[str]:
    """Return the config whose subvolume is / from `list-configs` csv output."""
    for line in output.splitlines():
        parts = [part.strip() for part in line.split("|")]
        if len(parts) >= 2 and parts[1] == "/":
            return parts[0]
    return None


async def detect_snapper_config() -> str:
    """
    Pick the snapper config covering /, falling back to "root".
    """
    exit_code, stdout, _ = await run_command(
        ["sudo", "snapper", "--csvout", "--separator", "|", "--no-headers",
         "list-configs", "--columns", "config,subvolume"],
        timeout=30,
    )
    if exit_code == 0:
        config = parse_snapper_configs(stdout)
        if config:
            return config
    return DEFAULT_SNAPPER_CONFIG


def parse_snapshot_date(value: str) -> Optional[datetime]:
    value = value.strip()
    for fmt in SNAPSHOT_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def parse_snapshot_list(output: str, cutoff: datetime) -> List[Dict[str, Any]]:
    """
    Parse `snapper list` csv output into snapshots newer than cutoff.

    Snapshot 0 (the live system) and rows with unparseable dates are skipped.

    Returns:
        Snapshots sorted newest first
    """
    snapshots = []
    for line in output.splitlines():
        parts = line.split("|", 2)
        if len(parts) < 2:
            continue

        number = parts[0].strip()
        if not number.isdigit() or number == "0":
            continue

        date = parse_snapshot_date(parts[1])
        if date is None or date < cutoff:
            continue

        snapshots.append({
            "number": int(number),
            "date": parts[1].strip(),
            "description": parts[2].strip() if len(parts) > 2 else "",
            "timestamp": date,
        })

    snapshots.sort(key=lambda s: s["timestamp"], reverse=True)
    return snapshots


async def list_recent_snapshots(config: str, max_age_days: int = 7) -> Dict[str, Any]:
    """
    List snapshots of a snapper config taken within max_age_days.

    Returns:
        Dict with config and snapshots, or an error response
    """
    exit_code, stdout, stderr = await run_command(
        ["sudo", "snapper", "-c", config, "--csvout", "--separator", "|", "--no-headers",
         "list", "--columns", "number,date,description"],
        timeout=60,
    )
    if exit_code != 0:
        logger.error(f"snapper list failed for config {config}: {stderr}")
        return create_error_response(
            "CommandError",
            f"snapper list failed (config: {config})",
            stderr.strip(),
        )

    cutoff = datetime.now() - timedelta(days=max_age_days)
    snapshots = parse_snapshot_list(stdout, cutoff)
    return {
        "config": config,
        "max_age_days": max_age_days,
        "count": len(snapshots),
        "snapshots": snapshots,
    }


def snapshot_description(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"Update-{now.strftime('%Y-%m-%d_%H-%M-%S')}"


async def create_snapshot(config: str, description: str) -> Dict[str, Any]:
    """
    Create a single snapshot and return its number.
    """
    exit_code, stdout, stderr = await run_command(
        ["sudo", "snapper", "-c", config, "create", "--description", description, "--print-number"],
        timeout=120,
    )
    number = stdout.strip()
    if exit_code != 0 or not re.fullmatch(r"\d+", number):
        return create_error_response(
            "SnapshotError",
            "snapper snapshot creation failed",
            stderr.strip() or f"Unexpected output: {number!r}",
        )
    return {"success": True, "number": int(number), "description": description}


async def snapshot_gate(session: Session) -> Dict[str, Any]:
    """
    Interactive snapshot gate.

    Continues when a snapshot from the last week exists, otherwise creates one
    and regenerates the GRUB menu. Each step retries on its own.

    Raises:
        AbortRun: snapper not usable or the user exits
    """
    cfg = session.config
    ui.console.print("\n[orange3]Checking for btrfs snapshots...[/orange3]")

    if not check_command_exists("snapper"):
        ui.failure("Error: snapper not found.")
        ui.notice("Install/configure snapper first, then re-run the script.")
        raise ui.AbortRun("snapper not found")

    if not Path(cfg.snapshots_dir).is_dir():
        ui.failure(f"Error: {cfg.snapshots_dir} not found.")
        ui.notice("Btrfs snapshots are not mounted/configured for root.")
        raise ui.AbortRun("snapshots directory missing")

    snapper_config = await detect_snapper_config()

    while True:
        result = await list_recent_snapshots(snapper_config, cfg.snapshot_max_age_days)
        if not result.get("error"):
            break
        ui.failure(f"Error: snapper list failed (config: {snapper_config}).")
        await ui.retry_or_exit()

    if result["snapshots"]:
        ui.success(f"Found Btrfs snapshot {cfg.snapshot_max_age_days} days or newer, continuing...")
        for snap in result["snapshots"]:
            ui.plain(f"{snap['number']}  {snap['date']}  {snap['description']}")
        return result

    ui.notice(f"No snapshots found from the last {cfg.snapshot_max_age_days} days.")

    description = snapshot_description()
    while True:
        ui.console.print(f"\n[cyan]Creating snapshot: [orange3]{escape(description)}[/orange3][/cyan]")
        created = await create_snapshot(snapper_config, description)
        if not created.get("error"):
            ui.success(f"Snapshot created: #{created['number']} {description}")
            break
        ui.failure("Error: snapper snapshot creation failed.")
        session.ledger.record(f"snapper -c {snapper_config} create", 1, "snapshot gate")
        await ui.retry_or_exit("(r)etry snapshot or (e)xit script: ")

    while True:
        ui.info("Updating GRUB config...")
        ok, _ = await session.run_step(["sudo", "grub-mkconfig", "-o", str(cfg.grub_config)])
        if ok:
            ui.success("GRUB updated successfully.")
            break
        ui.failure("Error: grub-mkconfig failed.")
        await ui.retry_or_exit("(r)etry grub update or (e)xit script: ")

    return {"config": snapper_config, "created": created}
