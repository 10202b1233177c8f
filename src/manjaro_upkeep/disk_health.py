# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
SMART disk health gate.
Finds the physical disk behind / and refuses to continue on a failing drive.
"""

import logging
import os
import re
from typing import Any, Dict, Optional

from . import console as ui
from .session import Session
from .utils import check_command_exists, create_error_response, run_command

logger = logging.getLogger(__name__)

NVME_PARTITION = re.compile(r"^(/dev/nvme\d+n\d+)p\d+$")

SMART_FIELDS = {
    "critical_warning": r"Critical Warning:\s*(0x[0-9a-fA-F]+)",
    "temperature": r"Temperature:\s*([0-9]+)",
    "available_spare": r"Available Spare:\s*([0-9]+)",
    "spare_threshold": r"Available Spare Threshold:\s*([0-9]+)",
    "percentage_used": r"Percentage Used:\s*([0-9]+)",
    "media_errors": r"Media and Data Integrity Errors:\s*([0-9]+)",
    "error_log_entries": r"Error Information Log Entries:\s*([0-9]+)",
}


def strip_subvolume(source: str) -> str:
    """findmnt reports btrfs roots as /dev/nvme0n1p2[/@]; drop the bracket part."""
    return source.split("[", 1)[0].strip()


def normalize_smart_device(device: str) -> str:
    """Prefer the NVMe namespace node over a partition node."""
    match = NVME_PARTITION.match(device)
    return match.group(1) if match else device


async def find_root_disk() -> Optional[str]:
    """
    Detect the physical disk that holds the root filesystem.

    Returns:
        Device path like /dev/nvme0n1, or None when it cannot be determined
    """
    exit_code, stdout, _ = await run_command(["findmnt", "-n", "-o", "SOURCE", "/"], timeout=10)
    if exit_code != 0:
        return None

    source = strip_subvolume(stdout.strip())
    if source.startswith("/dev/"):
        source = os.path.realpath(source)

    disk = source
    # Walk parents (partition -> disk, dm/luks -> partition -> disk)
    for _ in range(8):
        exit_code, stdout, _ = await run_command(["lsblk", "-no", "PKNAME", disk], timeout=10)
        parent = stdout.strip().splitlines()[0].strip() if stdout.strip() else ""
        if exit_code != 0 or not parent:
            break
        disk = f"/dev/{parent}"

    if not disk.startswith("/dev/"):
        logger.error(f"Root source is not a block device: {disk!r}")
        return None

    return normalize_smart_device(disk)


def parse_smart_output(output: str) -> Dict[str, Any]:
    """
    Extract the NVMe health fields from `smartctl -a` output.

    Integer fields are None when absent; critical_warning defaults to 0x00.
    """
    fields: Dict[str, Any] = {}
    for key, pattern in SMART_FIELDS.items():
        match = re.search(pattern, output)
        if key == "critical_warning":
            fields[key] = match.group(1) if match else "0x00"
        else:
            fields[key] = int(match.group(1)) if match else None
    return fields


def assess_smart_health(fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Classify parsed SMART fields.

    - bad: available spare dropped below its threshold
    - warning: critical warning bits set or media/data integrity errors
    - ok: otherwise
    """
    reasons = []
    status = "ok"

    spare = fields.get("available_spare")
    threshold = fields.get("spare_threshold")
    if spare is not None and threshold is not None and spare < threshold:
        status = "bad"
        reasons.append(f"Available spare {spare}% below threshold {threshold}%")

    warning_bits = fields.get("critical_warning", "0x00")
    if int(warning_bits, 16) != 0:
        reasons.append(f"Critical warning {warning_bits}")
        if status == "ok":
            status = "warning"

    media_errors = fields.get("media_errors")
    if media_errors:
        reasons.append(f"{media_errors} media/data integrity errors")
        if status == "ok":
            status = "warning"

    return {"status": status, "reasons": reasons}


async def check_disk_health(device: Optional[str] = None) -> Dict[str, Any]:
    """
    Run smartctl against the root disk and assess it.

    Args:
        device: Explicit device; detected from / when omitted

    Returns:
        Dict with device, fields and assessment, or an error response
    """
    if not check_command_exists("smartctl"):
        return create_error_response(
            "CommandNotFound",
            "smartctl not found (smartmontools)",
            "Install it: sudo pacman -S smartmontools",
        )

    device = device or await find_root_disk()
    if not device:
        return create_error_response("DeviceNotFound", "Could not detect OS disk device for /")

    logger.info(f"Checking SMART health of {device}")
    exit_code, stdout, stderr = await run_command(["sudo", "smartctl", "-a", device], timeout=60)

    # smartctl exit status is a bit mask; bits 0-1 mean it could not talk to the device
    if exit_code & 0b11:
        return create_error_response(
            "CommandError",
            f"smartctl failed on {device}",
            f"Exit code: {exit_code}\n{stderr.strip()}",
        )

    fields = parse_smart_output(stdout)
    return {
        "device": device,
        "smartctl_exit_code": exit_code,
        "fields": fields,
        "assessment": assess_smart_health(fields),
    }


def show_smart_fields(fields: Dict[str, Any]) -> None:
    def fmt(value: Any) -> str:
        return "NA" if value is None else str(value)

    c = ui.console
    c.print()
    c.print(f"Critical Warning: [orange3]{fields['critical_warning']}[/orange3]")
    c.print(f"Temperature: [orange3]{fmt(fields['temperature'])}[/orange3] C")
    c.print(
        f"Available Spare: [orange3]{fmt(fields['available_spare'])}[/orange3]%  "
        f"Threshold: [orange3]{fmt(fields['spare_threshold'])}[/orange3]%"
    )
    c.print(f"Percentage Used: [orange3]{fmt(fields['percentage_used'])}[/orange3]%")
    c.print(f"Media/Data Integrity Errors: [orange3]{fmt(fields['media_errors'])}[/orange3]")
    c.print(f"Error Log Entries: [orange3]{fmt(fields['error_log_entries'])}[/orange3]")


async def disk_health_gate(session: Session) -> Dict[str, Any]:
    """
    Interactive SMART gate run before anything touches the system.

    Raises:
        AbortRun: smartctl missing, disk undetectable, or the user exits
    """
    ui.console.print("\n[orange3]Checking NVMe SMART health...[/orange3]")

    if not check_command_exists("smartctl"):
        ui.failure("Error: smartctl not found (smartmontools).")
        ui.notice("Install it (sudo pacman -S smartmontools), then re-run the script.")
        raise ui.AbortRun("smartctl not found")

    device = await find_root_disk()
    if not device:
        ui.failure("Error: could not detect OS disk device for /.")
        raise ui.AbortRun("root disk not detected")

    ui.console.print(f"\nDevice: [blue]{device}[/blue]")

    while True:
        result = await check_disk_health(device)
        if result.get("error"):
            ui.failure(f"Error: smartctl failed on {device}.")
            session.ledger.record(f"sudo smartctl -a {device}", 1, "SMART check")
            await ui.retry_or_exit("(r)etry SMART check or (e)xit script: ")
            continue

        show_smart_fields(result["fields"])
        assessment = result["assessment"]

        if assessment["status"] == "bad":
            ui.failure("SMART health looks BAD (Available Spare below threshold).")
            await ui.retry_or_exit("(r)etry SMART check or (e)xit script: ")
            continue

        if assessment["status"] == "warning":
            ui.notice("SMART reports warnings. Backups recommended.")
            if (await ui.ask("Proceed anyway? (y)es or (e)xit script: ")).lower() != "y":
                ui.failure("Exiting script...")
                raise ui.AbortRun("SMART warnings")
        else:
            ui.success("SMART health looks OK.")

        return result
