# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Utility functions for manjaro-upkeep.
Provides platform detection, command execution and error formatting.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

# AUR helpers in order of preference
AUR_HELPERS = ["yay", "paru"]


def _read_os_release() -> str:
    try:
        with open("/etc/os-release", "r") as f:
            return f.read()
    except (FileNotFoundError, PermissionError):
        return ""


def is_arch_linux() -> bool:
    """
    Detect if running on Arch Linux or an Arch-based distribution.

    Returns:
        True if /etc/arch-release exists or os-release names arch
    """
    if Path("/etc/arch-release").exists():
        return True

    content = _read_os_release().lower()
    for line in content.splitlines():
        if line.startswith("id=") or line.startswith("id_like="):
            if "arch" in line or "manjaro" in line:
                return True
    return False


def is_manjaro() -> bool:
    """Detect Manjaro specifically (pacman-mirrors and the Manjaro keyring)."""
    if Path("/etc/manjaro-release").exists():
        return True
    return "id=manjaro" in _read_os_release().lower()


IS_ARCH = is_arch_linux()
IS_MANJARO = is_manjaro()


def check_command_exists(command: str) -> bool:
    """
    Check if a command is available in PATH.

    Args:
        command: Command name

    Returns:
        True if the command exists
    """
    try:
        return os.system(f"which {command} > /dev/null 2>&1") == 0
    except Exception as e:
        logger.debug(f"Command check failed for {command}: {e}")
        return False


def get_aur_helper() -> Optional[str]:
    """
    Return the first available AUR helper (yay preferred over paru).

    Returns:
        Helper name or None when no helper is installed
    """
    for helper in AUR_HELPERS:
        if check_command_exists(helper):
            return helper
    return None


async def _sudo_credentials_cached() -> bool:
    process = await asyncio.create_subprocess_exec(
        "sudo", "-n", "true",
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    await process.communicate()
    return process.returncode == 0


async def run_command(
    cmd: List[str],
    timeout: Optional[float] = 30,
    check: bool = False,
    skip_sudo_check: bool = False,
    input_data: Optional[str] = None,
) -> Tuple[int, str, str]:
    """
    Execute a command asynchronously and capture its output.

    Args:
        cmd: Command and arguments
        timeout: Seconds before asyncio.TimeoutError is raised (None waits forever)
        check: Raise RuntimeError on non-zero exit
        skip_sudo_check: Do not probe `sudo -n true` before sudo commands
        input_data: Text written to the command's stdin

    Returns:
        Tuple of (exit_code, stdout, stderr)
    """
    if cmd and cmd[0] == "sudo" and not skip_sudo_check:
        if not await _sudo_credentials_cached():
            logger.warning(f"Sudo password not cached, refusing to run: {' '.join(cmd)}")
            return (
                1,
                "",
                "Sudo password required. Run 'sudo -v' first to cache credentials.",
            )

    logger.debug(f"Running command: {' '.join(cmd)}")

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.PIPE if input_data is not None else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    stdin_bytes = input_data.encode("utf-8") if input_data is not None else None
    try:
        stdout_b, stderr_b = await asyncio.wait_for(
            process.communicate(stdin_bytes) if stdin_bytes is not None else process.communicate(),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.error(f"Command timed out after {timeout}s: {' '.join(cmd)}")
        try:
            process.kill()
        except (ProcessLookupError, AttributeError):
            pass
        raise

    stdout = stdout_b.decode("utf-8", errors="replace")
    stderr = stderr_b.decode("utf-8", errors="replace")
    exit_code = process.returncode

    if check and exit_code != 0:
        raise RuntimeError(f"Command failed with exit code {exit_code}: {stderr}")

    return exit_code, stdout, stderr


async def stream_command(
    cmd: List[str],
    on_line: Optional[Callable[[str], None]] = None,
    input_data: Optional[str] = None,
) -> Tuple[int, str]:
    """
    Execute a command, forwarding each output line as it arrives.

    stderr is merged into stdout so the captured text reads like the
    terminal did.

    Args:
        cmd: Command and arguments
        on_line: Called with every line (without trailing newline)
        input_data: Text written to stdin before it is closed

    Returns:
        Tuple of (exit_code, combined output)
    """
    logger.debug(f"Streaming command: {' '.join(cmd)}")

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.PIPE if input_data is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )

    if input_data is not None:
        process.stdin.write(input_data.encode("utf-8"))
        await process.stdin.drain()
        process.stdin.close()

    lines = []
    while True:
        raw = await process.stdout.readline()
        if not raw:
            break
        line = raw.decode("utf-8", errors="replace").rstrip("\n")
        lines.append(line)
        if on_line:
            on_line(line)

    exit_code = await process.wait()
    return exit_code, "\n".join(lines)


async def run_attached(cmd: List[str]) -> int:
    """
    Run an interactive command with the terminal attached (editors, sudo -v).

    Returns:
        Exit code, or 127 when the executable is missing
    """
    logger.debug(f"Running attached command: {' '.join(cmd)}")
    try:
        process = await asyncio.create_subprocess_exec(*cmd)
    except FileNotFoundError:
        logger.error(f"Command not found: {cmd[0]}")
        return 127
    return await process.wait()


def create_error_response(
    error_type: str,
    message: str,
    details: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create a standardized error response.

    Args:
        error_type: Error category (e.g. "NotFound", "CommandError")
        message: Human readable message
        details: Optional extra context (stderr, exit code)

    Returns:
        Error dict
    """
    response = {
        "error": True,
        "type": error_type,
        "message": message,
    }
    if details:
        response["details"] = details
    return response


def count_lines(output: str) -> int:
    """Count non-empty lines of command output."""
    return len([line for line in output.splitlines() if line.strip()])
