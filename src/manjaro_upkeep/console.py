# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Terminal output and interactive prompts.

All output goes through one recording rich Console so the session can be
saved as a plain text log at the end of the run. Prompts run in a worker
thread so background tasks (sudo keepalive) keep ticking while waiting.
"""

import asyncio
import logging
import subprocess
from typing import Iterable, Optional

from rich.console import Console
from rich.rule import Rule

logger = logging.getLogger(__name__)

console = Console(record=True, highlight=False)

PROGRESS_WIDTH = 20
TITLE_PREFIX = "Update"


class AbortRun(Exception):
    """Raised when the user chooses to exit or a precondition fails."""


def section(title: str) -> None:
    """Print a section banner."""
    console.print()
    console.print(Rule(f"[bold magenta]{title}[/bold magenta]", style="magenta"))
    console.print()


def info(message: str) -> None:
    console.print(f"[cyan]{message}[/cyan]")


def success(message: str) -> None:
    console.print(f"[green]{message}[/green]")


def failure(message: str) -> None:
    console.print(f"[red]{message}[/red]")


def notice(message: str) -> None:
    console.print(f"[yellow]{message}[/yellow]")


def plain(message: str) -> None:
    """Print text verbatim (tool output, file paths)."""
    console.print(message, markup=False, highlight=False)


async def ask(prompt: str) -> str:
    """Prompt for a line of input; returns it stripped."""
    answer = await asyncio.to_thread(console.input, f"[yellow]{prompt}[/yellow]")
    return answer.strip()


async def ask_choice(prompt: str, choices: Iterable[str], invalid_message: str) -> str:
    """
    Prompt until one of the single-letter choices is entered.

    Matching is case-insensitive; the lowercased choice is returned.
    """
    valid = {choice.lower() for choice in choices}
    while True:
        answer = (await ask(prompt)).lower()
        if answer in valid:
            return answer
        failure(invalid_message)


async def confirm(prompt: str) -> bool:
    """True only when the answer is y/Y."""
    return (await ask(prompt)).lower() == "y"


async def retry_or_exit(prompt: str = "(r)etry or (e)xit script: ") -> None:
    """
    Ask whether to retry a failed step.

    Returns normally on (r)etry.

    Raises:
        AbortRun: on (e)xit
    """
    choice = await ask_choice(prompt, ["r", "e"], "Please answer with (r)etry or (e)xit.")
    if choice == "e":
        failure("Exiting script...")
        raise AbortRun(prompt.strip())


async def press_enter(prompt: str = "Press Enter to continue...") -> None:
    await ask(prompt)


def open_url(url: str) -> None:
    """Open a URL with xdg-open in the background."""
    try:
        subprocess.Popen(
            ["xdg-open", url],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        logger.warning(f"Could not open {url}: {e}")
        failure(f"Could not open {url}")


def render_progress(current: int, total: int, width: int = PROGRESS_WIDTH) -> str:
    """Render `[#####---------------] 25%`, clamping out-of-range values."""
    if total <= 0:
        total = 1
    current = max(0, min(current, total))
    percent = 100 * current // total
    filled = width * current // total
    return f"[{'#' * filled}{'-' * (width - filled)}] {percent}%"


def set_terminal_title(title: str, tty: Optional[str] = "/dev/tty") -> None:
    """Set the terminal window title without touching the recorded output."""
    try:
        with open(tty, "w") as f:
            f.write(f"\033]0;{title}\007")
    except OSError:
        logger.debug("No controlling terminal for title updates")


class RunDeclined(AbortRun):
    """Raised when the user simply chooses not to continue (not an error)."""
