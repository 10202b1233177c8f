# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Run session state: error ledger, progress, sudo keepalive and the session log.
"""

import asyncio
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from rich.markup import escape

from . import console as ui
from .config import UpkeepConfig
from .utils import run_attached, run_command, stream_command

logger = logging.getLogger(__name__)

TOTAL_STEPS = 5
SUDO_REFRESH_SECONDS = 60


@dataclass
class ErrorLedger:
    """Failed commands collected over the run for the closing report."""

    entries: List[str] = field(default_factory=list)

    def record(self, command: str, exit_code: int, context: Optional[str] = None) -> None:
        entry = f"[exit {exit_code}] {command}"
        if context:
            entry += f" ({context})"
        self.entries.append(entry)
        logger.warning(f"Recorded failure: {entry}")

    @property
    def count(self) -> int:
        return len(self.entries)

    def print_summary(self, log_path: Optional[Path] = None) -> None:
        if not self.entries:
            ui.success("No errors detected during this run.")
            return

        ui.console.print(f"[red]Total errors:[/red] [orange3]{self.count}[/orange3]")
        ui.console.print()
        ui.console.print("Errors list:")
        ui.console.print()
        for i, entry in enumerate(self.entries, start=1):
            ui.console.print(f"[red]{i})[/red] ", end="")
            ui.plain(entry)

        if log_path:
            ui.console.print()
            ui.console.print(f"[blue]Full log:[/blue] {log_path}")


def session_log_name(prefix: str, now: Optional[datetime] = None) -> str:
    """File name of the persisted log, e.g. Update-Monday_06_January_09-15PM.log."""
    now = now or datetime.now()
    return f"{prefix}{now.strftime('%A_%d_%B_%I-%M%p')}.log"


@dataclass
class Session:
    """Everything a maintenance run shares between steps."""

    config: UpkeepConfig
    ledger: ErrorLedger = field(default_factory=ErrorLedger)
    current_step: int = 0
    total_steps: int = TOTAL_STEPS
    repo_packages: Optional[List[str]] = None
    started_at: datetime = field(default_factory=datetime.now)
    _keepalive: Optional[asyncio.Task] = field(default=None, init=False, repr=False)

    def advance(self) -> None:
        """Mark one major block as done and refresh the title bar."""
        self.current_step += 1
        self.show_progress()

    def show_progress(self) -> None:
        bar = ui.render_progress(self.current_step, self.total_steps)
        ui.set_terminal_title(f"{ui.TITLE_PREFIX}  {bar}")

    async def run_step(
        self,
        cmd: List[str],
        input_data: Optional[str] = None,
        record_failure: bool = True,
    ) -> Tuple[bool, str]:
        """
        Run a command with live output and report the outcome.

        Args:
            cmd: Command and arguments
            input_data: Answers piped to stdin (e.g. for pacman -Scc)
            record_failure: Add a failure to the error ledger

        Returns:
            Tuple of (succeeded, captured output)
        """
        label = " ".join(cmd)
        ui.console.print("\n\n")
        ui.console.print(f"[cyan]Running: {escape(label)}[/cyan]")

        try:
            exit_code, output = await stream_command(cmd, on_line=ui.plain, input_data=input_data)
        except FileNotFoundError:
            exit_code, output = 127, f"{cmd[0]}: command not found"
            ui.plain(output)

        if exit_code != 0:
            ui.failure(f"Error: Command '{escape(label)}' failed with exit code {exit_code}")
            if record_failure:
                self.ledger.record(label, exit_code)
            return False, output

        ui.success(f"Command '{escape(label)}' completed successfully.")
        return True, output

    async def prime_sudo(self) -> None:
        """Ask for the sudo password once and keep the timestamp fresh."""
        exit_code = await run_attached(["sudo", "-v"])
        if exit_code != 0:
            raise ui.AbortRun("sudo authentication failed")
        self._keepalive = asyncio.create_task(self._refresh_sudo())

    async def _refresh_sudo(self) -> None:
        while True:
            await asyncio.sleep(SUDO_REFRESH_SECONDS)
            exit_code, _, _ = await run_command(["sudo", "-n", "-v"], skip_sudo_check=True)
            if exit_code != 0:
                logger.warning("sudo keepalive lost its credentials")
                return

    async def stop_sudo_keepalive(self) -> None:
        if self._keepalive is None:
            return
        self._keepalive.cancel()
        try:
            await self._keepalive
        except asyncio.CancelledError:
            pass
        self._keepalive = None

    def prepare_work_dir(self) -> None:
        """Start from an empty scratch directory."""
        shutil.rmtree(self.config.work_dir, ignore_errors=True)
        self.config.work_dir.mkdir(parents=True, exist_ok=True)

    def save_log(self) -> Path:
        """
        Persist the recorded console output as plain text in $HOME.

        Older logs with the same prefix are removed first so the newest log's
        mtime marks the last completed update.
        """
        home = self.config.home
        for old in home.glob(f"{self.config.log_prefix}*.log"):
            if old.is_file():
                old.unlink()

        log_path = home / session_log_name(self.config.log_prefix, self.started_at)
        text = ui.console.export_text(clear=False, styles=False)
        log_path.write_text(text)
        logger.info(f"Session log saved to {log_path}")
        return log_path

    async def finish(self, wait_for_enter: bool = True) -> Path:
        """Print the error summary, save the log and tear down."""
        log_path = self.config.home / session_log_name(self.config.log_prefix, self.started_at)
        self.ledger.print_summary(log_path)
        ui.console.print()
        ui.set_terminal_title(ui.TITLE_PREFIX)
        await self.stop_sudo_keepalive()

        if wait_for_enter:
            await ui.press_enter("Press Enter to close...")

        saved = self.save_log()
        shutil.rmtree(self.config.work_dir, ignore_errors=True)
        return saved
