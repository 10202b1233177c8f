# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Tests for manjaro_upkeep.session module.
"""

from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest

from manjaro_upkeep import console as ui
from manjaro_upkeep.session import ErrorLedger, Session, session_log_name


class TestErrorLedger:
    def test_record_formats_entry(self):
        ledger = ErrorLedger()
        ledger.record("sudo pacman -Syyu --noconfirm", 1)
        ledger.record("snapper create", 2, "snapshot gate")

        assert ledger.count == 2
        assert ledger.entries == [
            "[exit 1] sudo pacman -Syyu --noconfirm",
            "[exit 2] snapper create (snapshot gate)",
        ]

    def test_summary_without_errors(self):
        with patch.object(ui, "success") as mock_success:
            ErrorLedger().print_summary()
        mock_success.assert_called_once_with("No errors detected during this run.")


def test_session_log_name():
    name = session_log_name("Update-", datetime(2024, 1, 8, 21, 15))
    assert name == "Update-Monday_08_January_09-15PM.log"


class TestRunStep:
    @pytest.mark.asyncio
    async def test_success(self, session):
        with patch("manjaro_upkeep.session.stream_command", AsyncMock(return_value=(0, "done"))):
            ok, output = await session.run_step(["flatpak", "update", "-y"])

        assert ok is True
        assert output == "done"
        assert session.ledger.count == 0

    @pytest.mark.asyncio
    async def test_failure_is_recorded(self, session):
        with patch("manjaro_upkeep.session.stream_command", AsyncMock(return_value=(1, "boom"))):
            ok, output = await session.run_step(["flatpak", "repair", "--user"])

        assert ok is False
        assert output == "boom"
        assert session.ledger.entries == ["[exit 1] flatpak repair --user"]

    @pytest.mark.asyncio
    async def test_failure_not_recorded_on_request(self, session):
        with patch("manjaro_upkeep.session.stream_command", AsyncMock(return_value=(3, ""))):
            ok, _ = await session.run_step(["false"], record_failure=False)

        assert ok is False
        assert session.ledger.count == 0

    @pytest.mark.asyncio
    async def test_missing_executable(self, session):
        with patch("manjaro_upkeep.session.stream_command", AsyncMock(side_effect=FileNotFoundError)):
            ok, output = await session.run_step(["gext", "update", "-y"])

        assert ok is False
        assert "command not found" in output
        assert session.ledger.entries == ["[exit 127] gext update -y"]

    @pytest.mark.asyncio
    async def test_input_is_forwarded(self, session):
        mock_stream = AsyncMock(return_value=(0, ""))
        with patch("manjaro_upkeep.session.stream_command", mock_stream):
            await session.run_step(["sudo", "pacman", "-Scc"], input_data="y\ny\n")

        assert mock_stream.call_args.kwargs["input_data"] == "y\ny\n"


class TestProgress:
    def test_advance(self, session):
        with patch.object(ui, "set_terminal_title") as mock_title:
            session.advance()
            session.advance()

        assert session.current_step == 2
        mock_title.assert_called_with("Update  [########------------] 40%")


class TestSudo:
    @pytest.mark.asyncio
    async def test_prime_sudo_failure_aborts(self, session):
        with patch("manjaro_upkeep.session.run_attached", AsyncMock(return_value=1)):
            with pytest.raises(ui.AbortRun):
                await session.prime_sudo()

    @pytest.mark.asyncio
    async def test_prime_and_stop_keepalive(self, session):
        with (
            patch("manjaro_upkeep.session.run_attached", AsyncMock(return_value=0)),
            patch("manjaro_upkeep.session.run_command", AsyncMock(return_value=(0, "", ""))),
        ):
            await session.prime_sudo()
            assert session._keepalive is not None
            await session.stop_sudo_keepalive()

        assert session._keepalive is None


class TestLogAndFinish:
    def test_save_log_replaces_old_logs(self, session):
        home = session.config.home
        (home / "Update-Sunday_07_January_10-00AM.log").write_text("old")
        (home / "notes.log").write_text("keep")

        ui.console.print("hello from the run")
        log_path = session.save_log()

        assert log_path.parent == home
        assert log_path.name.startswith("Update-")
        assert not (home / "Update-Sunday_07_January_10-00AM.log").exists()
        assert (home / "notes.log").exists()
        text = log_path.read_text()
        assert "hello from the run" in text
        assert "\x1b[" not in text

    @pytest.mark.asyncio
    async def test_finish_removes_work_dir(self, session):
        session.prepare_work_dir()
        (session.config.work_dir / "scratch.txt").write_text("x")

        log_path = await session.finish(wait_for_enter=False)

        assert log_path.exists()
        assert not session.config.work_dir.exists()

    @pytest.mark.asyncio
    async def test_finish_waits_for_enter(self, session):
        with patch.object(ui.console, "input", return_value="") as mock_input:
            await session.finish()
        mock_input.assert_called_once()
