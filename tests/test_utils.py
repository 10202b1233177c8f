# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Tests for manjaro_upkeep.utils module.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from manjaro_upkeep.utils import (
    check_command_exists,
    count_lines,
    create_error_response,
    get_aur_helper,
    is_arch_linux,
    is_manjaro,
    run_attached,
    run_command,
    stream_command,
)


class TestPlatformDetection:
    """Test platform detection functionality."""

    def test_is_arch_linux_with_arch_release(self):
        """Test detection via /etc/arch-release file."""
        with patch("manjaro_upkeep.utils.Path") as mock_path:
            mock_path.return_value.exists.return_value = True
            assert is_arch_linux() is True

    def test_is_arch_linux_manjaro_os_release(self, mock_os_release_manjaro):
        """Manjaro names itself in ID and arch in ID_LIKE."""
        with (
            patch("manjaro_upkeep.utils.Path") as mock_path,
            patch("builtins.open", create=True) as mock_open,
        ):
            mock_path.return_value.exists.return_value = False
            mock_open.return_value.__enter__.return_value.read.return_value = (
                mock_os_release_manjaro.read_text()
            )

            assert is_arch_linux() is True
            assert is_manjaro() is True

    def test_is_arch_linux_not_arch(self, mock_os_release_ubuntu):
        """Test detection on non-Arch system."""
        with (
            patch("manjaro_upkeep.utils.Path") as mock_path,
            patch("builtins.open", create=True) as mock_open,
        ):
            mock_path.return_value.exists.return_value = False
            mock_open.return_value.__enter__.return_value.read.return_value = (
                mock_os_release_ubuntu.read_text()
            )

            assert is_arch_linux() is False
            assert is_manjaro() is False

    def test_is_arch_linux_no_files(self):
        """Test detection when neither file exists."""
        with (
            patch("manjaro_upkeep.utils.Path") as mock_path,
            patch("builtins.open", side_effect=FileNotFoundError),
        ):
            mock_path.return_value.exists.return_value = False
            assert is_arch_linux() is False


class TestCommandExecution:
    """Test async command execution."""

    @pytest.mark.asyncio
    async def test_run_command_success(self, mock_subprocess_success):
        """Test successful command execution."""
        with patch("asyncio.create_subprocess_exec", new=mock_subprocess_success):
            exit_code, stdout, stderr = await run_command(["echo", "hello"], skip_sudo_check=True)

            assert exit_code == 0
            assert stdout == "success output"
            assert stderr == ""

    @pytest.mark.asyncio
    async def test_run_command_failure_with_check(self, mock_subprocess_failure):
        """Test command failure with check=True raises exception."""
        with patch("asyncio.create_subprocess_exec", new=mock_subprocess_failure):
            with pytest.raises(RuntimeError, match="Command failed with exit code 1"):
                await run_command(["false"], check=True, skip_sudo_check=True)

    @pytest.mark.asyncio
    async def test_run_command_failure_without_check(self, mock_subprocess_failure):
        """Test command failure with check=False returns error."""
        with patch("asyncio.create_subprocess_exec", new=mock_subprocess_failure):
            exit_code, stdout, stderr = await run_command(["false"], skip_sudo_check=True)

            assert exit_code == 1
            assert stdout == ""
            assert stderr == "error output"

    @pytest.mark.asyncio
    async def test_run_command_passes_input(self):
        """Answers are written to stdin (pacman -Scc)."""
        mock_process = MagicMock()
        mock_process.returncode = 0
        mock_process.communicate = AsyncMock(return_value=(b"", b""))

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=mock_process)):
            await run_command(["cat"], skip_sudo_check=True, input_data="y\ny\n")

        mock_process.communicate.assert_awaited_once_with(b"y\ny\n")

    @pytest.mark.asyncio
    async def test_run_command_timeout(self):
        """Test command timeout handling."""
        async def _slow_communicate():
            await asyncio.sleep(10)
            return (b"", b"")

        mock_process = MagicMock()
        mock_process.communicate = _slow_communicate

        async def _create_slow_subprocess(*args, **kwargs):
            return mock_process

        with patch("asyncio.create_subprocess_exec", new=_create_slow_subprocess):
            with pytest.raises(asyncio.TimeoutError):
                await run_command(["sleep", "10"], timeout=0.1, skip_sudo_check=True)

        mock_process.kill.assert_called_once()

    @pytest.mark.asyncio
    async def test_run_command_sudo_password_not_cached(self):
        """Test sudo command when password is not cached."""
        async def _mock_communicate():
            return (b"", b"sudo: a password is required")

        mock_test_process = MagicMock()
        mock_test_process.returncode = 1
        mock_test_process.communicate = _mock_communicate

        call_count = 0

        async def _create_subprocess(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            return mock_test_process

        with patch("asyncio.create_subprocess_exec", new=_create_subprocess):
            exit_code, stdout, stderr = await run_command(["sudo", "pacman", "-Syu"])

            assert exit_code == 1
            assert "Sudo password required" in stderr
            assert call_count == 1  # Only the probe, not the actual command


class TestStreamCommand:
    """Test live output streaming."""

    @pytest.mark.asyncio
    async def test_stream_command_forwards_lines(self):
        lines = [b"first\n", b"second\n", b""]

        mock_process = MagicMock()
        mock_process.stdout.readline = AsyncMock(side_effect=lines)
        mock_process.wait = AsyncMock(return_value=0)

        seen = []
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=mock_process)):
            exit_code, output = await stream_command(["pacman", "-Syu"], on_line=seen.append)

        assert exit_code == 0
        assert seen == ["first", "second"]
        assert output == "first\nsecond"

    @pytest.mark.asyncio
    async def test_stream_command_writes_input(self):
        mock_process = MagicMock()
        mock_process.stdin.drain = AsyncMock()
        mock_process.stdout.readline = AsyncMock(side_effect=[b""])
        mock_process.wait = AsyncMock(return_value=1)

        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=mock_process)):
            exit_code, output = await stream_command(["pacman", "-Scc"], input_data="y\n")

        assert exit_code == 1
        assert output == ""
        mock_process.stdin.write.assert_called_once_with(b"y\n")
        mock_process.stdin.close.assert_called_once()


class TestRunAttached:
    @pytest.mark.asyncio
    async def test_missing_executable(self):
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError)):
            assert await run_attached(["meld", "a", "b"]) == 127

    @pytest.mark.asyncio
    async def test_returns_exit_code(self):
        mock_process = MagicMock()
        mock_process.wait = AsyncMock(return_value=0)
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=mock_process)):
            assert await run_attached(["sudo", "-v"]) == 0


class TestErrorHandling:
    """Test error response creation."""

    def test_create_error_response_basic(self):
        response = create_error_response("TestError", "Something went wrong")

        assert response["error"] is True
        assert response["type"] == "TestError"
        assert response["message"] == "Something went wrong"
        assert "details" not in response

    def test_create_error_response_with_details(self):
        response = create_error_response("TestError", "Something went wrong", details="More information here")

        assert response["details"] == "More information here"


class TestCommandExistence:
    """Test command existence checking."""

    def test_check_command_exists_found(self):
        with patch("os.system", return_value=0):
            assert check_command_exists("ls") is True

    def test_check_command_exists_not_found(self):
        with patch("os.system", return_value=1):
            assert check_command_exists("nonexistent_command_xyz") is False

    def test_get_aur_helper_prefers_yay(self):
        with patch("manjaro_upkeep.utils.check_command_exists", return_value=True):
            assert get_aur_helper() == "yay"

    def test_get_aur_helper_falls_back_to_paru(self):
        with patch("manjaro_upkeep.utils.check_command_exists", side_effect=lambda c: c == "paru"):
            assert get_aur_helper() == "paru"

    def test_get_aur_helper_none(self):
        with patch("manjaro_upkeep.utils.check_command_exists", return_value=False):
            assert get_aur_helper() is None


def test_count_lines_ignores_blank_lines():
    assert count_lines("a\n\n b \n") == 2
    assert count_lines("") == 0
