# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Pytest configuration and shared fixtures for manjaro-upkeep tests.
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from manjaro_upkeep.config import UpkeepConfig
from manjaro_upkeep.session import Session


@pytest.fixture(autouse=True)
def no_terminal_title():
    """Keep progress updates away from the real terminal."""
    with patch("manjaro_upkeep.console.set_terminal_title"):
        yield


@pytest.fixture
def mock_os_release_manjaro(tmp_path: Path) -> Path:
    """Create a temporary /etc/os-release file for Manjaro."""
    os_release = tmp_path / "os-release"
    os_release.write_text(
        'NAME="Manjaro Linux"\n'
        'PRETTY_NAME="Manjaro Linux"\n'
        'ID=manjaro\n'
        'ID_LIKE=arch\n'
        'BUILD_ID=rolling\n'
    )
    return os_release


@pytest.fixture
def mock_os_release_ubuntu(tmp_path: Path) -> Path:
    """Create a temporary /etc/os-release file for Ubuntu."""
    os_release = tmp_path / "os-release"
    os_release.write_text(
        'NAME="Ubuntu"\n'
        'VERSION="22.04 LTS (Jammy Jellyfish)"\n'
        'ID=ubuntu\n'
        'ID_LIKE=debian\n'
    )
    return os_release


@pytest.fixture
def mock_subprocess_success():
    """Mock successful subprocess execution."""
    async def _mock_communicate(*args):
        return (b"success output", b"")

    mock_process = MagicMock()
    mock_process.returncode = 0
    mock_process.communicate = _mock_communicate

    async def _create_subprocess(*args, **kwargs):
        return mock_process

    return _create_subprocess


@pytest.fixture
def mock_subprocess_failure():
    """Mock failed subprocess execution."""
    async def _mock_communicate(*args):
        return (b"", b"error output")

    mock_process = MagicMock()
    mock_process.returncode = 1
    mock_process.communicate = _mock_communicate

    async def _create_subprocess(*args, **kwargs):
        return mock_process

    return _create_subprocess


@pytest.fixture
def mock_httpx_response():
    """Create a mock HTTP response factory."""
    def _create_response(
        status_code: int = 200,
        json_data: dict = None,
        text_data: str = None,
        headers: dict = None
    ) -> MagicMock:
        """Create a mock HTTP response with specified attributes."""
        response = MagicMock()
        response.status_code = status_code
        response.headers = headers or {}

        if json_data is not None:
            response.json = MagicMock(return_value=json_data)

        if text_data is not None:
            response.text = text_data

        response.raise_for_status = MagicMock()
        if status_code >= 400:
            response.raise_for_status.side_effect = httpx.HTTPStatusError(
                f"HTTP {status_code}",
                request=MagicMock(),
                response=response
            )

        return response

    return _create_response


@pytest.fixture
def config(tmp_path: Path) -> UpkeepConfig:
    """Config rooted in a temporary directory."""
    home = tmp_path / "home"
    home.mkdir()
    return UpkeepConfig(
        home=home,
        work_dir=tmp_path / "work",
        snapshots_dir=tmp_path / ".snapshots",
        mirrorlist=tmp_path / "mirrorlist",
        gnome_extensions_dir=tmp_path / "extensions",
        grub_config=tmp_path / "grub.cfg",
    )


@pytest.fixture
def session(config: UpkeepConfig) -> Session:
    return Session(config)


@pytest.fixture
def run_step(session: Session):
    """Replace Session.run_step with an AsyncMock that succeeds by default."""
    mock = AsyncMock(return_value=(True, ""))
    with patch.object(session, "run_step", mock):
        yield mock


@pytest.fixture
def sample_smartctl_ok():
    """Healthy NVMe smartctl -a output."""
    return """smartctl 7.4 2023-08-01 r5530 [x86_64-linux-6.6.10-1-MANJARO] (local build)
=== START OF SMART DATA SECTION ===
SMART overall-health self-assessment test result: PASSED

SMART/Health Information (NVMe Log 0x02)
Critical Warning:                   0x00
Temperature:                        38 Celsius
Available Spare:                    100%
Available Spare Threshold:          10%
Percentage Used:                    3%
Data Units Read:                    12,345,678 [6.32 TB]
Media and Data Integrity Errors:    0
Error Information Log Entries:      12
Warning  Comp. Temperature Time:    0
"""


@pytest.fixture
def sample_snapper_list():
    """snapper --csvout --separator | --no-headers list output."""
    return (
        "0||current\n"
        "41|2024-01-02 10:00:00|timeline\n"
        "42|2024-01-09 08:30:00|Update-2024-01-09_08-30-00\n"
        "43|2024-01-10 12:00:00|pre\n"
    )


@pytest.fixture
def sample_repo_listing():
    """pacman -Sl core extra multilib output."""
    return (
        "core linux 6.6.10-1 [installed]\n"
        "extra firefox 121.0-1\n"
        "extra spotify-launcher 0.5.1-1\n"
        "extra obs-studio 30.0.2-1\n"
        "extra visual-studio-code-bin-helper 1.0-1\n"
        "multilib lib32-glibc 2.38-7\n"
        "extra firefox 121.0-1\n"
    )


@pytest.fixture
def sample_category_html():
    """Discourse stable-updates category page."""
    return """<html><body>
<a itemprop='url' href='https://forum.manjaro.org/t/about-the-category/1' class='title raw-link raw-topic-link'>About</a>
<table><tbody>
<tr><td><a itemprop='url' href='https://forum.manjaro.org/t/stable-update-2024-01-10/155555' class='title raw-link raw-topic-link'>[Stable Update] 2024-01-10</a></td></tr>
<tr><td><a itemprop='url' href='https://forum.manjaro.org/t/stable-update-2023-12-20/150000' class='title raw-link raw-topic-link'>[Stable Update] 2023-12-20</a></td></tr>
</tbody></table>
</body></html>"""


@pytest.fixture
def sample_topic_json():
    """Discourse topic JSON with the feedback poll."""
    return {
        "post_stream": {
            "posts": [
                {
                    "id": 1,
                    "polls": [
                        {
                            "name": "poll",
                            "voters": 400,
                            "options": [
                                {"html": "No issue, everything went smoothly", "votes": 360},
                                {"html": "Yes there was an issue. I was able to resolve it myself.", "votes": 30},
                                {"html": "Yes i am currently still having an issue.", "votes": 10},
                            ],
                        }
                    ],
                }
            ]
        }
    }
