# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Tests for manjaro_upkeep.server module.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from manjaro_upkeep.server import (
    call_tool,
    find_repo_replacements,
    get_stable_update_poll,
    list_tools,
)

REPO = ["firefox", "obs-studio", "spotify-launcher"]


class TestTools:
    @pytest.mark.asyncio
    async def test_tool_names(self):
        names = {tool.name for tool in await list_tools()}
        assert names == {
            "check_disk_health",
            "list_recent_snapshots",
            "get_stable_update_poll",
            "check_updates_dry_run",
            "list_orphan_packages",
            "find_pacfiles",
            "find_repo_replacements",
            "get_system_overview",
        }

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        with pytest.raises(ValueError):
            await call_tool("remove_everything", {})

    @pytest.mark.asyncio
    async def test_arch_only_tool_elsewhere(self):
        with patch("manjaro_upkeep.server.IS_ARCH", False):
            result = await call_tool("list_orphan_packages", {})
        assert "only available on Arch Linux" in result[0].text

    @pytest.mark.asyncio
    async def test_orphans_as_json(self):
        listing = {"orphan_count": 1, "orphans": ["libfoo"]}
        with (
            patch("manjaro_upkeep.server.IS_ARCH", True),
            patch("manjaro_upkeep.server.list_orphan_packages", AsyncMock(return_value=listing)),
        ):
            result = await call_tool("list_orphan_packages", {})
        assert json.loads(result[0].text) == listing

    @pytest.mark.asyncio
    async def test_snapshots_use_given_config(self):
        mock_list = AsyncMock(return_value={"config": "home", "count": 0, "snapshots": []})
        with (
            patch("manjaro_upkeep.server.list_recent_snapshots", mock_list),
            patch("manjaro_upkeep.server.detect_snapper_config", AsyncMock()) as mock_detect,
        ):
            await call_tool("list_recent_snapshots", {"config": "home", "max_age_days": 3})

        mock_list.assert_awaited_once_with("home", 3)
        mock_detect.assert_not_called()


class TestStableUpdatePoll:
    @pytest.mark.asyncio
    async def test_needs_attention_added(self, config):
        poll = {"topic_url": "https://forum.manjaro.org/t/x/1", "voters": 150, "no_issue_votes": 140,
                "no_issue_percent": 93}
        with patch("manjaro_upkeep.server.fetch_stable_update_poll", AsyncMock(return_value=poll)):
            result = await get_stable_update_poll(config)
        assert result["needs_attention"] is True

    @pytest.mark.asyncio
    async def test_error_passthrough(self, config):
        error = {"error": True, "type": "TimeoutError", "message": "timed out"}
        with patch("manjaro_upkeep.server.fetch_stable_update_poll", AsyncMock(return_value=error)):
            assert await get_stable_update_poll(config) == error


class TestFindRepoReplacements:
    @pytest.mark.asyncio
    async def test_aur(self, config):
        with (
            patch("manjaro_upkeep.server.list_foreign_packages", AsyncMock(return_value=["firefox-bin", "spotify"])),
            patch("manjaro_upkeep.server.list_repo_packages", AsyncMock(return_value=REPO)),
        ):
            result = await find_repo_replacements(config, "aur")

        assert result == {
            "kind": "aur",
            "checked": 2,
            "excluded": [],
            "count": 1,
            "replacements": [{"installed": "firefox-bin", "repo_package": "firefox"}],
        }
        assert not config.aur_exclude_file.exists()

    @pytest.mark.asyncio
    async def test_flatpak_with_exclusions(self, config):
        config.flatpak_exclude_file.write_text("org.mozilla.firefox\n")
        appids = ["org.mozilla.firefox", "com.obsproject.Studio"]
        with (
            patch("manjaro_upkeep.flatpak.list_app_ids", AsyncMock(return_value=appids)),
            patch("manjaro_upkeep.server.list_repo_packages", AsyncMock(return_value=REPO)),
        ):
            result = await find_repo_replacements(config, "flatpak")

        assert result["excluded"] == ["org.mozilla.firefox"]
        assert result["count"] == 0
        assert config.flatpak_exclude_file.read_text() == "org.mozilla.firefox\n"

    @pytest.mark.asyncio
    async def test_unknown_kind(self, config):
        result = await find_repo_replacements(config, "snap")
        assert result["error"] is True
        assert result["type"] == "InvalidArgument"
