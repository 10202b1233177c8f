# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Tests for manjaro_upkeep.matching module.
"""

from unittest.mock import AsyncMock

import pytest

from manjaro_upkeep.matching import (
    EXCLUDE,
    ExclusionList,
    Replacement,
    find_replacements,
    flatpak_base_from_appid,
    fuzzy_candidates,
    normalize_key,
    repo_availability,
    strip_variant_suffix,
)

REPO = ["firefox", "obs-studio", "spotify-launcher", "visual-studio-code-bin-helper", "linux"]


class TestNames:
    def test_strip_variant_suffix(self):
        assert strip_variant_suffix("spotify-bin") == "spotify"
        assert strip_variant_suffix("neovim-git") == "neovim"
        assert strip_variant_suffix("firefox") == "firefox"

    def test_strip_only_once(self):
        assert strip_variant_suffix("foo-qt5-git") == "foo-qt5"

    def test_bare_suffix_kept(self):
        assert strip_variant_suffix("-git") == "-git"

    def test_flatpak_base(self):
        assert flatpak_base_from_appid("org.mozilla.firefox") == "firefox"
        assert flatpak_base_from_appid("com.spotify.Client") == "spotify"
        assert flatpak_base_from_appid("com.obsproject.Studio") == "Studio"

    def test_normalize_key(self):
        assert normalize_key("Visual-Studio_Code 2") == "visualstudiocode2"

    def test_fuzzy_candidates_whole_words(self):
        assert fuzzy_candidates("spotify", REPO) == ["spotify-launcher"]
        assert fuzzy_candidates("Studio", REPO) == ["obs-studio", "visual-studio-code-bin-helper"]
        assert fuzzy_candidates("code", REPO) == ["visual-studio-code-bin-helper"]
        assert fuzzy_candidates("fire", REPO) == []
        assert fuzzy_candidates("", REPO) == []


class TestExclusionList:
    def test_load_creates_file(self, tmp_path):
        path = tmp_path / "sub" / ".aur_excluded_pkg"
        exclusions = ExclusionList.load(path)

        assert path.exists()
        assert len(exclusions) == 0

    def test_load_skips_comments_and_blanks(self, tmp_path):
        path = tmp_path / "excluded"
        path.write_text("# keep these\nspotify\n\n  \nzoom\n")

        exclusions = ExclusionList.load(path)

        assert "spotify" in exclusions
        assert "# keep these" not in exclusions
        assert list(exclusions) == ["spotify", "zoom"]

    def test_add_is_idempotent(self, tmp_path):
        path = tmp_path / "excluded"
        exclusions = ExclusionList.load(path)

        exclusions.add("spotify")
        exclusions.add("spotify")

        assert path.read_text() == "spotify\n"
        assert "spotify" in ExclusionList.load(path)


class TestFindReplacements:
    @pytest.mark.asyncio
    async def test_exact_only_without_chooser(self, tmp_path):
        exclusions = ExclusionList.load(tmp_path / "excluded")
        found = await find_replacements(["firefox-bin", "spotify"], REPO, exclusions)

        assert found == [Replacement("firefox-bin", "firefox", exact=True)]

    @pytest.mark.asyncio
    async def test_chooser_picks_candidate(self, tmp_path):
        exclusions = ExclusionList.load(tmp_path / "excluded")
        choose = AsyncMock(return_value="spotify-launcher")

        found = await find_replacements(["spotify"], REPO, exclusions, choose=choose)

        assert found == [Replacement("spotify", "spotify-launcher", exact=False)]
        choose.assert_awaited_once_with("spotify", "spotify", ["spotify-launcher"])

    @pytest.mark.asyncio
    async def test_chooser_skip(self, tmp_path):
        exclusions = ExclusionList.load(tmp_path / "excluded")
        found = await find_replacements(["spotify"], REPO, exclusions, choose=AsyncMock(return_value=None))
        assert found == []
        assert len(exclusions) == 0

    @pytest.mark.asyncio
    async def test_chooser_exclude_persists(self, tmp_path):
        path = tmp_path / "excluded"
        exclusions = ExclusionList.load(path)

        found = await find_replacements(["spotify"], REPO, exclusions, choose=AsyncMock(return_value=EXCLUDE))

        assert found == []
        assert path.read_text() == "spotify\n"

    @pytest.mark.asyncio
    async def test_excluded_names_are_reported(self, tmp_path):
        path = tmp_path / "excluded"
        path.write_text("firefox-bin\n")
        exclusions = ExclusionList.load(path)
        reported = []
        choose = AsyncMock()

        found = await find_replacements(
            ["firefox-bin"], REPO, exclusions, choose=choose, on_excluded=reported.append
        )

        assert found == []
        assert reported == ["firefox-bin"]
        choose.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_candidates_means_no_prompt(self, tmp_path):
        exclusions = ExclusionList.load(tmp_path / "excluded")
        choose = AsyncMock()

        assert await find_replacements(["zoom"], REPO, exclusions, choose=choose) == []
        choose.assert_not_called()

    @pytest.mark.asyncio
    async def test_flatpak_base(self, tmp_path):
        exclusions = ExclusionList.load(tmp_path / "excluded")
        found = await find_replacements(
            ["org.mozilla.firefox"], REPO, exclusions, base_for=flatpak_base_from_appid
        )
        assert found == [Replacement("org.mozilla.firefox", "firefox")]


def test_repo_availability():
    result = repo_availability(["spotify", "zoom-bin", "OBS"], REPO)
    assert result == [("spotify", True), ("zoom-bin", False), ("OBS", True)]
