# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Name matching between AUR / Flatpak identifiers and repo package names.

Pure functions plus a persistent exclusion list; prompting is left to the
caller through the `choose` callback of find_replacements.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

logger = logging.getLogger(__name__)

VARIANT_SUFFIXES = (
    "-git", "-bin", "-vcs", "-aur", "-devel", "-nightly", "-wayland", "-stable", "-legacy",
    "-nox", "-gtk2", "-gtk3", "-gtk4", "-qt4", "-qt5", "-qt6", "-beta", "-alpha",
)

# Last segments of a Flatpak id that say nothing about the app
GENERIC_APPID_SEGMENTS = {"client", "desktop", "app"}

# Returned by a chooser to exclude the package permanently
EXCLUDE = "x"

Chooser = Callable[[str, str, List[str]], Awaitable[Optional[str]]]


def strip_variant_suffix(name: str, suffixes: Sequence[str] = VARIANT_SUFFIXES) -> str:
    """
    Strip the first matching variant suffix once (foo-git -> foo).

    A name that is nothing but a suffix is returned unchanged.
    """
    for suffix in suffixes:
        if name.endswith(suffix):
            base = name[: -len(suffix)]
            return base or name
    return name


def flatpak_base_from_appid(appid: str) -> str:
    """
    Derive a repo-style base name from a Flatpak application id.

    org.mozilla.firefox -> firefox, com.spotify.Client -> spotify
    """
    segments = appid.split(".")
    base = segments[-1]
    if base.lower() in GENERIC_APPID_SEGMENTS and len(segments) > 1:
        base = segments[-2]
    return strip_variant_suffix(base)


def fuzzy_candidates(base: str, repo_packages: Iterable[str]) -> List[str]:
    """
    Repo names containing base as a whole dash/underscore separated word.

    Matching is case-insensitive; repo order is preserved.
    """
    if not base:
        return []
    pattern = re.compile(rf"(^|[-_]){re.escape(base)}($|[-_])", re.IGNORECASE)
    return [name for name in repo_packages if pattern.search(name)]


def normalize_key(name: str) -> str:
    """Lowercase and keep only [a-z0-9]."""
    return re.sub(r"[^a-z0-9]", "", name.lower())


class ExclusionList:
    """
    Newline separated file of names (or paths) the user never wants offered
    again. Blank lines and # comments are ignored.
    """

    def __init__(self, path: Path, entries: Optional[Iterable[str]] = None):
        self.path = path
        self._entries: Set[str] = set(entries or [])

    @classmethod
    def load(cls, path: Path) -> "ExclusionList":
        """Read the list, creating an empty file when it does not exist."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch(exist_ok=True)

        entries = []
        with open(path, "r") as f:
            for line in f:
                line = line.rstrip("\n")
                if not line.strip() or line.lstrip().startswith("#"):
                    continue
                entries.append(line)
        return cls(path, entries)

    def add(self, entry: str) -> None:
        """Append entry to the file unless it is already listed."""
        if entry in self._entries:
            return
        with open(self.path, "a") as f:
            f.write(f"{entry}\n")
        self._entries.add(entry)
        logger.info(f"Added {entry} to {self.path}")

    def __contains__(self, entry: object) -> bool:
        return entry in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._entries))

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class Replacement:
    """An installed AUR package or Flatpak and the repo package to swap in."""

    source: str
    target: str
    exact: bool = True


async def find_replacements(
    names: Sequence[str],
    repo_packages: Sequence[str],
    exclusions: ExclusionList,
    base_for: Callable[[str], str] = strip_variant_suffix,
    choose: Optional[Chooser] = None,
    on_excluded: Optional[Callable[[str], None]] = None,
) -> List[Replacement]:
    """
    Pair installed names with repo packages.

    Args:
        names: Installed AUR package names or Flatpak app ids
        repo_packages: Sync repo package names
        exclusions: Names never to offer; a chooser answer of EXCLUDE adds to it
        base_for: Derives the base name searched in the repos
        choose: Called as choose(name, base, candidates) when only fuzzy
            candidates exist; returns a candidate, None to skip or EXCLUDE.
            Without a chooser only exact matches are returned.
        on_excluded: Called for every name skipped because it is excluded

    Returns:
        Replacements in input order
    """
    repo_set = set(repo_packages)
    found: List[Replacement] = []

    for name in names:
        if name in exclusions:
            if on_excluded:
                on_excluded(name)
            continue

        base = base_for(name)
        if base in repo_set:
            found.append(Replacement(name, base, exact=True))
            continue

        if choose is None:
            continue

        candidates = fuzzy_candidates(base, repo_packages)
        if not candidates:
            continue

        picked = await choose(name, base, candidates)
        if picked == EXCLUDE:
            exclusions.add(name)
        elif picked:
            found.append(Replacement(name, picked, exact=False))

    return found


def in_repos(name: str, base: str, repo_lower: Sequence[str]) -> bool:
    """Case-insensitive substring search of base, then the full name."""
    for needle in (base.lower(), name.lower()):
        if needle and any(needle in pkg for pkg in repo_lower):
            return True
    return False


def repo_availability(
    names: Iterable[str],
    repo_packages: Iterable[str],
    base_for: Callable[[str], str] = strip_variant_suffix,
) -> List[Tuple[str, bool]]:
    """Annotate each name with whether something like it is in the repos."""
    repo_lower = [pkg.lower() for pkg in repo_packages]
    return [(name, in_repos(name, base_for(name), repo_lower)) for name in names]
