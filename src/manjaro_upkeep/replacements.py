# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Swap AUR packages and Flatpaks for official repo packages.
"""

import logging
from typing import Dict, List, Optional, Sequence

from rich.markup import escape
from rich.table import Table

from . import aur
from . import console as ui
from . import flatpak
from . import pacman
from .matching import (
    EXCLUDE,
    Chooser,
    ExclusionList,
    Replacement,
    find_replacements,
    flatpak_base_from_appid,
    repo_availability,
    strip_variant_suffix,
)
from .session import Session
from .utils import get_aur_helper

logger = logging.getLogger(__name__)


def make_chooser(kind: str) -> Chooser:
    """
    Build the interactive fuzzy match picker for AUR or Flatpak names.
    """

    async def choose(name: str, base: str, candidates: List[str]) -> Optional[str]:
        ui.console.print()
        ui.notice(f"Fuzzy matches for '{escape(base)}' (from {kind} '{escape(name)}'):")
        for i, candidate in enumerate(candidates, start=1):
            ui.plain(f" [{i}] {candidate}")
        ui.plain(" [0] Skip")
        ui.plain(f" [x] Exclude '{name}' permanently")

        while True:
            answer = (await ui.ask("Choose number / 0 / x: ")).lower()
            if answer == EXCLUDE:
                return EXCLUDE
            if answer.isdigit() and 0 <= int(answer) <= len(candidates):
                index = int(answer)
                return candidates[index - 1] if index else None

    return choose


def _report_excluded(name: str) -> None:
    ui.console.print(f"Excluded from replacement (persistent): [blue]{escape(name)}[/blue]")


async def _repo_packages(session: Session) -> List[str]:
    if session.repo_packages is None:
        session.repo_packages = await pacman.list_repo_packages(session.config.repo_sections)
    return session.repo_packages


async def replace_aur_with_repo(session: Session, helper: Optional[str] = None) -> List[Replacement]:
    """
    Offer to replace AUR packages that now exist in the official repos.

    Returns:
        Replacements that went through
    """
    ui.console.print("\n\n")
    ui.info("Checking for AUR packages that now exist in Manjaro repos...")

    helper = helper or get_aur_helper()
    if helper is None:
        ui.notice("No AUR helper (yay or paru) found, skipping AUR replacement.")
        return []

    exclusions = ExclusionList.load(session.config.aur_exclude_file)
    repo_packages = await _repo_packages(session)

    aur_packages = await pacman.list_foreign_packages()
    if not aur_packages:
        ui.console.print("\n[orange3]No AUR packages detected.[/orange3][green] Nothing to check.[/green]")
        return []

    found = await find_replacements(
        aur_packages,
        repo_packages,
        exclusions,
        base_for=strip_variant_suffix,
        choose=make_chooser("AUR"),
        on_excluded=_report_excluded,
    )
    if not found:
        ui.console.print(
            "[orange3]No AUR packages found in official repos (after exclusions).[/orange3]"
            "[cyan] Nothing to replace.[/cyan]"
        )
        return []

    table = Table(title="The following AUR packages are now in the official repos:", title_justify="left")
    table.add_column("AUR Package")
    table.add_column("Repo Package")
    for item in found:
        table.add_row(item.source, item.target)
    ui.console.print()
    ui.console.print(table)
    ui.console.print()

    if not await ui.confirm("Proceed with replacing them? (y)es or any other key to skip: "):
        ui.failure("Replacement operation skipped by user.")
        return []

    replaced = []
    for item in found:
        ui.info(f"Removing AUR package: {escape(item.source)}...")
        if not await aur.remove_package(session, helper, item.source):
            ui.failure(f"Failed to remove {escape(item.source)}. Skipping this package.")
            continue

        ui.info(f"Installing repo package: {escape(item.target)}...")
        ok, _ = await pacman.pacman_rescue(session, ["-S", "--noconfirm", item.target])
        if not ok:
            ui.failure(f"Failed to install {escape(item.target)}. Attempting to reinstall {escape(item.source)}...")
            await aur.install_package(session, helper, item.source)
            continue

        ui.success(f"Replaced {escape(item.source)} with {escape(item.target)} successfully.")
        replaced.append(item)

    ui.console.print()
    ui.success("All replacements completed.")
    return replaced


def uninstall_command(app: flatpak.FlatpakApp) -> List[str]:
    if app.scope == "user":
        return ["flatpak", "uninstall", "-y", "--user", app.appid]
    return ["sudo", "flatpak", "uninstall", "-y", "--system", app.appid]


def install_command(app: flatpak.FlatpakApp) -> List[str]:
    if app.scope == "user":
        return ["flatpak", "install", "-y", "--user", app.origin or "", app.appid]
    return ["sudo", "flatpak", "install", "-y", "--system", app.origin or "", app.appid]


async def replace_flatpaks_with_repo(session: Session) -> List[Replacement]:
    """
    Offer to replace Flatpaks that also exist as repo packages.

    Returns:
        Replacements that went through
    """
    ui.console.print("\n\n")
    ui.info("Checking for Flatpak apps that also exist as Manjaro repo packages...")

    exclusions = ExclusionList.load(session.config.flatpak_exclude_file)
    repo_packages = await _repo_packages(session)

    apps: Dict[str, flatpak.FlatpakApp] = {app.appid: app for app in await flatpak.list_apps()}
    if not apps:
        ui.console.print("\n[orange3]No Flatpaks detected.[/orange3][green] Nothing to check.[/green]")
        return []

    found = await find_replacements(
        sorted(apps),
        repo_packages,
        exclusions,
        base_for=flatpak_base_from_appid,
        choose=make_chooser("Flatpak"),
        on_excluded=_report_excluded,
    )
    if not found:
        ui.console.print(
            "[orange3]No Flatpaks found with matching Manjaro repo packages (after exclusions).[/orange3]"
            "[cyan] Nothing to replace.[/cyan]"
        )
        return []

    table = Table(
        title="The following Flatpaks appear to exist as Manjaro repo packages:",
        title_justify="left",
    )
    for column in ("Flatpak AppID", "Scope", "Origin", "Repo Package"):
        table.add_column(column)
    for item in found:
        app = apps[item.source]
        table.add_row(app.appid, app.scope, app.origin or "NA", item.target)
    ui.console.print()
    ui.console.print(table)
    ui.console.print()

    if not await ui.confirm("Proceed with replacing them? (y)es or any other key to skip: "):
        ui.failure("Replacement operation skipped by user.")
        return []

    replaced = []
    for item in found:
        app = apps[item.source]
        ui.info(f"Removing Flatpak app: {app.appid}...")
        ok, _ = await session.run_step(uninstall_command(app))
        if not ok:
            ui.failure(f"Failed to remove Flatpak ({app.scope}): {app.appid}. Skipping this app.")
            continue

        ui.info(f"Installing repo package: {escape(item.target)}...")
        ok, _ = await pacman.pacman_rescue(session, ["-S", "--noconfirm", item.target])
        if not ok:
            ui.failure(f"Failed to install {escape(item.target)}. Attempting to reinstall Flatpak {app.appid}...")
            if app.origin:
                await session.run_step(install_command(app))
            else:
                ui.notice(f"Flatpak origin unknown for {app.appid}; reinstall skipped.")
            continue

        ui.success(f"Replaced Flatpak {app.appid} with repo package {escape(item.target)} successfully.")
        replaced.append(item)

    ui.console.print()
    ui.success("All Flatpak replacements completed.")
    return replaced


def _show_availability(title: str, names: Sequence[str], repo_packages: Sequence[str], base_for) -> None:
    ui.console.print(f"[cyan]{title}:  [/cyan][orange3]{len(names)}[/orange3]")
    for name, available in repo_availability(names, repo_packages, base_for):
        if available:
            ui.console.print(f"{escape(name)} [orange3]   in Manjaro repos[/orange3]")
        else:
            ui.plain(name)
    ui.console.print()


def _last_segment(appid: str) -> str:
    return appid.split(".")[-1]


async def show_repo_report(session: Session) -> None:
    """List AUR packages and Flatpaks, marking those with a repo counterpart."""
    repo_packages = await _repo_packages(session)

    aur_packages = await pacman.list_foreign_packages()
    if aur_packages:
        _show_availability("AUR packages", aur_packages, repo_packages, strip_variant_suffix)
    else:
        ui.console.print("[orange3]No AUR packages installed.[/orange3]")

    appids = await flatpak.list_app_ids()
    if appids:
        _show_availability("Flatpaks", appids, repo_packages, _last_segment)
    else:
        ui.console.print("[orange3]No Flatpaks installed.[/orange3]")
