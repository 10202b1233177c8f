# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
The full maintenance run.

Safety gates first (disk health, snapshot, community poll), then five
progress steps: mirrors, package updates, extensions and Flatpaks,
cleanup and repairs, config file review. Ends with before/after numbers
and the error summary.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from rich.markup import escape

from . import aur
from . import cleanup
from . import console as ui
from . import extensions
from . import flatpak
from . import mirrors
from . import overview
from . import pacfiles
from . import pacman
from . import replacements
from .config import UpkeepConfig
from .disk_health import disk_health_gate
from .session import Session
from .snapshots import snapshot_gate
from .utils import IS_ARCH, get_aur_helper

logger = logging.getLogger(__name__)


async def update_pass(session: Session, helper: Optional[str]) -> Dict[str, bool]:
    """
    One attempt at updating everything from pacman and the AUR.

    Returns:
        {"pacman_ok": bool, "aur_ok": bool}
    """
    await pacman.resolve_db_lock(session)
    pacman_ok = await pacman.system_upgrade(session)

    session.repo_packages = await pacman.list_repo_packages(session.config.repo_sections)
    await replacements.replace_aur_with_repo(session, helper)

    await pacman.resolve_db_lock(session)
    aur_ok = await aur.upgrade(session, helper)

    return {"pacman_ok": pacman_ok, "aur_ok": aur_ok}


async def package_updates(session: Session) -> None:
    """
    Run update passes until both pacman and the AUR helper succeed or the
    user exits.

    Raises:
        AbortRun: the user exits after a failure
    """
    helper = get_aur_helper()
    result = await update_pass(session, helper)

    while not (result["pacman_ok"] and result["aur_ok"]):
        await ui.retry_or_exit("Pacman and or AUR helper failed (r)etry  (e)xit: ")
        ui.info("Retrying updates...")
        result = await update_pass(session, helper)


async def extensions_and_flatpaks(session: Session) -> None:
    await extensions.update_user_extensions(session)

    if session.repo_packages is None:
        session.repo_packages = await pacman.list_repo_packages(session.config.repo_sections)
    await replacements.replace_flatpaks_with_repo(session)

    await flatpak.update_all(session)


async def cleanup_and_repairs(session: Session) -> None:
    ui.console.print("\n\n")
    await pacman.remove_orphans(session)
    await pacman.clean_package_cache(session)

    await flatpak.cleanup(session)
    await extensions.remove_distro_extensions(session)

    cleanup.purge_home_dirs(session)
    await cleanup.review_orphaned_app_dirs(session)

    await aur.clean_cache(session)


async def config_files(session: Session) -> None:
    await pacfiles.handle_pacfiles(session)
    await pacfiles.prune_old_backups(session)


async def closing_report(session: Session, before: Dict[str, Any]) -> Dict[str, Any]:
    """Print before/after deltas and the repo availability report."""
    cfg = session.config
    after = await overview.collect_overview(cfg.home, cfg.log_prefix)
    diff = overview.compare_overview(before, after)
    overview.show_overview_diff(after, diff)
    ui.console.print()

    await replacements.show_repo_report(session)
    return diff


async def run_update(config: Optional[UpkeepConfig] = None) -> Session:
    """
    Run the whole maintenance sequence.

    The session is always finished (summary, log, cleanup), even when a step
    aborts or fails; the exception is re-raised afterwards.

    Raises:
        AbortRun: a gate failed or the user exited
    """
    config = config or UpkeepConfig.from_env()
    session = Session(config)

    if not IS_ARCH:
        logger.warning("Not running on an Arch-based system; commands will likely fail")

    session.prepare_work_dir()
    session.show_progress()

    try:
        await session.prime_sudo()
        await disk_health_gate(session)
        await snapshot_gate(session)
        before = await overview.pre_update_overview(session)

        ui.section("Mirrors refresh")
        await mirrors.refresh_mirrors(session)
        session.advance()

        ui.section("Packages updates")
        await package_updates(session)
        session.advance()

        ui.section("Extensions-Flatpaks updates")
        await extensions_and_flatpaks(session)
        session.advance()

        ui.section("Cleanup-Repairs")
        await cleanup_and_repairs(session)
        session.advance()

        ui.section(".Pacsave .Pacnew handling")
        await config_files(session)
        session.advance()

        ui.section("End")
        await closing_report(session, before)
    except ui.AbortRun as e:
        logger.info(f"Run stopped: {e}")
        await session.finish(wait_for_enter=not isinstance(e, ui.RunDeclined))
        raise
    except (KeyboardInterrupt, asyncio.CancelledError):
        ui.failure("Interrupted.")
        await session.finish(wait_for_enter=False)
        raise
    except Exception as e:
        logger.exception("Run failed with an unexpected error")
        ui.failure(f"Unexpected error: {escape(str(e))}")
        session.ledger.record(type(e).__name__, 1, str(e))
        await session.finish()
        raise

    await session.finish()
    return session
