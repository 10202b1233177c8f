# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
Pre- and post-update system overview.

Shows time since the last run, the community feedback poll of the latest
stable update announcement, package counts and disk usage.
"""

import logging
import re
import time
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from . import console as ui
from .session import Session
from .utils import count_lines, create_error_response, run_command

logger = logging.getLogger(__name__)

# HTTP client settings
DEFAULT_TIMEOUT = 10.0

NO_ISSUE_OPTION = "No issue, everything went smoothly"

TOPIC_LINK = re.compile(
    r"<a itemprop='url' href='([^']+)' class='title raw-link raw-topic-link'"
)


def find_last_update_log(home: Path, prefix: str = "Update-") -> Optional[Path]:
    """Return the newest session log in home, if any."""
    logs = [p for p in home.glob(f"{prefix}*.log") if p.is_file()]
    if not logs:
        return None
    return max(logs, key=lambda p: p.stat().st_mtime)


def time_since_last_update(home: Path, prefix: str = "Update-", now: Optional[float] = None) -> Optional[Dict[str, int]]:
    """
    Days and hours since the newest session log was written.

    Returns:
        {"days": d, "hours": h} or None when no log exists
    """
    log = find_last_update_log(home, prefix)
    if log is None:
        return None

    now = time.time() if now is None else now
    seconds = max(0, int(now - log.stat().st_mtime))
    return {"days": seconds // 86400, "hours": (seconds % 86400) // 3600}


def extract_first_topic_url(category_html: str) -> Optional[str]:
    """
    Find the newest topic link in a Discourse category page.

    Pinned/header links live outside the topic table, so only the <tbody>
    section is searched.
    """
    start = category_html.find("<tbody")
    end = category_html.find("</tbody>", start)
    body = category_html[start:end] if start != -1 and end != -1 else category_html
    match = TOPIC_LINK.search(body)
    return match.group(1) if match else None


def extract_poll(topic: Dict[str, Any]) -> Dict[str, Optional[int]]:
    """
    Pull the voter count and "No issue" votes out of a Discourse topic JSON.

    Returns:
        {"voters": int|None, "no_issue_votes": int|None}
    """
    posts = topic.get("post_stream", {}).get("posts", [])
    for post in posts:
        for poll in post.get("polls") or []:
            voters = poll.get("voters")
            no_issue = None
            for option in poll.get("options", []):
                if NO_ISSUE_OPTION in option.get("html", ""):
                    no_issue = option.get("votes")
                    break
            if voters is not None:
                return {"voters": voters, "no_issue_votes": no_issue}
    return {"voters": None, "no_issue_votes": None}


def no_issue_percent(voters: Optional[int], no_issue_votes: Optional[int]) -> Optional[int]:
    """Integer percentage of smooth updates, None when there is nothing to divide by."""
    if not voters:
        return None
    return 100 * (no_issue_votes or 0) // voters


def poll_needs_attention(poll: Dict[str, Any], min_percent: int = 85, min_voters: int = 200) -> bool:
    """True when the poll is unavailable, too negative, or has too few voters."""
    percent = poll.get("no_issue_percent")
    voters = poll.get("voters") or 0
    return percent is None or percent < min_percent or voters < min_voters


async def fetch_stable_update_poll(category_url: str) -> Dict[str, Any]:
    """
    Fetch the community poll of the latest stable update announcement.

    Args:
        category_url: Discourse category listing stable update threads

    Returns:
        Dict with topic_url, voters, no_issue_votes and no_issue_percent,
        or an error response
    """
    logger.info(f"Fetching stable update poll from {category_url}")

    try:
        async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT, follow_redirects=True) as client:
            response = await client.get(category_url)
            response.raise_for_status()

            topic_url = extract_first_topic_url(response.text)
            if not topic_url:
                return create_error_response(
                    "NotFound",
                    "No stable update topic found on the category page",
                )

            response = await client.get(f"{topic_url}.json")
            response.raise_for_status()
            poll = extract_poll(response.json())

    except httpx.TimeoutException:
        logger.error(f"Stable update poll fetch timed out: {category_url}")
        return create_error_response("TimeoutError", "Stable update poll fetch timed out")
    except httpx.HTTPStatusError as e:
        logger.error(f"Stable update poll HTTP error: {e}")
        return create_error_response(
            "HTTPError",
            f"Stable update poll fetch failed with status {e.response.status_code}",
            str(e),
        )
    except Exception as e:
        logger.error(f"Stable update poll fetch failed: {e}")
        return create_error_response("PollError", f"Failed to fetch stable update poll: {str(e)}")

    return {
        "topic_url": topic_url,
        "voters": poll["voters"],
        "no_issue_votes": poll["no_issue_votes"],
        "no_issue_percent": no_issue_percent(poll["voters"], poll["no_issue_votes"]),
    }


def parse_df_output(output: str) -> Optional[Dict[str, int]]:
    """Parse `df --block-size=1 /` into byte counts."""
    lines = [line for line in output.splitlines() if line.strip()]
    if len(lines) < 2:
        return None
    parts = lines[1].split()
    if len(parts) < 4:
        return None
    try:
        total, used, avail = int(parts[1]), int(parts[2]), int(parts[3])
    except ValueError:
        return None
    return {"total": total, "used": used, "available": avail}


async def get_root_disk_usage() -> Dict[str, Any]:
    """
    Disk usage of / in bytes plus used GB (1e9) and percent.
    """
    exit_code, stdout, stderr = await run_command(["df", "/", "--block-size=1"], timeout=10)
    usage = parse_df_output(stdout) if exit_code == 0 else None
    if not usage:
        return create_error_response("CommandError", "Failed to read disk usage of /", stderr.strip())

    usage["used_gb"] = round(usage["used"] / 1e9, 1)
    usage["used_percent"] = round(usage["used"] / usage["total"] * 100, 1) if usage["total"] else 0.0
    return usage


async def _count(cmd) -> int:
    try:
        exit_code, stdout, _ = await run_command(cmd, timeout=30)
    except FileNotFoundError:
        return 0
    return count_lines(stdout) if exit_code == 0 else 0


async def get_package_counts() -> Dict[str, int]:
    """Counts of AUR packages, GNOME extensions, Flatpak apps and explicit packages."""
    return {
        "aur": await _count(["pacman", "-Qm"]),
        "extensions": await _count(["gext", "list"]),
        "flatpaks": await _count(["flatpak", "list", "--app", "--columns=application"]),
        "explicit": await _count(["pacman", "-Qe"]),
    }


async def collect_overview(home: Path, prefix: str = "Update-") -> Dict[str, Any]:
    """Non-interactive snapshot of the system state."""
    return {
        "since_last_update": time_since_last_update(home, prefix),
        "packages": await get_package_counts(),
        "disk": await get_root_disk_usage(),
    }


def compare_overview(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Any]:
    """Signed deltas between two overviews."""
    diff: Dict[str, Any] = {
        "explicit": after["packages"]["explicit"] - before["packages"]["explicit"],
        "used_gb": None,
    }
    if not before["disk"].get("error") and not after["disk"].get("error"):
        diff["used_gb"] = round(after["disk"]["used_gb"] - before["disk"]["used_gb"], 1)
    return diff


def show_overview(overview: Dict[str, Any], poll: Optional[Dict[str, Any]] = None) -> None:
    c = ui.console
    since = overview["since_last_update"]
    if since is None:
        ui.failure("No update logs found.")
    else:
        c.print(
            f"[blue]Time since last update: [orange3]{since['days']}[/orange3][/blue] days and "
            f"[orange3]{since['hours']}[/orange3] hours"
        )
    c.print()

    if poll is not None:
        percent = poll.get("no_issue_percent")
        percent_text = "N/A" if percent is None else str(percent)
        c.print(f"No issue: [orange3]{percent_text}[/orange3]%  Total votes: {poll.get('voters') or 0}")
        c.print()

    counts = overview["packages"]
    c.print(
        f"Aur: [orange3]{counts['aur']}[/orange3]  Extensions: [orange3]{counts['extensions']}[/orange3]"
        f"  Flatpaks: {counts['flatpaks']}"
    )

    disk = overview["disk"]
    if disk.get("error"):
        ui.failure(disk["message"])
    else:
        c.print(
            f"Disk used: [orange3]{disk['used_gb']}[/orange3]GB ({disk['used_percent']}% full)"
            f"  Programs: {counts['explicit']}"
        )


def show_overview_diff(after: Dict[str, Any], diff: Dict[str, Any]) -> None:
    c = ui.console
    if not after["disk"].get("error"):
        delta = "NA" if diff["used_gb"] is None else f"{diff['used_gb']:+.1f}"
        c.print(f"Disk used: {after['disk']['used_gb']}GB  diff: [orange3]{delta}[/orange3]GB")
    c.print(f"Programs: {after['packages']['explicit']}  diff: [orange3]{diff['explicit']:+d}[/orange3]")


async def pre_update_overview(session: Session) -> Dict[str, Any]:
    """
    Show the overview, warn about a poorly received update and confirm.

    Raises:
        AbortRun: the user declines to proceed
    """
    cfg = session.config
    overview = await collect_overview(cfg.home, cfg.log_prefix)
    poll = await fetch_stable_update_poll(cfg.forum_category_url)
    if poll.get("error"):
        ui.failure(f"Stable update poll unavailable: {poll['message']}")
        poll = {"topic_url": None, "voters": None, "no_issue_percent": None}

    show_overview(overview, poll)
    ui.console.print("\n")

    if poll_needs_attention(poll, cfg.poll_min_percent, cfg.poll_min_voters):
        answer = await ui.ask(
            "Low 'No issue' percentage or low Voters count. "
            "(y)es to open Manjaro topic or any other key to continue: "
        )
        if answer.lower() == "y" and poll.get("topic_url"):
            ui.open_url(poll["topic_url"])
        ui.console.print("\n")

    if (await ui.ask("Proceed with the update? (n)o or any other key: ")).lower() == "n":
        raise ui.RunDeclined("update declined")

    return overview
