# SPDX-License-Identifier: GPL-3.0-only OR MIT
"""
MCP server exposing the read-only checks of manjaro-upkeep.

Nothing here prompts, installs or deletes; tools report what a maintenance
run would look at.
"""

import json
import logging
from typing import Any, Dict

import mcp.server.stdio
from mcp.server import Server
from mcp.types import (
    EmbeddedResource,
    ImageContent,
    TextContent,
    Tool,
)

from . import flatpak
from .config import UpkeepConfig
from .disk_health import check_disk_health
from .matching import (
    ExclusionList,
    find_replacements,
    flatpak_base_from_appid,
    strip_variant_suffix,
)
from .overview import collect_overview, fetch_stable_update_poll, poll_needs_attention
from .pacfiles import find_pacfiles
from .pacman import (
    check_updates_dry_run,
    list_foreign_packages,
    list_orphan_packages,
    list_repo_packages,
)
from .snapshots import detect_snapper_config, list_recent_snapshots
from .utils import IS_ARCH, IS_MANJARO, create_error_response

logger = logging.getLogger(__name__)

# Initialize MCP server
server = Server("manjaro-upkeep")

ARCH_ONLY_TOOLS = {
    "check_updates_dry_run",
    "list_orphan_packages",
    "find_pacfiles",
    "find_repo_replacements",
}


def _to_text(result: Any) -> list[TextContent]:
    # snapshot timestamps are datetimes
    return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]


async def get_stable_update_poll(config: UpkeepConfig) -> Dict[str, Any]:
    poll = await fetch_stable_update_poll(config.forum_category_url)
    if poll.get("error"):
        return poll
    poll["needs_attention"] = poll_needs_attention(poll, config.poll_min_percent, config.poll_min_voters)
    return poll


async def find_repo_replacements(config: UpkeepConfig, kind: str = "aur") -> Dict[str, Any]:
    """
    Exact-name repo counterparts of installed AUR packages or Flatpaks.

    Exclusion lists are honoured but never created or changed.
    """
    if kind not in ("aur", "flatpak"):
        return create_error_response("InvalidArgument", f"Unknown kind: {kind}", "Use 'aur' or 'flatpak'")

    if kind == "aur":
        names = await list_foreign_packages()
        exclude_file, base_for = config.aur_exclude_file, strip_variant_suffix
    else:
        names = await flatpak.list_app_ids()
        exclude_file, base_for = config.flatpak_exclude_file, flatpak_base_from_appid

    exclusions = ExclusionList.load(exclude_file) if exclude_file.exists() else ExclusionList(exclude_file)
    excluded = [name for name in names if name in exclusions]

    repo_packages = await list_repo_packages(config.repo_sections)
    found = await find_replacements(names, repo_packages, exclusions, base_for=base_for)

    return {
        "kind": kind,
        "checked": len(names),
        "excluded": excluded,
        "count": len(found),
        "replacements": [{"installed": item.source, "repo_package": item.target} for item in found],
    }


# ============================================================================
# TOOLS
# ============================================================================

@server.list_tools()
async def list_tools() -> list[Tool]:
    """
    List available read-only maintenance checks.

    Returns:
        List of Tool objects
    """
    return [
        Tool(
            name="check_disk_health",
            description="Read the SMART health of the disk holding / (or a given device) with smartctl. Reports critical warning, spare, wear and media errors plus an ok/warning/bad verdict.",
            inputSchema={
                "type": "object",
                "properties": {
                    "device": {
                        "type": "string",
                        "description": "Device path, e.g. /dev/nvme0n1 (default: disk of /)"
                    }
                }
            }
        ),
        Tool(
            name="list_recent_snapshots",
            description="List snapper snapshots of the root config taken within the last N days.",
            inputSchema={
                "type": "object",
                "properties": {
                    "max_age_days": {
                        "type": "integer",
                        "description": "Maximum snapshot age in days (default: 7)",
                        "default": 7
                    },
                    "config": {
                        "type": "string",
                        "description": "Snapper config name (default: the config covering /)"
                    }
                }
            }
        ),
        Tool(
            name="get_stable_update_poll",
            description="Fetch the community feedback poll of the latest Manjaro stable update announcement: voters, 'No issue' votes and percentage, and whether the numbers warrant reading the thread first.",
            inputSchema={
                "type": "object",
                "properties": {}
            }
        ),
        Tool(
            name="check_updates_dry_run",
            description="Check for available system updates without applying them. Requires pacman-contrib.",
            inputSchema={
                "type": "object",
                "properties": {}
            }
        ),
        Tool(
            name="list_orphan_packages",
            description="List packages installed as dependencies that nothing requires anymore.",
            inputSchema={
                "type": "object",
                "properties": {}
            }
        ),
        Tool(
            name="find_pacfiles",
            description="Find .pacnew and .pacsave files left by package upgrades (skips /.snapshots). Needs cached sudo credentials.",
            inputSchema={
                "type": "object",
                "properties": {}
            }
        ),
        Tool(
            name="find_repo_replacements",
            description="List installed AUR packages or Flatpaks whose name (minus variant suffixes such as -git or -bin) is an official repo package. Exact matches only.",
            inputSchema={
                "type": "object",
                "properties": {
                    "kind": {
                        "type": "string",
                        "description": "What to check: 'aur' (default) or 'flatpak'",
                        "enum": ["aur", "flatpak"],
                        "default": "aur"
                    }
                }
            }
        ),
        Tool(
            name="get_system_overview",
            description="Time since the last maintenance run, AUR/extension/Flatpak/explicit package counts and disk usage of /.",
            inputSchema={
                "type": "object",
                "properties": {}
            }
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent | ImageContent | EmbeddedResource]:
    """
    Execute a tool by name with the provided arguments.

    Raises:
        ValueError: If tool name is unknown
    """
    logger.info(f"Calling tool: {name} with args: {arguments}")
    config = UpkeepConfig.from_env()

    if name in ARCH_ONLY_TOOLS and not IS_ARCH:
        return [TextContent(type="text", text=f"Error: {name} only available on Arch Linux systems")]

    if name == "check_disk_health":
        result = await check_disk_health(arguments.get("device"))
        return _to_text(result)

    elif name == "list_recent_snapshots":
        snapper_config = arguments.get("config") or await detect_snapper_config()
        max_age_days = arguments.get("max_age_days", config.snapshot_max_age_days)
        result = await list_recent_snapshots(snapper_config, max_age_days)
        return _to_text(result)

    elif name == "get_stable_update_poll":
        result = await get_stable_update_poll(config)
        return _to_text(result)

    elif name == "check_updates_dry_run":
        result = await check_updates_dry_run()
        return _to_text(result)

    elif name == "list_orphan_packages":
        result = await list_orphan_packages()
        return _to_text(result)

    elif name == "find_pacfiles":
        result = await find_pacfiles()
        return _to_text(result)

    elif name == "find_repo_replacements":
        result = await find_repo_replacements(config, arguments.get("kind", "aur"))
        return _to_text(result)

    elif name == "get_system_overview":
        result = await collect_overview(config.home, config.log_prefix)
        return _to_text(result)

    else:
        raise ValueError(f"Unknown tool: {name}")


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

async def serve() -> None:
    """
    Run the server using STDIO transport.
    """
    logger.info("Starting manjaro-upkeep MCP server")
    logger.info(f"Running on Arch Linux: {IS_ARCH}, Manjaro: {IS_MANJARO}")

    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options()
        )
