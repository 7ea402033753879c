"""MCP Server entry point for the UI scenario runner.

Exposes 7 tools via the Model Context Protocol:
- Execution: start_execution, execution_status
- Control: pause_execution, resume_execution, stop_execution, complete_verification
- History: list_execution_history

The execution engine HTTP service (aiohttp on localhost:8025) is auto-started
as part of the MCP server lifecycle; no separate process needed.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

from aiohttp.web import AppRunner, TCPSite
from mcp.server.fastmcp import FastMCP

from .config import ENGINE_HOST, ENGINE_PORT, ensure_dirs
from .tools.execution_tools import (
    complete_verification,
    execution_status,
    pause_execution,
    resume_execution,
    start_execution,
    stop_execution,
)
from .tools.history_tools import list_execution_history

# Configure logging to stderr (stdout is reserved for MCP JSON-RPC)
logging.basicConfig(
    stream=sys.stderr,
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("scenario-runner")

ensure_dirs()


# ── Lifespan: auto-start the execution engine ────────────────────────────────


@asynccontextmanager
async def lifespan(server: FastMCP):
    """Start the execution engine HTTP service alongside the MCP server."""
    from .engine.manager import create_app

    app = create_app()
    runner = AppRunner(app)
    await runner.setup()
    site = TCPSite(runner, ENGINE_HOST, ENGINE_PORT)
    managed = False
    try:
        await site.start()
        logger.info("Execution engine auto-started on %s:%s", ENGINE_HOST, ENGINE_PORT)
        managed = True
    except OSError:
        # Port already in use: assume the engine was started manually
        logger.info("Execution engine already running on %s:%s", ENGINE_HOST, ENGINE_PORT)
        await runner.cleanup()

    try:
        yield {}
    finally:
        if managed:
            await runner.cleanup()
            logger.info("Execution engine stopped.")


# ── MCP Server ───────────────────────────────────────────────────────────────

mcp = FastMCP(
    "scenario-runner",
    lifespan=lifespan,
    instructions=(
        "UI scenario runner - executes declarative browser test scenarios. "
        "The execution engine starts automatically with this server. "
        "Call start_execution with a project id and a scenario JSON to begin a run; "
        "only one run per project may be active. "
        "If a step needs a human (e.g. a CAPTCHA), the run waits in 'manual' status "
        "until complete_verification is called for its session. "
        "Use pause_execution, resume_execution and stop_execution to steer a run, "
        "execution_status to inspect it and list_execution_history for past runs."
    ),
)


# ── Execution Tools ──────────────────────────────────────────────────────────


@mcp.tool()
async def tool_start_execution(project_id: int, scenario_json: str, base_url: str = "") -> str:
    """Start executing a scenario model for a project.

    Args:
        project_id: Project id; a second run for an active project is rejected.
        scenario_json: {"scenarios": [{"name": ..., "steps": [...]}]}. Step
            actions: navigate, fill, click, waitForSelector, expect.
        base_url: Base URL for relative navigate steps.
    """
    return await start_execution(project_id, scenario_json, base_url)


@mcp.tool()
async def tool_execution_status(session_id: int) -> str:
    """Get status, current step and logs for an execution session."""
    return await execution_status(session_id)


# ── Control Tools ────────────────────────────────────────────────────────────


@mcp.tool()
async def tool_pause_execution(session_id: int) -> str:
    """Pause a running session before its next step."""
    return await pause_execution(session_id)


@mcp.tool()
async def tool_resume_execution(session_id: int) -> str:
    """Resume a paused session at the step where it paused."""
    return await resume_execution(session_id)


@mcp.tool()
async def tool_stop_execution(session_id: int) -> str:
    """Stop a session. The step in flight finishes; no further steps start."""
    return await stop_execution(session_id)


@mcp.tool()
async def tool_complete_verification(session_id: int) -> str:
    """Signal that the human finished the manual verification step.

    Call this after the user says they solved the CAPTCHA in the browser.
    """
    return await complete_verification(session_id)


# ── History Tools (instant, from local database) ─────────────────────────────


@mcp.tool()
async def tool_list_execution_history(project_id: int = 0, limit: int = 10) -> str:
    """List past executions, newest first.

    Args:
        project_id: Filter by project (0=all).
        limit: Max results (default 10).
    """
    return await list_execution_history(project_id, limit)


# ── Entry Point ──────────────────────────────────────────────────────────────


def main():
    """Run the MCP server on STDIO transport."""
    logger.info("Starting scenario runner MCP server...")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
