"""MCP tools for starting and steering scenario executions."""

from __future__ import annotations

import json

import httpx

from ..config import ENGINE_URL


async def _call_engine(method: str, path: str, json_body: dict | None = None) -> dict:
    """Make a request to the execution engine HTTP service."""
    url = f"{ENGINE_URL}{path}"
    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            if method == "GET":
                resp = await client.get(url)
            else:
                resp = await client.post(url, json=json_body or {})

            if resp.status_code >= 400:
                data = resp.json()
                return {"error": data.get("error", f"HTTP {resp.status_code}")}
            return resp.json()

    except httpx.ConnectError:
        return {
            "error": "Execution engine is not reachable at "
            f"{ENGINE_URL}. It should auto-start with the MCP server. "
            "If running standalone: python -m scenario_runner.engine.manager"
        }
    except httpx.TimeoutException:
        return {"error": "Execution engine timed out."}
    except (httpx.HTTPError, json.JSONDecodeError) as e:
        return {"error": f"Failed to talk to the execution engine: {e}"}


async def start_execution(project_id: int, scenario_json: str, base_url: str = "") -> str:
    """Start running a scenario model for a project.

    Args:
        project_id: Project the run belongs to. Only one active run per project.
        scenario_json: JSON with a "scenarios" list; each scenario has a
            "name" and ordered "steps" (action, selector, value, url,
            timeout, humanVerification). Optional "mocks" (URL fragment ->
            JSON body served for GET) and "authToken" (bearer header).
        base_url: Optional base that relative navigate URLs resolve against.

    Returns:
        The new session id, or why the run was rejected.
    """
    try:
        definition = json.loads(scenario_json)
    except json.JSONDecodeError as e:
        return f"Error: scenario_json is not valid JSON ({e})"
    if not isinstance(definition, dict):
        return 'Error: scenario_json must be an object with a "scenarios" list'

    body = {"scenarios": definition.get("scenarios"), "baseUrl": base_url or definition.get("baseUrl", "")}
    for key in ("mocks", "authToken"):
        if definition.get(key) is not None:
            body[key] = definition[key]
    result = await _call_engine("POST", f"/api/projects/{project_id}/execute", body)

    if "error" in result:
        return f"Error: {result['error']}"
    return (
        f"Execution started. Session id: {result['sessionId']}. "
        "Progress is streamed to observers; use execution_status to check on it."
    )


async def execution_status(session_id: int) -> str:
    """Return the session record (status, progress, logs) as JSON."""
    result = await _call_engine("GET", f"/api/sessions/{session_id}")

    if "error" in result:
        return f"Error: {result['error']}"
    return json.dumps(result, indent=2)


async def _control(session_id: int, action: str, done: str) -> str:
    result = await _call_engine("POST", f"/api/sessions/{session_id}/{action}")
    if "error" in result:
        return f"Error: {result['error']}"
    return done


async def pause_execution(session_id: int) -> str:
    return await _control(session_id, "pause", f"Session {session_id} paused before its next step.")


async def resume_execution(session_id: int) -> str:
    return await _control(session_id, "resume", f"Session {session_id} resumed.")


async def stop_execution(session_id: int) -> str:
    return await _control(session_id, "stop", f"Session {session_id} stopped. No further steps will run.")


async def complete_verification(session_id: int) -> str:
    """Tell the engine the human finished the CAPTCHA / verification step."""
    return await _control(
        session_id, "verify", f"Verification recorded. Session {session_id} is running again."
    )
