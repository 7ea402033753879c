"""Execution engine HTTP service.

Runs as a lightweight local web server that owns every execution session:
it starts executor tasks, relays control signals to the registry, and pushes
progress to observers over a WebSocket.

Endpoints:
    POST /api/projects/{project_id}/execute   - Validate a scenario model, start a session
    GET  /api/projects/{project_id}/sessions  - Session history for a project
    GET  /api/sessions/{session_id}           - One session (live or historical)
    POST /api/sessions/{session_id}/pause     - Pause before the next step
    POST /api/sessions/{session_id}/resume    - Resume a paused session
    POST /api/sessions/{session_id}/stop      - Stop; no further steps start
    POST /api/sessions/{session_id}/verify    - Manual verification done
    GET  /status                              - Engine health
    GET  /ws                                  - Observer channel
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import aiosqlite
from aiohttp import WSMsgType, web

from ..config import (
    AUTOMATION_BACKEND,
    DB_PATH,
    ENGINE_HOST,
    ENGINE_PORT,
    SHUTDOWN_GRACE_SECONDS,
    STEP_DELAY_MS,
    ensure_dirs,
)
from ..constants import MSG_ERROR, MSG_MANUAL_VERIFICATION_COMPLETE, MSG_PING, MSG_PONG
from ..database.models import initialize_db
from ..database.repository import SessionRepository
from ..models.scenario import ExecutionRequest, parse_execution_request
from ..models.session import Session
from .backends import BackendFactory, get_backend_factory
from .broadcaster import EventBroadcaster
from .errors import (
    AlreadyRunning,
    EngineError,
    InvalidTransition,
    SessionNotFound,
    ValidationError,
)
from .executor import StepExecutor
from .registry import SessionRegistry

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(name)s] %(levelname)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

_ERROR_STATUS = {
    ValidationError: 400,
    SessionNotFound: 404,
    AlreadyRunning: 409,
    InvalidTransition: 409,
}


class ExecutionManager:
    """Owns the registry, broadcaster and executor tasks for the process."""

    def __init__(
        self,
        backend_factory: Optional[BackendFactory] = None,
        backend_name: str = AUTOMATION_BACKEND,
        db_path: Path | str = DB_PATH,
        step_delay: float = STEP_DELAY_MS / 1000,
    ):
        self.backend_name = backend_name
        self.registry = SessionRegistry()
        self.broadcaster = EventBroadcaster()
        self.executor = StepExecutor(
            self.registry,
            self.broadcaster,
            backend_factory or get_backend_factory(backend_name),
            step_delay=step_delay,
        )
        self.db_path = db_path
        self.db: aiosqlite.Connection | None = None
        self.repo: SessionRepository | None = None
        self._tasks: dict[int, asyncio.Task] = {}

    async def setup(self):
        """Open the history database and continue session numbering after it."""
        if self.db_path == DB_PATH:
            ensure_dirs()
        self.db = await aiosqlite.connect(str(self.db_path))
        self.db.row_factory = aiosqlite.Row
        await initialize_db(self.db)
        self.repo = SessionRepository(self.db)
        self.registry.continue_ids_from(await self.repo.max_session_id() + 1)

    async def cleanup(self):
        """Stop every active session, wait for executors, close the database."""
        for session_id in self.registry.active_session_ids():
            try:
                await self.registry.stop(session_id)
            except InvalidTransition:
                continue

        tasks = list(self._tasks.values())
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=SHUTDOWN_GRACE_SECONDS)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if self.db:
            await self.db.close()
            self.db = None

    # ── Execution ────────────────────────────────────────────────────────────

    async def start_execution(self, project_id: int, payload: dict) -> Session:
        """Validate the scenario model and start its executor in the background.

        Raises:
            ValidationError: malformed scenario model.
            AlreadyRunning: the project already has an active session.
        """
        request = parse_execution_request(payload)
        model = request.scenario_model()

        session = await self.registry.create(project_id, model.total_steps)
        logger.info(f"Project {project_id}: session {session.id} created ({model.total_steps} steps)")
        self._tasks[session.id] = asyncio.create_task(self._run(session.id, request))
        return session

    async def _run(self, session_id: int, request: ExecutionRequest):
        try:
            await self.executor.run(
                session_id, request.scenario_model(), request.base_url, request.intercepts()
            )
        finally:
            if await self._persist(session_id):
                self.registry.discard(session_id)
            self._tasks.pop(session_id, None)

    async def _persist(self, session_id: int) -> bool:
        """Save the final snapshot. Only a saved session may leave the registry."""
        if self.repo is None:
            return False
        try:
            await self.repo.upsert_session(self.registry.get(session_id))
        except (aiosqlite.Error, ValueError) as e:
            logger.error(f"Could not save session {session_id} to history: {e}")
            return False
        return True

    # ── Control signals ──────────────────────────────────────────────────────

    async def pause(self, session_id: int) -> Session:
        return await self.registry.pause(session_id)

    async def resume(self, session_id: int) -> Session:
        return await self.registry.resume(session_id)

    async def stop(self, session_id: int) -> Session:
        return await self.registry.stop(session_id)

    async def complete_verification(self, session_id: int) -> Session:
        return await self.registry.complete_verification(session_id)

    # ── Reads ────────────────────────────────────────────────────────────────

    async def get_session(self, session_id: int) -> Session:
        try:
            return self.registry.get(session_id)
        except SessionNotFound:
            session = await self.repo.get_session(session_id) if self.repo else None
            if session is None:
                raise
            return session

    async def list_sessions(self, project_id: int, limit: int = 25) -> list[Session]:
        sessions = {s.id: s for s in await self.repo.list_sessions(project_id, limit)} if self.repo else {}
        sessions.update({s.id: s for s in self.registry.list_sessions(project_id)})
        return sorted(sessions.values(), key=lambda s: s.id, reverse=True)[:limit]


# ── HTTP Handlers ────────────────────────────────────────────────────────────


def _error_response(e: EngineError) -> web.Response:
    status = next((code for cls, code in _ERROR_STATUS.items() if isinstance(e, cls)), 500)
    return web.json_response({"error": str(e)}, status=status)


async def handle_execute(request: web.Request) -> web.Response:
    mgr: ExecutionManager = request.app["manager"]
    project_id = int(request.match_info["project_id"])
    try:
        body = await request.json() if request.can_read_body else {}
    except json.JSONDecodeError as e:
        return web.json_response({"error": f"Invalid JSON: {e}"}, status=400)

    try:
        session = await mgr.start_execution(project_id, body)
    except EngineError as e:
        logger.warning(f"Execution request for project {project_id} rejected: {e}")
        return _error_response(e)
    return web.json_response({"sessionId": session.id})


async def handle_project_sessions(request: web.Request) -> web.Response:
    mgr: ExecutionManager = request.app["manager"]
    project_id = int(request.match_info["project_id"])
    try:
        limit = int(request.query.get("limit", "25"))
    except ValueError:
        return web.json_response({"error": "limit must be an integer"}, status=400)
    sessions = await mgr.list_sessions(project_id, limit)
    return web.json_response({"sessions": [s.to_json_dict() for s in sessions]})


async def handle_get_session(request: web.Request) -> web.Response:
    mgr: ExecutionManager = request.app["manager"]
    try:
        session = await mgr.get_session(int(request.match_info["session_id"]))
    except EngineError as e:
        return _error_response(e)
    return web.json_response(session.to_json_dict())


def _control_handler(action: str):
    async def handler(request: web.Request) -> web.Response:
        mgr: ExecutionManager = request.app["manager"]
        session_id = int(request.match_info["session_id"])
        try:
            await getattr(mgr, action)(session_id)
        except EngineError as e:
            logger.warning(f"{action} for session {session_id} rejected: {e}")
            return _error_response(e)
        return web.json_response({"success": True})

    handler.__name__ = f"handle_{action}"
    return handler


handle_pause = _control_handler("pause")
handle_resume = _control_handler("resume")
handle_stop = _control_handler("stop")
handle_verify = _control_handler("complete_verification")


async def handle_status(request: web.Request) -> web.Response:
    mgr: ExecutionManager = request.app["manager"]
    return web.json_response({
        "backend": mgr.backend_name,
        "activeSessions": mgr.registry.active_session_ids(),
        "observers": mgr.broadcaster.observer_count,
    })


# ── Observer channel ─────────────────────────────────────────────────────────


async def _handle_ws_message(mgr: ExecutionManager, ws: web.WebSocketResponse, raw: str):
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Ignoring malformed WebSocket message: {raw[:100]!r}")
        return
    if not isinstance(data, dict):
        return

    msg_type = data.get("type")
    if msg_type == MSG_PING:
        await ws.send_json({"type": MSG_PONG})
    elif msg_type == MSG_MANUAL_VERIFICATION_COMPLETE:
        session_id = data.get("sessionId")
        try:
            await mgr.complete_verification(int(session_id))
        except (TypeError, ValueError):
            await ws.send_json({"type": MSG_ERROR, "sessionId": session_id, "message": "sessionId is required"})
        except EngineError as e:
            logger.warning(f"Verification signal for session {session_id} rejected: {e}")
            await ws.send_json({"type": MSG_ERROR, "sessionId": session_id, "message": str(e)})
    else:
        logger.debug(f"Ignoring WebSocket message of type {msg_type!r}")


async def handle_ws(request: web.Request) -> web.WebSocketResponse:
    mgr: ExecutionManager = request.app["manager"]
    ws = web.WebSocketResponse(heartbeat=30)
    await ws.prepare(request)
    mgr.broadcaster.add(ws)
    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                await _handle_ws_message(mgr, ws, msg.data)
            elif msg.type == WSMsgType.ERROR:
                logger.warning(f"WebSocket closed with exception {ws.exception()}")
    finally:
        mgr.broadcaster.remove(ws)
    return ws


# ── App Factory ──────────────────────────────────────────────────────────────


async def on_startup(app: web.Application):
    if "manager" not in app:
        app["manager"] = ExecutionManager()
    mgr: ExecutionManager = app["manager"]
    await mgr.setup()
    logger.info(f"Execution engine started on {ENGINE_HOST}:{ENGINE_PORT} (backend={mgr.backend_name})")


async def on_cleanup(app: web.Application):
    mgr: ExecutionManager = app["manager"]
    await mgr.cleanup()
    logger.info("Execution engine stopped.")


def create_app(manager: Optional[ExecutionManager] = None) -> web.Application:
    app = web.Application()
    if manager is not None:
        app["manager"] = manager
    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    app.router.add_post(r"/api/projects/{project_id:\d+}/execute", handle_execute)
    app.router.add_get(r"/api/projects/{project_id:\d+}/sessions", handle_project_sessions)
    app.router.add_get(r"/api/sessions/{session_id:\d+}", handle_get_session)
    app.router.add_post(r"/api/sessions/{session_id:\d+}/pause", handle_pause)
    app.router.add_post(r"/api/sessions/{session_id:\d+}/resume", handle_resume)
    app.router.add_post(r"/api/sessions/{session_id:\d+}/stop", handle_stop)
    app.router.add_post(r"/api/sessions/{session_id:\d+}/verify", handle_verify)
    app.router.add_get("/status", handle_status)
    app.router.add_get("/ws", handle_ws)

    return app


def main():
    """Run the execution engine as a standalone HTTP service."""
    app = create_app()
    web.run_app(app, host=ENGINE_HOST, port=ENGINE_PORT)


if __name__ == "__main__":
    main()
