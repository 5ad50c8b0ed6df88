"""FastAPI app entrypoint for agent-stream."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import StreamingResponse

from agent_stream.config.settings import Settings, get_settings
from agent_stream.errors import InvalidTransitionError, RunConflictError
from agent_stream.models import (
    CreateTaskRequest,
    RunTaskRequest,
    TaskDetail,
    TaskRecord,
    TaskStatus,
    TaskUpdate,
)
from agent_stream.protocol.events import SSE_HEADERS
from agent_stream.runtime.base import AgentRuntime
from agent_stream.runtime.registry import RuntimeFactory, RuntimeRegistry
from agent_stream.runtime.scripted import ScriptedRuntime
from agent_stream.storage.base import TaskStore
from agent_stream.storage.memory import InMemoryTaskStore
from agent_stream.storage.postgres import PostgresTaskStore
from agent_stream.streaming.launcher import RunLauncher
from agent_stream.streaming.leases import TaskLeases
from agent_stream.streaming.status import ensure_transition

logger = logging.getLogger(__name__)


def _default_runtime_factory(settings: Settings) -> RuntimeFactory:
    script_path = settings.runtime_script_path

    def _build(task_id: str) -> AgentRuntime:
        if script_path:
            return ScriptedRuntime.from_file(Path(script_path))
        return ScriptedRuntime()

    return _build


def _build_store(settings: Settings) -> TaskStore:
    if settings.storage_backend == "memory":
        return InMemoryTaskStore()
    database_url = settings.resolved_database_url()
    if not database_url:
        raise RuntimeError(
            "Missing database URL. Set AGENT_STREAM_DATABASE_URL "
            "or DATABASE_URL before starting the app."
        )
    return PostgresTaskStore(database_url)


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    store_override: TaskStore | None,
    runtime_factory: RuntimeFactory | None,
) -> None:
    if not hasattr(app.state, "store"):
        app.state.store = store_override or _build_store(settings)
        app.state.store.migrate()

    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "launcher"):
        app.state.runtimes = RuntimeRegistry(runtime_factory or _default_runtime_factory(settings))
        app.state.leases = TaskLeases()
        app.state.launcher = RunLauncher(
            app.state.store, app.state.runtimes, app.state.leases, settings
        )


def create_app(
    *,
    store: TaskStore | None = None,
    runtime_factory: RuntimeFactory | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    logging.getLogger("agent_stream").setLevel(settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure_runtime_state(
            app,
            settings=settings,
            store_override=store,
            runtime_factory=runtime_factory,
        )
        yield

    app_lifespan = lifespan if store is None else None
    app = FastAPI(title=settings.app_name, lifespan=app_lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if store is not None:
        _ensure_runtime_state(
            app,
            settings=settings,
            store_override=store,
            runtime_factory=runtime_factory,
        )

    def _get_task_store(request: Request) -> TaskStore:
        if not hasattr(request.app.state, "store"):
            _ensure_runtime_state(
                request.app,
                settings=settings,
                store_override=store,
                runtime_factory=runtime_factory,
            )
        return request.app.state.store

    def _require_task(task_store: TaskStore, task_id: str) -> TaskRecord:
        record = task_store.get_task(task_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Task not found")
        return record

    def _check_transition(current: TaskStatus, target: TaskStatus) -> None:
        try:
            ensure_transition(current, target)
        except InvalidTransitionError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    def _require_active_run(request: Request, task_id: str) -> None:
        if not request.app.state.leases.is_held(task_id):
            raise HTTPException(status_code=400, detail="Task has no active run")
        if request.app.state.runtimes.get(task_id) is None:
            raise HTTPException(status_code=400, detail="Task has no live session")

    def _write_status(
        task_store: TaskStore, task_id: str, *, expected: TaskStatus, **changes: object
    ) -> TaskRecord:
        try:
            return task_store.update_task(task_id, expected_status=expected, **changes)
        except InvalidTransitionError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.post("/tasks", response_model=TaskRecord)
    def create_task(payload: CreateTaskRequest, request: Request) -> TaskRecord:
        task_store = _get_task_store(request)
        return task_store.create_task(payload.prompt, title=payload.title)

    @app.get("/tasks/{task_id}", response_model=TaskDetail)
    def get_task(task_id: str, request: Request) -> TaskDetail:
        task_store = _get_task_store(request)
        detail = task_store.get_task_detail(task_id)
        if detail is None:
            raise HTTPException(status_code=404, detail="Task not found")
        return detail

    @app.put("/tasks/{task_id}", response_model=TaskRecord)
    def update_task(task_id: str, payload: TaskUpdate, request: Request) -> TaskRecord:
        task_store = _get_task_store(request)
        record = _require_task(task_store, task_id)

        changes = payload.changes()
        # The active run owns the session id; a stale client must not clear it.
        if "session_id" in changes and changes["session_id"] is None:
            if request.app.state.leases.is_held(task_id):
                del changes["session_id"]
        if changes.get("status") == record.status:
            del changes["status"]
        if not changes:
            return record
        if "status" not in changes:
            return task_store.update_task(task_id, **changes)
        _check_transition(record.status, changes["status"])
        if changes["status"] in ("running", "paused"):
            _require_active_run(request, task_id)
        return _write_status(task_store, task_id, expected=record.status, **changes)

    @app.post("/tasks/{task_id}/run")
    def run_task(
        task_id: str,
        request: Request,
        payload: RunTaskRequest | None = None,
    ) -> StreamingResponse:
        task_store = _get_task_store(request)
        record = _require_task(task_store, task_id)
        body = payload or RunTaskRequest()

        try:
            channel = request.app.state.launcher.start(
                record, prompt=body.prompt, timeout_ms=body.timeout_ms
            )
        except RunConflictError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

        return StreamingResponse(
            channel.frames(),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.post("/tasks/{task_id}/pause", response_model=TaskRecord)
    def pause_task(task_id: str, request: Request) -> TaskRecord:
        task_store = _get_task_store(request)
        record = _require_task(task_store, task_id)
        _check_transition(record.status, "paused")
        _require_active_run(request, task_id)

        _write_status(task_store, task_id, expected="running", status="paused")
        request.app.state.runtimes.pause(task_id)
        logger.info("task_run event=paused task_id=%s", task_id)
        # The run may have finished meanwhile; report what is stored now.
        return _require_task(task_store, task_id)

    @app.post("/tasks/{task_id}/resume", response_model=TaskRecord)
    def resume_task(task_id: str, request: Request) -> TaskRecord:
        task_store = _get_task_store(request)
        record = _require_task(task_store, task_id)
        if record.status != "paused":
            raise HTTPException(status_code=400, detail="Task is not paused")
        _require_active_run(request, task_id)

        _write_status(task_store, task_id, expected="paused", status="running")
        request.app.state.runtimes.resume(task_id)
        logger.info("task_run event=resumed task_id=%s", task_id)
        return _require_task(task_store, task_id)

    return app


# Module-level app for `uvicorn agent_stream.api.main:app`.
app = create_app()
