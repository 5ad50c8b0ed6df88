"""PostgreSQL-backed storage with automatic table migration.

Terms:
- Append-oriented: during a run rows are mostly inserted; updates touch only
  the open message, its tool calls and a few task columns.
- JSON text: ``input``, ``output``, ``locations`` and ``parts`` are stored as
  serialized JSON in TEXT columns so any reader can decode them.
"""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from typing import Any

from pydantic import TypeAdapter

from agent_stream.errors import InvalidTransitionError, PersistenceWriteError
from agent_stream.models import (
    ArtifactRecord,
    ContentType,
    MessageDetail,
    MessagePart,
    MessageRecord,
    MessageRole,
    ProgressItemRecord,
    TaskDetail,
    TaskRecord,
    TaskStatus,
    ToolCallRecord,
)
from agent_stream.runtime.base import FileMap, PlanEntry
from agent_stream.storage.base import (
    build_artifacts,
    build_progress_items,
    check_task_changes,
    check_tool_call_changes,
    default_title,
    new_id,
)

_PARTS_ADAPTER = TypeAdapter(list[MessagePart])
_JSON_TOOL_CALL_COLUMNS = frozenset({"input", "output", "locations"})


class PostgresTaskStore:
    """Persist tasks, messages, tool calls, progress and artifacts in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("AGENT_STREAM_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    prompt TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    session_id TEXT,
                    browser_live_url TEXT,
                    browser_screenshot_url TEXT,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    role TEXT NOT NULL,
                    content_type TEXT NOT NULL DEFAULT 'text',
                    content TEXT NOT NULL DEFAULT '',
                    parts TEXT,
                    mime_type TEXT,
                    created_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tool_calls (
                    id TEXT PRIMARY KEY,
                    message_id TEXT NOT NULL REFERENCES messages(id) ON DELETE CASCADE,
                    tool_call_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    title TEXT,
                    kind TEXT NOT NULL DEFAULT 'other',
                    status TEXT NOT NULL DEFAULT 'pending',
                    input TEXT,
                    output TEXT,
                    locations TEXT,
                    file_path TEXT,
                    command TEXT,
                    output_content TEXT,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS progress_items (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    position INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    priority TEXT NOT NULL DEFAULT 'medium'
                )
                """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS artifacts (
                    id TEXT PRIMARY KEY,
                    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    path TEXT NOT NULL,
                    type TEXT NOT NULL,
                    size BIGINT NOT NULL,
                    content TEXT,
                    created_at TIMESTAMPTZ NOT NULL
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_messages_task_id
                ON messages(task_id, created_at)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tool_calls_message_id
                ON tool_calls(message_id, tool_call_id)
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_progress_items_task_id
                ON progress_items(task_id, position)
                """)
            conn.commit()

    def create_task(self, prompt: str, *, title: str | None = None) -> TaskRecord:
        task_id = new_id()
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tasks (id, title, prompt, status, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (task_id, title or default_title(prompt), prompt, "pending", now, now),
            )
            conn.commit()
        created = self.get_task(task_id)
        if created is None:
            raise RuntimeError("Failed to load created task")
        return created

    def get_task(self, task_id: str) -> TaskRecord | None:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = %s", (task_id,)).fetchone()
        if row is None:
            return None
        return TaskRecord.model_validate(row)

    def get_task_detail(self, task_id: str) -> TaskDetail | None:
        with self._lock, self._connect() as conn:
            task_row = conn.execute("SELECT * FROM tasks WHERE id = %s", (task_id,)).fetchone()
            if task_row is None:
                return None
            message_rows = conn.execute(
                "SELECT * FROM messages WHERE task_id = %s ORDER BY created_at, id",
                (task_id,),
            ).fetchall()
            tool_call_rows = conn.execute(
                """
                SELECT tc.*
                FROM tool_calls tc
                JOIN messages m ON m.id = tc.message_id
                WHERE m.task_id = %s
                ORDER BY tc.created_at, tc.id
                """,
                (task_id,),
            ).fetchall()
            progress_rows = conn.execute(
                "SELECT * FROM progress_items WHERE task_id = %s ORDER BY position",
                (task_id,),
            ).fetchall()
            artifact_rows = conn.execute(
                "SELECT * FROM artifacts WHERE task_id = %s ORDER BY path",
                (task_id,),
            ).fetchall()

        tool_calls_by_message: dict[str, list[ToolCallRecord]] = {}
        for row in tool_call_rows:
            tool_call = self._row_to_tool_call(row)
            tool_calls_by_message.setdefault(tool_call.message_id, []).append(tool_call)

        messages = [
            MessageDetail(
                **self._row_to_message(row).model_dump(),
                tool_calls=tool_calls_by_message.get(row["id"], []),
            )
            for row in message_rows
        ]
        return TaskDetail(
            **TaskRecord.model_validate(task_row).model_dump(),
            messages=messages,
            progress=[ProgressItemRecord.model_validate(row) for row in progress_rows],
            artifacts=[ArtifactRecord.model_validate(row) for row in artifact_rows],
        )

    def update_task(
        self, task_id: str, *, expected_status: TaskStatus | None = None, **changes: Any
    ) -> TaskRecord:
        check_task_changes(changes)
        assignments = [f"{column} = %s" for column in changes]
        assignments.append("updated_at = %s")
        params = [*changes.values(), datetime.now(tz=UTC), task_id]
        where = "id = %s"
        if expected_status is not None:
            where += " AND status = %s"
            params.append(expected_status)
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE tasks SET {', '.join(assignments)} WHERE {where}",
                params,
            )
            applied = cursor.rowcount > 0
            conn.commit()
        refreshed = self.get_task(task_id)
        if refreshed is None:
            raise KeyError(f"Task {task_id} does not exist")
        if not applied and expected_status is not None:
            raise InvalidTransitionError(refreshed.status, changes.get("status", expected_status))
        return refreshed

    def create_message(
        self,
        task_id: str,
        *,
        role: MessageRole,
        content: str = "",
        content_type: ContentType = "text",
        mime_type: str | None = None,
    ) -> MessageRecord:
        record = MessageRecord(
            id=new_id(),
            task_id=task_id,
            role=role,
            content_type=content_type,
            content=content,
            mime_type=mime_type,
            created_at=datetime.now(tz=UTC),
        )
        with self._lock, self._connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO messages (
                        id, task_id, role, content_type, content, parts, mime_type, created_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        record.id,
                        task_id,
                        role,
                        content_type,
                        content,
                        None,
                        mime_type,
                        record.created_at,
                    ),
                )
            except self._psycopg.errors.ForeignKeyViolation as exc:
                raise PersistenceWriteError(f"Task {task_id} does not exist") from exc
            conn.commit()
        return record

    def update_message(
        self,
        message_id: str,
        *,
        content: str,
        parts: list[MessagePart] | None = None,
    ) -> None:
        with self._lock, self._connect() as conn:
            if parts is None:
                cursor = conn.execute(
                    "UPDATE messages SET content = %s WHERE id = %s",
                    (content, message_id),
                )
            else:
                # One statement so content and parts are never observed out of step.
                cursor = conn.execute(
                    "UPDATE messages SET content = %s, parts = %s WHERE id = %s",
                    (content, _dump_parts(parts), message_id),
                )
            updated_rows = cursor.rowcount
            conn.commit()
        if updated_rows == 0:
            raise PersistenceWriteError(f"Message {message_id} does not exist")

    def create_tool_call(self, tool_call: ToolCallRecord) -> ToolCallRecord:
        row = tool_call.model_dump(mode="json")
        with self._lock, self._connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO tool_calls (
                        id, message_id, tool_call_id, name, title, kind, status,
                        input, output, locations, file_path, command, output_content,
                        created_at, updated_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        tool_call.id,
                        tool_call.message_id,
                        tool_call.tool_call_id,
                        tool_call.name,
                        tool_call.title,
                        tool_call.kind,
                        tool_call.status,
                        _dump_json(row["input"]),
                        _dump_json(row["output"]),
                        _dump_json(row["locations"]),
                        tool_call.file_path,
                        tool_call.command,
                        tool_call.output_content,
                        tool_call.created_at,
                        tool_call.updated_at,
                    ),
                )
            except self._psycopg.errors.ForeignKeyViolation as exc:
                raise PersistenceWriteError(
                    f"Tool call {tool_call.tool_call_id} references missing message "
                    f"{tool_call.message_id}"
                ) from exc
            conn.commit()
        return tool_call

    def update_tool_call(
        self,
        message_id: str,
        tool_call_id: str,
        changes: dict[str, Any],
    ) -> ToolCallRecord | None:
        check_tool_call_changes(changes)
        assignments: list[str] = []
        params: list[Any] = []
        for column, value in changes.items():
            assignments.append(f"{column} = %s")
            params.append(_dump_json(value) if column in _JSON_TOOL_CALL_COLUMNS else value)
        assignments.append("updated_at = %s")
        params.extend([datetime.now(tz=UTC), message_id, tool_call_id])
        with self._lock, self._connect() as conn:
            row = conn.execute(
                f"""
                UPDATE tool_calls
                SET {', '.join(assignments)}
                WHERE message_id = %s AND tool_call_id = %s
                RETURNING *
                """,
                params,
            ).fetchone()
            conn.commit()
        if row is None:
            return None
        return self._row_to_tool_call(row)

    def replace_progress(self, task_id: str, entries: list[PlanEntry]) -> list[ProgressItemRecord]:
        items = build_progress_items(task_id, entries)
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM progress_items WHERE task_id = %s", (task_id,))
            for position, item in enumerate(items):
                conn.execute(
                    """
                    INSERT INTO progress_items (id, task_id, position, content, status, priority)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (item.id, task_id, position, item.content, item.status, item.priority),
                )
            conn.commit()
        return items

    def replace_artifacts(self, task_id: str, files: FileMap) -> list[ArtifactRecord]:
        artifacts = build_artifacts(task_id, files, now=datetime.now(tz=UTC))
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM artifacts WHERE task_id = %s", (task_id,))
            for artifact in artifacts:
                conn.execute(
                    """
                    INSERT INTO artifacts (id, task_id, name, path, type, size, content, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        artifact.id,
                        task_id,
                        artifact.name,
                        artifact.path,
                        artifact.type,
                        artifact.size,
                        artifact.content,
                        artifact.created_at,
                    ),
                )
            conn.commit()
        return artifacts

    def _connect(self) -> Any:
        """Open a psycopg connection that yields dict-like rows."""
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any]:
        """Import psycopg with a friendly install hint on failure."""
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError as exc:  # pragma: no cover - exercised only without dependency
            raise RuntimeError(
                "PostgreSQL backend requires psycopg. Install with: "
                'python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row

    @staticmethod
    def _row_to_message(row: Any) -> MessageRecord:
        raw_parts = row["parts"]
        return MessageRecord(
            id=row["id"],
            task_id=row["task_id"],
            role=row["role"],
            content_type=row["content_type"],
            content=row["content"] or "",
            parts=_PARTS_ADAPTER.validate_json(raw_parts) if raw_parts else [],
            mime_type=row["mime_type"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_tool_call(row: Any) -> ToolCallRecord:
        payload = dict(row)
        for column in _JSON_TOOL_CALL_COLUMNS:
            payload[column] = _load_json(payload.get(column))
        return ToolCallRecord.model_validate(payload)


def _dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _load_json(raw: Any) -> Any:
    if raw is None or raw == "":
        return None
    if isinstance(raw, str):
        return json.loads(raw)
    return raw


def _dump_parts(parts: list[MessagePart]) -> str:
    return _PARTS_ADAPTER.dump_json(parts, by_alias=True).decode("utf-8")
