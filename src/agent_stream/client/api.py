"""Blocking REST client for the task endpoints."""

from __future__ import annotations

import json
from typing import Any
from urllib import error, request

from agent_stream.errors import ApiResponseError, TransportError
from agent_stream.models import CreateTaskRequest, TaskDetail, TaskRecord, TaskUpdate


class TaskApiClient:
    def __init__(self, base_url: str, *, timeout_s: float = 30.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def health(self) -> dict[str, Any]:
        return self._request("GET", "/health")

    def create_task(self, prompt: str, *, title: str | None = None) -> TaskRecord:
        body = CreateTaskRequest(prompt=prompt, title=title)
        raw = self._request("POST", "/tasks", body.model_dump(by_alias=True, exclude_none=True))
        return TaskRecord.model_validate(raw)

    def get_task(self, task_id: str) -> TaskDetail:
        return TaskDetail.model_validate(self._request("GET", f"/tasks/{task_id}"))

    def update_task(self, task_id: str, **changes: Any) -> TaskRecord:
        body = TaskUpdate(**changes).model_dump(mode="json", by_alias=True, exclude_unset=True)
        return TaskRecord.model_validate(self._request("PUT", f"/tasks/{task_id}", body))

    def pause_task(self, task_id: str) -> TaskRecord:
        return TaskRecord.model_validate(self._request("POST", f"/tasks/{task_id}/pause"))

    def resume_task(self, task_id: str) -> TaskRecord:
        return TaskRecord.model_validate(self._request("POST", f"/tasks/{task_id}/resume"))

    def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> Any:
        req = request.Request(
            url=f"{self.base_url}{path}",
            data=json.dumps(body).encode("utf-8") if body is not None else None,
            method=method,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                raw = response.read().decode("utf-8")
        except error.HTTPError as exc:
            raise ApiResponseError(
                exc.code, exc.read().decode("utf-8", errors="replace")
            ) from exc
        except error.URLError as exc:
            raise TransportError(f"{method} {path} failed: {exc.reason}") from exc

        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise TransportError(f"{method} {path} returned non-JSON response") from exc
