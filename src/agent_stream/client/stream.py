"""Attach to a task run and fold its frames into a TaskStreamState."""

from __future__ import annotations

import http.client
import json
import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from typing import Any
from urllib import error, request

from agent_stream.client.decoder import SSEDecoder
from agent_stream.client.state import TaskStreamState
from agent_stream.errors import ApiResponseError, TransportError
from agent_stream.models import RunTaskRequest

logger = logging.getLogger(__name__)

# (url, JSON body) -> raw response chunks
Transport = Callable[[str, bytes], Iterable[bytes]]


class TaskStreamClient:
    """Runs a task over the event stream; one run at a time.

    ``cancel()`` may be called from another thread. After it returns the state
    is ``idle`` and no further frames are applied to it.
    """

    def __init__(
        self,
        base_url: str,
        *,
        state: TaskStreamState | None = None,
        transport: Transport | None = None,
        timeout_s: float | None = None,
        chunk_size: int = 4096,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.state = state or TaskStreamState()
        self.timeout_s = timeout_s
        self.chunk_size = chunk_size
        self._transport = transport or self._urllib_transport
        self._decoder = SSEDecoder()
        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._response: Any = None

    @property
    def attached(self) -> bool:
        return self.state.is_running and not self._cancelled.is_set()

    def run(
        self,
        task_id: str,
        prompt: str | None = None,
        *,
        timeout_ms: int | None = None,
    ) -> TaskStreamState:
        with self._lock:
            self._cancelled = cancelled = threading.Event()
            self._decoder.reset()
            self.state.begin_run()

        body = RunTaskRequest(prompt=prompt, timeout_ms=timeout_ms).model_dump(
            by_alias=True, exclude_none=True
        )
        url = f"{self.base_url}/tasks/{task_id}/run"
        try:
            for chunk in self._transport(url, json.dumps(body).encode("utf-8")):
                if cancelled.is_set():
                    break
                with self._lock:
                    if cancelled.is_set():
                        break
                    for frame in self._decoder.feed(chunk):
                        self.state.handle_frame(frame)
        except Exception as exc:  # noqa: BLE001
            with self._lock:
                if cancelled.is_set():
                    return self.state
                logger.warning("task_stream event=transport_failed task_id=%s error=%s", task_id, exc)
                self.state.error = str(exc)
                self.state.status = "failed"
                self.state.is_running = False
        return self.state

    def cancel(self) -> None:
        with self._lock:
            self._cancelled.set()
            self._decoder.reset()
            self.state.mark_idle()
            response, self._response = self._response, None
        if response is not None:
            try:
                response.close()
            except OSError as exc:
                logger.debug("task_stream event=close_failed error=%s", exc)

    def _urllib_transport(self, url: str, body: bytes) -> Iterator[bytes]:
        req = request.Request(
            url=url,
            data=body,
            method="POST",
            headers={"Content-Type": "application/json", "Accept": "text/event-stream"},
        )
        try:
            response = request.urlopen(req, timeout=self.timeout_s)
        except error.HTTPError as exc:
            raise ApiResponseError(
                exc.code, exc.read().decode("utf-8", errors="replace")
            ) from exc
        except error.URLError as exc:
            raise TransportError(f"Run request failed: {exc.reason}") from exc

        self._response = response
        try:
            while True:
                chunk = response.read1(self.chunk_size)
                if not chunk:
                    return
                yield chunk
        except (OSError, ValueError, http.client.HTTPException) as exc:
            raise TransportError(f"Run stream interrupted: {exc}") from exc
        finally:
            self._response = None
            response.close()
