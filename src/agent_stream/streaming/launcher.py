"""Start task runs on worker threads and hand back their wire channel."""

from __future__ import annotations

import logging
import threading

from agent_stream.config.settings import Settings
from agent_stream.errors import RunConflictError
from agent_stream.models import TaskRecord
from agent_stream.runtime.base import RunRequest
from agent_stream.runtime.registry import RuntimeRegistry
from agent_stream.storage.base import TaskStore
from agent_stream.streaming.channel import FrameChannel
from agent_stream.streaming.encoder import RunEncoder
from agent_stream.streaming.leases import TaskLeases

logger = logging.getLogger(__name__)


class RunLauncher:
    def __init__(
        self,
        store: TaskStore,
        runtimes: RuntimeRegistry,
        leases: TaskLeases,
        settings: Settings,
    ) -> None:
        self.store = store
        self.runtimes = runtimes
        self.leases = leases
        self.settings = settings

    def start(
        self,
        task: TaskRecord,
        *,
        prompt: str | None = None,
        timeout_ms: int | None = None,
    ) -> FrameChannel:
        """Acquire the task's lease and begin streaming a run.

        A new ``prompt`` is stored as a user message before the run starts; it
        is not echoed on the wire. Raises RunConflictError when another run
        already holds the lease.
        """
        if not self.leases.acquire(task.id):
            raise RunConflictError(task.id)

        try:
            if prompt:
                self.store.create_message(task.id, role="user", content=prompt)
            runtime = self.runtimes.get_or_create(task.id)
            # A pause that landed after the previous run ended must not hold this one.
            runtime.resume()
            channel = FrameChannel(keepalive_s=self.settings.stream_keepalive_s)
            encoder = RunEncoder(
                task.id,
                self.store,
                runtime,
                channel,
                checkpoint_chars=self.settings.checkpoint_chars,
                output_content_limit=self.settings.output_content_limit,
                on_terminal=lambda: self.leases.release(task.id),
            )
            request = RunRequest(
                prompt=prompt or task.prompt,
                timeout_ms=timeout_ms or self.settings.default_run_timeout_ms,
                session_id=task.session_id,
            )
            worker = threading.Thread(
                target=encoder.execute,
                args=(request,),
                name=f"task-run-{task.id[:8]}",
                daemon=True,
            )
            worker.start()
        except Exception:
            self.leases.release(task.id)
            raise

        logger.info("task_run event=launched task_id=%s new_prompt=%s", task.id, bool(prompt))
        return channel
