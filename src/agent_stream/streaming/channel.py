"""Single-client wire channel between the encoder thread and the HTTP response."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterator
from typing import Any

from pydantic import BaseModel

from agent_stream.protocol.events import KEEPALIVE_FRAME, encode_frame

logger = logging.getLogger(__name__)

_CLOSE = object()


class FrameChannel:
    """Queue-backed frame pipe for exactly one connected client.

    The encoder calls ``send`` from its worker thread; the response iterates
    ``frames()``. Once the client goes away the channel is detached and every
    later ``send`` is a silent no-op returning False.
    """

    def __init__(self, *, keepalive_s: float = 15.0) -> None:
        self.keepalive_s = keepalive_s
        self._queue: queue.Queue[Any] = queue.Queue()
        self._lock = threading.Lock()
        self._closed = False
        self._detached = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def detached(self) -> bool:
        return self._detached

    def send(self, event: str, payload: BaseModel | dict[str, Any]) -> bool:
        with self._lock:
            if self._closed or self._detached:
                return False
            self._queue.put(encode_frame(event, payload))
        return True

    def close(self) -> bool:
        """Close the stream; returns False when it was already closed."""
        with self._lock:
            if self._closed:
                return False
            self._closed = True
            self._queue.put(_CLOSE)
        return True

    def detach(self) -> None:
        with self._lock:
            if self._detached:
                return
            self._detached = True
        logger.info("stream_channel event=detached")

    def frames(self) -> Iterator[str]:
        try:
            while True:
                try:
                    item = self._queue.get(timeout=self.keepalive_s)
                except queue.Empty:
                    yield KEEPALIVE_FRAME
                    continue
                if item is _CLOSE:
                    return
                yield item
        except GeneratorExit:
            # Response torn down before the run finished.
            self.detach()
            raise
