"""Line-delimited JSON progress stream for one job."""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator

from loguru import logger

HEARTBEAT_LINE = "\n"
DEFAULT_HEARTBEAT_SECONDS = 5.0

_CLOSE = object()


def encode_event(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False) + "\n"


class ProgressNotifier:
    """Append-only event stream that terminates exactly once.

    Producers call `step()` any number of times and then either `succeed()` or
    `fail()`. The consumer iterates `stream()`; while nothing is produced it
    yields a blank heartbeat line every `heartbeat_seconds`.
    """

    def __init__(self, job_id: str | None = None, heartbeat_seconds: float = DEFAULT_HEARTBEAT_SECONDS):
        self.job_id = job_id
        self.heartbeat_seconds = heartbeat_seconds
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._terminated = False
        self._detached = False

    @property
    def terminated(self) -> bool:
        return self._terminated

    def _put(self, payload: dict[str, Any]) -> bool:
        if self._terminated or self._detached:
            logger.debug("Dropping progress event after termination: {}", payload)
            return False
        self._queue.put_nowait(payload)
        return True

    def step(self, last_step: str) -> None:
        self._put({"last_step": last_step})

    def succeed(self, note_url: str, **extra: Any) -> None:
        payload = {"status": "success", "job_id": self.job_id, "note_url": note_url, **extra}
        if self._put(payload):
            self._finish()

    def fail(self, message: str) -> None:
        if self._put({"error": message}):
            self._finish()

    def detach(self) -> None:
        """Stop delivering events (consumer went away); later emits are dropped."""
        self._detached = True
        self._finish()

    def _finish(self) -> None:
        if self._terminated:
            return
        self._terminated = True
        self._queue.put_nowait(_CLOSE)

    async def stream(self) -> AsyncIterator[str]:
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=self.heartbeat_seconds)
            except asyncio.TimeoutError:
                yield HEARTBEAT_LINE
                continue
            if item is _CLOSE:
                return
            yield encode_event(item)
