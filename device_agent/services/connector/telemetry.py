"""
Agent Connector - Telemetry Channels

Bounded, thread-safe hand-off between the engine thread (producer) and the
forwarding tasks on the event loop (consumer).

- ``offer`` never blocks: when the buffer is full the newest item is dropped
- ``close`` is called only by the owning executor, after the engine returned
  and its sinks were cleared; offers after close are rejected, not raised
"""

import asyncio
import logging
import threading
from collections import deque
from typing import Deque, Generic, Optional, TypeVar

from ...models.protocol import JobProgress, TaskLogPayload, TaskStatusPayload
from ..engine.base import TelemetrySink

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TelemetryChannel(Generic[T]):
    """Bounded single-consumer channel."""

    def __init__(self, capacity: int, name: str = "telemetry"):
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.name = name
        self._items: Deque[T] = deque()
        self._lock = threading.Lock()
        self._closed = False
        self._dropped = 0
        self._loop = asyncio.get_running_loop()
        self._ready = asyncio.Event()

    def offer(self, item: T) -> bool:
        """Enqueue without blocking. Returns False if dropped."""
        with self._lock:
            if self._closed or len(self._items) >= self.capacity:
                self._dropped += 1
                return False
            self._items.append(item)
        self._wake()
        return True

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._wake()

    def _wake(self) -> None:
        try:
            self._loop.call_soon_threadsafe(self._ready.set)
        except RuntimeError:
            # Event loop already closed; nobody is left to consume
            pass

    async def get(self) -> Optional[T]:
        """Next item, or None once the channel is closed and drained."""
        while True:
            with self._lock:
                if self._items:
                    return self._items.popleft()
                if self._closed:
                    return None
                self._ready.clear()
            await self._ready.wait()

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class ChannelTelemetrySink(TelemetrySink):
    """TelemetrySink bound to one job, writing into the executor's channels."""

    def __init__(
        self,
        job_id: str,
        status_channel: TelemetryChannel[TaskStatusPayload],
        log_channel: TelemetryChannel[TaskLogPayload],
    ):
        self.job_id = job_id
        self.status_channel = status_channel
        self.log_channel = log_channel

    def emit_status(self, current_task, completed, total, message=None, status="running") -> bool:
        return self.status_channel.offer(
            TaskStatusPayload(
                job_id=self.job_id,
                status=status,
                current_task=current_task,
                progress=JobProgress(completed=completed, total=total),
                message=message,
            )
        )

    def emit_log(self, level, message, node_name=None, event_type=None) -> bool:
        return self.log_channel.offer(
            TaskLogPayload(
                job_id=self.job_id,
                level=level,
                message=message,
                node_name=node_name,
                event_type=event_type,
            )
        )


__all__ = ["ChannelTelemetrySink", "TelemetryChannel"]
