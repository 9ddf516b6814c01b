"""
Automation Engine - Event Relay

Engine bindings register framework callbacks once and route them through an
``EngineEventRelay``. The executor's sink is attached for the duration of a
job and detached (``clear``) before the sink is closed, so callbacks that
fire late are dropped.
"""

import logging
import threading
from typing import Optional

from .base import TelemetrySink

logger = logging.getLogger(__name__)

EVENT_STARTING = "starting"
EVENT_SUCCEEDED = "succeeded"
EVENT_FAILED = "failed"


class EngineEventRelay:
    """Thread-safe holder of the current job's TelemetrySink."""

    def __init__(self):
        self._sink: Optional[TelemetrySink] = None
        self._lock = threading.Lock()

    def set_sink(self, sink: TelemetrySink) -> None:
        with self._lock:
            self._sink = sink

    def clear(self) -> None:
        with self._lock:
            self._sink = None

    @property
    def sink(self) -> Optional[TelemetrySink]:
        with self._lock:
            return self._sink

    def emit_status(
        self,
        current_task: str,
        completed: int,
        total: int,
        message: Optional[str] = None,
        status: str = "running",
    ) -> bool:
        sink = self.sink
        if sink is None:
            return False
        return sink.emit_status(current_task, completed, total, message=message, status=status)

    def emit_log(
        self,
        level: str,
        message: str,
        node_name: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> bool:
        sink = self.sink
        if sink is None:
            return False
        return sink.emit_log(level, message, node_name=node_name, event_type=event_type)

    def on_task_event(self, status: str, entry: str) -> bool:
        """Framework task lifecycle callback."""
        if status == EVENT_STARTING:
            level, message = "info", f"Task started: {entry}"
        elif status == EVENT_SUCCEEDED:
            level, message = "info", f"Task succeeded: {entry}"
        elif status == EVENT_FAILED:
            level, message = "error", f"Task failed: {entry}"
        else:
            level, message = "info", f"Task event {status}: {entry}"
        return self.emit_log(level, message, event_type="task")

    def on_node_event(self, status: str, name: str) -> bool:
        """Framework pipeline node callback. Unknown statuses are ignored."""
        if status == EVENT_STARTING:
            level, message = "debug", f"Node started: {name}"
        elif status == EVENT_SUCCEEDED:
            level, message = "debug", f"Node finished: {name}"
        elif status == EVENT_FAILED:
            level, message = "warn", f"Node failed: {name}"
        else:
            return False
        return self.emit_log(level, message, node_name=name, event_type="node")


__all__ = ["EVENT_FAILED", "EVENT_STARTING", "EVENT_SUCCEEDED", "EngineEventRelay"]
