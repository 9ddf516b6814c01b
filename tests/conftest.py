"""
Shared fakes for connector tests.

The engine and transport are replaced by in-memory fakes; no test talks to a
real automation framework.
"""

import asyncio
import json
import threading
import time
from typing import Any, Callable, List, Optional, Tuple

import pytest

from device_agent.config import AgentConfig, DeviceSettings, JobSettings
from device_agent.errors import ReadError, WriteError
from device_agent.models.protocol import (
    CapabilitiesPayload,
    MessageKind,
    TaskInfo,
)
from device_agent.services.connector.envelope import encode
from device_agent.services.engine.base import AutomationEngine, Screenshot


class FakeEngine(AutomationEngine):
    """
    In-memory engine.

    ``run`` is called as ``run(job, sink)`` on the worker thread. With
    ``block=True`` the call waits until ``stop_task`` or ``release``; with
    ``honour_stop=False`` only ``release`` ends it.
    """

    def __init__(
        self,
        run: Optional[Callable] = None,
        block: bool = False,
        version: str = "1.2.3",
        screenshot_error: Optional[Exception] = None,
        honour_stop: bool = True,
    ):
        self.run = run
        self.block = block
        self.honour_stop = honour_stop
        self.version = version
        self.screenshot_error = screenshot_error
        self.jobs: List[Any] = []
        self.stop_calls = 0
        self.cleared = 0
        self.started = threading.Event()
        self._release = threading.Event()
        self._lock = threading.Lock()
        self.running = 0
        self.max_running = 0

    def get_capabilities(self) -> CapabilitiesPayload:
        return CapabilitiesPayload(
            tasks=[TaskInfo(name="daily", label="Daily routine")],
            controllers=["win32"],
            resources=["default"],
        )

    def run_task(self, job, sink) -> None:
        with self._lock:
            self.running += 1
            self.max_running = max(self.max_running, self.running)
        try:
            self.jobs.append(job)
            self.started.set()
            if self.run is not None:
                self.run(job, sink)
            if self.block:
                self._release.wait(timeout=5)
        finally:
            with self._lock:
                self.running -= 1

    def stop_task(self) -> None:
        self.stop_calls += 1
        if self.honour_stop:
            self._release.set()

    def release(self) -> None:
        self._release.set()

    def take_screenshot(self) -> Screenshot:
        if self.screenshot_error is not None:
            raise self.screenshot_error
        return Screenshot(data=b"png", width=2, height=1)

    def clear_telemetry_sinks(self) -> None:
        self.cleared += 1

    def get_version(self) -> str:
        return self.version


class RecordingSender:
    """Stands in for the connector's outbound enqueue."""

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.sent: List[Tuple[MessageKind, Any]] = []
        self.events: List[str] = []

    def __call__(self, kind: MessageKind, payload: Any = None) -> bool:
        if not self.accept:
            return False
        self.sent.append((kind, payload))
        self.events.append(kind.value)
        return True

    def of(self, kind: MessageKind) -> List[Any]:
        return [payload for k, payload in self.sent if k == kind]

    @property
    def kinds(self) -> List[str]:
        return [k.value for k, _ in self.sent]


class FakeSession:
    """In-memory TransportSession."""

    def __init__(self):
        self.inbound: "asyncio.Queue[Any]" = asyncio.Queue()
        self.sent: List[dict] = []
        self.closed = False

    async def receive(self):
        item = await self.inbound.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, data) -> None:
        if self.closed:
            raise WriteError("Session is closed")
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.inbound.put_nowait(ReadError("Session is closed"))

    def feed(self, kind, payload=None) -> None:
        self.inbound.put_nowait(encode(kind, payload))

    def drop(self) -> None:
        self.inbound.put_nowait(ReadError("connection reset by peer"))

    def sent_types(self) -> List[str]:
        return [message["type"] for message in self.sent]


async def wait_for_condition(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the event loop until it holds."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def agent_config():
    return AgentConfig(
        device=DeviceSettings(name="dev-1"),
        jobs=JobSettings(status_buffer=10, log_buffer=10),
    )


@pytest.fixture
def sender():
    return RecordingSender()
