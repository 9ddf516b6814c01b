"""
Automation Engine - Collaborator Interfaces

The agent never talks to the automation framework directly. Engine bindings
implement ``AutomationEngine``; during a job they report progress through a
``TelemetrySink`` handed to ``run_task`` and never see the executor's queues.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ...models.job import Job
from ...models.protocol import CapabilitiesPayload


class TelemetrySink(ABC):
    """
    Receiver for job telemetry emitted by the engine.

    Both methods are non-blocking and safe to call from any thread. They
    return False when the item was dropped (buffer full or sink closed).
    """

    @abstractmethod
    def emit_status(
        self,
        current_task: str,
        completed: int,
        total: int,
        message: Optional[str] = None,
        status: str = "running",
    ) -> bool:
        ...

    @abstractmethod
    def emit_log(
        self,
        level: str,
        message: str,
        node_name: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> bool:
        ...


@dataclass
class Screenshot:
    """Encoded screen capture."""

    data: bytes
    width: int
    height: int


class AutomationEngine(ABC):
    """
    Capability interface of the automation engine.

    ``run_task``, ``stop_task`` and ``take_screenshot`` are blocking calls and
    are invoked from worker threads.
    """

    @abstractmethod
    def get_capabilities(self) -> CapabilitiesPayload:
        """Tasks, controllers and resources this device can run."""

    @abstractmethod
    def run_task(self, job: Job, sink: TelemetrySink) -> None:
        """
        Run every task of ``job``; may take arbitrarily long.

        Raises:
            Exception: Any failure; its message becomes the job's error
        """

    @abstractmethod
    def stop_task(self) -> None:
        """Ask the running job to stop. Advisory; ``run_task`` still returns normally."""

    @abstractmethod
    def take_screenshot(self) -> Screenshot:
        """Capture the controlled screen as PNG."""

    @abstractmethod
    def clear_telemetry_sinks(self) -> None:
        """Drop references to the current sink. Called before the sink is closed."""

    @abstractmethod
    def get_version(self) -> str:
        """Engine/resource version reported on auth and register."""


__all__ = ["AutomationEngine", "Screenshot", "TelemetrySink"]
