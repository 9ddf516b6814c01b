"""
Agent Models - Job and device identity.

Internal state tracked by the dispatcher and job executor. These are plain
dataclasses; wire representations live in ``protocol``.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from .protocol import RunTaskPayload


def _utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TaskItem:
    """One named task of a job. Options are opaque to the agent."""

    name: str
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Job:
    """The single unit of work the device is currently executing."""

    job_id: str
    controller: str
    resource: str
    tasks: List[TaskItem] = field(default_factory=list)
    status: JobStatus = JobStatus.RUNNING
    start_time: datetime = field(default_factory=_utc_now)
    # Monotonic start used for duration_ms
    started_at: float = field(default_factory=time.monotonic)

    @classmethod
    def from_payload(cls, payload: RunTaskPayload) -> "Job":
        return cls(
            job_id=payload.job_id,
            controller=payload.controller,
            resource=payload.resource,
            tasks=[TaskItem(name=t.name, options=dict(t.options)) for t in payload.tasks],
        )

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)


@dataclass
class DeviceIdentity:
    """Credentials issued by the server on registration."""

    device_id: str = ""
    device_token: str = ""

    @property
    def has_token(self) -> bool:
        return bool(self.device_token)

    @property
    def redacted_token(self) -> str:
        """Token prefix for log output."""
        if not self.device_token:
            return ""
        if len(self.device_token) <= 8:
            return "***"
        return f"{self.device_token[:4]}***"


__all__ = ["DeviceIdentity", "Job", "JobStatus", "TaskItem"]
