"""
Agent Models

Wire payload schemas (pydantic) and internal job/identity state (dataclasses).
"""

from .job import DeviceIdentity, Job, JobStatus, TaskItem
from .protocol import (
    CapabilitiesPayload,
    MessageKind,
    RunTaskPayload,
    TaskCompletedPayload,
    TaskLogPayload,
    TaskStatusPayload,
)

__all__ = [
    "CapabilitiesPayload",
    "DeviceIdentity",
    "Job",
    "JobStatus",
    "MessageKind",
    "RunTaskPayload",
    "TaskCompletedPayload",
    "TaskItem",
    "TaskLogPayload",
    "TaskStatusPayload",
]
