"""
Agent Protocol - Message catalog and payload schemas.

Every frame exchanged with the orchestration server is a JSON envelope
``{type, payload, timestamp}``. The set of message types is closed; payload
schemas below describe the per-type ``payload`` object.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MessageKind(str, Enum):
    """Closed catalog of envelope types."""

    # Client -> Server
    REGISTER = "register"
    AUTH = "auth"
    PING = "ping"
    CAPABILITIES = "capabilities"
    TASK_STATUS = "task_status"
    TASK_LOG = "task_log"
    TASK_COMPLETED = "task_completed"
    SCREENSHOT = "screenshot"

    # Server -> Client
    REGISTERED = "registered"
    AUTHENTICATED = "authenticated"
    AUTH_FAILED = "auth_failed"
    PONG = "pong"
    RUN_TASK = "run_task"
    STOP_TASK = "stop_task"
    REQUEST_SCREENSHOT = "request_screenshot"
    ERROR = "error"


_KIND_VALUES = frozenset(kind.value for kind in MessageKind)


def is_known_kind(kind: str) -> bool:
    """Return True if ``kind`` belongs to the message catalog."""
    return kind in _KIND_VALUES


class Payload(BaseModel):
    """Base class for payload schemas. Unknown fields are tolerated."""

    model_config = ConfigDict(extra="ignore")


# ============================================================
#  Client -> Server payloads
# ============================================================


class RegisterPayload(Payload):
    bind_code: str
    device_name: str
    engine_version: str = "unknown"
    client_version: str = "unknown"
    install_path: str = ""
    os_info: str = ""


class AuthPayload(Payload):
    device_token: str
    engine_version: Optional[str] = None
    client_version: Optional[str] = None


class CaseInfo(Payload):
    name: str
    label: str = ""


class OptionInfo(Payload):
    name: str
    type: str = "select"
    label: str = ""
    cases: Optional[List[CaseInfo]] = None
    default_case: Optional[str] = None


class TaskInfo(Payload):
    """A task the engine can run, as advertised to the server."""

    name: str
    label: str = ""
    description: Optional[str] = None
    options: Optional[List[OptionInfo]] = None


class CapabilitiesPayload(Payload):
    tasks: List[TaskInfo] = Field(default_factory=list)
    controllers: List[str] = Field(default_factory=list)
    resources: List[str] = Field(default_factory=list)


class JobProgress(Payload):
    completed: int = 0
    total: int = 0


class TaskStatusPayload(Payload):
    job_id: str
    status: str
    current_task: str = ""
    progress: JobProgress = Field(default_factory=JobProgress)
    message: Optional[str] = None


class TaskLogPayload(Payload):
    job_id: str
    level: str = "info"
    message: str
    node_name: Optional[str] = None
    event_type: Optional[str] = None


class TaskCompletedPayload(Payload):
    job_id: str
    status: str
    error: Optional[str] = None
    duration_ms: int = 0


class ScreenshotPayload(Payload):
    request_id: str
    base64_image: str = ""
    width: int = 0
    height: int = 0
    error: Optional[str] = None


# ============================================================
#  Server -> Client payloads
# ============================================================


class RegisteredPayload(Payload):
    device_id: str
    device_token: str


class AuthenticatedPayload(Payload):
    device_id: str
    user_nickname: str = ""


class AuthFailedPayload(Payload):
    error: str = ""
    message: str = ""


class RunTaskItem(Payload):
    name: str
    options: Dict[str, Any] = Field(default_factory=dict)


class RunTaskPayload(Payload):
    job_id: str
    controller: str = ""
    resource: str = ""
    tasks: List[RunTaskItem] = Field(default_factory=list)


class StopTaskPayload(Payload):
    job_id: str


class RequestScreenshotPayload(Payload):
    request_id: str


class ErrorPayload(Payload):
    code: str = ""
    message: str = ""


__all__ = [
    "AuthFailedPayload",
    "AuthPayload",
    "AuthenticatedPayload",
    "CapabilitiesPayload",
    "CaseInfo",
    "ErrorPayload",
    "JobProgress",
    "MessageKind",
    "OptionInfo",
    "Payload",
    "RegisterPayload",
    "RegisteredPayload",
    "RequestScreenshotPayload",
    "RunTaskItem",
    "RunTaskPayload",
    "ScreenshotPayload",
    "StopTaskPayload",
    "TaskCompletedPayload",
    "TaskInfo",
    "TaskLogPayload",
    "TaskStatusPayload",
    "is_known_kind",
]
