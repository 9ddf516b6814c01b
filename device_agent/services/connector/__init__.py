"""
Agent Connector Service

Session and job orchestration between the device and the orchestration
server: WebSocket transport, envelope codec, dispatcher, single-flight job
executor, heartbeat and the reconnect supervisor.
"""

from .connector import DeviceConnector, backoff_delay
from .dispatcher import AuthState, Dispatcher
from .executor import JobExecutor
from .heartbeat import HeartbeatMonitor
from .session import TransportSession

__all__ = [
    "AuthState",
    "DeviceConnector",
    "Dispatcher",
    "HeartbeatMonitor",
    "JobExecutor",
    "TransportSession",
    "backoff_delay",
]
