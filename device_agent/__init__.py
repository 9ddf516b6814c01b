"""
Device Agent

Long-lived agent that keeps a WebSocket session to an orchestration server,
authenticates the device and runs one automation job at a time.
"""

from .config import AgentConfig, load_config
from .services.connector import DeviceConnector

__version__ = "0.2.0"

__all__ = [
    "AgentConfig",
    "DeviceConnector",
    "load_config",
]
