"""
Automation Engine

Capability interface consumed by the connector plus helpers for writing
engine bindings.
"""

from .base import AutomationEngine, Screenshot, TelemetrySink
from .events import EngineEventRelay
from .matching import WindowInfo, find_window, match_pattern, match_window
from .runner import TaskSequenceRunner

__all__ = [
    "AutomationEngine",
    "EngineEventRelay",
    "Screenshot",
    "TaskSequenceRunner",
    "TelemetrySink",
    "WindowInfo",
    "find_window",
    "match_pattern",
    "match_window",
]
