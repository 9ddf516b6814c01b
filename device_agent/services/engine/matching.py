"""
Automation Engine - Window Matching

Regular expression match first; an invalid pattern falls back to substring
containment and the downgrade is logged.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from ...config import EngineSettings

logger = logging.getLogger(__name__)


def match_pattern(pattern: str, value: str, field: str = "pattern") -> bool:
    """
    Match ``value`` against ``pattern`` (search semantics).

    An empty pattern matches anything; an empty value matches only an empty
    pattern.
    """
    if not pattern:
        return True
    if not value:
        return False
    try:
        return re.search(pattern, value) is not None
    except re.error as e:
        logger.warning(f"Invalid {field} '{pattern}': {e}, falling back to substring match")
        return pattern in value


@dataclass
class WindowInfo:
    """A desktop window candidate."""

    handle: int
    class_name: str = ""
    window_name: str = ""


def match_window(window: WindowInfo, class_pattern: str = "", title_pattern: str = "") -> bool:
    """True if the window satisfies both the class and the title pattern."""
    if not match_pattern(class_pattern, window.class_name, "window_class_pattern"):
        return False
    return match_pattern(title_pattern, window.window_name, "window_title_pattern")


def find_window(windows: Iterable[WindowInfo], settings: EngineSettings) -> Optional[WindowInfo]:
    """
    First window matching the configured ``window_class_pattern`` and
    ``window_title_pattern``, or None.
    """
    for window in windows:
        if match_window(window, settings.window_class_pattern, settings.window_title_pattern):
            return window
    logger.warning(
        f"No window matches class={settings.window_class_pattern!r} "
        f"title={settings.window_title_pattern!r}"
    )
    return None


__all__ = ["WindowInfo", "find_window", "match_pattern", "match_window"]
