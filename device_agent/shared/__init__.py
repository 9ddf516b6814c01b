"""
Shared layer

Host introspection and logging setup used by the CLI and the connector.
"""

from .logging_config import configure_logging
from .system_info import get_os_info

__all__ = [
    "configure_logging",
    "get_os_info",
]
