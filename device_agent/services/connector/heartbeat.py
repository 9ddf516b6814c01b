"""
Agent Connector - Heartbeat Monitor

Enqueues a periodic ``ping`` while the session is up. A missing ``pong`` is
not treated as a failure; only transport errors end a session.
"""

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class HeartbeatMonitor:
    """
    Heartbeat monitor for one session.

    Sends periodic ping messages through the outbound queue.
    """

    def __init__(
        self,
        send_ping: Callable[[], bool],
        interval: float = 30.0,
        is_connected: Optional[Callable[[], bool]] = None,
    ):
        """
        Initialize heartbeat monitor.

        Args:
            send_ping: Non-blocking enqueue of a ping envelope
            interval: Heartbeat interval in seconds (default: 30)
            is_connected: Optional guard; pings are skipped while it returns False
        """
        self.send_ping = send_ping
        self.interval = interval
        self.is_connected = is_connected
        self.sent = 0
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        """Start heartbeat monitoring."""
        if self._task and not self._task.done():
            logger.warning("Heartbeat monitor already running")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self.run())
        logger.info(f"Heartbeat monitor started (interval: {self.interval}s)")

    async def stop(self) -> None:
        """Stop heartbeat monitoring."""
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        logger.info("Heartbeat monitor stopped")

    async def run(self) -> None:
        """Heartbeat loop; returns when stopped."""
        try:
            while not self._stop_event.is_set():
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                    break
                except asyncio.TimeoutError:
                    pass

                if self.is_connected is not None and not self.is_connected():
                    continue

                if self.send_ping():
                    self.sent += 1
                    logger.debug("Heartbeat ping queued")
                else:
                    logger.warning("Heartbeat ping dropped: send queue full")

        except asyncio.CancelledError:
            logger.debug("Heartbeat loop cancelled")
            raise


__all__ = ["HeartbeatMonitor"]
