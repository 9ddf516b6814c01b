"""
Agent Connector - Connection Management

Keeps a session to the orchestration server alive: connect, run the session
until it is lost, back off exponentially and retry. Coordinates the
dispatcher, job executor and heartbeat components.
"""

import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from ...config import AgentConfig
from ...errors import ConnectError, TransportError
from ...models.protocol import MessageKind
from ..credentials import CredentialStore
from ..engine.base import AutomationEngine
from .dispatcher import Dispatcher
from .envelope import encode
from .executor import JobExecutor
from .heartbeat import HeartbeatMonitor
from .session import TransportSession

logger = logging.getLogger(__name__)

TransportFactory = Callable[[str, float], Awaitable[TransportSession]]
ConnectionHook = Callable[["DeviceConnector"], Any]

# Only meaningful on the session they were queued for
_SESSION_BOUND_KINDS = frozenset({MessageKind.AUTH, MessageKind.PING})


def backoff_delay(attempt: int, max_delay: float = 30.0) -> float:
    """
    Delay before reconnect attempt ``attempt`` (1-based): 1, 2, 4, ... capped.
    """
    if attempt < 1:
        return 0.0
    return float(min(2 ** (attempt - 1), max_delay))


class DeviceConnector:
    """
    Device connector for agent to server communication.

    Owns the reconnect loop and the outbound queue. The queue outlives
    individual sessions; everything enqueued goes out on the next live
    session in enqueue order, except ``auth`` and ``ping`` frames left over
    from a previous session.
    """

    def __init__(
        self,
        config: AgentConfig,
        credential_store: CredentialStore,
        engine: Optional[AutomationEngine] = None,
        transport_factory: Optional[TransportFactory] = None,
        on_connected: Optional[ConnectionHook] = None,
        on_disconnected: Optional[ConnectionHook] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Initialize device connector.

        Args:
            config: Agent configuration
            credential_store: Persistence for the device identity
            engine: Automation engine (None -> jobs are rejected)
            transport_factory: ``await factory(url, timeout)`` returning a live session
            on_connected: Called after each successful connect
            on_disconnected: Called after each session ends
            sleep: Backoff sleep override (default waits on the stop signal)
        """
        self.config = config
        self.credential_store = credential_store
        self.transport_factory = transport_factory or TransportSession.open
        self.on_connected = on_connected
        self.on_disconnected = on_disconnected
        self._sleep = sleep

        self.identity = credential_store.load()
        self._outbound: "asyncio.Queue[Tuple[MessageKind, bytes]]" = asyncio.Queue(
            maxsize=config.server.send_queue_size
        )
        self.executor = JobExecutor(engine, self.send_message, config.jobs)
        self.dispatcher = Dispatcher(
            config, credential_store, self.identity, self.executor, self.send_message
        )

        self._reconnect_attempts = 0
        self._is_connected = False
        self._connected_lock = threading.Lock()
        self._connected_event = asyncio.Event()
        self._stop_event = asyncio.Event()
        self._session: Optional[TransportSession] = None

    # ============================================================
    #  State
    # ============================================================

    @property
    def is_connected(self) -> bool:
        with self._connected_lock:
            return self._is_connected

    def _set_connected(self, connected: bool) -> None:
        with self._connected_lock:
            self._is_connected = connected
        if connected:
            self._connected_event.set()
        else:
            self._connected_event.clear()

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    def status(self) -> Dict[str, Any]:
        """Point-in-time snapshot; safe to call from any thread."""
        job = self.executor.active_job
        return {
            "connected": self.is_connected,
            "auth_state": self.dispatcher.auth_state.value,
            "device_id": self.dispatcher.device_id,
            "active_job_id": job.job_id if job else None,
        }

    async def wait_connected(self, timeout: Optional[float] = None) -> bool:
        """Wait for a live session. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # ============================================================
    #  Outbound
    # ============================================================

    def send_message(self, kind: MessageKind, payload: Any = None) -> bool:
        """
        Enqueue one outbound envelope without blocking.

        Returns:
            False if the queue was full and the message was dropped
        """
        frame = encode(kind, payload)
        try:
            self._outbound.put_nowait((kind, frame))
        except asyncio.QueueFull:
            logger.warning(f"Send queue full, dropping {kind.value} message")
            return False
        return True

    def register(self, bind_code: str) -> bool:
        """Bind this device to a user account with a one-time code."""
        return self.dispatcher.register(bind_code)

    # ============================================================
    #  Supervisor
    # ============================================================

    async def run(self) -> None:
        """
        Run until ``stop`` is called.

        Returns normally on stop; cancellation of the calling task propagates
        as CancelledError.
        """
        url = self.config.server.ws_url
        logger.info(f"Device connector starting (server: {url})")

        while not self._stop_event.is_set():
            try:
                session = await self.transport_factory(url, self.config.server.connect_timeout)
            except ConnectError as e:
                await self._schedule_reconnect(f"Connect failed: {e}")
                continue

            if self._reconnect_attempts:
                logger.info(f"Reconnected after {self._reconnect_attempts} attempts")
            self._reconnect_attempts = 0

            self._session = session
            self._set_connected(True)
            try:
                register_pending = self._discard_stale_frames()
                self.dispatcher.on_session_start(register_pending=register_pending)
                await self._call_hook(self.on_connected)
                await self._run_session(session)
            finally:
                self._set_connected(False)
                self._session = None
                await session.close()
                await self._call_hook(self.on_disconnected)

            if not self._stop_event.is_set():
                await self._schedule_reconnect("Session ended")

        await self.executor.shutdown()
        logger.info("Device connector stopped")

    async def _schedule_reconnect(self, reason: str) -> None:
        self._reconnect_attempts += 1
        delay = backoff_delay(self._reconnect_attempts, self.config.server.reconnect_max_delay)
        logger.warning(f"{reason} (attempt {self._reconnect_attempts}); retrying in {delay:.0f}s")
        await self._backoff(delay)

    def _discard_stale_frames(self) -> bool:
        """
        Drop ``auth`` and ``ping`` frames queued for a previous session.

        Returns:
            True if a ``register`` is still waiting to go out
        """
        kept = []
        while True:
            try:
                item = self._outbound.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._outbound.task_done()
            if item[0] in _SESSION_BOUND_KINDS:
                logger.debug(f"Discarding stale {item[0].value} message")
                continue
            kept.append(item)

        for item in kept:
            self._outbound.put_nowait(item)
        return any(kind == MessageKind.REGISTER for kind, _ in kept)

    async def _backoff(self, delay: float) -> None:
        if self._sleep is not None:
            await self._sleep(delay)
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _call_hook(self, hook: Optional[ConnectionHook]) -> None:
        if hook is None:
            return
        try:
            result = hook(self)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"Connection hook failed: {e}", exc_info=True)

    async def _run_session(self, session: TransportSession) -> None:
        """
        Run receiver and sender with the heartbeat until one of them ends or
        stop is requested, then cancel the rest.
        """
        heartbeat = HeartbeatMonitor(
            lambda: self.send_message(MessageKind.PING),
            interval=self.config.server.heartbeat_interval,
            is_connected=lambda: self.is_connected,
        )
        receiver = asyncio.create_task(self._receive_loop(session), name="receiver")
        sender = asyncio.create_task(self._send_loop(session), name="sender")
        stop = asyncio.create_task(self._stop_event.wait(), name="stop")
        tasks = [receiver, sender, stop]

        await heartbeat.start()
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            if stop in done:
                await self._wind_down(sender)
        finally:
            await heartbeat.stop()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        for task in done:
            if task.cancelled():
                continue
            error = task.exception()
            if isinstance(error, TransportError):
                logger.warning(f"Connection lost ({task.get_name()}): {error}")
            elif error is not None:
                logger.error(f"Session task {task.get_name()} crashed: {error}", exc_info=error)

    async def _wind_down(self, sender: asyncio.Task) -> None:
        """
        Stop the active job and flush the outbound queue while the session is
        still up, each bounded by ``shutdown_grace``.
        """
        grace = self.config.server.shutdown_grace
        if self.executor.active_job is not None:
            logger.info("Stopping active job before disconnecting")
            await self.executor.shutdown()
            try:
                await asyncio.wait_for(self.executor.join(), grace)
            except asyncio.TimeoutError:
                logger.warning(f"Active job did not finish within {grace:g}s")

        flushed = asyncio.create_task(self._outbound.join())
        try:
            await asyncio.wait([flushed, sender], timeout=grace, return_when=asyncio.FIRST_COMPLETED)
            if not flushed.done():
                logger.warning(f"{self._outbound.qsize()} outbound messages not sent before disconnect")
        finally:
            flushed.cancel()

    async def _receive_loop(self, session: TransportSession) -> None:
        while True:
            frame = await session.receive()
            await self.dispatcher.handle_frame(frame)

    async def _send_loop(self, session: TransportSession) -> None:
        while True:
            _, frame = await self._outbound.get()
            try:
                await session.send(frame)
            finally:
                self._outbound.task_done()

    def stop(self) -> None:
        """Request shutdown; ``run`` returns at the next opportunity."""
        if not self._stop_event.is_set():
            logger.info("Stopping device connector")
        self._stop_event.set()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()


__all__ = ["DeviceConnector", "backoff_delay"]
