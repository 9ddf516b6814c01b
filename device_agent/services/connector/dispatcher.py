"""
Agent Connector - Dispatcher

Demultiplexes inbound envelopes and drives the authentication handshake:

    Unauthenticated --auth/register--> AwaitingServerAck --registered/authenticated--> Authenticated
                    <----------------- auth_failed ------------------------------------

Handlers run in arrival order. Only job execution and screenshot capture
leave the receive loop.
"""

import asyncio
import base64
import logging
import threading
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Set, Union

from ...config import AgentConfig
from ...errors import CredentialStoreError, ProtocolError
from ...models.job import DeviceIdentity
from ...models.protocol import (
    AuthenticatedPayload,
    AuthFailedPayload,
    AuthPayload,
    CapabilitiesPayload,
    ErrorPayload,
    MessageKind,
    RegisteredPayload,
    RegisterPayload,
    RequestScreenshotPayload,
    RunTaskPayload,
    ScreenshotPayload,
    StopTaskPayload,
    is_known_kind,
)
from ...shared.system_info import get_os_info
from ..credentials import CredentialStore
from .envelope import Envelope, decode
from .executor import ENGINE_NOT_INITIALIZED, JobExecutor

logger = logging.getLogger(__name__)

SendFn = Callable[[MessageKind, Any], bool]


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AWAITING_SERVER_ACK = "awaiting_server_ack"
    AUTHENTICATED = "authenticated"


class Dispatcher:
    """
    Inbound message router.

    Owns the device identity for the lifetime of the process; the connector
    creates one dispatcher and reuses it across sessions.
    """

    def __init__(
        self,
        config: AgentConfig,
        credential_store: CredentialStore,
        identity: DeviceIdentity,
        executor: JobExecutor,
        send: SendFn,
    ):
        """
        Initialize dispatcher.

        Args:
            config: Agent configuration
            credential_store: Persistence for the device identity
            identity: Identity loaded at startup (mutated in place)
            executor: Single-flight job executor
            send: Non-blocking outbound enqueue ``send(kind, payload) -> bool``
        """
        self.config = config
        self.credential_store = credential_store
        self.identity = identity
        self.executor = executor
        self._send = send
        self._state = AuthState.UNAUTHENTICATED
        self._state_lock = threading.Lock()
        self._tasks: Set[asyncio.Task] = set()

        self._handlers: Dict[str, Callable[[Envelope], Awaitable[None]]] = {
            MessageKind.REGISTERED.value: self._handle_registered,
            MessageKind.AUTHENTICATED.value: self._handle_authenticated,
            MessageKind.AUTH_FAILED.value: self._handle_auth_failed,
            MessageKind.PONG.value: self._handle_pong,
            MessageKind.RUN_TASK.value: self._handle_run_task,
            MessageKind.STOP_TASK.value: self._handle_stop_task,
            MessageKind.REQUEST_SCREENSHOT.value: self._handle_request_screenshot,
            MessageKind.ERROR.value: self._handle_error,
        }

    @property
    def engine(self):
        return self.executor.engine

    # ============================================================
    #  State
    # ============================================================

    @property
    def auth_state(self) -> AuthState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: AuthState) -> None:
        with self._state_lock:
            previous, self._state = self._state, state
        if previous != state:
            logger.info(f"Auth state: {previous.value} -> {state.value}")

    @property
    def device_id(self) -> str:
        with self._state_lock:
            return self.identity.device_id

    # ============================================================
    #  Handshake
    # ============================================================

    def on_session_start(self, register_pending: bool = False) -> None:
        """
        Restart the handshake for a fresh session and authenticate if a token
        is stored. Without a token the dispatcher waits for ``register``.

        Args:
            register_pending: A ``register`` queued before this session is
                still waiting to go out; its ack is awaited instead of
                resetting to Unauthenticated.
        """
        with self._state_lock:
            token = self.identity.device_token
            redacted = self.identity.redacted_token
        if not token:
            if register_pending:
                logger.info("Registration request queued, awaiting server ack")
                self._set_state(AuthState.AWAITING_SERVER_ACK)
            else:
                logger.info("No device token stored, waiting for a bind code")
                self._set_state(AuthState.UNAUTHENTICATED)
            return

        self._set_state(AuthState.UNAUTHENTICATED)
        logger.info(f"Authenticating with stored token {redacted}")
        self._send(
            MessageKind.AUTH,
            AuthPayload(
                device_token=token,
                engine_version=self._engine_version(),
                client_version=self.config.client_version,
            ),
        )
        self._set_state(AuthState.AWAITING_SERVER_ACK)

    def register(self, bind_code: str) -> bool:
        """
        Send a registration request with a user-supplied bind code.

        Returns:
            True if the request was queued
        """
        bind_code = bind_code.strip()
        if not bind_code:
            logger.warning("Ignoring empty bind code")
            return False

        logger.info(f"Registering device '{self.config.device.name}'")
        queued = self._send(
            MessageKind.REGISTER,
            RegisterPayload(
                bind_code=bind_code,
                device_name=self.config.device.name,
                engine_version=self._engine_version(),
                client_version=self.config.client_version,
                install_path=self.config.engine.path,
                os_info=get_os_info(),
            ),
        )
        if queued:
            self._set_state(AuthState.AWAITING_SERVER_ACK)
        return queued

    def _engine_version(self) -> str:
        if self.engine is None:
            return "unknown"
        try:
            return self.engine.get_version() or "unknown"
        except Exception as e:
            logger.warning(f"Failed to read engine version: {e}")
            return "unknown"

    async def send_capabilities(self) -> None:
        """Report the engine's capabilities. Without an engine an empty set is reported."""
        if self.engine is None:
            logger.warning(f"Reporting empty capabilities: {ENGINE_NOT_INITIALIZED}")
            self._send(MessageKind.CAPABILITIES, CapabilitiesPayload())
            return

        loop = asyncio.get_running_loop()
        try:
            capabilities = await loop.run_in_executor(None, self.engine.get_capabilities)
        except Exception as e:
            logger.error(f"Failed to collect capabilities: {e}", exc_info=True)
            return

        logger.info(
            f"Reporting capabilities: {len(capabilities.tasks)} tasks, "
            f"{len(capabilities.controllers)} controllers, {len(capabilities.resources)} resources"
        )
        self._send(MessageKind.CAPABILITIES, capabilities)

    # ============================================================
    #  Dispatch
    # ============================================================

    async def handle_frame(self, frame: Union[bytes, str]) -> None:
        """Decode one frame and dispatch it. Malformed frames are logged and skipped."""
        try:
            envelope = decode(frame)
        except ProtocolError as e:
            logger.warning(f"Dropping malformed frame: {e}")
            return
        await self.dispatch(envelope)

    async def dispatch(self, envelope: Envelope) -> None:
        """
        Route one envelope to its handler.

        Handler failures end that message only; the receive loop continues.
        """
        handler = self._handlers.get(envelope.kind)
        if handler is None:
            if is_known_kind(envelope.kind):
                logger.warning(f"Ignoring unexpected {envelope.kind} from server")
            else:
                logger.warning(f"Unknown message type: {envelope.kind}")
            return

        try:
            await handler(envelope)
        except ProtocolError as e:
            logger.warning(f"Dropping {envelope.kind}: {e}")
        except Exception as e:
            logger.error(f"Error handling {envelope.kind}: {e}", exc_info=True)

    async def _handle_registered(self, envelope: Envelope) -> None:
        payload = envelope.parse_payload(RegisteredPayload)
        with self._state_lock:
            self.identity.device_id = payload.device_id
            self.identity.device_token = payload.device_token

        try:
            self.credential_store.save(
                DeviceIdentity(device_id=payload.device_id, device_token=payload.device_token)
            )
        except CredentialStoreError as e:
            logger.error(f"Registered but failed to persist credentials: {e}")

        logger.info(f"Device registered: {payload.device_id}")
        self._set_state(AuthState.AUTHENTICATED)
        await self.send_capabilities()

    async def _handle_authenticated(self, envelope: Envelope) -> None:
        payload = envelope.parse_payload(AuthenticatedPayload)
        with self._state_lock:
            self.identity.device_id = payload.device_id

        if payload.user_nickname:
            logger.info(f"Authenticated as {payload.device_id} (user: {payload.user_nickname})")
        else:
            logger.info(f"Authenticated as {payload.device_id}")
        self._set_state(AuthState.AUTHENTICATED)
        await self.send_capabilities()

    async def _handle_auth_failed(self, envelope: Envelope) -> None:
        payload = envelope.parse_payload(AuthFailedPayload)
        logger.error(f"Authentication failed: {payload.error} {payload.message}".rstrip())

        with self._state_lock:
            self.identity.device_id = ""
            self.identity.device_token = ""
        try:
            self.credential_store.clear()
        except CredentialStoreError as e:
            logger.error(f"Failed to clear stored credentials: {e}")

        self._set_state(AuthState.UNAUTHENTICATED)
        logger.warning("Device must be re-registered with a new bind code")

    async def _handle_pong(self, envelope: Envelope) -> None:
        logger.debug("Received pong")

    async def _handle_run_task(self, envelope: Envelope) -> None:
        payload = envelope.parse_payload(RunTaskPayload)
        self.executor.submit(payload)

    async def _handle_stop_task(self, envelope: Envelope) -> None:
        payload = envelope.parse_payload(StopTaskPayload)
        await self.executor.stop(payload.job_id)

    async def _handle_request_screenshot(self, envelope: Envelope) -> None:
        payload = envelope.parse_payload(RequestScreenshotPayload)
        task = asyncio.create_task(self._capture_screenshot(payload.request_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _capture_screenshot(self, request_id: str) -> None:
        if self.engine is None:
            self._send(
                MessageKind.SCREENSHOT,
                ScreenshotPayload(request_id=request_id, error=ENGINE_NOT_INITIALIZED),
            )
            return

        loop = asyncio.get_running_loop()
        try:
            shot = await loop.run_in_executor(None, self.engine.take_screenshot)
        except Exception as e:
            logger.error(f"Screenshot {request_id} failed: {e}")
            self._send(
                MessageKind.SCREENSHOT,
                ScreenshotPayload(request_id=request_id, error=str(e) or e.__class__.__name__),
            )
            return

        self._send(
            MessageKind.SCREENSHOT,
            ScreenshotPayload(
                request_id=request_id,
                base64_image=base64.b64encode(shot.data).decode("ascii"),
                width=shot.width,
                height=shot.height,
            ),
        )
        logger.debug(f"Screenshot {request_id} sent ({shot.width}x{shot.height})")

    async def _handle_error(self, envelope: Envelope) -> None:
        payload = envelope.parse_payload(ErrorPayload)
        logger.error(f"Server error [{payload.code}]: {payload.message}")

    async def drain(self) -> None:
        """Wait for in-flight screenshot captures."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = ["AuthState", "Dispatcher"]
