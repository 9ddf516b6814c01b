"""
Device Agent - command line entry point

Usage:
    device-agent [-c CONFIG] [--engine-path PATH] [--server URL] [--bind CODE] [--debug]

Connects to the orchestration server and runs jobs until SIGINT/SIGTERM.
"""

import argparse
import asyncio
import importlib
import logging
import signal
import sys
import threading
from typing import Optional

from .config import AgentConfig, load_config
from .errors import ConfigurationError, EngineUnavailableError
from .services.connector import DeviceConnector
from .services.credentials import CREDENTIALS_FILENAME, FileCredentialStore
from .services.engine.base import AutomationEngine
from .shared.logging_config import configure_logging

logger = logging.getLogger("device_agent")


def build_engine(config: AgentConfig) -> Optional[AutomationEngine]:
    """
    Build the engine binding named by ``engine.factory`` (``"module:callable"``).

    The callable receives the AgentConfig and returns an AutomationEngine.

    Returns:
        The engine, or None when no factory is configured

    Raises:
        EngineUnavailableError: If the factory cannot be imported or fails
    """
    factory_path = config.engine.factory.strip()
    if not factory_path:
        return None

    module_name, sep, attr = factory_path.partition(":")
    if not sep or not module_name or not attr:
        raise EngineUnavailableError(f"engine.factory must look like 'module:callable', got {factory_path!r}")

    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise EngineUnavailableError(f"Cannot load engine factory {factory_path}: {e}") from e

    try:
        engine = factory(config)
    except Exception as e:
        raise EngineUnavailableError(f"Engine factory {factory_path} failed: {e}") from e

    if not isinstance(engine, AutomationEngine):
        raise EngineUnavailableError(f"Engine factory {factory_path} did not return an AutomationEngine")
    return engine


def _start_bind_prompt(loop: asyncio.AbstractEventLoop, codes: "asyncio.Queue[str]") -> None:
    """Read bind codes from stdin on a daemon thread."""

    def _read() -> None:
        print("\nThis device is not bound yet:")
        print("1. Get a bind code from the web console")
        print("2. Type the code and press Enter")
        print("\nBind code: ", end="", flush=True)
        for line in sys.stdin:
            code = line.strip()
            if code:
                loop.call_soon_threadsafe(codes.put_nowait, code)
                return

    threading.Thread(target=_read, name="bind-prompt", daemon=True).start()


async def _register_when_connected(connector: DeviceConnector, codes: "asyncio.Queue[str]") -> None:
    code = await codes.get()
    while not connector.stopping:
        await connector.wait_connected()
        if connector.register(code):
            return
        await asyncio.sleep(1)


async def run_agent(config: AgentConfig, bind_code: Optional[str] = None) -> None:
    """Run the connector until a stop signal arrives."""
    store = FileCredentialStore(config.config_dir / CREDENTIALS_FILENAME, device_name=config.device.name)
    if store.has_credentials:
        logger.info("Loaded saved device credentials")

    try:
        engine = build_engine(config)
    except EngineUnavailableError as e:
        logger.error(f"{e}; jobs will be rejected")
        engine = None
    if engine is None:
        logger.warning("No automation engine configured; jobs will be rejected")
    else:
        logger.info(f"Automation engine ready (version {engine.get_version()})")

    connector = DeviceConnector(
        config,
        store,
        engine=engine,
        on_connected=lambda c: logger.info("Connected to server"),
        on_disconnected=lambda c: logger.info("Disconnected from server"),
    )

    loop = asyncio.get_running_loop()

    def shutdown(sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name}, shutting down...")
        connector.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda s=sig: shutdown(s))
        except NotImplementedError:
            # Windows: SIGINT surfaces as KeyboardInterrupt instead
            logger.debug(f"Signal handler for {sig.name} not supported on this platform")

    codes: "asyncio.Queue[str]" = asyncio.Queue()
    register_task: Optional[asyncio.Task] = None
    if bind_code:
        codes.put_nowait(bind_code)
    elif not connector.identity.has_token:
        _start_bind_prompt(loop, codes)
    if bind_code or not connector.identity.has_token:
        register_task = asyncio.create_task(_register_when_connected(connector, codes))

    logger.info(f"Connecting to server: {config.server.ws_url}")
    try:
        await connector.run()
    finally:
        if register_task is not None:
            register_task.cancel()
            await asyncio.gather(register_task, return_exceptions=True)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="device-agent",
        description="Device agent that runs automation jobs for a remote orchestration server",
    )
    parser.add_argument("-c", "--config", default=None, help="Config file path (default: ~/.device_agent/config.yaml)")
    parser.add_argument("--engine-path", default=None, help="Automation engine install path")
    parser.add_argument("--server", default=None, help="Server WebSocket URL")
    parser.add_argument("--bind", default=None, metavar="CODE", help="Bind code (first-time registration)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
        if args.engine_path:
            config.engine.path = args.engine_path
        if args.server:
            config.server = config.server.model_validate(
                {**config.server.model_dump(), "ws_url": args.server}
            )
        configure_logging(config.logging, debug=args.debug)
    except (ConfigurationError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logger.info(f"Device Agent {config.client_version} starting")
    if config.source_path is not None:
        logger.info(f"Config: {config.source_path}")

    try:
        asyncio.run(run_agent(config, bind_code=args.bind))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    logger.info("Device Agent exited")
    return 0


if __name__ == "__main__":
    sys.exit(main())
