"""
Device Agent Configuration

Loaded once at startup from a YAML file and passed explicitly to the
connector, dispatcher and job executor. There is no module-level config
singleton.

Loading order:
1. Built-in defaults
2. YAML file (missing file -> defaults only)
3. Environment variables (DEVICE_AGENT_*)
4. CLI flags (applied by the caller)
"""

import logging
import os
import re
import socket
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_VERSION = "0.2.0"
DEFAULT_CONFIG_DIR = Path("~/.device_agent")
CONFIG_FILENAME = "config.yaml"

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Union[str, int, float]) -> float:
    """
    Parse a duration into seconds.

    Accepts plain numbers (seconds) or strings such as ``"10s"``, ``"2m"``,
    ``"500ms"``, ``"1h"``.

    Raises:
        ValueError: If the value is not a recognised duration
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    number, unit = match.groups()
    return float(number) * _DURATION_UNITS[unit or "s"]


class ServerSettings(BaseModel):
    """Orchestration server connection settings"""

    ws_url: str = "ws://localhost:15618/ws/agent"
    connect_timeout: float = 10.0
    heartbeat_interval: float = 30.0
    reconnect_max_delay: float = 30.0
    send_queue_size: int = Field(default=256, ge=1)
    # On stop: how long to wait for the active job and unsent messages
    shutdown_grace: float = 5.0

    @field_validator(
        "connect_timeout", "heartbeat_interval", "reconnect_max_delay", "shutdown_grace", mode="before"
    )
    @classmethod
    def _parse_duration(cls, v: Any) -> float:
        return parse_duration(v)

    @field_validator("ws_url")
    @classmethod
    def _validate_ws_url(cls, v: str) -> str:
        if not v.startswith(("ws://", "wss://")):
            raise ValueError(f"ws_url must start with ws:// or wss://, got {v!r}")
        return v


class EngineSettings(BaseModel):
    """Automation engine binding settings"""

    path: str = ""
    # "package.module:callable" returning an AutomationEngine
    factory: str = ""
    window_class_pattern: str = ""
    window_title_pattern: str = ""


class DeviceSettings(BaseModel):
    name: str = ""


class JobSettings(BaseModel):
    """Job executor tuning"""

    status_buffer: int = Field(default=100, ge=1)
    log_buffer: int = Field(default=1000, ge=1)
    # Watchdog: abandon a job whose engine call outlives this (None = never)
    timeout: Optional[float] = None

    @field_validator("timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, v: Any) -> Optional[float]:
        if v is None or v == "":
            return None
        return parse_duration(v)


class LoggingSettings(BaseModel):
    level: str = "info"
    file: str = ""


class AgentConfig(BaseModel):
    """Complete agent configuration"""

    version: str = DEFAULT_CLIENT_VERSION
    server: ServerSettings = Field(default_factory=ServerSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    device: DeviceSettings = Field(default_factory=DeviceSettings)
    jobs: JobSettings = Field(default_factory=JobSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    # Where this config was loaded from; not serialized
    source_path: Optional[Path] = Field(default=None, exclude=True)

    @property
    def client_version(self) -> str:
        return self.version or "unknown"

    @property
    def config_dir(self) -> Path:
        if self.source_path is not None:
            return self.source_path.parent
        return DEFAULT_CONFIG_DIR.expanduser()


def resolve_config_path(config_path: Optional[str] = None) -> Path:
    """Return the absolute config path (explicit path or the default location)."""
    if config_path:
        return Path(config_path).expanduser().resolve()
    return (DEFAULT_CONFIG_DIR / CONFIG_FILENAME).expanduser().resolve()


def _default_device_name() -> str:
    try:
        hostname = socket.gethostname()
    except OSError:
        hostname = ""
    return hostname or "device-agent"


def _apply_env_overrides(data: Dict[str, Any]) -> None:
    overrides = {
        ("server", "ws_url"): os.getenv("DEVICE_AGENT_WS_URL"),
        ("engine", "path"): os.getenv("DEVICE_AGENT_ENGINE_PATH"),
        ("device", "name"): os.getenv("DEVICE_AGENT_DEVICE_NAME"),
        ("logging", "level"): os.getenv("DEVICE_AGENT_LOG_LEVEL"),
    }
    for (section, key), value in overrides.items():
        if value:
            data.setdefault(section, {})[key] = value


def load_config(config_path: Optional[str] = None) -> AgentConfig:
    """
    Load agent configuration.

    Args:
        config_path: Path to a YAML file (default: ~/.device_agent/config.yaml)

    Returns:
        AgentConfig instance

    Raises:
        ConfigurationError: If the file is malformed or values are invalid
    """
    path = resolve_config_path(config_path)
    data: Dict[str, Any] = {}

    if path.is_file():
        try:
            with open(path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to read config file {path}: {e}") from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        data = loaded or {}
    else:
        logger.info(f"Config file not found at {path}, using defaults")

    _apply_env_overrides(data)

    try:
        config = AgentConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e

    if not config.version:
        config.version = DEFAULT_CLIENT_VERSION
    if not config.device.name:
        config.device.name = _default_device_name()

    config.source_path = path
    return config


def save_config(config: AgentConfig, config_path: Optional[str] = None) -> Path:
    """
    Write configuration back to YAML.

    Args:
        config: Configuration to write
        config_path: Target path (default: the path it was loaded from)

    Returns:
        Path written
    """
    if config_path:
        path = resolve_config_path(config_path)
    else:
        path = config.source_path or resolve_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        f.write("# Device Agent configuration\n")
        yaml.safe_dump(
            config.model_dump(mode="json"),
            f,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )
    return path


__all__ = [
    "AgentConfig",
    "DeviceSettings",
    "EngineSettings",
    "JobSettings",
    "LoggingSettings",
    "ServerSettings",
    "load_config",
    "parse_duration",
    "resolve_config_path",
    "save_config",
]
