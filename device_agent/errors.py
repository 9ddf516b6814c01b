"""
Device Agent - Error Types

Transport errors are the only ones that propagate to the supervisor; every
other error ends the single operation that raised it and is reported outward
as data.
"""


class AgentError(Exception):
    """Base exception for all device agent errors."""

    pass


class ConfigurationError(AgentError):
    """Raised when the configuration file is malformed or invalid."""

    pass


class TransportError(AgentError):
    """Raised when the physical connection fails. Fatal to the session."""

    pass


class ConnectError(TransportError):
    """Raised when a connection to the server cannot be established."""

    pass


class ReadError(TransportError):
    """Raised when receiving a frame fails or the session is closed."""

    pass


class WriteError(TransportError):
    """Raised when sending a frame fails or the session is closed."""

    pass


class ProtocolError(AgentError):
    """Raised when a frame or payload cannot be decoded."""

    pass


class EngineUnavailableError(AgentError):
    """Raised when the automation engine is required but not initialized."""

    pass


class JobTimeoutError(AgentError):
    """Raised when the engine call outlives the configured job timeout."""

    pass


class TaskExecutionError(AgentError):
    """Raised by the task runner when a job ends without completing every task."""

    pass


class CredentialStoreError(AgentError):
    """Raised when device credentials cannot be read or written."""

    pass


__all__ = [
    "AgentError",
    "ConfigurationError",
    "ConnectError",
    "CredentialStoreError",
    "EngineUnavailableError",
    "JobTimeoutError",
    "ProtocolError",
    "ReadError",
    "TaskExecutionError",
    "TransportError",
    "WriteError",
]
