"""
Agent Connector - Envelope Codec

Wire format: one JSON object per text frame::

    {"type": "task_status", "payload": {...}, "timestamp": "2026-01-01T00:00:00Z"}

Decoding the envelope and decoding its payload are separate steps so a bad
payload only fails the handler that asked for it.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ...errors import ProtocolError
from ...models.protocol import MessageKind

P = TypeVar("P", bound=BaseModel)


def _utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


class Envelope(BaseModel):
    """Uniform message wrapper."""

    model_config = ConfigDict(extra="ignore")

    type: str = Field(..., min_length=1)
    payload: Optional[Any] = None
    timestamp: datetime = Field(default_factory=_utc_now)

    @property
    def kind(self) -> str:
        return self.type

    def parse_payload(self, schema: Type[P]) -> P:
        """
        Decode the payload into a typed structure.

        A missing payload validates as an empty object.

        Raises:
            ProtocolError: If the payload does not match the schema
        """
        try:
            return schema.model_validate(self.payload or {})
        except ValidationError as e:
            raise ProtocolError(f"Invalid {self.type} payload: {e}") from e


def _payload_to_data(payload: Any) -> Any:
    if payload is None:
        return None
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json", exclude_none=True)
    return payload


def encode(kind: Union[MessageKind, str], payload: Any = None) -> bytes:
    """
    Serialize an envelope with a fresh timestamp.

    Args:
        kind: Message kind
        payload: Pydantic model, JSON-compatible mapping, or None

    Returns:
        UTF-8 encoded JSON frame
    """
    kind_value = kind.value if isinstance(kind, MessageKind) else str(kind)
    message: Dict[str, Any] = {
        "type": kind_value,
        "payload": _payload_to_data(payload),
        "timestamp": _utc_now().isoformat().replace("+00:00", "Z"),
    }
    return json.dumps(message, ensure_ascii=False).encode("utf-8")


def decode(frame: Union[bytes, str]) -> Envelope:
    """
    Parse a frame into an Envelope.

    Unknown kinds decode successfully; deciding what to do with them is the
    dispatcher's job.

    Raises:
        ProtocolError: If the frame is not a valid envelope
    """
    try:
        if isinstance(frame, bytes):
            frame = frame.decode("utf-8")
        data = json.loads(frame)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Invalid JSON frame: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError("Envelope must be a JSON object")
    if not isinstance(data.get("type"), str):
        raise ProtocolError("Envelope is missing a string 'type'")
    if data.get("timestamp") is None:
        data.pop("timestamp", None)

    try:
        return Envelope.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid envelope: {e}") from e


__all__ = ["Envelope", "decode", "encode"]
