"""
Credential Store

Persists the device identity issued by the server so the agent can
authenticate on restart without re-binding.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from ..errors import CredentialStoreError
from ..models.job import DeviceIdentity

logger = logging.getLogger(__name__)

CREDENTIALS_FILENAME = "device.json"


class CredentialStore(Protocol):
    """Storage for the device identity."""

    def load(self) -> DeviceIdentity: ...

    def save(self, identity: DeviceIdentity) -> None: ...

    def clear(self) -> None: ...


class FileCredentialStore:
    """
    JSON file credential store.

    Layout::

        {"device_id": "...", "device_token": "...", "device_name": "...", "extra": {}}
    """

    def __init__(self, path: Path, device_name: str = ""):
        """
        Initialize credential store.

        Args:
            path: JSON file path (parent directories are created on save)
            device_name: Name written alongside the credentials
        """
        self.path = Path(path).expanduser()
        self.device_name = device_name
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = self._read()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable credential file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
        except OSError as e:
            raise CredentialStoreError(f"Failed to write {self.path}: {e}") from e

    def load(self) -> DeviceIdentity:
        with self._lock:
            return DeviceIdentity(
                device_id=str(self._data.get("device_id") or ""),
                device_token=str(self._data.get("device_token") or ""),
            )

    def save(self, identity: DeviceIdentity) -> None:
        with self._lock:
            self._data["device_id"] = identity.device_id
            self._data["device_token"] = identity.device_token
            if self.device_name:
                self._data["device_name"] = self.device_name
            self._write()
        logger.info(f"Saved device credentials to {self.path}")

    def clear(self) -> None:
        """Forget id and token; keep device name and extra data."""
        with self._lock:
            self._data["device_id"] = ""
            self._data["device_token"] = ""
            self._write()
        logger.info("Cleared device credentials")

    def get_extra(self, key: str) -> Optional[str]:
        with self._lock:
            return (self._data.get("extra") or {}).get(key)

    def set_extra(self, key: str, value: str) -> None:
        with self._lock:
            self._data.setdefault("extra", {})[key] = value
            self._write()

    @property
    def has_credentials(self) -> bool:
        with self._lock:
            return bool(self._data.get("device_token"))


__all__ = ["CREDENTIALS_FILENAME", "CredentialStore", "FileCredentialStore"]
