"""
Tests for the file credential store.
"""

import json

import pytest

from device_agent.errors import CredentialStoreError
from device_agent.models.job import DeviceIdentity
from device_agent.services.credentials import FileCredentialStore


def test_empty_store_has_no_credentials(tmp_path):
    store = FileCredentialStore(tmp_path / "device.json")

    identity = store.load()
    assert identity == DeviceIdentity()
    assert not identity.has_token
    assert not store.has_credentials


def test_save_persists_identity_and_device_name(tmp_path):
    path = tmp_path / "sub" / "device.json"
    store = FileCredentialStore(path, device_name="dev-1")

    store.save(DeviceIdentity(device_id="d1", device_token="t1"))

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data == {"device_id": "d1", "device_token": "t1", "device_name": "dev-1"}

    reloaded = FileCredentialStore(path)
    assert reloaded.load() == DeviceIdentity(device_id="d1", device_token="t1")
    assert reloaded.has_credentials


def test_clear_keeps_name_and_extra(tmp_path):
    path = tmp_path / "device.json"
    store = FileCredentialStore(path, device_name="dev-1")
    store.save(DeviceIdentity(device_id="d1", device_token="t1"))
    store.set_extra("engine_hash", "abc")

    store.clear()

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["device_id"] == ""
    assert data["device_token"] == ""
    assert data["device_name"] == "dev-1"
    assert FileCredentialStore(path).get_extra("engine_hash") == "abc"
    assert not store.has_credentials


def test_unreadable_file_is_ignored(tmp_path):
    path = tmp_path / "device.json"
    path.write_text("{broken", encoding="utf-8")

    store = FileCredentialStore(path)

    assert store.load() == DeviceIdentity()


def test_write_failure_raises(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    store = FileCredentialStore(blocker / "device.json")

    with pytest.raises(CredentialStoreError):
        store.save(DeviceIdentity(device_id="d1", device_token="t1"))


def test_redacted_token():
    assert DeviceIdentity(device_token="").redacted_token == ""
    assert DeviceIdentity(device_token="short").redacted_token == "***"
    assert DeviceIdentity(device_token="abcdef123456").redacted_token == "abcd***"
