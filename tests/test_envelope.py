"""
Tests for the envelope codec and message catalog.
"""

import json

import pytest

from device_agent.errors import ProtocolError
from device_agent.models.protocol import (
    ErrorPayload,
    JobProgress,
    MessageKind,
    RunTaskItem,
    RunTaskPayload,
    TaskLogPayload,
    TaskStatusPayload,
    is_known_kind,
)
from device_agent.services.connector.envelope import decode, encode


def test_encode_produces_wire_frame():
    frame = encode(
        MessageKind.TASK_STATUS,
        TaskStatusPayload(
            job_id="j1",
            status="running",
            current_task="daily",
            progress=JobProgress(completed=1, total=3),
            message="Running: daily",
        ),
    )

    data = json.loads(frame)
    assert data["type"] == "task_status"
    assert data["payload"] == {
        "job_id": "j1",
        "status": "running",
        "current_task": "daily",
        "progress": {"completed": 1, "total": 3},
        "message": "Running: daily",
    }
    assert data["timestamp"].endswith("Z")


def test_ping_payload_is_null():
    data = json.loads(encode(MessageKind.PING))
    assert data["type"] == "ping"
    assert data["payload"] is None


def test_optional_fields_are_omitted():
    data = json.loads(encode(MessageKind.TASK_LOG, TaskLogPayload(job_id="j1", message="hello")))
    assert "node_name" not in data["payload"]
    assert "event_type" not in data["payload"]


def test_decode_round_trip_preserves_kind_and_payload():
    payload = RunTaskPayload(
        job_id="j1",
        controller="win32",
        resource="default",
        tasks=[RunTaskItem(name="daily", options={"mode": "fast", "count": 3})],
    )

    envelope = decode(encode(MessageKind.RUN_TASK, payload))

    assert envelope.kind == "run_task"
    assert envelope.parse_payload(RunTaskPayload) == payload
    assert envelope.timestamp.tzinfo is not None


def test_decode_accepts_text_frames_and_unknown_kinds():
    envelope = decode('{"type": "firmware_update", "payload": {"x": 1}}')

    assert envelope.kind == "firmware_update"
    assert envelope.payload == {"x": 1}
    assert not is_known_kind(envelope.kind)


def test_decode_tolerates_null_timestamp():
    envelope = decode(b'{"type": "pong", "payload": null, "timestamp": null}')
    assert envelope.kind == "pong"
    assert envelope.payload is None


@pytest.mark.parametrize(
    "frame",
    [
        b"not json",
        b"[1, 2, 3]",
        b'{"payload": {}}',
        b'{"type": 5}',
        b'{"type": ""}',
        b"\xff\xfe",
    ],
)
def test_decode_rejects_malformed_frames(frame):
    with pytest.raises(ProtocolError):
        decode(frame)


def test_parse_payload_rejects_wrong_shape():
    envelope = decode(encode(MessageKind.RUN_TASK, {"controller": "win32"}))

    with pytest.raises(ProtocolError):
        envelope.parse_payload(RunTaskPayload)


def test_parse_payload_treats_missing_payload_as_empty_object():
    envelope = decode(encode(MessageKind.ERROR))
    assert envelope.parse_payload(ErrorPayload) == ErrorPayload(code="", message="")


def test_catalog_kinds_are_known():
    for kind in MessageKind:
        assert is_known_kind(kind.value)
