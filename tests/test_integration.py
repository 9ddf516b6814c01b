"""
End-to-end test against a real WebSocket server on localhost.
"""

import asyncio
import json

import pytest
from websockets.asyncio.server import serve

from conftest import FakeEngine
from device_agent.config import AgentConfig, DeviceSettings, ServerSettings
from device_agent.models.protocol import (
    MessageKind,
    RegisteredPayload,
    RunTaskItem,
    RunTaskPayload,
)
from device_agent.services.connector.connector import DeviceConnector
from device_agent.services.connector.envelope import encode
from device_agent.services.credentials import FileCredentialStore


@pytest.mark.asyncio
async def test_register_then_run_job_over_websocket(tmp_path):
    received = []
    finished = asyncio.Event()
    user_agents = []

    async def handler(ws):
        user_agents.append(ws.request.headers.get("User-Agent"))
        async for raw in ws:
            message = json.loads(raw)
            received.append(message)
            if message["type"] == "register":
                await ws.send(
                    encode(
                        MessageKind.REGISTERED,
                        RegisteredPayload(device_id="d1", device_token="t1"),
                    ).decode()
                )
            elif message["type"] == "capabilities":
                await ws.send(
                    encode(
                        MessageKind.RUN_TASK,
                        RunTaskPayload(
                            job_id="j1",
                            controller="win32",
                            resource="default",
                            tasks=[RunTaskItem(name="daily", options={"mode": "fast"})],
                        ),
                    ).decode()
                )
            elif message["type"] == "task_completed":
                finished.set()

    def run(job, sink):
        sink.emit_log("info", f"Task started: {job.tasks[0].name}", event_type="task")

    async with serve(handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        config = AgentConfig(
            device=DeviceSettings(name="dev-1"),
            server=ServerSettings(ws_url=f"ws://127.0.0.1:{port}/ws/agent", connect_timeout=2),
        )
        store = FileCredentialStore(tmp_path / "device.json", device_name="dev-1")
        engine = FakeEngine(run=run)
        connector = DeviceConnector(config, store, engine=engine)
        connector.register("ABC123")

        runner = asyncio.create_task(connector.run())
        try:
            await asyncio.wait_for(finished.wait(), timeout=5)
        finally:
            connector.stop()
            await asyncio.wait_for(runner, timeout=5)

    types = [m["type"] for m in received]
    assert types[0] == "register"
    assert received[0]["payload"]["bind_code"] == "ABC123"
    assert types.index("capabilities") < types.index("task_status")
    assert "task_log" in types
    assert types[-1] == "task_completed"
    assert received[-1]["payload"]["status"] == "completed"
    assert user_agents == ["DeviceAgent/1.0"]

    assert store.load().device_token == "t1"
    assert engine.jobs[0].tasks[0].options == {"mode": "fast"}
