"""
Tests for the bounded telemetry channels.
"""

import asyncio
import threading

import pytest

from device_agent.services.connector.telemetry import ChannelTelemetrySink, TelemetryChannel


@pytest.mark.asyncio
async def test_items_are_delivered_in_order_then_none_after_close():
    channel = TelemetryChannel(5)
    for i in range(3):
        assert channel.offer(i)
    channel.close()

    assert [await channel.get() for _ in range(3)] == [0, 1, 2]
    assert await channel.get() is None
    assert channel.closed


@pytest.mark.asyncio
async def test_offer_after_close_is_rejected_not_raised():
    channel = TelemetryChannel(5)
    channel.close()

    assert channel.offer("late") is False
    assert channel.dropped == 1
    assert len(channel) == 0


@pytest.mark.asyncio
async def test_burst_beyond_capacity_drops_newest():
    channel = TelemetryChannel(10, name="log")

    def burst():
        for i in range(200):
            channel.offer(i)

    thread = threading.Thread(target=burst)
    thread.start()
    thread.join()

    assert len(channel) == 10
    assert channel.dropped == 190
    assert await channel.get() == 0


@pytest.mark.asyncio
async def test_consumer_wakes_on_offer_from_worker_thread():
    channel = TelemetryChannel(5)
    waiter = asyncio.create_task(channel.get())
    await asyncio.sleep(0)

    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, channel.offer, "from-thread")

    assert await asyncio.wait_for(waiter, timeout=1) == "from-thread"


@pytest.mark.asyncio
async def test_close_wakes_pending_consumer():
    channel = TelemetryChannel(5)
    waiter = asyncio.create_task(channel.get())
    await asyncio.sleep(0)

    channel.close()

    assert await asyncio.wait_for(waiter, timeout=1) is None


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        TelemetryChannel(0)


@pytest.mark.asyncio
async def test_sink_builds_job_scoped_payloads():
    status_channel = TelemetryChannel(5)
    log_channel = TelemetryChannel(5)
    sink = ChannelTelemetrySink("j1", status_channel, log_channel)

    assert sink.emit_status("daily", 1, 3, message="Running: daily")
    assert sink.emit_log("warn", "slow node", node_name="FindButton", event_type="node")

    status = await status_channel.get()
    assert status.job_id == "j1"
    assert status.current_task == "daily"
    assert (status.progress.completed, status.progress.total) == (1, 3)
    assert status.status == "running"

    log = await log_channel.get()
    assert log.job_id == "j1"
    assert log.level == "warn"
    assert log.node_name == "FindButton"
    assert log.event_type == "node"
