"""
Tests for the heartbeat monitor.
"""

import asyncio

import pytest

from conftest import wait_for_condition
from device_agent.services.connector.heartbeat import HeartbeatMonitor


@pytest.mark.asyncio
async def test_pings_are_sent_every_interval():
    pings = []
    monitor = HeartbeatMonitor(lambda: pings.append("ping") or True, interval=0.01)

    await monitor.start()
    await wait_for_condition(lambda: len(pings) >= 3)
    await monitor.stop()

    count = len(pings)
    await asyncio.sleep(0.03)
    assert len(pings) == count
    assert monitor.sent == count


@pytest.mark.asyncio
async def test_no_pings_while_disconnected():
    pings = []
    monitor = HeartbeatMonitor(
        lambda: pings.append("ping") or True,
        interval=0.01,
        is_connected=lambda: False,
    )

    await monitor.start()
    await asyncio.sleep(0.05)
    await monitor.stop()

    assert pings == []


@pytest.mark.asyncio
async def test_dropped_ping_is_not_counted():
    monitor = HeartbeatMonitor(lambda: False, interval=0.01)

    await monitor.start()
    await asyncio.sleep(0.05)
    await monitor.stop()

    assert monitor.sent == 0


@pytest.mark.asyncio
async def test_stop_interrupts_long_interval():
    monitor = HeartbeatMonitor(lambda: True, interval=3600)

    await monitor.start()
    await asyncio.wait_for(monitor.stop(), timeout=1)

    assert monitor.sent == 0
