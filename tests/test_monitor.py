"""Tests for the camera-side capture pump and hot-plug auto-connector."""

import asyncio
from pathlib import Path

import pytest
import pytest_asyncio

from tests.helpers import wait_until
from tether_mcp.devices import AutoConnector, DeviceChannel, EventPump


@pytest_asyncio.fixture
async def channel(twin):
    channel = DeviceChannel(twin)
    await channel.run("connect", twin.connect)
    return channel


class TestEventPump:
    """Tests for polling captures taken on the camera body."""

    @pytest.mark.asyncio
    async def test_no_event(self, channel):
        captured = []
        pump = EventPump(channel, captured.append, wait_timeout_s=0.0)

        assert await pump.poll_once() is None
        assert captured == []

    @pytest.mark.asyncio
    async def test_shutter_press_downloaded(self, channel, twin, capture_dir):
        captured = []
        pump = EventPump(channel, captured.append, wait_timeout_s=0.0)
        twin.press_shutter()

        result = await pump.poll_once()

        assert result is not None
        assert result.metadata == {"source": "camera"}
        assert Path(result.file_path).parent == capture_dir
        assert captured == [result]

    @pytest.mark.asyncio
    async def test_transport_error_swallowed(self, channel, twin):
        """Poll failures are logged; liveness is left to the read path."""
        pump = EventPump(channel, lambda result: None, wait_timeout_s=0.0)
        twin.unplug()

        assert await pump.poll_once() is None
        assert channel.stats.get_summary("poll_events").failed_calls == 1

    @pytest.mark.asyncio
    async def test_background_loop(self, channel, twin):
        captured = []
        pump = EventPump(channel, captured.append, interval_s=0.005, wait_timeout_s=0.0)
        pump.start()
        try:
            assert pump.is_running
            twin.press_shutter()
            twin.press_shutter()
            assert await wait_until(lambda: len(captured) == 2)
        finally:
            await pump.stop_and_wait()

        assert not pump.is_running

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_task(self, channel):
        pump = EventPump(channel, lambda result: None, interval_s=0.01, wait_timeout_s=0.0)
        pump.start()
        task = pump._task
        pump.start()
        assert pump._task is task
        await pump.stop_and_wait()


class TestAutoConnector:
    """Tests for hot-plug detection."""

    @pytest.mark.asyncio
    async def test_attempt_connects(self, session, twin):
        connector = AutoConnector(session, interval_s=0.01)

        assert await connector.attempt() is True
        assert session.is_connected
        assert connector.attempts == 1

    @pytest.mark.asyncio
    async def test_attempt_when_connected_is_noop(self, connected_session, twin):
        connector = AutoConnector(connected_session)

        assert await connector.attempt() is True
        assert connector.attempts == 0
        assert twin.call_count("connect") == 1

    @pytest.mark.asyncio
    async def test_attempt_without_camera(self, session, twin):
        twin.unplug()
        connector = AutoConnector(session)

        assert await connector.attempt() is False
        assert await connector.attempt() is False
        assert connector.attempts == 2
        assert not session.is_connected

    @pytest.mark.asyncio
    async def test_background_loop_connects_on_replug(self, session, twin):
        twin.unplug()
        connector = AutoConnector(session, interval_s=0.01)
        connector.start()
        try:
            await asyncio.sleep(0.03)
            assert not session.is_connected

            twin.replug()
            assert await wait_until(lambda: session.is_connected)
        finally:
            await connector.stop_and_wait()
