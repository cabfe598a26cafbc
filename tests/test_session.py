"""End-to-end tests for TetherSession against the digital twin.

These exercise the whole device layer: connection transitions, config key
resolution, the sync loop, writes confirmed by deferred reads, captures,
events and the background monitors.
"""

import asyncio
from pathlib import Path

import pytest
import pytest_asyncio

from tests.helpers import wait_until
from tether_mcp.devices import (
    CaptureFailedError,
    ConnectionState,
    DeviceUnavailableError,
    ParameterWriteError,
    SessionEventKind,
    TetherSession,
    UnsupportedParameterError,
)
from tether_mcp.drivers.cameras import DigitalTwinTransport, TransportError
from tether_mcp.drivers.config import TimingProfile


def drain_events(subscription):
    events = []
    while (event := subscription.get_nowait()) is not None:
        events.append(event)
    return events


@pytest_asyncio.fixture
async def slow_session(capture_dir, fast_config):
    """Connected Canon session whose reads take 50 ms."""
    twin = DigitalTwinTransport(
        "Canon EOS R5", capture_dir=capture_dir, read_delay_s=0.05
    )
    session = TetherSession(twin, fast_config)
    await session.connect()
    assert await session.wait_ready(timeout=2.0)
    yield session
    await session.close()


# =============================================================================
# Connection
# =============================================================================


class TestConnect:
    """Tests for connect() and session bootstrap."""

    @pytest.mark.asyncio
    async def test_initial_state(self, session):
        assert session.state is ConnectionState.DISCONNECTED
        assert session.parameters is None
        assert session.aliases is None
        assert session.generation == 0
        assert session.status() == {
            "state": "DISCONNECTED",
            "generation": 0,
            "camera": None,
            "ready": False,
            "workspaceFolder": None,
            "monitoring": False,
            "lastError": None,
        }

    @pytest.mark.asyncio
    async def test_connect_bootstraps_session(self, session):
        camera = await session.connect()

        assert camera == {"model": "Canon EOS R5", "port": "usb:001,004"}
        assert session.is_connected
        assert session.generation == 1
        assert await session.wait_ready(timeout=2.0)
        assert session.aliases.key_for("iso") == "iso"
        assert session.parameters.model == "Canon EOS R5"
        assert session.parameters.iso == "400"
        assert session.sync.is_running
        assert session.status()["ready"] is True

    @pytest.mark.asyncio
    async def test_connect_when_connected(self, connected_session, twin):
        camera = await connected_session.connect()

        assert camera["model"] == "Canon EOS R5"
        assert twin.call_count("connect") == 1
        assert connected_session.generation == 1

    @pytest.mark.asyncio
    async def test_no_camera(self, session, twin):
        twin.unplug()

        with pytest.raises(DeviceUnavailableError, match="No camera detected"):
            await session.connect()

        assert session.state is ConnectionState.DISCONNECTED
        assert session.last_error == "No camera detected"
        assert session.generation == 0

    @pytest.mark.asyncio
    async def test_busy_usb(self, session, twin):
        twin.set_busy()
        with pytest.raises(DeviceUnavailableError, match="USB occupied"):
            await session.connect()

    @pytest.mark.asyncio
    async def test_retries(self, session, twin):
        twin.fail_next("connect", TransportError("Could not claim USB device"))

        await session.connect(attempts=2, retry_delay_s=0.0)

        assert session.is_connected
        assert twin.call_count("connect") == 2

    @pytest.mark.asyncio
    async def test_attempts_validated(self, session):
        with pytest.raises(ValueError, match="attempts"):
            await session.connect(attempts=0)

    @pytest.mark.asyncio
    async def test_nikon_vendor_keys(self, nikon_session, nikon_twin):
        assert nikon_session.aliases.key_for("iso") == "isospeed"
        assert nikon_session.parameters.iso == "200"
        assert nikon_session.parameters.aperture == "f/5.6"
        assert nikon_twin.max_concurrent_calls == 1

    @pytest.mark.asyncio
    async def test_model_timing_applied_after_first_read(self, twin, fast_config):
        fast_config.model_timing = {
            "Canon EOS R5": TimingProfile(poll_interval_s=0.2, settle_delay_s=0.1)
        }
        session = TetherSession(twin, fast_config)
        try:
            assert session.sync.poll_interval_s == fast_config.timing.poll_interval_s
            await session.connect()
            assert await session.wait_ready(timeout=2.0)
            assert session.sync.poll_interval_s == 0.2
        finally:
            await session.close()


# =============================================================================
# Disconnection and staleness
# =============================================================================


class TestDisconnect:
    """Tests for explicit, signalled and read-failure disconnects."""

    @pytest.mark.asyncio
    async def test_disconnect_clears_state(self, connected_session, twin):
        await connected_session.disconnect()

        assert connected_session.state is ConnectionState.DISCONNECTED
        assert connected_session.parameters is None
        assert connected_session.aliases is None
        assert connected_session.camera is None
        assert connected_session.generation == 2
        assert not connected_session.sync.is_running
        assert not twin.connected

    @pytest.mark.asyncio
    async def test_read_failure_disconnects(self, connected_session, twin):
        """A failed read mid-session clears state and stops the poll timer."""
        twin.unplug()

        with pytest.raises(DeviceUnavailableError):
            await connected_session.refresh()

        assert not connected_session.is_connected
        assert connected_session.parameters is None
        assert connected_session.aliases is None
        assert not connected_session.sync.is_running
        assert "unplugged" in connected_session.last_error

    @pytest.mark.asyncio
    async def test_poll_failure_disconnects(self, connected_session, twin):
        twin.unplug()

        assert await wait_until(lambda: not connected_session.is_connected)
        assert connected_session.parameters is None

    @pytest.mark.asyncio
    async def test_status_signal(self, connected_session):
        assert connected_session.handle_status("DISCONNECTED") is True
        assert connected_session.parameters is None
        assert connected_session.handle_status("DISCONNECTED") is False

    @pytest.mark.asyncio
    async def test_reentrant_connected_refreshes(self, connected_session, twin):
        reads = twin.call_count("get_params")

        assert connected_session.handle_status("CONNECTED") is False

        assert connected_session.generation == 1
        assert await wait_until(lambda: twin.call_count("get_params") > reads)

    @pytest.mark.asyncio
    async def test_in_flight_read_discarded_after_disconnect(self, slow_session):
        task = asyncio.create_task(slow_session.refresh())
        assert await wait_until(lambda: slow_session.sync.read_in_flight)

        await slow_session.disconnect()

        with pytest.raises(DeviceUnavailableError):
            await task
        assert slow_session.parameters is None

    @pytest.mark.asyncio
    async def test_disconnect_during_bootstrap(self, session):
        await session.connect()
        await session.disconnect()
        await asyncio.sleep(0.05)

        assert session.aliases is None
        assert session.parameters is None
        assert not session.sync.is_running
        assert await session.wait_ready(timeout=0.1) is False

    @pytest.mark.asyncio
    async def test_reconnect_bumps_generation(self, connected_session):
        await connected_session.disconnect()
        await connected_session.connect()

        assert connected_session.generation == 3
        assert await connected_session.wait_ready(timeout=2.0)

    @pytest.mark.asyncio
    async def test_refresh_while_disconnected(self, session):
        with pytest.raises(DeviceUnavailableError):
            await session.refresh()

    @pytest.mark.asyncio
    async def test_battery_above_full_keeps_connection(self, connected_session, twin):
        twin.set_battery_percent(120.0)

        await connected_session.refresh()

        assert connected_session.is_connected
        assert connected_session.parameters.battery_level is None


# =============================================================================
# Parameters
# =============================================================================


class TestWrite:
    """Tests for parameter writes confirmed by the deferred read."""

    @pytest.mark.asyncio
    async def test_nikon_iso_write_lands_after_settle(self, nikon_session, nikon_twin):
        await nikon_session.write("iso", "800")

        assert nikon_twin.value_of("isospeed") == "800"
        assert nikon_session.parameters.iso == "200"
        assert await wait_until(lambda: nikon_session.parameters.iso == "800")

    @pytest.mark.asyncio
    async def test_delayed_firmware_apply(self, capture_dir, fast_config):
        """A write the camera applies late shows up on a later poll."""
        twin = DigitalTwinTransport(
            "Canon EOS R5", capture_dir=capture_dir, apply_delay_s=0.1
        )
        session = TetherSession(twin, fast_config)
        try:
            await session.connect()
            assert await session.wait_ready(timeout=2.0)
            await session.write("aperture", "8")
            await asyncio.sleep(0.04)
            assert session.parameters.aperture == "4"
            assert await wait_until(lambda: session.parameters.aperture == "8")
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_unsupported_parameter(self, nikon_session):
        with pytest.raises(UnsupportedParameterError):
            await nikon_session.write("metering_mode", "Spot")

    @pytest.mark.asyncio
    async def test_rejected_value_keeps_session(self, connected_session):
        with pytest.raises(ParameterWriteError):
            await connected_session.write("iso", "99999")
        assert connected_session.is_connected

    @pytest.mark.asyncio
    async def test_read_only_key(self, connected_session):
        with pytest.raises(ParameterWriteError, match="read-only"):
            await connected_session.write("shooting_mode", "Av")

    @pytest.mark.asyncio
    async def test_write_disconnected(self, session):
        with pytest.raises(DeviceUnavailableError):
            await session.write("iso", "800")

    @pytest.mark.asyncio
    async def test_controls(self, connected_session):
        controls = {c.parameter.value: c for c in connected_session.controls()}

        assert controls["iso"].selectable
        assert controls["iso"].value == "400"
        assert controls["shooting_mode"].key == "shootingmode"


# =============================================================================
# Capture and workspace
# =============================================================================


class TestCapture:
    @pytest.mark.asyncio
    async def test_capture_decrements_remaining(self, connected_session, capture_dir):
        before = connected_session.parameters.images_remaining

        result = await connected_session.capture()

        assert Path(result.file_path).parent == capture_dir
        assert connected_session.parameters.images_remaining == before - 1

    @pytest.mark.asyncio
    async def test_capture_to_folder(self, connected_session, tmp_path):
        result = await connected_session.capture(tmp_path / "shoot")
        assert Path(result.file_path).parent == tmp_path / "shoot"

    @pytest.mark.asyncio
    async def test_capture_uses_workspace_folder(self, connected_session, twin, tmp_path):
        await connected_session.set_workspace_folder(tmp_path / "ws")

        result = await connected_session.capture()

        assert Path(result.file_path).parent == tmp_path / "ws"
        assert twin.download_folder == tmp_path / "ws"
        assert connected_session.status()["workspaceFolder"] == str(tmp_path / "ws")

    @pytest.mark.asyncio
    async def test_capture_disconnected(self, session):
        with pytest.raises(CaptureFailedError):
            await session.capture()

    @pytest.mark.asyncio
    async def test_card_full(self, connected_session, twin):
        twin.set_images_remaining(0)

        with pytest.raises(CaptureFailedError, match="Card full"):
            await connected_session.capture()
        assert connected_session.is_connected

    @pytest.mark.asyncio
    async def test_camera_side_capture_schedules_read(self, connected_session, twin):
        sub = connected_session.events.subscribe()
        twin.set_images_remaining(100)

        connected_session.handle_captured({"file_path": "/tmp/body.jpg"})

        assert await wait_until(
            lambda: connected_session.parameters.images_remaining == 100
        )
        captured = [e for e in drain_events(sub) if e.kind is SessionEventKind.CAPTURED]
        assert captured[0].payload["source"] == "camera"
        assert captured[0].payload["filePath"] == "/tmp/body.jpg"


# =============================================================================
# Events
# =============================================================================


class TestEvents:
    """Tests for what the session publishes."""

    @pytest.mark.asyncio
    async def test_connect_sequence(self, session):
        sub = session.events.subscribe()

        await session.connect()
        assert await session.wait_ready(timeout=2.0)

        events = drain_events(sub)
        assert [e.kind for e in events[:3]] == [
            SessionEventKind.STATUS,
            SessionEventKind.ALIASES,
            SessionEventKind.PARAMS,
        ]
        assert events[0].payload["state"] == "CONNECTED"
        assert events[1].payload["iso"]["key"] == "iso"
        assert events[2].payload["iso"] == "400"
        assert all(e.generation == 1 for e in events)

    @pytest.mark.asyncio
    async def test_unchanged_params_not_republished(self, connected_session):
        sub = connected_session.events.subscribe()

        await connected_session.refresh()
        await connected_session.refresh()

        assert drain_events(sub) == []

    @pytest.mark.asyncio
    async def test_disconnect_status_event(self, connected_session):
        sub = connected_session.events.subscribe()

        await connected_session.disconnect()

        (event,) = drain_events(sub)
        assert event.kind is SessionEventKind.STATUS
        assert event.payload["state"] == "DISCONNECTED"
        assert event.generation == 2

    @pytest.mark.asyncio
    async def test_write_error_event(self, nikon_session):
        sub = nikon_session.events.subscribe()

        with pytest.raises(UnsupportedParameterError):
            await nikon_session.write("metering_mode", "Spot")

        (event,) = drain_events(sub)
        assert event.kind is SessionEventKind.ERROR
        assert event.payload["error"] == "unsupported_parameter"
        assert event.payload["parameter"] == "metering_mode"

    @pytest.mark.asyncio
    async def test_host_capture_event(self, connected_session):
        sub = connected_session.events.subscribe()

        result = await connected_session.capture()

        kinds = {e.kind: e for e in drain_events(sub)}
        assert kinds[SessionEventKind.CAPTURED].payload["filePath"] == result.file_path
        assert kinds[SessionEventKind.CAPTURED].payload["source"] == "host"
        assert kinds[SessionEventKind.PARAMS].payload["imagesRemaining"] == 249

    @pytest.mark.asyncio
    async def test_close_ends_subscriptions(self, twin, fast_config):
        session = TetherSession(twin, fast_config)
        sub = session.events.subscribe()

        await session.close()

        assert sub.closed


# =============================================================================
# Monitoring
# =============================================================================


class TestMonitoring:
    """Tests for hot-plug detection and camera-side capture polling."""

    @pytest.mark.asyncio
    async def test_auto_connect(self, session):
        session.start_monitoring()

        assert session.monitoring
        assert await wait_until(lambda: session.parameters is not None)

    @pytest.mark.asyncio
    async def test_auto_connect_disabled(self, twin, fast_config):
        fast_config.auto_connect = False
        session = TetherSession(twin, fast_config)
        try:
            session.start_monitoring()
            await asyncio.sleep(0.05)
            assert not session.is_connected
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_unplug_and_replug(self, session, twin):
        session.start_monitoring()
        assert await wait_until(lambda: session.parameters is not None)

        twin.unplug()
        assert await wait_until(lambda: not session.is_connected)

        twin.replug()
        assert await wait_until(lambda: session.parameters is not None)
        assert session.generation == 3

    @pytest.mark.asyncio
    async def test_replug_different_body_resolves_again(self, session, twin):
        """A body swapped while unplugged gets its own alias map.

        Arrangement:
        1. Monitoring session connected to the Canon twin.
        2. Cable pulled, then a Nikon plugged in on the same port.

        Action:
        Auto-connect picks up the Nikon.

        Assertion Strategy:
        - iso resolves to the Nikon key isospeed, not the Canon iso.
        - The first snapshot of the new session shows the Nikon values.
        - Every key probe of the new session precedes its first read.
        """
        session.start_monitoring()
        assert await wait_until(lambda: session.parameters is not None)
        assert session.aliases.key_for("iso") == "iso"

        twin.unplug()
        assert await wait_until(lambda: not session.is_connected)
        assert session.aliases is None
        twin.calls.clear()

        twin.replug("Nikon Z 6")
        assert await wait_until(lambda: session.parameters is not None)

        assert session.generation == 3
        assert session.aliases.key_for("iso") == "isospeed"
        assert session.aliases.key_for("aperture") == "f-number"
        assert session.parameters.model == "Nikon Z 6"
        assert session.parameters.iso == "200"
        calls = twin.calls
        first_read = calls.index("get_params")
        assert "get_config_choices" in calls[:first_read]
        assert "get_config_choices" not in calls[first_read:]

    @pytest.mark.asyncio
    async def test_shutter_button_capture(self, session, twin):
        sub = session.events.subscribe()
        session.start_monitoring()
        assert await wait_until(lambda: session.parameters is not None)

        twin.press_shutter()

        assert await wait_until(
            lambda: session.parameters.images_remaining == 249
        )
        captured = [e for e in drain_events(sub) if e.kind is SessionEventKind.CAPTURED]
        assert len(captured) == 1
        assert Path(captured[0].payload["filePath"]).exists()

    @pytest.mark.asyncio
    async def test_stop_monitoring(self, connected_session, twin):
        connected_session.start_monitoring()
        connected_session.stop_monitoring()
        twin.press_shutter()
        await asyncio.sleep(0.05)

        assert not connected_session.monitoring
        assert twin.call_count("poll_new_capture") <= 1
