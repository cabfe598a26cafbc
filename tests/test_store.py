"""Tests for the parameter store and its write path."""

import pytest
import pytest_asyncio

from tether_mcp.devices import (
    AliasMap,
    CameraParameters,
    DeviceChannel,
    DeviceUnavailableError,
    ParameterStore,
    ParameterWriteError,
    ResolvedKey,
    SemanticParameter,
    UnsupportedParameterError,
)
from tether_mcp.drivers.cameras import DigitalTwinTransport


def iso_aliases(key: str = "iso") -> AliasMap:
    return AliasMap(
        {SemanticParameter.ISO: ResolvedKey(SemanticParameter.ISO, key, ("400", "800"))}
    )


@pytest_asyncio.fixture
async def store(twin: DigitalTwinTransport):
    channel = DeviceChannel(twin)
    await channel.run("connect", twin.connect)
    return ParameterStore(channel, settle_delay_s=0.25)


class TestStoreState:
    """Tests for open/replace/clear."""

    @pytest.mark.asyncio
    async def test_initially_closed(self, store: ParameterStore):
        assert not store.is_open
        assert store.snapshot is None
        assert store.aliases is None

    @pytest.mark.asyncio
    async def test_open_starts_empty(self, store: ParameterStore):
        store.open()

        assert store.is_open
        assert store.snapshot is None
        assert store.aliases is not None
        assert len(store.aliases) == 0

    @pytest.mark.asyncio
    async def test_replace_requires_open(self, store: ParameterStore):
        snapshot = await self._read_open(store)
        store.clear()

        with pytest.raises(DeviceUnavailableError):
            store.replace(snapshot)
        with pytest.raises(DeviceUnavailableError):
            store.install_aliases(iso_aliases())

    @pytest.mark.asyncio
    async def test_clear_drops_everything(self, store: ParameterStore):
        snapshot = await self._read_open(store)
        store.replace(snapshot)
        store.install_aliases(iso_aliases())

        store.clear()

        assert store.snapshot is None
        assert store.aliases is None
        assert not store.is_open

    @staticmethod
    async def _read_open(store: ParameterStore) -> CameraParameters:
        store.open()
        return await store.read()


class TestStoreRead:
    """Tests for read()."""

    @pytest.mark.asyncio
    async def test_read_does_not_store(self, store: ParameterStore):
        store.open()
        snapshot = await store.read()

        assert snapshot.iso == "400"
        assert store.snapshot is None

    @pytest.mark.asyncio
    async def test_read_closed_raises(self, store: ParameterStore):
        with pytest.raises(DeviceUnavailableError, match="not connected"):
            await store.read()

    @pytest.mark.asyncio
    async def test_transport_failure_is_device_unavailable(
        self, store: ParameterStore, twin: DigitalTwinTransport
    ):
        store.open()
        twin.unplug()

        with pytest.raises(DeviceUnavailableError, match="read failed"):
            await store.read()


class TestStoreWrite:
    """Tests for write(): key lookup, error mapping and the deferred read."""

    @pytest.mark.asyncio
    async def test_write_uses_resolved_key_and_schedules_read(
        self, store: ParameterStore, twin: DigitalTwinTransport
    ):
        scheduled = []
        store.attach_refresh_scheduler(scheduled.append)
        store.open()
        store.replace(await store.read())
        store.install_aliases(iso_aliases())

        await store.write("iso", "800")

        assert twin.value_of("iso") == "800"
        assert scheduled == [0.25]
        assert store.snapshot is not None
        assert store.snapshot.iso == "400"

    @pytest.mark.asyncio
    async def test_write_closed_raises(self, store: ParameterStore):
        with pytest.raises(DeviceUnavailableError):
            await store.write("iso", "800")

    @pytest.mark.asyncio
    async def test_write_unresolved_raises_unsupported(self, store: ParameterStore):
        store.open()

        with pytest.raises(UnsupportedParameterError) as exc_info:
            await store.write("aperture", "8")
        assert exc_info.value.parameter == "aperture"

    @pytest.mark.asyncio
    async def test_write_unknown_parameter(self, store: ParameterStore):
        store.open()
        with pytest.raises(UnsupportedParameterError):
            await store.write("zoom", "2x")

    @pytest.mark.asyncio
    async def test_rejected_value_raises_write_error(
        self, store: ParameterStore, twin: DigitalTwinTransport
    ):
        scheduled = []
        store.attach_refresh_scheduler(scheduled.append)
        store.open()
        store.install_aliases(iso_aliases())

        with pytest.raises(ParameterWriteError) as exc_info:
            await store.write("iso", "12345")

        assert exc_info.value.parameter == "iso"
        assert exc_info.value.value == "12345"
        assert scheduled == []
        assert twin.call_count("set_config_value") == 1
