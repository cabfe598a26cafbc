"""Pytest configuration and fixtures for tether-mcp tests.

Sessions run against the digital twin with millisecond timing so the sync
loop, settle delay and background monitors complete within a test. Global
state (driver factory, session registry, logging) is restored after each
test.
"""

from pathlib import Path

import pytest
import pytest_asyncio

from tests.helpers import wait_until
from tether_mcp.devices import TetherSession, registry
from tether_mcp.drivers import config as driver_config
from tether_mcp.drivers.cameras import DigitalTwinTransport
from tether_mcp.drivers.config import DriverConfig, TimingProfile
from tether_mcp.observability import reset_logging

#: Poll and settle timing used by session tests.
FAST_TIMING = TimingProfile(poll_interval_s=0.05, settle_delay_s=0.02)


@pytest.fixture(autouse=True)
def restore_globals():
    """Restore the driver factory and session registry after each test."""
    factory = driver_config._factory
    session = registry._default_session
    yield
    driver_config._factory = factory
    registry._default_session = session


@pytest.fixture
def clean_logging():
    """Unconfigured logging before and after the test."""
    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def capture_dir(tmp_path: Path) -> Path:
    return tmp_path / "captures"


@pytest.fixture
def fast_config(capture_dir: Path) -> DriverConfig:
    """DriverConfig with millisecond timing and a temporary capture folder."""
    return DriverConfig(
        capture_dir=capture_dir,
        timing=FAST_TIMING,
        event_poll_interval_s=0.01,
        event_wait_timeout_s=0.0,
        reconnect_interval_s=0.02,
        connect_attempts=2,
        connect_retry_delay_s=0.01,
    )


@pytest.fixture
def twin(capture_dir: Path) -> DigitalTwinTransport:
    """Canon EOS R5 twin: common key names, read-only shooting mode."""
    return DigitalTwinTransport("Canon EOS R5", capture_dir=capture_dir)


@pytest.fixture
def nikon_twin(capture_dir: Path) -> DigitalTwinTransport:
    """Nikon Z 6 twin: isospeed, f-number, shutterspeed2 key names."""
    return DigitalTwinTransport("Nikon Z 6", capture_dir=capture_dir)


@pytest.fixture
def sony_twin(capture_dir: Path) -> DigitalTwinTransport:
    """Sony twin: no drive or shooting mode, metering without choices."""
    return DigitalTwinTransport("Sony Alpha-A7 III", capture_dir=capture_dir)


@pytest_asyncio.fixture
async def session(twin: DigitalTwinTransport, fast_config: DriverConfig):
    """Disconnected session over the Canon twin, closed after the test."""
    session = TetherSession(twin, fast_config)
    yield session
    await session.close()


@pytest_asyncio.fixture
async def connected_session(session: TetherSession):
    """Session with the Canon twin connected and the first read done."""
    await session.connect()
    assert await session.wait_ready(timeout=2.0)
    return session


@pytest_asyncio.fixture
async def nikon_session(nikon_twin: DigitalTwinTransport, fast_config: DriverConfig):
    """Connected session over the Nikon twin."""
    session = TetherSession(nikon_twin, fast_config)
    await session.connect()
    assert await wait_until(lambda: session.parameters is not None)
    yield session
    await session.close()
