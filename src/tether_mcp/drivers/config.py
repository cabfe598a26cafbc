"""Driver configuration and factory.

Supports switching between the libgphoto2 transport and the digital twin
for testing and development without a camera, and holds the timing that
drives the parameter sync loop.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from tether_mcp.drivers.cameras import (
    DEFAULT_TWIN_MODEL,
    CameraTransport,
    DigitalTwinTransport,
    default_capture_dir,
)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_POLL_INTERVAL_S = 0.5
DEFAULT_SETTLE_DELAY_S = 0.5

# Camera-side capture polling (wait_for_event timeout and cadence)
DEFAULT_EVENT_POLL_INTERVAL_S = 0.1
DEFAULT_EVENT_WAIT_TIMEOUT_S = 0.3

# Hot-plug detection
DEFAULT_RECONNECT_INTERVAL_S = 0.5
DEFAULT_CONNECT_ATTEMPTS = 5
DEFAULT_CONNECT_RETRY_DELAY_S = 0.2


class DriverMode(Enum):
    """Driver mode selection."""

    HARDWARE = "hardware"  # libgphoto2 over USB
    DIGITAL_TWIN = "digital_twin"  # Simulated camera bodies


@dataclass(frozen=True)
class TimingProfile:
    """Sync loop timing for one camera.

    Attributes:
        poll_interval_s: Period of the background parameter read.
        settle_delay_s: Wait after a write before the confirming read.
    """

    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S
    settle_delay_s: float = DEFAULT_SETTLE_DELAY_S

    def __post_init__(self) -> None:
        if self.poll_interval_s <= 0:
            raise ValueError(
                f"poll_interval_s must be positive, got {self.poll_interval_s}"
            )
        if self.settle_delay_s < 0:
            raise ValueError(
                f"settle_delay_s must be non-negative, got {self.settle_delay_s}"
            )


@dataclass
class DriverConfig:
    """Configuration for transport selection and session timing.

    Attributes:
        mode: HARDWARE for libgphoto2, DIGITAL_TWIN for simulation.
        capture_dir: Captures land here when no folder is given
            (~/.tether-mcp/captures).
        workspace_root: When set, captures without a folder go into a new
            timestamped workspace folder under this root.
        timing: Default poll interval and settle delay.
        model_timing: Per-model overrides, keyed by the model name the
            camera reports. Applied once the first read names the model.
        event_poll_interval_s: Pause between camera-side capture polls.
        event_wait_timeout_s: How long each poll waits for a camera event.
        reconnect_interval_s: Hot-plug detection period while disconnected.
        connect_attempts: Attempts made by an explicit connect request.
        connect_retry_delay_s: Pause between those attempts.
        auto_connect: Run hot-plug detection in the server.
        twin_model: Simulated body used in DIGITAL_TWIN mode.
    """

    mode: DriverMode = DriverMode.DIGITAL_TWIN

    # Storage
    capture_dir: Path = field(default_factory=default_capture_dir)
    workspace_root: Path | None = None

    # Sync timing
    timing: TimingProfile = field(default_factory=TimingProfile)
    model_timing: dict[str, TimingProfile] = field(default_factory=dict)

    # Background monitoring
    event_poll_interval_s: float = DEFAULT_EVENT_POLL_INTERVAL_S
    event_wait_timeout_s: float = DEFAULT_EVENT_WAIT_TIMEOUT_S
    reconnect_interval_s: float = DEFAULT_RECONNECT_INTERVAL_S
    connect_attempts: int = DEFAULT_CONNECT_ATTEMPTS
    connect_retry_delay_s: float = DEFAULT_CONNECT_RETRY_DELAY_S
    auto_connect: bool = True

    # Digital twin settings
    twin_model: str = DEFAULT_TWIN_MODEL

    def timing_for(self, model: str | None) -> TimingProfile:
        """Timing for ``model``, falling back to the default profile."""
        if model is not None and model in self.model_timing:
            return self.model_timing[model]
        return self.timing


class DriverFactory:
    """Factory for creating the camera transport from configuration.

    Thread Safety:
        Not thread-safe. The global factory should be configured once at
        startup before the session is created.
    """

    def __init__(self, config: DriverConfig | None = None):
        """Create a factory. Default config uses the digital twin.

        Args:
            config: Mode, folders and timing. None uses DriverConfig().
        """
        self.config = config or DriverConfig()

    def create_transport(self) -> CameraTransport:
        """Create the camera transport for the configured mode.

        Returns:
            GPhotoTransport in HARDWARE mode, DigitalTwinTransport otherwise.

        Raises:
            ImportError: python-gphoto2 is not installed in HARDWARE mode.
            ValueError: Unknown twin model in DIGITAL_TWIN mode.

        Example:
            >>> factory = DriverFactory(DriverConfig(twin_model="Nikon Z 6"))
            >>> transport = factory.create_transport()
            >>> transport.connect()["model"]
            'Nikon Z 6'
        """
        if self.config.mode == DriverMode.HARDWARE:
            from tether_mcp.drivers.cameras.gphoto import GPhotoTransport

            return GPhotoTransport(capture_dir=self.config.capture_dir)
        return DigitalTwinTransport(
            self.config.twin_model, capture_dir=self.config.capture_dir
        )


# =============================================================================
# Global Singleton
# =============================================================================
# Not thread-safe. Configure once at startup before the session starts.

_factory: DriverFactory | None = None


def get_factory() -> DriverFactory:
    """Get the global driver factory, creating a digital twin one on first use."""
    global _factory
    if _factory is None:
        _factory = DriverFactory()
    return _factory


def configure(config: DriverConfig) -> None:
    """Replace the global factory with one built from ``config``.

    Example:
        >>> configure(DriverConfig(mode=DriverMode.HARDWARE,
        ...                        capture_dir=Path("/data/shoot")))
    """
    global _factory
    _factory = DriverFactory(config)


def _copy_config_with_mode(mode: DriverMode) -> DriverConfig:
    return dataclasses.replace(get_factory().config, mode=mode)


def use_digital_twin(preserve_config: bool = False) -> None:
    """Switch to the simulated camera.

    Args:
        preserve_config: Keep folders and timing. False resets to defaults.
    """
    if preserve_config:
        configure(_copy_config_with_mode(DriverMode.DIGITAL_TWIN))
    else:
        configure(DriverConfig(mode=DriverMode.DIGITAL_TWIN))


def use_hardware(preserve_config: bool = False) -> None:
    """Switch to libgphoto2.

    Configuration succeeds without a camera or the bindings; creating the
    transport is what fails when python-gphoto2 is missing.

    Args:
        preserve_config: Keep folders and timing. False resets to defaults.
    """
    if preserve_config:
        configure(_copy_config_with_mode(DriverMode.HARDWARE))
    else:
        configure(DriverConfig(mode=DriverMode.HARDWARE))


def set_capture_dir(capture_dir: Path | str) -> None:
    """Set the default capture folder, keeping the rest of the config."""
    factory = get_factory()
    factory.config = dataclasses.replace(factory.config, capture_dir=Path(capture_dir))
