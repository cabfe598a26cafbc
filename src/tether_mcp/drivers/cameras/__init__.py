"""Camera transport module.

Provides access to tethered cameras over libgphoto2 (real hardware) and a
digital twin for development without hardware.

Import order: types first (avoid circular imports), then implementations.
The libgphoto2 transport is not imported here; it needs the optional
``hardware`` extra and is loaded by the driver factory on demand.

Protocols:
    CameraTransport: Blocking access to one camera

Implementations:
    GPhotoTransport: libgphoto2 (tether_mcp.drivers.cameras.gphoto)
    DigitalTwinTransport: Simulated camera bodies

TypedDicts:
    DetectedCamera, RawParams, RawCapture
"""

from __future__ import annotations

from tether_mcp.drivers.cameras.keys import (
    BATTERY_LEVEL_KEY,
    CONFIG_KEY_CANDIDATES,
    IMAGES_REMAINING_KEY,
    REQUIRED_PARAMETERS,
)
from tether_mcp.drivers.cameras.types import (
    CameraTransport,
    ConfigKeyError,
    DetectedCamera,
    RawCapture,
    RawParams,
    TransportBusyError,
    TransportDisconnectedError,
    TransportError,
    default_capture_dir,
)
from tether_mcp.drivers.cameras.twin import (
    DEFAULT_MODELS,
    DEFAULT_TWIN_MODEL,
    DigitalTwinTransport,
    TwinCameraProfile,
)

__all__ = [
    # Keys
    "BATTERY_LEVEL_KEY",
    "CONFIG_KEY_CANDIDATES",
    "IMAGES_REMAINING_KEY",
    "REQUIRED_PARAMETERS",
    # Protocol and payloads
    "CameraTransport",
    "DetectedCamera",
    "RawCapture",
    "RawParams",
    # Errors
    "ConfigKeyError",
    "TransportBusyError",
    "TransportDisconnectedError",
    "TransportError",
    # Digital twin
    "DEFAULT_MODELS",
    "DEFAULT_TWIN_MODEL",
    "DigitalTwinTransport",
    "TwinCameraProfile",
    "default_capture_dir",
]
