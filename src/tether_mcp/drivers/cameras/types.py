"""Camera transport type definitions, protocol and errors.

Kept apart from the implementations so the digital twin and the
libgphoto2 transport can import them without circular imports.

Types defined here:
- DetectedCamera: identity of an opened camera
- RawParams: one complete parameter read, snake_case keys
- RawCapture: one downloaded capture
- CameraTransport: blocking transport protocol used by the device layer
- TransportError and subclasses
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, TypedDict, runtime_checkable

__all__ = [
    "CameraTransport",
    "ConfigKeyError",
    "DetectedCamera",
    "RawCapture",
    "RawParams",
    "TransportBusyError",
    "TransportDisconnectedError",
    "TransportError",
    "default_capture_dir",
]


def default_capture_dir() -> Path:
    """Folder used for captures when no target or download folder is set.

    Returns:
        ``~/.tether-mcp/captures``. Created by the transport on first capture.
    """
    return Path.home() / ".tether-mcp" / "captures"


# =============================================================================
# Errors
# =============================================================================


class TransportError(Exception):
    """Base error for camera transport failures."""


class TransportDisconnectedError(TransportError):
    """No camera session is open or the camera stopped answering."""


class TransportBusyError(TransportError):
    """The USB device is claimed by another process."""


class ConfigKeyError(TransportError):
    """The camera does not expose the requested config key.

    Attributes:
        key: The vendor key that was queried.
    """

    def __init__(self, key: str, message: str | None = None) -> None:
        self.key = key
        super().__init__(message or f"Config key '{key}' not found on camera")


# =============================================================================
# Transport payloads
# =============================================================================


class DetectedCamera(TypedDict):
    """Identity of the camera a transport opened."""

    model: str
    port: str


class RawParams(TypedDict, total=False):
    """One parameter read as returned by CameraTransport.get_params().

    The first five keys are always present. ``battery_level`` is a
    fraction 0.0-1.0. Optional values are None when the camera lacks them.
    """

    iso: str
    shutter_speed: str
    aperture: str
    model: str
    port: str
    exposure_compensation: str | None
    shooting_mode: str | None
    white_balance: str | None
    focus_mode: str | None
    drive_mode: str | None
    metering_mode: str | None
    battery_level: float | None
    images_remaining: int | None


class RawCapture(TypedDict, total=False):
    """A capture downloaded to the local filesystem."""

    file_path: str
    preview_path: str | None
    width: int
    height: int


# =============================================================================
# Protocol
# =============================================================================


@runtime_checkable
class CameraTransport(Protocol):  # pragma: no cover
    """Blocking access to one tethered camera.

    Implemented by GPhotoTransport (libgphoto2) and DigitalTwinTransport.
    Every method blocks; the device layer runs them on an executor and
    never issues two at once.
    """

    def connect(self) -> DetectedCamera:
        """Detect and open the first available camera.

        Raises:
            TransportBusyError: The device is claimed by another program.
            TransportError: No camera detected.
        """
        ...

    def disconnect(self) -> None:
        """Release the camera. Safe to call when nothing is open."""
        ...

    def get_config_choices(self, key: str) -> list[str]:
        """Return the ordered choice values of a selectable config key.

        Raises:
            ConfigKeyError: The key does not exist or is not selectable.
            TransportDisconnectedError: No camera session.
        """
        ...

    def get_params(self) -> RawParams:
        """Read every known parameter in one pass.

        Raises:
            TransportError: Camera unreachable or a required value missing.
        """
        ...

    def set_config_value(self, key: str, value: str) -> None:
        """Write one config value.

        Raises:
            ConfigKeyError: The key does not exist.
            TransportError: The camera rejected the value or the key is
                read-only.
        """
        ...

    def set_download_folder(self, path: str | None) -> None:
        """Folder for captures triggered from the camera body."""
        ...

    def capture(self, target_folder: str | None) -> RawCapture:
        """Capture one image and download it.

        Args:
            target_folder: Destination folder; also becomes the folder for
                camera-side captures. None uses the transport default.
        """
        ...

    def poll_new_capture(self, timeout_s: float) -> RawCapture | None:
        """Wait up to ``timeout_s`` for a camera-side capture and download it."""
        ...
