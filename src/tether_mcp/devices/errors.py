"""Exceptions raised by the tethering session.

Every error carries a short ``kind`` string used as the ``error`` field of
tool and dashboard error payloads. Driver-level TransportErrors are always
chained into one of these.
"""

from __future__ import annotations

__all__ = [
    "CaptureFailedError",
    "DeviceUnavailableError",
    "DownloadFolderError",
    "ParameterWriteError",
    "TetherError",
    "UnsupportedParameterError",
]


class TetherError(Exception):
    """Base exception for tethering operations."""

    kind = "tether_error"


class DeviceUnavailableError(TetherError):
    """No camera session, or the camera stopped answering a read.

    A failed read is the session's disconnect signal.
    """

    kind = "device_unavailable"


class UnsupportedParameterError(TetherError):
    """The parameter has no resolved config key on this camera."""

    kind = "unsupported_parameter"

    def __init__(self, parameter: str, message: str | None = None) -> None:
        self.parameter = parameter
        super().__init__(
            message or f"Parameter '{parameter}' is not supported by this camera"
        )


class ParameterWriteError(TetherError):
    """The camera rejected a write. The session stays connected."""

    kind = "parameter_write_failed"

    def __init__(self, parameter: str, value: str, message: str) -> None:
        self.parameter = parameter
        self.value = value
        super().__init__(message)


class CaptureFailedError(TetherError):
    """A capture could not be taken or downloaded."""

    kind = "capture_failed"


class DownloadFolderError(TetherError):
    """The camera refused the download folder. The session stays connected."""

    kind = "download_folder_failed"
