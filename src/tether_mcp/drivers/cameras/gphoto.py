"""libgphoto2 camera transport for real tethered cameras.

Talks to USB/PTP cameras through the python-gphoto2 bindings (install the
``hardware`` extra). The bindings are loaded when the transport is created,
and tests inject a stand-in module through the ``sdk`` argument, the same
way the SDK wrapper is swapped out for the astronomy cameras.

Config widgets:
    Settings are libgphoto2 widgets addressed by name. Only radio and menu
    widgets have choices; ``batterylevel`` and ``remainingimages`` are read
    from their widget value. A write is rejected up front for a read-only
    widget and followed by a short pause so the body applies it.

Downloads:
    Every capture is saved as ``capture_<epoch>.<ext>`` with the extension
    taken from the camera-side name. JPEG dimensions are probed with OpenCV;
    RAW files report DEFAULT_DIMENSIONS. Camera-side captures reuse the first
    dimensions probed for the model.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol

from tether_mcp.drivers.cameras.keys import (
    BATTERY_LEVEL_KEY,
    CONFIG_KEY_CANDIDATES,
    IMAGES_REMAINING_KEY,
    REQUIRED_PARAMETERS,
)
from tether_mcp.drivers.cameras.types import (
    ConfigKeyError,
    DetectedCamera,
    RawCapture,
    RawParams,
    TransportBusyError,
    TransportDisconnectedError,
    TransportError,
    default_capture_dir,
)
from tether_mcp.observability import get_logger
from tether_mcp.utils.image import (
    DEFAULT_DIMENSIONS,
    capture_file_name,
    extract_file_extension,
    is_raw_file,
    read_image_dimensions,
    unique_path,
)

logger = get_logger(__name__)

__all__ = ["GPhotoTransport"]

#: Pause after set_single_config before the value is trusted by the body.
WRITE_APPLY_DELAY_S = 0.1

# Semantic parameter -> RawParams field
_PARAM_FIELDS = (
    ("iso", "iso"),
    ("shutter", "shutter_speed"),
    ("aperture", "aperture"),
    ("exposure_comp", "exposure_compensation"),
    ("shooting_mode", "shooting_mode"),
    ("white_balance", "white_balance"),
    ("focus_mode", "focus_mode"),
    ("drive_mode", "drive_mode"),
    ("metering_mode", "metering_mode"),
)

# libgphoto2 result codes that mean the camera is gone
_DISCONNECT_ERROR_NAMES = (
    "GP_ERROR_IO",
    "GP_ERROR_IO_USB_FIND",
    "GP_ERROR_IO_READ",
    "GP_ERROR_MODEL_NOT_FOUND",
    "GP_ERROR_CAMERA_ERROR",
    "GP_ERROR_TIMEOUT",
)


class GPhotoSDKProtocol(Protocol):  # pragma: no cover
    """The part of the ``gphoto2`` module this transport uses.

    Constants (GP_WIDGET_*, GP_ERROR_*, GP_EVENT_FILE_ADDED,
    GP_CAPTURE_IMAGE, GP_FILE_TYPE_NORMAL) are read as attributes.
    """

    GPhoto2Error: type[Exception]

    def Camera(self) -> Any:  # noqa: N802
        ...


def _load_gphoto2() -> Any:
    """Import the python-gphoto2 bindings.

    Raises:
        ImportError: If the ``hardware`` extra is not installed.
    """
    import gphoto2

    return gphoto2


class GPhotoTransport:
    """CameraTransport backed by libgphoto2.

    Opens the first camera libgphoto2 autodetects. Calls block and must
    not overlap; the device layer serializes them.
    """

    def __init__(
        self,
        capture_dir: Path | str | None = None,
        sdk: GPhotoSDKProtocol | Any | None = None,
        *,
        write_apply_delay_s: float = WRITE_APPLY_DELAY_S,
    ) -> None:
        """Create a transport. No USB access happens until connect().

        Args:
            capture_dir: Folder for captures without a target folder.
            sdk: gphoto2 module or a stand-in (tests). Loaded if None.
            write_apply_delay_s: Pause after each config write.

        Raises:
            ImportError: gphoto2 bindings not installed and no sdk given.
        """
        self._gp = sdk if sdk is not None else _load_gphoto2()
        self.capture_dir = Path(capture_dir) if capture_dir else default_capture_dir()
        self.write_apply_delay_s = write_apply_delay_s
        self._camera: Any | None = None
        self._model: str | None = None
        self._download_folder: Path | None = None
        self._cached_dimensions: dict[str, tuple[int, int]] = {}

    def __repr__(self) -> str:
        return f"GPhotoTransport(model={self._model!r}, connected={self._camera is not None})"

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    def connect(self) -> DetectedCamera:
        gp = self._gp
        if self._camera is not None:
            self.disconnect()

        camera = gp.Camera()
        try:
            camera.init()
        except gp.GPhoto2Error as e:
            if e.code == getattr(gp, "GP_ERROR_IO_USB_CLAIM", None):
                raise TransportBusyError(
                    "USB occupied - close other camera apps"
                ) from e
            if e.code == getattr(gp, "GP_ERROR_MODEL_NOT_FOUND", None):
                raise TransportError("No camera detected") from e
            raise TransportError(f"Failed to open camera: {e}") from e

        try:
            model = str(camera.get_abilities().model)
            port = str(camera.get_port_info().get_path())
        except gp.GPhoto2Error as e:
            self._safe_exit(camera)
            raise TransportError(f"Failed to identify camera: {e}") from e

        self._camera = camera
        self._model = model
        logger.info("Camera opened", model=model, port=port)
        return DetectedCamera(model=model, port=port)

    def disconnect(self) -> None:
        camera, self._camera = self._camera, None
        if camera is not None:
            self._safe_exit(camera)
            logger.info("Camera released", model=self._model)

    def _safe_exit(self, camera: Any) -> None:
        try:
            camera.exit()
        except self._gp.GPhoto2Error as e:
            # The camera may already be unplugged
            logger.debug("Camera exit failed", error=str(e))

    def _require_camera(self) -> Any:
        if self._camera is None:
            raise TransportDisconnectedError("No camera connected")
        return self._camera

    def _translate(self, error: Exception, action: str) -> TransportError:
        """Map a GPhoto2Error to the transport error hierarchy."""
        code = getattr(error, "code", None)
        disconnect_codes = {
            getattr(self._gp, name) for name in _DISCONNECT_ERROR_NAMES
            if hasattr(self._gp, name)
        }
        if code in disconnect_codes:
            return TransportDisconnectedError(f"{action} failed: {error}")
        return TransportError(f"{action} failed: {error}")

    # -------------------------------------------------------------------------
    # Config widgets
    # -------------------------------------------------------------------------

    def _is_choice_widget(self, widget: Any) -> bool:
        return widget.get_type() in (self._gp.GP_WIDGET_RADIO, self._gp.GP_WIDGET_MENU)

    def get_config_choices(self, key: str) -> list[str]:
        camera = self._require_camera()
        try:
            widget = camera.get_single_config(key)
        except self._gp.GPhoto2Error as e:
            if self._is_missing_key(e):
                raise ConfigKeyError(key) from e
            raise self._translate(e, f"Reading config '{key}'") from e
        if not self._is_choice_widget(widget):
            raise ConfigKeyError(key, f"Config '{key}' has no choices")
        return [str(widget.get_choice(i)) for i in range(widget.count_choices())]

    def _is_missing_key(self, error: Exception) -> bool:
        code = getattr(error, "code", None)
        return code in (
            getattr(self._gp, "GP_ERROR_BAD_PARAMETERS", None),
            getattr(self._gp, "GP_ERROR_NOT_SUPPORTED", None),
        )

    def get_params(self) -> RawParams:
        camera = self._require_camera()
        try:
            root = camera.get_config()
            model = str(camera.get_abilities().model)
        except self._gp.GPhoto2Error as e:
            raise self._translate(e, "Reading camera config") from e

        params = RawParams(model=model, port="usb")
        for parameter, field_name in _PARAM_FIELDS:
            value = self._radio_value(root, CONFIG_KEY_CANDIDATES[parameter])
            if value is None and parameter in REQUIRED_PARAMETERS:
                raise TransportError(
                    f"Failed to get {parameter} - camera may be disconnected"
                )
            params[field_name] = value  # type: ignore[literal-required]

        battery = self._range_value(root, BATTERY_LEVEL_KEY)
        params["battery_level"] = None if battery is None else battery / 100
        remaining = self._range_value(root, IMAGES_REMAINING_KEY)
        params["images_remaining"] = None if remaining is None else int(remaining)
        return params

    def _child(self, root: Any, key: str) -> Any | None:
        try:
            return root.get_child_by_name(key)
        except self._gp.GPhoto2Error:
            return None

    def _radio_value(self, root: Any, keys: Sequence[str]) -> str | None:
        for key in keys:
            widget = self._child(root, key)
            if widget is not None and self._is_choice_widget(widget):
                return str(widget.get_value())
        return None

    def _range_value(self, root: Any, key: str) -> float | None:
        widget = self._child(root, key)
        if widget is None or widget.get_type() != self._gp.GP_WIDGET_RANGE:
            return None
        return float(widget.get_value())

    def set_config_value(self, key: str, value: str) -> None:
        camera = self._require_camera()
        try:
            widget = camera.get_single_config(key)
        except self._gp.GPhoto2Error as e:
            if self._is_missing_key(e):
                raise ConfigKeyError(key) from e
            raise self._translate(e, f"Reading config '{key}'") from e

        if widget.get_readonly():
            raise TransportError(f"Config '{key}' is readonly")
        try:
            widget.set_value(value)
            camera.set_single_config(key, widget)
        except self._gp.GPhoto2Error as e:
            raise self._translate(e, f"Setting '{key}' to '{value}'") from e

        logger.debug("Config applied", key=key, value=value)
        if self.write_apply_delay_s:
            time.sleep(self.write_apply_delay_s)

    # -------------------------------------------------------------------------
    # Capture
    # -------------------------------------------------------------------------

    def set_download_folder(self, path: str | None) -> None:
        self._download_folder = Path(path) if path else None

    def capture(self, target_folder: str | None) -> RawCapture:
        camera = self._require_camera()
        if target_folder:
            folder = Path(target_folder)
            self._download_folder = folder
        else:
            folder = self.capture_dir

        try:
            camera_path = camera.capture(self._gp.GP_CAPTURE_IMAGE)
        except self._gp.GPhoto2Error as e:
            raise self._translate(e, "Capture") from e

        file_path = self._download(camera, camera_path.folder, camera_path.name, folder)
        if is_raw_file(file_path):
            width, height = DEFAULT_DIMENSIONS
        else:
            width, height = read_image_dimensions(file_path) or DEFAULT_DIMENSIONS
        return RawCapture(
            file_path=str(file_path), preview_path=None, width=width, height=height
        )

    def poll_new_capture(self, timeout_s: float) -> RawCapture | None:
        camera = self._require_camera()
        try:
            event_type, event_data = camera.wait_for_event(int(timeout_s * 1000))
        except self._gp.GPhoto2Error as e:
            raise self._translate(e, "Waiting for camera event") from e

        if event_type != self._gp.GP_EVENT_FILE_ADDED:
            return None

        logger.info(
            "Camera-side capture detected",
            folder=event_data.folder,
            name=event_data.name,
        )
        folder = self._download_folder or self.capture_dir
        file_path = self._download(camera, event_data.folder, event_data.name, folder)

        model = self._model or ""
        dimensions = self._cached_dimensions.get(model)
        if dimensions is None:
            dimensions = read_image_dimensions(file_path) or DEFAULT_DIMENSIONS
            self._cached_dimensions[model] = dimensions
        width, height = dimensions
        return RawCapture(
            file_path=str(file_path), preview_path=None, width=width, height=height
        )

    def _download(
        self, camera: Any, camera_folder: str, camera_name: str, folder: Path
    ) -> Path:
        ext = extract_file_extension(camera_name)
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TransportError(f"Failed to create capture directory: {e}") from e
        file_path = unique_path(folder, capture_file_name(ext, int(time.time())))

        try:
            camera_file = camera.file_get(
                camera_folder, camera_name, self._gp.GP_FILE_TYPE_NORMAL
            )
            camera_file.save(str(file_path))
        except self._gp.GPhoto2Error as e:
            raise self._translate(e, "Download") from e
        logger.info("Capture downloaded", path=str(file_path))
        return file_path
