"""Digital Twin Camera Transport - simulated tethered camera.

Implements CameraTransport without USB hardware. A twin is built from a
TwinCameraProfile describing which vendor config keys the simulated body
exposes, their choices and current values. This reproduces the key-name
differences between manufacturers that the resolver has to cope with.

Profiles:
    Canon EOS R5: common key names (``iso``, ``aperture``, ``shutterspeed``)
        and a read-only ``shootingmode`` driven by the mode dial.
    Nikon Z 6: ``isospeed``, ``f-number``, ``shutterspeed2``, ``focusmode2``
        and one ``capturemode`` key used for both drive and shooting mode.
    Sony Alpha-A7 III: no drive or shooting mode key, a metering key with no
        choices and no images-remaining counter.

Test hooks:
    unplug()/replug(), set_busy(), fail_next()/fail_always(), set_value_directly()
    (a dial turned on the body), press_shutter() (a camera-side capture),
    read/apply/capture delays, and call instrumentation (calls,
    max_concurrent_calls).

Example:
    from tether_mcp.drivers.cameras.twin import DigitalTwinTransport

    transport = DigitalTwinTransport("Nikon Z 6", capture_dir="/tmp/captures")
    transport.connect()
    transport.set_config_value("isospeed", "800")
    print(transport.get_params()["iso"])  # 800
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import numpy as np

from tether_mcp.drivers.cameras.keys import (
    CONFIG_KEY_CANDIDATES,
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
    CV2ImageEncoder,
    ImageEncoder,
    capture_file_name,
    unique_path,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger(__name__)

__all__ = [
    "DEFAULT_MODELS",
    "DEFAULT_TWIN_MODEL",
    "DigitalTwinTransport",
    "TwinCameraProfile",
]

# Semantic parameter -> RawParams field, for the string-valued settings.
_PARAM_FIELDS: Mapping[str, str] = MappingProxyType(
    {
        "iso": "iso",
        "shutter": "shutter_speed",
        "aperture": "aperture",
        "exposure_comp": "exposure_compensation",
        "shooting_mode": "shooting_mode",
        "white_balance": "white_balance",
        "focus_mode": "focus_mode",
        "drive_mode": "drive_mode",
        "metering_mode": "metering_mode",
    }
)

_GRID_SPACING = 80
_JPEG_QUALITY = 85


# =============================================================================
# Profiles
# =============================================================================


@dataclass(frozen=True)
class TwinCameraProfile:
    """Static description of a simulated camera body.

    Attributes:
        model: Model name reported on connect and in every read.
        port: Simulated USB port path.
        settings: Vendor config key -> ordered choices. An empty tuple is a
            key that exists but offers no choices (a text widget).
        values: Initial value for each key in ``settings``.
        read_only: Keys that reject writes.
        battery_percent: Battery charge 0-100, None when not reported.
        images_remaining: Shots left on the card, None when not reported.
        image_size: (width, height) of generated captures.
        file_extension: Extension of generated captures.
    """

    model: str
    port: str
    settings: Mapping[str, tuple[str, ...]]
    values: Mapping[str, str]
    read_only: frozenset[str] = frozenset()
    battery_percent: float | None = 100.0
    images_remaining: int | None = None
    image_size: tuple[int, int] = (960, 640)
    file_extension: str = "jpg"

    def __post_init__(self) -> None:
        missing = set(self.values) ^ set(self.settings)
        if missing:
            raise ValueError(
                f"Profile {self.model!r} values and settings differ: {sorted(missing)}"
            )
        for key, value in self.values.items():
            choices = self.settings[key]
            if choices and value not in choices:
                raise ValueError(
                    f"Profile {self.model!r} default {value!r} not a choice for {key!r}"
                )


_CANON_R5 = TwinCameraProfile(
    model="Canon EOS R5",
    port="usb:001,004",
    settings={
        "iso": ("Auto", "100", "200", "400", "800", "1600", "3200", "6400"),
        "aperture": ("2.8", "4", "5.6", "8", "11", "16"),
        "shutterspeed": ("1/4000", "1/1000", "1/250", "1/125", "1/60", "1/30", "1"),
        "exposurecompensation": ("-2", "-1", "0", "+1", "+2"),
        "whitebalance": ("Auto", "Daylight", "Shadow", "Cloudy", "Tungsten"),
        "focusmode": ("One Shot", "AI Servo", "Manual"),
        "drivemode": ("Single", "Continuous high", "Continuous low", "Timer 10 sec"),
        "shootingmode": ("M", "Av", "Tv", "P"),
        "meteringmode": ("Evaluative", "Partial", "Spot", "Center-weighted"),
    },
    values={
        "iso": "400",
        "aperture": "4",
        "shutterspeed": "1/125",
        "exposurecompensation": "0",
        "whitebalance": "Auto",
        "focusmode": "One Shot",
        "drivemode": "Single",
        "shootingmode": "M",
        "meteringmode": "Evaluative",
    },
    read_only=frozenset({"shootingmode"}),
    battery_percent=85.0,
    images_remaining=250,
)

_NIKON_Z6 = TwinCameraProfile(
    model="Nikon Z 6",
    port="usb:001,006",
    settings={
        "isospeed": ("100", "200", "400", "800", "1600", "3200", "6400"),
        "f-number": ("f/2.8", "f/4", "f/5.6", "f/8", "f/11"),
        "shutterspeed2": ("1/4000", "1/500", "1/125", "1/30", "1"),
        "exposurecompensation": ("-1", "-0.3", "0", "0.3", "1"),
        "whitebalance": ("Automatic", "Daylight", "Incandescent", "Cloudy"),
        "focusmode2": ("AF-S", "AF-C", "MF"),
        "capturemode": ("Single Shot", "Continuous Low Speed", "Continuous High Speed"),
    },
    values={
        "isospeed": "200",
        "f-number": "f/5.6",
        "shutterspeed2": "1/125",
        "exposurecompensation": "0",
        "whitebalance": "Automatic",
        "focusmode2": "AF-S",
        "capturemode": "Single Shot",
    },
    battery_percent=60.0,
    images_remaining=999,
)

_SONY_A7III = TwinCameraProfile(
    model="Sony Alpha-A7 III",
    port="usb:002,003",
    settings={
        "iso": ("100", "200", "400", "800", "1600"),
        "f-number": ("F2.8", "F4", "F5.6", "F8"),
        "shutterspeed": ("1/2000", "1/250", "1/60", "1/15"),
        "exposurecompensation": ("-1", "0", "+1"),
        "whitebalance": ("Auto", "Daylight", "Shade"),
        "focusmode": ("AF-S", "AF-C", "Manual"),
        "meteringmode": (),
    },
    values={
        "iso": "100",
        "f-number": "F4",
        "shutterspeed": "1/250",
        "exposurecompensation": "0",
        "whitebalance": "Auto",
        "focusmode": "AF-S",
        "meteringmode": "Multi",
    },
    read_only=frozenset({"meteringmode"}),
    battery_percent=70.0,
    images_remaining=None,
)

#: Built-in profiles keyed by model name.
DEFAULT_MODELS: Mapping[str, TwinCameraProfile] = MappingProxyType(
    {p.model: p for p in (_CANON_R5, _NIKON_Z6, _SONY_A7III)}
)

DEFAULT_TWIN_MODEL = _CANON_R5.model


def _lookup_profile(profile: TwinCameraProfile | str) -> TwinCameraProfile:
    if isinstance(profile, TwinCameraProfile):
        return profile
    if profile not in DEFAULT_MODELS:
        raise ValueError(
            f"Unknown twin model {profile!r}. Available: {', '.join(DEFAULT_MODELS)}"
        )
    return DEFAULT_MODELS[profile]


@dataclass
class _Failure:
    error: Exception
    remaining: int | None  # None = every call


# =============================================================================
# Transport
# =============================================================================


class DigitalTwinTransport:
    """Simulated CameraTransport backed by a TwinCameraProfile.

    Thread Safety:
        Instrumentation counters are lock-protected so overlapping calls
        from executor threads are counted, not prevented. The device layer
        is expected to keep ``max_concurrent_calls`` at 1.
    """

    def __init__(
        self,
        profile: TwinCameraProfile | str = DEFAULT_TWIN_MODEL,
        capture_dir: Path | str | None = None,
        *,
        encoder: ImageEncoder | None = None,
        read_delay_s: float = 0.0,
        apply_delay_s: float = 0.0,
        capture_delay_s: float = 0.0,
    ) -> None:
        """Create a twin for a profile or a DEFAULT_MODELS model name.

        Args:
            profile: Profile or name of a built-in profile.
            capture_dir: Folder for captures without a target folder.
            encoder: JPEG encoder for generated captures (OpenCV by default).
            read_delay_s: Blocking time of each get_params() call.
            apply_delay_s: Time before a written value shows up in reads,
                like firmware that applies settings asynchronously.
            capture_delay_s: Blocking time of each capture.

        Raises:
            ValueError: Unknown model name.
        """
        profile = _lookup_profile(profile)
        self.profile = profile
        self.capture_dir = Path(capture_dir) if capture_dir else default_capture_dir()
        self.read_delay_s = read_delay_s
        self.apply_delay_s = apply_delay_s
        self.capture_delay_s = capture_delay_s
        self._encoder = encoder

        self._values: dict[str, str] = dict(profile.values)
        self._pending: list[tuple[float, str, str]] = []
        self._battery_percent = profile.battery_percent
        self._images_remaining = profile.images_remaining
        self._download_folder: Path | None = None
        self._shutter_presses = 0

        self._connected = False
        self._plugged = True
        self._busy = False
        self._failures: dict[str, _Failure] = {}

        self._lock = threading.Lock()
        self._active_calls = 0
        self.max_concurrent_calls = 0
        self.calls: list[str] = []

    def __repr__(self) -> str:
        state = "connected" if self._connected else "disconnected"
        return f"DigitalTwinTransport(model={self.profile.model!r}, {state})"

    # -------------------------------------------------------------------------
    # Test hooks
    # -------------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def download_folder(self) -> Path | None:
        return self._download_folder

    @property
    def images_remaining(self) -> int | None:
        return self._images_remaining

    def value_of(self, key: str) -> str:
        """Current applied value of a vendor key."""
        return self._values[key]

    def call_count(self, method: str) -> int:
        """Number of calls made to ``method`` so far."""
        with self._lock:
            return self.calls.count(method)

    def unplug(self) -> None:
        """Cable pulled: every call fails until replug()."""
        self._plugged = False

    def replug(self, profile: TwinCameraProfile | str | None = None) -> None:
        """Cable back in. The previous session stays closed.

        Args:
            profile: Body now on the cable. None keeps the current one.

        Raises:
            ValueError: Unknown model name.
        """
        if profile is not None:
            profile = _lookup_profile(profile)
            with self._lock:
                self.profile = profile
                self._values = dict(profile.values)
                self._pending.clear()
                self._battery_percent = profile.battery_percent
                self._images_remaining = profile.images_remaining
            logger.info("Twin camera swapped", model=profile.model)
        self._plugged = True
        self._connected = False

    def set_busy(self, busy: bool = True) -> None:
        """Simulate another program holding the USB device."""
        self._busy = busy

    def fail_next(
        self, method: str, error: Exception | None = None, times: int = 1
    ) -> None:
        """Make the next ``times`` calls of ``method`` raise ``error``."""
        self._failures[method] = _Failure(
            error or TransportError(f"Injected {method} failure"), times
        )

    def fail_always(self, method: str, error: Exception | None = None) -> None:
        """Make every call of ``method`` raise ``error`` until cleared."""
        self._failures[method] = _Failure(
            error or TransportError(f"Injected {method} failure"), None
        )

    def clear_failures(self) -> None:
        self._failures.clear()

    def set_value_directly(self, key: str, value: str) -> None:
        """Change a value as if a dial were turned on the camera body."""
        if key not in self._values:
            raise KeyError(key)
        self._values[key] = value

    def set_battery_percent(self, percent: float | None) -> None:
        self._battery_percent = percent

    def set_images_remaining(self, count: int | None) -> None:
        self._images_remaining = count

    def press_shutter(self) -> None:
        """Queue a capture taken with the shutter button on the body."""
        with self._lock:
            self._shutter_presses += 1

    # -------------------------------------------------------------------------
    # CameraTransport
    # -------------------------------------------------------------------------

    def connect(self) -> DetectedCamera:
        with self._call("connect", requires_session=False):
            if not self._plugged:
                raise TransportError("No camera detected")
            if self._busy:
                raise TransportBusyError("USB occupied - close other camera apps")
            self._connected = True
            self._pending.clear()
            logger.info(
                "Twin camera connected",
                model=self.profile.model,
                port=self.profile.port,
            )
            return DetectedCamera(model=self.profile.model, port=self.profile.port)

    def disconnect(self) -> None:
        with self._call("disconnect", requires_session=False):
            if self._connected:
                logger.info("Twin camera disconnected", model=self.profile.model)
            self._connected = False

    def get_config_choices(self, key: str) -> list[str]:
        with self._call("get_config_choices"):
            if key not in self.profile.settings:
                raise ConfigKeyError(key)
            return list(self.profile.settings[key])

    def get_params(self) -> RawParams:
        with self._call("get_params"):
            if self.read_delay_s:
                time.sleep(self.read_delay_s)
            self._apply_pending()

            params = RawParams(model=self.profile.model, port=self.profile.port)
            for parameter, field_name in _PARAM_FIELDS.items():
                value = self._lookup(parameter)
                if value is None and parameter in REQUIRED_PARAMETERS:
                    raise TransportError(
                        f"Camera did not report required setting '{parameter}'"
                    )
                params[field_name] = value  # type: ignore[literal-required]

            params["battery_level"] = (
                None if self._battery_percent is None else self._battery_percent / 100
            )
            params["images_remaining"] = self._images_remaining
            return params

    def set_config_value(self, key: str, value: str) -> None:
        with self._call("set_config_value"):
            if key not in self.profile.settings:
                raise ConfigKeyError(key)
            if key in self.profile.read_only:
                raise TransportError(f"Config '{key}' is read-only")
            choices = self.profile.settings[key]
            if choices and value not in choices:
                raise TransportError(
                    f"Value '{value}' not accepted for '{key}'. "
                    f"Choices: {', '.join(choices)}"
                )
            if self.apply_delay_s:
                self._pending.append((time.monotonic() + self.apply_delay_s, key, value))
            else:
                self._values[key] = value

    def set_download_folder(self, path: str | None) -> None:
        with self._call("set_download_folder", requires_session=False):
            self._download_folder = Path(path) if path else None

    def capture(self, target_folder: str | None) -> RawCapture:
        with self._call("capture"):
            if self.capture_delay_s:
                time.sleep(self.capture_delay_s)
            if self._images_remaining == 0:
                raise TransportError("Card full")
            if target_folder:
                folder = Path(target_folder)
                self._download_folder = folder
            else:
                folder = self.capture_dir
            result = self._write_capture(folder)
            if self._images_remaining is not None:
                self._images_remaining -= 1
            return result

    def poll_new_capture(self, timeout_s: float) -> RawCapture | None:
        with self._call("poll_new_capture"):
            with self._lock:
                pressed = self._shutter_presses > 0
                if pressed:
                    self._shutter_presses -= 1
            if not pressed:
                if timeout_s > 0:
                    time.sleep(timeout_s)
                return None
            result = self._write_capture(self._download_folder or self.capture_dir)
            if self._images_remaining is not None and self._images_remaining > 0:
                self._images_remaining -= 1
            return result

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @contextmanager
    def _call(self, method: str, *, requires_session: bool = True) -> Iterator[None]:
        """Instrument one transport call and apply injected failures."""
        with self._lock:
            self._active_calls += 1
            self.max_concurrent_calls = max(
                self.max_concurrent_calls, self._active_calls
            )
            self.calls.append(method)
        try:
            failure = self._failures.get(method)
            if failure is not None:
                if failure.remaining is not None:
                    failure.remaining -= 1
                    if failure.remaining <= 0:
                        del self._failures[method]
                raise failure.error
            if requires_session:
                if not self._plugged:
                    raise TransportDisconnectedError("Camera unplugged")
                if not self._connected:
                    raise TransportDisconnectedError("Camera not connected")
            yield
        finally:
            with self._lock:
                self._active_calls -= 1

    def _lookup(self, parameter: str) -> str | None:
        for key in CONFIG_KEY_CANDIDATES[parameter]:
            if key in self._values:
                return self._values[key]
        return None

    def _apply_pending(self) -> None:
        now = time.monotonic()
        still_pending = []
        for ready_at, key, value in self._pending:
            if ready_at <= now:
                self._values[key] = value
            else:
                still_pending.append((ready_at, key, value))
        self._pending = still_pending

    def _write_capture(self, folder: Path) -> RawCapture:
        folder.mkdir(parents=True, exist_ok=True)
        name = capture_file_name(self.profile.file_extension, int(time.time()))
        path = unique_path(folder, name)
        width, height = self.profile.image_size
        path.write_bytes(self._render_frame(width, height))
        logger.info("Twin capture written", path=str(path), model=self.profile.model)
        return RawCapture(
            file_path=str(path), preview_path=None, width=width, height=height
        )

    def _render_frame(self, width: int, height: int) -> bytes:
        """Synthetic frame: gradient, grid and the exposure settings as text."""
        if self._encoder is None:
            self._encoder = CV2ImageEncoder()

        gradient = np.linspace(30, 200, width, dtype=np.uint8)
        img: NDArray[Any] = np.zeros((height, width, 3), dtype=np.uint8)
        img[:, :, 0] = gradient
        img[:, :, 2] = gradient[::-1]
        img[::_GRID_SPACING, :] = (60, 60, 60)
        img[:, ::_GRID_SPACING] = (60, 60, 60)

        lines: Sequence[str] = (
            f"DIGITAL TWIN - {self.profile.model}",
            f"ISO {self._lookup('iso')}  {self._lookup('shutter')}  "
            f"{self._lookup('aperture')}",
        )
        for row, text in enumerate(lines):
            self._encoder.put_text(
                img, text, (30, 50 + row * 40), 0.9, (255, 255, 255), 2
            )
        return self._encoder.encode_jpeg(img, _JPEG_QUALITY)
