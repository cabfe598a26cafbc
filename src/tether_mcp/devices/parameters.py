"""Camera parameter model: semantic parameters, snapshots and alias maps.

Semantic parameters name a camera setting independent of vendor. The
AliasMap records which vendor config key a connected camera answers to for
each one. CameraParameters is one complete read of the camera, replaced
wholesale on every successful read and never patched.

Example:
    from tether_mcp.devices.parameters import SemanticParameter

    param = SemanticParameter.parse("shutter")
    snapshot.value_of(param)  # "1/125"
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from tether_mcp.devices.errors import UnsupportedParameterError

__all__ = [
    "MISSING_VALUE",
    "AliasMap",
    "CameraParameters",
    "CaptureResult",
    "ParameterControl",
    "ResolvedKey",
    "SemanticParameter",
    "build_controls",
]

#: Display value for a parameter the snapshot does not have.
MISSING_VALUE = "--"


class SemanticParameter(str, Enum):
    """Vendor-independent camera setting."""

    ISO = "iso"
    APERTURE = "aperture"
    SHUTTER = "shutter"
    EXPOSURE_COMP = "exposure_comp"
    WHITE_BALANCE = "white_balance"
    FOCUS_MODE = "focus_mode"
    DRIVE_MODE = "drive_mode"
    SHOOTING_MODE = "shooting_mode"
    METERING_MODE = "metering_mode"

    @property
    def snapshot_field(self) -> str:
        """Name of the CameraParameters field holding this setting."""
        return _SNAPSHOT_FIELDS.get(self.value, self.value)

    @property
    def label(self) -> str:
        return _LABELS[self.value]

    @classmethod
    def parse(cls, name: str | SemanticParameter) -> SemanticParameter:
        """Look up a parameter by name.

        Raises:
            UnsupportedParameterError: Unknown parameter name.
        """
        if isinstance(name, SemanticParameter):
            return name
        try:
            return cls(name.strip().lower())
        except ValueError as e:
            raise UnsupportedParameterError(
                name, f"Unknown camera parameter '{name}'"
            ) from e


_SNAPSHOT_FIELDS: Mapping[str, str] = MappingProxyType(
    {
        "shutter": "shutter_speed",
        "exposure_comp": "exposure_compensation",
    }
)

_LABELS: Mapping[str, str] = MappingProxyType(
    {
        "iso": "ISO",
        "aperture": "Aperture",
        "shutter": "Shutter",
        "exposure_comp": "Exposure Comp.",
        "white_balance": "White Balance",
        "focus_mode": "Focus Mode",
        "drive_mode": "Drive Mode",
        "shooting_mode": "Shooting Mode",
        "metering_mode": "Metering",
    }
)


# =============================================================================
# Snapshot
# =============================================================================


@dataclass(frozen=True, slots=True)
class CameraParameters:
    """One complete parameter read.

    Attributes:
        iso, shutter_speed, aperture: Always present.
        model, port: Camera identity.
        exposure_compensation ... metering_mode: None when the camera
            has no key for them.
        battery_level: Fraction 0.0-1.0, None when not reported.
        images_remaining: Shots left, None when not reported.
    """

    iso: str
    shutter_speed: str
    aperture: str
    model: str
    port: str
    exposure_compensation: str | None = None
    shooting_mode: str | None = None
    white_balance: str | None = None
    focus_mode: str | None = None
    drive_mode: str | None = None
    metering_mode: str | None = None
    battery_level: float | None = None
    images_remaining: int | None = None

    def __post_init__(self) -> None:
        if self.battery_level is not None and not 0.0 <= self.battery_level <= 1.0:
            raise ValueError(
                f"battery_level must be within 0.0-1.0, got {self.battery_level}"
            )
        if self.images_remaining is not None and self.images_remaining < 0:
            raise ValueError(
                f"images_remaining must be non-negative, got {self.images_remaining}"
            )

    @classmethod
    def from_driver_params(cls, params: Mapping[str, Any]) -> CameraParameters:
        """Create a snapshot from a transport get_params() dict.

        Unlike the optional settings, the required ones are not defaulted:
        a read missing any of them is not a complete snapshot. A battery
        level outside 0.0-1.0 is treated as not reported.

        Raises:
            ValueError: A required value is missing or a value is out of range.
        """
        missing = [
            name
            for name in ("iso", "shutter_speed", "aperture", "model", "port")
            if params.get(name) is None
        ]
        if missing:
            raise ValueError(f"Camera read is missing {', '.join(missing)}")

        battery = params.get("battery_level")
        if battery is not None and not 0.0 <= float(battery) <= 1.0:
            battery = None
        remaining = params.get("images_remaining")
        return cls(
            iso=str(params["iso"]),
            shutter_speed=str(params["shutter_speed"]),
            aperture=str(params["aperture"]),
            model=str(params["model"]),
            port=str(params["port"]),
            exposure_compensation=params.get("exposure_compensation"),
            shooting_mode=params.get("shooting_mode"),
            white_balance=params.get("white_balance"),
            focus_mode=params.get("focus_mode"),
            drive_mode=params.get("drive_mode"),
            metering_mode=params.get("metering_mode"),
            battery_level=None if battery is None else float(battery),
            images_remaining=None if remaining is None else int(remaining),
        )

    def value_of(self, parameter: SemanticParameter | str) -> str | None:
        """Current value of a semantic parameter."""
        param = SemanticParameter.parse(parameter)
        value: str | None = getattr(self, param.snapshot_field)
        return value

    def to_dict(self) -> dict[str, Any]:
        """camelCase dict for tool and dashboard payloads."""
        return {
            "iso": self.iso,
            "shutterSpeed": self.shutter_speed,
            "aperture": self.aperture,
            "exposureCompensation": self.exposure_compensation,
            "shootingMode": self.shooting_mode,
            "whiteBalance": self.white_balance,
            "focusMode": self.focus_mode,
            "driveMode": self.drive_mode,
            "meteringMode": self.metering_mode,
            "batteryLevel": self.battery_level,
            "imagesRemaining": self.images_remaining,
            "model": self.model,
            "port": self.port,
        }


# =============================================================================
# Alias map
# =============================================================================


@dataclass(frozen=True, slots=True)
class ResolvedKey:
    """Vendor key confirmed for a semantic parameter, with its choices."""

    parameter: SemanticParameter
    key: str
    choices: tuple[str, ...] = ()


class AliasMap(Mapping[SemanticParameter, ResolvedKey]):
    """Immutable semantic parameter -> ResolvedKey mapping for one session.

    Parameters that did not resolve are absent.
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Mapping[SemanticParameter, ResolvedKey] | None = None):
        self._entries: Mapping[SemanticParameter, ResolvedKey] = MappingProxyType(
            dict(entries or {})
        )

    @classmethod
    def empty(cls) -> AliasMap:
        return cls()

    def __getitem__(self, parameter: SemanticParameter) -> ResolvedKey:
        return self._entries[SemanticParameter.parse(parameter)]

    def __iter__(self) -> Iterator[SemanticParameter]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, parameter: object) -> bool:
        if isinstance(parameter, str):
            try:
                parameter = SemanticParameter.parse(parameter)
            except UnsupportedParameterError:
                return False
        return parameter in self._entries

    def __repr__(self) -> str:
        keys = ", ".join(f"{p.value}={r.key}" for p, r in self._entries.items())
        return f"AliasMap({keys})"

    def key_for(self, parameter: SemanticParameter | str) -> str | None:
        """Resolved vendor key, or None when the parameter did not resolve."""
        resolved = self._entries.get(SemanticParameter.parse(parameter))
        return resolved.key if resolved else None

    def choices_for(self, parameter: SemanticParameter | str) -> tuple[str, ...]:
        resolved = self._entries.get(SemanticParameter.parse(parameter))
        return resolved.choices if resolved else ()

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {
            p.value: {"key": r.key, "choices": list(r.choices)}
            for p, r in self._entries.items()
        }


# =============================================================================
# Presentation
# =============================================================================


@dataclass(frozen=True, slots=True)
class ParameterControl:
    """Display state of one parameter control.

    A control is selectable only when its parameter resolved to a key that
    offers choices. Anything else is shown as a fixed value.
    """

    parameter: SemanticParameter
    label: str
    value: str
    choices: tuple[str, ...] = ()
    key: str | None = None

    @property
    def selectable(self) -> bool:
        return self.key is not None and len(self.choices) > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "parameter": self.parameter.value,
            "label": self.label,
            "value": self.value,
            "choices": list(self.choices),
            "key": self.key,
            "selectable": self.selectable,
        }


def build_controls(
    snapshot: CameraParameters | None, aliases: AliasMap | None
) -> list[ParameterControl]:
    """One control per semantic parameter, in declaration order."""
    controls = []
    for param in SemanticParameter:
        value = snapshot.value_of(param) if snapshot is not None else None
        resolved = aliases.get(param) if aliases is not None else None
        controls.append(
            ParameterControl(
                parameter=param,
                label=param.label,
                value=value if value is not None else MISSING_VALUE,
                choices=resolved.choices if resolved else (),
                key=resolved.key if resolved else None,
            )
        )
    return controls


# =============================================================================
# Capture
# =============================================================================


@dataclass(frozen=True, slots=True)
class CaptureResult:
    """A downloaded capture."""

    file_path: str
    width: int
    height: int
    preview_path: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_driver_capture(
        cls, raw: Mapping[str, Any], **metadata: Any
    ) -> CaptureResult:
        """Create from a transport RawCapture dict."""
        return cls(
            file_path=str(raw["file_path"]),
            width=int(raw.get("width", 0)),
            height=int(raw.get("height", 0)),
            preview_path=raw.get("preview_path"),
            metadata=dict(metadata),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "filePath": self.file_path,
            "previewPath": self.preview_path,
            "width": self.width,
            "height": self.height,
        }
        data.update(self.metadata)
        return data
