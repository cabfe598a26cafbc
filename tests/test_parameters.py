"""Tests for the camera parameter model."""

import dataclasses

import pytest

from tether_mcp.devices import (
    AliasMap,
    CameraParameters,
    CaptureResult,
    ResolvedKey,
    SemanticParameter,
    UnsupportedParameterError,
    build_controls,
)
from tether_mcp.devices.parameters import MISSING_VALUE
from tether_mcp.drivers.cameras import CONFIG_KEY_CANDIDATES

RAW_READ = {
    "iso": "400",
    "shutter_speed": "1/125",
    "aperture": "4",
    "model": "Canon EOS R5",
    "port": "usb:001,004",
    "exposure_compensation": "0",
    "white_balance": "Auto",
    "battery_level": 0.85,
    "images_remaining": 250,
}


def make_aliases(**keys: tuple[str, tuple[str, ...]]) -> AliasMap:
    entries = {}
    for name, (key, choices) in keys.items():
        param = SemanticParameter(name)
        entries[param] = ResolvedKey(param, key, choices)
    return AliasMap(entries)


class TestSemanticParameter:
    """Tests for parameter naming and lookup."""

    def test_matches_candidate_table(self):
        assert [p.value for p in SemanticParameter] == list(CONFIG_KEY_CANDIDATES)

    @pytest.mark.parametrize("name", ["iso", "ISO", " Iso "])
    def test_parse_normalizes(self, name):
        assert SemanticParameter.parse(name) is SemanticParameter.ISO

    def test_parse_passes_members_through(self):
        assert SemanticParameter.parse(SemanticParameter.SHUTTER) is SemanticParameter.SHUTTER

    def test_parse_unknown_raises(self):
        with pytest.raises(UnsupportedParameterError, match="Unknown camera parameter"):
            SemanticParameter.parse("zoom")

    def test_snapshot_fields(self):
        assert SemanticParameter.SHUTTER.snapshot_field == "shutter_speed"
        assert SemanticParameter.EXPOSURE_COMP.snapshot_field == "exposure_compensation"
        assert SemanticParameter.ISO.snapshot_field == "iso"

    def test_labels(self):
        assert SemanticParameter.ISO.label == "ISO"
        assert SemanticParameter.METERING_MODE.label == "Metering"


class TestCameraParameters:
    """Tests for the immutable snapshot."""

    def test_from_driver_params(self):
        params = CameraParameters.from_driver_params(RAW_READ)

        assert params.iso == "400"
        assert params.shutter_speed == "1/125"
        assert params.white_balance == "Auto"
        assert params.drive_mode is None
        assert params.battery_level == pytest.approx(0.85)
        assert params.images_remaining == 250

    @pytest.mark.parametrize("missing", ["iso", "shutter_speed", "aperture", "model"])
    def test_missing_required_rejected(self, missing):
        raw = {k: v for k, v in RAW_READ.items() if k != missing}
        with pytest.raises(ValueError, match=missing):
            CameraParameters.from_driver_params(raw)

    @pytest.mark.parametrize("level", [85, 1.2, -0.1])
    def test_battery_out_of_range_not_reported(self, level):
        params = CameraParameters.from_driver_params({**RAW_READ, "battery_level": level})

        assert params.battery_level is None
        assert params.iso == RAW_READ["iso"]

    def test_battery_out_of_range_rejected_directly(self):
        fields = {k: v for k, v in RAW_READ.items() if k != "battery_level"}
        with pytest.raises(ValueError, match="battery_level"):
            CameraParameters(**fields, battery_level=1.5)

    def test_negative_images_remaining(self):
        with pytest.raises(ValueError, match="images_remaining"):
            CameraParameters.from_driver_params({**RAW_READ, "images_remaining": -1})

    def test_immutable(self):
        params = CameraParameters.from_driver_params(RAW_READ)
        with pytest.raises(dataclasses.FrozenInstanceError):
            params.iso = "800"  # type: ignore[misc]

    def test_equality_by_value(self):
        assert CameraParameters.from_driver_params(
            RAW_READ
        ) == CameraParameters.from_driver_params(dict(RAW_READ))

    def test_value_of(self):
        params = CameraParameters.from_driver_params(RAW_READ)

        assert params.value_of("shutter") == "1/125"
        assert params.value_of(SemanticParameter.EXPOSURE_COMP) == "0"
        assert params.value_of("focus_mode") is None

    def test_to_dict_camel_case(self):
        data = CameraParameters.from_driver_params(RAW_READ).to_dict()

        assert data["shutterSpeed"] == "1/125"
        assert data["imagesRemaining"] == 250
        assert data["batteryLevel"] == pytest.approx(0.85)
        assert data["driveMode"] is None


class TestAliasMap:
    """Tests for the resolved alias map."""

    def test_empty(self):
        aliases = AliasMap.empty()
        assert len(aliases) == 0
        assert aliases.key_for("iso") is None
        assert aliases.choices_for("iso") == ()

    def test_lookup_by_name_or_member(self):
        aliases = make_aliases(iso=("isospeed", ("100", "200")))

        assert aliases.key_for("iso") == "isospeed"
        assert aliases[SemanticParameter.ISO].choices == ("100", "200")
        assert "iso" in aliases
        assert SemanticParameter.ISO in aliases
        assert "aperture" not in aliases
        assert "zoom" not in aliases

    def test_to_dict(self):
        aliases = make_aliases(iso=("isospeed", ("100",)), shutter=("shutterspeed2", ()))

        assert aliases.to_dict() == {
            "iso": {"key": "isospeed", "choices": ["100"]},
            "shutter": {"key": "shutterspeed2", "choices": []},
        }

    def test_not_affected_by_source_dict(self):
        entries = {SemanticParameter.ISO: ResolvedKey(SemanticParameter.ISO, "iso")}
        aliases = AliasMap(entries)
        entries.clear()
        assert "iso" in aliases

    def test_repr(self):
        assert "iso=isospeed" in repr(make_aliases(iso=("isospeed", ())))


class TestBuildControls:
    """Tests for presentation controls."""

    def test_disconnected_controls_show_placeholder(self):
        controls = build_controls(None, None)

        assert [c.parameter for c in controls] == list(SemanticParameter)
        assert all(c.value == MISSING_VALUE for c in controls)
        assert not any(c.selectable for c in controls)

    def test_selectable_needs_key_and_choices(self):
        snapshot = CameraParameters.from_driver_params(
            {**RAW_READ, "metering_mode": "Multi"}
        )
        aliases = make_aliases(
            iso=("iso", ("100", "400")),
            metering_mode=("meteringmode", ()),
        )
        controls = {c.parameter.value: c for c in build_controls(snapshot, aliases)}

        assert controls["iso"].selectable
        assert controls["iso"].value == "400"
        assert not controls["metering_mode"].selectable
        assert controls["metering_mode"].value == "Multi"
        assert not controls["aperture"].selectable
        assert controls["aperture"].value == "4"
        assert controls["drive_mode"].value == MISSING_VALUE

    def test_control_to_dict(self):
        aliases = make_aliases(iso=("iso", ("100", "400")))
        control = build_controls(None, aliases)[0]

        assert control.to_dict() == {
            "parameter": "iso",
            "label": "ISO",
            "value": MISSING_VALUE,
            "choices": ["100", "400"],
            "key": "iso",
            "selectable": True,
        }


class TestCaptureResult:
    def test_from_driver_capture_with_metadata(self):
        result = CaptureResult.from_driver_capture(
            {"file_path": "/tmp/a.jpg", "width": 960, "height": 640},
            source="camera",
        )

        assert result.preview_path is None
        assert result.to_dict() == {
            "filePath": "/tmp/a.jpg",
            "previewPath": None,
            "width": 960,
            "height": 640,
            "source": "camera",
        }
