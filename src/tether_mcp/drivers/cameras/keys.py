"""Vendor config-key candidates for each semantic camera parameter.

libgphoto2 exposes camera settings as named widgets, and the names differ
between manufacturers, models and firmware revisions. Each semantic
parameter lists its known widget names in priority order: the most common
name first, model-specific variants after. The first candidate a camera
answers for wins.

Two parameters may share a candidate (``capturemode`` is a drive mode on
some bodies and a shooting mode on others).
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from types import MappingProxyType

__all__ = [
    "BATTERY_LEVEL_KEY",
    "CONFIG_KEY_CANDIDATES",
    "IMAGES_REMAINING_KEY",
    "REQUIRED_PARAMETERS",
]

#: Semantic parameter name -> ordered vendor key candidates.
CONFIG_KEY_CANDIDATES: Mapping[str, Sequence[str]] = MappingProxyType(
    {
        "iso": ("iso", "isospeed", "autoiso"),
        "aperture": ("aperture", "f-number", "fnumber", "aperture2"),
        "shutter": (
            "shutterspeed",
            "shutter",
            "shutterspeed2",
            "exptime",
            "exposuretime",
        ),
        "exposure_comp": (
            "exposurecompensation",
            "expcomp",
            "exposurecomp",
            "exposure",
        ),
        "white_balance": (
            "whitebalance",
            "whitebalanceadjust",
            "whitebalance2",
            "wb",
        ),
        "focus_mode": ("focusmode", "autofocus", "afmode", "focusmode2"),
        "drive_mode": ("drivemode", "capturemode", "continuous"),
        "shooting_mode": (
            "shootingmode",
            "capturemode",
            "capturemode2",
            "autoexposuremode",
            "exposuremode",
            "mode",
        ),
        "metering_mode": ("meteringmode", "meteringmodedial", "metering"),
    }
)

#: Parameters a parameter read cannot succeed without.
REQUIRED_PARAMETERS: tuple[str, ...] = ("iso", "shutter", "aperture")

#: Range widget reporting battery charge (0-100).
BATTERY_LEVEL_KEY = "batterylevel"

#: Range widget reporting shots left on the card.
IMAGES_REMAINING_KEY = "remainingimages"
