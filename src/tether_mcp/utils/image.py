"""Image file helpers shared by the camera transports.

Covers naming of downloaded captures, RAW detection, pixel dimension
probing and the JPEG encoder used by the digital twin.

Camera-side file names are not reliable extensions: libgphoto2 reports
names such as ``capt0000.jpg`` or ``IMG_1234.CR3`` and some bodies append
counters. ``extract_file_extension`` walks the dotted parts from the right
and keeps the first one that is a known image extension.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = [
    "DEFAULT_DIMENSIONS",
    "RAW_EXTENSIONS",
    "CV2ImageEncoder",
    "ImageEncoder",
    "capture_file_name",
    "extract_file_extension",
    "is_raw_file",
    "read_image_dimensions",
    "unique_path",
]

#: Extensions recognised as camera RAW formats.
RAW_EXTENSIONS: frozenset[str] = frozenset(
    {"cr3", "cr2", "nef", "arw", "dng", "raf", "orf", "pef", "rw2", "srw", "crw"}
)

# CRW is recognised when naming files but, like the decoder set it came
# from, is not treated as RAW for dimension probing.
_RAW_PROBE_EXTENSIONS: frozenset[str] = RAW_EXTENSIONS - {"crw"}

#: Reported when dimensions cannot be read (and always for RAW files,
#: which are not decoded).
DEFAULT_DIMENSIONS: tuple[int, int] = (1920, 1080)

_DEFAULT_EXTENSION = "jpg"


def extract_file_extension(original_name: str) -> str:
    """Return the real lowercase image extension of a camera file name.

    Numeric parts and ``capt*`` parts are camera bookkeeping and are
    skipped. ``jpeg`` is normalized to ``jpg``. Anything unrecognised falls
    back to ``jpg``.

    Args:
        original_name: Name reported by the camera filesystem.

    Returns:
        Extension without the dot.

    Example:
        >>> extract_file_extension("IMG_1234.CR3")
        'cr3'
        >>> extract_file_extension("capt0000.jpg")
        'jpg'
        >>> extract_file_extension("DSC_0001.JPEG")
        'jpg'
    """
    parts = original_name.lower().split(".")
    for index, part in enumerate(reversed(parts)):
        if not part:
            continue
        if part.isdigit() or part.startswith("capt"):
            continue
        if part == "jpeg":
            return "jpg"
        if part == "jpg" or part in RAW_EXTENSIONS:
            return part
        if index > 0:
            return _DEFAULT_EXTENSION
    return _DEFAULT_EXTENSION


def is_raw_file(path: str | Path) -> bool:
    """True when ``path`` ends in a RAW extension that is not decoded."""
    return Path(path).suffix.lower().lstrip(".") in _RAW_PROBE_EXTENSIONS


def capture_file_name(extension: str, timestamp: int) -> str:
    """Local name for a downloaded capture: ``capture_<epoch:010>.<ext>``."""
    return f"capture_{timestamp:010d}.{extension}"


def unique_path(folder: Path, name: str) -> Path:
    """``folder / name``, suffixed ``_1``, ``_2``... if that file already exists."""
    candidate = folder / name
    stem, suffix = candidate.stem, candidate.suffix
    counter = 1
    while candidate.exists():
        candidate = folder / f"{stem}_{counter}{suffix}"
        counter += 1
    return candidate


def read_image_dimensions(path: str | Path) -> tuple[int, int] | None:
    """Read ``(width, height)`` of a decodable image with OpenCV.

    RAW files are not decoded; callers use DEFAULT_DIMENSIONS for them.

    Returns:
        Dimensions, or None when the file is missing, RAW or undecodable.
    """
    if is_raw_file(path):
        return None

    import cv2

    img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if img is None:
        return None
    height, width = img.shape[:2]
    return int(width), int(height)


@runtime_checkable
class ImageEncoder(Protocol):
    """Encodes frames for files written by the digital twin."""

    def encode_jpeg(self, img: NDArray[Any], quality: int = 90) -> bytes:
        """Encode a BGR or grayscale array as JPEG bytes."""
        ...  # pragma: no cover

    def put_text(
        self,
        img: NDArray[Any],
        text: str,
        position: tuple[int, int],
        scale: float,
        color: int | tuple[int, int, int],
        thickness: int,
    ) -> None:
        """Draw text onto ``img`` in place."""
        ...  # pragma: no cover


class CV2ImageEncoder:
    """OpenCV implementation of ImageEncoder.

    cv2 is imported on construction so modules that only name the
    encoder do not pay for the import.
    """

    def __init__(self) -> None:
        import cv2

        self._cv2 = cv2

    def encode_jpeg(self, img: NDArray[Any], quality: int = 90) -> bytes:
        """Encode ``img`` as JPEG.

        Raises:
            ValueError: If quality is outside 1-100 or encoding fails.
        """
        if not 1 <= quality <= 100:
            raise ValueError(f"JPEG quality must be 1-100, got {quality}")
        ok, jpeg = self._cv2.imencode(
            ".jpg", img, [self._cv2.IMWRITE_JPEG_QUALITY, quality]
        )
        if not ok:
            raise ValueError("JPEG encoding failed")
        return bytes(jpeg.tobytes())

    def put_text(
        self,
        img: NDArray[Any],
        text: str,
        position: tuple[int, int],
        scale: float,
        color: int | tuple[int, int, int],
        thickness: int,
    ) -> None:
        self._cv2.putText(
            img,
            text,
            position,
            self._cv2.FONT_HERSHEY_SIMPLEX,
            scale,
            color,
            thickness,
        )
