"""Utility modules for tether-mcp.

cv2 is only imported when an encoder is constructed or dimensions are
read, so importing this package stays cheap.
"""

from tether_mcp.utils.image import (
    DEFAULT_DIMENSIONS,
    RAW_EXTENSIONS,
    CV2ImageEncoder,
    ImageEncoder,
    capture_file_name,
    extract_file_extension,
    is_raw_file,
    read_image_dimensions,
    unique_path,
)

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
