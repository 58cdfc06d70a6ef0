"""Thumbnail validator: PNG or JPEG, exactly 400x300, at most 200 KB."""
import io
import logging
from dataclasses import dataclass
from typing import BinaryIO

from PIL import Image, UnidentifiedImageError

from classifier import KB, read_capped
from errors import InvalidThumbnail

logger = logging.getLogger(__name__)

THUMBNAIL_WIDTH = 400
THUMBNAIL_HEIGHT = 300
THUMBNAIL_MAX_BYTES = 200 * KB
ALLOWED_FORMATS = {"PNG": "image/png", "JPEG": "image/jpeg"}


@dataclass
class Thumbnail:
    data: bytes
    format: str
    content_type: str
    width: int
    height: int

    @property
    def extension(self) -> str:
        return ".png" if self.format == "PNG" else ".jpg"


def validate_thumbnail(stream: BinaryIO) -> Thumbnail:
    data = read_capped(stream, THUMBNAIL_MAX_BYTES)
    if len(data) > THUMBNAIL_MAX_BYTES:
        raise InvalidThumbnail(
            f"Thumbnail exceeds {THUMBNAIL_MAX_BYTES // KB} KB",
            sub_reason="FILE_TOO_LARGE",
            details={"max_bytes": THUMBNAIL_MAX_BYTES},
        )

    # Image.open only parses the header; pixel data is never decoded here.
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
            width, height = img.size
    except Image.DecompressionBombError as e:
        raise InvalidThumbnail(
            f"Thumbnail must be {THUMBNAIL_WIDTH}x{THUMBNAIL_HEIGHT}: {e}",
            sub_reason="WRONG_DIMENSIONS",
            details={"expected": {"width": THUMBNAIL_WIDTH, "height": THUMBNAIL_HEIGHT}},
        )
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise InvalidThumbnail(
            f"Thumbnail is not a readable PNG or JPEG image: {e}",
            sub_reason="WRONG_FORMAT",
            details={"allowed_formats": sorted(ALLOWED_FORMATS)},
        )

    if fmt not in ALLOWED_FORMATS:
        raise InvalidThumbnail(
            f"Thumbnail must be PNG or JPEG, got {fmt}",
            sub_reason="WRONG_FORMAT",
            details={"format": fmt, "allowed_formats": sorted(ALLOWED_FORMATS)},
        )

    if (width, height) != (THUMBNAIL_WIDTH, THUMBNAIL_HEIGHT):
        raise InvalidThumbnail(
            f"Thumbnail must be {THUMBNAIL_WIDTH}x{THUMBNAIL_HEIGHT}, got {width}x{height}",
            sub_reason="WRONG_DIMENSIONS",
            details={
                "expected": {"width": THUMBNAIL_WIDTH, "height": THUMBNAIL_HEIGHT},
                "actual": {"width": width, "height": height},
            },
        )

    logger.debug(f"Thumbnail accepted: {fmt} {width}x{height}, {len(data)} bytes")
    return Thumbnail(data=data, format=fmt, content_type=ALLOWED_FORMATS[fmt], width=width, height=height)
