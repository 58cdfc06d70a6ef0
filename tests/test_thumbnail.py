"""Unit tests for thumbnail.py"""

import io

import pytest

from conftest import png_bytes


class TestValidateThumbnail:

    def test_png_at_exact_size_limit_passes(self):
        from thumbnail import validate_thumbnail
        thumb = validate_thumbnail(io.BytesIO(png_bytes(size=200 * 1024)))
        assert thumb.format == "PNG"
        assert thumb.content_type == "image/png"
        assert thumb.extension == ".png"
        assert len(thumb.data) == 204800

    def test_one_byte_over_limit(self):
        from thumbnail import validate_thumbnail
        from errors import InvalidThumbnail
        with pytest.raises(InvalidThumbnail) as exc:
            validate_thumbnail(io.BytesIO(png_bytes(size=200 * 1024 + 1)))
        assert exc.value.sub_reason == "FILE_TOO_LARGE"

    def test_jpeg_accepted(self):
        from thumbnail import validate_thumbnail
        thumb = validate_thumbnail(io.BytesIO(png_bytes(fmt="JPEG")))
        assert thumb.format == "JPEG"
        assert thumb.extension == ".jpg"

    def test_wrong_dimensions(self):
        from thumbnail import validate_thumbnail
        from errors import InvalidThumbnail
        with pytest.raises(InvalidThumbnail) as exc:
            validate_thumbnail(io.BytesIO(png_bytes(width=399, height=300)))
        assert exc.value.sub_reason == "WRONG_DIMENSIONS"
        assert exc.value.details["actual"] == {"width": 399, "height": 300}

    def test_gif_is_wrong_format(self):
        from thumbnail import validate_thumbnail
        from errors import InvalidThumbnail
        with pytest.raises(InvalidThumbnail) as exc:
            validate_thumbnail(io.BytesIO(png_bytes(fmt="GIF")))
        assert exc.value.sub_reason == "WRONG_FORMAT"
        assert exc.value.details["format"] == "GIF"

    def test_garbage_is_wrong_format(self):
        from thumbnail import validate_thumbnail
        from errors import InvalidThumbnail
        with pytest.raises(InvalidThumbnail) as exc:
            validate_thumbnail(io.BytesIO(b"not an image at all"))
        assert exc.value.sub_reason == "WRONG_FORMAT"
        assert exc.value.code == "INVALID_THUMBNAIL"
