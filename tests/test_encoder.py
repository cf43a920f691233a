"""Tests for full-resolution encoding and thumbnail generation."""

from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from ecosnap.errors import ImageValidationError
from ecosnap.media.encoder import (
    INVALID_FILE_MESSAGE,
    PLACEHOLDER,
    PLACEHOLDER_DATA_URL,
    encode_full,
    encode_thumbnail,
    thumbnail_size,
)
from ecosnap.models import ImageBuffer, TransportImage, UploadedImage

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _image_bytes(width: int, height: int, fmt: str = "PNG", mode: str = "RGB") -> bytes:
    color: tuple[int, ...] = (10, 120, 200, 128) if mode == "RGBA" else (10, 120, 200)
    buffer = io.BytesIO()
    Image.new(mode, (width, height), color).save(buffer, format=fmt)
    return buffer.getvalue()


def _transport(width: int, height: int, fmt: str = "PNG", mode: str = "RGB") -> TransportImage:
    mime = {"PNG": "image/png", "JPEG": "image/jpeg", "GIF": "image/gif"}[fmt]
    return TransportImage(mime_type=mime, data=_image_bytes(width, height, fmt, mode))


def _decoded_size(image: TransportImage) -> tuple[int, int]:
    with Image.open(io.BytesIO(image.data)) as decoded:
        return decoded.size


# ---------------------------------------------------------------------------
# Thumbnail sizing
# ---------------------------------------------------------------------------


class TestThumbnailSize:
    def test_landscape_clamps_width(self) -> None:
        assert thumbnail_size(4000, 2000, 120, 120) == (120, 60)

    def test_portrait_clamps_height(self) -> None:
        assert thumbnail_size(1500, 3000, 120, 120) == (60, 120)

    def test_square_clamps_both(self) -> None:
        assert thumbnail_size(500, 500, 120, 120) == (120, 120)

    def test_small_image_is_not_upscaled(self) -> None:
        assert thumbnail_size(50, 30, 120, 120) == (50, 30)

    def test_extreme_ratio_floors_at_one_pixel(self) -> None:
        assert thumbnail_size(4000, 10, 120, 120) == (120, 1)


# ---------------------------------------------------------------------------
# Thumbnail encoding
# ---------------------------------------------------------------------------


class TestEncodeThumbnail:
    def test_large_landscape_becomes_120x60(self) -> None:
        thumbnail = encode_thumbnail(_transport(4000, 2000, fmt="JPEG"))

        assert thumbnail.mime_type == "image/jpeg"
        assert _decoded_size(thumbnail) == (120, 60)

    def test_accepts_data_url_string(self) -> None:
        data_url = _transport(300, 600).to_data_url()

        thumbnail = encode_thumbnail(data_url)

        assert _decoded_size(thumbnail) == (60, 120)

    def test_custom_bounds(self) -> None:
        thumbnail = encode_thumbnail(_transport(400, 200), max_width=40, max_height=40)
        assert _decoded_size(thumbnail) == (40, 20)

    def test_transparent_png_is_flattened_to_jpeg(self) -> None:
        thumbnail = encode_thumbnail(_transport(200, 100, mode="RGBA"))
        assert thumbnail.mime_type == "image/jpeg"
        assert _decoded_size(thumbnail) == (120, 60)

    def test_corrupt_bytes_yield_placeholder(self) -> None:
        corrupt = TransportImage(mime_type="image/png", data=b"\x89PNG\r\n\x1a\nnot really a png")
        assert encode_thumbnail(corrupt) == PLACEHOLDER

    def test_non_image_string_yields_placeholder(self) -> None:
        assert encode_thumbnail("hello world") == PLACEHOLDER
        assert encode_thumbnail("") == PLACEHOLDER

    def test_invalid_base64_yields_placeholder(self) -> None:
        assert encode_thumbnail("data:image/png;base64,@@@not-base64@@@") == PLACEHOLDER

    def test_non_image_mime_yields_placeholder(self) -> None:
        assert encode_thumbnail(TransportImage(mime_type="text/plain", data=b"abc")) == PLACEHOLDER

    def test_placeholder_is_transparent_gif(self) -> None:
        assert PLACEHOLDER.to_data_url() == PLACEHOLDER_DATA_URL
        assert _decoded_size(PLACEHOLDER) == (1, 1)


# ---------------------------------------------------------------------------
# Full-resolution encoding
# ---------------------------------------------------------------------------


class TestEncodeFull:
    def test_camera_frame_becomes_jpeg_at_native_size(self) -> None:
        pixels = np.zeros((48, 64, 3), dtype=np.uint8)
        pixels[..., 0] = 255
        frame = ImageBuffer(pixels=pixels, width=64, height=48)

        image = encode_full(frame)

        assert image.mime_type == "image/jpeg"
        assert _decoded_size(image) == (64, 48)

    def test_uploaded_png_keeps_original_bytes(self) -> None:
        data = _image_bytes(20, 10)
        upload = UploadedImage(filename="bottle.png", content_type="image/png", data=data)

        image = encode_full(upload)

        assert image.mime_type == "image/png"
        assert image.data == data

    def test_format_is_detected_from_content(self) -> None:
        data = _image_bytes(20, 10, fmt="GIF")
        upload = UploadedImage(filename="can.png", content_type="image/png", data=data)

        assert encode_full(upload).mime_type == "image/gif"

    def test_non_image_content_type_is_rejected(self) -> None:
        upload = UploadedImage(filename="notes.txt", content_type="text/plain", data=b"hello")
        with pytest.raises(ImageValidationError, match="Please select an image file"):
            encode_full(upload)

    def test_undecodable_image_is_rejected(self) -> None:
        upload = UploadedImage(filename="broken.jpg", content_type="image/jpeg", data=b"garbage")
        with pytest.raises(ImageValidationError) as excinfo:
            encode_full(upload)
        assert str(excinfo.value) == INVALID_FILE_MESSAGE

    def test_unsupported_format_is_rejected(self) -> None:
        upload = UploadedImage(filename="scan.bmp", content_type="image/bmp", data=_image_bytes(8, 8, fmt="BMP"))
        with pytest.raises(ImageValidationError):
            encode_full(upload)
