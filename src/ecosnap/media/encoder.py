"""Image encoding: full-resolution transport images and storage thumbnails.

Camera frames become JPEG at a fixed quality; uploaded files keep their
original bytes and format. Thumbnails never raise: anything that cannot be
decoded or re-encoded yields a fixed 1x1 transparent placeholder.
"""

from __future__ import annotations

import io
import logging

from PIL import Image

from ecosnap.errors import ImageValidationError
from ecosnap.models import ImageBuffer, TransportImage, UploadedImage

logger = logging.getLogger(__name__)

PLACEHOLDER_DATA_URL = "data:image/gif;base64,R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7"
PLACEHOLDER = TransportImage.from_data_url(PLACEHOLDER_DATA_URL)

CAMERA_JPEG_QUALITY: float = 0.9

THUMBNAIL_MAX_WIDTH = 120
THUMBNAIL_MAX_HEIGHT = 120
THUMBNAIL_QUALITY: float = 0.6

SUPPORTED_FORMATS: dict[str, str] = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "GIF": "image/gif",
    "WEBP": "image/webp",
}

INVALID_FILE_MESSAGE = "Please select an image file (PNG, JPG, GIF, WebP)."

# Errors Pillow and base64 decoding raise for unreadable or unwritable input.
_CODEC_ERRORS = (OSError, ValueError, SyntaxError, Image.DecompressionBombError)


def _pil_quality(quality: float) -> int:
    return max(1, min(95, round(quality * 100)))


def encode_full(raw: ImageBuffer | UploadedImage, jpeg_quality: float = CAMERA_JPEG_QUALITY) -> TransportImage:
    """Encode a camera frame or uploaded file for display and classifier submission.

    Raises:
        ImageValidationError: If an uploaded file is not a supported image.
    """
    if isinstance(raw, ImageBuffer):
        return _encode_frame(raw, jpeg_quality)
    return _validate_upload(raw)


def _encode_frame(frame: ImageBuffer, jpeg_quality: float) -> TransportImage:
    image = Image.fromarray(frame.pixels)
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=_pil_quality(jpeg_quality))
    return TransportImage(mime_type="image/jpeg", data=buffer.getvalue())


def _validate_upload(upload: UploadedImage) -> TransportImage:
    if not upload.content_type.startswith("image/") or not upload.data:
        raise ImageValidationError(INVALID_FILE_MESSAGE)
    try:
        with Image.open(io.BytesIO(upload.data)) as image:
            image_format = image.format
            image.verify()
    except _CODEC_ERRORS as exc:
        raise ImageValidationError(INVALID_FILE_MESSAGE) from exc
    mime_type = SUPPORTED_FORMATS.get(image_format or "")
    if mime_type is None:
        raise ImageValidationError(INVALID_FILE_MESSAGE)
    return TransportImage(mime_type=mime_type, data=upload.data)


def thumbnail_size(width: int, height: int, max_width: int, max_height: int) -> tuple[int, int]:
    """Fit (width, height) inside the bounds, preserving aspect ratio, never below 1px."""
    if width > height:
        if width > max_width:
            height = round(height * max_width / width)
            width = max_width
    elif height > max_height:
        width = round(width * max_height / height)
        height = max_height
    return max(1, width), max(1, height)


def encode_thumbnail(
    image: TransportImage | str,
    max_width: int = THUMBNAIL_MAX_WIDTH,
    max_height: int = THUMBNAIL_MAX_HEIGHT,
    quality: float = THUMBNAIL_QUALITY,
) -> TransportImage:
    """Downsize an image for history storage.

    Never raises: corrupt input, zero-dimension sources and encoder failures
    all return ``PLACEHOLDER``.
    """
    if isinstance(image, str):
        if not image.startswith("data:image"):
            return PLACEHOLDER
        try:
            image = TransportImage.from_data_url(image)
        except ValueError:
            return PLACEHOLDER
    elif not isinstance(image, TransportImage) or not image.mime_type.startswith("image/"):
        return PLACEHOLDER

    try:
        with Image.open(io.BytesIO(image.data)) as source:
            source.load()
            if source.width == 0 or source.height == 0:
                return PLACEHOLDER
            size = thumbnail_size(source.width, source.height, max_width, max_height)
            resized = source.convert("RGB").resize(size, Image.Resampling.LANCZOS)
    except _CODEC_ERRORS as exc:
        logger.warning("Could not decode image for thumbnail: %s", exc)
        return PLACEHOLDER

    buffer = io.BytesIO()
    try:
        resized.save(buffer, format="JPEG", quality=_pil_quality(quality))
        return TransportImage(mime_type="image/jpeg", data=buffer.getvalue())
    except _CODEC_ERRORS as exc:
        logger.warning("JPEG thumbnail encoding failed, falling back to PNG: %s", exc)

    buffer = io.BytesIO()
    try:
        resized.save(buffer, format="PNG")
        return TransportImage(mime_type="image/png", data=buffer.getvalue())
    except _CODEC_ERRORS as exc:
        logger.warning("PNG thumbnail encoding failed: %s", exc)
        return PLACEHOLDER
