"""Domain types: taxonomy, images, classification records and outcomes."""

from __future__ import annotations

import base64
import binascii
import math
import secrets
import string
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray


class WasteCategory(StrEnum):
    PLASTIC = "PLASTIC"
    PAPER = "PAPER"
    METAL = "METAL"
    GLASS = "GLASS"
    ORGANIC = "ORGANIC"
    ELECTRONIC = "ELECTRONIC"
    TEXTILE = "TEXTILE"
    BATTERY = "BATTERY"
    GENERAL_WASTE = "GENERAL_WASTE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def coerce(cls, value: object) -> WasteCategory:
        """Map arbitrary classifier output onto the taxonomy; anything unrecognized is UNKNOWN."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                return cls.UNKNOWN
        return cls.UNKNOWN


def clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, value))


class Location(BaseModel):
    """A latitude/longitude pair in decimal degrees."""

    lat: float
    lon: float


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransportImage:
    """An encoded image plus its MIME type, convertible to and from a data URL."""

    mime_type: str
    data: bytes

    def to_data_url(self) -> str:
        payload = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{payload}"

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @classmethod
    def from_data_url(cls, url: str) -> TransportImage:
        """Parse a base64 ``data:image/...`` URL.

        Raises:
            ValueError: If the URL is not a base64 image data URL.
        """
        if not url.startswith("data:image/"):
            raise ValueError("Not an image data URL")
        header, sep, payload = url.partition(",")
        if not sep or not header.endswith(";base64"):
            raise ValueError("Image data URL is not base64 encoded")
        mime_type = header[len("data:") : -len(";base64")]
        try:
            data = base64.b64decode(payload, validate=True)
        except binascii.Error as exc:
            raise ValueError("Image data URL payload is not valid base64") from exc
        return cls(mime_type=mime_type, data=data)


@dataclass(frozen=True)
class ImageBuffer:
    """A still camera frame: HxWx3 RGB uint8 pixels at the stream's native resolution."""

    pixels: NDArray[np.uint8]
    width: int
    height: int


@dataclass(frozen=True)
class UploadedImage:
    """A user-selected file, as received."""

    filename: str
    content_type: str
    data: bytes


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class FailureKind(StrEnum):
    CONFIGURATION = "configuration"
    TRANSIENT = "transient"
    INVALID_RESPONSE = "invalid_response"


CONFIGURATION_MARKER = "API Key"


@dataclass(frozen=True)
class ClassificationOutcome:
    """Normalized result of a classification attempt; always structurally valid."""

    category: WasteCategory
    confidence: float
    reasoning: str | None = None
    failure: FailureKind | None = None

    @property
    def is_configuration_failure(self) -> bool:
        return self.category is WasteCategory.UNKNOWN and CONFIGURATION_MARKER in (self.reasoning or "")

    @classmethod
    def failed(cls, reasoning: str, failure: FailureKind) -> ClassificationOutcome:
        return cls(category=WasteCategory.UNKNOWN, confidence=0.0, reasoning=reasoning, failure=failure)


class ClassificationRecord(BaseModel):
    """A classification result; a history entry once saved with a thumbnail."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str | None = None
    image_url: str
    category: WasteCategory
    confidence: float | None = None
    reasoning: str | None = None
    suggestions: list[str] = Field(min_length=1)
    timestamp: int
    location: Location | None = Field(default=None, alias="userLocation")

    @field_validator("category", mode="before")
    @classmethod
    def _collapse_category(cls, value: Any) -> WasteCategory:
        return WasteCategory.coerce(value)

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float | None) -> float | None:
        if value is None:
            return None
        if math.isnan(value):
            return 0.5
        return clamp_confidence(value)


_ID_ALPHABET = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_ID_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_record_id() -> str:
    """Time-based id with a random suffix, unique without central coordination."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return _to_base36(time.time_ns() // 1_000_000) + suffix


def now_ms() -> int:
    return time.time_ns() // 1_000_000
