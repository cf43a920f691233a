"""Error taxonomy shared by the capture, classification and history layers."""

from __future__ import annotations

from enum import StrEnum


class EcoSnapError(Exception):
    """Base class for all EcoSnap errors."""


class ConfigurationError(EcoSnapError):
    """The classifier credential is missing or rejected."""


class TransientServiceError(EcoSnapError):
    """The classifier or network failed; the user may retry."""


class InvalidResponseError(EcoSnapError):
    """The classifier answered with something that is not a valid classification."""


# ---------------------------------------------------------------------------
# Camera
# ---------------------------------------------------------------------------


class ResourceError(EcoSnapError):
    """A camera device could not be used."""


class CameraPermissionError(ResourceError):
    """The OS refused access to the camera device."""


class CameraUnavailableError(ResourceError):
    """The camera is missing, busy or failed to open."""


class CameraNotReadyError(ResourceError):
    """The stream is closed or has not delivered a frame."""


# ---------------------------------------------------------------------------
# Input, persistence, session
# ---------------------------------------------------------------------------


class ImageValidationError(EcoSnapError):
    """The selected file is not a supported image."""


class PersistenceCorruptionError(EcoSnapError):
    """The stored history blob cannot be read back."""


class InvalidTransitionError(EcoSnapError):
    """The requested action is not allowed in the current session phase."""


class GeolocationFailure(StrEnum):
    PERMISSION_DENIED = "PERMISSION_DENIED"
    UNAVAILABLE = "UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"


_GEOLOCATION_MESSAGES: dict[GeolocationFailure, str] = {
    GeolocationFailure.PERMISSION_DENIED: (
        "User denied the request for Geolocation. Recycling centers nearby may not be shown."
    ),
    GeolocationFailure.UNAVAILABLE: "Location information is unavailable.",
    GeolocationFailure.TIMEOUT: "The request to get user location timed out.",
    GeolocationFailure.UNKNOWN: "An unknown error occurred while fetching location.",
}


class GeolocationError(EcoSnapError):
    """The location provider could not produce a position."""

    def __init__(self, reason: GeolocationFailure, detail: str | None = None) -> None:
        self.reason = reason
        message = _GEOLOCATION_MESSAGES[reason]
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
