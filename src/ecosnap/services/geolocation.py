"""Location providers used to rank nearby disposal facilities."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import httpx

from ecosnap.errors import GeolocationError, GeolocationFailure
from ecosnap.models import Location

if TYPE_CHECKING:
    from ecosnap.config import Settings


class LocationProvider(Protocol):
    """Protocol for anything that can report the current position."""

    async def get_current_position(self) -> Location:
        """Return the current position.

        Raises:
            GeolocationError: With the reason the position could not be obtained.
        """
        ...


class DisabledLocationProvider:
    """Location services turned off by the operator."""

    async def get_current_position(self) -> Location:
        raise GeolocationError(GeolocationFailure.PERMISSION_DENIED)


class StaticLocationProvider:
    """Reports a fixed, configured position."""

    def __init__(self, latitude: float | None, longitude: float | None) -> None:
        self._latitude = latitude
        self._longitude = longitude

    async def get_current_position(self) -> Location:
        if self._latitude is None or self._longitude is None:
            raise GeolocationError(GeolocationFailure.UNAVAILABLE, "no coordinates configured")
        return Location(lat=self._latitude, lon=self._longitude)


class IpLocationProvider:
    """Approximates the position from the public IP address (ip-api.com response shape)."""

    def __init__(self, url: str, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    async def get_current_position(self) -> Location:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(self._url)
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException as exc:
            raise GeolocationError(GeolocationFailure.TIMEOUT) from exc
        except httpx.HTTPError as exc:
            raise GeolocationError(GeolocationFailure.UNAVAILABLE, str(exc)) from exc
        except ValueError as exc:
            raise GeolocationError(GeolocationFailure.UNKNOWN, "malformed lookup response") from exc

        if not isinstance(payload, dict) or payload.get("status", "success") != "success":
            raise GeolocationError(GeolocationFailure.UNAVAILABLE, "lookup did not succeed")
        try:
            return Location(lat=float(payload["lat"]), lon=float(payload["lon"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise GeolocationError(GeolocationFailure.UNKNOWN, "lookup returned no coordinates") from exc


def build_location_provider(settings: Settings) -> LocationProvider:
    if settings.location_provider == "ip":
        return IpLocationProvider(settings.ip_geolocation_url)
    if settings.location_provider == "static":
        return StaticLocationProvider(settings.latitude, settings.longitude)
    return DisabledLocationProvider()
