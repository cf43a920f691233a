"""Disposal guidance: static rules per category plus proximity-ranked facilities."""

from __future__ import annotations

import logging
import math
from pathlib import Path

from pydantic import BaseModel, Field

from ecosnap.models import Location, WasteCategory

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM: float = 6371.0
MAX_FACILITIES: int = 2

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "data" / "disposal.json"


class Facility(BaseModel):
    """A disposal or recycling location."""

    name: str
    address: str
    accepts: set[WasteCategory]
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)

    @property
    def location(self) -> Location:
        return Location(lat=self.lat, lon=self.lon)


class AdvisorMessages(BaseModel):
    facilities_header: str
    no_facilities: str
    enable_location: str


class DisposalCatalog(BaseModel):
    """Guidance rules and facility data consumed by the advisor."""

    rules: dict[WasteCategory, list[str]]
    default: list[str] = Field(min_length=1)
    messages: AdvisorMessages
    facilities: list[Facility] = Field(default_factory=list)

    @classmethod
    def load(cls, path: Path | None = None) -> DisposalCatalog:
        """Load a catalog from JSON, defaulting to the packaged data file."""
        catalog_path = path or DEFAULT_CATALOG_PATH
        catalog = cls.model_validate_json(catalog_path.read_text(encoding="utf-8"))
        logger.info("Loaded %d disposal facilities from %s", len(catalog.facilities), catalog_path)
        return catalog


def haversine_km(origin: Location, target: Location) -> float:
    """Great-circle distance in kilometres."""
    d_lat = math.radians(target.lat - origin.lat)
    d_lon = math.radians(target.lon - origin.lon)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(origin.lat)) * math.cos(math.radians(target.lat)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


class DisposalAdvisor:
    def __init__(self, catalog: DisposalCatalog) -> None:
        self._catalog = catalog

    def rank_facilities(self, category: WasteCategory, location: Location) -> list[tuple[Facility, float]]:
        """Facilities accepting ``category``, nearest first."""
        candidates = [
            (facility, haversine_km(location, facility.location))
            for facility in self._catalog.facilities
            if category in facility.accepts
        ]
        candidates.sort(key=lambda pair: pair[1])
        return candidates

    def suggest(self, category: WasteCategory, location: Location | None = None) -> list[str]:
        """Ordered guidance: static rules, then nearby facilities, then fallback prompts."""
        suggestions = list(self._catalog.rules.get(category) or self._catalog.default)
        if category is WasteCategory.UNKNOWN:
            return suggestions

        messages = self._catalog.messages
        if location is None:
            suggestions.append(messages.enable_location)
            return suggestions

        ranked = self.rank_facilities(category, location)
        if not ranked:
            suggestions.append(messages.no_facilities)
            return suggestions

        suggestions.append(messages.facilities_header)
        for facility, distance in ranked[:MAX_FACILITIES]:
            suggestions.append(f"{facility.name} at {facility.address} (approx. {distance:.1f} km away).")
        return suggestions
