"""Immutable campus knowledge base.

The knowledge base is loaded once at startup (see ``loaders.campus_loader``)
and handed to the engine by reference. Nothing here exposes a mutation API:
records are frozen dataclasses and the lookup tables are read-only mappings,
so any number of concurrent requests can read it without locking.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional


@dataclass(frozen=True)
class Coordinates:
    """Geographic position of a location."""
    lat: float
    lng: float

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True)
class ServiceInfo:
    """A service offered inside a location (e.g. the ID card office)."""
    name: str
    purpose: str = ""
    location_note: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "purpose": self.purpose,
            "location_note": self.location_note,
        }


@dataclass(frozen=True)
class LocationRecord:
    """One campus location.

    ``aliases`` holds every lowercased synonym: explicit aliases from the
    dataset plus tokens derived from name, description and service text.
    ``keywords`` holds the name and explicit alias tokens, ``service_keywords``
    the distinctive tokens of the services housed here ("print" for a Print
    Station). Non-generic tokens of either set are strong evidence.
    ``phrases`` are the multi-word names used for the full-phrase bonus. All
    are derived by the loader.
    """
    id: str
    name: str
    description: str
    coordinates: Coordinates
    aliases: frozenset[str] = field(default_factory=frozenset)
    services: tuple[ServiceInfo, ...] = ()
    keywords: frozenset[str] = field(default_factory=frozenset)
    phrases: tuple[str, ...] = ()
    service_keywords: frozenset[str] = field(default_factory=frozenset)

    def find_service(self, name: Optional[str]) -> Optional[ServiceInfo]:
        """Case-insensitive service lookup by name."""
        if not name:
            return None
        wanted = name.strip().lower()
        for service in self.services:
            if service.name.lower() == wanted:
                return service
        return None

    def to_prompt_dict(self) -> dict:
        """Serialize the fields the generative fallback needs to see."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "coordinates": self.coordinates.to_dict(),
            "services": [s.to_dict() for s in self.services],
        }


class KnowledgeBase:
    """Read-only collection of campus locations with id and name lookup."""

    def __init__(self, locations: Iterable[LocationRecord]):
        self._locations: tuple[LocationRecord, ...] = tuple(locations)
        self._by_id: Mapping[str, LocationRecord] = MappingProxyType(
            {loc.id: loc for loc in self._locations}
        )
        self._by_name: Mapping[str, LocationRecord] = MappingProxyType(
            {loc.name.lower(): loc for loc in self._locations}
        )

    @property
    def locations(self) -> tuple[LocationRecord, ...]:
        return self._locations

    def __len__(self) -> int:
        return len(self._locations)

    def __iter__(self):
        return iter(self._locations)

    def __contains__(self, location_id: object) -> bool:
        return location_id in self._by_id

    def get(self, location_id: str) -> Optional[LocationRecord]:
        """Look up a location by its stable id."""
        return self._by_id.get(location_id)

    def find_by_name(self, name: str) -> Optional[LocationRecord]:
        """Case-insensitive exact name lookup."""
        if not name:
            return None
        return self._by_name.get(name.strip().lower())

    def to_prompt_context(self) -> list[dict]:
        """Structured context embedded in the fallback prompt."""
        return [loc.to_prompt_dict() for loc in self._locations]
