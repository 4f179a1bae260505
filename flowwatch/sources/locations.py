"""Location directory: location id → display name and upstream reach id."""

from typing import Optional, Protocol

from flowwatch.schemas import LocationInfo


class LocationDirectory(Protocol):
    async def get(self, location_id: str) -> Optional[LocationInfo]: ...


class InMemoryLocationDirectory:
    def __init__(self, locations: list[LocationInfo] | None = None):
        self._locations = {loc.location_id: loc for loc in locations or []}

    def add(self, location: LocationInfo) -> None:
        self._locations[location.location_id] = location

    async def get(self, location_id: str) -> Optional[LocationInfo]:
        return self._locations.get(location_id)


async def resolve_location(
    directory: Optional[LocationDirectory], location_id: str
) -> LocationInfo:
    """Look up a location, falling back to a bare entry for unknown ids."""
    if directory is not None:
        found = await directory.get(location_id)
        if found is not None:
            return found
    return LocationInfo(location_id=location_id)
