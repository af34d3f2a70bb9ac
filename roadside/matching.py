import logging

from roadside.database import ProviderDirectory
from roadside.geo import haversine_distance, validate_coordinates
from roadside.models import Candidate

logger = logging.getLogger(__name__)


async def find_nearest_providers(
    directory: ProviderDirectory, lat: float, lng: float, max_radius_km: float
) -> list[Candidate]:
    """
    Rank available providers by distance from (lat, lng).

    Providers exactly ``max_radius_km`` away are included. Ties on distance
    are broken by provider id so unchanged data always ranks the same way.
    Directory failures propagate as DirectoryUnavailable; an empty list means
    the search ran and nobody qualified.
    """
    validate_coordinates(lat, lng)
    providers = await directory.list_available_providers()

    candidates: list[Candidate] = []
    for provider in providers:
        if not (provider.is_available and provider.is_active):
            continue
        try:
            distance = haversine_distance(
                lat, lng, provider.latitude, provider.longitude
            )
        except ValueError as exc:
            logger.warning("Skipping provider %s with bad location: %s", provider.id, exc)
            continue
        if distance <= max_radius_km:
            candidates.append(Candidate(provider=provider, distance_km=distance))

    candidates.sort(key=lambda c: (c.distance_km, c.provider.id))
    logger.debug(
        "%d of %d providers within %.1f km of (%f, %f)",
        len(candidates),
        len(providers),
        max_radius_km,
        lat,
        lng,
    )
    return candidates
