import logging
from dataclasses import dataclass

from roadside import config
from roadside.database import ProviderDirectory
from roadside.errors import ValidationError
from roadside.geo import validate_coordinates
from roadside.matching import find_nearest_providers
from roadside.models import Candidate, EmergencyRequest, EmergencyRequestCreate
from roadside.store import EmergencyRequestStore

logger = logging.getLogger(__name__)


@dataclass
class SubmissionResult:
    request: EmergencyRequest
    candidates: list[Candidate]


def check_payload(payload: EmergencyRequestCreate) -> None:
    """
    Structural checks on a submission, for payloads that did not come
    through model validation (e.g. built with ``model_construct``).
    """
    description = getattr(payload, "description", None)
    if not description or not description.strip():
        raise ValidationError("description must not be empty")

    location = getattr(payload, "customer_location", None)
    if location is None or not location.address:
        raise ValidationError("customerLocation with an address is required")
    try:
        validate_coordinates(location.lat, location.lng)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"customerLocation: {exc}") from exc

    vehicle = getattr(payload, "vehicle_info", None)
    if vehicle is None or not all((vehicle.make, vehicle.model, vehicle.color)):
        raise ValidationError("vehicleInfo needs make, model and color")


async def submit_emergency_request(
    payload: EmergencyRequestCreate,
    store: EmergencyRequestStore,
    directory: ProviderDirectory,
) -> SubmissionResult:
    """
    Intake of a new emergency request.

    The provider search runs before the request is written, so a directory
    outage fails the submission without leaving an orphaned pending request.
    Finding nobody nearby is not a failure: the request is still created and
    waits on the dispatch board.
    """
    check_payload(payload)
    location = payload.customer_location
    candidates = await find_nearest_providers(
        directory, location.lat, location.lng, config.DEFAULT_SEARCH_RADIUS_KM
    )

    request = await store.create(payload)
    top = candidates[: config.MAX_CANDIDATES]
    if not top:
        logger.warning(
            "No providers within %.0f km of emergency request %s",
            config.DEFAULT_SEARCH_RADIUS_KM,
            request.id,
        )
    return SubmissionResult(request=request, candidates=top)
