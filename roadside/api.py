import logging

from fastapi import APIRouter, FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from roadside import config
from roadside.database import get_db
from roadside.dispatch import submit_emergency_request
from roadside.errors import (
    DirectoryUnavailable,
    InvariantViolation,
    NotFoundError,
    ValidationError,
)
from roadside.models import (
    AssignRequest,
    EmergencyRequest,
    EmergencyRequestCreate,
    EmergencyRequestUpdate,
    SubmissionResponse,
)
from roadside.store import get_store

logger = logging.getLogger(__name__)

router = APIRouter()


def _not_found(exc: NotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _conflict(exc: InvariantViolation) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.post(
    "/emergency-requests",
    response_model=SubmissionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_emergency_request(
    payload: EmergencyRequestCreate,
) -> SubmissionResponse:
    """
    Submit an emergency request and return the nearest available providers.
    """
    try:
        result = await submit_emergency_request(payload, get_store(), get_db().directory)
    except DirectoryUnavailable as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not search for nearby providers, please retry",
        ) from exc

    return SubmissionResponse(
        request=result.request,
        nearby_providers=[c.to_nearby() for c in result.candidates],
    )


@router.get("/emergency-requests", response_model=list[EmergencyRequest])
async def list_pending_emergency_requests() -> list[EmergencyRequest]:
    """Dispatch board: every request still waiting for a provider."""
    return get_store().list_pending()


@router.get(
    "/emergency-requests/customer/{customer_id}",
    response_model=list[EmergencyRequest],
)
async def list_customer_emergency_requests(customer_id: str) -> list[EmergencyRequest]:
    return get_store().list_by_customer(customer_id)


@router.get(
    "/emergency-requests/provider/{provider_id}",
    response_model=list[EmergencyRequest],
)
async def list_provider_emergency_requests(provider_id: str) -> list[EmergencyRequest]:
    return get_store().list_by_provider(provider_id)


@router.get("/emergency-requests/{request_id}", response_model=EmergencyRequest)
async def get_emergency_request(request_id: str) -> EmergencyRequest:
    try:
        return get_store().get(request_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc


@router.patch("/emergency-requests/{request_id}", response_model=EmergencyRequest)
async def update_emergency_request(
    request_id: str, update: EmergencyRequestUpdate
) -> EmergencyRequest:
    """
    Apply a partial update, typically a status change. Lifecycle timestamps
    are stamped by the store and never overwritten.
    """
    try:
        return await get_store().update(request_id, update)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    except InvariantViolation as exc:
        raise _conflict(exc) from exc


@router.post("/emergency-requests/{request_id}/assign", response_model=EmergencyRequest)
async def assign_emergency_request(
    request_id: str, body: AssignRequest
) -> EmergencyRequest:
    try:
        return await get_store().assign(request_id, body.provider_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    except InvariantViolation as exc:
        raise _conflict(exc) from exc


@router.post("/emergency-requests/{request_id}/cancel", response_model=EmergencyRequest)
async def cancel_emergency_request(request_id: str) -> EmergencyRequest:
    try:
        return await get_store().cancel(request_id)
    except NotFoundError as exc:
        raise _not_found(exc) from exc
    except InvariantViolation as exc:
        raise _conflict(exc) from exc


async def _bad_request(request: Request, exc: Exception) -> JSONResponse:
    if isinstance(exc, RequestValidationError):
        detail = jsonable_encoder(exc.errors())
    else:
        detail = str(exc)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": detail},
    )


def create_app() -> FastAPI:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(levelname)s: %(name)s - %(message)s",
    )
    app = FastAPI(title="Roadside Dispatch API", version="0.1.0")
    app.include_router(router)
    app.add_exception_handler(RequestValidationError, _bad_request)
    app.add_exception_handler(ValidationError, _bad_request)
    return app
