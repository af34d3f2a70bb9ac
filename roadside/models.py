"""
Domain models for emergency roadside requests and service providers.
"""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case attributes in Python, camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class IssueType(StrEnum):
    FLAT_TIRE = "flat_tire"
    DEAD_BATTERY = "dead_battery"
    LOCKOUT = "lockout"
    TOWING = "towing"
    ENGINE_TROUBLE = "engine_trouble"
    ACCIDENT = "accident"
    OTHER = "other"


class UrgencyLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EmergencyStatus(StrEnum):
    PENDING = "pending"  # Submitted, no provider yet
    ASSIGNED = "assigned"  # Provider accepted the job
    EN_ROUTE = "en_route"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (EmergencyStatus.COMPLETED, EmergencyStatus.CANCELLED)


class Location(CamelModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    address: str = Field(min_length=1)


class VehicleInfo(CamelModel):
    make: str = Field(min_length=1)
    model: str = Field(min_length=1)
    year: int = Field(ge=1886, le=2100)
    color: str = Field(min_length=1)
    plate_number: str | None = None


class ServiceProvider(CamelModel):
    id: str
    business_name: str = ""
    latitude: float  # Directories may store these as decimal strings
    longitude: float
    is_available: bool = True  # Gate for emergency matching
    is_active: bool = True
    address: str | None = None


class NearbyProvider(ServiceProvider):
    """A provider as returned to the requester, with its distance."""

    distance_km: float


class Candidate(BaseModel):
    """A provider paired with its distance for a single matching query."""

    provider: ServiceProvider
    distance_km: float

    def to_nearby(self) -> NearbyProvider:
        return NearbyProvider(
            **self.provider.model_dump(), distance_km=round(self.distance_km, 3)
        )


class EmergencyRequestCreate(CamelModel):
    """Payload accepted when a customer submits an emergency request."""

    model_config = ConfigDict(extra="forbid")

    customer_id: str = Field(min_length=1)
    issue_type: IssueType
    description: str
    urgency_level: UrgencyLevel = UrgencyLevel.MEDIUM
    customer_location: Location
    vehicle_info: VehicleInfo
    issue_photo: str | None = None
    notes: str | None = None

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("description must not be empty")
        return value


class EmergencyRequest(CamelModel):
    """One roadside-assistance episode, from submission to a terminal status."""

    id: str
    customer_id: str
    provider_id: str | None = None
    issue_type: IssueType
    description: str
    urgency_level: UrgencyLevel
    customer_location: Location
    vehicle_info: VehicleInfo
    issue_photo: str | None = None
    status: EmergencyStatus = EmergencyStatus.PENDING
    estimated_arrival: datetime | None = None
    assigned_at: datetime | None = None
    arrived_at: datetime | None = None
    completed_at: datetime | None = None
    total_amount: Decimal | None = None
    notes: str | None = None
    created_at: datetime


class EmergencyRequestUpdate(CamelModel):
    """Partial update applied through the request store."""

    model_config = ConfigDict(extra="forbid")

    status: EmergencyStatus | None = None
    provider_id: str | None = Field(default=None, min_length=1)
    estimated_arrival: datetime | None = None
    total_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    notes: str | None = None


class AssignRequest(CamelModel):
    provider_id: str = Field(min_length=1)


class SubmissionResponse(CamelModel):
    request: EmergencyRequest
    nearby_providers: list[NearbyProvider]
