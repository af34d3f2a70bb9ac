"""
Status state machine for emergency requests.

    pending -> assigned -> en_route -> arrived -> in_progress -> completed

    Any status except completed may also move to cancelled.

Re-applying the current status is always accepted and never touches an
already-written timestamp. Every other move not listed in TRANSITIONS is
rejected with InvalidTransition.
"""

from datetime import datetime

from pydantic.alias_generators import to_camel

from roadside.errors import InvalidTransition, InvariantViolation
from roadside.models import EmergencyRequest, EmergencyRequestUpdate, EmergencyStatus

S = EmergencyStatus

TRANSITIONS: dict[EmergencyStatus, frozenset[EmergencyStatus]] = {
    S.PENDING: frozenset({S.ASSIGNED, S.CANCELLED}),
    S.ASSIGNED: frozenset({S.ASSIGNED, S.EN_ROUTE, S.CANCELLED}),
    S.EN_ROUTE: frozenset({S.ARRIVED, S.CANCELLED}),
    S.ARRIVED: frozenset({S.IN_PROGRESS, S.CANCELLED}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}

# Status reached -> timestamp stamped on first arrival there
TIMESTAMP_FIELDS: dict[EmergencyStatus, str] = {
    S.ASSIGNED: "assigned_at",
    S.ARRIVED: "arrived_at",
    S.COMPLETED: "completed_at",
}

# Order in which lifecycle timestamps must appear
_TIMESTAMP_ORDER = ("created_at", "assigned_at", "arrived_at", "completed_at")

_PRICED_STATUSES = frozenset({S.IN_PROGRESS, S.COMPLETED})


def can_transition(current: EmergencyStatus, target: EmergencyStatus) -> bool:
    return target == current or target in TRANSITIONS[current]


def apply_update(
    request: EmergencyRequest, update: EmergencyRequestUpdate, now: datetime
) -> EmergencyRequest:
    """
    Return a copy of ``request`` with ``update`` applied.

    The original is never mutated, so a rejected update leaves no partial
    state behind.
    """
    changes = update.model_dump(exclude_unset=True)
    target = update.status if update.status is not None else request.status
    changes.pop("status", None)

    if not can_transition(request.status, target):
        raise InvalidTransition(request.status.value, target.value)

    if request.status.is_terminal:
        # Nothing but notes may change on a closed request
        frozen = sorted(
            to_camel(name)
            for name, value in changes.items()
            if name != "notes" and getattr(request, name) != value
        )
        if frozen:
            raise InvariantViolation(
                f"Cannot change {', '.join(frozen)} on a {request.status.value} request"
            )
        changes = {k: v for k, v in changes.items() if k == "notes"}

    if "provider_id" in changes:
        if changes["provider_id"] is None:
            raise InvariantViolation("providerId cannot be cleared")
        if target != S.ASSIGNED:
            raise InvariantViolation(
                "providerId can only be set together with status assigned"
            )

    if target == S.ASSIGNED and not (changes.get("provider_id") or request.provider_id):
        raise InvariantViolation("Assigning a request requires a providerId")

    if changes.get("total_amount") is not None and target not in _PRICED_STATUSES:
        raise InvariantViolation(
            "totalAmount can only be set once the service is in progress or completed"
        )

    changes["status"] = target

    field = TIMESTAMP_FIELDS.get(target)
    if field is not None and getattr(request, field) is None:
        changes[field] = now

    updated = request.model_copy(update=changes)
    _check_timestamp_order(updated)
    return updated


def _check_timestamp_order(request: EmergencyRequest) -> None:
    stamps = [
        (name, getattr(request, name))
        for name in _TIMESTAMP_ORDER
        if getattr(request, name) is not None
    ]
    for (earlier_name, earlier), (later_name, later) in zip(stamps, stamps[1:]):
        if later < earlier:
            raise InvariantViolation(
                f"{later_name} ({later.isoformat()}) would precede "
                f"{earlier_name} ({earlier.isoformat()})"
            )
