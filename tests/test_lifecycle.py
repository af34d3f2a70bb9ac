import asyncio
import warnings
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest

from roadside import lifecycle
from roadside.database import InMemoryKeyValueDatabase
from roadside.errors import InvalidTransition, InvariantViolation, NotFoundError
from roadside.lifecycle import TRANSITIONS, apply_update, can_transition
from roadside.models import (
    EmergencyRequest,
    EmergencyRequestCreate,
    EmergencyRequestUpdate,
    EmergencyStatus,
)
from roadside.store import EmergencyRequestStore

S = EmergencyStatus
T0 = datetime(2025, 7, 2, 8, 0, 0, tzinfo=UTC)

FORWARD_PATH = [S.ASSIGNED, S.EN_ROUTE, S.ARRIVED, S.IN_PROGRESS, S.COMPLETED]


class TickingClock:
    """Advances one minute on every read."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(minutes=1)
        return current


def _payload(customer_id: str = "cust-1") -> EmergencyRequestCreate:
    return EmergencyRequestCreate(
        customer_id=customer_id,
        issue_type="dead_battery",
        description="Car will not start",
        urgency_level="critical",
        customer_location={"lat": 40.7128, "lng": -74.0060, "address": "New York, NY"},
        vehicle_info={"make": "Ford", "model": "Focus", "year": 2015, "color": "Red"},
    )


def _store(clock=None) -> EmergencyRequestStore:
    return EmergencyRequestStore(InMemoryKeyValueDatabase(), clock=clock or TickingClock())


def _step(status: EmergencyStatus, **fields) -> EmergencyRequestUpdate:
    if status == S.ASSIGNED and "provider_id" not in fields:
        fields["provider_id"] = "prov-1"
    return EmergencyRequestUpdate(status=status, **fields)


async def _advance_to(store: EmergencyRequestStore, request_id: str, target: EmergencyStatus):
    request = store.get(request_id)
    for status in FORWARD_PATH:
        request = await store.update(request_id, _step(status))
        if status == target:
            break
    return request


def test_transition_table_covers_every_status() -> None:
    assert set(TRANSITIONS) == set(EmergencyStatus)
    assert TRANSITIONS[S.COMPLETED] == frozenset()
    assert TRANSITIONS[S.CANCELLED] == frozenset()


@pytest.mark.parametrize(
    "current", [S.PENDING, S.ASSIGNED, S.EN_ROUTE, S.ARRIVED, S.IN_PROGRESS]
)
def test_cancellation_reachable_from_non_terminal(current: EmergencyStatus) -> None:
    assert can_transition(current, S.CANCELLED)


def test_cancellation_not_reachable_from_completed() -> None:
    assert not can_transition(S.COMPLETED, S.CANCELLED)


@pytest.mark.parametrize(
    "current, target",
    [
        (S.PENDING, S.EN_ROUTE),
        (S.PENDING, S.COMPLETED),
        (S.ASSIGNED, S.PENDING),
        (S.ARRIVED, S.EN_ROUTE),
        (S.IN_PROGRESS, S.ASSIGNED),
        (S.CANCELLED, S.PENDING),
        (S.COMPLETED, S.IN_PROGRESS),
    ],
)
def test_skipping_or_regressing_is_rejected(
    current: EmergencyStatus, target: EmergencyStatus
) -> None:
    assert not can_transition(current, target)


def test_apply_update_does_not_mutate_original() -> None:
    request = EmergencyRequest(id="r1", created_at=T0, **_payload().model_dump())

    updated = apply_update(request, _step(S.ASSIGNED), T0 + timedelta(minutes=1))

    assert request.status == S.PENDING
    assert request.assigned_at is None
    assert updated.status == S.ASSIGNED


@pytest.mark.asyncio
async def test_create_starts_pending_with_no_lifecycle_timestamps() -> None:
    store = _store()

    request = await store.create(_payload())

    assert request.status == S.PENDING
    assert request.created_at == T0
    assert request.provider_id is None
    assert request.assigned_at is None
    assert request.arrived_at is None
    assert request.completed_at is None
    assert request.total_amount is None
    assert store.get(request.id) == request


@pytest.mark.asyncio
async def test_full_lifecycle_stamps_each_timestamp_in_order() -> None:
    store = _store()
    request = await store.create(_payload())

    seen = []
    for status in FORWARD_PATH:
        extra = {"total_amount": Decimal("89.99")} if status == S.COMPLETED else {}
        updated = await store.update(request.id, _step(status, **extra))
        seen.append(updated.status)
        if status in (S.ASSIGNED, S.EN_ROUTE, S.ARRIVED, S.IN_PROGRESS):
            assert updated.completed_at is None

    assert seen == FORWARD_PATH
    final = store.get(request.id)
    assert final.provider_id == "prov-1"
    assert final.created_at < final.assigned_at < final.arrived_at < final.completed_at
    assert final.total_amount == Decimal("89.99")


@pytest.mark.asyncio
async def test_reapplying_status_keeps_first_timestamp() -> None:
    store = _store()
    request = await store.create(_payload())

    first = await store.update(request.id, _step(S.ASSIGNED))
    second = await store.update(request.id, _step(S.ASSIGNED))

    assert second.assigned_at == first.assigned_at
    assert second.status == S.ASSIGNED


@pytest.mark.asyncio
async def test_reassignment_changes_provider_but_not_assigned_at() -> None:
    store = _store()
    request = await store.create(_payload())

    first = await store.assign(request.id, "prov-1")
    second = await store.assign(request.id, "prov-2")

    assert second.provider_id == "prov-2"
    assert second.assigned_at == first.assigned_at
    assert store.list_by_provider("prov-1") == []


@pytest.mark.asyncio
@pytest.mark.parametrize("target", [S.ARRIVED, S.COMPLETED])
async def test_reapplying_later_status_is_idempotent(target: EmergencyStatus) -> None:
    store = _store()
    request = await store.create(_payload())
    before = await _advance_to(store, request.id, target)

    after = await store.update(request.id, _step(target))

    assert after == before


@pytest.mark.asyncio
async def test_assigning_without_provider_is_rejected() -> None:
    store = _store()
    request = await store.create(_payload())

    with pytest.raises(InvariantViolation):
        await store.update(request.id, EmergencyRequestUpdate(status=S.ASSIGNED))

    assert store.get(request.id) == request


@pytest.mark.asyncio
async def test_provider_id_without_assignment_is_rejected() -> None:
    store = _store()
    request = await store.create(_payload())
    await _advance_to(store, request.id, S.EN_ROUTE)

    with pytest.raises(InvariantViolation):
        await store.update(request.id, EmergencyRequestUpdate(provider_id="prov-9"))


@pytest.mark.asyncio
async def test_illegal_transition_writes_nothing() -> None:
    store = _store()
    request = await store.create(_payload())

    with pytest.raises(InvalidTransition):
        await store.update(request.id, _step(S.COMPLETED))

    unchanged = store.get(request.id)
    assert unchanged == request
    assert unchanged.completed_at is None


@pytest.mark.asyncio
async def test_total_amount_requires_service_in_progress() -> None:
    store = _store()
    request = await store.create(_payload())
    await store.assign(request.id, "prov-1")

    with pytest.raises(InvariantViolation):
        await store.update(
            request.id, EmergencyRequestUpdate(total_amount=Decimal("10.00"))
        )


@pytest.mark.asyncio
@pytest.mark.parametrize("reached", [S.PENDING, S.ASSIGNED, S.ARRIVED, S.IN_PROGRESS])
async def test_cancel_from_any_non_terminal_status(reached: EmergencyStatus) -> None:
    store = _store()
    request = await store.create(_payload())
    if reached != S.PENDING:
        before = await _advance_to(store, request.id, reached)
    else:
        before = request

    cancelled = await store.cancel(request.id)

    assert cancelled.status == S.CANCELLED
    assert cancelled.completed_at is None
    assert cancelled.assigned_at == before.assigned_at
    assert cancelled.arrived_at == before.arrived_at
    assert cancelled.provider_id == before.provider_id


@pytest.mark.asyncio
async def test_cancel_after_completion_is_rejected() -> None:
    store = _store()
    request = await store.create(_payload())
    await _advance_to(store, request.id, S.COMPLETED)

    with pytest.raises(InvalidTransition):
        await store.cancel(request.id)

    assert store.get(request.id).status == S.COMPLETED


@pytest.mark.asyncio
async def test_cancelled_request_cannot_be_reopened() -> None:
    store = _store()
    request = await store.create(_payload())
    await store.cancel(request.id)

    with pytest.raises(InvalidTransition):
        await store.assign(request.id, "prov-1")

    again = await store.cancel(request.id)
    assert again.status == S.CANCELLED


@pytest.mark.asyncio
async def test_clock_going_backwards_is_rejected() -> None:
    times = iter([T0, T0 - timedelta(hours=1)])
    store = _store(clock=lambda: next(times))
    request = await store.create(_payload())

    with pytest.raises(InvariantViolation):
        await store.assign(request.id, "prov-1")

    assert store.get(request.id).assigned_at is None


@pytest.mark.asyncio
async def test_unknown_id_raises_not_found() -> None:
    store = _store()

    with pytest.raises(NotFoundError):
        store.get("missing")
    with pytest.raises(NotFoundError):
        await store.update("missing", _step(S.ASSIGNED))

    assert store.list_pending() == []


@pytest.mark.asyncio
async def test_queries_by_customer_provider_and_pending() -> None:
    store = _store()
    a = await store.create(_payload("cust-a"))
    b = await store.create(_payload("cust-b"))
    c = await store.create(_payload("cust-a"))
    await store.assign(b.id, "prov-7")

    assert [r.id for r in store.list_by_customer("cust-a")] == [a.id, c.id]
    assert [r.id for r in store.list_by_provider("prov-7")] == [b.id]
    assert [r.id for r in store.list_pending()] == [a.id, c.id]
    assert store.list_by_customer("nobody") == []


@pytest.mark.asyncio
async def test_concurrent_same_status_updates_stamp_once() -> None:
    store = _store()
    request = await store.create(_payload())

    results = await asyncio.gather(
        *(store.assign(request.id, "prov-1") for _ in range(10))
    )

    stamps = {r.assigned_at for r in results}
    assert len(stamps) == 1
    assert store.get(request.id).assigned_at in stamps


@pytest.mark.asyncio
async def test_concurrent_updates_to_distinct_requests() -> None:
    store = _store()
    requests = [await store.create(_payload(f"cust-{i}")) for i in range(5)]

    await asyncio.gather(
        *(store.assign(r.id, f"prov-{i}") for i, r in enumerate(requests))
    )

    for i, r in enumerate(requests):
        stored = store.get(r.id)
        assert stored.status == S.ASSIGNED
        assert stored.provider_id == f"prov-{i}"


def test_module_source_compiles_without_warnings() -> None:
    source = Path(lifecycle.__file__).read_text()

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        compile(source, lifecycle.__file__, "exec")


@pytest.mark.asyncio
async def test_completed_request_rejects_new_amount() -> None:
    store = _store()
    request = await store.create(_payload())
    await _advance_to(store, request.id, S.IN_PROGRESS)
    done = await store.update(
        request.id, _step(S.COMPLETED, total_amount=Decimal("50.00"))
    )

    with pytest.raises(InvariantViolation):
        await store.update(
            request.id, _step(S.COMPLETED, total_amount=Decimal("75.00"))
        )
    with pytest.raises(InvariantViolation):
        await store.update(
            request.id,
            EmergencyRequestUpdate(estimated_arrival=T0 + timedelta(hours=1)),
        )

    assert store.get(request.id) == done


@pytest.mark.asyncio
async def test_completed_request_accepts_same_amount_and_notes() -> None:
    store = _store()
    request = await store.create(_payload())
    await _advance_to(store, request.id, S.IN_PROGRESS)
    done = await store.update(
        request.id, _step(S.COMPLETED, total_amount=Decimal("50.00"))
    )

    again = await store.update(
        request.id,
        _step(S.COMPLETED, total_amount=Decimal("50.00"), notes="Paid in cash"),
    )

    assert again.total_amount == Decimal("50.00")
    assert again.completed_at == done.completed_at
    assert again.notes == "Paid in cash"


@pytest.mark.asyncio
async def test_request_locks_are_released_after_updates() -> None:
    store = _store()
    requests = [await store.create(_payload(f"cust-{i}")) for i in range(3)]

    await asyncio.gather(*(store.assign(r.id, "prov-1") for r in requests))
    await store.cancel(requests[0].id)

    assert len(store._locks) == 0
