from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime

from roadside.database import EmergencyRequestRepository, get_db
from roadside.errors import NotFoundError
from roadside.lifecycle import apply_update
from roadside.models import (
    EmergencyRequest,
    EmergencyRequestCreate,
    EmergencyRequestUpdate,
    EmergencyStatus,
)
from roadside.tracking import StatusFeed

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


class EmergencyRequestStore:
    """
    Sole writer of emergency request state.

    Writes to one request id are serialized with a per-id lock; different ids
    never wait on each other.
    """

    def __init__(
        self,
        repository: EmergencyRequestRepository,
        feed: StatusFeed | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._feed = feed if feed is not None else StatusFeed()
        self._clock = clock
        # A lock lives only while some update holds a reference to it
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_lock = asyncio.Lock()

    async def _get_lock(self, request_id: str) -> asyncio.Lock:
        """Get or create the lock guarding a single request."""
        async with self._locks_lock:
            lock = self._locks.get(request_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[request_id] = lock
            return lock

    async def create(self, payload: EmergencyRequestCreate) -> EmergencyRequest:
        request = EmergencyRequest(
            id=str(uuid.uuid4()),
            status=EmergencyStatus.PENDING,
            created_at=self._clock(),
            **payload.model_dump(),
        )
        self._repository.put(request.id, request)
        logger.info(
            "Created emergency request %s (%s, %s) for customer %s",
            request.id,
            request.issue_type,
            request.urgency_level,
            request.customer_id,
        )
        return request

    def get(self, request_id: str) -> EmergencyRequest:
        request = self._repository.get(request_id)
        if request is None:
            raise NotFoundError(request_id)
        return request

    def list_by_customer(self, customer_id: str) -> list[EmergencyRequest]:
        return [r for r in self._repository.all() if r.customer_id == customer_id]

    def list_by_provider(self, provider_id: str) -> list[EmergencyRequest]:
        return [r for r in self._repository.all() if r.provider_id == provider_id]

    def list_pending(self) -> list[EmergencyRequest]:
        """All requests still waiting for a provider (the dispatch board)."""
        return [
            r for r in self._repository.all() if r.status == EmergencyStatus.PENDING
        ]

    async def update(
        self, request_id: str, update: EmergencyRequestUpdate
    ) -> EmergencyRequest:
        """
        Apply a partial update through the lifecycle rules.

        Raises NotFoundError for an unknown id and InvariantViolation (or its
        InvalidTransition subclass) for a rejected change. Either way nothing
        is written.
        """
        lock = await self._get_lock(request_id)
        async with lock:
            current = self.get(request_id)
            updated = apply_update(current, update, self._clock())
            self._repository.put(request_id, updated)

        if updated.status != current.status:
            logger.info(
                "Emergency request %s: %s -> %s",
                request_id,
                current.status,
                updated.status,
            )
        self._feed.publish(updated)
        return updated

    def subscribe(self, request_id: str) -> AsyncIterator[EmergencyRequest]:
        """
        Push updates for one request, starting with its current state and
        ending at a terminal status. Raises NotFoundError for an unknown id.
        """
        return self._feed.subscribe(self.get(request_id))

    async def assign(self, request_id: str, provider_id: str) -> EmergencyRequest:
        return await self.update(
            request_id,
            EmergencyRequestUpdate(
                provider_id=provider_id, status=EmergencyStatus.ASSIGNED
            ),
        )

    async def cancel(self, request_id: str) -> EmergencyRequest:
        return await self.update(
            request_id, EmergencyRequestUpdate(status=EmergencyStatus.CANCELLED)
        )


def get_store() -> EmergencyRequestStore:
    """Get the request store bound to the global database."""
    db = get_db()
    if db.store is None:
        db.store = EmergencyRequestStore(db.emergency_requests, feed=db.feed)
    return db.store
