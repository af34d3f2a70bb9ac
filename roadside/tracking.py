"""
Surfacing request status changes to the requester.

Two ways to observe a request, both of which stop once the request reaches a
terminal status (completed or cancelled):

* ``StatusFeed`` - in-process push channel the request store publishes to;
  subscribe through ``EmergencyRequestStore.subscribe``.
* ``EmergencyTrackingClient`` - polls ``GET /emergency-requests/{id}`` at a
  fixed interval, for clients that only speak HTTP.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta

import httpx

from roadside import config
from roadside.errors import NotFoundError
from roadside.models import EmergencyRequest, EmergencyStatus

logger = logging.getLogger(__name__)


class StatusFeed:
    """Fan-out of request updates to subscribers, keyed by request id."""

    def __init__(self) -> None:
        self._subscribers: dict[str, set[asyncio.Queue[EmergencyRequest]]] = (
            defaultdict(set)
        )

    def publish(self, request: EmergencyRequest) -> None:
        for queue in list(self._subscribers.get(request.id, ())):
            queue.put_nowait(request)

    def subscriber_count(self, request_id: str) -> int:
        return len(self._subscribers.get(request_id, ()))

    def subscribe(self, request: EmergencyRequest) -> AsyncIterator[EmergencyRequest]:
        """
        Yield ``request`` itself, then every update published for it until
        one is terminal.

        The subscription is registered before this returns, so nothing
        published after the snapshot was read can be missed. A request that
        is already terminal yields its snapshot and ends.
        """
        if request.status.is_terminal:
            return self._stream(request, None)
        queue: asyncio.Queue[EmergencyRequest] = asyncio.Queue()
        self._subscribers[request.id].add(queue)
        return self._stream(request, queue)

    async def _stream(
        self,
        snapshot: EmergencyRequest,
        queue: asyncio.Queue[EmergencyRequest] | None,
    ) -> AsyncIterator[EmergencyRequest]:
        try:
            yield snapshot
            if queue is None:
                return
            while True:
                request = await queue.get()
                yield request
                if request.status.is_terminal:
                    return
        finally:
            if queue is not None:
                self._unsubscribe(snapshot.id, queue)

    def _unsubscribe(
        self, request_id: str, queue: asyncio.Queue[EmergencyRequest]
    ) -> None:
        subscribers = self._subscribers.get(request_id)
        if subscribers is not None:
            subscribers.discard(queue)
            if not subscribers:
                del self._subscribers[request_id]


class EmergencyTrackingClient:
    """Polls the dispatch API for one request's state."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        poll_interval_seconds: float | None = None,
    ) -> None:
        self._client = client
        self._poll_interval_seconds = (
            config.TRACKING_POLL_INTERVAL_SECONDS
            if poll_interval_seconds is None
            else poll_interval_seconds
        )

    async def fetch(self, request_id: str) -> EmergencyRequest:
        response = await self._client.get(f"/emergency-requests/{request_id}")
        if response.status_code == 404:
            raise NotFoundError(request_id)
        response.raise_for_status()
        return EmergencyRequest.model_validate(response.json())

    async def watch(self, request_id: str) -> AsyncIterator[EmergencyRequest]:
        """
        Yield the request whenever it changes, re-fetching every poll
        interval. The first snapshot is always yielded; polling stops after
        a terminal status has been yielded.
        """
        previous: EmergencyRequest | None = None
        while True:
            request = await self.fetch(request_id)
            if request != previous:
                yield request
                previous = request
            if request.status.is_terminal:
                logger.debug("Stopped tracking %s at %s", request_id, request.status)
                return
            await asyncio.sleep(self._poll_interval_seconds)


def estimated_time_remaining(
    request: EmergencyRequest, now: datetime | None = None
) -> timedelta | None:
    """Time left until the provider's estimated arrival, never negative."""
    if request.status == EmergencyStatus.PENDING or request.estimated_arrival is None:
        return None
    arrival = request.estimated_arrival
    if arrival.tzinfo is None:
        arrival = arrival.replace(tzinfo=UTC)
    if now is None:
        now = datetime.now(UTC)
    return max(arrival - now, timedelta(0))


def format_eta(request: EmergencyRequest, now: datetime | None = None) -> str | None:
    remaining = estimated_time_remaining(request, now)
    if remaining is None:
        return None
    minutes = int(remaining.total_seconds() // 60)
    if minutes <= 0:
        return "Arrived"
    return f"{minutes} minutes"
