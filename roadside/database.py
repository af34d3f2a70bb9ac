from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterator, MutableMapping
from pathlib import Path
from typing import TYPE_CHECKING, Generic, Protocol, TypeVar

from roadside import config
from roadside.errors import DirectoryUnavailable
from roadside.models import EmergencyRequest, ServiceProvider
from roadside.tracking import StatusFeed

if TYPE_CHECKING:
    from roadside.store import EmergencyRequestStore

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")


class InMemoryKeyValueDatabase(Generic[K, V]):
    """
    Simple in-memory key/value database. Iteration follows insertion order.
    """

    def __init__(self) -> None:
        self._store: MutableMapping[K, V] = {}

    def put(self, key: K, value: V) -> None:
        self._store[key] = value

    def get(self, key: K) -> V | None:
        return self._store.get(key)

    def all(self) -> list[V]:
        return list(self._store.values())

    def clear(self) -> None:
        self._store.clear()

    def __iter__(self) -> Iterator[V]:
        return iter(self._store.values())

    def __len__(self) -> int:
        return len(self._store)


class EmergencyRequestRepository(Protocol):
    """Persistence for emergency requests keyed by id. Records are never deleted."""

    def get(self, key: str) -> EmergencyRequest | None: ...

    def put(self, key: str, value: EmergencyRequest) -> None: ...

    def all(self) -> list[EmergencyRequest]: ...


class ProviderDirectory(Protocol):
    """Read-only source of provider snapshots for matching."""

    async def list_available_providers(self) -> list[ServiceProvider]: ...


class InMemoryProviderDirectory:
    """Provider directory backed by the in-memory providers table."""

    def __init__(self, providers: InMemoryKeyValueDatabase[str, ServiceProvider]) -> None:
        self._providers = providers

    async def list_available_providers(self) -> list[ServiceProvider]:
        return [
            provider
            for provider in self._providers.all()
            if provider.is_available and provider.is_active
        ]


class RetryingProviderDirectory:
    """
    Wraps a directory and retries failed reads a bounded number of times
    before surfacing DirectoryUnavailable.
    """

    def __init__(
        self,
        inner: ProviderDirectory,
        attempts: int | None = None,
        delay_seconds: float | None = None,
    ) -> None:
        self._inner = inner
        self._attempts = max(
            1, config.DIRECTORY_RETRY_ATTEMPTS if attempts is None else attempts
        )
        self._delay_seconds = (
            config.DIRECTORY_RETRY_DELAY_SECONDS
            if delay_seconds is None
            else delay_seconds
        )

    async def list_available_providers(self) -> list[ServiceProvider]:
        last_error: Exception | None = None
        for attempt in range(1, self._attempts + 1):
            try:
                return await self._inner.list_available_providers()
            except (DirectoryUnavailable, OSError) as exc:
                last_error = exc
                logger.warning(
                    "Provider directory read failed (attempt %d/%d): %s",
                    attempt,
                    self._attempts,
                    exc,
                )
                if attempt < self._attempts:
                    await asyncio.sleep(self._delay_seconds)

        logger.error("Provider directory unavailable after %d attempts", self._attempts)
        raise DirectoryUnavailable(
            f"Provider directory unavailable after {self._attempts} attempts"
        ) from last_error


class Database:
    """Container for all database instances."""

    def __init__(self) -> None:
        self.providers: InMemoryKeyValueDatabase[str, ServiceProvider] = (
            InMemoryKeyValueDatabase()
        )
        self.emergency_requests: InMemoryKeyValueDatabase[str, EmergencyRequest] = (
            InMemoryKeyValueDatabase()
        )
        self.directory: ProviderDirectory = RetryingProviderDirectory(
            InMemoryProviderDirectory(self.providers)
        )
        self.feed = StatusFeed()
        self.store: EmergencyRequestStore | None = None


_db: Database | None = None


def get_db() -> Database:
    """Get the global database instance."""
    global _db
    if _db is None:
        _db = Database()
    return _db


def load_sample_data(db: Database | None = None) -> None:
    """Load sample providers from sample_data.json into the database."""
    if db is None:
        db = get_db()

    sample_data_path = (
        Path(config.SAMPLE_DATA_PATH)
        if config.SAMPLE_DATA_PATH
        else Path(__file__).parent.parent / "sample_data.json"
    )
    with open(sample_data_path) as f:
        data = json.load(f)

    for provider_data in data["providers"]:
        provider = ServiceProvider(**provider_data)
        db.providers.put(provider.id, provider)

    logger.info("Loaded %d sample providers", len(data["providers"]))
