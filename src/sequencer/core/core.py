from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from pymongo import AsyncMongoClient

from sequencer import utils
from sequencer.config import Config
from sequencer.core.db import MemorySequenceStore, MongoSequenceStore, SequenceStore

if TYPE_CHECKING:
    from sequencer.core.modules.sequence.service import SequenceService


class Service:
    """Base class for services with direct store access."""

    def __init__(self, store: SequenceStore) -> None:
        self.store = store

    async def on_start(self) -> None:
        """Initialize service on application startup."""

    async def on_stop(self) -> None:
        """Cleanup service on application shutdown."""


class Services:
    """Service registry holding every service instance of the application."""

    sequence: SequenceService

    def __init__(self, store: SequenceStore, config: Config) -> None:
        from sequencer.core.modules.sequence.service import SequenceService  # noqa: PLC0415

        self.sequence = SequenceService(
            store,
            clock=utils.make_clock(config.timezone),
            max_collision_attempts=config.max_collision_attempts,
            max_conflict_retries=config.max_conflict_retries,
        )
        self._services: list[Service] = [self.sequence]

    async def start_all(self) -> None:
        for service in self._services:
            await service.on_start()

    async def stop_all(self) -> None:
        for service in self._services:
            await service.on_stop()


class Core:
    """Container providing config, store, and all service instances."""

    config: Config
    store: SequenceStore
    services: Services

    def __init__(self, config: Config, store: SequenceStore | None = None) -> None:
        """Initialize core with config and the configured store (or the given one)."""
        self.config = config
        self._mongo_client: AsyncMongoClient[dict[str, Any]] | None = None
        if store is None:
            store = self._create_store(config)
        self.store = store
        self.services = Services(self.store, config)

    def _create_store(self, config: Config) -> SequenceStore:
        if config.storage == "memory":
            return MemorySequenceStore()
        self._mongo_client = AsyncMongoClient(config.database_url)
        database = self._mongo_client.get_database(urlparse(config.database_url).path[1:] or "sequencer")
        return MongoSequenceStore(database.get_collection("sequences"))

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        """Manage application lifecycle - startup and shutdown."""
        await self.on_start()
        try:
            yield
        finally:
            await self.on_stop()

    async def on_start(self) -> None:
        await self.store.on_start()
        await self.services.start_all()

    async def on_stop(self) -> None:
        """Stop services and close the MongoDB connection on shutdown."""
        await self.services.stop_all()
        await self.store.on_stop()
        if self._mongo_client is not None:
            await self._mongo_client.aclose()
