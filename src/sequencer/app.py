from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sequencer.config import Config
from sequencer.core.core import Core
from sequencer.core.db import SequenceStore
from sequencer.core.modules.sequence.models import (
    FormatInfo,
    IssuedNumber,
    ReconcileResult,
    SequenceConfig,
    SequenceConfigUpdate,
    SequenceExport,
    SequenceLayoutUpdate,
    SequenceStats,
)
from sequencer.errors import SequenceNotFoundError, ValidationError


class App:
    """Facade for all application operations exposed to the web layer."""

    def __init__(self, config: Config, store: SequenceStore | None = None) -> None:
        self._core = Core(config, store)

    @asynccontextmanager
    async def lifespan(self) -> AsyncGenerator[None]:
        """Application lifespan management - delegates to Core."""
        async with self._core.lifespan():
            yield

    async def list_domains(self) -> dict[str, list[str]]:
        """Domains with their default and configured sequence keys."""
        return await self._core.services.sequence.list_domains()

    async def list_sequences(self, domain: str) -> list[SequenceConfig]:
        return await self._core.services.sequence.list_configs(domain)

    async def get_sequence(self, domain: str, key: str) -> SequenceConfig:
        """Get a configured sequence."""
        config = await self._core.services.sequence.get_config(domain, key)
        if config is None:
            raise SequenceNotFoundError(domain, key)
        return config

    async def update_sequence(self, domain: str, key: str, changes: SequenceConfigUpdate) -> SequenceConfig:
        """Partially update a sequence, creating it from defaults first if needed."""
        return await self._core.services.sequence.update_config(domain, key, changes)

    async def update_domain_layout(self, domain: str, changes: SequenceLayoutUpdate) -> list[SequenceConfig]:
        return await self._core.services.sequence.update_domain_configs(domain, changes)

    def list_formats(self) -> list[FormatInfo]:
        return self._core.services.sequence.list_formats()

    async def reset_sequence(self, domain: str, key: str, preserve_config: bool) -> None:
        await self._core.services.sequence.reset_sequence(domain, key, preserve_config)

    async def reset_domain(self, domain: str) -> int:
        return await self._core.services.sequence.reset_domain(domain)

    async def generate(self, domain: str, key: str, count: int = 1, fallback: bool = False) -> list[IssuedNumber]:
        """Issue codes; with fallback a storage failure returns a flagged degraded code.

        Degraded codes are timestamps, so fallback is limited to single codes.
        """
        sequence = self._core.services.sequence
        if fallback:
            if count != 1:
                raise ValidationError("fallback is only supported for a single code")
            return [await sequence.generate_or_fallback(domain, key)]
        if count == 1:
            return [IssuedNumber(code=await sequence.generate(domain, key))]
        return [IssuedNumber(code=code) for code in await sequence.generate_batch(domain, key, count)]

    async def preview(
        self, domain: str, key: str, count: int = 1, changes: SequenceConfigUpdate | None = None
    ) -> list[str]:
        """Upcoming codes, optionally as unsaved settings changes would render them."""
        return await self._core.services.sequence.preview_next(domain, key, count, changes=changes)

    async def get_stats(self, domain: str, key: str) -> SequenceStats:
        return await self._core.services.sequence.get_stats(domain, key)

    async def reserve(self, domain: str, key: str, code: str) -> bool:
        return await self._core.services.sequence.reserve(domain, key, code)

    async def release(self, domain: str, key: str, code: str) -> bool:
        return await self._core.services.sequence.release(domain, key, code)

    async def validate(self, domain: str, key: str, code: str) -> bool:
        return await self._core.services.sequence.validate(domain, key, code)

    async def set_counter(self, domain: str, key: str, value: int) -> SequenceStats:
        """Override the counter and return the resulting stats."""
        await self._core.services.sequence.set_current_number(domain, key, value)
        return await self._core.services.sequence.get_stats(domain, key)

    async def reconcile(self, domain: str, key: str, codes: list[str]) -> ReconcileResult:
        return await self._core.services.sequence.reconcile(domain, key, codes)

    async def export_used_codes(self, domain: str, key: str) -> list[str]:
        return await self._core.services.sequence.export_used_codes(domain, key)

    async def import_used_codes(self, domain: str, key: str, codes: list[str]) -> int:
        return await self._core.services.sequence.import_used_codes(domain, key, codes)

    async def export_sequences(self, domain: str | None = None) -> SequenceExport:
        return await self._core.services.sequence.export_snapshots(domain)

    async def import_sequences(self, export: SequenceExport) -> int:
        return await self._core.services.sequence.import_snapshots(export)
