from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

import pydantic
import structlog

from sequencer import utils
from sequencer.core.core import Service
from sequencer.core.db import SequenceStore
from sequencer.core.modules.sequence import formatter
from sequencer.core.modules.sequence.defaults import DOMAIN_DEFAULTS, default_config, default_keys
from sequencer.core.modules.sequence.models import (
    FormatInfo,
    IssuedNumber,
    NumberFormat,
    ReconcileResult,
    ResetFrequency,
    SequenceConfig,
    SequenceConfigUpdate,
    SequenceExport,
    SequenceLayoutUpdate,
    SequenceSnapshot,
    SequenceState,
    SequenceStats,
)
from sequencer.core.modules.sequence.registry import CONFIG_SEGMENT, SequenceRegistry
from sequencer.errors import (
    ConfigurationError,
    PersistenceError,
    SequenceDisabledError,
    SequenceExhaustedError,
    SequenceNotFoundError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

MAX_BATCH_SIZE = 1000


def should_reset(config: SequenceConfig, state: SequenceState, now: datetime) -> bool:
    """Whether a calendar boundary of the reset frequency lies between the last reset and now."""
    if config.reset_frequency == ResetFrequency.NEVER:
        return False

    last = state.last_reset_at
    if now.tzinfo is not None and last.tzinfo is not None:
        last = last.astimezone(now.tzinfo)

    match config.reset_frequency:
        case ResetFrequency.DAILY:
            return last.date() != now.date()
        case ResetFrequency.MONTHLY:
            return (last.year, last.month) != (now.year, now.month)
        case ResetFrequency.YEARLY:
            return last.year != now.year
    return False


def next_value(config: SequenceConfig, current_number: int | None) -> int:
    """Counter value the next issuance uses; never below start_from."""
    if current_number is None:
        return config.start_from
    return max(current_number + config.increment, config.start_from)


class SequenceService(Service):
    """Issues unique codes per (domain, key) with calendar resets.

    State writes go through the registry's compare-and-swap: when another
    writer changed the state in between, the state is re-read and the
    operation replayed, up to ``max_conflict_retries`` times.
    """

    def __init__(
        self,
        store: SequenceStore,
        clock: utils.Clock = utils.now,
        max_collision_attempts: int = 1000,
        max_conflict_retries: int = 20,
    ) -> None:
        super().__init__(store)
        self._clock = clock
        self._max_collision_attempts = max_collision_attempts
        self._max_conflict_retries = max_conflict_retries

    def registry(self, domain: str) -> SequenceRegistry:
        if not utils.is_slug(domain):
            raise ValidationError(f"Invalid domain name: '{domain}'")
        return SequenceRegistry(self.store, domain)

    # -- configuration -------------------------------------------------------

    async def initialize(
        self, domain: str, key: str, overrides: SequenceConfigUpdate | dict[str, Any] | None = None
    ) -> SequenceConfig:
        """Install the default config (merged with overrides) and a zero state; no-op if configured."""
        registry = self.registry(domain)
        if not utils.is_slug(key):
            raise ValidationError(f"Invalid sequence key: '{key}'")

        existing = await registry.get_config(key)
        if existing is not None:
            return existing

        config = _apply_changes(default_config(domain, key), overrides)
        await registry.put_config(key, config)
        # Fails harmlessly when a concurrent caller already wrote the state
        await registry.swap_state(key, SequenceState(last_reset_at=self._clock()))
        logger.info("sequence_initialized", domain=domain, key=key, prefix=config.prefix, template=config.template)
        return config

    async def get_config(self, domain: str, key: str) -> SequenceConfig | None:
        return await self.registry(domain).get_config(key)

    async def list_configs(self, domain: str) -> list[SequenceConfig]:
        registry = self.registry(domain)
        configs = []
        for key in await registry.list_keys():
            config = await registry.get_config(key)
            if config is not None:
                configs.append(config)
        return configs

    async def update_config(
        self, domain: str, key: str, changes: SequenceConfigUpdate | dict[str, Any]
    ) -> SequenceConfig:
        """Apply a partial config update. Codes issued earlier are left untouched."""
        current = await self.initialize(domain, key)
        config = _apply_changes(current, changes)
        await self.registry(domain).put_config(key, config)
        logger.info("sequence_config_updated", domain=domain, key=key, config=config.model_dump(mode="json"))
        return config

    async def update_domain_configs(
        self, domain: str, changes: SequenceLayoutUpdate | dict[str, Any]
    ) -> list[SequenceConfig]:
        """Apply format, separator and number_length to every default and configured key of a domain.

        All new configs are checked before any is written.
        """
        if isinstance(changes, SequenceLayoutUpdate):
            updates = changes.model_dump(exclude_unset=True)
        else:
            updates = {k: v for k, v in changes.items() if k in SequenceLayoutUpdate.model_fields}
        registry = self.registry(domain)
        keys = sorted(set(default_keys(domain)) | set(await registry.list_keys()))

        configs = []
        for key in keys:
            current = await registry.get_config(key) or default_config(domain, key)
            configs.append(_apply_changes(current, updates))

        for config in configs:
            await self.initialize(domain, config.key)
            await registry.put_config(config.key, config)
        logger.info("sequence_domain_layout_updated", domain=domain, count=len(configs), **updates)
        return configs

    def list_formats(self, prefix: str = "PAY") -> list[FormatInfo]:
        """Catalog of code layouts with an example rendered for today."""
        now = self._clock()
        catalog = []
        for number_format in NumberFormat:
            config = SequenceConfig(key="example", prefix=prefix, suffix="X", format=number_format, number_length=6)
            catalog.append(
                FormatInfo(
                    name=number_format.value,
                    title=formatter.FORMAT_TITLES[number_format],
                    format=number_format,
                    example=formatter.format_code(config, 1, now),
                )
            )
        for name, (title, template) in formatter.TEMPLATE_PRESETS.items():
            config = SequenceConfig(key="example", prefix=prefix, template=template, number_length=6)
            catalog.append(
                FormatInfo(name=name, title=title, template=template, example=formatter.format_code(config, 1, now))
            )
        return catalog

    async def reset_sequence(self, domain: str, key: str, preserve_config: bool = True) -> None:
        """Restart the counter (keeping the config), or drop the sequence entirely."""
        registry, _ = await self._require(domain, key)
        if preserve_config:
            await registry.put_state(key, SequenceState(last_reset_at=self._clock()))
        else:
            await registry.delete_config(key)
            await registry.delete_state(key)
        logger.info("sequence_reset", domain=domain, key=key, preserve_config=preserve_config)

    async def reset_domain(self, domain: str) -> int:
        """Drop every sequence of a domain; returns how many configs were removed."""
        registry = self.registry(domain)
        keys = await registry.list_keys()
        for key in keys:
            await registry.delete_config(key)
            await registry.delete_state(key)
        logger.info("sequence_domain_reset", domain=domain, count=len(keys))
        return len(keys)

    async def list_domains(self) -> dict[str, list[str]]:
        """Known domains with their keys: built-in defaults plus anything configured."""
        domains: dict[str, list[str]] = {name: default_keys(name) for name in DOMAIN_DEFAULTS}
        for storage_key in await self.store.keys(""):
            domain, sep, key = storage_key.partition(f":{CONFIG_SEGMENT}")
            if sep:
                keys = domains.setdefault(domain, [])
                if key not in keys:
                    keys.append(key)
        return domains

    # -- issuance ------------------------------------------------------------

    async def generate(self, domain: str, key: str) -> str:
        """Issue the next code of a sequence, initializing it on first use."""
        codes = await self._issue(domain, key, 1)
        return codes[0]

    async def generate_batch(self, domain: str, key: str, count: int) -> list[str]:
        """Issue count consecutive codes in one state write."""
        if not 1 <= count <= MAX_BATCH_SIZE:
            raise ValidationError(f"Batch size must be between 1 and {MAX_BATCH_SIZE}")
        return await self._issue(domain, key, count)

    async def generate_or_fallback(self, domain: str, key: str) -> IssuedNumber:
        """Like generate, but a storage failure yields a flagged timestamp code instead of an error.

        Degraded codes are not recorded as used and carry no uniqueness guarantee.
        """
        try:
            return IssuedNumber(code=await self.generate(domain, key))
        except PersistenceError as e:
            try:
                config = await self.registry(domain).get_config(key)
            except PersistenceError:
                config = None
            prefix = (config or default_config(domain, key)).prefix or key.upper()
            code = f"{prefix}-{utils.epoch_millis(self._clock())}"
            logger.warning("sequence_degraded_code_issued", domain=domain, key=key, code=code, error=str(e))
            return IssuedNumber(code=code, degraded=True)

    async def preview_next(
        self,
        domain: str,
        key: str,
        count: int = 1,
        auto_init: bool = True,
        changes: SequenceConfigUpdate | dict[str, Any] | None = None,
    ) -> list[str]:
        """Codes the next count generate calls would return. Writes nothing.

        An unknown key is previewed with its default config, or raises
        SequenceNotFoundError when auto_init is False. With changes, the
        preview uses the config those unsaved settings would produce.
        """
        if not 1 <= count <= MAX_BATCH_SIZE:
            raise ValidationError(f"Preview size must be between 1 and {MAX_BATCH_SIZE}")
        registry = self.registry(domain)
        if not utils.is_slug(key):
            raise ValidationError(f"Invalid sequence key: '{key}'")
        config = await registry.get_config(key)
        if config is None:
            if not auto_init:
                raise SequenceNotFoundError(domain, key)
            config = default_config(domain, key)
        if changes is not None:
            config = _apply_changes(config, changes)
        if not config.enabled:
            raise SequenceDisabledError(domain, key)

        state = await registry.get_state(key)
        return self._advance(domain, config, state, self._clock(), count)

    async def _issue(self, domain: str, key: str, count: int) -> list[str]:
        config = await self.initialize(domain, key)
        if not config.enabled:
            raise SequenceDisabledError(domain, key)

        def issue(state: SequenceState, now: datetime) -> tuple[list[str], bool]:
            return self._advance(domain, config, state, now, count), True

        codes = await self._update_state(domain, key, issue)
        logger.info("sequence_generated", domain=domain, key=key, codes=codes)
        return codes

    def _advance(
        self, domain: str, config: SequenceConfig, state: SequenceState, now: datetime, count: int
    ) -> list[str]:
        """Move state forward by count issuances, skipping used codes; returns the new codes."""
        if should_reset(config, state, now):
            _restart(state, now)

        codes: list[str] = []
        for _ in range(count):
            for _attempt in range(self._max_collision_attempts):
                state.current_number = next_value(config, state.current_number)
                code = formatter.format_code(config, state.current_number, now)
                if code not in state.used_codes:
                    break
            else:
                raise SequenceExhaustedError(domain, key=config.key, attempts=self._max_collision_attempts)
            state.used_codes.add(code)
            codes.append(code)

        state.last_code = codes[-1]
        return codes

    # -- used codes ----------------------------------------------------------

    async def reserve(self, domain: str, key: str, code: str) -> bool:
        """Mark a code as used so generate skips it. False if it was already used."""
        await self.initialize(domain, key)

        def add(state: SequenceState, _: datetime) -> tuple[bool, bool]:
            if code in state.used_codes:
                return False, False
            state.used_codes.add(code)
            return True, True

        reserved = await self._update_state(domain, key, add)
        logger.debug("sequence_code_reserved", domain=domain, key=key, code=code, reserved=reserved)
        return reserved

    async def release(self, domain: str, key: str, code: str) -> bool:
        """Remove a code from the used set. False if it was not there."""
        await self._require(domain, key)

        def remove(state: SequenceState, _: datetime) -> tuple[bool, bool]:
            if code not in state.used_codes:
                return False, False
            state.used_codes.discard(code)
            return True, True

        released = await self._update_state(domain, key, remove)
        logger.debug("sequence_code_released", domain=domain, key=key, code=code, released=released)
        return released

    async def import_used_codes(self, domain: str, key: str, codes: Iterable[str]) -> int:
        """Bulk reserve; returns how many codes were newly marked used."""
        await self.initialize(domain, key)
        incoming = set(codes)

        def merge(state: SequenceState, _: datetime) -> tuple[int, bool]:
            added = len(incoming - state.used_codes)
            state.used_codes |= incoming
            return added, added > 0

        added = await self._update_state(domain, key, merge)
        logger.info("sequence_used_codes_imported", domain=domain, key=key, count=len(incoming), added=added)
        return added

    async def export_used_codes(self, domain: str, key: str) -> list[str]:
        registry, _ = await self._require(domain, key)
        return sorted((await registry.get_state(key)).used_codes)

    # -- inspection and repair -----------------------------------------------

    async def validate(self, domain: str, key: str, code: str) -> bool:
        """Whether code has the shape the sequence's current config produces."""
        config = await self.get_config(domain, key)
        if config is None:
            raise SequenceNotFoundError(domain, key)
        return formatter.matches(config, code)

    async def get_stats(self, domain: str, key: str) -> SequenceStats:
        registry, config = await self._require(domain, key)
        state = await registry.get_state(key)
        next_code = None
        if config.enabled:
            next_code = self._advance(domain, config, state.model_copy(deep=True), self._clock(), 1)[0]
        return SequenceStats(
            domain=domain,
            key=key,
            enabled=config.enabled,
            current_number=state.current_number,
            total_issued=len(state.used_codes),
            last_code=state.last_code,
            next_code=next_code,
            last_reset_at=state.last_reset_at,
            reset_frequency=config.reset_frequency,
        )

    async def set_current_number(self, domain: str, key: str, value: int) -> None:
        """Operator override of the counter; the next code uses value + increment."""
        if value < 0:
            raise ValidationError("Counter value must not be negative")
        await self.initialize(domain, key)

        def assign(state: SequenceState, _: datetime) -> tuple[None, bool]:
            state.current_number = value
            return None, True

        await self._update_state(domain, key, assign)
        logger.info("sequence_counter_set", domain=domain, key=key, value=value)

    async def reconcile(self, domain: str, key: str, existing_codes: Iterable[str]) -> ReconcileResult:
        """Align the counter with codes that already exist outside the sequence.

        Codes this sequence would produce in the current period are marked used,
        and the counter is raised to the highest number among them. Other codes
        are reported as unmatched.
        """
        config = await self.initialize(domain, key)
        codes = list(existing_codes)

        def align(state: SequenceState, now: datetime) -> tuple[ReconcileResult, bool]:
            found: dict[str, int] = {}
            unmatched: list[str] = []
            for code in codes:
                number = formatter.extract_number(config, code)
                if number is not None and formatter.format_code(config, number, now) == code:
                    found[code] = number
                else:
                    unmatched.append(code)

            previous = state.current_number
            max_found = max(found.values(), default=None)
            adjusted = max_found is not None and (previous is None or max_found > previous)
            if adjusted:
                state.current_number = max_found
            new_codes = set(found) - state.used_codes
            state.used_codes |= new_codes
            result = ReconcileResult(
                previous_number=previous,
                current_number=state.current_number,
                max_found=max_found,
                adjusted=adjusted,
                unmatched=unmatched,
            )
            return result, adjusted or bool(new_codes)

        result = await self._update_state(domain, key, align)
        if result.adjusted:
            logger.warning(
                "sequence_counter_reconciled",
                domain=domain,
                key=key,
                previous=result.previous_number,
                current=result.current_number,
            )
        return result

    # -- backup --------------------------------------------------------------

    async def export_snapshots(self, domain: str | None = None) -> SequenceExport:
        domains = [domain] if domain is not None else list(await self.list_domains())
        snapshots: list[SequenceSnapshot] = []
        for name in domains:
            registry = self.registry(name)
            for key in await registry.list_keys():
                config = await registry.get_config(key)
                if config is None:
                    continue
                state = await registry.get_state(key)
                snapshots.append(
                    SequenceSnapshot(
                        domain=name,
                        key=key,
                        config=config,
                        current_number=state.current_number,
                        last_reset_at=state.last_reset_at,
                        used_codes=sorted(state.used_codes),
                    )
                )
        return SequenceExport(sequences=snapshots, exported_at=self._clock())

    async def import_snapshots(self, export: SequenceExport) -> int:
        """Restore configs and counters from an export, replacing existing ones."""
        for snapshot in export.sequences:
            if snapshot.config.key != snapshot.key:
                raise ConfigurationError(f"Snapshot key '{snapshot.key}' does not match config key")
            if not utils.is_slug(snapshot.key):
                raise ValidationError(f"Invalid sequence key: '{snapshot.key}'")
            formatter.check_config(snapshot.config)
            self.registry(snapshot.domain)

        for snapshot in export.sequences:
            registry = self.registry(snapshot.domain)
            await registry.put_config(snapshot.key, snapshot.config)
            await registry.put_state(
                snapshot.key,
                SequenceState(
                    current_number=snapshot.current_number,
                    last_reset_at=snapshot.last_reset_at,
                    used_codes=set(snapshot.used_codes),
                ),
            )
        logger.info("sequence_snapshots_imported", count=len(export.sequences), exported_at=export.exported_at)
        return len(export.sequences)

    # -- helpers -------------------------------------------------------------

    async def _require(self, domain: str, key: str) -> tuple[SequenceRegistry, SequenceConfig]:
        registry = self.registry(domain)
        config = await registry.get_config(key)
        if config is None:
            raise SequenceNotFoundError(domain, key)
        return registry, config

    async def _update_state[T](
        self, domain: str, key: str, mutate: Callable[[SequenceState, datetime], tuple[T, bool]]
    ) -> T:
        """Read-modify-write of a state under compare-and-swap.

        mutate returns (result, changed); an unchanged state is not written.
        Pending calendar resets are applied before mutate runs.
        """
        registry = self.registry(domain)
        config = await registry.get_config(key)
        for _ in range(self._max_conflict_retries):
            state = await registry.get_state(key)
            now = self._clock()
            reset = config is not None and should_reset(config, state, now)
            if reset:
                _restart(state, now)
            result, changed = mutate(state, now)
            if not (changed or reset):
                return result
            if await registry.swap_state(key, state):
                return result
            logger.debug("sequence_write_conflict", domain=domain, key=key, revision=state.revision)
        raise PersistenceError(
            f"Sequence '{domain}/{key}' state changed concurrently {self._max_conflict_retries} times in a row"
        )


def _restart(state: SequenceState, now: datetime) -> None:
    state.current_number = None
    state.used_codes.clear()
    state.last_code = None
    state.last_reset_at = now


def _apply_changes(base: SequenceConfig, changes: SequenceConfigUpdate | dict[str, Any] | None) -> SequenceConfig:
    if changes is None:
        updates: dict[str, Any] = {}
    elif isinstance(changes, SequenceConfigUpdate):
        updates = changes.model_dump(exclude_unset=True)
    else:
        updates = dict(changes)
    updates.pop("key", None)

    try:
        config = SequenceConfig.model_validate({**base.model_dump(), **updates})
    except pydantic.ValidationError as e:
        raise ConfigurationError(f"Invalid sequence configuration: {e.errors()[0]['msg']}") from e
    formatter.check_config(config)
    return config
