"""Tests for SequenceService issuance, resets and repair operations."""

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import anyio
import pytest

from sequencer.core.db import MemorySequenceStore
from sequencer.core.modules.sequence.models import (
    NumberFormat,
    ResetFrequency,
    SequenceConfig,
    SequenceConfigUpdate,
    SequenceState,
)
from sequencer.core.modules.sequence.service import SequenceService, next_value, should_reset
from sequencer.errors import (
    ConfigurationError,
    PersistenceError,
    SequenceDisabledError,
    SequenceExhaustedError,
    SequenceNotFoundError,
    ValidationError,
)

pytestmark = pytest.mark.anyio

INVOICE = {"prefix": "INV", "template": "{prefix}-{year}-{number:0000}"}
BERLIN = ZoneInfo("Europe/Berlin")


class FailingStore(MemorySequenceStore):
    """Store whose backend is unreachable."""

    async def get(self, key):
        raise PersistenceError("connection refused")


class AlwaysConflictStore(MemorySequenceStore):
    """Store where every conditional state write loses the race."""

    async def swap(self, key, value, expected_revision):
        return False


class StateConflictStore(MemorySequenceStore):
    """Store where every update of an existing state loses the race; configs stay readable."""

    async def swap(self, key, value, expected_revision):
        if expected_revision > 0:
            return False
        return await super().swap(key, value, expected_revision)


class InterleavingStore(MemorySequenceStore):
    """Store that lets a competing writer run just before the next state swap."""

    def __init__(self):
        super().__init__()
        self.competitor = None
        self.competitor_results = []

    async def swap(self, key, value, expected_revision):
        if self.competitor is not None and ":sequence:state:" in key:
            competitor, self.competitor = self.competitor, None
            self.competitor_results.append(await competitor())
        return await super().swap(key, value, expected_revision)


class TestGenerate:
    """Tests for sequential code issuance."""

    async def test_invoice_codes_are_sequential(self, service):
        """Test that a fresh yearly invoice sequence starts at 0001 and counts up."""
        await service.initialize("sales", "invoice", INVOICE)
        assert await service.generate("sales", "invoice") == "INV-2025-0001"
        assert await service.generate("sales", "invoice") == "INV-2025-0002"

    async def test_auto_initializes_from_domain_defaults(self, service):
        """Test that the first generate installs the built-in default config."""
        assert await service.generate("logistics", "shipment") == "SHP-2025-000001"
        config = await service.get_config("logistics", "shipment")
        assert config is not None
        assert config.reset_frequency == ResetFrequency.YEARLY

    async def test_unknown_key_uses_generic_fallback(self, service):
        """Test that keys without defaults get an upper-cased prefix."""
        assert await service.generate("sales", "gift-card") == "GIFT-CARD-0001"

    async def test_increment_and_start_from(self, service):
        """Test that values start at start_from and move by increment."""
        await service.initialize(
            "sales", "invoice", {"prefix": "INV", "template": "{prefix}-{number:000}", "start_from": 10, "increment": 5}
        )
        codes = [await service.generate("sales", "invoice") for _ in range(3)]
        assert codes == ["INV-010", "INV-015", "INV-020"]

    async def test_many_codes_are_unique(self, service):
        """Test that sequential and concurrent callers never receive the same code."""
        codes = [await service.generate("sales", "invoice") for _ in range(100)]

        async def issue():
            codes.append(await service.generate("sales", "invoice"))

        async with anyio.create_task_group() as tg:
            for _ in range(100):
                tg.start_soon(issue)

        assert len(codes) == 200
        assert len(set(codes)) == 200

    async def test_same_key_in_different_domains_is_independent(self, service):
        """Test that domains keep separate counters for equal keys."""
        assert await service.generate("sales", "delivery-note") == "DN-2025-0001"
        assert await service.generate("logistics", "delivery-note") == "DN-2025-00001"
        assert await service.generate("sales", "delivery-note") == "DN-2025-0002"

    async def test_invalid_domain_raises(self, service):
        with pytest.raises(ValidationError):
            await service.generate("Sales!", "invoice")

    async def test_invalid_key_raises(self, service):
        with pytest.raises(ValidationError):
            await service.generate("sales", "bad key")

    async def test_disabled_sequence_does_not_advance(self, service):
        """Test that a disabled sequence raises and keeps its counter."""
        await service.generate("sales", "invoice")
        await service.update_config("sales", "invoice", {"enabled": False})

        with pytest.raises(SequenceDisabledError):
            await service.generate("sales", "invoice")

        stats = await service.get_stats("sales", "invoice")
        assert stats.current_number == 1
        assert stats.next_code is None

    async def test_template_without_number_is_exhausted(self, store, clock):
        """Test that a template that cannot vary stops after the collision ceiling."""
        service = SequenceService(store, clock=clock, max_collision_attempts=5)
        await service.initialize("sales", "invoice", {"prefix": "INV", "template": "{prefix}-{year}"})

        assert await service.generate("sales", "invoice") == "INV-2025"
        with pytest.raises(SequenceExhaustedError):
            await service.generate("sales", "invoice")

    async def test_batch(self, service):
        """Test that a batch returns consecutive codes."""
        codes = await service.generate_batch("sales", "invoice", 3)
        assert codes == ["INV-2025-0001", "INV-2025-0002", "INV-2025-0003"]
        assert await service.generate("sales", "invoice") == "INV-2025-0004"

    @pytest.mark.parametrize("count", [0, -1, 1001])
    async def test_batch_size_is_bounded(self, service, count):
        with pytest.raises(ValidationError):
            await service.generate_batch("sales", "invoice", count)


class TestResets:
    """Tests for calendar-based counter resets."""

    async def test_daily_reset(self, service, clock):
        """Test that a daily sequence restarts on the next day and may repeat codes."""
        await service.initialize(
            "logistics", "dock", {"prefix": "D", "template": "{prefix}-{number:000}", "reset_frequency": "daily"}
        )
        assert await service.generate("logistics", "dock") == "D-001"
        assert await service.generate("logistics", "dock") == "D-002"

        clock.moment = datetime(2025, 1, 16, 8, 0, tzinfo=UTC)
        assert await service.generate("logistics", "dock") == "D-001"

    async def test_yearly_reset_at_new_year(self, service, clock):
        """Test that an invoice issued on New Year's Day starts a new yearly run."""
        clock.moment = datetime(2024, 12, 31, 23, 59, tzinfo=UTC)
        assert await service.generate("sales", "invoice") == "INV-2024-0001"
        assert await service.generate("sales", "invoice") == "INV-2024-0002"

        clock.moment = datetime(2025, 1, 1, 0, 0, tzinfo=UTC)
        assert await service.generate("sales", "invoice") == "INV-2025-0001"

    async def test_reservation_after_rollover_survives(self, service, clock):
        """Test that a pending reset is applied before a reservation, not after it."""
        clock.moment = datetime(2024, 12, 31, 12, 0, tzinfo=UTC)
        await service.generate("sales", "invoice")

        clock.moment = datetime(2025, 1, 2, 9, 0, tzinfo=UTC)
        assert await service.reserve("sales", "invoice", "INV-2025-0001")
        assert await service.generate("sales", "invoice") == "INV-2025-0002"

    async def test_monthly_reset(self, service, clock):
        clock.moment = datetime(2025, 1, 31, 18, 0, tzinfo=UTC)
        assert await service.generate("inventory", "movement") == "MOV20250100000001"

        clock.moment = datetime(2025, 2, 1, 6, 0, tzinfo=UTC)
        assert await service.generate("inventory", "movement") == "MOV20250200000001"

    @pytest.mark.parametrize(
        ("frequency", "last", "now", "expected"),
        [
            (ResetFrequency.NEVER, datetime(2020, 1, 1, tzinfo=UTC), datetime(2025, 1, 1, tzinfo=UTC), False),
            (ResetFrequency.DAILY, datetime(2025, 1, 15, 0, 0, tzinfo=UTC), datetime(2025, 1, 15, 23, 59, tzinfo=UTC), False),
            (ResetFrequency.DAILY, datetime(2025, 1, 15, 23, 59, tzinfo=UTC), datetime(2025, 1, 16, 0, 0, tzinfo=UTC), True),
            (ResetFrequency.MONTHLY, datetime(2025, 1, 1, tzinfo=UTC), datetime(2025, 1, 31, tzinfo=UTC), False),
            (ResetFrequency.MONTHLY, datetime(2025, 1, 31, tzinfo=UTC), datetime(2025, 2, 1, tzinfo=UTC), True),
            (ResetFrequency.MONTHLY, datetime(2024, 3, 10, tzinfo=UTC), datetime(2025, 3, 10, tzinfo=UTC), True),
            (ResetFrequency.YEARLY, datetime(2025, 1, 1, tzinfo=UTC), datetime(2025, 12, 31, tzinfo=UTC), False),
            (ResetFrequency.YEARLY, datetime(2024, 12, 31, tzinfo=UTC), datetime(2025, 1, 1, tzinfo=UTC), True),
        ],
    )
    def test_should_reset(self, frequency, last, now, expected):
        config = SequenceConfig(key="invoice", reset_frequency=frequency)
        state = SequenceState(last_reset_at=last)
        assert should_reset(config, state, now) is expected

    def test_yearly_boundary_uses_clock_time_zone(self):
        """Test that 2024-12-31T23:30Z already counts as 2025 for a Berlin clock."""
        config = SequenceConfig(key="invoice", reset_frequency=ResetFrequency.YEARLY)
        state = SequenceState(last_reset_at=datetime(2024, 12, 31, 23, 30, tzinfo=UTC))

        assert not should_reset(config, state, datetime(2025, 1, 1, 9, 0, tzinfo=BERLIN))
        assert should_reset(config, state, datetime(2025, 1, 1, 9, 0, tzinfo=UTC))

    async def test_date_parts_and_reset_follow_clock_time_zone(self, service, clock):
        """Test that a Berlin clock renders and resets by the Berlin calendar."""
        clock.moment = datetime(2025, 1, 1, 0, 30, tzinfo=BERLIN)
        assert await service.generate("sales", "invoice") == "INV-2025-0001"

        clock.moment = datetime(2025, 1, 1, 10, 0, tzinfo=BERLIN)
        assert await service.generate("sales", "invoice") == "INV-2025-0002"

    def test_next_value(self):
        config = SequenceConfig(key="invoice", start_from=100, increment=10)
        assert next_value(config, None) == 100
        assert next_value(config, 100) == 110
        assert next_value(config, 5) == 100


class TestUsedCodes:
    """Tests for reserve, release and bulk import of used codes."""

    async def test_reserved_code_is_skipped(self, service):
        """Test that generate skips a reserved code."""
        await service.set_current_number("sales", "invoice", 9998)
        assert await service.reserve("sales", "invoice", "INV-2025-9999")
        assert await service.generate("sales", "invoice") == "INV-2025-10000"

    async def test_reserve_twice(self, service):
        assert await service.reserve("sales", "invoice", "INV-2025-0001")
        assert not await service.reserve("sales", "invoice", "INV-2025-0001")

    async def test_release(self, service):
        """Test that a released code can be issued again."""
        await service.reserve("sales", "invoice", "INV-2025-0001")
        assert await service.release("sales", "invoice", "INV-2025-0001")
        assert not await service.release("sales", "invoice", "INV-2025-0001")
        assert await service.generate("sales", "invoice") == "INV-2025-0001"

    async def test_release_unknown_sequence_raises(self, service):
        with pytest.raises(SequenceNotFoundError):
            await service.release("sales", "invoice", "INV-2025-0001")

    async def test_import_and_export_used_codes(self, service):
        added = await service.import_used_codes("sales", "invoice", ["INV-2025-0002", "INV-2025-0001", "INV-2025-0001"])
        assert added == 2
        assert await service.import_used_codes("sales", "invoice", ["INV-2025-0001"]) == 0
        assert await service.generate("sales", "invoice") == "INV-2025-0003"
        assert await service.export_used_codes("sales", "invoice") == [
            "INV-2025-0001",
            "INV-2025-0002",
            "INV-2025-0003",
        ]


class TestPreview:
    """Tests for side-effect free previews."""

    async def test_preview_does_not_write(self, service):
        """Test that previewing an unknown key neither creates nor advances it."""
        assert await service.preview_next("sales", "invoice", 3) == ["INV-2025-0001", "INV-2025-0002", "INV-2025-0003"]
        assert await service.get_config("sales", "invoice") is None
        assert await service.generate("sales", "invoice") == "INV-2025-0001"

    async def test_preview_matches_next_generate(self, service):
        await service.generate("sales", "invoice")
        assert await service.preview_next("sales", "invoice") == ["INV-2025-0002"]
        assert await service.preview_next("sales", "invoice") == ["INV-2025-0002"]
        assert await service.generate("sales", "invoice") == "INV-2025-0002"

    async def test_preview_without_auto_init(self, service):
        with pytest.raises(SequenceNotFoundError):
            await service.preview_next("sales", "invoice", auto_init=False)

    async def test_preview_disabled_raises(self, service):
        await service.update_config("sales", "invoice", {"enabled": False})
        with pytest.raises(SequenceDisabledError):
            await service.preview_next("sales", "invoice")

    async def test_preview_unsaved_changes(self, service):
        """Test that proposed settings are previewed without being stored."""
        await service.generate("sales", "invoice")
        changes = SequenceConfigUpdate(template="{prefix}/{number:000000}")

        assert await service.preview_next("sales", "invoice", 2, changes=changes) == ["INV/000002", "INV/000003"]
        assert (await service.get_config("sales", "invoice")).template == "{prefix}-{year}-{number:0000}"
        assert await service.generate("sales", "invoice") == "INV-2025-0002"

    async def test_preview_unsaved_changes_for_unknown_key(self, service):
        codes = await service.preview_next("financial", "invoice", changes={"separator": "", "number_length": 5})
        assert codes == ["INV00001"]
        assert await service.get_config("financial", "invoice") is None

    async def test_preview_invalid_changes_raise(self, service):
        with pytest.raises(ConfigurationError):
            await service.preview_next("sales", "invoice", changes={"template": "{prefix-{number}"})


class TestConfiguration:
    """Tests for config updates and validation."""

    @pytest.mark.parametrize(
        "changes",
        [{"number_length": 0}, {"increment": 0}, {"start_from": -1}, {"template": "{prefix}-{bogus}"}, {"template": " "}],
    )
    async def test_invalid_config_raises(self, service, changes):
        with pytest.raises(ConfigurationError):
            await service.update_config("sales", "invoice", changes)

    async def test_invalid_field_type_raises(self, service):
        with pytest.raises(ConfigurationError):
            await service.update_config("sales", "invoice", {"reset_frequency": "hourly"})

    async def test_template_change_is_not_retroactive(self, service):
        """Test that a template change affects only codes issued afterwards."""
        first = await service.generate("sales", "invoice")
        await service.update_config("sales", "invoice", {"template": "{prefix}/{number:000000}"})

        assert await service.generate("sales", "invoice") == "INV/000002"
        assert await service.export_used_codes("sales", "invoice") == ["INV-2025-0001", "INV/000002"]
        assert first == "INV-2025-0001"

    async def test_update_keeps_other_fields(self, service):
        config = await service.update_config("sales", "invoice", {"prefix": "FAC"})
        assert config.prefix == "FAC"
        assert config.template == "{prefix}-{year}-{number:0000}"
        assert config.key == "invoice"

    async def test_list_configs(self, service):
        await service.generate("sales", "quote")
        await service.generate("sales", "invoice")
        configs = await service.list_configs("sales")
        assert [c.key for c in configs] == ["invoice", "quote"]

    async def test_list_domains(self, service):
        await service.generate("hr", "employee")
        domains = await service.list_domains()
        assert "invoice" in domains["sales"]
        assert domains["financial"] == ["invoice", "bill", "journal", "payment"]
        assert domains["hr"] == ["employee"]

    async def test_update_domain_layout(self, service):
        """Test that a layout change reaches built-in and configured keys of the domain."""
        await service.initialize("financial", "receipt", {"prefix": "RCP", "template": None})

        configs = await service.update_domain_configs(
            "financial", {"format": NumberFormat.PREFIX_NUMBER, "separator": "/", "number_length": 6, "prefix": "X"}
        )
        assert [c.key for c in configs] == ["bill", "invoice", "journal", "payment", "receipt"]
        assert {c.separator for c in configs} == {"/"}

        assert await service.generate("financial", "invoice") == "INV/000001"
        assert await service.generate("financial", "receipt") == "RCP/000001"
        assert len(await service.list_configs("financial")) == 5

    async def test_update_domain_layout_is_all_or_nothing(self, service):
        with pytest.raises(ConfigurationError):
            await service.update_domain_configs("financial", {"number_length": 0})
        assert await service.list_configs("financial") == []

    def test_list_formats(self, service):
        """Test that the layout catalog renders an example for each entry."""
        examples = {info.name: info.example for info in service.list_formats()}
        assert examples["prefix-number"] == "PAY-000001"
        assert examples["number-suffix"] == "000001-X"
        assert examples["prefix-date-number"] == "PAY-20250115-000001"
        assert examples["number-only"] == "000001"


class TestValidate:
    """Tests for code shape validation."""

    async def test_generated_codes_validate(self, service):
        for domain, key in [("sales", "invoice"), ("logistics", "tracking"), ("inventory", "movement")]:
            code = await service.generate(domain, key)
            assert await service.validate(domain, key, code), code

    async def test_foreign_codes_do_not_validate(self, service):
        await service.generate("sales", "invoice")
        assert not await service.validate("sales", "invoice", "QT-2025-0001")
        assert not await service.validate("sales", "invoice", "garbage")

    async def test_unknown_sequence_raises(self, service):
        with pytest.raises(SequenceNotFoundError):
            await service.validate("sales", "invoice", "INV-2025-0001")


class TestInspectionAndRepair:
    """Tests for stats, counter overrides and reconciliation."""

    async def test_stats(self, service):
        await service.generate("sales", "invoice")
        await service.generate("sales", "invoice")

        stats = await service.get_stats("sales", "invoice")
        assert stats.current_number == 2
        assert stats.total_issued == 2
        assert stats.last_code == "INV-2025-0002"
        assert stats.next_code == "INV-2025-0003"
        assert stats.reset_frequency == ResetFrequency.YEARLY

        # Stats must not consume the previewed code
        assert await service.generate("sales", "invoice") == "INV-2025-0003"

    async def test_stats_unknown_sequence_raises(self, service):
        with pytest.raises(SequenceNotFoundError):
            await service.get_stats("sales", "invoice")

    async def test_set_current_number(self, service):
        await service.set_current_number("sales", "invoice", 41)
        assert await service.generate("sales", "invoice") == "INV-2025-0042"

    async def test_set_negative_current_number_raises(self, service):
        with pytest.raises(ValidationError):
            await service.set_current_number("sales", "invoice", -1)

    async def test_reconcile(self, service):
        """Test that the counter is raised to the highest existing code of the current period."""
        result = await service.reconcile(
            "sales", "invoice", ["INV-2025-0041", "INV-2025-0007", "INV-2024-0099", "garbage"]
        )
        assert result.previous_number is None
        assert result.max_found == 41
        assert result.current_number == 41
        assert result.adjusted
        assert result.unmatched == ["INV-2024-0099", "garbage"]
        assert await service.generate("sales", "invoice") == "INV-2025-0042"

    async def test_reconcile_never_lowers_counter(self, service):
        await service.set_current_number("sales", "invoice", 50)
        result = await service.reconcile("sales", "invoice", ["INV-2025-0041"])
        assert not result.adjusted
        assert result.current_number == 50

    async def test_reset_preserving_config(self, service):
        await service.update_config("sales", "invoice", {"prefix": "FAC"})
        await service.generate("sales", "invoice")

        await service.reset_sequence("sales", "invoice")
        assert await service.generate("sales", "invoice") == "FAC-2025-0001"

    async def test_reset_dropping_config(self, service):
        await service.update_config("sales", "invoice", {"prefix": "FAC"})
        await service.generate("sales", "invoice")

        await service.reset_sequence("sales", "invoice", preserve_config=False)
        assert await service.get_config("sales", "invoice") is None
        assert await service.generate("sales", "invoice") == "INV-2025-0001"

    async def test_reset_unknown_sequence_raises(self, service):
        with pytest.raises(SequenceNotFoundError):
            await service.reset_sequence("sales", "invoice")

    async def test_reset_domain(self, service):
        await service.generate("sales", "invoice")
        await service.generate("sales", "quote")
        await service.generate("purchasing", "purchase-order")

        assert await service.reset_domain("sales") == 2
        assert await service.list_configs("sales") == []
        assert len(await service.list_configs("purchasing")) == 1


class TestSnapshots:
    """Tests for export and import of sequences."""

    async def test_export_import_round_trip(self, service, clock):
        """Test that an imported sequence continues where the export left off."""
        await service.generate("sales", "invoice")
        await service.generate("sales", "invoice")
        await service.generate("purchasing", "purchase-order")

        export = await service.export_snapshots()
        assert {(s.domain, s.key) for s in export.sequences} == {("sales", "invoice"), ("purchasing", "purchase-order")}

        restored = SequenceService(MemorySequenceStore(), clock=clock)
        assert await restored.import_snapshots(export) == 2
        assert await restored.generate("sales", "invoice") == "INV-2025-0003"
        assert await restored.generate("purchasing", "purchase-order") == "PO-2025-0002"

    async def test_export_single_domain(self, service):
        await service.generate("sales", "invoice")
        await service.generate("purchasing", "purchase-order")

        export = await service.export_snapshots("sales")
        assert [s.key for s in export.sequences] == ["invoice"]
        assert export.sequences[0].used_codes == ["INV-2025-0001"]

    async def test_import_rejects_mismatched_key(self, service):
        await service.generate("sales", "invoice")
        export = await service.export_snapshots("sales")
        export.sequences[0].key = "quote"

        with pytest.raises(ConfigurationError):
            await service.import_snapshots(export)
        assert await service.get_config("sales", "quote") is None


class TestStorageFailures:
    """Tests for persistence errors and concurrent writers."""

    async def test_unreachable_store_raises(self, clock):
        service = SequenceService(FailingStore(), clock=clock)
        with pytest.raises(PersistenceError):
            await service.generate("sales", "invoice")

    async def test_fallback_issues_degraded_code(self, clock):
        """Test that the fallback path returns a flagged timestamp code."""
        service = SequenceService(FailingStore(), clock=clock)
        issued = await service.generate_or_fallback("sales", "invoice")
        assert issued.degraded
        assert issued.code == f"INV-{int(clock.moment.timestamp() * 1000)}"

    async def test_fallback_not_used_when_store_works(self, service):
        issued = await service.generate_or_fallback("sales", "invoice")
        assert issued.code == "INV-2025-0001"
        assert not issued.degraded

    async def test_concurrent_writer_forces_replay(self, clock):
        """Test that a writer losing the compare-and-swap re-reads and takes the next number."""
        store = InterleavingStore()
        first = SequenceService(store, clock=clock)
        second = SequenceService(store, clock=clock)
        await first.initialize("sales", "invoice")

        store.competitor = lambda: second.generate("sales", "invoice")
        assert await first.generate("sales", "invoice") == "INV-2025-0002"
        assert store.competitor_results == ["INV-2025-0001"]

    async def test_endless_conflicts_raise(self, clock):
        service = SequenceService(AlwaysConflictStore(), clock=clock, max_conflict_retries=3)
        with pytest.raises(PersistenceError):
            await service.generate("sales", "invoice")

    async def test_fallback_uses_stored_prefix(self, clock):
        """Test that a degraded code keeps the configured prefix when only the state write fails."""
        service = SequenceService(StateConflictStore(), clock=clock, max_conflict_retries=3)
        await service.update_config("sales", "invoice", {"prefix": "FAC"})

        issued = await service.generate_or_fallback("sales", "invoice")
        assert issued.degraded
        assert issued.code == f"FAC-{int(clock.moment.timestamp() * 1000)}"
