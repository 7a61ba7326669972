"""Tests for namespaced config and state storage."""

import pytest

from sequencer.core.modules.sequence.models import SequenceConfig, SequenceState
from sequencer.core.modules.sequence.registry import SequenceRegistry

pytestmark = pytest.mark.anyio


class TestSequenceRegistry:
    """Tests for SequenceRegistry."""

    async def test_storage_keys_are_namespaced(self, store):
        """Test that equal keys in two domains are stored separately."""
        sales = SequenceRegistry(store, "sales")
        logistics = SequenceRegistry(store, "logistics")
        await sales.put_config("delivery-note", SequenceConfig(key="delivery-note", prefix="DN"))
        await logistics.put_config("delivery-note", SequenceConfig(key="delivery-note", prefix="LDN"))

        assert await store.keys("") == [
            "logistics:sequence:config:delivery-note",
            "sales:sequence:config:delivery-note",
        ]
        assert (await sales.get_config("delivery-note")).prefix == "DN"
        assert (await logistics.get_config("delivery-note")).prefix == "LDN"

    async def test_missing_config(self, store):
        assert await SequenceRegistry(store, "sales").get_config("invoice") is None

    async def test_missing_state_is_zero(self, store):
        """Test that a missing state reads as a fresh state at revision 0."""
        state = await SequenceRegistry(store, "sales").get_state("invoice")
        assert state.current_number is None
        assert state.used_codes == set()
        assert state.revision == 0

    async def test_swap_requires_current_revision(self, store):
        """Test that a swap based on a stale revision is rejected."""
        registry = SequenceRegistry(store, "sales")
        assert await registry.swap_state("invoice", SequenceState(current_number=1))

        stale = await registry.get_state("invoice")
        fresh = await registry.get_state("invoice")
        assert stale.revision == 1

        fresh.current_number = 2
        assert await registry.swap_state("invoice", fresh)

        stale.current_number = 5
        assert not await registry.swap_state("invoice", stale)
        assert (await registry.get_state("invoice")).current_number == 2

    async def test_swap_on_new_record_fails_if_it_exists(self, store):
        registry = SequenceRegistry(store, "sales")
        assert await registry.swap_state("invoice", SequenceState())
        assert not await registry.swap_state("invoice", SequenceState())

    async def test_used_codes_round_trip(self, store):
        registry = SequenceRegistry(store, "sales")
        await registry.put_state("invoice", SequenceState(used_codes={"B", "A"}, last_code="B"))

        state = await registry.get_state("invoice")
        assert state.used_codes == {"A", "B"}
        assert state.last_code == "B"

    async def test_list_and_delete(self, store):
        registry = SequenceRegistry(store, "sales")
        for key in ("quote", "invoice"):
            await registry.put_config(key, SequenceConfig(key=key))
            await registry.put_state(key, SequenceState())

        assert await registry.list_keys() == ["invoice", "quote"]
        assert await registry.delete_config("quote")
        assert await registry.delete_state("quote")
        assert not await registry.delete_config("quote")
        assert await registry.list_keys() == ["invoice"]
