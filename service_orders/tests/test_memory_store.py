"""
Unit tests for the in-memory order store.
"""

import pytest

from shared.errors import StoreConflictError
from shared.test_helpers import OrderDataFactory
from service_orders.app.orders.models import PaymentStatus
from service_orders.app.persistence.base import OrderFilter, check_patch
from service_orders.app.persistence.memory import InMemoryOrderStore


class TestOrderFilter:
    """Test cases for OrderFilter."""

    def test_requires_branch_predicate(self):
        """A filter without branches is refused."""
        with pytest.raises(ValueError):
            OrderFilter(branch_ids=frozenset())

    def test_matches(self):
        record = OrderDataFactory.create_order_record("B1", 4)
        assert OrderFilter(frozenset({"B1"}), bill_no=4).matches(record)
        assert not OrderFilter(frozenset({"B2"}), bill_no=4).matches(record)
        assert not OrderFilter(frozenset({"B1"}), payment_status=PaymentStatus.COMPLETED).matches(record)

    def test_immutable_fields_cannot_be_patched(self):
        with pytest.raises(ValueError):
            check_patch({"bill_no": 9})


class TestInMemoryOrderStore:
    """Test cases for InMemoryOrderStore."""

    @pytest.fixture
    def store(self):
        return InMemoryOrderStore()

    @pytest.mark.asyncio
    async def test_insert_assigns_id(self, store):
        """Stored records get an id when they arrive without one."""
        stored = await store.insert(OrderDataFactory.create_order_record(id=""))
        assert stored.id

    @pytest.mark.asyncio
    async def test_duplicate_bill_no_conflicts(self, store):
        """The (branch, bill number) pair is unique."""
        await store.insert(OrderDataFactory.create_order_record("B1", 1, id=""))
        with pytest.raises(StoreConflictError):
            await store.insert(OrderDataFactory.create_order_record("B1", 1, id=""))

        # Same bill number in another branch is fine
        await store.insert(OrderDataFactory.create_order_record("B2", 1, id=""))

    @pytest.mark.asyncio
    async def test_find_orders_by_branch_then_bill(self, store):
        """Results come back ordered by branch id, then bill number."""
        for branch_id, bill_no in [("B2", 1), ("B1", 2), ("B1", 1), ("B3", 1)]:
            await store.insert(OrderDataFactory.create_order_record(branch_id, bill_no, id=""))

        found = await store.find(OrderFilter(frozenset({"B1", "B2"})))

        assert [(r.branch_id, r.bill_no) for r in found] == [("B1", 1), ("B1", 2), ("B2", 1)]

    @pytest.mark.asyncio
    async def test_find_one_prefers_lowest_branch(self, store):
        await store.insert(OrderDataFactory.create_order_record("B2", 1, id=""))
        await store.insert(OrderDataFactory.create_order_record("B1", 1, id=""))

        found = await store.find_one(OrderFilter(frozenset({"B1", "B2"}), bill_no=1))

        assert found.branch_id == "B1"

    @pytest.mark.asyncio
    async def test_find_latest_by_branch(self, store):
        assert await store.find_latest_by_branch("B1") is None
        for bill_no in (1, 3, 2):
            await store.insert(OrderDataFactory.create_order_record("B1", bill_no, id=""))

        latest = await store.find_latest_by_branch("B1")

        assert latest.bill_no == 3

    @pytest.mark.asyncio
    async def test_update_one(self, store):
        """Patches apply to the match and bump updated_at."""
        stored = await store.insert(OrderDataFactory.create_order_record(id=""))

        updated = await store.update_one(OrderFilter.for_record(stored), {"name": "Ravi"})

        assert updated.name == "Ravi"
        assert updated.updated_at != stored.updated_at
        assert (await store.find_one(OrderFilter.for_record(stored))).name == "Ravi"

    @pytest.mark.asyncio
    async def test_update_one_no_match(self, store):
        assert await store.update_one(OrderFilter(frozenset({"B1"}), bill_no=99), {"name": "x"}) is None

    @pytest.mark.asyncio
    async def test_delete_one(self, store):
        """Deleting frees the bill number and reports misses."""
        stored = await store.insert(OrderDataFactory.create_order_record(id=""))

        assert await store.delete_one(OrderFilter.for_record(stored)) is True
        assert await store.delete_one(OrderFilter.for_record(stored)) is False
        await store.insert(OrderDataFactory.create_order_record(id=""))

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, store):
        """Mutating a returned record does not change the store."""
        stored = await store.insert(OrderDataFactory.create_order_record(id=""))
        stored.name = "Mutated"

        again = await store.find_one(OrderFilter.for_record(stored))

        assert again.name == "Asha Rao"

    @pytest.mark.asyncio
    async def test_call_counter(self, store):
        await store.find(OrderFilter(frozenset({"B1"})))
        await store.find(OrderFilter(frozenset({"B1"})))
        assert store.calls["find"] == 2

        store.reset_calls()
        assert store.calls["find"] == 0
