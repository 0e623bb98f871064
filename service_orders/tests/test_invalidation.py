"""
Unit tests for cache invalidation planning.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from shared.test_helpers import OrderDataFactory
from service_orders.app.cache.keys import CacheKeyClass
from service_orders.app.orders.invalidation import (
    INVALIDATION_PLAN, CacheInvalidator, ScopeRegistry, WriteOperation, key_class_of
)


class TestScopeRegistry:
    """Test cases for ScopeRegistry."""

    def test_scopes_covering(self):
        registry = ScopeRegistry()
        narrow = OrderDataFactory.scope("B1")
        wide = OrderDataFactory.scope("B1", "B2")
        other = OrderDataFactory.scope("B3")
        for scope in (narrow, wide, other, wide):
            registry.register(scope)

        assert registry.scopes_covering("B1") == [narrow, wide]
        assert registry.scopes_covering("B2") == [wide]
        assert registry.scopes_covering("B9") == []
        assert len(registry) == 3


class TestCacheInvalidator:
    """Test cases for CacheInvalidator."""

    @pytest.fixture
    def cache(self):
        cache = MagicMock()
        cache.delete = AsyncMock(return_value=True)
        return cache

    @pytest.fixture
    def invalidator(self, cache):
        return CacheInvalidator(cache, namespace="optics")

    @pytest.mark.parametrize("operation,expected", [
        (WriteOperation.CREATE, {"allFormData:B1", "formData:4:B1", "pendingPayments:B1", "pendingPayment:4:B1"}),
        (WriteOperation.UPDATE, {"allFormData:B1", "formData:4:B1", "pendingPayments:B1", "pendingPayment:4:B1"}),
        (WriteOperation.PAYMENT_STATUS,
         {"allFormData:B1", "formData:4:B1", "pendingPayments:B1", "pendingPayment:4:B1"}),
        (WriteOperation.PARTIAL_PAYMENT,
         {"allFormData:B1", "formData:4:B1", "pendingPayments:B1", "pendingPayment:4:B1"}),
        (WriteOperation.DELETE, {"allFormData:B1", "formData:4:B1", "pendingPayments:B1", "pendingPayment:4:B1"}),
    ])
    def test_keys_per_operation(self, invalidator, operation, expected):
        keys = invalidator.keys_for(operation, OrderDataFactory.scope("B1"), "B1", 4)
        assert set(keys) == {f"optics:{key}" for key in expected}

    def test_every_operation_has_a_plan(self):
        assert set(INVALIDATION_PLAN) == set(WriteOperation)

    def test_registered_wider_scopes_included(self, invalidator):
        """Keys of every cached scope containing the branch are purged."""
        invalidator.registry.register(OrderDataFactory.scope("B1", "B2"))
        invalidator.registry.register(OrderDataFactory.scope("B2"))

        keys = invalidator.keys_for(WriteOperation.CREATE, OrderDataFactory.scope("B1"), "B1")

        assert set(keys) == {
            "optics:allFormData:B1", "optics:pendingPayments:B1",
            "optics:allFormData:B1,B2", "optics:pendingPayments:B1,B2",
        }

    @pytest.mark.asyncio
    async def test_invalidate_bumps_generations(self, invalidator, cache):
        """Keys with a read in flight get their purge counter moved."""
        scope = OrderDataFactory.scope("B1")
        key = invalidator.key_for(CacheKeyClass.ALL_ORDERS, scope)
        before = invalidator.begin_read(key)

        failed = await invalidator.invalidate(WriteOperation.DELETE, scope, "B1", 1)

        assert failed == []
        assert invalidator.generation(key) == before + 1
        assert cache.delete.await_count == 4

        invalidator.end_read(key)
        assert invalidator.tracked_keys() == 0

    def test_counter_outlives_earlier_reader(self, invalidator):
        """The counter is kept until the last overlapping reader finishes."""
        key = invalidator.key_for(CacheKeyClass.ALL_ORDERS, OrderDataFactory.scope("B1"))
        invalidator.begin_read(key)
        invalidator.begin_read(key)

        invalidator.end_read(key)
        assert invalidator.tracked_keys() == 1
        invalidator.end_read(key)
        assert invalidator.tracked_keys() == 0

    @pytest.mark.asyncio
    async def test_purge_counters_stay_bounded(self, invalidator):
        """Writes with no read in flight leave no counters behind."""
        scope = OrderDataFactory.scope("B1")
        for bill_no in range(1, 201):
            for operation in (WriteOperation.CREATE, WriteOperation.UPDATE, WriteOperation.DELETE):
                await invalidator.invalidate(operation, scope, "B1", bill_no)

        assert invalidator.tracked_keys() == 0

    @pytest.mark.asyncio
    async def test_invalidate_reports_failures(self, invalidator, cache):
        """Failed deletes are returned, not raised."""
        cache.delete = AsyncMock(side_effect=[True, False, True, True])

        failed = await invalidator.invalidate(WriteOperation.CREATE, OrderDataFactory.scope("B1"), "B1", 1)

        assert failed == ["optics:formData:1:B1"]

    def test_key_class_of(self):
        assert key_class_of("optics:formData:3:B1,B2", "optics") == "formData"
        assert key_class_of("allFormData:B1") == "allFormData"
