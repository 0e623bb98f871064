"""
Read-through queries over order records.

Every read checks the cache first and only falls back to the store on a miss.
Results, including empty lists, are written back with the configured TTL unless
a write purged the key while the store call was in flight.
"""

from contextlib import nullcontext
from typing import Any, List, Optional

from shared.errors import NotFoundError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..cache.adapter import CacheAdapter
from ..cache.keys import CacheKeyClass
from ..persistence.base import OrderFilter, OrderStore
from .invalidation import CacheInvalidator
from .models import OrderRecord, PaymentStatus, parse_bill_no, records_to_payload
from .scope import TenantScope


class OrderQueryService:
    """Cached order lookups for a tenant scope."""

    def __init__(self,
                 store: OrderStore,
                 cache: CacheAdapter,
                 invalidator: CacheInvalidator,
                 metrics: Optional[MetricsCollector] = None,
                 ttl_seconds: Optional[int] = None):
        self.store = store
        self.cache = cache
        self.invalidator = invalidator
        self.metrics = metrics
        self.ttl_seconds = ttl_seconds
        self.logger = get_logger("orders.queries")

    async def list_orders(self, scope: TenantScope) -> List[OrderRecord]:
        """All orders of the scope's branches."""
        return await self._read_list(CacheKeyClass.ALL_ORDERS, scope, OrderFilter.for_scope(scope))

    async def list_pending_payments(self, scope: TenantScope) -> List[OrderRecord]:
        """Orders of the scope's branches still awaiting payment."""
        order_filter = OrderFilter.for_scope(scope, payment_status=PaymentStatus.PENDING)
        return await self._read_list(CacheKeyClass.PENDING_ORDERS, scope, order_filter)

    async def get_order_by_bill_no(self, scope: TenantScope, bill_no: Any) -> OrderRecord:
        """One order by bill number; the lowest branch id wins within a multi-branch scope."""
        bill_no = parse_bill_no(bill_no)
        order_filter = OrderFilter.for_scope(scope, bill_no=bill_no)
        return await self._read_one(CacheKeyClass.ORDER_BY_BILL_NO, scope, bill_no, order_filter)

    async def get_pending_payment_by_bill_no(self, scope: TenantScope, bill_no: Any) -> OrderRecord:
        """One pending order by bill number."""
        bill_no = parse_bill_no(bill_no)
        order_filter = OrderFilter.for_scope(scope, bill_no=bill_no, payment_status=PaymentStatus.PENDING)
        return await self._read_one(CacheKeyClass.PENDING_ORDER_BY_BILL_NO, scope, bill_no, order_filter)

    async def _read_list(self,
                         key_class: CacheKeyClass,
                         scope: TenantScope,
                         order_filter: OrderFilter) -> List[OrderRecord]:
        key = self.invalidator.key_for(key_class, scope)
        # Registered on hits too; peers share the backend
        self.invalidator.registry.register(scope)
        cached = await self.cache.get(key)
        if isinstance(cached, list):
            return [OrderRecord.from_dict(item) for item in cached]

        generation = self.invalidator.begin_read(key)
        try:
            with self._timed("find"):
                records = await self.store.find(order_filter)
            await self._populate(key, generation, records_to_payload(records))
        finally:
            self.invalidator.end_read(key)
        return records

    async def _read_one(self,
                        key_class: CacheKeyClass,
                        scope: TenantScope,
                        bill_no: int,
                        order_filter: OrderFilter) -> OrderRecord:
        key = self.invalidator.key_for(key_class, scope, bill_no)
        self.invalidator.registry.register(scope)
        cached = await self.cache.get(key)
        if isinstance(cached, dict):
            return OrderRecord.from_dict(cached)

        generation = self.invalidator.begin_read(key)
        try:
            with self._timed("find_one"):
                record = await self.store.find_one(order_filter)
            if record is None:
                raise NotFoundError("Order not found", details={"billNo": bill_no})
            await self._populate(key, generation, record.to_dict())
        finally:
            self.invalidator.end_read(key)
        return record

    async def _populate(self, key: str, generation: int, payload: Any) -> None:
        """Write a store result back unless ``key`` was purged meanwhile."""
        if self.invalidator.generation(key) != generation:
            self.logger.debug("Skipping cache fill for key purged during read", key=key)
            return
        await self.cache.set(key, payload, self.ttl_seconds)

    def _timed(self, operation: str):
        if self.metrics:
            return self.metrics.time_store_operation(operation)
        return nullcontext()
