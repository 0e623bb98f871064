"""
Cache invalidation for order writes.

Every write purges each cached view whose result could include or exclude the
affected record. Views are purged for the caller's scope and for every other
scope this instance has cached that contains the record's branch, so a write
made through {B1} also drops views cached for {B1,B2}.

Purges are best effort: a failed delete is logged and counted, never raised,
and never rolls back the committed write.
"""

from collections import defaultdict
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..cache.adapter import CacheAdapter
from ..cache.keys import CacheKeyClass, build_key
from .scope import TenantScope


class WriteOperation(str, Enum):
    """Order writes that stale cached views."""
    CREATE = "create"
    UPDATE = "update"
    PAYMENT_STATUS = "payment_status"
    PARTIAL_PAYMENT = "partial_payment"
    DELETE = "delete"


ALL_VIEWS = (
    CacheKeyClass.ALL_ORDERS,
    CacheKeyClass.ORDER_BY_BILL_NO,
    CacheKeyClass.PENDING_ORDERS,
    CacheKeyClass.PENDING_ORDER_BY_BILL_NO,
)

# Views each write can stale
INVALIDATION_PLAN: Dict[WriteOperation, Tuple[CacheKeyClass, ...]] = {
    # A multi-branch scope may already cache another branch's record under the new bill number
    WriteOperation.CREATE: ALL_VIEWS,
    WriteOperation.UPDATE: ALL_VIEWS,
    # The full listing embeds paymentStatus, so it goes too
    WriteOperation.PAYMENT_STATUS: (
        CacheKeyClass.PENDING_ORDERS,
        CacheKeyClass.PENDING_ORDER_BY_BILL_NO,
        CacheKeyClass.ORDER_BY_BILL_NO,
        CacheKeyClass.ALL_ORDERS,
    ),
    WriteOperation.PARTIAL_PAYMENT: ALL_VIEWS,
    WriteOperation.DELETE: ALL_VIEWS,
}


class ScopeRegistry:
    """Scopes this instance has cached views for, indexed by branch."""

    def __init__(self):
        self._by_branch: Dict[str, Set[TenantScope]] = defaultdict(set)

    def register(self, scope: TenantScope) -> None:
        for branch_id in scope.branch_ids:
            self._by_branch[branch_id].add(scope)

    def scopes_covering(self, branch_id: str) -> List[TenantScope]:
        return sorted(self._by_branch.get(branch_id, ()), key=lambda s: s.render())

    def __len__(self) -> int:
        return len({scope for scopes in self._by_branch.values() for scope in scopes})


class CacheInvalidator:
    """Purges stale order views after committed writes."""

    def __init__(self,
                 cache: CacheAdapter,
                 registry: Optional[ScopeRegistry] = None,
                 *,
                 namespace: Optional[str] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.cache = cache
        self.registry = registry if registry is not None else ScopeRegistry()
        self.namespace = namespace
        self.metrics = metrics
        self.logger = get_logger("orders.invalidation")
        # Purge counters exist only for keys with a store read in flight
        self._generations: Dict[str, int] = {}
        self._readers: Dict[str, int] = {}

    def key_for(self, key_class: CacheKeyClass, scope: TenantScope, bill_no: Optional[int] = None) -> str:
        return build_key(key_class, scope, bill_no, namespace=self.namespace)

    def generation(self, key: str) -> int:
        """Purge counter for ``key``; a read only repopulates if it did not move."""
        return self._generations.get(key, 0)

    def begin_read(self, key: str) -> int:
        """Track a store read for ``key`` and snapshot its purge counter."""
        self._readers[key] = self._readers.get(key, 0) + 1
        return self._generations.setdefault(key, 0)

    def end_read(self, key: str) -> None:
        """Stop tracking a read; the counter is dropped with the last reader."""
        remaining = self._readers.get(key, 0) - 1
        if remaining > 0:
            self._readers[key] = remaining
        else:
            self._readers.pop(key, None)
            self._generations.pop(key, None)

    def tracked_keys(self) -> int:
        return len(self._generations)

    def keys_for(self,
                 operation: WriteOperation,
                 scope: TenantScope,
                 branch_id: str,
                 bill_no: Optional[int] = None) -> List[str]:
        """Every key ``operation`` on (branch_id, bill_no) must purge."""
        scopes = {scope}
        scopes.update(self.registry.scopes_covering(branch_id))

        keys = []
        for affected_scope in sorted(scopes, key=lambda s: s.render()):
            for key_class in INVALIDATION_PLAN[WriteOperation(operation)]:
                if key_class.is_single_record:
                    if bill_no is None:
                        continue
                    keys.append(self.key_for(key_class, affected_scope, bill_no))
                else:
                    keys.append(self.key_for(key_class, affected_scope))
        return keys

    async def invalidate(self,
                         operation: WriteOperation,
                         scope: TenantScope,
                         branch_id: str,
                         bill_no: Optional[int] = None) -> List[str]:
        """Purge the views staled by ``operation``; returns keys that failed."""
        keys = self.keys_for(operation, scope, branch_id, bill_no)
        for key in keys:
            if key in self._generations:
                self._generations[key] += 1

        failed = []
        for key in keys:
            key_class = key_class_of(key, self.namespace)
            if await self.cache.delete(key):
                self._record(key_class, "ok")
            else:
                failed.append(key)
                self._record(key_class, "error")

        if failed:
            self.logger.warning(
                "Cache invalidation incomplete; stale views expire with their TTL",
                operation=WriteOperation(operation).value,
                branch_id=branch_id,
                bill_no=bill_no,
                failed_keys=failed
            )
        else:
            self.logger.debug(
                "Cache invalidated",
                operation=WriteOperation(operation).value,
                branch_id=branch_id,
                bill_no=bill_no
            )
        return failed

    def _record(self, key_class: str, result: str) -> None:
        if self.metrics:
            self.metrics.record_invalidation(key_class, result)


def key_class_of(key: str, namespace: Optional[str] = None) -> str:
    """Key class prefix of a built key."""
    if namespace and key.startswith(namespace + ":"):
        key = key[len(namespace) + 1:]
    return key.split(":", 1)[0]
