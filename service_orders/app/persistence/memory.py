"""
In-memory record store.

Used for local runs and tests. Records are copied on the way in and out so
callers never share state with the store, and every operation yields to the
event loop once the way a network driver would.
"""

import asyncio
import uuid
from collections import Counter
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from shared.errors import StoreConflictError
from shared.logging import get_logger
from ..orders.models import OrderRecord, utcnow_iso
from .base import OrderFilter, OrderStore, check_patch


def _copy(record: OrderRecord) -> OrderRecord:
    return OrderRecord.from_dict(record.to_dict())


class InMemoryOrderStore(OrderStore):
    """Dict-backed store with a unique (branch, bill number) index."""

    name = "memory"

    def __init__(self):
        self._records: Dict[str, OrderRecord] = {}
        self._bill_index: Dict[Tuple[str, int], str] = {}
        self.calls: Counter = Counter()
        self.logger = get_logger("orders.persistence.memory")

    async def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        await asyncio.sleep(0)

    def _sorted_matches(self, order_filter: OrderFilter) -> List[OrderRecord]:
        matches = [r for r in self._records.values() if order_filter.matches(r)]
        return sorted(matches, key=lambda r: (r.branch_id, r.bill_no))

    async def find(self, order_filter: OrderFilter) -> List[OrderRecord]:
        await self._enter("find")
        return [_copy(r) for r in self._sorted_matches(order_filter)]

    async def find_one(self, order_filter: OrderFilter) -> Optional[OrderRecord]:
        await self._enter("find_one")
        matches = self._sorted_matches(order_filter)
        return _copy(matches[0]) if matches else None

    async def find_latest_by_branch(self, branch_id: str) -> Optional[OrderRecord]:
        await self._enter("find_latest_by_branch")
        in_branch = [r for r in self._records.values() if r.branch_id == branch_id]
        if not in_branch:
            return None
        return _copy(max(in_branch, key=lambda r: r.bill_no))

    async def insert(self, record: OrderRecord) -> OrderRecord:
        await self._enter("insert")
        index_key = (record.branch_id, record.bill_no)
        if index_key in self._bill_index:
            raise StoreConflictError(
                "Duplicate bill number",
                details={"branchId": record.branch_id, "billNo": record.bill_no}
            )

        stored = _copy(record)
        if not stored.id:
            stored.id = uuid.uuid4().hex
        self._records[stored.id] = stored
        self._bill_index[index_key] = stored.id
        self.logger.debug("Order inserted", order_id=stored.id, branch_id=stored.branch_id, bill_no=stored.bill_no)
        return _copy(stored)

    async def update_one(self, order_filter: OrderFilter, patch: Dict[str, Any]) -> Optional[OrderRecord]:
        await self._enter("update_one")
        check_patch(patch)
        matches = self._sorted_matches(order_filter)
        if not matches:
            return None

        current = matches[0]
        updated = replace(current, **patch)
        if "updated_at" not in patch:
            updated.updated_at = utcnow_iso()
        self._records[current.id] = _copy(updated)
        return _copy(updated)

    async def delete_one(self, order_filter: OrderFilter) -> bool:
        await self._enter("delete_one")
        matches = self._sorted_matches(order_filter)
        if not matches:
            return False

        target = matches[0]
        del self._records[target.id]
        del self._bill_index[(target.branch_id, target.bill_no)]
        return True

    def reset_calls(self) -> None:
        self.calls.clear()
