"""
Record store interface for order records.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional

from ..orders.models import OrderRecord, PaymentStatus
from ..orders.scope import TenantScope

# Attributes a patch may never touch
IMMUTABLE_FIELDS = frozenset({"id", "branch_id", "bill_no", "created_at"})


@dataclass(frozen=True)
class OrderFilter:
    """Store predicate; always restricted to a non-empty branch set."""
    branch_ids: FrozenSet[str]
    bill_no: Optional[int] = None
    payment_status: Optional[PaymentStatus] = None
    order_id: Optional[str] = None

    def __post_init__(self):
        if not self.branch_ids:
            raise ValueError("OrderFilter requires a branch predicate")

    @classmethod
    def for_scope(cls, scope: TenantScope, **criteria) -> "OrderFilter":
        return cls(branch_ids=frozenset(scope.branch_ids), **criteria)

    @classmethod
    def for_record(cls, record: OrderRecord) -> "OrderFilter":
        """Filter pinned to one stored record."""
        return cls(branch_ids=frozenset({record.branch_id}), bill_no=record.bill_no, order_id=record.id)

    def matches(self, record: OrderRecord) -> bool:
        if record.branch_id not in self.branch_ids:
            return False
        if self.bill_no is not None and record.bill_no != self.bill_no:
            return False
        if self.payment_status is not None and record.payment_status != self.payment_status:
            return False
        if self.order_id is not None and record.id != self.order_id:
            return False
        return True


def check_patch(patch: Dict[str, Any]) -> None:
    forbidden = IMMUTABLE_FIELDS.intersection(patch)
    if forbidden:
        raise ValueError(f"Cannot patch immutable fields: {sorted(forbidden)}")


class OrderStore(ABC):
    """Durable store for order records.

    Results of ``find`` are ordered by branch id, then bill number.
    ``insert`` raises ``StoreConflictError`` on a duplicate (branch, bill number);
    infrastructure failures raise ``StoreUnavailableError``.
    """

    name = "abstract"

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def ping(self) -> bool:
        return True

    @abstractmethod
    async def find(self, order_filter: OrderFilter) -> List[OrderRecord]:
        """All records matching the filter."""

    @abstractmethod
    async def find_one(self, order_filter: OrderFilter) -> Optional[OrderRecord]:
        """First matching record or None."""

    @abstractmethod
    async def find_latest_by_branch(self, branch_id: str) -> Optional[OrderRecord]:
        """Record with the highest bill number in ``branch_id``."""

    @abstractmethod
    async def insert(self, record: OrderRecord) -> OrderRecord:
        """Persist a new record and return it with its store id."""

    @abstractmethod
    async def update_one(self, order_filter: OrderFilter, patch: Dict[str, Any]) -> Optional[OrderRecord]:
        """Apply ``patch`` to the first match; return the updated record or None."""

    @abstractmethod
    async def delete_one(self, order_filter: OrderFilter) -> bool:
        """Delete the first match; False when nothing matched."""
