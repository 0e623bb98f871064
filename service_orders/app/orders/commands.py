"""
Order write operations.

Each write authorizes against the caller's scope, commits to the store, then
purges the cached views it staled. Invalidation never fails or rolls back a
committed write.
"""

import asyncio
from collections import defaultdict
from contextlib import nullcontext
from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from shared.errors import ForbiddenError, NotFoundError, StoreConflictError, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, retry_async
from ..persistence.base import OrderFilter, OrderStore
from .invalidation import CacheInvalidator, WriteOperation
from .models import (
    OrderCreateRequest,
    OrderRecord,
    OrderUpdateRequest,
    PaymentStatus,
    PaymentType,
    compute_balance,
    format_amount,
    parse_amount,
    parse_bill_no,
    sum_components,
)
from .scope import TenantScope

RequestModel = TypeVar("RequestModel", bound=BaseModel)


def coerce_request(model: Type[RequestModel], data: Any) -> RequestModel:
    """Validate ``data`` as ``model``, reporting failures as our ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid request",
            details={
                "errors": [
                    {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
                    for error in e.errors()
                ]
            }
        )


class BillNumberAllocator:
    """Assigns ``latest + 1`` bill numbers, one branch at a time.

    The per-branch lock serializes creates inside this process; the store's
    unique (branch, bill number) index catches races with other processes, and
    those are retried with a fresh number.
    """

    def __init__(self, store: OrderStore, conflict_retries: int = 1):
        self.store = store
        self.conflict_retries = conflict_retries
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def next_bill_no(self, branch_id: str) -> int:
        latest = await self.store.find_latest_by_branch(branch_id)
        return latest.bill_no + 1 if latest else 1

    async def insert_with_next_bill_no(self, record: OrderRecord) -> OrderRecord:
        """Insert ``record`` under the next free bill number of its branch."""
        async def attempt() -> OrderRecord:
            bill_no = await self.next_bill_no(record.branch_id)
            return await self.store.insert(replace(record, bill_no=bill_no))

        async with self._locks[record.branch_id]:
            return await retry_async(
                attempt,
                (StoreConflictError,),
                RetryConfig(max_attempts=self.conflict_retries + 1),
                name=f"allocate_bill_no:{record.branch_id}"
            )


class OrderCommandService:
    """Scope-checked order writes followed by cache invalidation."""

    def __init__(self,
                 store: OrderStore,
                 invalidator: CacheInvalidator,
                 allocator: Optional[BillNumberAllocator] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.invalidator = invalidator
        self.allocator = allocator or BillNumberAllocator(store)
        self.metrics = metrics
        self.logger = get_logger("orders.commands")

    async def create_order(self,
                           scope: TenantScope,
                           request: Any,
                           salesman_id: Optional[str] = None) -> OrderRecord:
        """Create an order in a branch of ``scope`` with the next bill number."""
        request = coerce_request(OrderCreateRequest, request)
        if not scope.covers(request.branch_id):
            self.logger.warning("Create outside caller scope", branch_id=request.branch_id, scope=scope.render())
            raise ForbiddenError("Branch is outside the caller's scope", details={"branchId": request.branch_id})

        record = OrderRecord(
            id="",
            branch_id=request.branch_id,
            bill_no=0,
            name=request.name,
            contact=request.contact,
            date=request.date,
            total="0",
            advance=request.advance or "0",
            salesman_id=request.salesman_id or salesman_id,
            frame=request.frame,
            glass=request.glass,
            contact_lens=request.contact_lens,
            frame_price=request.frame_price,
            glass_price=request.glass_price,
            contact_lens_price=request.contact_lens_price,
        )
        if request.prescription is not None:
            record.prescription = request.prescription.to_prescription()

        if request.total is not None:
            record.total = request.total
        elif any(price is not None for price in (record.frame_price, record.glass_price, record.contact_lens_price)):
            record.total = format_amount(sum_components(record))
        else:
            raise ValidationError("total is required", details={"field": "total"})
        record.balance = compute_balance(record.total, record.advance)

        with self._timed("insert"):
            stored = await self.allocator.insert_with_next_bill_no(record)

        self._record_write(WriteOperation.CREATE)
        self.logger.info("Order created", branch_id=stored.branch_id, bill_no=stored.bill_no, order_id=stored.id)
        await self.invalidator.invalidate(WriteOperation.CREATE, scope, stored.branch_id, stored.bill_no)
        return stored

    async def update_order(self,
                           scope: TenantScope,
                           bill_no: Any,
                           patch: Any,
                           branch_id: Optional[str] = None) -> OrderRecord:
        """Apply whitelisted field changes and recompute derived money."""
        bill_no = parse_bill_no(bill_no)
        changes = coerce_request(OrderUpdateRequest, patch).changes()
        if not changes:
            raise ValidationError("No updatable fields supplied")

        current = await self._locate(scope, bill_no, branch_id)
        updated = current.with_changes(**changes)
        store_patch = {name: getattr(updated, name) for name in set(changes) | {"total", "balance"}}

        with self._timed("update_one"):
            stored = await self.store.update_one(OrderFilter.for_record(current), store_patch)
        if stored is None:
            raise NotFoundError("Order not found", details={"billNo": bill_no})

        self._record_write(WriteOperation.UPDATE)
        self.logger.info(
            "Order updated",
            branch_id=stored.branch_id,
            bill_no=stored.bill_no,
            fields=sorted(store_patch)
        )
        await self.invalidator.invalidate(WriteOperation.UPDATE, scope, stored.branch_id, stored.bill_no)
        return stored

    async def update_payment_status(self,
                                    scope: TenantScope,
                                    bill_no: Any,
                                    payment_status: str,
                                    payment_type: Optional[str] = None,
                                    branch_id: Optional[str] = None) -> OrderRecord:
        """Move a pending order to completed; amounts are left as recorded."""
        bill_no = parse_bill_no(bill_no)
        status = PaymentStatus.parse(payment_status)
        if status != PaymentStatus.COMPLETED:
            raise ValidationError(
                "Only the pending -> completed transition is supported",
                details={"paymentStatus": payment_status}
            )
        method = PaymentType.parse(payment_type)

        current = await self._locate(scope, bill_no, branch_id)
        if current.payment_status == PaymentStatus.COMPLETED:
            raise ValidationError("Order is already completed", details={"billNo": bill_no})

        stored = await self._complete(current, {"payment_status": PaymentStatus.COMPLETED, "payment_type": method})

        self._record_write(WriteOperation.PAYMENT_STATUS)
        self.logger.info(
            "Order payment completed",
            branch_id=stored.branch_id,
            bill_no=stored.bill_no,
            payment_type=method.value
        )
        await self.invalidator.invalidate(WriteOperation.PAYMENT_STATUS, scope, stored.branch_id, stored.bill_no)
        return stored

    async def record_partial_payment(self,
                                     scope: TenantScope,
                                     bill_no: Any,
                                     amount: Any,
                                     payment_type: Optional[str] = None,
                                     branch_id: Optional[str] = None) -> OrderRecord:
        """Add an instalment to the advance; a zero balance completes the order."""
        bill_no = parse_bill_no(bill_no)
        paid = parse_amount(amount, "amount")
        if paid <= 0:
            raise ValidationError("amount must be positive", details={"amount": amount})
        method = PaymentType.parse(payment_type) if payment_type is not None else None

        current = await self._locate(scope, bill_no, branch_id)
        if current.payment_status == PaymentStatus.COMPLETED:
            raise ValidationError("Order is already completed", details={"billNo": bill_no})

        outstanding = parse_amount(current.balance, "balance")
        if paid > outstanding:
            raise ValidationError(
                "amount exceeds the outstanding balance",
                details={"amount": amount, "balance": current.balance}
            )

        advance = format_amount(parse_amount(current.advance, "advance") + paid)
        patch: Dict[str, Any] = {"advance": advance, "balance": compute_balance(current.total, advance)}
        if Decimal(patch["balance"]) == 0:
            patch["payment_status"] = PaymentStatus.COMPLETED
            patch["payment_type"] = method or current.payment_type or PaymentType.CASH

        stored = await self._complete(current, patch)

        self._record_write(WriteOperation.PARTIAL_PAYMENT)
        self.logger.info(
            "Partial payment recorded",
            branch_id=stored.branch_id,
            bill_no=stored.bill_no,
            amount=format_amount(paid),
            balance=stored.balance,
            payment_status=stored.payment_status.value
        )
        await self.invalidator.invalidate(WriteOperation.PARTIAL_PAYMENT, scope, stored.branch_id, stored.bill_no)
        return stored

    async def delete_order(self,
                           scope: TenantScope,
                           bill_no: Any,
                           branch_id: Optional[str] = None) -> OrderRecord:
        """Delete an order; returns the removed record."""
        bill_no = parse_bill_no(bill_no)
        current = await self._locate(scope, bill_no, branch_id)

        with self._timed("delete_one"):
            deleted = await self.store.delete_one(OrderFilter.for_record(current))
        if not deleted:
            raise NotFoundError("Order not found", details={"billNo": bill_no})

        self._record_write(WriteOperation.DELETE)
        self.logger.info("Order deleted", branch_id=current.branch_id, bill_no=current.bill_no)
        await self.invalidator.invalidate(WriteOperation.DELETE, scope, current.branch_id, current.bill_no)
        return current

    async def _locate(self, scope: TenantScope, bill_no: int, branch_id: Optional[str] = None) -> OrderRecord:
        """Find the record a write targets.

        Out-of-scope and missing records both raise NotFoundError. A bill number
        present in several branches of the scope needs ``branch_id``.
        """
        if branch_id is not None:
            if not scope.covers(branch_id):
                raise NotFoundError("Order not found", details={"billNo": bill_no})
            order_filter = OrderFilter(branch_ids=frozenset({branch_id}), bill_no=bill_no)
        else:
            order_filter = OrderFilter.for_scope(scope, bill_no=bill_no)

        with self._timed("find"):
            matches = await self.store.find(order_filter)

        if not matches:
            raise NotFoundError("Order not found", details={"billNo": bill_no})
        if len(matches) > 1:
            raise ValidationError(
                "Bill number exists in several branches; branchId is required",
                details={"billNo": bill_no, "branchIds": [record.branch_id for record in matches]}
            )
        return matches[0]

    async def _complete(self, current: OrderRecord, patch: Dict[str, Any]) -> OrderRecord:
        """Patch a record that must still be pending when the write lands."""
        order_filter = OrderFilter(
            branch_ids=frozenset({current.branch_id}),
            bill_no=current.bill_no,
            order_id=current.id,
            payment_status=PaymentStatus.PENDING
        )
        with self._timed("update_one"):
            stored = await self.store.update_one(order_filter, patch)
        if stored is None:
            raise NotFoundError("Order not found", details={"billNo": current.bill_no})
        return stored

    def _record_write(self, operation: WriteOperation) -> None:
        if self.metrics:
            self.metrics.record_order_write(operation.value)

    def _timed(self, operation: str):
        if self.metrics:
            return self.metrics.time_store_operation(operation)
        return nullcontext()
