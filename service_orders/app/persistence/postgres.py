"""
PostgreSQL persistence layer for order records.
"""

import asyncio
import json
import uuid
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from shared.errors import StoreConflictError, StoreUnavailableError
from shared.logging import get_logger
from ..orders.models import OrderRecord, PaymentStatus, PaymentType, Prescription, utcnow_iso
from .base import OrderFilter, OrderStore, check_patch

ORDER_COLUMNS = (
    "id", "branch_id", "bill_no", "salesman_id", "name", "contact", "date",
    "frame", "glass", "contact_lens", "frame_price", "glass_price", "contact_lens_price",
    "total", "advance", "balance", "payment_status", "payment_type", "prescription",
    "created_at", "updated_at",
)

# Errors that mean "the database could not be reached", not "the query was wrong"
UNAVAILABLE_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.TooManyConnectionsError,
)


class PostgresOrderStore(OrderStore):
    """asyncpg-backed order store."""

    name = "postgres"

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10, command_timeout: float = 30.0):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.logger = get_logger("orders.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout
            )
            await self._create_tables()
            self.logger.info("PostgreSQL order store started")

        except UNAVAILABLE_ERRORS as e:
            self.logger.error("Failed to start PostgreSQL order store", error=str(e))
            raise StoreUnavailableError("Could not connect to PostgreSQL", details={"error": str(e)})

    async def close(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL order store stopped")

    async def ping(self) -> bool:
        async with self._connection("ping") as conn:
            return await conn.fetchval("SELECT 1") == 1

    @asynccontextmanager
    async def _connection(self, operation: str):
        """Acquire a connection, translating driver errors to store errors."""
        if self.pool is None:
            raise StoreUnavailableError("Order store is not started", details={"operation": operation})
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except asyncpg.exceptions.UniqueViolationError as e:
            raise StoreConflictError("Duplicate bill number", details={"constraint": getattr(e, "constraint_name", None)})
        except UNAVAILABLE_ERRORS as e:
            self.logger.error("PostgreSQL unavailable", operation=operation, error=str(e))
            raise StoreUnavailableError(details={"operation": operation, "error": str(e)})

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS orders (
                    id VARCHAR(64) PRIMARY KEY,
                    branch_id VARCHAR(64) NOT NULL,
                    bill_no INTEGER NOT NULL,
                    salesman_id VARCHAR(64),
                    name TEXT NOT NULL,
                    contact TEXT NOT NULL,
                    date TEXT NOT NULL,
                    frame TEXT,
                    glass TEXT,
                    contact_lens TEXT,
                    frame_price TEXT,
                    glass_price TEXT,
                    contact_lens_price TEXT,
                    total TEXT NOT NULL,
                    advance TEXT NOT NULL DEFAULT '0',
                    balance TEXT NOT NULL DEFAULT '0',
                    payment_status VARCHAR(20) NOT NULL DEFAULT 'pending',
                    payment_type VARCHAR(32),
                    prescription JSONB NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
            """)

            # One bill number per branch
            await conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_orders_branch_bill ON orders(branch_id, bill_no);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_orders_branch_status ON orders(branch_id, payment_status);
            """)

    @staticmethod
    def _where(order_filter: OrderFilter) -> Tuple[str, List[Any]]:
        """Build the WHERE clause for a filter."""
        clauses = ["branch_id = ANY($1::text[])"]
        params: List[Any] = [sorted(order_filter.branch_ids)]

        if order_filter.bill_no is not None:
            params.append(order_filter.bill_no)
            clauses.append(f"bill_no = ${len(params)}")
        if order_filter.payment_status is not None:
            params.append(order_filter.payment_status.value)
            clauses.append(f"payment_status = ${len(params)}")
        if order_filter.order_id is not None:
            params.append(order_filter.order_id)
            clauses.append(f"id = ${len(params)}")

        return " AND ".join(clauses), params

    @staticmethod
    def _to_row(record: OrderRecord) -> Dict[str, Any]:
        row = {column: getattr(record, column) for column in ORDER_COLUMNS if column != "prescription"}
        row["payment_status"] = record.payment_status.value
        row["payment_type"] = record.payment_type.value if record.payment_type else None
        row["prescription"] = json.dumps(record.prescription.to_dict())
        return row

    @staticmethod
    def _row_to_record(row) -> OrderRecord:
        """Convert a database row to an OrderRecord."""
        data = dict(row)
        prescription = data.pop("prescription", None)
        if isinstance(prescription, str):
            prescription = json.loads(prescription)
        data["payment_status"] = PaymentStatus(data["payment_status"])
        data["payment_type"] = PaymentType(data["payment_type"]) if data.get("payment_type") else None
        data["prescription"] = Prescription.from_dict(prescription)
        return OrderRecord(**data)

    async def find(self, order_filter: OrderFilter) -> List[OrderRecord]:
        where, params = self._where(order_filter)
        async with self._connection("find") as conn:
            rows = await conn.fetch(
                f"SELECT * FROM orders WHERE {where} ORDER BY branch_id ASC, bill_no ASC", *params
            )
        return [self._row_to_record(row) for row in rows]

    async def find_one(self, order_filter: OrderFilter) -> Optional[OrderRecord]:
        where, params = self._where(order_filter)
        async with self._connection("find_one") as conn:
            row = await conn.fetchrow(
                f"SELECT * FROM orders WHERE {where} ORDER BY branch_id ASC, bill_no ASC LIMIT 1", *params
            )
        return self._row_to_record(row) if row else None

    async def find_latest_by_branch(self, branch_id: str) -> Optional[OrderRecord]:
        async with self._connection("find_latest_by_branch") as conn:
            row = await conn.fetchrow(
                "SELECT * FROM orders WHERE branch_id = $1 ORDER BY bill_no DESC LIMIT 1", branch_id
            )
        return self._row_to_record(row) if row else None

    async def insert(self, record: OrderRecord) -> OrderRecord:
        if not record.id:
            record = replace(record, id=uuid.uuid4().hex)
        row = self._to_row(record)
        columns = ", ".join(row)
        placeholders = ", ".join(
            f"${i}::jsonb" if column == "prescription" else f"${i}"
            for i, column in enumerate(row, start=1)
        )
        async with self._connection("insert") as conn:
            stored = await conn.fetchrow(
                f"INSERT INTO orders ({columns}) VALUES ({placeholders}) RETURNING *", *row.values()
            )
        self.logger.info("Order inserted", order_id=record.id, branch_id=record.branch_id, bill_no=record.bill_no)
        return self._row_to_record(stored)

    async def update_one(self, order_filter: OrderFilter, patch: Dict[str, Any]) -> Optional[OrderRecord]:
        check_patch(patch)
        values = dict(patch)
        values.setdefault("updated_at", utcnow_iso())
        if "payment_status" in values and values["payment_status"] is not None:
            values["payment_status"] = PaymentStatus(values["payment_status"]).value
        if values.get("payment_type") is not None:
            values["payment_type"] = PaymentType(values["payment_type"]).value
        if "prescription" in values:
            values["prescription"] = json.dumps(values["prescription"].to_dict())

        where, params = self._where(order_filter)
        assignments = []
        for column, value in values.items():
            params.append(value)
            cast = "::jsonb" if column == "prescription" else ""
            assignments.append(f"{column} = ${len(params)}{cast}")

        # Single-row update: pin to the first match in (branch, bill) order
        query = (
            f"UPDATE orders SET {', '.join(assignments)} WHERE id = ("
            f"SELECT id FROM orders WHERE {where} ORDER BY branch_id ASC, bill_no ASC LIMIT 1"
            f") RETURNING *"
        )
        async with self._connection("update_one") as conn:
            row = await conn.fetchrow(query, *params)
        return self._row_to_record(row) if row else None

    async def delete_one(self, order_filter: OrderFilter) -> bool:
        where, params = self._where(order_filter)
        query = (
            f"DELETE FROM orders WHERE id = ("
            f"SELECT id FROM orders WHERE {where} ORDER BY branch_id ASC, bill_no ASC LIMIT 1"
            f") RETURNING id"
        )
        async with self._connection("delete_one") as conn:
            deleted = await conn.fetchval(query, *params)
        return deleted is not None
