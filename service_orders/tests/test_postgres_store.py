"""
Unit tests for the PostgreSQL order store against a mocked pool.
"""

import asyncpg
import pytest
from unittest.mock import AsyncMock, MagicMock

from shared.errors import StoreConflictError, StoreUnavailableError
from shared.test_helpers import OrderDataFactory
from service_orders.app.orders.models import PaymentStatus, PaymentType
from service_orders.app.persistence.base import OrderFilter
from service_orders.app.persistence.postgres import ORDER_COLUMNS, PostgresOrderStore


def make_row(record):
    """Row as asyncpg returns it: jsonb arrives as a JSON string."""
    return PostgresOrderStore._to_row(record)


class TestPostgresOrderStore:
    """Test cases for PostgresOrderStore."""

    @pytest.fixture
    def conn(self):
        return AsyncMock()

    @pytest.fixture
    def store(self, conn):
        store = PostgresOrderStore("postgresql://localhost:5432/optics")
        pool = MagicMock()
        pool.acquire.return_value.__aenter__ = AsyncMock(return_value=conn)
        pool.acquire.return_value.__aexit__ = AsyncMock(return_value=False)
        pool.close = AsyncMock()
        store.pool = pool
        return store

    def test_where_clause(self):
        """Filters always lead with the branch predicate."""
        where, params = PostgresOrderStore._where(
            OrderFilter(frozenset({"B2", "B1"}), bill_no=3, payment_status=PaymentStatus.PENDING)
        )

        assert where == "branch_id = ANY($1::text[]) AND bill_no = $2 AND payment_status = $3"
        assert params == [["B1", "B2"], 3, "pending"]

    def test_row_conversion(self):
        """Rows convert back to records, including the jsonb prescription."""
        record = OrderDataFactory.create_order_record(payment_type=PaymentType.CARD)
        row = make_row(record)

        assert set(row) == set(ORDER_COLUMNS)
        assert PostgresOrderStore._row_to_record(row) == record

    @pytest.mark.asyncio
    async def test_find(self, store, conn):
        record = OrderDataFactory.create_order_record()
        conn.fetch.return_value = [make_row(record)]

        found = await store.find(OrderFilter(frozenset({"B1"})))

        assert found == [record]
        query = conn.fetch.call_args[0][0]
        assert "ORDER BY branch_id ASC, bill_no ASC" in query

    @pytest.mark.asyncio
    async def test_find_latest_by_branch_empty(self, store, conn):
        conn.fetchrow.return_value = None
        assert await store.find_latest_by_branch("B1") is None

    @pytest.mark.asyncio
    async def test_insert_assigns_id(self, store, conn):
        """Inserts without an id get a generated one."""
        record = OrderDataFactory.create_order_record(id="")
        columns = list(PostgresOrderStore._to_row(record))
        conn.fetchrow.side_effect = lambda query, *values: dict(zip(columns, values))

        stored = await store.insert(record)

        assert stored.id
        assert stored.bill_no == record.bill_no

    @pytest.mark.asyncio
    async def test_unique_violation_is_conflict(self, store, conn):
        conn.fetchrow.side_effect = asyncpg.exceptions.UniqueViolationError("duplicate key")

        with pytest.raises(StoreConflictError):
            await store.insert(OrderDataFactory.create_order_record(id=""))

    @pytest.mark.asyncio
    async def test_connection_failure_is_unavailable(self, store, conn):
        conn.fetch.side_effect = OSError("connection refused")

        with pytest.raises(StoreUnavailableError):
            await store.find(OrderFilter(frozenset({"B1"})))

    @pytest.mark.asyncio
    async def test_not_started(self):
        store = PostgresOrderStore("postgresql://localhost:5432/optics")
        with pytest.raises(StoreUnavailableError):
            await store.find(OrderFilter(frozenset({"B1"})))

    @pytest.mark.asyncio
    async def test_delete_one(self, store, conn):
        conn.fetchval.return_value = None
        assert await store.delete_one(OrderFilter(frozenset({"B1"}), bill_no=1)) is False

        conn.fetchval.return_value = "abc"
        assert await store.delete_one(OrderFilter(frozenset({"B1"}), bill_no=1)) is True

    @pytest.mark.asyncio
    async def test_close(self, store):
        pool = store.pool
        await store.close()

        pool.close.assert_awaited_once()
        assert store.pool is None
