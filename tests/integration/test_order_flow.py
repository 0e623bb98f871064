"""
Integration tests for the order lifecycle across cache and store.
"""

import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from shared.config import OrdersConfig
from shared.metrics import MetricsCollector
from shared.test_helpers import OrderDataFactory, build_orders_stack
from service_orders.app.cache.keys import CacheKeyClass
from service_orders.app.main import OrdersService


class TestBranchOrderFlow:
    """Create, read cold and warm, complete payment, read again for branch B1."""

    @pytest.fixture
    def stack(self):
        return build_orders_stack(namespace="optics")

    @pytest.fixture
    def scope(self):
        return OrderDataFactory.scope("B1")

    @pytest.mark.asyncio
    async def test_branch_scenario(self, stack, scope):
        created = await stack.commands.create_order(
            scope, OrderDataFactory.create_order_request("B1", total="100", advance="20")
        )
        assert (created.bill_no, created.balance) == (1, "80")

        # Cold then warm lookups by bill number
        stack.store.reset_calls()
        cold = await stack.queries.get_order_by_bill_no(scope, 1)
        warm = await stack.queries.get_order_by_bill_no(scope, 1)
        pending = await stack.queries.get_pending_payment_by_bill_no(scope, 1)
        assert stack.store.calls["find_one"] == 2
        assert cold == warm == pending

        by_bill_key = stack.invalidator.key_for(CacheKeyClass.ORDER_BY_BILL_NO, scope, 1)
        pending_key = stack.invalidator.key_for(CacheKeyClass.PENDING_ORDER_BY_BILL_NO, scope, 1)
        pending_list_key = stack.invalidator.key_for(CacheKeyClass.PENDING_ORDERS, scope)
        assert by_bill_key == "optics:formData:1:B1"
        await stack.queries.list_pending_payments(scope)
        assert await stack.cache.get(pending_list_key) is not None

        # Completing the payment purges the by-bill and pending views
        completed = await stack.commands.update_payment_status(scope, 1, "completed", "Cash")
        assert completed.balance == "80"
        for key in (by_bill_key, pending_key, pending_list_key):
            assert await stack.cache.get(key) is None

        assert await stack.queries.list_pending_payments(scope) == []
        assert (await stack.queries.get_order_by_bill_no(scope, 1)).payment_status.value == "completed"

    @pytest.mark.asyncio
    async def test_overlapping_scopes_stay_fresh(self, stack):
        """Writes through one scope are visible to every overlapping cached scope."""
        owner = OrderDataFactory.scope("B1", "B2")
        clerk = OrderDataFactory.scope("B2")

        await stack.commands.create_order(owner, OrderDataFactory.create_order_request("B1"))
        assert len(await stack.queries.list_orders(owner)) == 1
        assert await stack.queries.list_pending_payments(clerk) == []

        await stack.commands.create_order(clerk, OrderDataFactory.create_order_request("B2"))
        await stack.commands.update_order(clerk, 1, {"name": "Clerk Edit"})

        orders = await stack.queries.list_orders(owner)
        assert [(o.branch_id, o.name) for o in orders] == [("B1", "Asha Rao"), ("B2", "Clerk Edit")]
        assert len(await stack.queries.list_pending_payments(clerk)) == 1


class TestHttpOrderFlow:
    """The same lifecycle through the HTTP surface."""

    @pytest.fixture
    def client(self):
        config = OrdersConfig(cache_backend="memory", store_backend="memory")
        service = OrdersService(config, metrics=MetricsCollector("orders", registry=CollectorRegistry()))
        with TestClient(service.app) as client:
            yield client

    def test_http_flow(self, client):
        headers = {"X-User-Id": "u1", "X-Branch-Ids": "B1", "X-User-Role": "salesman"}

        created = client.post("/orders", json=OrderDataFactory.create_order_request("B1"), headers=headers)
        assert created.status_code == 201

        assert client.get("/pending-payments/1", headers=headers).json()["balance"] == "80"
        assert client.get("/orders/1", headers=headers).json()["paymentStatus"] == "pending"

        paid = client.patch("/orders/1/payments", json={"amount": "80", "paymentType": "UPI"}, headers=headers)
        assert paid.json()["paymentStatus"] == "completed"

        assert client.get("/pending-payments", headers=headers).json() == []
        assert client.get("/pending-payments/1", headers=headers).status_code == 404
        assert client.get("/orders/1", headers=headers).json()["balance"] == "0"
