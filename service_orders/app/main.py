"""
Orders service for the optics shop.

Wires the configured cache backend and record store into the read-through
query service and the write + invalidation service, and exposes them over HTTP.
The caller arrives already authenticated: the gateway forwards the user id,
branch ids and role as headers.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from fastapi import Body, Depends, Header, Query

from shared.base_service import BaseService
from shared.circuit_breaker import CircuitBreaker
from shared.config import OrdersConfig, get_config
from shared.errors import StoreUnavailableError
from shared.logging import set_caller_context
from shared.metrics import MetricsCollector

from .cache.adapter import CacheAdapter
from .cache.backends import CacheBackend, create_cache_backend
from .orders.commands import BillNumberAllocator, OrderCommandService, coerce_request
from .orders.invalidation import CacheInvalidator, ScopeRegistry
from .orders.models import OrderRecord, PartialPaymentRequest, PaymentStatusUpdateRequest
from .orders.queries import OrderQueryService
from .orders.scope import SCOPE_DELIMITER, AuthContext, OwnerScopePolicy, ScopeResolver, TenantScope
from .persistence.base import OrderStore
from .persistence.memory import InMemoryOrderStore


@dataclass(frozen=True)
class Caller:
    """Authenticated caller and the branch scope resolved for this request."""
    auth: AuthContext
    scope: TenantScope


def _orders_response(records: List[OrderRecord]) -> List[Dict[str, Any]]:
    return [record.to_dict() for record in records]


class OrdersService(BaseService):
    """Orders service implementation."""

    def __init__(self,
                 config: Optional[OrdersConfig] = None,
                 metrics: Optional[MetricsCollector] = None,
                 store: Optional[OrderStore] = None,
                 cache_backend: Optional[CacheBackend] = None,
                 branch_directory: Optional[Callable[[], Iterable[str]]] = None):
        config = config or get_config()
        super().__init__(config.service_name, config, metrics)

        # Initialize components
        backend = cache_backend or create_cache_backend(
            config.cache_backend,
            redis_url=config.redis_url,
            max_entries=config.cache_max_entries,
            socket_timeout=config.cache_timeout_seconds
        )
        self.cache = CacheAdapter(
            backend,
            default_ttl=config.cache_ttl_seconds,
            timeout=config.cache_timeout_seconds,
            breaker=CircuitBreaker(
                failure_threshold=config.cache_breaker_failure_threshold,
                recovery_timeout=config.cache_breaker_recovery_seconds,
                name=f"cache_{backend.name}"
            ),
            metrics=self.metrics
        )
        self.store = store or self._create_store()
        self.invalidator = CacheInvalidator(
            self.cache,
            ScopeRegistry(),
            namespace=config.cache_namespace,
            metrics=self.metrics
        )
        self.queries = OrderQueryService(
            self.store,
            self.cache,
            self.invalidator,
            metrics=self.metrics,
            ttl_seconds=config.cache_ttl_seconds
        )
        self.commands = OrderCommandService(
            self.store,
            self.invalidator,
            allocator=BillNumberAllocator(self.store, conflict_retries=config.bill_no_conflict_retries),
            metrics=self.metrics
        )
        self.scope_resolver = ScopeResolver(OwnerScopePolicy(config.owner_scope_policy), branch_directory)

        self._setup_orders_routes()

    def _create_store(self) -> OrderStore:
        if self.config.store_backend == "postgres":
            from .persistence.postgres import PostgresOrderStore
            return PostgresOrderStore(
                self.config.postgres_dsn,
                min_size=self.config.postgres_pool_min,
                max_size=self.config.postgres_pool_max,
                command_timeout=self.config.postgres_command_timeout
            )
        return InMemoryOrderStore()

    async def resolve_caller(self,
                             x_user_id: Optional[str] = Header(None),
                             x_branch_ids: Optional[str] = Header(None),
                             x_user_role: Optional[str] = Header(None)) -> Caller:
        """Build the caller from gateway headers and resolve its scope."""
        branch_ids = frozenset(
            branch.strip() for branch in (x_branch_ids or "").split(SCOPE_DELIMITER) if branch.strip()
        )
        auth = AuthContext(user_id=x_user_id, branch_ids=branch_ids, role=x_user_role)
        set_caller_context(auth.user_id, auth.branch_ids)
        return Caller(auth=auth, scope=self.scope_resolver.resolve(auth))

    def _setup_orders_routes(self):
        """Set up orders-specific routes."""

        @self.app.get("/orders")
        async def list_orders(caller: Caller = Depends(self.resolve_caller)):
            """All orders of the caller's branches."""
            return _orders_response(await self.queries.list_orders(caller.scope))

        @self.app.get("/orders/{bill_no}")
        async def get_order(bill_no: str, caller: Caller = Depends(self.resolve_caller)):
            """One order by bill number."""
            record = await self.queries.get_order_by_bill_no(caller.scope, bill_no)
            return record.to_dict()

        @self.app.post("/orders", status_code=201)
        async def create_order(payload: Dict[str, Any] = Body(...),
                               caller: Caller = Depends(self.resolve_caller)):
            """Create an order with the next bill number of its branch."""
            record = await self.commands.create_order(caller.scope, payload, salesman_id=caller.auth.user_id)
            return record.to_dict()

        @self.app.put("/orders/{bill_no}")
        async def update_order(bill_no: str,
                               payload: Dict[str, Any] = Body(...),
                               branch_id: Optional[str] = Query(None, alias="branchId"),
                               caller: Caller = Depends(self.resolve_caller)):
            """Edit an order's whitelisted fields."""
            record = await self.commands.update_order(caller.scope, bill_no, payload, branch_id=branch_id)
            return record.to_dict()

        @self.app.delete("/orders/{bill_no}")
        async def delete_order(bill_no: str,
                               branch_id: Optional[str] = Query(None, alias="branchId"),
                               caller: Caller = Depends(self.resolve_caller)):
            """Delete an order."""
            record = await self.commands.delete_order(caller.scope, bill_no, branch_id=branch_id)
            return {"deleted": True, "order": record.to_dict()}

        @self.app.patch("/orders/{bill_no}/payments")
        async def record_partial_payment(bill_no: str,
                                         payload: Dict[str, Any] = Body(...),
                                         caller: Caller = Depends(self.resolve_caller)):
            """Record an instalment against an order."""
            request = coerce_request(PartialPaymentRequest, payload)
            record = await self.commands.record_partial_payment(
                caller.scope,
                bill_no,
                request.amount,
                payment_type=request.payment_type,
                branch_id=request.branch_id
            )
            return record.to_dict()

        @self.app.get("/pending-payments")
        async def list_pending_payments(caller: Caller = Depends(self.resolve_caller)):
            """Orders of the caller's branches still awaiting payment."""
            return _orders_response(await self.queries.list_pending_payments(caller.scope))

        @self.app.get("/pending-payments/{bill_no}")
        async def get_pending_payment(bill_no: str, caller: Caller = Depends(self.resolve_caller)):
            """One pending order by bill number."""
            record = await self.queries.get_pending_payment_by_bill_no(caller.scope, bill_no)
            return record.to_dict()

        @self.app.put("/pending-payments/{bill_no}/status")
        async def update_payment_status(bill_no: str,
                                        payload: Dict[str, Any] = Body(...),
                                        caller: Caller = Depends(self.resolve_caller)):
            """Complete a pending order."""
            request = coerce_request(PaymentStatusUpdateRequest, payload)
            record = await self.commands.update_payment_status(
                caller.scope,
                bill_no,
                request.payment_status,
                payment_type=request.payment_type,
                branch_id=request.branch_id
            )
            return record.to_dict()

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check orders service dependencies."""
        dependencies = {"cache": await self.cache.health()}

        try:
            dependencies["store"] = "ok" if await self.store.ping() else "unavailable"
        except StoreUnavailableError:
            dependencies["store"] = "unavailable"

        return dependencies

    async def start(self):
        """Start orders service components."""
        await self.store.start()
        self.logger.info(
            "Orders service components started",
            cache_backend=self.cache.backend.name,
            store_backend=self.store.name
        )

    async def stop(self):
        """Stop orders service components."""
        await self.store.close()
        await self.cache.close()


def create_app(config: Optional[OrdersConfig] = None):
    """Create orders service application."""
    service = OrdersService(config)
    return service.app


if __name__ == "__main__":
    service = OrdersService()
    service.run()
