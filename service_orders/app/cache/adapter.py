"""
Best-effort cache adapter.

The cache is an optimization, never a source of truth: ``get`` degrades to
"absent", ``set`` and ``delete`` report failure through their return value.
Nothing here raises to the caller.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional

from shared.circuit_breaker import CircuitBreaker
from shared.errors import CacheUnavailableError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .backends import CacheBackend

DEFAULT_TTL_SECONDS = 3600


class CacheAdapter:
    """JSON get / set-with-TTL / delete over a pluggable backend."""

    def __init__(self,
                 backend: CacheBackend,
                 *,
                 default_ttl: int = DEFAULT_TTL_SECONDS,
                 timeout: float = 0.5,
                 breaker: Optional[CircuitBreaker] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.backend = backend
        self.default_ttl = default_ttl
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker(name=f"cache_{backend.name}")
        self.metrics = metrics
        self.logger = get_logger("orders.cache")

    async def _call(self, operation: str, key: str, call: Callable[[], Awaitable[Any]]) -> Any:
        """Run one backend call under the breaker and the timeout."""
        if not self.breaker.allow():
            self._record(operation, "skipped")
            raise CacheUnavailableError("Cache circuit open", details={"operation": operation, "key": key})

        try:
            result = await asyncio.wait_for(call(), timeout=self.timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.breaker.record_failure()
            self._record(operation, "error")
            raise CacheUnavailableError(
                f"Cache {operation} failed",
                details={"operation": operation, "key": key, "error": repr(e)}
            ) from e

        self.breaker.record_success()
        return result

    async def get(self, key: str) -> Optional[Any]:
        """Return the decoded payload, or None when absent or unavailable."""
        try:
            raw = await self._call("get", key, lambda: self.backend.get(key))
        except CacheUnavailableError as e:
            self.logger.warning("Cache get degraded to miss", key=key, error=e.details.get("error", e.message))
            return None

        if raw is None:
            self._record("get", "miss")
            self.logger.debug("Cache miss", key=key)
            return None

        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            self._record("get", "error")
            self.logger.warning("Discarding undecodable cache payload", key=key)
            await self.delete(key)
            return None

        self._record("get", "hit")
        self.logger.debug("Cache hit", key=key)
        return value

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        """Store ``value`` as JSON; returns False instead of raising."""
        if value is None:
            self.logger.debug("Refusing to cache None", key=key)
            return False

        ttl = ttl_seconds or self.default_ttl
        try:
            payload = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            self.logger.warning("Cache payload is not JSON serializable", key=key, error=str(e))
            return False

        try:
            await self._call("set", key, lambda: self.backend.set(key, payload, ttl))
        except CacheUnavailableError as e:
            self.logger.warning("Cache set failed", key=key, error=e.details.get("error", e.message))
            return False

        self._record("set", "ok")
        self.logger.debug("Cached value", key=key, ttl=ttl)
        return True

    async def delete(self, key: str) -> bool:
        """Delete ``key``; deleting a missing key succeeds."""
        try:
            await self._call("delete", key, lambda: self.backend.delete(key))
        except CacheUnavailableError as e:
            self.logger.warning("Cache delete failed", key=key, error=e.details.get("error", e.message))
            return False

        self._record("delete", "ok")
        return True

    async def health(self) -> str:
        """Reachability of the backend for health reporting."""
        try:
            reachable = await self._call("ping", "-", self.backend.ping)
        except CacheUnavailableError:
            return "unavailable"
        return "ok" if reachable else "unavailable"

    async def close(self) -> None:
        await self.backend.close()

    def _record(self, operation: str, result: str) -> None:
        if self.metrics:
            self.metrics.record_cache_request(operation, result)
