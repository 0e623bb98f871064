"""
Cache key scheme for order views.

Keys are ``<namespace>:<prefix>:<scope>`` for list views and
``<namespace>:<prefix>:<billNo>:<scope>`` for single-record views. Every class has
its own literal prefix so keys never collide across classes.
"""

from enum import Enum
from typing import Optional

from shared.errors import ValidationError
from ..orders.scope import TenantScope


class CacheKeyClass(str, Enum):
    """Cached order views."""
    ALL_ORDERS = "allFormData"
    ORDER_BY_BILL_NO = "formData"
    PENDING_ORDERS = "pendingPayments"
    PENDING_ORDER_BY_BILL_NO = "pendingPayment"

    @property
    def is_single_record(self) -> bool:
        return self in (CacheKeyClass.ORDER_BY_BILL_NO, CacheKeyClass.PENDING_ORDER_BY_BILL_NO)


LIST_KEY_CLASSES = (CacheKeyClass.ALL_ORDERS, CacheKeyClass.PENDING_ORDERS)
RECORD_KEY_CLASSES = (CacheKeyClass.ORDER_BY_BILL_NO, CacheKeyClass.PENDING_ORDER_BY_BILL_NO)


def build_key(key_class: CacheKeyClass,
              scope: TenantScope,
              bill_no: Optional[int] = None,
              namespace: Optional[str] = None) -> str:
    """Build the cache key for a view of ``scope``."""
    key_class = CacheKeyClass(key_class)

    if key_class.is_single_record:
        if bill_no is None:
            raise ValidationError(f"{key_class.name} keys need a bill number")
        parts = [key_class.value, str(int(bill_no)), scope.render()]
    else:
        if bill_no is not None:
            raise ValidationError(f"{key_class.name} keys take no bill number")
        parts = [key_class.value, scope.render()]

    if namespace:
        parts.insert(0, namespace)
    return ":".join(parts)
