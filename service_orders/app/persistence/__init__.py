"""
Record store implementations for order records.
"""

from .base import OrderFilter, OrderStore
from .memory import InMemoryOrderStore

__all__ = ["OrderFilter", "OrderStore", "InMemoryOrderStore"]
