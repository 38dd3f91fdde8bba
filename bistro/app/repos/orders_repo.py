"""Repository interface for order operations."""

from abc import ABC, abstractmethod


class OrdersRepo(ABC):
    """Contract for order persistence."""

    @abstractmethod
    async def save(self, order):
        """Insert a new order with its lines."""
        raise NotImplementedError

    @abstractmethod
    async def get(self, order_id):
        """Return the order or ``None``."""
        raise NotImplementedError

    @abstractmethod
    async def update(self, order):
        """Persist status, totals and lines of an existing order."""
        raise NotImplementedError

    @abstractmethod
    async def list(self, status=None, customer_id=None, offset=0, limit=50):
        """List orders newest first."""
        raise NotImplementedError
