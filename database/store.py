"""Transactional persistence interface.

Managers never talk to a connection directly. They open
``store.transaction()`` and work through the yielded session, so every
mutation group of one call commits or rolls back together.

Two stores implement the interface: ``PostgresStore`` (``database.postgres``)
and ``MemoryStore`` (``database.memory``).
"""
from abc import ABC, abstractmethod
from typing import Any, AsyncContextManager, List, Optional, Type, TypeVar

from .models import Entity

E = TypeVar('E', bound=Entity)


class Session(ABC):
    """Unit of work bound to one transaction."""

    @abstractmethod
    async def insert(self, entity: E) -> E:
        """Persist a new row.

        Raises:
            ConflictError: If a unique rule is violated
        """

    @abstractmethod
    async def get(self, model: Type[E], entity_id: Any, for_update: bool = False) -> Optional[E]:
        """Fetch one row by id, optionally locking it until commit."""

    @abstractmethod
    async def find_one(self, model: Type[E], for_update: bool = False, **filters) -> Optional[E]:
        """Fetch the first row matching equality filters."""

    @abstractmethod
    async def find(
        self,
        model: Type[E],
        order_by: str = 'created_at',
        descending: bool = True,
        limit: Optional[int] = None,
        offset: int = 0,
        **filters
    ) -> List[E]:
        """Fetch rows matching filters.

        A filter value that is a list, tuple, set or frozenset matches any
        of its members. ``None`` filter values are ignored.
        """

    @abstractmethod
    async def count(self, model: Type[E], **filters) -> int:
        """Count rows matching filters."""

    @abstractmethod
    async def update(self, entity: E, expected_status: Any = None) -> E:
        """Write every column of an existing row.

        Args:
            entity: Row to write; ``updated_at`` is refreshed when present
            expected_status: When given, the write only happens if the
                stored status still equals it (compare-and-set)

        Raises:
            StateError: If the stored status differs from ``expected_status``
            NotFoundError: If the row does not exist
            ConflictError: If a unique rule is violated
        """


class Store(ABC):
    """Factory for transactions."""

    @abstractmethod
    def transaction(self) -> AsyncContextManager[Session]:
        """Open a transaction; an exception inside rolls it back."""

    async def close(self) -> None:
        pass


def split_filters(filters: dict) -> dict:
    """Drop filters whose value is ``None``."""
    return {key: value for key, value in filters.items() if value is not None}


def is_multi(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


__all__ = ['Session', 'Store', 'split_filters', 'is_multi']
