"""In-process store selected with ``db_url = memory://``.

Transactions are serialized by one ``asyncio.Lock`` and restored from a
snapshot when the block raises. Rows are copied on the way in and out,
so callers never share model instances with the store.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple, Type
from uuid import UUID

from errors import ConflictError, NotFoundError, StateError
from .models import ENTITIES, IN_FLIGHT, Entity, utcnow
from .store import E, Session, Store, is_multi, split_filters

logger = logging.getLogger(__name__)

# Same rules as the unique indexes in schema/v1.py
UniqueRule = Tuple[Tuple[str, ...], Optional[Callable[[Any], bool]]]
UNIQUE_RULES: Dict[str, List[UniqueRule]] = {
    'api_keys': [(('public_key',), None)],
    'custody_records': [(('tenant_id', 'asset_id'), None)],
    'operations': [(('custody_record_id', 'type'), lambda row: row.status in IN_FLIGHT)],
}


def _matches(row: Entity, filters: Dict[str, Any]) -> bool:
    for key, expected in filters.items():
        actual = getattr(row, key)
        if is_multi(expected):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


def _normalize_id(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return UUID(value)
        except ValueError:
            return value
    return value


class MemorySession(Session):
    """Session over the store's row dictionaries."""

    def __init__(self, tables: Dict[str, Dict[UUID, Entity]]):
        self._tables = tables

    def _rows(self, model: Type[E]) -> Dict[UUID, E]:
        return self._tables[model.__tablename__]

    def _check_unique(self, entity: Entity) -> None:
        table = entity.__tablename__
        for columns, applies in UNIQUE_RULES.get(table, []):
            if applies and not applies(entity):
                continue
            key = tuple(getattr(entity, column) for column in columns)
            for other in self._tables[table].values():
                if other.id == entity.id:
                    continue
                if applies and not applies(other):
                    continue
                if tuple(getattr(other, column) for column in columns) == key:
                    raise ConflictError(
                        f"Duplicate {table} row for {', '.join(columns)}",
                        {'table': table, 'columns': list(columns)}
                    )

    async def insert(self, entity: E) -> E:
        rows = self._rows(type(entity))
        if entity.id in rows:
            raise ConflictError(f"Duplicate id {entity.id} in {entity.__tablename__}")
        self._check_unique(entity)
        rows[entity.id] = entity.model_copy(deep=True)
        return entity

    async def get(self, model: Type[E], entity_id: Any, for_update: bool = False) -> Optional[E]:
        row = self._rows(model).get(_normalize_id(entity_id))
        return row.model_copy(deep=True) if row is not None else None

    async def find_one(self, model: Type[E], for_update: bool = False, **filters) -> Optional[E]:
        rows = await self.find(model, limit=1, **filters)
        return rows[0] if rows else None

    async def find(
        self,
        model: Type[E],
        order_by: str = 'created_at',
        descending: bool = True,
        limit: Optional[int] = None,
        offset: int = 0,
        **filters
    ) -> List[E]:
        filters = split_filters(filters)
        rows = [row for row in self._rows(model).values() if _matches(row, filters)]
        rows.sort(key=lambda row: getattr(row, order_by), reverse=descending)
        end = None if limit is None else offset + limit
        return [row.model_copy(deep=True) for row in rows[offset:end]]

    async def count(self, model: Type[E], **filters) -> int:
        filters = split_filters(filters)
        return sum(1 for row in self._rows(model).values() if _matches(row, filters))

    async def update(self, entity: E, expected_status: Any = None) -> E:
        rows = self._rows(type(entity))
        current = rows.get(entity.id)
        if current is None:
            raise NotFoundError(f"{entity.__tablename__} row {entity.id} not found")
        if expected_status is not None and current.status != expected_status:
            raise StateError(
                f"{entity.__tablename__} row {entity.id} is {current.status.value}, "
                f"expected {expected_status.value}"
            )
        if 'updated_at' in type(entity).model_fields:
            entity.updated_at = utcnow()
        self._check_unique(entity)
        rows[entity.id] = entity.model_copy(deep=True)
        return entity


class MemoryStore(Store):
    """Store that keeps every table in process memory."""

    def __init__(self):
        self._tables: Dict[str, Dict[UUID, Entity]] = {
            model.__tablename__: {} for model in ENTITIES
        }
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[MemorySession]:
        async with self._lock:
            snapshot = {name: dict(rows) for name, rows in self._tables.items()}
            try:
                yield MemorySession(self._tables)
            except BaseException:
                for name, rows in snapshot.items():
                    self._tables[name] = rows
                raise


__all__ = ['MemoryStore', 'MemorySession', 'UNIQUE_RULES']
