"""asyncpg implementation of the store interface."""
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Type
from uuid import UUID

import asyncpg

from errors import ConflictError, NotFoundError, StateError
from .models import Entity, utcnow
from .store import E, Session, Store, is_multi, split_filters

logger = logging.getLogger(__name__)


def _to_db(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _from_row(model: Type[E], row: asyncpg.Record) -> E:
    data = {
        key: UUID(str(value)) if isinstance(value, UUID) else value
        for key, value in dict(row).items()
    }
    return model.model_validate(data)


def _columns(model: Type[Entity]) -> List[str]:
    return list(model.model_fields.keys())


def _where(filters: Dict[str, Any], start: int = 1) -> Tuple[str, List[Any]]:
    clauses = []
    args: List[Any] = []
    for key, value in split_filters(filters).items():
        if not key.isidentifier():
            raise ValueError(f"Invalid filter column: {key}")
        if is_multi(value):
            args.append([_to_db(item) for item in value])
            clauses.append(f"{key} = ANY(${start + len(args) - 1})")
        else:
            args.append(_to_db(value))
            clauses.append(f"{key} = ${start + len(args) - 1}")
    return (' WHERE ' + ' AND '.join(clauses)) if clauses else '', args


class PostgresSession(Session):
    """Session bound to one connection inside an open transaction."""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def insert(self, entity: E) -> E:
        columns = _columns(type(entity))
        values = [_to_db(getattr(entity, column)) for column in columns]
        placeholders = ', '.join(f'${i}' for i in range(1, len(columns) + 1))
        try:
            await self.conn.execute(
                f'INSERT INTO {entity.__tablename__} ({", ".join(columns)}) '
                f'VALUES ({placeholders})',
                *values
            )
        except asyncpg.exceptions.UniqueViolationError as e:
            raise ConflictError(
                f"Duplicate {entity.__tablename__} row: {e.detail or e}",
                {'table': entity.__tablename__, 'constraint': e.constraint_name}
            )
        return entity

    async def get(self, model: Type[E], entity_id: Any, for_update: bool = False) -> Optional[E]:
        lock = ' FOR UPDATE' if for_update else ''
        row = await self.conn.fetchrow(
            f'SELECT * FROM {model.__tablename__} WHERE id = $1{lock}',
            entity_id if isinstance(entity_id, UUID) else UUID(str(entity_id))
        )
        return _from_row(model, row) if row else None

    async def find_one(self, model: Type[E], for_update: bool = False, **filters) -> Optional[E]:
        where, args = _where(filters)
        lock = ' FOR UPDATE' if for_update else ''
        row = await self.conn.fetchrow(
            f'SELECT * FROM {model.__tablename__}{where} ORDER BY created_at DESC LIMIT 1{lock}',
            *args
        )
        return _from_row(model, row) if row else None

    async def find(
        self,
        model: Type[E],
        order_by: str = 'created_at',
        descending: bool = True,
        limit: Optional[int] = None,
        offset: int = 0,
        **filters
    ) -> List[E]:
        if order_by not in model.model_fields:
            raise ValueError(f"Invalid sort column: {order_by}")
        where, args = _where(filters)
        query = (
            f'SELECT * FROM {model.__tablename__}{where} '
            f'ORDER BY {order_by} {"DESC" if descending else "ASC"}'
        )
        if limit is not None:
            args.append(limit)
            query += f' LIMIT ${len(args)}'
        if offset:
            args.append(offset)
            query += f' OFFSET ${len(args)}'
        rows = await self.conn.fetch(query, *args)
        return [_from_row(model, row) for row in rows]

    async def count(self, model: Type[E], **filters) -> int:
        where, args = _where(filters)
        return await self.conn.fetchval(
            f'SELECT COUNT(*) FROM {model.__tablename__}{where}',
            *args
        )

    async def update(self, entity: E, expected_status: Any = None) -> E:
        model = type(entity)
        if 'updated_at' in model.model_fields:
            entity.updated_at = utcnow()
        columns = [column for column in _columns(model) if column != 'id']
        assignments = ', '.join(f'{column} = ${i}' for i, column in enumerate(columns, start=2))
        args = [entity.id] + [_to_db(getattr(entity, column)) for column in columns]
        query = f'UPDATE {entity.__tablename__} SET {assignments} WHERE id = $1'
        if expected_status is not None:
            args.append(_to_db(expected_status))
            query += f' AND status = ${len(args)}'
        try:
            updated = await self.conn.fetchval(query + ' RETURNING id', *args)
        except asyncpg.exceptions.UniqueViolationError as e:
            raise ConflictError(
                f"Duplicate {entity.__tablename__} row: {e.detail or e}",
                {'table': entity.__tablename__, 'constraint': e.constraint_name}
            )
        if updated is None:
            current = await self.conn.fetchval(
                f'SELECT status FROM {entity.__tablename__} WHERE id = $1', entity.id
            ) if expected_status is not None else None
            if current is None:
                raise NotFoundError(f"{entity.__tablename__} row {entity.id} not found")
            raise StateError(
                f"{entity.__tablename__} row {entity.id} is {current}, "
                f"expected {_to_db(expected_status)}"
            )
        return entity


class PostgresStore(Store):
    """Store backed by an asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresSession]:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield PostgresSession(conn)


__all__ = ['PostgresStore', 'PostgresSession']
