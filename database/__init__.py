"""Database module for managing the Postgres connection pool and stores.

This module handles:
- Database connection pool initialization
- Schema management
- Store selection (``memory://`` runs without Postgres)
"""

import json
import logging
import ssl
from typing import Optional, Dict, Any
from urllib.parse import urlparse, parse_qs

import asyncpg
import backoff

from utils.idempotency import canonical_json
from .exceptions import DatabaseError, DatabaseSchemaError
from .lib.schema_manager import SchemaManager
from .memory import MemoryStore
from .postgres import PostgresStore
from .store import Session, Store

logger = logging.getLogger(__name__)

MEMORY_URL = 'memory://'

_pool: Optional[asyncpg.Pool] = None
_store: Optional[Store] = None


def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """Get connection kwargs from database URL.

    Args:
        db_url: Database connection URL

    Returns:
        Dict of connection parameters
    """
    params = parse_qs(urlparse(db_url).query)
    kwargs: Dict[str, Any] = {
        'server_settings': {
            'statement_timeout': '300000',  # 5 minutes
        }
    }
    if params.get('sslmode', ['disable'])[0] in ('require', 'verify-ca', 'verify-full'):
        context = ssl.create_default_context()
        context.check_hostname = params['sslmode'][0] == 'verify-full'
        if params['sslmode'][0] == 'require':
            context.verify_mode = ssl.CERT_NONE
        kwargs['ssl'] = context
    return kwargs


async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec(
        'jsonb', encoder=canonical_json, decoder=json.loads, schema='pg_catalog'
    )


@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def init_db(db_url: Optional[str] = None) -> asyncpg.Pool:
    """Initialize the database connection pool and schema.

    Args:
        db_url: Optional database URL. If not provided, will use settings.

    Returns:
        The connection pool

    Raises:
        ValueError: If database URL is not provided
        DatabaseSchemaError: If the schema cannot be applied
    """
    global _pool

    # Import here to avoid circular imports
    from config import settings_conf

    url = db_url or settings_conf.get('db_url')
    if not url:
        raise ValueError("Database URL not provided")
    if url.startswith(MEMORY_URL):
        raise ValueError("memory:// has no connection pool, use get_store()")

    try:
        _pool = await asyncpg.create_pool(
            url.split('?')[0],
            min_size=2,
            max_size=20,
            max_inactive_connection_lifetime=300.0,
            command_timeout=60.0,
            init=_init_connection,
            **_get_connection_kwargs(url)
        )
        await SchemaManager(_pool).initialize()
        logger.info("Database pool initialized")
        return _pool

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.

    Returns:
        The connection pool

    Raises:
        RuntimeError: If pool hasn't been initialized
    """
    if not _pool:
        await init_db()
    if not _pool:
        raise RuntimeError("Failed to initialize database pool")
    return _pool


async def get_store(db_url: Optional[str] = None) -> Store:
    """Get the process-wide store, creating it on first use.

    Args:
        db_url: Optional database URL; ``memory://`` selects the in-process store
    """
    global _store

    if _store is None:
        from config import settings_conf

        url = db_url or settings_conf.get('db_url')
        if url.startswith(MEMORY_URL):
            logger.warning("Using in-process store, data is lost on shutdown")
            _store = MemoryStore()
        else:
            _store = PostgresStore(_pool or await init_db(url))
    return _store


def set_store(store: Optional[Store]) -> None:
    """Replace the process-wide store."""
    global _store
    _store = store


async def close() -> None:
    """Close the database connection pool."""
    global _pool, _store

    if _pool:
        await _pool.close()
        _pool = None
    _store = None


# Export public interface
__all__ = [
    'init_db',
    'get_pool',
    'get_store',
    'set_store',
    'close',
    'Store',
    'Session',
    'MemoryStore',
    'PostgresStore',
    'DatabaseError',
    'DatabaseSchemaError',
]
