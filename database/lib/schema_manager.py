"""Database schema management module.

Schema versions live in ``database/schema/vN.py`` as plain dicts. A fresh
database gets the latest version created directly; an existing one gets
the ``migrations`` statements of every newer version applied in order.
"""
import importlib
import logging
from pathlib import Path
from typing import Any, Dict

from ..exceptions import DatabaseSchemaError

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent.parent / 'schema'


class SchemaManager:
    """Applies versioned schema definitions to a connection pool."""

    def __init__(self, pool, schema_dir: Path = SCHEMA_DIR) -> None:
        """Initialize schema manager.

        Args:
            pool: asyncpg connection pool
            schema_dir: Directory containing vN.py schema files
        """
        self.pool = pool
        self._schema_dir = Path(schema_dir)
        self.current_version = 0

    async def initialize(self) -> None:
        """Bring the database up to the latest schema version.

        Raises:
            DatabaseSchemaError: If no schema files exist or a migration fails
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute('''
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INT8 PRIMARY KEY,
                        applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                ''')
                self.current_version = await conn.fetchval(
                    'SELECT COALESCE(MAX(version), 0) FROM schema_version'
                )

            schemas = self.load_schema_files()
            if not schemas:
                raise DatabaseSchemaError(f"No schema files found in {self._schema_dir}")

            await self._apply(schemas)

        except DatabaseSchemaError:
            raise
        except Exception as e:
            logger.error(f"Schema initialization failed: {e}")
            raise DatabaseSchemaError(f"Failed to initialize schema: {e}")

    def load_schema_files(self) -> Dict[int, Dict[str, Any]]:
        """Import every vN.py file, keyed and sorted by version."""
        schemas = {}
        for file in self._schema_dir.glob('v*.py'):
            try:
                version = int(file.stem[1:])
            except ValueError:
                logger.warning(f"Invalid schema filename: {file}")
                continue

            module = importlib.import_module(f"database.schema.{file.stem}")
            schema = getattr(module, 'schema', None)
            if schema is None:
                raise DatabaseSchemaError(f"Schema file {file} missing 'schema' definition")
            if schema['version'] != version:
                raise DatabaseSchemaError(
                    f"Schema version mismatch in {file}: "
                    f"expected v{version}, got v{schema['version']}"
                )
            schemas[version] = schema
        return dict(sorted(schemas.items()))

    async def _apply(self, schemas: Dict[int, Dict[str, Any]]) -> None:
        latest = max(schemas)
        if self.current_version >= latest:
            logger.info("Schema is up to date")
            return

        logger.info(f"Updating schema from version {self.current_version} to {latest}")
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if self.current_version == 0:
                    schema = schemas[latest]
                    for table in schema.get('tables', []):
                        await self._create_table(conn, table)
                    for table in schema.get('tables', []):
                        await self._add_constraints(conn, table)
                    await conn.execute('INSERT INTO schema_version (version) VALUES ($1)', latest)
                    logger.info(f"Created fresh schema version {latest}")
                    return

                for version in range(self.current_version + 1, latest + 1):
                    if version not in schemas:
                        continue
                    for statement in schemas[version].get('migrations', []):
                        await conn.execute(statement)
                    await conn.execute('INSERT INTO schema_version (version) VALUES ($1)', version)
                    logger.info(f"Migrated schema to version {version}")

    async def _create_table(self, conn, table: Dict[str, Any]) -> None:
        columns = []
        constraints = []
        for col in table['columns']:
            col_def = f"{col['name']} {col['type']}"
            if 'default' in col:
                col_def += f" DEFAULT {col['default']}"
            if col.get('nullable') is False:
                col_def += " NOT NULL"
            if col.get('primary_key'):
                constraints.append(f"PRIMARY KEY ({col['name']})")
            columns.append(col_def)

        for check in table.get('checks', []):
            constraints.append(f"CHECK ({check})")

        await conn.execute(
            f"CREATE TABLE IF NOT EXISTS {table['name']} ({', '.join(columns + constraints)})"
        )
        logger.info(f"Created table {table['name']}")

    async def _add_constraints(self, conn, table: Dict[str, Any]) -> None:
        for fk in table.get('foreign_keys', []):
            await conn.execute(f'''
                ALTER TABLE {table['name']}
                ADD CONSTRAINT fk_{table['name']}_{fk['columns'][0]}
                FOREIGN KEY ({', '.join(fk['columns'])})
                REFERENCES {fk['references']}
            ''')

        for idx in table.get('indexes', []):
            unique = 'UNIQUE ' if idx.get('unique') else ''
            where = f" WHERE {idx['where']}" if 'where' in idx else ''
            await conn.execute(
                f"CREATE {unique}INDEX IF NOT EXISTS {idx['name']} "
                f"ON {table['name']} ({', '.join(idx['columns'])}){where}"
            )
            logger.info(f"Created index {idx['name']} on {table['name']}")
