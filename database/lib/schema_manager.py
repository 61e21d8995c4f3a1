"""Database schema management module.

This module handles schema versioning and migrations. Each version lives in
``database/schema/vN.py`` as a ``schema`` dict describing the full table set
for that version plus the ``migrations`` that bring version N-1 up to N.

A fresh database gets the latest table set directly. An existing database
replays the migrations of every version above its recorded one.
"""
import importlib
import logging
from pathlib import Path
from typing import Dict, Any, List

from ..exceptions import DatabaseSchemaError

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).resolve().parent.parent / 'schema'
SCHEMA_PACKAGE = 'database.schema'

def build_column_sql(col: Dict[str, Any]) -> str:
    """Render one column definition."""
    col_def = f"{col['name']} {col['type']}"
    if 'default' in col:
        col_def += f" DEFAULT {col['default']}"
    if col.get('nullable') is False:
        col_def += " NOT NULL"
    if 'check' in col:
        col_def += f" CHECK ({col['check']})"
    return col_def

def build_create_table_sql(table: Dict[str, Any]) -> str:
    """Render the CREATE TABLE statement for a table definition.

    Foreign keys and indexes are not included; they are added once every
    table exists.

    Args:
        table: Table definition dictionary

    Returns:
        SQL statement
    """
    columns: List[str] = []
    constraints: List[str] = []

    for col in table['columns']:
        if col.get('primary_key'):
            constraints.append(f"PRIMARY KEY ({col['name']})")
        elif col.get('unique'):
            constraints.append(f"UNIQUE ({col['name']})")
        columns.append(build_column_sql(col))

    # Composite primary key
    if isinstance(table.get('primary_key'), list):
        constraints.append(f"PRIMARY KEY ({', '.join(table['primary_key'])})")

    for unique in table.get('unique', []):
        constraints.append(f"UNIQUE ({', '.join(unique)})")

    table_def = ',\n    '.join(columns + constraints)
    return f"CREATE TABLE IF NOT EXISTS {table['name']} (\n    {table_def}\n)"

def build_index_sql(table_name: str, idx: Dict[str, Any]) -> str:
    """Render a CREATE INDEX statement."""
    unique = 'UNIQUE ' if idx.get('unique') else ''
    where = f" WHERE {idx['where']}" if 'where' in idx else ''
    return (
        f"CREATE {unique}INDEX IF NOT EXISTS {idx['name']} "
        f"ON {table_name}({', '.join(idx['columns'])}){where}"
    )

def build_foreign_key_sql(table_name: str, fk: Dict[str, Any]) -> str:
    """Render an ALTER TABLE ... ADD CONSTRAINT statement for a foreign key."""
    on_delete = f" ON DELETE {fk['on_delete']}" if 'on_delete' in fk else ''
    return (
        f"ALTER TABLE {table_name} "
        f"ADD CONSTRAINT fk_{table_name}_{fk['columns'][0]} "
        f"FOREIGN KEY ({', '.join(fk['columns'])}) "
        f"REFERENCES {fk['references']}{on_delete}"
    )

def load_schema_files(schema_dir: Path = SCHEMA_DIR) -> Dict[int, Dict[str, Any]]:
    """Load all schema version files.

    Returns:
        Dict mapping version numbers to schema definitions, sorted by version

    Raises:
        DatabaseSchemaError: If a schema file is malformed
    """
    schema_files: Dict[int, Dict[str, Any]] = {}

    if not schema_dir.exists():
        return schema_files

    for file in schema_dir.glob('v*.py'):
        try:
            version = int(file.stem[1:])
        except ValueError:
            logger.warning(f"Invalid schema filename: {file}")
            continue

        module = importlib.import_module(f"{SCHEMA_PACKAGE}.{file.stem}")
        if not hasattr(module, 'schema'):
            raise DatabaseSchemaError(f"Schema file {file} missing 'schema' definition")

        schema = module.schema
        if schema['version'] != version:
            raise DatabaseSchemaError(
                f"Schema version mismatch in {file}: "
                f"Expected v{version}, got v{schema['version']}"
            )
        schema_files[version] = schema

    return dict(sorted(schema_files.items()))

class SchemaManager:
    """Manages database schema versioning and migrations."""

    def __init__(self, pool, schema_dir: Path = SCHEMA_DIR) -> None:
        self.pool = pool
        self._schema_dir = Path(schema_dir)
        self.current_version = 0

    async def initialize(self) -> None:
        """Create the version table and apply pending migrations.

        Raises:
            DatabaseSchemaError: If schema initialization fails or no valid schema files are found
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute('''
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INT8 PRIMARY KEY,
                        applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                ''')
                row = await conn.fetchrow(
                    'SELECT version FROM schema_version ORDER BY version DESC LIMIT 1'
                )
                self.current_version = row['version'] if row else 0

            schema_files = load_schema_files(self._schema_dir)
            if not schema_files:
                raise DatabaseSchemaError("No valid schema files found in schema directory")

            await self._apply_migrations(schema_files)

        except DatabaseSchemaError:
            raise
        except Exception as e:
            logger.error(f"Schema initialization failed: {e}")
            raise DatabaseSchemaError(f"Failed to initialize schema: {e}")

    async def _apply_migrations(self, schema_files: Dict[int, Dict[str, Any]]) -> None:
        latest_version = max(schema_files.keys())
        if self.current_version >= latest_version:
            logger.info("Schema is up to date")
            return

        logger.info(f"Updating schema from version {self.current_version} to {latest_version}")

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if self.current_version == 0:
                    await self._create_fresh_schema(conn, schema_files[latest_version])
                else:
                    for version in range(self.current_version + 1, latest_version + 1):
                        if version not in schema_files:
                            continue
                        for migration in schema_files[version].get('migrations', []):
                            await conn.execute(migration)
                        await conn.execute(
                            'INSERT INTO schema_version (version) VALUES ($1)',
                            version
                        )
                        logger.info(f"Successfully migrated to version {version}")

        self.current_version = latest_version

    async def _create_fresh_schema(self, conn, schema: Dict[str, Any]) -> None:
        """Create every table of the latest schema, then constraints and triggers."""
        await conn.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')

        for table in schema.get('tables', []):
            await conn.execute(build_create_table_sql(table))
            logger.info(f"Created table {table['name']}")

        for table in schema.get('tables', []):
            for fk in table.get('foreign_keys', []):
                await conn.execute(build_foreign_key_sql(table['name'], fk))
            for idx in table.get('indexes', []):
                await conn.execute(build_index_sql(table['name'], idx))

        for trigger in schema.get('triggers', []):
            await self._create_trigger(conn, trigger)

        await conn.execute(
            'INSERT INTO schema_version (version) VALUES ($1)',
            schema['version']
        )
        logger.info(f"Successfully created fresh schema version {schema['version']}")

    async def _create_trigger(self, conn, trigger: Dict[str, Any]) -> None:
        await conn.execute(f'''
            CREATE OR REPLACE FUNCTION {trigger['function_name']}()
            RETURNS TRIGGER
            AS $${trigger['function_body']}$$
            LANGUAGE plpgsql;
        ''')
        await conn.execute(f"DROP TRIGGER IF EXISTS {trigger['name']} ON {trigger['table']}")
        await conn.execute(f'''
            CREATE TRIGGER {trigger['name']}
            {trigger['timing']} {trigger['event']} ON {trigger['table']}
            FOR EACH ROW
            EXECUTE FUNCTION {trigger['function_name']}();
        ''')
        logger.info(f"Created trigger {trigger['name']} on {trigger['table']}")
