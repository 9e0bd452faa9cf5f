"""
PostgreSQL schema introspector using psycopg.

Extracts base tables, columns and foreign key column pairs from the
``information_schema`` views of a tier's database.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import psycopg

from tier_sync.config import DatabaseConfig
from tier_sync.errors import ConfigurationError, ConnectivityError, IntrospectionError
from tier_sync.models import ForeignKey, IntrospectionResult, TableRef

logger = logging.getLogger(__name__)


# Catalog and engine-internal schemas; any other pg_* schema is excluded too.
EXCLUDED_SCHEMAS = (
    "information_schema",
    "pg_catalog",
    "pg_toast",
    "hdb_catalog",
    "hdb_views",
)

TABLES_QUERY = """
    SELECT table_schema, table_name
    FROM information_schema.tables
    WHERE table_type = 'BASE TABLE'
      AND NOT (table_schema = ANY(%(excluded)s))
      AND left(table_schema, 3) <> 'pg_'
    ORDER BY table_schema, table_name
"""

COLUMNS_QUERY = """
    SELECT table_schema, table_name, column_name
    FROM information_schema.columns
    WHERE NOT (table_schema = ANY(%(excluded)s))
      AND left(table_schema, 3) <> 'pg_'
    ORDER BY table_schema, table_name, ordinal_position
"""

# One row per FK column pair; composite keys are paired by position.
FOREIGN_KEYS_QUERY = """
    SELECT
        kcu.table_schema,
        kcu.table_name,
        kcu.column_name,
        ref.table_schema AS target_schema,
        ref.table_name AS target_table,
        ref.column_name AS target_column,
        kcu.constraint_name
    FROM information_schema.referential_constraints rc
    JOIN information_schema.key_column_usage kcu
        ON kcu.constraint_schema = rc.constraint_schema
       AND kcu.constraint_name = rc.constraint_name
    JOIN information_schema.key_column_usage ref
        ON ref.constraint_schema = rc.unique_constraint_schema
       AND ref.constraint_name = rc.unique_constraint_name
       AND ref.ordinal_position = kcu.position_in_unique_constraint
    WHERE NOT (kcu.table_schema = ANY(%(excluded)s))
      AND left(kcu.table_schema, 3) <> 'pg_'
    ORDER BY kcu.table_schema, kcu.table_name, kcu.constraint_name, kcu.ordinal_position
"""


class PostgresIntrospector:
    """
    Reads the live relational schema of one tier database.

    Read-only: only ``information_schema`` is queried. Each call to
    :meth:`introspect` opens and closes its own connection.
    """

    def __init__(
        self,
        database: DatabaseConfig,
        connect: Optional[Callable[..., Any]] = None,
    ):
        """
        Initialize introspector.

        Args:
            database: Connection parameters for the tier database
            connect: Connection factory (defaults to ``psycopg.connect``)
        """
        self.database = database
        self._connect = connect or psycopg.connect
        self.excluded_schemas: List[str] = list(EXCLUDED_SCHEMAS) + list(database.excluded_schemas)

    def _open(self):
        try:
            return self._connect(
                **self.database.connect_kwargs,
                options=f"-c statement_timeout={self.database.statement_timeout_ms}",
            )
        except psycopg.OperationalError as e:
            raise ConnectivityError(
                f"Cannot connect to {self.database.host}:{self.database.port}/{self.database.dbname}: {e}",
                target="database",
            ) from e
        except psycopg.ProgrammingError as e:
            raise ConfigurationError(
                f"Invalid connection settings for {self.database.host}:{self.database.port}/{self.database.dbname}: {e}"
            ) from e

    def introspect(self) -> IntrospectionResult:
        """
        Enumerate base tables, their columns and all foreign key column pairs.

        Raises:
            ConfigurationError: connection settings rejected by libpq
            ConnectivityError: database unreachable or the query timed out
            IntrospectionError: catalog query failed
        """
        params = {"excluded": self.excluded_schemas}

        with self._open() as conn:
            try:
                with conn.cursor() as cursor:
                    tables = self._fetch_tables(cursor, params)
                    columns = self._fetch_columns(cursor, params, tables)
                    foreign_keys = self._fetch_foreign_keys(cursor, params)
            except psycopg.OperationalError as e:
                raise ConnectivityError(f"Catalog query interrupted: {e}", target="database") from e
            except psycopg.Error as e:
                raise IntrospectionError(f"Catalog query failed: {e}") from e

        logger.info(
            f"Introspected {len(tables)} tables, {len(foreign_keys)} foreign key columns "
            f"from {self.database.dbname}"
        )
        return IntrospectionResult(tables=tables, foreign_keys=foreign_keys, columns=columns)

    def _fetch_tables(self, cursor, params: Dict[str, Any]) -> List[TableRef]:
        cursor.execute(TABLES_QUERY, params)
        return [TableRef(schema=row[0], name=row[1]) for row in cursor.fetchall()]

    def _fetch_columns(
        self,
        cursor,
        params: Dict[str, Any],
        tables: Sequence[TableRef],
    ) -> Dict[TableRef, List[str]]:
        """Get ordered column names, restricted to base tables (views dropped)."""
        cursor.execute(COLUMNS_QUERY, params)
        columns: Dict[TableRef, List[str]] = {t: [] for t in tables}
        for schema, table_name, column_name in cursor.fetchall():
            ref = TableRef(schema=schema, name=table_name)
            if ref in columns:
                columns[ref].append(column_name)
        return columns

    def _fetch_foreign_keys(self, cursor, params: Dict[str, Any]) -> List[ForeignKey]:
        cursor.execute(FOREIGN_KEYS_QUERY, params)
        foreign_keys = []
        for row in cursor.fetchall():
            schema, table_name, column, target_schema, target_table, target_column, constraint = row
            foreign_keys.append(ForeignKey(
                source_table=TableRef(schema, table_name),
                source_column=column,
                target_table=TableRef(target_schema, target_table),
                target_column=target_column,
                constraint_name=constraint,
            ))
        return foreign_keys
