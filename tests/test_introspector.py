"""Tests for the PostgreSQL schema introspector."""

from unittest.mock import MagicMock

import psycopg
import pytest
from psycopg.conninfo import conninfo_to_dict, make_conninfo

from tier_sync.config import DatabaseConfig
from tier_sync.errors import ConfigurationError, ConnectivityError, IntrospectionError
from tier_sync.metadata.postgres import EXCLUDED_SCHEMAS, PostgresIntrospector
from tier_sync.models import TableRef


def make_connect(results=None, execute_error=None, connect_error=None):
    """Connection factory returning a mock connection whose cursor yields ``results`` in order."""
    cursor = MagicMock()
    cursor.fetchall.side_effect = list(results or [])
    if execute_error is not None:
        cursor.execute.side_effect = execute_error

    conn = MagicMock()
    conn.__enter__.return_value = conn
    conn.cursor.return_value.__enter__.return_value = cursor

    connect = MagicMock(return_value=conn)
    if connect_error is not None:
        connect.side_effect = connect_error
    connect.cursor = cursor
    return connect


TABLE_ROWS = [
    ("public", "customers"),
    ("public", "orders"),
    ("sales", "sales_leads"),
]

COLUMN_ROWS = [
    ("public", "customers", "id"),
    ("public", "customers", "name"),
    ("public", "orders", "id"),
    ("public", "orders", "customer_id"),
    ("public", "order_summary", "total"),  # a view
    ("sales", "sales_leads", "id"),
]

FK_ROWS = [
    ("public", "orders", "customer_id", "public", "customers", "id", "orders_customer_id_fkey"),
]


class TestPostgresIntrospector:
    """Tests for PostgresIntrospector."""

    def test_introspect(self):
        connect = make_connect([TABLE_ROWS, COLUMN_ROWS, FK_ROWS])
        result = PostgresIntrospector(DatabaseConfig(), connect=connect).introspect()

        assert result.tables == [
            TableRef("public", "customers"),
            TableRef("public", "orders"),
            TableRef("sales", "sales_leads"),
        ]
        assert result.columns[TableRef("public", "orders")] == ["id", "customer_id"]
        assert TableRef("public", "order_summary") not in result.columns

        fk = result.foreign_keys[0]
        assert fk.source_table == TableRef("public", "orders")
        assert fk.target_table == TableRef("public", "customers")
        assert fk.constraint_name == "orders_customer_id_fkey"

    def test_composite_fk_yields_one_edge_per_column(self):
        fk_rows = [
            ("public", "lines", "order_id", "public", "orders", "id", "lines_order_fkey"),
            ("public", "lines", "order_rev", "public", "orders", "rev", "lines_order_fkey"),
        ]
        connect = make_connect([[("public", "lines"), ("public", "orders")], [], fk_rows])
        result = PostgresIntrospector(DatabaseConfig(), connect=connect).introspect()

        assert [(fk.source_column, fk.target_column) for fk in result.foreign_keys] == [
            ("order_id", "id"),
            ("order_rev", "rev"),
        ]

    def test_excluded_schemas_passed_as_parameter(self):
        connect = make_connect([[], [], []])
        config = DatabaseConfig(excluded_schemas=("audit",))
        PostgresIntrospector(config, connect=connect).introspect()

        params = connect.cursor.execute.call_args_list[0][0][1]
        assert set(EXCLUDED_SCHEMAS) <= set(params["excluded"])
        assert "audit" in params["excluded"]

    def test_timeouts_configured(self):
        connect = make_connect([[], [], []])
        config = DatabaseConfig(host="db", port=7102, dbname="operator", connect_timeout=5,
                                statement_timeout_ms=1500)
        PostgresIntrospector(config, connect=connect).introspect()

        _, kwargs = connect.call_args
        assert kwargs["connect_timeout"] == 5
        assert kwargs["port"] == 7102
        assert "password" not in kwargs
        assert kwargs["options"] == "-c statement_timeout=1500"

    def test_password_with_space(self):
        connect = make_connect([[], [], []])
        config = DatabaseConfig(password="s3cret pass")
        PostgresIntrospector(config, connect=connect).introspect()

        _, kwargs = connect.call_args
        assert kwargs["password"] == "s3cret pass"
        conninfo = make_conninfo(**config.connect_kwargs)
        assert conninfo_to_dict(conninfo)["password"] == "s3cret pass"

    def test_rejected_connection_settings(self):
        connect = make_connect(connect_error=psycopg.ProgrammingError("invalid connection option"))

        with pytest.raises(ConfigurationError, match="Invalid connection settings"):
            PostgresIntrospector(DatabaseConfig(), connect=connect).introspect()

    def test_connect_failure(self):
        connect = make_connect(connect_error=psycopg.OperationalError("connection refused"))

        with pytest.raises(ConnectivityError):
            PostgresIntrospector(DatabaseConfig(), connect=connect).introspect()

    def test_query_failure(self):
        connect = make_connect(execute_error=psycopg.ProgrammingError("permission denied"))

        with pytest.raises(IntrospectionError):
            PostgresIntrospector(DatabaseConfig(), connect=connect).introspect()
