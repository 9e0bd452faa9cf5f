"""Shared fixtures: an in-memory metadata engine and canned introspection results."""

from typing import Any, Dict, List, Optional

import pytest

from tier_sync.config import Environment, Tier, default_tier_config
from tier_sync.errors import ConnectivityError, EngineError
from tier_sync.metadata.engine import CommandResponse, SchemaSummary
from tier_sync.models import (
    CommandType,
    ForeignKey,
    IntrospectionResult,
    MetadataCommand,
    RelationshipKind,
    TableRef,
    TrackedRelationship,
    TrackedState,
    TrackedTable,
)


class FakeEngine:
    """
    In-memory stand-in for MetadataEngineClient.

    Tracks tables and relationships the way the real engine does and answers
    data queries from per-root row lists.
    """

    source = "default"

    def __init__(self):
        self.tables: Dict[TableRef, TrackedTable] = {}
        self.relationships: set = set()
        self.rows: Dict[str, List[Dict[str, Any]]] = {}
        self.commands: List[MetadataCommand] = []
        # (command type value, table/relationship name) -> error text
        self.failures: Dict[tuple, str] = {}
        self.inconsistent_once = False
        self.reload_error: Optional[Exception] = None
        self.healthy = True
        self.reloads = 0
        self.clears = 0
        self.sources_added = 0
        self.closed = False
        self.broken_roots: set = set()
        self.count_offsets: Dict[str, int] = {}

    # -- metadata API -------------------------------------------------

    def execute(self, command: MetadataCommand) -> CommandResponse:
        self.commands.append(command)
        args = command.args
        table = TableRef.from_dict(args["table"]) if "table" in args else None
        label = args.get("name") or args.get("relationship") or (table.name if table else "")

        failure = self.failures.get((command.type.value, label))
        if failure is not None:
            if isinstance(failure, Exception):
                raise failure
            return CommandResponse(ok=False, status_code=400, error=failure, code="unexpected")

        if self.inconsistent_once and command.type == CommandType.TRACK_TABLE:
            self.inconsistent_once = False
            return CommandResponse(
                ok=False, status_code=400, error="cannot continue due to inconsistent metadata",
                code="unexpected",
            )

        if command.type == CommandType.TRACK_TABLE:
            if table in self.tables:
                return CommandResponse(False, 400, error=f"view/table already tracked: {table}",
                                       code="already-tracked")
            self.tables[table] = TrackedTable(table)
        elif command.type == CommandType.UNTRACK_TABLE:
            if table not in self.tables:
                return CommandResponse(False, 400, error=f"view/table not tracked: {table}",
                                       code="not-exists")
            del self.tables[table]
            self.relationships = {r for r in self.relationships if r.table != table}
        elif command.type in (CommandType.CREATE_OBJECT_RELATIONSHIP, CommandType.CREATE_ARRAY_RELATIONSHIP):
            kind = (RelationshipKind.OBJECT if command.type == CommandType.CREATE_OBJECT_RELATIONSHIP
                    else RelationshipKind.ARRAY)
            if table not in self.tables:
                return CommandResponse(False, 400, error=f"table {table} does not exist", code="not-exists")
            if any(r.table == table and r.name == args["name"] for r in self.relationships):
                return CommandResponse(False, 400, error=f"field with name {args['name']} already exists",
                                       code="already-exists")
            self.relationships.add(TrackedRelationship(table, args["name"], kind))
        elif command.type == CommandType.DROP_RELATIONSHIP:
            matching = {r for r in self.relationships
                        if r.table == table and r.name == args["relationship"]}
            if not matching:
                return CommandResponse(False, 400, error="relationship does not exist", code="not-exists")
            self.relationships -= matching

        return CommandResponse(ok=True, status_code=200, body={"message": "success"})

    def export_metadata(self) -> TrackedState:
        return TrackedState(
            source=self.source,
            tables=dict(self.tables),
            relationships=set(self.relationships),
        )

    def reload_metadata(self) -> Dict[str, Any]:
        if self.reload_error is not None:
            raise self.reload_error
        self.reloads += 1
        return {"message": "success", "is_consistent": True}

    def clear_metadata(self) -> None:
        self.clears += 1
        self.tables.clear()
        self.relationships.clear()

    def add_source(self) -> None:
        self.sources_added += 1

    def health(self) -> bool:
        return self.healthy

    def close(self) -> None:
        self.closed = True

    # -- GraphQL API --------------------------------------------------

    def schema_summary(self) -> SchemaSummary:
        roots = sorted(t.root_field for t in self.tables.values())
        return SchemaSummary(
            types=roots,
            queries=roots + [f"{r}_aggregate" for r in roots],
            mutations=[f"insert_{r}" for r in roots] + [f"delete_{r}" for r in roots],
        )

    def sample_query(self, root_field: str) -> None:
        if root_field in self.broken_roots:
            raise EngineError(f"field '{root_field}' not found in type: 'query_root'")

    def insert_rows(self, root_field: str, rows: List[Dict[str, Any]]) -> int:
        self.rows.setdefault(root_field, []).extend(rows)
        return len(rows)

    def delete_all(self, root_field: str) -> int:
        deleted = len(self.rows.get(root_field, []))
        self.rows[root_field] = []
        return deleted

    def count_rows(self, root_field: str) -> int:
        return len(self.rows.get(root_field, [])) + self.count_offsets.get(root_field, 0)


class FakeIntrospector:
    """Returns a canned IntrospectionResult, optionally failing first."""

    def __init__(self, result: IntrospectionResult, errors: Optional[List[Exception]] = None):
        self.result = result
        self.errors = list(errors or [])
        self.calls = 0

    def introspect(self) -> IntrospectionResult:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class FakeContainers:
    """Records rebuild calls instead of running docker."""

    def __init__(self):
        self.rebuilds = 0

    def rebuild(self) -> None:
        self.rebuilds += 1


def make_fk(source: str, column: str, target: str, target_column: str = "id",
            constraint: Optional[str] = None) -> ForeignKey:
    """Build a ForeignKey from ``schema.table`` strings."""
    source_ref = TableRef.parse(source)
    return ForeignKey(
        source_table=source_ref,
        source_column=column,
        target_table=TableRef.parse(target),
        target_column=target_column,
        constraint_name=constraint or f"{source_ref.name}_{column}_fkey",
    )


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def round_trip_introspection():
    """customers <- orders.customer_id"""
    customers = TableRef("public", "customers")
    orders = TableRef("public", "orders")
    return IntrospectionResult(
        tables=[customers, orders],
        foreign_keys=[make_fk("public.orders", "customer_id", "public.customers")],
        columns={
            customers: ["id", "name"],
            orders: ["id", "customer_id", "total"],
        },
    )


@pytest.fixture
def dev_config():
    return default_tier_config(Tier.OPERATOR, Environment.DEVELOPMENT)


@pytest.fixture
def prod_config():
    return default_tier_config(Tier.OPERATOR, Environment.PRODUCTION)


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays."""
    delays = []

    def _sleep(seconds):
        delays.append(seconds)

    _sleep.delays = delays
    return _sleep


@pytest.fixture
def connectivity_error():
    return ConnectivityError("engine unreachable", target="engine")
