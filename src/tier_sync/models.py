"""
Core data models for the tier_sync package.

Defines the fundamental data structures used throughout the system including
table references, foreign keys, relationships, tracked metadata state,
synchronization operations and pipeline run records.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

DEFAULT_SCHEMA = "public"


@dataclass(frozen=True, order=True)
class TableRef:
    """Identity key for a relational table."""
    schema: str
    name: str

    @property
    def qualified_name(self) -> str:
        """Return schema-qualified table name."""
        return f"{self.schema}.{self.name}"

    @property
    def graphql_name(self) -> str:
        """Default root field name the metadata engine exposes for this table."""
        if self.schema == DEFAULT_SCHEMA:
            return self.name
        return f"{self.schema}_{self.name}"

    @classmethod
    def parse(cls, value: str) -> TableRef:
        """Parse ``schema.name`` (or a bare name in the public schema)."""
        if "." in value:
            schema, name = value.split(".", 1)
            return cls(schema=schema, name=name)
        return cls(schema=DEFAULT_SCHEMA, name=value)

    def to_dict(self) -> Dict[str, str]:
        """Convert to the engine's table reference shape."""
        return {"schema": self.schema, "name": self.name}

    @classmethod
    def from_dict(cls, data: Any) -> TableRef:
        """Create from ``{"schema", "name"}`` or a bare table name."""
        if isinstance(data, str):
            return cls(schema=DEFAULT_SCHEMA, name=data)
        return cls(schema=data.get("schema", DEFAULT_SCHEMA), name=data["name"])

    def __str__(self) -> str:
        return self.qualified_name


@dataclass(frozen=True, order=True)
class ForeignKey:
    """One foreign key column pair as reported by the database catalog."""
    source_table: TableRef
    source_column: str
    target_table: TableRef
    target_column: str
    constraint_name: str

    @property
    def base_name(self) -> str:
        """Source column with a trailing ``_id`` suffix stripped."""
        column = self.source_column
        if column.lower().endswith("_id") and len(column) > 3:
            return column[:-3]
        return column


class RelationshipKind(str, Enum):
    """Direction of an exposed relationship."""
    OBJECT = "object"   # many-to-one, on the referencing table
    ARRAY = "array"     # one-to-many, on the referenced table


@dataclass(frozen=True, order=True)
class ObjectRelationship:
    """Many-to-one relationship attached to the FK's source table."""
    table: TableRef
    name: str
    foreign_key: ForeignKey

    kind = RelationshipKind.OBJECT

    @property
    def key(self) -> Tuple[TableRef, str]:
        return (self.table, self.name)

    @property
    def source_column(self) -> str:
        return self.foreign_key.source_column


@dataclass(frozen=True, order=True)
class ArrayRelationship:
    """One-to-many relationship attached to the FK's target table."""
    table: TableRef
    name: str
    foreign_key: ForeignKey

    kind = RelationshipKind.ARRAY

    @property
    def key(self) -> Tuple[TableRef, str]:
        return (self.table, self.name)

    @property
    def remote_table(self) -> TableRef:
        return self.foreign_key.source_table

    @property
    def remote_column(self) -> str:
        return self.foreign_key.source_column


@dataclass
class IntrospectionResult:
    """Tables, columns and foreign keys discovered in a live database."""
    tables: List[TableRef] = field(default_factory=list)
    foreign_keys: List[ForeignKey] = field(default_factory=list)
    columns: Dict[TableRef, List[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class DesiredGraph:
    """
    The complete set of tables and relationships that should be tracked.

    Computed fresh from introspection on every run and never persisted.
    """
    tables: FrozenSet[TableRef] = frozenset()
    object_relationships: FrozenSet[ObjectRelationship] = frozenset()
    array_relationships: FrozenSet[ArrayRelationship] = frozenset()

    @property
    def relationship_count(self) -> int:
        return len(self.object_relationships) + len(self.array_relationships)

    def relationship_keys(self) -> Set[Tuple[TableRef, str, RelationshipKind]]:
        keys = {(r.table, r.name, RelationshipKind.OBJECT) for r in self.object_relationships}
        keys.update((r.table, r.name, RelationshipKind.ARRAY) for r in self.array_relationships)
        return keys


@dataclass(frozen=True, order=True)
class TrackedRelationship:
    """A relationship the metadata engine currently exposes."""
    table: TableRef
    name: str
    kind: RelationshipKind


@dataclass(frozen=True, order=True)
class TrackedTable:
    """A table the metadata engine currently tracks."""
    table: TableRef
    custom_name: Optional[str] = None

    @property
    def root_field(self) -> str:
        return self.custom_name or self.table.graphql_name


@dataclass
class TrackedState:
    """The metadata engine's current belief about tracked tables and relationships."""
    source: str = "default"
    tables: Dict[TableRef, TrackedTable] = field(default_factory=dict)
    relationships: Set[TrackedRelationship] = field(default_factory=set)

    @property
    def table_refs(self) -> Set[TableRef]:
        return set(self.tables)

    @property
    def relationship_keys(self) -> Set[Tuple[TableRef, str, RelationshipKind]]:
        return {(r.table, r.name, r.kind) for r in self.relationships}

    def root_field(self, table: TableRef) -> str:
        tracked = self.tables.get(table)
        return tracked.root_field if tracked else table.graphql_name

    @classmethod
    def from_export(cls, document: Dict[str, Any], source: str = "default") -> TrackedState:
        """
        Build from an ``export_metadata`` document.

        Only the named source is considered; a missing source yields an
        empty state (nothing tracked).
        """
        state = cls(source=source)
        sources = document.get("sources") or []
        for src in sources:
            if src.get("name") != source:
                continue
            for entry in src.get("tables") or []:
                table = TableRef.from_dict(entry["table"])
                configuration = entry.get("configuration") or {}
                state.tables[table] = TrackedTable(
                    table=table,
                    custom_name=configuration.get("custom_name"),
                )
                for rel in entry.get("object_relationships") or []:
                    state.relationships.add(
                        TrackedRelationship(table, rel["name"], RelationshipKind.OBJECT)
                    )
                for rel in entry.get("array_relationships") or []:
                    state.relationships.add(
                        TrackedRelationship(table, rel["name"], RelationshipKind.ARRAY)
                    )
        return state


class CommandType(str, Enum):
    """Metadata engine command names."""
    TRACK_TABLE = "pg_track_table"
    UNTRACK_TABLE = "pg_untrack_table"
    CREATE_OBJECT_RELATIONSHIP = "pg_create_object_relationship"
    CREATE_ARRAY_RELATIONSHIP = "pg_create_array_relationship"
    DROP_RELATIONSHIP = "pg_drop_relationship"
    EXPORT_METADATA = "export_metadata"
    CLEAR_METADATA = "clear_metadata"
    RELOAD_METADATA = "reload_metadata"
    ADD_SOURCE = "pg_add_source"


@dataclass(frozen=True)
class MetadataCommand:
    """A typed ``{type, args}`` request for the metadata engine."""
    type: CommandType
    args: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """The single encoding boundary for command bodies."""
        return {"type": self.type.value, "args": self.args}


class OperationType(str, Enum):
    """Metadata operations the synchronizer can issue."""
    TRACK_TABLE = "track_table"
    UNTRACK_TABLE = "untrack_table"
    DROP_RELATIONSHIP = "drop_relationship"
    CREATE_OBJECT_RELATIONSHIP = "create_object_relationship"
    CREATE_ARRAY_RELATIONSHIP = "create_array_relationship"


# Application order; lower applies first.
OPERATION_ORDER = {
    OperationType.UNTRACK_TABLE: 0,
    OperationType.DROP_RELATIONSHIP: 1,
    OperationType.TRACK_TABLE: 2,
    OperationType.CREATE_OBJECT_RELATIONSHIP: 3,
    OperationType.CREATE_ARRAY_RELATIONSHIP: 4,
}


@dataclass(frozen=True)
class SyncOperation:
    """Base class for idempotent metadata operations."""
    table: TableRef

    op_type = OperationType.TRACK_TABLE

    @property
    def is_table_operation(self) -> bool:
        return self.op_type in (OperationType.TRACK_TABLE, OperationType.UNTRACK_TABLE)

    @property
    def referenced_tables(self) -> FrozenSet[TableRef]:
        return frozenset({self.table})

    @property
    def sort_key(self) -> Tuple[int, str, str]:
        return (OPERATION_ORDER[self.op_type], self.table.qualified_name, getattr(self, "name", ""))

    def to_command(self, source: str) -> MetadataCommand:
        raise NotImplementedError

    def describe(self) -> str:
        return f"{self.op_type.value} {self.table}"


@dataclass(frozen=True)
class TrackTable(SyncOperation):
    op_type = OperationType.TRACK_TABLE

    def to_command(self, source: str) -> MetadataCommand:
        return MetadataCommand(CommandType.TRACK_TABLE, {
            "source": source,
            "table": self.table.to_dict(),
        })


@dataclass(frozen=True)
class UntrackTable(SyncOperation):
    op_type = OperationType.UNTRACK_TABLE

    def to_command(self, source: str) -> MetadataCommand:
        return MetadataCommand(CommandType.UNTRACK_TABLE, {
            "source": source,
            "table": self.table.to_dict(),
            "cascade": True,
        })


@dataclass(frozen=True)
class DropRelationship(SyncOperation):
    name: str = ""

    op_type = OperationType.DROP_RELATIONSHIP

    def to_command(self, source: str) -> MetadataCommand:
        return MetadataCommand(CommandType.DROP_RELATIONSHIP, {
            "source": source,
            "table": self.table.to_dict(),
            "relationship": self.name,
            "cascade": True,
        })

    def describe(self) -> str:
        return f"{self.op_type.value} {self.table}.{self.name}"


@dataclass(frozen=True)
class CreateObjectRelationship(SyncOperation):
    name: str = ""
    source_column: str = ""

    op_type = OperationType.CREATE_OBJECT_RELATIONSHIP

    def to_command(self, source: str) -> MetadataCommand:
        return MetadataCommand(CommandType.CREATE_OBJECT_RELATIONSHIP, {
            "source": source,
            "table": self.table.to_dict(),
            "name": self.name,
            "using": {"foreign_key_constraint_on": self.source_column},
        })

    def describe(self) -> str:
        return f"{self.op_type.value} {self.table}.{self.name} ({self.source_column})"


@dataclass(frozen=True)
class CreateArrayRelationship(SyncOperation):
    name: str = ""
    remote_table: Optional[TableRef] = None
    remote_column: str = ""

    op_type = OperationType.CREATE_ARRAY_RELATIONSHIP

    @property
    def referenced_tables(self) -> FrozenSet[TableRef]:
        if self.remote_table is None:
            return frozenset({self.table})
        return frozenset({self.table, self.remote_table})

    def to_command(self, source: str) -> MetadataCommand:
        return MetadataCommand(CommandType.CREATE_ARRAY_RELATIONSHIP, {
            "source": source,
            "table": self.table.to_dict(),
            "name": self.name,
            "using": {
                "foreign_key_constraint_on": {
                    "table": self.remote_table.to_dict() if self.remote_table else None,
                    "column": self.remote_column,
                },
            },
        })

    def describe(self) -> str:
        return (
            f"{self.op_type.value} {self.table}.{self.name} "
            f"({self.remote_table}.{self.remote_column})"
        )


def order_operations(ops: Iterable[SyncOperation]) -> List[SyncOperation]:
    """Return ``ops`` in application order, deterministic within each group."""
    return sorted(ops, key=lambda op: op.sort_key)


@dataclass
class SyncResult:
    """Outcome of applying a batch of operations."""
    applied: List[SyncOperation] = field(default_factory=list)
    skipped_as_existing: List[SyncOperation] = field(default_factory=list)
    failed: List[Tuple[SyncOperation, str]] = field(default_factory=list)
    inconsistent: bool = False

    @property
    def applied_count(self) -> int:
        return len(self.applied)

    @property
    def attempted(self) -> int:
        return len(self.applied) + len(self.skipped_as_existing) + len(self.failed)

    @property
    def table_failures(self) -> List[Tuple[SyncOperation, str]]:
        return [(op, reason) for op, reason in self.failed if op.is_table_operation]

    @property
    def relationship_failures(self) -> List[Tuple[SyncOperation, str]]:
        return [(op, reason) for op, reason in self.failed if not op.is_table_operation]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applied": self.applied_count,
            "skipped_as_existing": len(self.skipped_as_existing),
            "failed": [{"operation": op.describe(), "reason": reason} for op, reason in self.failed],
            "inconsistent": self.inconsistent,
        }


class PhaseName(str, Enum):
    """Pipeline phases, in execution order."""
    RESET = "reset"
    INTROSPECT = "introspect"
    SYNCHRONIZE = "synchronize"
    DATA_WORKFLOW = "data_workflow"
    VERIFY = "verify"
    COMPARE = "compare"


class PhaseStatus(str, Enum):
    """Outcome of a single phase."""
    OK = "ok"
    DEGRADED = "degraded"   # completed with warnings; not fatal
    FAILED = "failed"       # fatal for this phase
    SKIPPED = "skipped"


@dataclass
class PhaseResult:
    """Record of one executed (or skipped) phase."""
    name: PhaseName
    status: PhaseStatus = PhaseStatus.OK
    counts: Dict[str, int] = field(default_factory=dict)
    messages: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None

    @property
    def elapsed_seconds(self) -> float:
        if self.ended_at is None:
            return 0.0
        return (self.ended_at - self.started_at).total_seconds()

    def degrade(self, message: str) -> None:
        """Mark degraded unless already failed."""
        self.messages.append(message)
        if self.status in (PhaseStatus.OK, PhaseStatus.SKIPPED):
            self.status = PhaseStatus.DEGRADED

    def fail(self, message: str) -> None:
        self.messages.append(message)
        self.status = PhaseStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name.value,
            "status": self.status.value,
            "counts": dict(self.counts),
            "messages": list(self.messages),
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


@dataclass
class PipelineRun:
    """
    Record of one pipeline execution for a (tier, environment).

    Created at pipeline start, appended to through phases and finalized into
    a summary. A failed phase is recorded, never dropped.
    """
    tier: str
    environment: str
    dry_run: bool = False
    strict: bool = False
    phases: List[PhaseResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None

    def add_phase(self, name: PhaseName) -> PhaseResult:
        phase = PhaseResult(name=name)
        self.phases.append(phase)
        return phase

    def skip_phase(self, name: PhaseName, reason: str) -> PhaseResult:
        phase = self.add_phase(name)
        phase.status = PhaseStatus.SKIPPED
        phase.messages.append(reason)
        phase.ended_at = phase.started_at
        return phase

    def latest(self, name: PhaseName) -> Optional[PhaseResult]:
        for phase in reversed(self.phases):
            if phase.name == name:
                return phase
        return None

    def finalize(self) -> None:
        self.ended_at = datetime.now()

    @property
    def elapsed_seconds(self) -> float:
        end = self.ended_at or datetime.now()
        return (end - self.started_at).total_seconds()

    @property
    def status(self) -> PhaseStatus:
        statuses = {p.status for p in self.phases}
        if PhaseStatus.FAILED in statuses:
            return PhaseStatus.FAILED
        if PhaseStatus.DEGRADED in statuses:
            return PhaseStatus.DEGRADED
        return PhaseStatus.OK

    @property
    def is_fatal(self) -> bool:
        if self.status == PhaseStatus.FAILED:
            return True
        return self.strict and self.status == PhaseStatus.DEGRADED

    @property
    def failed_operation_count(self) -> int:
        return sum(p.counts.get("failed", 0) for p in self.phases)

    @property
    def warning_count(self) -> int:
        return sum(len(p.messages) for p in self.phases if p.status == PhaseStatus.DEGRADED)

    @property
    def error_count(self) -> int:
        return sum(1 for p in self.phases if p.status == PhaseStatus.FAILED)

    @property
    def exit_code(self) -> int:
        """0 unless a phase is fatal, otherwise the failed operation count (1..255)."""
        if not self.is_fatal:
            return 0
        return max(1, min(self.failed_operation_count, 255))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier,
            "environment": self.environment,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "strict": self.strict,
            "phases": [p.to_dict() for p in self.phases],
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "failed_operations": self.failed_operation_count,
            "exit_code": self.exit_code,
        }
