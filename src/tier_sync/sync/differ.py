"""
Metadata State Differ.

Compares the desired object graph with the engine's tracked state and emits
the minimal ordered list of operations that converges one onto the other.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List

from tier_sync.models import (
    CreateArrayRelationship,
    CreateObjectRelationship,
    DesiredGraph,
    DropRelationship,
    OperationType,
    SyncOperation,
    TrackTable,
    TrackedState,
    UntrackTable,
    order_operations,
)

logger = logging.getLogger(__name__)


@dataclass
class DiffSummary:
    """Operation counts per type."""
    counts: Dict[OperationType, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def is_empty(self) -> bool:
        return self.total == 0

    def get(self, op_type: OperationType) -> int:
        return self.counts.get(op_type, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {op_type.value: self.get(op_type) for op_type in OperationType}


def diff(desired: DesiredGraph, tracked: TrackedState, prune: bool = True) -> List[SyncOperation]:
    """
    Compute operations converging ``tracked`` onto ``desired``.

    Args:
        desired: Tables and relationships that should be exposed
        tracked: What the engine currently exposes
        prune: Drop tracked relationships that are no longer desired

    Returns:
        Operations in application order; empty when the states already match
    """
    ops: List[SyncOperation] = []
    tracked_tables = tracked.table_refs

    for table in desired.tables - tracked_tables:
        ops.append(TrackTable(table))

    removed_tables = tracked_tables - desired.tables
    for table in removed_tables:
        ops.append(UntrackTable(table))

    tracked_keys = tracked.relationship_keys
    for rel in desired.object_relationships:
        if (rel.table, rel.name, rel.kind) not in tracked_keys:
            ops.append(CreateObjectRelationship(rel.table, name=rel.name, source_column=rel.source_column))
    for rel in desired.array_relationships:
        if (rel.table, rel.name, rel.kind) not in tracked_keys:
            ops.append(CreateArrayRelationship(
                rel.table,
                name=rel.name,
                remote_table=rel.remote_table,
                remote_column=rel.remote_column,
            ))

    if prune:
        desired_keys = desired.relationship_keys()
        for rel in tracked.relationships:
            # Untracking a table cascades to its relationships
            if rel.table in removed_tables:
                continue
            if (rel.table, rel.name, rel.kind) not in desired_keys:
                ops.append(DropRelationship(rel.table, name=rel.name))

    ordered = order_operations(ops)
    if ordered:
        logger.info(f"Planned {len(ordered)} operations: {summarize(ordered).to_dict()}")
    else:
        logger.info("Tracked metadata already matches the live schema")
    return ordered


def summarize(ops: List[SyncOperation]) -> DiffSummary:
    counts = Counter(op.op_type for op in ops)
    return DiffSummary(counts=dict(counts))
