"""
Environment Comparator.

Snapshots the tracked metadata and exposed GraphQL schema of two
environments of the same tier and reports what exists in only one of them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from tier_sync.discovery.relationship_resolver import RelationshipResolver, build_desired_graph
from tier_sync.metadata.engine import MetadataEngineClient
from tier_sync.metadata.postgres import PostgresIntrospector
from tier_sync.sync.differ import diff

logger = logging.getLogger(__name__)

CATEGORIES = ("tables", "relationships", "types", "queries", "mutations")


@dataclass
class EnvironmentSnapshot:
    """Names visible in one environment, per category."""
    label: str
    tables: Set[str] = field(default_factory=set)
    relationships: Set[str] = field(default_factory=set)
    types: Set[str] = field(default_factory=set)
    queries: Set[str] = field(default_factory=set)
    mutations: Set[str] = field(default_factory=set)
    pending_operations: Optional[int] = None

    def counts(self) -> Dict[str, int]:
        counts = {category: len(getattr(self, category)) for category in CATEGORIES}
        if self.pending_operations is not None:
            counts["pending_operations"] = self.pending_operations
        return counts


class EnvironmentProbe:
    """Engine client plus optional introspector for one environment."""

    def __init__(
        self,
        label: str,
        client: MetadataEngineClient,
        introspector: Optional[PostgresIntrospector] = None,
        resolver: Optional[RelationshipResolver] = None,
    ):
        self.label = label
        self.client = client
        self.introspector = introspector
        self.resolver = resolver

    def snapshot(self) -> EnvironmentSnapshot:
        """
        Capture tracked state and schema summary.

        Raises:
            ConnectivityError: the environment cannot be reached
        """
        tracked = self.client.export_metadata()
        summary = self.client.schema_summary()

        snapshot = EnvironmentSnapshot(
            label=self.label,
            tables={t.qualified_name for t in tracked.tables},
            relationships={
                f"{r.table.qualified_name}.{r.name} ({r.kind.value})" for r in tracked.relationships
            },
            types=set(summary.types),
            queries=set(summary.queries),
            mutations=set(summary.mutations),
        )

        if self.introspector is not None:
            desired = build_desired_graph(self.introspector.introspect(), self.resolver)
            snapshot.pending_operations = len(diff(desired, tracked))

        logger.info(f"Snapshot {self.label}: {snapshot.counts()}")
        return snapshot


@dataclass
class EnvironmentDiff:
    """Set differences between two environment snapshots."""
    label_a: str
    label_b: str
    only_in_a: Dict[str, List[str]] = field(default_factory=dict)
    only_in_b: Dict[str, List[str]] = field(default_factory=dict)
    counts_a: Dict[str, int] = field(default_factory=dict)
    counts_b: Dict[str, int] = field(default_factory=dict)

    @property
    def in_sync(self) -> bool:
        return not any(self.only_in_a.values()) and not any(self.only_in_b.values())

    @property
    def difference_count(self) -> int:
        return sum(len(v) for v in self.only_in_a.values()) + sum(len(v) for v in self.only_in_b.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "environments": [self.label_a, self.label_b],
            "in_sync": self.in_sync,
            "only_in_a": self.only_in_a,
            "only_in_b": self.only_in_b,
            "counts": {self.label_a: self.counts_a, self.label_b: self.counts_b},
        }


class EnvironmentComparator:
    """Compares two environments of one tier."""

    def __init__(self, probe_a: EnvironmentProbe, probe_b: EnvironmentProbe):
        self.probe_a = probe_a
        self.probe_b = probe_b

    def compare(self) -> EnvironmentDiff:
        a = self.probe_a.snapshot()
        b = self.probe_b.snapshot()

        result = EnvironmentDiff(
            label_a=a.label,
            label_b=b.label,
            counts_a=a.counts(),
            counts_b=b.counts(),
        )
        for category in CATEGORIES:
            names_a = getattr(a, category)
            names_b = getattr(b, category)
            result.only_in_a[category] = sorted(names_a - names_b)
            result.only_in_b[category] = sorted(names_b - names_a)

        if result.in_sync:
            logger.info(f"{a.label} and {b.label} are in sync")
        else:
            logger.warning(f"{a.label} and {b.label} differ in {result.difference_count} names")
        return result
