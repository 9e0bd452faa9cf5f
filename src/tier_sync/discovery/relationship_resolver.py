"""
Relationship Resolver - derives named relationships from foreign keys.

Every foreign key column pair yields two relationships:

1. An object (many-to-one) relationship on the referencing table
2. An array (one-to-many) relationship on the referenced table

Names are canonical: override rules first, then the column-derived default,
then deterministic disambiguation of collisions within a table.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import AbstractSet, Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from tier_sync.config import DEFAULT_NAMING_RULES, NamingRule
from tier_sync.discovery.naming import find_rule, pluralize, render_name, singularize
from tier_sync.models import (
    ArrayRelationship,
    DesiredGraph,
    ForeignKey,
    IntrospectionResult,
    ObjectRelationship,
    TableRef,
)

logger = logging.getLogger(__name__)


@dataclass
class ResolvedRelationships:
    """Named object and array relationships for a set of foreign keys."""
    object_relationships: List[ObjectRelationship] = field(default_factory=list)
    array_relationships: List[ArrayRelationship] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.object_relationships) + len(self.array_relationships)

    def to_dict(self) -> Dict[str, Any]:
        """Per-table listing, suitable for YAML export."""
        tables: Dict[str, Dict[str, List[Dict[str, str]]]] = {}
        for rel in self.object_relationships:
            entry = tables.setdefault(rel.table.qualified_name, {"object": [], "array": []})
            entry["object"].append({"name": rel.name, "column": rel.source_column})
        for rel in self.array_relationships:
            entry = tables.setdefault(rel.table.qualified_name, {"object": [], "array": []})
            entry["array"].append({
                "name": rel.name,
                "remote_table": rel.remote_table.qualified_name,
                "remote_column": rel.remote_column,
            })
        return {"tables": {name: tables[name] for name in sorted(tables)}}


class RelationshipResolver:
    """
    Computes canonical relationship names from foreign key metadata.

    Resolution is a pure function of the foreign key set (and the source
    tables' column names): input order does not affect the output.
    """

    def __init__(self, rules: Optional[Sequence[NamingRule]] = None):
        """
        Initialize resolver.

        Args:
            rules: Ordered override rules; defaults to the built-in rules
        """
        self.rules: List[NamingRule] = list(DEFAULT_NAMING_RULES if rules is None else rules)

    def resolve(
        self,
        foreign_keys: Iterable[ForeignKey],
        columns: Optional[Dict[TableRef, List[str]]] = None,
    ) -> ResolvedRelationships:
        """
        Resolve names for every foreign key.

        Args:
            foreign_keys: FK column pairs from introspection
            columns: Column names per table, used to avoid name/column clashes

        Returns:
            ResolvedRelationships with disambiguated names
        """
        columns = columns or {}
        fks = sorted(set(foreign_keys))

        object_candidates: Dict[TableRef, List[Tuple[str, ForeignKey]]] = defaultdict(list)
        array_candidates: Dict[TableRef, List[Tuple[str, ForeignKey]]] = defaultdict(list)

        for fk in fks:
            rule = find_rule(self.rules, fk)
            object_candidates[fk.source_table].append(
                (self._object_name(fk, rule, columns.get(fk.source_table, [])), fk)
            )
            array_candidates[fk.target_table].append((self._array_name(fk, rule), fk))

        result = ResolvedRelationships()
        object_names: Dict[TableRef, Set[str]] = defaultdict(set)
        for table in sorted(object_candidates):
            reserved = set(columns.get(table, []))
            for name, fk in self._disambiguate(object_candidates[table], reserved):
                object_names[table].add(name)
                result.object_relationships.append(ObjectRelationship(table=table, name=name, foreign_key=fk))
        # Object and array relationships share one namespace per table
        for table in sorted(array_candidates):
            reserved = object_names[table] | set(columns.get(table, []))
            for name, fk in self._disambiguate(array_candidates[table], reserved):
                result.array_relationships.append(ArrayRelationship(table=table, name=name, foreign_key=fk))

        logger.debug(
            f"Resolved {len(result.object_relationships)} object and "
            f"{len(result.array_relationships)} array relationships from {len(fks)} foreign keys"
        )
        return result

    def _object_name(self, fk: ForeignKey, rule: Optional[NamingRule], table_columns: List[str]) -> str:
        if rule is not None and rule.object_name:
            return render_name(rule.object_name, fk)

        name = fk.base_name
        if name in table_columns:
            # FK column without an _id suffix
            name = f"{singularize(fk.target_table.name)}_by_{fk.source_column}"
        return name

    def _array_name(self, fk: ForeignKey, rule: Optional[NamingRule]) -> str:
        if rule is not None and rule.array_name:
            return render_name(rule.array_name, fk)

        name = pluralize(fk.source_table.name)
        if fk.source_table.schema != fk.target_table.schema:
            name = f"{fk.source_table.schema}_{name}"
        return name

    def _disambiguate(
        self,
        candidates: List[Tuple[str, ForeignKey]],
        reserved: AbstractSet[str] = frozenset(),
    ) -> List[Tuple[str, ForeignKey]]:
        """
        Make names unique within one table.

        Names already taken in ``reserved`` (columns, or the table's object
        relationships) and every member of a colliding group get
        ``_by_<base>``; names still colliding after that get the constraint
        name appended, then a counter.
        """
        by_name: Dict[str, List[ForeignKey]] = defaultdict(list)
        for name, fk in candidates:
            if name in reserved:
                renamed_to = f"{name}_by_{fk.base_name}"
                logger.debug(f"Name '{name}' is already taken, using '{renamed_to}'")
                name = renamed_to
            by_name[name].append(fk)

        renamed: List[Tuple[str, ForeignKey]] = []
        for name, group in by_name.items():
            if len(group) == 1:
                renamed.append((name, group[0]))
            else:
                logger.debug(f"Name collision on '{name}' across {len(group)} foreign keys")
                renamed.extend((f"{name}_by_{fk.base_name}", fk) for fk in group)

        counts: Dict[str, int] = defaultdict(int)
        for name, _ in renamed:
            counts[name] += 1

        resolved: List[Tuple[str, ForeignKey]] = []
        seen: Set[str] = set()
        for name, fk in sorted(renamed, key=lambda item: (item[0], item[1])):
            if counts[name] > 1:
                name = f"{name}_{fk.constraint_name}"
            candidate = name
            suffix = 2
            while candidate in seen or candidate in reserved:
                candidate = f"{name}_{suffix}"
                suffix += 1
            seen.add(candidate)
            resolved.append((candidate, fk))
        return resolved


def build_desired_graph(
    introspection: IntrospectionResult,
    resolver: Optional[RelationshipResolver] = None,
) -> DesiredGraph:
    """
    Compute the complete set of tables and relationships to track.

    Relationships whose endpoint tables are not both introspected base tables
    (for example FKs into an excluded schema) are dropped.
    """
    resolver = resolver or RelationshipResolver()
    tables = frozenset(introspection.tables)

    usable = [
        fk for fk in introspection.foreign_keys
        if fk.source_table in tables and fk.target_table in tables
    ]
    dropped = len(introspection.foreign_keys) - len(usable)
    if dropped:
        logger.warning(f"Ignoring {dropped} foreign keys that reference untracked tables")

    resolved = resolver.resolve(usable, introspection.columns)
    return DesiredGraph(
        tables=tables,
        object_relationships=frozenset(resolved.object_relationships),
        array_relationships=frozenset(resolved.array_relationships),
    )
