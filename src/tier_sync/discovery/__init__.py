"""
Relationship discovery from foreign key metadata.

Usage:
    from tier_sync.discovery import RelationshipResolver, build_desired_graph

    graph = build_desired_graph(introspection, RelationshipResolver(rules))
"""

from tier_sync.discovery.naming import pluralize, singularize
from tier_sync.discovery.relationship_resolver import (
    RelationshipResolver,
    ResolvedRelationships,
    build_desired_graph,
)

__all__ = [
    "pluralize",
    "singularize",
    "RelationshipResolver",
    "ResolvedRelationships",
    "build_desired_graph",
]
