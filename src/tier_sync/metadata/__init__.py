"""
Adapters for the external systems a tier is made of.

Provides the PostgreSQL schema introspector, the metadata engine HTTP client
and the docker compose lifecycle manager.
"""

from tier_sync.metadata.postgres import PostgresIntrospector
from tier_sync.metadata.engine import CommandResponse, MetadataEngineClient, SchemaSummary
from tier_sync.metadata.containers import DockerComposeManager

__all__ = [
    "PostgresIntrospector",
    "CommandResponse",
    "MetadataEngineClient",
    "SchemaSummary",
    "DockerComposeManager",
]
