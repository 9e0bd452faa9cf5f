"""
Tier Sync - GraphQL metadata synchronization for multi-tier PostgreSQL databases

Keeps a GraphQL metadata engine's tracked tables and relationships converged
with the live relational schema of each tier (admin, operator, member)
across development and production.

Features:
- Foreign key introspection with canonical relationship naming
- Idempotent, ordered metadata diffs with relationship pruning
- Phased pipeline with reload/rebuild fallback and bounded retries
- Fixture data round trip through the GraphQL API
- Development vs production drift reports
"""

__version__ = "0.1.0"
__author__ = "Tier Sync Team"

from tier_sync.models import (
    DesiredGraph,
    ForeignKey,
    PipelineRun,
    SyncResult,
    TableRef,
    TrackedState,
)
from tier_sync.config import TierConfig, load_tier_config
from tier_sync.discovery import RelationshipResolver, build_desired_graph
from tier_sync.sync import Synchronizer, diff
from tier_sync.pipeline import (
    EnvironmentComparator,
    PipelineOptions,
    SyncPipeline,
)

__all__ = [
    # Core models
    "DesiredGraph",
    "ForeignKey",
    "PipelineRun",
    "SyncResult",
    "TableRef",
    "TrackedState",
    # Configuration
    "TierConfig",
    "load_tier_config",
    # Discovery and sync
    "RelationshipResolver",
    "build_desired_graph",
    "Synchronizer",
    "diff",
    # Pipeline
    "EnvironmentComparator",
    "PipelineOptions",
    "SyncPipeline",
]
