"""
Synchronization pipeline: orchestration, retries, fixture data workflow and
environment comparison.
"""

from tier_sync.pipeline.retry import RetryPolicy, call_with_retry, wait_for_service
from tier_sync.pipeline.data_workflow import DataWorkflow, DataWorkflowResult, load_fixtures
from tier_sync.pipeline.comparator import (
    EnvironmentComparator,
    EnvironmentDiff,
    EnvironmentProbe,
    EnvironmentSnapshot,
)
from tier_sync.pipeline.orchestrator import PipelineOptions, ResetMode, SyncPipeline

__all__ = [
    "RetryPolicy",
    "call_with_retry",
    "wait_for_service",
    "DataWorkflow",
    "DataWorkflowResult",
    "load_fixtures",
    "EnvironmentComparator",
    "EnvironmentDiff",
    "EnvironmentProbe",
    "EnvironmentSnapshot",
    "PipelineOptions",
    "ResetMode",
    "SyncPipeline",
]
