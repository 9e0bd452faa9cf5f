"""
Metadata diffing and synchronization.
"""

from tier_sync.sync.differ import DiffSummary, diff, summarize
from tier_sync.sync.synchronizer import Synchronizer

__all__ = [
    "DiffSummary",
    "diff",
    "summarize",
    "Synchronizer",
]
