"""
Utility modules for tier_sync.
"""

from tier_sync.utils.report import RunReporter

__all__ = ["RunReporter"]
