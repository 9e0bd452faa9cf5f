"""
Exception taxonomy for tier_sync.

Adapters translate library exceptions (httpx, psycopg, subprocess) into these
at the boundary; the orchestrator maps them onto phase outcomes.
"""

from __future__ import annotations

from typing import Any, Optional


class TierSyncError(Exception):
    """Base class for all tier_sync errors."""


class ConfigurationError(TierSyncError):
    """Unknown tier/environment or a malformed configuration file."""


class ConnectivityError(TierSyncError):
    """Database or metadata engine unreachable, or a call timed out."""

    def __init__(self, message: str, target: Optional[str] = None):
        super().__init__(message)
        self.target = target


class IntrospectionError(TierSyncError):
    """The database catalog query could not be executed."""


class SyncOperationError(TierSyncError):
    """A single metadata operation was rejected by the engine."""

    def __init__(self, operation: Any, reason: str):
        super().__init__(f"{operation.describe()}: {reason}")
        self.operation = operation
        self.reason = reason


class VerificationMismatch(TierSyncError):
    """Post-sync checks did not hold."""


class DataCountMismatch(TierSyncError):
    """Fixture load/purge row counts disagree with the expected counts."""

    def __init__(self, table: str, expected: int, actual: int):
        super().__init__(f"{table}: expected {expected} rows, found {actual}")
        self.table = table
        self.expected = expected
        self.actual = actual


class ContainerError(TierSyncError):
    """A container lifecycle command failed."""


class EngineError(TierSyncError):
    """The metadata engine rejected a request outside an operation batch."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code
