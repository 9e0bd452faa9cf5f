"""
Metadata Synchronizer.

Applies a batch of operations against the metadata engine one by one and
classifies each outcome. The batch always runs to completion: one failed
operation never prevents the rest from being attempted.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

from tier_sync.errors import ConnectivityError, SyncOperationError
from tier_sync.metadata.engine import MetadataEngineClient
from tier_sync.models import OPERATION_ORDER, OperationType, SyncOperation, SyncResult

logger = logging.getLogger(__name__)

RETRACTION_TYPES = (OperationType.UNTRACK_TABLE, OperationType.DROP_RELATIONSHIP)


class Synchronizer:
    """Submits operations through the engine client; no retries."""

    def __init__(
        self,
        client: MetadataEngineClient,
        on_progress: Optional[Callable[[SyncOperation], None]] = None,
    ):
        """
        Initialize synchronizer.

        Args:
            client: Engine client for the target tier
            on_progress: Optional callback invoked after each operation
        """
        self.client = client
        self.on_progress = on_progress

    def apply(self, ops: Sequence[SyncOperation]) -> SyncResult:
        """
        Apply ``ops`` and return the classified outcome.

        Table operations are applied before relationship operations even if
        ``ops`` is unordered; order within a group is preserved.
        """
        ordered: List[SyncOperation] = sorted(ops, key=lambda op: OPERATION_ORDER[op.op_type])
        result = SyncResult()

        for op in ordered:
            self._apply_one(op, result)
            if self.on_progress:
                self.on_progress(op)

        logger.info(
            f"Applied {result.applied_count}, skipped {len(result.skipped_as_existing)}, "
            f"failed {len(result.failed)} of {len(ordered)} operations"
        )
        return result

    def _apply_one(self, op: SyncOperation, result: SyncResult) -> None:
        try:
            response = self.client.execute(op.to_command(self.client.source))
        except ConnectivityError as e:
            self._record_failure(op, str(e), result)
            return

        if response.ok:
            result.applied.append(op)
            logger.debug(f"Applied {op.describe()}")
        elif response.already_applied:
            result.skipped_as_existing.append(op)
            logger.debug(f"Already in place: {op.describe()}")
        elif op.op_type in RETRACTION_TYPES and response.not_exists:
            result.skipped_as_existing.append(op)
            logger.debug(f"Already removed: {op.describe()}")
        else:
            if response.inconsistent:
                result.inconsistent = True
            self._record_failure(op, response.reason, result)

    def _record_failure(self, op: SyncOperation, reason: str, result: SyncResult) -> None:
        error = SyncOperationError(op, reason)
        logger.warning(f"Operation failed: {error}")
        result.failed.append((op, reason))
