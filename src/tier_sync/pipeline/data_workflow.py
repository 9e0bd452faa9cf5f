"""
Fixture data workflow: purge, load, verify, purge, verify.

Exercises the freshly synchronized GraphQL surface end to end with CSV
fixture data. Fixtures are either a directory of ``<NN>_<root_field>.csv``
files (loaded in NN order) or a ``fixtures.yaml`` manifest::

    fixtures:
      - file: companies.csv
        table: operators_operator_companies
      - file: contacts.csv
        table: operators_operator_contacts
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
import yaml

from tier_sync.errors import ConfigurationError, DataCountMismatch, TierSyncError
from tier_sync.metadata.engine import MetadataEngineClient
from tier_sync.pipeline.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

MANIFEST_NAME = "fixtures.yaml"

_FIXTURE_FILE = re.compile(r"^(\d+)_(.+)\.csv$")


@dataclass
class Fixture:
    """One CSV file bound to a GraphQL root field."""
    root_field: str
    path: Path
    rows: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


def read_fixture_rows(path: Path) -> List[Dict[str, Any]]:
    """Read a CSV as strings; empty cells become nulls."""
    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
    except (pd.errors.EmptyDataError, pd.errors.ParserError, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Unreadable fixture file {path}: {e}") from e
    rows = df.to_dict(orient="records")
    return [{k: (v if v != "" else None) for k, v in row.items()} for row in rows]


def load_fixtures(directory: Path) -> List[Fixture]:
    """
    Discover fixtures in load order.

    Args:
        directory: Fixture directory (manifest or numbered CSV files)

    Returns:
        Fixtures in load order, rows read
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise ConfigurationError(f"Fixture directory not found: {directory}")

    manifest = directory / MANIFEST_NAME
    entries: List[Fixture] = []

    if manifest.exists():
        try:
            with open(manifest, "r") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {manifest}: {e}") from e
        items = (data.get("fixtures") or []) if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ConfigurationError(f"{manifest} must list fixtures, got {type(items).__name__}")
        for item in items:
            if not isinstance(item, dict) or "file" not in item or "table" not in item:
                raise ConfigurationError(f"Invalid fixture entry in {manifest}: {item}")
            entries.append(Fixture(root_field=item["table"], path=directory / item["file"]))
    else:
        numbered = []
        for path in directory.glob("*.csv"):
            match = _FIXTURE_FILE.match(path.name)
            if match:
                numbered.append((int(match.group(1)), match.group(2), path))
            else:
                logger.debug(f"Skipping unnumbered fixture file {path.name}")
        for _, root_field, path in sorted(numbered):
            entries.append(Fixture(root_field=root_field, path=path))

    for fixture in entries:
        if not fixture.path.exists():
            raise ConfigurationError(f"Fixture file not found: {fixture.path}")
        fixture.rows = read_fixture_rows(fixture.path)
        logger.debug(f"Read {fixture.row_count} rows for {fixture.root_field} from {fixture.path.name}")

    logger.info(f"Found {len(entries)} fixture files in {directory}")
    return entries


@dataclass
class DataWorkflowResult:
    """Counts and problems from one data workflow run."""
    fixtures: int = 0
    rows_loaded: int = 0
    rows_purged: int = 0
    mismatches: List[DataCountMismatch] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatches and not self.errors

    @property
    def failed(self) -> int:
        return len(self.mismatches) + len(self.errors)

    def to_counts(self) -> Dict[str, int]:
        return {
            "fixtures": self.fixtures,
            "rows_loaded": self.rows_loaded,
            "rows_purged": self.rows_purged,
            "mismatches": len(self.mismatches),
            "failed": self.failed,
        }


class DataWorkflow:
    """
    Runs purge -> load -> verify counts -> purge -> verify zero.

    Each purge and load call is retried independently for connectivity
    failures; engine rejections are recorded and the workflow continues.
    """

    def __init__(
        self,
        client: MetadataEngineClient,
        fixtures: List[Fixture],
        retry: Optional[RetryPolicy] = None,
        batch_size: int = 500,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.fixtures = fixtures
        self.retry = retry or RetryPolicy()
        self.batch_size = batch_size
        self._sleep = sleep

    def _call(self, func, description: str):
        return call_with_retry(func, self.retry, description=description, sleep=self._sleep)

    def run(self) -> DataWorkflowResult:
        result = DataWorkflowResult(fixtures=len(self.fixtures))

        logger.info("Step 1: Purging existing fixture data")
        self._purge(result)

        logger.info("Step 2: Loading fixture data")
        self._load(result)

        logger.info("Step 3: Verifying loaded row counts")
        self._verify({f.root_field: f.row_count for f in self.fixtures}, result)

        logger.info("Step 4: Purging fixture data")
        result.rows_purged = self._purge(result)

        logger.info("Step 5: Verifying tables are empty")
        self._verify({f.root_field: 0 for f in self.fixtures}, result)

        if result.ok:
            logger.info(f"Data workflow passed: {result.rows_loaded} rows loaded and purged")
        else:
            logger.warning(f"Data workflow finished with {result.failed} problems")
        return result

    def _purge(self, result: DataWorkflowResult) -> int:
        """Delete all rows in reverse load order; returns rows deleted."""
        deleted = 0
        for fixture in reversed(self.fixtures):
            root = fixture.root_field
            try:
                deleted += self._call(lambda: self.client.delete_all(root), f"purge {root}")
            except TierSyncError as e:
                result.errors.append(f"purge {root}: {e}")
                logger.warning(f"Purge failed for {root}: {e}")
        return deleted

    def _load(self, result: DataWorkflowResult) -> None:
        for fixture in self.fixtures:
            root = fixture.root_field
            try:
                for start in range(0, fixture.row_count, self.batch_size):
                    batch = fixture.rows[start:start + self.batch_size]
                    result.rows_loaded += self._call(
                        lambda: self.client.insert_rows(root, batch), f"load {root}"
                    )
            except TierSyncError as e:
                result.errors.append(f"load {root}: {e}")
                logger.warning(f"Load failed for {root}: {e}")
                continue
            logger.debug(f"Loaded {fixture.row_count} rows into {root}")

    def _verify(self, expected: Dict[str, int], result: DataWorkflowResult) -> None:
        for root, count in expected.items():
            try:
                actual = self._call(lambda: self.client.count_rows(root), f"count {root}")
            except TierSyncError as e:
                result.errors.append(f"count {root}: {e}")
                logger.warning(f"Count failed for {root}: {e}")
                continue
            if actual != count:
                mismatch = DataCountMismatch(root, count, actual)
                result.mismatches.append(mismatch)
                logger.warning(f"Row count mismatch: {mismatch}")
