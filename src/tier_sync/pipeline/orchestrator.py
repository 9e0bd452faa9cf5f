"""
Pipeline Orchestrator - runs the synchronization phases for one tier.

Phases, in order:

1. reset          reload metadata, or rebuild it from scratch
2. introspect     read the live relational schema
3. synchronize    diff desired vs tracked metadata and apply the difference
4. data_workflow  optional fixture purge/load/verify round trip
5. verify         check the exposed GraphQL surface
6. compare        optional diff against another environment

Each phase records a PhaseResult on the PipelineRun. A fatal error halts
only the phase it occurred in; the run record is always finalized.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

from tier_sync.config import TierConfig
from tier_sync.discovery.relationship_resolver import RelationshipResolver, build_desired_graph
from tier_sync.errors import EngineError, TierSyncError, VerificationMismatch
from tier_sync.metadata.containers import DockerComposeManager
from tier_sync.metadata.engine import MetadataEngineClient
from tier_sync.metadata.postgres import PostgresIntrospector
from tier_sync.models import (
    DesiredGraph,
    IntrospectionResult,
    PhaseName,
    PhaseResult,
    PhaseStatus,
    PipelineRun,
    SyncOperation,
    SyncResult,
)
from tier_sync.pipeline.comparator import EnvironmentComparator, EnvironmentDiff, EnvironmentProbe
from tier_sync.pipeline.data_workflow import DataWorkflow, load_fixtures
from tier_sync.pipeline.retry import RetryPolicy, call_with_retry, wait_for_service
from tier_sync.sync.differ import diff, summarize
from tier_sync.sync.synchronizer import Synchronizer

logger = logging.getLogger(__name__)


class ResetMode(str, Enum):
    """How metadata is prepared before introspection."""
    NONE = "none"
    RELOAD = "reload"   # reload metadata, falling back to a full reset
    FULL = "full"       # rebuild (development) or clear + re-add source (production)


@dataclass
class PipelineOptions:
    """Per-run switches."""
    reset: ResetMode = ResetMode.RELOAD
    dry_run: bool = False
    strict: bool = False
    allow_fallback: bool = True
    prune: bool = True
    fixtures_dir: Optional[Path] = None
    relationship_failure_tolerance: float = 0.25
    verify_sample_size: int = 5
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    wait_attempts: int = 30
    wait_interval: float = 2.0


class SyncPipeline:
    """
    Converges one tier's tracked metadata onto its live schema.

    Example:
        pipeline = SyncPipeline(config, PipelineOptions(dry_run=True))
        run = pipeline.run()
        sys.exit(run.exit_code)
    """

    def __init__(
        self,
        config: TierConfig,
        options: Optional[PipelineOptions] = None,
        client: Optional[MetadataEngineClient] = None,
        introspector: Optional[PostgresIntrospector] = None,
        containers: Optional[DockerComposeManager] = None,
        resolver: Optional[RelationshipResolver] = None,
        compare_with: Optional[EnvironmentProbe] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize pipeline.

        Args:
            config: Resolved tier configuration
            options: Run switches (defaults: reload reset, apply changes)
            client: Engine client (built from config if omitted)
            introspector: Schema introspector (built from config if omitted)
            containers: Compose manager (built from config if omitted; development only)
            resolver: Relationship resolver (built-in naming rules if omitted)
            compare_with: Probe for the environment to compare against
            sleep: Sleep function used by retries and waits
        """
        self.config = config
        self.options = options or PipelineOptions()
        self.client = client or MetadataEngineClient(config.engine)
        self.introspector = introspector or PostgresIntrospector(config.database)
        self._containers = containers
        self.resolver = resolver or RelationshipResolver()
        self.compare_with = compare_with
        self._sleep = sleep

        self.desired: Optional[DesiredGraph] = None
        self.planned_operations: List[SyncOperation] = []
        self.sync_result: Optional[SyncResult] = None
        self.environment_diff: Optional[EnvironmentDiff] = None
        self._fallback_used = False

    @property
    def containers(self) -> DockerComposeManager:
        if self._containers is None:
            self._containers = DockerComposeManager(self.config.containers)
        return self._containers

    @property
    def label(self) -> str:
        return self.config.label

    def _retry(self, func, description: str):
        return call_with_retry(func, self.options.retry, description=description, sleep=self._sleep)

    @contextmanager
    def _phase(self, run: PipelineRun, name: PhaseName) -> Iterator[PhaseResult]:
        """Record a phase; a TierSyncError fails the phase instead of the run."""
        phase = run.add_phase(name)
        logger.info(f"[{self.label}] {name.value}: started")
        try:
            yield phase
        except TierSyncError as e:
            phase.fail(str(e))
            logger.error(f"[{self.label}] {name.value}: {e}")
        finally:
            phase.ended_at = datetime.now()
            logger.info(f"[{self.label}] {name.value}: {phase.status.value} ({phase.elapsed_seconds:.1f}s)")

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self) -> PipelineRun:
        """Execute all phases and return the finalized run record."""
        opts = self.options
        run = PipelineRun(
            tier=self.config.tier.value,
            environment=self.config.environment.value,
            dry_run=opts.dry_run,
            strict=opts.strict,
        )
        self._fallback_used = False

        try:
            if opts.dry_run:
                run.skip_phase(PhaseName.RESET, "dry run")
            else:
                self._reset(run, opts.reset)

            synchronized = False
            while True:
                introspected = self._introspect(run)
                if introspected is None:
                    run.skip_phase(PhaseName.SYNCHRONIZE, "introspection failed")
                    break

                result = self._synchronize(run, introspected[1])
                synchronized = run.latest(PhaseName.SYNCHRONIZE).status != PhaseStatus.FAILED

                if result is not None and result.inconsistent and self._can_fall_back():
                    self._fallback_used = True
                    phase = run.latest(PhaseName.SYNCHRONIZE)
                    phase.status = PhaseStatus.DEGRADED
                    phase.messages.append("inconsistent metadata; restarting after full reset")
                    logger.warning(f"[{self.label}] Inconsistent metadata, falling back to full reset")
                    self._reset(run, ResetMode.FULL)
                    continue
                break

            self._data_workflow(run, synchronized)
            self._verify(run)

            if self.compare_with is not None:
                self._compare(run)
        finally:
            run.finalize()
            logger.info(
                f"[{self.label}] Run {run.status.value} in {run.elapsed_seconds:.1f}s "
                f"(exit code {run.exit_code})"
            )

        return run

    def _can_fall_back(self) -> bool:
        return self.options.allow_fallback and not self._fallback_used and not self.options.dry_run

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _reset(self, run: PipelineRun, mode: ResetMode) -> None:
        if mode == ResetMode.NONE:
            run.skip_phase(PhaseName.RESET, "reset disabled")
            return

        with self._phase(run, PhaseName.RESET) as phase:
            if mode == ResetMode.RELOAD:
                try:
                    self._retry(self.client.reload_metadata, "metadata reload")
                    phase.messages.append("metadata reloaded")
                    return
                except TierSyncError as e:
                    if not self._can_fall_back():
                        raise
                    self._fallback_used = True
                    phase.degrade(f"reload failed ({e}); falling back to full reset")
                    logger.warning(f"[{self.label}] Reload failed, falling back to full reset")

            self._full_reset(phase)

    def _full_reset(self, phase: PhaseResult) -> None:
        if self.config.is_production:
            # Production containers are never touched
            self._retry(self.client.clear_metadata, "clear metadata")
            self._retry(self.client.add_source, "add database source")
            phase.messages.append("metadata cleared and database source re-added")
        else:
            self.containers.rebuild()
            wait_for_service(
                self.client.health,
                attempts=self.options.wait_attempts,
                interval=self.options.wait_interval,
                description=f"{self.label} GraphQL engine",
                sleep=self._sleep,
            )
            phase.messages.append("containers rebuilt")

        self._retry(self.client.reload_metadata, "metadata reload")
        phase.counts["full_resets"] = phase.counts.get("full_resets", 0) + 1

    def _introspect(self, run: PipelineRun) -> Optional[Tuple[IntrospectionResult, DesiredGraph]]:
        introspected = None
        with self._phase(run, PhaseName.INTROSPECT) as phase:
            introspection = self._retry(self.introspector.introspect, "schema introspection")
            desired = build_desired_graph(introspection, self.resolver)
            phase.counts.update({
                "tables": len(desired.tables),
                "foreign_keys": len(introspection.foreign_keys),
                "relationships": desired.relationship_count,
            })
            self.desired = desired
            introspected = (introspection, desired)

        if introspected is None and not self.options.dry_run:
            # Degraded capability: keep the engine's view fresh, change nothing
            try:
                self.client.reload_metadata()
                run.latest(PhaseName.INTROSPECT).messages.append("metadata reloaded only")
            except TierSyncError as e:
                logger.warning(f"[{self.label}] Reload after failed introspection also failed: {e}")
        return introspected

    def _synchronize(self, run: PipelineRun, desired: DesiredGraph) -> Optional[SyncResult]:
        opts = self.options
        result = None

        with self._phase(run, PhaseName.SYNCHRONIZE) as phase:
            tracked = self._retry(self.client.export_metadata, "metadata export")
            ops = diff(desired, tracked, prune=opts.prune)
            self.planned_operations = ops
            phase.counts.update({
                "tables": len(desired.tables),
                "relationships": desired.relationship_count,
                "planned": len(ops),
            })

            if opts.dry_run:
                for op in ops:
                    logger.info(f"[{self.label}] Would apply: {op.describe()}")
                phase.messages.append(f"dry run: {len(ops)} operations planned, none applied")
                phase.counts.update(summarize(ops).to_dict())
                return None

            result = Synchronizer(self.client).apply(ops)
            self.sync_result = result
            phase.counts.update({
                "applied": result.applied_count,
                "skipped": len(result.skipped_as_existing),
                "failed": len(result.failed),
            })
            self._judge_sync(phase, ops, result)

        return result

    def _judge_sync(self, phase: PhaseResult, ops: List[SyncOperation], result: SyncResult) -> None:
        for op, reason in result.failed:
            phase.messages.append(f"{op.describe()}: {reason}")

        if result.table_failures:
            phase.fail(f"{len(result.table_failures)} table operations failed")
            return

        relationship_failures = len(result.relationship_failures)
        if not relationship_failures:
            return

        relationship_ops = sum(1 for op in ops if not op.is_table_operation)
        fraction = relationship_failures / relationship_ops if relationship_ops else 1.0
        message = f"{relationship_failures} of {relationship_ops} relationship operations failed"

        if self.options.strict or fraction > self.options.relationship_failure_tolerance:
            phase.fail(message)
        else:
            phase.degrade(message)

    def _data_workflow(self, run: PipelineRun, synchronized: bool) -> None:
        opts = self.options
        if opts.fixtures_dir is None:
            run.skip_phase(PhaseName.DATA_WORKFLOW, "no fixtures")
            return
        if opts.dry_run:
            run.skip_phase(PhaseName.DATA_WORKFLOW, "dry run")
            return
        if not synchronized:
            run.skip_phase(PhaseName.DATA_WORKFLOW, "synchronize did not complete")
            return

        with self._phase(run, PhaseName.DATA_WORKFLOW) as phase:
            fixtures = load_fixtures(opts.fixtures_dir)
            workflow = DataWorkflow(self.client, fixtures, retry=opts.retry, sleep=self._sleep)
            result = workflow.run()
            phase.counts.update(result.to_counts())

            if result.ok:
                return
            messages = [str(m) for m in result.mismatches] + result.errors
            for message in messages[:-1]:
                phase.messages.append(message)
            if opts.strict:
                phase.fail(messages[-1])
            else:
                phase.degrade(messages[-1])

    def _verify(self, run: PipelineRun) -> None:
        with self._phase(run, PhaseName.VERIFY) as phase:
            tracked = self._retry(self.client.export_metadata, "metadata export")
            problems: List[str] = []

            phase.counts["tracked_tables"] = len(tracked.tables)
            if not tracked.tables:
                problems.append("no tables are tracked")

            if self.desired is not None:
                phase.counts["database_tables"] = len(self.desired.tables)
                if not self.options.dry_run and tracked.table_refs != self.desired.tables:
                    problems.append(
                        f"tracked {len(tracked.tables)} tables, database has {len(self.desired.tables)}"
                    )

            summary = self.client.schema_summary()
            phase.counts.update({
                "types": len(summary.types),
                "queries": len(summary.queries),
                "mutations": len(summary.mutations),
            })

            sampled = 0
            for table in sorted(tracked.tables)[:self.options.verify_sample_size]:
                root = tracked.root_field(table)
                try:
                    self.client.sample_query(root)
                    sampled += 1
                except EngineError as e:
                    problems.append(f"query {root} failed: {e}")
            phase.counts["sampled"] = sampled

            if problems:
                error = VerificationMismatch("; ".join(problems))
                phase.counts["mismatches"] = len(problems)
                if self.options.strict:
                    phase.fail(str(error))
                else:
                    phase.degrade(str(error))

    def _compare(self, run: PipelineRun) -> None:
        with self._phase(run, PhaseName.COMPARE) as phase:
            own = EnvironmentProbe(self.label, self.client, self.introspector, self.resolver)
            result = EnvironmentComparator(own, self.compare_with).compare()
            self.environment_diff = result
            phase.counts.update({
                "only_in_a": sum(len(v) for v in result.only_in_a.values()),
                "only_in_b": sum(len(v) for v in result.only_in_b.values()),
            })
            if not result.in_sync:
                phase.degrade(f"{result.label_a} and {result.label_b} differ")
