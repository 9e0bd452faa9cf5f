"""
Command-line interface for tier_sync.

Provides sync, reset, compare and relationships commands for keeping each
tier's GraphQL metadata converged with its database.
"""

from __future__ import annotations

import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from tier_sync import __version__
from tier_sync.config import (
    Environment,
    Tier,
    TierConfig,
    load_config_file,
    load_naming_rules,
    load_tier_config,
)
from tier_sync.discovery.relationship_resolver import RelationshipResolver
from tier_sync.errors import TierSyncError
from tier_sync.metadata.engine import MetadataEngineClient
from tier_sync.metadata.postgres import PostgresIntrospector
from tier_sync.models import PhaseStatus, PipelineRun
from tier_sync.pipeline.comparator import EnvironmentComparator, EnvironmentDiff, EnvironmentProbe
from tier_sync.pipeline.orchestrator import PipelineOptions, ResetMode, SyncPipeline
from tier_sync.utils.report import RunReporter

console = Console()

TIER_CHOICES = [t.value for t in Tier]
ENVIRONMENT_CHOICES = [e.value for e in Environment]

STATUS_STYLES = {
    PhaseStatus.OK: "green",
    PhaseStatus.DEGRADED: "yellow",
    PhaseStatus.FAILED: "red",
    PhaseStatus.SKIPPED: "dim",
}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with Rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )
    # Request-level lines from httpx are only useful when debugging
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def _config_data(ctx: click.Context) -> Dict[str, Any]:
    return ctx.obj.get("config_data") or {}


def _tier_config(ctx: click.Context, tier: str, environment: str) -> TierConfig:
    try:
        return load_tier_config(tier, environment, file_data=_config_data(ctx))
    except TierSyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


def _resolver(ctx: click.Context) -> RelationshipResolver:
    try:
        return RelationshipResolver(load_naming_rules(file_data=_config_data(ctx)))
    except TierSyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


def build_pipeline(
    config: TierConfig,
    options: PipelineOptions,
    resolver: RelationshipResolver,
    compare_with: Optional[EnvironmentProbe] = None,
) -> SyncPipeline:
    """Construct the pipeline for one tier."""
    return SyncPipeline(config, options, resolver=resolver, compare_with=compare_with)


def build_probe(config: TierConfig, resolver: RelationshipResolver, introspect: bool = True) -> EnvironmentProbe:
    """Construct a comparison probe for one (tier, environment)."""
    return EnvironmentProbe(
        config.label,
        MetadataEngineClient(config.engine),
        PostgresIntrospector(config.database) if introspect else None,
        resolver,
    )


def print_run_summary(run: PipelineRun) -> None:
    """Phase-by-phase table plus final error/warning counts."""
    table = Table(title=f"Sync Summary: {run.tier} ({run.environment})")
    table.add_column("Phase", style="cyan")
    table.add_column("Status")
    table.add_column("Counts", style="green")
    table.add_column("Elapsed", justify="right")

    for phase in run.phases:
        style = STATUS_STYLES[phase.status]
        counts = ", ".join(f"{k}={v}" for k, v in phase.counts.items()) or "-"
        table.add_row(
            phase.name.value,
            f"[{style}]{phase.status.value}[/{style}]",
            counts,
            f"{phase.elapsed_seconds:.1f}s",
        )

    console.print(table)

    for phase in run.phases:
        if phase.status in (PhaseStatus.DEGRADED, PhaseStatus.FAILED):
            for message in phase.messages:
                console.print(f"  [{STATUS_STYLES[phase.status]}]{phase.name.value}: {message}[/]")

    color = "red" if run.is_fatal else ("yellow" if run.status == PhaseStatus.DEGRADED else "green")
    console.print(
        f"\n[{color}]Run {run.status.value}: {run.error_count} errors, "
        f"{run.warning_count} warnings, {run.failed_operation_count} failed operations[/{color}]"
    )


def print_environment_diff(result: EnvironmentDiff, detailed: bool = False) -> None:
    table = Table(title=f"Environment Comparison: {result.label_a} vs {result.label_b}")
    table.add_column("Category", style="cyan")
    table.add_column(result.label_a, justify="right")
    table.add_column(result.label_b, justify="right")
    table.add_column(f"Only in {result.label_a}", style="yellow", justify="right")
    table.add_column(f"Only in {result.label_b}", style="yellow", justify="right")

    for category in result.only_in_a:
        table.add_row(
            category,
            str(result.counts_a.get(category, 0)),
            str(result.counts_b.get(category, 0)),
            str(len(result.only_in_a[category])),
            str(len(result.only_in_b[category])),
        )
    console.print(table)

    if detailed:
        for label, side in ((result.label_a, result.only_in_a), (result.label_b, result.only_in_b)):
            for category, names in side.items():
                for name in names:
                    console.print(f"  only in {label} [dim]({category})[/dim]: {name}")

    if result.in_sync:
        console.print("\n[green]Environments are in sync[/green]")
    else:
        console.print(f"\n[yellow]Environments differ in {result.difference_count} names[/yellow]")


def _save_report(run: PipelineRun, report_dir: Optional[Path], pipeline: SyncPipeline) -> None:
    reporter = RunReporter(
        run,
        extra={"environment_diff": pipeline.environment_diff.to_dict()} if pipeline.environment_diff else None,
    )
    reporter.log_summary()
    if report_dir:
        json_path, md_path = reporter.save(report_dir)
        console.print(f"Report saved to: {json_path} and {md_path}")


def _run_pipeline(
    ctx: click.Context,
    tier: str,
    environment: str,
    options: PipelineOptions,
    compare: bool,
    report_dir: Optional[Path],
) -> PipelineRun:
    config = _tier_config(ctx, tier, environment)
    resolver = _resolver(ctx)

    compare_with = None
    if compare:
        other = "production" if environment == "development" else "development"
        compare_with = build_probe(_tier_config(ctx, tier, other), resolver)

    pipeline = build_pipeline(config, options, resolver, compare_with)
    try:
        run = pipeline.run()
    finally:
        pipeline.client.close()
        if compare_with is not None:
            compare_with.client.close()
    _save_report(run, report_dir, pipeline)
    return run


@click.group()
@click.version_option(version=__version__, prog_name="tier-sync")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="YAML config file with tier settings and naming rules",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: Optional[Path]) -> None:
    """
    Tier Sync - GraphQL metadata synchronization for multi-tier databases

    Introspects each tier's PostgreSQL schema and converges the GraphQL
    engine's tracked tables and relationships onto it.
    """
    setup_logging(verbose)
    ctx.ensure_object(dict)
    try:
        ctx.obj["config_data"] = load_config_file(config_path)
    except TierSyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("tier", type=click.Choice(TIER_CHOICES + ["all"]))
@click.argument("environment", type=click.Choice(ENVIRONMENT_CHOICES))
@click.option("--dry-run", is_flag=True, help="Plan operations without applying them")
@click.option(
    "--strict-data-verify",
    "strict",
    is_flag=True,
    help="Treat warnings (count mismatches, partial relationship failures) as fatal",
)
@click.option(
    "--fixtures",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory of CSV fixtures for the data workflow",
)
@click.option("--compare", is_flag=True, help="Compare against the other environment afterwards")
@click.option("--no-fallback", is_flag=True, help="Do not fall back to a full reset on reload failure")
@click.option("--no-prune", is_flag=True, help="Keep tracked relationships whose foreign key is gone")
@click.option(
    "--reset",
    "reset_mode",
    type=click.Choice([m.value for m in ResetMode]),
    default=ResetMode.RELOAD.value,
    help="Metadata preparation before syncing",
)
@click.option(
    "--report-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory for JSON/Markdown run summaries",
)
@click.pass_context
def sync(
    ctx: click.Context,
    tier: str,
    environment: str,
    dry_run: bool,
    strict: bool,
    fixtures: Optional[Path],
    compare: bool,
    no_fallback: bool,
    no_prune: bool,
    reset_mode: str,
    report_dir: Optional[Path],
) -> None:
    """
    Synchronize tracked tables and relationships with the database.

    Examples:

        # Preview what would change
        tier-sync sync operator development --dry-run

        # Sync and run the fixture round trip
        tier-sync sync member development --fixtures ./test-data/member

        # Sync every tier in production and compare with development
        tier-sync sync all production --compare --report-dir reports
    """
    options = PipelineOptions(
        reset=ResetMode(reset_mode),
        dry_run=dry_run,
        strict=strict,
        allow_fallback=not no_fallback,
        prune=not no_prune,
        fixtures_dir=fixtures,
    )

    tiers = TIER_CHOICES if tier == "all" else [tier]
    console.print(f"[bold blue]Tier Sync[/bold blue] {', '.join(tiers)} ({environment})")
    if dry_run:
        console.print("[cyan]Dry run: no changes will be applied[/cyan]")

    runs: List[PipelineRun] = []
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task(f"Synchronizing {len(tiers)} tier(s)...", total=None)

        if len(tiers) == 1:
            runs.append(_run_pipeline(ctx, tiers[0], environment, options, compare, report_dir))
        else:
            with ThreadPoolExecutor(max_workers=len(tiers)) as executor:
                futures = [
                    executor.submit(_run_pipeline, ctx, t, environment, options, compare, report_dir)
                    for t in tiers
                ]
                runs = [f.result() for f in futures]

        progress.update(task, completed=True)

    for run in runs:
        print_run_summary(run)

    sys.exit(max(run.exit_code for run in runs))


@cli.command()
@click.argument("tier", type=click.Choice(TIER_CHOICES))
@click.argument("environment", type=click.Choice(ENVIRONMENT_CHOICES))
@click.option("--force", is_flag=True, help="Skip the confirmation prompt")
@click.option(
    "--fixtures",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Directory of CSV fixtures for the data workflow",
)
@click.option(
    "--report-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory for JSON/Markdown run summaries",
)
@click.pass_context
def reset(
    ctx: click.Context,
    tier: str,
    environment: str,
    force: bool,
    fixtures: Optional[Path],
    report_dir: Optional[Path],
) -> None:
    """
    Rebuild metadata from scratch, then re-sync.

    In development the tier's containers and metadata volume are recreated.
    In production containers are left alone; metadata is cleared and the
    database source re-added.

    Examples:

        tier-sync reset admin development --force
    """
    if environment == Environment.PRODUCTION.value:
        warning = f"This clears ALL GraphQL metadata for {tier} in PRODUCTION. Continue?"
    else:
        warning = f"This destroys the {tier} development containers and metadata volume. Continue?"

    if not force and not click.confirm(warning, default=False):
        console.print("[yellow]Reset cancelled[/yellow]")
        sys.exit(1)

    options = PipelineOptions(reset=ResetMode.FULL, fixtures_dir=fixtures)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        task = progress.add_task(f"Resetting {tier} ({environment})...", total=None)
        run = _run_pipeline(ctx, tier, environment, options, False, report_dir)
        progress.update(task, completed=True)

    print_run_summary(run)
    sys.exit(run.exit_code)


@cli.command()
@click.argument("tier", type=click.Choice(TIER_CHOICES))
@click.option("--detailed", is_flag=True, help="List every differing name")
@click.pass_context
def compare(ctx: click.Context, tier: str, detailed: bool) -> None:
    """
    Compare development and production for one tier.

    Exits 0 when both environments expose the same tables, relationships,
    types, queries and mutations, 1 otherwise.

    Examples:

        tier-sync compare operator --detailed
    """
    resolver = _resolver(ctx)
    dev = build_probe(_tier_config(ctx, tier, "development"), resolver, introspect=False)
    prod = build_probe(_tier_config(ctx, tier, "production"), resolver, introspect=False)

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Comparing environments...", total=None)
            result = EnvironmentComparator(dev, prod).compare()
            progress.update(task, completed=True)
    except TierSyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    finally:
        dev.client.close()
        prod.client.close()

    print_environment_diff(result, detailed)
    sys.exit(0 if result.in_sync else 1)


@cli.command()
@click.argument("tier", type=click.Choice(TIER_CHOICES))
@click.argument("environment", type=click.Choice(ENVIRONMENT_CHOICES))
@click.option(
    "--output",
    type=click.Path(path_type=Path),
    default=None,
    help="Output path for resolved relationships YAML",
)
@click.pass_context
def relationships(ctx: click.Context, tier: str, environment: str, output: Optional[Path]) -> None:
    """
    List the relationships derived from the database's foreign keys.

    Examples:

        tier-sync relationships member development --output member_relationships.yaml
    """
    config = _tier_config(ctx, tier, environment)
    resolver = _resolver(ctx)

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Introspecting foreign keys...", total=None)
            introspection = PostgresIntrospector(config.database).introspect()
            progress.update(task, completed=True)
    except TierSyncError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    resolved = resolver.resolve(introspection.foreign_keys, introspection.columns)

    rel_table = Table(title=f"Relationships: {config.label}")
    rel_table.add_column("Table", style="cyan")
    rel_table.add_column("Name", style="green")
    rel_table.add_column("Kind", style="yellow")
    rel_table.add_column("Via", style="magenta")

    for rel in resolved.object_relationships:
        rel_table.add_row(rel.table.qualified_name, rel.name, "object", rel.source_column)
    for rel in resolved.array_relationships:
        rel_table.add_row(
            rel.table.qualified_name,
            rel.name,
            "array",
            f"{rel.remote_table.qualified_name}.{rel.remote_column}",
        )

    console.print(rel_table)
    console.print(
        f"\n{len(introspection.tables)} tables, {len(resolved.object_relationships)} object and "
        f"{len(resolved.array_relationships)} array relationships"
    )

    if output:
        output = Path(output)
        output.parent.mkdir(parents=True, exist_ok=True)
        data = {"tier": tier, "environment": environment, **resolved.to_dict()}
        with open(output, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        console.print(f"\n[green]Relationships saved to: {output}[/green]")


if __name__ == "__main__":
    cli()
