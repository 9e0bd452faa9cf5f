"""
Run summary reporting.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from tier_sync.models import PhaseStatus, PipelineRun

logger = logging.getLogger(__name__)


class RunReporter:
    """
    Writes the summary of a pipeline run as JSON and Markdown.

    The summary carries the tier, environment, overall status, every phase
    with its counts and messages, and timing.
    """

    def __init__(self, run: PipelineRun, extra: Optional[Dict[str, Any]] = None):
        """
        Initialize reporter.

        Args:
            run: Finalized pipeline run
            extra: Additional sections (for example an environment diff)
        """
        self.run = run
        self.report: Dict[str, Any] = run.to_dict()
        if extra:
            self.report.update(extra)

    @property
    def basename(self) -> str:
        stamp = self.run.started_at.strftime("%Y%m%d_%H%M%S")
        return f"run_{self.run.tier}_{self.run.environment}_{stamp}"

    def save(self, output_dir: Path) -> Tuple[Path, Path]:
        """
        Save run summary to files.

        Args:
            output_dir: Output directory

        Returns:
            Tuple of (json_path, markdown_path)
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        json_path = output_dir / f"{self.basename}.json"
        with open(json_path, "w") as f:
            json.dump(self.report, f, indent=2, default=str)

        md_path = output_dir / f"{self.basename}.md"
        with open(md_path, "w") as f:
            f.write(self._generate_markdown())

        logger.info(f"Run summary saved to {output_dir}")
        return json_path, md_path

    def log_summary(self) -> None:
        """Log one line per phase."""
        for phase in self.run.phases:
            counts = ", ".join(f"{k}={v}" for k, v in phase.counts.items())
            line = f"[{self.run.tier}/{self.run.environment}] {phase.name.value}: {phase.status.value}"
            if counts:
                line += f" ({counts})"
            if phase.status == PhaseStatus.FAILED:
                logger.error(line)
            elif phase.status == PhaseStatus.DEGRADED:
                logger.warning(line)
            else:
                logger.info(line)

    def _generate_markdown(self) -> str:
        """Generate Markdown version of the run summary."""
        r = self.report
        lines = [
            f"# Sync Run: {r['tier']} / {r['environment']}",
            "",
            f"- **Status**: {r['status']}",
            f"- **Dry Run**: {r['dry_run']}",
            f"- **Started**: {r['started_at']}",
            f"- **Ended**: {r['ended_at']}",
            f"- **Elapsed**: {r['elapsed_seconds']:.1f}s",
            f"- **Failed Operations**: {r['failed_operations']}",
            f"- **Exit Code**: {r['exit_code']}",
            "",
            "## Phases",
            "",
            "| Phase | Status | Counts | Elapsed |",
            "|-------|--------|--------|---------|",
        ]

        for phase in r["phases"]:
            counts = ", ".join(f"{k}={v}" for k, v in phase["counts"].items()) or "-"
            lines.append(
                f"| {phase['name']} | {phase['status']} | {counts} | {phase['elapsed_seconds']:.1f}s |"
            )
        lines.append("")

        with_messages = [p for p in r["phases"] if p["messages"]]
        if with_messages:
            lines.append("## Messages")
            lines.append("")
            for phase in with_messages:
                lines.append(f"### {phase['name']}")
                lines.append("")
                for message in phase["messages"]:
                    lines.append(f"- {message}")
                lines.append("")

        environment_diff = r.get("environment_diff")
        if environment_diff:
            a, b = environment_diff["environments"]
            lines.append("## Environment Differences")
            lines.append("")
            for side, label in (("only_in_a", a), ("only_in_b", b)):
                for category, names in environment_diff[side].items():
                    for name in names:
                        lines.append(f"- only in {label} ({category}): {name}")
            lines.append("")

        return "\n".join(lines)
