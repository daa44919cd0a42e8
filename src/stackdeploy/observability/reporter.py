"""Run Report Generator.

Renders the aggregated RunResult as a rich summary table and writes JSON
reports for CI pipelines.
"""

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import structlog
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..execution.planner import ExecutionPlan
from ..models.results import NodeStatus, RunResult

logger = structlog.get_logger(__name__)

STATUS_STYLES = {
    NodeStatus.SUCCEEDED: "green",
    NodeStatus.FAILED: "bold red",
    NodeStatus.SKIPPED: "yellow",
    NodeStatus.CANCELLED: "magenta",
    NodeStatus.PENDING: "dim",
}


@dataclass
class RunReport:
    """
    Structured report data for one run.

    Attributes:
        project: Root project name
        direction: deploy or purge
        status: completed, partial, failed or cancelled
        start_time: Start timestamp
        end_time: End timestamp
        duration_seconds: Total duration
        dry_run: Whether it was a dry run
        targets: Dependency names the run was scoped to
        total_nodes: Planned nodes
        succeeded: Count of succeeded nodes
        failed: Count of failed nodes
        skipped: Count of skipped nodes
        cancelled: Count of cancelled nodes
        builds_skipped: Count of deploys that reused the previous build
        waves: Node names per wave
        nodes: Per-node detail
    """

    project: str
    direction: str
    status: str
    start_time: str | None
    end_time: str | None
    duration_seconds: float
    dry_run: bool
    targets: list[str]
    total_nodes: int
    succeeded: int
    failed: int
    skipped: int
    cancelled: int
    builds_skipped: int
    waves: list[list[str]] = field(default_factory=list)
    nodes: list[dict[str, Any]] = field(default_factory=list)


class ReportGenerator:
    """Generate reports for dependency runs."""

    def generate_report(self, plan: ExecutionPlan, result: RunResult, dry_run: bool = False) -> RunReport:
        """
        Generate report object from execution data.

        Args:
            plan: The plan that was run
            result: Aggregated run result
            dry_run: Dry run mode

        Returns:
            RunReport object
        """
        if result.success:
            status = "completed"
        elif result.cancelled:
            status = "cancelled"
        elif result.succeeded:
            status = "partial"
        else:
            status = "failed"

        summary = plan.summary()
        project = plan.graph.root_node.name if plan.graph is not None else ""

        return RunReport(
            project=project,
            direction=result.direction,
            status=status,
            start_time=result.started_at.isoformat() if result.started_at else None,
            end_time=result.completed_at.isoformat() if result.completed_at else None,
            duration_seconds=result.duration_seconds,
            dry_run=dry_run,
            targets=list(plan.targets),
            total_nodes=result.total,
            succeeded=len(result.succeeded),
            failed=len(result.failed),
            skipped=len(result.skipped),
            cancelled=len(result.cancelled),
            builds_skipped=sum(1 for r in result.results.values() if r.build_skipped),
            waves=[wave["nodes"] for wave in summary["waves"]],
            nodes=result.to_dict()["nodes"],
        )

    def write_json_report(self, report: RunReport, output_path: Path) -> None:
        """
        Write report as JSON.

        Args:
            report: Run report
            output_path: Output file path
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, "w") as f:
            json.dump(asdict(report), f, indent=2)

        logger.info("JSON report written", path=str(output_path))


def render_summary(console: Console, plan: ExecutionPlan, result: RunResult) -> None:
    """
    Print the per-node outcome table and the one-line totals.

    Args:
        console: Rich console
        plan: The plan that was run (gives the display order)
        result: Aggregated run result
    """
    table = Table(title=f"{result.direction.capitalize()} summary", show_header=True, header_style="bold cyan")
    table.add_column("Wave", justify="right")
    table.add_column("Dependency")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Details")

    for node_id in plan.node_ids:
        node_result = result.results.get(node_id)
        if node_result is None:
            continue

        style = STATUS_STYLES[node_result.status]
        details = node_result.error_message or ""
        if node_result.status == NodeStatus.SUCCEEDED and node_result.build_skipped:
            details = "build skipped"
        duration = f"{node_result.duration_ms / 1000:.1f}s" if node_result.duration_ms else "-"

        table.add_row(
            str(node_result.wave if node_result.wave is not None else "-"),
            escape(node_result.name),
            f"[{style}]{node_result.status.value}[/{style}]",
            duration,
            escape(details),
        )

    console.print(table)

    style = "green" if result.success else "red"
    console.print(f"[{style}]{result.get_summary()}[/{style}] in {result.duration_seconds:.1f}s")
