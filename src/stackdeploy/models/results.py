"""Result types for dependency runs."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class NodeStatus(str, Enum):
    """Terminal (or pending) state of one dependency within a run."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


SKIPPED_DUE_TO_DEPENDENCY_FAILURE = "skipped-due-to-dependency-failure"


@dataclass
class NodeResult:
    """
    Result of running the lifecycle operation for a single dependency.

    Attributes:
        node_id: Dependency node id
        name: Dependency name (for display)
        status: Terminal status
        error: The recorded error for failed nodes
        reason: Why the node was skipped or cancelled
        duration_ms: Time spent in the operation
        build_skipped: Whether the build step was short-circuited
        wave: Index of the wave the node was planned in
    """

    node_id: str
    name: str
    status: NodeStatus = NodeStatus.PENDING
    error: Exception | None = None
    reason: str | None = None
    duration_ms: float | None = None
    build_skipped: bool = False
    wave: int | None = None

    @property
    def error_message(self) -> str | None:
        """Error text for failed nodes, reason text otherwise."""
        if self.error is not None:
            cause = getattr(self.error, "cause", None)
            if cause is not None:
                return f"{self.error}: {cause}"
            return str(self.error)
        return self.reason


@dataclass
class RunResult:
    """
    Aggregated outcome of executing an ExecutionPlan.

    Attributes:
        direction: "deploy" or "purge"
        succeeded: Ids of nodes whose operation completed successfully, in completion order
        failed: Node id -> error for nodes whose operation failed or timed out
        skipped: Node id -> reason for nodes not attempted because a prerequisite failed
        cancelled: Ids of nodes never dispatched because the run was cancelled
        results: Per-node results keyed by id
        started_at: Start timestamp
        completed_at: Completion timestamp
    """

    direction: str
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, Exception] = field(default_factory=dict)
    skipped: dict[str, str] = field(default_factory=dict)
    cancelled: list[str] = field(default_factory=list)
    results: dict[str, NodeResult] = field(default_factory=dict)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def success(self) -> bool:
        """True only when every planned node succeeded."""
        return (
            not self.failed
            and not self.skipped
            and not self.cancelled
            and len(self.succeeded) == len(self.results)
        )

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def duration_seconds(self) -> float:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    def record(self, result: NodeResult) -> None:
        """Store a terminal node result and index it by status."""
        self.results[result.node_id] = result
        if result.status == NodeStatus.SUCCEEDED:
            self.succeeded.append(result.node_id)
        elif result.status == NodeStatus.FAILED:
            self.failed[result.node_id] = result.error or Exception(result.reason or "failed")
        elif result.status == NodeStatus.SKIPPED:
            self.skipped[result.node_id] = result.reason or SKIPPED_DUE_TO_DEPENDENCY_FAILURE
        elif result.status == NodeStatus.CANCELLED:
            self.cancelled.append(result.node_id)

    def get_summary(self) -> str:
        """
        Get a human-readable summary.

        Returns:
            str: Summary string with counts per status.
        """
        return (
            f"{self.direction}: {len(self.succeeded)}/{self.total} succeeded, "
            f"{len(self.failed)} failed, {len(self.skipped)} skipped, "
            f"{len(self.cancelled)} cancelled"
        )

    def to_dict(self) -> dict[str, Any]:
        """Serializable view used by the JSON report."""
        return {
            "direction": self.direction,
            "success": self.success,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "nodes": [
                {
                    "id": r.node_id,
                    "name": r.name,
                    "status": r.status.value,
                    "wave": r.wave,
                    "error": r.error_message,
                    "duration_ms": r.duration_ms,
                    "build_skipped": r.build_skipped,
                }
                for r in self.results.values()
            ],
        }
