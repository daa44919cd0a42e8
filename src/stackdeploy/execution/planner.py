"""Execution Planner - turn a dependency graph into ordered waves.

Overview:
--------
The ExecutionPlanner takes a validated DependencyGraph and converts it into
an ExecutionPlan: an ordered list of waves, each a set of nodes with no
dependency relationship between them for the requested direction.

Key Concepts:
------------
- Level: 0 for a node without children, else 1 + max(level of children).
  Back edges are treated as already satisfied.
- Deploy: waves ordered by level ascending (leaves first, root last).
- Purge: the exact reverse of the deploy waves over the same node set.
- Tie-break: inside a wave, nodes keep the first-visit order of a
  breadth-first walk from the root (children in declaration order).

Example:
-------
Given:
  frontend -> backend -> database
  frontend -> auth

Deploy plan:
  Wave 0: [auth, database]   - leaves, run in parallel
  Wave 1: [backend]
  Wave 2: [frontend]

Purge plan:
  Wave 0: [frontend]
  Wave 1: [backend]
  Wave 2: [auth, database]

Scoping:
-------
When target names are given, a deploy plan covers the targets, every ancestor
up to the root and every descendant of a target. A purge plan covers only the
targets and their descendants; the projects that use a target are left alone,
and a descendant still reachable from outside the targets without passing
through one of them is left in place.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from ..dependency.graph import DependencyGraph
from ..utils.exceptions import UnknownDependencyError

logger = structlog.get_logger(__name__)


class Direction(str, Enum):
    """Lifecycle operation a plan is built for."""

    DEPLOY = "deploy"
    PURGE = "purge"


@dataclass
class Wave:
    """
    A group of nodes that can execute in parallel.

    Attributes:
        index: Position of this wave in the plan
        node_ids: Node ids in tie-break order
    """

    index: int
    node_ids: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        """Number of nodes in wave."""
        return len(self.node_ids)


@dataclass
class ExecutionPlan:
    """
    Ordered waves for one direction over (a subset of) a dependency graph.

    Attributes:
        direction: Deploy or purge
        waves: Waves in execution order
        targets: Names the plan was scoped to (empty = whole graph)
        graph: The graph the plan was built from
    """

    direction: Direction
    waves: list[Wave] = field(default_factory=list)
    targets: list[str] = field(default_factory=list)
    graph: DependencyGraph | None = None

    @property
    def node_ids(self) -> list[str]:
        """All planned ids in execution order."""
        return [node_id for wave in self.waves for node_id in wave.node_ids]

    @property
    def node_count(self) -> int:
        return sum(len(wave) for wave in self.waves)

    @property
    def max_parallelism(self) -> int:
        return max((len(wave) for wave in self.waves), default=0)

    def dependents(self, node_id: str) -> list[str]:
        """
        Planned nodes that must not run if ``node_id`` fails.

        Deploy: the parents that need the node deployed first.
        Purge: the children that may only go once the node is gone.
        """
        if self.graph is None:
            return []

        planned = set(self.node_ids)
        if self.direction == Direction.DEPLOY:
            candidates = self.graph.parents(node_id)
        else:
            candidates = self.graph.children(node_id)
        return [c for c in candidates if c in planned]

    def summary(self) -> dict[str, Any]:
        """
        Get a summary of the execution plan.

        Returns:
            Dictionary with plan summary
        """
        def label(node_id: str) -> str:
            if self.graph is not None and node_id in self.graph:
                return self.graph.get(node_id).name
            return node_id

        return {
            "direction": self.direction.value,
            "targets": list(self.targets),
            "node_count": self.node_count,
            "wave_count": len(self.waves),
            "max_parallelism": self.max_parallelism,
            "waves": [
                {
                    "index": wave.index,
                    "nodes": [label(node_id) for node_id in wave.node_ids],
                }
                for wave in self.waves
            ],
        }


class ExecutionPlanner:
    """Create execution plans from dependency graphs."""

    def create_plan(
        self,
        graph: DependencyGraph,
        direction: Direction | str,
        targets: list[str] | None = None,
        skip_dependencies: bool = False,
    ) -> ExecutionPlan:
        """
        Create an execution plan from a dependency graph.

        Args:
            graph: Validated dependency graph
            direction: Deploy or purge
            targets: Dependency names (or node ids) to scope the plan to
            skip_dependencies: Plan the root project only

        Returns:
            ExecutionPlan with waves ready for execution

        Raises:
            UnknownDependencyError: If a target name is not in the graph
        """
        direction = Direction(direction)
        targets = list(targets or [])

        if skip_dependencies:
            node_set = {graph.root}
        elif targets:
            node_set = self._scope(graph, direction, targets)
        else:
            node_set = set(graph.nodes)

        levels = self._levels(graph, node_set)
        order = {node_id: index for index, node_id in enumerate(graph.breadth_first_order())}

        grouped: dict[int, list[str]] = {}
        for node_id in node_set:
            grouped.setdefault(levels[node_id], []).append(node_id)

        node_waves = [sorted(grouped[level], key=order.__getitem__) for level in sorted(grouped)]
        if direction == Direction.PURGE:
            node_waves.reverse()

        plan = ExecutionPlan(
            direction=direction,
            waves=[Wave(index=i, node_ids=ids) for i, ids in enumerate(node_waves)],
            targets=targets,
            graph=graph,
        )

        logger.info(
            "Execution plan created",
            direction=direction.value,
            nodes=plan.node_count,
            waves=len(plan.waves),
            max_parallelism=plan.max_parallelism,
            targets=targets or None,
        )
        return plan

    def _scope(self, graph: DependencyGraph, direction: Direction, targets: list[str]) -> set[str]:
        """Node set for a plan restricted to ``targets``."""
        target_ids: set[str] = set()
        unknown: list[str] = []
        for name in targets:
            matches = graph.find_by_name(name)
            if not matches:
                unknown.append(name)
            target_ids.update(matches)

        if unknown:
            raise UnknownDependencyError(unknown)

        if direction == Direction.DEPLOY:
            return target_ids | graph.ancestors(target_ids) | graph.descendants(target_ids)
        return self._purge_scope(graph, target_ids)

    @staticmethod
    def _purge_scope(graph: DependencyGraph, target_ids: set[str]) -> set[str]:
        """Targets plus the dependencies that only the targets use."""
        descendants = graph.descendants(target_ids) - target_ids

        # Whatever is reachable without passing through a target stays deployed
        still_needed: set[str] = set()
        stack = [
            child
            for node_id in graph.nodes
            if node_id not in target_ids and node_id not in descendants
            for child in graph.children(node_id)
        ]
        while stack:
            current = stack.pop()
            if current in target_ids or current in still_needed:
                continue
            still_needed.add(current)
            stack.extend(graph.children(current))

        kept = descendants & still_needed
        if kept:
            logger.info(
                "Keeping dependencies still used outside the purge scope",
                nodes=sorted(graph.get(n).name for n in kept),
            )
        return target_ids | (descendants - kept)

    @staticmethod
    def _levels(graph: DependencyGraph, node_set: set[str]) -> dict[str, int]:
        """Level of every node in ``node_set`` over the induced subgraph."""
        levels: dict[str, int] = {}

        def level(node_id: str) -> int:
            if node_id not in levels:
                children = [c for c in graph.children(node_id) if c in node_set]
                levels[node_id] = 1 + max((level(c) for c in children), default=-1)
            return levels[node_id]

        for node_id in node_set:
            level(node_id)
        return levels


def plan(
    graph: DependencyGraph,
    direction: Direction | str,
    target_names: list[str] | None = None,
) -> ExecutionPlan:
    """
    Build an execution plan for a graph.

    Args:
        graph: Dependency graph
        direction: Deploy or purge
        target_names: Optional names to scope the plan to

    Returns:
        ExecutionPlan
    """
    return ExecutionPlanner().create_plan(graph, direction, targets=target_names)
