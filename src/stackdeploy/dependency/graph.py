"""Dependency Graph - arena of resolved dependency nodes keyed by id.

Nodes reference their children by id rather than holding them, so a dependency
shared by several parents exists exactly once and cycle-tolerant graphs never
create ownership cycles.

Edge direction:
    parent -> child means "parent depends on child".
    Deploy runs children before parents, purge runs parents before children.
"""

from collections import deque
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from ..models.project import DependencyDeclaration, ProjectConfig

logger = structlog.get_logger(__name__)


@dataclass
class DependencyNode:
    """
    A resolved dependency.

    Attributes:
        id: Deterministic identity derived from source + profile
        declaration: The declaration that first introduced this node
        resolved_path: Local checkout location
        config: The dependency's fully loaded project configuration
        children: Ids of the nodes this one depends on, in declaration order
        fingerprint: Content hash of the resolved source tree
    """

    id: str
    declaration: DependencyDeclaration
    resolved_path: Path
    config: ProjectConfig
    children: list[str] = field(default_factory=list)
    fingerprint: str = ""

    @property
    def name(self) -> str:
        """Declared dependency name."""
        return self.declaration.name

    def __hash__(self) -> int:
        """Hash based on node ID."""
        return hash(self.id)


@dataclass
class DependencyGraph:
    """
    Directed graph of resolved dependencies rooted at the project being run.

    Attributes:
        root: Id of the root project node
        nodes: Mapping of id -> node (each id resolved exactly once)
        back_edges: (parent id, ancestor id) edges kept when cycle tolerance is on
    """

    root: str
    nodes: dict[str, DependencyNode] = field(default_factory=dict)
    back_edges: set[tuple[str, str]] = field(default_factory=set)

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    @property
    def root_node(self) -> DependencyNode:
        return self.nodes[self.root]

    def get(self, node_id: str) -> DependencyNode:
        """
        Look up a node by id.

        Raises:
            KeyError: If the id is not part of the graph
        """
        return self.nodes[node_id]

    def children(self, node_id: str, include_back_edges: bool = False) -> list[str]:
        """
        Child ids of a node in declaration order.

        Args:
            node_id: Parent node id
            include_back_edges: Also return cycle-tolerant edges back to ancestors

        Returns:
            List of child ids
        """
        children = self.nodes[node_id].children
        if include_back_edges:
            return list(children)
        return [c for c in children if (node_id, c) not in self.back_edges]

    def parents(self, node_id: str) -> list[str]:
        """Ids of nodes that depend on ``node_id`` (back edges excluded)."""
        return [
            parent_id
            for parent_id in self.nodes
            if node_id in self.children(parent_id)
        ]

    def edges(self) -> list[tuple[str, str]]:
        """All (parent, child) edges, back edges excluded."""
        return [
            (parent_id, child_id)
            for parent_id in self.nodes
            for child_id in self.children(parent_id)
        ]

    def descendants(self, node_ids: set[str] | list[str]) -> set[str]:
        """
        Everything reachable from the given nodes, excluding the nodes themselves
        unless they are reachable from one another.
        """
        seen: set[str] = set()
        stack = [c for node_id in node_ids for c in self.children(node_id)]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.children(current))
        return seen

    def ancestors(self, node_ids: set[str] | list[str]) -> set[str]:
        """Every node from which one of the given nodes is reachable."""
        parents_of: dict[str, list[str]] = {node_id: [] for node_id in self.nodes}
        for parent_id, child_id in self.edges():
            parents_of[child_id].append(parent_id)

        seen: set[str] = set()
        stack = [p for node_id in node_ids for p in parents_of[node_id]]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(parents_of[current])
        return seen

    def find_by_name(self, name: str) -> list[str]:
        """
        Ids of nodes matching a dependency name or node id.

        Names are only unique within one declaring project, so two different
        projects may use the same name for different sources; all matches are
        returned.
        """
        if name in self.nodes:
            return [name]
        return [node_id for node_id, node in self.nodes.items() if node.name == name]

    def breadth_first_order(self) -> list[str]:
        """
        Node ids in first-visit order of a breadth-first walk from the root.

        Children are visited in declaration order, which makes this the
        deterministic tie-break used inside planner waves.
        """
        order: list[str] = []
        seen = {self.root}
        queue = deque([self.root])
        while queue:
            node_id = queue.popleft()
            order.append(node_id)
            for child_id in self.children(node_id):
                if child_id not in seen:
                    seen.add(child_id)
                    queue.append(child_id)

        # Nodes unreachable from the root never come out of the builder, but keep
        # the order total for hand-built graphs.
        order.extend(node_id for node_id in self.nodes if node_id not in seen)
        return order

    def to_dot(self) -> str:
        """
        Generate DOT format representation of the dependency graph.

        Returns:
            String containing the Graphviz DOT definition
        """
        lines = ["digraph DependencyGraph {"]
        lines.append("    rankdir=LR;")
        lines.append("    node [shape=box style=filled];")

        for node_id in self.breadth_first_order():
            node = self.nodes[node_id]
            label = f"{node.name}\\n{node_id}"
            color = "#cce5ff" if node_id == self.root else "#d4edda"
            lines.append(f'    "{node_id}" [label="{label}" fillcolor="{color}"];')

            for child_id in node.children:
                if (node_id, child_id) in self.back_edges:
                    lines.append(f'    "{node_id}" -> "{child_id}" [style=dashed color=red];')
                else:
                    lines.append(f'    "{node_id}" -> "{child_id}";')

        lines.append("}")
        return "\n".join(lines)

    def validate(self) -> bool:
        """
        Validate the graph structure.

        Checks:
        - The root exists
        - All child references exist
        - No cycles remain once back edges are set aside

        Returns:
            True if graph is valid

        Raises:
            ValueError: On dangling references or an unrecorded cycle
        """
        if self.root not in self.nodes:
            raise ValueError(f"Root node not found: {self.root}")

        for node_id, node in self.nodes.items():
            for child_id in node.children:
                if child_id not in self.nodes:
                    raise ValueError(f"Invalid child reference: {child_id} in node {node_id}")

        for node_id in self.nodes:
            if self._has_cycle_from(node_id, set(), set()):
                raise ValueError(f"Unrecorded cycle through node {node_id}")

        logger.debug("Dependency graph validation successful", nodes=len(self.nodes))
        return True

    def _has_cycle_from(self, node_id: str, recursion_stack: set[str], done: set[str]) -> bool:
        """
        Detect cycles using DFS with recursion stack tracking.

        A node found again while it is still on the recursion stack closes a
        cycle; a node found again after its traversal completed is merely shared.
        """
        if node_id in recursion_stack:
            return True
        if node_id in done:
            return False

        recursion_stack.add(node_id)
        for child_id in self.children(node_id):
            if self._has_cycle_from(child_id, recursion_stack, done):
                return True
        recursion_stack.remove(node_id)
        done.add(node_id)

        return False
