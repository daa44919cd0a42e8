"""Graph Builder - resolve a project's dependency declarations into a graph.

Walks the declarations depth-first in config order, resolving each source and
loading each dependency's own configuration before recursing into it.

Identity:
--------
A node id is a sha256 prefix of the normalized source key plus the profile,
so the same source declared by two parents with the same profile is one node
(fetched once, loaded once, deployed once), while the same source under two
different profiles is two nodes.

Cycles:
------
The builder keeps the ids on the current path. Meeting one of them again is
a cycle. Without cycle tolerance this raises CycleDetectedError; with it the
edge is kept as a back edge and not descended into.

Failures:
--------
A source that cannot be resolved (or whose configuration cannot be loaded)
aborts only its own branch. Siblings keep resolving, and one
SourceResolutionError listing every failed branch is raised at the end.
"""

import hashlib
from pathlib import Path

import structlog

from ..constants import NODE_ID_LENGTH
from ..models.project import DependencyDeclaration, LocalSource, ProjectConfig
from ..sources.loader import ConfigLoader
from ..sources.resolver import ResolvedSource, SourceResolver
from ..utils.exceptions import ConfigError, CycleDetectedError, SourceResolutionError
from .graph import DependencyGraph, DependencyNode

logger = structlog.get_logger(__name__)


def node_id(source_key: str, profile: str | None = None) -> str:
    """
    Derive the stable id of a dependency node.

    Args:
        source_key: Normalized source key (see LocalSource.key / GitSource.key)
        profile: Profile the dependency is loaded with

    Returns:
        Hex digest prefix
    """
    digest = hashlib.sha256(f"{source_key}#{profile or ''}".encode("utf-8"))
    return digest.hexdigest()[:NODE_ID_LENGTH]


class GraphBuilder:
    """
    Build a DependencyGraph from a root project configuration.

    A builder instance keeps a resolution memo keyed by source key, so reusing
    it across builds in the same run never fetches a source twice.
    """

    def __init__(
        self,
        loader: ConfigLoader,
        resolver: SourceResolver,
        allow_cycles: bool = False,
    ) -> None:
        """
        Initialize builder.

        Args:
            loader: Loads a dependency's project configuration
            resolver: Fetches or locates dependency sources
            allow_cycles: Record repeated ancestors as back edges instead of failing
        """
        self.loader = loader
        self.resolver = resolver
        self.allow_cycles = allow_cycles
        self._resolved: dict[str, ResolvedSource] = {}

    def build(self, root_config: ProjectConfig, root_path: Path) -> DependencyGraph:
        """
        Resolve the full dependency tree of a project.

        Args:
            root_config: Loaded configuration of the project being run
            root_path: Directory of the root project

        Returns:
            DependencyGraph rooted at the project

        Raises:
            CycleDetectedError: If a dependency declares one of its ancestors
            SourceResolutionError: If any branch could not be resolved
        """
        root_path = Path(root_path).resolve()
        root_declaration = DependencyDeclaration(
            name=root_config.name,
            source=LocalSource(path=str(root_path)),
            profile=root_config.active_profile,
        )
        root_key = root_declaration.source.key(root_path)
        root_id = node_id(root_key, root_config.active_profile)
        resolved_root = self._resolve(root_declaration, root_path, root_key)
        root = DependencyNode(
            id=root_id,
            declaration=root_declaration,
            resolved_path=root_path,
            config=root_config,
            fingerprint=resolved_root.fingerprint,
        )

        graph = DependencyGraph(root=root_id, nodes={root_id: root})
        failures: dict[str, Exception] = {}

        self._expand(graph, root, stack=[root_id], failures=failures)

        if failures:
            for path, cause in failures.items():
                logger.error("Dependency resolution failed", dependency=path, error=str(cause))
            raise SourceResolutionError(
                f"Failed to resolve {len(failures)} dependenc"
                f"{'y' if len(failures) == 1 else 'ies'}: {', '.join(failures)}",
                failures=failures,
            )

        graph.validate()
        logger.info(
            "Dependency graph built",
            root=root_config.name,
            nodes=len(graph),
            back_edges=len(graph.back_edges),
        )
        return graph

    def _expand(
        self,
        graph: DependencyGraph,
        parent: DependencyNode,
        stack: list[str],
        failures: dict[str, Exception],
    ) -> None:
        """Resolve and attach the children of ``parent``, recursing depth-first."""
        for declaration in parent.config.dependencies:
            if declaration.disabled:
                logger.debug("Skipping disabled dependency", dependency=declaration.name)
                continue

            dependency_path = self._describe(graph, stack, declaration.name)
            source_key = declaration.source.key(parent.resolved_path)
            child_id = node_id(source_key, declaration.profile)

            if child_id in stack:
                cycle = [graph.nodes[i].name for i in stack[stack.index(child_id):]]
                cycle.append(declaration.name)
                if not self.allow_cycles:
                    raise CycleDetectedError(cycle)

                logger.warning(
                    "Cyclic dependency tolerated, breaking at first repeat",
                    cycle=" -> ".join(cycle),
                )
                graph.back_edges.add((parent.id, child_id))
                parent.children.append(child_id)
                continue

            if child_id in graph.nodes:
                # Shared dependency reached through another path
                if child_id not in parent.children:
                    parent.children.append(child_id)
                continue

            try:
                resolved = self._resolve(declaration, parent.resolved_path, source_key)
                config = self.loader.load(resolved.path, profile=declaration.profile)
            except (SourceResolutionError, ConfigError) as e:
                failures[dependency_path] = e
                continue

            child = DependencyNode(
                id=child_id,
                declaration=declaration,
                resolved_path=resolved.path,
                config=config,
                fingerprint=resolved.fingerprint,
            )
            graph.nodes[child_id] = child
            parent.children.append(child_id)

            logger.debug(
                "Resolved dependency",
                dependency=dependency_path,
                node_id=child_id,
                path=str(resolved.path),
            )

            stack.append(child_id)
            try:
                self._expand(graph, child, stack, failures)
            finally:
                stack.pop()

    def _resolve(self, declaration: DependencyDeclaration, base_dir: Path, source_key: str) -> ResolvedSource:
        if source_key not in self._resolved:
            self._resolved[source_key] = self.resolver.resolve(declaration.source, base_dir)
        return self._resolved[source_key]

    @staticmethod
    def _describe(graph: DependencyGraph, stack: list[str], name: str) -> str:
        return " -> ".join([*(graph.nodes[i].name for i in stack), name])


def build_graph(
    root_config: ProjectConfig,
    root_path: Path,
    loader: ConfigLoader,
    resolver: SourceResolver,
    allow_cycles: bool = False,
) -> DependencyGraph:
    """
    Build the dependency graph of a project.

    Convenience wrapper around GraphBuilder for one-off builds.
    """
    return GraphBuilder(loader, resolver, allow_cycles=allow_cycles).build(root_config, root_path)
