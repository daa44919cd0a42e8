"""Pytest configuration and shared fixtures.

This module provides reusable fixtures for testing stackdeploy.
Fixtures are organized by category:
- Fakes: in-memory ConfigLoader / SourceResolver and a recording Deployer
- Project trees: named projects wired together by local path dependencies
- Infrastructure fixtures: consoles writing to a buffer, state caches
"""

import asyncio
import io
from collections.abc import Iterable
from pathlib import Path

import pytest
from rich.console import Console

from stackdeploy.dependency import DependencyGraph, build_graph
from stackdeploy.dependency.graph import DependencyNode
from stackdeploy.execution.deployers import Deployer, OperationContext
from stackdeploy.models.project import (
    DependencyDeclaration,
    DependencySource,
    DeploymentConfig,
    LocalSource,
    ProfileConfig,
    ProjectConfig,
)
from stackdeploy.persistence import MemoryStateCache
from stackdeploy.sources.loader import ConfigLoader
from stackdeploy.sources.resolver import ResolvedSource, SourceResolver
from stackdeploy.utils.exceptions import ConfigLoadError, SourceResolutionError

# =============================================================================
# Fakes
# =============================================================================


class FakeLoader(ConfigLoader):
    """Serve ProjectConfigs registered by directory."""

    def __init__(self) -> None:
        self.configs: dict[Path, ProjectConfig] = {}
        self.failing: set[Path] = set()
        self.calls: list[tuple[Path, str | None]] = []

    def load(self, path: Path, profile: str | None = None) -> ProjectConfig:
        path = Path(path).resolve()
        self.calls.append((path, profile))
        if path in self.failing or path not in self.configs:
            raise ConfigLoadError("No stackdeploy.yaml found", path=str(path))
        try:
            return self.configs[path].with_profile(profile)
        except ValueError as e:
            raise ConfigLoadError(str(e), path=str(path)) from e


class FakeResolver(SourceResolver):
    """Resolve local sources in place with settable fingerprints."""

    def __init__(self) -> None:
        self.fingerprints: dict[Path, str] = {}
        self.failing: set[Path] = set()
        self.calls: list[Path] = []

    def resolve(self, source: DependencySource, base_dir: Path) -> ResolvedSource:
        if not isinstance(source, LocalSource):
            raise SourceResolutionError(f"Unsupported dependency source: {source!r}")
        path = source.resolve_path(base_dir)
        self.calls.append(path)
        if path in self.failing:
            raise SourceResolutionError(f"Local dependency path does not exist: {path}")
        return ResolvedSource(path=path, fingerprint=self.fingerprints.get(path, f"fp-{path.name}"))


class RecordingDeployer(Deployer):
    """
    Deployer that records calls instead of touching a cluster.

    Args:
        fail: Names whose operation raises
        output: Lines written to the context's sink, per name
        delay: Seconds every operation takes
        hang: Names whose operation never finishes on its own
    """

    def __init__(
        self,
        fail: Iterable[str] = (),
        output: dict[str, list[str]] | None = None,
        delay: float = 0.0,
        hang: Iterable[str] = (),
    ) -> None:
        self.fail = set(fail)
        self.output = output or {}
        self.delay = delay
        self.hang = set(hang)
        self.calls: list[tuple[str, str]] = []
        self.events: list[tuple[str, str]] = []
        self.contexts: dict[str, OperationContext] = {}
        self.running = 0
        self.max_running = 0

    @property
    def order(self) -> list[str]:
        return [name for _, name in self.calls]

    async def _operate(self, operation: str, node: DependencyNode, context: OperationContext) -> None:
        self.calls.append((operation, node.name))
        self.contexts[node.name] = context
        self.events.append(("start", node.name))
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            for line in self.output.get(node.name, []):
                context.output.write(line)
                await asyncio.sleep(0)
            if node.name in self.hang:
                await asyncio.sleep(3600)
            if self.delay:
                await asyncio.sleep(self.delay)
            if node.name in self.fail:
                raise RuntimeError(f"{node.name} exploded")
        finally:
            self.running -= 1
            self.events.append(("end", node.name))

    async def deploy(self, node: DependencyNode, context: OperationContext) -> None:
        await self._operate("deploy", node, context)

    async def purge(self, node: DependencyNode, context: OperationContext) -> None:
        await self._operate("purge", node, context)


# =============================================================================
# Project trees
# =============================================================================


class ProjectTree:
    """
    Sibling projects under one directory, wired by ``../<name>`` dependencies.

    Example:
        tree.add("A", ["B", "C"])
        tree.add("B", ["D"])
        graph = tree.build("A")
    """

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir.resolve()
        self.loader = FakeLoader()
        self.resolver = FakeResolver()

    def path(self, name: str) -> Path:
        return self.base_dir / name

    def add(
        self,
        name: str,
        dependencies: Iterable[str | DependencyDeclaration] = (),
        deployments: list[DeploymentConfig] | None = None,
        profiles: list[ProfileConfig] | None = None,
    ) -> Path:
        declarations = [
            d if isinstance(d, DependencyDeclaration) else self.dependency(d)
            for d in dependencies
        ]
        self.loader.configs[self.path(name)] = ProjectConfig(
            name=name,
            dependencies=declarations,
            deployments=deployments or [],
            profiles=profiles or [],
        )
        return self.path(name)

    @staticmethod
    def dependency(name: str, target: str | None = None, **options) -> DependencyDeclaration:
        return DependencyDeclaration(
            name=name, source=LocalSource(path=f"../{target or name}"), **options
        )

    def build(self, root: str = "A", allow_cycles: bool = False) -> DependencyGraph:
        return build_graph(
            self.loader.configs[self.path(root)],
            self.path(root),
            self.loader,
            self.resolver,
            allow_cycles=allow_cycles,
        )


def ids(graph: DependencyGraph, *names: str) -> list[str]:
    """Node ids for dependency names (first match each)."""
    return [graph.find_by_name(name)[0] for name in names]


def names(graph: DependencyGraph, node_ids: Iterable[str]) -> list[str]:
    """Dependency names for node ids, order preserved."""
    return [graph.get(node_id).name for node_id in node_ids]


@pytest.fixture
def tree(tmp_path: Path) -> ProjectTree:
    """Empty project tree rooted in a temp directory."""
    return ProjectTree(tmp_path)


@pytest.fixture
def sample_graph(tree: ProjectTree) -> DependencyGraph:
    """A -> B -> D, A -> C."""
    tree.add("A", ["B", "C"])
    tree.add("B", ["D"])
    tree.add("C")
    tree.add("D")
    return tree.build("A")


@pytest.fixture
def diamond_graph(tree: ProjectTree) -> DependencyGraph:
    """A -> B -> D, A -> C -> D."""
    tree.add("A", ["B", "C"])
    tree.add("B", ["D"])
    tree.add("C", ["D"])
    tree.add("D")
    return tree.build("A")


# =============================================================================
# Infrastructure fixtures
# =============================================================================


@pytest.fixture
def console_buffer() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def console(console_buffer: io.StringIO) -> Console:
    """Plain-text console writing into ``console_buffer``."""
    return Console(file=console_buffer, width=200, color_system=None, force_terminal=False)


@pytest.fixture
def state_cache() -> MemoryStateCache:
    return MemoryStateCache()
