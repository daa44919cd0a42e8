"""Dependency graph construction."""

from .builder import GraphBuilder, build_graph, node_id
from .graph import DependencyGraph, DependencyNode

__all__ = [
    "DependencyGraph",
    "DependencyNode",
    "GraphBuilder",
    "build_graph",
    "node_id",
]
