"""Dependency sources: project file loading and source resolution."""

from .loader import ConfigLoader, YAMLConfigLoader, find_project_file, migrate
from .resolver import DefaultSourceResolver, ResolvedSource, SourceResolver, fingerprint_tree

__all__ = [
    "ConfigLoader",
    "YAMLConfigLoader",
    "find_project_file",
    "migrate",
    "SourceResolver",
    "DefaultSourceResolver",
    "ResolvedSource",
    "fingerprint_tree",
]
