"""Data models for stackdeploy."""

from .project import (
    CURRENT_SCHEMA_VERSION,
    DependencyDeclaration,
    DependencySource,
    DeploymentConfig,
    GitSource,
    LocalSource,
    ProfileConfig,
    ProjectConfig,
)
from .results import SKIPPED_DUE_TO_DEPENDENCY_FAILURE, NodeResult, NodeStatus, RunResult

__all__ = [
    # Project configuration
    "CURRENT_SCHEMA_VERSION",
    "DependencyDeclaration",
    "DependencySource",
    "DeploymentConfig",
    "GitSource",
    "LocalSource",
    "ProfileConfig",
    "ProjectConfig",
    # Results
    "NodeResult",
    "NodeStatus",
    "RunResult",
    "SKIPPED_DUE_TO_DEPENDENCY_FAILURE",
]
