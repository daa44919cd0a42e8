"""Utility functions and exceptions."""

from .exceptions import (
    CommandError,
    ConfigError,
    ConfigLoadError,
    ConfigMigrationError,
    CycleDetectedError,
    GitCommandError,
    NodeOperationError,
    NodeTimeoutError,
    SourceResolutionError,
    StackDeployError,
    UnknownDependencyError,
)

__all__ = [
    "StackDeployError",
    "ConfigError",
    "ConfigLoadError",
    "ConfigMigrationError",
    "CycleDetectedError",
    "SourceResolutionError",
    "GitCommandError",
    "UnknownDependencyError",
    "CommandError",
    "NodeOperationError",
    "NodeTimeoutError",
]
