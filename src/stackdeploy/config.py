"""Tool configuration for stackdeploy.

This is the configuration of the tool itself (concurrency, state location,
logging). Project files describing deployments and dependencies are read by
``stackdeploy.sources.loader``.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .constants import DEPENDENCY_CACHE_DIR, STATE_DB_PATH
from .utils.exceptions import ConfigError


@dataclass
class RunnerConfig:
    """Defaults for dependency runs; CLI flags override them."""

    concurrency: int | None = None  # None = unbounded within a wave
    node_timeout: float | None = None  # Seconds per dependency operation
    run_timeout: float | None = None  # Seconds for the whole run


@dataclass
class StateConfig:
    """State cache configuration."""

    enabled: bool = True
    db_path: str = STATE_DB_PATH


@dataclass
class SourcesConfig:
    """Dependency source resolution."""

    cache_dir: str = DEPENDENCY_CACHE_DIR
    git_binary: str = "git"
    allow_cycles: bool = False


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "WARNING"
    format: str = "console"
    file: Path | None = None


def _section(cls: type, data: Any, name: str, origin: Path | None) -> Any:
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(
            f"Section '{name}' must be a mapping, got {type(data).__name__}",
            path=str(origin) if origin else None,
        )

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(
            f"Unknown keys in section '{name}': {', '.join(unknown)}",
            path=str(origin) if origin else None,
        )
    return cls(**data)


@dataclass
class ToolConfig:
    """
    Complete configuration for stackdeploy.

    This combines all configuration sections.
    """

    runner: RunnerConfig = field(default_factory=RunnerConfig)
    state: StateConfig = field(default_factory=StateConfig)
    sources: SourcesConfig = field(default_factory=SourcesConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, config_path: Path) -> "ToolConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to YAML config file

        Returns:
            ToolConfig instance

        Raises:
            ConfigError: If the file is not valid YAML or has unknown keys
        """
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in configuration file: {e}", path=str(config_path)) from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"Invalid configuration file structure: expected dictionary, got {type(data).__name__}",
                path=str(config_path),
            )

        logging_data = data.get("logging")
        # Convert file path string to Path if present
        if isinstance(logging_data, dict) and logging_data.get("file"):
            logging_data = {**logging_data, "file": Path(logging_data["file"])}

        return cls(
            runner=_section(RunnerConfig, data.get("runner"), "runner", config_path),
            state=_section(StateConfig, data.get("state"), "state", config_path),
            sources=_section(SourcesConfig, data.get("sources"), "sources", config_path),
            logging=_section(LoggingConfig, logging_data, "logging", config_path),
        )

    def to_file(self, config_path: Path) -> None:
        """
        Save configuration to YAML file.

        Args:
            config_path: Path to save config file
        """
        data = {
            "runner": self.runner.__dict__,
            "state": self.state.__dict__,
            "sources": self.sources.__dict__,
            "logging": {
                k: str(v) if isinstance(v, Path) else v
                for k, v in self.logging.__dict__.items()
                if v is not None
            },
        }

        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    @classmethod
    def from_env(cls) -> "ToolConfig":
        """
        Create configuration from environment variables.

        Environment variables:
            STACKDEPLOY_CONCURRENCY: Max parallel dependencies per wave
            STACKDEPLOY_STATE_DB: State cache database path
            STACKDEPLOY_CACHE_DIR: Git checkout cache directory
            LOG_LEVEL: Logging level (default: WARNING)
            LOG_FORMAT: "console" or "json" (default: console)

        Returns:
            ToolConfig instance

        Raises:
            ConfigError: If STACKDEPLOY_CONCURRENCY is not a positive integer
        """
        concurrency = None
        raw_concurrency = os.environ.get("STACKDEPLOY_CONCURRENCY")
        if raw_concurrency:
            try:
                concurrency = int(raw_concurrency)
            except ValueError as e:
                raise ConfigError(
                    f"STACKDEPLOY_CONCURRENCY must be an integer, got '{raw_concurrency}'"
                ) from e
            if concurrency < 1:
                raise ConfigError("STACKDEPLOY_CONCURRENCY must be at least 1")

        return cls(
            runner=RunnerConfig(concurrency=concurrency),
            state=StateConfig(db_path=os.environ.get("STACKDEPLOY_STATE_DB", STATE_DB_PATH)),
            sources=SourcesConfig(
                cache_dir=os.environ.get("STACKDEPLOY_CACHE_DIR", DEPENDENCY_CACHE_DIR)
            ),
            logging=LoggingConfig(
                level=os.environ.get("LOG_LEVEL", "WARNING"),
                format=os.environ.get("LOG_FORMAT", "console"),
            ),
        )


def load_config(config_file: Path | None = None) -> ToolConfig:
    """
    Load configuration from file or environment variables.

    Args:
        config_file: Optional path to YAML config file

    Returns:
        ToolConfig instance

    Raises:
        FileNotFoundError: If config_file is specified but doesn't exist
    """
    if config_file:
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_file}")
        return ToolConfig.from_file(config_file)
    return ToolConfig.from_env()
