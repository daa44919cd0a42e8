"""Config Loader - read, migrate and validate project files.

The orchestration core only needs ``ProjectConfig.dependencies``; everything
else in the file is opaque to it and consumed by the Deployer.

Schema Versions:
---------------
v2 (current):
    dependencies:
      - name: backend
        source: {path: ../backend}
      - name: auth
        source: {git: https://example.com/auth.git, revision: main, subPath: deploy}

v1 (migrated on load):
    dependencies:
      - name: backend
        path: ../backend
      - name: auth
        git: https://example.com/auth.git
        branch: main
        subPath: deploy
        disable: false
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from ..constants import ALTERNATE_PROJECT_FILES, DEFAULT_PROJECT_FILE, SUPPORTED_SCHEMA_VERSIONS
from ..models.project import CURRENT_SCHEMA_VERSION, ProjectConfig
from ..utils.exceptions import ConfigLoadError, ConfigMigrationError

logger = structlog.get_logger(__name__)


class ConfigLoader(ABC):
    """Loads the project configuration found at a resolved dependency location."""

    @abstractmethod
    def load(self, path: Path, profile: str | None = None) -> ProjectConfig:
        """
        Load a project configuration.

        Args:
            path: Project file, or directory containing the default project file
            profile: Optional profile to apply

        Returns:
            ProjectConfig at the current schema version

        Raises:
            ConfigLoadError: If the configuration cannot be loaded
        """


def find_project_file(path: Path) -> Path:
    """
    Locate the project file for a path.

    Args:
        path: A project file or a directory

    Returns:
        Path to the project file

    Raises:
        ConfigLoadError: If no project file exists
    """
    if path.is_file():
        return path

    for candidate in (DEFAULT_PROJECT_FILE, *ALTERNATE_PROJECT_FILES):
        project_file = path / candidate
        if project_file.is_file():
            return project_file

    raise ConfigLoadError(f"No {DEFAULT_PROJECT_FILE} found", path=str(path))


_V1_SOURCE_KEYS = ("path", "git", "branch", "tag", "revision", "subPath", "disable")


def _migrate_v1_dependency(dependency: dict[str, Any]) -> dict[str, Any]:
    migrated = {k: v for k, v in dependency.items() if k not in _V1_SOURCE_KEYS}

    if "git" in dependency:
        source: dict[str, Any] = {"git": dependency["git"]}
        revision = dependency.get("revision") or dependency.get("tag") or dependency.get("branch")
        if revision:
            source["revision"] = revision
        if dependency.get("subPath"):
            source["subPath"] = dependency["subPath"]
        migrated["source"] = source
    elif "path" in dependency:
        migrated["source"] = {"path": dependency["path"]}

    if "disable" in dependency:
        migrated["disabled"] = dependency["disable"]

    return migrated


def migrate(data: dict[str, Any], origin: str | None = None) -> dict[str, Any]:
    """
    Upgrade a raw project document to the current schema version.

    Args:
        data: Parsed YAML document
        origin: File path for error messages

    Returns:
        Document at CURRENT_SCHEMA_VERSION

    Raises:
        ConfigMigrationError: If the version is unknown
    """
    version = str(data.get("version", CURRENT_SCHEMA_VERSION))
    if version not in SUPPORTED_SCHEMA_VERSIONS:
        raise ConfigMigrationError(
            f"Unsupported schema version '{version}' "
            f"(supported: {', '.join(sorted(SUPPORTED_SCHEMA_VERSIONS))})",
            path=origin,
        )

    if version == CURRENT_SCHEMA_VERSION:
        return data

    migrated = dict(data)
    migrated["version"] = CURRENT_SCHEMA_VERSION
    migrated["dependencies"] = [
        _migrate_v1_dependency(d) if isinstance(d, dict) else d
        for d in data.get("dependencies") or []
    ]

    profiles = []
    for profile in data.get("profiles") or []:
        if isinstance(profile, dict) and profile.get("dependencies") is not None:
            profile = dict(profile)
            profile["dependencies"] = [
                _migrate_v1_dependency(d) if isinstance(d, dict) else d
                for d in profile["dependencies"]
            ]
        profiles.append(profile)
    if profiles:
        migrated["profiles"] = profiles

    logger.info(
        "Migrated project configuration",
        origin=origin,
        from_version=version,
        to_version=CURRENT_SCHEMA_VERSION,
    )
    return migrated


class YAMLConfigLoader(ConfigLoader):
    """
    Load ``stackdeploy.yaml`` project files.

    The project name defaults to the directory name when the file omits it.
    """

    def load(self, path: Path, profile: str | None = None) -> ProjectConfig:
        project_file = find_project_file(path)

        try:
            with open(project_file, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigLoadError(f"Invalid YAML: {e}", path=str(project_file)) from e
        except OSError as e:
            raise ConfigLoadError(f"Cannot read project file: {e}", path=str(project_file)) from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigLoadError(
                f"Invalid project file structure: expected dictionary, got {type(data).__name__}",
                path=str(project_file),
            )

        data = migrate(data, origin=str(project_file))
        data.setdefault("name", project_file.parent.resolve().name)

        try:
            config = ProjectConfig.model_validate(data)
            config = config.with_profile(profile)
        except ValidationError as e:
            raise ConfigLoadError(
                f"Invalid project configuration: {e}", path=str(project_file)
            ) from e
        except ValueError as e:
            raise ConfigLoadError(str(e), path=str(project_file)) from e

        logger.debug(
            "Loaded project configuration",
            path=str(project_file),
            project=config.name,
            profile=profile,
            dependencies=len(config.dependencies),
        )
        return config
