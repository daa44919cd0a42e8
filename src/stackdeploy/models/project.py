"""Project configuration models with Pydantic v2 validation.

A project file declares the deployments of one project and the other projects
it depends on. Only ``dependencies`` is interpreted by the orchestration core;
the rest of the model is consumed by the Deployer.
"""

from pathlib import Path
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

CURRENT_SCHEMA_VERSION = "v2"


def _strip(v: Any) -> Any:
    if isinstance(v, str):
        return v.strip()
    return v


StrippedStr = Annotated[str, BeforeValidator(_strip)]


class LocalSource(BaseModel):
    """Dependency living in a directory on the local filesystem."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    path: StrippedStr

    def key(self, base_dir: Path) -> str:
        """
        Normalized identity of this source.

        Args:
            base_dir: Directory of the declaring project, used for relative paths

        Returns:
            str: "local:<absolute path>"
        """
        return f"local:{self.resolve_path(base_dir)}"

    def resolve_path(self, base_dir: Path) -> Path:
        """Absolute location of the source, relative paths anchored at ``base_dir``."""
        path = Path(self.path).expanduser()
        if not path.is_absolute():
            path = base_dir / path
        return path.resolve()


class GitSource(BaseModel):
    """Dependency fetched from a git repository."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    git: StrippedStr
    revision: StrippedStr | None = None
    sub_path: StrippedStr | None = Field(default=None, alias="subPath")

    def key(self, base_dir: Path | None = None) -> str:
        """Normalized identity: repository, revision and sub path."""
        url = self.git.rstrip("/")
        if url.endswith(".git"):
            url = url[: -len(".git")]
        sub_path = (self.sub_path or "").strip("/")
        return f"git:{url}@{self.revision or 'HEAD'}:{sub_path}"


DependencySource = LocalSource | GitSource


class DependencyDeclaration(BaseModel):
    """
    A dependency as authored in a project's configuration.

    Attributes:
        name: Unique within the declaring project
        source: Local path or git repository the dependency comes from
        profile: Optional profile to activate when loading the dependency
        disabled: Excluded from the graph entirely when true
        skip_build: Deploy without rebuilding images
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    name: str
    source: DependencySource
    profile: str | None = None
    disabled: bool = False
    skip_build: bool = Field(default=False, alias="skipBuild")

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> Any:
        v = _strip(v)
        if not v:
            raise ValueError("dependency name must not be empty")
        if isinstance(v, str) and any(c.isspace() for c in v):
            raise ValueError(f"dependency name '{v}' must not contain whitespace")
        return v


class DeploymentConfig(BaseModel):
    """Shell commands that build, deploy and purge one part of a project."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str
    build: list[str] = Field(default_factory=list)
    deploy: list[str] = Field(default_factory=list)
    purge: list[str] = Field(default_factory=list)


class ProfileConfig(BaseModel):
    """Named configuration variant; set fields replace the base configuration."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: str
    deployments: list[DeploymentConfig] | None = None
    dependencies: list[DependencyDeclaration] | None = None


class ProjectConfig(BaseModel):
    """A fully loaded project configuration at the current schema version."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    version: str = CURRENT_SCHEMA_VERSION
    name: str
    deployments: list[DeploymentConfig] = Field(default_factory=list)
    dependencies: list[DependencyDeclaration] = Field(default_factory=list)
    profiles: list[ProfileConfig] = Field(default_factory=list)
    active_profile: str | None = Field(default=None, exclude=True)

    @model_validator(mode="after")
    def check_unique_dependency_names(self) -> "ProjectConfig":
        seen: set[str] = set()
        for dependency in self.dependencies:
            if dependency.name in seen:
                raise ValueError(f"duplicate dependency name '{dependency.name}'")
            seen.add(dependency.name)
        return self

    def with_profile(self, profile: str | None) -> "ProjectConfig":
        """
        Return a copy of this configuration with a profile applied.

        Args:
            profile: Profile name, or None for the base configuration

        Returns:
            ProjectConfig: The effective configuration

        Raises:
            ValueError: If the profile is not declared
        """
        if not profile:
            return self

        for candidate in self.profiles:
            if candidate.name == profile:
                update: dict[str, Any] = {"active_profile": profile}
                if candidate.deployments is not None:
                    update["deployments"] = candidate.deployments
                if candidate.dependencies is not None:
                    update["dependencies"] = candidate.dependencies
                return self.model_validate({**self.model_dump(by_alias=True), **update})

        available = ", ".join(p.name for p in self.profiles) or "none"
        raise ValueError(f"profile '{profile}' not found (available: {available})")
