"""Unit tests for project and result models."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from stackdeploy.models.project import (
    DependencyDeclaration,
    DeploymentConfig,
    GitSource,
    LocalSource,
    ProfileConfig,
    ProjectConfig,
)
from stackdeploy.models.results import NodeResult, NodeStatus, RunResult
from stackdeploy.utils.exceptions import NodeOperationError


class TestSources:
    """Test source identity."""

    def test_local_key_is_absolute(self, tmp_path):
        source = LocalSource(path="../backend")

        assert source.key(tmp_path / "frontend") == f"local:{(tmp_path / 'backend').resolve()}"

    def test_local_same_target_same_key(self, tmp_path):
        relative = LocalSource(path="../backend").key(tmp_path / "frontend")
        absolute = LocalSource(path=str(tmp_path / "backend")).key(Path("/"))

        assert relative == absolute

    def test_git_key_normalized(self):
        a = GitSource(git="https://example.com/auth.git", revision="main")
        b = GitSource(git="https://example.com/auth/", revision="main")

        assert a.key() == b.key() == "git:https://example.com/auth@main:"

    def test_git_key_includes_revision_and_sub_path(self):
        source = GitSource(git="https://example.com/auth.git", subPath="/deploy/")

        assert source.key() == "git:https://example.com/auth@HEAD:deploy"
        assert GitSource(git="https://example.com/auth.git", revision="v2").key() != source.key()

    def test_values_stripped(self):
        assert LocalSource(path="  ../db ").path == "../db"


class TestDependencyDeclaration:
    """Test DependencyDeclaration validation."""

    def test_defaults(self):
        declaration = DependencyDeclaration(name="db", source={"path": "../db"})

        assert isinstance(declaration.source, LocalSource)
        assert declaration.profile is None
        assert declaration.disabled is False
        assert declaration.skip_build is False

    def test_git_source_from_dict(self):
        declaration = DependencyDeclaration(name="auth", source={"git": "https://x/auth.git", "revision": "v1"})

        assert isinstance(declaration.source, GitSource)

    def test_skip_build_alias(self):
        assert DependencyDeclaration(name="db", source={"path": "."}, skipBuild=True).skip_build is True

    @pytest.mark.parametrize("name", ["", "   ", "my db"])
    def test_invalid_names(self, name):
        with pytest.raises(ValidationError):
            DependencyDeclaration(name=name, source={"path": "."})

    def test_name_stripped(self):
        assert DependencyDeclaration(name=" db ", source={"path": "."}).name == "db"

    def test_source_required(self):
        with pytest.raises(ValidationError):
            DependencyDeclaration(name="db")


class TestProjectConfig:
    """Test ProjectConfig and profiles."""

    def make_config(self) -> ProjectConfig:
        return ProjectConfig(
            name="app",
            deployments=[DeploymentConfig(name="web", deploy=["deploy-prod"])],
            dependencies=[DependencyDeclaration(name="db", source=LocalSource(path="../db"), skip_build=True)],
            profiles=[
                ProfileConfig(name="dev", deployments=[DeploymentConfig(name="web", deploy=["deploy-dev"])]),
                ProfileConfig(name="bare", dependencies=[]),
            ],
        )

    def test_duplicate_dependency_names(self):
        with pytest.raises(ValidationError, match="duplicate dependency name"):
            ProjectConfig(
                name="app",
                dependencies=[
                    DependencyDeclaration(name="db", source={"path": "../a"}),
                    DependencyDeclaration(name="db", source={"path": "../b"}),
                ],
            )

    def test_with_no_profile_is_identity(self):
        config = self.make_config()

        assert config.with_profile(None) is config

    def test_with_profile_overrides_set_fields(self):
        config = self.make_config().with_profile("dev")

        assert config.active_profile == "dev"
        assert config.deployments[0].deploy == ["deploy-dev"]
        assert config.dependencies[0].skip_build is True

    def test_with_profile_empty_dependencies(self):
        assert self.make_config().with_profile("bare").dependencies == []

    def test_with_unknown_profile(self):
        with pytest.raises(ValueError, match="available: dev, bare"):
            self.make_config().with_profile("prod")


class TestRunResult:
    """Test RunResult aggregation."""

    def test_record_buckets(self):
        result = RunResult(direction="deploy")
        error = NodeOperationError("b", "deploy of 'b' failed", cause=RuntimeError("boom"))

        result.record(NodeResult(node_id="a", name="a", status=NodeStatus.SUCCEEDED))
        result.record(NodeResult(node_id="b", name="b", status=NodeStatus.FAILED, error=error))
        result.record(NodeResult(node_id="c", name="c", status=NodeStatus.SKIPPED, reason="skipped-due-to-dependency-failure"))
        result.record(NodeResult(node_id="d", name="d", status=NodeStatus.CANCELLED, reason="run cancelled"))

        assert result.succeeded == ["a"]
        assert result.failed == {"b": error}
        assert result.skipped == {"c": "skipped-due-to-dependency-failure"}
        assert result.cancelled == ["d"]
        assert result.total == 4
        assert result.success is False
        assert result.get_summary() == "deploy: 1/4 succeeded, 1 failed, 1 skipped, 1 cancelled"

    def test_success(self):
        result = RunResult(direction="purge")
        result.record(NodeResult(node_id="a", name="a", status=NodeStatus.SUCCEEDED))

        assert result.success is True

    def test_empty_run_is_success(self):
        assert RunResult(direction="deploy").success is True

    def test_error_message(self):
        error = NodeOperationError("b", "deploy of 'b' failed", cause=RuntimeError("boom"))

        assert NodeResult(node_id="b", name="b", error=error).error_message == "deploy of 'b' failed: boom"
        assert NodeResult(node_id="c", name="c", reason="run cancelled").error_message == "run cancelled"
        assert NodeResult(node_id="d", name="d").error_message is None

    def test_duration_and_to_dict(self):
        started = datetime(2024, 1, 1)
        result = RunResult(direction="deploy", started_at=started, completed_at=started + timedelta(seconds=2))
        result.record(NodeResult(node_id="a", name="a", status=NodeStatus.SUCCEEDED, wave=0, build_skipped=True))

        data = result.to_dict()

        assert result.duration_seconds == 2.0
        assert data["success"] is True
        assert data["nodes"] == [
            {
                "id": "a",
                "name": "a",
                "status": "succeeded",
                "wave": 0,
                "error": None,
                "duration_ms": None,
                "build_skipped": True,
            }
        ]
