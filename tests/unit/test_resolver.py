"""Unit tests for source resolution and fingerprinting."""

import shutil
import subprocess
from pathlib import Path

import pytest

from stackdeploy.models.project import GitSource, LocalSource
from stackdeploy.sources.resolver import DefaultSourceResolver, fingerprint_tree
from stackdeploy.utils.exceptions import GitCommandError, SourceResolutionError

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def git(cwd: Path, *args: str) -> str:
    completed = subprocess.run(
        ["git", *args], cwd=str(cwd), capture_output=True, text=True, check=True
    )
    return completed.stdout.strip()


@pytest.fixture
def upstream(tmp_path) -> Path:
    """Git repository with one commit on ``main`` and a ``deploy`` sub directory."""
    repo = tmp_path / "upstream"
    (repo / "deploy").mkdir(parents=True)
    (repo / "deploy" / "stackdeploy.yaml").write_text("name: auth\n")
    git(repo, "init", "--quiet", "--initial-branch=main")
    git(repo, "config", "user.email", "dev@example.com")
    git(repo, "config", "user.name", "Dev")
    git(repo, "add", ".")
    git(repo, "commit", "--quiet", "-m", "initial")
    return repo


class TestFingerprintTree:
    """Test fingerprint_tree()."""

    def test_stable(self, tmp_path):
        (tmp_path / "a.txt").write_text("hello")

        assert fingerprint_tree(tmp_path) == fingerprint_tree(tmp_path)

    def test_content_change(self, tmp_path):
        (tmp_path / "a.txt").write_text("hello")
        before = fingerprint_tree(tmp_path)

        (tmp_path / "a.txt").write_text("hello!")

        assert fingerprint_tree(tmp_path) != before

    def test_rename_changes_fingerprint(self, tmp_path):
        (tmp_path / "a.txt").write_text("hello")
        before = fingerprint_tree(tmp_path)

        (tmp_path / "a.txt").rename(tmp_path / "b.txt")

        assert fingerprint_tree(tmp_path) != before

    def test_ignored_directories(self, tmp_path):
        (tmp_path / "a.txt").write_text("hello")
        before = fingerprint_tree(tmp_path)

        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "index").write_text("noise")
        (tmp_path / ".stackdeploy").mkdir()
        (tmp_path / ".stackdeploy" / "state.db").write_text("noise")

        assert fingerprint_tree(tmp_path) == before

    def test_nested_files_included(self, tmp_path):
        (tmp_path / "k8s").mkdir()
        (tmp_path / "k8s" / "deployment.yaml").write_text("kind: Deployment")
        before = fingerprint_tree(tmp_path)

        (tmp_path / "k8s" / "deployment.yaml").write_text("kind: StatefulSet")

        assert fingerprint_tree(tmp_path) != before


class TestLocalSources:
    """Test local path resolution."""

    def test_relative_to_declaring_project(self, tmp_path):
        (tmp_path / "backend").mkdir()
        (tmp_path / "frontend").mkdir()
        resolver = DefaultSourceResolver(cache_dir=tmp_path / "cache")

        resolved = resolver.resolve(LocalSource(path="../backend"), tmp_path / "frontend")

        assert resolved.path == (tmp_path / "backend").resolve()
        assert resolved.fingerprint == fingerprint_tree(tmp_path / "backend")

    def test_absolute_path(self, tmp_path):
        (tmp_path / "backend").mkdir()
        resolver = DefaultSourceResolver(cache_dir=tmp_path / "cache")

        resolved = resolver.resolve(LocalSource(path=str(tmp_path / "backend")), Path("/elsewhere"))

        assert resolved.path == (tmp_path / "backend").resolve()

    def test_missing_directory(self, tmp_path):
        resolver = DefaultSourceResolver(cache_dir=tmp_path / "cache")

        with pytest.raises(SourceResolutionError, match="does not exist"):
            resolver.resolve(LocalSource(path="../nowhere"), tmp_path / "frontend")


@requires_git
class TestGitSources:
    """Test git checkout into the dependency cache."""

    def test_clone(self, tmp_path, upstream):
        resolver = DefaultSourceResolver(cache_dir=tmp_path / "cache")

        resolved = resolver.resolve(GitSource(git=str(upstream), revision="main"), tmp_path)

        assert resolved.path.parent == (tmp_path / "cache").resolve()
        assert (resolved.path / "deploy" / "stackdeploy.yaml").read_text() == "name: auth\n"
        assert len(resolved.fingerprint) == 64

    def test_sub_path(self, tmp_path, upstream):
        resolver = DefaultSourceResolver(cache_dir=tmp_path / "cache")

        resolved = resolver.resolve(GitSource(git=str(upstream), sub_path="deploy"), tmp_path)

        assert resolved.path.name == "deploy"
        assert (resolved.path / "stackdeploy.yaml").is_file()

    def test_missing_sub_path(self, tmp_path, upstream):
        resolver = DefaultSourceResolver(cache_dir=tmp_path / "cache")

        with pytest.raises(SourceResolutionError, match="Sub path 'nope' not found"):
            resolver.resolve(GitSource(git=str(upstream), sub_path="nope"), tmp_path)

    def test_fingerprint_follows_commit(self, tmp_path, upstream):
        resolver = DefaultSourceResolver(cache_dir=tmp_path / "cache")
        source = GitSource(git=str(upstream), revision="main")
        first = resolver.resolve(source, tmp_path)

        unchanged = resolver.resolve(source, tmp_path)
        (upstream / "README").write_text("update")
        git(upstream, "add", ".")
        git(upstream, "commit", "--quiet", "-m", "update")
        updated = resolver.resolve(source, tmp_path)

        assert unchanged.fingerprint == first.fingerprint
        assert updated.fingerprint != first.fingerprint
        assert (updated.path / "README").read_text() == "update"

    def test_unknown_revision(self, tmp_path, upstream):
        resolver = DefaultSourceResolver(cache_dir=tmp_path / "cache")

        with pytest.raises(GitCommandError):
            resolver.resolve(GitSource(git=str(upstream), revision="no-such-branch"), tmp_path)


class TestGitFailures:
    """Test git error handling without a repository."""

    def test_missing_git_binary(self, tmp_path):
        resolver = DefaultSourceResolver(cache_dir=tmp_path / "cache", git_binary="git-does-not-exist")

        with pytest.raises(SourceResolutionError, match="not found"):
            resolver.resolve(GitSource(git="https://example.com/x.git"), tmp_path)

    def test_clone_retried_then_raised(self, tmp_path, monkeypatch):
        resolver = DefaultSourceResolver(cache_dir=tmp_path / "cache")
        attempts = []

        def failing_git(args, cwd=None):
            attempts.append(args[0])
            raise GitCommandError(args, 128, "could not resolve host")

        monkeypatch.setattr(resolver, "_git", failing_git)
        monkeypatch.setattr("time.sleep", lambda seconds: None)

        with pytest.raises(GitCommandError, match="could not resolve host"):
            resolver.resolve(GitSource(git="https://example.com/x.git"), tmp_path)

        assert attempts == ["clone", "clone", "clone"]

    def test_clone_recovers_after_transient_failure(self, tmp_path, monkeypatch):
        resolver = DefaultSourceResolver(cache_dir=tmp_path / "cache")
        attempts = []

        def flaky_git(args, cwd=None):
            attempts.append(args[0])
            if args[0] == "clone" and attempts.count("clone") == 1:
                raise GitCommandError(args, 128, "connection reset")
            if args[0] == "clone":
                (Path(args[-1]) / ".git").mkdir(parents=True)
            if args[:2] == ["rev-parse", "HEAD"]:
                return "abc123\n"
            return ""

        monkeypatch.setattr(resolver, "_git", flaky_git)
        monkeypatch.setattr("time.sleep", lambda seconds: None)

        resolved = resolver.resolve(GitSource(git="https://example.com/x.git", revision="main"), tmp_path)

        assert attempts.count("clone") == 2
        assert resolved.fingerprint
