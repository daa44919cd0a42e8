"""Source Resolver - turn a dependency source into a local checkout + fingerprint.

Local sources are used in place. Git sources are cloned once into the
dependency cache directory (one checkout per normalized source key) and then
fetched and checked out on later runs.

Fingerprints:
------------
- Local: sha256 over every file below the directory (relative path + content),
  skipping VCS and tool directories, so any edit changes the fingerprint.
- Git: sha256 over the checked-out commit and the sub path, so a new commit on
  the tracked revision changes the fingerprint.
"""

import hashlib
import os
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..constants import (
    DEPENDENCY_CACHE_DIR,
    FINGERPRINT_CHUNK_SIZE,
    FINGERPRINT_IGNORED_DIRS,
    GIT_MAX_ATTEMPTS,
    GIT_RETRY_MAX_WAIT,
    GIT_RETRY_MIN_WAIT,
)
from ..models.project import DependencySource, GitSource, LocalSource
from ..utils.exceptions import GitCommandError, SourceResolutionError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ResolvedSource:
    """Local location and content fingerprint of a dependency source."""

    path: Path
    fingerprint: str


class SourceResolver(ABC):
    """Fetches or locates dependency sources."""

    @abstractmethod
    def resolve(self, source: DependencySource, base_dir: Path) -> ResolvedSource:
        """
        Resolve a source to a local path.

        Args:
            source: Declared dependency source
            base_dir: Directory of the declaring project (anchors relative paths)

        Returns:
            ResolvedSource with local path and fingerprint

        Raises:
            SourceResolutionError: If the source cannot be fetched or found
        """


def fingerprint_tree(root: Path) -> str:
    """
    Calculate a reproducible SHA256 over a directory tree.

    Args:
        root: Directory to hash

    Returns:
        Hex digest
    """
    sha256 = hashlib.sha256()

    for dirpath, dirnames, filenames in os.walk(root):
        # Prune in place so os.walk does not descend into ignored directories
        dirnames[:] = sorted(d for d in dirnames if d not in FINGERPRINT_IGNORED_DIRS)

        for filename in sorted(filenames):
            file_path = Path(dirpath) / filename
            relative = file_path.relative_to(root).as_posix()
            sha256.update(relative.encode("utf-8"))
            sha256.update(b"\0")

            if file_path.is_symlink():
                sha256.update(os.readlink(file_path).encode("utf-8"))
                continue

            with open(file_path, "rb") as f:
                while chunk := f.read(FINGERPRINT_CHUNK_SIZE):
                    sha256.update(chunk)
            sha256.update(b"\0")

    return sha256.hexdigest()


class DefaultSourceResolver(SourceResolver):
    """
    Resolve local paths in place and git repositories into a checkout cache.

    Attributes:
        cache_dir: Directory holding one checkout per git source key
        git_binary: git executable to invoke
    """

    def __init__(self, cache_dir: Path | str = DEPENDENCY_CACHE_DIR, git_binary: str = "git") -> None:
        self.cache_dir = Path(cache_dir)
        self.git_binary = git_binary

    def resolve(self, source: DependencySource, base_dir: Path) -> ResolvedSource:
        if isinstance(source, LocalSource):
            return self._resolve_local(source, base_dir)
        if isinstance(source, GitSource):
            return self._resolve_git(source)
        raise SourceResolutionError(f"Unsupported dependency source: {source!r}")

    def _resolve_local(self, source: LocalSource, base_dir: Path) -> ResolvedSource:
        path = source.resolve_path(base_dir)
        if not path.is_dir():
            raise SourceResolutionError(f"Local dependency path does not exist: {path}")

        fingerprint = fingerprint_tree(path)
        logger.debug("Resolved local dependency", path=str(path), fingerprint=fingerprint[:12])
        return ResolvedSource(path=path, fingerprint=fingerprint)

    def _resolve_git(self, source: GitSource) -> ResolvedSource:
        key = source.key()
        checkout = self.cache_dir / hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]

        if (checkout / ".git").is_dir():
            logger.info("Updating git dependency", repository=source.git, checkout=str(checkout))
            self._fetch(checkout)
        else:
            logger.info("Cloning git dependency", repository=source.git, checkout=str(checkout))
            checkout.parent.mkdir(parents=True, exist_ok=True)
            self._clone(source.git, checkout)

        target = self._checkout_target(checkout, source.revision)
        self._git(["checkout", "--force", "--detach", target], cwd=checkout)
        commit = self._git(["rev-parse", "HEAD"], cwd=checkout).strip()

        path = checkout
        if source.sub_path:
            path = checkout / source.sub_path.strip("/")
            if not path.is_dir():
                raise SourceResolutionError(
                    f"Sub path '{source.sub_path}' not found in {source.git}@{commit[:12]}"
                )

        fingerprint = hashlib.sha256(f"{commit}:{source.sub_path or ''}".encode()).hexdigest()
        logger.debug(
            "Resolved git dependency",
            repository=source.git,
            revision=source.revision,
            commit=commit[:12],
        )
        return ResolvedSource(path=path.resolve(), fingerprint=fingerprint)

    def _checkout_target(self, checkout: Path, revision: str | None) -> str:
        """Prefer the remote-tracking branch so fetched branch heads are picked up."""
        if not revision:
            return "origin/HEAD"
        try:
            self._git(["rev-parse", "--verify", "--quiet", f"origin/{revision}^{{commit}}"], cwd=checkout)
            return f"origin/{revision}"
        except GitCommandError:
            return revision

    @retry(
        retry=retry_if_exception_type(GitCommandError),
        stop=stop_after_attempt(GIT_MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=GIT_RETRY_MIN_WAIT, max=GIT_RETRY_MAX_WAIT),
        reraise=True,
    )
    def _clone(self, repository: str, checkout: Path) -> None:
        self._git(["clone", "--quiet", repository, str(checkout)])

    @retry(
        retry=retry_if_exception_type(GitCommandError),
        stop=stop_after_attempt(GIT_MAX_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=GIT_RETRY_MIN_WAIT, max=GIT_RETRY_MAX_WAIT),
        reraise=True,
    )
    def _fetch(self, checkout: Path) -> None:
        self._git(["fetch", "--quiet", "--tags", "--force", "origin"], cwd=checkout)

    def _git(self, args: list[str], cwd: Path | None = None) -> str:
        try:
            completed = subprocess.run(
                [self.git_binary, *args],
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as e:
            raise SourceResolutionError(
                f"git executable '{self.git_binary}' not found", original_error=e
            ) from e

        if completed.returncode != 0:
            raise GitCommandError(args, completed.returncode, completed.stderr)
        return completed.stdout
