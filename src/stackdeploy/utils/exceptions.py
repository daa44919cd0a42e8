"""Custom exceptions for stackdeploy.

Exception Hierarchy:
-------------------
StackDeployError (base)
├── ConfigError
│   ├── ConfigLoadError          # Project file missing, unreadable or invalid
│   └── ConfigMigrationError     # Unknown or unsupported schema version
├── CycleDetectedError           # Dependency revisits one of its own ancestors
├── SourceResolutionError        # Dependency source could not be fetched/checked out
│   └── GitCommandError          # git clone/fetch/checkout failed
├── UnknownDependencyError       # Requested target name is not in the graph
├── CommandError                 # Deployment command exited non-zero
└── NodeOperationError           # Deploy/purge of a single dependency failed
    └── NodeTimeoutError         # Deploy/purge exceeded its time budget

Usage Guidelines:
----------------
1. Construction and planning errors (CycleDetectedError, SourceResolutionError,
   UnknownDependencyError, ConfigError) are fatal and propagate to the caller.

2. NodeOperationError is never raised out of a run. The runner records it per
   node, skips dependents and returns the aggregated RunResult.

3. Include context in exceptions:
   - Dependency path for construction errors
   - Node id for run-time errors
   - Original exception when wrapping errors
"""


class StackDeployError(Exception):
    """Base exception for all stackdeploy errors."""

    pass


class ConfigError(StackDeployError):
    """Raised when a project configuration cannot be used."""

    def __init__(self, message: str, path: str | None = None) -> None:
        """
        Initialize ConfigError.

        Args:
            message: Error message.
            path: Optional path of the offending configuration file.
        """
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        if self.path:
            return f"{self.path}: {self.args[0]}"
        return str(self.args[0]) if self.args else "configuration error"


class ConfigLoadError(ConfigError):
    """Raised when a project file is missing, not YAML, or fails validation."""

    pass


class ConfigMigrationError(ConfigError):
    """Raised when a project file declares a schema version we cannot migrate."""

    pass


class CycleDetectedError(StackDeployError):
    """
    Raised when a dependency declares one of its own ancestors.

    Example:
        frontend -> backend -> frontend

    The path is reported as the list of dependency names (or ids for unnamed
    nodes) from the root down to the repeated node, inclusive.
    """

    def __init__(self, path: list[str]) -> None:
        """
        Initialize CycleDetectedError.

        Args:
            path: Dependency path from the root to the repeated node.
        """
        super().__init__(f"Cyclic dependency detected: {' -> '.join(path)}")
        self.path = path


class SourceResolutionError(StackDeployError):
    """
    Raised when one or more dependency sources could not be resolved.

    A single failure is raised directly by the Source Resolver. The Graph
    Builder keeps resolving sibling branches and raises one aggregated error
    whose ``failures`` maps the dependency path to the underlying cause.
    """

    def __init__(
        self,
        message: str,
        failures: dict[str, Exception] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        """
        Initialize SourceResolutionError.

        Args:
            message: Error message.
            failures: Mapping of dependency path -> cause for aggregated errors.
            original_error: Optional original exception that caused this error.
        """
        super().__init__(message)
        self.failures = failures or {}
        self.original_error = original_error


class GitCommandError(SourceResolutionError):
    """Raised when a git invocation needed to fetch a dependency fails."""

    def __init__(self, args: list[str], returncode: int, stderr: str) -> None:
        """
        Initialize GitCommandError.

        Args:
            args: The git command line.
            returncode: Exit status of git.
            stderr: Captured error output.
        """
        super().__init__(
            f"git {' '.join(args)} failed with status {returncode}: {stderr.strip()}"
        )
        self.git_args = args
        self.returncode = returncode
        self.stderr = stderr


class UnknownDependencyError(StackDeployError):
    """Raised when a plan is requested for dependency names the graph does not contain."""

    def __init__(self, names: list[str]) -> None:
        """
        Initialize UnknownDependencyError.

        Args:
            names: The requested names that were not found.
        """
        super().__init__(f"Unknown dependencies: {', '.join(names)}")
        self.names = names


class CommandError(StackDeployError):
    """Raised when a deployment command exits with a non-zero status."""

    def __init__(self, command: str, returncode: int) -> None:
        """
        Initialize CommandError.

        Args:
            command: The shell command that failed.
            returncode: Its exit status.
        """
        super().__init__(f"Command '{command}' exited with status {returncode}")
        self.command = command
        self.returncode = returncode


class NodeOperationError(StackDeployError):
    """
    Raised when deploying or purging a single dependency fails.

    Wraps whatever the Deployer raised so that results always carry the node
    id alongside the underlying cause.
    """

    def __init__(self, node_id: str, message: str, cause: BaseException | None = None) -> None:
        """
        Initialize NodeOperationError.

        Args:
            node_id: Id of the dependency node whose operation failed.
            message: Error message.
            cause: The exception raised by the operation, if any.
        """
        super().__init__(message)
        self.node_id = node_id
        self.cause = cause


class NodeTimeoutError(NodeOperationError):
    """Raised when a node's operation exceeds the per-node or per-run timeout."""

    def __init__(self, node_id: str, timeout: float) -> None:
        """
        Initialize NodeTimeoutError.

        Args:
            node_id: Id of the dependency node that timed out.
            timeout: The time budget in seconds that was exceeded.
        """
        super().__init__(node_id, f"Operation timed out after {timeout:.1f}s")
        self.timeout = timeout
