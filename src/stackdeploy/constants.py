"""Configuration constants for stackdeploy.

Named constants for file names, directories and defaults shared by the
loader, resolver, runner and CLI.
"""

VERSION: str = "0.1.0"


# -----------------------------------------------------------------------------
# Project files
# -----------------------------------------------------------------------------

# File looked up when a project or dependency path points at a directory
DEFAULT_PROJECT_FILE: str = "stackdeploy.yaml"

# Alternative spelling accepted when DEFAULT_PROJECT_FILE is absent
ALTERNATE_PROJECT_FILES: tuple[str, ...] = ("stackdeploy.yml",)

# Schema versions the loader can read (older ones are migrated)
SUPPORTED_SCHEMA_VERSIONS: frozenset[str] = frozenset({"v1", "v2"})


# -----------------------------------------------------------------------------
# Working directories
# -----------------------------------------------------------------------------

# Per-project working directory (state database, git checkouts)
WORK_DIR: str = ".stackdeploy"

# Git checkouts of remote dependencies, below WORK_DIR
DEPENDENCY_CACHE_DIR: str = ".stackdeploy/dependencies"

# State cache database, below WORK_DIR
STATE_DB_PATH: str = ".stackdeploy/state.db"


# -----------------------------------------------------------------------------
# Fingerprinting
# -----------------------------------------------------------------------------

# Directories never included in a source tree fingerprint
FINGERPRINT_IGNORED_DIRS: frozenset[str] = frozenset(
    {".git", ".hg", ".svn", ".stackdeploy", "__pycache__", ".pytest_cache"}
)

# Read size when hashing file contents
FINGERPRINT_CHUNK_SIZE: int = 8192

# Length of the hex digest prefix used as dependency node id
NODE_ID_LENGTH: int = 16


# -----------------------------------------------------------------------------
# Git
# -----------------------------------------------------------------------------

# Attempts for network git operations (clone, fetch)
GIT_MAX_ATTEMPTS: int = 3

# Exponential backoff bounds for git retries (seconds)
GIT_RETRY_MIN_WAIT: float = 1.0
GIT_RETRY_MAX_WAIT: float = 10.0
