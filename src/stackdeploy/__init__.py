"""stackdeploy - deploy a project together with the projects it depends on."""

from .cli import app
from .config import ToolConfig
from .constants import VERSION

__version__ = VERSION
__all__ = ["app", "ToolConfig", "__version__"]
