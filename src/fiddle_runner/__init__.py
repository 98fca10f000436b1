"""fiddle-runner - run and package small runtime fiddles.

Environment variables:
    FIDDLE_BINARY_DIR: Downloaded runtime builds (one directory per version)
    FIDDLE_PACKAGE_MANAGER: npm (default) or yarn
    FIDDLE_STOP_TIMEOUT: Seconds before a stopped fiddle is force-killed

Usage:
    fiddle-runner run --runtime-version 2.0.2 --main main.js
"""

__version__ = "0.1.0"

from .runner import Runner
from .state import RunPhase, RunState
from .types import ForgeCommand, RunRequest, SnippetSources

__all__ = [
    "__version__",
    "ForgeCommand",
    "RunPhase",
    "RunRequest",
    "RunState",
    "Runner",
    "SnippetSources",
]
