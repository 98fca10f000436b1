"""fiddle-runner environment configuration.

Environment variables:
    FIDDLE_BINARY_DIR: Directory holding downloaded runtime builds
        - One sub directory per version, e.g. <dir>/2.0.2/electron
        - Default: ~/.fiddle-runner/bin

    FIDDLE_APP_DATA: Parent directory of per-fiddle user data directories
        - Removed after every run as <dir>/<fiddle name>
        - Default: platform app data directory

    FIDDLE_PACKAGE_MANAGER: Package manager used to install modules
        - npm (default) or yarn

    FIDDLE_STOP_TIMEOUT: Seconds between the graceful stop signal and SIGKILL
        - Default 1.0, clamped to 0.1-30

    FIDDLE_FORGE_OUT: Directory forge artifacts are copied to before cleanup
        - Unset = artifacts are discarded with the scratch directory

    FIDDLE_LOG_DEBUG: Debug logging
        - true/1/yes = on (log to a temp file)
        - false/0/no = off (default, log to stderr)

    FIDDLE_SIGINT_MODE: Ctrl+C handling while a fiddle runs
        - stop = stop the running fiddle, exit if nothing runs (default)
        - exit = exit immediately
"""

from __future__ import annotations

import os
import sys
import tempfile
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = [
    "Config",
    "SigintMode",
    "SUPPORTED_PACKAGE_MANAGERS",
    "get_config",
    "load_config",
    "reload_config",
]

SUPPORTED_PACKAGE_MANAGERS = frozenset({"npm", "yarn"})

DEFAULT_STOP_TIMEOUT = 1.0


class SigintMode(Enum):
    """SIGINT handling mode.

    - STOP: stop the running fiddle; exit if nothing is running
    - EXIT: exit the process directly
    """

    STOP = "stop"
    EXIT = "exit"

    @classmethod
    def from_string(cls, value: str) -> "SigintMode":
        """Parse a mode string; unknown values fall back to STOP."""
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.STOP


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_path(value: str | None, default: Path) -> Path:
    if not value or not value.strip():
        return default
    return Path(value.strip()).expanduser()


def _parse_package_manager(value: str | None) -> str:
    if not value:
        return "npm"
    manager = value.strip().lower()
    return manager if manager in SUPPORTED_PACKAGE_MANAGERS else "npm"


def _parse_stop_timeout(value: str | None) -> float:
    if not value:
        return DEFAULT_STOP_TIMEOUT
    try:
        timeout = float(value)
        return max(0.1, min(timeout, 30.0))
    except ValueError:
        return DEFAULT_STOP_TIMEOUT


def _default_app_data_dir() -> Path:
    """Platform app data directory (what the runtime uses as its appData path)."""
    home = Path.home()
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA", home / "AppData" / "Roaming"))
    if sys.platform == "darwin":
        return home / "Library" / "Application Support"
    return Path(os.environ.get("XDG_CONFIG_HOME", home / ".config"))


def _generate_log_file_path() -> str:
    """Log file path under the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "fiddle-runner"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"fiddle_debug_{timestamp}.log"

    return str(log_file.resolve())


@dataclass
class Config:
    """fiddle-runner configuration.

    Attributes:
        binary_dir: Root of the downloaded runtime builds
        app_data_dir: Parent of the per-fiddle user data directories
        package_manager: npm or yarn
        stop_timeout: Seconds before a stopped fiddle is force-killed
        forge_output_dir: Where forge artifacts are copied (None = discard)
        log_debug: Debug logging to a temp file
        log_file: Log file path (set when log_debug is on)
        sigint_mode: Ctrl+C handling
    """

    binary_dir: Path = Path.home() / ".fiddle-runner" / "bin"
    app_data_dir: Path = Path.home() / ".config"
    package_manager: str = "npm"
    stop_timeout: float = DEFAULT_STOP_TIMEOUT
    forge_output_dir: Path | None = None
    log_debug: bool = False
    log_file: str | None = None
    sigint_mode: SigintMode = SigintMode.STOP

    def __repr__(self) -> str:
        return (
            f"Config(binary_dir={self.binary_dir}, "
            f"app_data_dir={self.app_data_dir}, "
            f"package_manager={self.package_manager}, "
            f"stop_timeout={self.stop_timeout}, "
            f"forge_output_dir={self.forge_output_dir}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"sigint_mode={self.sigint_mode.value})"
        )


def load_config() -> Config:
    """Load configuration from the environment."""
    log_debug = _parse_bool(os.environ.get("FIDDLE_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None
    forge_out = os.environ.get("FIDDLE_FORGE_OUT")

    return Config(
        binary_dir=_parse_path(
            os.environ.get("FIDDLE_BINARY_DIR"),
            Path.home() / ".fiddle-runner" / "bin",
        ),
        app_data_dir=_parse_path(os.environ.get("FIDDLE_APP_DATA"), _default_app_data_dir()),
        package_manager=_parse_package_manager(os.environ.get("FIDDLE_PACKAGE_MANAGER")),
        stop_timeout=_parse_stop_timeout(os.environ.get("FIDDLE_STOP_TIMEOUT")),
        forge_output_dir=Path(forge_out.strip()).expanduser() if forge_out and forge_out.strip() else None,
        log_debug=log_debug,
        log_file=log_file,
        sigint_mode=SigintMode.from_string(os.environ.get("FIDDLE_SIGINT_MODE") or "stop"),
    )


# Global config instance (lazy)
_config: Config | None = None


def get_config() -> Config:
    """Return the global config instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload the configuration (used by tests)."""
    global _config
    _config = load_config()
    return _config
