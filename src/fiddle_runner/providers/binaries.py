"""Runtime binary provider for locally downloaded builds.

Layout: ``<root>/<version>/`` holds the unpacked build of one version.
Downloading is handled elsewhere; this provider only looks at the disk.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

__all__ = ["LocalBinaryProvider", "executable_relpath"]

logger = logging.getLogger(__name__)


def executable_relpath(platform: str = sys.platform) -> Path:
    """Path of the runtime executable inside a version directory."""
    if platform == "win32":
        return Path("electron.exe")
    if platform == "darwin":
        return Path("Electron.app") / "Contents" / "MacOS" / "Electron"
    return Path("electron")


class LocalBinaryProvider:
    """Resolves runtime versions below a root directory."""

    def __init__(self, root: Path, platform: str = sys.platform) -> None:
        self.root = Path(root).expanduser()
        self.platform = platform

    def get_version_dir(self, version: str) -> Path:
        return self.root / version.lstrip("v")

    def get_executable_path(self, version: str) -> Path:
        return self.get_version_dir(version) / executable_relpath(self.platform)

    def get_is_downloaded(self, version: str) -> bool:
        path = self.get_executable_path(version)
        downloaded = path.is_file()
        if not downloaded:
            logger.debug(f"Runtime {version} not found at {path}")
        return downloaded

    def list_downloaded(self) -> list[str]:
        """Versions with an executable on disk, sorted by name."""
        if not self.root.is_dir():
            return []
        return sorted(
            entry.name for entry in self.root.iterdir()
            if entry.is_dir() and self.get_is_downloaded(entry.name)
        )
