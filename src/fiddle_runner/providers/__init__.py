"""Default collaborators: scratch directories, npm/yarn and local runtime builds."""

from __future__ import annotations

from .binaries import LocalBinaryProvider
from .npm import NpmInstaller, find_modules
from .scratch import TempScratchManager, build_manifest

__all__ = [
    "LocalBinaryProvider",
    "NpmInstaller",
    "TempScratchManager",
    "build_manifest",
    "find_modules",
]
