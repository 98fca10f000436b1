"""Scratch directory manager backed by the system temp directory."""

from __future__ import annotations

import json
import logging
import re
import shutil
import tempfile
from functools import partial
from pathlib import Path
from typing import Any

import anyio

from ..errors import ScratchWriteError
from ..types import SnippetSources

__all__ = ["TempScratchManager", "build_manifest"]

logger = logging.getLogger(__name__)

SCRATCH_PREFIX = "fiddle-"

FORGE_CLI_VERSION = "^7.4.0"

# File name per snippet fragment
_FILE_NAMES = {
    "main": "main.js",
    "renderer": "renderer.js",
    "html": "index.html",
    "preload": "preload.js",
}


def _package_name(name: str) -> str:
    slug = re.sub(r"[^a-z0-9._-]+", "-", name.lower()).strip("-.")
    return slug or "fiddle"


def build_manifest(
    name: str,
    version: str = "",
    *,
    include_dependencies: bool = False,
    include_runtime: bool = False,
) -> dict[str, Any]:
    """Build the package.json written next to the snippet.

    Args:
        name: Fiddle name
        version: Runtime version, pinned when include_runtime is set
        include_dependencies: Add forge tooling and package/make scripts
        include_runtime: Pin the runtime as a dev dependency
    """
    manifest: dict[str, Any] = {
        "name": _package_name(name),
        "productName": name,
        "description": "A fiddle",
        "version": "1.0.0",
        "main": "main.js",
        "scripts": {"start": "electron ."},
        "dependencies": {},
        "devDependencies": {},
    }

    if include_dependencies:
        manifest["scripts"].update({
            "package": "electron-forge package",
            "make": "electron-forge make",
        })
        manifest["devDependencies"]["@electron-forge/cli"] = FORGE_CLI_VERSION

    if include_runtime and version:
        manifest["devDependencies"]["electron"] = version

    return manifest


class TempScratchManager:
    """Writes snippets into fresh ``fiddle-*`` temp directories.

    Attributes:
        root: Parent directory for scratch directories (None = system temp)
    """

    def __init__(self, root: Path | None = None) -> None:
        self.root = root

    async def save_to_temp(
        self,
        sources: SnippetSources,
        *,
        name: str = "fiddle",
        version: str = "",
        include_dependencies: bool = False,
        include_runtime: bool = False,
    ) -> Path:
        """Materialize ``sources`` into a new directory.

        Raises:
            ScratchWriteError: If the directory or a file could not be written
        """
        manifest = build_manifest(
            name,
            version,
            include_dependencies=include_dependencies,
            include_runtime=include_runtime,
        )
        try:
            directory = await anyio.to_thread.run_sync(
                partial(self._write, sources, manifest)
            )
        except OSError as e:
            raise ScratchWriteError(f"Could not write fiddle files: {e}") from e

        logger.debug(f"Saved fiddle '{name}' to {directory}")
        return directory

    def _write(self, sources: SnippetSources, manifest: dict[str, Any]) -> Path:
        directory = Path(tempfile.mkdtemp(prefix=SCRATCH_PREFIX, dir=self.root))
        try:
            for field_name, file_name in _FILE_NAMES.items():
                content = getattr(sources, field_name)
                if field_name == "preload" and not content:
                    continue
                (directory / file_name).write_text(content, encoding="utf-8")

            (directory / "package.json").write_text(
                json.dumps(manifest, indent=2) + "\n", encoding="utf-8"
            )
        except OSError:
            shutil.rmtree(directory, ignore_errors=True)
            raise
        return directory

    async def cleanup(self, directory: Path) -> bool:
        """Remove ``directory``. Failures are logged, never raised.

        Returns:
            True if the directory is gone (or never existed)
        """
        directory = Path(directory)
        if not directory.exists():
            return True

        logger.debug(f"Cleanup: Deleting {directory}")
        try:
            await anyio.to_thread.run_sync(shutil.rmtree, directory)
        except OSError as e:
            logger.warning(f"Cleanup: could not delete {directory}: {e}")
            return False
        return True
