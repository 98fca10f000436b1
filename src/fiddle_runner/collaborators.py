"""Interfaces of the runner's collaborators.

The runner only talks to these four objects. Default implementations live in
``fiddle_runner.providers`` and ``fiddle_runner.sink``; tests substitute mocks.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from .types import SnippetSources

__all__ = [
    "BinaryProvider",
    "DependencyInstaller",
    "LogSink",
    "ScratchDirectoryManager",
]


@runtime_checkable
class LogSink(Protocol):
    """Append-only output channel. Implementations must never raise."""

    def push_output(self, text: str) -> None: ...

    def push_error(self, message: str, error: BaseException | None = None) -> None: ...


@runtime_checkable
class ScratchDirectoryManager(Protocol):
    """Materializes snippets into disposable directories."""

    async def save_to_temp(
        self,
        sources: SnippetSources,
        *,
        name: str = "fiddle",
        version: str = "",
        include_dependencies: bool = False,
        include_runtime: bool = False,
    ) -> Path: ...

    async def cleanup(self, directory: Path) -> bool: ...


@runtime_checkable
class DependencyInstaller(Protocol):
    """Package manager front end."""

    async def get_is_package_manager_installed(self) -> bool: ...

    def find_modules_in_editors(self, sources: SnippetSources) -> list[str]: ...

    async def install_modules(self, modules: list[str], directory: Path) -> str: ...

    async def run_script(self, script: str, directory: Path) -> str: ...


@runtime_checkable
class BinaryProvider(Protocol):
    """Knows which runtime versions are available locally."""

    def get_is_downloaded(self, version: str) -> bool: ...

    def get_executable_path(self, version: str) -> Path: ...
