"""Dependency installer driving npm or yarn.

Modules are discovered by scanning the fiddle's scripts for ``require()``,
``import ... from`` and ``import()`` references. Relative paths, Node core
modules and the runtime's own module are skipped; deep imports are reduced to
their package (``lodash/fp`` -> ``lodash``, ``@scope/pkg/x`` -> ``@scope/pkg``).
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

from ..errors import BuildScriptError, DependencyInstallError, SpawnError
from ..runtime import ProcessRunner, ProcessSpec, run_command
from ..types import SnippetSources

__all__ = ["NpmInstaller", "find_modules", "package_name_of"]

logger = logging.getLogger(__name__)

# Modules provided by the runtime itself
RUNTIME_MODULES = frozenset({"electron"})

NODE_BUILTINS = frozenset({
    "assert", "async_hooks", "buffer", "child_process", "cluster", "console",
    "constants", "crypto", "dgram", "diagnostics_channel", "dns", "domain",
    "events", "fs", "http", "http2", "https", "inspector", "module", "net",
    "os", "path", "perf_hooks", "process", "punycode", "querystring",
    "readline", "repl", "stream", "string_decoder", "sys", "timers", "tls",
    "trace_events", "tty", "url", "util", "v8", "vm", "wasi",
    "worker_threads", "zlib",
})

_MODULE_PATTERNS = [
    re.compile(r"""\brequire\(\s*['"]([^'"\n]+)['"]\s*\)"""),
    re.compile(r"""\bimport\s+(?:[\w*{}\s,$]+\s+from\s+)?['"]([^'"\n]+)['"]"""),
    re.compile(r"""\bimport\(\s*['"]([^'"\n]+)['"]\s*\)"""),
]


def package_name_of(specifier: str) -> str | None:
    """Return the installable package for a module specifier, or None."""
    specifier = specifier.strip()
    if not specifier or specifier.startswith((".", "/", "node:")):
        return None

    parts = specifier.split("/")
    if specifier.startswith("@"):
        if len(parts) < 2 or not parts[1]:
            return None
        name = "/".join(parts[:2])
    else:
        name = parts[0]

    if name in NODE_BUILTINS or name in RUNTIME_MODULES:
        return None
    return name


def find_modules(source: str) -> list[str]:
    """Packages referenced by ``source``, in order of first appearance."""
    found: dict[int, str] = {}
    for pattern in _MODULE_PATTERNS:
        for match in pattern.finditer(source):
            name = package_name_of(match.group(1))
            if name is not None:
                found.setdefault(match.start(), name)

    modules: list[str] = []
    for _, name in sorted(found.items()):
        if name not in modules:
            modules.append(name)
    return modules


class NpmInstaller:
    """Runs the package manager as a subprocess.

    Example:
        installer = NpmInstaller("npm")
        if await installer.get_is_package_manager_installed():
            await installer.install_modules(["say"], Path("/tmp/fiddle-x"))
    """

    def __init__(self, package_manager: str = "npm", runner: ProcessRunner | None = None) -> None:
        self.package_manager = package_manager
        self._runner = runner or ProcessRunner()
        self._is_installed = False

    def _executable(self) -> str:
        # which() resolves npm.cmd on Windows
        return shutil.which(self.package_manager) or self.package_manager

    async def get_is_package_manager_installed(self) -> bool:
        """Whether the package manager can be executed.

        A positive answer is cached; a negative one is re-checked next time.
        """
        if self._is_installed:
            return True
        if shutil.which(self.package_manager) is None:
            return False

        try:
            result = await run_command(
                ProcessSpec(argv=[self._executable(), "--version"], cwd=Path.cwd()),
                runner=self._runner,
            )
        except SpawnError as e:
            logger.debug(f"{self.package_manager} not usable: {e}")
            return False

        self._is_installed = result.ok
        if result.ok:
            logger.debug(f"Found {self.package_manager} {result.stdout.strip()}")
        return self._is_installed

    def find_modules_in_editors(self, sources: SnippetSources) -> list[str]:
        """Packages referenced by any of the fiddle's scripts."""
        modules: list[str] = []
        for source in sources.scripts():
            for name in find_modules(source):
                if name not in modules:
                    modules.append(name)
        return modules

    def _install_argv(self, modules: list[str]) -> list[str]:
        executable = self._executable()
        if self.package_manager == "yarn":
            return [executable, "add", *modules] if modules else [executable, "install"]
        return [executable, "install", "-S", *modules] if modules else [executable, "install"]

    async def install_modules(self, modules: list[str], directory: Path) -> str:
        """Install ``modules`` into ``directory`` (all manifest deps if empty).

        Returns:
            Package manager output

        Raises:
            DependencyInstallError: If the package manager fails
        """
        argv = self._install_argv(list(modules))
        logger.info(f"Installing modules {modules or '(manifest)'} in {directory}")
        try:
            result = await run_command(ProcessSpec(argv=argv, cwd=Path(directory)), runner=self._runner)
        except SpawnError as e:
            raise DependencyInstallError(str(e), modules=modules) from e

        if not result.ok:
            raise DependencyInstallError(
                f"{self.package_manager} install exited with code {result.returncode}: {result.output}",
                modules=modules,
                output=result.output,
            )
        return result.output

    async def run_script(self, script: str, directory: Path) -> str:
        """Run a manifest script in ``directory``.

        Returns:
            Script output

        Raises:
            BuildScriptError: If the script fails
        """
        argv = [self._executable(), "run", script]
        logger.info(f"Running script '{script}' in {directory}")
        try:
            result = await run_command(ProcessSpec(argv=argv, cwd=Path(directory)), runner=self._runner)
        except SpawnError as e:
            raise BuildScriptError(str(e), script=script) from e

        if not result.ok:
            raise BuildScriptError(
                f"{self.package_manager} run {script} exited with code {result.returncode}: {result.output}",
                script=script,
                output=result.output,
            )
        return result.output
