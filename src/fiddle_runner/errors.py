"""Runner exception classes.

Every failure the runner reports belongs to one of these classes. Top-level
operations never let them escape; they are converted into a ``False`` result
plus an error line on the log sink, so the class name only shows up in the
human-readable message.
"""

from __future__ import annotations

__all__ = [
    "RunnerError",
    "BinaryNotReadyError",
    "ScratchWriteError",
    "DependencyInstallError",
    "BuildScriptError",
    "SpawnError",
    "PackageManagerUnavailableError",
    "OperationInProgressError",
    "InvalidTransitionError",
]


class RunnerError(Exception):
    """Base class for runner failures."""
    pass


class BinaryNotReadyError(RunnerError):
    """The selected runtime version has not been downloaded.

    Attributes:
        version: Runtime version that was requested
    """

    def __init__(self, version: str) -> None:
        self.version = version
        super().__init__(
            f"Could not start fiddle: runtime {version} not downloaded yet. "
            f"Please wait for it to finish downloading before running the fiddle."
        )


class ScratchWriteError(RunnerError):
    """The snippet could not be written to a scratch directory."""
    pass


class DependencyInstallError(RunnerError):
    """Module discovery or installation failed.

    Attributes:
        modules: Module names that were being installed (may be empty)
        output: Captured installer output
    """

    def __init__(self, message: str, modules: list[str] | None = None, output: str = "") -> None:
        self.modules = list(modules or [])
        self.output = output
        super().__init__(message)


class BuildScriptError(RunnerError):
    """A forge build script (package/make) failed.

    Attributes:
        script: Script name
        output: Captured script output
    """

    def __init__(self, message: str, script: str = "", output: str = "") -> None:
        self.script = script
        self.output = output
        super().__init__(message)


class SpawnError(RunnerError):
    """The OS refused to start the target process."""
    pass


class PackageManagerUnavailableError(RunnerError):
    """No usable package manager was found."""
    pass


class OperationInProgressError(RunnerError):
    """A conflicting operation is already active."""
    pass


class InvalidTransitionError(RunnerError):
    """An illegal run-state transition was requested.

    Attributes:
        current: Phase the state was in
        target: Phase that was requested
    """

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Illegal run state transition: {current} -> {target}")
