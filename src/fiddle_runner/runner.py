"""Runner: runs and packages fiddles.

Sequences save -> ensure binary -> install dependencies -> spawn/build for the
``run`` and forge (``package``/``make``) operations.

- run(): starts the fiddle in the selected runtime; the process is supervised
  by ProcessSupervisor and cleaned up by a one-shot exit hook
- stop(): stops the running fiddle, always safe
- npm_install(): ad-hoc dependency installation
- perform_forge_operation(): package or make the fiddle

Top-level operations never raise. Failures end up as an error line on the
log sink and a False result. Scratch directories are removed on every exit
path, best-effort.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from functools import partial
from pathlib import Path
from typing import Callable, Sequence

import anyio

from .collaborators import BinaryProvider, DependencyInstaller, LogSink, ScratchDirectoryManager
from .errors import (
    BinaryNotReadyError,
    BuildScriptError,
    DependencyInstallError,
    InvalidTransitionError,
    OperationInProgressError,
    PackageManagerUnavailableError,
    RunnerError,
    ScratchWriteError,
    SpawnError,
)
from .runtime import ProcessHandle, ProcessSpec, ProcessSupervisor
from .state import RunPhase, RunState
from .types import ForgeCommand, OutputRecord, RunRequest, ScratchSession, SnippetSources

__all__ = ["Runner", "RUNTIME_ENV"]

logger = logging.getLogger(__name__)

# Extra environment for the runtime process, makes its logging visible
RUNTIME_ENV: dict[str, str] = {
    "ELECTRON_ENABLE_LOGGING": "true",
    "ELECTRON_DEBUG_NOTIFICATIONS": "true",
    "ELECTRON_ENABLE_STACK_DUMPING": "true",
}

# (progress verb, artifact noun) per forge command
_FORGE_STRINGS: dict[ForgeCommand, tuple[str, str]] = {
    ForgeCommand.PACKAGE: ("Packaging", "Binary"),
    ForgeCommand.MAKE: ("Creating installers for", "Installers"),
}


def _maybe_plural(word: str, items: Sequence[object]) -> str:
    return word if len(items) == 1 else f"{word}s"


class Runner:
    """Operation coordinator.

    Example:
        runner = Runner(
            state=RunState(),
            sink=ConsoleLogSink(),
            scratch=TempScratchManager(),
            installer=NpmInstaller(),
            binaries=LocalBinaryProvider(Path("~/.fiddle-runner/bin")),
            request_provider=lambda: RunRequest(sources, version="2.0.2"),
        )

        if await runner.run():
            await runner.wait_for_exit()
    """

    def __init__(
        self,
        state: RunState,
        sink: LogSink,
        scratch: ScratchDirectoryManager,
        installer: DependencyInstaller,
        binaries: BinaryProvider,
        request_provider: Callable[[], RunRequest],
        *,
        supervisor: ProcessSupervisor | None = None,
        app_data_dir: Path | None = None,
        forge_output_dir: Path | None = None,
        runtime_args: Sequence[str] = (),
        package_manager: str = "npm",
    ) -> None:
        """Create a runner.

        Args:
            state: Shared run state, only mutated by this runner
            sink: Log sink receiving progress, process output and errors
            scratch: Scratch directory manager
            installer: Dependency installer
            binaries: Runtime binary provider
            request_provider: Returns the current sources/version/name
            supervisor: Process supervisor (a new one is created if omitted)
            app_data_dir: Parent of per-fiddle user data dirs removed after a run
            forge_output_dir: Where forge artifacts are copied before cleanup
            runtime_args: Extra runtime arguments after the scratch directory
            package_manager: Package manager name used in messages
        """
        self._state = state
        self._sink = sink
        self._scratch = scratch
        self._installer = installer
        self._binaries = binaries
        self._request_provider = request_provider
        self._app_data_dir = app_data_dir
        self._forge_output_dir = forge_output_dir
        self._runtime_args = list(runtime_args)
        self._package_manager = package_manager

        if supervisor is None:
            supervisor = ProcessSupervisor(on_output=self._forward_output)
        else:
            supervisor.add_output_listener(self._forward_output)
        self._supervisor = supervisor

        # Scratch directories created and not yet removed
        self._sessions: dict[Path, ScratchSession] = {}
        # Scratch directories owned by an operation in progress
        self._live: set[Path] = set()
        self._forge_active = False
        # Held from spawn until the RUNNING transition
        self._spawn_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    @property
    def pending_sessions(self) -> list[ScratchSession]:
        """Scratch sessions that have not been removed yet."""
        return [session for session in self._sessions.values() if not session.cleaned]

    # ------------------------------------------------------------------
    # run / stop
    # ------------------------------------------------------------------

    async def run(self) -> bool:
        """Run the current fiddle.

        Returns:
            True if the runtime process was launched
        """
        request = self._current_request()
        if request is None:
            return False
        version = request.version

        if not self._is_binary_ready(version):
            return False

        if self._state.is_preparing:
            self._reject_run()
            return False

        if self._state.is_running:
            await self._stop_and_wait()
            # Another run may have started while the old process was exiting
            if self._state.is_preparing or self._state.is_running:
                self._reject_run()
                return False

        try:
            generation = self._state.begin()
        except InvalidTransitionError as e:
            self._report(e)
            return False

        session: ScratchSession | None = None
        handle: ProcessHandle | None = None
        spawned = False

        try:
            session = await self._save_to_temp(request)

            if not self._state.advance(generation, RunPhase.INSTALLING):
                return self._cancelled()
            try:
                await self.install_modules_for_editor(request.sources, session.path)
            except Exception as e:
                raise DependencyInstallError("Failed to install modules.") from e

            if not self._state.advance(generation, RunPhase.SPAWNING):
                return self._cancelled()
            async with self._spawn_lock:
                handle = await self._spawn(request, session, generation)
                spawned = True

                if not self._state.advance(generation, RunPhase.RUNNING):
                    # Stopped while the process was starting
                    self._supervisor.stop(handle)
                    return self._cancelled()

            self._sink.push_output(f"Runtime v{version} started.")
            logger.info(f"Runner: started pid={handle.pid} version={version} dir={session.path}")
            return True

        except asyncio.CancelledError:
            self._state.finish(generation)
            if handle is not None:
                self._supervisor.stop(handle)
            raise
        except RunnerError as e:
            self._state.finish(generation)
            self._report(e)
            return False
        except Exception as e:
            self._state.finish(generation)
            logger.exception("Runner: unexpected error while starting fiddle")
            self._sink.push_error("Failed to start fiddle.", e)
            return False
        finally:
            # Once spawned, the exit hook owns the directory
            if session is not None and not spawned:
                self._live.discard(session.path)
                await self._cleanup_session(session)

    async def stop(self) -> None:
        """Stop the running fiddle. A no-op when nothing runs.

        The run state drops to idle at once; if the fiddle is still being
        prepared, the pending run aborts before it spawns anything.
        """
        if self._supervisor.stop():
            logger.info("Runner: stop requested")
        self._state.finish()

    async def wait_for_exit(self) -> int | None:
        """Wait until the running fiddle has exited and its cleanup finished.

        Returns:
            Exit code of the process, None if nothing was running
        """
        handle = self._supervisor.active_handle
        code = await handle.wait() if handle is not None else None
        await self.wait_for_cleanup()
        return code

    async def wait_for_cleanup(self) -> None:
        """Wait for scheduled cleanup tasks."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop everything and remove all remaining scratch directories."""
        await self.stop()
        await self._supervisor.shutdown()
        await self.wait_for_cleanup()
        for session in self.pending_sessions:
            await self._cleanup_session(session)

    async def _stop_and_wait(self) -> None:
        self._state.finish()
        await self._supervisor.stop_and_wait()

    async def _spawn(
        self,
        request: RunRequest,
        session: ScratchSession,
        generation: int,
    ) -> ProcessHandle:
        try:
            binary_path = self._binaries.get_executable_path(request.version)
        except Exception as e:
            raise SpawnError(f"Could not resolve the runtime {request.version}.") from e

        logger.info(f"Runner: Binary {binary_path} ready, launching")
        spec = ProcessSpec(
            argv=[str(binary_path), str(session.path), *self._runtime_args],
            cwd=session.path,
            env={**os.environ, **RUNTIME_ENV},
        )
        on_exit = partial(self._on_process_exit, generation, session, request.name)
        return await self._supervisor.spawn(spec, on_exit=on_exit)

    def _on_process_exit(
        self,
        generation: int,
        session: ScratchSession,
        name: str,
        handle: ProcessHandle,
        code: int | None,
    ) -> None:
        with_code = f" with code {code}." if isinstance(code, int) else "."
        self._sink.push_output(f"Runtime exited{with_code}")

        # State first, cleanup I/O afterwards
        self._state.finish(generation)
        self._live.discard(session.path)

        task = asyncio.get_running_loop().create_task(
            self._cleanup_after_run(session, name), name=f"cleanup-{handle.pid}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _current_request(self) -> RunRequest | None:
        try:
            return self._request_provider()
        except Exception as e:
            logger.warning(f"Runner: request provider failed: {e}")
            self._report(RunnerError("Could not read the current fiddle."), cause=e)
            return None

    def _is_binary_ready(self, version: str) -> bool:
        try:
            ready = self._binaries.get_is_downloaded(version)
        except Exception as e:
            logger.warning(f"Runner: could not check binary {version}: {e}")
            self._report(BinaryNotReadyError(version), cause=e)
            return False

        if not ready:
            logger.warning(f"Runner: Binary {version} not ready")
            self._report(BinaryNotReadyError(version))
        return bool(ready)

    def _reject_run(self) -> None:
        self._report(OperationInProgressError(
            "A fiddle is already being started. Stop it or wait for it to start."
        ))

    def _cancelled(self) -> bool:
        self._sink.push_output("Run cancelled.")
        logger.info("Runner: run cancelled before the runtime was started")
        return False

    def _forward_output(self, record: OutputRecord) -> None:
        if record.is_error:
            self._sink.push_error(record.text)
        else:
            self._sink.push_output(record.text)

    # ------------------------------------------------------------------
    # dependencies
    # ------------------------------------------------------------------

    async def npm_install(self, directory: Path | str, *modules: str) -> bool:
        """Install dependencies into ``directory``.

        Without module names this installs what the directory's manifest lists.

        Returns:
            False if the installer failed
        """
        self._sink.push_output(f'Now running "{self._package_manager} install..."')
        try:
            output = await self._installer.install_modules(list(modules), Path(directory))
        except Exception as e:
            logger.warning(f"Runner: install failed in {directory}: {e}")
            self._sink.push_error(f'Failed to run "{self._package_manager} install".', e)
            return False

        if output:
            self._sink.push_output(output)
        return True

    async def install_modules_for_editor(self, sources: SnippetSources, directory: Path) -> None:
        """Install the modules referenced by the fiddle's scripts.

        Does nothing if no modules are referenced or no package manager is
        available. Installer errors propagate.
        """
        modules = self._installer.find_modules_in_editors(sources)
        if not modules:
            return

        names = ", ".join(modules)
        if not await self._installer.get_is_package_manager_installed():
            self._sink.push_output(
                f"The {_maybe_plural('module', modules)} {names} need to be installed, "
                f"but we could not find {self._package_manager}. Fiddle requires Node.js "
                f"and {self._package_manager} to support the installation of modules not "
                f"included in the runtime. Please visit https://nodejs.org to install them."
            )
            return

        self._sink.push_output(f"Installing modules: {names}...")
        output = await self._installer.install_modules(list(modules), directory)
        if output:
            self._sink.push_output(output)

    # ------------------------------------------------------------------
    # forge
    # ------------------------------------------------------------------

    async def perform_forge_operation(self, command: ForgeCommand | str) -> bool:
        """Package the fiddle or create installers for it.

        Returns:
            True if the build script succeeded
        """
        command = ForgeCommand(command)
        verb, artifacts = _FORGE_STRINGS[command]

        if self._forge_active:
            self._report(OperationInProgressError("A forge operation is already running."))
            return False

        try:
            has_package_manager = await self._installer.get_is_package_manager_installed()
        except Exception as e:
            logger.warning(f"Runner: package manager detection failed: {e}")
            has_package_manager = False

        if not has_package_manager:
            self._report(PackageManagerUnavailableError(
                f"Could not find {self._package_manager}. Fiddle requires Node.js and "
                f"{self._package_manager} to compile packages. Please visit "
                f"https://nodejs.org to install Node.js."
            ))
            return False

        request = self._current_request()
        if request is None:
            return False

        self._sink.push_output(f"{verb} current fiddle...")
        self._forge_active = True
        session: ScratchSession | None = None

        try:
            session = await self._save_to_temp(
                request, include_dependencies=True, include_runtime=True
            )

            try:
                await self.install_modules_for_editor(request.sources, session.path)
                self._sink.push_output(f'Now running "{self._package_manager} install..."')
                output = await self._installer.install_modules([], session.path)
                if output:
                    self._sink.push_output(output)
            except Exception as e:
                raise DependencyInstallError("Failed to install dependencies.") from e

            logger.info(f"Runner: creating {artifacts.lower()} in {session.path}")
            try:
                output = await self._installer.run_script(command.value, session.path)
            except Exception as e:
                raise BuildScriptError(
                    f"Creating {artifacts.lower()} failed.", script=command.value
                ) from e

            if output:
                self._sink.push_output(output)
            self._sink.push_output(f"{artifacts} successfully created.")
            await self._export_artifacts(session, request.name, command)
            return True

        except RunnerError as e:
            self._report(e)
        except Exception as e:
            logger.exception(f"Runner: unexpected error during {command.value}")
            self._sink.push_error(f"{verb} fiddle failed.", e)
        finally:
            self._forge_active = False
            if session is not None:
                self._live.discard(session.path)
                await self._cleanup_session(session)

        return False

    async def _export_artifacts(
        self,
        session: ScratchSession,
        name: str,
        command: ForgeCommand,
    ) -> None:
        source = session.path / "out"
        if self._forge_output_dir is None or not source.is_dir():
            return

        destination = self._forge_output_dir / f"{name}-{command.value}"
        try:
            await anyio.to_thread.run_sync(
                partial(shutil.copytree, source, destination, dirs_exist_ok=True)
            )
        except OSError as e:
            logger.warning(f"Runner: could not copy artifacts to {destination}: {e}")
            self._sink.push_error(f"Could not copy artifacts to {destination}.", e)
            return
        self._sink.push_output(f"Artifacts copied to {destination}")

    # ------------------------------------------------------------------
    # scratch directories
    # ------------------------------------------------------------------

    async def _save_to_temp(
        self,
        request: RunRequest,
        *,
        include_dependencies: bool = False,
        include_runtime: bool = False,
    ) -> ScratchSession:
        self._sink.push_output("Saving files to temp directory...")
        try:
            path = await self._scratch.save_to_temp(
                request.sources,
                name=request.name,
                version=request.version,
                include_dependencies=include_dependencies,
                include_runtime=include_runtime,
            )
        except Exception as e:
            raise ScratchWriteError("Failed to save files.") from e

        if not path:
            raise ScratchWriteError("Failed to save files: no directory was created.")

        session = ScratchSession(Path(path))
        self._sessions[session.path] = session
        self._live.add(session.path)
        self._sink.push_output(f"Saved files to {session.path}")
        return session

    async def _cleanup_session(self, session: ScratchSession) -> None:
        if session.cleaned:
            return
        # Marked before the await so a concurrent sweep skips it
        session.cleaned = True
        try:
            removed = await self._scratch.cleanup(session.path)
        except Exception as e:
            logger.warning(f"Cleanup: failed to remove {session.path}: {e}")
            removed = False

        if removed is False:
            # Kept for the next sweep
            session.cleaned = False
            return
        self._sessions.pop(session.path, None)

    async def _cleanup_after_run(self, session: ScratchSession, name: str) -> None:
        """Remove the run's directory, leftovers of earlier operations and user data."""
        await self._cleanup_session(session)

        leftovers = [
            other for other in self.pending_sessions
            if other.path not in self._live and other is not session
        ]
        for other in leftovers:
            logger.debug(f"Cleanup: sweeping leftover {other}")
            await self._cleanup_session(other)

        await self._delete_user_data(name)

    async def _delete_user_data(self, name: str) -> None:
        if self._app_data_dir is None:
            return
        user_data = self._app_data_dir / name
        try:
            # Only direct children of the app data directory are ever removed
            contained = bool(name) and user_data.resolve().parent == self._app_data_dir.resolve()
        except (OSError, ValueError):
            contained = False
        if not contained:
            logger.warning(f"Cleanup: refusing to delete data dir for name {name!r}")
            return

        logger.info(f"Cleanup: Deleting data dir {user_data}")
        try:
            await self._scratch.cleanup(user_data)
        except Exception as e:
            logger.warning(f"Cleanup: failed to remove {user_data}: {e}")

    def _report(self, error: RunnerError, cause: BaseException | None = None) -> None:
        logger.info(f"Runner: {type(error).__name__}: {error}")
        self._sink.push_error(str(error), cause or error.__cause__)
