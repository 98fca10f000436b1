"""Process supervisor.

Owns the single external process a run may have attached. Output from the
child's stdout and stderr is pumped by one task per stream, so chunks of the
same stream are delivered to listeners in order; chunks from the two streams
interleave in whatever order they are read.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from typing import Callable

from ..types import OutputRecord, OutputStream
from .process_runner import ProcessRunner, ProcessSpec

__all__ = [
    "ExitCallback",
    "OutputListener",
    "ProcessHandle",
    "ProcessSupervisor",
]

logger = logging.getLogger(__name__)

# Size of a single read from a child stream
READ_CHUNK_SIZE = 4096

OutputListener = Callable[[OutputRecord], None]
ExitCallback = Callable[["ProcessHandle", "int | None"], None]


class ProcessHandle:
    """A live (or finished) supervised process.

    Exit callbacks fire exactly once, when the process has exited and both of
    its output streams are drained.
    """

    def __init__(self, process: asyncio.subprocess.Process, spec: ProcessSpec) -> None:
        self.process = process
        self.spec = spec
        self.returncode: int | None = None
        self.stop_requested = False
        self._exited = asyncio.Event()
        self._callbacks: list[ExitCallback] = []

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def has_exited(self) -> bool:
        return self._exited.is_set()

    def on_exit(self, callback: ExitCallback) -> None:
        """Register an exit callback (called immediately if already exited)."""
        if self._exited.is_set():
            self._invoke(callback)
        else:
            self._callbacks.append(callback)

    async def wait(self) -> int | None:
        """Wait for the process to exit and return its exit code."""
        await self._exited.wait()
        return self.returncode

    def _mark_exited(self, returncode: int | None) -> None:
        if self._exited.is_set():
            return
        self.returncode = returncode
        self._exited.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._invoke(callback)

    def _invoke(self, callback: ExitCallback) -> None:
        try:
            callback(self, self.returncode)
        except Exception as e:
            logger.warning(f"Error in exit callback for pid={self.pid}: {e}")

    def __repr__(self) -> str:
        status = f"exited({self.returncode})" if self.has_exited else "running"
        return f"ProcessHandle(pid={self.pid}, argv0={self.spec.argv[0]}, status={status})"


class ProcessSupervisor:
    """Spawns and supervises at most one external process.

    Example:
        supervisor = ProcessSupervisor(on_output=lambda record: print(record.text))
        handle = await supervisor.spawn(
            ProcessSpec(argv=["/path/to/runtime", "/tmp/fiddle-x"], cwd=Path("/tmp/fiddle-x")),
            on_exit=lambda handle, code: print("exited", code),
        )
        ...
        supervisor.stop()
    """

    def __init__(
        self,
        on_output: OutputListener | None = None,
        runner: ProcessRunner | None = None,
    ) -> None:
        self._runner = runner or ProcessRunner()
        self._listeners: list[OutputListener] = []
        self._handle: ProcessHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        if on_output is not None:
            self._listeners.append(on_output)

    @property
    def active_handle(self) -> ProcessHandle | None:
        return self._handle

    @property
    def is_running(self) -> bool:
        return self._handle is not None

    def add_output_listener(self, listener: OutputListener) -> Callable[[], None]:
        """Register an output listener.

        Returns:
            A callable that removes the listener again
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def spawn(
        self,
        spec: ProcessSpec,
        *,
        on_exit: ExitCallback | None = None,
    ) -> ProcessHandle:
        """Start a process, stopping the active one first.

        Args:
            spec: Process specification
            on_exit: Optional exit callback, registered before any output is read

        Returns:
            Handle of the new process

        Raises:
            SpawnError: If the process could not be started
        """
        if self._handle is not None:
            logger.info(f"Stopping pid={self._handle.pid} before starting a new process")
            await self.stop_and_wait()

        process = await self._runner.start(spec)
        handle = ProcessHandle(process, spec)
        if on_exit is not None:
            handle.on_exit(on_exit)

        # Another spawn may have attached a process while this one was starting
        try:
            while self._handle is not None:
                logger.info(f"Stopping pid={self._handle.pid} attached while pid={handle.pid} was starting")
                await self.stop_and_wait()
        except asyncio.CancelledError:
            await asyncio.shield(self._runner.terminate(process))
            handle._mark_exited(process.returncode)
            raise

        self._handle = handle
        self._track(asyncio.create_task(self._supervise(handle), name=f"supervise-{handle.pid}"))
        return handle

    def stop(self, handle: ProcessHandle | None = None) -> bool:
        """Ask a process to terminate. Idempotent.

        Returns immediately; the handle is released at once and force-killed
        later if it ignores the graceful signal.

        Args:
            handle: Process to stop (default: the active one). A handle that
                is no longer active is terminated without touching the
                active process.

        Returns:
            True if a process was signalled, False if there was nothing to stop
        """
        if handle is None:
            handle = self._handle
        if handle is None or handle.stop_requested or handle.has_exited:
            return False

        if self._handle is handle:
            self._handle = None
        handle.stop_requested = True
        logger.debug(f"Stop requested for pid={handle.pid}")
        self._track(asyncio.create_task(self._runner.terminate(handle.process), name=f"terminate-{handle.pid}"))
        return True

    async def stop_and_wait(self) -> None:
        """Stop the active process and wait until it has exited."""
        handle = self._handle
        if handle is None or not self.stop():
            return
        try:
            await asyncio.wait_for(handle.wait(), timeout=self._shutdown_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Process pid={handle.pid} did not exit in time")

    async def shutdown(self) -> None:
        """Stop the active process and wait for all supervision tasks."""
        self.stop()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def _shutdown_timeout(self) -> float:
        return self._runner.term_timeout + self._runner.kill_timeout + 1.0

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _supervise(self, handle: ProcessHandle) -> None:
        process = handle.process
        pumps = [
            asyncio.create_task(self._pump(process.stdout, OutputStream.STDOUT)),
            asyncio.create_task(self._pump(process.stderr, OutputStream.STDERR)),
        ]
        try:
            await asyncio.gather(*pumps)
            await process.wait()
            logger.debug(f"Subprocess completed pid={handle.pid} returncode={process.returncode}")
        except asyncio.CancelledError:
            for pump in pumps:
                pump.cancel()
            await asyncio.shield(self._runner.terminate(process))
            raise
        finally:
            if self._handle is handle:
                self._handle = None
            handle._mark_exited(process.returncode)

    async def _pump(self, stream: asyncio.StreamReader | None, kind: OutputStream) -> None:
        if stream is None:
            return

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            text = decoder.decode(chunk)
            if text:
                self._emit(OutputRecord(text, kind))

        tail = decoder.decode(b"", final=True)
        if tail:
            self._emit(OutputRecord(tail, kind))

    def _emit(self, record: OutputRecord) -> None:
        for listener in list(self._listeners):
            try:
                listener(record)
            except Exception as e:
                logger.warning(f"Error in output listener: {e}")
