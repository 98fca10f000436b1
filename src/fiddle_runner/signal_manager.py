"""Signal handling for the command line.

Turns OS signals into runner operations:
- SIGINT: stop the running fiddle (the tool keeps going until the fiddle has
  exited and its scratch directory is removed)
- SIGTERM: stop the fiddle and shut down

Supported configuration:
- FIDDLE_SIGINT_MODE: stop | exit

A second SIGINT within the double-tap window while shutdown is already
pending forces an immediate exit.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import TYPE_CHECKING, Callable, Optional

from .config import SigintMode, get_config

if TYPE_CHECKING:
    from .runner import Runner

__all__ = ["SignalManager", "SigintMode"]

logger = logging.getLogger(__name__)

DEFAULT_DOUBLE_TAP_WINDOW = 1.0


class SignalManager:
    """Routes SIGINT/SIGTERM to the runner.

    - SIGINT becomes "stop the running fiddle"
    - SIGTERM becomes "stop the fiddle and shut down"

    Example:
        ```python
        signal_manager = SignalManager(runner)

        async def main():
            await signal_manager.start()
            try:
                await runner.wait_for_exit()
            finally:
                await signal_manager.stop()

        asyncio.run(main())
        ```

    Attributes:
        runner: Runner whose fiddle gets stopped
        sigint_mode: SIGINT handling mode
        double_tap_window: Seconds in which a second SIGINT forces exit
    """

    def __init__(
        self,
        runner: "Runner",
        sigint_mode: Optional[SigintMode] = None,
        double_tap_window: float = DEFAULT_DOUBLE_TAP_WINDOW,
        on_shutdown: Optional[Callable[[], None]] = None,
    ) -> None:
        """Create a signal manager.

        Args:
            runner: Runner to stop on SIGINT/SIGTERM
            sigint_mode: SIGINT handling mode (default read from config)
            double_tap_window: Double-tap window in seconds
            on_shutdown: Callback invoked when shutdown is requested
        """
        self.runner = runner
        self.sigint_mode = sigint_mode if sigint_mode is not None else get_config().sigint_mode
        self.double_tap_window = double_tap_window
        self._on_shutdown = on_shutdown

        # Internal state
        self._last_sigint_time: float = 0.0
        self._shutdown_requested: bool = False
        self._force_exit: bool = False  # set by a double SIGINT
        self._shutdown_event: Optional[asyncio.Event] = None
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_shutdown_requested(self) -> bool:
        """Whether shutdown has been requested."""
        return self._shutdown_requested

    @property
    def is_force_exit(self) -> bool:
        """Whether a forced exit was requested (double SIGINT)."""
        return self._force_exit

    async def start(self) -> None:
        """Install the SIGINT and SIGTERM handlers.

        Must be called inside the asyncio event loop.
        """
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
            logger.debug(
                f"Signal handlers installed (mode={self.sigint_mode.value}, "
                f"double_tap_window={self.double_tap_window}s)"
            )
        else:
            # Windows: no loop signal handlers, hop back onto the loop instead
            signal.signal(signal.SIGINT, lambda sig, frame: self._loop.call_soon_threadsafe(self._handle_sigint))
            logger.debug(f"SIGINT handler installed on Windows (mode={self.sigint_mode.value})")

    async def stop(self) -> None:
        """Remove the signal handlers.

        Restores the default SIGINT behaviour. Safe to call when not started.
        """
        if not self._running:
            return

        self._running = False

        if sys.platform != "win32" and self._loop:
            try:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
            except Exception as e:
                logger.debug(f"Error removing signal handlers: {e}")
        elif sys.platform == "win32":
            signal.signal(signal.SIGINT, signal.default_int_handler)

        logger.debug("Signal handlers removed")

    async def wait_for_shutdown(self) -> None:
        """Wait for a shutdown request.

        Returns after SIGTERM, or after a SIGINT that ends the session.
        """
        if self._shutdown_event:
            await self._shutdown_event.wait()

    def _has_active_run(self) -> bool:
        state = self.runner.state
        return state.is_running or state.is_preparing

    def _stop_runner(self) -> None:
        """Schedule ``runner.stop()`` on the loop.

        Signal handlers are synchronous, so the stop runs as a tracked task.
        """
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self.runner.stop())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _handle_sigint(self) -> None:
        """Handle SIGINT.

        Behaviour depends on the mode and the run state:
        - stop mode, fiddle active: stop the fiddle and keep going
        - stop mode, nothing active: request shutdown
        - exit mode: stop the fiddle (if any) and request shutdown
        - second SIGINT within the window after a shutdown request: force exit
        """
        current_time = time.time()
        time_since_last = current_time - self._last_sigint_time
        self._last_sigint_time = current_time

        if time_since_last < self.double_tap_window and self._shutdown_requested:
            logger.warning("Double SIGINT detected, forcing shutdown")
            self._force_shutdown()
            return

        if self.sigint_mode == SigintMode.EXIT:
            logger.info("SIGINT received (mode=exit), requesting shutdown")
            if self._has_active_run():
                self._stop_runner()
            self._request_shutdown()
        elif self._has_active_run():
            logger.info("SIGINT received (mode=stop), stopping fiddle")
            self._stop_runner()
        else:
            logger.info("SIGINT received (mode=stop), nothing running, requesting shutdown")
            self._request_shutdown()

    def _handle_sigterm(self) -> None:
        """Handle SIGTERM.

        Always shuts down gracefully: stops the fiddle, then requests shutdown.
        """
        logger.info("SIGTERM received, initiating graceful shutdown")
        if self._has_active_run():
            self._stop_runner()
        self._request_shutdown()

    def _request_shutdown(self) -> None:
        """Mark shutdown requested, run the callback and wake the waiters."""
        self._shutdown_requested = True

        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

        if self._shutdown_event and self._loop:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)

    def _force_shutdown(self) -> None:
        """Force exit.

        Sets the force-exit flag and requests shutdown. The process exit
        itself happens in the command line once cleanup has run.
        """
        logger.warning("Forcing immediate shutdown")
        self._force_exit = True
        self._request_shutdown()
