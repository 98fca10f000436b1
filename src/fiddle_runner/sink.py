"""Log sinks."""

from __future__ import annotations

import logging
import sys
from typing import TextIO

__all__ = ["ConsoleLogSink"]

logger = logging.getLogger(__name__)


class ConsoleLogSink:
    """Writes fiddle output to stdout and errors to stderr.

    Output chunks from the runtime are written as-is; progress messages get a
    trailing newline when they lack one.
    """

    def __init__(self, out: TextIO | None = None, err: TextIO | None = None) -> None:
        self._out = out if out is not None else sys.stdout
        self._err = err if err is not None else sys.stderr

    def push_output(self, text: str) -> None:
        self._write(self._out, text)

    def push_error(self, message: str, error: BaseException | None = None) -> None:
        if error is not None:
            message = f"{message.rstrip()} {type(error).__name__}: {error}"
        self._write(self._err, message)

    def _write(self, stream: TextIO, text: str) -> None:
        if not text:
            return
        if not text.endswith("\n"):
            text += "\n"
        try:
            stream.write(text)
            stream.flush()
        except (OSError, ValueError) as e:
            # Closed or broken stream
            logger.debug(f"Could not write to log sink: {e}")
