"""Runtime module for subprocess management.

This module provides isolated process execution with reliable termination,
and the supervisor that owns the process of a running fiddle.
"""

from __future__ import annotations

from .process_runner import CommandResult, ProcessRunner, ProcessSpec, run_command
from .supervisor import ProcessHandle, ProcessSupervisor

__all__ = [
    "CommandResult",
    "ProcessHandle",
    "ProcessRunner",
    "ProcessSpec",
    "ProcessSupervisor",
    "run_command",
]
