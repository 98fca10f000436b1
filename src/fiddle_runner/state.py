"""Shared run state.

The run state is a tagged phase rather than a bare boolean, so that the
preparation steps of a run (saving, installing, spawning) are visible and a
stop issued in the middle of them can be detected by the pipeline.

Transitions are only made by the runner. Every operation gets a generation
number from ``begin()``; later transitions carry that number, and a stale
generation (the run was stopped or replaced) is refused instead of clobbering
the state of a newer run.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable

from .errors import InvalidTransitionError

__all__ = ["RunPhase", "RunState", "StateListener"]

logger = logging.getLogger(__name__)


class RunPhase(str, Enum):
    """Phases of a run."""

    IDLE = "idle"
    SAVING = "saving"
    INSTALLING = "installing"
    SPAWNING = "spawning"
    RUNNING = "running"


# Allowed forward transitions; any phase may fall back to IDLE
_TRANSITIONS: dict[RunPhase, frozenset[RunPhase]] = {
    RunPhase.IDLE: frozenset({RunPhase.SAVING}),
    RunPhase.SAVING: frozenset({RunPhase.INSTALLING}),
    RunPhase.INSTALLING: frozenset({RunPhase.SPAWNING}),
    RunPhase.SPAWNING: frozenset({RunPhase.RUNNING}),
    RunPhase.RUNNING: frozenset(),
}

StateListener = Callable[[RunPhase], None]


class RunState:
    """Process-wide, observable run state.

    Example:
        state = RunState()
        unsubscribe = state.subscribe(lambda phase: print(phase.value))

        generation = state.begin()
        state.advance(generation, RunPhase.INSTALLING)
        ...
        state.finish(generation)
    """

    def __init__(self) -> None:
        self._phase = RunPhase.IDLE
        self._generation = 0
        self._listeners: list[StateListener] = []

    @property
    def phase(self) -> RunPhase:
        return self._phase

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_running(self) -> bool:
        """True only while a spawned process is attached."""
        return self._phase is RunPhase.RUNNING

    @property
    def is_preparing(self) -> bool:
        return self._phase in (RunPhase.SAVING, RunPhase.INSTALLING, RunPhase.SPAWNING)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a phase-change listener.

        Returns:
            A callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def begin(self) -> int:
        """Start a new operation (IDLE -> SAVING).

        Returns:
            The generation number of the new operation

        Raises:
            InvalidTransitionError: If the state is not idle
        """
        self._transition(RunPhase.SAVING)
        self._generation += 1
        return self._generation

    def advance(self, generation: int, phase: RunPhase) -> bool:
        """Move the operation identified by ``generation`` to ``phase``.

        Returns:
            False if the operation was stopped or superseded in the meantime

        Raises:
            InvalidTransitionError: If the transition is not a legal next step
        """
        if generation != self._generation or self._phase is RunPhase.IDLE:
            logger.debug(
                f"Refusing transition to {phase.value}: generation {generation} "
                f"is stale (current={self._generation}, phase={self._phase.value})"
            )
            return False
        self._transition(phase)
        return True

    def finish(self, generation: int | None = None) -> bool:
        """Return to IDLE.

        Without a generation this is an unconditional reset (used by stop).

        Returns:
            False if ``generation`` is stale and the state was left untouched
        """
        if generation is not None and generation != self._generation:
            return False
        self._transition(RunPhase.IDLE)
        return True

    def _transition(self, target: RunPhase) -> None:
        current = self._phase
        if target is RunPhase.IDLE:
            if current is RunPhase.IDLE:
                return
        elif target not in _TRANSITIONS[current]:
            raise InvalidTransitionError(current.value, target.value)

        self._phase = target
        logger.debug(f"Run state: {current.value} -> {target.value}")

        for listener in list(self._listeners):
            try:
                listener(target)
            except Exception as e:
                logger.warning(f"Error in run state listener: {e}")

    def __repr__(self) -> str:
        return f"RunState(phase={self._phase.value}, generation={self._generation})"
