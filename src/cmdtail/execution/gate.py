"""Single-resolution coordination for one command invocation."""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass


class Outcome(enum.Enum):
    """The competing paths that may resolve an invocation."""

    EXITED = "exited"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ExecutionState:
    """Snapshot of an invocation's coordination flags."""

    cancelled: bool = False
    timed_out: bool = False
    resolved: bool = False


class ResolutionGate:
    """Lets exactly one of exit, timeout, or cancellation claim the outcome.

    The check of ``resolved`` and the update of all flags happen under one
    lock, so the winner's flag is visible to anyone who later observes
    ``resolved``. Losers get False and must not act.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = ExecutionState()

    def try_claim(self, outcome: Outcome) -> bool:
        """Attempt to resolve the invocation with the given outcome.

        Returns:
            True for the first caller only.
        """

        with self._lock:
            if self._state.resolved:
                return False
            self._state = ExecutionState(
                cancelled=outcome is Outcome.CANCELLED,
                timed_out=outcome is Outcome.TIMED_OUT,
                resolved=True,
            )
            return True

    @property
    def state(self) -> ExecutionState:
        with self._lock:
            return self._state
