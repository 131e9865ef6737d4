"""
Observable call-state facade.

Responsibilities:
- Own the current CallSnapshot
- Run the pure reducer for every event
- Execute reducer commands (logging only)
- Push the new snapshot to subscribers when it changed

This is the only writer of the call snapshot. The presentation layer reads
`snapshot` and subscribes; it never mutates.
"""

from __future__ import annotations

import time
from typing import Callable

from observability.logger import log_event
from orchestrator.commands import Command, LogEvent
from orchestrator.events import Event
from orchestrator.reducer import reduce
from orchestrator.state_dataclass import CallSnapshot


Observer = Callable[[CallSnapshot], None]


def now_ms() -> int:
    """Wall-clock milliseconds for event timestamps."""
    return time.time_ns() // 1_000_000


class CallStateFacade:
    """Single source of truth for the user-visible call state."""

    def __init__(self, initial: CallSnapshot | None = None) -> None:
        self._snapshot = initial or CallSnapshot()
        self._observers: list[Observer] = []

    @property
    def snapshot(self) -> CallSnapshot:
        """Current immutable snapshot."""
        return self._snapshot

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """
        Register an observer called with each new snapshot.

        Returns an unsubscribe callable.
        """
        self._observers.append(observer)

        def _unsubscribe() -> None:
            self.unsubscribe(observer)

        return _unsubscribe

    def unsubscribe(self, observer: Observer) -> None:
        """Remove an observer; unknown observers are ignored."""
        if observer in self._observers:
            self._observers.remove(observer)

    def dispatch(self, event: Event) -> CallSnapshot:
        """
        Reduce one event and publish the result.

        Steps:
        1. Pass the current snapshot and event to the pure reducer
        2. Swap in the new snapshot
        3. Execute emitted commands in order
        4. Notify observers if the snapshot changed
        """
        previous = self._snapshot
        new_snapshot, commands = reduce(previous, event)
        self._snapshot = new_snapshot

        for cmd in commands:
            self._execute_command(cmd)

        if new_snapshot != previous:
            self._notify(new_snapshot)

        return new_snapshot

    def _execute_command(self, cmd: Command) -> None:
        if isinstance(cmd, LogEvent):
            log_event(cmd.event)
            return
        raise RuntimeError(f"Unhandled command type: {type(cmd).__name__}")

    def _notify(self, snapshot: CallSnapshot) -> None:
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "OBSERVER_ERROR",
                    "observer": getattr(observer, "__name__", repr(observer)),
                    "error": repr(e),
                })
