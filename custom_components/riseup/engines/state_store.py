"""Observable state cell.

A small shared mutable value with change notification. One instance is created
per config entry and injected into whoever publishes or reads it (the sync
service publishes its status here; diagnostics and tests read it).

ARCHITECTURE: Pure Python, NO Home Assistant dependencies.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
import copy
from typing import Any

from .. import const

StateListener = Callable[[dict[str, Any]], None]


class ObservableState:
    """Dictionary-valued state with subscribe/notify."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        """Initialize the cell with an optional starting value."""
        self._value: dict[str, Any] = dict(initial or {})
        self._listeners: list[StateListener] = []

    def get(self) -> dict[str, Any]:
        """Return a copy of the current value."""
        return copy.deepcopy(self._value)

    def set(self, value: Mapping[str, Any]) -> None:
        """Replace the value and notify listeners when it changed."""
        new_value = dict(value)
        if new_value == self._value:
            return
        self._value = new_value
        self._notify()

    def update(self, **changes: Any) -> None:
        """Merge keyword changes into the value."""
        merged = {**self._value, **changes}
        self.set(merged)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        snapshot = self.get()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:  # pylint: disable=broad-exception-caught
                const.LOGGER.exception("ERROR: State listener %s failed", listener)
