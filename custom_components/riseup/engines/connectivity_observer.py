"""Connectivity Observer - online/offline status with transition events.

The observer is fed raw reachability readings (from the HA probe in
connectivity.py, or directly by tests) and notifies listeners exactly once per
actual state change; repeated readings of the same state are ignored.

ARCHITECTURE: Pure Python, NO Home Assistant dependencies.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
import inspect

from .. import const

ConnectivityListener = Callable[[bool], Awaitable[None] | None]


class ConnectivityObserver:
    """Current online/offline status plus change listeners."""

    def __init__(self, initial_online: bool = True) -> None:
        """Initialize the observer (online until told otherwise)."""
        self._online = initial_online
        self._listeners: list[ConnectivityListener] = []

    @property
    def is_online(self) -> bool:
        """Return the last observed connectivity status."""
        return self._online

    def add_listener(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a transition listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    async def async_update(self, is_connected: bool) -> bool:
        """Record a connectivity reading.

        Listeners are awaited in registration order, so an offline->online
        transition completes its queue drain before this returns.

        Returns:
            True when the reading changed the status.
        """
        if is_connected == self._online:
            return False

        self._online = is_connected
        const.LOGGER.info(
            "INFO: Connectivity changed: %s", "online" if is_connected else "offline"
        )
        for listener in list(self._listeners):
            try:
                result = listener(is_connected)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # pylint: disable=broad-exception-caught
                const.LOGGER.exception(
                    "ERROR: Connectivity listener %s failed", listener
                )
        return True
