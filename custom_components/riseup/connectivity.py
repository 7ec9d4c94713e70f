"""Connectivity probing for the RiseUp integration.

Home Assistant has no device network-status API to subscribe to, so
reachability of the remote document store is probed on an interval and fed
to the ConnectivityObserver, which raises transition events (and thereby
triggers the retry queue drain) only on real changes.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol

from homeassistant.helpers.event import async_track_time_interval

from . import const

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant

    from .engines.connectivity_observer import ConnectivityObserver


class ReachabilityTarget(Protocol):
    """Anything that can answer a reachability ping."""

    async def async_ping(self, timeout: float = ...) -> bool:
        """Return True when reachable."""


class ConnectivityProbe:
    """Periodically ping the remote store and report the result."""

    def __init__(
        self,
        hass: HomeAssistant,
        observer: ConnectivityObserver,
        target: ReachabilityTarget,
        *,
        interval: int = const.DEFAULT_PROBE_INTERVAL,
        timeout: float = const.DEFAULT_REMOTE_TIMEOUT,
        on_still_reachable: Callable[[], Awaitable[Any]] | None = None,
    ) -> None:
        """Initialize the probe.

        On scheduled checks, on_still_reachable is awaited after a successful
        ping that found the remote already reachable. Reconnects are reported
        by the observer instead.
        """
        self.hass = hass
        self._observer = observer
        self._target = target
        self._interval = interval
        self._timeout = timeout
        self._on_still_reachable = on_still_reachable

    async def async_check(self, _now: datetime | None = None) -> bool:
        """Ping once and feed the result to the observer."""
        reachable = await self._target.async_ping(self._timeout)
        await self._observer.async_update(reachable)
        return reachable

    async def _async_scheduled_check(self, _now: datetime) -> None:
        was_online = self._observer.is_online
        reachable = await self.async_check()
        if reachable and was_online and self._on_still_reachable is not None:
            await self._on_still_reachable()

    def async_start(self) -> Callable[[], None]:
        """Start periodic probing; returns a callable that stops it."""
        const.LOGGER.debug(
            "DEBUG: Probing remote store reachability every %ss", self._interval
        )
        return async_track_time_interval(
            self.hass,
            self._async_scheduled_check,
            timedelta(seconds=self._interval),
            cancel_on_shutdown=True,
        )
