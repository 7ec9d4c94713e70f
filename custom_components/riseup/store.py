"""Local persistent key-value store for the RiseUp integration.

Uses Home Assistant's Storage helper to keep a flat {key: JSON string} map on
disk, so cached entities and offline writes survive restarts. Every mutation
is saved before the call returns.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from homeassistant.helpers.storage import Store

from . import const
from .engines.document_store import LocalStoreNotReadyError

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant


class RiseUpLocalStore:
    """Durable string key-value store backed by a Home Assistant Store file."""

    def __init__(
        self, hass: HomeAssistant, storage_key: str = const.STORAGE_KEY
    ) -> None:
        """Initialize the store.

        Args:
            hass: Home Assistant core object.
            storage_key: Key to identify storage location (default: const.STORAGE_KEY).

        """
        self.hass = hass
        self._storage_key = storage_key
        self._store: Store[dict[str, Any]] = Store(
            hass, const.STORAGE_VERSION, storage_key
        )
        self._data: dict[str, str] | None = None

    @property
    def is_ready(self) -> bool:
        """Return True once async_initialize() has loaded the map."""
        return self._data is not None

    @property
    def storage_key(self) -> str:
        """Return the storage key."""
        return self._storage_key

    async def async_initialize(self) -> None:
        """Load the stored map, starting empty when no file exists."""
        stored = await self._store.async_load()
        if stored is None:
            const.LOGGER.info(
                "INFO: No local store file for '%s', starting empty", self._storage_key
            )
            self._data = {}
            return

        entries = stored.get("entries", {}) if isinstance(stored, dict) else {}
        self._data = {
            str(key): value for key, value in entries.items() if isinstance(value, str)
        }
        const.LOGGER.debug(
            "DEBUG: Local store loaded with %d key(s)", len(self._data)
        )

    def _entries(self) -> dict[str, str]:
        if self._data is None:
            raise LocalStoreNotReadyError(
                "Local store used before async_initialize() completed"
            )
        return self._data

    async def async_get(self, key: str) -> str | None:
        """Return the stored string, or None."""
        return self._entries().get(key)

    async def async_set(self, key: str, value: str) -> None:
        """Store a string value (callers JSON-serialize)."""
        if not isinstance(value, str):
            raise TypeError(f"Local store values must be strings, got {type(value).__name__}")
        self._entries()[key] = value
        await self.async_save()

    async def async_remove(self, key: str) -> None:
        """Remove a key if present."""
        entries = self._entries()
        if entries.pop(key, None) is not None:
            await self.async_save()

    async def async_multi_remove(self, keys: Sequence[str]) -> None:
        """Remove several keys with a single save."""
        entries = self._entries()
        removed = [key for key in keys if entries.pop(key, None) is not None]
        if removed:
            await self.async_save()

    async def async_get_all_keys(self) -> list[str]:
        """Return every stored key."""
        return list(self._entries())

    async def async_save(self) -> None:
        """Persist the map to disk."""
        try:
            await self._store.async_save({"entries": dict(self._entries())})
        except (OSError, TypeError, ValueError) as err:
            const.LOGGER.error("ERROR: Failed to save local store: %s", err)

    async def async_delete_storage(self) -> None:
        """Clear the map and remove the storage file."""
        self._data = {}
        await self._store.async_remove()
        const.LOGGER.info("INFO: Removed local store '%s'", self._storage_key)
