# File: __init__.py
"""Initialization file for the RiseUp integration.

Wires the offline-resilient Entity Sync Service for one RiseUp user: a local
key-value store on HA storage, the Firestore REST adapter, a connectivity
observer fed by a reachability probe, and the observable sync status.

Key Features:
- Config entry setup, unload and removal.
- Retry queue drained automatically when the remote store becomes reachable.
- Remote changes to custom habits and character state refresh the local cache
  and are re-fired on the event bus.
"""

from __future__ import annotations

from typing import Any

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.exceptions import ConfigEntryNotReady, HomeAssistantError

from . import const
from .connectivity import ConnectivityProbe
from .engines.connectivity_observer import ConnectivityObserver
from .engines.state_store import ObservableState
from .engines.sync_engine import EntitySyncService
from .remote_store import FirestoreDocumentStore
from .services import async_setup_services, async_unload_services
from .store import RiseUpLocalStore


def _storage_key(entry: ConfigEntry) -> str:
    return f"{const.STORAGE_KEY}_{entry.entry_id}"


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Set up the integration from a config entry."""
    const.LOGGER.info("INFO: Starting setup for RiseUp entry: %s", entry.entry_id)

    user_id = entry.data[const.CONF_USER_ID]
    remote_timeout = entry.options.get(
        const.CONF_REMOTE_TIMEOUT, const.DEFAULT_REMOTE_TIMEOUT
    )

    # Initialize the local store that backs every offline read and write.
    local_store = RiseUpLocalStore(hass, _storage_key(entry))
    try:
        await local_store.async_initialize()
    except (OSError, HomeAssistantError) as err:
        const.LOGGER.error("ERROR: Failed to load local store: %s", err)
        raise ConfigEntryNotReady from err

    remote_store = FirestoreDocumentStore(
        hass, entry.data[const.CONF_PROJECT_ID], entry.data[const.CONF_API_KEY]
    )
    observer = ConnectivityObserver()
    sync_state = ObservableState()
    sync_service = EntitySyncService(
        remote_store,
        local_store,
        observer,
        state=sync_state,
        remote_timeout=remote_timeout,
    )

    probe = ConnectivityProbe(
        hass,
        observer,
        remote_store,
        interval=entry.options.get(
            const.CONF_PROBE_INTERVAL, const.DEFAULT_PROBE_INTERVAL
        ),
        timeout=remote_timeout,
        on_still_reachable=sync_service.async_retry_pending,
    )
    await probe.async_check()
    entry.async_on_unload(probe.async_start())

    hass.data.setdefault(const.DOMAIN, {})[entry.entry_id] = {
        const.LOCAL_STORE: local_store,
        const.REMOTE_STORE: remote_store,
        const.CONNECTIVITY: observer,
        const.PROBE: probe,
        const.SYNC_SERVICE: sync_service,
        const.SYNC_STATE: sync_state,
    }

    async def _handle_remote_change(change: dict[str, Any]) -> None:
        hass.bus.async_fire(
            const.EVENT_REMOTE_CHANGE,
            {const.CONF_USER_ID: user_id, **change},
        )

    entry.async_on_unload(
        await sync_service.subscribe_to_user_data(user_id, _handle_remote_change)
    )
    entry.async_on_unload(entry.add_update_listener(_async_update_listener))

    # Set up services required by the integration.
    async_setup_services(hass)

    const.LOGGER.info("INFO: RiseUp setup complete for entry: %s", entry.entry_id)
    return True


async def _async_update_listener(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Reload the entry so changed options take effect."""
    const.LOGGER.debug("DEBUG: Options changed, reloading entry %s", entry.entry_id)
    await hass.config_entries.async_reload(entry.entry_id)


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    """Unload a config entry."""
    const.LOGGER.info("INFO: Unloading RiseUp entry: %s", entry.entry_id)

    entry_data = hass.data.get(const.DOMAIN, {}).pop(entry.entry_id, None)
    if entry_data is not None:
        pending = len(entry_data[const.SYNC_SERVICE].queue)
        if pending:
            const.LOGGER.warning(
                "WARNING: Unloading with %d queued operation(s); local copies are kept",
                pending,
            )
        await entry_data[const.SYNC_SERVICE].async_shutdown()

    if not hass.data.get(const.DOMAIN):
        await async_unload_services(hass)

    return True


async def async_remove_entry(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Handle removal of a config entry."""
    const.LOGGER.info("INFO: Removing RiseUp entry: %s", entry.entry_id)
    await RiseUpLocalStore(hass, _storage_key(entry)).async_delete_storage()
    const.LOGGER.info("INFO: RiseUp entry data cleared: %s", entry.entry_id)
