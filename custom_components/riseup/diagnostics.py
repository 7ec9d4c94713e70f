"""Diagnostics support for the RiseUp integration.

Reports the sync status, queued operations and local cache contents so an
offline backlog can be inspected without touching the remote store.
"""

from __future__ import annotations

import json
from typing import Any

from homeassistant.components.diagnostics import async_redact_data
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant

from . import const
from .engines.sync_engine import EntitySyncService
from .store import RiseUpLocalStore

TO_REDACT = {const.CONF_API_KEY}


async def async_get_config_entry_diagnostics(
    hass: HomeAssistant, entry: ConfigEntry
) -> dict[str, Any]:
    """Return diagnostics for a config entry."""
    entry_data = hass.data[const.DOMAIN][entry.entry_id]
    sync: EntitySyncService = entry_data[const.SYNC_SERVICE]
    local: RiseUpLocalStore = entry_data[const.LOCAL_STORE]

    local_cache: dict[str, Any] = {}
    for key in await local.async_get_all_keys():
        raw = await local.async_get(key)
        try:
            local_cache[key] = json.loads(raw) if raw is not None else None
        except ValueError:
            local_cache[key] = {"corrupt": raw}

    return {
        "config": async_redact_data(dict(entry.data), TO_REDACT),
        "options": dict(entry.options),
        "sync_status": sync.state.get(),
        "pending_operations": sync.queue.pending_labels(),
        "local_cache": local_cache,
    }
