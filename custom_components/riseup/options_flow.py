# File: options_flow.py
"""Options flow for the RiseUp integration.

Tunes the remote call timeout, the reachability probe interval and backup
retention. Saving the options reloads the entry.
"""

from __future__ import annotations

from typing import Any

import voluptuous as vol
from homeassistant import config_entries

from . import const


def build_options_schema(options: dict[str, Any]) -> vol.Schema:
    """Return the options schema with the current values as defaults."""
    return vol.Schema(
        {
            vol.Required(
                const.CONF_REMOTE_TIMEOUT,
                default=options.get(
                    const.CONF_REMOTE_TIMEOUT, const.DEFAULT_REMOTE_TIMEOUT
                ),
            ): vol.All(
                vol.Coerce(int),
                vol.Range(min=const.MIN_REMOTE_TIMEOUT, max=const.MAX_REMOTE_TIMEOUT),
            ),
            vol.Required(
                const.CONF_PROBE_INTERVAL,
                default=options.get(
                    const.CONF_PROBE_INTERVAL, const.DEFAULT_PROBE_INTERVAL
                ),
            ): vol.All(
                vol.Coerce(int),
                vol.Range(min=const.MIN_PROBE_INTERVAL, max=const.MAX_PROBE_INTERVAL),
            ),
            vol.Required(
                const.CONF_BACKUPS_MAX_RETAINED,
                default=options.get(
                    const.CONF_BACKUPS_MAX_RETAINED, const.DEFAULT_BACKUPS_MAX_RETAINED
                ),
            ): vol.All(
                vol.Coerce(int),
                vol.Range(min=0, max=const.MAX_BACKUPS_MAX_RETAINED),
            ),
        }
    )


class RiseUpOptionsFlowHandler(config_entries.OptionsFlow):
    """Options Flow for sync tuning."""

    async def async_step_init(self, user_input: dict[str, Any] | None = None):
        """Show and save the sync options."""
        if user_input is not None:
            const.LOGGER.debug(
                "DEBUG: Options Updated: Remote Timeout=%s, Probe Interval=%s, "
                "Backups Retained=%s",
                user_input.get(const.CONF_REMOTE_TIMEOUT),
                user_input.get(const.CONF_PROBE_INTERVAL),
                user_input.get(const.CONF_BACKUPS_MAX_RETAINED),
            )
            return self.async_create_entry(title="", data=user_input)

        return self.async_show_form(
            step_id="init",
            data_schema=build_options_schema(dict(self.config_entry.options)),
        )
