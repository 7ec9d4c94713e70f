# File: config_flow.py
"""Config flow for the RiseUp integration.

Collects the Firebase project, its web API key and the RiseUp user id, and
checks that the Firestore REST endpoint accepts them before creating the entry.
"""

from __future__ import annotations

from typing import Any

import voluptuous as vol
from homeassistant import config_entries
from homeassistant.core import callback
from homeassistant.helpers import config_validation as cv

from . import const
from .engines.document_store import NonRetryableRemoteError, RetryableRemoteError
from .options_flow import RiseUpOptionsFlowHandler
from .remote_store import FirestoreDocumentStore

STEP_USER_DATA_SCHEMA = vol.Schema(
    {
        vol.Required(const.CONF_PROJECT_ID): cv.string,
        vol.Required(const.CONF_API_KEY): cv.string,
        vol.Required(const.CONF_USER_ID): cv.string,
    }
)


class RiseUpConfigFlow(config_entries.ConfigFlow, domain=const.DOMAIN):
    """Config Flow for RiseUp."""

    VERSION = 1

    async def async_step_user(self, user_input: dict[str, Any] | None = None):
        """Ask for the Firestore project, API key and user id."""
        errors: dict[str, str] = {}

        if user_input is not None:
            project_id = user_input[const.CONF_PROJECT_ID].strip()
            user_id = user_input[const.CONF_USER_ID].strip()

            await self.async_set_unique_id(f"{project_id}:{user_id}")
            self._abort_if_unique_id_configured()

            remote = FirestoreDocumentStore(
                self.hass, project_id, user_input[const.CONF_API_KEY].strip()
            )
            try:
                await remote.async_validate_credentials()
            except RetryableRemoteError as err:
                const.LOGGER.warning("WARNING: Cannot reach Firestore: %s", err)
                errors["base"] = const.CFOP_ERROR_CANNOT_CONNECT
            except NonRetryableRemoteError as err:
                const.LOGGER.warning("WARNING: Firestore rejected credentials: %s", err)
                errors["base"] = const.CFOP_ERROR_INVALID_AUTH
            else:
                return self.async_create_entry(
                    title=f"{const.RISEUP_TITLE} ({user_id})",
                    data={
                        const.CONF_PROJECT_ID: project_id,
                        const.CONF_API_KEY: user_input[const.CONF_API_KEY].strip(),
                        const.CONF_USER_ID: user_id,
                    },
                    options={
                        const.CONF_REMOTE_TIMEOUT: const.DEFAULT_REMOTE_TIMEOUT,
                        const.CONF_PROBE_INTERVAL: const.DEFAULT_PROBE_INTERVAL,
                        const.CONF_BACKUPS_MAX_RETAINED: const.DEFAULT_BACKUPS_MAX_RETAINED,
                    },
                )

        return self.async_show_form(
            step_id="user",
            data_schema=self.add_suggested_values_to_schema(
                STEP_USER_DATA_SCHEMA, user_input or {}
            ),
            errors=errors,
        )

    @staticmethod
    @callback
    def async_get_options_flow(config_entry):
        """Return the Options Flow."""
        return RiseUpOptionsFlowHandler()
