# File: services.py
"""Defines custom services for the RiseUp integration.

These services expose backup export/import, manual queue draining, and the
day-to-day writes (daily records, coins, purchases) and history insights
to scripts and automations.
Every write goes through the Entity Sync Service, so it works offline too.
"""

from __future__ import annotations

import voluptuous as vol
from homeassistant.config_entries import ConfigEntry
from homeassistant.core import (
    HomeAssistant,
    ServiceCall,
    ServiceResponse,
    SupportsResponse,
)
from homeassistant.exceptions import HomeAssistantError, ServiceValidationError
from homeassistant.helpers import config_validation as cv

from . import const
from .engines.character_engine import CharacterEngine
from .engines.economy_engine import EconomyEngine, InsufficientCoinsError, PurchaseError
from .engines.statistics_engine import StatisticsEngine
from .engines.sync_engine import (
    CHARACTER,
    COINS,
    EntitySyncService,
    InvalidExportPayloadError,
    validate_export_payload,
)
from .helpers import backup_helpers
from .utils.dt_utils import dt_today_iso

# --- Service Schemas ---
EXPORT_USER_DATA_SCHEMA = vol.Schema(
    {
        vol.Optional(const.SERVICE_FIELD_SAVE_BACKUP, default=False): cv.boolean,
    }
)

IMPORT_USER_DATA_SCHEMA = vol.Schema(
    {
        vol.Optional(const.SERVICE_FIELD_PAYLOAD): dict,
        vol.Optional(const.SERVICE_FIELD_BACKUP_FILE): cv.string,
    }
)

SYNC_NOW_SCHEMA = vol.Schema({})

RECORD_DAY_SCHEMA = vol.Schema(
    {
        vol.Required(const.SERVICE_FIELD_COMPLETED_HABIT_IDS): vol.All(
            cv.ensure_list, [cv.string]
        ),
        vol.Required(const.SERVICE_FIELD_TOTAL_HABITS): vol.All(
            vol.Coerce(int), vol.Range(min=0)
        ),
        vol.Optional(const.SERVICE_FIELD_DATE): cv.date,
    }
)

ADD_COINS_SCHEMA = vol.Schema(
    {
        vol.Required(const.SERVICE_FIELD_AMOUNT): vol.All(
            vol.Coerce(int), vol.Range(min=1)
        ),
    }
)

PURCHASE_ITEM_SCHEMA = vol.Schema(
    {
        vol.Required(const.SERVICE_FIELD_ITEM_ID): cv.string,
    }
)

GET_INSIGHTS_SCHEMA = vol.Schema(
    {
        vol.Optional(
            const.SERVICE_FIELD_DAYS, default=const.INSIGHTS_DEFAULT_DAYS
        ): vol.All(vol.Coerce(int), vol.Range(min=1, max=const.DAILY_RECORD_LIMIT)),
    }
)


def _get_loaded_entry(
    hass: HomeAssistant, service: str
) -> tuple[EntitySyncService, str, ConfigEntry]:
    """Return (sync service, user id, config entry) of the first loaded entry."""
    domain_entries = hass.data.get(const.DOMAIN)
    entry_id = next(iter(domain_entries), None) if domain_entries else None
    entry = hass.config_entries.async_get_entry(entry_id) if entry_id else None
    if entry is None:
        const.LOGGER.warning("WARNING: %s: %s", service, const.MSG_NO_ENTRY_FOUND)
        raise HomeAssistantError(
            translation_domain=const.DOMAIN,
            translation_key=const.TRANS_KEY_ERROR_NOT_LOADED,
        )

    return (
        domain_entries[entry_id][const.SYNC_SERVICE],
        entry.data[const.CONF_USER_ID],
        entry,
    )


def _max_backups(entry: ConfigEntry) -> int:
    return int(
        entry.options.get(
            const.CONF_BACKUPS_MAX_RETAINED, const.DEFAULT_BACKUPS_MAX_RETAINED
        )
    )


def _invalid_backup(err: Exception) -> ServiceValidationError:
    return ServiceValidationError(
        translation_domain=const.DOMAIN,
        translation_key=const.TRANS_KEY_ERROR_INVALID_BACKUP,
        translation_placeholders={"error": str(err)},
    )


def async_setup_services(hass: HomeAssistant) -> None:
    """Register RiseUp services."""

    async def handle_export_user_data(call: ServiceCall) -> ServiceResponse:
        """Handle exporting every entity of the configured user."""
        sync, user_id, entry = _get_loaded_entry(
            hass, const.SERVICE_EXPORT_USER_DATA
        )
        payload = await sync.export_user_data(user_id)

        backup_file = None
        if call.data[const.SERVICE_FIELD_SAVE_BACKUP]:
            backup_file = await backup_helpers.create_timestamped_backup(
                hass, payload, const.BACKUP_TAG_MANUAL
            )
            await backup_helpers.cleanup_old_backups(hass, _max_backups(entry))

        const.LOGGER.info(
            "INFO: Exported data for user '%s' (%d daily records)",
            user_id,
            len(payload[const.FIELD_DATA][const.FIELD_DAILY_RECORDS]),
        )
        return {
            const.RESPONSE_PAYLOAD: payload,
            const.RESPONSE_BACKUP_FILE: backup_file,
        }

    async def handle_import_user_data(call: ServiceCall) -> ServiceResponse:
        """Handle restoring a backup from a payload or a saved backup file."""
        sync, user_id, entry = _get_loaded_entry(
            hass, const.SERVICE_IMPORT_USER_DATA
        )
        payload = call.data.get(const.SERVICE_FIELD_PAYLOAD)
        backup_file = call.data.get(const.SERVICE_FIELD_BACKUP_FILE)

        if payload is None and not backup_file:
            raise ServiceValidationError(
                translation_domain=const.DOMAIN,
                translation_key=const.TRANS_KEY_ERROR_MISSING_IMPORT_SOURCE,
            )
        if payload is None:
            try:
                payload = await backup_helpers.read_backup_file(hass, backup_file)
            except (FileNotFoundError, InvalidExportPayloadError) as err:
                raise _invalid_backup(err) from err

        try:
            # Reject bad payloads before taking the pre-import backup
            payload = dict(payload)
            validate_export_payload(payload)
        except InvalidExportPayloadError as err:
            raise _invalid_backup(err) from err

        pre_import_file = await backup_helpers.create_timestamped_backup(
            hass, await sync.export_user_data(user_id), const.BACKUP_TAG_PRE_IMPORT
        )
        await backup_helpers.cleanup_old_backups(hass, _max_backups(entry))

        imported = await sync.import_user_data(user_id, payload)
        return {
            const.RESPONSE_IMPORTED_RECORDS: imported,
            const.RESPONSE_BACKUP_FILE: pre_import_file,
        }

    async def handle_sync_now(call: ServiceCall) -> ServiceResponse:
        """Handle probing connectivity and replaying queued writes."""
        sync, _user_id, entry = _get_loaded_entry(hass, const.SERVICE_SYNC_NOW)
        probe = hass.data[const.DOMAIN][entry.entry_id].get(const.PROBE)
        if probe is not None:
            await probe.async_check()

        drained = await sync.async_drain_queue()
        pending = len(sync.queue)
        const.LOGGER.info(
            "INFO: Sync now replayed %d operation(s), %d still pending", drained, pending
        )
        return {const.RESPONSE_DRAINED: drained, const.RESPONSE_PENDING: pending}

    async def handle_record_day(call: ServiceCall) -> ServiceResponse:
        """Handle recording a day's habit results and updating the character."""
        sync, user_id, _entry = _get_loaded_entry(hass, const.SERVICE_RECORD_DAY)
        record_date = call.data.get(const.SERVICE_FIELD_DATE)
        record_date = record_date.isoformat() if record_date else dt_today_iso()

        record = StatisticsEngine.build_daily_record(
            record_date,
            call.data[const.SERVICE_FIELD_COMPLETED_HABIT_IDS],
            call.data[const.SERVICE_FIELD_TOTAL_HABITS],
        )
        await sync.save_daily_record(user_id, record_date, record)

        character = await sync.async_modify(
            CHARACTER,
            user_id,
            lambda current: CharacterEngine.apply_daily_progress(
                current,
                len(record[const.FIELD_COMPLETED_HABIT_IDS]),
                record[const.FIELD_TOTAL_HABITS],
            ),
        )

        const.LOGGER.info(
            "INFO: Recorded %s for user '%s': %d/%d habits",
            record_date,
            user_id,
            len(record[const.FIELD_COMPLETED_HABIT_IDS]),
            record[const.FIELD_TOTAL_HABITS],
        )
        return {const.RESPONSE_RECORD: record, const.RESPONSE_CHARACTER: character}

    async def handle_add_coins(call: ServiceCall) -> ServiceResponse:
        """Handle crediting coins to the user's ledger."""
        sync, user_id, _entry = _get_loaded_entry(hass, const.SERVICE_ADD_COINS)
        amount = call.data[const.SERVICE_FIELD_AMOUNT]
        ledger = await sync.async_modify(
            COINS, user_id, lambda current: EconomyEngine.add_coins(current, amount)
        )
        return {const.RESPONSE_LEDGER: ledger}

    async def handle_purchase_item(call: ServiceCall) -> ServiceResponse:
        """Handle buying an item from the user's purchase list."""
        sync, user_id, _entry = _get_loaded_entry(
            hass, const.SERVICE_PURCHASE_ITEM
        )
        item_id = call.data[const.SERVICE_FIELD_ITEM_ID]
        try:
            ledger = await sync.async_modify(
                COINS,
                user_id,
                lambda current: EconomyEngine.purchase_item(current, item_id),
            )
        except PurchaseError as err:
            const.LOGGER.warning("WARNING: Purchase Item: %s", err)
            raise ServiceValidationError(
                translation_domain=const.DOMAIN,
                translation_key=err.reason,
                translation_placeholders={"item_id": item_id},
            ) from err
        except InsufficientCoinsError as err:
            const.LOGGER.warning("WARNING: Purchase Item: %s", err)
            raise ServiceValidationError(
                translation_domain=const.DOMAIN,
                translation_key=const.TRANS_KEY_ERROR_INSUFFICIENT_COINS,
                translation_placeholders={
                    "item_id": item_id,
                    "balance": str(err.current_balance),
                    "cost": str(err.requested_amount),
                },
            ) from err

        const.LOGGER.info("INFO: User '%s' purchased '%s'", user_id, item_id)
        return {const.RESPONSE_LEDGER: ledger}

    async def handle_get_insights(call: ServiceCall) -> ServiceResponse:
        """Handle summarizing the user's recent daily records."""
        sync, user_id, _entry = _get_loaded_entry(hass, const.SERVICE_GET_INSIGHTS)
        records = await sync.get_daily_records(
            user_id, call.data[const.SERVICE_FIELD_DAYS]
        )
        insights = StatisticsEngine.generate_insights(records)
        const.LOGGER.debug(
            "DEBUG: Insights for user '%s' from %d daily record(s)",
            user_id,
            len(records),
        )
        return {const.RESPONSE_INSIGHTS: insights}

    for service, handler, schema in (
        (const.SERVICE_EXPORT_USER_DATA, handle_export_user_data, EXPORT_USER_DATA_SCHEMA),
        (const.SERVICE_IMPORT_USER_DATA, handle_import_user_data, IMPORT_USER_DATA_SCHEMA),
        (const.SERVICE_SYNC_NOW, handle_sync_now, SYNC_NOW_SCHEMA),
        (const.SERVICE_RECORD_DAY, handle_record_day, RECORD_DAY_SCHEMA),
        (const.SERVICE_ADD_COINS, handle_add_coins, ADD_COINS_SCHEMA),
        (const.SERVICE_PURCHASE_ITEM, handle_purchase_item, PURCHASE_ITEM_SCHEMA),
    ):
        hass.services.async_register(
            const.DOMAIN,
            service,
            handler,
            schema=schema,
            supports_response=SupportsResponse.OPTIONAL,
        )

    hass.services.async_register(
        const.DOMAIN,
        const.SERVICE_GET_INSIGHTS,
        handle_get_insights,
        schema=GET_INSIGHTS_SCHEMA,
        supports_response=SupportsResponse.ONLY,
    )

    const.LOGGER.info("INFO: RiseUp services have been registered successfully")


async def async_unload_services(hass: HomeAssistant) -> None:
    """Unregister RiseUp services when unloading the integration."""
    services = [
        const.SERVICE_EXPORT_USER_DATA,
        const.SERVICE_IMPORT_USER_DATA,
        const.SERVICE_SYNC_NOW,
        const.SERVICE_RECORD_DAY,
        const.SERVICE_ADD_COINS,
        const.SERVICE_PURCHASE_ITEM,
        const.SERVICE_GET_INSIGHTS,
    ]

    for service in services:
        if hass.services.has_service(const.DOMAIN, service):
            hass.services.async_remove(const.DOMAIN, service)

    const.LOGGER.info("INFO: RiseUp services have been unregistered")
