"""Backup utilities for the RiseUp integration.

Handles writing export envelopes to timestamped files under .storage/,
discovering and pruning them, and reading them back for import.

File naming format: riseup_backup_YYYY-MM-DD_HH-MM-SS_<tag>
"""

from __future__ import annotations

import datetime
import json
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from homeassistant.util import dt as dt_util

from .. import const
from ..engines.sync_engine import InvalidExportPayloadError, validate_export_payload
from ..utils.dt_utils import dt_format_backup_stamp

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant


def _read_text_file(path: str) -> str:
    """Read a UTF-8 text file from disk.

    This helper is used with hass.async_add_executor_job in async contexts.
    """
    return Path(path).read_text(encoding="utf-8")


def _write_text_file(path: str, content: str) -> None:
    """Write UTF-8 text content to disk, creating the directory if needed.

    This helper is used with hass.async_add_executor_job in async contexts.
    """
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    Path(path).write_text(content, encoding="utf-8")


def build_backup_filename(tag: str, when: datetime.datetime | None = None) -> str:
    """Return the backup filename for a tag and time (default: now, UTC)."""
    stamp = dt_format_backup_stamp(when or dt_util.utcnow())
    return f"{const.BACKUP_FILENAME_PREFIX}_{stamp}_{tag}"


def is_backup_filename(filename: str) -> bool:
    """Return True for a plain backup filename (no directory components)."""
    return (
        filename.startswith(f"{const.BACKUP_FILENAME_PREFIX}_")
        and os.path.basename(filename) == filename
    )


def validate_backup_json(json_str: str) -> bool:
    """Return True when the text is a structurally valid export envelope."""
    try:
        validate_export_payload(json.loads(json_str))
    except (ValueError, InvalidExportPayloadError):
        return False
    return True


async def create_timestamped_backup(
    hass: HomeAssistant, payload: dict[str, Any], tag: str
) -> str | None:
    """Write an export envelope to .storage/ under a timestamped name.

    Returns:
        Filename of the created backup, or None if writing failed.
    """
    filename = build_backup_filename(tag)
    try:
        await hass.async_add_executor_job(
            _write_text_file,
            hass.config.path(".storage", filename),
            json.dumps(payload, indent=2),
        )
    except (OSError, TypeError, ValueError) as ex:
        const.LOGGER.error("ERROR: Failed to write backup %s: %s", filename, ex)
        return None

    const.LOGGER.info("INFO: Created %s backup: %s", tag, filename)
    return filename


async def discover_backups(hass: HomeAssistant) -> list[dict[str, Any]]:
    """Scan .storage/ for backup files, newest first.

    Returns:
        List of dicts with filename, tag, timestamp (aware datetime), size_bytes.
        Files whose names do not parse are skipped.
    """
    backups_list: list[dict[str, Any]] = []
    storage_dir = hass.config.path(".storage")

    try:
        if not await hass.async_add_executor_job(os.path.exists, storage_dir):
            return backups_list
        filenames = await hass.async_add_executor_job(os.listdir, storage_dir)
    except OSError as ex:
        const.LOGGER.error("ERROR: Failed to scan storage directory: %s", ex)
        return backups_list

    prefix = f"{const.BACKUP_FILENAME_PREFIX}_"
    for filename in filenames:
        if not filename.startswith(prefix):
            continue
        try:
            timestamp_str, tag = filename[len(prefix) :].rsplit("_", 1)
            timestamp = datetime.datetime.strptime(
                timestamp_str, const.BACKUP_TIMESTAMP_FORMAT
            ).replace(tzinfo=datetime.UTC)
            size_bytes = await hass.async_add_executor_job(
                os.path.getsize, os.path.join(storage_dir, filename)
            )
        except (ValueError, OSError) as ex:
            const.LOGGER.debug("DEBUG: Skipping invalid backup file %s: %s", filename, ex)
            continue

        backups_list.append(
            {
                "filename": filename,
                "tag": tag,
                "timestamp": timestamp,
                "size_bytes": size_bytes,
            }
        )

    backups_list.sort(key=lambda b: b["timestamp"], reverse=True)
    return backups_list


async def cleanup_old_backups(hass: HomeAssistant, max_backups: int) -> int:
    """Keep the newest max_backups files per tag and delete the rest.

    Returns:
        Number of files deleted.
    """
    by_tag: dict[str, list[dict[str, Any]]] = {}
    for backup in await discover_backups(hass):
        by_tag.setdefault(backup["tag"], []).append(backup)

    deleted = 0
    for tag, tag_backups in by_tag.items():
        for backup in tag_backups[max(max_backups, 0) :]:
            try:
                await hass.async_add_executor_job(
                    os.remove, hass.config.path(".storage", backup["filename"])
                )
            except OSError as ex:
                const.LOGGER.warning(
                    "WARNING: Failed to delete backup %s: %s", backup["filename"], ex
                )
                continue
            deleted += 1
            const.LOGGER.info("INFO: Cleaned up old %s backup: %s", tag, backup["filename"])
    return deleted


async def read_backup_file(hass: HomeAssistant, filename: str) -> dict[str, Any]:
    """Load and validate a backup file from .storage/.

    Raises:
        InvalidExportPayloadError: Bad filename, unreadable JSON, or bad structure.
        FileNotFoundError: No such backup.
    """
    if not is_backup_filename(filename):
        raise InvalidExportPayloadError(f"Not a backup filename: {filename}")

    content = await hass.async_add_executor_job(
        _read_text_file, hass.config.path(".storage", filename)
    )
    try:
        payload = json.loads(content)
    except ValueError as err:
        raise InvalidExportPayloadError(f"Backup {filename} is not valid JSON") from err
    validate_export_payload(payload)
    return payload
