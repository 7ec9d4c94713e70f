"""Entity Sync Service - offline-resilient reads and writes for every entity.

Every operation tries the remote document store first and degrades to the
local key-value store when the device is offline or the remote call fails.
Writes that could not reach the remote store are queued on the RetryQueue and
replayed when connectivity returns.

Policies:
    - Last write wins. Each remote write carries an atomic version increment and
      a server timestamp; the version is advisory and never compared.
    - Every remote call runs under a timeout; expiry counts as a retryable failure.
    - Retryable failures fall back and queue a retry; non-retryable failures
      (auth, bad request, missing document on update) fall back without queueing.
    - Local write-through: successful remote writes and reads refresh the local
      copy, so the fallback always returns the newest value this process saw.
    - One writer per document: writes to the same document are serialized,
      including replays of queued writes.
    - Queued writes keep their order: while a write to a document is queued,
      newer writes to that document queue behind it and reads of it come from
      the local copy.
    - "set" replaces the entity: fields dropped from a spread entity since the
      last local copy are deleted remotely.

ARCHITECTURE: Pure Python, NO Home Assistant dependencies. Collaborators are
injected through the constructor; see engines/document_store.py for contracts.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Awaitable, Callable, Mapping, Sequence
import contextlib
from dataclasses import dataclass, field
import inspect
import json
from typing import TYPE_CHECKING, Any, TypeVar

from .. import const
from ..utils.dt_utils import dt_now_iso
from .document_store import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    WRITE_SET,
    Increment,
    LocalKeyValueStore,
    NonRetryableRemoteError,
    QueryFilter,
    RemoteDocumentStore,
    RemoteStoreError,
    RetryableRemoteError,
    SyncError,
    WriteOperation,
)
from .retry_queue import QueuedOperation, RetryQueue
from .state_store import ObservableState
from .statistics_engine import StatisticsEngine

if TYPE_CHECKING:
    from ..type_defs import DailyRecord, ExportPayload
    from .connectivity_observer import ConnectivityObserver

_T = TypeVar("_T")

# Fields the sync layer adds to every remote document
BOOKKEEPING_FIELDS = frozenset(
    {const.FIELD_USER_ID, const.FIELD_UPDATED_AT, const.FIELD_VERSION}
)

UserDataListener = Callable[[dict[str, Any]], Awaitable[None] | None]


class InvalidExportPayloadError(SyncError, ValueError):
    """A backup envelope is missing required structure."""


# =============================================================================
# Entity specifications
# =============================================================================


@dataclass(frozen=True)
class EntitySpec:
    """How one entity type maps onto the remote and local stores.

    Attributes:
        name: Entity name, also the local key segment
        collection: Remote collection; the document id is the user id
        payload_field: Document field wrapping the entity, or None to spread
            the entity's own fields into the document
        fields: For spread entities, the fields returned on read (None = all
            non-bookkeeping fields)
    """

    name: str
    collection: str
    payload_field: str | None = None
    fields: tuple[str, ...] | None = field(default=None)

    def local_key(self, user_id: str) -> str:
        """Return the local store key for this entity and user."""
        return const.LOCAL_KEY_FMT.format(
            prefix=const.LOCAL_KEY_PREFIX, entity=self.name, user_id=user_id
        )

    def to_document(self, user_id: str, entity: Any) -> dict[str, Any]:
        """Shape an entity into a remote document payload."""
        if self.payload_field is not None:
            body: dict[str, Any] = {self.payload_field: entity}
        else:
            body = {
                key: value
                for key, value in dict(entity).items()
                if key not in BOOKKEEPING_FIELDS
            }
        return {
            const.FIELD_USER_ID: user_id,
            **body,
            const.FIELD_UPDATED_AT: SERVER_TIMESTAMP,
            const.FIELD_VERSION: Increment(1),
        }

    def from_document(self, document: Mapping[str, Any]) -> Any:
        """Extract the entity from a remote document."""
        if self.payload_field is not None:
            return document.get(self.payload_field)
        if self.fields is not None:
            return {key: document.get(key) for key in self.fields}
        return {
            key: value
            for key, value in document.items()
            if key not in BOOKKEEPING_FIELDS
        }


CHARACTER = EntitySpec(
    const.ENTITY_CHARACTER, const.COLLECTION_CHARACTER, const.FIELD_CHARACTER
)
HABITS = EntitySpec(const.ENTITY_HABITS, const.COLLECTION_HABITS, const.FIELD_HABITS)
CUSTOM_HABITS = EntitySpec(
    const.ENTITY_CUSTOM_HABITS, const.COLLECTION_CUSTOM_HABITS, const.FIELD_HABITS
)
ACHIEVEMENTS = EntitySpec(
    const.ENTITY_ACHIEVEMENTS, const.COLLECTION_ACHIEVEMENTS, const.FIELD_ACHIEVEMENTS
)
BONUSES = EntitySpec(
    const.ENTITY_BONUSES,
    const.COLLECTION_BONUSES,
    fields=(const.FIELD_BONUSES, const.FIELD_DAILY_BONUS),
)
COINS = EntitySpec(const.ENTITY_COINS, const.COLLECTION_COINS)
USER_PROFILE = EntitySpec(const.ENTITY_USER, const.COLLECTION_USERS)

ENTITY_SPECS: dict[str, EntitySpec] = {
    spec.name: spec
    for spec in (CHARACTER, HABITS, CUSTOM_HABITS, ACHIEVEMENTS, BONUSES, COINS, USER_PROFILE)
}

# Keys accepted by batch_update_user_data (export envelope names)
BATCH_KEYS: dict[str, EntitySpec] = {
    const.FIELD_HABITS: HABITS,
    const.FIELD_CUSTOM_HABITS: CUSTOM_HABITS,
    const.FIELD_CHARACTER: CHARACTER,
    const.FIELD_ACHIEVEMENTS: ACHIEVEMENTS,
    const.FIELD_BONUSES: BONUSES,
    const.FIELD_COINS: COINS,
}

# Daily records are one document per user and date, mirrored locally as a list
DAILY_RECORDS_LOCAL = EntitySpec(
    const.ENTITY_DAILY_RECORDS, const.COLLECTION_DAILY_RECORDS
)


def daily_record_doc_id(user_id: str, record_date: str) -> str:
    """Return the remote document id of a daily record."""
    return f"{user_id}_{record_date}"


def validate_export_payload(payload: Any) -> None:
    """Check the structure of a backup envelope.

    Every daily record is normalized here, so an envelope that passes can be
    imported without a record failing halfway through.

    Raises:
        InvalidExportPayloadError: Missing data object, wrong types, or
            daily records that cannot be normalized.
    """
    if not isinstance(payload, Mapping):
        raise InvalidExportPayloadError("Backup payload must be an object")
    data = payload.get(const.FIELD_DATA)
    if not isinstance(data, Mapping):
        raise InvalidExportPayloadError("Backup payload has no 'data' object")
    if not isinstance(payload.get(const.FIELD_VERSION, ""), str):
        raise InvalidExportPayloadError("Backup 'version' must be a string")

    for key in (const.FIELD_HABITS, const.FIELD_CUSTOM_HABITS, const.FIELD_ACHIEVEMENTS):
        if data.get(key) is not None and not isinstance(data[key], list):
            raise InvalidExportPayloadError(f"Backup '{key}' must be a list")
    for key in (const.FIELD_CHARACTER, const.FIELD_BONUSES, const.FIELD_COINS):
        if data.get(key) is not None and not isinstance(data[key], Mapping):
            raise InvalidExportPayloadError(f"Backup '{key}' must be an object")

    records = data.get(const.FIELD_DAILY_RECORDS)
    if records is None:
        return
    if not isinstance(records, list):
        raise InvalidExportPayloadError("Backup 'dailyRecords' must be a list")
    for record in records:
        if not isinstance(record, Mapping) or not isinstance(
            record.get(const.FIELD_DATE), str
        ):
            raise InvalidExportPayloadError(
                f"Backup daily record without a date: {record!r}"
            )
        try:
            StatisticsEngine.normalize_daily_record(record)
        except (ValueError, TypeError) as err:
            raise InvalidExportPayloadError(
                f"Backup daily record for {record[const.FIELD_DATE]} is invalid: {err}"
            ) from err


# =============================================================================
# Service
# =============================================================================


class EntitySyncService:
    """Offline-resilient sync of every entity type for a user.

    Construct one per config entry and pass it to whoever needs it.
    """

    def __init__(
        self,
        remote: RemoteDocumentStore,
        local: LocalKeyValueStore,
        connectivity: ConnectivityObserver,
        *,
        queue: RetryQueue | None = None,
        state: ObservableState | None = None,
        remote_timeout: float = const.DEFAULT_REMOTE_TIMEOUT,
    ) -> None:
        """Initialize the service.

        Args:
            remote: Remote document store adapter
            local: Local key-value store adapter
            connectivity: Connectivity observer; offline->online drains the queue
            queue: Retry queue (a new one is created when omitted)
            state: Observable cell receiving sync status snapshots
            remote_timeout: Seconds allowed for each remote call
        """
        self._remote = remote
        self._local = local
        self._connectivity = connectivity
        self._queue = queue if queue is not None else RetryQueue()
        self._state = state if state is not None else ObservableState()
        self._remote_timeout = remote_timeout
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._remove_listener = connectivity.add_listener(
            self._async_connectivity_changed
        )
        self._publish_status(last_sync=None, last_error=None)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def queue(self) -> RetryQueue:
        """Return the retry queue."""
        return self._queue

    @property
    def state(self) -> ObservableState:
        """Return the sync status cell."""
        return self._state

    @property
    def is_online(self) -> bool:
        """Return the current connectivity status."""
        return self._connectivity.is_online

    # -------------------------------------------------------------------------
    # Core pattern
    # -------------------------------------------------------------------------

    async def execute_with_offline_support(
        self,
        primary: Callable[[], Awaitable[_T]],
        fallback: Callable[[], Awaitable[_T]],
        queue_op: QueuedOperation | None = None,
        *,
        label: str = "remote operation",
        on_success: Callable[[_T], Awaitable[None]] | None = None,
    ) -> _T:
        """Run primary against the remote store, degrading to fallback.

        Offline: primary is skipped, queue_op (if any) is queued, fallback runs.
        Online: primary runs under the remote timeout. A retryable failure
        queues queue_op and runs fallback; a non-retryable failure runs
        fallback only. Remote errors never reach the caller.

        on_success receives primary's result once the remote call succeeded;
        it runs outside the timeout and its errors propagate.
        """
        if not self._connectivity.is_online:
            const.LOGGER.debug("DEBUG: Offline, using local store for %s", label)
            self._enqueue(queue_op)
            return await fallback()

        try:
            result = await self._call_remote(primary)
        except NonRetryableRemoteError as err:
            const.LOGGER.error(
                "ERROR: Remote rejected %s, using local store without retry: %s",
                label,
                err,
            )
            self._publish_status(last_error=str(err))
            return await fallback()
        except RetryableRemoteError as err:
            const.LOGGER.warning(
                "WARNING: Remote %s failed, using local store: %s", label, err
            )
            self._publish_status(last_error=str(err))
            self._enqueue(queue_op)
            return await fallback()

        self._publish_status(last_sync=dt_now_iso(), last_error=None)
        if on_success is not None:
            await on_success(result)
        return result

    async def _call_remote(self, func: Callable[[], Awaitable[_T]]) -> _T:
        """Await a remote call under the configured timeout.

        Timeouts become RetryableRemoteError. Unexpected exceptions from the
        adapter are treated as retryable as well.
        """
        try:
            async with asyncio.timeout(self._remote_timeout):
                return await func()
        except RemoteStoreError:
            raise
        except TimeoutError as err:
            raise RetryableRemoteError(
                f"Remote call timed out after {self._remote_timeout}s"
            ) from err
        except asyncio.CancelledError:
            raise
        except Exception as err:  # pylint: disable=broad-exception-caught
            const.LOGGER.exception("ERROR: Unexpected remote store failure")
            raise RetryableRemoteError(str(err)) from err

    def _enqueue(self, queue_op: QueuedOperation | None) -> None:
        if queue_op is None:
            return
        self._queue.enqueue(queue_op)
        self._publish_status()

    def _queued(
        self,
        label: str,
        func: Callable[[], Awaitable[Any]],
        doc_keys: Sequence[str],
    ) -> QueuedOperation:
        """Wrap a remote write so replays take the document locks and the timeout."""

        async def _replay() -> None:
            async with self._document_locks(*doc_keys):
                await self._call_remote(func)

        return QueuedOperation(label, _replay, frozenset(doc_keys))

    @staticmethod
    def _doc_key(collection: str, doc_id: str) -> str:
        return f"{collection}/{doc_id}"

    # -------------------------------------------------------------------------
    # Local store helpers
    # -------------------------------------------------------------------------

    async def _read_local(self, key: str) -> Any:
        """Return the decoded local value, or None (corrupt JSON reads as empty)."""
        raw = await self._local.async_get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            const.LOGGER.warning(
                "WARNING: Corrupt local data under '%s', treating as empty", key
            )
            return None

    async def _write_local(self, key: str, value: Any) -> None:
        await self._local.async_set(key, json.dumps(value))
        const.LOGGER.debug("DEBUG: Stored local copy '%s'", key)

    @contextlib.asynccontextmanager
    async def _document_locks(self, *doc_keys: str):
        """Hold the write locks of several documents (sorted to avoid deadlock)."""
        async with contextlib.AsyncExitStack() as stack:
            for doc_key in sorted(set(doc_keys)):
                await stack.enter_async_context(self._locks[doc_key])
            yield

    @staticmethod
    def _spec(entity: str | EntitySpec) -> EntitySpec:
        if isinstance(entity, EntitySpec):
            return entity
        try:
            return ENTITY_SPECS[entity]
        except KeyError as err:
            raise ValueError(f"Unknown entity type: {entity}") from err

    @staticmethod
    def _require_user(user_id: str) -> None:
        if not user_id:
            raise ValueError("user_id is required")

    # -------------------------------------------------------------------------
    # Generic entity operations
    # -------------------------------------------------------------------------

    async def read(self, entity: str | EntitySpec, user_id: str) -> Any:
        """Return the entity for a user, or None when nothing is stored.

        Remote first; offline or on failure, the most recent local copy.
        """
        spec = self._spec(entity)
        self._require_user(user_id)
        key = spec.local_key(user_id)

        if self._queue.has_pending([self._doc_key(spec.collection, user_id)]):
            const.LOGGER.debug(
                "DEBUG: Writes to %s/%s are queued, reading the local copy",
                spec.name,
                user_id,
            )
            return await self._read_local(key)

        async def _primary() -> Any:
            document = await self._remote.async_get_document(spec.collection, user_id)
            if document is None:
                return None
            return spec.from_document(document)

        async def _fallback() -> Any:
            return await self._read_local(key)

        async def _refresh_local(value: Any) -> None:
            if value is not None:
                await self._write_local(key, value)

        return await self.execute_with_offline_support(
            _primary,
            _fallback,
            label=f"read {spec.name}/{user_id}",
            on_success=_refresh_local,
        )

    async def write(
        self,
        entity: str | EntitySpec,
        user_id: str,
        value: Any,
        *,
        merge_local: bool = False,
    ) -> bool:
        """Upsert the entity for a user.

        Args:
            entity: Entity name or spec
            user_id: Owner
            value: Entity value (JSON-serializable)
            merge_local: Merge a partial value into the local copy instead of
                replacing it (spread entities only)

        Returns:
            True when the remote store accepted the write, False when it was
            stored locally (and queued when the failure was retryable).
        """
        spec = self._spec(entity)
        self._require_user(user_id)
        async with self._document_locks(self._doc_key(spec.collection, user_id)):
            return await self._write_locked(
                spec, user_id, value, merge_local=merge_local
            )

    async def async_modify(
        self,
        entity: str | EntitySpec,
        user_id: str,
        modify: Callable[[Any], Any],
    ) -> Any:
        """Read an entity, transform it and write the result back.

        The document lock is held from the read to the write, so concurrent
        modifications of the same entity apply one after the other. Errors
        raised by modify propagate and nothing is written.

        Args:
            entity: Entity name or spec
            user_id: Owner
            modify: Receives the current value (None when nothing is stored)
                and returns the new value

        Returns:
            The value that was written.
        """
        spec = self._spec(entity)
        self._require_user(user_id)
        async with self._document_locks(self._doc_key(spec.collection, user_id)):
            updated = modify(await self.read(spec, user_id))
            await self._write_locked(spec, user_id, updated)
        return updated

    async def _write_locked(
        self,
        spec: EntitySpec,
        user_id: str,
        value: Any,
        *,
        merge_local: bool = False,
    ) -> bool:
        """Write an entity; the caller holds its document lock."""
        key = spec.local_key(user_id)
        doc_key = self._doc_key(spec.collection, user_id)
        previous = await self._read_local(key)
        payload = spec.to_document(user_id, value)

        local_value = value
        if merge_local:
            if isinstance(previous, dict):
                local_value = {**previous, **value}
        else:
            payload.update(self._removed_fields(spec, previous, value))

        async def _push() -> None:
            await self._remote.async_set_document(spec.collection, user_id, payload)

        return await self._push_and_store(
            _push, f"set {doc_key}", [(key, local_value)], [doc_key]
        )

    @staticmethod
    def _removed_fields(
        spec: EntitySpec, previous: Any, value: Any
    ) -> dict[str, Any]:
        """Return DELETE_FIELD for spread fields the new value no longer has.

        Known fields are the spec's declared fields plus those of the previous
        local copy.
        """
        if spec.payload_field is not None:
            return {}
        known = set(spec.fields or ())
        if isinstance(previous, Mapping):
            known.update(previous)
        removed = known - set(value) - BOOKKEEPING_FIELDS
        return {name: DELETE_FIELD for name in sorted(removed)}

    async def update(
        self, entity: str | EntitySpec, user_id: str, partial: Mapping[str, Any]
    ) -> bool:
        """Update fields of an existing spread entity.

        The remote update requires the document to exist; a missing document
        is non-retryable, so the change then lives in the local copy only.
        """
        spec = self._spec(entity)
        if spec.payload_field is not None:
            raise ValueError(f"Entity '{spec.name}' does not support partial updates")
        self._require_user(user_id)
        key = spec.local_key(user_id)
        update_payload = {
            **{k: v for k, v in partial.items() if k not in BOOKKEEPING_FIELDS},
            const.FIELD_UPDATED_AT: SERVER_TIMESTAMP,
            const.FIELD_VERSION: Increment(1),
        }
        doc_key = self._doc_key(spec.collection, user_id)

        async def _push() -> None:
            await self._remote.async_update_document(
                spec.collection, user_id, update_payload
            )

        async with self._document_locks(doc_key):
            existing = await self._read_local(key)
            merged = {**(existing if isinstance(existing, dict) else {}), **partial}
            return await self._push_and_store(
                _push, f"update {doc_key}", [(key, merged)], [doc_key]
            )

    async def _push_and_store(
        self,
        push: Callable[[], Awaitable[None]],
        label: str,
        local_writes: Sequence[tuple[str, Any]],
        doc_keys: Sequence[str],
    ) -> bool:
        """Push remotely with offline support, then keep the local copies current.

        While a queued write to any of the documents is pending, the push is
        queued behind it instead of being sent.
        """

        async def _primary() -> bool:
            await push()
            return True

        async def _store_local() -> None:
            for key, value in local_writes:
                await self._write_local(key, value)

        async def _fallback() -> bool:
            await _store_local()
            return False

        async def _mirror(_synced: bool) -> None:
            await _store_local()

        queue_op = self._queued(label, push, doc_keys)
        if self._queue.has_pending(doc_keys):
            const.LOGGER.debug(
                "DEBUG: Earlier writes are queued, queueing '%s' behind them", label
            )
            self._enqueue(queue_op)
            return await _fallback()

        return await self.execute_with_offline_support(
            _primary,
            _fallback,
            queue_op,
            label=label,
            on_success=_mirror,
        )

    # -------------------------------------------------------------------------
    # Per-entity operations
    # -------------------------------------------------------------------------

    async def get_character_state(self, user_id: str) -> dict[str, Any] | None:
        """Return the character state, or None."""
        return await self.read(CHARACTER, user_id)

    async def save_character_state(
        self, user_id: str, character: Mapping[str, Any]
    ) -> bool:
        """Save the character state."""
        return await self.write(CHARACTER, user_id, dict(character))

    async def get_habits(self, user_id: str) -> list[dict[str, Any]]:
        """Return the habit list (empty when none stored)."""
        return await self.read(HABITS, user_id) or []

    async def save_habits(self, user_id: str, habits: Sequence[Mapping[str, Any]]) -> bool:
        """Save the habit list."""
        return await self.write(HABITS, user_id, [dict(h) for h in habits])

    async def get_custom_habits(self, user_id: str) -> list[dict[str, Any]]:
        """Return the custom habit list (empty when none stored)."""
        return await self.read(CUSTOM_HABITS, user_id) or []

    async def save_custom_habits(
        self, user_id: str, habits: Sequence[Mapping[str, Any]]
    ) -> bool:
        """Save the custom habit list."""
        return await self.write(CUSTOM_HABITS, user_id, [dict(h) for h in habits])

    async def get_achievements(self, user_id: str) -> list[dict[str, Any]]:
        """Return the achievement list (empty when none stored)."""
        return await self.read(ACHIEVEMENTS, user_id) or []

    async def save_achievements(
        self, user_id: str, achievements: Sequence[Mapping[str, Any]]
    ) -> bool:
        """Save the achievement list."""
        return await self.write(ACHIEVEMENTS, user_id, [dict(a) for a in achievements])

    async def get_bonuses(self, user_id: str) -> dict[str, Any] | None:
        """Return {bonuses, dailyBonus}, or None."""
        return await self.read(BONUSES, user_id)

    async def save_bonuses(self, user_id: str, bonuses: Mapping[str, Any]) -> bool:
        """Save the bonus set."""
        return await self.write(BONUSES, user_id, dict(bonuses))

    async def get_coins(self, user_id: str) -> dict[str, Any] | None:
        """Return the coin ledger, or None."""
        return await self.read(COINS, user_id)

    async def save_coins(self, user_id: str, ledger: Mapping[str, Any]) -> bool:
        """Save the coin ledger."""
        return await self.write(COINS, user_id, dict(ledger))

    async def save_purchases(
        self, user_id: str, purchases: Sequence[Mapping[str, Any]]
    ) -> bool:
        """Save only the purchase list of the coin ledger."""
        return await self.write(
            COINS,
            user_id,
            {const.FIELD_PURCHASES: [dict(p) for p in purchases]},
            merge_local=True,
        )

    async def get_user_profile(self, user_id: str) -> dict[str, Any] | None:
        """Return the user profile, or None."""
        return await self.read(USER_PROFILE, user_id)

    async def save_user_profile(self, user_id: str, profile: Mapping[str, Any]) -> bool:
        """Create or overwrite the user profile."""
        return await self.write(
            USER_PROFILE, user_id, {const.FIELD_ID: user_id, **profile}
        )

    async def update_user_profile(
        self, user_id: str, updates: Mapping[str, Any]
    ) -> bool:
        """Update fields of an existing user profile."""
        return await self.update(USER_PROFILE, user_id, updates)

    # -------------------------------------------------------------------------
    # Daily records
    # -------------------------------------------------------------------------

    async def save_daily_record(
        self, user_id: str, record_date: str, record: Mapping[str, Any]
    ) -> bool:
        """Save one day's record; the local history is merged by date.

        perfectDay is always derived from the completion count.
        """
        self._require_user(user_id)
        normalized = StatisticsEngine.normalize_daily_record(
            {**record, const.FIELD_DATE: record_date}
        )
        doc_id = daily_record_doc_id(user_id, record_date)
        payload = {
            const.FIELD_USER_ID: user_id,
            **normalized,
            const.FIELD_UPDATED_AT: SERVER_TIMESTAMP,
            const.FIELD_VERSION: Increment(1),
        }
        key = DAILY_RECORDS_LOCAL.local_key(user_id)
        doc_key = self._doc_key(const.COLLECTION_DAILY_RECORDS, doc_id)

        async def _push() -> None:
            await self._remote.async_set_document(
                const.COLLECTION_DAILY_RECORDS, doc_id, payload
            )

        async with self._document_locks(doc_key, key):
            history = await self._read_local_history(key)
            merged = StatisticsEngine.merge_daily_record(history, normalized)
            return await self._push_and_store(
                _push,
                f"set {doc_key}",
                [(key, merged[: const.DAILY_RECORD_LIMIT])],
                [doc_key],
            )

    async def get_daily_records(
        self, user_id: str, limit: int | None = None
    ) -> list[DailyRecord]:
        """Return daily records, newest first, at most limit of them."""
        self._require_user(user_id)
        key = DAILY_RECORDS_LOCAL.local_key(user_id)

        async def _primary() -> list[DailyRecord]:
            documents = await self._remote.async_query_documents(
                const.COLLECTION_DAILY_RECORDS,
                [QueryFilter(const.FIELD_USER_ID, "==", user_id)],
                order_by=const.FIELD_DATE,
                descending=True,
                limit=limit,
            )
            records = [
                StatisticsEngine.normalize_daily_record(doc)
                for doc in documents
                if doc.get(const.FIELD_DATE)
            ]
            return await self._with_pending_records(user_id, key, records, limit)

        async def _fallback() -> list[DailyRecord]:
            history = StatisticsEngine.sort_newest_first(
                await self._read_local_history(key)
            )
            return history if limit is None else history[:limit]

        async def _refresh_local(records: list[DailyRecord]) -> None:
            async with self._document_locks(key):
                history = await self._read_local_history(key)
                for record in records:
                    history = StatisticsEngine.merge_daily_record(history, record)
                await self._write_local(key, history[: const.DAILY_RECORD_LIMIT])

        return await self.execute_with_offline_support(
            _primary,
            _fallback,
            label=f"query daily records/{user_id}",
            on_success=_refresh_local,
        )

    async def _with_pending_records(
        self,
        user_id: str,
        key: str,
        records: list[DailyRecord],
        limit: int | None,
    ) -> list[DailyRecord]:
        """Replace remote records by local ones whose writes are still queued."""
        if not len(self._queue):
            return records
        pending = [
            record
            for record in await self._read_local_history(key)
            if self._queue.has_pending(
                [
                    self._doc_key(
                        const.COLLECTION_DAILY_RECORDS,
                        daily_record_doc_id(user_id, record[const.FIELD_DATE]),
                    )
                ]
            )
        ]
        for record in pending:
            records = StatisticsEngine.merge_daily_record(records, record)
        return records if limit is None else records[:limit]

    async def _read_local_history(self, key: str) -> list[DailyRecord]:
        stored = await self._read_local(key)
        if not isinstance(stored, list):
            return []
        history: list[DailyRecord] = []
        for record in stored:
            try:
                history.append(StatisticsEngine.normalize_daily_record(record))
            except (ValueError, TypeError, AttributeError):
                const.LOGGER.warning("WARNING: Skipping corrupt daily record %r", record)
        return history

    # -------------------------------------------------------------------------
    # Batch
    # -------------------------------------------------------------------------

    async def batch_update_user_data(
        self, user_id: str, updates: Mapping[str, Any]
    ) -> bool:
        """Write several entities in one atomic remote commit.

        Online, every entity document is committed together. Offline or when
        the commit fails, each entity is stored locally on its own (no atomicity
        across entities) and the whole batch is queued as one retry.

        Args:
            updates: Entity values keyed by export names (habits, customHabits,
                character, achievements, bonuses, coins); None values are skipped.

        Returns:
            True when the remote commit succeeded.
        """
        self._require_user(user_id)
        unknown = set(updates) - set(BATCH_KEYS)
        if unknown:
            raise ValueError(f"Unknown batch entities: {sorted(unknown)}")

        specs = [
            (BATCH_KEYS[name], value)
            for name, value in updates.items()
            if value is not None
        ]
        if not specs:
            return True

        doc_keys = [self._doc_key(spec.collection, user_id) for spec, _ in specs]
        local_writes = [(spec.local_key(user_id), value) for spec, value in specs]
        label = "batch " + ",".join(spec.name for spec, _ in specs) + f"/{user_id}"

        async with self._document_locks(*doc_keys):
            operations = []
            for spec, value in specs:
                payload = spec.to_document(user_id, value)
                payload.update(
                    self._removed_fields(
                        spec, await self._read_local(spec.local_key(user_id)), value
                    )
                )
                operations.append(
                    WriteOperation(WRITE_SET, spec.collection, user_id, payload)
                )

            async def _push() -> None:
                await self._remote.async_batch_commit(operations)

            return await self._push_and_store(_push, label, local_writes, doc_keys)

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def subscribe_to_user_data(
        self, user_id: str, listener: UserDataListener
    ) -> Callable[[], None]:
        """Follow remote changes to custom habits and character state.

        The listener receives {"type": "customHabits"|"character", "data": value}
        and the local copy is refreshed first. Offline, nothing is subscribed
        and a no-op unsubscribe is returned.
        """
        self._require_user(user_id)
        if not self._connectivity.is_online:
            return lambda: None

        unsubscribes: list[Callable[[], None]] = []

        def _make_handler(spec: EntitySpec, event_type: str):
            async def _handle(document: dict[str, Any] | None) -> None:
                if document is None:
                    return
                if self._queue.has_pending([self._doc_key(spec.collection, user_id)]):
                    const.LOGGER.debug(
                        "DEBUG: Ignoring remote %s change, local writes are queued",
                        event_type,
                    )
                    return
                value = spec.from_document(document)
                await self._write_local(spec.local_key(user_id), value)
                result = listener({"type": event_type, "data": value})
                if inspect.isawaitable(result):
                    await result

            return _handle

        try:
            for spec, event_type in (
                (CUSTOM_HABITS, const.FIELD_CUSTOM_HABITS),
                (CHARACTER, const.FIELD_CHARACTER),
            ):
                unsubscribes.append(
                    await self._remote.async_subscribe(
                        spec.collection, user_id, _make_handler(spec, event_type)
                    )
                )
        except RemoteStoreError as err:
            const.LOGGER.warning(
                "WARNING: Could not subscribe to remote changes for %s: %s",
                user_id,
                err,
            )
            for unsubscribe in unsubscribes:
                unsubscribe()
            return lambda: None

        def _unsubscribe_all() -> None:
            for unsubscribe in unsubscribes:
                unsubscribe()

        return _unsubscribe_all

    # -------------------------------------------------------------------------
    # Export / import
    # -------------------------------------------------------------------------

    async def export_user_data(self, user_id: str) -> ExportPayload:
        """Collect every entity into a backup envelope."""
        self._require_user(user_id)
        (
            habits,
            custom_habits,
            character,
            achievements,
            bonuses,
            coins,
            daily_records,
        ) = await asyncio.gather(
            self.get_habits(user_id),
            self.get_custom_habits(user_id),
            self.get_character_state(user_id),
            self.get_achievements(user_id),
            self.get_bonuses(user_id),
            self.get_coins(user_id),
            self.get_daily_records(user_id, const.DAILY_RECORD_LIMIT),
        )
        return {
            const.FIELD_USER_ID: user_id,
            const.FIELD_EXPORT_DATE: dt_now_iso(),
            const.FIELD_VERSION: const.EXPORT_FORMAT_VERSION,
            const.FIELD_DATA: {
                const.FIELD_HABITS: habits,
                const.FIELD_CUSTOM_HABITS: custom_habits,
                const.FIELD_CHARACTER: character,
                const.FIELD_ACHIEVEMENTS: achievements,
                const.FIELD_BONUSES: bonuses,
                const.FIELD_DAILY_RECORDS: daily_records,
                const.FIELD_COINS: coins,
            },
        }

    async def import_user_data(self, user_id: str, payload: Mapping[str, Any]) -> int:
        """Restore a backup envelope into user_id.

        All entities are written in one batch, then each daily record is saved.

        Returns:
            Number of daily records imported.

        Raises:
            InvalidExportPayloadError: The envelope is malformed (nothing is written).
        """
        self._require_user(user_id)
        validate_export_payload(payload)
        data = payload[const.FIELD_DATA]

        if payload.get(const.FIELD_USER_ID) not in (None, user_id):
            const.LOGGER.info(
                "INFO: Importing backup of user %s into user %s",
                payload.get(const.FIELD_USER_ID),
                user_id,
            )

        await self.batch_update_user_data(
            user_id, {key: data.get(key) for key in BATCH_KEYS}
        )

        records = data.get(const.FIELD_DAILY_RECORDS) or []
        for record in records:
            await self.save_daily_record(user_id, record[const.FIELD_DATE], record)

        const.LOGGER.info(
            "INFO: Imported backup from %s for %s (%d daily records)",
            payload.get(const.FIELD_EXPORT_DATE),
            user_id,
            len(records),
        )
        return len(records)

    # -------------------------------------------------------------------------
    # Queue / lifecycle
    # -------------------------------------------------------------------------

    async def async_drain_queue(self) -> int:
        """Replay queued writes while online; returns how many succeeded."""
        drained = await self._queue.drain(lambda: self._connectivity.is_online)
        if drained:
            self._publish_status(last_sync=dt_now_iso())
        else:
            self._publish_status()
        return drained

    async def async_retry_pending(self) -> int:
        """Replay queued writes when any are waiting and no drain is running.

        Called while the remote stays reachable, so writes queued after a
        retryable failure do not wait for the next reconnect.
        """
        if not len(self._queue) or self._queue.is_draining:
            return 0
        const.LOGGER.debug(
            "DEBUG: Remote reachable, retrying %d queued operation(s)", len(self._queue)
        )
        return await self.async_drain_queue()

    async def _async_connectivity_changed(self, is_connected: bool) -> None:
        self._publish_status()
        if is_connected and len(self._queue):
            const.LOGGER.info(
                "INFO: Back online, replaying %d queued operation(s)", len(self._queue)
            )
            await self.async_drain_queue()

    async def async_shutdown(self) -> None:
        """Detach from the connectivity observer and drop the in-memory queue."""
        self._remove_listener()
        self._queue.clear()
        self._publish_status()

    def _publish_status(self, **changes: Any) -> None:
        self._state.update(
            **{
                const.STATUS_ONLINE: self._connectivity.is_online,
                const.STATUS_PENDING_OPERATIONS: len(self._queue),
            },
            **changes,
        )
