"""Remote document store backed by the Cloud Firestore REST API.

Documents are addressed by collection + document id under
projects/<project>/databases/(default)/documents. Writes go through the
:commit endpoint so sentinel fields (Increment, SERVER_TIMESTAMP) become
server-side field transforms, and queries go through :runQuery.

HTTP failures are classified for the sync engine: transport errors, timeouts,
408/429 and 5xx are retryable; other 4xx and malformed responses are not.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import timedelta
import inspect
import re
from typing import TYPE_CHECKING, Any

import aiohttp
from homeassistant.helpers.aiohttp_client import async_get_clientsession
from homeassistant.helpers.event import async_track_time_interval

from . import const
from .engines.document_store import (
    DELETE_FIELD,
    SERVER_TIMESTAMP,
    WRITE_UPDATE,
    DocumentListener,
    Increment,
    NonRetryableRemoteError,
    QueryFilter,
    RemoteStoreError,
    RetryableRemoteError,
    WriteOperation,
)
from .utils.firestore_codec import decode_document, encode_fields, encode_value

if TYPE_CHECKING:
    from datetime import datetime

    from homeassistant.core import HomeAssistant

_SIMPLE_FIELD_PATH = re.compile(r"^[A-Za-z_][A-Za-z_0-9]*$")

_QUERY_OPERATORS = {
    "==": "EQUAL",
    "!=": "NOT_EQUAL",
    "<": "LESS_THAN",
    "<=": "LESS_THAN_OR_EQUAL",
    ">": "GREATER_THAN",
    ">=": "GREATER_THAN_OR_EQUAL",
    "array-contains": "ARRAY_CONTAINS",
    "in": "IN",
}


def _field_path(key: str) -> str:
    """Quote a field name for use in a Firestore field path."""
    if _SIMPLE_FIELD_PATH.match(key):
        return key
    escaped = key.replace("\\", "\\\\").replace("`", "\\`")
    return f"`{escaped}`"


def classify_http_error(status: int, detail: str = "") -> RemoteStoreError:
    """Map an HTTP error status to a retryable or non-retryable error."""
    message = f"Firestore returned HTTP {status}"
    if detail:
        message = f"{message}: {detail[:200]}"
    if status in const.RETRYABLE_HTTP_STATUSES or status >= 500:
        return RetryableRemoteError(message)
    return NonRetryableRemoteError(message, status=status)


class FirestoreDocumentStore:
    """Remote document store client for one Firestore project."""

    def __init__(
        self,
        hass: HomeAssistant,
        project_id: str,
        api_key: str,
        *,
        subscribe_interval: int = const.DEFAULT_SUBSCRIBE_INTERVAL,
    ) -> None:
        """Initialize the client.

        Args:
            hass: Home Assistant core object (provides the shared HTTP session)
            project_id: Firebase project id
            api_key: Web API key sent with every request
            subscribe_interval: Seconds between polls of subscribed documents
        """
        self.hass = hass
        self._project_id = project_id
        self._api_key = api_key
        self._subscribe_interval = subscribe_interval
        self._session = async_get_clientsession(hass)

    # -------------------------------------------------------------------------
    # Addressing
    # -------------------------------------------------------------------------

    @property
    def database_path(self) -> str:
        """Return the resource path of the default database."""
        return f"projects/{self._project_id}/databases/{const.FIRESTORE_DATABASE}"

    @property
    def documents_url(self) -> str:
        """Return the base URL of the documents resource."""
        return f"{const.FIRESTORE_BASE_URL}/{self.database_path}/documents"

    def document_name(self, collection: str, doc_id: str) -> str:
        """Return the full resource name of a document."""
        return f"{self.database_path}/documents/{collection}/{doc_id}"

    def document_url(self, collection: str, doc_id: str) -> str:
        """Return the URL of a document."""
        return f"{self.documents_url}/{collection}/{doc_id}"

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        missing_ok: bool = False,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Returns None for a 404 when missing_ok is set.
        """
        query = {"key": self._api_key, **(params or {})}
        try:
            async with self._session.request(
                method, url, params=query, json=json_body
            ) as response:
                if missing_ok and response.status == 404:
                    return None
                if response.status >= 400:
                    raise classify_http_error(response.status, await response.text())
                try:
                    return await response.json()
                except (aiohttp.ContentTypeError, ValueError) as err:
                    raise NonRetryableRemoteError(
                        f"Malformed Firestore response from {method} {url}"
                    ) from err
        except RemoteStoreError:
            raise
        except TimeoutError as err:
            raise RetryableRemoteError(f"Firestore request timed out: {url}") from err
        except aiohttp.ClientError as err:
            raise RetryableRemoteError(f"Firestore request failed: {err}") from err

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    async def async_get_document(
        self, collection: str, doc_id: str
    ) -> dict[str, Any] | None:
        """Return the decoded document, or None when it does not exist."""
        raw = await self._request(
            "GET", self.document_url(collection, doc_id), missing_ok=True
        )
        if raw is None:
            return None
        return self._decode(raw)

    async def async_set_document(
        self, collection: str, doc_id: str, payload: dict[str, Any]
    ) -> None:
        """Upsert the payload's fields; DELETE_FIELD values remove the field."""
        await self._commit([self._build_write(collection, doc_id, payload)])

    async def async_update_document(
        self, collection: str, doc_id: str, partial: dict[str, Any]
    ) -> None:
        """Update fields of an existing document (404 when it is missing)."""
        await self._commit(
            [self._build_write(collection, doc_id, partial, must_exist=True)]
        )

    async def async_batch_commit(self, operations: Sequence[WriteOperation]) -> None:
        """Apply every operation in one atomic commit."""
        if not operations:
            return
        await self._commit(
            [
                self._build_write(
                    op.collection,
                    op.doc_id,
                    op.payload,
                    must_exist=op.kind == WRITE_UPDATE,
                )
                for op in operations
            ]
        )

    async def async_query_documents(
        self,
        collection: str,
        filters: Sequence[QueryFilter],
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Run a structured query; each result carries its document id as "id"."""
        structured: dict[str, Any] = {"from": [{"collectionId": collection}]}

        field_filters = [self._build_filter(flt) for flt in filters]
        if len(field_filters) == 1:
            structured["where"] = field_filters[0]
        elif field_filters:
            structured["where"] = {
                "compositeFilter": {"op": "AND", "filters": field_filters}
            }
        if order_by:
            structured["orderBy"] = [
                {
                    "field": {"fieldPath": _field_path(order_by)},
                    "direction": "DESCENDING" if descending else "ASCENDING",
                }
            ]
        if limit:
            structured["limit"] = int(limit)

        results = await self._request(
            "POST",
            f"{self.documents_url}:runQuery",
            json_body={"structuredQuery": structured},
        )
        if not isinstance(results, list):
            raise NonRetryableRemoteError("Malformed runQuery response")
        return [
            self._decode(item["document"], include_id=True)
            for item in results
            if isinstance(item, dict) and "document" in item
        ]

    async def async_subscribe(
        self, collection: str, doc_id: str, on_change: DocumentListener
    ) -> Callable[[], None]:
        """Poll a document and report changes of its update time.

        The current document is delivered immediately; failures of later polls
        are logged and retried on the next interval.
        """
        last_update: dict[str, str | None] = {"time": None}

        async def _check() -> None:
            raw = await self._request(
                "GET", self.document_url(collection, doc_id), missing_ok=True
            )
            update_time = raw.get("updateTime") if raw else None
            if raw is None or update_time == last_update["time"]:
                return
            last_update["time"] = update_time
            result = on_change(self._decode(raw))
            if inspect.isawaitable(result):
                await result

        async def _poll(_now: datetime) -> None:
            try:
                await _check()
            except RemoteStoreError as err:
                const.LOGGER.debug(
                    "DEBUG: Poll of %s/%s failed: %s", collection, doc_id, err
                )

        await _check()
        return async_track_time_interval(
            self.hass,
            _poll,
            timedelta(seconds=self._subscribe_interval),
            cancel_on_shutdown=True,
        )

    async def async_ping(self, timeout: float = const.DEFAULT_REMOTE_TIMEOUT) -> bool:
        """Return True when the Firestore endpoint answers at all."""
        try:
            async with asyncio.timeout(timeout):
                async with self._session.get(
                    self.documents_url, params={"key": self._api_key, "pageSize": 1}
                ):
                    return True
        except (TimeoutError, aiohttp.ClientError) as err:
            const.LOGGER.debug("DEBUG: Firestore unreachable: %s", err)
            return False

    async def async_validate_credentials(self) -> None:
        """List one document to confirm the project and API key are accepted.

        Raises:
            RetryableRemoteError: Firestore could not be reached.
            NonRetryableRemoteError: The project or key was rejected.
        """
        await self._request(
            "GET", f"{self.documents_url}/{const.COLLECTION_USERS}", params={"pageSize": 1}
        )

    # -------------------------------------------------------------------------
    # Payload building
    # -------------------------------------------------------------------------

    def _build_write(
        self,
        collection: str,
        doc_id: str,
        payload: dict[str, Any],
        *,
        must_exist: bool = False,
    ) -> dict[str, Any]:
        """Build a commit write: plain fields under an update mask, sentinels as transforms.

        Deleted fields are masked but not sent, which removes them.
        """
        plain: dict[str, Any] = {}
        deleted: list[str] = []
        transforms: list[dict[str, Any]] = []
        for key, value in payload.items():
            if isinstance(value, Increment):
                transforms.append(
                    {
                        "fieldPath": _field_path(key),
                        "increment": encode_value(value.amount),
                    }
                )
            elif value is SERVER_TIMESTAMP:
                transforms.append(
                    {"fieldPath": _field_path(key), "setToServerValue": "REQUEST_TIME"}
                )
            elif value is DELETE_FIELD:
                deleted.append(key)
            else:
                plain[key] = value

        write: dict[str, Any] = {
            "update": {
                "name": self.document_name(collection, doc_id),
                "fields": encode_fields(plain),
            },
            "updateMask": {
                "fieldPaths": [_field_path(key) for key in [*plain, *deleted]]
            },
        }
        if transforms:
            write["updateTransforms"] = transforms
        if must_exist:
            write["currentDocument"] = {"exists": True}
        return write

    async def _commit(self, writes: list[dict[str, Any]]) -> None:
        await self._request(
            "POST", f"{self.documents_url}:commit", json_body={"writes": writes}
        )

    @staticmethod
    def _build_filter(flt: QueryFilter) -> dict[str, Any]:
        try:
            operator = _QUERY_OPERATORS[flt.op]
        except KeyError as err:
            raise ValueError(f"Unsupported query operator: {flt.op}") from err
        return {
            "fieldFilter": {
                "field": {"fieldPath": _field_path(flt.field)},
                "op": operator,
                "value": encode_value(flt.value),
            }
        }

    @staticmethod
    def _decode(raw: Any, include_id: bool = False) -> dict[str, Any]:
        if not isinstance(raw, dict):
            raise NonRetryableRemoteError("Malformed Firestore document")
        try:
            return decode_document(raw, include_id=include_id)
        except (ValueError, TypeError, AttributeError) as err:
            raise NonRetryableRemoteError(f"Malformed Firestore document: {err}") from err
