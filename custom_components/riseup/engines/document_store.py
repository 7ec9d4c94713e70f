"""Store contracts, write/query value objects, and the sync error taxonomy.

The sync engine talks to its collaborators only through the Protocols defined
here, so the Home Assistant adapters (store.py, remote_store.py) and the
in-memory fakes used by the tests are interchangeable.

ARCHITECTURE: Pure Python, NO Home Assistant dependencies.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Final, Literal, Protocol

# =============================================================================
# Errors
# =============================================================================


class SyncError(Exception):
    """Base class for sync layer errors."""


class RemoteStoreError(SyncError):
    """A remote document store operation failed."""


class RetryableRemoteError(RemoteStoreError):
    """Transient remote failure (network, timeout, throttling, server error).

    The operation may succeed if replayed later.
    """


class NonRetryableRemoteError(RemoteStoreError):
    """Remote failure that replaying cannot fix (auth rejected, bad request).

    Attributes:
        status: HTTP status code when the failure came from an HTTP response
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        """Initialize NonRetryableRemoteError."""
        self.status = status
        super().__init__(message)


class LocalStoreNotReadyError(SyncError):
    """The local store was used before async_initialize() completed."""


# =============================================================================
# Payload sentinels
# =============================================================================


@dataclass(frozen=True)
class Increment:
    """Atomic server-side increment of a numeric field."""

    amount: int = 1


class _ServerTimestamp:
    """Placeholder resolved to the server's commit time."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    def __copy__(self) -> _ServerTimestamp:
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> _ServerTimestamp:
        return self


SERVER_TIMESTAMP: Final = _ServerTimestamp()


class _DeleteField:
    """Placeholder removing a field from the stored document."""

    _instance: _DeleteField | None = None

    def __new__(cls) -> _DeleteField:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE_FIELD"

    def __copy__(self) -> _DeleteField:
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> _DeleteField:
        return self


DELETE_FIELD: Final = _DeleteField()


def is_sentinel(value: Any) -> bool:
    """Return True when the value is resolved by the remote store."""
    return (
        isinstance(value, Increment)
        or value is SERVER_TIMESTAMP
        or value is DELETE_FIELD
    )


# =============================================================================
# Value objects
# =============================================================================

FilterOp = Literal["==", "!=", "<", "<=", ">", ">=", "array-contains", "in"]
WriteKind = Literal["set", "update"]

WRITE_SET: Final = "set"
WRITE_UPDATE: Final = "update"


@dataclass(frozen=True)
class QueryFilter:
    """Field predicate for queryDocuments."""

    field: str
    op: FilterOp
    value: Any


@dataclass(frozen=True)
class WriteOperation:
    """One write inside a batch commit."""

    kind: WriteKind
    collection: str
    doc_id: str
    payload: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Contracts
# =============================================================================

DocumentListener = Callable[[dict[str, Any] | None], Awaitable[None] | None]


class RemoteDocumentStore(Protocol):
    """Networked document database addressed by collection + document id.

    Implementations raise RetryableRemoteError or NonRetryableRemoteError.
    """

    async def async_get_document(
        self, collection: str, doc_id: str
    ) -> dict[str, Any] | None:
        """Return the document, or None when it does not exist."""

    async def async_set_document(
        self, collection: str, doc_id: str, payload: dict[str, Any]
    ) -> None:
        """Create or overwrite a document (upsert).

        Fields of the payload are written; fields whose value is DELETE_FIELD
        are removed. Other stored fields are left as they are.
        """

    async def async_update_document(
        self, collection: str, doc_id: str, partial: dict[str, Any]
    ) -> None:
        """Update fields of an existing document."""

    async def async_query_documents(
        self,
        collection: str,
        filters: Sequence[QueryFilter],
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return documents matching every filter."""

    async def async_batch_commit(self, operations: Sequence[WriteOperation]) -> None:
        """Apply all operations atomically."""

    async def async_subscribe(
        self, collection: str, doc_id: str, on_change: DocumentListener
    ) -> Callable[[], None]:
        """Call on_change whenever the document changes; return an unsubscribe."""


class LocalKeyValueStore(Protocol):
    """Durable string key-value store used as offline cache and fallback."""

    async def async_get(self, key: str) -> str | None:
        """Return the stored string, or None."""

    async def async_set(self, key: str, value: str) -> None:
        """Store a string value."""

    async def async_remove(self, key: str) -> None:
        """Remove a key if present."""

    async def async_multi_remove(self, keys: Sequence[str]) -> None:
        """Remove several keys."""

    async def async_get_all_keys(self) -> list[str]:
        """Return every stored key."""
