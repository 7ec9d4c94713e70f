"""Retry Queue - in-memory FIFO of deferred remote writes.

Writes that could not reach the remote document store are queued here as
closures and replayed in order once connectivity returns. The queue is
best-effort: it is not persisted, has no size bound, and never deduplicates.
Each operation names the documents it writes, so callers can hold back newer
writes to a document until its queued writes have been replayed.

ARCHITECTURE: Pure Python, NO Home Assistant dependencies.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from .. import const
from .document_store import NonRetryableRemoteError


@dataclass
class QueuedOperation:
    """A deferred remote write.

    Attributes:
        label: Human readable description used in logs and diagnostics
        func: Zero-argument coroutine function performing the remote write
        doc_keys: "collection/doc_id" of every document the write touches
    """

    label: str
    func: Callable[[], Awaitable[Any]]
    doc_keys: frozenset[str] = field(default_factory=frozenset)


class RetryQueue:
    """Ordered list of deferred write operations."""

    def __init__(self) -> None:
        """Initialize an empty queue."""
        self._queue: deque[QueuedOperation] = deque()
        self._drain_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def is_draining(self) -> bool:
        """Return True while a drain is in progress."""
        return self._drain_lock.locked()

    def pending_labels(self) -> list[str]:
        """Return labels of queued operations, head first."""
        return [op.label for op in self._queue]

    def has_pending(self, doc_keys: Iterable[str]) -> bool:
        """Return True when a queued operation writes any of the documents.

        The operation being replayed stays queued until it succeeds, so it
        counts as pending too.
        """
        wanted = set(doc_keys)
        return any(op.doc_keys & wanted for op in self._queue)

    def enqueue(self, op: QueuedOperation) -> None:
        """Append an operation to the tail."""
        self._queue.append(op)
        const.LOGGER.debug(
            "DEBUG: Queued '%s' for retry (%d pending)", op.label, len(self._queue)
        )

    def clear(self) -> None:
        """Drop every queued operation."""
        if self._queue:
            const.LOGGER.info(
                "INFO: Discarding %d queued operation(s)", len(self._queue)
            )
        self._queue.clear()

    def _remove_head(self, op: QueuedOperation) -> None:
        if self._queue and self._queue[0] is op:
            self._queue.popleft()

    async def drain(self, is_online: Callable[[], bool]) -> int:
        """Replay queued operations in FIFO order, one at a time.

        Stops when the queue is empty, connectivity is lost, or the head fails.
        The head is only removed once it succeeded, so a failed or cancelled
        head stays in place and later operations are not attempted before it.
        An operation rejected as non-retryable is dropped, since replaying it
        cannot succeed.

        Args:
            is_online: Callable returning the current connectivity status.

        Returns:
            Number of operations that completed successfully.
        """
        async with self._drain_lock:
            completed = 0
            while self._queue and is_online():
                op = self._queue[0]
                try:
                    await op.func()
                except NonRetryableRemoteError as err:
                    self._remove_head(op)
                    const.LOGGER.error(
                        "ERROR: Dropping queued '%s', remote rejected it: %s",
                        op.label,
                        err,
                    )
                    continue
                except Exception as err:  # pylint: disable=broad-exception-caught
                    const.LOGGER.warning(
                        "WARNING: Retry of '%s' failed, %d operation(s) remain queued: %s",
                        op.label,
                        len(self._queue),
                        err,
                    )
                    break
                self._remove_head(op)
                completed += 1

            if completed:
                const.LOGGER.info(
                    "INFO: Replayed %d queued operation(s), %d pending",
                    completed,
                    len(self._queue),
                )
            return completed
