"""Tests for the Entity Sync Service - remote first, local fallback, retry queue.

Runs against in-memory fakes of the remote and local stores, so no Home
Assistant instance is needed.
"""

from __future__ import annotations

import asyncio
import json
import logging

import pytest

from custom_components.riseup import const
from custom_components.riseup.engines.connectivity_observer import ConnectivityObserver
from custom_components.riseup.engines.document_store import (
    DELETE_FIELD,
    NonRetryableRemoteError,
    RetryableRemoteError,
)
from custom_components.riseup.engines.economy_engine import (
    EconomyEngine,
    InsufficientCoinsError,
)
from custom_components.riseup.engines.sync_engine import (
    BOOKKEEPING_FIELDS,
    CHARACTER,
    COINS,
    DAILY_RECORDS_LOCAL,
    EntitySyncService,
    InvalidExportPayloadError,
)
from tests.helpers import (
    FakeLocalStore,
    FakeRemoteStore,
    build_export_payload,
    load_scenario,
    seed_remote,
)

USER = "u1"

CHARACTER_L3 = {
    "level": 3,
    "health": 80,
    "maxHealth": 140,
    "experience": 40,
    "maxExperience": 200,
    "state": "normal",
}


def _local_value(local: FakeLocalStore, key: str):
    raw = local.data.get(key)
    return json.loads(raw) if raw is not None else None


def _logical(document: dict) -> dict:
    return {k: v for k, v in document.items() if k not in BOOKKEEPING_FIELDS}


# =============================================================================
# READS (fallback correctness)
# =============================================================================


class TestReads:
    """Remote-first reads with local fallback."""

    async def test_remote_failure_returns_local_copy(
        self, sync: EntitySyncService, remote: FakeRemoteStore, local: FakeLocalStore
    ) -> None:
        """A throwing remote store falls back to the local copy without raising."""
        local.data[CHARACTER.local_key(USER)] = json.dumps(CHARACTER_L3)
        remote.fail_with = RuntimeError("network down")

        assert await sync.get_character_state(USER) == CHARACTER_L3
        assert len(sync.queue) == 0

    async def test_offline_read_skips_remote(
        self,
        sync: EntitySyncService,
        remote: FakeRemoteStore,
        local: FakeLocalStore,
        connectivity: ConnectivityObserver,
    ) -> None:
        """Offline reads never touch the remote store."""
        local.data[CHARACTER.local_key(USER)] = json.dumps(CHARACTER_L3)
        await connectivity.async_update(False)

        assert await sync.get_character_state(USER) == CHARACTER_L3
        assert remote.calls == []

    async def test_offline_read_of_unknown_key_is_empty(
        self, sync: EntitySyncService, connectivity: ConnectivityObserver
    ) -> None:
        """Nothing stored reads as None, or an empty list for list entities."""
        await connectivity.async_update(False)

        assert await sync.get_character_state(USER) is None
        assert await sync.get_coins(USER) is None
        assert await sync.get_habits(USER) == []
        assert await sync.get_custom_habits(USER) == []
        assert await sync.get_achievements(USER) == []
        assert await sync.get_daily_records(USER) == []

    async def test_offline_read_returns_latest_local_write(
        self, sync: EntitySyncService, connectivity: ConnectivityObserver
    ) -> None:
        """The fallback returns exactly the most recent locally stored value."""
        await connectivity.async_update(False)
        await sync.save_coins(USER, {"coins": 10, "totalEarned": 10, "purchases": []})
        await sync.save_coins(USER, {"coins": 25, "totalEarned": 25, "purchases": []})

        assert (await sync.get_coins(USER))["coins"] == 25

    async def test_online_read_refreshes_local_copy(
        self, sync: EntitySyncService, remote: FakeRemoteStore, local: FakeLocalStore
    ) -> None:
        """A successful remote read is mirrored into the local store."""
        remote.seed(
            const.COLLECTION_CHARACTER,
            USER,
            {"userId": USER, "character": CHARACTER_L3, "version": 4},
        )

        assert await sync.get_character_state(USER) == CHARACTER_L3
        assert _local_value(local, CHARACTER.local_key(USER)) == CHARACTER_L3

    async def test_spread_entity_read_drops_bookkeeping(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """userId, updatedAt and version are not part of the returned entity."""
        remote.seed(
            const.COLLECTION_COINS,
            USER,
            {
                "userId": USER,
                "coins": 5,
                "totalEarned": 9,
                "purchases": [],
                "updatedAt": "2025-01-15T12:00:00Z",
                "version": 2,
            },
        )

        assert await sync.get_coins(USER) == {
            "coins": 5,
            "totalEarned": 9,
            "purchases": [],
        }

    async def test_bonuses_read_is_projected(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """Bonuses come back as exactly {bonuses, dailyBonus}."""
        remote.seed(
            const.COLLECTION_BONUSES,
            USER,
            {"userId": USER, "bonuses": [{"id": "b1"}], "extra": 1, "version": 1},
        )

        assert await sync.get_bonuses(USER) == {
            "bonuses": [{"id": "b1"}],
            "dailyBonus": None,
        }

    async def test_corrupt_local_json_reads_as_empty(
        self,
        sync: EntitySyncService,
        local: FakeLocalStore,
        connectivity: ConnectivityObserver,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Unparseable local data is treated as absent and logged."""
        local.data[CHARACTER.local_key(USER)] = "{not json"
        await connectivity.async_update(False)

        with caplog.at_level(logging.WARNING):
            assert await sync.get_character_state(USER) is None
        assert "Corrupt local data" in caplog.text

    async def test_missing_user_id_is_rejected(self, sync: EntitySyncService) -> None:
        """An empty user id is a caller error."""
        with pytest.raises(ValueError):
            await sync.get_habits("")

    async def test_unknown_entity_is_rejected(self, sync: EntitySyncService) -> None:
        """Generic read only accepts known entity names."""
        with pytest.raises(ValueError):
            await sync.read("inventory", USER)


# =============================================================================
# WRITES
# =============================================================================


class TestWrites:
    """Writes, offline queueing and error classification."""

    async def test_online_write_reaches_remote_and_local(
        self, sync: EntitySyncService, remote: FakeRemoteStore, local: FakeLocalStore
    ) -> None:
        """A remote write adds bookkeeping and is mirrored locally."""
        assert await sync.save_character_state(USER, CHARACTER_L3) is True

        document = remote.doc(const.COLLECTION_CHARACTER, USER)
        assert document["character"] == CHARACTER_L3
        assert document["userId"] == USER
        assert document["version"] == 1
        assert document["updatedAt"]
        assert _local_value(local, CHARACTER.local_key(USER)) == CHARACTER_L3
        assert sync.state.get()[const.STATUS_LAST_SYNC] is not None

    async def test_offline_write_is_stored_and_queued(
        self,
        sync: EntitySyncService,
        remote: FakeRemoteStore,
        local: FakeLocalStore,
        connectivity: ConnectivityObserver,
    ) -> None:
        """Offline writes land locally and queue exactly one retry."""
        await connectivity.async_update(False)

        assert await sync.save_coins(USER, {"coins": 120}) is False

        assert _local_value(local, COINS.local_key(USER)) == {"coins": 120}
        assert len(sync.queue) == 1
        assert remote.calls == []
        status = sync.state.get()
        assert status[const.STATUS_ONLINE] is False
        assert status[const.STATUS_PENDING_OPERATIONS] == 1

    async def test_reconnect_drains_queue_once(
        self,
        sync: EntitySyncService,
        remote: FakeRemoteStore,
        connectivity: ConnectivityObserver,
    ) -> None:
        """Going online replays the queued write with a single set call."""
        await connectivity.async_update(False)
        await sync.save_coins(USER, {"coins": 120})

        await connectivity.async_update(True)

        sets = remote.calls_named("set")
        assert len(sets) == 1
        assert sets[0][1:3] == (const.COLLECTION_COINS, USER)
        assert sets[0][3]["coins"] == 120
        assert len(sync.queue) == 0
        assert sync.state.get()[const.STATUS_PENDING_OPERATIONS] == 0
        assert await sync.async_drain_queue() == 0

    async def test_offline_writes_converge_to_last_local_value(
        self,
        sync: EntitySyncService,
        remote: FakeRemoteStore,
        local: FakeLocalStore,
        connectivity: ConnectivityObserver,
    ) -> None:
        """After draining, the remote document matches the last local write."""
        await connectivity.async_update(False)
        await sync.save_habits(USER, [{"id": "1", "name": "Run", "completed": False}])
        await sync.save_habits(USER, [{"id": "1", "name": "Run", "completed": True}])
        await sync.save_coins(USER, {"coins": 7, "totalEarned": 7, "purchases": []})

        await connectivity.async_update(True)

        assert remote.doc(const.COLLECTION_HABITS, USER)["habits"] == json.loads(
            local.data["riseup_habits_u1"]
        )
        assert _logical(remote.doc(const.COLLECTION_COINS, USER)) == _local_value(
            local, COINS.local_key(USER)
        )
        assert remote.doc(const.COLLECTION_HABITS, USER)["version"] == 2

    async def test_repeated_write_only_bumps_version(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """Writing the same payload twice leaves the same logical content."""
        ledger = {"coins": 50, "totalEarned": 80, "purchases": []}
        await sync.save_coins(USER, ledger)
        first = dict(remote.doc(const.COLLECTION_COINS, USER))
        await sync.save_coins(USER, ledger)
        second = remote.doc(const.COLLECTION_COINS, USER)

        assert _logical(first) == _logical(second)
        assert first["version"] == 1
        assert second["version"] == 2

    async def test_retryable_failure_falls_back_and_queues(
        self,
        sync: EntitySyncService,
        remote: FakeRemoteStore,
        local: FakeLocalStore,
    ) -> None:
        """A retryable remote error stores locally and queues a retry."""
        remote.fail_with = RetryableRemoteError("HTTP 503")

        assert await sync.save_character_state(USER, CHARACTER_L3) is False

        assert _local_value(local, CHARACTER.local_key(USER)) == CHARACTER_L3
        assert len(sync.queue) == 1
        assert "503" in sync.state.get()[const.STATUS_LAST_ERROR]

    async def test_non_retryable_failure_is_not_queued(
        self,
        sync: EntitySyncService,
        remote: FakeRemoteStore,
        local: FakeLocalStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Auth and validation errors fall back without a retry."""
        remote.fail_with = NonRetryableRemoteError("HTTP 403", status=403)

        with caplog.at_level(logging.ERROR):
            assert await sync.save_character_state(USER, CHARACTER_L3) is False

        assert _local_value(local, CHARACTER.local_key(USER)) == CHARACTER_L3
        assert len(sync.queue) == 0
        assert "without retry" in caplog.text

    async def test_remote_timeout_is_retryable(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """A hanging remote call times out, falls back and is queued."""
        remote.delay = 5

        assert await sync.save_coins(USER, {"coins": 3}) is False
        assert len(sync.queue) == 1
        assert "timed out" in sync.state.get()[const.STATUS_LAST_ERROR]

        remote.delay = 0
        assert await sync.async_drain_queue() == 1
        assert remote.doc(const.COLLECTION_COINS, USER)["coins"] == 3

    async def test_failed_drain_keeps_queue_order(
        self,
        sync: EntitySyncService,
        remote: FakeRemoteStore,
        connectivity: ConnectivityObserver,
    ) -> None:
        """A failing head stays queued and later operations wait for it."""
        await connectivity.async_update(False)
        await sync.save_coins(USER, {"coins": 1})
        await sync.save_character_state(USER, CHARACTER_L3)

        remote.fail_with = RetryableRemoteError("HTTP 500")
        await connectivity.async_update(True)

        assert len(sync.queue) == 2
        assert len(remote.calls_named("set")) == 1

        remote.fail_with = None
        assert await sync.async_drain_queue() == 2
        collections = [call[1] for call in remote.calls_named("set")]
        assert collections == [
            const.COLLECTION_COINS,
            const.COLLECTION_COINS,
            const.COLLECTION_CHARACTER,
        ]

    async def test_save_purchases_merges_local_ledger(
        self,
        sync: EntitySyncService,
        local: FakeLocalStore,
        connectivity: ConnectivityObserver,
    ) -> None:
        """Saving purchases keeps the locally known balance."""
        await connectivity.async_update(False)
        await sync.save_coins(USER, {"coins": 40, "totalEarned": 90, "purchases": []})

        purchases = [{"id": "p1", "name": "Hat", "cost": 10, "purchased": True}]
        await sync.save_purchases(USER, purchases)

        assert _local_value(local, COINS.local_key(USER)) == {
            "coins": 40,
            "totalEarned": 90,
            "purchases": purchases,
        }

    async def test_writes_to_one_document_are_serialized(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """Concurrent writes to the same document never overlap."""
        remote.delay = 0.02

        await asyncio.gather(
            sync.save_coins(USER, {"coins": 1}),
            sync.save_coins(USER, {"coins": 2}),
            sync.save_coins(USER, {"coins": 3}),
        )

        assert remote.max_active_writes == 1
        assert remote.doc(const.COLLECTION_COINS, USER)["version"] == 3

    async def test_writes_to_different_documents_run_concurrently(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """The per-document lock does not serialize unrelated documents."""
        remote.delay = 0.02

        await asyncio.gather(
            sync.save_coins(USER, {"coins": 1}),
            sync.save_character_state(USER, CHARACTER_L3),
        )

        assert remote.max_active_writes == 2

    async def test_set_removes_fields_dropped_from_spread_entity(
        self, sync: EntitySyncService, remote: FakeRemoteStore, local: FakeLocalStore
    ) -> None:
        """Saving a profile without a field deletes it remotely as well."""
        await sync.save_user_profile(USER, {"name": "Dana", "avatar": "cat"})
        await sync.save_user_profile(USER, {"name": "Dee"})

        assert remote.calls_named("set")[1][3]["avatar"] is DELETE_FIELD
        document = remote.doc(const.COLLECTION_USERS, USER)
        assert _logical(document) == {"id": USER, "name": "Dee"}
        assert document["version"] == 2
        assert await sync.get_user_profile(USER) == {"id": USER, "name": "Dee"}
        assert _local_value(local, "riseup_user_u1") == {"id": USER, "name": "Dee"}

    async def test_set_clears_declared_fields_missing_from_value(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """Bonuses saved without a daily bonus drop the stored one."""
        remote.seed(
            const.COLLECTION_BONUSES,
            USER,
            {"userId": USER, "bonuses": [], "dailyBonus": {"id": "d1"}, "version": 3},
        )

        await sync.save_bonuses(USER, {"bonuses": [{"id": "b1"}]})

        document = remote.doc(const.COLLECTION_BONUSES, USER)
        assert "dailyBonus" not in document
        assert document["version"] == 4

    async def test_batch_removes_fields_dropped_from_spread_entity(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """Batch writes replace spread entities the same way single writes do."""
        await sync.batch_update_user_data(
            USER, {"coins": {"coins": 5, "totalEarned": 5, "bonusCoins": 2}}
        )
        await sync.batch_update_user_data(
            USER, {"coins": {"coins": 6, "totalEarned": 6}}
        )

        assert _logical(remote.doc(const.COLLECTION_COINS, USER)) == {
            "coins": 6,
            "totalEarned": 6,
        }


# =============================================================================
# QUEUE ORDERING
# =============================================================================


class TestQueueOrdering:
    """Queued writes are never overtaken by newer writes to the same document."""

    async def test_newer_write_waits_behind_queued_write(
        self,
        sync: EntitySyncService,
        remote: FakeRemoteStore,
        local: FakeLocalStore,
        connectivity: ConnectivityObserver,
    ) -> None:
        """After a failed write, later writes queue and replay in order."""
        remote.fail_with = RetryableRemoteError("HTTP 503")
        assert await sync.save_coins(USER, {"coins": 100}) is False
        remote.fail_with = None

        assert await sync.save_coins(USER, {"coins": 200}) is False

        assert len(remote.calls_named("set")) == 1
        assert sync.queue.pending_labels() == [
            f"set {const.COLLECTION_COINS}/{USER}",
            f"set {const.COLLECTION_COINS}/{USER}",
        ]
        # Reads of a document with queued writes come from the local copy
        assert await sync.get_coins(USER) == {"coins": 200}
        assert remote.calls_named("get") == []

        await connectivity.async_update(False)
        await connectivity.async_update(True)

        assert [call[3]["coins"] for call in remote.calls_named("set")] == [
            100,
            100,
            200,
        ]
        assert remote.doc(const.COLLECTION_COINS, USER)["coins"] == 200
        assert await sync.get_coins(USER) == {"coins": 200}
        assert _local_value(local, COINS.local_key(USER)) == {"coins": 200}

    async def test_other_documents_are_not_held_back(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """Only writes to the document with queued work are deferred."""
        remote.fail_with = RetryableRemoteError("HTTP 503")
        await sync.save_coins(USER, {"coins": 1})
        remote.fail_with = None

        assert await sync.save_character_state(USER, CHARACTER_L3) is True
        assert len(sync.queue) == 1

    async def test_write_during_replay_lands_last(
        self,
        sync: EntitySyncService,
        remote: FakeRemoteStore,
        connectivity: ConnectivityObserver,
    ) -> None:
        """A write issued while a queued write replays ends up on the remote."""
        await connectivity.async_update(False)
        await sync.save_coins(USER, {"coins": 1})
        remote.delay = 0.02

        reconnect = asyncio.create_task(connectivity.async_update(True))
        await asyncio.sleep(0.005)
        await sync.save_coins(USER, {"coins": 2})
        await reconnect
        await sync.async_drain_queue()

        assert remote.max_active_writes == 1
        assert remote.doc(const.COLLECTION_COINS, USER)["coins"] == 2
        assert len(sync.queue) == 0

    async def test_online_query_keeps_queued_daily_record(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """History read online shows the local record whose write is queued."""
        remote.seed(
            const.COLLECTION_DAILY_RECORDS,
            "u1_2025-01-14",
            {
                "userId": USER,
                "date": "2025-01-14",
                "completedHabitIds": ["1"],
                "totalHabits": 2,
            },
        )
        remote.fail_with = RetryableRemoteError("HTTP 503")
        await sync.save_daily_record(
            USER, "2025-01-14", {"completedHabitIds": ["1", "2"], "totalHabits": 2}
        )
        remote.fail_with = None

        records = await sync.get_daily_records(USER)

        assert len(records) == 1
        assert records[0]["completedHabitIds"] == ["1", "2"]
        assert records[0]["perfectDay"] is True

    async def test_retry_pending_drains_while_online(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """Queued work is replayed without waiting for a reconnect."""
        assert await sync.async_retry_pending() == 0

        remote.fail_with = RetryableRemoteError("HTTP 503")
        await sync.save_coins(USER, {"coins": 9})
        remote.fail_with = None

        assert await sync.async_retry_pending() == 1
        assert remote.doc(const.COLLECTION_COINS, USER)["coins"] == 9
        assert sync.state.get()[const.STATUS_PENDING_OPERATIONS] == 0


# =============================================================================
# READ-MODIFY-WRITE
# =============================================================================


class TestModify:
    """async_modify holds the document lock from read to write."""

    async def test_concurrent_modifications_are_not_lost(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """Two concurrent credits both land."""
        await sync.save_coins(USER, {"coins": 0, "totalEarned": 0, "purchases": []})
        remote.delay = 0.01

        await asyncio.gather(
            sync.async_modify(COINS, USER, lambda c: EconomyEngine.add_coins(c, 10)),
            sync.async_modify(COINS, USER, lambda c: EconomyEngine.add_coins(c, 20)),
        )

        document = remote.doc(const.COLLECTION_COINS, USER)
        assert document["coins"] == 30
        assert document["totalEarned"] == 30

    async def test_modify_returns_written_value(
        self, sync: EntitySyncService, local: FakeLocalStore
    ) -> None:
        """Nothing stored yet means the function receives None."""
        seen: list = []

        def _start(current):
            seen.append(current)
            return EconomyEngine.add_coins(current, 5)

        ledger = await sync.async_modify(COINS, USER, _start)

        assert seen == [None]
        assert ledger["coins"] == 5
        assert _local_value(local, COINS.local_key(USER)) == ledger

    async def test_failing_modification_writes_nothing(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """Errors from the function propagate before any write."""
        await sync.save_coins(USER, {"coins": 1, "totalEarned": 1, "purchases": []})

        with pytest.raises(InsufficientCoinsError):
            await sync.async_modify(
                COINS, USER, lambda c: EconomyEngine.spend_coins(c, 50)
            )

        assert len(remote.calls_named("set")) == 1
        assert remote.doc(const.COLLECTION_COINS, USER)["coins"] == 1


# =============================================================================
# USER PROFILE
# =============================================================================


class TestUserProfile:
    """Profile create, read and partial update."""

    async def test_save_and_read_profile(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """The profile document is keyed by the user id and carries it."""
        await sync.save_user_profile(USER, {"name": "Dana"})

        assert remote.doc(const.COLLECTION_USERS, USER)["id"] == USER
        assert await sync.get_user_profile(USER) == {"id": USER, "name": "Dana"}

    async def test_update_existing_profile(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """A partial update keeps the other fields."""
        await sync.save_user_profile(USER, {"name": "Dana", "avatar": "cat"})

        assert await sync.update_user_profile(USER, {"name": "Dee"}) is True

        document = remote.doc(const.COLLECTION_USERS, USER)
        assert document["name"] == "Dee"
        assert document["avatar"] == "cat"
        assert document["version"] == 2

    async def test_update_of_missing_profile_stays_local(
        self, sync: EntitySyncService, remote: FakeRemoteStore, local: FakeLocalStore
    ) -> None:
        """Updating a profile that does not exist remotely is not retried."""
        assert await sync.update_user_profile(USER, {"name": "Dee"}) is False

        assert remote.doc(const.COLLECTION_USERS, USER) is None
        assert len(sync.queue) == 0
        assert _local_value(local, "riseup_user_u1") == {"name": "Dee"}

    async def test_wrapped_entities_reject_partial_update(
        self, sync: EntitySyncService
    ) -> None:
        """Only spread entities can be partially updated."""
        with pytest.raises(ValueError):
            await sync.update(CHARACTER, USER, {"level": 2})


# =============================================================================
# DAILY RECORDS
# =============================================================================


class TestDailyRecords:
    """Daily record persistence and history queries."""

    async def test_save_daily_record_derives_perfect_day(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """perfectDay is recomputed from the completion count."""
        await sync.save_daily_record(
            USER,
            "2025-01-14",
            {"completedHabitIds": ["1"], "totalHabits": 3, "perfectDay": True},
        )

        document = remote.doc(const.COLLECTION_DAILY_RECORDS, "u1_2025-01-14")
        assert document["perfectDay"] is False
        assert document["userId"] == USER
        assert document["date"] == "2025-01-14"
        assert document["experienceGained"] == 20

    async def test_get_daily_records_newest_first_with_limit(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """Remote history is queried by user, newest first, and limited."""
        seed_remote(remote, load_scenario())

        records = await sync.get_daily_records(USER, limit=2)

        assert [rec["date"] for rec in records] == ["2025-01-14", "2025-01-13"]
        assert records[0]["completedHabitIds"] == ["1", "3"]
        query = remote.calls_named("query")[0]
        assert query[3:] == ("date", True, 2)

    async def test_offline_history_comes_from_local_merge(
        self,
        sync: EntitySyncService,
        local: FakeLocalStore,
        connectivity: ConnectivityObserver,
    ) -> None:
        """Offline saves merge into the local history by date."""
        await connectivity.async_update(False)
        await sync.save_daily_record(
            USER, "2025-01-13", {"completedHabitIds": ["1"], "totalHabits": 2}
        )
        await sync.save_daily_record(
            USER, "2025-01-14", {"completedHabitIds": ["1"], "totalHabits": 2}
        )
        await sync.save_daily_record(
            USER, "2025-01-13", {"completedHabitIds": ["1", "2"], "totalHabits": 2}
        )

        records = await sync.get_daily_records(USER)

        assert [rec["date"] for rec in records] == ["2025-01-14", "2025-01-13"]
        assert records[1]["perfectDay"] is True
        assert len(_local_value(local, DAILY_RECORDS_LOCAL.local_key(USER))) == 2
        assert len(sync.queue) == 3
        assert (await sync.get_daily_records(USER, limit=1))[0]["date"] == "2025-01-14"

    async def test_online_query_updates_local_history(
        self,
        sync: EntitySyncService,
        remote: FakeRemoteStore,
        connectivity: ConnectivityObserver,
    ) -> None:
        """Records fetched online are available offline afterwards."""
        seed_remote(remote, load_scenario())
        await sync.get_daily_records(USER)

        await connectivity.async_update(False)

        assert len(await sync.get_daily_records(USER)) == 3


# =============================================================================
# BATCH
# =============================================================================


class TestBatch:
    """Atomic multi-entity writes."""

    async def test_online_batch_is_one_commit(
        self, sync: EntitySyncService, remote: FakeRemoteStore, local: FakeLocalStore
    ) -> None:
        """Every entity goes out in a single batch commit; None values are skipped."""
        habits = [{"id": "1", "name": "Run", "completed": True, "streak": 1}]

        assert (
            await sync.batch_update_user_data(
                USER, {"habits": habits, "character": CHARACTER_L3, "coins": None}
            )
            is True
        )

        batches = remote.calls_named("batch")
        assert len(batches) == 1
        assert len(batches[0][1]) == 2
        assert remote.calls_named("set") == []
        assert remote.doc(const.COLLECTION_HABITS, USER)["habits"] == habits
        assert remote.doc(const.COLLECTION_CHARACTER, USER)["character"] == CHARACTER_L3
        assert _local_value(local, "riseup_habits_u1") == habits
        assert "riseup_coins_u1" not in local.data

    async def test_offline_batch_is_one_queued_retry(
        self,
        sync: EntitySyncService,
        remote: FakeRemoteStore,
        local: FakeLocalStore,
        connectivity: ConnectivityObserver,
    ) -> None:
        """Offline, entities are stored locally and the batch queued once."""
        await connectivity.async_update(False)

        result = await sync.batch_update_user_data(
            USER, {"character": CHARACTER_L3, "achievements": []}
        )

        assert result is False
        assert len(sync.queue) == 1
        assert _local_value(local, CHARACTER.local_key(USER)) == CHARACTER_L3
        assert _local_value(local, "riseup_achievements_u1") == []

        await connectivity.async_update(True)
        assert len(remote.calls_named("batch")) == 1
        assert remote.doc(const.COLLECTION_ACHIEVEMENTS, USER)["achievements"] == []

    async def test_unknown_batch_key_writes_nothing(
        self, sync: EntitySyncService, remote: FakeRemoteStore, local: FakeLocalStore
    ) -> None:
        """Unknown entity names are rejected before anything is written."""
        with pytest.raises(ValueError):
            await sync.batch_update_user_data(
                USER, {"character": CHARACTER_L3, "pets": []}
            )

        assert remote.calls == []
        assert local.data == {}


# =============================================================================
# EXPORT / IMPORT
# =============================================================================


class TestExportImport:
    """Backup envelopes."""

    async def test_export_collects_every_entity(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """The envelope holds userId, exportDate, version and all entities."""
        scenario = load_scenario()
        seed_remote(remote, scenario)

        payload = await sync.export_user_data(USER)

        assert payload["userId"] == USER
        assert payload["version"] == const.EXPORT_FORMAT_VERSION
        assert payload["exportDate"]
        data = payload["data"]
        assert data["habits"] == scenario["habits"]
        assert data["customHabits"] == scenario["custom_habits"]
        assert data["character"] == scenario["character"]
        assert data["achievements"] == scenario["achievements"]
        assert data["bonuses"] == scenario["bonuses"]
        assert data["coins"] == scenario["coins"]
        assert [rec["date"] for rec in data["dailyRecords"]] == [
            "2025-01-14",
            "2025-01-13",
            "2025-01-12",
        ]
        assert data["dailyRecords"][2]["perfectDay"] is True

    async def test_import_restores_character_and_records(
        self, sync: EntitySyncService
    ) -> None:
        """An imported backup is readable through the normal getters."""
        character = {**CHARACTER_L3, "level": 5}
        payload = {
            "userId": USER,
            "exportDate": "2025-01-15T12:00:00+00:00",
            "version": "2.0.0",
            "data": {
                "character": character,
                "dailyRecords": [
                    {
                        "date": "2024-01-01",
                        "completedHabitIds": ["a", "b"],
                        "totalHabits": 2,
                    }
                ],
            },
        }

        assert await sync.import_user_data(USER, payload) == 1

        assert await sync.read("character", USER) == character
        records = await sync.get_daily_records(USER, limit=1)
        assert len(records) == 1
        assert records[0]["perfectDay"] is True

    async def test_export_then_import_into_other_user(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """A full scenario round-trips into a different user id."""
        seed_remote(remote, load_scenario())
        payload = await sync.export_user_data(USER)

        await sync.import_user_data("u2", payload)

        assert await sync.get_coins("u2") == await sync.get_coins(USER)
        assert len(await sync.get_daily_records("u2")) == 3

    async def test_import_offline_is_queued(
        self, sync: EntitySyncService, connectivity: ConnectivityObserver
    ) -> None:
        """Offline, the batch and every daily record are queued."""
        await connectivity.async_update(False)

        await sync.import_user_data(USER, build_export_payload(load_scenario()))

        assert len(sync.queue) == 4
        assert (await sync.get_character_state(USER))["level"] == 3

    @pytest.mark.parametrize(
        "payload",
        [
            {"userId": USER},
            {"data": []},
            {"data": {"habits": "nope"}},
            {"data": {"dailyRecords": [{"totalHabits": 2}]}},
            {
                "data": {
                    "character": CHARACTER_L3,
                    "dailyRecords": [
                        {"date": "2025-01-13", "totalHabits": 2},
                        {"date": "2025-01-14", "totalHabits": "many"},
                    ],
                }
            },
            {
                "data": {
                    "habits": [],
                    "dailyRecords": [
                        {"date": "2025-01-14", "experienceGained": "lots"}
                    ],
                }
            },
        ],
    )
    async def test_invalid_payload_writes_nothing(
        self,
        sync: EntitySyncService,
        remote: FakeRemoteStore,
        local: FakeLocalStore,
        payload: dict,
    ) -> None:
        """Malformed envelopes are rejected before any write."""
        with pytest.raises(InvalidExportPayloadError):
            await sync.import_user_data(USER, payload)

        assert remote.calls == []
        assert local.data == {}


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================


class TestSubscriptions:
    """Remote change notifications for custom habits and character."""

    async def test_offline_subscription_is_noop(
        self,
        sync: EntitySyncService,
        remote: FakeRemoteStore,
        connectivity: ConnectivityObserver,
    ) -> None:
        """Offline, nothing is subscribed and the unsubscribe does nothing."""
        await connectivity.async_update(False)
        events: list[dict] = []

        unsubscribe = await sync.subscribe_to_user_data(USER, events.append)
        unsubscribe()

        assert remote.calls == []
        assert events == []

    async def test_changes_are_delivered_and_cached(
        self, sync: EntitySyncService, remote: FakeRemoteStore, local: FakeLocalStore
    ) -> None:
        """Every change is cached locally and passed to the listener."""
        remote.seed(const.COLLECTION_CHARACTER, USER, {"character": CHARACTER_L3})
        events: list[dict] = []

        unsubscribe = await sync.subscribe_to_user_data(USER, events.append)
        assert events == [{"type": "character", "data": CHARACTER_L3}]

        habits = [{"id": "ch-1", "name": "Guitar"}]
        remote.seed(const.COLLECTION_CUSTOM_HABITS, USER, {"habits": habits})
        await remote.emit(const.COLLECTION_CUSTOM_HABITS, USER)

        assert events[-1] == {"type": "customHabits", "data": habits}
        assert _local_value(local, "riseup_custom_habits_u1") == habits

        unsubscribe()
        assert remote.subscriber_count(const.COLLECTION_CHARACTER, USER) == 0
        assert remote.subscriber_count(const.COLLECTION_CUSTOM_HABITS, USER) == 0

    async def test_subscription_failure_returns_noop(
        self, sync: EntitySyncService, remote: FakeRemoteStore
    ) -> None:
        """A remote failure while subscribing is logged, not raised."""
        remote.fail_with = RetryableRemoteError("HTTP 503")

        unsubscribe = await sync.subscribe_to_user_data(USER, lambda change: None)
        unsubscribe()


# =============================================================================
# STATUS / LIFECYCLE
# =============================================================================


class TestStatus:
    """Observable sync status and shutdown."""

    async def test_status_listener_sees_connectivity_changes(
        self, sync: EntitySyncService, connectivity: ConnectivityObserver
    ) -> None:
        """Status snapshots follow the connectivity observer."""
        snapshots: list[dict] = []
        sync.state.subscribe(snapshots.append)

        await connectivity.async_update(False)
        await connectivity.async_update(True)

        assert [snap[const.STATUS_ONLINE] for snap in snapshots] == [False, True]

    async def test_shutdown_detaches_from_connectivity(
        self, remote: FakeRemoteStore, local: FakeLocalStore
    ) -> None:
        """After shutdown the queue is empty and reconnects do nothing."""
        connectivity = ConnectivityObserver(initial_online=False)
        service = EntitySyncService(remote, local, connectivity)
        await service.save_coins(USER, {"coins": 1})

        await service.async_shutdown()
        await connectivity.async_update(True)

        assert len(service.queue) == 0
        assert remote.calls == []
