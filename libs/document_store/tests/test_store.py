"""
Tests for RedisDocumentStore.

Runs against fakeredis so WATCH/MULTI/EXEC behaviour is exercised without a
server. Covers:
    - get/insert round trip and id assignment
    - index-served and scan-served queries, oldest first
    - all-or-nothing batch commits
    - conditional updates under concurrency
    - Redis failures surfaced as StoreError
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fakeredis.aioredis import FakeRedis
from redis.exceptions import ConnectionError as RedisConnectionError

from libs.common.exceptions import StoreError
from libs.document_store import BRIDGE_COLLECTIONS, RedisDocumentStore, StoreKeys


@pytest.fixture()
def redis_client():
    return FakeRedis(decode_responses=True)


@pytest.fixture()
def store(redis_client):
    return RedisDocumentStore(redis_client, collections=BRIDGE_COLLECTIONS, namespace="test")


class TestReads:
    @pytest.mark.asyncio()
    async def test_missing_document_returns_none(self, store):
        assert await store.get("accounts", "nope") is None

    @pytest.mark.asyncio()
    async def test_insert_then_get(self, store):
        doc_id = await store.insert("accounts", {"token": "t1", "active": True}, doc_id="acc-1")

        assert doc_id == "acc-1"
        assert await store.get("accounts", "acc-1") == {
            "id": "acc-1",
            "token": "t1",
            "active": True,
        }

    @pytest.mark.asyncio()
    async def test_insert_generates_id(self, store):
        doc_id = await store.insert("signals", {"symbol": "XAUUSD"})

        document = await store.get("signals", doc_id)
        assert document is not None
        assert document["id"] == doc_id

    @pytest.mark.asyncio()
    async def test_query_uses_index_and_orders_oldest_first(self, store, redis_client):
        for n in range(3):
            await store.insert(
                "commands", {"account_id": "acc-1", "status": "pending", "n": n}, doc_id=f"c{n}"
            )
        await store.insert("commands", {"account_id": "acc-2", "status": "pending"}, doc_id="other")

        results = await store.query("commands", {"account_id": "acc-1", "status": "pending"})

        assert [doc["id"] for doc in results] == ["c0", "c1", "c2"]
        index_key = StoreKeys.index(
            "test", "commands", {"account_id": "acc-1", "status": "pending"}
        )
        assert await redis_client.zcard(index_key) == 3

    @pytest.mark.asyncio()
    async def test_query_limit(self, store):
        for n in range(3):
            await store.insert("commands", {"account_id": "a", "status": "pending"}, doc_id=f"c{n}")

        results = await store.query("commands", {"account_id": "a", "status": "pending"}, limit=1)

        assert [doc["id"] for doc in results] == ["c0"]

    @pytest.mark.asyncio()
    async def test_query_without_matching_index_scans(self, store):
        await store.insert("signals", {"symbol": "XAUUSD", "tier": "10_50"}, doc_id="s1")
        await store.insert("signals", {"symbol": "XAUUSD", "tier": "200_500"}, doc_id="s2")

        results = await store.query("signals", {"tier": "200_500"})

        assert [doc["id"] for doc in results] == ["s2"]

    @pytest.mark.asyncio()
    async def test_boolean_index(self, store):
        await store.insert("accounts", {"active": True}, doc_id="on")
        await store.insert("accounts", {"active": False}, doc_id="off")

        results = await store.query("accounts", {"active": True})

        assert [doc["id"] for doc in results] == ["on"]

    @pytest.mark.asyncio()
    async def test_internal_fields_are_hidden(self, store):
        await store.insert("accounts", {"active": True}, doc_id="acc-1")

        document = await store.get("accounts", "acc-1")

        assert not any(key.startswith("_") for key in document)


class TestBatch:
    @pytest.mark.asyncio()
    async def test_commit_applies_all_writes(self, store):
        batch = store.batch()
        batch.create("signals", "s1", {"symbol": "XAUUSD"})
        for n in range(3):
            batch.create("commands", f"c{n}", {"account_id": f"acc-{n}", "status": "pending"})

        await store.commit(batch)

        assert len(await store.query("commands", {"status": "pending"})) == 3
        assert await store.get("signals", "s1") is not None

    @pytest.mark.asyncio()
    async def test_create_conflict_rejects_whole_batch(self, store):
        await store.insert("commands", {"status": "processing"}, doc_id="c1")

        batch = store.batch()
        batch.create("commands", "c0", {"account_id": "a", "status": "pending"})
        batch.create("commands", "c1", {"account_id": "b", "status": "pending"})

        with pytest.raises(StoreError, match="already exists"):
            await store.commit(batch)

        assert await store.get("commands", "c0") is None
        assert (await store.get("commands", "c1"))["status"] == "processing"

    @pytest.mark.asyncio()
    async def test_update_of_missing_document_rejects_batch(self, store):
        batch = store.batch()
        batch.create("signals", "s1", {"symbol": "XAUUSD"})
        batch.update("accounts", "ghost", {"balance": 1.0})

        with pytest.raises(StoreError, match="does not exist"):
            await store.commit(batch)

        assert await store.get("signals", "s1") is None

    @pytest.mark.asyncio()
    async def test_update_precondition_rejects_batch(self, store):
        await store.insert("daily_stats", {"account_id": "a", "archived": True}, doc_id="a:d")
        await store.insert("accounts", {"balance": 100.0}, doc_id="a")

        batch = store.batch()
        batch.update("daily_stats", "a:d", {"archived": True}, expected={"archived": False})
        batch.update("accounts", "a", {"balance": 120.0})

        with pytest.raises(StoreError, match="Precondition failed"):
            await store.commit(batch)

        assert (await store.get("accounts", "a"))["balance"] == 100.0

    @pytest.mark.asyncio()
    async def test_empty_batch_is_noop(self, store):
        await store.commit(store.batch())

    @pytest.mark.asyncio()
    async def test_redis_failure_raises_store_error(self):
        redis_client = MagicMock()
        redis_client.pipeline.side_effect = RedisConnectionError("down")
        failing = RedisDocumentStore(redis_client, collections=BRIDGE_COLLECTIONS)

        with pytest.raises(StoreError):
            await failing.commit(failing.batch().create("signals", "s1", {}))


class TestConditionalUpdates:
    @pytest.mark.asyncio()
    async def test_update_if_moves_index_membership(self, store):
        await store.insert("commands", {"account_id": "a", "status": "pending"}, doc_id="c1")

        updated = await store.update_if(
            "commands", "c1", expected={"status": "pending"}, fields={"status": "processing"}
        )

        assert updated["status"] == "processing"
        assert await store.query("commands", {"account_id": "a", "status": "pending"}) == []
        processing = await store.query("commands", {"status": "processing"})
        assert [doc["id"] for doc in processing] == ["c1"]

    @pytest.mark.asyncio()
    async def test_update_if_mismatch_returns_none(self, store):
        await store.insert("commands", {"status": "completed"}, doc_id="c1")

        result = await store.update_if(
            "commands", "c1", expected={"status": "processing"}, fields={"status": "failed"}
        )

        assert result is None
        assert (await store.get("commands", "c1"))["status"] == "completed"

    @pytest.mark.asyncio()
    async def test_update_if_missing_document(self, store):
        assert await store.update_if("commands", "x", {"status": "pending"}, {}) is None

    @pytest.mark.asyncio()
    async def test_concurrent_claims_only_one_wins(self, store):
        await store.insert("commands", {"account_id": "a", "status": "pending"}, doc_id="c1")

        results = await asyncio.gather(
            *(
                store.update_if(
                    "commands", "c1", expected={"status": "pending"},
                    fields={"status": "processing", "claimed_by": n},
                )
                for n in range(5)
            )
        )

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        stored = await store.get("commands", "c1")
        assert stored["claimed_by"] == winners[0]["claimed_by"]

    @pytest.mark.asyncio()
    async def test_concurrent_modify_keeps_every_increment(self, store):
        await store.insert("daily_stats", {"account_id": "a", "trades": 0}, doc_id="a:2026-01-01")

        def bump(doc):
            return {**doc, "trades": doc["trades"] + 1}

        await asyncio.gather(*(store.modify("daily_stats", "a:2026-01-01", bump) for _ in range(10)))

        assert (await store.get("daily_stats", "a:2026-01-01"))["trades"] == 10

    @pytest.mark.asyncio()
    async def test_modify_returning_none_leaves_document(self, store):
        await store.insert("accounts", {"balance": 10}, doc_id="acc-1")

        result = await store.modify("accounts", "acc-1", lambda doc: None)

        assert result["balance"] == 10

    @pytest.mark.asyncio()
    async def test_modify_preserves_ordering_score(self, store):
        await store.insert("commands", {"account_id": "a", "status": "pending"}, doc_id="old")
        await store.insert("commands", {"account_id": "a", "status": "pending"}, doc_id="new")

        await store.update("commands", "old", {"note": "touched"})

        results = await store.query("commands", {"account_id": "a", "status": "pending"})
        assert [doc["id"] for doc in results] == ["old", "new"]

    @pytest.mark.asyncio()
    async def test_create_if_absent_returns_existing(self, store):
        first = await store.create_if_absent("daily_stats", "a:d", {"account_id": "a", "v": 1})
        second = await store.create_if_absent("daily_stats", "a:d", {"account_id": "a", "v": 2})

        assert first["v"] == 1
        assert second["v"] == 1

    @pytest.mark.asyncio()
    async def test_get_failure_raises_store_error(self):
        redis_client = AsyncMock()
        redis_client.get.side_effect = RedisConnectionError("down")
        failing = RedisDocumentStore(redis_client)

        with pytest.raises(StoreError):
            await failing.get("accounts", "acc-1")

    @pytest.mark.asyncio()
    async def test_ping(self, store):
        assert await store.ping() is True
