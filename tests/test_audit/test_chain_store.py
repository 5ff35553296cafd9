"""Tests for the sharded chain store.

These tests verify:
1. Compare-and-append rejects stale sequences and broken linkage
2. Chains spanning several shards read back as one contiguous chain
3. A lagging index never hides committed records
4. Storage calls are bounded by a timeout
"""

import asyncio

import pytest

from logibrew.audit.hashing import GENESIS_HASH
from logibrew.audit.repository import ChainStore
from logibrew.audit.schemas import DecisionRecord
from logibrew.core.exceptions import (
    ChainConflict,
    LinkageConflict,
    SequenceConflict,
    StorageError,
    StorageTimeout,
    UnreadableRecord,
    ValidationError,
)
from logibrew.storage import InMemoryKeyValueStore


async def append_records(store: ChainStore, shipment_id: str, count: int) -> list[DecisionRecord]:
    records = []
    previous = GENESIS_HASH
    for i in range(count):
        record = DecisionRecord.build(shipment_id, i, {"index": i}, 1_000 + i, previous)
        await store.append(shipment_id, record)
        records.append(record)
        previous = record.record_hash
    return records


class SlowKeyValueStore(InMemoryKeyValueStore):
    """Store whose reads never complete in time."""

    async def get(self, key):
        await asyncio.sleep(10)
        return await super().get(key)


# ============================================================================
# APPEND
# ============================================================================


class TestAppend:
    """Tests for compare-and-append."""

    @pytest.mark.asyncio
    async def test_append_returns_position(self, chain_store):
        record = DecisionRecord.build("S1", 0, {"a": 1}, 1_000)

        assert await chain_store.append("S1", record) == 0
        assert await chain_store.length("S1") == 1

    @pytest.mark.asyncio
    async def test_stale_sequence_rejected(self, chain_store):
        records = await append_records(chain_store, "S1", 2)
        stale = DecisionRecord.build("S1", 1, {"a": 1}, 2_000, records[0].record_hash)

        with pytest.raises(SequenceConflict) as exc_info:
            await chain_store.append("S1", stale)

        assert exc_info.value.expected == 2
        assert exc_info.value.actual == 1
        assert await chain_store.length("S1") == 2

    @pytest.mark.asyncio
    async def test_wrong_previous_hash_rejected(self, chain_store):
        await append_records(chain_store, "S1", 2)
        forged = DecisionRecord.build("S1", 2, {"a": 1}, 2_000, "0" * 64)

        with pytest.raises(LinkageConflict):
            await chain_store.append("S1", forged)

        assert await chain_store.length("S1") == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("claimed_sequence", [0, 1, 2, 3, 50])
    async def test_wrong_previous_hash_rejected_for_any_sequence(self, chain_store, claimed_sequence):
        await append_records(chain_store, "S1", 2)
        forged = DecisionRecord.build("S1", claimed_sequence, {"a": 1}, 2_000, "0" * 64)

        with pytest.raises(ChainConflict):
            await chain_store.append("S1", forged)

        assert await chain_store.length("S1") == 2

    @pytest.mark.asyncio
    async def test_first_record_must_link_to_genesis(self, chain_store):
        record = DecisionRecord.build("S1", 0, {"a": 1}, 1_000, "f" * 64)

        with pytest.raises(LinkageConflict):
            await chain_store.append("S1", record)

    @pytest.mark.asyncio
    async def test_record_for_other_shipment_rejected(self, chain_store):
        record = DecisionRecord.build("S2", 0, {"a": 1}, 1_000)

        with pytest.raises(ValidationError):
            await chain_store.append("S1", record)

    @pytest.mark.asyncio
    async def test_lost_race_becomes_sequence_conflict(self, chain_store):
        """Two writers that observed the same tail: exactly one commits."""
        first = DecisionRecord.build("S1", 0, {"writer": "a"}, 1_000)
        second = DecisionRecord.build("S1", 0, {"writer": "b"}, 1_000)

        results = await asyncio.gather(
            chain_store.append("S1", first),
            chain_store.append("S1", second),
            return_exceptions=True,
        )

        assert sorted(type(r).__name__ for r in results) == ["SequenceConflict", "int"]
        assert await chain_store.length("S1") == 1


# ============================================================================
# SHARDING
# ============================================================================


class TestSharding:
    """Tests for shard layout and reads."""

    @pytest.mark.asyncio
    async def test_records_split_into_fixed_size_shards(self, chain_store, kv):
        await append_records(chain_store, "S1", 10)

        assert await kv.list("chain:S1#") == ["chain:S1#0", "chain:S1#1", "chain:S1#2"]
        assert [len(kv.raw(f"chain:S1#{i}")["records"]) for i in range(3)] == [4, 4, 2]

        index = kv.raw("chain:S1")
        assert index["shardCount"] == 3
        assert index["lastShardLength"] == 2
        assert index["length"] == 10

    @pytest.mark.asyncio
    async def test_sharded_chain_reads_like_unsharded_chain(self, chain_store):
        unsharded = ChainStore(InMemoryKeyValueStore(), shard_size=1000)

        written = await append_records(chain_store, "S1", 10)
        await append_records(unsharded, "S1", 10)

        sharded_records = await chain_store.read("S1").to_list()
        unsharded_records = await unsharded.read("S1").to_list()

        assert sharded_records == unsharded_records == written
        assert [r.sequence for r in sharded_records] == list(range(10))

    @pytest.mark.asyncio
    async def test_read_range_crosses_shard_boundaries(self, chain_store):
        await append_records(chain_store, "S1", 10)

        records = await chain_store.read("S1", from_sequence=3, to_sequence=9).to_list()

        assert [r.sequence for r in records] == [3, 4, 5, 6, 7, 8]

    @pytest.mark.asyncio
    async def test_read_is_restartable(self, chain_store):
        await append_records(chain_store, "S1", 3)
        chain = chain_store.read("S1")

        first = await chain.to_list()
        await append_records_after(chain_store, "S1", first[-1])
        second = await chain.to_list()

        assert len(first) == 3
        assert len(second) == 4

    @pytest.mark.asyncio
    async def test_read_missing_chain_is_empty(self, chain_store):
        assert await chain_store.read("missing").to_list() == []
        head = await chain_store.head("missing")
        assert head.is_empty
        assert head.tail_hash == GENESIS_HASH

    @pytest.mark.asyncio
    async def test_invalid_bounds_rejected(self, chain_store):
        with pytest.raises(ValidationError):
            chain_store.read("S1", from_sequence=-1)
        with pytest.raises(ValidationError):
            chain_store.read("S1", from_sequence=5, to_sequence=2)

    @pytest.mark.asyncio
    async def test_list_shipments(self, chain_store):
        await append_records(chain_store, "S2", 1)
        await append_records(chain_store, "S1", 5)

        assert await chain_store.list_shipments() == ["S1", "S2"]


async def append_records_after(store: ChainStore, shipment_id: str, tail: DecisionRecord) -> None:
    record = DecisionRecord.build(
        shipment_id, tail.sequence + 1, {"late": True}, tail.timestamp + 1, tail.record_hash
    )
    await store.append(shipment_id, record)


# ============================================================================
# RECOVERY
# ============================================================================


class TestLaggingIndex:
    """The index is a hint; shards are the source of truth."""

    @pytest.mark.asyncio
    async def test_stale_index_does_not_hide_records(self, chain_store, kv):
        records = await append_records(chain_store, "S1", 6)
        # Simulate a crash after committing shard 1 but before the index update
        kv.overwrite(
            "chain:S1",
            {"shipmentId": "S1", "shardCount": 1, "lastShardLength": 4, "shardSize": 4, "length": 4},
        )

        head = await chain_store.head("S1")

        assert head.length == 6
        assert head.tail_hash == records[-1].record_hash
        assert len(await chain_store.read("S1").to_list()) == 6

    @pytest.mark.asyncio
    async def test_missing_index_is_recovered_on_next_append(self, chain_store, kv):
        records = await append_records(chain_store, "S1", 5)
        kv.delete("chain:S1")

        assert await chain_store.length("S1") == 5

        await append_records_after(chain_store, "S1", records[-1])

        assert kv.raw("chain:S1")["length"] == 6
        assert await chain_store.length("S1") == 6

    @pytest.mark.asyncio
    async def test_unreadable_record_is_a_storage_error(self, chain_store, kv):
        await append_records(chain_store, "S1", 2)
        shard = kv.raw("chain:S1#0")
        shard["records"][1] = {"garbage": True}
        kv.overwrite("chain:S1#0", shard)

        with pytest.raises(StorageError) as exc_info:
            await chain_store.read("S1").to_list()

        assert isinstance(exc_info.value, UnreadableRecord)
        assert exc_info.value.sequence == 1

    @pytest.mark.asyncio
    async def test_readable_prefix_stops_at_unreadable_record(self, chain_store, kv):
        await append_records(chain_store, "S1", 7)
        shard = kv.raw("chain:S1#1")
        shard["records"][1]["timestamp"] = "later"
        kv.overwrite("chain:S1#1", shard)

        records, unreadable = await chain_store.read("S1").readable_prefix()

        assert [r.sequence for r in records] == [0, 1, 2, 3, 4]
        assert unreadable.sequence == 5
        assert unreadable.shipment_id == "S1"

    @pytest.mark.asyncio
    async def test_readable_prefix_of_intact_chain(self, chain_store):
        await append_records(chain_store, "S1", 3)

        records, unreadable = await chain_store.read("S1").readable_prefix()

        assert len(records) == 3
        assert unreadable is None


class TestTimeouts:
    """Storage calls are bounded by the store timeout."""

    @pytest.mark.asyncio
    async def test_slow_read_times_out(self):
        store = ChainStore(SlowKeyValueStore(), shard_size=4, timeout_seconds=0.05)

        with pytest.raises(StorageTimeout) as exc_info:
            await store.head("S1")

        assert exc_info.value.operation == "get"

    @pytest.mark.asyncio
    async def test_invalid_shipment_id(self, chain_store):
        with pytest.raises(ValidationError):
            await chain_store.length("S1#0")
