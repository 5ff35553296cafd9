"""
Chain Store - Sharded, Append-Only Storage for Decision Chains.

Each shipment's chain is split into fixed-size shards:

    {namespace}:{shipmentId}#0   records 0 .. shardSize-1
    {namespace}:{shipmentId}#1   records shardSize .. 2*shardSize-1
    ...

plus an index document at {namespace}:{shipmentId} describing the layout.

The conditional write of a shard is the commit point of an append. The
index is only a hint: readers and writers start at the shard it names and
look ahead until a shard is missing, so an index that lags behind the
shards (crash between the two writes) never hides committed records.

Records are never edited after being written.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import structlog
from pydantic import ValidationError as SchemaError

from logibrew.audit.hashing import GENESIS_HASH
from logibrew.audit.schemas import (
    SHARD_SEPARATOR,
    ChainHead,
    DecisionRecord,
    validate_shipment_id,
)
from logibrew.common.resilience import run_with_timeout
from logibrew.core.config import settings
from logibrew.core.exceptions import (
    LinkageConflict,
    SequenceConflict,
    StorageError,
    StorageTimeout,
    UnreadableRecord,
    ValidationError,
    VersionConflict,
)
from logibrew.storage.base import KeyValueStore, StoredValue

logger = structlog.get_logger(__name__)


def check_shipment_id(shipment_id: str) -> None:
    """Raise ValidationError for ids that cannot address a chain."""
    try:
        validate_shipment_id(shipment_id)
    except ValueError as e:
        raise ValidationError(str(e), field="shipmentId") from None


@dataclass
class ChainLayout:
    """Shard layout of one chain as observed by a single read."""

    shard_size: int
    last_shard_index: int = -1
    last_shard: Optional[StoredValue] = None
    index_version: Optional[int] = None
    length: int = 0

    @property
    def shard_count(self) -> int:
        return self.last_shard_index + 1

    @property
    def last_shard_length(self) -> int:
        if self.last_shard is None:
            return 0
        return len(self.last_shard.value.get("records", []))

    @property
    def last_shard_full(self) -> bool:
        return self.last_shard is None or self.last_shard_length >= self.shard_size


class ChainSlice:
    """
    Lazy view over a range of one chain.

    Iterating resolves the layout and fetches one shard at a time. Every
    `async for` starts again from storage.
    """

    def __init__(
        self,
        store: "ChainStore",
        shipment_id: str,
        from_sequence: int = 0,
        to_sequence: Optional[int] = None,
    ):
        self._store = store
        self.shipment_id = shipment_id
        self.from_sequence = from_sequence
        self.to_sequence = to_sequence

    def __aiter__(self) -> AsyncIterator[DecisionRecord]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[DecisionRecord]:
        layout = await self._store.resolve_layout(self.shipment_id)

        end = layout.length
        if self.to_sequence is not None:
            end = min(end, self.to_sequence)
        if self.from_sequence >= end:
            return

        size = layout.shard_size
        for shard_index in range(self.from_sequence // size, (end - 1) // size + 1):
            if shard_index == layout.last_shard_index:
                stored = layout.last_shard
            else:
                stored = await self._store._get(
                    self._store.shard_key(self.shipment_id, shard_index)
                )
                if stored is None:
                    raise StorageError(
                        f"Shard {shard_index} of {self.shipment_id} is missing",
                        details={"shipment_id": self.shipment_id, "shard_index": shard_index},
                    )

            base = shard_index * size
            entries = self._store._shard_entries(self.shipment_id, base, stored)
            for offset, data in enumerate(entries):
                position = base + offset
                if self.from_sequence <= position < end:
                    yield self._store._parse_record(self.shipment_id, position, data)

    async def to_list(self) -> list[DecisionRecord]:
        return [record async for record in self]

    async def readable_prefix(self) -> tuple[list[DecisionRecord], Optional[UnreadableRecord]]:
        """
        Records up to the first one that no longer parses, plus that error.

        Other storage failures still raise.
        """
        records: list[DecisionRecord] = []
        try:
            async for record in self:
                records.append(record)
        except UnreadableRecord as e:
            return records, e
        return records, None


class ChainStore:
    """
    Append-only, sharded chain storage with compare-and-append.

    append() only succeeds when the record extends the exact tail the
    caller observed: its sequence must equal the chain length and its
    previousHash must equal the tail hash. Concurrent writers to the same
    shipment are serialized by the storage collaborator's conditional put.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        shard_size: Optional[int] = None,
        namespace: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self._kv = kv
        self.shard_size = shard_size or settings.shard_size
        self.namespace = namespace or settings.chain_namespace
        self.timeout_seconds = timeout_seconds or settings.storage_timeout_seconds

        if self.shard_size < 1:
            raise ValueError("shard_size must be at least 1")

    @property
    def backend(self) -> str:
        return self._kv.name

    # =========================================================================
    # KEYS
    # =========================================================================

    def index_key(self, shipment_id: str) -> str:
        return f"{self.namespace}:{shipment_id}"

    def shard_key(self, shipment_id: str, shard_index: int) -> str:
        return f"{self.namespace}:{shipment_id}{SHARD_SEPARATOR}{shard_index}"

    # =========================================================================
    # WRITE
    # =========================================================================

    async def append(self, shipment_id: str, record: DecisionRecord) -> int:
        """
        Append record if and only if it extends the current tail.

        Returns:
            Position of the record (its sequence)

        Raises:
            SequenceConflict: record.sequence != chain length, or a
                concurrent writer committed first
            LinkageConflict: record.previous_hash != tail hash
            ValidationError: record belongs to another shipment
            StorageTimeout: a storage call exceeded its timeout
        """
        check_shipment_id(shipment_id)
        if record.shipment_id != shipment_id:
            raise ValidationError(
                f"Record for {record.shipment_id} cannot be appended to {shipment_id}",
                field="shipmentId",
            )

        layout = await self.resolve_layout(shipment_id)

        if record.sequence != layout.length:
            raise SequenceConflict(shipment_id, expected=layout.length, actual=record.sequence)

        tail_hash = self._tail_hash(layout)
        if record.previous_hash != tail_hash:
            raise LinkageConflict(
                shipment_id,
                expected_hash=tail_hash,
                actual_hash=record.previous_hash,
            )

        if layout.last_shard_full:
            shard_index = layout.last_shard_index + 1
            shard_doc = {
                "shardIndex": shard_index,
                "shardSize": layout.shard_size,
                "records": [record.to_storage()],
            }
            if_match = 0
        else:
            shard_index = layout.last_shard_index
            shard_doc = dict(layout.last_shard.value)
            shard_doc["records"] = [*shard_doc.get("records", []), record.to_storage()]
            if_match = layout.last_shard.version

        try:
            await self._put(self.shard_key(shipment_id, shard_index), shard_doc, if_match)
        except VersionConflict:
            logger.debug(
                "chain_append_lost_race",
                shipment_id=shipment_id,
                sequence=record.sequence,
                shard_index=shard_index,
            )
            raise SequenceConflict(
                shipment_id, expected=layout.length + 1, actual=record.sequence
            ) from None

        await self._update_index(
            shipment_id,
            layout,
            shard_count=shard_index + 1,
            last_shard_length=len(shard_doc["records"]),
            length=layout.length + 1,
        )

        logger.debug(
            "chain_record_appended",
            shipment_id=shipment_id,
            sequence=record.sequence,
            shard_index=shard_index,
        )
        return record.sequence

    # =========================================================================
    # READ
    # =========================================================================

    def read(
        self,
        shipment_id: str,
        from_sequence: int = 0,
        to_sequence: Optional[int] = None,
    ) -> ChainSlice:
        """
        Records in [from_sequence, to_sequence) in sequence order.

        Shard boundaries are invisible to the caller.
        """
        check_shipment_id(shipment_id)
        if from_sequence < 0:
            raise ValidationError("from_sequence must be >= 0", field="fromSequence")
        if to_sequence is not None and to_sequence < from_sequence:
            raise ValidationError(
                "to_sequence must be >= from_sequence",
                field="toSequence",
            )
        return ChainSlice(self, shipment_id, from_sequence, to_sequence)

    async def length(self, shipment_id: str) -> int:
        check_shipment_id(shipment_id)
        layout = await self.resolve_layout(shipment_id)
        return layout.length

    async def head(self, shipment_id: str) -> ChainHead:
        """Length, tail hash and tail timestamp from one consistent read."""
        check_shipment_id(shipment_id)
        layout = await self.resolve_layout(shipment_id)

        tail = self._tail_record(layout)
        return ChainHead(
            shipment_id=shipment_id,
            length=layout.length,
            tail_hash=tail.get("hash", GENESIS_HASH) if tail else GENESIS_HASH,
            tail_timestamp=tail.get("timestamp") if tail else None,
        )

    async def list_shipments(self) -> list[str]:
        """All shipment ids with at least one stored key."""
        prefix = f"{self.namespace}:"
        keys = await run_with_timeout(
            self._kv.list(prefix),
            self.timeout_seconds,
            on_timeout=lambda: StorageTimeout("list", self.timeout_seconds, prefix),
            operation="kv_list",
        )

        shipments = set()
        for key in keys:
            name = key[len(prefix):]
            shipments.add(name.split(SHARD_SEPARATOR, 1)[0])
        return sorted(s for s in shipments if s)

    async def resolve_layout(self, shipment_id: str) -> ChainLayout:
        """
        Locate the last committed shard.

        Starts at the shard the index names (or shard 0 without an index)
        and looks ahead until a shard is missing.
        """
        index = await self._get(self.index_key(shipment_id))

        layout = ChainLayout(shard_size=self.shard_size)
        shard_index = 0
        if index is not None:
            layout.index_version = index.version
            layout.shard_size = int(index.value.get("shardSize", self.shard_size))
            shard_index = max(int(index.value.get("shardCount", 0)) - 1, 0)

        while True:
            stored = await self._get(self.shard_key(shipment_id, shard_index))
            if stored is None:
                break
            if shard_index == 0:
                layout.shard_size = int(stored.value.get("shardSize", layout.shard_size))
            layout.last_shard_index = shard_index
            layout.last_shard = stored
            shard_index += 1

        if layout.last_shard is None and index is not None and index.value.get("length"):
            raise StorageError(
                f"Index for {shipment_id} references shards that do not exist",
                details={"shipment_id": shipment_id, "index": index.value},
            )

        if layout.last_shard is not None:
            layout.length = (
                layout.last_shard_index * layout.shard_size + layout.last_shard_length
            )
        return layout

    # =========================================================================
    # INTERNAL METHODS
    # =========================================================================

    async def _get(self, key: str) -> Optional[StoredValue]:
        return await run_with_timeout(
            self._kv.get(key),
            self.timeout_seconds,
            on_timeout=lambda: StorageTimeout("get", self.timeout_seconds, key),
            operation="kv_get",
        )

    async def _put(self, key: str, value: dict[str, Any], if_match: Optional[int]) -> int:
        return await run_with_timeout(
            self._kv.put(key, value, if_match=if_match),
            self.timeout_seconds,
            on_timeout=lambda: StorageTimeout("put", self.timeout_seconds, key),
            operation="kv_put",
        )

    async def _update_index(
        self,
        shipment_id: str,
        layout: ChainLayout,
        shard_count: int,
        last_shard_length: int,
        length: int,
    ) -> None:
        """Refresh the layout hint. The append is already committed."""
        doc = {
            "shipmentId": shipment_id,
            "shardCount": shard_count,
            "lastShardLength": last_shard_length,
            "shardSize": layout.shard_size,
            "length": length,
            "updatedAt": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self._put(self.index_key(shipment_id), doc, layout.index_version or 0)
        except VersionConflict:
            logger.debug("chain_index_update_skipped", shipment_id=shipment_id, length=length)
        except StorageError as e:
            logger.warning(
                "chain_index_update_failed",
                shipment_id=shipment_id,
                length=length,
                error=e.message,
            )

    def _shard_entries(self, shipment_id: str, base: int, stored: StoredValue) -> list[Any]:
        entries = stored.value.get("records", [])
        if not isinstance(entries, list):
            raise UnreadableRecord(shipment_id, base, "shard records are not a list")
        return entries

    def _parse_record(self, shipment_id: str, position: int, data: Any) -> DecisionRecord:
        """Parse the record stored at position; UnreadableRecord names that position."""
        try:
            return DecisionRecord.from_storage(data)
        except SchemaError as e:
            logger.error(
                "chain_record_unreadable",
                shipment_id=shipment_id,
                sequence=position,
                error=str(e)[:200],
            )
            raise UnreadableRecord(shipment_id, position, str(e)[:200]) from e

    @staticmethod
    def _tail_record(layout: ChainLayout) -> Optional[dict[str, Any]]:
        if layout.last_shard is None:
            return None
        records = layout.last_shard.value.get("records", [])
        if not isinstance(records, list) or not records:
            return None
        tail = records[-1]
        return tail if isinstance(tail, dict) else None

    def _tail_hash(self, layout: ChainLayout) -> str:
        tail = self._tail_record(layout)
        return tail.get("hash", GENESIS_HASH) if tail else GENESIS_HASH
