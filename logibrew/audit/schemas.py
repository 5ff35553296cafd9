"""
Decision Chain Schemas.

These schemas ensure EVERY logged decision can be:
1. Linked to the decision before it (previousHash)
2. Verified for tampering (hash recomputed from content)
3. Witnessed out-of-band (HashRoot anchors)

CRITICAL: Decision records are IMMUTABLE once created.
Persisted and wire representations use camelCase field names
(shipmentId, previousHash, hash, ...) so they round-trip exactly across
storage technologies.
"""

from datetime import datetime, timezone
from typing import Optional, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from logibrew.audit.hashing import GENESIS_HASH, compute_hash, normalize_payload

SHARD_SEPARATOR = "#"


def validate_shipment_id(value: str) -> str:
    """Shipment ids address chains and may not contain the shard separator."""
    if not value or not value.strip():
        raise ValueError("shipment_id must be a non-empty string")
    if SHARD_SEPARATOR in value:
        raise ValueError(f"shipment_id may not contain {SHARD_SEPARATOR!r}")
    return value


class ChainModel(BaseModel):
    """Base for chain schemas: camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ============================================================================
# DECISION RECORD
# ============================================================================


class DecisionRecord(ChainModel):
    """
    Single immutable decision record in a shipment's chain.

    Records are chained like a blockchain:
    record_n.previous_hash = record_(n-1).record_hash

    This allows detection of:
    - Tampered records (hash mismatch)
    - Deleted records (chain broken)
    - Inserted records (sequence mismatch)
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    shipment_id: str = Field(description="Chain this record belongs to")
    sequence: int = Field(ge=0, description="Position in the chain, starting at 0")
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Opaque decision data (action, actor, outcome, inputs)",
    )
    timestamp: int = Field(ge=0, description="Creation time, epoch milliseconds UTC")
    previous_hash: str = Field(description="Hash of the prior record, or GENESIS")
    record_hash: str = Field(alias="hash", description="SHA-256 over the record content")

    @field_validator("shipment_id")
    @classmethod
    def check_shipment_id(cls, v: str) -> str:
        return validate_shipment_id(v)

    @classmethod
    def build(
        cls,
        shipment_id: str,
        sequence: int,
        payload: dict[str, Any],
        timestamp: int,
        previous_hash: str = GENESIS_HASH,
    ) -> "DecisionRecord":
        """
        Create a sealed record.

        The payload is normalized to its canonical JSON form first, so the
        stored payload is exactly what was hashed.

        Raises:
            SerializationError: payload is not canonically serializable
        """
        normalized = normalize_payload(payload)
        return cls(
            shipment_id=shipment_id,
            sequence=sequence,
            payload=normalized,
            timestamp=timestamp,
            previous_hash=previous_hash,
            record_hash=compute_hash(
                shipment_id, sequence, normalized, timestamp, previous_hash
            ),
        )

    @property
    def is_genesis(self) -> bool:
        return self.sequence == 0

    def compute_hash(self) -> str:
        """Recompute the digest from the record's current content."""
        return compute_hash(
            self.shipment_id,
            self.sequence,
            self.payload,
            self.timestamp,
            self.previous_hash,
        )

    def verify_integrity(self) -> bool:
        """Verify that this record has not been tampered with."""
        return self.compute_hash() == self.record_hash

    def to_storage(self) -> dict[str, Any]:
        """Persisted representation (camelCase keys)."""
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_storage(cls, data: dict[str, Any]) -> "DecisionRecord":
        return cls.model_validate(data)


# ============================================================================
# CHAIN STATE
# ============================================================================


class ChainHead(ChainModel):
    """Current tail of a chain, as observed by one read."""

    shipment_id: str
    length: int = Field(ge=0)
    tail_hash: str = GENESIS_HASH
    tail_timestamp: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return self.length == 0


# ============================================================================
# CHAIN VERIFICATION RESULT
# ============================================================================


class ChainVerification(ChainModel):
    """
    Result of verifying the integrity of a chain.

    A broken chain is data, not an error: operators need the exact
    sequence number at fault to locate the corrupted record.
    """

    valid: bool = Field(description="Whether the chain integrity is intact")
    broken_at_sequence: Optional[int] = Field(
        default=None,
        description="Sequence number of the first invalid record (if any)",
    )
    records_checked: int = Field(ge=0, description="Number of records verified")
    error_type: Optional[str] = Field(
        default=None,
        description=(
            "sequence_gap, record_tampered, chain_broken, timestamp_regression, "
            "anchor_mismatch, anchor_missing_record, record_unreadable"
        ),
    )
    error_message: Optional[str] = None
    verified_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class VerifiedChain(ChainModel):
    """A full chain together with its integrity verdict."""

    shipment_id: str
    records: list[DecisionRecord] = Field(default_factory=list)
    verification: ChainVerification
    length: int = Field(ge=0)
    root_hash: Optional[str] = Field(
        default=None,
        description="Hash of the most recent record",
    )


# ============================================================================
# ANCHORING
# ============================================================================


class HashRoot(ChainModel):
    """
    Out-of-band witness of a chain's tail.

    Mirrored to an external document so that a wholesale rewrite of the
    chain store (even one that re-hashes every record) is detectable.
    """

    shipment_id: str
    root_hash: str
    sequence: int = Field(ge=0, description="Sequence of the anchored tail record")
    chain_length: int = Field(ge=1)
    anchored_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    anchor_id: str = Field(description="External document id holding this root")
    version: str = "1.0"

    @classmethod
    def for_record(cls, record: DecisionRecord, anchor_id: str) -> "HashRoot":
        return cls(
            shipment_id=record.shipment_id,
            root_hash=record.record_hash,
            sequence=record.sequence,
            chain_length=record.sequence + 1,
            anchor_id=anchor_id,
        )


class AnchorAck(ChainModel):
    """Anchor sink response."""

    anchor_id: str
    accepted: bool
    location: Optional[str] = None
    error: Optional[str] = None
