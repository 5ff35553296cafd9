"""
Decision Logger - the write path of the decision chain.

Every AI-assisted logistics decision goes through this service.

Usage:
    decisions = DecisionLogger(ChainStore(InMemoryKeyValueStore()))

    record = await decisions.log("SHP-001", {"action": "reroute", "outcome": "compliant"})

    chain = await decisions.get_verified_chain("SHP-001")
    assert chain.verification.valid

No chain head is cached between calls: each log() re-reads the tail and
relies on the chain store's compare-and-append to serialize writers.
"""

import asyncio
import time
from typing import Any, Callable, Optional

import structlog

from logibrew.audit.anchor import AnchorSink
from logibrew.audit.hashing import normalize_payload
from logibrew.audit.repository import ChainStore, check_shipment_id
from logibrew.audit.schemas import (
    ChainVerification,
    DecisionRecord,
    HashRoot,
    VerifiedChain,
)
from logibrew.audit.verifier import ChainVerifier
from logibrew.common.resilience import RetryExhaustedError, retry_with_backoff, run_with_timeout
from logibrew.core.config import settings
from logibrew.core.exceptions import (
    AppendContention,
    ChainConflict,
    StorageTimeout,
    ValidationError,
)

logger = structlog.get_logger(__name__)

Clock = Callable[[], int]


def epoch_millis() -> int:
    """Current time in epoch milliseconds (UTC)."""
    return int(time.time() * 1000)


class DecisionLogger:
    """
    Appends decisions to per-shipment hash chains.

    Concurrency:
    - Concurrent log() calls on one shipment race on the chain store's
      conditional write; the loser re-reads the tail and retries
    - Retries are bounded (max_retries); exhaustion raises AppendContention

    Anchoring:
    - After each append, the new root is mirrored to the anchor sink in a
      background task. Anchor failures are logged and never fail log().
    """

    def __init__(
        self,
        store: ChainStore,
        verifier: Optional[ChainVerifier] = None,
        anchor_sink: Optional[AnchorSink] = None,
        clock: Optional[Clock] = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        anchor_timeout: Optional[float] = None,
        anchor_document_id: Optional[str] = None,
        anchor_enabled: Optional[bool] = None,
    ):
        self._store = store
        self._verifier = verifier or ChainVerifier()
        self._anchor_sink = anchor_sink
        self._clock = clock or epoch_millis

        self.max_retries = settings.append_max_retries if max_retries is None else max_retries
        self.base_delay = settings.append_retry_base_delay if base_delay is None else base_delay
        self.max_delay = settings.append_retry_max_delay if max_delay is None else max_delay
        self.anchor_timeout = (
            settings.anchor_timeout_seconds if anchor_timeout is None else anchor_timeout
        )
        self.anchor_document_id = anchor_document_id or settings.anchor_document_id
        self.anchor_enabled = settings.anchor_enabled if anchor_enabled is None else anchor_enabled

        self._pending_anchors: set[asyncio.Task] = set()

    @property
    def store(self) -> ChainStore:
        return self._store

    # =========================================================================
    # WRITE PATH
    # =========================================================================

    async def log(self, shipment_id: str, payload: dict[str, Any]) -> DecisionRecord:
        """
        Append one decision to a shipment's chain.

        Args:
            shipment_id: Chain to append to
            payload: Opaque decision data; must be JSON-canonicalizable

        Returns:
            The committed DecisionRecord

        Raises:
            SerializationError: payload cannot be hashed (nothing written)
            AppendContention: concurrent writers won every attempt
            StorageTimeout: a storage call timed out
        """
        check_shipment_id(shipment_id)
        normalized = normalize_payload(payload)

        @retry_with_backoff(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            retryable_exceptions=(ChainConflict,),
        )
        async def append_next() -> DecisionRecord:
            head = await self._store.head(shipment_id)

            timestamp = self._clock()
            if head.tail_timestamp is not None and timestamp <= head.tail_timestamp:
                timestamp = head.tail_timestamp + 1

            record = DecisionRecord.build(
                shipment_id=shipment_id,
                sequence=head.length,
                payload=normalized,
                timestamp=timestamp,
                previous_hash=head.tail_hash,
            )
            await self._store.append(shipment_id, record)
            return record

        try:
            record = await append_next()
        except RetryExhaustedError as e:
            raise AppendContention(shipment_id, e.attempts) from e.last_error

        logger.info(
            "decision_logged",
            shipment_id=shipment_id,
            sequence=record.sequence,
            record_hash=record.record_hash[:16],
        )

        self._schedule_anchor(record)
        return record

    # =========================================================================
    # READ PATH
    # =========================================================================

    async def get_verified_chain(self, shipment_id: str) -> VerifiedChain:
        """
        Full chain plus its integrity verdict.

        A record that no longer parses ends the returned records; the
        verdict names its sequence.
        """
        records, unreadable = await self._store.read(shipment_id).readable_prefix()
        verification = self._verifier.verify_readable(records, unreadable)

        if verification.valid:
            logger.info(
                "chain_verification_complete",
                shipment_id=shipment_id,
                records_checked=verification.records_checked,
            )
        else:
            logger.warning(
                "chain_verification_failed",
                shipment_id=shipment_id,
                broken_at_sequence=verification.broken_at_sequence,
                error_type=verification.error_type,
            )

        return VerifiedChain(
            shipment_id=shipment_id,
            records=records,
            verification=verification,
            length=len(records),
            root_hash=records[-1].record_hash if records else None,
        )

    async def verify_against_anchor(self, shipment_id: str, root: HashRoot) -> ChainVerification:
        """Verify the chain and confirm it still carries an anchored root."""
        if root.shipment_id != shipment_id:
            raise ValidationError(
                f"Hash root belongs to {root.shipment_id}, not {shipment_id}",
                field="shipmentId",
            )

        records, unreadable = await self._store.read(shipment_id).readable_prefix()
        if unreadable is None:
            verification = self._verifier.verify_against_root(records, root)
        else:
            verification = self._verifier.verify_readable(records, unreadable)

        if not verification.valid:
            logger.warning(
                "anchor_verification_failed",
                shipment_id=shipment_id,
                anchor_id=root.anchor_id,
                broken_at_sequence=verification.broken_at_sequence,
                error_type=verification.error_type,
            )
        return verification

    # =========================================================================
    # ANCHORING
    # =========================================================================

    def anchor_id_for(self, shipment_id: str) -> str:
        return self.anchor_document_id or f"shipment-{shipment_id}"

    def _schedule_anchor(self, record: DecisionRecord) -> None:
        if self._anchor_sink is None or not self.anchor_enabled:
            return

        task = asyncio.create_task(
            self._anchor(record),
            name=f"anchor-{record.shipment_id}-{record.sequence}",
        )
        self._pending_anchors.add(task)
        task.add_done_callback(self._pending_anchors.discard)

    async def _anchor(self, record: DecisionRecord) -> None:
        anchor_id = self.anchor_id_for(record.shipment_id)
        root = HashRoot.for_record(record, anchor_id)
        metadata = {"recordTimestamp": record.timestamp}

        try:
            ack = await run_with_timeout(
                self._anchor_sink.store(anchor_id, root, metadata),
                self.anchor_timeout,
                on_timeout=lambda: StorageTimeout("anchor", self.anchor_timeout, anchor_id),
                operation="anchor_store",
            )
        except asyncio.CancelledError:
            logger.warning(
                "anchor_failed",
                shipment_id=record.shipment_id,
                sequence=record.sequence,
                reason="cancelled",
            )
            raise
        except Exception as e:
            logger.error(
                "anchor_failed",
                shipment_id=record.shipment_id,
                sequence=record.sequence,
                reason=type(e).__name__,
                error=str(e)[:200],
            )
            return

        if not ack.accepted:
            logger.warning(
                "anchor_failed",
                shipment_id=record.shipment_id,
                sequence=record.sequence,
                reason="rejected",
                error=ack.error,
            )
            return

        logger.debug(
            "anchor_mirrored",
            shipment_id=record.shipment_id,
            sequence=record.sequence,
            anchor_id=anchor_id,
        )

    @property
    def pending_anchors(self) -> int:
        return len(self._pending_anchors)

    async def drain_anchors(self) -> None:
        """Wait for in-flight anchor tasks (shutdown, tests)."""
        while self._pending_anchors:
            await asyncio.gather(*list(self._pending_anchors), return_exceptions=True)
