"""
Chain Verifier.

Walks a chain in order and confirms, for every record:
1. Sequence numbers are contiguous
2. The record's hash matches its contents
3. previousHash equals the recomputed hash of the record before it
4. Timestamps strictly increase

A payload altered into a form that cannot be canonicalized counts as
tampered; a record that no longer parses at all is reported as
record_unreadable at its position.

The verifier is read-only. It reports where a chain breaks; it never
raises for a broken chain.
"""

from typing import Iterable, Optional

from logibrew.audit.hashing import GENESIS_HASH
from logibrew.audit.schemas import ChainVerification, DecisionRecord, HashRoot
from logibrew.core.exceptions import SerializationError, UnreadableRecord


class ChainVerifier:
    """Pure integrity checks over a sequence of decision records."""

    def verify(
        self,
        records: Iterable[DecisionRecord],
        expected_previous_hash: Optional[str] = None,
        start_sequence: Optional[int] = None,
    ) -> ChainVerification:
        """
        Verify the cryptographic integrity of a chain or chain slice.

        Args:
            records: Records in storage order
            expected_previous_hash: Hash the first record must link to, for
                slices that start after sequence 0
            start_sequence: Sequence the first record must carry (default:
                whatever the first record claims)

        Returns:
            ChainVerification; brokenAtSequence is the first offending record
        """
        records = list(records)
        if not records:
            return ChainVerification(valid=True, records_checked=0)

        expected_sequence = records[0].sequence if start_sequence is None else start_sequence
        if expected_sequence == 0:
            expected_hash: Optional[str] = GENESIS_HASH
        else:
            expected_hash = expected_previous_hash
        previous_timestamp: Optional[int] = None

        for i, record in enumerate(records):
            if record.sequence != expected_sequence:
                return ChainVerification(
                    valid=False,
                    records_checked=i,
                    broken_at_sequence=expected_sequence,
                    error_type="sequence_gap",
                    error_message=f"Expected sequence {expected_sequence}, got {record.sequence}",
                )

            try:
                recomputed = record.compute_hash()
            except SerializationError:
                # Payload altered into a form that cannot have been sealed
                recomputed = None
            if recomputed != record.record_hash:
                return ChainVerification(
                    valid=False,
                    records_checked=i,
                    broken_at_sequence=record.sequence,
                    error_type="record_tampered",
                    error_message=f"Record tampered at sequence {record.sequence}",
                )

            if expected_hash is not None and record.previous_hash != expected_hash:
                return ChainVerification(
                    valid=False,
                    records_checked=i,
                    broken_at_sequence=record.sequence,
                    error_type="chain_broken",
                    error_message=(
                        f"Chain broken at sequence {record.sequence}: expected previousHash "
                        f"{expected_hash[:16]}..., got {record.previous_hash[:16]}..."
                    ),
                )

            if previous_timestamp is not None and record.timestamp <= previous_timestamp:
                return ChainVerification(
                    valid=False,
                    records_checked=i,
                    broken_at_sequence=record.sequence,
                    error_type="timestamp_regression",
                    error_message=(
                        f"Timestamp {record.timestamp} at sequence {record.sequence} "
                        f"does not follow {previous_timestamp}"
                    ),
                )

            expected_hash = recomputed
            expected_sequence += 1
            previous_timestamp = record.timestamp

        return ChainVerification(valid=True, records_checked=len(records))

    def verify_readable(
        self,
        records: Iterable[DecisionRecord],
        unreadable: Optional[UnreadableRecord] = None,
    ) -> ChainVerification:
        """
        Verify a full chain read up to its first unparseable record.

        Breaks found in the readable prefix take precedence; otherwise the
        unreadable record is the first offending one.
        """
        records = list(records)
        result = self.verify(records, start_sequence=0)
        if not result.valid or unreadable is None:
            return result

        return ChainVerification(
            valid=False,
            records_checked=len(records),
            broken_at_sequence=unreadable.sequence,
            error_type="record_unreadable",
            error_message=f"Record {unreadable.sequence} is unreadable: {unreadable.reason}",
        )

    def verify_against_root(
        self,
        records: Iterable[DecisionRecord],
        root: HashRoot,
    ) -> ChainVerification:
        """
        Verify a full chain and confirm it still contains an anchored root.

        A chain rewritten wholesale (every record re-hashed) passes verify()
        but no longer carries the root hash that was witnessed out-of-band.
        """
        records = list(records)
        result = self.verify(records, start_sequence=0)
        if not result.valid:
            return result

        if root.sequence >= len(records):
            return ChainVerification(
                valid=False,
                records_checked=len(records),
                broken_at_sequence=len(records),
                error_type="anchor_missing_record",
                error_message=(
                    f"Anchored sequence {root.sequence} is beyond the chain "
                    f"length {len(records)}"
                ),
            )

        anchored = records[root.sequence]
        if anchored.record_hash != root.root_hash:
            return ChainVerification(
                valid=False,
                records_checked=len(records),
                broken_at_sequence=root.sequence,
                error_type="anchor_mismatch",
                error_message=(
                    f"Record {root.sequence} hash {anchored.record_hash[:16]}... does not "
                    f"match anchored root {root.root_hash[:16]}..."
                ),
            )

        return result
