"""Tests for chain verification.

A broken chain is reported as data with the first offending sequence.
"""

import pytest
from hypothesis import assume, given
from hypothesis import strategies as st

from logibrew.audit.hashing import GENESIS_HASH
from logibrew.audit.schemas import DecisionRecord, HashRoot
from logibrew.audit.verifier import ChainVerifier
from logibrew.core.exceptions import UnreadableRecord


json_values = st.recursive(
    st.none() | st.booleans() | st.integers() | st.floats() | st.text(max_size=8),
    lambda children: st.lists(children, max_size=3)
    | st.dictionaries(st.text(max_size=5), children, max_size=3),
    max_leaves=8,
)


def build_chain(length: int, shipment_id: str = "S1", start_ts: int = 1_000) -> list[DecisionRecord]:
    records = []
    previous = GENESIS_HASH
    for i in range(length):
        record = DecisionRecord.build(shipment_id, i, {"index": i}, start_ts + i * 10, previous)
        records.append(record)
        previous = record.record_hash
    return records


def replace(record: DecisionRecord, **changes) -> DecisionRecord:
    """Copy a frozen record with raw field changes (no re-hashing)."""
    return record.model_copy(update=changes)


def reseal(record: DecisionRecord, **changes) -> DecisionRecord:
    """Copy a record with changes and a freshly computed hash."""
    updated = record.model_copy(update=changes)
    return updated.model_copy(update={"record_hash": updated.compute_hash()})


@pytest.fixture
def verifier() -> ChainVerifier:
    return ChainVerifier()


class TestChainVerifier:
    """Tests for ChainVerifier.verify."""

    def test_empty_chain_is_valid(self, verifier):
        result = verifier.verify([])
        assert result.valid is True
        assert result.records_checked == 0

    def test_valid_chain(self, verifier):
        result = verifier.verify(build_chain(6))
        assert result.valid is True
        assert result.records_checked == 6
        assert result.broken_at_sequence is None

    def test_tampered_payload_reports_that_record(self, verifier):
        records = build_chain(5)
        records[2] = replace(records[2], payload={"index": 99})

        result = verifier.verify(records)

        assert result.valid is False
        assert result.error_type == "record_tampered"
        assert result.broken_at_sequence == 2
        assert result.records_checked == 2

    def test_resealed_record_breaks_the_next_link(self, verifier):
        """Re-hashing a tampered record moves the break to its successor."""
        records = build_chain(5)
        records[2] = reseal(records[2], payload={"index": 99})

        result = verifier.verify(records)

        assert result.error_type == "chain_broken"
        assert result.broken_at_sequence == 3

    def test_first_record_must_link_to_genesis(self, verifier):
        records = build_chain(3)
        records[0] = reseal(records[0], previous_hash="f" * 64)

        result = verifier.verify(records)

        assert result.error_type == "chain_broken"
        assert result.broken_at_sequence == 0

    def test_missing_record_is_a_sequence_gap(self, verifier):
        records = build_chain(5)
        del records[3]

        result = verifier.verify(records)

        assert result.error_type == "sequence_gap"
        assert result.broken_at_sequence == 3

    def test_chain_must_start_at_expected_sequence(self, verifier):
        records = build_chain(5)[1:]

        result = verifier.verify(records, start_sequence=0)

        assert result.error_type == "sequence_gap"
        assert result.broken_at_sequence == 0

    def test_timestamp_regression(self, verifier):
        records = build_chain(4)
        records[2] = reseal(records[2], timestamp=records[1].timestamp)
        records[3] = reseal(records[3], previous_hash=records[2].record_hash)

        result = verifier.verify(records)

        assert result.error_type == "timestamp_regression"
        assert result.broken_at_sequence == 2

    def test_slice_checks_expected_previous_hash(self, verifier):
        records = build_chain(6)

        assert verifier.verify(records[3:]).valid is True
        assert verifier.verify(
            records[3:],
            expected_previous_hash=records[2].record_hash,
        ).valid is True

        result = verifier.verify(records[3:], expected_previous_hash="0" * 64)
        assert result.error_type == "chain_broken"
        assert result.broken_at_sequence == 3

    @pytest.mark.parametrize(
        "payload",
        [
            {"index": float("nan")},
            {"index": float("inf")},
            {1: "non-string key"},
        ],
    )
    def test_unserializable_payload_is_tampering(self, verifier, payload):
        """A payload that could never have been sealed is reported, not raised."""
        records = build_chain(4)
        records[1] = replace(records[1], payload=payload)

        result = verifier.verify(records)

        assert result.valid is False
        assert result.error_type == "record_tampered"
        assert result.broken_at_sequence == 1


    @given(value=json_values)
    def test_any_payload_edit_is_tampering(self, value):
        assume(not (isinstance(value, (int, float)) and value == 1))
        records = build_chain(3)
        records[1] = replace(records[1], payload={"index": value})

        result = ChainVerifier().verify(records)

        assert result.error_type == "record_tampered"
        assert result.broken_at_sequence == 1


class TestVerifyReadable:
    """Tests for verification of a chain cut short by an unparseable record."""

    def test_fully_readable_chain(self, verifier):
        assert verifier.verify_readable(build_chain(3)).valid is True

    def test_unreadable_record_is_the_break(self, verifier):
        records = build_chain(2)
        unreadable = UnreadableRecord("S1", 2, "payload: Input should be a valid dictionary")

        result = verifier.verify_readable(records, unreadable)

        assert result.valid is False
        assert result.error_type == "record_unreadable"
        assert result.broken_at_sequence == 2
        assert result.records_checked == 2
        assert "valid dictionary" in result.error_message

    def test_earlier_break_takes_precedence(self, verifier):
        records = build_chain(3)
        records[1] = replace(records[1], payload={"index": 99})
        unreadable = UnreadableRecord("S1", 3, "timestamp: Input should be a valid integer")

        result = verifier.verify_readable(records, unreadable)

        assert result.error_type == "record_tampered"
        assert result.broken_at_sequence == 1

    def test_unreadable_genesis(self, verifier):
        result = verifier.verify_readable([], UnreadableRecord("S1", 0, "not a record"))

        assert result.error_type == "record_unreadable"
        assert result.broken_at_sequence == 0
        assert result.records_checked == 0


class TestVerifyAgainstRoot:
    """Tests for anchored-root verification."""

    def test_matching_root(self, verifier):
        records = build_chain(4)
        root = HashRoot.for_record(records[2], anchor_id="shipment-S1")

        assert verifier.verify_against_root(records, root).valid is True

    def test_wholesale_rewrite_is_detected(self, verifier):
        """A chain rebuilt from scratch verifies on its own but not against the root."""
        original = build_chain(4)
        root = HashRoot.for_record(original[-1], anchor_id="shipment-S1")
        rewritten = build_chain(4, start_ts=5_000)

        assert verifier.verify(rewritten).valid is True

        result = verifier.verify_against_root(rewritten, root)
        assert result.valid is False
        assert result.error_type == "anchor_mismatch"
        assert result.broken_at_sequence == 3

    def test_truncated_chain_is_missing_anchored_record(self, verifier):
        records = build_chain(4)
        root = HashRoot.for_record(records[3], anchor_id="shipment-S1")

        result = verifier.verify_against_root(records[:2], root)

        assert result.error_type == "anchor_missing_record"
        assert result.broken_at_sequence == 2
