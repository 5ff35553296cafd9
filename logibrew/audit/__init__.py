"""
Decision chain: hashing, sharded storage, verification and anchoring.

Usage:
    from logibrew.audit import ChainStore, DecisionLogger
    from logibrew.storage import InMemoryKeyValueStore

    decisions = DecisionLogger(ChainStore(InMemoryKeyValueStore()))
    record = await decisions.log("SHP-001", {"outcome": "compliant"})
"""

from logibrew.audit.anchor import AnchorSink, HttpAnchorSink, InMemoryAnchorSink
from logibrew.audit.hashing import GENESIS_HASH, canonical_payload, compute_hash
from logibrew.audit.repository import ChainSlice, ChainStore
from logibrew.audit.schemas import (
    AnchorAck,
    ChainHead,
    ChainVerification,
    DecisionRecord,
    HashRoot,
    VerifiedChain,
)
from logibrew.audit.service import DecisionLogger, epoch_millis
from logibrew.audit.verifier import ChainVerifier

__all__ = [
    # Hashing
    "GENESIS_HASH",
    "canonical_payload",
    "compute_hash",
    # Schemas
    "AnchorAck",
    "ChainHead",
    "ChainVerification",
    "DecisionRecord",
    "HashRoot",
    "VerifiedChain",
    # Services
    "AnchorSink",
    "ChainSlice",
    "ChainStore",
    "ChainVerifier",
    "DecisionLogger",
    "HttpAnchorSink",
    "InMemoryAnchorSink",
    "epoch_millis",
]
