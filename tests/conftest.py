"""
Pytest Configuration and Fixtures.

Provides reusable fixtures for testing decision chain components.
"""

import os

# Set testing mode before importing the package
os.environ["ENVIRONMENT"] = "testing"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["LOG_FORMAT"] = "console"
os.environ.pop("ANCHOR_BASE_URL", None)
os.environ.pop("ANCHOR_DOCUMENT_ID", None)

import pytest
import pytest_asyncio

from logibrew.audit import ChainStore, DecisionLogger, InMemoryAnchorSink
from logibrew.storage import InMemoryKeyValueStore

# 2023-11-14T22:13:20Z
BASE_TIME_MS = 1_700_000_000_000
HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS


class FakeClock:
    """Deterministic epoch-millisecond clock; each call advances by step."""

    def __init__(self, start: int = BASE_TIME_MS, step: int = 1000):
        self.now = start
        self.step = step

    def __call__(self) -> int:
        value = self.now
        self.now += self.step
        return value

    def set(self, value: int) -> None:
        self.now = value


# ============================================================================
# STORAGE FIXTURES
# ============================================================================


@pytest.fixture
def kv() -> InMemoryKeyValueStore:
    """Fresh in-memory key/value store."""
    return InMemoryKeyValueStore()


@pytest.fixture
def chain_store(kv) -> ChainStore:
    """Chain store with small shards so tests cross shard boundaries."""
    return ChainStore(kv, shard_size=4, namespace="chain", timeout_seconds=1.0)


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def anchor_sink() -> InMemoryAnchorSink:
    return InMemoryAnchorSink()


@pytest_asyncio.fixture
async def decision_logger(chain_store, anchor_sink, clock):
    """Decision logger with zero backoff and an in-memory anchor sink."""
    decisions = DecisionLogger(
        chain_store,
        anchor_sink=anchor_sink,
        clock=clock,
        base_delay=0.0,
        max_delay=0.0,
        anchor_enabled=True,
    )
    yield decisions
    await decisions.drain_anchors()


@pytest.fixture
def sample_payload() -> dict:
    """Typical decision payload."""
    return {
        "action": "reroute",
        "actor": "planner@logibrew.example",
        "outcome": "compliant",
        "delayCause": "weather",
        "inputs": {"origin": "SGSIN", "destination": "NLRTM", "mode": "sea"},
        "aiInsight": "Typhoon expected near the origin port within 48 hours.",
    }
