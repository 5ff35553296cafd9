"""
In-memory key/value store.

NOT FOR PRODUCTION USE - data is lost on restart.

Values are kept as JSON text so callers can never mutate stored state
through a returned object, the same way a real backend behaves. Every
operation yields to the event loop once, so concurrent coroutines
interleave the way they would against a networked store.
"""

import asyncio
import json
from typing import Any, Optional

import structlog

from logibrew.core.exceptions import VersionConflict
from logibrew.storage.base import KeyValueStore, StoredValue

logger = structlog.get_logger(__name__)


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed versioned store guarded by an asyncio lock."""

    name = "memory"

    def __init__(self):
        self._data: dict[str, tuple[str, int]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[StoredValue]:
        await asyncio.sleep(0)
        entry = self._data.get(key)
        if entry is None:
            return None
        text, version = entry
        return StoredValue(value=json.loads(text), version=version)

    async def put(
        self,
        key: str,
        value: dict[str, Any],
        if_match: Optional[int] = None,
    ) -> int:
        await asyncio.sleep(0)
        text = json.dumps(value)

        async with self._lock:
            current = self._data.get(key)
            current_version = current[1] if current else 0

            if if_match is not None and if_match != current_version:
                raise VersionConflict(key, if_match, current_version or None)

            new_version = current_version + 1
            self._data[key] = (text, new_version)

        logger.debug("kv_put", backend=self.name, key=key, version=new_version)
        return new_version

    async def list(self, prefix: str = "") -> list[str]:
        await asyncio.sleep(0)
        return sorted(k for k in self._data if k.startswith(prefix))

    # =========================================================================
    # OPERATIONS / TAMPER SIMULATION
    # =========================================================================

    def raw(self, key: str) -> Optional[dict[str, Any]]:
        """Stored value without going through the async API."""
        entry = self._data.get(key)
        return json.loads(entry[0]) if entry else None

    def overwrite(self, key: str, value: dict[str, Any]) -> None:
        """
        Replace a stored value in place, bypassing version checks.

        Simulates an attacker (or a faulty process) with direct write
        access to the backing store.
        """
        _, version = self._data[key]
        self._data[key] = (json.dumps(value), version)
        logger.warning("kv_overwritten", backend=self.name, key=key)

    def delete(self, key: str) -> None:
        """Remove a key, bypassing version checks."""
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)
