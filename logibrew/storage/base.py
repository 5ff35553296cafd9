"""
Storage collaborator contract.

The chain store only ever relies on three primitives:
- get(key)
- put(key, value, if_match=expected_version)   (conditional write)
- list(prefix)                                   (shard / chain discovery)

Versions start at 1 for a freshly created key. if_match semantics:
- None: unconditional write
- 0:    create-only (key must not exist)
- n:    stored version must equal n
A failed condition raises VersionConflict.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, Field


class StoredValue(BaseModel):
    """A value together with the version it was read at."""

    value: dict[str, Any]
    version: int = Field(ge=1)


class KeyValueStore(ABC):
    """Versioned key/value storage with conditional writes."""

    name: str = "abstract"

    @abstractmethod
    async def get(self, key: str) -> Optional[StoredValue]:
        """Return the stored value and its version, or None."""

    @abstractmethod
    async def put(
        self,
        key: str,
        value: dict[str, Any],
        if_match: Optional[int] = None,
    ) -> int:
        """
        Write value, returning the new version.

        Raises:
            VersionConflict: if_match does not match the stored version
        """

    @abstractmethod
    async def list(self, prefix: str = "") -> list[str]:
        """Sorted keys starting with prefix."""

    async def close(self) -> None:
        """Release backend resources."""
