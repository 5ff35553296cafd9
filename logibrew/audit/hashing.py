"""
Hash Engine.

Computes the content hash of one decision record, linked to the hash of
the previous record in the same chain.

Canonical form: the JSON array

    [shipmentId, "<sequence>", payload, "<timestamp>", previousHash]

serialized with sorted keys, no insignificant whitespace, UTF-8, and
NaN/Infinity rejected. Integers are rendered as base-10 strings so the
same logical record always produces the same digest.
"""

import hashlib
import json
from typing import Any, Mapping

from logibrew.core.exceptions import SerializationError

GENESIS_HASH = "GENESIS"
HASH_ALGORITHM = "sha256"


def _check_keys(value: Any, path: str = "payload") -> None:
    """Reject non-string mapping keys (json would silently coerce them)."""
    if isinstance(value, Mapping):
        for key, item in value.items():
            if not isinstance(key, str):
                raise SerializationError(
                    f"non-string key {key!r} at {path}",
                    details={"path": path},
                )
            _check_keys(item, f"{path}.{key}")
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _check_keys(item, f"{path}[{index}]")


def _dumps(value: Any) -> str:
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def canonical_payload(payload: Any) -> str:
    """
    Canonical JSON text of a decision payload.

    Raises:
        SerializationError: payload is not a mapping, has non-string keys,
            contains NaN/Infinity, or holds values JSON cannot encode.
    """
    if not isinstance(payload, Mapping):
        raise SerializationError(f"payload must be a mapping, got {type(payload).__name__}")

    _check_keys(payload)

    try:
        return _dumps(payload)
    except (TypeError, ValueError) as e:
        raise SerializationError(str(e)) from e


def normalize_payload(payload: Any) -> dict:
    """Payload as it will be stored: the JSON round-trip of its canonical form."""
    return json.loads(canonical_payload(payload))


def compute_hash(
    shipment_id: str,
    sequence: int,
    payload: Mapping[str, Any],
    timestamp: int,
    previous_hash: str,
) -> str:
    """
    SHA-256 hex digest over the canonical serialization of the five inputs.

    Pure function; the only failure mode is SerializationError.
    """
    canonical_payload(payload)

    material = _dumps([
        shipment_id,
        f"{int(sequence):d}",
        payload,
        f"{int(timestamp):d}",
        previous_hash,
    ])
    return hashlib.new(HASH_ALGORITHM, material.encode("utf-8")).hexdigest()
