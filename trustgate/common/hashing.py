"""
Canonical Hashing

Deterministic serialization of event payloads and their content hash.

The canonical form (sorted map keys, no whitespace) is what makes two
payloads with the same content hash identically regardless of field order.
"""

import hashlib
import json
import math
from typing import Any

from .exceptions import IntegrityComputeError

# Caller-supplied identifiers are not part of the reading itself
HASH_EXCLUDED_KEYS = frozenset({"eventId"})


def canonical_json(value: Any) -> str:
    """
    Serialize a value to its canonical JSON text.

    Primitives render as their JSON literal, lists element-wise in order,
    mappings with keys sorted lexicographically.

    Raises:
        IntegrityComputeError: If the value contains a non-JSON type
    """
    if value is None or isinstance(value, (bool, int, str)):
        return json.dumps(value, ensure_ascii=False)

    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise IntegrityComputeError(f"non-finite number: {value}")
        # Integral floats render like integers so 60.0 and 60 agree
        if value.is_integer():
            return json.dumps(int(value))
        return json.dumps(value)

    if isinstance(value, (list, tuple)):
        return "[" + ",".join(canonical_json(v) for v in value) + "]"

    if isinstance(value, dict):
        parts = []
        for key in sorted(value.keys(), key=str):
            if not isinstance(key, str):
                raise IntegrityComputeError(f"non-string key: {key!r}")
            parts.append(json.dumps(key, ensure_ascii=False) + ":" + canonical_json(value[key]))
        return "{" + ",".join(parts) + "}"

    raise IntegrityComputeError(f"unsupported type {type(value).__name__}")


def content_hash(payload: dict[str, Any]) -> str:
    """
    Compute the content hash of an event payload.

    Args:
        payload: Raw submitted payload

    Returns:
        "0x" followed by the 64 hex chars of the SHA-256 digest

    Raises:
        IntegrityComputeError: If the payload cannot be canonicalized
    """
    if not isinstance(payload, dict):
        raise IntegrityComputeError("payload must be a mapping")

    content = {k: v for k, v in payload.items() if k not in HASH_EXCLUDED_KEYS}
    try:
        digest = hashlib.sha256(canonical_json(content).encode("utf-8")).hexdigest()
    except IntegrityComputeError:
        raise
    except (ValueError, TypeError) as e:
        raise IntegrityComputeError(str(e)) from e
    return "0x" + digest
