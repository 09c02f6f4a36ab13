"""
Low-level canonicalization primitives (internal).

This module provides deterministic JSON encoding and fingerprinting so a
manifest can be identified by content rather than by path or mtime.

Key design decisions:
- Keys are always sorted
- Tuples and lists encode identically
- Dataclasses become dicts
- Floats are rejected; manifests hold strings and integers only
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
from typing import Any


class CanonicalizeError(Exception):
    """Raised when an object cannot be canonicalized."""

    pass


def _encode_value(obj: Any) -> Any:
    """
    Recursively encode a value for canonical JSON serialization.

    Raises:
        CanonicalizeError: If the value has no canonical encoding.
    """
    if obj is None or isinstance(obj, (bool, int, str)):
        return obj
    if isinstance(obj, (list, tuple)):
        return [_encode_value(item) for item in obj]
    if isinstance(obj, dict):
        return {str(k): _encode_value(v) for k, v in sorted(obj.items())}
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return _encode_value(dataclasses.asdict(obj))

    raise CanonicalizeError(f"Cannot canonicalize type: {type(obj).__name__}")


def canonical(obj: Any) -> str:
    """
    Convert an object to a canonical JSON string.

    Example:
        >>> canonical({"b": 1, "a": ("x", "y")})
        '{"a":["x","y"],"b":1}'
    """
    encoded = _encode_value(obj)
    return json.dumps(encoded, sort_keys=True, separators=(",", ":"))


def fingerprint(obj: Any) -> str:
    """
    Compute a stable fingerprint of an object.

    Uses SHA-256 of the canonical representation, truncated to 16 hex
    characters.
    """
    canonical_str = canonical(obj)
    hash_bytes = hashlib.sha256(canonical_str.encode("utf-8")).digest()
    return hash_bytes.hex()[:16]
