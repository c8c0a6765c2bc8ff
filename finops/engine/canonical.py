"""
Canonical JSON and content hashing.

Every idempotency key, report hash and canonicalization block in the package
is produced here. ``canonicalize`` sorts mapping keys recursively and keeps
sequence order; ``hash_canonical`` is SHA-256 over the compact canonical JSON
text, as lowercase hex. Nothing in this module reads the clock or any random
source.

Digests are memoized in a bounded LRU cache keyed by the canonical text
itself, so structurally equal values share one cache entry regardless of key
insertion order.
"""

import hashlib
import json
import math
from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import BaseModel

CANONICAL_ALGORITHM = "sha256"
CANONICAL_FORMAT = "json-stable"
HASH_CACHE_SIZE = 4096


def canonicalize(value: Any) -> Any:
    """
    Return a JSON-compatible copy of ``value`` with every mapping key-sorted.

    Pydantic models are dumped in JSON mode first and enums collapse to their
    values. Integral floats become ints and non-finite floats become None,
    matching how JSON numbers round-trip.

    Example:
        >>> canonicalize({"b": 1, "a": {"d": [2, 1], "c": None}})
        {'a': {'c': None, 'd': [2, 1]}, 'b': 1}
    """
    if isinstance(value, BaseModel):
        return canonicalize(value.model_dump(mode="json"))
    if isinstance(value, dict):
        return {str(key): canonicalize(value[key]) for key in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    if isinstance(value, Enum):
        return canonicalize(value.value)
    if isinstance(value, bool) or value is None or isinstance(value, (int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(value) if value.is_integer() else value
    raise TypeError(f"Value of type {type(value).__name__} is not JSON serializable")


def canonical_json(value: Any) -> str:
    """Compact canonical JSON text, the exact input to every hash."""
    return json.dumps(canonicalize(value), separators=(",", ":"), ensure_ascii=False)


def serialize_canonical(value: Any) -> str:
    """Pretty-printed canonical JSON used for artifacts and fixtures."""
    return json.dumps(canonicalize(value), indent=2, ensure_ascii=False)


@lru_cache(maxsize=HASH_CACHE_SIZE)
def _sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_canonical(value: Any) -> str:
    """SHA-256 hex digest of the canonical JSON form of ``value``."""
    return _sha256_hex(canonical_json(value))


def sha256_text(text: str) -> str:
    """SHA-256 hex digest of a plain string (used for derived identifiers)."""
    return _sha256_hex(text)


def canonicalization_block(value: Any) -> dict[str, str]:
    """Canonicalization block stamped onto bundles and report envelopes."""
    return {
        "algorithm": CANONICAL_ALGORITHM,
        "canonical_format": CANONICAL_FORMAT,
        "canonical_hash": hash_canonical(value),
    }


def document_hash(document: BaseModel) -> str:
    """Hash of a stamped document, computed over everything except its canonicalization block."""
    return hash_canonical(document.model_dump(mode="json", exclude={"canonicalization"}))


def clear_hash_cache() -> None:
    _sha256_hex.cache_clear()
