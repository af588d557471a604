"""Canonical JSON encoding for entities and type definitions.

Deterministic encoding with:
- UTF-8 NFC Unicode normalization of keys and strings
- Lexicographic key ordering
- Compact separators
- Finite numbers only (NaN/Infinity rejected)

Equal content always encodes to identical bytes, which is what transform
determinism, type-definition identity checks and audit details rely on.
"""

from __future__ import annotations

import hashlib
import math
import unicodedata
from collections.abc import Mapping
from typing import Any

import orjson


class CanonicalJSONError(ValueError):
    """Raised when input cannot be encoded canonically."""


def _normalize_unicode(value: str) -> str:
    return unicodedata.normalize("NFC", value)


def _canonicalize_value(value: Any) -> Any:
    """Recursively canonicalize a JSON-compatible value.

    Raises:
        CanonicalJSONError: On non-finite floats or unsupported types
    """
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str):
        return _normalize_unicode(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise CanonicalJSONError(f"Non-finite number not permitted: {value}")
        # 3.0 and 3 must encode the same way
        return int(value) if value.is_integer() else value
    if isinstance(value, list | tuple):
        return [_canonicalize_value(item) for item in value]
    if isinstance(value, Mapping):
        return {
            _normalize_unicode(str(key)): _canonicalize_value(val)
            for key, val in value.items()
        }
    raise CanonicalJSONError(
        f"Unsupported type {type(value).__name__} in canonical JSON. "
        "Only mappings, lists, strings, numbers, booleans and null are permitted."
    )


def canonical_json_bytes(payload: Any) -> bytes:
    """Encode payload as canonical JSON bytes.

    Args:
        payload: JSON-compatible value; None encodes as ``{}``

    Raises:
        CanonicalJSONError: If payload contains invalid types or values
    """
    if payload is None:
        payload = {}
    try:
        return orjson.dumps(_canonicalize_value(payload), option=orjson.OPT_SORT_KEYS)
    except orjson.JSONEncodeError as exc:
        raise CanonicalJSONError(str(exc)) from exc


def compute_canonical_hash(payload: Any) -> bytes:
    """SHA-256 digest of the canonical JSON encoding."""
    return hashlib.sha256(canonical_json_bytes(payload)).digest()


__all__ = [
    "CanonicalJSONError",
    "canonical_json_bytes",
    "compute_canonical_hash",
]
