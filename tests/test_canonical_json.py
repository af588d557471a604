"""Tests for the canonical JSON encoder."""

import unicodedata

import pytest

from Metaport.canonical_json import (
    CanonicalJSONError,
    canonical_json_bytes,
    compute_canonical_hash,
)


class TestKeyOrdering:
    def test_keys_sorted_lexicographically(self):
        payload1 = {"z": 1, "a": 2, "m": 3}
        payload2 = {"a": 2, "m": 3, "z": 1}

        assert canonical_json_bytes(payload1) == canonical_json_bytes(payload2)
        assert canonical_json_bytes(payload1) == b'{"a":2,"m":3,"z":1}'

    def test_nested_objects_keys_sorted(self):
        payload = {"outer_z": {"b": 1, "a": 2}, "outer_a": [{"y": 1, "x": 2}]}
        assert canonical_json_bytes(payload) == b'{"outer_a":[{"x":2,"y":1}],"outer_z":{"a":2,"b":1}}'

    def test_hash_identical_for_different_key_orders(self):
        h1 = compute_canonical_hash({"guid": "g", "typeName": "t"})
        h2 = compute_canonical_hash({"typeName": "t", "guid": "g"})
        assert h1 == h2
        assert len(h1) == 32


class TestValues:
    def test_unicode_normalized_to_nfc(self):
        decomposed = unicodedata.normalize("NFD", "café")
        assert canonical_json_bytes({"name": decomposed}) == canonical_json_bytes({"name": "café"})

    def test_integral_floats_encode_as_ints(self):
        assert canonical_json_bytes({"n": 3.0}) == canonical_json_bytes({"n": 3})

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_rejected(self, value):
        with pytest.raises(CanonicalJSONError):
            canonical_json_bytes({"n": value})

    def test_unsupported_type_rejected(self):
        with pytest.raises(CanonicalJSONError):
            canonical_json_bytes({"s": {1, 2}})

    def test_none_encodes_as_empty_object(self):
        assert canonical_json_bytes(None) == b"{}"

    def test_tuples_encode_as_lists(self):
        assert canonical_json_bytes({"a": (1, 2)}) == b'{"a":[1,2]}'
