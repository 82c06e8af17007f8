"""Tests for the pgvector text codec."""

from __future__ import annotations

import math

import pytest

from memory.codec import VectorCodec


class TestEncode:
    def test_renders_bracketed_literal(self):
        assert VectorCodec().encode([1.0, 0.5, -2]) == "[1.0,0.5,-2.0]"

    def test_round_trip_preserves_values(self):
        codec = VectorCodec(dimension=4)
        vector = [0.1, -0.2, 1e-8, 123.456]

        decoded = codec.decode(codec.encode(vector))

        assert decoded is not None
        assert all(math.isclose(a, b) for a, b in zip(decoded, vector))

    @pytest.mark.parametrize(
        "vector",
        [[], [1.0, float("nan")], [float("inf"), 0.0]],
    )
    def test_rejects_unencodable_vectors(self, vector):
        with pytest.raises(ValueError):
            VectorCodec().encode(vector)

    def test_rejects_wrong_dimension(self):
        with pytest.raises(ValueError, match="expected 3 dimensions"):
            VectorCodec(dimension=3).encode([1.0, 2.0])


class TestDecode:
    def test_null_means_not_searchable(self):
        assert VectorCodec().decode(None) is None

    def test_tolerates_whitespace(self):
        assert VectorCodec().decode(" [ 1.5, -2 ] ") == [1.5, -2.0]

    @pytest.mark.parametrize(
        "raw",
        ["", "[]", "1,2,3", "[1,2", "[a,b]", "[1,,2]", "[1,nan]", "[inf,1]"],
    )
    def test_malformed_values_decode_to_none(self, raw):
        assert VectorCodec().decode(raw) is None

    def test_wrong_dimension_decodes_to_none(self):
        assert VectorCodec(dimension=3).decode("[1,2]") is None
