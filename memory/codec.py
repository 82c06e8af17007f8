"""Text codec for pgvector ``vector`` values.

pgvector accepts and prints vectors as bracketed literals (``[0.1,0.2,0.3]``).
Stores bind embeddings through :meth:`VectorCodec.encode` and read them back as
``embedding::text`` through :meth:`VectorCodec.decode`, so the conversion is the
same on every path and never depends on driver-specific adapter objects.
"""
from __future__ import annotations

import math
from typing import List, Optional, Sequence


class VectorCodec:
    """Encode/decode embeddings to the pgvector text representation."""

    def __init__(self, dimension: Optional[int] = None):
        self.dimension = dimension

    def encode(self, vector: Sequence[float]) -> str:
        """Render ``vector`` as ``[v1,v2,...]``.

        Raises ``ValueError`` for empty, non-finite or wrongly sized vectors:
        these are caller bugs, not storage states.
        """
        values = [float(v) for v in vector]
        if not values:
            raise ValueError("cannot encode an empty vector")
        if self.dimension is not None and len(values) != self.dimension:
            raise ValueError(
                f"expected {self.dimension} dimensions, got {len(values)}"
            )
        if not all(math.isfinite(v) for v in values):
            raise ValueError("vector contains non-finite values")
        return "[" + ",".join(repr(v) for v in values) + "]"

    def decode(self, value: Optional[str]) -> Optional[List[float]]:
        """Parse a stored literal; ``None`` means "not searchable yet".

        NULL, malformed, empty, non-finite and wrongly sized values all decode to
        ``None`` rather than raising.
        """
        if value is None:
            return None
        text = value.strip()
        if len(text) < 2 or text[0] != "[" or text[-1] != "]":
            return None
        body = text[1:-1].strip()
        if not body:
            return None
        try:
            values = [float(part) for part in body.split(",")]
        except ValueError:
            return None
        if not all(math.isfinite(v) for v in values):
            return None
        if self.dimension is not None and len(values) != self.dimension:
            return None
        return values
