"""Binary descriptor comparison."""

from __future__ import annotations

import numpy as np


def descriptor_distance(a, b) -> int:
    """Return the Hamming distance between two binary descriptors of equal length."""
    first = np.asarray(bytearray(a) if isinstance(a, (bytes, bytearray)) else a, dtype=np.uint8).reshape(-1)
    second = np.asarray(bytearray(b) if isinstance(b, (bytes, bytearray)) else b, dtype=np.uint8).reshape(-1)
    if first.shape != second.shape:
        raise ValueError("descriptors must have the same length")
    return int(np.unpackbits(np.bitwise_xor(first, second)).sum())