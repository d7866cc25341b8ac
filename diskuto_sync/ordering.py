"""Ordering of item references: by timestamp, then by signature bytes."""

from functools import cmp_to_key

from .types import ItemRef


def compare_items(a: ItemRef, b: ItemRef) -> int:
    """Ascending order by timestamp, then signature bytes.

    Returns:
        Negative if ``a`` sorts first, positive if ``b`` does, 0 if equal.
    """
    cmp = a.timestamp_ms_utc - b.timestamp_ms_utc
    if cmp != 0:
        return cmp
    return _compare_bytes(a.signature, b.signature)


def compare_items_desc(a: ItemRef, b: ItemRef) -> int:
    """Descending (newest first) order, the order servers report items in."""
    return -compare_items(a, b)


item_key = cmp_to_key(compare_items)


def _compare_bytes(a: bytes, b: bytes) -> int:
    for x, y in zip(a, b):
        if x != y:
            return x - y
    # Signatures should always have the same length, but the shorter is "first".
    return len(a) - len(b)
