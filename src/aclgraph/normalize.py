"""Input normalization for engine operations.

Every operation that accepts "one value or a collection" normalizes its
argument to a CoUS — a Collection of Unique Strings: deduplicated, non-empty,
first-seen order. Invalid entries are dropped silently, never raised.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any


def ensure_cous(value: Any) -> tuple[str, ...]:
    """Normalize a single value or a collection to a CoUS.

    Entries follow the ``ensure_id`` rule: non-empty strings are kept and
    integers become their decimal form, so ``5`` and ``"5"`` name the same
    node wherever an identifier is accepted.

    Args:
        value: A string, an integer, an iterable of those, or anything else.

    Returns:
        Tuple of distinct non-empty strings in first-seen order.

    Example::

        >>> ensure_cous("editors")
        ('editors',)
        >>> ensure_cous(["a", "", "b", "a", 3, None])
        ('a', 'b', '3')
        >>> ensure_cous(5)
        ('5',)
        >>> ensure_cous(None)
        ()
    """
    if isinstance(value, (str, int)):
        single = ensure_id(value)
        return (single,) if single is not None else ()
    if isinstance(value, (bytes, bytearray, Mapping)) or not isinstance(value, Iterable):
        return ()

    seen: dict[str, None] = {}
    for item in value:
        normalized = ensure_id(item)
        if normalized is not None:
            seen.setdefault(normalized, None)
    return tuple(seen)


def ensure_id(value: Any) -> str | None:
    """Normalize a single principal/group/resource identifier.

    Non-empty strings are returned unchanged and integers are converted to
    their decimal form. Anything else is invalid and yields ``None``.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value:
        return value
    return None


__all__ = ["ensure_cous", "ensure_id"]
