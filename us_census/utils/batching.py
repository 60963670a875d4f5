"""
Chunking helpers for batched inserts.

PostgreSQL caps a single statement at 65535 bind parameters, so a multi-row
INSERT of `n` rows with `c` columns must keep `n * c` under that ceiling.
"""

from __future__ import annotations

from typing import Iterator, List, Sequence, TypeVar

T = TypeVar("T")

POSTGRES_MAX_PARAMETERS = 65_535
DEFAULT_BATCH_SIZE = 5_000


def safe_batch_size(requested: int, columns: int) -> int:
    """
    Clamp a requested batch size to what fits under the parameter ceiling.

    Parameters
    ----------
    requested : int
        Desired number of rows per statement.
    columns : int
        Number of bound parameters per row.
    """
    if requested < 1:
        raise ValueError(f"batch size must be positive, got {requested}")
    if columns < 1:
        raise ValueError(f"column count must be positive, got {columns}")
    return min(requested, POSTGRES_MAX_PARAMETERS // columns)


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of `items` holding at most `size` elements."""
    if size < 1:
        raise ValueError(f"chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


__all__ = ["POSTGRES_MAX_PARAMETERS", "DEFAULT_BATCH_SIZE", "safe_batch_size", "chunked"]
