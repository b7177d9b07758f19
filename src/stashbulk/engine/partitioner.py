"""Split large identifier collections into bounded chunks."""

from collections.abc import Sequence
from typing import TypeVar

from ..constants import DEFAULT_BATCH_SIZE

T = TypeVar("T")


def partition(items: Sequence[T], batch_size: int = DEFAULT_BATCH_SIZE) -> list[list[T]]:
    """
    Split ``items`` into contiguous chunks of at most ``batch_size``.

    Order is preserved and concatenating the chunks reconstructs the input.
    Only the last chunk can be short; an empty input yields no chunks.

    Args:
        items: Ordered identifiers
        batch_size: Maximum chunk length

    Returns:
        list of chunks

    Raises:
        ValueError: If batch_size is not positive
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    return [list(items[i : i + batch_size]) for i in range(0, len(items), batch_size)]
