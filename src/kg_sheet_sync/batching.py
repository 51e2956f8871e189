"""Bounded fan-out for independent remote reads.

Inputs are split into fixed-size groups; each group is issued concurrently and
the whole group is awaited before the next one starts. This caps the number
of open connections without a long-lived worker pool, and no later stage ever
sees a partially completed group.

Workers only perform reads and return values; results are collected in input
order and merged by the calling thread.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def chunked(items: Sequence[T], size: int) -> list[Sequence[T]]:
    """Split ``items`` into consecutive groups of at most ``size``."""
    if size < 1:
        raise ValueError(f"batch size must be positive, got {size}")
    return [items[i : i + size] for i in range(0, len(items), size)]


def run_in_batches(
    items: Sequence[T],
    func: Callable[[T], R],
    batch_size: int,
    label: str = "items",
) -> list[R]:
    """Apply ``func`` to every item, at most ``batch_size`` at a time.

    Args:
        items: Inputs, processed in order
        func: Function run once per item (typically a remote read)
        batch_size: Maximum number of calls in flight
        label: Noun used in progress log messages

    Returns:
        Results in the same order as ``items``

    Raises:
        Whatever ``func`` raises; the exception propagates once the current
        group has finished, and no further groups are started.
    """
    results: list[R] = []
    if not items:
        return results

    batches = chunked(items, batch_size)
    with ThreadPoolExecutor(max_workers=min(batch_size, len(items))) as executor:
        for batch in batches:
            results.extend(executor.map(func, batch))
            if len(items) > batch_size:
                logger.info(f"Processed {len(results)}/{len(items)} {label}...")
    return results
