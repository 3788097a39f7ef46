# src/netrelay/upload/batcher.py
"""
Greedy batcher for relay submissions.

Descriptors are packed in input order into batches bounded by
``BatchLimits.max_count`` and ``BatchLimits.max_bytes``. Sizes are
estimates of the serialized request: JSON length of each descriptor's call
arguments plus a fixed per-descriptor overhead (capped per descriptor),
plus a fixed per-request overhead.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Callable, Generic, Iterator, Sequence, TypeVar

from netrelay.config import BatchLimits
from netrelay.upload.descriptors import WriteDescriptor, descriptor_args


T = TypeVar("T")

__all__ = [
    "Batch",
    "batch_items",
    "batch_descriptors",
    "estimate_descriptor_size",
    "estimate_batch_size",
]


@dataclass(frozen=True)
class Batch(Generic[T]):
    """Non-empty, order-preserving slice of the items being submitted.

    Attributes:
        items: Items in input order
        estimated_bytes: Request size estimate including request overhead
        oversized: Single item whose estimate alone exceeds ``max_bytes``
    """

    items: tuple[T, ...]
    estimated_bytes: int
    oversized: bool = False

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.items)


def estimate_descriptor_size(
    descriptor: WriteDescriptor, limits: BatchLimits = BatchLimits()
) -> int:
    """Serialized size estimate for one descriptor, capped at ``max_descriptor_bytes``."""
    args_size = len(json.dumps(descriptor_args(descriptor), separators=(",", ":")))
    return min(args_size + limits.descriptor_overhead, limits.max_descriptor_bytes)


def estimate_batch_size(
    descriptors: Sequence[WriteDescriptor], limits: BatchLimits = BatchLimits()
) -> int:
    """Request size estimate for submitting ``descriptors`` together."""
    return limits.request_overhead + sum(
        estimate_descriptor_size(descriptor, limits) for descriptor in descriptors
    )


def batch_items(
    items: Sequence[T], size_of: Callable[[T], int], limits: BatchLimits = BatchLimits()
) -> list[Batch[T]]:
    """
    Pack ``items`` greedily into batches.

    The next item joins the open batch unless that would exceed
    ``max_count`` items or ``max_bytes`` estimated bytes; otherwise the open
    batch is closed and a new one starts with that item. An item too large
    for any batch still gets a batch of its own, flagged ``oversized``.

    Args:
        items: Items in submission order
        size_of: Per-item size estimate (excluding request overhead)
        limits: Count and size ceilings

    Returns:
        Batches in input order; concatenating them reproduces ``items``.
    """
    batches: list[Batch[T]] = []
    current: list[T] = []
    current_bytes = limits.request_overhead

    def _close() -> None:
        oversized = len(current) == 1 and current_bytes > limits.max_bytes
        batches.append(
            Batch(items=tuple(current), estimated_bytes=current_bytes, oversized=oversized)
        )

    for item in items:
        item_bytes = size_of(item)
        if current and (
            len(current) >= limits.max_count or current_bytes + item_bytes > limits.max_bytes
        ):
            _close()
            current = []
            current_bytes = limits.request_overhead
        current.append(item)
        current_bytes += item_bytes

    if current:
        _close()
    return batches


def batch_descriptors(
    descriptors: Sequence[WriteDescriptor], limits: BatchLimits = BatchLimits()
) -> list[Batch[WriteDescriptor]]:
    """Batch write descriptors using ``estimate_descriptor_size``."""
    return batch_items(
        descriptors, lambda descriptor: estimate_descriptor_size(descriptor, limits), limits
    )
