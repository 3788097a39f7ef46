# tests/test_upload/test_batcher.py
"""Tests for greedy batching under count and size ceilings."""

from __future__ import annotations

import json

from netrelay.config import BatchLimits
from netrelay.upload import (
    NormalWrite,
    WriteDescriptor,
    batch_descriptors,
    batch_items,
    descriptor_args,
    estimate_batch_size,
    estimate_descriptor_size,
)
from netrelay.upload.keys import to_hex
from tests.helpers import make_chunked_plan, make_normal


def _flatten(batches: list) -> list:
    return [item for batch in batches for item in batch]


class TestSizeEstimates:
    """Per-descriptor and per-request estimates."""

    def test_descriptor_estimate_is_json_plus_overhead(self) -> None:
        """Estimate is the compact JSON argument length plus 200."""
        descriptor = make_normal(1)
        args_length = len(json.dumps(descriptor_args(descriptor), separators=(",", ":")))
        assert estimate_descriptor_size(descriptor) == args_length + 200

    def test_descriptor_estimate_is_capped(self) -> None:
        """No single descriptor is estimated above max_descriptor_bytes."""
        huge = make_normal(1, value=b"\x00" * 200_000)
        assert estimate_descriptor_size(huge) == 100_000

    def test_batch_estimate_adds_request_overhead(self) -> None:
        """The request carries 300 bytes on top of its descriptors."""
        descriptors = [make_normal(1), make_normal(2)]
        assert estimate_batch_size(descriptors) == 300 + sum(
            estimate_descriptor_size(d) for d in descriptors
        )

    def test_chunk_args_carry_fragment(self) -> None:
        """Chunk writes serialize their single fragment and empty text."""
        chunk = make_chunked_plan().chunks[0]
        assert descriptor_args(chunk) == {"key": chunk.id, "text": "", "chunks": [chunk.fragment]}


class TestBatchDescriptors:
    """Greedy packing of descriptors."""

    def test_count_limit_splits_101_into_100_and_1(self) -> None:
        """101 uniform small descriptors become batches of 100 and 1."""
        descriptors = [make_normal(index) for index in range(101)]

        batches = batch_descriptors(descriptors)

        assert [len(batch) for batch in batches] == [100, 1]
        assert _flatten(batches) == descriptors

    def test_size_limit_closes_batches(self) -> None:
        """Batches close when the running estimate would exceed max_bytes."""
        limits = BatchLimits(max_bytes=1_100, request_overhead=300, descriptor_overhead=0)

        batches = batch_items(list(range(5)), lambda _: 400, limits)

        assert [batch.items for batch in batches] == [(0, 1), (2, 3), (4,)]
        assert [batch.estimated_bytes for batch in batches] == [1_100, 1_100, 700]

    def test_every_batch_respects_limits(self) -> None:
        """Mixed sizes never produce a batch over either ceiling."""
        limits = BatchLimits(max_count=7, max_bytes=20_000, max_descriptor_bytes=15_000)
        descriptors: list[WriteDescriptor] = [
            make_normal(index, value=b"v" * ((index * 997) % 9_000)) for index in range(60)
        ]

        batches = batch_descriptors(descriptors, limits)

        for batch in batches:
            assert 1 <= len(batch) <= limits.max_count
            assert batch.estimated_bytes == estimate_batch_size(batch.items, limits)
            assert batch.estimated_bytes <= limits.max_bytes or batch.oversized
        assert _flatten(batches) == descriptors

    def test_oversized_descriptor_gets_own_batch(self) -> None:
        """A descriptor too large for any batch is isolated, not dropped."""
        limits = BatchLimits(max_bytes=2_000)
        small_before, small_after = make_normal(1), make_normal(3)
        big = NormalWrite(id="0x" + "22" * 32, key="big", text="", value=to_hex(b"\xff" * 5_000))

        batches = batch_descriptors([small_before, big, small_after], limits)

        assert [batch.items for batch in batches] == [(small_before,), (big,), (small_after,)]
        assert [batch.oversized for batch in batches] == [False, True, False]

    def test_empty_input_yields_no_batches(self) -> None:
        """Nothing to send means no batches."""
        assert batch_descriptors([]) == []
