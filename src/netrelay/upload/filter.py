# src/netrelay/upload/filter.py
"""
Existence filter: drop descriptors whose write is already durable.

Normal and metadata writes are compared by stored text and value; chunk
writes only need a non-zero chunk count under their content hash. Chunks
are written by the relay backend wallet rather than the operator, so they
are looked up under ``chunk_owner`` when one is given.

Only a clean ``ReadNotFound`` counts as absence. Any other read error
fails the whole filter, since sending blind could duplicate or clobber
state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from netrelay.errors.campaign import FilterFailed
from netrelay.errors.storage import ReadFailed, ReadNotFound
from netrelay.result import Failure, Result, Success
from netrelay.upload.descriptors import ChunkWrite, MetadataWrite, NormalWrite, WriteDescriptor
from netrelay.upload.protocols import ChunkMetadata, StorageReader, StoredValue


logger = logging.getLogger(__name__)

__all__ = ["FilterOutcome", "descriptor_exists", "filter_existing"]


@dataclass(frozen=True)
class FilterOutcome:
    """Partition of the input descriptors, order preserved.

    Attributes:
        to_send: Descriptors that still need a write
        skipped: Descriptors already present with identical content
        present: ``present[i]`` is True when input ``i`` was skipped
    """

    to_send: tuple[WriteDescriptor, ...]
    skipped: tuple[WriteDescriptor, ...]
    present: tuple[bool, ...]


async def descriptor_exists(
    descriptor: WriteDescriptor,
    reader: StorageReader,
    owner: str,
    *,
    chunk_owner: str | None = None,
) -> Result[bool, FilterFailed]:
    """Whether ``descriptor`` is already applied for ``owner`` (``chunk_owner`` for chunks)."""
    match descriptor:
        case ChunkWrite(id=id_):
            match await reader.read_chunk_metadata(id_, chunk_owner or owner):
                case Success(ChunkMetadata(chunk_count=count)):
                    return Success(count > 0)
                case Failure(ReadNotFound()):
                    return Success(False)
                case Failure(ReadFailed() as error):
                    return Failure(FilterFailed(descriptor_id=id_, error=error))
        case NormalWrite(id=id_, text=text, value=value) | MetadataWrite(
            id=id_, text=text, value=value
        ):
            match await reader.read(id_, owner):
                case Success(StoredValue(text=stored_text, value=stored_value)):
                    return Success(stored_text == text and stored_value.lower() == value.lower())
                case Failure(ReadNotFound()):
                    return Success(False)
                case Failure(ReadFailed() as error):
                    return Failure(FilterFailed(descriptor_id=id_, error=error))
    raise TypeError(f"unexpected read result for {descriptor.kind} {descriptor.id}")


async def filter_existing(
    descriptors: Sequence[WriteDescriptor],
    reader: StorageReader,
    owner: str,
    *,
    chunk_owner: str | None = None,
    concurrency: int = 16,
) -> Result[FilterOutcome, FilterFailed]:
    """
    Check every descriptor against storage and split into send/skip.

    Reads run concurrently, at most ``concurrency`` at a time; results are
    aligned with the input regardless of completion order.

    Returns:
        Success(FilterOutcome), or Failure(FilterFailed) for the first
        descriptor (in input order) whose read failed.
    """
    semaphore = asyncio.Semaphore(concurrency)

    async def _check(descriptor: WriteDescriptor) -> Result[bool, FilterFailed]:
        async with semaphore:
            return await descriptor_exists(descriptor, reader, owner, chunk_owner=chunk_owner)

    checks = await asyncio.gather(*(_check(descriptor) for descriptor in descriptors))

    present: list[bool] = []
    for check in checks:
        match check:
            case Success(exists):
                present.append(exists)
            case Failure(error):
                logger.error(
                    f"Existence check failed for {error.descriptor_id}: {error.error.message}"
                )
                return Failure(error)

    to_send = tuple(d for d, exists in zip(descriptors, present) if not exists)
    skipped = tuple(d for d, exists in zip(descriptors, present) if exists)
    logger.info(
        f"Filtered {len(descriptors)} descriptors: "
        f"{len(to_send)} to send, {len(skipped)} present"
    )
    return Success(FilterOutcome(to_send=to_send, skipped=skipped, present=tuple(present)))
