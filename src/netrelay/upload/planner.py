# src/netrelay/upload/planner.py
"""
Chunk planner: turn one content blob into an ordered ``UploadPlan``.

Content at or below ``PlannerLimits.small_threshold`` becomes a single
``NormalWrite``. Larger content is split into fragments of at most
``chunk_size`` bytes, each a ``ChunkWrite`` keyed by its content hash, and
a ``MetadataWrite`` directory at index 0 lists those hashes in order.
A fragment that repeats is listed every time but written once. With
``PlannerLimits.compress`` the content is gzipped before splitting.

Planning is pure and synchronous; precondition violations come back as
``Failure(PlanError)`` and are never retried.
"""

from __future__ import annotations

import gzip
import re
from dataclasses import dataclass
from typing import Iterable, Mapping

from netrelay.config import PlannerLimits
from netrelay.errors.campaign import PlanRejected
from netrelay.errors.planner import (
    InvalidContent,
    InvalidKey,
    MissingFragment,
    PlanError,
    TooManyChunks,
)
from netrelay.result import Failure, Result, Success
from netrelay.upload.descriptors import (
    ChunkWrite,
    MetadataWrite,
    NormalWrite,
    UploadPlan,
    WriteDescriptor,
)
from netrelay.upload.keys import content_hash, decode_value, storage_key_bytes, to_hex


__all__ = [
    "DIRECTORY_VERSION",
    "DirectoryEntry",
    "plan_upload",
    "plan_uploads",
    "split_fragments",
    "render_directory",
    "parse_directory",
    "reassemble",
    "assemble_from_directory",
]


DIRECTORY_VERSION = "0.0.1"

_ENTRY_RE = re.compile(
    r'<net\s+k="([^"]+)"\s+v="([^"]+)"(?:\s+i="([^"]+)")?'
    r'(?:\s+o="([^"]+)")?(?:\s+s="([^"]+)")?\s*/>'
)


@dataclass(frozen=True)
class DirectoryEntry:
    """One ``<net .../>`` reference parsed from a metadata directory."""

    hash: str
    version: str
    index: int | None = None
    operator: str | None = None
    source: str | None = None


def _as_bytes(content: object) -> bytes | None:
    match content:
        case bytes():
            return content
        case str():
            return content.encode("utf-8")
        case _:
            return None


def split_fragments(data: bytes, chunk_size: int) -> list[bytes]:
    """Split ``data`` into consecutive fragments of at most ``chunk_size`` bytes."""
    return [data[start : start + chunk_size] for start in range(0, len(data), chunk_size)]


def render_directory(chunk_ids: list[str], operator: str | None = None) -> str:
    """Serialize ordered chunk ids as concatenated ``<net .../>`` tags."""
    operator_attr = f' o="{operator.lower()}"' if operator else ""
    return "".join(
        f'<net k="{chunk_id}" v="{DIRECTORY_VERSION}" i="0"{operator_attr} />'
        for chunk_id in chunk_ids
    )


def parse_directory(text: str) -> list[DirectoryEntry]:
    """Extract every ``<net .../>`` entry from ``text`` in document order."""
    return [
        DirectoryEntry(
            hash=match.group(1),
            version=match.group(2),
            index=int(match.group(3)) if match.group(3) else None,
            operator=match.group(4).lower() if match.group(4) else None,
            source=match.group(5),
        )
        for match in _ENTRY_RE.finditer(text)
    ]


def plan_upload(
    key: str,
    label: str,
    content: object,
    *,
    operator: str | None = None,
    limits: PlannerLimits = PlannerLimits(),
) -> Result[UploadPlan, PlanError]:
    """
    Plan the writes needed to store ``content`` under ``key``.

    Args:
        key: Human storage key (or a bytes32 hex identifier)
        label: Text stored alongside the value (typically a filename)
        content: ``str`` (UTF-8 encoded) or ``bytes``
        operator: Address recorded on each directory entry, if any; for relay
            uploads this is the backend wallet that writes the chunks
        limits: Thresholds for splitting

    Returns:
        Success with the plan, or Failure describing the rejected input.
    """
    data = _as_bytes(content)
    if data is None:
        return Failure(InvalidContent(type_name=type(content).__name__))
    if not key:
        return Failure(InvalidKey(key=key, message="storage key must be non-empty"))

    identifier = storage_key_bytes(key)

    if len(data) <= limits.small_threshold:
        normal = NormalWrite(id=identifier, key=key, text=label, value=to_hex(data))
        return Success(UploadPlan(key=key, descriptors=(normal,)))

    payload = gzip.compress(data, mtime=0) if limits.compress else data
    fragments = split_fragments(payload, limits.chunk_size)
    if len(fragments) > limits.max_chunks:
        return Failure(TooManyChunks(chunk_count=len(fragments), max_chunks=limits.max_chunks))

    chunk_ids = [content_hash(fragment) for fragment in fragments]
    chunks: dict[str, ChunkWrite] = {}
    for position, (chunk_id, fragment) in enumerate(zip(chunk_ids, fragments)):
        if chunk_id not in chunks:
            chunks[chunk_id] = ChunkWrite(id=chunk_id, fragment=to_hex(fragment), index=position)
    directory = render_directory(chunk_ids, operator)
    metadata = MetadataWrite(
        id=identifier,
        key=key,
        text=label,
        value=to_hex(directory.encode("utf-8")),
        chunk_ids=tuple(chunk_ids),
        compressed=limits.compress,
    )
    descriptors: tuple[WriteDescriptor, ...] = (metadata, *chunks.values())
    return Success(UploadPlan(key=key, descriptors=descriptors))


def plan_uploads(
    items: Iterable[tuple[str, str, object]],
    *,
    operator: str | None = None,
    limits: PlannerLimits = PlannerLimits(),
) -> Result[list[UploadPlan], PlanRejected]:
    """Plan every ``(key, label, content)`` item; the first rejected item aborts."""
    plans: list[UploadPlan] = []
    for key, label, content in items:
        match plan_upload(key, label, content, operator=operator, limits=limits):
            case Success(plan):
                plans.append(plan)
            case Failure(error):
                return Failure(PlanRejected(key=key, error=error))
    return Success(plans)


def reassemble(plan: UploadPlan) -> bytes:
    """Rebuild the original content from a plan's own descriptors."""
    match plan.descriptors[0]:
        case NormalWrite(value=value):
            return decode_value(value)
        case MetadataWrite(chunk_ids=chunk_ids, compressed=compressed):
            by_id = {chunk.id: decode_value(chunk.fragment) for chunk in plan.chunks}
            joined = b"".join(by_id[chunk_id] for chunk_id in chunk_ids)
            return gzip.decompress(joined) if compressed else joined
        case ChunkWrite(id=chunk_id):
            raise ValueError(f"plan for {plan.key!r} starts with chunk {chunk_id}")


def assemble_from_directory(
    directory: str, fragments: Mapping[str, bytes], *, compressed: bool = False
) -> Result[bytes, MissingFragment]:
    """
    Concatenate fragments in the order a stored directory lists them.

    Args:
        directory: Metadata directory text
        fragments: Fragment bytes keyed by chunk id (as read back from storage)
        compressed: Gunzip the joined fragments, for plans made with
            ``PlannerLimits.compress``
    """
    parts: list[bytes] = []
    for position, entry in enumerate(parse_directory(directory)):
        fragment = fragments.get(entry.hash.lower())
        if fragment is None:
            return Failure(MissingFragment(fragment_id=entry.hash, position=position))
        parts.append(fragment)
    joined = b"".join(parts)
    return Success(gzip.decompress(joined) if compressed else joined)
