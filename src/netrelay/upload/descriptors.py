# src/netrelay/upload/descriptors.py
"""
Write descriptors and upload plans.

A descriptor is the atomic unit of work: one storage write with a
deterministic identifier. Descriptors are immutable; the pipeline only
ever filters, groups and reorders references to them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Literal


@dataclass(frozen=True)
class NormalWrite:
    """Single key/text/value write for content under the small threshold.

    Attributes:
        id: ``storage_key_bytes(key)``
        key: Human storage key as supplied by the caller
        text: Label stored alongside the value
        value: ``0x``-prefixed hex of the content
    """

    id: str
    key: str
    text: str
    value: str
    kind: Literal["Normal"] = "Normal"


@dataclass(frozen=True)
class ChunkWrite:
    """One content fragment keyed by its own hash.

    ``index`` is the split position where the fragment first occurs; a
    fragment repeated later in the content is written only once.
    """

    id: str
    fragment: str
    index: int
    text: str = ""
    kind: Literal["Chunk"] = "Chunk"


@dataclass(frozen=True)
class MetadataWrite:
    """Directory write that references the ordered chunk identifiers.

    Attributes:
        id: ``storage_key_bytes(key)``
        key: Human storage key
        text: Label stored alongside the directory
        value: ``0x``-prefixed hex of the directory string
        chunk_ids: Fragment identifiers in split order, repeats included
        compressed: True when the fragments hold gzip of the content
    """

    id: str
    key: str
    text: str
    value: str
    chunk_ids: tuple[str, ...]
    compressed: bool = False
    kind: Literal["Metadata"] = "Metadata"

    @property
    def directory(self) -> str:
        return bytes.fromhex(self.value[2:]).decode("utf-8")


WriteDescriptor = NormalWrite | ChunkWrite | MetadataWrite


def descriptor_args(descriptor: WriteDescriptor) -> dict[str, object]:
    """Arguments of the storage call a descriptor stands for."""
    match descriptor:
        case NormalWrite(id=id_, text=text, value=value) | MetadataWrite(
            id=id_, text=text, value=value
        ):
            return {"key": id_, "text": text, "value": value}
        case ChunkWrite(id=id_, text=text, fragment=fragment):
            return {"key": id_, "text": text, "chunks": [fragment]}


def to_wire(descriptor: WriteDescriptor) -> dict[str, object]:
    """JSON-ready form sent to the relay: the call arguments tagged with kind."""
    return {"kind": descriptor.kind, **descriptor_args(descriptor)}


@dataclass(frozen=True)
class UploadPlan:
    """Ordered descriptors for one logical piece of content.

    For split content the metadata descriptor sits at index 0 and chunk
    descriptors follow in split order. Unsplit content is a single
    ``NormalWrite``.
    """

    key: str
    descriptors: tuple[WriteDescriptor, ...]

    def __len__(self) -> int:
        return len(self.descriptors)

    def __iter__(self) -> Iterator[WriteDescriptor]:
        return iter(self.descriptors)

    @property
    def metadata(self) -> MetadataWrite | None:
        head = self.descriptors[0] if self.descriptors else None
        return head if isinstance(head, MetadataWrite) else None

    @property
    def chunks(self) -> tuple[ChunkWrite, ...]:
        return tuple(d for d in self.descriptors if isinstance(d, ChunkWrite))

    @property
    def is_chunked(self) -> bool:
        return self.metadata is not None

    def submission_order(self) -> tuple[int, ...]:
        """Plan positions in the order they must become durable: chunks, then metadata."""
        if not self.is_chunked:
            return tuple(range(len(self.descriptors)))
        return tuple(range(1, len(self.descriptors))) + (0,)

    def dependencies(self) -> dict[str, tuple[int, ...]]:
        """Map the metadata id to the plan positions of the chunks it references."""
        metadata = self.metadata
        if metadata is None:
            return {}
        return {metadata.id: tuple(range(1, len(self.descriptors)))}
