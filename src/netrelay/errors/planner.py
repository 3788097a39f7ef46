"""Error ADTs for upload planning."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class InvalidContent:
    """Content is neither ``str`` nor ``bytes``."""

    type_name: str
    kind: Literal["InvalidContent"] = "InvalidContent"


@dataclass(frozen=True)
class InvalidKey:
    """Storage key is empty or otherwise unusable."""

    key: str
    message: str
    kind: Literal["InvalidKey"] = "InvalidKey"


@dataclass(frozen=True)
class TooManyChunks:
    """Content splits into more fragments than the chunked store accepts."""

    chunk_count: int
    max_chunks: int
    kind: Literal["TooManyChunks"] = "TooManyChunks"


@dataclass(frozen=True)
class MissingFragment:
    """A directory entry references a fragment that is not available."""

    fragment_id: str
    position: int
    kind: Literal["MissingFragment"] = "MissingFragment"


PlanError = InvalidContent | InvalidKey | TooManyChunks
