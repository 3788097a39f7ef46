"""ADTs for failures of the on-chain storage reader."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class ReadNotFound:
    """Well-defined "nothing stored" answer from the reader.

    This is the only read failure the existence filter treats as absence.
    """

    id: str
    owner: str
    kind: Literal["ReadNotFound"] = "ReadNotFound"


@dataclass(frozen=True)
class ReadFailed:
    """Any other reader failure (RPC error, malformed response, timeout)."""

    id: str
    owner: str
    message: str
    kind: Literal["ReadFailed"] = "ReadFailed"


ReadError = ReadNotFound | ReadFailed
