# src/netrelay/upload/protocols.py
"""
Shared Protocol definitions for the pipeline's collaborators.

The orchestrator depends only on these shapes; the HTTP relay client, the
JSON-RPC confirmer and the in-memory ledger all satisfy them structurally.
Value types exchanged across the boundary live here as well so adapters
never import orchestrator internals.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Literal, Protocol, Sequence

from netrelay.errors.confirm import ConfirmationError
from netrelay.errors.relay import RelayError
from netrelay.errors.storage import ReadError
from netrelay.result import Result
from netrelay.upload.descriptors import WriteDescriptor


__all__ = [
    "StoredValue",
    "ChunkMetadata",
    "Receipt",
    "SubmitAccepted",
    "SubmitRejected",
    "SubmitEntry",
    "SessionCredential",
    "RelaySession",
    "BalanceStatus",
    "StorageReader",
    "Submitter",
    "Confirmer",
    "RelayGateway",
]


# ---------------------------------------------------------------------------
# Boundary value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StoredValue:
    """Current text/value stored under an identifier."""

    text: str
    value: str


@dataclass(frozen=True)
class ChunkMetadata:
    """Chunked-store summary for an identifier."""

    chunk_count: int
    text: str = ""


@dataclass(frozen=True)
class Receipt:
    """Mined transaction as reported by the chain."""

    tx_ref: str
    block_number: int
    confirmations: int
    succeeded: bool = True


@dataclass(frozen=True)
class SubmitAccepted:
    """Relay broadcast the descriptor's transaction."""

    id: str
    tx_ref: str
    kind: Literal["SubmitAccepted"] = "SubmitAccepted"


@dataclass(frozen=True)
class SubmitRejected:
    """Relay refused the descriptor; ``retryable`` marks transient causes."""

    id: str
    reason: str
    retryable: bool
    kind: Literal["SubmitRejected"] = "SubmitRejected"


SubmitEntry = SubmitAccepted | SubmitRejected


@dataclass(frozen=True)
class SessionCredential:
    """Proof of control over the operator address, produced by the caller's signer."""

    signature: str
    message: str = ""

    def __repr__(self) -> str:
        return "SessionCredential(signature=<redacted>)"


@dataclass(frozen=True)
class RelaySession:
    """Address-scoped relay authorization; lives only for one orchestrator run."""

    token: str
    owner: str
    expires_at: datetime

    def __repr__(self) -> str:
        return f"RelaySession(owner={self.owner!r}, expires_at={self.expires_at.isoformat()})"

    def expires_within(self, margin_seconds: float, now: datetime | None = None) -> bool:
        """True when the session expires in less than ``margin_seconds``."""
        current = now if now is not None else datetime.now(UTC)
        return self.expires_at - current <= timedelta(seconds=margin_seconds)


@dataclass(frozen=True)
class BalanceStatus:
    """Relay backend wallet balance for an operator."""

    sufficient: bool
    backend_wallet: str
    balance_wei: int = 0
    min_required_wei: int = 0


# ---------------------------------------------------------------------------
# Capability Protocols
# ---------------------------------------------------------------------------


class StorageReader(Protocol):
    """Read side of the on-chain store."""

    async def read(self, id: str, owner: str) -> Result[StoredValue, ReadError]: ...

    async def read_chunk_metadata(
        self, id: str, owner: str
    ) -> Result[ChunkMetadata, ReadError]: ...


class Submitter(Protocol):
    """Broadcasts one batch of descriptors as transactions."""

    async def submit(
        self, batch: Sequence[WriteDescriptor], session: RelaySession
    ) -> Result[list[SubmitEntry], RelayError]: ...


class Confirmer(Protocol):
    """Waits for a transaction to be mined and confirmed."""

    async def wait_for_receipt(
        self, tx_ref: str, confirmations: int, timeout: float
    ) -> Result[Receipt, ConfirmationError]: ...


class RelayGateway(Protocol):
    """Session and funding endpoints of the relay service."""

    async def create_session(
        self, owner: str, credential: SessionCredential, expires_in: int = 3600
    ) -> Result[RelaySession, RelayError]: ...

    async def check_balance(self, owner: str) -> Result[BalanceStatus, RelayError]: ...

    async def fund(self, owner: str) -> Result[str, RelayError]: ...

    async def verify_fund(self, payment_ref: str, owner: str) -> Result[str, RelayError]: ...
