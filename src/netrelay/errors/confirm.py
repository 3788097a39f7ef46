"""Error ADTs for waiting on transaction receipts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class ConfirmationTimeout:
    """Receipt did not reach the requested confirmations before the deadline."""

    tx_ref: str
    timeout_seconds: float
    last_error: str | None = None
    kind: Literal["ConfirmationTimeout"] = "ConfirmationTimeout"


@dataclass(frozen=True)
class TransactionReverted:
    """Transaction was mined with a failed status."""

    tx_ref: str
    block_number: int
    kind: Literal["TransactionReverted"] = "TransactionReverted"


@dataclass(frozen=True)
class ConfirmationCancelled:
    """Wait was aborted by the campaign cancel signal."""

    tx_ref: str
    kind: Literal["ConfirmationCancelled"] = "ConfirmationCancelled"


@dataclass(frozen=True)
class ConfirmationFailed:
    """Receipt lookup itself failed (RPC error, malformed receipt)."""

    tx_ref: str
    message: str
    kind: Literal["ConfirmationFailed"] = "ConfirmationFailed"


ConfirmationError = (
    ConfirmationTimeout | TransactionReverted | ConfirmationCancelled | ConfirmationFailed
)


def describe_confirmation_error(error: ConfirmationError) -> str:
    """Human-readable reason preserved on failed descriptors."""
    match error:
        case ConfirmationTimeout(tx_ref=tx_ref, timeout_seconds=timeout, last_error=None):
            return f"confirmation timeout after {timeout:.0f}s for {tx_ref}"
        case ConfirmationTimeout(tx_ref=tx_ref, timeout_seconds=timeout, last_error=last):
            return f"confirmation timeout after {timeout:.0f}s for {tx_ref} (last error: {last})"
        case TransactionReverted(tx_ref=tx_ref, block_number=block):
            return f"transaction {tx_ref} reverted in block {block}"
        case ConfirmationCancelled(tx_ref=tx_ref):
            return f"confirmation wait for {tx_ref} cancelled"
        case ConfirmationFailed(tx_ref=tx_ref, message=message):
            return f"receipt lookup for {tx_ref} failed: {message}"
