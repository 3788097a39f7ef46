# src/netrelay/upload/memory.py
"""
In-memory ledger for dry runs and tests.

``InMemoryLedger`` satisfies ``StorageReader``, ``Submitter`` and
``Confirmer`` against dict-backed storage. Failures are injected per
descriptor id or per request so retry paths can be exercised without a
network. Like the relay, it stores chunk writes under ``backend_wallet``
when one is set and every other write under the session owner.

Example:
    >>> ledger = InMemoryLedger()
    >>> ledger.reject_next(plan.descriptors[1].id, "nonce too low", retryable=True)
    >>> report = await run_campaign([plan], reader=ledger, submitter=ledger,
    ...                             confirmer=ledger, gateway=gateway, ...)
    >>> assert ledger.submitted_ids[-1] == [plan.descriptors[1].id]
"""

from __future__ import annotations

import hashlib
from collections import Counter
from dataclasses import dataclass
from typing import Sequence

from netrelay.errors.confirm import ConfirmationError, ConfirmationFailed, ConfirmationTimeout
from netrelay.errors.relay import RelayError
from netrelay.errors.storage import ReadError, ReadFailed, ReadNotFound
from netrelay.result import Failure, Result, Success
from netrelay.upload.descriptors import ChunkWrite, MetadataWrite, NormalWrite, WriteDescriptor
from netrelay.upload.protocols import (
    ChunkMetadata,
    Receipt,
    RelaySession,
    StoredValue,
    SubmitAccepted,
    SubmitEntry,
    SubmitRejected,
)


@dataclass(frozen=True)
class _Transaction:
    owner: str
    descriptor: WriteDescriptor
    block_number: int
    reverted: bool = False
    stalled: bool = False


class InMemoryLedger:
    """Dict-backed store that records every submission.

    Args:
        backend_wallet: Owner that chunk writes are applied under; the
            session owner when omitted

    Attributes:
        submitted_ids: Descriptor ids of each ``submit`` call, in call order
        sessions: Session tokens seen by ``submit``
        block_number: Current head block
    """

    def __init__(self, *, backend_wallet: str | None = None) -> None:
        self.backend_wallet = backend_wallet
        self._values: dict[tuple[str, str], StoredValue] = {}
        self._chunks: dict[tuple[str, str], list[str]] = {}
        self._transactions: dict[str, _Transaction] = {}
        self._rejections: dict[str, list[tuple[str, bool]]] = {}
        self._land_then_reject: Counter[str] = Counter()
        self._reverts: Counter[str] = Counter()
        self._stalls: Counter[str] = Counter()
        self._read_failures: dict[str, list[str]] = {}
        self._request_failures: list[RelayError] = []
        self.submitted_ids: list[list[str]] = []
        self.sessions: list[str] = []
        self.block_number = 0

    # ------------------------------------------------------------------ #
    # Failure injection                                                  #
    # ------------------------------------------------------------------ #

    def reject_next(self, id: str, reason: str, *, retryable: bool = True, times: int = 1) -> None:
        """Reject the next ``times`` submissions of ``id`` without applying them."""
        self._rejections.setdefault(id, []).extend([(reason, retryable)] * times)

    def fail_request_next(self, error: RelayError, *, times: int = 1) -> None:
        """Fail the next ``times`` submit calls as a whole with ``error``."""
        self._request_failures.extend([error] * times)

    def land_then_reject(self, id: str, *, times: int = 1) -> None:
        """Apply the next write of ``id`` but report it as a transient rejection."""
        self._land_then_reject[id] += times

    def revert_next(self, id: str, *, times: int = 1) -> None:
        """Mine the next transaction for ``id`` with a failed status."""
        self._reverts[id] += times

    def stall_next(self, id: str, *, times: int = 1) -> None:
        """Broadcast the next transaction for ``id`` but never mine it."""
        self._stalls[id] += times

    def fail_read_next(self, id: str, message: str, *, times: int = 1) -> None:
        """Fail the next ``times`` reads of ``id`` with a non-"not found" error."""
        self._read_failures.setdefault(id, []).extend([message] * times)

    # ------------------------------------------------------------------ #
    # Direct state access                                                #
    # ------------------------------------------------------------------ #

    def seed(self, descriptor: WriteDescriptor, owner: str) -> None:
        """Store ``descriptor`` as if a previous run had applied it."""
        self._apply(owner, descriptor)

    def stored(self, id: str, owner: str) -> StoredValue | None:
        return self._values.get((owner, id))

    def stored_chunks(self, id: str, owner: str) -> list[str]:
        return list(self._chunks.get((owner, id), []))

    def _apply(self, owner: str, descriptor: WriteDescriptor) -> None:
        match descriptor:
            case ChunkWrite(id=id_, fragment=fragment):
                self._chunks[(owner, id_)] = [fragment]
            case NormalWrite(id=id_, text=text, value=value) | MetadataWrite(
                id=id_, text=text, value=value
            ):
                self._values[(owner, id_)] = StoredValue(text=text, value=value)

    # ------------------------------------------------------------------ #
    # StorageReader                                                      #
    # ------------------------------------------------------------------ #

    def _injected_read_failure(self, id: str, owner: str) -> ReadFailed | None:
        messages = self._read_failures.get(id)
        if not messages:
            return None
        return ReadFailed(id=id, owner=owner, message=messages.pop(0))

    async def read(self, id: str, owner: str) -> Result[StoredValue, ReadError]:
        failure = self._injected_read_failure(id, owner)
        if failure is not None:
            return Failure(failure)
        value = self._values.get((owner, id))
        if value is None:
            return Failure(ReadNotFound(id=id, owner=owner))
        return Success(value)

    async def read_chunk_metadata(self, id: str, owner: str) -> Result[ChunkMetadata, ReadError]:
        failure = self._injected_read_failure(id, owner)
        if failure is not None:
            return Failure(failure)
        chunks = self._chunks.get((owner, id))
        if chunks is None:
            return Failure(ReadNotFound(id=id, owner=owner))
        return Success(ChunkMetadata(chunk_count=len(chunks)))

    # ------------------------------------------------------------------ #
    # Submitter                                                          #
    # ------------------------------------------------------------------ #

    async def submit(
        self, batch: Sequence[WriteDescriptor], session: RelaySession
    ) -> Result[list[SubmitEntry], RelayError]:
        self.sessions.append(session.token)
        self.submitted_ids.append([descriptor.id for descriptor in batch])
        if self._request_failures:
            return Failure(self._request_failures.pop(0))

        self.block_number += 1
        entries: list[SubmitEntry] = []
        for descriptor in batch:
            entries.append(self._submit_one(descriptor, session.owner))
        return Success(entries)

    def _submit_one(self, descriptor: WriteDescriptor, session_owner: str) -> SubmitEntry:
        id_ = descriptor.id
        owner = session_owner
        if isinstance(descriptor, ChunkWrite) and self.backend_wallet is not None:
            owner = self.backend_wallet

        rejections = self._rejections.get(id_)
        if rejections:
            reason, retryable = rejections.pop(0)
            return SubmitRejected(id=id_, reason=reason, retryable=retryable)

        if self._land_then_reject[id_] > 0:
            self._land_then_reject[id_] -= 1
            self._apply(owner, descriptor)
            return SubmitRejected(id=id_, reason="relay lost track of transaction", retryable=True)

        tx_ref = "0x" + hashlib.sha256(f"{len(self._transactions)}:{id_}".encode()).hexdigest()
        reverted = self._reverts[id_] > 0
        stalled = not reverted and self._stalls[id_] > 0
        if reverted:
            self._reverts[id_] -= 1
        elif stalled:
            self._stalls[id_] -= 1
        else:
            self._apply(owner, descriptor)
        self._transactions[tx_ref] = _Transaction(
            owner=owner,
            descriptor=descriptor,
            block_number=self.block_number,
            reverted=reverted,
            stalled=stalled,
        )
        return SubmitAccepted(id=id_, tx_ref=tx_ref)

    # ------------------------------------------------------------------ #
    # Confirmer                                                          #
    # ------------------------------------------------------------------ #

    async def wait_for_receipt(
        self, tx_ref: str, confirmations: int, timeout: float
    ) -> Result[Receipt, ConfirmationError]:
        transaction = self._transactions.get(tx_ref)
        if transaction is None:
            return Failure(ConfirmationFailed(tx_ref=tx_ref, message="unknown transaction"))
        if transaction.stalled:
            return Failure(ConfirmationTimeout(tx_ref=tx_ref, timeout_seconds=timeout))
        # Mining on demand keeps waits instant.
        self.block_number = max(self.block_number, transaction.block_number + confirmations - 1)
        return Success(
            Receipt(
                tx_ref=tx_ref,
                block_number=transaction.block_number,
                confirmations=self.block_number - transaction.block_number + 1,
                succeeded=not transaction.reverted,
            )
        )
