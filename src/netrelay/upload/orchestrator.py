# src/netrelay/upload/orchestrator.py
"""
Submission orchestrator: drive upload plans to a terminal state.

Implements:
- Existence filtering of every plan before any submission (chunks are
  looked up under the relay backend wallet, which writes them)
- Relay session establishment and renewal near expiry
- Backend wallet funding check
- Sequential batch submission with per-batch confirmation
- Retry rounds that re-check existence before resubmitting
- Chunk-before-metadata ordering within each plan
- Holding back the rest of a round once a whole batch fails
- Cancelling sibling plans as soon as one plan hits a fatal error

Descriptors are tracked by their position in the plan, so every one of
them ends as sent, skipped or failed in the final report.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Callable, Sequence

from netrelay.config import PipelineConfig
from netrelay.errors.campaign import (
    AuthorizationFailed,
    CampaignAborted,
    FilterFailed,
    FundingFailed,
)
from netrelay.errors.confirm import ConfirmationCancelled, describe_confirmation_error
from netrelay.errors.relay import is_transient_relay_error
from netrelay.result import Failure, Result, Success
from netrelay.upload.batcher import Batch, batch_items, estimate_descriptor_size
from netrelay.upload.descriptors import UploadPlan, WriteDescriptor
from netrelay.upload.engine import Sleep, wait_for_all
from netrelay.upload.filter import filter_existing
from netrelay.upload.funding import ensure_funded
from netrelay.upload.outcomes import (
    CampaignReport,
    PlanOutcome,
    SubmissionResult,
    WriteFailed,
    WriteSent,
    WriteSkipped,
)
from netrelay.upload.protocols import (
    BalanceStatus,
    Confirmer,
    RelayGateway,
    RelaySession,
    SessionCredential,
    StorageReader,
    SubmitAccepted,
    SubmitRejected,
    Submitter,
)


logger = logging.getLogger(__name__)

__all__ = ["UploadOrchestrator", "run_campaign"]


CANCELLED_REASON = "cancelled before submission"


@dataclass(frozen=True)
class _BatchHalt:
    """Every descriptor of a batch failed; the rest of the round is held back."""

    reason: str
    retryable: bool


@dataclass
class _PlanRun:
    """Mutable per-plan bookkeeping; ``slots[i]`` tracks ``plan.descriptors[i]``."""

    plan: UploadPlan
    slots: list[SubmissionResult | None] = field(default_factory=list)

    def pending(self, positions: Sequence[int]) -> list[int]:
        return [position for position in positions if self.slots[position] is None]

    def durable(self, position: int) -> bool:
        return isinstance(self.slots[position], (WriteSent, WriteSkipped))

    def retryable(self, position: int) -> bool:
        slot = self.slots[position]
        return isinstance(slot, WriteFailed) and slot.retryable

    def outcome(self) -> PlanOutcome:
        results = tuple(
            slot
            if slot is not None
            else WriteFailed(id=descriptor.id, reason=CANCELLED_REASON, retryable=False)
            for descriptor, slot in zip(self.plan.descriptors, self.slots)
        )
        return PlanOutcome(key=self.plan.key, results=results)


class UploadOrchestrator:
    """Runs upload campaigns against injected storage and relay capabilities.

    One instance may run several campaigns; each ``run`` owns its own relay
    session, which is never persisted. Chunk writes are owned by the relay
    backend wallet: pass it as ``chunk_owner`` when known, otherwise it is
    read from the balance endpoint the first time a chunked plan is run.
    """

    def __init__(
        self,
        *,
        reader: StorageReader,
        submitter: Submitter,
        confirmer: Confirmer,
        gateway: RelayGateway,
        owner: str,
        credential: SessionCredential,
        config: PipelineConfig = PipelineConfig(),
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        chunk_owner: str | None = None,
    ) -> None:
        self._reader = reader
        self._submitter = submitter
        self._confirmer = confirmer
        self._gateway = gateway
        self._owner = owner
        self._credential = credential
        self._config = config
        self._sleep = sleep
        self._clock = clock
        self._chunk_owner = chunk_owner
        self._session: RelaySession | None = None
        self._session_lock = asyncio.Lock()
        self._final_tx_ref: str | None = None

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    async def run(
        self,
        plans: Sequence[UploadPlan],
        cancel: asyncio.Event | None = None,
    ) -> Result[CampaignReport, CampaignAborted]:
        """
        Upload every plan and report the fate of each descriptor.

        Args:
            plans: Plans to upload, reported in this order
            cancel: When set, no new batches are submitted and in-flight
                confirmation waits are aborted

        Returns:
            Success(CampaignReport) once every descriptor is terminal, or
            Failure(CampaignAborted) on an authorization, funding or
            existence-check failure. Plans still in flight when another
            plan aborts are cancelled.
        """
        self._session = None
        self._final_tx_ref = None
        runs = [_PlanRun(plan=plan, slots=[None] * len(plan)) for plan in plans]

        balance: BalanceStatus | None = None
        if self._chunk_owner is None and any(plan.is_chunked for plan in plans):
            match await self._gateway.check_balance(self._owner):
                case Failure(balance_error):
                    logger.error(f"Cannot resolve relay backend wallet: {balance_error}")
                    return Failure(FundingFailed(stage="balance", error=balance_error))
                case Success(status):
                    logger.info(f"Chunks are owned by backend wallet {status.backend_wallet}")
                    self._chunk_owner = status.backend_wallet
                    balance = status

        for plan_run in runs:
            match await self._filter_initial(plan_run):
                case Failure(error):
                    return Failure(error)
                case Success():
                    pass

        if not any(plan_run.pending(range(len(plan_run.plan))) for plan_run in runs):
            logger.info("All descriptors already present; nothing to submit")
            return Success(CampaignReport.from_plans(tuple(run.outcome() for run in runs)))

        if cancel is not None and cancel.is_set():
            logger.warning("Campaign cancelled before any submission")
            return Success(CampaignReport.from_plans(tuple(run.outcome() for run in runs)))

        match await self._ensure_session():
            case Failure(auth_error):
                return Failure(auth_error)
            case Success():
                pass

        match await ensure_funded(
            self._gateway, self._owner, self._config.funding, sleep=self._sleep, balance=balance
        ):
            case Failure(funding_error):
                self._session = None
                return Failure(funding_error)
            case Success(funding):
                backend_wallet = funding.backend_wallet
                if self._chunk_owner is None:
                    self._chunk_owner = backend_wallet

        semaphore = asyncio.Semaphore(self._config.plan_concurrency)

        async def _bounded(plan_run: _PlanRun) -> Result[None, CampaignAborted]:
            async with semaphore:
                return await self._drive_plan(plan_run, cancel)

        tasks = [asyncio.create_task(_bounded(plan_run)) for plan_run in runs]
        try:
            for finished in asyncio.as_completed(tasks):
                match await finished:
                    case Failure(error):
                        in_flight = sum(not task.done() for task in tasks)
                        logger.error(
                            f"Campaign aborted ({in_flight} plan(s) still in flight): {error}"
                        )
                        return Failure(error)
                    case Success():
                        pass
        finally:
            await _cancel_all(tasks)
            self._session = None

        report = CampaignReport.from_plans(
            tuple(plan_run.outcome() for plan_run in runs),
            final_tx_ref=self._final_tx_ref,
            backend_wallet=backend_wallet,
        )
        logger.info(
            f"Campaign finished: sent={report.sent} skipped={report.skipped} "
            f"failed={report.failed}"
        )
        return Success(report)

    # ------------------------------------------------------------------ #
    # Session                                                            #
    # ------------------------------------------------------------------ #

    async def _ensure_session(self) -> Result[RelaySession, AuthorizationFailed]:
        """Return the run's session, creating or renewing it when near expiry."""
        async with self._session_lock:
            current = self._session
            if current is not None and not current.expires_within(
                self._config.session_refresh_margin, self._clock()
            ):
                return Success(current)
            if current is not None:
                logger.info(f"Relay session for {self._owner} near expiry; renewing")
            match await self._gateway.create_session(
                self._owner, self._credential, self._config.session_ttl
            ):
                case Failure(error):
                    logger.error(f"Relay session for {self._owner} refused: {error}")
                    return Failure(AuthorizationFailed(owner=self._owner, error=error))
                case Success(session):
                    self._session = session
                    return Success(session)

    # ------------------------------------------------------------------ #
    # Per-plan driving                                                   #
    # ------------------------------------------------------------------ #

    async def _filter_initial(self, plan_run: _PlanRun) -> Result[None, FilterFailed]:
        match await filter_existing(
            plan_run.plan.descriptors,
            self._reader,
            self._owner,
            chunk_owner=self._chunk_owner,
            concurrency=self._config.filter_concurrency,
        ):
            case Failure(error):
                return Failure(error)
            case Success(outcome):
                for position, present in enumerate(outcome.present):
                    if present:
                        plan_run.slots[position] = WriteSkipped(
                            id=plan_run.plan.descriptors[position].id
                        )
                return Success(None)

    async def _drive_plan(
        self, plan_run: _PlanRun, cancel: asyncio.Event | None
    ) -> Result[None, CampaignAborted]:
        """Chunks first; metadata only once every chunk is durable."""
        plan = plan_run.plan
        dependencies = plan.dependencies()
        order = plan.submission_order()

        if not dependencies:
            return await self._drive_positions(plan_run, list(order), cancel)

        chunk_positions = list(order[:-1])
        metadata_position = order[-1]
        match await self._drive_positions(plan_run, chunk_positions, cancel):
            case Failure(error):
                return Failure(error)
            case Success():
                pass

        if plan_run.slots[metadata_position] is not None:
            return Success(None)

        blocking = [p for p in chunk_positions if not plan_run.durable(p)]
        if blocking and not _is_set(cancel):
            logger.warning(
                f"Metadata for {plan.key!r} blocked by {len(blocking)} unconfirmed chunk(s)"
            )
            plan_run.slots[metadata_position] = WriteFailed(
                id=plan.descriptors[metadata_position].id,
                reason=f"blocked: {len(blocking)} referenced chunk(s) not durable",
                retryable=False,
            )
            return Success(None)

        return await self._drive_positions(plan_run, [metadata_position], cancel)

    async def _drive_positions(
        self,
        plan_run: _PlanRun,
        positions: list[int],
        cancel: asyncio.Event | None,
    ) -> Result[None, CampaignAborted]:
        """Submit ``positions`` and run retry rounds until terminal or out of budget."""
        policy = self._config.retry
        pending = plan_run.pending(positions)
        retry_round = 0

        while pending:
            match await self._submit_round(plan_run, pending, cancel):
                case Failure(error):
                    return Failure(error)
                case Success():
                    pass

            retryable = [position for position in pending if plan_run.retryable(position)]
            if not retryable or retry_round >= policy.max_attempts or _is_set(cancel):
                return Success(None)

            delay = policy.delay_for(retry_round)
            retry_round += 1
            logger.warning(
                f"Retrying {len(retryable)} descriptor(s) of {plan_run.plan.key!r} "
                f"(round {retry_round}/{policy.max_attempts}) in {delay:.1f}s"
            )
            await self._sleep(delay)

            match await filter_existing(
                [plan_run.plan.descriptors[p] for p in retryable],
                self._reader,
                self._owner,
                chunk_owner=self._chunk_owner,
                concurrency=self._config.filter_concurrency,
            ):
                case Failure(filter_error):
                    return Failure(filter_error)
                case Success(outcome):
                    for position, present in zip(retryable, outcome.present):
                        descriptor_id = plan_run.plan.descriptors[position].id
                        plan_run.slots[position] = (
                            WriteSkipped(id=descriptor_id) if present else None
                        )

            pending = plan_run.pending(retryable)

        return Success(None)

    async def _submit_round(
        self,
        plan_run: _PlanRun,
        positions: list[int],
        cancel: asyncio.Event | None,
    ) -> Result[None, CampaignAborted]:
        """Batch ``positions`` and submit batch by batch, confirming each before the next."""
        plan = plan_run.plan
        limits = self._config.batch
        batches = batch_items(
            positions,
            lambda position: estimate_descriptor_size(plan.descriptors[position], limits),
            limits,
        )

        for number, batch in enumerate(batches, start=1):
            if _is_set(cancel):
                logger.warning(f"Cancelled; {len(batches) - number + 1} batch(es) not submitted")
                for position in (p for b in batches[number - 1 :] for p in b):
                    plan_run.slots[position] = WriteFailed(
                        id=plan.descriptors[position].id,
                        reason=CANCELLED_REASON,
                        retryable=False,
                    )
                return Success(None)

            if batch.oversized:
                self._fail_oversized(plan_run, batch)
                continue

            match await self._ensure_session():
                case Failure(auth_error):
                    return Failure(auth_error)
                case Success(session):
                    pass

            logger.info(
                f"Submitting batch {number}/{len(batches)} of {plan.key!r}: "
                f"{len(batch)} descriptor(s), ~{batch.estimated_bytes} bytes"
            )
            match await self._submit_batch(plan_run, batch, session):
                case Failure(halt):
                    self._hold_back(plan_run, batches[number:], halt)
                    return Success(None)
                case Success(accepted):
                    await self._confirm(plan_run, accepted, cancel)

        return Success(None)

    def _fail_oversized(self, plan_run: _PlanRun, batch: Batch[int]) -> None:
        limits = self._config.batch
        position = batch.items[0]
        descriptor_id = plan_run.plan.descriptors[position].id
        logger.error(
            f"Descriptor {descriptor_id} estimated at "
            f"{batch.estimated_bytes} bytes exceeds batch limit {limits.max_bytes}"
        )
        plan_run.slots[position] = WriteFailed(
            id=descriptor_id,
            reason=(
                f"oversized: estimated {batch.estimated_bytes} bytes exceeds "
                f"batch limit of {limits.max_bytes} bytes"
            ),
            retryable=False,
        )

    def _hold_back(
        self, plan_run: _PlanRun, batches: Sequence[Batch[int]], halt: _BatchHalt
    ) -> None:
        """Fail the unsent batches of a round without paying for more doomed submissions."""
        held = sum(len(batch) for batch in batches if not batch.oversized)
        if held:
            logger.error(
                f"Holding back {held} descriptor(s) of {plan_run.plan.key!r} "
                f"(retryable={halt.retryable}): {halt.reason}"
            )
        for batch in batches:
            if batch.oversized:
                self._fail_oversized(plan_run, batch)
                continue
            for position in batch:
                plan_run.slots[position] = WriteFailed(
                    id=plan_run.plan.descriptors[position].id,
                    reason=f"not submitted: {halt.reason}",
                    retryable=halt.retryable,
                )

    async def _submit_batch(
        self, plan_run: _PlanRun, batch: Batch[int], session: RelaySession
    ) -> Result[list[tuple[int, str]], _BatchHalt]:
        """
        Submit one batch and record rejections.

        Returns:
            Success with the accepted (position, tx_ref) pairs, or
            Failure(_BatchHalt) when no descriptor of the batch got through.
        """
        plan = plan_run.plan
        descriptors: list[WriteDescriptor] = [plan.descriptors[p] for p in batch]

        match await self._submitter.submit(descriptors, session):
            case Failure(error):
                retryable = is_transient_relay_error(error)
                logger.warning(f"Batch submission failed (retryable={retryable}): {error}")
                for position in batch:
                    plan_run.slots[position] = WriteFailed(
                        id=plan.descriptors[position].id,
                        reason=f"submission failed: {error}",
                        retryable=retryable,
                    )
                return Failure(
                    _BatchHalt(reason=f"earlier batch failed: {error}", retryable=retryable)
                )
            case Success(entries):
                pass

        accepted: list[tuple[int, str]] = []
        for index, position in enumerate(batch):
            descriptor_id = plan.descriptors[position].id
            entry = entries[index] if index < len(entries) else None
            match entry:
                case SubmitAccepted(tx_ref=tx_ref):
                    accepted.append((position, tx_ref))
                case SubmitRejected(reason=reason, retryable=retryable):
                    logger.warning(f"Relay rejected {descriptor_id}: {reason}")
                    plan_run.slots[position] = WriteFailed(
                        id=descriptor_id, reason=reason, retryable=retryable
                    )
                case None:
                    plan_run.slots[position] = WriteFailed(
                        id=descriptor_id, reason="no result returned by relay", retryable=True
                    )

        if not accepted:
            return Failure(
                _BatchHalt(
                    reason=f"all {len(batch)} descriptor(s) of an earlier batch failed",
                    retryable=any(plan_run.retryable(position) for position in batch),
                )
            )
        return Success(accepted)

    async def _confirm(
        self,
        plan_run: _PlanRun,
        accepted: list[tuple[int, str]],
        cancel: asyncio.Event | None,
    ) -> None:
        if not accepted:
            return
        policy = self._config.confirmation
        receipts = await wait_for_all(
            self._confirmer,
            [tx_ref for _, tx_ref in accepted],
            confirmations=policy.confirmations,
            timeout=policy.timeout,
            cancel=cancel,
        )
        for (position, tx_ref), receipt in zip(accepted, receipts):
            descriptor_id = plan_run.plan.descriptors[position].id
            match receipt:
                case Success():
                    plan_run.slots[position] = WriteSent(id=descriptor_id, tx_ref=tx_ref)
                    self._final_tx_ref = tx_ref
                case Failure(error):
                    plan_run.slots[position] = WriteFailed(
                        id=descriptor_id,
                        reason=describe_confirmation_error(error),
                        retryable=not isinstance(error, ConfirmationCancelled),
                        tx_ref=tx_ref,
                    )


def _is_set(cancel: asyncio.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


async def _cancel_all(tasks: Sequence[asyncio.Task[Result[None, CampaignAborted]]]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


async def run_campaign(
    plans: Sequence[UploadPlan],
    *,
    reader: StorageReader,
    submitter: Submitter,
    confirmer: Confirmer,
    gateway: RelayGateway,
    owner: str,
    credential: SessionCredential,
    config: PipelineConfig = PipelineConfig(),
    cancel: asyncio.Event | None = None,
    sleep: Sleep = asyncio.sleep,
    chunk_owner: str | None = None,
) -> Result[CampaignReport, CampaignAborted]:
    """One-shot convenience wrapper around ``UploadOrchestrator.run``."""
    orchestrator = UploadOrchestrator(
        reader=reader,
        submitter=submitter,
        confirmer=confirmer,
        gateway=gateway,
        owner=owner,
        credential=credential,
        config=config,
        sleep=sleep,
        chunk_owner=chunk_owner,
    )
    return await orchestrator.run(plans, cancel)
