# src/netrelay/upload/engine.py
"""
Confirmation waits and bounded retry with exponential backoff.

Implements:
- ``wait_for_confirmations``: one receipt wait bounded by a deadline and
  aborted promptly by a cancel event
- ``wait_for_all``: concurrent waits with results aligned to the input
- ``retry_with_backoff``: re-run a Result-returning operation while the
  caller classifies its error as retryable
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence, TypeVar

from netrelay.config import RetryPolicy
from netrelay.errors.confirm import (
    ConfirmationCancelled,
    ConfirmationError,
    ConfirmationTimeout,
    TransactionReverted,
)
from netrelay.result import Failure, Result, Success
from netrelay.upload.protocols import Confirmer, Receipt


logger = logging.getLogger(__name__)

T = TypeVar("T")
E = TypeVar("E")

Sleep = Callable[[float], Awaitable[None]]

__all__ = [
    "Sleep",
    "RetryScheduled",
    "RetryExhausted",
    "RetryGiveUp",
    "RetryControl",
    "retry_schedule",
    "retry_decision",
    "retry_with_backoff",
    "wait_for_confirmations",
    "wait_for_all",
]


# ---------------------------------------------------------------------------
# Retry control
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryScheduled:
    """Planned retry with bounded, explicit delay."""

    attempt: int
    delay_seconds: float


@dataclass(frozen=True)
class RetryExhausted:
    """Retry budget consumed."""

    attempts: int


@dataclass(frozen=True)
class RetryGiveUp:
    """Explicit stop signal when the error is not retryable."""

    reason: str


RetryControl = RetryScheduled | RetryExhausted | RetryGiveUp


def retry_schedule(policy: RetryPolicy) -> list[RetryScheduled]:
    """Deterministic retry plan: one entry per allowed retry."""
    return [
        RetryScheduled(attempt=attempt, delay_seconds=policy.delay_for(attempt))
        for attempt in range(policy.max_attempts)
    ]


def retry_decision(
    *, attempt: int, retryable: bool, schedule: list[RetryScheduled]
) -> RetryControl:
    """Map a failed attempt to an explicit retry control signal."""
    if not retryable:
        return RetryGiveUp(reason="non_retryable")
    if attempt >= len(schedule):
        return RetryExhausted(attempts=attempt + 1)
    return schedule[attempt]


async def retry_with_backoff(
    operation: Callable[[], Awaitable[Result[T, E]]],
    *,
    is_retryable: Callable[[E], bool],
    policy: RetryPolicy = RetryPolicy(),
    sleep: Sleep = asyncio.sleep,
    label: str = "operation",
) -> Result[T, E]:
    """
    Run ``operation`` until it succeeds or retrying stops making sense.

    Non-retryable errors are returned from the attempt that produced them;
    when the budget of ``policy.max_attempts`` retries is spent the last
    error is returned.

    Args:
        operation: Zero-argument coroutine factory returning a Result
        is_retryable: Caller's classification of the error
        policy: Backoff schedule
        sleep: Awaitable delay, injectable for tests
        label: Name used in log messages
    """
    schedule = retry_schedule(policy)
    attempt = 0
    while True:
        result = await operation()
        match result:
            case Success():
                return result
            case Failure(error):
                match retry_decision(
                    attempt=attempt, retryable=is_retryable(error), schedule=schedule
                ):
                    case RetryGiveUp():
                        return result
                    case RetryExhausted(attempts=attempts):
                        logger.warning(f"{label} failed after {attempts} attempts: {error}")
                        return result
                    case RetryScheduled(delay_seconds=delay):
                        logger.warning(
                            f"{label} attempt {attempt + 1} failed ({error}); "
                            f"retrying in {delay:.1f}s"
                        )
                        await sleep(delay)
                        attempt += 1


# ---------------------------------------------------------------------------
# Confirmation
# ---------------------------------------------------------------------------


def _check_receipt(
    result: Result[Receipt, ConfirmationError],
) -> Result[Receipt, ConfirmationError]:
    match result:
        case Success(Receipt(succeeded=False, tx_ref=tx_ref, block_number=block)):
            return Failure(TransactionReverted(tx_ref=tx_ref, block_number=block))
        case _:
            return result


async def wait_for_confirmations(
    confirmer: Confirmer,
    tx_ref: str,
    *,
    confirmations: int = 1,
    timeout: float = 60.0,
    cancel: asyncio.Event | None = None,
) -> Result[Receipt, ConfirmationError]:
    """
    Wait until ``tx_ref`` has ``confirmations`` confirmations.

    Returns:
        Success(Receipt) for a successful transaction; Failure with
        ``ConfirmationTimeout`` past the deadline, ``TransactionReverted``
        for a failed one, or ``ConfirmationCancelled`` when ``cancel`` fires.
    """
    if cancel is not None and cancel.is_set():
        return Failure(ConfirmationCancelled(tx_ref=tx_ref))

    receipt_task = asyncio.ensure_future(
        asyncio.wait_for(confirmer.wait_for_receipt(tx_ref, confirmations, timeout), timeout)
    )
    cancel_task = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
    waiting = [receipt_task] if cancel_task is None else [receipt_task, cancel_task]

    try:
        await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        receipt_task.cancel()
        raise
    finally:
        if cancel_task is not None:
            cancel_task.cancel()

    if not receipt_task.done():
        receipt_task.cancel()
        await asyncio.gather(receipt_task, return_exceptions=True)
        logger.warning(f"Confirmation wait for {tx_ref} cancelled")
        return Failure(ConfirmationCancelled(tx_ref=tx_ref))

    try:
        result = receipt_task.result()
    except TimeoutError:
        logger.warning(f"No receipt for {tx_ref} within {timeout:.0f}s")
        return Failure(ConfirmationTimeout(tx_ref=tx_ref, timeout_seconds=timeout))
    return _check_receipt(result)


async def wait_for_all(
    confirmer: Confirmer,
    tx_refs: Sequence[str],
    *,
    confirmations: int = 1,
    timeout: float = 60.0,
    cancel: asyncio.Event | None = None,
) -> list[Result[Receipt, ConfirmationError]]:
    """Wait for every reference concurrently; results align with ``tx_refs``."""
    return list(
        await asyncio.gather(
            *(
                wait_for_confirmations(
                    confirmer,
                    tx_ref,
                    confirmations=confirmations,
                    timeout=timeout,
                    cancel=cancel,
                )
                for tx_ref in tx_refs
            )
        )
    )
