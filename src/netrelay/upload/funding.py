# src/netrelay/upload/funding.py
"""
Balance sufficiency check and the fund-then-verify handshake.

The relay pays gas from a backend wallet tied to the operator. Before
submitting, the orchestrator makes sure that wallet can pay: check the
balance, and when it is short (or the check itself fails) pay for a top-up
and ask the relay to verify the payment. Verification is retried only for
errors known to clear up on their own.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from netrelay.config import FundingPolicy
from netrelay.errors.campaign import FundingFailed
from netrelay.errors.relay import RelayError, RelayRejected
from netrelay.result import Failure, Result, Success
from netrelay.upload.engine import Sleep, retry_with_backoff
from netrelay.upload.protocols import BalanceStatus, RelayGateway


logger = logging.getLogger(__name__)

__all__ = [
    "RETRYABLE_VERIFY_MESSAGES",
    "FundingOutcome",
    "ensure_funded",
    "is_retryable_verify_error",
]


RETRYABLE_VERIFY_MESSAGES: tuple[str, ...] = (
    "failed to fetch payment transaction",
    "insufficient balance",
    "transferfailed",
)


@dataclass(frozen=True)
class FundingOutcome:
    """Backend wallet ready to pay for submissions.

    Attributes:
        backend_wallet: Address the relay submits from
        funded: True when a top-up was paid during this call
        payment_ref: Payment transaction reference of the top-up, if any
    """

    backend_wallet: str
    funded: bool
    payment_ref: str | None = None


def is_retryable_verify_error(error: RelayError) -> bool:
    """
    Whether a fund-verify failure may succeed on a later attempt.

    Server errors (5xx) always qualify. Client errors (4xx) qualify only
    when the message names a known settling delay: the payment transaction
    not yet indexed, or the treasury still waiting on its own transfer.
    """
    match error:
        case RelayRejected(status=status) if status >= 500:
            return True
        case RelayRejected(status=status, message=message) if 400 <= status < 500:
            lowered = message.lower()
            return any(pattern in lowered for pattern in RETRYABLE_VERIFY_MESSAGES)
        case _:
            return False


async def ensure_funded(
    gateway: RelayGateway,
    owner: str,
    policy: FundingPolicy = FundingPolicy(),
    *,
    sleep: Sleep = asyncio.sleep,
    balance: BalanceStatus | None = None,
) -> Result[FundingOutcome, FundingFailed]:
    """
    Make sure the relay backend wallet for ``owner`` can pay for submissions.

    ``balance`` is a status the caller already fetched; the balance endpoint
    is only queried when it is omitted.

    Returns:
        Success(FundingOutcome) when the balance is sufficient or a top-up
        was verified; Failure(FundingFailed) when funding fails or
        verification hits a non-retryable error or runs out of attempts.
    """
    checked: Result[BalanceStatus, RelayError] = (
        Success(balance) if balance is not None else await gateway.check_balance(owner)
    )
    match checked:
        case Success(BalanceStatus(sufficient=True, backend_wallet=wallet)):
            logger.info(f"Backend wallet {wallet} has sufficient balance")
            return Success(FundingOutcome(backend_wallet=wallet, funded=False))
        case Success(BalanceStatus(backend_wallet=wallet, balance_wei=wei)):
            logger.info(f"Backend wallet {wallet} balance {wei} wei is insufficient; funding")
        case Failure(error):
            logger.warning(f"Balance check failed ({error}); funding anyway")

    match await gateway.fund(owner):
        case Failure(error):
            logger.error(f"Funding request failed: {error}")
            return Failure(FundingFailed(stage="fund", error=error))
        case Success(payment_ref):
            await sleep(policy.settle_delay)
            return await _verify_payment(gateway, owner, payment_ref, policy, sleep)


async def _verify_payment(
    gateway: RelayGateway,
    owner: str,
    payment_ref: str,
    policy: FundingPolicy,
    sleep: Sleep,
) -> Result[FundingOutcome, FundingFailed]:
    attempts = 0

    async def _verify() -> Result[str, RelayError]:
        nonlocal attempts
        attempts += 1
        return await gateway.verify_fund(payment_ref, owner)

    match await retry_with_backoff(
        _verify,
        is_retryable=is_retryable_verify_error,
        policy=policy.verify_retry,
        sleep=sleep,
        label="fund verify",
    ):
        case Success(wallet):
            logger.info(f"Funding verified after {attempts} attempt(s); backend wallet {wallet}")
            return Success(
                FundingOutcome(backend_wallet=wallet, funded=True, payment_ref=payment_ref)
            )
        case Failure(error):
            logger.error(f"Fund verify failed after {attempts} attempt(s): {error}")
            return Failure(FundingFailed(stage="verify", error=error, attempts=attempts))
