# src/netrelay/relay/rpc.py
"""Receipt polling over Ethereum JSON-RPC."""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Annotated, Callable

import httpx
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, RootModel

from netrelay.config import ConfirmationPolicy, RelayEndpointConfig
from netrelay.errors.confirm import (
    ConfirmationError,
    ConfirmationFailed,
    ConfirmationTimeout,
    TransactionReverted,
)
from netrelay.result import Failure, Result, Success
from netrelay.upload.engine import Sleep
from netrelay.upload.protocols import Receipt
from netrelay.validation import validate_payload


logger = logging.getLogger(__name__)

__all__ = ["JsonRpcConfirmer"]


def _parse_quantity(value: object) -> object:
    """Decode a ``0x``-prefixed hex quantity; other values pass through to pydantic."""
    if isinstance(value, str) and value.startswith("0x"):
        return int(value, 16)
    return value


HexQuantity = Annotated[int, BeforeValidator(_parse_quantity)]


class RpcReceipt(BaseModel):
    """Subset of ``eth_getTransactionReceipt`` the confirmer needs."""

    block_number: HexQuantity = Field(alias="blockNumber")
    status: HexQuantity | None = None

    model_config = ConfigDict(frozen=True, extra="ignore")


class BlockNumber(RootModel[HexQuantity]):
    """Result of ``eth_blockNumber``."""


@dataclass(frozen=True)
class _Pending:
    """Not confirmed yet; ``error`` is set when the poll itself failed."""

    error: str | None = None


class JsonRpcConfirmer:
    """Polls a JSON-RPC node until a transaction reaches the wanted depth.

    Args:
        rpc_url: Node endpoint
        client: HTTP client; one is created (and closed) when omitted
        poll_interval: Seconds between polls
        sleep: Awaitable delay, injectable for tests
        clock: Monotonic clock used for the deadline
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        poll_interval: float = 2.0,
        request_timeout: float = 30.0,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rpc_url = rpc_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=request_timeout)
        self._poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock
        self._ids = itertools.count(1)

    @classmethod
    def from_config(
        cls,
        config: RelayEndpointConfig,
        policy: ConfirmationPolicy = ConfirmationPolicy(),
        *,
        client: httpx.AsyncClient | None = None,
    ) -> Result[JsonRpcConfirmer, str]:
        """Build a confirmer from relay settings; fails when no ``rpc_url`` is configured."""
        if config.rpc_url is None:
            return Failure("rpc_url is not configured")
        return Success(
            cls(
                config.rpc_url,
                client=client,
                poll_interval=policy.poll_interval,
                request_timeout=config.request_timeout,
            )
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _rpc(self, method: str, params: list[object]) -> Result[object, str]:
        """One JSON-RPC call; failures are returned as a message."""
        request = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._client.post(self._rpc_url, json=request)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            return Failure(f"{method}: {exc}")
        except ValueError:
            return Failure(f"{method}: response body is not JSON")

        if not isinstance(payload, dict):
            return Failure(f"{method}: unexpected response {payload!r}")
        error = payload.get("error")
        if error is not None:
            message = error.get("message") if isinstance(error, dict) else error
            return Failure(f"{method}: {message}")
        return Success(payload.get("result"))

    async def _check(
        self, tx_ref: str, confirmations: int
    ) -> Result[Receipt, ConfirmationError] | _Pending:
        """One poll: a final answer, or ``_Pending`` when the wait must go on."""
        match await self._rpc("eth_getTransactionReceipt", [tx_ref]):
            case Failure(message):
                return _Pending(error=message)
            case Success(None):
                return _Pending()
            case Success(raw):
                match validate_payload(RpcReceipt, raw):
                    case Failure(exc):
                        return Failure(ConfirmationFailed(tx_ref=tx_ref, message=str(exc)))
                    case Success(receipt):
                        pass

        if receipt.status == 0:
            return Failure(TransactionReverted(tx_ref=tx_ref, block_number=receipt.block_number))

        match await self._rpc("eth_blockNumber", []):
            case Failure(message):
                return _Pending(error=message)
            case Success(raw_head):
                match validate_payload(BlockNumber, raw_head):
                    case Failure():
                        return Failure(
                            ConfirmationFailed(
                                tx_ref=tx_ref,
                                message=f"eth_blockNumber: unexpected result {raw_head!r}",
                            )
                        )
                    case Success(head):
                        depth = head.root - receipt.block_number + 1

        if depth < confirmations:
            return _Pending()
        return Success(
            Receipt(tx_ref=tx_ref, block_number=receipt.block_number, confirmations=depth)
        )

    async def wait_for_receipt(
        self, tx_ref: str, confirmations: int, timeout: float
    ) -> Result[Receipt, ConfirmationError]:
        """
        Poll until ``tx_ref`` is mined with ``confirmations`` blocks on top.

        Depth counts the inclusion block, so ``latest - blockNumber + 1``.
        A receipt with ``status == 0`` is reported as reverted immediately.
        Failed RPC calls are retried on the next poll; if the deadline
        passes first, the timeout carries the last of those errors.
        """
        deadline = self._clock() + timeout
        last_error: str | None = None
        while True:
            match await self._check(tx_ref, confirmations):
                case _Pending(error=None):
                    pass
                case _Pending(error=error):
                    logger.warning(f"Receipt poll for {tx_ref} failed, retrying: {error}")
                    last_error = error
                case Success() | Failure() as outcome:
                    return outcome

            remaining = deadline - self._clock()
            if remaining <= 0:
                return Failure(
                    ConfirmationTimeout(
                        tx_ref=tx_ref, timeout_seconds=timeout, last_error=last_error
                    )
                )
            await self._sleep(min(self._poll_interval, remaining))
