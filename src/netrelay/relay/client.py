# src/netrelay/relay/client.py
"""HTTP adapter for the relay service using httpx and Result types.

``RelayClient`` implements ``RelayGateway`` and ``Submitter``. All
transport and protocol failures are wrapped into ``RelayError`` ADTs so
the orchestrator can classify them with ``match`` instead of catching
exceptions.

Example:
    ```python
    async with RelayClient(config) as relay:
        match await relay.check_balance(operator):
            case Success(status):
                print(status.sufficient)
            case Failure(RelayRejected(status=code, message=msg)):
                logger.error(f"balance check refused ({code}): {msg}")
            case Failure(error):
                logger.error(f"relay error: {error}")
    ```
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from datetime import UTC, datetime
from types import TracebackType
from typing import Sequence, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, Field

from netrelay.config import RelayEndpointConfig
from netrelay.errors.relay import RelayError, RelayProtocolError, RelayRejected, RelayUnavailable
from netrelay.result import Failure, Result, Success
from netrelay.upload.descriptors import WriteDescriptor, to_wire
from netrelay.upload.protocols import (
    BalanceStatus,
    RelaySession,
    SessionCredential,
    SubmitAccepted,
    SubmitEntry,
    SubmitRejected,
)
from netrelay.validation import validate_payload


logger = logging.getLogger(__name__)

TResponse = TypeVar("TResponse", bound="RelayResponse")

PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"

__all__ = ["RelayClient", "PAYMENT_RESPONSE_HEADER"]


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class RelayResponse(BaseModel):
    """Fields common to every relay response body."""

    success: bool = False
    error: str | None = None

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class SessionResponse(RelayResponse):
    session_token: str = Field(alias="sessionToken", min_length=1)
    expires_at: int = Field(alias="expiresAt")


class BalanceResponse(RelayResponse):
    backend_wallet_address: str = Field(alias="backendWalletAddress")
    balance_wei: int = Field(0, alias="balanceWei")
    sufficient_balance: bool = Field(alias="sufficientBalance")
    min_required_wei: int = Field(0, alias="minRequiredWei")


class VerifyFundResponse(RelayResponse):
    backend_wallet_address: str = Field(alias="backendWalletAddress", min_length=1)
    already_processed: bool = Field(False, alias="alreadyProcessed")


class SubmitError(BaseModel):
    index: int
    error: str

    model_config = ConfigDict(frozen=True, extra="ignore")


class SubmitResponse(RelayResponse):
    transaction_hashes: list[str] = Field(default_factory=list, alias="transactionHashes")
    successful_indexes: list[int] = Field(default_factory=list, alias="successfulIndexes")
    failed_indexes: list[int] = Field(default_factory=list, alias="failedIndexes")
    errors: list[SubmitError] = Field(default_factory=list)
    backend_wallet_address: str | None = Field(None, alias="backendWalletAddress")


class PaymentSettlement(BaseModel):
    transaction: str | None = None
    tx_hash: str | None = Field(None, alias="txHash")

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error_message(payload: object, fallback: str) -> str:
    if isinstance(payload, dict):
        error = payload.get("error") or payload.get("message")
        if isinstance(error, str) and error:
            return error
    return fallback


def _payment_reference(response: httpx.Response) -> str | None:
    """Payment tx reference from the base64 JSON settlement header, if present."""
    header = response.headers.get(PAYMENT_RESPONSE_HEADER)
    if not header:
        return None
    try:
        decoded = json.loads(base64.b64decode(header, validate=True))
    except (binascii.Error, ValueError) as exc:
        logger.warning(f"Unreadable {PAYMENT_RESPONSE_HEADER} header: {exc}")
        return None
    match validate_payload(PaymentSettlement, decoded):
        case Success(settlement):
            return settlement.transaction or settlement.tx_hash
        case Failure(_):
            return None


def _entries_from_submit(
    batch: Sequence[WriteDescriptor], response: SubmitResponse
) -> list[SubmitEntry]:
    """Align per-index relay results with the submitted batch."""
    hashes = dict(zip(response.successful_indexes, response.transaction_hashes))
    errors = {error.index: error.error for error in response.errors}
    failed = set(response.failed_indexes)
    entries: list[SubmitEntry] = []
    for index, descriptor in enumerate(batch):
        if index in hashes:
            entries.append(SubmitAccepted(id=descriptor.id, tx_ref=hashes[index]))
        elif index in failed or index in errors:
            reason = errors.get(index, "relay reported failure without a message")
            entries.append(SubmitRejected(id=descriptor.id, reason=reason, retryable=True))
        else:
            entries.append(
                SubmitRejected(
                    id=descriptor.id, reason="missing from relay response", retryable=True
                )
            )
    return entries


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class RelayClient:
    """Relay service client over ``httpx.AsyncClient``.

    Args:
        config: Relay endpoint settings (URL, chain id, secret key)
        client: HTTP client to use; one is created (and closed) when omitted
        payment_client: HTTP client able to settle payment challenges, used
            for the fund endpoint; falls back to ``client``
    """

    def __init__(
        self,
        config: RelayEndpointConfig,
        *,
        client: httpx.AsyncClient | None = None,
        payment_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.request_timeout)
        self._payment_client = payment_client or self._client
        self._base_url = config.api_url.rstrip("/")

    async def __aenter__(self) -> RelayClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------ #
    # Transport                                                          #
    # ------------------------------------------------------------------ #

    def _auth_body(self, owner: str) -> dict[str, object]:
        return {
            "chainId": self._config.chain_id,
            "operatorAddress": owner,
            "secretKey": self._config.secret_key.get_secret_value(),
        }

    async def _post(
        self, endpoint: str, body: dict[str, object], client: httpx.AsyncClient | None = None
    ) -> Result[tuple[httpx.Response, object], RelayError]:
        """POST ``body`` and decode the JSON reply; only transport/decoding fail here."""
        http = client or self._client
        try:
            response = await http.post(f"{self._base_url}{endpoint}", json=body)
        except httpx.TransportError as exc:
            logger.warning(f"Relay {endpoint} unreachable: {exc!r}")
            return Failure(RelayUnavailable(endpoint=endpoint, message=str(exc) or repr(exc)))
        try:
            payload: object = response.json()
        except ValueError:
            if response.is_success:
                return Failure(
                    RelayProtocolError(endpoint=endpoint, message="response body is not JSON")
                )
            return Failure(
                RelayRejected(
                    endpoint=endpoint,
                    status=response.status_code,
                    message=response.text[:200] or response.reason_phrase,
                )
            )
        return Success((response, payload))

    async def _call(
        self, endpoint: str, body: dict[str, object], model: type[TResponse]
    ) -> Result[TResponse, RelayError]:
        """POST, require 2xx and ``success: true``, and validate the body."""
        match await self._post(endpoint, body):
            case Failure(error):
                return Failure(error)
            case Success((response, payload)):
                pass

        if not response.is_success:
            return Failure(
                RelayRejected(
                    endpoint=endpoint,
                    status=response.status_code,
                    message=_error_message(payload, response.reason_phrase),
                )
            )
        if not (isinstance(payload, dict) and payload.get("success") is True):
            return Failure(
                RelayRejected(
                    endpoint=endpoint,
                    status=response.status_code,
                    message=_error_message(payload, "Unknown error"),
                )
            )
        return validate_payload(model, payload).map_error(
            lambda exc: RelayProtocolError(endpoint=endpoint, message=str(exc))
        )

    # ------------------------------------------------------------------ #
    # RelayGateway                                                       #
    # ------------------------------------------------------------------ #

    async def create_session(
        self, owner: str, credential: SessionCredential, expires_in: int = 3600
    ) -> Result[RelaySession, RelayError]:
        body = {
            **self._auth_body(owner),
            "signature": credential.signature,
            "expiresIn": expires_in,
        }
        match await self._call("/api/relay/session", body, SessionResponse):
            case Success(session):
                logger.info(f"Relay session created for {owner}")
                return Success(
                    RelaySession(
                        token=session.session_token,
                        owner=owner,
                        expires_at=datetime.fromtimestamp(session.expires_at, UTC),
                    )
                )
            case Failure(error):
                return Failure(error)

    async def check_balance(self, owner: str) -> Result[BalanceStatus, RelayError]:
        result = await self._call("/api/relay/balance", self._auth_body(owner), BalanceResponse)
        return result.map(
            lambda balance: BalanceStatus(
                sufficient=balance.sufficient_balance,
                backend_wallet=balance.backend_wallet_address,
                balance_wei=balance.balance_wei,
                min_required_wei=balance.min_required_wei,
            )
        )

    async def fund(self, owner: str) -> Result[str, RelayError]:
        """
        Pay for a backend wallet top-up.

        A 402 answer is accepted only when its body shows the payment went
        through (``payer`` or ``success``); the payment reference comes from
        the settlement header either way.
        """
        endpoint = f"/api/relay/{self._config.chain_id}/fund"
        match await self._post(endpoint, self._auth_body(owner), self._payment_client):
            case Failure(error):
                return Failure(error)
            case Success((response, payload)):
                pass

        if response.status_code == 402:
            settled = isinstance(payload, dict) and bool(
                payload.get("payer") or payload.get("success")
            )
            if not settled:
                return Failure(
                    RelayRejected(
                        endpoint=endpoint,
                        status=402,
                        message=_error_message(payload, "payment required"),
                    )
                )
        elif not response.is_success:
            return Failure(
                RelayRejected(
                    endpoint=endpoint,
                    status=response.status_code,
                    message=_error_message(payload, response.reason_phrase),
                )
            )

        payment_ref = _payment_reference(response)
        if payment_ref is None:
            return Failure(
                RelayProtocolError(
                    endpoint=endpoint,
                    message=f"no payment transaction in {PAYMENT_RESPONSE_HEADER} header",
                )
            )
        logger.info(f"Backend wallet funding paid by {owner}: {payment_ref}")
        return Success(payment_ref)

    async def verify_fund(self, payment_ref: str, owner: str) -> Result[str, RelayError]:
        body = {**self._auth_body(owner), "paymentTxHash": payment_ref}
        return (await self._call("/api/relay/fund/verify", body, VerifyFundResponse)).map(
            lambda verified: verified.backend_wallet_address
        )

    # ------------------------------------------------------------------ #
    # Submitter                                                          #
    # ------------------------------------------------------------------ #

    async def submit(
        self, batch: Sequence[WriteDescriptor], session: RelaySession
    ) -> Result[list[SubmitEntry], RelayError]:
        """
        Submit one batch; per-index failures become ``SubmitRejected`` entries.

        A body with ``success: false`` is still read per index when it lists
        any indexes, since the relay reports partial batches that way.
        """
        endpoint = "/api/relay/submit"
        body = {
            **self._auth_body(session.owner),
            "sessionToken": session.token,
            "transactions": [to_wire(descriptor) for descriptor in batch],
        }
        match await self._post(endpoint, body):
            case Failure(error):
                return Failure(error)
            case Success((response, payload)):
                pass

        if not response.is_success:
            return Failure(
                RelayRejected(
                    endpoint=endpoint,
                    status=response.status_code,
                    message=_error_message(payload, response.reason_phrase),
                )
            )
        match validate_payload(SubmitResponse, payload):
            case Failure(exc):
                return Failure(RelayProtocolError(endpoint=endpoint, message=str(exc)))
            case Success(submitted):
                pass

        reported = submitted.successful_indexes or submitted.failed_indexes
        if not submitted.success and not reported:
            return Failure(
                RelayRejected(
                    endpoint=endpoint,
                    status=response.status_code,
                    message=submitted.error or "Unknown error",
                )
            )
        if len(submitted.transaction_hashes) != len(submitted.successful_indexes):
            return Failure(
                RelayProtocolError(
                    endpoint=endpoint,
                    message=(
                        f"{len(submitted.transaction_hashes)} hashes for "
                        f"{len(submitted.successful_indexes)} successful indexes"
                    ),
                )
            )
        logger.info(
            f"Relay accepted {len(submitted.successful_indexes)}/{len(batch)} transactions"
        )
        return Success(_entries_from_submit(batch, submitted))
