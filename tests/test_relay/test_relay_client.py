# tests/test_relay/test_relay_client.py
"""
Tests for the httpx relay client.

Requests go through ``httpx.MockTransport`` so every endpoint is exercised
against canned relay answers without a network.
"""

from __future__ import annotations

import base64
import json
from datetime import UTC, datetime, timedelta
from typing import Callable

import httpx
import pytest

from netrelay.config import RelayEndpointConfig
from netrelay.errors import RelayProtocolError, RelayRejected, RelayUnavailable
from netrelay.relay import RelayClient
from netrelay.relay.client import PAYMENT_RESPONSE_HEADER
from netrelay.upload import (
    RelaySession,
    SessionCredential,
    SubmitAccepted,
    SubmitRejected,
    to_wire,
)
from tests.helpers import (
    API_URL,
    BACKEND_WALLET,
    CHAIN_ID,
    OWNER,
    PAYMENT_REF,
    SECRET_KEY,
    expect_failure,
    expect_success,
    make_normal,
)


Handler = Callable[[httpx.Request], httpx.Response]

CONFIG = RelayEndpointConfig(api_url=API_URL + "/", chain_id=CHAIN_ID, secret_key=SECRET_KEY)
SESSION = RelaySession(
    token="session-token", owner=OWNER, expires_at=datetime.now(UTC) + timedelta(hours=1)
)


class _Recorder:
    """MockTransport handler that records requests and delegates to ``respond``."""

    def __init__(self, respond: Handler) -> None:
        self._respond = respond
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._respond(request)

    def body(self, index: int = -1) -> dict[str, object]:
        decoded = json.loads(self.requests[index].content)
        assert isinstance(decoded, dict)
        return decoded


def _client(recorder: _Recorder) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(recorder))


def _settlement_header(payload: dict[str, str]) -> dict[str, str]:
    encoded = base64.b64encode(json.dumps(payload).encode()).decode()
    return {PAYMENT_RESPONSE_HEADER: encoded}


def _with_relay(
    respond: Handler,
) -> tuple[RelayClient, httpx.AsyncClient, _Recorder]:
    recorder = _Recorder(respond)
    http = _client(recorder)
    return RelayClient(CONFIG, client=http), http, recorder


# =========================================================================== #
#                                SESSIONS                                     #
# =========================================================================== #


class TestSession:
    """Session creation and relay error mapping."""

    @pytest.mark.asyncio
    async def test_create_session(self) -> None:
        """Credentials are posted and the expiry is converted to UTC."""
        relay, http, recorder = _with_relay(
            lambda request: httpx.Response(
                200, json={"success": True, "sessionToken": "tok-1", "expiresAt": 1_900_000_000}
            )
        )
        async with http:
            session = expect_success(
                await relay.create_session(OWNER, SessionCredential(signature="0xsig"), 600)
            )

        assert session.token == "tok-1"
        assert session.owner == OWNER
        assert session.expires_at == datetime.fromtimestamp(1_900_000_000, UTC)
        request = recorder.requests[0]
        assert str(request.url) == f"{API_URL}/api/relay/session"
        assert recorder.body() == {
            "chainId": CHAIN_ID,
            "operatorAddress": OWNER,
            "secretKey": SECRET_KEY,
            "signature": "0xsig",
            "expiresIn": 600,
        }

    @pytest.mark.asyncio
    async def test_refused_session(self) -> None:
        """An error status carries the relay's message."""
        relay, http, _ = _with_relay(
            lambda request: httpx.Response(401, json={"success": False, "error": "bad signature"})
        )
        async with http:
            error = expect_failure(
                await relay.create_session(OWNER, SessionCredential(signature="0xsig"))
            )

        assert error == RelayRejected(
            endpoint="/api/relay/session", status=401, message="bad signature"
        )

    @pytest.mark.asyncio
    async def test_success_false_on_ok_status(self) -> None:
        """``success: false`` is a rejection even with a 200."""
        relay, http, _ = _with_relay(
            lambda request: httpx.Response(200, json={"success": False, "error": "expired"})
        )
        async with http:
            error = expect_failure(
                await relay.create_session(OWNER, SessionCredential(signature="0xsig"))
            )

        assert error == RelayRejected(endpoint="/api/relay/session", status=200, message="expired")

    @pytest.mark.asyncio
    async def test_missing_fields_are_a_protocol_error(self) -> None:
        """A successful body without a token cannot be used."""
        relay, http, _ = _with_relay(
            lambda request: httpx.Response(200, json={"success": True})
        )
        async with http:
            error = expect_failure(
                await relay.create_session(OWNER, SessionCredential(signature="0xsig"))
            )

        assert isinstance(error, RelayProtocolError)


# =========================================================================== #
#                              TRANSPORT                                      #
# =========================================================================== #


class TestTransport:
    """Transport failures and undecodable bodies."""

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        """Transport exceptions become RelayUnavailable."""

        def _refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        relay, http, _ = _with_relay(_refuse)
        async with http:
            error = expect_failure(await relay.check_balance(OWNER))

        assert error == RelayUnavailable(
            endpoint="/api/relay/balance", message="connection refused"
        )

    @pytest.mark.asyncio
    async def test_non_json_success_body(self) -> None:
        """A 2xx body that is not JSON is a protocol error."""
        relay, http, _ = _with_relay(lambda request: httpx.Response(200, text="<html>"))
        async with http:
            error = expect_failure(await relay.check_balance(OWNER))

        assert isinstance(error, RelayProtocolError)

    @pytest.mark.asyncio
    async def test_non_json_error_body(self) -> None:
        """A gateway error page keeps its status and text."""
        relay, http, _ = _with_relay(lambda request: httpx.Response(502, text="bad gateway"))
        async with http:
            error = expect_failure(await relay.check_balance(OWNER))

        assert error == RelayRejected(
            endpoint="/api/relay/balance", status=502, message="bad gateway"
        )

    @pytest.mark.asyncio
    async def test_supplied_client_is_not_closed(self) -> None:
        """Only clients the relay created are closed with it."""
        recorder = _Recorder(lambda request: httpx.Response(200, json={}))
        http = _client(recorder)

        async with RelayClient(CONFIG, client=http):
            pass

        assert http.is_closed is False
        await http.aclose()


# =========================================================================== #
#                               FUNDING                                       #
# =========================================================================== #


class TestFunding:
    """Balance, fund and verify endpoints."""

    @pytest.mark.asyncio
    async def test_check_balance(self) -> None:
        """Wei amounts sent as strings are parsed."""
        relay, http, _ = _with_relay(
            lambda request: httpx.Response(
                200,
                json={
                    "success": True,
                    "backendWalletAddress": BACKEND_WALLET,
                    "balanceWei": "1000",
                    "sufficientBalance": False,
                    "minRequiredWei": "5000",
                },
            )
        )
        async with http:
            status = expect_success(await relay.check_balance(OWNER))

        assert status.sufficient is False
        assert status.backend_wallet == BACKEND_WALLET
        assert (status.balance_wei, status.min_required_wei) == (1000, 5000)

    @pytest.mark.asyncio
    async def test_fund_uses_payment_client(self) -> None:
        """The fund call goes through the payment client and reads the settlement header."""
        plain = _Recorder(lambda request: httpx.Response(500))
        paying = _Recorder(
            lambda request: httpx.Response(
                200,
                json={"success": True},
                headers=_settlement_header({"transaction": PAYMENT_REF}),
            )
        )
        async with _client(plain) as http, _client(paying) as payment_http:
            relay = RelayClient(CONFIG, client=http, payment_client=payment_http)
            payment_ref = expect_success(await relay.fund(OWNER))

        assert payment_ref == PAYMENT_REF
        assert plain.requests == []
        assert paying.requests[0].url.path == f"/api/relay/{CHAIN_ID}/fund"

    @pytest.mark.asyncio
    async def test_settled_402_is_accepted(self) -> None:
        """A 402 whose body names the payer counts as paid."""
        relay, http, _ = _with_relay(
            lambda request: httpx.Response(
                402, json={"payer": OWNER}, headers=_settlement_header({"txHash": PAYMENT_REF})
            )
        )
        async with http:
            assert expect_success(await relay.fund(OWNER)) == PAYMENT_REF

    @pytest.mark.asyncio
    async def test_unsettled_402_is_rejected(self) -> None:
        """A bare payment challenge means the payment never happened."""
        relay, http, _ = _with_relay(
            lambda request: httpx.Response(402, json={"error": "payment required"})
        )
        async with http:
            error = expect_failure(await relay.fund(OWNER))

        assert error == RelayRejected(
            endpoint=f"/api/relay/{CHAIN_ID}/fund", status=402, message="payment required"
        )

    @pytest.mark.asyncio
    async def test_fund_without_settlement_header(self) -> None:
        """No payment reference means nothing to verify."""
        relay, http, _ = _with_relay(
            lambda request: httpx.Response(200, json={"success": True})
        )
        async with http:
            error = expect_failure(await relay.fund(OWNER))

        assert isinstance(error, RelayProtocolError)

    @pytest.mark.asyncio
    async def test_verify_fund(self) -> None:
        """Verification posts the payment reference and returns the backend wallet."""
        relay, http, recorder = _with_relay(
            lambda request: httpx.Response(
                200, json={"success": True, "backendWalletAddress": BACKEND_WALLET}
            )
        )
        async with http:
            wallet = expect_success(await relay.verify_fund(PAYMENT_REF, OWNER))

        assert wallet == BACKEND_WALLET
        assert recorder.requests[0].url.path == "/api/relay/fund/verify"
        assert recorder.body()["paymentTxHash"] == PAYMENT_REF


# =========================================================================== #
#                              SUBMISSION                                     #
# =========================================================================== #


class TestSubmit:
    """Batch submission and per-index result alignment."""

    @pytest.mark.asyncio
    async def test_full_success(self) -> None:
        """Every descriptor gets its transaction hash."""
        batch = [make_normal(1), make_normal(2)]
        relay, http, recorder = _with_relay(
            lambda request: httpx.Response(
                200,
                json={
                    "success": True,
                    "transactionHashes": ["0xa1", "0xa2"],
                    "successfulIndexes": [0, 1],
                },
            )
        )
        async with http:
            entries = expect_success(await relay.submit(batch, SESSION))

        assert entries == [
            SubmitAccepted(id=batch[0].id, tx_ref="0xa1"),
            SubmitAccepted(id=batch[1].id, tx_ref="0xa2"),
        ]
        body = recorder.body()
        assert body["sessionToken"] == "session-token"
        assert body["transactions"] == [to_wire(descriptor) for descriptor in batch]

    @pytest.mark.asyncio
    async def test_partial_failure(self) -> None:
        """A partial batch reports ``success: false`` with per-index errors."""
        batch = [make_normal(1), make_normal(2), make_normal(3)]
        relay, http, _ = _with_relay(
            lambda request: httpx.Response(
                200,
                json={
                    "success": False,
                    "transactionHashes": ["0xa1"],
                    "successfulIndexes": [0],
                    "failedIndexes": [1],
                    "errors": [{"index": 1, "error": "nonce too low"}],
                },
            )
        )
        async with http:
            entries = expect_success(await relay.submit(batch, SESSION))

        assert entries == [
            SubmitAccepted(id=batch[0].id, tx_ref="0xa1"),
            SubmitRejected(id=batch[1].id, reason="nonce too low", retryable=True),
            SubmitRejected(id=batch[2].id, reason="missing from relay response", retryable=True),
        ]

    @pytest.mark.asyncio
    async def test_total_failure(self) -> None:
        """``success: false`` with no indexes fails the whole request."""
        relay, http, _ = _with_relay(
            lambda request: httpx.Response(200, json={"success": False, "error": "session expired"})
        )
        async with http:
            error = expect_failure(await relay.submit([make_normal(1)], SESSION))

        assert error == RelayRejected(
            endpoint="/api/relay/submit", status=200, message="session expired"
        )

    @pytest.mark.asyncio
    async def test_hash_count_mismatch(self) -> None:
        """Hashes must pair one-to-one with successful indexes."""
        relay, http, _ = _with_relay(
            lambda request: httpx.Response(
                200,
                json={"success": True, "transactionHashes": ["0xa1"], "successfulIndexes": [0, 1]},
            )
        )
        async with http:
            error = expect_failure(await relay.submit([make_normal(1), make_normal(2)], SESSION))

        assert isinstance(error, RelayProtocolError)

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        """A 5xx answer is a rejection carrying its status."""
        relay, http, _ = _with_relay(
            lambda request: httpx.Response(503, json={"error": "overloaded"})
        )
        async with http:
            error = expect_failure(await relay.submit([make_normal(1)], SESSION))

        assert error == RelayRejected(
            endpoint="/api/relay/submit", status=503, message="overloaded"
        )
