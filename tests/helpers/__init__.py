# tests/helpers/__init__.py
"""Shared test utilities for the netrelay test suite.

Usage:
    >>> from tests.helpers import expect_success, make_chunked_plan
    >>> from tests.helpers import ScriptedGateway, RecordingSleep
    >>>
    >>> plan = make_chunked_plan(chunk_count=3)
    >>> orchestrator = make_orchestrator(ledger, ScriptedGateway(), RecordingSleep())
"""

from __future__ import annotations

from tests.helpers.constants import (
    API_URL,
    BACKEND_WALLET,
    CHAIN_ID,
    OWNER,
    PAYMENT_REF,
    RPC_URL,
    SECRET_KEY,
)
from tests.helpers.factories import (
    SMALL_CHUNKS,
    make_chunked_plan,
    make_normal,
    make_normal_plan,
    make_orchestrator,
)
from tests.helpers.fakes import RecordingSleep, ScriptedGateway
from tests.helpers.result_utils import expect_failure, expect_success


__all__ = [
    # Constants
    "API_URL",
    "BACKEND_WALLET",
    "CHAIN_ID",
    "OWNER",
    "PAYMENT_REF",
    "RPC_URL",
    "SECRET_KEY",
    # Factories
    "SMALL_CHUNKS",
    "make_chunked_plan",
    "make_normal",
    "make_normal_plan",
    "make_orchestrator",
    # Fakes
    "RecordingSleep",
    "ScriptedGateway",
    # Result helpers
    "expect_failure",
    "expect_success",
]
