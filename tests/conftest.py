# tests/conftest.py
"""Global PyTest fixtures for the test-suite.

Every test runs under a SIGALRM watchdog so a hung await (a confirmation
wait that never resolves, a retry loop that never ends) fails loudly
instead of stalling the session.
"""

from __future__ import annotations

import signal
from types import FrameType
from typing import Callable, Generator

import pytest

from netrelay.upload import InMemoryLedger, SessionCredential
from tests.helpers import BACKEND_WALLET, OWNER, RecordingSleep, ScriptedGateway


DEFAULT_TEST_TIMEOUT_SECONDS = 60.0


def _build_timeout_handler(
    timeout_seconds: float,
) -> Callable[[int, FrameType | None], None]:
    """Create SIGALRM handler that fails the test when timeout is reached."""

    def _handle_timeout(signum: int, frame: FrameType | None) -> None:
        pytest.fail(
            f"Test exceeded {timeout_seconds:.0f}s timeout (includes setup/teardown)",
            pytrace=True,
        )

    return _handle_timeout


def _resolve_timeout_seconds(request: pytest.FixtureRequest) -> float:
    """Return timeout for current test (marker override allowed)."""
    marker = request.node.get_closest_marker("timeout")
    if marker is None:
        return DEFAULT_TEST_TIMEOUT_SECONDS

    raw_value = marker.kwargs.get("seconds", marker.args[0] if marker.args else None)
    if raw_value is None:
        pytest.fail("timeout marker requires seconds argument", pytrace=True)

    seconds = float(raw_value)
    if seconds <= 0:
        pytest.fail("timeout marker must be positive seconds", pytrace=True)

    return seconds


@pytest.fixture(autouse=True)
def per_test_timeout(request: pytest.FixtureRequest) -> Generator[None, None, None]:
    """Fail any test that runs longer than the default timeout."""
    if not hasattr(signal, "SIGALRM") or not hasattr(signal, "setitimer"):
        yield
        return

    timeout_seconds = _resolve_timeout_seconds(request)
    handler = _build_timeout_handler(timeout_seconds)
    previous_handler = signal.getsignal(signal.SIGALRM)
    signal.signal(signal.SIGALRM, handler)
    signal.setitimer(signal.ITIMER_REAL, timeout_seconds)
    try:
        yield
    finally:
        signal.setitimer(signal.ITIMER_REAL, 0.0)
        signal.signal(signal.SIGALRM, previous_handler)


# =========================================================================== #
#                   PIPELINE COLLABORATOR FIXTURES                            #
# =========================================================================== #


@pytest.fixture
def ledger() -> InMemoryLedger:
    """Fresh in-memory store acting as reader, submitter and confirmer.

    Chunk writes land under the scripted gateway's backend wallet, as they
    do behind a real relay.
    """
    return InMemoryLedger(backend_wallet=BACKEND_WALLET)


@pytest.fixture
def gateway() -> ScriptedGateway:
    """Relay gateway with a sufficient balance unless scripted otherwise."""
    return ScriptedGateway()


@pytest.fixture
def sleeper() -> RecordingSleep:
    """Records backoff delays instead of sleeping."""
    return RecordingSleep()


@pytest.fixture
def owner() -> str:
    return OWNER


@pytest.fixture
def credential() -> SessionCredential:
    return SessionCredential(signature="0xsigned")
