"""Error ADTs for relay service calls.

Every relay endpoint (session, balance, fund, verify, submit) reports
failures through these variants so callers can decide retryability with a
``match`` rather than catching exceptions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class RelayUnavailable:
    """Transport-level failure: connection refused, DNS, read timeout.

    Attributes:
        endpoint: Relay endpoint path that was called
        message: Underlying transport error text
    """

    endpoint: str
    message: str
    kind: Literal["RelayUnavailable"] = "RelayUnavailable"


@dataclass(frozen=True)
class RelayRejected:
    """Relay answered with a non-success status or ``success: false``.

    Attributes:
        endpoint: Relay endpoint path that was called
        status: HTTP status code (200 when the body carried ``success: false``)
        message: Error message extracted from the response body
    """

    endpoint: str
    status: int
    message: str
    kind: Literal["RelayRejected"] = "RelayRejected"


@dataclass(frozen=True)
class RelayProtocolError:
    """Response body could not be decoded or lacked required fields."""

    endpoint: str
    message: str
    kind: Literal["RelayProtocolError"] = "RelayProtocolError"


RelayError = RelayUnavailable | RelayRejected | RelayProtocolError


def is_transient_relay_error(error: RelayError) -> bool:
    """Whether resubmitting after ``error`` may succeed.

    Transport failures and 5xx/429 answers are transient; 4xx rejections and
    malformed bodies are not.
    """
    match error:
        case RelayUnavailable():
            return True
        case RelayRejected(status=status):
            return status >= 500 or status == 429
        case RelayProtocolError():
            return False
