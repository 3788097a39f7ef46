"""netrelay error ADTs."""

from netrelay.errors.campaign import (
    AuthorizationFailed,
    CampaignAborted,
    FilterFailed,
    FundingFailed,
    PlanRejected,
)
from netrelay.errors.confirm import (
    ConfirmationCancelled,
    ConfirmationError,
    ConfirmationFailed,
    ConfirmationTimeout,
    TransactionReverted,
    describe_confirmation_error,
)
from netrelay.errors.planner import (
    InvalidContent,
    InvalidKey,
    MissingFragment,
    PlanError,
    TooManyChunks,
)
from netrelay.errors.relay import (
    RelayError,
    RelayProtocolError,
    RelayRejected,
    RelayUnavailable,
    is_transient_relay_error,
)
from netrelay.errors.storage import ReadError, ReadFailed, ReadNotFound

__all__ = [
    "AuthorizationFailed",
    "CampaignAborted",
    "FilterFailed",
    "FundingFailed",
    "PlanRejected",
    "ConfirmationCancelled",
    "ConfirmationError",
    "ConfirmationFailed",
    "ConfirmationTimeout",
    "TransactionReverted",
    "describe_confirmation_error",
    "InvalidContent",
    "InvalidKey",
    "MissingFragment",
    "PlanError",
    "TooManyChunks",
    "RelayError",
    "RelayProtocolError",
    "RelayRejected",
    "RelayUnavailable",
    "is_transient_relay_error",
    "ReadError",
    "ReadFailed",
    "ReadNotFound",
]
