"""ADTs for fatal campaign aborts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from netrelay.errors.planner import PlanError
from netrelay.errors.relay import RelayError
from netrelay.errors.storage import ReadFailed


@dataclass(frozen=True)
class AuthorizationFailed:
    """Relay session could not be established for the operator address."""

    owner: str
    error: RelayError
    kind: Literal["AuthorizationFailed"] = "AuthorizationFailed"


@dataclass(frozen=True)
class FundingFailed:
    """Funding top-up or its verification failed permanently.

    Attributes:
        stage: ``"balance"`` when the backend wallet could not be resolved,
            otherwise ``"fund"`` or ``"verify"``
        error: Last relay error observed
        attempts: Number of verify attempts made (0 when funding itself failed)
    """

    stage: Literal["balance", "fund", "verify"]
    error: RelayError
    attempts: int = 0
    kind: Literal["FundingFailed"] = "FundingFailed"


@dataclass(frozen=True)
class FilterFailed:
    """Existence check hit a read error that is not a clean "not found"."""

    descriptor_id: str
    error: ReadFailed
    kind: Literal["FilterFailed"] = "FilterFailed"


@dataclass(frozen=True)
class PlanRejected:
    """Content could not be planned (precondition violation)."""

    key: str
    error: PlanError
    kind: Literal["PlanRejected"] = "PlanRejected"


CampaignAborted = AuthorizationFailed | FundingFailed | FilterFailed | PlanRejected
