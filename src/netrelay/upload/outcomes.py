# src/netrelay/upload/outcomes.py
"""Terminal per-descriptor results and the campaign report."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class WriteSent:
    """Descriptor broadcast and confirmed."""

    id: str
    tx_ref: str
    kind: Literal["WriteSent"] = "WriteSent"


@dataclass(frozen=True)
class WriteSkipped:
    """Descriptor already durable with matching content."""

    id: str
    kind: Literal["WriteSkipped"] = "WriteSkipped"


@dataclass(frozen=True)
class WriteFailed:
    """Descriptor not confirmed.

    Attributes:
        id: Descriptor identifier
        reason: Human-readable cause, preserved from the failing stage
        retryable: Whether another round could succeed
        tx_ref: Transaction reference when it was broadcast but not confirmed
    """

    id: str
    reason: str
    retryable: bool
    tx_ref: str | None = None
    kind: Literal["WriteFailed"] = "WriteFailed"


SubmissionResult = WriteSent | WriteSkipped | WriteFailed


@dataclass(frozen=True)
class DescriptorError:
    id: str
    reason: str


@dataclass(frozen=True)
class PlanOutcome:
    """Results for one plan, aligned with ``UploadPlan.descriptors``."""

    key: str
    results: tuple[SubmissionResult, ...]

    @property
    def success(self) -> bool:
        return all(isinstance(result, (WriteSent, WriteSkipped)) for result in self.results)


@dataclass(frozen=True)
class CampaignReport:
    """Aggregate outcome of one orchestrator run.

    Attributes:
        sent: Descriptors confirmed during this run
        skipped: Descriptors found already applied
        failed: Descriptors left unconfirmed
        success: True iff every descriptor was sent or skipped
        final_tx_ref: Reference of the last confirmed transaction, if any
        errors: One entry per failed descriptor
        results: Per-descriptor results, plans in input order
        backend_wallet: Relay wallet that paid for submissions, if contacted
        plans: Per-plan breakdown
    """

    sent: int
    skipped: int
    failed: int
    success: bool
    final_tx_ref: str | None
    errors: tuple[DescriptorError, ...]
    results: tuple[SubmissionResult, ...]
    backend_wallet: str | None = None
    plans: tuple[PlanOutcome, ...] = ()

    @classmethod
    def from_plans(
        cls,
        plans: tuple[PlanOutcome, ...],
        *,
        final_tx_ref: str | None = None,
        backend_wallet: str | None = None,
    ) -> CampaignReport:
        """Tally plan outcomes into a report."""
        results = tuple(result for plan in plans for result in plan.results)
        failures = [result for result in results if isinstance(result, WriteFailed)]
        return cls(
            sent=sum(isinstance(result, WriteSent) for result in results),
            skipped=sum(isinstance(result, WriteSkipped) for result in results),
            failed=len(failures),
            success=not failures,
            final_tx_ref=final_tx_ref,
            errors=tuple(DescriptorError(id=f.id, reason=f.reason) for f in failures),
            results=results,
            backend_wallet=backend_wallet,
            plans=plans,
        )

    def summary(self) -> dict[str, object]:
        """JSON-ready outcome: counts, success flag, last tx and errors."""
        summary: dict[str, object] = {
            "sent": self.sent,
            "skipped": self.skipped,
            "failed": self.failed,
            "success": self.success,
            "errors": [{"id": error.id, "reason": error.reason} for error in self.errors],
        }
        if self.final_tx_ref is not None:
            summary["final_tx_ref"] = self.final_tx_ref
        return summary
