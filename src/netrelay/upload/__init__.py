# src/netrelay/upload/__init__.py
"""
Resumable, idempotent batch upload pipeline.

Content flows one way: plan -> existence filter -> batches -> submission
and confirmation -> retry of the failed subset. Storage reads, relay
submission and receipt polling are injected capabilities (see
``netrelay.upload.protocols``).
"""

from __future__ import annotations

from .batcher import (
    Batch,
    batch_descriptors,
    batch_items,
    estimate_batch_size,
    estimate_descriptor_size,
)
from .descriptors import (
    ChunkWrite,
    MetadataWrite,
    NormalWrite,
    UploadPlan,
    WriteDescriptor,
    descriptor_args,
    to_wire,
)
from .engine import retry_with_backoff, wait_for_all, wait_for_confirmations
from .filter import FilterOutcome, descriptor_exists, filter_existing
from .funding import FundingOutcome, ensure_funded, is_retryable_verify_error
from .keys import content_hash, decode_value, storage_key_bytes
from .memory import InMemoryLedger
from .orchestrator import UploadOrchestrator, run_campaign
from .outcomes import (
    CampaignReport,
    DescriptorError,
    PlanOutcome,
    SubmissionResult,
    WriteFailed,
    WriteSent,
    WriteSkipped,
)
from .planner import (
    DirectoryEntry,
    assemble_from_directory,
    parse_directory,
    plan_upload,
    plan_uploads,
    reassemble,
)
from .protocols import (
    BalanceStatus,
    ChunkMetadata,
    Confirmer,
    Receipt,
    RelayGateway,
    RelaySession,
    SessionCredential,
    StorageReader,
    StoredValue,
    SubmitAccepted,
    SubmitEntry,
    SubmitRejected,
    Submitter,
)


__all__ = [
    # Planning
    "plan_upload",
    "plan_uploads",
    "reassemble",
    "parse_directory",
    "assemble_from_directory",
    "DirectoryEntry",
    "storage_key_bytes",
    "content_hash",
    "decode_value",
    # Descriptors
    "NormalWrite",
    "ChunkWrite",
    "MetadataWrite",
    "WriteDescriptor",
    "UploadPlan",
    "descriptor_args",
    "to_wire",
    # Filtering and batching
    "FilterOutcome",
    "filter_existing",
    "descriptor_exists",
    "Batch",
    "batch_items",
    "batch_descriptors",
    "estimate_descriptor_size",
    "estimate_batch_size",
    # Submission
    "UploadOrchestrator",
    "run_campaign",
    "FundingOutcome",
    "ensure_funded",
    "is_retryable_verify_error",
    "wait_for_confirmations",
    "wait_for_all",
    "retry_with_backoff",
    # Outcomes
    "CampaignReport",
    "PlanOutcome",
    "DescriptorError",
    "SubmissionResult",
    "WriteSent",
    "WriteSkipped",
    "WriteFailed",
    # Collaborator protocols
    "StorageReader",
    "Submitter",
    "Confirmer",
    "RelayGateway",
    "StoredValue",
    "ChunkMetadata",
    "Receipt",
    "SubmitAccepted",
    "SubmitRejected",
    "SubmitEntry",
    "SessionCredential",
    "RelaySession",
    "BalanceStatus",
    # Test double
    "InMemoryLedger",
]
