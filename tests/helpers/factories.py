# tests/helpers/factories.py
"""Factories for plans, descriptors and orchestrators used across tests."""

from __future__ import annotations

from netrelay.config import PipelineConfig, PlannerLimits
from netrelay.upload import (
    InMemoryLedger,
    NormalWrite,
    SessionCredential,
    UploadOrchestrator,
    UploadPlan,
    plan_upload,
    storage_key_bytes,
)
from netrelay.upload.keys import to_hex
from tests.helpers.constants import OWNER
from tests.helpers.fakes import RecordingSleep, ScriptedGateway
from tests.helpers.result_utils import expect_success


SMALL_CHUNKS = PlannerLimits(small_threshold=16, chunk_size=16)
"""Limits that split anything longer than 16 bytes into 16-byte chunks."""


def make_normal(index: int, value: bytes = b"payload") -> NormalWrite:
    """Small normal write with a key derived from ``index``."""
    key = f"key-{index:04d}"
    return NormalWrite(
        id=storage_key_bytes(key), key=key, text=f"file-{index}", value=to_hex(value)
    )


def make_normal_plan(key: str = "notes.txt", content: bytes = b"hello world") -> UploadPlan:
    return expect_success(plan_upload(key, f"{key} label", content))


def make_chunked_plan(
    chunk_count: int = 2, key: str = "big.bin", limits: PlannerLimits = SMALL_CHUNKS
) -> UploadPlan:
    """Chunked plan of ``chunk_count`` (>= 2) distinct ``limits.chunk_size``-byte fragments."""
    content = b"".join(
        bytes([65 + position]) * limits.chunk_size for position in range(chunk_count)
    )
    return expect_success(plan_upload(key, "big file", content, operator=OWNER, limits=limits))


def make_orchestrator(
    ledger: InMemoryLedger,
    gateway: ScriptedGateway,
    sleeper: RecordingSleep,
    config: PipelineConfig = PipelineConfig(),
) -> UploadOrchestrator:
    """Orchestrator wired to the in-memory ledger for every capability."""
    return UploadOrchestrator(
        reader=ledger,
        submitter=ledger,
        confirmer=ledger,
        gateway=gateway,
        owner=OWNER,
        credential=SessionCredential(signature="0xsigned"),
        config=config,
        sleep=sleeper,
    )
