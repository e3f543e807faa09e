"""Audit ledger entry model — append-only, hash-chained.

The JSON deployment record says *what* exists; the ledger says *how it got
there*: one sealed entry per stage transition, each linked to the previous
entry of the same run by its SHA-256.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """A single stage transition in the audit ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    stage_id: str
    state_transition: str  # "from_state->to_state", e.g. "not_started->running"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    deployer: str = ""
    input_hash: str = ""  # SHA-256 of canonical stage inputs
    output_hash: str = ""  # SHA-256 of canonical stage outputs
    component_addresses: list[str] = []
    warnings: list[str] = []
    schema_version: str = "2026-10"
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed on append, seals this entry
