"""Build ledger entry model (append-only, hash-chained).

One entry is written per pipeline state transition. Entries are sealed
with the hash of the previous entry of the same run, so any rewrite of
history is detectable.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """A single entry in the append-only build ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    phase: str
    state_transition: str  # "from_state->to_state", e.g. "idle->building_dependencies"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    input_hash: str = ""
    output_hash: str = ""
    artifact_references: list[str] = []
    detail: str = ""  # error text for transitions into FAILED
    pipeline_version: str = "0.1.0"
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed after construction, seals this entry

    @property
    def to_state(self) -> str:
        return self.state_transition.split("->", 1)[-1]
