"""Sign request state machine models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SignState(str, Enum):
    """Lifecycle of one sign request."""

    REQUESTED = "requested"
    IN_PROGRESS = "in_progress"
    SIGNED = "signed"
    FAILED = "failed"


# Terminal states (SIGNED, FAILED) have no outgoing transitions; a new
# sign of the same artifact is a new job.
VALID_TRANSITIONS: dict[SignState, set[SignState]] = {
    SignState.REQUESTED: {SignState.IN_PROGRESS, SignState.FAILED},
    SignState.IN_PROGRESS: {SignState.SIGNED, SignState.FAILED},
    SignState.SIGNED: set(),
    SignState.FAILED: set(),
}


class SignJob(BaseModel):
    """Snapshot of a sign request. Each transition yields a new snapshot."""

    model_config = ConfigDict(frozen=True)

    job_id: str = Field(default_factory=lambda: f"sign-{uuid.uuid4().hex[:12]}")
    artifact_id: int
    certificate_id: int
    state: SignState = SignState.REQUESTED
    error: str | None = None
    requested_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_finished(self) -> bool:
        return self.state in (SignState.SIGNED, SignState.FAILED)
