"""Signing identity models (a .p12 key bundle plus a provisioning profile)."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class Certificate(BaseModel):
    """A stored signing identity.

    Only active certificates are offered for signing. Deactivating is the
    reversible alternative to deleting.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    key_bundle_path: Path
    profile_path: Path
    password: str | None = None
    description: str = ""
    is_active: bool = True
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class CertificatePatch(BaseModel):
    """A partial certificate edit. ``None`` fields are left unchanged."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    password: str | None = None
    description: str | None = None
    is_active: bool | None = None
