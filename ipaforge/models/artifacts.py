"""Artifact models: one uploaded IPA generation plus its metadata."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


def artifact_timestamp(artifact_id: int) -> datetime:
    """The upload instant encoded in an artifact id (epoch milliseconds)."""
    return datetime.fromtimestamp(artifact_id / 1000, tz=timezone.utc)


def storage_key_for(artifact_id: int) -> str:
    """Artifact Store key of an artifact's binary."""
    return f"ipa_{artifact_id}.ipa"


class ArtifactMetadata(BaseModel):
    """Metadata supplied with an upload.

    ``app_name``, ``bundle_id`` and ``version`` are required; the registry
    rejects blank values with ``ValidationError``.
    """

    model_config = ConfigDict(frozen=True)

    app_name: str = ""
    bundle_id: str = ""
    version: str = ""
    app_slug: str = ""  # derived from app_name when empty
    developer: str = ""
    support_email: str = ""
    description: str = ""
    changelog: str = ""
    icon_url: str | None = None
    screenshot_urls: list[str] = []
    min_os_version: str = ""  # registry default applies when empty


class ArtifactPatch(BaseModel):
    """A partial metadata edit. ``None`` fields are left unchanged.

    There is no ``app_slug`` field: the slug is part of every published link.
    """

    model_config = ConfigDict(frozen=True)

    app_name: str | None = None
    bundle_id: str | None = None
    version: str | None = None
    developer: str | None = None
    support_email: str | None = None
    description: str | None = None
    changelog: str | None = None
    icon_url: str | None = None
    screenshot_urls: list[str] | None = None
    min_os_version: str | None = None

    def changes(self) -> dict[str, object]:
        return self.model_dump(exclude_none=True)


class Artifact(BaseModel):
    """A registry record. The bytes live in the Artifact Store."""

    model_config = ConfigDict(frozen=True)

    artifact_id: int
    app_slug: str
    app_name: str
    bundle_id: str
    version: str
    developer: str = ""
    support_email: str = ""
    description: str = ""
    changelog: str = ""
    icon_url: str | None = None
    screenshot_urls: list[str] = []
    min_os_version: str = ""
    size_bytes: int = 0
    created_at: datetime
    updated_at: datetime
    signed_at: datetime | None = None

    @property
    def storage_key(self) -> str:
        return storage_key_for(self.artifact_id)

    @property
    def is_signed(self) -> bool:
        return self.signed_at is not None


class ArtifactListing(BaseModel):
    """Result of ``ArtifactRegistry.list()`` with storage totals."""

    model_config = ConfigDict(frozen=True)

    artifacts: list[Artifact]
    used_bytes: int
    quota_bytes: int

    @property
    def available_bytes(self) -> int:
        return max(self.quota_bytes - self.used_bytes, 0)

    @property
    def usage_percent(self) -> float:
        if not self.quota_bytes:
            return 0.0
        return round(100.0 * self.used_bytes / self.quota_bytes, 2)


class AppStats(BaseModel):
    """View and download counters for one artifact's share page."""

    model_config = ConfigDict(frozen=True)

    artifact_id: int
    app_name: str
    views: int = 0
    downloads: int = 0


class ArtifactLinks(BaseModel):
    """The five published links of an artifact. Derived, never stored."""

    model_config = ConfigDict(frozen=True)

    install_link: str
    direct_link: str
    short_link: str
    app_page_link: str
    testflight_link: str


class PublishedArtifact(BaseModel):
    """An artifact together with its links, as returned to operators."""

    model_config = ConfigDict(frozen=True)

    artifact: Artifact
    links: ArtifactLinks
    shortened_install_link: str | None = None
    warnings: list[str] = Field(default_factory=list)
