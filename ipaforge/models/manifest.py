"""Repository manifest models: the document installer clients fetch.

Field names are snake_case in Python and serialize to the installer
schema's camelCase keys (``bundleIdentifier``, ``iconURL``, ...). Render
with ``model_dump(mode="json", by_alias=True, exclude_none=True)``.

Manifest edits are expressed as tagged operations (``AddApp``,
``AddVersion``, ...) rather than free-form patches; see
``ipaforge.core.manifest_ops``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

_WIRE = ConfigDict(
    frozen=True,
    alias_generator=to_camel,
    populate_by_name=True,
)


def version_sort_key(version: "RepoVersion") -> tuple[datetime, str]:
    return (version.date, version.version)


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken as UTC so every date is comparable.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class RepoVersion(BaseModel):
    model_config = _WIRE

    version: str = Field(min_length=1)
    date: datetime
    size: int = Field(ge=0)
    download_url: str = Field(alias="downloadURL", min_length=1)
    localized_description: str = ""
    min_os_version: str = Field(alias="minOSVersion")

    @field_validator("date")
    @classmethod
    def _utc_date(cls, value: datetime) -> datetime:
        return _as_utc(value)


class AppPermissions(BaseModel):
    model_config = _WIRE

    entitlements: list[str] = []
    privacy: dict[str, str] = {}


class RepoApp(BaseModel):
    """One app entry. ``versions`` is newest first, one entry per version."""

    model_config = _WIRE

    name: str = Field(min_length=1)
    bundle_identifier: str = Field(min_length=1)
    developer_name: str
    subtitle: str
    localized_description: str
    icon_url: str = Field(alias="iconURL")
    tint_color: str
    screenshot_urls: list[str] = Field(default_factory=list, alias="screenshotURLs")
    versions: list[RepoVersion] = []
    app_permissions: AppPermissions | None = None

    @model_validator(mode="after")
    def _check_versions(self) -> "RepoApp":
        seen: set[str] = set()
        for v in self.versions:
            if v.version in seen:
                raise ValueError(
                    f"{self.bundle_identifier}: duplicate version {v.version!r}"
                )
            seen.add(v.version)
        keys = [version_sort_key(v) for v in self.versions]
        if any(a <= b for a, b in zip(keys, keys[1:])):
            raise ValueError(
                f"{self.bundle_identifier}: versions must be sorted newest first"
            )
        return self


class RepoNews(BaseModel):
    model_config = _WIRE

    identifier: str = Field(min_length=1)
    title: str
    caption: str
    date: datetime
    tint_color: str
    image_url: str | None = Field(default=None, alias="imageURL")
    notify: bool = False
    app_id: str | None = Field(default=None, alias="appID")

    @field_validator("date")
    @classmethod
    def _utc_date(cls, value: datetime) -> datetime:
        return _as_utc(value)


class RepositoryManifest(BaseModel):
    """The published catalog (``source.json``)."""

    model_config = _WIRE

    name: str = Field(min_length=1)
    identifier: str = Field(min_length=1)
    subtitle: str
    description: str
    icon_url: str = Field(alias="iconURL")
    header_url: str = Field(alias="headerURL")
    website: str
    tint_color: str
    featured_apps: list[str] = []
    apps: list[RepoApp] = []
    news: list[RepoNews] = []

    @model_validator(mode="after")
    def _check_keys(self) -> "RepositoryManifest":
        bundle_ids = [a.bundle_identifier for a in self.apps]
        if len(bundle_ids) != len(set(bundle_ids)):
            raise ValueError("apps[].bundleIdentifier must be unique")
        news_ids = [n.identifier for n in self.news]
        if len(news_ids) != len(set(news_ids)):
            raise ValueError("news[].identifier must be unique")
        return self

    def find_app(self, bundle_identifier: str) -> RepoApp | None:
        for app in self.apps:
            if app.bundle_identifier == bundle_identifier:
                return app
        return None

    def render(self) -> dict:
        """Serialize to the installer-consumable document."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Tagged manifest operations
# ---------------------------------------------------------------------------


class AddApp(BaseModel):
    """Insert an app, or replace the curated fields of an existing one.

    Existing versions are kept unless ``app.versions`` is non-empty.
    """

    model_config = ConfigDict(frozen=True)

    op: Literal["add_app"] = "add_app"
    app: RepoApp


class AddVersion(BaseModel):
    """Upsert a version.

    Entries with the same version string or the same download URL are
    replaced, including entries for that URL under any other bundle.
    """

    model_config = ConfigDict(frozen=True)

    op: Literal["add_version"] = "add_version"
    bundle_identifier: str
    version: RepoVersion
    seed_app: RepoApp | None = None  # created when the bundle is unknown


class RemoveApp(BaseModel):
    model_config = ConfigDict(frozen=True)

    op: Literal["remove_app"] = "remove_app"
    bundle_identifier: str


class RemoveVersion(BaseModel):
    """Drop versions of an app by version string or download URL.

    Without a bundle identifier, versions at ``download_url`` are dropped
    from every app.
    """

    model_config = ConfigDict(frozen=True)

    op: Literal["remove_version"] = "remove_version"
    bundle_identifier: str | None = None
    version: str | None = None
    download_url: str | None = None


class AddNews(BaseModel):
    model_config = ConfigDict(frozen=True)

    op: Literal["add_news"] = "add_news"
    news: RepoNews


class RemoveNews(BaseModel):
    model_config = ConfigDict(frozen=True)

    op: Literal["remove_news"] = "remove_news"
    identifier: str


class UpdateStore(BaseModel):
    """Edit the store-level metadata. ``None`` fields are left unchanged."""

    model_config = ConfigDict(frozen=True)

    op: Literal["update_store"] = "update_store"
    name: str | None = None
    identifier: str | None = None
    subtitle: str | None = None
    description: str | None = None
    icon_url: str | None = None
    header_url: str | None = None
    website: str | None = None
    tint_color: str | None = None
    featured_apps: list[str] | None = None


ManifestOperation = Annotated[
    Union[AddApp, AddVersion, RemoveApp, RemoveVersion, AddNews, RemoveNews, UpdateStore],
    Field(discriminator="op"),
]
