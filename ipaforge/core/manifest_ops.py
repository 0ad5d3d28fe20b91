"""Pure manifest operations: ``apply_operation(manifest, op) -> manifest``.

Each tagged operation maps to one handler. Handlers never mutate their
input; the result is re-validated, so an operation that would break a
manifest invariant raises ``ValidationError`` instead of producing a bad
document.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pydantic

from ipaforge.core.errors import NotFoundError, ValidationError
from ipaforge.models.manifest import (
    AddApp,
    AddNews,
    AddVersion,
    RemoveApp,
    RemoveNews,
    RemoveVersion,
    RepoApp,
    RepositoryManifest,
    RepoVersion,
    UpdateStore,
    version_sort_key,
)


def sort_versions(versions: list[RepoVersion]) -> list[RepoVersion]:
    """Newest first by date; version string breaks ties."""
    return sorted(versions, key=version_sort_key, reverse=True)


def _replace_app(
    manifest: RepositoryManifest, bundle_identifier: str, app: RepoApp | None
) -> list[RepoApp]:
    """Apps with *bundle_identifier* replaced by *app* (or dropped if None)."""
    apps: list[RepoApp] = []
    for existing in manifest.apps:
        if existing.bundle_identifier != bundle_identifier:
            apps.append(existing)
        elif app is not None:
            apps.append(app)
    return apps


def _without_download(
    manifest: RepositoryManifest, download_url: str, *, keep: str | None = None
) -> tuple[list[RepoApp], list[str]]:
    """Apps and featured ids with every version at *download_url* dropped.

    Apps left with no versions are removed along with their featured entry.
    The app whose bundle identifier is *keep* is passed through untouched.
    """
    apps: list[RepoApp] = []
    dropped: set[str] = set()
    for app in manifest.apps:
        if app.bundle_identifier == keep:
            apps.append(app)
            continue
        kept = [v for v in app.versions if v.download_url != download_url]
        if len(kept) == len(app.versions):
            apps.append(app)
        elif kept:
            apps.append(app.model_copy(update={"versions": kept}))
        else:
            dropped.add(app.bundle_identifier)
    featured = [b for b in manifest.featured_apps if b not in dropped]
    return apps, featured


def _add_app(manifest: RepositoryManifest, op: AddApp) -> dict[str, Any]:
    existing = manifest.find_app(op.app.bundle_identifier)
    if existing is None:
        app = op.app.model_copy(update={"versions": sort_versions(op.app.versions)})
        return {"apps": [*manifest.apps, app]}
    versions = op.app.versions or existing.versions
    app = op.app.model_copy(update={"versions": sort_versions(versions)})
    return {"apps": _replace_app(manifest, app.bundle_identifier, app)}


def _add_version(manifest: RepositoryManifest, op: AddVersion) -> dict[str, Any]:
    download_url = op.version.download_url
    existing = manifest.find_app(op.bundle_identifier)
    if existing is None:
        if op.seed_app is None:
            raise NotFoundError(f"App not in manifest: {op.bundle_identifier}")
        app = op.seed_app.model_copy(update={"versions": [op.version]})
        apps = [*manifest.apps, app]
    else:
        kept = [
            v for v in existing.versions
            if v.version != op.version.version and v.download_url != download_url
        ]
        app = existing.model_copy(update={"versions": sort_versions([op.version, *kept])})
        apps = _replace_app(manifest, op.bundle_identifier, app)
    # A binary is listed once: entries left under a previous bundle id go.
    apps, featured = _without_download(
        manifest.model_copy(update={"apps": apps}), download_url, keep=op.bundle_identifier
    )
    return {"apps": apps, "featured_apps": featured}


def _remove_app(manifest: RepositoryManifest, op: RemoveApp) -> dict[str, Any]:
    if manifest.find_app(op.bundle_identifier) is None:
        raise NotFoundError(f"App not in manifest: {op.bundle_identifier}")
    return {
        "apps": _replace_app(manifest, op.bundle_identifier, None),
        "featured_apps": [b for b in manifest.featured_apps if b != op.bundle_identifier],
    }


def _remove_version(manifest: RepositoryManifest, op: RemoveVersion) -> dict[str, Any]:
    if op.version is None and op.download_url is None:
        raise ValidationError("RemoveVersion needs a version or a download_url")
    if op.bundle_identifier is None:
        if op.download_url is None:
            raise ValidationError("RemoveVersion without a bundle identifier needs a download_url")
        apps, featured = _without_download(manifest, op.download_url)
        return {"apps": apps, "featured_apps": featured}
    existing = manifest.find_app(op.bundle_identifier)
    if existing is None:
        raise NotFoundError(f"App not in manifest: {op.bundle_identifier}")

    def matches(v: RepoVersion) -> bool:
        if op.version is not None and v.version == op.version:
            return True
        return op.download_url is not None and v.download_url == op.download_url

    kept = [v for v in existing.versions if not matches(v)]
    if len(kept) == len(existing.versions):
        return {}
    if not kept:
        # An app without versions cannot be installed.
        return _remove_app(manifest, RemoveApp(bundle_identifier=op.bundle_identifier))
    app = existing.model_copy(update={"versions": kept})
    return {"apps": _replace_app(manifest, op.bundle_identifier, app)}


def _add_news(manifest: RepositoryManifest, op: AddNews) -> dict[str, Any]:
    if any(n.identifier == op.news.identifier for n in manifest.news):
        news = [op.news if n.identifier == op.news.identifier else n for n in manifest.news]
    else:
        news = [op.news, *manifest.news]
    return {"news": news}


def _remove_news(manifest: RepositoryManifest, op: RemoveNews) -> dict[str, Any]:
    news = [n for n in manifest.news if n.identifier != op.identifier]
    if len(news) == len(manifest.news):
        raise NotFoundError(f"News item not in manifest: {op.identifier}")
    return {"news": news}


def _update_store(manifest: RepositoryManifest, op: UpdateStore) -> dict[str, Any]:
    return op.model_dump(exclude={"op"}, exclude_none=True)


_HANDLERS: dict[type, Callable[[RepositoryManifest, Any], dict[str, Any]]] = {
    AddApp: _add_app,
    AddVersion: _add_version,
    RemoveApp: _remove_app,
    RemoveVersion: _remove_version,
    AddNews: _add_news,
    RemoveNews: _remove_news,
    UpdateStore: _update_store,
}


def apply_operation(manifest: RepositoryManifest, op: Any) -> RepositoryManifest:
    """Return a new manifest with *op* applied."""
    handler = _HANDLERS.get(type(op))
    if handler is None:
        raise ValidationError(f"Unknown manifest operation: {type(op).__name__}")
    changes = handler(manifest, op)
    return revalidate(manifest.model_copy(update=changes))


def revalidate(manifest: RepositoryManifest) -> RepositoryManifest:
    """Round-trip through the wire schema so every invariant is checked."""
    try:
        return RepositoryManifest.model_validate(manifest.render())
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Manifest failed schema validation: {exc}") from exc
