"""Repository Manifest Builder: owner of the published ``source.json``.

The manifest is a separately persisted document, not a view recomputed
from the registry: an operator can stage edits on an artifact and publish
them later with an explicit ``sync``.

Every mutation is a read-modify-write under one lock:

1. acquire the manifest lock (bounded wait, ``ConflictError`` on timeout)
2. re-read the persisted document and note its revision
3. check ``expected_revision`` if the caller supplied one
4. apply the tagged operation and validate the rendered document
5. confirm the file still has the revision read in step 2 (another
   process may share it), then write to a temp file and ``os.replace``

Two simultaneous syncs therefore never both start from the old document,
and readers only ever see a complete, schema-valid manifest.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

import pydantic

from ipaforge.core.errors import ConflictError, StorageError, ValidationError
from ipaforge.core.hasher import document_revision
from ipaforge.core.links import LinkGenerator
from ipaforge.core.manifest_ops import apply_operation
from ipaforge.models.artifacts import Artifact
from ipaforge.models.manifest import (
    AddApp,
    AddNews,
    AddVersion,
    RemoveApp,
    RemoveNews,
    RemoveVersion,
    RepoApp,
    RepoNews,
    RepositoryManifest,
    RepoVersion,
    UpdateStore,
)

logger = logging.getLogger(__name__)

_SUBTITLE_MAX = 80


class ManifestBuilder:
    """Applies manifest operations to the persisted repository document.

    Parameters
    ----------
    path:
        Location of the JSON document served to installer clients.
    defaults:
        Store metadata used when no document exists yet.
    links:
        Derives each version's ``downloadURL`` during ``sync``.
    lock_timeout:
        Seconds to wait for the manifest lock before raising ``ConflictError``.
    """

    def __init__(
        self,
        path: Path,
        defaults: RepositoryManifest,
        links: LinkGenerator,
        *,
        lock_timeout: float = 10.0,
    ) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._defaults = defaults
        self._links = links
        self._lock_timeout = lock_timeout
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def current(self) -> RepositoryManifest:
        """The persisted manifest (or the defaults if none was written)."""
        document = self._read_document()
        if document is None:
            return self._defaults
        try:
            return RepositoryManifest.model_validate(document)
        except pydantic.ValidationError as exc:
            raise StorageError(f"Persisted manifest {self._path} is invalid: {exc}") from exc

    @property
    def revision(self) -> str:
        return document_revision(self.current().render())

    def render(self) -> dict[str, Any]:
        """The installer document, validated against the schema."""
        document = self.current().render()
        _validate_document(document)
        return document

    def _read_document(self) -> dict[str, Any] | None:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Cannot read manifest {self._path}: {exc}") from exc
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Manifest {self._path} is not valid JSON: {exc}") from exc

    def _persisted_revision(self) -> str | None:
        document = self._read_document()
        return document_revision(document) if document is not None else None

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def apply(self, op: Any, expected_revision: str | None = None) -> RepositoryManifest:
        """Apply one tagged operation atomically and return the new manifest."""
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise ConflictError(
                f"Manifest is busy; gave up after {self._lock_timeout}s, retry"
            )
        try:
            base_revision = self._persisted_revision()
            manifest = self.current()
            if expected_revision is not None:
                current_revision = document_revision(manifest.render())
                if expected_revision != current_revision:
                    raise ConflictError(
                        f"Manifest changed (expected {expected_revision}, "
                        f"found {current_revision}); re-read and retry"
                    )

            updated = apply_operation(manifest, op)
            document = updated.render()
            _validate_document(document)

            if self._persisted_revision() != base_revision:
                raise ConflictError("Manifest was modified by another writer; retry")
            self._write_document(document)
        finally:
            self._lock.release()

        logger.info("Manifest updated: %s", type(op).__name__)
        return updated

    def _write_document(self, document: dict[str, Any]) -> None:
        payload = json.dumps(document, indent=2, ensure_ascii=False)
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self._path)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise StorageError(f"Cannot write manifest {self._path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def sync(self, artifact: Artifact) -> RepositoryManifest:
        """Merge a point-in-time artifact snapshot into the manifest.

        An unknown bundle gets a new app seeded from the artifact. A known
        bundle gets the version upserted (an entry with the same version string
        or the same download URL is replaced) and its versions re-sorted
        newest first. The artifact is listed once across the manifest, so a
        re-sync after a bundle id edit moves its entry to the new bundle.
        Curated app fields (description, screenshots, ...) of a known bundle
        are left alone.
        """
        manifest = self.current()
        op = AddVersion(
            bundle_identifier=artifact.bundle_id,
            version=self.version_entry(artifact),
            seed_app=self.seed_app(artifact, manifest),
        )
        updated = self.apply(op)
        logger.info(
            "Synced artifact %d into manifest as %s %s",
            artifact.artifact_id, artifact.bundle_id, artifact.version,
        )
        return updated

    def version_entry(self, artifact: Artifact) -> RepoVersion:
        return RepoVersion(
            version=artifact.version,
            date=artifact.created_at,
            size=artifact.size_bytes,
            download_url=self._links.links_for(artifact).direct_link,
            localized_description=artifact.changelog,
            min_os_version=artifact.min_os_version,
        )

    def seed_app(self, artifact: Artifact, manifest: RepositoryManifest) -> RepoApp:
        description = artifact.description.strip()
        subtitle = description.splitlines()[0][:_SUBTITLE_MAX] if description else ""
        return RepoApp(
            name=artifact.app_name,
            bundle_identifier=artifact.bundle_id,
            developer_name=artifact.developer or artifact.app_name,
            subtitle=subtitle,
            localized_description=description,
            icon_url=artifact.icon_url or manifest.icon_url,
            tint_color=manifest.tint_color,
            screenshot_urls=list(artifact.screenshot_urls),
        )

    def upsert_app(self, app: RepoApp) -> RepositoryManifest:
        return self.apply(AddApp(app=app))

    def remove_app(self, bundle_identifier: str) -> RepositoryManifest:
        return self.apply(RemoveApp(bundle_identifier=bundle_identifier))

    def upsert_news(self, news: RepoNews) -> RepositoryManifest:
        return self.apply(AddNews(news=news))

    def remove_news(self, identifier: str) -> RepositoryManifest:
        return self.apply(RemoveNews(identifier=identifier))

    def update_store(self, **fields: Any) -> RepositoryManifest:
        return self.apply(UpdateStore(**fields))

    def prune_download(self, download_url: str) -> RepositoryManifest:
        """Drop versions pointing at *download_url* from every app.

        The lookup is by URL alone, so entries synced under an earlier
        bundle id of the artifact are pruned too.
        """
        return self.apply(RemoveVersion(download_url=download_url))


def _validate_document(document: dict[str, Any]) -> None:
    try:
        RepositoryManifest.model_validate(document)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Manifest failed schema validation: {exc}") from exc
