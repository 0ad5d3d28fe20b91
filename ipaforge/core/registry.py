"""Artifact Registry: the metadata catalog of uploaded IPAs, backed by SQLite.

The registry is the source of truth for "what apps exist". Bytes live in
the ``BinaryStore``; the registry owns the record and keeps both in step:

- ``create`` stages the bytes, inserts the record, then publishes the bytes.
- ``update`` with a new binary swaps the bytes inside the record's
  transaction, so a failed write leaves both the old bytes and the old
  record in place.
- Operations on one ``artifact_id`` are serialized with a per-id lock.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ipaforge.core.binary_store import BinaryStore
from ipaforge.core.errors import NotFoundError, StorageError, ValidationError
from ipaforge.core.locks import KeyedLock
from ipaforge.models.artifacts import (
    AppStats,
    Artifact,
    ArtifactListing,
    ArtifactMetadata,
    ArtifactPatch,
    artifact_timestamp,
    storage_key_for,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_ARTIFACTS = """
CREATE TABLE IF NOT EXISTS artifacts (
    artifact_id          INTEGER PRIMARY KEY,
    app_slug             TEXT NOT NULL,
    app_name             TEXT NOT NULL,
    bundle_id            TEXT NOT NULL,
    version              TEXT NOT NULL,
    developer            TEXT NOT NULL DEFAULT '',
    support_email        TEXT NOT NULL DEFAULT '',
    description          TEXT NOT NULL DEFAULT '',
    changelog            TEXT NOT NULL DEFAULT '',
    icon_url             TEXT,
    screenshot_urls_json TEXT NOT NULL DEFAULT '[]',
    min_os_version       TEXT NOT NULL DEFAULT '',
    size_bytes           INTEGER NOT NULL DEFAULT 0,
    created_at           TEXT NOT NULL,
    updated_at           TEXT NOT NULL,
    signed_at            TEXT
);
"""

_CREATE_STATS = """
CREATE TABLE IF NOT EXISTS app_stats (
    artifact_id INTEGER PRIMARY KEY
                REFERENCES artifacts(artifact_id) ON DELETE CASCADE,
    views       INTEGER NOT NULL DEFAULT 0,
    downloads   INTEGER NOT NULL DEFAULT 0
);
"""

_CREATE_IDX_BUNDLE = """
CREATE INDEX IF NOT EXISTS idx_bundle_id ON artifacts(bundle_id, artifact_id);
"""

_REQUIRED_FIELDS = ("app_name", "bundle_id", "version")
_MAX_ID_ATTEMPTS = 1000


def slugify(name: str) -> str:
    """``"My Cool App"`` -> ``"my-cool-app"``; empty names become ``"app"``."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "app"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _check_required(values: dict[str, Any]) -> None:
    missing = [f for f in _REQUIRED_FIELDS if not str(values.get(f) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required metadata: {', '.join(missing)}")


class ArtifactRegistry:
    """Metadata catalog of uploaded artifacts.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    store:
        The binary store holding artifact bytes.
    quota_bytes:
        Total storage budget reported by ``list()`` and enforced on upload.
        ``0`` disables the check.
    default_min_os_version:
        Used when an upload does not specify a minimum OS version.
    """

    def __init__(
        self,
        db_path: Path,
        store: BinaryStore,
        *,
        quota_bytes: int = 0,
        default_min_os_version: str = "14.0",
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._store = store
        self._quota_bytes = quota_bytes
        self._default_min_os = default_min_os_version
        self._locks = KeyedLock()
        self._id_lock = threading.Lock()
        self._init_schema()
        self._last_id = self._max_id()

    @property
    def store(self) -> BinaryStore:
        return self._store

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit on success, roll back on any exception, always close."""
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(_CREATE_ARTIFACTS)
            conn.execute(_CREATE_STATS)
            conn.execute(_CREATE_IDX_BUNDLE)

    def _max_id(self) -> int:
        with self._transaction() as conn:
            row = conn.execute("SELECT MAX(artifact_id) FROM artifacts").fetchone()
        return int(row[0] or 0)

    @contextmanager
    def locked(self, artifact_id: int) -> Iterator[None]:
        """Serialize with every other mutation of *artifact_id*."""
        with self._locks.hold(artifact_id):
            yield

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, binary: bytes, metadata: ArtifactMetadata) -> Artifact:
        """Store a new upload and register it.

        The ``artifact_id`` is the upload time in epoch milliseconds. It is
        assigned once and never changes.
        """
        values = metadata.model_dump()
        _check_required(values)
        if not binary:
            raise ValidationError("Binary is empty")
        self._check_quota(len(binary))

        artifact_id = self._reserve_id()
        with self.locked(artifact_id):
            now = _now()
            artifact = Artifact(
                artifact_id=artifact_id,
                app_slug=slugify(metadata.app_slug or metadata.app_name),
                app_name=metadata.app_name.strip(),
                bundle_id=metadata.bundle_id.strip(),
                version=metadata.version.strip(),
                developer=metadata.developer,
                support_email=metadata.support_email,
                description=metadata.description,
                changelog=metadata.changelog,
                icon_url=metadata.icon_url,
                screenshot_urls=list(metadata.screenshot_urls),
                min_os_version=metadata.min_os_version or self._default_min_os,
                size_bytes=len(binary),
                created_at=artifact_timestamp(artifact_id),
                updated_at=now,
            )
            staged = self._store.stage(artifact.storage_key, binary)
            try:
                with self._transaction() as conn:
                    self._insert(conn, artifact)
                    staged.commit()
            except sqlite3.Error as exc:
                staged.discard()
                raise StorageError(f"Cannot register artifact {artifact_id}: {exc}") from exc
            except BaseException:
                staged.discard()
                raise

        logger.info(
            "Registered artifact %d: %s %s (%s, %d bytes)",
            artifact_id, artifact.app_name, artifact.version,
            artifact.bundle_id, artifact.size_bytes,
        )
        return artifact

    def _reserve_id(self) -> int:
        """Next free epoch-millisecond id, bumping past collisions."""
        with self._id_lock:
            candidate = max(time.time_ns() // 1_000_000, self._last_id + 1)
            for _ in range(_MAX_ID_ATTEMPTS):
                if not self.exists(candidate) and not self._store.exists(
                    storage_key_for(candidate)
                ):
                    self._last_id = candidate
                    return candidate
                candidate += 1
        raise StorageError("Could not allocate an artifact id")

    def _insert(self, conn: sqlite3.Connection, artifact: Artifact) -> None:
        conn.execute(
            """
            INSERT INTO artifacts
                (artifact_id, app_slug, app_name, bundle_id, version, developer,
                 support_email, description, changelog, icon_url,
                 screenshot_urls_json, min_os_version, size_bytes,
                 created_at, updated_at, signed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                artifact.artifact_id,
                artifact.app_slug,
                artifact.app_name,
                artifact.bundle_id,
                artifact.version,
                artifact.developer,
                artifact.support_email,
                artifact.description,
                artifact.changelog,
                artifact.icon_url,
                json.dumps(artifact.screenshot_urls),
                artifact.min_os_version,
                artifact.size_bytes,
                _iso(artifact.created_at),
                _iso(artifact.updated_at),
                _iso(artifact.signed_at),
            ),
        )
        conn.execute(
            "INSERT INTO app_stats (artifact_id) VALUES (?)", (artifact.artifact_id,)
        )

    def _check_quota(self, incoming: int, *, replacing: int = 0) -> None:
        if not self._quota_bytes:
            return
        used = self._used_bytes()
        if used - replacing + incoming > self._quota_bytes:
            raise StorageError(
                f"Storage quota exceeded: {used} of {self._quota_bytes} bytes used, "
                f"upload needs {incoming}"
            )

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(
        self,
        artifact_id: int,
        patch: ArtifactPatch,
        new_binary: bytes | None = None,
    ) -> Artifact:
        """Merge *patch* into the record and optionally replace the bytes.

        Neither ``artifact_id`` nor ``app_slug`` can change, so every link
        issued for this artifact stays valid.
        """
        with self.locked(artifact_id):
            current = self.get(artifact_id)
            merged = current.model_dump()
            merged.update(patch.changes())
            _check_required(merged)
            merged["updated_at"] = _now()

            if new_binary is None:
                updated = Artifact.model_validate(merged)
                with self._transaction() as conn:
                    self._update_row(conn, updated)
            else:
                if not new_binary:
                    raise ValidationError("Binary is empty")
                self._check_quota(len(new_binary), replacing=current.size_bytes)
                merged["size_bytes"] = len(new_binary)
                updated = Artifact.model_validate(merged)
                self._swap_binary(updated, new_binary, enforce_ceiling=True)

        logger.info("Updated artifact %d (%s)", artifact_id, ", ".join(
            sorted(patch.changes()) + (["binary"] if new_binary is not None else [])
        ) or "no changes")
        return updated

    def replace_binary(
        self,
        artifact_id: int,
        data: bytes,
        *,
        signed_at: datetime | None = None,
    ) -> Artifact:
        """Swap in new bytes without touching metadata (used by signing).

        Only ``size_bytes``, ``signed_at`` and ``updated_at`` change.
        """
        with self.locked(artifact_id):
            current = self.get(artifact_id)
            updated = current.model_copy(
                update={
                    "size_bytes": len(data),
                    "signed_at": signed_at or current.signed_at,
                    "updated_at": _now(),
                }
            )
            self._swap_binary(updated, data, enforce_ceiling=False)
        return updated

    def _swap_binary(self, updated: Artifact, data: bytes, *, enforce_ceiling: bool) -> None:
        staged = self._store.stage(
            updated.storage_key, data, enforce_ceiling=enforce_ceiling
        )
        try:
            with self._transaction() as conn:
                self._update_row(conn, updated)
                # Last step before commit: a failed swap rolls the row back.
                staged.commit()
        except sqlite3.Error as exc:
            staged.discard()
            raise StorageError(
                f"Cannot update artifact {updated.artifact_id}: {exc}"
            ) from exc
        except BaseException:
            staged.discard()
            raise

    def _update_row(self, conn: sqlite3.Connection, artifact: Artifact) -> None:
        conn.execute(
            """
            UPDATE artifacts SET
                app_name = ?, bundle_id = ?, version = ?, developer = ?,
                support_email = ?, description = ?, changelog = ?, icon_url = ?,
                screenshot_urls_json = ?, min_os_version = ?, size_bytes = ?,
                updated_at = ?, signed_at = ?
            WHERE artifact_id = ?
            """,
            (
                artifact.app_name,
                artifact.bundle_id,
                artifact.version,
                artifact.developer,
                artifact.support_email,
                artifact.description,
                artifact.changelog,
                artifact.icon_url,
                json.dumps(artifact.screenshot_urls),
                artifact.min_os_version,
                artifact.size_bytes,
                _iso(artifact.updated_at),
                _iso(artifact.signed_at),
                artifact.artifact_id,
            ),
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, artifact_id: int) -> Artifact:
        """Remove the record and its bytes. Returns the deleted record.

        Deleting an unknown id raises ``NotFoundError`` so callers can spot
        stale references.
        """
        with self.locked(artifact_id):
            artifact = self.get(artifact_id)
            # Row first, then bytes: a stored record always has its binary.
            self._delete_row(artifact_id)
            try:
                self._store.delete(artifact.storage_key)
            except NotFoundError:
                logger.warning(
                    "Artifact %d had no stored binary; removed record only", artifact_id
                )
            except StorageError as exc:
                logger.error(
                    "Artifact %d deleted but its binary %s could not be removed: %s",
                    artifact_id, artifact.storage_key, exc,
                )
        self._locks.discard(artifact_id)
        logger.info("Deleted artifact %d (%s %s)", artifact_id, artifact.bundle_id, artifact.version)
        return artifact

    def _delete_row(self, artifact_id: int) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM artifacts WHERE artifact_id = ?", (artifact_id,))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, artifact_id: int) -> Artifact:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM artifacts WHERE artifact_id = ?", (artifact_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Artifact not found: {artifact_id}")
        return self._row_to_artifact(row)

    def exists(self, artifact_id: int) -> bool:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM artifacts WHERE artifact_id = ?", (artifact_id,)
            ).fetchone()
        return row is not None

    def list(self) -> ArtifactListing:
        """All records, newest first, with storage totals."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM artifacts ORDER BY artifact_id DESC"
            ).fetchall()
        artifacts = [self._row_to_artifact(r) for r in rows]
        return ArtifactListing(
            artifacts=artifacts,
            used_bytes=sum(a.size_bytes for a in artifacts),
            quota_bytes=self._quota_bytes,
        )

    def list_for_bundle(self, bundle_id: str) -> list[Artifact]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM artifacts WHERE bundle_id = ? ORDER BY artifact_id DESC",
                (bundle_id,),
            ).fetchall()
        return [self._row_to_artifact(r) for r in rows]

    def read_binary(self, artifact_id: int) -> bytes:
        return self._store.get(self.get(artifact_id).storage_key)

    def _used_bytes(self) -> int:
        with self._transaction() as conn:
            row = conn.execute("SELECT COALESCE(SUM(size_bytes), 0) FROM artifacts").fetchone()
        return int(row[0])

    @staticmethod
    def _row_to_artifact(row: sqlite3.Row) -> Artifact:
        return Artifact(
            artifact_id=row["artifact_id"],
            app_slug=row["app_slug"],
            app_name=row["app_name"],
            bundle_id=row["bundle_id"],
            version=row["version"],
            developer=row["developer"],
            support_email=row["support_email"],
            description=row["description"],
            changelog=row["changelog"],
            icon_url=row["icon_url"],
            screenshot_urls=json.loads(row["screenshot_urls_json"]),
            min_os_version=row["min_os_version"],
            size_bytes=row["size_bytes"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            signed_at=(
                datetime.fromisoformat(row["signed_at"]) if row["signed_at"] else None
            ),
        )

    # ------------------------------------------------------------------
    # Share-page statistics
    # ------------------------------------------------------------------

    def record_view(self, artifact_id: int) -> AppStats:
        return self._bump(artifact_id, "views")

    def record_download(self, artifact_id: int) -> AppStats:
        return self._bump(artifact_id, "downloads")

    def _bump(self, artifact_id: int, column: str) -> AppStats:
        with self._transaction() as conn:
            cur = conn.execute(
                f"UPDATE app_stats SET {column} = {column} + 1 WHERE artifact_id = ?",
                (artifact_id,),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"Artifact not found: {artifact_id}")
        return self.get_stats(artifact_id)

    def get_stats(self, artifact_id: int) -> AppStats:
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT a.app_name, s.views, s.downloads
                FROM artifacts a JOIN app_stats s USING (artifact_id)
                WHERE a.artifact_id = ?
                """,
                (artifact_id,),
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Artifact not found: {artifact_id}")
        return AppStats(
            artifact_id=artifact_id,
            app_name=row["app_name"],
            views=row["views"],
            downloads=row["downloads"],
        )
