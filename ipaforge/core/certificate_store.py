"""Certificate Store: catalog of signing identities, backed by SQLite.

Each certificate is a .p12 key bundle plus a .mobileprovision profile,
stored as files under ``{base_path}/{id}/``. Cryptographic well-formedness
is not checked here; a bad credential surfaces as a ``SigningError`` at
sign time.
"""

from __future__ import annotations

import logging
import shutil
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from ipaforge.core.errors import NotFoundError, StorageError, ValidationError
from ipaforge.models.certificates import Certificate, CertificatePatch

logger = logging.getLogger(__name__)

_CREATE_CERTIFICATES = """
CREATE TABLE IF NOT EXISTS certificates (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    name             TEXT NOT NULL,
    key_bundle_path  TEXT NOT NULL DEFAULT '',
    profile_path     TEXT NOT NULL DEFAULT '',
    password         TEXT,
    description      TEXT NOT NULL DEFAULT '',
    is_active        INTEGER NOT NULL DEFAULT 1,
    created_at       TEXT NOT NULL
);
"""

KEY_BUNDLE_FILENAME = "identity.p12"
PROFILE_FILENAME = "embedded.mobileprovision"


class CertificateStore:
    """Catalog of signing identities.

    Parameters
    ----------
    db_path:
        SQLite database file (may be shared with the artifact registry).
    base_path:
        Directory holding the credential files.
    """

    def __init__(self, db_path: Path, base_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)
        with self._transaction() as conn:
            conn.execute(_CREATE_CERTIFICATES)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(
        self,
        key_bundle: bytes,
        provisioning_profile: bytes,
        name: str,
        password: str | None = None,
        description: str = "",
    ) -> Certificate:
        """Register a signing identity from its two credential files."""
        if not key_bundle:
            raise ValidationError("A .p12 key bundle is required")
        if not provisioning_profile:
            raise ValidationError("A .mobileprovision profile is required")
        if not name or not name.strip():
            raise ValidationError("Certificate name is required")

        created_at = datetime.now(timezone.utc)
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO certificates (name, password, description, is_active, created_at)
                VALUES (?, ?, ?, 1, ?)
                """,
                (name.strip(), password or None, description, created_at.isoformat()),
            )
            cert_id = int(cur.lastrowid)
            cert_dir = self._base / str(cert_id)
            try:
                cert_dir.mkdir(parents=True, exist_ok=True)
                key_path = cert_dir / KEY_BUNDLE_FILENAME
                profile_path = cert_dir / PROFILE_FILENAME
                key_path.write_bytes(key_bundle)
                profile_path.write_bytes(provisioning_profile)
            except OSError as exc:
                shutil.rmtree(cert_dir, ignore_errors=True)
                raise StorageError(f"Cannot store certificate files: {exc}") from exc
            conn.execute(
                "UPDATE certificates SET key_bundle_path = ?, profile_path = ? WHERE id = ?",
                (str(key_path), str(profile_path), cert_id),
            )

        logger.info("Added certificate %d (%s)", cert_id, name)
        return self.get(cert_id)

    # ------------------------------------------------------------------
    # Update and delete
    # ------------------------------------------------------------------

    def update(self, cert_id: int, patch: CertificatePatch) -> Certificate:
        changes = patch.model_dump(exclude_none=True)
        if "name" in changes and not changes["name"].strip():
            raise ValidationError("Certificate name cannot be blank")
        current = self.get(cert_id)
        if not changes:
            return current
        if "is_active" in changes:
            changes["is_active"] = int(changes["is_active"])
        assignments = ", ".join(f"{column} = ?" for column in changes)
        with self._transaction() as conn:
            conn.execute(
                f"UPDATE certificates SET {assignments} WHERE id = ?",
                (*changes.values(), cert_id),
            )
        logger.info("Updated certificate %d (%s)", cert_id, ", ".join(sorted(changes)))
        return self.get(cert_id)

    def deactivate(self, cert_id: int) -> Certificate:
        return self.update(cert_id, CertificatePatch(is_active=False))

    def delete(self, cert_id: int) -> None:
        """Remove a certificate and its credential files. Irreversible."""
        self.get(cert_id)
        with self._transaction() as conn:
            conn.execute("DELETE FROM certificates WHERE id = ?", (cert_id,))
        shutil.rmtree(self._base / str(cert_id), ignore_errors=True)
        logger.info("Deleted certificate %d", cert_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, cert_id: int) -> Certificate:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM certificates WHERE id = ?", (cert_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError(f"Certificate not found: {cert_id}")
        return self._row_to_certificate(row)

    def list(self, active_only: bool = False) -> list[Certificate]:
        query = "SELECT * FROM certificates"
        if active_only:
            query += " WHERE is_active = 1"
        with self._transaction() as conn:
            rows = conn.execute(query + " ORDER BY id").fetchall()
        return [self._row_to_certificate(r) for r in rows]

    @staticmethod
    def _row_to_certificate(row: sqlite3.Row) -> Certificate:
        return Certificate(
            id=row["id"],
            name=row["name"],
            key_bundle_path=Path(row["key_bundle_path"]),
            profile_path=Path(row["profile_path"]),
            password=row["password"],
            description=row["description"],
            is_active=bool(row["is_active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
