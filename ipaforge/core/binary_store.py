"""Durable storage for IPA bytes, keyed by a stable storage key.

Storage layout: {base_path}/{key}

Every write lands in a temporary file in the same directory and is then
swapped into place with ``os.replace``, so a concurrent reader sees either
the previous bytes or the new bytes, never a truncated file.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path

from ipaforge.core.errors import NotFoundError, StorageError

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z0-9._-]+$")
_TEMP_PREFIX = ".staging-"


class StagedBinary:
    """Bytes written to a temporary file, not yet visible under their key.

    ``commit()`` swaps the file into place; ``discard()`` removes it.
    Exactly one of the two should be called.
    """

    def __init__(self, temp_path: Path, final_path: Path, size_bytes: int) -> None:
        self.temp_path = temp_path
        self.final_path = final_path
        self.size_bytes = size_bytes
        self._done = False

    def commit(self) -> None:
        if self._done:
            return
        try:
            os.replace(self.temp_path, self.final_path)
        except OSError as exc:
            self.discard()
            raise StorageError(f"Cannot publish {self.final_path.name}: {exc}") from exc
        self._done = True

    def discard(self) -> None:
        if self._done:
            return
        self._done = True
        try:
            self.temp_path.unlink()
        except FileNotFoundError:
            pass


class BinaryStore:
    """Filesystem-backed binary store.

    Parameters
    ----------
    base_path:
        Root directory for artifact bytes.
    max_object_bytes:
        Upload ceiling of the public edge. ``put`` and ``stage`` reject larger
        payloads with ``StorageError``. ``0`` disables the check.
    """

    def __init__(self, base_path: Path, *, max_object_bytes: int = 0) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)
        self._max_object_bytes = max_object_bytes
        self._sweep_staging()

    def _sweep_staging(self) -> None:
        """Remove temp files left behind by a crashed process."""
        for leftover in self._base.glob(f"{_TEMP_PREFIX}*"):
            logger.warning("Removing orphaned staging file %s", leftover.name)
            leftover.unlink(missing_ok=True)

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key) or key.startswith(_TEMP_PREFIX):
            raise StorageError(f"Invalid storage key: {key!r}")
        return self._base / key

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def stage(
        self, key: str, data: bytes, *, enforce_ceiling: bool = True
    ) -> StagedBinary:
        """Write *data* to a temp file next to *key* without publishing it."""
        final_path = self._path(key)
        if enforce_ceiling and self._max_object_bytes and len(data) > self._max_object_bytes:
            raise StorageError(
                f"Binary is {len(data)} bytes; the upload ceiling is "
                f"{self._max_object_bytes} bytes"
            )
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=_TEMP_PREFIX, dir=self._base)
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
        except OSError as exc:
            raise StorageError(f"Cannot write {key}: {exc}") from exc
        return StagedBinary(Path(tmp_name), final_path, len(data))

    def put(self, key: str, data: bytes) -> str:
        """Store *data* under *key*, replacing any previous bytes atomically.

        Returns the storage reference (the key itself).
        """
        self.stage(key, data).commit()
        logger.debug("Stored %s (%d bytes)", key, len(data))
        return key

    # ------------------------------------------------------------------
    # Read and delete
    # ------------------------------------------------------------------

    def get(self, ref: str) -> bytes:
        path = self._path(ref)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"Binary not found: {ref}") from exc
        except OSError as exc:
            raise StorageError(f"Cannot read {ref}: {exc}") from exc

    def exists(self, ref: str) -> bool:
        return self._path(ref).exists()

    def delete(self, ref: str) -> None:
        path = self._path(ref)
        try:
            path.unlink()
        except FileNotFoundError as exc:
            raise NotFoundError(f"Binary not found: {ref}") from exc
        except OSError as exc:
            raise StorageError(f"Cannot delete {ref}: {exc}") from exc

    def size_of(self, ref: str) -> int:
        try:
            return self._path(ref).stat().st_size
        except FileNotFoundError as exc:
            raise NotFoundError(f"Binary not found: {ref}") from exc

    def path_of(self, ref: str) -> Path:
        """Filesystem path of a stored binary (for serving it directly)."""
        return self._path(ref)
