"""Canonical hashing helpers for manifest revisions and binary digests."""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes: deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def document_revision(document: dict[str, Any]) -> str:
    """Revision tag of a JSON document: ``sha256:<hex>`` of its canonical form.

    Two manifests with the same content always share a revision, so a
    writer can detect that the persisted document moved underneath it.
    """
    return f"sha256:{sha256_hex(canonical_json_bytes(document))}"
