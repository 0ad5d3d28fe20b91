"""Tests for BinaryStore: atomic writes, ceilings, key validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from ipaforge.core.binary_store import BinaryStore
from ipaforge.core.errors import NotFoundError, StorageError


class TestBinaryStore:
    def test_put_and_get(self, binary_store: BinaryStore):
        ref = binary_store.put("ipa_1.ipa", b"payload")
        assert ref == "ipa_1.ipa"
        assert binary_store.get(ref) == b"payload"
        assert binary_store.size_of(ref) == 7

    def test_put_replaces_existing(self, binary_store: BinaryStore):
        binary_store.put("ipa_1.ipa", b"old")
        binary_store.put("ipa_1.ipa", b"new bytes")
        assert binary_store.get("ipa_1.ipa") == b"new bytes"

    def test_exists_and_delete(self, binary_store: BinaryStore):
        binary_store.put("ipa_2.ipa", b"x")
        assert binary_store.exists("ipa_2.ipa") is True
        binary_store.delete("ipa_2.ipa")
        assert binary_store.exists("ipa_2.ipa") is False

    def test_get_missing_raises_not_found(self, binary_store: BinaryStore):
        with pytest.raises(NotFoundError):
            binary_store.get("ipa_404.ipa")

    def test_delete_missing_raises_not_found(self, binary_store: BinaryStore):
        with pytest.raises(NotFoundError):
            binary_store.delete("ipa_404.ipa")

    def test_upload_ceiling_enforced(self, binary_store: BinaryStore):
        with pytest.raises(StorageError, match="ceiling"):
            binary_store.put("ipa_big.ipa", b"x" * 2048)
        assert binary_store.exists("ipa_big.ipa") is False

    def test_ceiling_can_be_bypassed_for_staging(self, binary_store: BinaryStore):
        staged = binary_store.stage("ipa_big.ipa", b"x" * 2048, enforce_ceiling=False)
        staged.commit()
        assert binary_store.size_of("ipa_big.ipa") == 2048

    @pytest.mark.parametrize("key", ["../escape.ipa", "a/b.ipa", "", ".staging-abc"])
    def test_invalid_keys_rejected(self, binary_store: BinaryStore, key: str):
        with pytest.raises(StorageError, match="Invalid storage key"):
            binary_store.put(key, b"x")


class TestStagedBinary:
    def test_staged_bytes_invisible_until_commit(self, binary_store: BinaryStore):
        staged = binary_store.stage("ipa_3.ipa", b"staged")
        assert binary_store.exists("ipa_3.ipa") is False
        staged.commit()
        assert binary_store.get("ipa_3.ipa") == b"staged"

    def test_discard_removes_temp_file(self, binary_store: BinaryStore):
        staged = binary_store.stage("ipa_4.ipa", b"gone")
        temp_path = staged.temp_path
        assert temp_path.exists()
        staged.discard()
        assert not temp_path.exists()
        assert binary_store.exists("ipa_4.ipa") is False

    def test_discard_keeps_previous_bytes(self, binary_store: BinaryStore):
        binary_store.put("ipa_5.ipa", b"original")
        binary_store.stage("ipa_5.ipa", b"replacement").discard()
        assert binary_store.get("ipa_5.ipa") == b"original"

    def test_commit_after_discard_is_noop(self, binary_store: BinaryStore):
        staged = binary_store.stage("ipa_6.ipa", b"x")
        staged.discard()
        staged.commit()
        assert binary_store.exists("ipa_6.ipa") is False


class TestCrashRecovery:
    def test_orphaned_staging_files_swept_on_open(self, tmp_dir: Path):
        base = tmp_dir / "store"
        base.mkdir()
        orphan = base / ".staging-deadbeef"
        orphan.write_bytes(b"half written")
        (base / "ipa_7.ipa").write_bytes(b"committed")

        store = BinaryStore(base)
        assert not orphan.exists()
        assert store.get("ipa_7.ipa") == b"committed"
