"""Shared test fixtures for ipaforge."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from ipaforge.config import IpaForgeConfig
from ipaforge.core.binary_store import BinaryStore
from ipaforge.core.certificate_store import CertificateStore
from ipaforge.core.distribution import DistributionService, default_manifest
from ipaforge.core.errors import SigningError
from ipaforge.core.links import LinkGenerator
from ipaforge.core.manifest_builder import ManifestBuilder
from ipaforge.core.registry import ArtifactRegistry
from ipaforge.core.shortener import NullShortener
from ipaforge.models.artifacts import ArtifactMetadata

BASE_URL = "https://apps.example.com"


class FakeResigner:
    """In-process stand-in for the external signer.

    Returns ``prefix + input`` unless told to fail or to block.
    """

    def __init__(
        self,
        prefix: bytes = b"SIGNED:",
        *,
        error: str | None = None,
        output: bytes | None = None,
    ) -> None:
        self.prefix = prefix
        self.error = error
        self.output = output
        self.calls: list[dict[str, Any]] = []
        self.release = threading.Event()
        self.release.set()
        self.started = threading.Event()

    def block(self) -> None:
        """Make the next calls wait until ``release`` is set."""
        self.release.clear()

    def resign(
        self,
        binary_path: Path,
        key_bundle_path: Path,
        profile_path: Path,
        password: str | None,
        *,
        timeout: float | None = None,
    ) -> bytes:
        self.started.set()
        self.calls.append(
            {
                "binary": binary_path.name,
                "key_bundle": key_bundle_path,
                "profile": profile_path,
                "password": password,
            }
        )
        self.release.wait(timeout=10)
        if self.error is not None:
            raise SigningError(self.error)
        if self.output is not None:
            return self.output
        return self.prefix + binary_path.read_bytes()


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test data."""
    return tmp_path


@pytest.fixture
def make_metadata() -> Callable[..., ArtifactMetadata]:
    """Factory for upload metadata with sensible defaults."""

    def _make(**overrides: Any) -> ArtifactMetadata:
        values: dict[str, Any] = {
            "app_name": "Demo App",
            "bundle_id": "com.example.demo",
            "version": "1.0",
            "developer": "Example Dev",
            "description": "A demo application.\nSecond line.",
            "changelog": "Initial release",
        }
        values.update(overrides)
        return ArtifactMetadata(**values)

    return _make


@pytest.fixture
def binary_store(tmp_dir: Path) -> BinaryStore:
    """Provide a BinaryStore with a small upload ceiling."""
    return BinaryStore(tmp_dir / "uploads" / "ipa", max_object_bytes=1024)


@pytest.fixture
def registry(tmp_dir: Path, binary_store: BinaryStore) -> ArtifactRegistry:
    """Provide a fresh ArtifactRegistry backed by a temp SQLite database."""
    return ArtifactRegistry(tmp_dir / "registry.db", binary_store, quota_bytes=4096)


@pytest.fixture
def cert_store(tmp_dir: Path) -> CertificateStore:
    """Provide a CertificateStore sharing the registry database."""
    return CertificateStore(tmp_dir / "registry.db", tmp_dir / "certificates")


@pytest.fixture
def links() -> LinkGenerator:
    return LinkGenerator(BASE_URL)


@pytest.fixture
def test_config(tmp_dir: Path) -> IpaForgeConfig:
    """Config with every path rooted in the temp directory."""
    return IpaForgeConfig(
        environment="development",
        data_dir=tmp_dir,
        registry_db_path=tmp_dir / "registry.db",
        binary_store_path=tmp_dir / "uploads" / "ipa",
        certificate_store_path=tmp_dir / "certificates",
        manifest_path=tmp_dir / "source.json",
        base_url=BASE_URL,
        max_upload_bytes=1024,
        storage_quota_bytes=4096,
        shortener_enabled=False,
        sign_timeout_seconds=5.0,
        manifest_lock_timeout_seconds=2.0,
        store_name="Test Repo",
        store_identifier="com.example.testrepo",
        store_icon_url="https://apps.example.com/icon.png",
        api_token="",
    )


@pytest.fixture
def manifest_builder(test_config: IpaForgeConfig, links: LinkGenerator) -> ManifestBuilder:
    return ManifestBuilder(
        test_config.manifest_path,
        default_manifest(test_config),
        links,
        lock_timeout=test_config.manifest_lock_timeout_seconds,
    )


@pytest.fixture
def resigner() -> FakeResigner:
    return FakeResigner()


@pytest.fixture
def service(
    test_config: IpaForgeConfig, resigner: FakeResigner
) -> Iterator[DistributionService]:
    """A fully wired service with a fake signer and no network shortener."""
    with DistributionService(
        test_config, resigner=resigner, shortener=NullShortener()
    ) as svc:
        yield svc


@pytest.fixture
def certificate_files(tmp_dir: Path) -> tuple[Path, Path]:
    """A .p12 and .mobileprovision pair on disk (contents are opaque)."""
    p12 = tmp_dir / "dev.p12"
    provision = tmp_dir / "dev.mobileprovision"
    p12.write_bytes(b"p12-bytes")
    provision.write_bytes(b"provision-bytes")
    return p12, provision
