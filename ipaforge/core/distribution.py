"""Distribution service: the single entry point for operators and the CLI.

Wires the ArtifactRegistry, BinaryStore, CertificateStore, SigningPipeline,
LinkGenerator, Shortener and ManifestBuilder together from configuration,
and checks the caller token on every mutating operation.
"""

from __future__ import annotations

import logging
from typing import Any

from ipaforge.config import IpaForgeConfig
from ipaforge.core.auth import (
    AllowAllTokenValidator,
    StaticTokenValidator,
    TokenValidator,
    require_token,
)
from ipaforge.core.binary_store import BinaryStore
from ipaforge.core.certificate_store import CertificateStore
from ipaforge.core.errors import ConflictError
from ipaforge.core.links import LinkGenerator
from ipaforge.core.manifest_builder import ManifestBuilder
from ipaforge.core.production_guard import enforce_production_constraints
from ipaforge.core.registry import ArtifactRegistry
from ipaforge.core.resigner import Resigner, ZsignResigner
from ipaforge.core.shortener import NullShortener, Shortener
from ipaforge.core.signing_pipeline import SigningPipeline
from ipaforge.models.artifacts import (
    AppStats,
    Artifact,
    ArtifactLinks,
    ArtifactListing,
    ArtifactMetadata,
    ArtifactPatch,
    PublishedArtifact,
)
from ipaforge.models.certificates import Certificate, CertificatePatch
from ipaforge.models.manifest import RepositoryManifest
from ipaforge.models.signing import SignJob

logger = logging.getLogger(__name__)

_PRUNE_ATTEMPTS = 3


def default_manifest(config: IpaForgeConfig) -> RepositoryManifest:
    """An empty repository carrying the configured store metadata."""
    return RepositoryManifest(
        name=config.store_name,
        identifier=config.store_identifier,
        subtitle=config.store_subtitle,
        description=config.store_description,
        icon_url=config.store_icon_url,
        header_url=config.store_header_url,
        website=config.store_website or config.base_url,
        tint_color=config.store_tint_color,
    )


class DistributionService:
    """Facade over the artifact registry, signing and the repository manifest.

    Parameters
    ----------
    config:
        Runtime configuration. Uses ``IpaForgeConfig()`` if not provided.
    resigner:
        External re-signing backend. Defaults to ``ZsignResigner``.
    shortener:
        Link shortener. Defaults to ``Shortener`` (or ``NullShortener`` when
        ``config.shortener_enabled`` is false).
    token_validator:
        Caller identity check. Defaults to ``StaticTokenValidator`` when
        ``config.api_token`` is set, otherwise ``AllowAllTokenValidator``.
    """

    def __init__(
        self,
        config: IpaForgeConfig | None = None,
        *,
        resigner: Resigner | None = None,
        shortener: Shortener | NullShortener | None = None,
        token_validator: TokenValidator | None = None,
    ) -> None:
        self.config = config or IpaForgeConfig()
        enforce_production_constraints(self.config)

        self.links = LinkGenerator(self.config.base_url)
        self.store = BinaryStore(
            self.config.binary_store_path,
            max_object_bytes=self.config.max_upload_bytes,
        )
        self.registry = ArtifactRegistry(
            self.config.registry_db_path,
            self.store,
            quota_bytes=self.config.storage_quota_bytes,
            default_min_os_version=self.config.default_min_os_version,
        )
        self.certificates = CertificateStore(
            self.config.registry_db_path, self.config.certificate_store_path
        )
        self.signing = SigningPipeline(
            self.registry,
            self.certificates,
            resigner or ZsignResigner(self.config.resigner_command),
            max_workers=self.config.sign_workers,
            timeout=self.config.sign_timeout_seconds,
        )
        self.manifest = ManifestBuilder(
            self.config.manifest_path,
            default_manifest(self.config),
            self.links,
            lock_timeout=self.config.manifest_lock_timeout_seconds,
        )
        if shortener is not None:
            self.shortener = shortener
        elif self.config.shortener_enabled:
            self.shortener = Shortener(
                self.config.shortener_url,
                timeout=self.config.shortener_timeout_seconds,
            )
        else:
            self.shortener = NullShortener()

        if token_validator is not None:
            self._auth = token_validator
        elif self.config.api_token:
            self._auth = StaticTokenValidator(self.config.api_token)
        else:
            self._auth = AllowAllTokenValidator()

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def upload(
        self,
        binary: bytes,
        metadata: ArtifactMetadata,
        *,
        token: str | None = None,
        shorten: bool = True,
    ) -> PublishedArtifact:
        require_token(self._auth, token)
        artifact = self.registry.create(binary, metadata)
        return self._publish(artifact, shorten=shorten)

    def edit(
        self,
        artifact_id: int,
        patch: ArtifactPatch,
        new_binary: bytes | None = None,
        *,
        token: str | None = None,
        shorten: bool = False,
    ) -> PublishedArtifact:
        require_token(self._auth, token)
        artifact = self.registry.update(artifact_id, patch, new_binary)
        return self._publish(artifact, shorten=shorten)

    def delete(self, artifact_id: int, *, token: str | None = None) -> Artifact:
        """Delete an artifact and prune manifest versions that pointed at it."""
        require_token(self._auth, token)
        artifact = self.registry.delete(artifact_id)
        download_url = self.links.links_for(artifact).direct_link
        for attempt in range(1, _PRUNE_ATTEMPTS + 1):
            try:
                self.manifest.prune_download(download_url)
                break
            except ConflictError:
                if attempt == _PRUNE_ATTEMPTS:
                    logger.error(
                        "Artifact %d deleted but its manifest entry could not be pruned",
                        artifact_id,
                    )
                    raise
                logger.warning("Manifest busy while pruning artifact %d, retrying", artifact_id)
        return artifact

    def get(self, artifact_id: int) -> PublishedArtifact:
        return self._publish(self.registry.get(artifact_id), shorten=False)

    def list(self) -> ArtifactListing:
        return self.registry.list()

    def artifact_links(self, artifact_id: int) -> ArtifactLinks:
        return self.links.links_for(self.registry.get(artifact_id))

    def shorten_install_link(self, artifact_id: int) -> str:
        """Short install URL, or the long one if the shortener is unavailable."""
        return self.shortener.shorten(self.artifact_links(artifact_id).install_link)

    def install_manifest(self, artifact_id: int) -> bytes:
        return self.links.install_manifest(self.registry.get(artifact_id))

    def _publish(self, artifact: Artifact, *, shorten: bool) -> PublishedArtifact:
        links = self.links.links_for(artifact)
        shortened = None
        warnings: list[str] = []
        if shorten:
            shortened = self.shortener.shorten(links.install_link)
            if shortened == links.install_link:
                warnings.append("Link shortening unavailable; long install link returned")
        return PublishedArtifact(
            artifact=artifact,
            links=links,
            shortened_install_link=shortened,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def record_view(self, artifact_id: int) -> AppStats:
        return self.registry.record_view(artifact_id)

    def record_download(self, artifact_id: int) -> AppStats:
        return self.registry.record_download(artifact_id)

    def stats(self, artifact_id: int) -> AppStats:
        return self.registry.get_stats(artifact_id)

    # ------------------------------------------------------------------
    # Certificates
    # ------------------------------------------------------------------

    def add_certificate(
        self,
        key_bundle: bytes,
        provisioning_profile: bytes,
        name: str,
        password: str | None = None,
        description: str = "",
        *,
        token: str | None = None,
    ) -> Certificate:
        require_token(self._auth, token)
        return self.certificates.create(
            key_bundle, provisioning_profile, name, password, description
        )

    def update_certificate(
        self, cert_id: int, patch: CertificatePatch, *, token: str | None = None
    ) -> Certificate:
        require_token(self._auth, token)
        return self.certificates.update(cert_id, patch)

    def delete_certificate(self, cert_id: int, *, token: str | None = None) -> None:
        require_token(self._auth, token)
        self.certificates.delete(cert_id)

    def list_certificates(self, active_only: bool = False) -> list[Certificate]:
        return self.certificates.list(active_only=active_only)

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def request_sign(
        self, artifact_id: int, certificate_id: int, *, token: str | None = None
    ) -> SignJob:
        require_token(self._auth, token)
        return self.signing.submit(artifact_id, certificate_id)

    def sign(
        self, artifact_id: int, certificate_id: int, *, token: str | None = None
    ) -> PublishedArtifact:
        """Sign and wait. Raises ``SigningError`` if the signer failed."""
        require_token(self._auth, token)
        artifact = self.signing.sign(artifact_id, certificate_id)
        return self._publish(artifact, shorten=False)

    def sign_status(self, job_id: str) -> SignJob:
        return self.signing.get_job(job_id)

    # ------------------------------------------------------------------
    # Repository manifest
    # ------------------------------------------------------------------

    def sync(self, artifact_id: int, *, token: str | None = None) -> RepositoryManifest:
        require_token(self._auth, token)
        return self.manifest.sync(self.registry.get(artifact_id))

    def apply_manifest_op(
        self,
        op: Any,
        *,
        token: str | None = None,
        expected_revision: str | None = None,
    ) -> RepositoryManifest:
        require_token(self._auth, token)
        return self.manifest.apply(op, expected_revision=expected_revision)

    def render_manifest(self) -> dict[str, Any]:
        return self.manifest.render()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.signing.shutdown(wait=True)
        self.shortener.close()

    def __enter__(self) -> "DistributionService":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
