"""ipaforge data models: all Pydantic v2, all frozen (immutable)."""

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
from ipaforge.models.manifest import (
    AddApp,
    AddNews,
    AddVersion,
    AppPermissions,
    ManifestOperation,
    RemoveApp,
    RemoveNews,
    RemoveVersion,
    RepoApp,
    RepoNews,
    RepositoryManifest,
    RepoVersion,
    UpdateStore,
)
from ipaforge.models.signing import VALID_TRANSITIONS, SignJob, SignState

__all__ = [
    # artifacts
    "Artifact",
    "ArtifactMetadata",
    "ArtifactPatch",
    "ArtifactListing",
    "ArtifactLinks",
    "AppStats",
    "PublishedArtifact",
    # certificates
    "Certificate",
    "CertificatePatch",
    # signing
    "SignState",
    "SignJob",
    "VALID_TRANSITIONS",
    # manifest
    "RepositoryManifest",
    "RepoApp",
    "RepoVersion",
    "RepoNews",
    "AppPermissions",
    "ManifestOperation",
    "AddApp",
    "AddVersion",
    "RemoveApp",
    "RemoveVersion",
    "AddNews",
    "RemoveNews",
    "UpdateStore",
]
