"""Link Generator: published URLs of an artifact.

Every link is a pure function of ``(artifact_id, app_slug, base_url)``.
Links are derived on demand and never stored, so a metadata edit or a
re-sign cannot make them drift; only deleting the artifact invalidates
them (the URLs then 404).
"""

from __future__ import annotations

import plistlib
from urllib.parse import quote

from ipaforge.models.artifacts import Artifact, ArtifactLinks, storage_key_for

IPA_PATH = "uploads/ipa"


def _base(base_url: str) -> str:
    return base_url.rstrip("/")


def install_manifest_url(artifact_id: int, base_url: str) -> str:
    """URL of the per-artifact install manifest (.plist)."""
    return f"{_base(base_url)}/{IPA_PATH}/manifest_{artifact_id}.plist"


def install_link(artifact_id: int, base_url: str) -> str:
    """``itms-services`` URL that makes iOS fetch the install manifest."""
    manifest = quote(install_manifest_url(artifact_id, base_url), safe=":/")
    return f"itms-services://?action=download-manifest&url={manifest}"


def direct_link(artifact_id: int, base_url: str) -> str:
    return f"{_base(base_url)}/{IPA_PATH}/{storage_key_for(artifact_id)}"


def short_link(artifact_id: int, base_url: str) -> str:
    return f"{_base(base_url)}/s/{artifact_id}"


def app_page_link(app_slug: str, base_url: str) -> str:
    return f"{_base(base_url)}/download/{quote(app_slug)}"


def testflight_link(artifact_id: int, app_slug: str, base_url: str) -> str:
    return f"{_base(base_url)}/app/{quote(app_slug)}/{artifact_id}"


def generate_links(artifact_id: int, app_slug: str, base_url: str) -> ArtifactLinks:
    return ArtifactLinks(
        install_link=install_link(artifact_id, base_url),
        direct_link=direct_link(artifact_id, base_url),
        short_link=short_link(artifact_id, base_url),
        app_page_link=app_page_link(app_slug, base_url),
        testflight_link=testflight_link(artifact_id, app_slug, base_url),
    )


class LinkGenerator:
    """Binds the public ``base_url`` so callers only pass artifacts."""

    def __init__(self, base_url: str) -> None:
        self.base_url = _base(base_url)

    def links_for(self, artifact: Artifact) -> ArtifactLinks:
        return generate_links(artifact.artifact_id, artifact.app_slug, self.base_url)

    def install_manifest(self, artifact: Artifact) -> bytes:
        return render_install_manifest(artifact, self.base_url)


def render_install_manifest(artifact: Artifact, base_url: str) -> bytes:
    """The plist an installer fetches through the ``itms-services`` link."""
    assets: list[dict[str, str]] = [
        {"kind": "software-package", "url": direct_link(artifact.artifact_id, base_url)}
    ]
    if artifact.icon_url:
        assets.append({"kind": "display-image", "url": artifact.icon_url})
        assets.append({"kind": "full-size-image", "url": artifact.icon_url})
    document = {
        "items": [
            {
                "assets": assets,
                "metadata": {
                    "bundle-identifier": artifact.bundle_id,
                    "bundle-version": artifact.version,
                    "kind": "software",
                    "title": artifact.app_name,
                },
            }
        ]
    }
    return plistlib.dumps(document, fmt=plistlib.FMT_XML, sort_keys=True)
