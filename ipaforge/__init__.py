"""ipaforge: IPA artifact registry, re-signing pipeline and repository manifest.

- Artifact Registry + Store: uploaded IPAs, their metadata and stable ids
- Certificate Store: .p12 + .mobileprovision signing identities
- Signing Pipeline: worker-pool re-signing with atomic binary replacement
- Link Generator: install / direct / short / share / TestFlight-style links
- Repository Manifest Builder: the installer-facing ``source.json``
"""

__version__ = "0.3.0"
__description__ = (
    "Registry, re-signing pipeline and alternative-store manifest for iOS apps"
)

from ipaforge.core.distribution import DistributionService
from ipaforge.cli.app import app as cli

__all__ = ["DistributionService", "cli", "__version__"]
