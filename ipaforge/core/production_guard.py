"""Production configuration guard: refuses to start a misconfigured service.

Runs once when ``DistributionService`` is constructed and raises
``ProductionConfigError`` listing every violated constraint.
"""

from __future__ import annotations

import logging

from ipaforge.config import IpaForgeConfig

logger = logging.getLogger(__name__)


class ProductionConfigError(RuntimeError):
    """Raised when production configuration constraints are violated."""


def enforce_production_constraints(config: IpaForgeConfig) -> None:
    """Validate production-critical settings.

    Constraints enforced
    --------------------
    1. Debug mode must be disabled.
    2. ``api_token`` must be set, so mutating calls are authenticated.
    3. ``base_url`` must be https, since installer clients refuse
       ``itms-services`` manifests served over plain http.
    """
    if not config.is_production:
        return

    violations: list[str] = []

    if config.debug:
        violations.append(
            "debug=True is not allowed in production. Set IPAFORGE_DEBUG=false."
        )
    if not config.api_token:
        violations.append(
            "api_token is required in production. Set IPAFORGE_API_TOKEN."
        )
    if not config.base_url.startswith("https://"):
        violations.append(
            f"base_url must use https in production, got {config.base_url!r}."
        )

    if violations:
        msg = (
            "Production configuration guard failed.\n"
            + "\n".join(f"  - {v}" for v in violations)
        )
        logger.critical(msg)
        raise ProductionConfigError(msg)

    logger.info("Production configuration guard passed.")
