"""Runtime configuration: env-driven via pydantic-settings.

Reads from a .env file and IPAFORGE_* environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class IpaForgeConfig(BaseSettings):
    """Runtime configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export IPAFORGE_BASE_URL=https://apps.example.com
        export IPAFORGE_LOG_LEVEL=DEBUG
        export IPAFORGE_SIGN_TIMEOUT_SECONDS=300

    Or via .env file::

        IPAFORGE_ENVIRONMENT=production
        IPAFORGE_API_TOKEN=change-me
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="IPAFORGE_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Storage paths
    data_dir: Path = Path(".ipaforge")
    registry_db_path: Path = Path(".ipaforge/registry.db")
    binary_store_path: Path = Path(".ipaforge/uploads/ipa")
    certificate_store_path: Path = Path(".ipaforge/certificates")
    manifest_path: Path = Path(".ipaforge/source.json")

    # Public links
    base_url: str = "https://localhost"

    # Storage limits
    max_upload_bytes: int = 100 * 1024 * 1024  # edge proxy ceiling
    storage_quota_bytes: int = 1024 * 1024 * 1024
    default_min_os_version: str = "14.0"

    # Signing
    sign_workers: int = 2
    sign_timeout_seconds: float = 120.0
    resigner_command: str = "zsign"

    # Link shortening
    shortener_enabled: bool = True
    shortener_url: str = "https://is.gd/create.php"
    shortener_timeout_seconds: float = 5.0

    # Manifest
    manifest_lock_timeout_seconds: float = 10.0
    store_name: str = "IPA Repository"
    store_identifier: str = "com.example.repo"
    store_subtitle: str = ""
    store_description: str = ""
    store_icon_url: str = ""
    store_header_url: str = ""
    store_website: str = ""
    store_tint_color: str = "#f97316"

    # Caller token checked on every mutating operation (empty: no check)
    api_token: str = ""

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"


# Module-level singleton: import as `from ipaforge.config import config`
config = IpaForgeConfig()
