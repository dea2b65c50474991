"""
Gateway process configuration.

Settings are read once at startup from the environment:
- CREDENTIAL_ENCRYPTION_KEY: passphrase for API key encryption at rest
- APP_ENV: deployment environment (default "development")
- TOKEN_REFRESH_MAX_ATTEMPTS: attempts per on-demand refresh (default 3)

The encryption key has a documented fallback so local runs work out of the
box. That fallback is public and is refused in production.

build_credential_services() also installs the credential log redaction filter.
"""

import logging
import os
from dataclasses import dataclass
from typing import NamedTuple, Optional

from llm_gateway.credentials.pool import CredentialPool
from llm_gateway.credentials.redaction import setup_credential_logging
from llm_gateway.credentials.refresh import (
    DEFAULT_MAX_REFRESH_ATTEMPTS,
    CredentialRefreshService,
)
from llm_gateway.credentials.store import CredentialStore
from llm_gateway.platform.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Insecure: anyone with this source can decrypt keys encrypted with it
DEFAULT_ENCRYPTION_SECRET = "default-droid-encryption-key"

PRODUCTION_ENV = "production"


@dataclass
class GatewaySettings:
    """Credential core configuration from environment."""
    encryption_secret: str = DEFAULT_ENCRYPTION_SECRET
    app_env: str = "development"
    refresh_max_attempts: int = DEFAULT_MAX_REFRESH_ATTEMPTS

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == PRODUCTION_ENV

    @property
    def uses_default_secret(self) -> bool:
        return self.encryption_secret == DEFAULT_ENCRYPTION_SECRET

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        """
        Load and validate configuration from environment variables.

        Raises:
            ConfigurationError: Unsafe or malformed configuration
        """
        raw_attempts = os.getenv("TOKEN_REFRESH_MAX_ATTEMPTS", str(DEFAULT_MAX_REFRESH_ATTEMPTS))
        try:
            attempts = int(raw_attempts)
        except ValueError:
            raise ConfigurationError(
                "TOKEN_REFRESH_MAX_ATTEMPTS must be an integer",
                details={"value": raw_attempts},
            ) from None

        settings = cls(
            encryption_secret=os.getenv("CREDENTIAL_ENCRYPTION_KEY") or DEFAULT_ENCRYPTION_SECRET,
            app_env=os.getenv("APP_ENV", "development"),
            refresh_max_attempts=attempts,
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.refresh_max_attempts < 1:
            raise ConfigurationError(
                "TOKEN_REFRESH_MAX_ATTEMPTS must be at least 1",
                details={"value": self.refresh_max_attempts},
            )

        if not self.uses_default_secret:
            return
        if self.is_production:
            raise ConfigurationError(
                "CREDENTIAL_ENCRYPTION_KEY must be set in production",
                details={"app_env": self.app_env},
            )
        logger.warning(
            "CREDENTIAL_ENCRYPTION_KEY not set, using insecure default",
            extra={"app_env": self.app_env}
        )


class CredentialServices(NamedTuple):
    store: CredentialStore
    pool: CredentialPool
    refresh: CredentialRefreshService


def build_credential_services(settings: Optional[GatewaySettings] = None) -> CredentialServices:
    """Install log redaction and wire a store with the pool and refresh service that share it."""
    settings = settings or GatewaySettings.from_env()
    setup_credential_logging()
    store = CredentialStore(encryption_secret=settings.encryption_secret)
    return CredentialServices(
        store=store,
        pool=CredentialPool(store),
        refresh=CredentialRefreshService(store, max_attempts=settings.refresh_max_attempts),
    )
