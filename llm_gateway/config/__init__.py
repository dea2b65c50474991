"""Configuration for the LLM gateway credential core."""

from llm_gateway.config.settings import (
    DEFAULT_ENCRYPTION_SECRET,
    GatewaySettings,
    build_credential_services,
)

__all__ = [
    "DEFAULT_ENCRYPTION_SECRET",
    "GatewaySettings",
    "build_credential_services",
]
