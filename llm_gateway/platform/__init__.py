"""Platform-wide primitives shared by the gateway core."""

from llm_gateway.platform.errors import (
    AppError,
    ConfigurationError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    "AppError",
    "ConfigurationError",
    "NotFoundError",
    "ValidationError",
]
