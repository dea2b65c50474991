"""
Upstream HTTP error classification.

Maps provider status codes to a small taxonomy with retry and cooldown
hints. Classification is advisory: it is handed to CredentialPool.release()
and to the refresh retry loop, and never mutates the store itself.

    401 -> authentication, retry immediately after a token refresh
    403 -> authorization, do not retry
    429 -> rate_limit, retry after 60s
    5xx -> server_error, retry after 10s
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

AUTH_COOLDOWN_SECONDS = 0
RATE_LIMIT_COOLDOWN_SECONDS = 60
SERVER_ERROR_COOLDOWN_SECONDS = 10


class ProviderErrorType(str, Enum):
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"


@dataclass
class ProviderError:
    """Classified upstream failure."""
    error_type: ProviderErrorType
    message: str
    status_code: Optional[int] = None
    retryable: bool = False
    cooldown_seconds: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "error_type": self.error_type.value,
            "message": self.message,
            "status_code": self.status_code,
            "retryable": self.retryable,
            "cooldown_seconds": self.cooldown_seconds,
        }


def classify_upstream_error(status_code: int, body: str = "") -> Optional[ProviderError]:
    """
    Classify an upstream HTTP status.

    Args:
        status_code: HTTP status returned by the provider
        body: Response body text, included in server error messages

    Returns:
        ProviderError, or None for statuses outside the taxonomy
    """
    if status_code == 401:
        return ProviderError(
            error_type=ProviderErrorType.AUTHENTICATION,
            message="Token expired or invalid",
            status_code=status_code,
            retryable=True,
            cooldown_seconds=AUTH_COOLDOWN_SECONDS,
        )
    if status_code == 403:
        return ProviderError(
            error_type=ProviderErrorType.AUTHORIZATION,
            message="Insufficient permissions",
            status_code=status_code,
            retryable=False,
        )
    if status_code == 429:
        return ProviderError(
            error_type=ProviderErrorType.RATE_LIMIT,
            message="Too many requests",
            status_code=status_code,
            retryable=True,
            cooldown_seconds=RATE_LIMIT_COOLDOWN_SECONDS,
        )
    if 500 <= status_code <= 599:
        return ProviderError(
            error_type=ProviderErrorType.SERVER_ERROR,
            message=f"Server error: {body}",
            status_code=status_code,
            retryable=True,
            cooldown_seconds=SERVER_ERROR_COOLDOWN_SECONDS,
        )
    return None
