"""
Credential data model.

CredentialRecord values are owned by the CredentialStore. Everything else in
this module is either an inbound shape (CredentialConfig) or a transient value
handed back to callers (AcquiredCredential, TokenRefreshResult, ...).

SECURITY:
- OAuth tokens in CredentialRecord are plaintext in process memory only
- API keys are held as ciphertext (ApiKeyEntry.encrypted_key)
- CredentialMetadata is the only shape safe for logs and listings
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthType(str, enum.Enum):
    """How a credential authenticates upstream."""
    OAUTH = "oauth"
    API_KEY = "api_key"


class EndpointType(str, enum.Enum):
    """Upstream API surface a credential is routed to."""
    ANTHROPIC = "anthropic"  # Messages API
    OPENAI = "openai"  # Responses API
    COMM = "comm"  # Chat Completions API


class ApiKeyStatus(str, enum.Enum):
    ACTIVE = "active"
    ERROR = "error"


@dataclass
class ApiKeyEntry:
    """
    One API key inside an ApiKey credential.

    hash and encrypted_key are derived from the same plaintext at creation
    time and are never updated independently.
    """
    hash: str
    encrypted_key: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    last_used_at: Optional[datetime] = None
    usage_count: int = 0
    status: ApiKeyStatus = ApiKeyStatus.ACTIVE
    error_message: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == ApiKeyStatus.ACTIVE


@dataclass
class CredentialRecord:
    """
    A tenant's upstream credential plus health and usage metadata.

    OAuth fields are meaningful only when auth_type is OAUTH; api_keys only
    when auth_type is API_KEY. is_healthy is the single gate acquisition
    checks.
    """
    id: str
    auth_type: AuthType
    name: Optional[str] = None
    endpoint_type: EndpointType = EndpointType.ANTHROPIC

    # OAuth
    access_token: Optional[str] = field(default=None, repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[datetime] = None
    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    owner_email: Optional[str] = None
    owner_name: Optional[str] = None
    token_type: str = "Bearer"

    # API key pool
    api_keys: list[ApiKeyEntry] = field(default_factory=list)

    # Health and usage
    usage_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None
    is_healthy: bool = True
    last_refresh: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def active_api_keys(self) -> list[ApiKeyEntry]:
        return [key for key in self.api_keys if key.is_active]

    def has_required_auth_material(self) -> bool:
        """Per-type invariant checked when a record enters the store."""
        if self.auth_type == AuthType.OAUTH:
            return bool(self.access_token or self.refresh_token)
        return bool(self.api_keys)

    def to_metadata(self) -> "CredentialMetadata":
        return CredentialMetadata(
            id=self.id,
            name=self.name,
            auth_type=self.auth_type.value,
            endpoint_type=self.endpoint_type.value,
            is_healthy=self.is_healthy,
            usage_count=self.usage_count,
            error_count=self.error_count,
            last_error=self.last_error,
            expires_at=self.expires_at,
            last_refresh=self.last_refresh,
            owner_email=self.owner_email,
            api_key_count=len(self.api_keys),
            active_api_key_count=len(self.active_api_keys),
        )


@dataclass
class CredentialMetadata:
    """
    Credential metadata safe for listings and logging.

    SECURITY: Does NOT include token or key values.
    """
    id: str
    name: Optional[str]
    auth_type: str
    endpoint_type: str
    is_healthy: bool
    usage_count: int
    error_count: int
    last_error: Optional[str]
    expires_at: Optional[datetime]
    last_refresh: Optional[datetime]
    owner_email: Optional[str]
    api_key_count: int
    active_api_key_count: int


class CredentialConfig(BaseModel):
    """
    Inbound configuration accepted by CredentialStore.create().

    api_keys carries plaintext keys; the store encrypts them and never keeps
    this object around.
    """

    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    endpoint_type: EndpointType = EndpointType.ANTHROPIC
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    owner_email: Optional[str] = None
    owner_name: Optional[str] = None
    token_type: str = "Bearer"
    api_keys: list[str] = []

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("access_token", "refresh_token")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None


@dataclass
class AcquiredCredential:
    """
    Ready-to-use authorization bundle returned by CredentialPool.acquire().

    SECURITY: headers carries the plaintext bearer token. Use it for a single
    upstream call and drop it; it is excluded from repr().
    """
    id: str
    auth_type: str
    name: Optional[str] = None
    base_url: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict, repr=False)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class TokenRefreshResult:
    """Outcome of a successful OAuth refresh, as applied to a record."""
    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[datetime] = None
    organization_id: Optional[str] = None


@dataclass
class ValidationResult:
    valid: bool
    message: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)
