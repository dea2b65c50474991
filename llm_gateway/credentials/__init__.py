"""
Credential core for the LLM gateway.

This module provides:
- AES-256-CBC encryption of API keys at rest
- An in-memory credential store guarded by a reader/writer lock
- OAuth token refresh (on-demand with backoff + scheduled)
- Acquisition/release of upstream credentials with health tracking
- Upstream error classification
- Audit logging with automatic redaction

SECURITY:
- API keys are encrypted at rest using CREDENTIAL_ENCRYPTION_KEY
- Tokens NEVER appear in logs
- Allowed in logs: credential_id, name, owner_email, auth_type

Usage:
    from llm_gateway.credentials import CredentialStore, CredentialPool

    store = CredentialStore(encryption_secret)
    credential_id = await store.create("api_key", {"api_keys": ["fk-..."]})

    pool = CredentialPool(store)
    bundle = await pool.acquire("claude-sonnet-4")
    await pool.release(bundle.id)
"""

from llm_gateway.credentials.store import (
    CredentialStore,
    CredentialStoreError,
    CredentialNotFoundError,
    UnsupportedAuthTypeError,
    InvalidCredentialConfigError,
)
from llm_gateway.credentials.encryption import (
    encrypt_secret,
    decrypt_secret,
    fingerprint,
    CredentialEncryptionError,
    MalformedCiphertextError,
    DecryptionError,
)
from llm_gateway.credentials.models import (
    AuthType,
    EndpointType,
    ApiKeyStatus,
    ApiKeyEntry,
    CredentialRecord,
    CredentialMetadata,
    AcquiredCredential,
    TokenRefreshResult,
    ValidationResult,
)
from llm_gateway.credentials.refresh import (
    CredentialRefreshService,
    ScheduledRefreshResult,
    RefreshError,
    RefreshNotPossibleError,
    is_token_expired,
    is_token_expiring_soon,
)
from llm_gateway.credentials.oauth_client import TokenExchangeError
from llm_gateway.credentials.pool import (
    CredentialPool,
    ReleaseOutcome,
    ReleaseError,
    UnsupportedModelError,
    NoHealthyCredentialError,
    NoActiveApiKeyError,
    MissingAccessTokenError,
)
from llm_gateway.credentials.error_classifier import (
    ProviderError,
    ProviderErrorType,
    classify_upstream_error,
)
from llm_gateway.credentials.redaction import (
    redact_credential_data,
    CredentialAuditLogger,
    AuditEventType,
    setup_credential_logging,
)

__all__ = [
    # Store
    "CredentialStore",
    "CredentialStoreError",
    "CredentialNotFoundError",
    "UnsupportedAuthTypeError",
    "InvalidCredentialConfigError",
    # Encryption
    "encrypt_secret",
    "decrypt_secret",
    "fingerprint",
    "CredentialEncryptionError",
    "MalformedCiphertextError",
    "DecryptionError",
    # Models
    "AuthType",
    "EndpointType",
    "ApiKeyStatus",
    "ApiKeyEntry",
    "CredentialRecord",
    "CredentialMetadata",
    "AcquiredCredential",
    "TokenRefreshResult",
    "ValidationResult",
    # Refresh
    "CredentialRefreshService",
    "ScheduledRefreshResult",
    "RefreshError",
    "RefreshNotPossibleError",
    "TokenExchangeError",
    "is_token_expired",
    "is_token_expiring_soon",
    # Pool
    "CredentialPool",
    "ReleaseOutcome",
    "ReleaseError",
    "UnsupportedModelError",
    "NoHealthyCredentialError",
    "NoActiveApiKeyError",
    "MissingAccessTokenError",
    # Classification
    "ProviderError",
    "ProviderErrorType",
    "classify_upstream_error",
    # Redaction
    "redact_credential_data",
    "CredentialAuditLogger",
    "AuditEventType",
    "setup_credential_logging",
]
