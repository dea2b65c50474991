"""
Credential redaction and audit logging utilities.

SECURITY REQUIREMENTS:
- Tokens and API keys NEVER appear in logs
- ALLOWED in logs: credential_id, name, owner_email, auth_type, endpoint_type
- All credential lifecycle operations logged for audit trail

Audit Events:
- credential.stored
- credential.refreshed
- credential.revoked
- credential.accessed
- credential.error

Usage:
    from llm_gateway.credentials.redaction import CredentialAuditLogger, AuditEventType

    audit = CredentialAuditLogger()
    audit.log(
        event_type=AuditEventType.CREDENTIAL_STORED,
        credential_id=credential_id,
        auth_type="oauth",
        name="Team account",
    )
"""

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

REDACTED_VALUE = "[REDACTED]"


class AuditEventType(str, Enum):
    """Credential audit event types."""
    CREDENTIAL_STORED = "credential.stored"
    CREDENTIAL_REFRESHED = "credential.refreshed"
    CREDENTIAL_REVOKED = "credential.revoked"
    CREDENTIAL_ACCESSED = "credential.accessed"
    CREDENTIAL_ERROR = "credential.error"


# Secret-looking substrings inside free text
SECRET_VALUE_PATTERNS = [
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._~+/=-]+"),
    re.compile(r"\bsk-[A-Za-z0-9_-]{8,}"),  # OpenAI/Anthropic style keys
    re.compile(r"\bfk-[A-Za-z0-9_-]{8,}"),  # Factory API keys
    re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"),  # JWTs
    re.compile(r"\b[0-9a-f]{32}:[0-9a-f]{32,}\b"),  # iv_hex:ciphertext_hex
]

SECRET_KEY_PATTERNS = [
    "token", "secret", "credential", "authorization", "bearer",
    "api_key", "apikey", "password", "encrypted_key",
]

# Key names that contain a secret pattern but are safe identifiers
ALLOWED_KEYS = frozenset({
    "credential_id", "credential_name", "token_type", "api_key_id",
    "api_key_count", "active_api_key_count",
})


def is_credential_secret_key(key: str) -> bool:
    """
    Check if a key name indicates a credential secret.

    Args:
        key: The key name to check

    Returns:
        True if the key likely contains a secret
    """
    key_lower = key.lower()
    if key_lower in ALLOWED_KEYS:
        return False
    return any(pattern in key_lower for pattern in SECRET_KEY_PATTERNS)


def redact_credential_value(value: Any) -> Any:
    """
    Redact secret patterns from a credential value.

    Args:
        value: The value to redact

    Returns:
        Redacted value
    """
    if not isinstance(value, str):
        return value

    result = value
    for pattern in SECRET_VALUE_PATTERNS:
        if pattern.groups:
            result = pattern.sub(lambda m: m.group(1) + REDACTED_VALUE, result)
        else:
            result = pattern.sub(REDACTED_VALUE, result)
    return result


def redact_credential_data(data: Any, _depth: int = 0) -> Any:
    """
    Recursively redact credential secrets from a data structure.

    SECURITY:
    - Always use this before logging credential-related data

    Args:
        data: Dictionary, list, or other data structure

    Returns:
        Copy of data with secrets redacted
    """
    # Prevent infinite recursion
    if _depth > 10:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if isinstance(key, str) and is_credential_secret_key(key):
                result[key] = REDACTED_VALUE
            else:
                result[key] = redact_credential_data(value, _depth + 1)
        return result

    if isinstance(data, list):
        return [redact_credential_data(item, _depth + 1) for item in data]

    if isinstance(data, str):
        return redact_credential_value(data)

    return data


class CredentialAuditLogger:
    """
    Structured audit logger for credential operations.

    SECURITY:
    - Tokens are NEVER logged
    - metadata is redacted before it is attached to the record
    """

    def __init__(self, logger_name: str = "credentials.audit"):
        self.logger = logging.getLogger(logger_name)

    def log(
        self,
        event_type: AuditEventType,
        credential_id: str,
        auth_type: Optional[str] = None,
        name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log an audit event.

        Args:
            event_type: Type of audit event
            credential_id: Credential ID
            auth_type: "oauth" or "api_key"
            name: Credential display name (allowed in logs)
            metadata: Additional context (will be redacted)
        """
        safe_metadata = redact_credential_data(metadata) if metadata else {}

        audit_record = {
            "event_type": event_type.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "credential_id": credential_id,
            "auth_type": auth_type,
            "credential_name": name,
            **safe_metadata,
        }

        self.logger.info(
            f"Credential audit: {event_type.value}",
            extra=audit_record
        )

    def log_error(
        self,
        credential_id: str,
        error: str,
        auth_type: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        """Log a credential error. The message is redacted first."""
        self.log(
            event_type=AuditEventType.CREDENTIAL_ERROR,
            credential_id=credential_id,
            auth_type=auth_type,
            name=name,
            metadata={"error": redact_credential_value(error)},
        )


_STANDARD_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


class CredentialLoggingFilter(logging.Filter):
    """
    Logging filter that redacts credential secrets from log records.

    Usage:
        handler.addFilter(CredentialLoggingFilter())
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_credential_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = redact_credential_data(record.args)
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    redact_credential_value(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        # Fields passed through extra=
        for key in list(record.__dict__.keys()):
            if key in _STANDARD_RECORD_ATTRS:
                continue
            value = record.__dict__[key]
            if is_credential_secret_key(key):
                record.__dict__[key] = REDACTED_VALUE
            elif isinstance(value, str):
                record.__dict__[key] = redact_credential_value(value)

        return True


# Logger filters do not propagate to child loggers, so list each module.
CREDENTIAL_LOGGERS = (
    "llm_gateway.credentials.encryption",
    "llm_gateway.credentials.store",
    "llm_gateway.credentials.oauth_client",
    "llm_gateway.credentials.refresh",
    "llm_gateway.credentials.pool",
    "credentials.audit",
)


def setup_credential_logging() -> None:
    """
    Configure credential-safe logging.

    Call this during application startup so every credential logger has the
    redaction filter applied.
    """
    redaction_filter = CredentialLoggingFilter()

    for logger_name in CREDENTIAL_LOGGERS:
        log = logging.getLogger(logger_name)
        if not any(isinstance(f, CredentialLoggingFilter) for f in log.filters):
            log.addFilter(redaction_filter)

    logger.info("Credential logging configured with redaction filter")
