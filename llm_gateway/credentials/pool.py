"""
Credential acquisition and release.

acquire() hands out a ready-to-use header bundle for the first healthy
credential; release() records how the upstream call went, which is the only
place health is flipped outside of refresh.

Selection policy is fixed: first healthy record in store order. Within an
API key credential, one active key is chosen uniformly at random.

SECURITY:
- Decrypted API keys and access tokens live only in the returned bundle
- Nothing here logs header values
"""

import logging
import random
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from llm_gateway.credentials.encryption import decrypt_secret
from llm_gateway.credentials.error_classifier import ProviderError
from llm_gateway.credentials.models import (
    AcquiredCredential,
    ApiKeyStatus,
    AuthType,
    CredentialRecord,
    EndpointType,
    ValidationResult,
    utcnow,
)
from llm_gateway.credentials.oauth_client import (
    FACTORY_CLIENT_HEADER,
    FACTORY_CLIENT_VALUE,
    FACTORY_USER_AGENT,
)
from llm_gateway.credentials.redaction import AuditEventType
from llm_gateway.credentials.store import CredentialStore, CredentialStoreError
from llm_gateway.platform.errors import ValidationError

logger = logging.getLogger(__name__)

FACTORY_LLM_BASE_URL = "https://api.factory.ai/api/llm"

ENDPOINT_PATHS = {
    EndpointType.ANTHROPIC: "/a/v1/messages",
    EndpointType.OPENAI: "/o/v1/responses",
    EndpointType.COMM: "/o/v1/chat/completions",
}

SUPPORTED_MODEL_PREFIXES = ("claude-", "gpt-")


class UnsupportedModelError(ValidationError):
    def __init__(self, model: str):
        super().__init__(f"Unsupported model: {model}", field="model")
        self.model = model


class NoHealthyCredentialError(CredentialStoreError):
    def __init__(self):
        super().__init__("No healthy credential available")


class NoActiveApiKeyError(CredentialStoreError):
    def __init__(self, credential_id: str):
        super().__init__(
            "No active API key available",
            details={"credential_id": credential_id},
        )
        self.credential_id = credential_id


class MissingAccessTokenError(CredentialStoreError):
    def __init__(self, credential_id: str):
        super().__init__(
            "OAuth credential has no access token",
            details={"credential_id": credential_id},
        )
        self.credential_id = credential_id


@dataclass
class ReleaseError:
    """Error half of a release outcome. message may be None when the caller gave none."""
    message: Optional[str] = None
    mark_unhealthy: bool = False

    @classmethod
    def from_provider_error(cls, error: ProviderError) -> "ReleaseError":
        """Non-retryable upstream failures take the credential out of rotation."""
        return cls(message=error.message, mark_unhealthy=not error.retryable)


@dataclass
class ReleaseOutcome:
    """
    Result of one upstream call, reported back through release().

    error=None means success. api_key_id names the key that acquire() chose
    for API key credentials.
    """
    error: Optional[ReleaseError] = None
    api_key_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ReleaseOutcome":
        """Build from {"error": {"message": ..., "mark_unhealthy": ...}, "api_key_id": ...}."""
        error = None
        error_data = data.get("error")
        if error_data is not None:
            # Any error object, even an empty or non-mapping one, is a failure
            if not isinstance(error_data, Mapping):
                error_data = {}
            message = error_data.get("message")
            error = ReleaseError(
                message=message if isinstance(message, str) else None,
                mark_unhealthy=error_data.get("mark_unhealthy") is True,
            )
        return cls(error=error, api_key_id=data.get("api_key_id"))


def supports_model(model: str) -> bool:
    return bool(model) and model.startswith(SUPPORTED_MODEL_PREFIXES)


def build_headers(token: str) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "User-Agent": FACTORY_USER_AGENT,
        FACTORY_CLIENT_HEADER: FACTORY_CLIENT_VALUE,
        "Authorization": f"Bearer {token}",
    }


class CredentialPool:
    """
    Acquire/release/validate over a CredentialStore.

    Usage:
        pool = CredentialPool(store)

        bundle = await pool.acquire("claude-sonnet-4")
        ...  # upstream call with bundle.base_url / bundle.headers
        await pool.release(bundle.id, ReleaseOutcome(api_key_id=bundle.metadata.get("api_key_id")))
    """

    def __init__(self, store: CredentialStore, rng: Optional[random.Random] = None):
        self.store = store
        self.rng = rng or random.Random()

    def supports_model(self, model: str) -> bool:
        return supports_model(model)

    async def acquire(self, model: str) -> AcquiredCredential:
        """
        Select a credential and build its authorization bundle.

        Args:
            model: Target model id

        Returns:
            AcquiredCredential with base URL, headers and metadata

        Raises:
            UnsupportedModelError: Model is not served through the gateway
            NoHealthyCredentialError: Every credential is unhealthy
            MissingAccessTokenError: Chosen OAuth credential has no access token
            NoActiveApiKeyError: Chosen API key credential has no active key
        """
        if not supports_model(model):
            raise UnsupportedModelError(model)

        async with self.store.read() as records:
            record = next((r for r in records.values() if r.is_healthy), None)
            if record is None:
                raise NoHealthyCredentialError()

            metadata: dict[str, Any] = {
                "model": model,
                "endpoint_type": record.endpoint_type.value,
            }

            if record.auth_type == AuthType.OAUTH:
                if not record.access_token:
                    raise MissingAccessTokenError(record.id)
                token = record.access_token
            else:
                active = record.active_api_keys
                if not active:
                    raise NoActiveApiKeyError(record.id)
                entry = self.rng.choice(active)
                token = decrypt_secret(entry.encrypted_key, self.store.encryption_secret)
                metadata["api_key_id"] = entry.id

            bundle = AcquiredCredential(
                id=record.id,
                auth_type=record.auth_type.value,
                name=record.name,
                base_url=FACTORY_LLM_BASE_URL + ENDPOINT_PATHS[record.endpoint_type],
                headers=build_headers(token),
                metadata=metadata,
            )

        self.store.audit.log(
            event_type=AuditEventType.CREDENTIAL_ACCESSED,
            credential_id=bundle.id,
            auth_type=bundle.auth_type,
            name=bundle.name,
            metadata={"model": model, "api_key_id": metadata.get("api_key_id")},
        )
        return bundle

    async def release(
        self,
        credential_id: str,
        outcome: Union[ReleaseOutcome, Mapping[str, Any], None] = None,
    ) -> None:
        """
        Record the outcome of one use. Unknown ids are ignored.

        A success always heals the credential; an error flips it unhealthy
        only when the error asks for it.
        """
        if outcome is None:
            outcome = ReleaseOutcome()
        elif not isinstance(outcome, ReleaseOutcome):
            outcome = ReleaseOutcome.from_dict(outcome)

        async with self.store.write() as records:
            record = records.get(credential_id)
            if record is None:
                logger.debug(
                    "Release for unknown credential ignored",
                    extra={"credential_id": credential_id}
                )
                return
            self._apply_outcome(record, outcome)
            is_healthy = record.is_healthy

        if outcome.error is not None:
            logger.info(
                "Credential use failed",
                extra={
                    "credential_id": credential_id,
                    "mark_unhealthy": outcome.error.mark_unhealthy,
                    "is_healthy": is_healthy,
                }
            )

    def _apply_outcome(self, record: CredentialRecord, outcome: ReleaseOutcome) -> None:
        record.usage_count += 1
        error = outcome.error
        if error is not None:
            record.error_count += 1
            record.last_error = error.message
            if error.mark_unhealthy:
                record.is_healthy = False
        else:
            record.is_healthy = True
            record.last_error = None

        if not outcome.api_key_id:
            return
        entry = next((k for k in record.api_keys if k.id == outcome.api_key_id), None)
        if entry is None:
            logger.debug(
                "Release named an unknown API key",
                extra={"credential_id": record.id, "api_key_id": outcome.api_key_id}
            )
            return
        entry.usage_count += 1
        entry.last_used_at = utcnow()
        entry.error_message = error.message if error is not None else None

    async def validate(self, credential_id: str) -> ValidationResult:
        """Report whether a credential is currently usable. Read-only."""
        async with self.store.read() as records:
            record = records.get(credential_id)
            if record is None:
                return ValidationResult(valid=False, message="Credential not found")

            if record.auth_type == AuthType.OAUTH:
                has_material = bool(record.access_token or record.refresh_token)
            else:
                has_material = any(k.status == ApiKeyStatus.ACTIVE for k in record.api_keys)

            details = {
                "auth_type": record.auth_type.value,
                "is_healthy": record.is_healthy,
                "has_auth_material": has_material,
            }

        if not details["is_healthy"]:
            return ValidationResult(valid=False, message="Credential is unhealthy", details=details)
        if not has_material:
            return ValidationResult(valid=False, message="Credential has no usable auth material", details=details)
        return ValidationResult(valid=True, details=details)
