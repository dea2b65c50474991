"""
In-memory credential store.

The store is the single source of truth for credential state. It owns every
CredentialRecord and guards the mapping with one reader/writer lock:
lookups take the shared side, any mutation takes the exclusive side, and no
caller may hold either across a network call.

SECURITY REQUIREMENTS:
- API keys are encrypted before they enter a record
- Key fingerprints are one-way and used only for deduplication
- No plaintext tokens or keys in logs or audit events

Usage:
    store = CredentialStore(encryption_secret=settings.encryption_secret)

    credential_id = await store.create("api_key", {"api_keys": ["sk-..."]})

    async with store.read() as records:
        record = records[credential_id]

    async with store.write() as records:
        records[credential_id].is_healthy = False
"""

import copy
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from llm_gateway.credentials.encryption import encrypt_secret, fingerprint
from llm_gateway.credentials.locks import AsyncReadWriteLock
from llm_gateway.credentials.models import (
    ApiKeyEntry,
    AuthType,
    CredentialConfig,
    CredentialMetadata,
    CredentialRecord,
)
from llm_gateway.credentials.redaction import AuditEventType, CredentialAuditLogger
from llm_gateway.platform.errors import AppError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class CredentialStoreError(AppError):
    """Base exception for credential store errors."""

    code = "CREDENTIAL_UNAVAILABLE"


class CredentialNotFoundError(CredentialStoreError, NotFoundError):
    """Credential id is not in the store."""

    code = "NOT_FOUND"

    def __init__(self, credential_id: str):
        NotFoundError.__init__(self, "Credential", credential_id)
        self.credential_id = credential_id


class UnsupportedAuthTypeError(ValidationError):
    """auth_type is not one of the known variants."""

    def __init__(self, auth_type: Any):
        super().__init__(
            f"Unsupported auth type: {auth_type}",
            field="auth_type",
            details={"allowed": [t.value for t in AuthType]},
        )


class InvalidCredentialConfigError(ValidationError):
    """Credential config is malformed or misses the auth material its type needs."""


def _parse_auth_type(auth_type: Union[str, AuthType]) -> AuthType:
    try:
        return AuthType(auth_type)
    except ValueError:
        raise UnsupportedAuthTypeError(auth_type) from None


def _parse_config(config: Optional[Mapping[str, Any]]) -> CredentialConfig:
    try:
        return CredentialConfig.model_validate(dict(config or {}))
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise InvalidCredentialConfigError(
            f"Invalid credential config: {first.get('msg', 'invalid value')}",
            field=field,
        ) from e


def _missing_auth_material_error(auth_type: AuthType) -> InvalidCredentialConfigError:
    if auth_type == AuthType.OAUTH:
        return InvalidCredentialConfigError(
            "OAuth credentials require an access_token or refresh_token",
            field="access_token",
        )
    return InvalidCredentialConfigError(
        "API key credentials require at least one API key",
        field="api_keys",
    )


class CredentialStore:
    """
    Concurrent mapping of credential id -> CredentialRecord.

    Construct one per process (or per test) and inject it into the pool and
    refresh service; there is no module-level instance.
    """

    def __init__(self, encryption_secret: str):
        """
        Initialize credential store.

        Args:
            encryption_secret: Passphrase used to encrypt API keys at rest

        Raises:
            ValueError: If encryption_secret is empty
        """
        if not encryption_secret:
            raise ValueError("encryption_secret is required")

        self.encryption_secret = encryption_secret
        self._records: dict[str, CredentialRecord] = {}
        self._lock = AsyncReadWriteLock()
        self.audit = CredentialAuditLogger()

    @property
    def lock(self) -> AsyncReadWriteLock:
        return self._lock

    @asynccontextmanager
    async def read(self) -> AsyncIterator[Mapping[str, CredentialRecord]]:
        """Shared access to the live records. Do not mutate under this lock."""
        async with self._lock.read():
            yield self._records

    @asynccontextmanager
    async def write(self) -> AsyncIterator[dict[str, CredentialRecord]]:
        """Exclusive access to the live records."""
        async with self._lock.write():
            yield self._records

    def _build_api_key_entries(self, plaintext_keys: list[str]) -> list[ApiKeyEntry]:
        entries = []
        seen = set()
        for plaintext in plaintext_keys:
            if not plaintext:
                continue
            key_hash = fingerprint(plaintext)
            if key_hash in seen:
                continue
            seen.add(key_hash)
            entries.append(ApiKeyEntry(
                hash=key_hash,
                encrypted_key=encrypt_secret(plaintext, self.encryption_secret),
            ))
        return entries

    async def create(
        self,
        auth_type: Union[str, AuthType],
        config: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """
        Validate, encrypt and insert a new credential.

        Nothing is allocated or mutated unless every check passes.

        Args:
            auth_type: "oauth" or "api_key"
            config: Credential fields; api_keys holds plaintext keys

        Returns:
            The new credential id

        Raises:
            UnsupportedAuthTypeError: Unknown auth_type
            InvalidCredentialConfigError: Malformed config, or missing tokens/keys
        """
        auth_type_enum = _parse_auth_type(auth_type)
        parsed = _parse_config(config)

        api_keys: list[ApiKeyEntry] = []
        if auth_type_enum == AuthType.API_KEY:
            api_keys = self._build_api_key_entries(parsed.api_keys)
            if not api_keys:
                raise _missing_auth_material_error(auth_type_enum)
        elif not (parsed.access_token or parsed.refresh_token):
            raise _missing_auth_material_error(auth_type_enum)

        record = CredentialRecord(
            id=str(uuid.uuid4()),
            auth_type=auth_type_enum,
            name=parsed.name,
            endpoint_type=parsed.endpoint_type,
            access_token=parsed.access_token,
            refresh_token=parsed.refresh_token,
            expires_at=parsed.expires_at,
            organization_id=parsed.organization_id,
            user_id=parsed.user_id,
            owner_email=parsed.owner_email,
            owner_name=parsed.owner_name,
            token_type=parsed.token_type,
            api_keys=api_keys,
        )

        async with self.write() as records:
            records[record.id] = record

        self.audit.log(
            event_type=AuditEventType.CREDENTIAL_STORED,
            credential_id=record.id,
            auth_type=auth_type_enum.value,
            name=record.name,
            metadata={
                "endpoint_type": record.endpoint_type.value,
                "api_key_count": len(api_keys),
            },
        )

        logger.info(
            "Credential created",
            extra={
                "credential_id": record.id,
                "auth_type": auth_type_enum.value,
                "endpoint_type": record.endpoint_type.value,
            }
        )

        return record.id

    async def get_credential(self, credential_id: str) -> CredentialRecord:
        """
        Get a detached copy of a credential record.

        Raises:
            CredentialNotFoundError: If the id is unknown
        """
        async with self.read() as records:
            record = records.get(credential_id)
            if record is None:
                raise CredentialNotFoundError(credential_id)
            return copy.deepcopy(record)

    async def list_credentials(self) -> list[CredentialMetadata]:
        """List all credentials (metadata only) in store iteration order."""
        async with self.read() as records:
            return [record.to_metadata() for record in records.values()]

    async def delete_credential(self, credential_id: str) -> None:
        """
        Remove a credential from the store.

        Raises:
            CredentialNotFoundError: If the id is unknown
        """
        async with self.write() as records:
            record = records.pop(credential_id, None)

        if record is None:
            raise CredentialNotFoundError(credential_id)

        self.audit.log(
            event_type=AuditEventType.CREDENTIAL_REVOKED,
            credential_id=credential_id,
            auth_type=record.auth_type.value,
            name=record.name,
            metadata={"reason": "deleted"},
        )

        logger.info("Credential deleted", extra={"credential_id": credential_id})

    async def export_records(self) -> list[CredentialRecord]:
        """
        Snapshot every record for an external persistence layer.

        API keys stay encrypted; OAuth tokens are plaintext in the copies, so
        the caller is responsible for protecting what it writes.
        """
        async with self.read() as records:
            return [copy.deepcopy(record) for record in records.values()]

    async def import_record(self, record: CredentialRecord) -> str:
        """
        Load a previously exported record, keeping its id.

        Raises:
            InvalidCredentialConfigError: Missing id or auth material
        """
        if not record.id:
            raise InvalidCredentialConfigError(
                "Imported credential must have an id", field="id"
            )
        if not record.has_required_auth_material():
            raise _missing_auth_material_error(record.auth_type)

        loaded = copy.deepcopy(record)
        async with self.write() as records:
            records[loaded.id] = loaded

        logger.debug(
            "Credential imported",
            extra={"credential_id": loaded.id, "auth_type": loaded.auth_type.value}
        )
        return loaded.id

    async def count(self) -> int:
        async with self.read() as records:
            return len(records)
