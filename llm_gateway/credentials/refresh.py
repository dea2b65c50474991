"""
Token refresh service for OAuth credentials.

Implements BOTH refresh strategies:
1. On-demand refresh: caller saw a 401 or an expired token and refreshes one credential
2. Scheduled refresh: background pass refreshes tokens that are expired or about to expire

Lock discipline:
- The write lock is held only to snapshot the record and to apply the result
- The token exchange and retry backoff run with no lock held

SECURITY REQUIREMENTS:
- No plaintext tokens in logs
- Audit events for all refresh operations

Usage:
    refresh_service = CredentialRefreshService(store)

    # On-demand refresh
    result = await refresh_service.refresh_with_retry(credential_id)

    # Scheduled refresh (background job)
    results = await refresh_service.refresh_expiring_credentials()
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from llm_gateway.credentials.models import (
    AuthType,
    CredentialRecord,
    TokenRefreshResult,
    utcnow,
)
from llm_gateway.credentials.oauth_client import (
    TokenExchangeError,
    TokenExchangeResult,
    exchange_refresh_token,
)
from llm_gateway.credentials.redaction import AuditEventType
from llm_gateway.credentials.store import CredentialNotFoundError, CredentialStore
from llm_gateway.platform.errors import AppError

logger = logging.getLogger(__name__)

DEFAULT_MAX_REFRESH_ATTEMPTS = 3
INITIAL_BACKOFF_SECONDS = 1.0

# A token this close to expiry is treated as already expired
EXPIRY_SKEW = timedelta(minutes=5)
# Scheduled refresh picks up tokens expiring within this window
EXPIRING_SOON_WINDOW = timedelta(hours=1)

TokenExchange = Callable[[str, Optional[str]], Awaitable[TokenExchangeResult]]
Sleep = Callable[[float], Awaitable[None]]


class RefreshError(AppError):
    """Base exception for token refresh errors."""

    code = "REFRESH_ERROR"


class RefreshNotPossibleError(RefreshError):
    """Credential cannot be refreshed (not OAuth or no refresh token)."""

    def __init__(self, credential_id: str, reason: str):
        super().__init__(
            f"Credential {credential_id} cannot be refreshed: {reason}",
            details={"credential_id": credential_id, "reason": reason},
        )
        self.credential_id = credential_id
        self.reason = reason


class RefreshResultStatus(str, Enum):
    """Result status for scheduled refresh operations."""
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class ScheduledRefreshResult:
    """
    Per-credential outcome of a scheduled refresh pass.

    SECURITY: Does NOT include token values.
    """
    credential_id: str
    status: RefreshResultStatus
    message: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RefreshResultStatus.SUCCESS


def is_token_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True when the expiry is unknown or falls within EXPIRY_SKEW of now."""
    if expires_at is None:
        return True
    now = now or utcnow()
    return expires_at <= now + EXPIRY_SKEW


def is_token_expiring_soon(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True when a known expiry falls within EXPIRING_SOON_WINDOW of now."""
    if expires_at is None:
        return False
    now = now or utcnow()
    return expires_at < now + EXPIRING_SOON_WINDOW


def backoff_delay(attempt: int) -> float:
    """Seconds to wait after failed attempt number `attempt` (0-indexed)."""
    return INITIAL_BACKOFF_SECONDS * (2 ** attempt)


def apply_refresh_result(
    record: CredentialRecord,
    result: TokenExchangeResult,
    now: Optional[datetime] = None,
) -> None:
    """
    Write a successful exchange onto a record. Caller holds the write lock.

    Identity fields are overwritten only by non-empty values, so a partial
    response never erases what is already known.
    """
    record.access_token = result.access_token
    if result.refresh_token:
        record.refresh_token = result.refresh_token
    record.expires_at = result.expires_at
    record.last_refresh = now or utcnow()
    record.is_healthy = True
    record.last_error = None

    if result.organization_id:
        record.organization_id = result.organization_id
    if result.user_id:
        record.user_id = result.user_id
    if result.owner_email:
        record.owner_email = result.owner_email


class CredentialRefreshService:
    """
    Refreshes OAuth credentials held in a CredentialStore.

    token_exchange and sleep are injectable so the retry loop can be driven
    without a network or a real clock.
    """

    def __init__(
        self,
        store: CredentialStore,
        token_exchange: Optional[TokenExchange] = None,
        sleep: Optional[Sleep] = None,
        max_attempts: int = DEFAULT_MAX_REFRESH_ATTEMPTS,
    ):
        self.store = store
        self.token_exchange = token_exchange or exchange_refresh_token
        self.sleep = sleep or asyncio.sleep
        self.max_attempts = max_attempts
        self.audit = store.audit

    async def refresh(self, credential_id: str) -> TokenRefreshResult:
        """
        Refresh one credential with a single exchange attempt.

        Args:
            credential_id: Credential to refresh

        Returns:
            TokenRefreshResult describing the applied tokens

        Raises:
            CredentialNotFoundError: Unknown id, or removed during the exchange
            RefreshNotPossibleError: Not OAuth or no refresh token
            TokenExchangeError: Provider failure
        """
        async with self.store.write() as records:
            record = records.get(credential_id)
            if record is None:
                raise CredentialNotFoundError(credential_id)
            if record.auth_type != AuthType.OAUTH:
                raise RefreshNotPossibleError(credential_id, "not an OAuth credential")
            if not record.refresh_token:
                raise RefreshNotPossibleError(credential_id, "no refresh token")
            refresh_token = record.refresh_token
            organization_id = record.organization_id

        logger.info(
            "Refreshing OAuth token",
            extra={"credential_id": credential_id}
        )

        try:
            exchanged = await self.token_exchange(refresh_token, organization_id)
        except TokenExchangeError as e:
            self.audit.log_error(
                credential_id=credential_id,
                error=e.message,
                auth_type=AuthType.OAUTH.value,
            )
            raise

        async with self.store.write() as records:
            record = records.get(credential_id)
            if record is None:
                raise CredentialNotFoundError(credential_id)
            apply_refresh_result(record, exchanged)
            name = record.name

        self.audit.log(
            event_type=AuditEventType.CREDENTIAL_REFRESHED,
            credential_id=credential_id,
            auth_type=AuthType.OAUTH.value,
            name=name,
            metadata={
                "expires_at": exchanged.expires_at.isoformat() if exchanged.expires_at else None,
                "rotated": bool(exchanged.refresh_token),
            },
        )

        return TokenRefreshResult(
            access_token=exchanged.access_token,
            refresh_token=exchanged.refresh_token,
            expires_at=exchanged.expires_at,
            organization_id=exchanged.organization_id,
        )

    async def refresh_with_retry(
        self,
        credential_id: str,
        max_attempts: Optional[int] = None,
    ) -> TokenRefreshResult:
        """
        Refresh with bounded exponential backoff.

        Failed attempt k sleeps backoff_delay(k) before attempt k+1; there is
        no sleep after the last attempt. Only TokenExchangeError is retried,
        and not when the provider classified it as non-retryable.

        Raises:
            ValueError: If max_attempts < 1
            TokenExchangeError: The last failure once attempts are exhausted
        """
        attempts = self.max_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        last_error: Optional[TokenExchangeError] = None
        for attempt in range(attempts):
            try:
                return await self.refresh(credential_id)
            except TokenExchangeError as e:
                last_error = e
                if not e.retryable:
                    logger.warning(
                        "Token refresh failed with non-retryable error",
                        extra={
                            "credential_id": credential_id,
                            "attempt": attempt + 1,
                            "status_code": e.status_code,
                        }
                    )
                    break
                if attempt == attempts - 1:
                    logger.warning(
                        "Token refresh failed after max attempts",
                        extra={
                            "credential_id": credential_id,
                            "attempt": attempt + 1,
                            "status_code": e.status_code,
                        }
                    )
                    break

                delay = backoff_delay(attempt)
                logger.info(
                    "Retrying token refresh",
                    extra={
                        "credential_id": credential_id,
                        "attempt": attempt + 1,
                        "next_attempt": attempt + 2,
                        "delay_seconds": delay,
                    }
                )
                await self.sleep(delay)

        raise last_error

    async def refresh_expiring_credentials(
        self,
        max_attempts: int = 1,
    ) -> List[ScheduledRefreshResult]:
        """
        Refresh every OAuth credential that is expired or expiring soon.

        Designed to be called by a background job. One failure does not stop
        the pass.

        Returns:
            One ScheduledRefreshResult per candidate credential
        """
        now = utcnow()
        async with self.store.read() as records:
            candidates = [
                record.id
                for record in records.values()
                if record.auth_type == AuthType.OAUTH
                and record.refresh_token
                and (is_token_expired(record.expires_at, now)
                     or is_token_expiring_soon(record.expires_at, now))
            ]

        logger.info(
            "Found credentials needing refresh",
            extra={"count": len(candidates)}
        )

        results = []
        for credential_id in candidates:
            try:
                refreshed = await self.refresh_with_retry(credential_id, max_attempts)
            except (RefreshError, TokenExchangeError, CredentialNotFoundError) as e:
                logger.warning(
                    "Scheduled refresh failed",
                    extra={"credential_id": credential_id, "error_code": e.code}
                )
                results.append(ScheduledRefreshResult(
                    credential_id=credential_id,
                    status=RefreshResultStatus.FAILED,
                    message=e.message,
                ))
                continue

            results.append(ScheduledRefreshResult(
                credential_id=credential_id,
                status=RefreshResultStatus.SUCCESS,
                expires_at=refreshed.expires_at,
            ))

        success_count = sum(1 for r in results if r.succeeded)
        logger.info(
            "Scheduled refresh completed",
            extra={
                "total": len(results),
                "success": success_count,
                "failed": len(results) - success_count,
            }
        )
        return results
