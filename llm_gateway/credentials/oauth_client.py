"""
WorkOS / Factory OAuth HTTP client.

Handles:
- Refresh-token exchange against the WorkOS user-management endpoint
- Organization lookup against the Factory CLI API
- Access-token validity probing (organization lookup succeeds => token valid)

Nothing here touches the credential store; CredentialRefreshService calls
exchange_refresh_token() with no lock held.

SECURITY:
- Tokens are sent only to the fixed endpoints below
- Tokens never appear in log records or error messages
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from llm_gateway.credentials.error_classifier import ProviderError, classify_upstream_error
from llm_gateway.platform.errors import AppError

logger = logging.getLogger(__name__)

# WorkOS OAuth
WORKOS_CLIENT_ID = "client_01HNM792M5G5G1A2THWPXKFMXB"
WORKOS_TOKEN_URL = "https://api.workos.com/user_management/authenticate"

# Factory API
FACTORY_CLI_ORG_URL = "https://app.factory.ai/api/cli/org"
FACTORY_USER_AGENT = "factory-cli/0.32.1"
FACTORY_CLIENT_HEADER = "x-factory-client"
FACTORY_CLIENT_VALUE = "cli"

TOKEN_EXCHANGE_TIMEOUT = httpx.Timeout(60.0, connect=30.0)
ORG_LOOKUP_TIMEOUT = httpx.Timeout(30.0, connect=15.0)

# Used when the exchange response carries no expiry information
DEFAULT_TOKEN_LIFETIME = timedelta(hours=8)

MAX_ERROR_BODY_LENGTH = 500

# datetime.fromisoformat accepts at most microsecond precision before 3.11
_FRACTION_PATTERN = re.compile(r"(\.\d{6})\d+")


class TokenExchangeError(AppError):
    """
    The OAuth provider failed or rejected a request.

    status_code is None for transport failures and unusable response bodies.
    """

    code = "UPSTREAM_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: str = "",
    ):
        body = (body or "")[:MAX_ERROR_BODY_LENGTH]
        super().__init__(message, details={"status_code": status_code})
        self.status_code = status_code
        self.body = body

    @property
    def provider_error(self) -> Optional[ProviderError]:
        if self.status_code is None:
            return None
        return classify_upstream_error(self.status_code, self.body)

    @property
    def retryable(self) -> bool:
        classified = self.provider_error
        return classified.retryable if classified else True


class _WorkOSUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class TokenExchangeResponse(BaseModel):
    """JSON body returned by the WorkOS authenticate endpoint."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[str] = None
    expires_in: Optional[int] = None
    token_type: Optional[str] = None
    organization_id: Optional[str] = None
    user: Optional[_WorkOSUser] = None
    authentication_method: Optional[str] = None


class _OrgResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    workos_org_ids: Optional[list[str]] = Field(default=None, alias="workosOrgIds")


@dataclass
class TokenExchangeResult:
    """Parsed outcome of a refresh-token exchange."""
    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[datetime] = None
    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    owner_email: Optional[str] = None


def parse_rfc3339(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC3339 timestamp; None if absent or unparseable."""
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_PATTERN.sub(r"\1", text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def compute_expiry(
    expires_at: Optional[str],
    expires_in: Optional[int],
    now: Optional[datetime] = None,
) -> datetime:
    """
    Resolve the new access-token expiry.

    Precedence: parseable absolute expires_at, then now + expires_in,
    then now + DEFAULT_TOKEN_LIFETIME.
    """
    now = now or datetime.now(timezone.utc)

    absolute = parse_rfc3339(expires_at)
    if absolute is not None:
        return absolute
    if expires_at:
        logger.warning(
            "Unparseable expires_at in token response, falling back",
            extra={"has_expires_in": expires_in is not None}
        )
    if expires_in is not None:
        try:
            return now + timedelta(seconds=expires_in)
        except OverflowError:
            logger.warning(
                "Out-of-range expires_in in token response, using default lifetime",
                extra={"expires_in": expires_in}
            )
    return now + DEFAULT_TOKEN_LIFETIME


async def exchange_refresh_token(
    refresh_token: str,
    organization_id: Optional[str] = None,
) -> TokenExchangeResult:
    """
    Exchange a refresh token for a new access token.

    Args:
        refresh_token: The stored refresh token
        organization_id: Organization to scope the new token to, if known

    Returns:
        TokenExchangeResult with the new tokens and identity fields

    Raises:
        TokenExchangeError: On transport failure, non-2xx status or unusable body
    """
    form = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": WORKOS_CLIENT_ID,
    }
    if organization_id:
        form["organization_id"] = organization_id

    logger.debug(
        "Exchanging refresh token",
        extra={"has_organization_id": bool(organization_id)}
    )

    try:
        async with httpx.AsyncClient(timeout=TOKEN_EXCHANGE_TIMEOUT) as client:
            response = await client.post(
                WORKOS_TOKEN_URL,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
    except httpx.HTTPError as e:
        logger.warning(
            "Token exchange transport error",
            extra={"error_type": type(e).__name__}
        )
        raise TokenExchangeError(f"Token exchange request failed: {type(e).__name__}") from e

    if not response.is_success:
        body = response.text
        logger.warning(
            "Token exchange rejected",
            extra={"status_code": response.status_code}
        )
        raise TokenExchangeError(
            f"Token refresh failed: {response.status_code} - {body[:MAX_ERROR_BODY_LENGTH]}",
            status_code=response.status_code,
            body=body,
        )

    try:
        payload = TokenExchangeResponse.model_validate(response.json())
    except (ValueError, PydanticValidationError) as e:
        raise TokenExchangeError(
            "Token exchange returned an unusable response body",
            status_code=None,
        ) from e

    user = payload.user
    result = TokenExchangeResult(
        access_token=payload.access_token,
        refresh_token=payload.refresh_token or None,
        expires_at=compute_expiry(payload.expires_at, payload.expires_in),
        organization_id=payload.organization_id,
        user_id=user.id if user else None,
        owner_email=user.email if user else None,
    )

    logger.info(
        "Token exchange succeeded",
        extra={
            "rotated_refresh_token": result.refresh_token is not None,
            "expires_at": result.expires_at.isoformat() if result.expires_at else None,
        }
    )
    return result


async def fetch_organization_ids(access_token: str) -> list[str]:
    """
    Fetch the WorkOS organization ids visible to an access token.

    Raises:
        TokenExchangeError: On transport failure, non-2xx status or unusable body
    """
    headers = {
        "Authorization": f"Bearer {access_token}",
        "Content-Type": "application/json",
        "Accept": "application/json",
        FACTORY_CLIENT_HEADER: FACTORY_CLIENT_VALUE,
        "User-Agent": FACTORY_USER_AGENT,
    }

    try:
        async with httpx.AsyncClient(timeout=ORG_LOOKUP_TIMEOUT) as client:
            response = await client.get(FACTORY_CLI_ORG_URL, headers=headers)
    except httpx.HTTPError as e:
        raise TokenExchangeError(f"Organization lookup failed: {type(e).__name__}") from e

    if not response.is_success:
        body = response.text
        raise TokenExchangeError(
            f"Organization lookup failed: {response.status_code} - {body[:MAX_ERROR_BODY_LENGTH]}",
            status_code=response.status_code,
            body=body,
        )

    try:
        payload = _OrgResponse.model_validate(response.json())
    except (ValueError, PydanticValidationError) as e:
        raise TokenExchangeError("Organization lookup returned an unusable body") from e

    return payload.workos_org_ids or []


async def validate_access_token(access_token: str) -> bool:
    """Probe an access token. Any lookup failure means invalid."""
    try:
        await fetch_organization_ids(access_token)
    except TokenExchangeError as e:
        logger.info(
            "Access token probe failed",
            extra={"status_code": e.status_code}
        )
        return False
    return True
