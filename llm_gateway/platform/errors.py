"""
Consistent error shapes for the LLM gateway core.

Every failure raised by the credential core derives from AppError so that
callers can catch one base class and still read a machine code, a human
message and a details mapping.

Error codes:
- VALIDATION_ERROR: caller supplied bad input, nothing was mutated
- NOT_FOUND: unknown credential id
- CREDENTIAL_UNAVAILABLE: no usable credential or key for the request
- ENCRYPTION_ERROR: at-rest secret could not be encrypted or decrypted
- UPSTREAM_ERROR: the OAuth provider rejected or failed a request
- CONFIGURATION_ERROR: process configuration is unsafe or incomplete
"""

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


class AppError(Exception):
    """
    Base application error with consistent error shape.

    All custom errors should inherit from this class.
    """

    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert to a serializable error shape."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationError(AppError):
    """Rejected input. Details name the offending field."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[dict[str, Any]] = None):
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message, details=details)
        self.field = field


class NotFoundError(AppError):
    """Resource not found."""

    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(message, details={"resource": resource, "id": identifier})
        self.identifier = identifier


class ConfigurationError(AppError):
    """Process configuration is missing or unsafe."""

    code = "CONFIGURATION_ERROR"
