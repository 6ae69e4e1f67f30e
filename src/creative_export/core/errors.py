"""
Error taxonomy for the export pipeline.

Every error carries a stable machine-readable ``code`` so API handlers and the
job orchestrator can branch on it without parsing messages:
- DataError: a record or relationship is missing
- MappingError: template/expression failure, missing token, wrong result shape
- SchemaError / SchemaValidationError: schema unusable, or payload non-conformant
- DispatchError / AuthError: network, timeout, or credential failures
"""

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any


class IntegrationError(Exception):
    """Base exception for all pipeline errors."""

    default_code = "integration/error"

    def __init__(self, message: str, code: str | None = None, details: Mapping[str, Any] | None = None):
        super().__init__(message)
        self._message = message
        self._code = code or self.default_code
        self._details = MappingProxyType(dict(details or {}))

    @property
    def message(self) -> str:
        return self._message

    @property
    def code(self) -> str:
        return self._code

    @property
    def details(self) -> Mapping[str, Any]:
        return self._details

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses and job status documents."""
        return {
            "error": self._message,
            "code": self._code,
            "details": dict(self._details),
        }


class DataError(IntegrationError):
    """Raised when a record the pipeline depends on cannot be found."""

    default_code = "data/not_found"


class MappingError(IntegrationError):
    """Raised when a mapping engine cannot produce a payload."""

    default_code = "mapping/error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: Mapping[str, Any] | None = None,
        line: int | None = None,
        column: int | None = None,
    ):
        merged = dict(details or {})
        if line is not None:
            merged["line"] = line
        if column is not None:
            merged["column"] = column
        super().__init__(message, code, merged)
        self._line = line
        self._column = column

    @property
    def line(self) -> int | None:
        return self._line

    @property
    def column(self) -> int | None:
        return self._column


class TransformSpecError(MappingError):
    """Raised when a transform preview spec is malformed."""

    default_code = "transform/invalid_spec"


class SchemaError(IntegrationError):
    """Raised when a schema reference cannot be resolved or compiled."""

    default_code = "schema/invalid"


class SchemaValidationError(SchemaError):
    """Raised when a payload does not conform to its schema.

    Carries every violation, not just the first one.
    """

    default_code = "schema/validation_failed"

    def __init__(self, message: str, errors: list[dict[str, Any]], details: Mapping[str, Any] | None = None):
        merged = dict(details or {})
        merged["errors"] = [dict(error) for error in errors]
        super().__init__(message, self.default_code, merged)
        self._errors = tuple(MappingProxyType(dict(error)) for error in errors)

    @property
    def errors(self) -> tuple[Mapping[str, Any], ...]:
        return self._errors


class DispatchError(IntegrationError):
    """Raised when a request could not be delivered to a partner."""

    default_code = "dispatch/network_error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: Mapping[str, Any] | None = None,
        integration_id: str | None = None,
        attempts: int | None = None,
        cause: BaseException | None = None,
    ):
        merged = dict(details or {})
        if integration_id is not None:
            merged["integrationId"] = integration_id
        if attempts is not None:
            merged["attempts"] = attempts
        super().__init__(message, code, merged)
        self._integration_id = integration_id
        self._attempts = attempts
        self._cause = cause

    @property
    def integration_id(self) -> str | None:
        return self._integration_id

    @property
    def attempts(self) -> int | None:
        return self._attempts

    @property
    def cause(self) -> BaseException | None:
        return self._cause


class OAuthTokenError(DispatchError):
    """Raised when the token endpoint does not issue an access token.

    ``retryable`` is set for network failures and 5xx/429 answers, which a
    later attempt may get past.
    """

    default_code = "dispatch/oauth_token_error"

    def __init__(
        self,
        message: str,
        details: Mapping[str, Any] | None = None,
        integration_id: str | None = None,
        attempts: int | None = None,
        cause: BaseException | None = None,
        retryable: bool = False,
    ):
        super().__init__(message, None, details, integration_id, attempts, cause)
        self._retryable = retryable

    @property
    def retryable(self) -> bool:
        return self._retryable


class AuthError(DispatchError):
    """Raised when credentials for an integration are missing or misconfigured."""

    default_code = "auth/invalid_config"


def error_status_code(error: IntegrationError) -> int:
    """Map an error code to the HTTP status used by the admin API."""
    code = error.code
    if code in ("mapping/review_not_found", "data/job_not_found", "data/integration_not_found"):
        return 404
    if code.startswith("transform/"):
        return 400
    if code.startswith(("mapping/", "schema/", "data/")):
        return 422
    if code.startswith(("dispatch/", "auth/")):
        return 502
    return 400
