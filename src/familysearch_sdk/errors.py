"""Error classes for the FamilySearch SDK.

Implements a structured error hierarchy with error codes and correlation IDs.
Every error raised after a request was attempted keeps the originating
request and, when one arrived, the raw response, so callers can build their
own diagnostics.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import RawResponse, RequestDescriptor


class ErrorCode(StrEnum):
    """Standardized error codes for the FamilySearch SDK."""

    # Authentication errors (1xxx)
    AUTH_REQUIRED = "AUTH_1001"
    AUTH_FAILED = "AUTH_1002"
    AUTH_CANCELLED = "AUTH_1003"

    # Validation errors (2xxx)
    VALIDATION_ERROR = "VAL_2001"
    INVALID_CONFIG = "VAL_2002"
    OBJECT_DELETED = "VAL_2003"

    # Transport errors (3xxx)
    TRANSPORT_FAILURE = "NET_3001"
    TIMEOUT_ERROR = "NET_3002"

    # Rate limiting (4xxx)
    THROTTLED_EXHAUSTED = "RATE_4001"

    # Server errors (5xxx)
    SERVER_ERROR = "SRV_5001"
    MALFORMED_RESPONSE = "SRV_5002"


class FamilySearchError(Exception):
    """Base error for the FamilySearch SDK with structured error information."""

    def __init__(
        self,
        message: str,
        code: ErrorCode | str,
        *,
        status_code: int | None = None,
        correlation_id: str | None = None,
        details: dict[str, Any] | None = None,
        request: RequestDescriptor | None = None,
        response: RawResponse | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.status_code = status_code
        self.correlation_id = correlation_id
        self.details = details or {}
        self.request = request
        self.response = response

    @property
    def headers(self) -> dict[str, str]:
        """Response headers, empty when no response arrived."""
        return dict(self.response.headers) if self.response is not None else {}

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            "error": self.message,
            "code": self.code,
            "status_code": self.status_code,
            "correlation_id": self.correlation_id,
            "details": self.details,
            "method": self.request.method if self.request is not None else None,
            "url": self.request.url if self.request is not None else None,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class AuthRequired(FamilySearchError):
    """No access token is held but the call requires one."""

    def __init__(
        self,
        message: str = "An access token is required",
        *,
        request: RequestDescriptor | None = None,
    ) -> None:
        super().__init__(
            message,
            ErrorCode.AUTH_REQUIRED,
            status_code=401,
            request=request,
        )


class AuthError(FamilySearchError):
    """Authentication failed: bad credentials, rejected token or a failed flow."""

    def __init__(
        self,
        message: str = "Authentication failed",
        *,
        status_code: int | None = 401,
        correlation_id: str | None = None,
        details: dict[str, Any] | None = None,
        request: RequestDescriptor | None = None,
        response: RawResponse | None = None,
    ) -> None:
        super().__init__(
            message,
            ErrorCode.AUTH_FAILED,
            status_code=status_code,
            correlation_id=correlation_id,
            details=details,
            request=request,
            response=response,
        )


class AuthCancelled(FamilySearchError):
    """The interactive sign-in flow was abandoned by the user."""

    def __init__(
        self,
        message: str = "Sign-in was cancelled",
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.AUTH_CANCELLED, details=details)


class TransportFailure(FamilySearchError):
    """The request could not be transmitted (connection reset, DNS, timeout...)."""

    def __init__(
        self,
        message: str = "Network request failed",
        *,
        correlation_id: str | None = None,
        cause: Exception | None = None,
        timed_out: bool = False,
        request: RequestDescriptor | None = None,
    ) -> None:
        super().__init__(
            message,
            ErrorCode.TIMEOUT_ERROR if timed_out else ErrorCode.TRANSPORT_FAILURE,
            correlation_id=correlation_id,
            details={"cause": str(cause)} if cause else None,
            request=request,
        )
        self.timed_out = timed_out
        self.__cause__ = cause


class ThrottledExhausted(FamilySearchError):
    """Throttling persisted past the retry ceiling."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: float | None = None,
        correlation_id: str | None = None,
        request: RequestDescriptor | None = None,
        response: RawResponse | None = None,
    ) -> None:
        super().__init__(
            message,
            ErrorCode.THROTTLED_EXHAUSTED,
            status_code=429,
            correlation_id=correlation_id,
            details={"retry_after": retry_after} if retry_after else None,
            request=request,
            response=response,
        )
        self.retry_after = retry_after


class ServerError(FamilySearchError):
    """The server answered with a non-success status that was not retried away."""

    def __init__(
        self,
        message: str = "Server error",
        *,
        status_code: int = 500,
        correlation_id: str | None = None,
        details: dict[str, Any] | None = None,
        request: RequestDescriptor | None = None,
        response: RawResponse | None = None,
    ) -> None:
        super().__init__(
            message,
            ErrorCode.SERVER_ERROR,
            status_code=status_code,
            correlation_id=correlation_id,
            details=details,
            request=request,
            response=response,
        )


class MalformedResponse(FamilySearchError):
    """Response body could not be parsed."""

    def __init__(
        self,
        message: str = "Response body is not valid JSON",
        *,
        body: str = "",
        request: RequestDescriptor | None = None,
        response: RawResponse | None = None,
    ) -> None:
        super().__init__(
            message,
            ErrorCode.MALFORMED_RESPONSE,
            status_code=response.status_code if response is not None else None,
            details={"body": body},
            request=request,
            response=response,
        )
        self.body = body


class ObjectDeleted(FamilySearchError):
    """Operation attempted on an object that has been deleted."""

    def __init__(self, message: str = "Object has been deleted") -> None:
        super().__init__(message, ErrorCode.OBJECT_DELETED)


class ValidationError(FamilySearchError):
    """An object or input invariant was violated."""

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details,
        )


class InvalidConfigError(FamilySearchError):
    """Invalid SDK configuration."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
    ) -> None:
        super().__init__(
            message,
            ErrorCode.INVALID_CONFIG,
            details={"field": field} if field else None,
        )
