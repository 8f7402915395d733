"""Centralized error factory for the FamilySearch SDK.

Provides consistent error creation from raw responses and transport
exceptions across all SDK components.
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any

import httpx

from ..errors import (
    AuthError,
    FamilySearchError,
    ServerError,
    ThrottledExhausted,
    TransportFailure,
)

if TYPE_CHECKING:
    from ..models import RawResponse, RequestDescriptor


def parse_retry_after(value: str | None) -> float | None:
    """Parse a ``Retry-After`` header given in seconds or as an HTTP date.

    Returns:
        Delay in seconds, or None when absent or unparseable.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max((when - datetime.now(UTC)).total_seconds(), 0.0)


def extract_error_details(response: RawResponse) -> dict[str, Any]:
    """Pull a message out of a FamilySearch or OAuth 2 error body."""
    details: dict[str, Any] = {}
    if response.content:
        try:
            body = json.loads(response.content)
        except ValueError:
            body = None
        if isinstance(body, dict):
            errors = body.get("errors")
            if isinstance(errors, list) and errors:
                first = errors[0] if isinstance(errors[0], dict) else {}
                details["error"] = first.get("label") or first.get("code")
                details["error_description"] = first.get("message")
            elif "error" in body:
                details["error"] = body.get("error")
                details["error_description"] = body.get("error_description")
    warning = response.header("Warning")
    if warning:
        details["warning"] = warning
    return {k: v for k, v in details.items() if v is not None}


class ErrorFactory:
    """Centralized error creation with consistent structure.

    All errors created through this factory include:
    - Standardized error codes
    - A correlation ID (the server's when it sent one)
    - The originating request and the raw response
    """

    @staticmethod
    def generate_correlation_id() -> str:
        """Generate a unique correlation ID."""
        return str(uuid.uuid4())

    @staticmethod
    def from_response(
        response: RawResponse,
        *,
        correlation_id: str | None = None,
    ) -> FamilySearchError:
        """Create SDK error from a non-success response.

        Args:
            response: Raw response.
            correlation_id: Optional correlation ID for tracing.

        Returns:
            Appropriate FamilySearchError subclass.
        """
        status = response.status_code
        correlation_id = (
            correlation_id
            or response.header("X-Request-Id")
            or ErrorFactory.generate_correlation_id()
        )
        details = extract_error_details(response)
        description = details.get("error_description")

        if status == 401:
            return AuthError(
                description or "Access token rejected",
                correlation_id=correlation_id,
                details=details,
                request=response.request,
                response=response,
            )

        if status == 429:
            retry_after = parse_retry_after(response.header("Retry-After"))
            return ThrottledExhausted(
                description or "Rate limit exceeded",
                retry_after=retry_after,
                correlation_id=correlation_id,
                request=response.request,
                response=response,
            )

        return ServerError(
            description or f"Request failed with status {status}",
            status_code=status,
            correlation_id=correlation_id,
            details=details,
            request=response.request,
            response=response,
        )

    @staticmethod
    def from_exception(
        exc: Exception,
        *,
        request: RequestDescriptor | None = None,
        correlation_id: str | None = None,
    ) -> FamilySearchError:
        """Create SDK error from an exception raised while sending.

        Args:
            exc: Original exception.
            request: The request being sent.
            correlation_id: Optional correlation ID for tracing.

        Returns:
            Appropriate FamilySearchError subclass.
        """
        correlation_id = correlation_id or ErrorFactory.generate_correlation_id()

        if isinstance(exc, FamilySearchError):
            # Already an SDK error, just ensure correlation ID and request
            if exc.correlation_id is None:
                exc.correlation_id = correlation_id
            if exc.request is None:
                exc.request = request
            return exc

        if isinstance(exc, httpx.TimeoutException):
            return TransportFailure(
                f"Request timed out: {exc}",
                correlation_id=correlation_id,
                cause=exc,
                timed_out=True,
                request=request,
            )

        if isinstance(exc, httpx.HTTPError):
            return TransportFailure(
                f"HTTP error: {exc}",
                correlation_id=correlation_id,
                cause=exc,
                request=request,
            )

        return TransportFailure(
            f"Unexpected error: {exc}",
            correlation_id=correlation_id,
            cause=exc,
            request=request,
        )
