"""Pydantic models for the FamilySearch SDK.

Frozen models for the wire-level types: access tokens, request descriptors
and raw responses.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Self
from urllib.parse import urlencode

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator, model_validator

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


class TokenSource(StrEnum):
    """How an access token was obtained."""

    PASSWORD = "password"
    AUTHORIZATION_CODE = "authorization_code"
    IMPLICIT = "implicit"
    UNAUTHENTICATED = "unauthenticated"
    PROVIDED = "provided"
    STORED = "stored"


class TokenResponse(BaseModel):
    """OAuth 2 token response from the identity service."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str = Field(..., min_length=1)
    token_type: str = Field(default="Bearer")
    expires_in: PositiveInt | None = None


class AccessToken(BaseModel):
    """The access token held by a client session."""

    model_config = ConfigDict(frozen=True)

    value: str = Field(..., min_length=1)
    expires_at: datetime | None = None
    source: TokenSource = TokenSource.PROVIDED
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def issue(
        cls,
        value: str,
        *,
        source: TokenSource,
        expires_in: int | None = None,
        buffer_seconds: int = 0,
        max_lifetime: int | None = None,
    ) -> Self:
        """Create a token, deriving ``expires_at`` from what is known."""
        now = datetime.now(UTC)
        expires_at: datetime | None = None
        if expires_in is not None:
            expires_at = now + timedelta(seconds=max(expires_in - buffer_seconds, 0))
        elif max_lifetime is not None:
            expires_at = now + timedelta(seconds=max_lifetime)
        return cls(value=value, expires_at=expires_at, source=source, created_at=now)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if token is expired. Tokens without expiry never expire."""
        if self.expires_at is None:
            return False
        return (now or datetime.now(UTC)) >= self.expires_at

    def __repr__(self) -> str:
        return f"AccessToken(source={self.source.value!r}, expires_at={self.expires_at!r})"


class RequestDescriptor(BaseModel):
    """A single HTTP request, immutable once built."""

    model_config = ConfigDict(frozen=True)

    method: str
    url: str
    headers: Mapping[str, str] = Field(default_factory=lambda: MappingProxyType({}))
    body: bytes | None = None
    idempotent: bool = False
    requires_auth: bool = True

    @model_validator(mode="before")
    @classmethod
    def derive_idempotency(cls, data: Any) -> Any:
        """Upper-case the method and derive ``idempotent`` when not given."""
        if isinstance(data, dict) and "method" in data:
            data = dict(data)
            data["method"] = str(data["method"]).upper()
            if data.get("idempotent") is None:
                data["idempotent"] = data["method"] in IDEMPOTENT_METHODS
        return data

    @field_validator("headers", mode="after")
    @classmethod
    def freeze_headers(cls, v: Mapping[str, str]) -> Mapping[str, str]:
        """Expose headers through a read-only view of a private copy."""
        return MappingProxyType(dict(v))

    @classmethod
    def build(
        cls,
        method: str,
        url: str,
        *,
        json_body: Any = None,
        form: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        content_type: str | None = None,
        requires_auth: bool = True,
    ) -> Self:
        """Build a descriptor, encoding a JSON or form body.

        Args:
            method: HTTP method.
            url: Absolute target URL.
            json_body: Structure to send as JSON.
            form: Fields to send form-encoded.
            headers: Extra request headers.
            content_type: Content type for a JSON body.
            requires_auth: Whether an access token must be attached.

        Returns:
            The request descriptor.
        """
        merged = dict(headers or {})
        body: bytes | None = None
        if form is not None:
            body = urlencode(dict(form)).encode("utf-8")
            merged.setdefault("Content-Type", "application/x-www-form-urlencoded")
        elif json_body is not None:
            body = json.dumps(json_body).encode("utf-8")
            merged.setdefault("Content-Type", content_type or "application/json")
        return cls(
            method=method,
            url=url,
            headers=merged,
            body=body,
            requires_auth=requires_auth,
        )

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    def with_headers(self, headers: Mapping[str, str], *, override: bool = True) -> Self:
        """Return a copy with extra headers.

        With ``override=False`` headers already present (in any case) are kept.
        """
        merged = dict(self.headers)
        present = {key.lower(): key for key in merged}
        for key, value in headers.items():
            existing = present.get(key.lower())
            if existing is not None:
                if not override:
                    continue
                del merged[existing]
            merged[key] = value
        return self.model_copy(update={"headers": MappingProxyType(merged)})


class RawResponse(BaseModel):
    """Transport-level response: status, headers, body and originating request."""

    model_config = ConfigDict(frozen=True)

    status_code: int
    headers: Mapping[str, str] = Field(default_factory=lambda: MappingProxyType({}))
    content: bytes = b""
    request: RequestDescriptor

    @field_validator("headers", mode="after")
    @classmethod
    def lower_header_names(cls, v: Mapping[str, str]) -> Mapping[str, str]:
        """Store header names lower-cased, read-only."""
        return MappingProxyType({key.lower(): value for key, value in v.items()})

    @property
    def ok(self) -> bool:
        """2xx and 3xx count as success."""
        return 200 <= self.status_code < 400

    @property
    def text(self) -> str:
        """Body decoded as UTF-8."""
        return self.content.decode("utf-8", errors="replace")

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower())
