"""Configuration for the FamilySearch SDK.

Uses Pydantic v2 for validation with sensible defaults. The environment
selects the API host and the identity (OAuth 2) endpoints.
"""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Annotated, Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Environment(StrEnum):
    """FamilySearch deployment environments."""

    PRODUCTION = "production"
    BETA = "beta"
    INTEGRATION = "integration"


_API_HOSTS = {
    Environment.PRODUCTION: "https://api.familysearch.org",
    Environment.BETA: "https://apibeta.familysearch.org",
    Environment.INTEGRATION: "https://api-integ.familysearch.org",
}

_IDENT_HOSTS = {
    Environment.PRODUCTION: "https://ident.familysearch.org",
    Environment.BETA: "https://identbeta.familysearch.org",
    Environment.INTEGRATION: "https://identint.familysearch.org",
}

_OAUTH_PATH = "/cis-web/oauth2/v3"


class RetryConfig(BaseModel):
    """Retry configuration. Fixed delay by default, exponential on request.

    The delays themselves are computed by the backoff strategies in
    :mod:`familysearch_sdk.core.retry`.
    """

    model_config = ConfigDict(frozen=True)

    max_retries: Annotated[int, Field(ge=0, le=20)] = 5
    retry_delay: Annotated[float, Field(ge=0, le=60)] = 0.5
    backoff: Literal["fixed", "exponential"] = "fixed"
    max_delay: Annotated[float, Field(gt=0, le=300)] = 30.0
    exponential_base: Annotated[float, Field(ge=1.5, le=3.0)] = 2.0
    jitter: Annotated[float, Field(ge=0, le=1.0)] = 0.1


class TokenConfig(BaseModel):
    """Access token expiry rules."""

    model_config = ConfigDict(frozen=True)

    auto_expire: bool = True
    max_lifetime: Annotated[int, Field(gt=0)] = 86340  # 24 hours less a minute
    idle_timeout: Annotated[int, Field(gt=0)] = 3540  # 1 hour less a minute
    expiry_buffer: Annotated[int, Field(ge=0)] = 60


class TokenCookieConfig(BaseModel):
    """Token persistence across process restarts."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    path: Path = Field(default_factory=lambda: Path.home() / ".familysearch" / "token.json")
    max_age: Annotated[int, Field(gt=0)] = 86340


class TelemetryConfig(BaseModel):
    """Logging and tracing configuration."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    service_name: str = "familysearch-sdk"
    log_level: str = "INFO"


class FamilySearchConfig(BaseModel):
    """Main configuration for the FamilySearch SDK."""

    model_config = ConfigDict(frozen=True, validate_default=True)

    # Required
    app_key: str = Field(..., min_length=1)

    environment: Environment = Environment.INTEGRATION
    auth_callback: str | None = None
    accept: str = "application/x-fs-v1+json"

    # HTTP settings
    timeout: Annotated[float, Field(gt=0, le=300)] = 30.0
    connect_timeout: Annotated[float, Field(gt=0, le=60)] = 10.0

    # Sub-configurations
    retry: RetryConfig = Field(default_factory=RetryConfig)
    token: TokenConfig = Field(default_factory=TokenConfig)
    token_cookie: TokenCookieConfig = Field(default_factory=TokenCookieConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    @field_validator("environment", mode="before")
    @classmethod
    def normalize_environment(cls, v: Any) -> Any:
        """Accept ``sandbox`` as the historical name of integration."""
        if isinstance(v, str) and v.lower() == "sandbox":
            return Environment.INTEGRATION
        return v

    @field_validator("app_key")
    @classmethod
    def strip_app_key(cls, v: str) -> str:
        """Reject whitespace-only app keys."""
        if not v.strip():
            msg = "app_key must not be blank"
            raise ValueError(msg)
        return v.strip()

    @property
    def api_base_url(self) -> str:
        """Base URL for REST calls, without trailing slash."""
        return _API_HOSTS[self.environment]

    @property
    def authorization_endpoint(self) -> str:
        """Interactive sign-in page."""
        return f"{_IDENT_HOSTS[self.environment]}{_OAUTH_PATH}/authorization"

    @property
    def token_endpoint(self) -> str:
        """OAuth 2 token endpoint (grant exchange and logout)."""
        return f"{_IDENT_HOSTS[self.environment]}{_OAUTH_PATH}/token"

    def with_overrides(self, **kwargs: Any) -> Self:
        """Create new config with overridden values."""
        data = self.model_dump()
        data.update(kwargs)
        return self.__class__(**data)

    @classmethod
    def from_env(cls, prefix: str = "FAMILYSEARCH_") -> Self:
        """Create config from environment variables."""
        import os

        def get_env(key: str, default: Any = None) -> Any:
            return os.environ.get(f"{prefix}{key}", default)

        app_key = get_env("APP_KEY")
        if not app_key:
            msg = f"{prefix}APP_KEY environment variable is required"
            raise ValueError(msg)

        return cls(
            app_key=app_key,
            environment=get_env("ENVIRONMENT", Environment.INTEGRATION.value),
            auth_callback=get_env("AUTH_CALLBACK"),
            timeout=float(get_env("TIMEOUT", "30.0")),
            retry=RetryConfig(
                max_retries=int(get_env("MAX_RETRIES", "5")),
                retry_delay=float(get_env("RETRY_DELAY", "0.5")),
            ),
        )
