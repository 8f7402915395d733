"""Access token lifecycle for the FamilySearch SDK.

Holds at most one token per client session, builds the OAuth 2 grant
requests, expires tokens by lifetime and inactivity, and mirrors the token
into an optional :class:`~familysearch_sdk.token_store.TokenStore`.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydantic import ValidationError as PydanticValidationError

from ..errors import AuthError, ServerError
from ..models import AccessToken, RequestDescriptor, TokenResponse, TokenSource
from ..telemetry import get_logger, trace_operation
from .auth_builder import AuthorizationBuilder

if TYPE_CHECKING:
    from ..config import FamilySearchConfig
    from ..mapping import MappedResponse
    from ..token_store import TokenStore

SendFn = Callable[[RequestDescriptor], Awaitable["MappedResponse"]]


@dataclass(frozen=True)
class PasswordGrant:
    """Resource owner password credentials."""

    username: str
    password: str

    def __repr__(self) -> str:
        return f"PasswordGrant(username={self.username!r})"


@dataclass(frozen=True)
class AuthorizationCodeGrant:
    """Code returned by the interactive sign-in page."""

    code: str
    redirect_uri: str | None = None


@dataclass(frozen=True)
class UnauthenticatedGrant:
    """Read-only session for an anonymous end user."""

    ip_address: str


@dataclass(frozen=True)
class InteractiveCallback:
    """Redirect URI the browser returned to after interactive sign-in."""

    callback_url: str
    expected_state: str | None = None


Grant = PasswordGrant | AuthorizationCodeGrant | UnauthenticatedGrant | InteractiveCallback


class TokenManager:
    """Owns the session's access token.

    Reads and writes of the token are serialized by a lock, so a token found
    expired is cleared atomically. Callers must still tolerate the token
    changing between :meth:`current_token` and sending a request; a request
    sent with a just-invalidated token simply fails authentication.
    """

    def __init__(
        self,
        config: FamilySearchConfig,
        *,
        store: TokenStore | None = None,
    ) -> None:
        """Initialize token manager.

        Args:
            config: SDK configuration.
            store: Optional persistence for the token.
        """
        self.config = config
        self._store = store
        self._auth = AuthorizationBuilder(config)
        self._lock = threading.Lock()
        self._token: AccessToken | None = None
        self._last_used: float = 0.0
        self._logger = get_logger()

        if store is not None:
            loaded = store.load()
            if loaded is not None:
                self._token = loaded
                self._last_used = time.monotonic()
                self._logger.debug("Loaded stored access token", source=loaded.source.value)

    @property
    def store(self) -> TokenStore | None:
        """Token persistence, if configured."""
        return self._store

    def current_token(self) -> AccessToken | None:
        """Get the active token, clearing it if it has expired.

        Returns:
            The token, or None when absent or expired.
        """
        with self._lock:
            if self._token is None:
                return None
            if self._token.is_expired() or self._idle_expired():
                self._logger.info("Access token expired", source=self._token.source.value)
                self._clear_locked()
                return None
            return self._token

    def has_token(self) -> bool:
        """Check if a usable token is held."""
        return self.current_token() is not None

    def set_token(
        self,
        value: str,
        *,
        expires_in: int | None = None,
        source: TokenSource = TokenSource.PROVIDED,
    ) -> AccessToken:
        """Adopt a token obtained elsewhere.

        Args:
            value: Token value.
            expires_in: Lifetime in seconds, if known.
            source: How the token was obtained.

        Returns:
            The stored token.
        """
        token_config = self.config.token
        token = AccessToken.issue(
            value,
            source=source,
            expires_in=expires_in,
            buffer_seconds=token_config.expiry_buffer if expires_in else 0,
            max_lifetime=token_config.max_lifetime if token_config.auto_expire else None,
        )
        with self._lock:
            self._token = token
            self._last_used = time.monotonic()
            if self._store is not None:
                self._store.save(token)
        self._logger.info("Access token set", source=source.value)
        return token

    def invalidate(self) -> None:
        """Clear the token and its stored copy. Idempotent."""
        with self._lock:
            had_token = self._token is not None
            self._clear_locked()
        if had_token:
            self._logger.info("Access token invalidated")

    def touch(self) -> None:
        """Record activity for the inactivity timeout."""
        with self._lock:
            if self._token is not None:
                self._last_used = time.monotonic()

    def build_grant_request(self, grant: PasswordGrant | AuthorizationCodeGrant | UnauthenticatedGrant) -> RequestDescriptor:
        """Build the token endpoint request for a grant.

        Args:
            grant: Grant to exchange.

        Returns:
            Form-encoded POST to the token endpoint, sent without a token.
        """
        form: dict[str, str] = {"client_id": self.config.app_key}
        if isinstance(grant, PasswordGrant):
            form.update(grant_type="password", username=grant.username, password=grant.password)
        elif isinstance(grant, AuthorizationCodeGrant):
            redirect_uri = grant.redirect_uri or self.config.auth_callback
            form.update(grant_type="authorization_code", code=grant.code)
            if redirect_uri:
                form["redirect_uri"] = redirect_uri
        else:
            form.update(grant_type="unauthenticated_session", ip_address=grant.ip_address)

        return RequestDescriptor.build(
            "POST",
            self.config.token_endpoint,
            form=form,
            headers={"Accept": "application/json"},
            requires_auth=False,
        )

    async def acquire(self, grant: Grant, send: SendFn) -> AccessToken:
        """Run an authentication handshake and keep the resulting token.

        Args:
            grant: Credentials or the interactive sign-in redirect.
            send: Coroutine function performing a request (the executor).

        Returns:
            The new token.

        Raises:
            AuthError: Credentials or code rejected.
            AuthCancelled: The interactive flow was abandoned.
        """
        if isinstance(grant, InteractiveCallback):
            result = self._auth.parse_callback(grant.callback_url, grant.expected_state)
            if result.access_token is not None:
                return self.set_token(
                    result.access_token,
                    expires_in=result.expires_in,
                    source=TokenSource.IMPLICIT,
                )
            grant = AuthorizationCodeGrant(code=result.code or "")

        source = {
            PasswordGrant: TokenSource.PASSWORD,
            AuthorizationCodeGrant: TokenSource.AUTHORIZATION_CODE,
            UnauthenticatedGrant: TokenSource.UNAUTHENTICATED,
        }[type(grant)]

        with trace_operation("acquire_token", attributes={"grant_type": source.value}):
            request = self.build_grant_request(grant)
            try:
                response = await send(request)
            except ServerError as e:
                if e.status_code in (400, 403):
                    raise AuthError(
                        e.message,
                        status_code=e.status_code,
                        correlation_id=e.correlation_id,
                        details=e.details,
                        request=e.request,
                        response=e.response,
                    ) from e
                raise

            try:
                token_response = TokenResponse.model_validate(response.to_payload())
            except PydanticValidationError as e:
                raise AuthError(
                    "Token endpoint returned no access token",
                    status_code=response.status_code,
                    request=response.request,
                    response=response.raw,
                ) from e

        return self.set_token(
            token_response.access_token,
            expires_in=token_response.expires_in,
            source=source,
        )

    def _idle_expired(self) -> bool:
        if not self.config.token.auto_expire:
            return False
        return time.monotonic() - self._last_used >= self.config.token.idle_timeout

    def _clear_locked(self) -> None:
        self._token = None
        self._last_used = 0.0
        if self._store is not None:
            self._store.clear()
