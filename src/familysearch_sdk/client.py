"""FamilySearch client.

An explicit session object composing the token manager, the transport, the
request executor and the response mapper. Every call goes through an
instance; nothing here is process-wide except the accessor registry.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Self

from .config import FamilySearchConfig
from .core.auth_builder import AuthorizationBuilder
from .core.http_executor import AttemptListener, RequestExecutor, SleepFn
from .core.token_manager import (
    AuthorizationCodeGrant,
    InteractiveCallback,
    PasswordGrant,
    TokenManager,
    UnauthenticatedGrant,
)
from .mapping import MappedObject, ResponseMapper
from .models import AccessToken, RequestDescriptor, TokenSource
from .pending import PendingCall
from .telemetry import get_logger, trace_operation
from .token_store import FileTokenStore, TokenStore
from .transport import HttpxTransport, Transport

if TYPE_CHECKING:
    from .mapping import MappedResponse
    from .registry import ConvenienceRegistry


class FamilySearchClient:
    """Asynchronous FamilySearch API client.

    Example::

        config = FamilySearchConfig(app_key="MY_APP_KEY", environment="integration")
        async with FamilySearchClient(config) as fs:
            await fs.get_access_token_with_password("user", "secret")
            response = await fs.get_current_user()
            print(response.get_user().get_contact_name())
    """

    def __init__(
        self,
        config: FamilySearchConfig,
        *,
        transport: Transport | None = None,
        sleep: SleepFn | None = None,
        token_store: TokenStore | None = None,
        registry: ConvenienceRegistry | None = None,
    ) -> None:
        """Initialize client.

        Args:
            config: SDK configuration.
            transport: Sends single requests. Defaults to an httpx transport
                owned (and closed) by the client.
            sleep: Coroutine function for waiting between retries.
            token_store: Token persistence. Defaults to a file store when
                ``config.token_cookie.enabled``.
            registry: Accessor registry. Defaults to the process-wide one.
        """
        self.config = config

        self._owns_transport = transport is None
        self._transport: Transport = transport or HttpxTransport.from_config(config)

        if token_store is None and config.token_cookie.enabled:
            token_store = FileTokenStore(
                config.token_cookie.path,
                max_age=config.token_cookie.max_age,
            )

        self.tokens = TokenManager(config, store=token_store)
        self.mapper = ResponseMapper(registry)
        self.executor = RequestExecutor(
            config,
            self._transport,
            self.tokens,
            mapper=self.mapper,
            sleep=sleep,
        )
        self._auth = AuthorizationBuilder(config)
        self._logger = get_logger()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client, if the client created it."""
        if self._owns_transport and isinstance(self._transport, HttpxTransport):
            await self._transport.aclose()

    # Authentication

    def authorization_url(
        self,
        *,
        state: str | None = None,
        redirect_uri: str | None = None,
    ) -> tuple[str, str]:
        """URL of the interactive sign-in page, and the CSRF state it carries."""
        return self._auth.build_authorization_url(redirect_uri, state=state)

    async def get_access_token(
        self,
        callback_url: str,
        expected_state: str | None = None,
    ) -> AccessToken:
        """Complete interactive sign-in from the redirect the browser came back to.

        Raises:
            AuthCancelled: The user abandoned the sign-in page.
            AuthError: The redirect carried an error or the code was rejected.
        """
        callback = InteractiveCallback(callback_url, expected_state)
        return await self.tokens.acquire(callback, self.executor.execute)

    async def get_access_token_with_password(self, username: str, password: str) -> AccessToken:
        """Sign in with username and password (approved partner apps only)."""
        return await self.tokens.acquire(PasswordGrant(username, password), self.executor.execute)

    async def get_access_token_with_code(
        self,
        code: str,
        *,
        redirect_uri: str | None = None,
    ) -> AccessToken:
        """Exchange an authorization code for a token."""
        grant = AuthorizationCodeGrant(code, redirect_uri)
        return await self.tokens.acquire(grant, self.executor.execute)

    async def get_access_token_for_unauthenticated(self, ip_address: str) -> AccessToken:
        """Obtain a read-only token for an anonymous end user."""
        return await self.tokens.acquire(UnauthenticatedGrant(ip_address), self.executor.execute)

    def set_access_token(self, value: str, *, expires_in: int | None = None) -> AccessToken:
        """Use a token obtained outside the SDK."""
        return self.tokens.set_token(value, expires_in=expires_in, source=TokenSource.PROVIDED)

    def has_access_token(self) -> bool:
        return self.tokens.has_token()

    async def invalidate_access_token(self) -> None:
        """Sign out.

        The token is revoked on the server when one is held, and always
        forgotten locally, even when revocation fails.
        """
        token = self.tokens.current_token()
        try:
            if token is not None:
                with trace_operation("invalidate_token"):
                    request = RequestDescriptor.build(
                        "DELETE",
                        self.executor.resolve_url(
                            self.config.token_endpoint,
                            {"access_token": token.value},
                        ),
                        requires_auth=False,
                    )
                    await self.executor.execute_raw(request)
        finally:
            self.tokens.invalidate()

    # Plumbing

    def url(self, path: str, params: Mapping[str, Any] | None = None, **path_params: Any) -> str:
        """Resolve a path or URL template against the API host."""
        return self.executor.resolve_url(path, params, **path_params)

    def build_request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
        requires_auth: bool = True,
    ) -> RequestDescriptor:
        """Build a request descriptor for a plumbing call."""
        return RequestDescriptor.build(
            method,
            self.url(path, params),
            json_body=json,
            headers=headers,
            content_type=self.config.accept,
            requires_auth=requires_auth,
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
        headers: Mapping[str, str] | None = None,
        kind: str | None = None,
        requires_auth: bool = True,
    ) -> MappedResponse:
        """Perform a single API call.

        Args:
            method: HTTP method.
            path: Path relative to the API host, or an absolute URL.
            params: Query parameters.
            json: Body to send as JSON.
            headers: Extra request headers.
            kind: Expected response kind; inferred from the body when None.
            requires_auth: Whether an access token must be attached.

        Returns:
            The mapped response.
        """
        request = self.build_request(
            method,
            path,
            params=params,
            json=json,
            headers=headers,
            requires_auth=requires_auth,
        )
        return await self.executor.execute(request, kind=kind)

    async def get(self, path: str, **kwargs: Any) -> MappedResponse:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> MappedResponse:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> MappedResponse:
        return await self.request("PUT", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> MappedResponse:
        return await self.request("DELETE", path, **kwargs)

    async def head(self, path: str, **kwargs: Any) -> MappedResponse:
        return await self.request("HEAD", path, **kwargs)

    def submit(
        self,
        method: str,
        path: str,
        *,
        kind: str | None = None,
        **kwargs: Any,
    ) -> PendingCall:
        """Start a call and return a handle to it. Requires a running loop."""
        request = self.build_request(method, path, **kwargs)
        return PendingCall(request, self.executor.execute(request, kind=kind))

    def add_attempt_listener(self, listener: AttemptListener) -> None:
        """Observe every attempt, retries included."""
        self.executor.add_attempt_listener(listener)

    # Objects

    def wrap(self, kind: str, payload: Any) -> MappedObject:
        """Map a payload built by the caller, e.g. a person to create."""
        return self.mapper.wrap(kind, payload, executor=self.executor)

    async def get_current_user(self) -> MappedResponse:
        """The signed-in user (``response.get_user()``)."""
        return await self.get("/platform/users/current", kind="users")

    async def get_person(self, pid: str) -> MappedResponse:
        """A person from the tree (``response.get_person()``)."""
        return await self.get(self.url("/platform/tree/persons/{pid}", pid=pid), kind="persons")

    async def get_person_with_relationships(self, pid: str) -> MappedResponse:
        """A person with parents, spouses and children."""
        return await self.get(
            "/platform/tree/persons-with-relationships",
            params={"person": pid},
            kind="person-with-relationships",
        )

    async def create_person(
        self,
        payload: Mapping[str, Any],
        *,
        change_message: str | None = None,
    ) -> MappedObject:
        """Create a person and return it as a persisted object."""
        person = self.wrap("person", dict(payload))
        await person.save(change_message=change_message)
        self._logger.debug("Person created", pid=person.get("id"))
        return person
