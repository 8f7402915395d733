"""Request executor for the FamilySearch SDK.

Composes the token manager, the transport and the retry policy into a single
"perform this request" operation, then hands successful responses to the
response mapper.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from string import Formatter
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from ..errors import AuthRequired, TransportFailure, ValidationError
from ..mapping import ResponseMapper
from ..telemetry import get_logger, trace_operation
from .errors import ErrorFactory
from .retry import FailureKind, RetryPolicy, RetryState, classify

if TYPE_CHECKING:
    from ..config import FamilySearchConfig
    from ..mapping import MappedResponse
    from ..models import RawResponse, RequestDescriptor
    from ..transport import Transport
    from .token_manager import TokenManager

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class AttemptEvent:
    """One finished attempt of a logical call, as seen by listeners."""

    attempt: int
    request: RequestDescriptor
    status_code: int | None
    failure: FailureKind | None
    retry: bool
    delay: float = 0.0


AttemptListener = Callable[[AttemptEvent], None]


class RequestExecutor:
    """Executes requests with auth, retry and response mapping.

    Multiple calls may be in flight at once; nothing here is locked. Each call
    keeps its own :class:`RetryState`.
    """

    def __init__(
        self,
        config: FamilySearchConfig,
        transport: Transport,
        tokens: TokenManager,
        *,
        mapper: ResponseMapper | None = None,
        policy: RetryPolicy | None = None,
        sleep: SleepFn | None = None,
    ) -> None:
        """Initialize request executor.

        Args:
            config: SDK configuration.
            transport: Sends single requests.
            tokens: Source of the access token.
            mapper: Response mapper (default registry if not provided).
            policy: Retry policy (built from ``config.retry`` if not provided).
            sleep: Coroutine function used to wait between attempts.
        """
        self.config = config
        self.transport = transport
        self.tokens = tokens
        self.mapper = mapper or ResponseMapper()
        self.policy = policy or RetryPolicy.from_config(config.retry)
        self._sleep: SleepFn = sleep or asyncio.sleep
        self._listeners: list[AttemptListener] = []
        self._logger = get_logger()

    @property
    def media_type(self) -> str:
        """Default media type for request and response bodies."""
        return self.config.accept

    def add_attempt_listener(self, listener: AttemptListener) -> None:
        """Register a callback invoked after every attempt."""
        self._listeners.append(listener)

    def resolve_url(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        **path_params: Any,
    ) -> str:
        """Resolve a path against the API base URL.

        Args:
            path: Absolute URL, or a path relative to the environment's API
                host, optionally containing ``{name}`` placeholders.
            params: Query parameters; None values are skipped.
            **path_params: Placeholder values, URL-quoted before substitution.

        Returns:
            The absolute URL.

        Raises:
            ValidationError: If a placeholder has no value.
        """
        names = {field for _, field, _, _ in Formatter().parse(path) if field}
        missing = names - path_params.keys()
        if missing:
            raise ValidationError(
                f"Missing URL parameters: {', '.join(sorted(missing))}",
                details={"path": path},
            )
        if names:
            path = path.format_map({k: quote(str(v), safe="") for k, v in path_params.items()})

        if path.startswith(("http://", "https://")):
            url = httpx.URL(path)
        else:
            url = httpx.URL(f"{self.config.api_base_url}/{path.lstrip('/')}")

        if params:
            url = url.copy_merge_params({k: v for k, v in params.items() if v is not None})
        return str(url)

    async def execute(
        self,
        request: RequestDescriptor,
        *,
        kind: str | None = None,
    ) -> MappedResponse:
        """Execute a request and map its response.

        Args:
            request: The request.
            kind: Expected response kind; inferred from the body when None.

        Returns:
            The mapped response.

        Raises:
            AuthRequired: No token is held and the request requires one.
            AuthError: The server rejected the token.
            TransportFailure: The request could not be transmitted.
            ThrottledExhausted: Throttling outlasted the retry ceiling.
            ServerError: Any other non-success status.
            MalformedResponse: The body is not valid JSON.
        """
        raw = await self.execute_raw(request)
        return self.mapper.map(raw, kind, executor=self)

    async def execute_raw(self, request: RequestDescriptor) -> RawResponse:
        """Execute a request with retries, without mapping the body.

        Raises:
            AuthRequired: No token is held and the request requires one.
            AuthError: The server rejected the token.
            TransportFailure: The request could not be transmitted.
            ThrottledExhausted: Throttling outlasted the retry ceiling.
            ServerError: Any other non-success status.
        """
        if request.requires_auth and self.tokens.current_token() is None:
            raise AuthRequired(request=request)

        state = RetryState()
        while True:
            prepared = self._prepare(request)
            outcome = await self._attempt(prepared, state.attempts + 1)
            state.record(classify(outcome))
            decision = self.policy.decide(prepared, outcome, state)

            self._notify(
                AttemptEvent(
                    attempt=state.attempts,
                    request=prepared,
                    status_code=None if isinstance(outcome, TransportFailure) else outcome.status_code,
                    failure=decision.failure,
                    retry=decision.retry,
                    delay=decision.delay,
                )
            )

            if not decision.retry:
                return self._settle(prepared, outcome, state)

            self._log_retry(prepared, state, decision.delay, outcome)
            await self._sleep(decision.delay)

    def _prepare(self, request: RequestDescriptor) -> RequestDescriptor:
        """Attach the default Accept header and, when required, the token.

        The token is re-read on every attempt.
        """
        headers = {"Accept": self.media_type}
        prepared = request.with_headers(headers, override=False)
        if request.requires_auth:
            token = self.tokens.current_token()
            if token is None:
                raise AuthRequired(request=request)
            prepared = prepared.with_headers({"Authorization": f"Bearer {token.value}"})
        return prepared

    async def _attempt(
        self,
        request: RequestDescriptor,
        attempt: int,
    ) -> RawResponse | TransportFailure:
        """Send one attempt. Transport failures are returned, not raised."""
        try:
            with trace_operation(
                "http_request",
                attributes={"http.method": request.method, "http.url": request.url, "attempt": attempt},
            ) as span:
                response = await self.transport.send(request)
                span.set_attribute("http.status_code", response.status_code)
                return response
        except TransportFailure as e:
            if e.request is None:
                e.request = request
            return e

    def _settle(
        self,
        request: RequestDescriptor,
        outcome: RawResponse | TransportFailure,
        state: RetryState,
    ) -> RawResponse:
        if isinstance(outcome, TransportFailure):
            self._log_failure(request, state, outcome.message)
            raise outcome

        if outcome.ok:
            if request.requires_auth:
                self.tokens.touch()
            return outcome

        if state.last_failure is FailureKind.AUTH and request.requires_auth:
            self.tokens.invalidate()

        error = ErrorFactory.from_response(outcome)
        self._log_failure(request, state, error.message, status_code=outcome.status_code)
        raise error

    def _notify(self, event: AttemptEvent) -> None:
        for listener in tuple(self._listeners):
            listener(event)

    def _log_retry(
        self,
        request: RequestDescriptor,
        state: RetryState,
        delay: float,
        outcome: RawResponse | TransportFailure,
    ) -> None:
        """Log retry attempt."""
        self._logger.warning(
            "Retrying request",
            method=request.method,
            url=request.url,
            attempt=state.attempts,
            failure=state.last_failure.value if state.last_failure else None,
            delay=delay,
            error=outcome.message if isinstance(outcome, TransportFailure) else None,
        )

    def _log_failure(
        self,
        request: RequestDescriptor,
        state: RetryState,
        message: str,
        status_code: int | None = None,
    ) -> None:
        self._logger.info(
            "Request failed",
            method=request.method,
            url=request.url,
            attempts=state.attempts,
            elapsed=round(state.elapsed, 3),
            status_code=status_code,
            error=message,
        )
