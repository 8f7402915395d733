"""HTTP transport for the FamilySearch SDK.

The core only depends on the :class:`Transport` protocol: send one request,
eventually get one response or a :class:`TransportFailure`. No retry or auth
logic lives here. :class:`HttpxTransport` is the default implementation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx

from .core.errors import ErrorFactory
from .models import RawResponse, RequestDescriptor

if TYPE_CHECKING:
    from .config import FamilySearchConfig


@runtime_checkable
class Transport(Protocol):
    """Mechanical transmission of a single request."""

    async def send(self, request: RequestDescriptor) -> RawResponse:
        """Send the request.

        Raises:
            TransportFailure: When no response could be obtained.
        """
        ...


def create_async_http_client(config: FamilySearchConfig) -> httpx.AsyncClient:
    """Create configured async HTTP client.

    Args:
        config: SDK configuration.

    Returns:
        Configured httpx.AsyncClient.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=config.connect_timeout,
            read=config.timeout,
            write=config.timeout,
            pool=config.timeout,
        ),
        headers={"User-Agent": "familysearch-sdk/0.1.0 Python"},
        follow_redirects=False,
    )


class HttpxTransport:
    """Transport backed by ``httpx.AsyncClient``."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    @classmethod
    def from_config(cls, config: FamilySearchConfig) -> HttpxTransport:
        """Create a transport with its own configured client."""
        return cls(create_async_http_client(config))

    async def send(self, request: RequestDescriptor) -> RawResponse:
        try:
            response = await self._client.request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body,
            )
        except httpx.HTTPError as e:
            raise ErrorFactory.from_exception(e, request=request) from e

        return RawResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            content=response.content,
            request=request,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
