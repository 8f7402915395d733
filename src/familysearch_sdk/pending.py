"""Handle for an executor call that is still in flight.

Keeps the originating request, status code and headers introspectable while
the call runs and after it settles, whether it succeeded or failed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine, Generator, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from .errors import FamilySearchError

if TYPE_CHECKING:
    from .mapping import MappedResponse
    from .models import RawResponse, RequestDescriptor


class PendingCall:
    """Awaitable handle around an :class:`asyncio.Task` running a request.

    Awaiting it yields the mapped response or raises the call's error.
    :meth:`abandon` drops interest in the result without stopping the call,
    so retries already under way still run to completion.
    """

    def __init__(
        self,
        request: RequestDescriptor,
        coro: Coroutine[Any, Any, MappedResponse],
    ) -> None:
        self._request = request
        self._task: asyncio.Task[MappedResponse] = asyncio.ensure_future(coro)
        self._abandoned = False
        self._task.add_done_callback(self._retrieve_exception)

    @property
    def request(self) -> RequestDescriptor:
        return self._request

    @property
    def abandoned(self) -> bool:
        return self._abandoned

    def done(self) -> bool:
        return self._task.done()

    def abandon(self) -> None:
        """Stop caring about the result. Later awaits raise CancelledError."""
        self._abandoned = True

    def cancel(self) -> bool:
        """Cancel the underlying task, stopping any further attempts."""
        self._abandoned = True
        return self._task.cancel()

    @property
    def response(self) -> RawResponse | None:
        """Raw response of the final attempt, once settled."""
        if not self._task.done() or self._task.cancelled():
            return None
        error = self._task.exception()
        if error is None:
            return self._task.result().raw
        if isinstance(error, FamilySearchError):
            return error.response
        return None

    @property
    def status_code(self) -> int | None:
        response = self.response
        return response.status_code if response is not None else None

    @property
    def headers(self) -> Mapping[str, str]:
        response = self.response
        return MappingProxyType(response.headers if response is not None else {})

    def header(self, name: str) -> str | None:
        response = self.response
        return response.header(name) if response is not None else None

    async def result(self) -> MappedResponse:
        if self._abandoned:
            raise asyncio.CancelledError
        result = await asyncio.shield(self._task)
        if self._abandoned:
            raise asyncio.CancelledError
        return result

    def __await__(self) -> Generator[Any, None, MappedResponse]:
        return self.result().__await__()

    def __repr__(self) -> str:
        state = "abandoned" if self._abandoned else ("done" if self._task.done() else "pending")
        return f"PendingCall({self._request.method} {self._request.url}, {state})"

    @staticmethod
    def _retrieve_exception(task: asyncio.Task[Any]) -> None:
        # Mark the exception as retrieved so abandoned calls do not log
        # "exception was never retrieved".
        if not task.cancelled():
            task.exception()
