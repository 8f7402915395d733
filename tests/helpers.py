"""Test doubles shared by the unit and property tests."""

import asyncio
import json
from collections.abc import Callable
from typing import Any

from familysearch_sdk.models import RawResponse, RequestDescriptor

Responder = Callable[[RequestDescriptor], RawResponse]


def reply(
    status: int = 200,
    body: Any = None,
    headers: dict[str, str] | None = None,
    content: bytes | None = None,
) -> Responder:
    """Build a scripted response for FakeTransport."""

    def respond(request: RequestDescriptor) -> RawResponse:
        payload = content
        if payload is None:
            payload = json.dumps(body).encode("utf-8") if body is not None else b""
        return RawResponse(
            status_code=status,
            headers=dict(headers or {}),
            content=payload,
            request=request,
        )

    return respond


class FakeTransport:
    """Transport replaying scripted outcomes in order and recording sends."""

    def __init__(self, *outcomes: Responder | BaseException) -> None:
        self.outcomes = list(outcomes)
        self.sent: list[RequestDescriptor] = []

    def queue(self, *outcomes: Responder | BaseException) -> None:
        self.outcomes.extend(outcomes)

    async def send(self, request: RequestDescriptor) -> RawResponse:
        self.sent.append(request)
        # Yield like a real network call would.
        await asyncio.sleep(0)
        if not self.outcomes:
            raise AssertionError(f"Unexpected request: {request.method} {request.url}")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome(request)
