"""Retry policy for the FamilySearch SDK.

Decides, for one failed attempt of one logical call, whether to try again and
after what delay. Only throttling is retried for non-idempotent requests: a
throttled request was never processed, while a retried POST that failed with
a 5xx could duplicate its side effect.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from ..errors import TransportFailure
from .errors import parse_retry_after

if TYPE_CHECKING:
    from ..config import RetryConfig
    from ..models import RawResponse, RequestDescriptor


class FailureKind(StrEnum):
    """Classification of a failed attempt."""

    TRANSPORT = "transport"
    SERVER = "server"
    THROTTLED = "throttled"
    AUTH = "auth"
    CLIENT = "client"


class BackoffStrategy(Protocol):
    """Anything that maps a retry number to a delay in seconds."""

    def get_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-indexed)."""
        ...


@dataclass(frozen=True)
class FixedBackoff:
    """Same delay before every retry."""

    delay: float = 0.5

    def get_delay(self, attempt: int) -> float:
        return self.delay


@dataclass(frozen=True)
class ExponentialBackoff:
    """Exponentially growing delay, capped and jittered."""

    initial: float = 0.5
    max_delay: float = 30.0
    base: float = 2.0
    jitter: float = 0.1

    def get_delay(self, attempt: int) -> float:
        delay = min(self.initial * (self.base**attempt), self.max_delay)
        # Add jitter to prevent thundering herd
        jitter_range = delay * self.jitter
        return max(0.0, delay + random.uniform(-jitter_range, jitter_range))  # noqa: S311


@dataclass
class RetryState:
    """Bookkeeping for one logical call. Discarded when the call settles."""

    attempts: int = 0
    started_at: float = field(default_factory=time.monotonic)
    last_failure: FailureKind | None = None

    @property
    def elapsed(self) -> float:
        """Seconds since the first attempt started."""
        return time.monotonic() - self.started_at

    def record(self, failure: FailureKind | None) -> None:
        """Count a finished attempt."""
        self.attempts += 1
        self.last_failure = failure


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of :meth:`RetryPolicy.decide`."""

    retry: bool
    failure: FailureKind | None = None
    delay: float = 0.0


def classify(outcome: RawResponse | TransportFailure) -> FailureKind | None:
    """Classify an attempt outcome. Returns None for success."""
    if isinstance(outcome, TransportFailure):
        return FailureKind.TRANSPORT
    status = outcome.status_code
    if outcome.ok:
        return None
    if status == 429:
        return FailureKind.THROTTLED
    if status == 401:
        return FailureKind.AUTH
    if status >= 500:
        return FailureKind.SERVER
    return FailureKind.CLIENT


class RetryPolicy:
    """Retry rules for transient failures and throttling.

    Args:
        max_retries: Retries allowed after the first attempt.
        backoff: Delay strategy for retries without a server hint.
        max_delay: Ceiling for a server's ``Retry-After`` hint.
    """

    def __init__(
        self,
        max_retries: int,
        backoff: BackoffStrategy,
        max_delay: float = 30.0,
    ) -> None:
        self.max_retries = max_retries
        self.backoff = backoff
        self.max_delay = max_delay

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        """Build a policy from retry configuration."""
        backoff: BackoffStrategy
        if config.backoff == "exponential":
            backoff = ExponentialBackoff(
                initial=config.retry_delay,
                max_delay=config.max_delay,
                base=config.exponential_base,
                jitter=config.jitter,
            )
        else:
            backoff = FixedBackoff(config.retry_delay)
        return cls(config.max_retries, backoff, max_delay=config.max_delay)

    def decide(
        self,
        request: RequestDescriptor,
        outcome: RawResponse | TransportFailure,
        state: RetryState,
    ) -> RetryDecision:
        """Decide whether to retry after an attempt.

        ``state`` must already include the attempt being judged.

        Args:
            request: The request that was sent.
            outcome: Response or transport failure of the attempt.
            state: Retry bookkeeping for the logical call.

        Returns:
            The retry decision.
        """
        failure = classify(outcome)
        if failure is None or failure in (FailureKind.AUTH, FailureKind.CLIENT):
            return RetryDecision(retry=False, failure=failure)

        if state.attempts > self.max_retries:
            return RetryDecision(retry=False, failure=failure)

        retry_index = state.attempts - 1

        if failure is FailureKind.THROTTLED:
            hint = parse_retry_after(outcome.header("Retry-After"))  # type: ignore[union-attr]
            if hint is not None:
                delay = min(hint, self.max_delay)
            else:
                delay = self.backoff.get_delay(retry_index)
            return RetryDecision(retry=True, failure=failure, delay=delay)

        if not request.idempotent:
            return RetryDecision(retry=False, failure=failure)

        return RetryDecision(
            retry=True,
            failure=failure,
            delay=self.backoff.get_delay(retry_index),
        )
