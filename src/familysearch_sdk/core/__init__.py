"""Core components for the FamilySearch SDK.

Token handling, retry rules, request execution and error construction shared
by the client and the lifecycle objects.
"""

from __future__ import annotations

from .errors import ErrorFactory, parse_retry_after
from .auth_builder import AuthorizationBuilder, CallbackResult, generate_state
from .token_manager import (
    AuthorizationCodeGrant,
    Grant,
    InteractiveCallback,
    PasswordGrant,
    TokenManager,
    UnauthenticatedGrant,
)
from .retry import (
    BackoffStrategy,
    ExponentialBackoff,
    FailureKind,
    FixedBackoff,
    RetryDecision,
    RetryPolicy,
    RetryState,
    classify,
)
from .http_executor import AttemptEvent, AttemptListener, RequestExecutor

__all__ = [
    "ErrorFactory",
    "parse_retry_after",
    "AuthorizationBuilder",
    "CallbackResult",
    "generate_state",
    "AuthorizationCodeGrant",
    "Grant",
    "InteractiveCallback",
    "PasswordGrant",
    "TokenManager",
    "UnauthenticatedGrant",
    "BackoffStrategy",
    "ExponentialBackoff",
    "FailureKind",
    "FixedBackoff",
    "RetryDecision",
    "RetryPolicy",
    "RetryState",
    "classify",
    "AttemptEvent",
    "AttemptListener",
    "RequestExecutor",
]
