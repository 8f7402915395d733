"""FamilySearch Python SDK."""

from . import conveniences
from .client import FamilySearchClient
from .config import Environment, FamilySearchConfig, RetryConfig, TokenConfig, TokenCookieConfig
from .errors import (
    AuthCancelled,
    AuthError,
    AuthRequired,
    ErrorCode,
    FamilySearchError,
    InvalidConfigError,
    MalformedResponse,
    ObjectDeleted,
    ServerError,
    ThrottledExhausted,
    TransportFailure,
    ValidationError,
)
from .lifecycle import LifecycleState, PersistenceBinding, UpdatableObject, UpdateMode
from .mapping import MappedObject, MappedResponse, ResponseMapper, strip_payload
from .models import AccessToken, RawResponse, RequestDescriptor, TokenSource
from .pending import PendingCall
from .registry import ConvenienceRegistry, default_registry, register_accessor
from .telemetry import configure_telemetry
from .token_store import FileTokenStore, MemoryTokenStore, TokenStore
from .transport import HttpxTransport, Transport

__all__ = [
    "conveniences",
    "FamilySearchClient",
    "Environment",
    "FamilySearchConfig",
    "RetryConfig",
    "TokenConfig",
    "TokenCookieConfig",
    "AuthCancelled",
    "AuthError",
    "AuthRequired",
    "ErrorCode",
    "FamilySearchError",
    "InvalidConfigError",
    "MalformedResponse",
    "ObjectDeleted",
    "ServerError",
    "ThrottledExhausted",
    "TransportFailure",
    "ValidationError",
    "LifecycleState",
    "PersistenceBinding",
    "UpdatableObject",
    "UpdateMode",
    "MappedObject",
    "MappedResponse",
    "ResponseMapper",
    "strip_payload",
    "AccessToken",
    "RawResponse",
    "RequestDescriptor",
    "TokenSource",
    "PendingCall",
    "ConvenienceRegistry",
    "default_registry",
    "register_accessor",
    "configure_telemetry",
    "FileTokenStore",
    "MemoryTokenStore",
    "TokenStore",
    "HttpxTransport",
    "Transport",
]

__version__ = "0.1.0"
