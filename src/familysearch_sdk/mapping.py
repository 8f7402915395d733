"""Response mapping for the FamilySearch SDK.

Wraps parsed JSON in :class:`MappedObject` instances. A mapped object keeps
its raw payload, its accessors and the mapper's own metadata in separate
containers, so turning it back into a payload for the server is a structural
copy of the raw container and nothing else.
"""

from __future__ import annotations

import functools
import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from .errors import MalformedResponse
from .registry import GENERIC_KIND, Accessor, ConvenienceRegistry, default_registry
from .telemetry import get_logger

if TYPE_CHECKING:
    from .core.http_executor import RequestExecutor
    from .models import RawResponse, RequestDescriptor


def strip_payload(value: Any) -> Any:
    """Return a plain copy of ``value`` with every mapped object unwrapped.

    Only raw payload fields survive; accessors, metadata and ``local`` notes
    are dropped. Applying it twice gives the same result as applying it once.
    """
    if isinstance(value, MappedObject):
        return strip_payload(value._payload)
    if isinstance(value, Mapping):
        return {key: strip_payload(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [strip_payload(item) for item in value]
    return value


@dataclass(frozen=True)
class MappingMeta:
    """Mapper-owned metadata attached to every mapped object.

    ``embedded`` remembers the object wrapped around each embedded entity, so
    repeated accessor calls hand back the same instance.
    """

    kind: str
    mapper: ResponseMapper | None = None
    executor: RequestExecutor | None = None
    embedded: dict[tuple[str, int], tuple[Any, MappedObject]] = field(
        default_factory=dict, compare=False, repr=False
    )


class MappedObject:
    """A payload plus the accessors registered for its kind.

    Raw fields are read with ``obj["field"]`` or ``obj.get("field")``;
    accessors are called as methods, ``obj.get_display_name()``. The
    ``local`` dict is free for callers' own annotations and is never sent to
    the server.
    """

    __slots__ = ("_payload", "_accessors", "_meta", "local")

    def __init__(
        self,
        payload: Any,
        *,
        kind: str,
        accessors: Mapping[str, Accessor] | None = None,
        mapper: ResponseMapper | None = None,
        executor: RequestExecutor | None = None,
    ) -> None:
        self._payload = payload
        self._accessors: Mapping[str, Accessor] = MappingProxyType(dict(accessors or {}))
        self._meta = MappingMeta(kind=kind, mapper=mapper, executor=executor)
        self.local: dict[str, Any] = {}

    @property
    def kind(self) -> str:
        return self._meta.kind

    @property
    def payload(self) -> Any:
        """Read-only view of the raw payload."""
        if isinstance(self._payload, dict):
            return MappingProxyType(self._payload)
        return self._payload

    @property
    def accessor_names(self) -> tuple[str, ...]:
        return tuple(self._accessors)

    def has_accessor(self, name: str) -> bool:
        return name in self._accessors

    def get(self, key: str, default: Any = None) -> Any:
        if isinstance(self._payload, dict):
            return self._payload.get(key, default)
        return default

    def keys(self) -> Iterator[str]:
        return iter(self._payload) if isinstance(self._payload, dict) else iter(())

    def __getitem__(self, key: Any) -> Any:
        return self._payload[key]

    def __contains__(self, key: object) -> bool:
        return isinstance(self._payload, (dict, list)) and key in self._payload

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            accessor = self._accessors[name]
        except KeyError:
            msg = f"{type(self).__name__} of kind {self.kind!r} has no accessor {name!r}"
            raise AttributeError(msg) from None
        return functools.partial(accessor, self)

    def __dir__(self) -> list[str]:
        return sorted({*super().__dir__(), *self._accessors})

    def wrap(self, kind: str, data: Any) -> Any:
        """Map embedded data as an object of ``kind``.

        Lists are wrapped element-wise; None stays None. Wrapping the same
        embedded entity again returns the object made the first time.
        """
        if data is None:
            return None
        if isinstance(data, list):
            return [self.wrap(kind, item) for item in data]
        key = (kind, id(data))
        cached = self._meta.embedded.get(key)
        if cached is not None:
            return cached[1]
        mapper = self._meta.mapper or ResponseMapper()
        wrapped = mapper.wrap(kind, data, executor=self._meta.executor)
        if isinstance(data, dict):
            # Holding ``data`` keeps its id from being reused.
            self._meta.embedded[key] = (data, wrapped)
        return wrapped

    def to_payload(self) -> Any:
        """Plain copy of the raw payload, ready to send to the server."""
        return strip_payload(self._payload)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind!r}, accessors={len(self._accessors)})"


class MappedResponse(MappedObject):
    """Mapped response body with the transport detail it arrived with."""

    __slots__ = ("_raw",)

    def __init__(
        self,
        payload: Any,
        *,
        raw: RawResponse,
        kind: str,
        accessors: Mapping[str, Accessor] | None = None,
        mapper: ResponseMapper | None = None,
        executor: RequestExecutor | None = None,
    ) -> None:
        super().__init__(
            payload,
            kind=kind,
            accessors=accessors,
            mapper=mapper,
            executor=executor,
        )
        self._raw = raw

    @property
    def raw(self) -> RawResponse:
        return self._raw

    @property
    def status_code(self) -> int:
        return self._raw.status_code

    @property
    def headers(self) -> Mapping[str, str]:
        return MappingProxyType(self._raw.headers)

    @property
    def request(self) -> RequestDescriptor:
        return self._raw.request

    def header(self, name: str) -> str | None:
        return self._raw.header(name)

    def __repr__(self) -> str:
        return f"MappedResponse(kind={self.kind!r}, status_code={self.status_code})"


class ResponseMapper:
    """Turns raw responses into mapped objects using a registry."""

    def __init__(self, registry: ConvenienceRegistry | None = None) -> None:
        self.registry = registry or default_registry
        self._logger = get_logger()

    def parse(self, raw: RawResponse) -> Any:
        """Parse a response body.

        An empty body parses as an empty object.

        Raises:
            MalformedResponse: If the body is not valid JSON.
        """
        if not raw.content.strip():
            return {}
        try:
            return json.loads(raw.content)
        except ValueError as e:
            self._logger.warning(
                "Malformed response body",
                url=raw.request.url,
                status_code=raw.status_code,
            )
            raise MalformedResponse(
                f"Response body is not valid JSON: {e}",
                body=raw.text,
                request=raw.request,
                response=raw,
            ) from e

    def map(
        self,
        raw: RawResponse,
        expected_kind: str | None = None,
        *,
        executor: RequestExecutor | None = None,
    ) -> MappedResponse:
        """Map a raw response.

        Args:
            raw: Response to map.
            expected_kind: Kind of the response; inferred from its shape when None.
            executor: Executor that lifecycle objects wrapped from this
                response persist through.

        Returns:
            The mapped response.
        """
        payload = self.parse(raw)
        kind = expected_kind
        if kind is None and isinstance(payload, dict):
            kind = self.registry.match_shape(payload)
        kind = kind or GENERIC_KIND

        return MappedResponse(
            payload,
            raw=raw,
            kind=kind,
            accessors=self.registry.resolve(kind),
            mapper=self,
            executor=executor,
        )

    def wrap(
        self,
        kind: str,
        data: Any,
        *,
        executor: RequestExecutor | None = None,
    ) -> MappedObject:
        """Map a single entity.

        Kinds with a persistence binding become lifecycle objects when an
        executor is available to persist them. A lifecycle object edits its
        own copy of ``data``, never the caller's.
        """
        if isinstance(data, MappedObject):
            data = data.to_payload()
        accessors = self.registry.resolve(kind)
        binding = self.registry.binding(kind)
        if binding is not None and executor is not None and isinstance(data, dict):
            from .lifecycle import UpdatableObject

            return UpdatableObject(
                strip_payload(data),
                kind=kind,
                accessors=accessors,
                binding=binding,
                mapper=self,
                executor=executor,
            )
        return MappedObject(
            data,
            kind=kind,
            accessors=accessors,
            mapper=self,
            executor=executor,
        )
