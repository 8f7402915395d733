"""Convenience accessor registry.

A process-wide, append-only mapping from object kind to named accessor
functions, plus per-kind declarations (related kinds, response shape,
persistence binding). The mapper takes a snapshot of the registry each time it
maps an object, so accessors registered later show up on objects mapped later
and never on objects that already exist.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from .lifecycle import PersistenceBinding

Accessor = Callable[..., Any]
F = TypeVar("F", bound=Accessor)

GENERIC_KIND = "response"

# Attribute names of mapped objects that an accessor may not shadow.
RESERVED_NAMES = frozenset({
    "delete",
    "dirty_fields",
    "get",
    "has_accessor",
    "header",
    "headers",
    "id",
    "is_new",
    "keys",
    "kind",
    "local",
    "payload",
    "raw",
    "accessor_names",
    "request",
    "save",
    "set",
    "set_many",
    "state",
    "status_code",
    "to_payload",
    "wrap",
})


@dataclass(frozen=True)
class KindSpec:
    """Declaration of an object kind."""

    name: str
    related: tuple[str, ...] = ()
    shape: tuple[str, ...] = ()
    binding: PersistenceBinding | None = None


class ConvenienceRegistry:
    """Append-only registry of accessors and kinds.

    Appends are serialized by a lock and publish a new tuple, so readers
    never need the lock and always see a consistent prefix of registrations.
    """

    def __init__(self) -> None:
        self._accessors: dict[str, tuple[tuple[str, Accessor], ...]] = {}
        self._kinds: dict[str, KindSpec] = {}
        self._lock = threading.Lock()

    def declare_kind(
        self,
        kind: str,
        *,
        related: tuple[str, ...] = (),
        shape: tuple[str, ...] = (),
        binding: PersistenceBinding | None = None,
    ) -> KindSpec:
        """Declare a kind, or extend an existing declaration.

        Related kinds are appended; shape and binding can only be set once.

        Args:
            kind: Kind tag.
            related: Kinds whose accessors also apply to this kind.
            shape: Top-level payload keys identifying a response of this kind.
            binding: Persistence endpoints for updatable objects of this kind.

        Returns:
            The resulting declaration.

        Raises:
            ValueError: If a different shape or binding is already declared.
        """
        with self._lock:
            existing = self._kinds.get(kind)
            if existing is None:
                spec = KindSpec(kind, tuple(related), tuple(shape), binding)
            else:
                if shape and existing.shape and tuple(shape) != existing.shape:
                    msg = f"Kind {kind!r} already declares shape {existing.shape}"
                    raise ValueError(msg)
                if binding is not None and existing.binding is not None and binding != existing.binding:
                    msg = f"Kind {kind!r} already has a persistence binding"
                    raise ValueError(msg)
                spec = KindSpec(
                    kind,
                    existing.related + tuple(r for r in related if r not in existing.related),
                    existing.shape or tuple(shape),
                    existing.binding or binding,
                )
            self._kinds[kind] = spec
            return spec

    def register(self, kind: str, name: str, func: Accessor) -> None:
        """Append an accessor to a kind.

        Args:
            kind: Kind tag.
            name: Attribute name the accessor is exposed under.
            func: Pure function called as ``func(obj, *args, **kwargs)``.

        Raises:
            ValueError: If the name is not a public identifier or is reserved.
        """
        if not name.isidentifier() or name.startswith("_"):
            msg = f"Accessor name must be a public identifier: {name!r}"
            raise ValueError(msg)
        if name in RESERVED_NAMES:
            msg = f"Accessor name {name!r} is reserved"
            raise ValueError(msg)
        if not callable(func):
            msg = f"Accessor {name!r} is not callable"
            raise TypeError(msg)
        with self._lock:
            self._accessors[kind] = self._accessors.get(kind, ()) + ((name, func),)

    def accessors(self, kind: str) -> tuple[tuple[str, Accessor], ...]:
        """Registrations for exactly this kind, in registration order."""
        return self._accessors.get(kind, ())

    def resolve(self, kind: str) -> dict[str, Accessor]:
        """Snapshot of the accessors that apply to a kind.

        The kind's own accessors take precedence over those of related kinds;
        within one kind the latest registration of a name wins.
        """
        spec = self._kinds.get(kind)
        layers = (kind, *(spec.related if spec else ()))
        resolved: dict[str, Accessor] = {}
        for layer in layers:
            own = dict(self.accessors(layer))
            for name, func in own.items():
                resolved.setdefault(name, func)
        return resolved

    def kind(self, kind: str) -> KindSpec | None:
        """Declaration of a kind, if any."""
        return self._kinds.get(kind)

    def binding(self, kind: str) -> PersistenceBinding | None:
        """Persistence binding of a kind, if declared."""
        spec = self._kinds.get(kind)
        return spec.binding if spec else None

    def kinds(self) -> tuple[str, ...]:
        """All declared kinds in declaration order."""
        return tuple(self._kinds)

    def match_shape(self, payload: Mapping[str, Any]) -> str | None:
        """Pick the declared kind whose shape keys best match a payload.

        The most specific shape (most keys) wins; ties go to the earliest
        declaration.
        """
        best: KindSpec | None = None
        for spec in tuple(self._kinds.values()):
            if spec.shape and all(key in payload for key in spec.shape):
                if best is None or len(spec.shape) > len(best.shape):
                    best = spec
        return best.name if best else None


default_registry = ConvenienceRegistry()


def register_accessor(
    kind: str,
    name: str | None = None,
    *,
    registry: ConvenienceRegistry | None = None,
) -> Callable[[F], F]:
    """Decorator registering a function as an accessor of ``kind``.

    Example::

        @register_accessor("person")
        def name_and_id(person):
            return f"{person.get_display_name()} ({person['id']})"
    """

    def decorator(func: F) -> F:
        (registry or default_registry).register(kind, name or func.__name__, func)
        return func

    return decorator
