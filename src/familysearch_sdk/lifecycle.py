"""Create/update/delete protocol for updatable mapped objects.

Each kind that can be persisted declares a :class:`PersistenceBinding` in the
registry: where new objects are posted, where existing ones are updated and
deleted, and whether an update sends only the changed fields or the whole
object. Operations on one object instance are serialized.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Self
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict

from .errors import ObjectDeleted, ValidationError
from .mapping import MappedObject, strip_payload
from .models import RequestDescriptor
from .telemetry import get_logger, trace_operation

if TYPE_CHECKING:
    from .core.http_executor import RequestExecutor
    from .mapping import MappedResponse, ResponseMapper
    from .registry import Accessor


class LifecycleState(StrEnum):
    """Persistence state of an updatable object."""

    NEW = "new"
    DIRTY = "dirty"
    SAVING = "saving"
    PERSISTED = "persisted"
    DELETING = "deleting"
    DELETED = "deleted"


class UpdateMode(StrEnum):
    """What an update of a persisted object sends."""

    DELTA = "delta"
    FULL = "full"


class PersistenceBinding(BaseModel):
    """Endpoints and update rules for one kind."""

    model_config = ConfigDict(frozen=True)

    collection_url: str
    item_url: str
    wrapper_key: str | None = None
    update_mode: UpdateMode = UpdateMode.FULL
    update_method: str = "POST"
    id_field: str = "id"
    refresh_kind: str | None = None
    required_fields: tuple[str, ...] = ()
    supports_change_message: bool = True
    content_type: str | None = None

    def wrap_body(self, entity: dict[str, Any]) -> Any:
        """Envelope an entity the way the endpoint expects it."""
        if self.wrapper_key:
            return {self.wrapper_key: [entity]}
        return entity

    def unwrap(self, payload: Any, entity_id: str | None) -> dict[str, Any] | None:
        """Find the entity in a response payload."""
        if not isinstance(payload, dict):
            return None
        if not self.wrapper_key:
            return payload
        entities = payload.get(self.wrapper_key) or []
        for entity in entities:
            if isinstance(entity, dict) and entity.get(self.id_field) == entity_id:
                return entity
        return entities[0] if len(entities) == 1 and isinstance(entities[0], dict) else None


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


class UpdatableObject(MappedObject):
    """Mapped object that can be saved to and deleted from the server.

    ``New -> Dirty -> Saving -> Persisted``, ``Persisted -> Dirty -> ...``,
    ``Persisted -> Deleting -> Deleted``. A failed save or delete returns the
    object to the state it was in before, or to ``Dirty`` when edits are
    pending. Once the write has succeeded, a failed refresh leaves the object
    ``Persisted`` (or ``Dirty``) and only surfaces the error.
    """

    __slots__ = ("_binding", "_state", "_dirty", "_lock", "_logger")

    def __init__(
        self,
        payload: dict[str, Any],
        *,
        kind: str,
        binding: PersistenceBinding,
        executor: RequestExecutor,
        accessors: Mapping[str, Accessor] | None = None,
        mapper: ResponseMapper | None = None,
    ) -> None:
        super().__init__(
            payload,
            kind=kind,
            accessors=accessors,
            mapper=mapper,
            executor=executor,
        )
        self._binding = binding
        self._state = (
            LifecycleState.NEW
            if _is_blank(payload.get(binding.id_field))
            else LifecycleState.PERSISTED
        )
        self._dirty: set[str] = set()
        self._lock = asyncio.Lock()
        self._logger = get_logger().bind(kind=kind)

    @property
    def id(self) -> str | None:
        value = self._payload.get(self._binding.id_field)
        return None if _is_blank(value) else value

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def is_new(self) -> bool:
        return self.id is None

    @property
    def dirty_fields(self) -> frozenset[str]:
        return frozenset(self._dirty)

    @property
    def binding(self) -> PersistenceBinding:
        return self._binding

    def set(self, field: str, value: Any) -> Self:
        """Set a raw field and mark it changed.

        Raises:
            ObjectDeleted: If the object has been deleted.
        """
        self._ensure_not_deleted()
        self._payload[field] = value
        self._dirty.add(field)
        if self._state in (LifecycleState.NEW, LifecycleState.PERSISTED):
            self._state = LifecycleState.DIRTY
        return self

    def set_many(self, fields: Mapping[str, Any] | None = None, **kwargs: Any) -> Self:
        """Set several raw fields at once."""
        for field, value in {**(fields or {}), **kwargs}.items():
            self.set(field, value)
        return self

    async def save(self, *, change_message: str | None = None, refresh: bool = False) -> Self:
        """Create or update the object on the server.

        Args:
            change_message: Reason for the change, when the endpoint records one.
            refresh: Re-read the object afterwards to pick up server-computed fields.

        Returns:
            The object itself.

        Raises:
            ObjectDeleted: If the object has been deleted.
            ValidationError: If a required field is missing.
        """
        async with self._lock:
            self._ensure_not_deleted()
            missing = [f for f in self._binding.required_fields if _is_blank(self._payload.get(f))]
            if missing:
                raise ValidationError(
                    f"Missing required fields: {', '.join(missing)}",
                    details={"fields": missing, "kind": self.kind},
                )

            previous = self._state
            creating = self.is_new
            if not creating and not self._dirty and not refresh:
                return self

            executor = self._executor()
            sent = frozenset(self._dirty)
            self._state = LifecycleState.SAVING
            try:
                with trace_operation("save_object", attributes={"kind": self.kind, "create": creating}):
                    try:
                        if creating:
                            response = await executor.execute(self._create_request(change_message))
                            self._adopt_id(response)
                        elif sent:
                            await executor.execute(self._update_request(sent, change_message))
                    except BaseException:
                        self._state = LifecycleState.DIRTY if self._dirty else previous
                        raise

                    # The write is committed; a failed re-read does not undo it.
                    self._dirty -= sent
                    self._logger.info("Object saved", id=self.id, created=creating)
                    if refresh and self.id is not None:
                        await self._refresh(executor, pending=set(self._dirty))
            finally:
                if self._state is LifecycleState.SAVING:
                    self._state = LifecycleState.DIRTY if self._dirty else LifecycleState.PERSISTED
            return self

    async def delete(self, *, change_message: str | None = None) -> None:
        """Delete the object on the server.

        Raises:
            ObjectDeleted: If the object has already been deleted.
            ValidationError: If the object was never saved.
        """
        async with self._lock:
            self._ensure_not_deleted()
            if self.id is None:
                raise ValidationError("Cannot delete an object that was never saved")

            headers: dict[str, str] = {}
            if change_message and self._binding.supports_change_message:
                headers["X-Reason"] = change_message
            request = RequestDescriptor.build("DELETE", self._item_url(), headers=headers)

            previous = self._state
            self._state = LifecycleState.DELETING
            try:
                with trace_operation("delete_object", attributes={"kind": self.kind}):
                    await self._executor().execute(request)
            except BaseException:
                self._state = previous
                raise

            self._state = LifecycleState.DELETED
            self._dirty.clear()
            self._logger.info("Object deleted", id=self.id)

    def _executor(self) -> RequestExecutor:
        executor = self._meta.executor
        if executor is None:
            raise ValidationError("Object is not bound to a client")
        return executor

    def _ensure_not_deleted(self) -> None:
        if self._state is LifecycleState.DELETED:
            raise ObjectDeleted(f"{self.kind} {self.id} has been deleted")

    def _item_url(self) -> str:
        return self._executor().resolve_url(self._binding.item_url, id=self.id or "")

    def _with_change_message(self, entity: dict[str, Any], change_message: str | None) -> dict[str, Any]:
        if change_message and self._binding.supports_change_message:
            attribution = dict(entity.get("attribution") or {})
            attribution["changeMessage"] = change_message
            entity["attribution"] = attribution
        return entity

    def _json_request(self, method: str, url: str, entity: dict[str, Any]) -> RequestDescriptor:
        executor = self._executor()
        return RequestDescriptor.build(
            method,
            url,
            json_body=self._binding.wrap_body(entity),
            content_type=self._binding.content_type or executor.media_type,
        )

    def _create_request(self, change_message: str | None) -> RequestDescriptor:
        entity = self._with_change_message(self.to_payload(), change_message)
        url = self._executor().resolve_url(self._binding.collection_url)
        return self._json_request("POST", url, entity)

    def _update_request(self, fields: frozenset[str], change_message: str | None) -> RequestDescriptor:
        if self._binding.update_mode is UpdateMode.DELTA:
            entity: dict[str, Any] = {self._binding.id_field: self.id}
            for field in sorted(fields):
                entity[field] = strip_payload(self._payload.get(field))
        else:
            entity = self.to_payload()
        entity = self._with_change_message(entity, change_message)
        return self._json_request(self._binding.update_method, self._item_url(), entity)

    def _adopt_id(self, response: MappedResponse) -> None:
        entity_id = response.header("X-Entity-Id")
        if not entity_id:
            location = response.header("Location")
            if location:
                entity_id = urlparse(location).path.rstrip("/").rsplit("/", 1)[-1] or None
        if not entity_id:
            entity = self._binding.unwrap(response.to_payload(), None)
            if entity is not None:
                entity_id = entity.get(self._binding.id_field)
        if entity_id:
            self._payload[self._binding.id_field] = entity_id
        else:
            self._logger.warning("Server assigned no identifier", status_code=response.status_code)

    async def _refresh(self, executor: RequestExecutor, *, pending: set[str]) -> None:
        request = RequestDescriptor.build("GET", self._item_url())
        response = await executor.execute(request, kind=self._binding.refresh_kind)
        entity = self._binding.unwrap(response.to_payload(), self.id)
        if entity is None:
            self._logger.warning("Refresh returned no matching object", id=self.id)
            return
        kept = {field: self._payload.get(field) for field in pending}
        self._payload.clear()
        self._payload.update(entity)
        self._payload.update(kept)
        self._meta.embedded.clear()
