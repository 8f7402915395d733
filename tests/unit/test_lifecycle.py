"""Unit tests for saving and deleting updatable objects."""

import asyncio
import json
from typing import Any

import pytest

from familysearch_sdk.core.http_executor import RequestExecutor
from familysearch_sdk.errors import ObjectDeleted, ServerError, ValidationError
from familysearch_sdk.lifecycle import LifecycleState, PersistenceBinding, UpdatableObject, UpdateMode
from familysearch_sdk.models import RequestDescriptor

from ..helpers import FakeTransport, reply

API = "https://api-integ.familysearch.org"
NAMES = [{"preferred": True, "nameForms": [{"fullText": "Ann Lee"}]}]
MALE = {"type": "http://gedcomx.org/Male"}


def _wrap(executor: RequestExecutor, kind: str, payload: dict[str, Any]) -> UpdatableObject:
    obj = executor.mapper.wrap(kind, payload, executor=executor)
    assert isinstance(obj, UpdatableObject)
    return obj


def _body(request: RequestDescriptor) -> Any:
    return json.loads(request.body or b"null")


def _relationship(**extra: Any) -> dict[str, Any]:
    return {
        "id": "R1",
        "type": "http://gedcomx.org/Couple",
        "person1": {"resourceId": "P1"},
        "person2": {"resourceId": "P2"},
        **extra,
    }


class TestStates:
    """Tests for the initial state and local edits."""

    def test_new_and_persisted(self, executor: RequestExecutor) -> None:
        assert _wrap(executor, "person", {"names": NAMES}).state is LifecycleState.NEW
        assert _wrap(executor, "person", {"id": "", "names": NAMES}).is_new
        assert _wrap(executor, "person", {"id": "P1"}).state is LifecycleState.PERSISTED

    def test_set_marks_dirty(self, executor: RequestExecutor) -> None:
        person = _wrap(executor, "person", {"id": "P1"})

        person.set_many({"gender": MALE}, living=False)

        assert person.state is LifecycleState.DIRTY
        assert person.dirty_fields == {"gender", "living"}
        assert person["living"] is False

    def test_new_becomes_dirty_when_edited(self, executor: RequestExecutor) -> None:
        person = _wrap(executor, "person", {"names": NAMES})

        person.set("living", True)

        assert person.state is LifecycleState.DIRTY
        assert person.is_new


class TestCreate:
    """Tests for saving new objects."""

    def test_id_from_location(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        transport.queue(reply(201, headers={"Location": f"{API}/platform/tree/persons/KWQS-NEW"}))
        person = _wrap(executor, "person", {"names": NAMES})

        asyncio.run(person.save())

        sent = transport.sent[0]
        assert sent.method == "POST"
        assert sent.url == f"{API}/platform/tree/persons"
        assert sent.header("Content-Type") == "application/x-fs-v1+json"
        assert _body(sent) == {"persons": [{"names": NAMES}]}
        assert person.id == "KWQS-NEW"
        assert person.state is LifecycleState.PERSISTED

    def test_id_from_entity_header(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        transport.queue(reply(201, headers={"X-Entity-Id": "P7", "Location": f"{API}/elsewhere/P8"}))
        person = _wrap(executor, "person", {"names": NAMES})

        asyncio.run(person.save())

        assert person.id == "P7"

    def test_id_from_body(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        transport.queue(reply(201, {"persons": [{"id": "P9"}]}))
        person = _wrap(executor, "person", {"names": NAMES})

        asyncio.run(person.save())

        assert person.id == "P9"

    def test_create_with_refresh(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        transport.queue(
            reply(201, headers={"X-Entity-Id": "P1"}),
            reply(200, {"persons": [{"id": "P1", "names": NAMES, "display": {"name": "Ann Lee"}}]}),
        )
        person = _wrap(executor, "person", {"names": NAMES})

        asyncio.run(person.save(refresh=True))

        refresh = transport.sent[1]
        assert refresh.method == "GET"
        assert refresh.url == f"{API}/platform/tree/persons/P1"
        assert person.state is LifecycleState.PERSISTED
        assert person.get_display_name() == "Ann Lee"

    def test_missing_required_fields(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        person = _wrap(executor, "person", {"gender": MALE})

        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(person.save())

        assert exc_info.value.details["fields"] == ["names"]
        assert transport.sent == []
        assert person.state is LifecycleState.NEW

    def test_failed_create_stays_new(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        transport.queue(reply(500))
        person = _wrap(executor, "person", {"names": NAMES})

        with pytest.raises(ServerError):
            asyncio.run(person.save())

        assert person.state is LifecycleState.NEW
        assert person.id is None

    def test_failed_create_after_edit_stays_dirty(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        transport.queue(reply(500), reply(201, headers={"X-Entity-Id": "P1"}))
        person = _wrap(executor, "person", {"names": NAMES})
        person.set("living", True)

        with pytest.raises(ServerError):
            asyncio.run(person.save())
        assert person.state is LifecycleState.DIRTY

        asyncio.run(person.save())

        assert transport.sent[1].url == f"{API}/platform/tree/persons"
        assert person.id == "P1"
        assert person.state is LifecycleState.PERSISTED

    def test_failed_refresh_keeps_the_create(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        transport.queue(reply(201, headers={"X-Entity-Id": "P1"}), reply(404), reply(204))
        person = _wrap(executor, "person", {"names": NAMES})

        with pytest.raises(ServerError):
            asyncio.run(person.save(refresh=True))

        assert person.id == "P1"
        assert person.state is LifecycleState.PERSISTED
        assert person.dirty_fields == frozenset()

        person.set("living", False)
        asyncio.run(person.save())

        update = transport.sent[2]
        assert update.url == f"{API}/platform/tree/persons/P1"
        assert _body(update) == {"persons": [{"id": "P1", "living": False}]}
        assert person.state is LifecycleState.PERSISTED

    def test_change_message_in_attribution(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        transport.queue(reply(201, headers={"X-Entity-Id": "P1"}))
        person = _wrap(executor, "person", {"names": NAMES})

        asyncio.run(person.save(change_message="From the 1900 census"))

        entity = _body(transport.sent[0])["persons"][0]
        assert entity["attribution"] == {"changeMessage": "From the 1900 census"}
        assert "attribution" not in person


class TestUpdate:
    """Tests for saving persisted objects."""

    def test_clean_save_sends_nothing(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        person = _wrap(executor, "person", {"id": "P1", "names": NAMES})

        asyncio.run(person.save())

        assert transport.sent == []
        assert person.state is LifecycleState.PERSISTED

    def test_delta_update(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        transport.queue(reply(204))
        person = _wrap(executor, "person", {"id": "P1", "names": NAMES, "living": True})
        person.set("gender", MALE)

        asyncio.run(person.save())

        sent = transport.sent[0]
        assert sent.method == "POST"
        assert sent.url == f"{API}/platform/tree/persons/P1"
        assert _body(sent) == {"persons": [{"id": "P1", "gender": MALE}]}
        assert person.state is LifecycleState.PERSISTED
        assert person.dirty_fields == frozenset()

    def test_full_update(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        transport.queue(reply(204))
        relationship = _wrap(executor, "relationship", _relationship())
        relationship.set("facts", [{"type": "http://gedcomx.org/Marriage"}])

        asyncio.run(relationship.save(change_message="Married"))

        sent = transport.sent[0]
        assert sent.url == f"{API}/platform/tree/couple-relationships/R1"
        assert _body(sent) == {
            "relationships": [
                _relationship(
                    facts=[{"type": "http://gedcomx.org/Marriage"}],
                    attribution={"changeMessage": "Married"},
                )
            ]
        }

    def test_update_method_and_content_type_from_binding(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        binding = PersistenceBinding(
            collection_url="/platform/things",
            item_url="/platform/things/{id}",
            update_mode=UpdateMode.FULL,
            update_method="PUT",
            content_type="application/json",
        )
        thing = UpdatableObject({"id": "T1"}, kind="thing", binding=binding, executor=executor)
        thing.set("label", "x")
        transport.queue(reply(204))

        asyncio.run(thing.save())

        sent = transport.sent[0]
        assert sent.method == "PUT"
        assert sent.header("Content-Type") == "application/json"
        assert _body(sent) == {"id": "T1", "label": "x"}

    def test_failed_update_stays_dirty(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        transport.queue(reply(500))
        person = _wrap(executor, "person", {"id": "P1", "names": NAMES})
        person.set("gender", MALE)

        with pytest.raises(ServerError):
            asyncio.run(person.save())

        assert len(transport.sent) == 1
        assert person.state is LifecycleState.DIRTY
        assert person.dirty_fields == {"gender"}

    def test_edit_during_save_stays_dirty(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        person = _wrap(executor, "person", {"id": "P1", "names": NAMES})

        def edit_then_accept(request: RequestDescriptor):
            person.set("living", False)
            return reply(204)(request)

        transport.queue(edit_then_accept)
        person.set("gender", MALE)

        asyncio.run(person.save())

        assert _body(transport.sent[0]) == {"persons": [{"id": "P1", "gender": MALE}]}
        assert person.state is LifecycleState.DIRTY
        assert person.dirty_fields == {"living"}

    def test_refresh_keeps_pending_edits(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        person = _wrap(executor, "person", {"id": "P1", "names": NAMES})

        def edit_then_accept(request: RequestDescriptor):
            person.set("living", False)
            return reply(204)(request)

        transport.queue(
            edit_then_accept,
            reply(200, {"persons": [{"id": "P1", "names": NAMES, "gender": MALE, "living": True}]}),
        )
        person.set("gender", MALE)

        asyncio.run(person.save(refresh=True))

        assert person["living"] is False
        assert person["gender"] == MALE
        assert person.dirty_fields == {"living"}

    def test_failed_refresh_keeps_the_update(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        transport.queue(reply(204), reply(404))
        person = _wrap(executor, "person", {"id": "P1", "names": NAMES})
        person.set("gender", MALE)

        with pytest.raises(ServerError):
            asyncio.run(person.save(refresh=True))

        assert person.state is LifecycleState.PERSISTED
        assert person.dirty_fields == frozenset()
        assert person["gender"] == MALE


class TestDelete:
    """Tests for deleting objects."""

    def test_delete(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        transport.queue(reply(204))
        person = _wrap(executor, "person", {"id": "P1"})

        asyncio.run(person.delete(change_message="Duplicate"))

        sent = transport.sent[0]
        assert sent.method == "DELETE"
        assert sent.url == f"{API}/platform/tree/persons/P1"
        assert sent.header("X-Reason") == "Duplicate"
        assert person.state is LifecycleState.DELETED

    def test_deleted_object_rejects_changes(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        transport.queue(reply(204))
        person = _wrap(executor, "person", {"id": "P1", "names": NAMES})
        asyncio.run(person.delete())

        with pytest.raises(ObjectDeleted):
            person.set("living", True)
        with pytest.raises(ObjectDeleted):
            asyncio.run(person.save())
        with pytest.raises(ObjectDeleted):
            asyncio.run(person.delete())

        assert len(transport.sent) == 1

    def test_concurrent_deletes_send_once(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        transport.queue(reply(204))
        person = _wrap(executor, "person", {"id": "P1"})

        async def delete_twice() -> list[Any]:
            return await asyncio.gather(person.delete(), person.delete(), return_exceptions=True)

        results = asyncio.run(delete_twice())

        assert len(transport.sent) == 1
        assert results[0] is None
        assert isinstance(results[1], ObjectDeleted)
        assert person.state is LifecycleState.DELETED

    def test_never_saved(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        person = _wrap(executor, "person", {"names": NAMES})

        with pytest.raises(ValidationError):
            asyncio.run(person.delete())

        assert transport.sent == []

    def test_failed_delete_reverts(self, executor: RequestExecutor, transport: FakeTransport) -> None:
        transport.queue(reply(500))
        person = _wrap(executor, "person", {"id": "P1"})
        person.set("living", True)

        with pytest.raises(ServerError):
            asyncio.run(person.delete())

        assert person.state is LifecycleState.DIRTY
        assert person.dirty_fields == {"living"}
