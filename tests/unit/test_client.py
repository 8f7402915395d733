"""Unit tests for the FamilySearch client."""

import asyncio
from typing import Any
from urllib.parse import parse_qs, urlparse

import pytest

from familysearch_sdk.client import FamilySearchClient
from familysearch_sdk.config import FamilySearchConfig, TokenCookieConfig
from familysearch_sdk.core.http_executor import AttemptEvent
from familysearch_sdk.errors import AuthRequired, ObjectDeleted, ServerError, TransportFailure
from familysearch_sdk.lifecycle import LifecycleState, UpdatableObject
from familysearch_sdk.models import TokenSource
from familysearch_sdk.token_store import FileTokenStore
from familysearch_sdk.transport import HttpxTransport

from ..helpers import FakeTransport, reply

API = "https://api-integ.familysearch.org"


class TestConstruction:
    """Tests for client construction and teardown."""

    def test_default_transport_is_owned(self, config: FamilySearchConfig) -> None:
        async def run() -> None:
            async with FamilySearchClient(config) as client:
                assert isinstance(client.executor.transport, HttpxTransport)

        asyncio.run(run())

    def test_token_cookie_enables_file_store(self, config: FamilySearchConfig, tmp_path: Any) -> None:
        path = tmp_path / "token.json"
        config = config.with_overrides(token_cookie=TokenCookieConfig(enabled=True, path=path))

        client = FamilySearchClient(config, transport=FakeTransport())
        client.set_access_token("kept")

        assert isinstance(client.tokens.store, FileTokenStore)
        restored = FamilySearchClient(config, transport=FakeTransport())
        assert restored.has_access_token()

    def test_sleep_is_injected(self, config: FamilySearchConfig, transport: FakeTransport) -> None:
        delays: list[float] = []

        async def fake_sleep(delay: float) -> None:
            delays.append(delay)

        client = FamilySearchClient(config, transport=transport, sleep=fake_sleep)
        client.set_access_token("t")
        transport.queue(reply(503), reply(200, {}))

        asyncio.run(client.get("/platform/users/current"))

        assert delays == [0.01]


class TestAuthentication:
    """Tests for the authentication entry points."""

    def test_authorization_url(self, client: FamilySearchClient) -> None:
        url, state = client.authorization_url(state="s1")
        assert parse_qs(urlparse(url).query)["state"] == ["s1"]
        assert state == "s1"

    def test_password(self, client: FamilySearchClient, transport: FakeTransport) -> None:
        transport.queue(reply(200, {"access_token": "pw-token", "expires_in": 3600}))

        token = asyncio.run(client.get_access_token_with_password("user", "secret"))

        assert token.source is TokenSource.PASSWORD
        assert client.has_access_token()
        assert transport.sent[0].url == client.config.token_endpoint

    def test_code(self, client: FamilySearchClient, transport: FakeTransport) -> None:
        transport.queue(reply(200, {"access_token": "code-token"}))

        asyncio.run(client.get_access_token_with_code("abc", redirect_uri="https://other.example.com/cb"))

        form = parse_qs((transport.sent[0].body or b"").decode())
        assert form["code"] == ["abc"]
        assert form["redirect_uri"] == ["https://other.example.com/cb"]

    def test_interactive(self, client: FamilySearchClient, transport: FakeTransport) -> None:
        transport.queue(reply(200, {"access_token": "cb-token"}))

        token = asyncio.run(client.get_access_token("https://app.example.com/auth?code=xyz&state=s1", "s1"))

        assert token.value == "cb-token"

    def test_unauthenticated(self, client: FamilySearchClient, transport: FakeTransport) -> None:
        transport.queue(reply(200, {"access_token": "anon"}))

        token = asyncio.run(client.get_access_token_for_unauthenticated("10.0.0.1"))

        assert token.source is TokenSource.UNAUTHENTICATED

    def test_invalidate_revokes_and_forgets(self, client: FamilySearchClient, transport: FakeTransport) -> None:
        client.set_access_token("doomed")
        transport.queue(reply(204))

        asyncio.run(client.invalidate_access_token())

        sent = transport.sent[0]
        assert sent.method == "DELETE"
        assert sent.url.startswith(client.config.token_endpoint)
        assert parse_qs(urlparse(sent.url).query)["access_token"] == ["doomed"]
        assert sent.header("Authorization") is None
        assert not client.has_access_token()

    def test_invalidate_forgets_even_on_failure(self, client: FamilySearchClient, transport: FakeTransport) -> None:
        client.set_access_token("doomed")
        transport.queue(TransportFailure("offline"))

        with pytest.raises(TransportFailure):
            asyncio.run(client.invalidate_access_token())

        assert not client.has_access_token()

    def test_invalidate_without_token(self, client: FamilySearchClient, transport: FakeTransport) -> None:
        asyncio.run(client.invalidate_access_token())
        assert transport.sent == []


class TestRequests:
    """Tests for plumbing calls and endpoint helpers."""

    def test_requires_token(self, client: FamilySearchClient, transport: FakeTransport) -> None:
        with pytest.raises(AuthRequired):
            asyncio.run(client.get("/platform/users/current"))
        assert transport.sent == []

    def test_plumbing_call(self, client: FamilySearchClient, transport: FakeTransport) -> None:
        client.set_access_token("t")
        transport.queue(reply(200, {"ok": True}))

        response = asyncio.run(
            client.post(
                "/platform/tree/persons/P1/notes",
                json={"persons": []},
                params={"flag": "1"},
                headers={"X-Extra": "yes"},
            )
        )

        sent = transport.sent[0]
        assert sent.url == f"{API}/platform/tree/persons/P1/notes?flag=1"
        assert sent.header("Content-Type") == "application/x-fs-v1+json"
        assert sent.header("X-Extra") == "yes"
        assert response["ok"] is True

    def test_url_template(self, client: FamilySearchClient) -> None:
        assert client.url("/platform/tree/persons/{pid}", pid="P1") == f"{API}/platform/tree/persons/P1"

    def test_get_current_user(self, client: FamilySearchClient, transport: FakeTransport) -> None:
        client.set_access_token("t")
        transport.queue(reply(200, {"users": [{"contactName": "Pat", "personId": "KW1"}]}))

        response = asyncio.run(client.get_current_user())

        assert transport.sent[0].url == f"{API}/platform/users/current"
        user = response.get_user()
        assert user.get_contact_name() == "Pat"
        assert user.get_person_id() == "KW1"

    def test_get_person(
        self, client: FamilySearchClient, transport: FakeTransport, sample_person: dict[str, Any]
    ) -> None:
        client.set_access_token("t")
        transport.queue(reply(200, {"persons": [sample_person]}))

        response = asyncio.run(client.get_person("KWQS-BBQ"))

        person = response.get_person()
        assert isinstance(person, UpdatableObject)
        assert person.state is LifecycleState.PERSISTED
        assert person.get_display_name() == "John Smith"

    def test_embedded_person_edits_leave_response_untouched(
        self, client: FamilySearchClient, transport: FakeTransport, sample_person: dict[str, Any]
    ) -> None:
        client.set_access_token("t")
        transport.queue(reply(200, {"persons": [sample_person]}))
        response = asyncio.run(client.get_person("KWQS-BBQ"))
        before = response.to_payload()

        first = response.get_person()
        second = response.get_person()
        first.set("living", True)

        assert first is second
        assert second.state is LifecycleState.DIRTY
        assert response.to_payload() == before
        assert response["persons"][0].get("living") == before["persons"][0].get("living")

    def test_embedded_person_deletes_once(
        self, client: FamilySearchClient, transport: FakeTransport, sample_person: dict[str, Any]
    ) -> None:
        client.set_access_token("t")
        transport.queue(reply(200, {"persons": [sample_person]}), reply(204))
        response = asyncio.run(client.get_person("KWQS-BBQ"))

        async def delete_twice() -> list[Any]:
            return await asyncio.gather(
                response.get_person().delete(),
                response.get_person().delete(),
                return_exceptions=True,
            )

        results = asyncio.run(delete_twice())

        assert [r.method for r in transport.sent] == ["GET", "DELETE"]
        assert results[0] is None
        assert isinstance(results[1], ObjectDeleted)

    def test_get_person_with_relationships(self, client: FamilySearchClient, transport: FakeTransport) -> None:
        client.set_access_token("t")
        transport.queue(
            reply(
                200,
                {
                    "persons": [{"id": "P2"}, {"id": "P1"}],
                    "relationships": [
                        {
                            "type": "http://gedcomx.org/Couple",
                            "person1": {"resourceId": "P1"},
                            "person2": {"resourceId": "P2"},
                        }
                    ],
                },
            )
        )

        response = asyncio.run(client.get_person_with_relationships("P1"))

        assert transport.sent[0].url == f"{API}/platform/tree/persons-with-relationships?person=P1"
        assert response.kind == "person-with-relationships"
        assert response.get_primary_person()["id"] == "P1"
        assert response.get_spouse_ids() == ["P2"]

    def test_attempt_listener(self, client: FamilySearchClient, transport: FakeTransport) -> None:
        events: list[AttemptEvent] = []
        client.add_attempt_listener(events.append)
        client.set_access_token("t")
        transport.queue(reply(200, {}))

        asyncio.run(client.get("/platform/users/current"))

        assert len(events) == 1

    def test_wrap_and_create_person(self, client: FamilySearchClient, transport: FakeTransport) -> None:
        client.set_access_token("t")
        transport.queue(reply(201, headers={"X-Entity-Id": "NEW-1"}))
        names = [{"nameForms": [{"fullText": "Ann"}]}]

        person = asyncio.run(client.create_person({"names": names}, change_message="New"))

        assert isinstance(person, UpdatableObject)
        assert person.id == "NEW-1"
        assert person.state is LifecycleState.PERSISTED

    def test_errors_carry_the_request(self, client: FamilySearchClient, transport: FakeTransport) -> None:
        client.set_access_token("t")
        transport.queue(reply(404, {"errors": [{"code": 404, "message": "Not found"}]}))

        with pytest.raises(ServerError) as exc_info:
            asyncio.run(client.get_person("NOPE"))

        error = exc_info.value
        assert error.status_code == 404
        assert error.message == "Not found"
        assert error.request is not None
        assert error.request.url.endswith("/platform/tree/persons/NOPE")
