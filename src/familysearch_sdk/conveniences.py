"""Default kinds and convenience accessors.

Declares the response and entity kinds the SDK knows about out of the box and
registers read-only accessors over their GEDCOM X payloads. Everything here
goes through the public registry API, so user extensions work exactly the
same way.
"""

from __future__ import annotations

import weakref
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs, urlparse

from .lifecycle import PersistenceBinding, UpdateMode
from .registry import ConvenienceRegistry, default_registry

if TYPE_CHECKING:
    from .mapping import MappedObject

PERSON_BINDING = PersistenceBinding(
    collection_url="/platform/tree/persons",
    item_url="/platform/tree/persons/{id}",
    wrapper_key="persons",
    update_mode=UpdateMode.DELTA,
    refresh_kind="persons",
    required_fields=("names",),
)

RELATIONSHIP_BINDING = PersistenceBinding(
    collection_url="/platform/tree/relationships",
    item_url="/platform/tree/couple-relationships/{id}",
    wrapper_key="relationships",
    update_mode=UpdateMode.FULL,
    refresh_kind="relationships",
    required_fields=("person1", "person2"),
)

SOURCE_DESCRIPTION_BINDING = PersistenceBinding(
    collection_url="/platform/sources/descriptions",
    item_url="/platform/sources/descriptions/{id}",
    wrapper_key="sourceDescriptions",
    update_mode=UpdateMode.FULL,
    refresh_kind="source-descriptions",
    required_fields=("titles",),
)

_installed: weakref.WeakSet[ConvenienceRegistry] = weakref.WeakSet()


def short_type(uri: str | None) -> str | None:
    """``http://gedcomx.org/Birth`` -> ``Birth``."""
    if not uri:
        return None
    return uri.rsplit("/", 1)[-1]


def _matches_type(uri: str | None, wanted: str) -> bool:
    if not uri:
        return False
    return uri == wanted or (short_type(uri) or "").lower() == wanted.lower()


def _first(items: Any) -> Any:
    return items[0] if isinstance(items, list) and items else None


def _resource_id(ref: Any) -> str | None:
    """Id from a GEDCOM X resource reference (``resourceId`` or ``#id`` link)."""
    if not isinstance(ref, dict):
        return None
    if ref.get("resourceId"):
        return ref["resourceId"]
    resource = ref.get("resource")
    if isinstance(resource, str) and resource:
        return resource.rsplit("/", 1)[-1].lstrip("#")
    return None


# Response kinds


def get_persons(response: MappedObject) -> list[Any]:
    return response.wrap("person", response.get("persons") or [])


def get_person(response: MappedObject, pid: str | None = None) -> Any:
    """The person with ``pid``, or the first person of the response."""
    persons = response.get("persons") or []
    if pid is not None:
        persons = [p for p in persons if isinstance(p, dict) and p.get("id") == pid]
    return response.wrap("person", _first(persons))


def get_relationships(response: MappedObject) -> list[Any]:
    return response.wrap("relationship", response.get("relationships") or [])


def get_source_descriptions(response: MappedObject) -> list[Any]:
    return response.wrap("source-description", response.get("sourceDescriptions") or [])


def get_user(response: MappedObject) -> Any:
    return response.wrap("user", _first(response.get("users")))


def get_primary_person(response: MappedObject) -> Any:
    """The person the request was about.

    That is the person named by the request's ``person`` query parameter,
    falling back to the first person of the response.
    """
    request = getattr(response, "request", None)
    primary = None
    if request is not None:
        primary = _first(parse_qs(urlparse(request.url).query).get("person"))
    return get_person(response, primary) if primary else get_person(response)


def get_couple_relationships(response: MappedObject) -> list[Any]:
    relationships = [
        r for r in response.get("relationships") or []
        if isinstance(r, dict) and _matches_type(r.get("type"), "Couple")
    ]
    return response.wrap("relationship", relationships)


def get_spouse_ids(response: MappedObject, pid: str | None = None) -> list[str]:
    """Ids of the other partner in each couple relationship of ``pid``."""
    if pid is None:
        primary = get_primary_person(response)
        pid = primary.get("id") if primary is not None else None
    spouses: list[str] = []
    for relationship in response.get("relationships") or []:
        if not isinstance(relationship, dict) or not _matches_type(relationship.get("type"), "Couple"):
            continue
        ids = (_resource_id(relationship.get("person1")), _resource_id(relationship.get("person2")))
        if pid in ids:
            other = ids[1] if ids[0] == pid else ids[0]
            if other and other not in spouses:
                spouses.append(other)
    return spouses


# Entity kinds


def get_names(person: MappedObject) -> list[Any]:
    return person.wrap("name", person.get("names") or [])


def get_preferred_name(person: MappedObject) -> Any:
    names = person.get("names") or []
    preferred = next((n for n in names if isinstance(n, dict) and n.get("preferred")), _first(names))
    return person.wrap("name", preferred)


def get_display_name(person: MappedObject) -> str | None:
    display = person.get("display") or {}
    if display.get("name"):
        return display["name"]
    name = get_preferred_name(person)
    return name.get_full_text() if name is not None else None


def get_given_name(obj: MappedObject) -> str | None:
    return _name_part(obj, "Given")


def get_surname(obj: MappedObject) -> str | None:
    return _name_part(obj, "Surname")


def _name_part(obj: MappedObject, part_type: str) -> str | None:
    if obj.kind == "person":
        name = get_preferred_name(obj)
        return _name_part(name, part_type) if name is not None else None
    form = _first(obj.get("nameForms"))
    for part in (form or {}).get("parts") or []:
        if _matches_type(part.get("type"), part_type):
            return part.get("value")
    return None


def get_facts(obj: MappedObject, fact_type: str | None = None) -> list[Any]:
    """Facts, optionally only those of one type (URI or short name)."""
    facts = obj.get("facts") or []
    if fact_type is not None:
        facts = [f for f in facts if isinstance(f, dict) and _matches_type(f.get("type"), fact_type)]
    return obj.wrap("fact", facts)


def get_fact(obj: MappedObject, fact_type: str) -> Any:
    return _first(get_facts(obj, fact_type))


def get_birth(person: MappedObject) -> Any:
    return get_fact(person, "Birth") or get_fact(person, "Christening")


def get_death(person: MappedObject) -> Any:
    return get_fact(person, "Death") or get_fact(person, "Burial")


def get_birth_date(person: MappedObject) -> str | None:
    display = person.get("display") or {}
    if display.get("birthDate"):
        return display["birthDate"]
    birth = get_birth(person)
    return birth.get_date() if birth is not None else None


def get_birth_place(person: MappedObject) -> str | None:
    display = person.get("display") or {}
    if display.get("birthPlace"):
        return display["birthPlace"]
    birth = get_birth(person)
    return birth.get_place() if birth is not None else None


def get_death_date(person: MappedObject) -> str | None:
    display = person.get("display") or {}
    if display.get("deathDate"):
        return display["deathDate"]
    death = get_death(person)
    return death.get_date() if death is not None else None


def get_death_place(person: MappedObject) -> str | None:
    display = person.get("display") or {}
    if display.get("deathPlace"):
        return display["deathPlace"]
    death = get_death(person)
    return death.get_place() if death is not None else None


def get_lifespan(person: MappedObject) -> str | None:
    display = person.get("display") or {}
    return display.get("lifespan")


def get_gender(person: MappedObject) -> str | None:
    gender = person.get("gender") or {}
    if gender.get("type"):
        return short_type(gender["type"])
    return (person.get("display") or {}).get("gender")


def is_living(person: MappedObject) -> bool:
    return bool(person.get("living"))


def get_full_text(name: MappedObject) -> str | None:
    return (_first(name.get("nameForms")) or {}).get("fullText")


def is_preferred(name: MappedObject) -> bool:
    return bool(name.get("preferred"))


def get_type(obj: MappedObject) -> str | None:
    """Type URI shortened to its last segment."""
    return short_type(obj.get("type"))


def get_date(fact: MappedObject) -> str | None:
    return (fact.get("date") or {}).get("original")


def get_formal_date(fact: MappedObject) -> str | None:
    return (fact.get("date") or {}).get("formal")


def get_place(fact: MappedObject) -> str | None:
    return (fact.get("place") or {}).get("original")


def get_value(fact: MappedObject) -> str | None:
    return fact.get("value")


def get_person1_id(relationship: MappedObject) -> str | None:
    return _resource_id(relationship.get("person1"))


def get_person2_id(relationship: MappedObject) -> str | None:
    return _resource_id(relationship.get("person2"))


def is_couple(relationship: MappedObject) -> bool:
    return _matches_type(relationship.get("type"), "Couple")


def get_title(source: MappedObject) -> str | None:
    return (_first(source.get("titles")) or {}).get("value")


def get_citation(source: MappedObject) -> str | None:
    return (_first(source.get("citations")) or {}).get("value")


def get_about(source: MappedObject) -> str | None:
    return source.get("about")


def get_contact_name(user: MappedObject) -> str | None:
    return user.get("contactName")


def get_user_display_name(user: MappedObject) -> str | None:
    return user.get("displayName") or user.get("contactName")


def get_email(user: MappedObject) -> str | None:
    return user.get("email")


def get_person_id(user: MappedObject) -> str | None:
    return user.get("personId")


def get_tree_user_id(user: MappedObject) -> str | None:
    return user.get("treeUserId")


_KINDS: tuple[tuple[str, dict[str, Any]], ...] = (
    ("persons", {"shape": ("persons",)}),
    ("relationships", {"shape": ("relationships",)}),
    ("source-descriptions", {"shape": ("sourceDescriptions",)}),
    ("users", {"shape": ("users",)}),
    (
        "person-with-relationships",
        {
            "shape": ("persons", "relationships"),
            "related": ("persons", "relationships", "source-descriptions"),
        },
    ),
    ("person", {"binding": PERSON_BINDING}),
    ("name", {}),
    ("fact", {}),
    ("relationship", {"binding": RELATIONSHIP_BINDING}),
    ("source-description", {"binding": SOURCE_DESCRIPTION_BINDING}),
    ("user", {}),
)

_ACCESSORS: tuple[tuple[str, tuple[Any, ...]], ...] = (
    ("persons", (get_persons, get_person)),
    ("relationships", (get_relationships,)),
    ("source-descriptions", (get_source_descriptions,)),
    ("users", (get_user,)),
    ("person-with-relationships", (get_primary_person, get_couple_relationships, get_spouse_ids)),
    (
        "person",
        (
            get_names,
            get_preferred_name,
            get_display_name,
            get_given_name,
            get_surname,
            get_facts,
            get_fact,
            get_birth,
            get_death,
            get_birth_date,
            get_birth_place,
            get_death_date,
            get_death_place,
            get_lifespan,
            get_gender,
            is_living,
        ),
    ),
    ("name", (get_full_text, get_given_name, get_surname, is_preferred, get_type)),
    ("fact", (get_type, get_date, get_formal_date, get_place, get_value)),
    ("relationship", (get_type, get_person1_id, get_person2_id, is_couple, get_facts)),
    ("source-description", (get_title, get_citation, get_about)),
    ("user", (get_contact_name, get_email, get_person_id, get_tree_user_id)),
)


def install_defaults(registry: ConvenienceRegistry | None = None) -> ConvenienceRegistry:
    """Declare the default kinds and accessors on a registry.

    Installing twice on the same registry does nothing the second time.
    """
    registry = registry or default_registry
    if registry in _installed:
        return registry

    for kind, declaration in _KINDS:
        registry.declare_kind(kind, **declaration)
    for kind, accessors in _ACCESSORS:
        for func in accessors:
            registry.register(kind, func.__name__, func)
    registry.register("user", "get_display_name", get_user_display_name)

    _installed.add(registry)
    return registry


install_defaults(default_registry)
