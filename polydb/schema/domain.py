"""
Base domain abstractions and the property shape they contribute.

The schema core does not own identity, timestamps or equality; it only
needs to know which properties the base abstractions persist. This module
provides minimal base classes for model authors to extend and the
DOMAIN_TYPE_MAPPINGS table the registry injects at the root of every
inheritance chain.

- UniqueIdentifier: string-backed identifier wrapper (stored as a string)
- Entity: root aggregate with id, created_at, updated_at
- ValueObject: embeddable value with structural equality
- Enumeration: class-level constant set with (id, name) members
"""

from __future__ import annotations

import typing
import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def generate_id() -> str:
    """Generate a new string identifier."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UniqueIdentifier:
    """String-backed identifier wrapper."""

    __slots__ = ("value",)

    def __init__(self, value: str | None = None) -> None:
        self.value = value or generate_id()

    @classmethod
    def generate(cls) -> UniqueIdentifier:
        return cls()

    @classmethod
    def parse(cls, value: UniqueIdentifier | str) -> UniqueIdentifier:
        """Wrap a raw string, passing existing identifiers through."""
        if isinstance(value, UniqueIdentifier):
            return value
        if not isinstance(value, str) or not value:
            raise ValueError(f"Cannot parse identifier from {value!r}")
        return cls(value)

    def __str__(self) -> str:
        return self.value

    def __repr__(self) -> str:
        return f"UniqueIdentifier({self.value!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, UniqueIdentifier):
            return self.value == other.value
        if isinstance(other, str):
            return self.value == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.value)


@dataclass(frozen=True)
class DomainEvent:
    """Event recorded by an entity and published after a repository write."""

    name: str
    entity_name: str
    entity_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utc_now)


class Entity:
    """Base class for root entities.

    Entities are identified by ``id``; two entities of the same type with
    the same id are equal regardless of their other values.
    """

    def __init__(
        self,
        id: UniqueIdentifier | str | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> None:
        self.id = UniqueIdentifier.parse(id) if id else UniqueIdentifier.generate()
        self.created_at = created_at or utc_now()
        self.updated_at = updated_at
        self._events: list[DomainEvent] = []

    def add_event(self, name: str, **payload: Any) -> None:
        self._events.append(
            DomainEvent(
                name=name,
                entity_name=type(self).__name__,
                entity_id=self.id.value,
                payload=payload,
            )
        )

    def pull_events(self) -> list[DomainEvent]:
        """Return pending events and clear them."""
        events, self._events = self._events, []
        return events

    def create(self) -> None:
        """Lifecycle hook run after a successful insert."""
        self.add_event("created")

    def touch(self) -> None:
        self.updated_at = utc_now()

    def delete(self) -> None:
        """Lifecycle hook run after a successful delete."""
        self.add_event("deleted")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Entity):
            return NotImplemented
        return type(self) is type(other) and self.id == other.id

    def __hash__(self) -> int:
        return hash((type(self), self.id))


class ValueObject:
    """Base class for embeddable values compared by their atomic values."""

    def atomic_values(self) -> Iterator[Any]:
        yield from vars(self).values()

    def __eq__(self, other: object) -> bool:
        if type(self) is not type(other):
            return NotImplemented
        return tuple(self.atomic_values()) == tuple(other.atomic_values())

    def __hash__(self) -> int:
        return hash(tuple(repr(v) for v in self.atomic_values()))


class Enumeration:
    """Base class for class-level constant sets.

    Members are instances assigned as class attributes:

        >>> class Priority(Enumeration):
        ...     pass
        >>> Priority.LOW = Priority(1, "low")
    """

    def __init__(self, id: int, name: str) -> None:
        self.id = id
        self.name = name

    @classmethod
    def members(cls) -> list[Enumeration]:
        """Members in declaration order."""
        return [v for v in vars(cls).values() if isinstance(v, cls)]

    @classmethod
    def from_name(cls, name: str) -> Enumeration:
        for member in cls.members():
            if member.name == name:
                return member
        raise ValueError(f"'{name}' is not a member of {cls.__name__}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Enumeration):
            return NotImplemented
        return type(self) is type(other) and self.id == other.id

    def __hash__(self) -> int:
        return hash((type(self), self.id))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.id!r}, {self.name!r})"


# Properties persisted by the base abstractions, injected as if declared
# at the root of each inheritance chain. An explicit declaration on a
# concrete class always wins.
DOMAIN_TYPE_MAPPINGS: dict[type, tuple[tuple[str, dict[str, Any]], ...]] = {
    Entity: (
        (
            "id",
            {
                "type": UniqueIdentifier,
                "is_identifier": True,
                "default": generate_id,
                "synthetic": True,
            },
        ),
        ("created_at", {"type": datetime}),
        ("updated_at", {"type": datetime, "optional": True}),
    ),
    Enumeration: (
        ("id", {"type": int}),
        ("name", {"type": str}),
    ),
}

DOMAIN_BASES: tuple[type, ...] = (Entity, ValueObject, Enumeration)


def get_domain_properties(cls: type) -> tuple[tuple[str, dict[str, Any]], ...]:
    """Get the injected properties for a domain base class."""
    return DOMAIN_TYPE_MAPPINGS.get(cls, ())


def is_plain_class(cls: Any) -> bool:
    """True for classes, False for parameterized generics such as list[int]."""
    return isinstance(cls, type) and typing.get_origin(cls) is None


def is_root_entity_class(cls: type) -> bool:
    return is_plain_class(cls) and issubclass(cls, Entity)


def is_embeddable_domain_class(cls: Any) -> bool:
    """True for Entity and ValueObject subclasses (not the bases themselves)."""
    return (
        is_plain_class(cls)
        and issubclass(cls, (Entity, ValueObject))
        and cls not in DOMAIN_BASES
    )
