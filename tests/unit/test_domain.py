"""
Unit tests for the base domain abstractions and error types.
"""

import pytest

from polydb.errors import SchemaDefinitionError, UniqueConstraintViolation
from polydb.schema.domain import (
    Entity,
    UniqueIdentifier,
    get_domain_properties,
    is_embeddable_domain_class,
    is_plain_class,
)

from tests.models import Address, Priority, User


class TestUniqueIdentifier:
    """Tests for UniqueIdentifier."""

    def test_generated_values_differ(self):
        """Generated identifiers are unique."""
        assert UniqueIdentifier() != UniqueIdentifier()

    def test_parse(self):
        """Strings are wrapped and identifiers pass through."""
        identifier = UniqueIdentifier.parse("abc")
        assert identifier == "abc"
        assert UniqueIdentifier.parse(identifier) is identifier
        assert str(identifier) == "abc"

    def test_parse_rejects_empty(self):
        """Empty values cannot be parsed."""
        with pytest.raises(ValueError):
            UniqueIdentifier.parse("")


class TestEntity:
    """Tests for Entity."""

    def test_equality_by_id(self):
        """Entities with the same id are equal."""
        a = User(name="A", email="a@x.io", id="u1")
        b = User(name="B", email="b@x.io", id="u1")
        assert a == b
        assert hash(a) == hash(b)

    def test_lifecycle_events(self):
        """create() and delete() record events; pull_events drains them."""
        user = User(name="A", email="a@x.io")
        user.create()
        user.delete()

        events = user.pull_events()
        assert [e.name for e in events] == ["created", "deleted"]
        assert events[0].entity_name == "User"
        assert user.pull_events() == []

    def test_touch(self):
        """touch() sets updated_at."""
        user = User(name="A", email="a@x.io")
        user.touch()
        assert user.updated_at is not None


class TestValueObjectAndEnumeration:
    """Tests for ValueObject and Enumeration."""

    def test_value_equality(self):
        """Value objects compare by value."""
        assert Address("1 Main", "X") == Address("1 Main", "X")
        assert Address("1 Main", "X") != Address("2 Main", "X")

    def test_enumeration_members(self):
        """Members are listed in declaration order and found by name."""
        assert [m.name for m in Priority.members()] == ["low", "high"]
        assert Priority.from_name("high") == Priority.HIGH
        with pytest.raises(ValueError):
            Priority.from_name("urgent")


class TestDomainHelpers:
    """Tests for domain helper functions."""

    def test_domain_properties(self):
        """Entity contributes id, created_at and updated_at."""
        assert [key for key, _ in get_domain_properties(Entity)] == ["id", "created_at", "updated_at"]
        assert get_domain_properties(User) == ()

    def test_embeddable(self):
        """Subclasses embed; bases and generics do not."""
        assert is_embeddable_domain_class(Address)
        assert is_embeddable_domain_class(User)
        assert not is_embeddable_domain_class(Entity)
        assert not is_embeddable_domain_class(list[int])

    def test_is_plain_class(self):
        """Parameterized generics are not plain classes."""
        assert is_plain_class(str)
        assert not is_plain_class(list[str])
        assert not is_plain_class("str")


class TestErrors:
    """Tests for error payloads."""

    def test_to_dict(self):
        """Errors serialize their message, code and details."""
        error = UniqueConstraintViolation("dup", entity_name="User", fields=["email"])
        assert error.to_dict() == {
            "error": "dup",
            "error_code": "UNIQUE_CONSTRAINT_VIOLATION",
            "details": {"entity_name": "User", "fields": ["email"]},
        }

    def test_schema_error_context(self):
        """Schema errors carry class and key."""
        error = SchemaDefinitionError("bad", class_name="User", key="email")
        assert error.details == {"class_name": "User", "key": "email"}
