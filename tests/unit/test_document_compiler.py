"""
Unit tests for the document-schema compiler.

Tests cover:
- Field mapping and the _id identifier
- Embedded values, arrays and references
- Depth-limited recursion
- $jsonSchema and index rendering
"""

import pytest

from polydb.compilers import compile_document_schema
from polydb.compilers.guard import EMPTY_DEPTH
from polydb.config import reset_settings
from polydb.errors import MetadataMissingError, UnresolvedRelationshipTarget
from polydb.repository.base import to_record
from polydb.schema import Entity, MetadataRegistry
from polydb.schema.domain import generate_id

from tests.models import (
    Legacy,
    Membership,
    Order,
    Ticket,
    TreeNode,
    User,
    build_registry,
)


@pytest.fixture
def registry():
    return build_registry()


class TestFieldMapping:
    """Tests for top-level fields."""

    def test_field_order_and_id(self, registry):
        """The identifier is emitted as _id, other keys keep their order."""
        schema = compile_document_schema(User, registry=registry)

        assert schema.name == "User"
        assert schema.has_id is True
        assert schema.field_names()[:3] == ["_id", "created_at", "updated_at"]
        assert "id" not in schema.field_names()

    def test_identifier_field(self, registry):
        """The identifier is a unique string with a generated default."""
        id_field = compile_document_schema(User, registry=registry).field("_id")

        assert id_field.type == "string"
        assert id_field.unique is True
        assert id_field.is_identifier is True
        assert id_field.default is generate_id

    def test_scalar_fields(self, registry):
        """Scalars map to BSON type names."""
        schema = compile_document_schema(User, registry=registry)

        assert schema.field("name").type == "string"
        assert schema.field("created_at").type == "date"
        assert schema.field("active").type == "bool"
        assert schema.field("active").default is True
        assert schema.field("email").unique is True
        assert schema.field("name").unique is None

    def test_explicit_enum(self, registry):
        """Explicit values are carried on the field."""
        role = compile_document_schema(User, registry=registry).field("role")
        assert role.type == "string"
        assert role.enum == ("admin", "member")

    def test_inferred_enum(self, registry):
        """enum.Enum types enumerate their values."""
        status = compile_document_schema(Order, registry=registry).field("status")
        assert status.enum == ("pending", "shipped")

    def test_array_of_strings(self, registry):
        """list[str] is an array with string items."""
        tags = compile_document_schema(User, registry=registry).field("tags")
        assert tags.type == "array"
        assert tags.items == "string"
        assert tags.optional is True

    def test_embedded_value(self, registry):
        """Embedded values carry their nested schema."""
        address = compile_document_schema(User, registry=registry).field("address")

        assert address.type == "object"
        assert address.schema.field_names() == ["street", "city"]
        assert address.schema.has_id is False

    def test_embedded_plain_class_has_no_id(self):
        """A registered plain class nested in an entity carries no _id."""

        class Coord:
            pass

        class Place(Entity):
            pass

        registry = MetadataRegistry()
        registry.register_entity(Coord)
        registry.register_property(Coord, "x", type=float)
        registry.register_property(Place, "where", type=Coord)

        where = compile_document_schema(Place, registry=registry).field("where")

        assert where.type == "object"
        assert where.schema.field("_id") is None
        assert where.schema.has_id is False
        assert where.schema.field_names() == ["x"]
        # Compiled on its own, the root class keeps its identifier
        assert compile_document_schema(Coord, registry=registry).has_id is True

    def test_embedded_entity_keeps_id(self):
        """An Entity subclass nested in another entity keeps its _id."""

        class Owner(Entity):
            pass

        class Pet(Entity):
            pass

        registry = MetadataRegistry()
        registry.register_property(Owner, "name", type=str)
        registry.register_property(Pet, "owner", type=Owner)

        owner = compile_document_schema(Pet, registry=registry).field("owner")
        assert owner.schema.has_id is True
        assert owner.schema.field_names()[0] == "_id"

    def test_relationship_reference(self, registry):
        """Relationships are arrays of string references to the target."""
        customer = compile_document_schema(Order, registry=registry).field("customer")

        assert customer.type == "array"
        assert customer.items == "string"
        assert customer.ref == "User"

    def test_explicit_underscore_id(self, registry):
        """An explicit _id identifier stays _id."""
        schema = compile_document_schema(Legacy, registry=registry)
        assert schema.field_names() == ["_id", "payload"]
        assert schema.field("payload").type == "object"

    def test_none_yields_empty_schema(self):
        """Compiling None gives an empty schema without identifier."""
        schema = compile_document_schema(None)
        assert schema.is_empty
        assert schema.has_id is False

    def test_unregistered_class(self):
        """Unregistered classes raise MetadataMissingError."""

        class Stray:
            pass

        with pytest.raises(MetadataMissingError):
            compile_document_schema(Stray, registry=MetadataRegistry())

    def test_unresolved_relationship(self):
        """Unresolvable targets abort compilation."""
        registry = MetadataRegistry()
        registry.register_relationship(Order, "customer", edge_type="PLACED_BY", target=lambda: None)

        with pytest.raises(UnresolvedRelationshipTarget):
            compile_document_schema(Order, registry=registry)


class TestInheritance:
    """Tests for merged options in compiled fields."""

    def test_optional_override(self):
        """Base and derived compile with their own optional flag."""

        class Base(Entity):
            pass

        class Derived(Base):
            pass

        registry = MetadataRegistry()
        registry.register_property(Base, "status", type=str, optional=True)
        registry.register_property(Derived, "status", optional=False)

        assert compile_document_schema(Base, registry=registry).field("status").optional is True
        assert compile_document_schema(Derived, registry=registry).field("status").optional is False


class TestDepthLimit:
    """Tests for bounded recursion into embedded types."""

    def test_schema_at_limit_is_expanded(self, registry):
        """A class at exactly the limit still compiles its fields."""
        schema = compile_document_schema(TreeNode, max_depth=2, depth=2, registry=registry)

        assert not schema.is_empty
        assert schema.field_names() == ["label", "child"]

    def test_schema_past_limit_is_placeholder(self, registry):
        """One level past the limit yields an empty placeholder."""
        schema = compile_document_schema(TreeNode, max_depth=2, depth=3, registry=registry)

        assert schema.is_empty
        assert schema.placeholder == EMPTY_DEPTH
        assert schema.name == "TreeNode"

    def test_self_reference_terminates(self, registry):
        """A self-referential embedded chain stops at the limit."""
        schema = compile_document_schema(TreeNode, max_depth=2, registry=registry)

        for _ in range(2):
            schema = schema.field("child").schema
            assert not schema.is_empty
        assert schema.field("child").schema.is_empty

    def test_default_limit_from_settings(self, registry, monkeypatch):
        """The default limit comes from POLYDB_MAX_DEPTH."""
        monkeypatch.setenv("POLYDB_MAX_DEPTH", "1")
        reset_settings()
        try:
            schema = compile_document_schema(TreeNode, registry=registry)
            child = schema.field("child").schema
            assert not child.is_empty
            assert child.field("child").schema.is_empty
        finally:
            monkeypatch.delenv("POLYDB_MAX_DEPTH")
            reset_settings()

    def test_negative_limit_rejected(self, registry):
        """Negative limits are invalid."""
        with pytest.raises(ValueError):
            compile_document_schema(TreeNode, max_depth=-1, registry=registry)


class TestRendering:
    """Tests for $jsonSchema and index output."""

    def test_json_schema(self, registry):
        """The validator lists required fields and nullable optionals."""
        body = compile_document_schema(User, registry=registry).to_json_schema()["$jsonSchema"]

        assert body["bsonType"] == "object"
        assert "_id" in body["required"]
        assert "email" in body["required"]
        assert "updated_at" not in body["required"]
        assert "role" not in body["required"]
        assert body["properties"]["updated_at"]["bsonType"] == ["date", "null"]
        assert body["properties"]["role"]["enum"] == ["admin", "member"]
        assert body["properties"]["tags"]["items"] == {"bsonType": "string"}
        assert body["properties"]["address"]["properties"]["city"] == {"bsonType": "string"}

    def test_references_accept_unset_relations(self, registry):
        """Reference fields are not required and accept an id, a list or null."""
        body = compile_document_schema(User, registry=registry).to_json_schema()["$jsonSchema"]

        assert "orders" not in body["required"]
        assert body["required"] == ["_id", "created_at", "name", "email"]
        assert body["properties"]["orders"] == {
            "bsonType": ["array", "string", "null"],
            "items": {"bsonType": "string"},
        }

        record = to_record(User(name="A", email="a@x.io"), registry.get_merged_descriptor(User))
        assert record["orders"] is None

    def test_to_one_reference_shape(self, registry):
        """A to-one reference record is a single id, which the validator accepts."""
        user = User(name="A", email="a@x.io", id="u1")
        order = Order(total=10.0, customer=user)

        record = to_record(order, registry.get_merged_descriptor(Order))
        body = compile_document_schema(Order, registry=registry).to_json_schema()["$jsonSchema"]

        assert record["customer"] == "u1"
        assert "string" in body["properties"]["customer"]["bsonType"]
        assert "customer" not in body["required"]

    def test_unique_indexes(self, registry):
        """Unique fields produce indexes; the identifier does not."""
        indexes = compile_document_schema(User, registry=registry).indexes()
        assert indexes == [{"keys": {"email": 1}, "unique": True, "name": "email_1"}]

    def test_compound_index(self, registry):
        """unique_together produces a compound unique index."""
        indexes = compile_document_schema(Membership, registry=registry).indexes()
        assert {"keys": {"org": 1, "member": 1}, "unique": True, "name": "org_1_member_1"} in indexes

    def test_to_dict(self, registry):
        """Serialized schemas render factories by name."""
        data = compile_document_schema(Ticket, registry=registry).to_dict()

        assert data["id_field"] == "_id"
        assert data["fields"]["_id"]["default"] == "factory:generate_id"
        assert data["fields"]["grade"]["enum"] == ["A", "B"]
        assert data["fields"]["priority"]["enum"] == ["low", "high"]
