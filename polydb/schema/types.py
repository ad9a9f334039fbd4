"""
Core descriptor types for the polydb schema system.

This module defines the foundational types for schema metadata:
- ScalarType: Storage-neutral scalar kinds
- StorageKind: Closed tag attached to every classified property
- RelationshipDescriptor: Link from one class to another
- PropertyDescriptor: One property's storage configuration
- ClassDescriptor: Merged, de-duplicated properties of a class hierarchy

Invariants:
    - Property keys are unique within a ClassDescriptor
    - At most one property of a ClassDescriptor is the identifier
    - Descriptors are frozen once the registry has merged them
    - Relationship targets are resolved at compile time, never at declaration

Example:
    >>> from polydb.schema.types import PropertyDescriptor
    >>> PropertyDescriptor(key="email", declared_type=str, unique=True)
"""

from __future__ import annotations

import typing
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..errors import SchemaDefinitionError, UnresolvedRelationshipTarget

if TYPE_CHECKING:
    from .classifier import Classification


class ScalarType(Enum):
    """Storage-neutral scalar kinds.

    Each backend compiler maps these to its own type names.
    """

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    DATE = "date"
    BYTES = "bytes"
    OBJECT = "object"  # Opaque JSON-like value


class StorageKind(Enum):
    """Semantic storage kind produced by the type classifier."""

    PRIMITIVE = "primitive"
    WRAPPED_IDENTIFIER = "wrapped_identifier"
    ENUMERATED_SET = "enumerated_set"
    EMBEDDED = "embedded"
    ARRAY = "array"
    RELATIONSHIP = "relationship"


class Direction(Enum):
    """Direction of a graph relationship relative to the declaring class."""

    INCOMING = "INCOMING"
    OUTGOING = "OUTGOING"
    BOTH = "BOTH"

    @classmethod
    def from_str(cls, value: str) -> Direction:
        """Convert string representation to Direction.

        Raises:
            SchemaDefinitionError: If value is not a valid direction
        """
        for direction in cls:
            if direction.value == value.upper():
                return direction
        valid = [d.value for d in cls]
        raise SchemaDefinitionError(f"Invalid direction '{value}'. Valid directions: {valid}")


class Cardinality(Enum):
    """Relationship shape between two related classes."""

    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_ONE = "many-to-one"
    MANY_TO_MANY = "many-to-many"

    @classmethod
    def from_str(cls, value: str) -> Cardinality:
        """Convert string representation to Cardinality.

        Accepts both ``one-to-many`` and ``one_to_many`` spellings.

        Raises:
            SchemaDefinitionError: If value is not a valid cardinality
        """
        normalized = value.lower().replace("_", "-")
        for cardinality in cls:
            if cardinality.value == normalized:
                return cardinality
        valid = [c.value for c in cls]
        raise SchemaDefinitionError(f"Invalid cardinality '{value}'. Valid values: {valid}")


class _NoDefault:
    """Marker for a property declared without a default."""

    _instance: _NoDefault | None = None

    def __new__(cls) -> _NoDefault:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NO_DEFAULT"

    def __bool__(self) -> bool:
        return False


NO_DEFAULT: Any = _NoDefault()


def type_name(declared_type: Any) -> str:
    """Render a declared type as a stable, human-readable name."""
    if declared_type is None:
        return "None"
    if isinstance(declared_type, list):
        inner = declared_type[0] if declared_type else None
        return f"list[{type_name(inner)}]"
    if typing.get_origin(declared_type) is not None:
        return repr(declared_type).replace("typing.", "")
    if isinstance(declared_type, type):
        return declared_type.__name__
    return repr(declared_type)


def render_value(value: Any) -> Any:
    """Render a default value for JSON output (factories by name)."""
    if callable(value):
        return f"factory:{getattr(value, '__name__', type(value).__name__)}"
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass(frozen=True)
class RelationshipDescriptor:
    """Link from the declaring class to a target class.

    Attributes:
        edge_type: Relationship type name (e.g. 'HAS_ORDER')
        target: Target class, registered entity name, or a zero-argument
            resolver returning the class (breaks circular references)
        direction: Graph direction relative to the declaring class
        cardinality: Relational shape (None means graph-only)
        owner: Whether the declaring class owns the join configuration
        inverse_property: Property on the target pointing back
        join_columns: Join column name(s); two names for many-to-many
        join_table: Join table name for many-to-many
        cascade: True/False or a tuple of cascaded operations
        eager: Whether the relation is eagerly loaded
        edge_properties: Source property names copied onto the edge

    Invariants:
        - edge_type is non-empty
        - target is resolved only by resolve_target(), at compile time
    """

    edge_type: str
    target: Any
    direction: Direction = Direction.OUTGOING
    cardinality: Cardinality | None = None
    owner: bool = False
    inverse_property: str | None = None
    join_columns: tuple[str, ...] = ()
    join_table: str | None = None
    cascade: bool | tuple[str, ...] = False
    eager: bool = False
    edge_properties: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate relationship definition."""
        if not self.edge_type:
            raise SchemaDefinitionError("Relationship edge_type cannot be empty")
        if self.target is None:
            raise SchemaDefinitionError(
                f"Relationship '{self.edge_type}' requires a target"
            )
        if not (isinstance(self.target, (type, str)) or callable(self.target)):
            raise SchemaDefinitionError(
                f"Relationship '{self.edge_type}' target must be a class, "
                f"an entity name or a resolver, got {type(self.target).__name__}"
            )

    @property
    def is_deferred(self) -> bool:
        return not isinstance(self.target, type)

    def resolve_target(
        self,
        class_name: str,
        key: str,
        lookup: Callable[[str], type | None] | None = None,
    ) -> type:
        """Resolve the target class.

        Args:
            class_name: Declaring class name (for error context)
            key: Declaring property key (for error context)
            lookup: Resolves registered entity names to classes

        Returns:
            The target class

        Raises:
            UnresolvedRelationshipTarget: If no class can be produced
        """
        target = self.target
        if isinstance(target, str):
            resolved = lookup(target) if lookup else None
        elif isinstance(target, type):
            resolved = target
        else:
            try:
                resolved = target()
            except Exception as e:
                raise UnresolvedRelationshipTarget(
                    f"Target resolver for '{class_name}.{key}' failed: {e}",
                    class_name=class_name,
                    key=key,
                ) from e
        if not isinstance(resolved, type):
            raise UnresolvedRelationshipTarget(
                f"Target of '{class_name}.{key}' did not resolve to a class (got {resolved!r})",
                class_name=class_name,
                key=key,
            )
        return resolved


@dataclass(frozen=True)
class PropertyDescriptor:
    """Storage configuration of a single property.

    Attributes:
        key: Attribute name on the class
        declared_type: The declared Python type (str, list[str], a class ...)
        unique: Unique constraint (None when not declared)
        optional: Nullable/optional flag (None when not declared)
        is_identifier: Whether this is the hierarchy's identifier
        enum_values: Explicit or inferred enumerated values
        default: Default value or zero-argument factory
        relationship: Relationship metadata, if this property is a link
        classification: Storage classification attached at merge time
        synthetic: Injected by a domain base rather than declared

    Invariants:
        - key is non-empty
        - identifiers always carry a uniqueness constraint when compiled
    """

    key: str
    declared_type: Any = None
    unique: bool | None = None
    optional: bool | None = None
    is_identifier: bool = False
    enum_values: tuple[Any, ...] | None = None
    default: Any = NO_DEFAULT
    relationship: RelationshipDescriptor | None = None
    classification: Classification | None = None
    synthetic: bool = False

    def __post_init__(self) -> None:
        if not self.key:
            raise SchemaDefinitionError("Property key cannot be empty")

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT

    @property
    def is_unique(self) -> bool:
        """True if compiled with a uniqueness constraint."""
        return bool(self.unique) or self.is_identifier

    @property
    def kind(self) -> StorageKind | None:
        return self.classification.kind if self.classification is not None else None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {
            "key": self.key,
            "type": type_name(self.declared_type),
        }
        if self.classification is not None:
            result["kind"] = self.classification.kind.value
        if self.unique is not None:
            result["unique"] = self.unique
        if self.optional is not None:
            result["optional"] = self.optional
        if self.is_identifier:
            result["is_identifier"] = True
        if self.enum_values is not None:
            result["enum"] = list(self.enum_values)
        if self.has_default:
            result["default"] = render_value(self.default)
        if self.relationship is not None:
            rel = self.relationship
            result["relationship"] = {
                "edge_type": rel.edge_type,
                "direction": rel.direction.value,
                "cardinality": rel.cardinality.value if rel.cardinality else None,
                "owner": rel.owner,
            }
        return result


@dataclass(frozen=True)
class ClassDescriptor:
    """Merged property declarations of a class and its ancestors.

    Attributes:
        cls: The described class
        name: Entity name (label / table name)
        properties: Ordered, de-duplicated properties (base to derived)
        embedded: Whether the class is stored inline within its owner
        unique_together: Composite unique keys

    Example:
        >>> descriptor = registry.get_merged_descriptor(User)
        >>> descriptor.get("email").unique
        True
    """

    cls: type
    name: str
    properties: tuple[PropertyDescriptor, ...] = dataclass_field(default_factory=tuple)
    embedded: bool = False
    unique_together: tuple[tuple[str, ...], ...] = ()

    def __post_init__(self) -> None:
        keys = [p.key for p in self.properties]
        if len(keys) != len(set(keys)):
            raise SchemaDefinitionError(
                f"Duplicate property key in class '{self.name}'", class_name=self.name
            )

    def get(self, key: str) -> PropertyDescriptor | None:
        """Get a property by key."""
        for prop in self.properties:
            if prop.key == key:
                return prop
        return None

    def keys(self) -> list[str]:
        return [p.key for p in self.properties]

    @property
    def identifier(self) -> PropertyDescriptor | None:
        for prop in self.properties:
            if prop.is_identifier:
                return prop
        return None

    @property
    def unique_properties(self) -> list[PropertyDescriptor]:
        """Non-identifier properties with a unique constraint."""
        return [p for p in self.properties if p.unique and not p.is_identifier]

    @property
    def relationships(self) -> list[PropertyDescriptor]:
        return [p for p in self.properties if p.relationship is not None]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "name": self.name,
            "embedded": self.embedded,
            "properties": [p.to_dict() for p in self.properties],
        }
        if self.unique_together:
            result["unique_together"] = [list(group) for group in self.unique_together]
        return result
