"""
Type classifier for declared property types.

Maps a declared type to one of a closed set of storage classifications:

- Primitive(scalar): str, int, float, bool, datetime, date, bytes, dict
- WrappedIdentifier: UniqueIdentifier (a string in every backend)
- EnumeratedSet(scalar, values): explicit ``enum=`` values, enum.Enum,
  Enumeration subclasses and typing.Literal
- Embedded(target): Entity/ValueObject subclasses and registered classes
- ArrayOf(inner): list[T], tuple[T, ...], set[T] and the ``[T]`` shorthand
- Relationship(descriptor): any property carrying relationship metadata

Resolution order:
    relationship -> enumerated set -> wrapped identifier -> array ->
    embedded -> primitive

Invariants:
    - Array elements are classified with the same rules as scalars
    - Explicit enum values always override inferred ones
    - Numeric-only value sets map to a numeric scalar, others to string
"""

from __future__ import annotations

import enum
import typing
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, ClassVar, Literal, Union

from ..errors import SchemaDefinitionError
from .domain import Enumeration, UniqueIdentifier, is_embeddable_domain_class, is_plain_class
from .types import RelationshipDescriptor, ScalarType, StorageKind

PRIMITIVE_TYPES: dict[Any, ScalarType] = {
    str: ScalarType.STRING,
    int: ScalarType.INTEGER,
    float: ScalarType.FLOAT,
    bool: ScalarType.BOOLEAN,
    datetime: ScalarType.DATETIME,
    date: ScalarType.DATE,
    bytes: ScalarType.BYTES,
    dict: ScalarType.OBJECT,
    object: ScalarType.OBJECT,
    Any: ScalarType.OBJECT,
}

_ARRAY_ORIGINS = (list, tuple, set, frozenset)


def primitive_scalar(declared_type: Any) -> ScalarType | None:
    """Scalar type of a primitive declared type, or None."""
    try:
        return PRIMITIVE_TYPES.get(declared_type)
    except TypeError:
        return None


@dataclass(frozen=True)
class Primitive:
    scalar: ScalarType
    kind: ClassVar[StorageKind] = StorageKind.PRIMITIVE


@dataclass(frozen=True)
class WrappedIdentifier:
    scalar: ClassVar[ScalarType] = ScalarType.STRING
    kind: ClassVar[StorageKind] = StorageKind.WRAPPED_IDENTIFIER


@dataclass(frozen=True)
class EnumeratedSet:
    scalar: ScalarType
    values: tuple[Any, ...]
    kind: ClassVar[StorageKind] = StorageKind.ENUMERATED_SET


@dataclass(frozen=True)
class Embedded:
    target: type
    kind: ClassVar[StorageKind] = StorageKind.EMBEDDED


@dataclass(frozen=True)
class ArrayOf:
    inner: Classification
    kind: ClassVar[StorageKind] = StorageKind.ARRAY


@dataclass(frozen=True)
class Relationship:
    descriptor: RelationshipDescriptor
    kind: ClassVar[StorageKind] = StorageKind.RELATIONSHIP


Classification = Union[Primitive, WrappedIdentifier, EnumeratedSet, Embedded, ArrayOf, Relationship]


def unwrap_optional(declared_type: Any) -> tuple[Any, bool]:
    """Strip ``Optional[T]`` / ``T | None``.

    Returns:
        Tuple of (inner_type, was_optional)
    """
    args = typing.get_args(declared_type)
    origin = typing.get_origin(declared_type)
    if origin is Union or type(declared_type).__name__ == "UnionType":
        non_none = [a for a in args if a is not type(None)]
        if len(non_none) == 1 and len(non_none) != len(args):
            return non_none[0], True
        raise SchemaDefinitionError(f"Union types are not supported: {declared_type!r}")
    return declared_type, False


def array_element_type(declared_type: Any) -> tuple[bool, Any]:
    """Detect array types.

    Returns:
        Tuple of (is_array, element_type)
    """
    if isinstance(declared_type, list):
        if len(declared_type) != 1:
            raise SchemaDefinitionError(
                f"Array shorthand must name exactly one element type, got {declared_type!r}"
            )
        return True, declared_type[0]
    if declared_type in _ARRAY_ORIGINS:
        return True, object
    origin = typing.get_origin(declared_type)
    if origin in _ARRAY_ORIGINS:
        args = typing.get_args(declared_type)
        return True, args[0] if args else object
    return False, None


def scalar_for_values(values: tuple[Any, ...]) -> ScalarType:
    """Pick the scalar type for an enumerated value set."""
    if values and all(isinstance(v, int) and not isinstance(v, bool) for v in values):
        return ScalarType.INTEGER
    if values and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in values):
        return ScalarType.FLOAT
    return ScalarType.STRING


def inferred_enum_values(declared_type: Any) -> tuple[Any, ...] | None:
    """Enumerated values of a finite constant-set type, or None."""
    if is_plain_class(declared_type):
        if issubclass(declared_type, enum.Enum):
            return tuple(member.value for member in declared_type)
        if issubclass(declared_type, Enumeration) and declared_type is not Enumeration:
            return tuple(member.name for member in declared_type.members())
    if typing.get_origin(declared_type) is Literal:
        return tuple(typing.get_args(declared_type))
    return None


def is_supported_type(declared_type: Any) -> bool:
    """Shallow check used at registration time.

    Classes are accepted even when not yet registered so that models can
    be declared in any order; they are checked again at compile time.
    """
    if declared_type is None or primitive_scalar(declared_type) is not None:
        return True
    try:
        inner, _ = unwrap_optional(declared_type)
        is_array, element = array_element_type(inner)
    except SchemaDefinitionError:
        return False
    if is_array:
        return is_supported_type(element)
    if is_plain_class(inner):
        return True
    origin = typing.get_origin(inner)
    return origin is Literal or origin is dict


def classify(
    declared_type: Any,
    *,
    enum_values: tuple[Any, ...] | None = None,
    relationship: RelationshipDescriptor | None = None,
    is_embeddable: Callable[[type], bool] | None = None,
) -> Classification:
    """Classify a declared type into a storage representation.

    Args:
        declared_type: The declared type
        enum_values: Explicit enumerated values (override inferred ones)
        relationship: Relationship metadata, if any
        is_embeddable: Predicate for registered embeddable classes; the
            default accepts Entity and ValueObject subclasses

    Returns:
        The classification

    Raises:
        SchemaDefinitionError: If the type cannot be mapped
    """
    if relationship is not None:
        return Relationship(relationship)

    declared_type, _ = unwrap_optional(declared_type)
    is_array, element = array_element_type(declared_type)
    embeddable = is_embeddable or is_embeddable_domain_class

    if enum_values is not None and not is_array:
        values = tuple(enum_values)
        scalar = primitive_scalar(declared_type)
        if scalar is None or scalar == ScalarType.OBJECT:
            scalar = scalar_for_values(values)
        return EnumeratedSet(scalar, values)

    inferred = inferred_enum_values(declared_type)
    if inferred is not None:
        return EnumeratedSet(scalar_for_values(inferred), inferred)

    if declared_type is UniqueIdentifier:
        return WrappedIdentifier()

    if is_array:
        inner = classify(element, enum_values=enum_values, is_embeddable=is_embeddable)
        if isinstance(inner, ArrayOf):
            raise SchemaDefinitionError(f"Nested arrays are not supported: {declared_type!r}")
        return ArrayOf(inner)

    if is_plain_class(declared_type) and primitive_scalar(declared_type) is None:
        if embeddable(declared_type):
            return Embedded(declared_type)

    scalar = primitive_scalar(declared_type)
    if scalar is None and typing.get_origin(declared_type) is dict:
        scalar = ScalarType.OBJECT
    if scalar is None:
        if declared_type is None:
            raise SchemaDefinitionError("Property has no declared type")
        raise SchemaDefinitionError(f"Unsupported declared type: {declared_type!r}")
    return Primitive(scalar)
