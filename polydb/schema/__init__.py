"""
Schema module for polydb.

This module provides the declarative model description, including:
- Base domain abstractions (Entity, ValueObject, Enumeration)
- Descriptor types (PropertyDescriptor, RelationshipDescriptor, ClassDescriptor)
- Type classification into storage kinds
- Metadata registry with inheritance-aware merging

Invariants:
    - Property keys are unique within a merged ClassDescriptor
    - Exactly one identifier per hierarchy
    - Descriptors are immutable once merged

How to change safely:
    - Register every class before compiling it
    - Prefer explicit ``enum=`` values over inferred enumerations
    - Use lazy relationship targets for mutually-referencing classes
"""

from .classifier import (
    ArrayOf,
    Classification,
    Embedded,
    EnumeratedSet,
    Primitive,
    Relationship,
    WrappedIdentifier,
    classify,
)
from .domain import (
    DomainEvent,
    Entity,
    Enumeration,
    UniqueIdentifier,
    ValueObject,
    generate_id,
)
from .registry import (
    MetadataRegistry,
    entity,
    freeze_registry,
    get_registry,
    register_bulk,
    register_entity,
    register_property,
    register_relationship,
    reset_registry,
)
from .types import (
    Cardinality,
    ClassDescriptor,
    Direction,
    PropertyDescriptor,
    RelationshipDescriptor,
    ScalarType,
    StorageKind,
)

__all__ = [
    # Domain
    "Entity",
    "ValueObject",
    "Enumeration",
    "UniqueIdentifier",
    "DomainEvent",
    "generate_id",
    # Types
    "ScalarType",
    "StorageKind",
    "Direction",
    "Cardinality",
    "PropertyDescriptor",
    "RelationshipDescriptor",
    "ClassDescriptor",
    # Classifier
    "Classification",
    "Primitive",
    "WrappedIdentifier",
    "EnumeratedSet",
    "Embedded",
    "ArrayOf",
    "Relationship",
    "classify",
    # Registry
    "MetadataRegistry",
    "get_registry",
    "reset_registry",
    "freeze_registry",
    "register_entity",
    "register_property",
    "register_relationship",
    "register_bulk",
    "entity",
]
