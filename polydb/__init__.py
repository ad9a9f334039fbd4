"""
polydb - one model description, three persistence schemas.

This package compiles a single declarative description of a domain model
(properties, constraints, relationships) into:
- a nested document schema (MongoDB-style, ``_id`` identifier)
- a labeled-property-graph schema (nodes + relationships)
- a relational schema (columns + relation descriptors)

Architecture:
    ┌──────────────┐     ┌──────────────────┐     ┌────────────────────┐
    │ Model author │────▶│ MetadataRegistry │────▶│ Merged descriptors │
    └──────────────┘     └──────────────────┘     └─────────┬──────────┘
                                                            │
                         ┌──────────────────────────────────┼───────────────────┐
                         ▼                                  ▼                   ▼
                  ┌────────────┐                     ┌────────────┐      ┌────────────┐
                  │  Document  │                     │   Graph    │      │ Relational │
                  │  compiler  │                     │  compiler  │      │  compiler  │
                  └─────┬──────┘                     └─────┬──────┘      └─────┬──────┘
                        ▼                                  ▼                   ▼
                               Repository adapters (async, hydrate on read)

Invariants:
    - Exactly one identifier per class hierarchy
    - Derived declarations override base declarations field by field
    - Embedded recursion is bounded; past the limit a placeholder is emitted
    - unique and identifier properties are unique in every backend

Example:
    >>> from polydb import Entity, register_entity, register_bulk, compile_document_schema
    >>> class User(Entity):
    ...     pass
    >>> register_entity(User)
    >>> register_bulk(User, {"email": {"type": str, "unique": True}})
    >>> compile_document_schema(User).field("email").unique
    True
"""

from .compilers import (
    compile_document_schema,
    compile_graph_schema,
    compile_relational_schema,
    compile_schema,
)
from .errors import (
    EntityAlreadyExistsError,
    EntityNotFoundError,
    HydrationNotConfiguredError,
    MetadataMissingError,
    PolyDbError,
    RegistryFrozenError,
    SchemaDefinitionError,
    UniqueConstraintViolation,
    UnresolvedRelationshipTarget,
)
from .schema import (
    Entity,
    Enumeration,
    MetadataRegistry,
    UniqueIdentifier,
    ValueObject,
    entity,
    get_registry,
    register_bulk,
    register_entity,
    register_property,
    register_relationship,
    reset_registry,
)

__version__ = "0.1.0"

__all__ = [
    # Domain
    "Entity",
    "ValueObject",
    "Enumeration",
    "UniqueIdentifier",
    # Registry
    "MetadataRegistry",
    "get_registry",
    "reset_registry",
    "register_entity",
    "register_property",
    "register_relationship",
    "register_bulk",
    "entity",
    # Compilers
    "compile_document_schema",
    "compile_graph_schema",
    "compile_relational_schema",
    "compile_schema",
    # Errors
    "PolyDbError",
    "SchemaDefinitionError",
    "MetadataMissingError",
    "UnresolvedRelationshipTarget",
    "RegistryFrozenError",
    "UniqueConstraintViolation",
    "EntityAlreadyExistsError",
    "EntityNotFoundError",
    "HydrationNotConfiguredError",
]
