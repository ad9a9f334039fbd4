"""
Error types for polydb.

This module defines all exception types raised by the registry, the
schema compilers and the repository adapters:
- PolyDbError: Base exception
- SchemaDefinitionError: Malformed registration input
- MetadataMissingError: Class or property never registered
- UnresolvedRelationshipTarget: Deferred target resolver failed
- RegistryFrozenError: Registration after freeze
- UniqueConstraintViolation: Insert/update collided on a unique key
- EntityAlreadyExistsError: Insert with an identifier already stored
- EntityNotFoundError: Update/delete against a missing identifier
- HydrationNotConfiguredError: Read before on_hydrate() was called

Invariants:
    - All errors inherit from PolyDbError
    - Every error carries a stable machine-readable code
    - Callers translate errors by code, never by message text
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class PolyDbError(Exception):
    """Base exception for all polydb errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "POLYDB_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to the response body used by API adapters."""
        return {
            "error": self.message,
            "error_code": self.code,
            "details": self.details,
        }


class SchemaDefinitionError(PolyDbError):
    """Registration input is malformed.

    Raised when:
    - An option name is unknown
    - A declared type cannot be mapped to a storage kind
    - A relationship lacks an edge type or target
    - Two different properties claim to be the identifier
    """

    def __init__(
        self,
        message: str,
        class_name: Optional[str] = None,
        key: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="SCHEMA_DEFINITION_ERROR",
            details={"class_name": class_name, "key": key},
        )
        self.class_name = class_name
        self.key = key


class MetadataMissingError(PolyDbError):
    """A class or property was never registered.

    Raised when compilation is attempted for a class with no registered
    metadata, or when a property key is looked up that does not exist.
    """

    def __init__(
        self,
        message: str,
        class_name: str,
        key: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="METADATA_MISSING",
            details={"class_name": class_name, "key": key},
        )
        self.class_name = class_name
        self.key = key


class UnresolvedRelationshipTarget(PolyDbError):
    """A relationship target resolver did not produce a class."""

    def __init__(
        self,
        message: str,
        class_name: str,
        key: str,
    ) -> None:
        super().__init__(
            message,
            code="UNRESOLVED_RELATIONSHIP_TARGET",
            details={"class_name": class_name, "key": key},
        )
        self.class_name = class_name
        self.key = key


class RegistryFrozenError(PolyDbError):
    """Raised when attempting to modify a frozen registry."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="REGISTRY_FROZEN")


class UniqueConstraintViolation(PolyDbError):
    """Insert or update collided with an existing unique value.

    Attributes:
        entity_name: The entity type being written
        fields: The unique field(s) that collided
    """

    def __init__(
        self,
        message: str,
        entity_name: str,
        fields: Optional[List[str]] = None,
    ) -> None:
        fields = fields or []
        super().__init__(
            message,
            code="UNIQUE_CONSTRAINT_VIOLATION",
            details={"entity_name": entity_name, "fields": fields},
        )
        self.entity_name = entity_name
        self.fields = fields


class EntityAlreadyExistsError(PolyDbError):
    """Insert of an identifier that is already stored."""

    def __init__(self, message: str, entity_name: str, entity_id: str) -> None:
        super().__init__(
            message,
            code="ENTITY_ALREADY_EXISTS",
            details={"entity_name": entity_name, "entity_id": entity_id},
        )
        self.entity_name = entity_name
        self.entity_id = entity_id


class EntityNotFoundError(PolyDbError):
    """Update or delete against an identifier that is not stored."""

    def __init__(self, message: str, entity_name: str, entity_id: str) -> None:
        super().__init__(
            message,
            code="ENTITY_NOT_FOUND",
            details={"entity_name": entity_name, "entity_id": entity_id},
        )
        self.entity_name = entity_name
        self.entity_id = entity_id


class HydrationNotConfiguredError(PolyDbError):
    """A repository read ran before on_hydrate() registered a function."""

    def __init__(self, entity_name: str) -> None:
        super().__init__(
            f"Hydrate function not set for '{entity_name}'. Call on_hydrate() first.",
            code="HYDRATE_FUNCTION_NOT_SET",
            details={"entity_name": entity_name},
        )
        self.entity_name = entity_name
