"""
Document-schema compiler.

Compiles a registered class into a nested DocumentSchema suitable for
document stores (MongoDB-style): embedded values become nested
sub-schemas, relationships become reference lists, and the identifier
is exposed under the document id field (``_id`` by default).

Invariants:
    - Relationships never embed the target; they compile to an array of
      string identifiers with a ``ref`` to the target entity name
    - Embedded types recurse at depth + 1; past the limit an empty
      placeholder schema is produced
    - Nested schemas of non-Entity classes carry no identifier field, even
      when the class is registered as a root entity elsewhere
    - Relationship references are never required; the validator accepts a
      list of identifiers, a single identifier (to-one) or null (unset)
    - unique, optional and default are copied verbatim from the merged
      descriptor; identifiers are always unique

Example:
    >>> schema = compile_document_schema(User)
    >>> schema.field("_id").unique
    True
    >>> schema.to_json_schema()["$jsonSchema"]["bsonType"]
    'object'
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from typing import Any, Dict, List, Optional

from ..config import get_settings
from ..schema.classifier import (
    ArrayOf,
    Classification,
    Embedded,
    EnumeratedSet,
    Primitive,
    Relationship,
    WrappedIdentifier,
)
from ..schema.domain import generate_id, is_root_entity_class
from ..schema.registry import MetadataRegistry, get_registry
from ..schema.types import NO_DEFAULT, PropertyDescriptor, ScalarType, render_value
from .guard import EMPTY_DEPTH, log_cutoff, resolve_limit, within_limit

logger = logging.getLogger(__name__)

BSON_TYPES: Dict[ScalarType, str] = {
    ScalarType.STRING: "string",
    ScalarType.INTEGER: "long",
    ScalarType.FLOAT: "double",
    ScalarType.BOOLEAN: "bool",
    ScalarType.DATETIME: "date",
    ScalarType.DATE: "date",
    ScalarType.BYTES: "binData",
    ScalarType.OBJECT: "object",
}


@dataclass(frozen=True)
class DocumentField:
    """A single field of a document schema.

    Attributes:
        name: Field name in the stored document
        type: BSON type name ('array' and 'object' for containers)
        items: BSON type of scalar array elements
        schema: Nested schema for embedded values and arrays of them
        enum: Allowed values
        unique: Unique constraint (None when not declared)
        optional: Optional flag (None when not declared)
        default: Default value or factory
        is_identifier: Whether this field is the document identifier
        ref: Target entity name for relationship references
    """

    name: str
    type: str
    items: Optional[str] = None
    schema: Optional[DocumentSchema] = None
    enum: Optional[tuple] = None
    unique: Optional[bool] = None
    optional: Optional[bool] = None
    default: Any = NO_DEFAULT
    is_identifier: bool = False
    ref: Optional[str] = None

    @property
    def has_default(self) -> bool:
        return self.default is not NO_DEFAULT

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"type": self.type}
        if self.items is not None:
            result["items"] = self.items
        if self.schema is not None:
            result["schema"] = self.schema.to_dict()
        if self.enum is not None:
            result["enum"] = list(self.enum)
        if self.unique is not None:
            result["unique"] = self.unique
        if self.optional is not None:
            result["optional"] = self.optional
        if self.has_default:
            result["default"] = render_value(self.default)
        if self.is_identifier:
            result["is_identifier"] = True
        if self.ref is not None:
            result["ref"] = self.ref
        return result

    def to_json_schema(self) -> Dict[str, Any]:
        """Render as a MongoDB ``$jsonSchema`` property."""
        if self.ref is not None:
            return {"bsonType": ["array", "string", "null"], "items": {"bsonType": "string"}}
        if self.type == "array":
            if self.schema is not None:
                items = self.schema.json_schema_body()
            else:
                items = {"bsonType": self.items}
                if self.enum is not None:
                    items["enum"] = list(self.enum)
            result: Dict[str, Any] = {"bsonType": "array", "items": items}
        elif self.schema is not None:
            result = self.schema.json_schema_body()
        else:
            result = {"bsonType": self.type}
            if self.enum is not None:
                result["enum"] = list(self.enum)
        if self.optional:
            result["bsonType"] = [result["bsonType"], "null"]
        return result


@dataclass(frozen=True)
class DocumentSchema:
    """Compiled document schema of one class.

    Attributes:
        name: Entity name (None for the empty schema)
        fields: Ordered fields
        has_id: Whether documents carry an identifier field
        id_field: Name of the identifier field
        unique_together: Composite unique keys (document field names)
        placeholder: EMPTY_DEPTH when produced past the depth limit
    """

    name: Optional[str] = None
    fields: tuple = dataclass_field(default_factory=tuple)
    has_id: bool = False
    id_field: str = "_id"
    unique_together: tuple = ()
    placeholder: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.fields

    def field(self, name: str) -> Optional[DocumentField]:
        """Get a field by name."""
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "has_id": self.has_id,
            "fields": {f.name: f.to_dict() for f in self.fields},
        }
        if self.has_id:
            result["id_field"] = self.id_field
        if self.unique_together:
            result["unique_together"] = [list(group) for group in self.unique_together]
        if self.placeholder is not None:
            result["placeholder"] = self.placeholder
        return result

    def json_schema_body(self) -> Dict[str, Any]:
        required = [
            f.name
            for f in self.fields
            if f.is_identifier
            or (f.ref is None and f.optional is not True and not f.has_default)
        ]
        body: Dict[str, Any] = {
            "bsonType": "object",
            "properties": {f.name: f.to_json_schema() for f in self.fields},
        }
        if required:
            body["required"] = required
        return body

    def to_json_schema(self) -> Dict[str, Any]:
        """Render as a MongoDB collection validator.

        Example:
            >>> db.create_collection("User", validator=schema.to_json_schema())
        """
        return {"$jsonSchema": self.json_schema_body()}

    def indexes(self) -> List[Dict[str, Any]]:
        """Unique index specifications for the top-level collection.

        The identifier index is created by the store itself and is not
        listed.
        """
        specs = []
        for f in self.fields:
            if f.unique and not f.is_identifier:
                specs.append({"keys": {f.name: 1}, "unique": True, "name": f"{f.name}_1"})
        for group in self.unique_together:
            specs.append(
                {
                    "keys": {name: 1 for name in group},
                    "unique": True,
                    "name": "_".join(f"{name}_1" for name in group),
                }
            )
        return specs


def _field_for(
    registry: MetadataRegistry,
    cls: type,
    prop: PropertyDescriptor,
    name: str,
    limit: int,
    depth: int,
) -> DocumentField:
    c: Optional[Classification] = prop.classification
    options: Dict[str, Any] = {
        "unique": True if prop.is_identifier else prop.unique,
        "optional": prop.optional,
        "default": prop.default,
        "is_identifier": prop.is_identifier,
    }
    if prop.is_identifier and not prop.has_default:
        options["default"] = generate_id

    if isinstance(c, Relationship):
        target = registry.resolve_target(cls, prop)
        return DocumentField(
            name=name, type="array", items="string", ref=registry.name_of(target), **options
        )
    if isinstance(c, ArrayOf):
        inner = c.inner
        if isinstance(inner, Embedded):
            nested = compile_document_schema(
                inner.target, max_depth=limit, depth=depth + 1, registry=registry, embedded=True
            )
            return DocumentField(name=name, type="array", schema=nested, **options)
        if isinstance(inner, EnumeratedSet):
            return DocumentField(
                name=name, type="array", items=BSON_TYPES[inner.scalar], enum=inner.values, **options
            )
        return DocumentField(name=name, type="array", items=BSON_TYPES[inner.scalar], **options)
    if isinstance(c, Embedded):
        nested = compile_document_schema(
            c.target, max_depth=limit, depth=depth + 1, registry=registry, embedded=True
        )
        return DocumentField(name=name, type="object", schema=nested, **options)
    if isinstance(c, EnumeratedSet):
        return DocumentField(name=name, type=BSON_TYPES[c.scalar], enum=c.values, **options)
    if isinstance(c, (WrappedIdentifier, Primitive)):
        return DocumentField(name=name, type=BSON_TYPES[c.scalar], **options)
    raise TypeError(f"Unclassified property '{prop.key}'")


def compile_document_schema(
    cls: Optional[type],
    max_depth: Optional[int] = None,
    depth: int = 0,
    *,
    registry: Optional[MetadataRegistry] = None,
    embedded: bool = False,
) -> DocumentSchema:
    """Compile a registered class into a DocumentSchema.

    Args:
        cls: The class to compile (None yields an empty schema)
        max_depth: Embedded recursion limit (defaults to settings.max_depth)
        depth: Current depth; callers normally leave this at 0
        registry: Registry to read from (defaults to the global registry)
        embedded: Whether cls is compiled as a value nested in another
            document; non-entity classes then carry no identifier

    Returns:
        DocumentSchema, empty when cls is None or depth exceeds the limit

    Raises:
        MetadataMissingError: If cls or an embedded type is not registered
        UnresolvedRelationshipTarget: If a relationship target cannot be resolved
    """
    limit = resolve_limit(max_depth)
    settings = get_settings()
    if cls is None:
        return DocumentSchema(id_field=settings.document_id_field)
    if not within_limit(depth, limit):
        log_cutoff(cls.__name__, depth, limit)
        return DocumentSchema(
            name=cls.__name__, id_field=settings.document_id_field, placeholder=EMPTY_DEPTH
        )

    registry = registry or get_registry()
    descriptor = registry.get_merged_descriptor(cls)
    id_field = settings.document_id_field
    keep_id = descriptor.identifier is not None and (
        not embedded or is_root_entity_class(cls)
    )

    renamed: Dict[str, str] = {}
    fields = []
    for prop in descriptor.properties:
        if prop.is_identifier and not keep_id:
            continue
        name = id_field if prop.is_identifier else prop.key
        renamed[prop.key] = name
        fields.append(_field_for(registry, cls, prop, name, limit, depth))

    schema = DocumentSchema(
        name=descriptor.name,
        fields=tuple(fields),
        has_id=keep_id,
        id_field=id_field,
        unique_together=tuple(
            tuple(renamed[key] for key in group)
            for group in descriptor.unique_together
            if all(key in renamed for key in group)
        ),
    )
    logger.debug(f"Compiled document schema for {descriptor.name} at depth {depth}")
    return schema
