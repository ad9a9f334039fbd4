"""
Relational-schema compiler.

Compiles a registered class into a table definition: scalar properties
become columns, embedded values become one serialized JSON column, and
relationships become relation descriptors rather than columns.

Invariants:
    - Identifiers compile to the primary key and are always unique
    - An identifier keyed ``_id`` is renamed to ``id``
    - Embedded structures are never normalized into extra tables
    - Relationships without a cardinality are skipped with a warning
    - Past the depth limit the placeholder ``EmptyEntity`` is produced

How to change safely:
    - Column types are engine-neutral names; adapters map them to their
      engine (see polydb.repository.sqlite)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from ..config import get_settings
from ..schema.classifier import (
    ArrayOf,
    Embedded,
    EnumeratedSet,
    Primitive,
    Relationship,
    WrappedIdentifier,
)
from ..schema.registry import MetadataRegistry, get_registry
from ..schema.types import (
    NO_DEFAULT,
    Cardinality,
    PropertyDescriptor,
    ScalarType,
    render_value,
)
from .guard import EMPTY_DEPTH, log_cutoff, resolve_limit, within_limit

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = "EmptyEntity"
JSON_TYPE = "jsonb"
SIMPLE_ARRAY_TYPE = "simple-array"

SQL_TYPES: Dict[ScalarType, str] = {
    ScalarType.STRING: "varchar",
    ScalarType.INTEGER: "bigint",
    ScalarType.FLOAT: "double precision",
    ScalarType.BOOLEAN: "boolean",
    ScalarType.DATETIME: "timestamptz",
    ScalarType.DATE: "date",
    ScalarType.BYTES: "bytea",
    ScalarType.OBJECT: JSON_TYPE,
}


@dataclass(frozen=True)
class Column:
    """Column definition.

    Attributes:
        name: Column name
        type: Engine-neutral type name
        nullable: Nullability (None when not declared)
        unique: Unique constraint
        primary: Primary key flag
        enum: Allowed values
        default: Default value or factory
        generated: Generation strategy for the primary key ('uuid')
        array_of: Element type of a simple-array column
    """

    name: str
    type: str
    nullable: Optional[bool] = None
    unique: bool = False
    primary: bool = False
    enum: Optional[tuple] = None
    default: Any = NO_DEFAULT
    generated: Optional[str] = None
    array_of: Optional[str] = None

    @property
    def is_json(self) -> bool:
        return self.type == JSON_TYPE

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"type": self.type}
        if self.nullable is not None:
            result["nullable"] = self.nullable
        if self.unique:
            result["unique"] = True
        if self.primary:
            result["primary"] = True
        if self.enum is not None:
            result["enum"] = list(self.enum)
        if self.default is not NO_DEFAULT:
            result["default"] = render_value(self.default)
        if self.generated is not None:
            result["generated"] = self.generated
        if self.array_of is not None:
            result["array_of"] = self.array_of
        return result


JoinConfig = Union[bool, Dict[str, Any], None]


@dataclass(frozen=True)
class RelationSchema:
    """Relation definition (not a column).

    ``join_column`` and ``join_table`` are only set on the owning side:
    a mapping when names were declared, True to use the ORM's default
    naming convention.
    """

    name: str
    kind: Cardinality
    target: str
    inverse_side: Optional[str] = None
    cascade: Union[bool, tuple] = False
    eager: bool = False
    join_column: JoinConfig = None
    join_table: JoinConfig = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "type": self.kind.value,
            "target": self.target,
            "inverse_side": self.inverse_side,
            "cascade": list(self.cascade) if isinstance(self.cascade, tuple) else self.cascade,
            "eager": self.eager,
        }
        if self.join_column is not None:
            result["join_column"] = self.join_column
        if self.join_table is not None:
            result["join_table"] = self.join_table
        return result


@dataclass(frozen=True)
class RelationalSchema:
    """Compiled table definition of one class."""

    name: str
    columns: tuple = ()
    relations: tuple = ()
    unique_together: tuple = ()
    placeholder: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.columns and not self.relations

    def column(self, name: str) -> Optional[Column]:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def relation(self, name: str) -> Optional[RelationSchema]:
        for rel in self.relations:
            if rel.name == name:
                return rel
        return None

    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def primary_key(self) -> Optional[Column]:
        for col in self.columns:
            if col.primary:
                return col
        return None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "columns": {c.name: c.to_dict() for c in self.columns},
            "relations": {r.name: r.to_dict() for r in self.relations},
        }
        if self.unique_together:
            result["unique_together"] = [list(group) for group in self.unique_together]
        if self.placeholder is not None:
            result["placeholder"] = self.placeholder
        return result


def _column_for(prop: PropertyDescriptor, name: str) -> Column:
    c = prop.classification
    options: Dict[str, Any] = {}

    if isinstance(c, ArrayOf):
        inner = c.inner
        if isinstance(inner, Embedded):
            col_type = JSON_TYPE
        else:
            col_type = SIMPLE_ARRAY_TYPE
            options["array_of"] = SQL_TYPES[inner.scalar]
            if isinstance(inner, EnumeratedSet):
                options["enum"] = inner.values
    elif isinstance(c, Embedded):
        col_type = JSON_TYPE
    elif isinstance(c, EnumeratedSet):
        col_type = SQL_TYPES[c.scalar]
        options["enum"] = c.values
    elif isinstance(c, (WrappedIdentifier, Primitive)):
        col_type = SQL_TYPES[c.scalar]
    else:
        raise TypeError(f"Unclassified property '{prop.key}'")

    if prop.is_identifier:
        options["primary"] = True
        options["unique"] = True
        if col_type == SQL_TYPES[ScalarType.STRING]:
            # String keys are generated by the engine, not by a default
            options["generated"] = "uuid"
    elif prop.unique:
        options["unique"] = True

    if prop.has_default and "generated" not in options:
        options["default"] = prop.default

    return Column(name=name, type=col_type, nullable=prop.optional, **options)


def _relation_for(
    registry: MetadataRegistry, cls: type, prop: PropertyDescriptor
) -> Optional[RelationSchema]:
    rel = prop.relationship
    name = registry.name_of(cls)
    if rel.cardinality is None:
        logger.warning(
            f"Unknown or unspecified cardinality for relationship '{name}.{prop.key}'; "
            f"skipping relation"
        )
        return None

    target = registry.resolve_target(cls, prop)
    join_column: JoinConfig = None
    join_table: JoinConfig = None
    if rel.owner:
        if rel.cardinality in (Cardinality.ONE_TO_ONE, Cardinality.MANY_TO_ONE):
            join_column = {"name": rel.join_columns[0]} if rel.join_columns else True
        elif rel.cardinality == Cardinality.MANY_TO_MANY:
            if rel.join_table or len(rel.join_columns) >= 2:
                table: Dict[str, Any] = {}
                if rel.join_table:
                    table["name"] = rel.join_table
                if len(rel.join_columns) >= 2:
                    table["join_column"] = {"name": rel.join_columns[0]}
                    table["inverse_join_column"] = {"name": rel.join_columns[1]}
                join_table = table
            else:
                join_table = True

    return RelationSchema(
        name=prop.key,
        kind=rel.cardinality,
        target=registry.name_of(target),
        inverse_side=rel.inverse_property,
        cascade=rel.cascade,
        eager=rel.eager,
        join_column=join_column,
        join_table=join_table,
    )


def compile_relational_schema(
    cls: Optional[type],
    max_depth: Optional[int] = None,
    depth: int = 0,
    *,
    registry: Optional[MetadataRegistry] = None,
) -> RelationalSchema:
    """Compile a registered class into a RelationalSchema.

    Args:
        cls: The class to compile (None yields the placeholder)
        max_depth: Recursion limit (defaults to settings.max_depth)
        depth: Current depth
        registry: Registry to read from (defaults to the global registry)

    Returns:
        RelationalSchema, or the ``EmptyEntity`` placeholder

    Raises:
        MetadataMissingError: If cls is not registered
        UnresolvedRelationshipTarget: If a relationship target cannot be resolved
    """
    limit = resolve_limit(max_depth)
    if cls is None or not within_limit(depth, limit):
        if cls is not None:
            log_cutoff(cls.__name__, depth, limit)
        return RelationalSchema(name=PLACEHOLDER_NAME, placeholder=EMPTY_DEPTH)

    registry = registry or get_registry()
    descriptor = registry.get_merged_descriptor(cls)
    settings = get_settings()

    renamed: Dict[str, str] = {}
    columns = []
    relations = []
    for prop in descriptor.properties:
        if isinstance(prop.classification, Relationship):
            relation = _relation_for(registry, cls, prop)
            if relation is not None:
                relations.append(relation)
            continue
        name = prop.key
        if prop.is_identifier and prop.key == settings.document_id_field:
            name = settings.relational_id_field
        renamed[prop.key] = name
        columns.append(_column_for(prop, name))

    schema = RelationalSchema(
        name=descriptor.name,
        columns=tuple(columns),
        relations=tuple(relations),
        unique_together=tuple(
            tuple(renamed[key] for key in group)
            for group in descriptor.unique_together
            if all(key in renamed for key in group)
        ),
    )
    logger.debug(
        f"Compiled relational schema for {descriptor.name}: "
        f"{len(columns)} column(s), {len(relations)} relation(s)"
    )
    return schema
