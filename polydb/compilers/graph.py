"""
Graph-schema compiler.

Compiles a registered class into a labeled-property-graph schema: one
node per class with a flattened property map, plus one relationship
definition per relationship-typed property.

Invariants:
    - Embedded values are opaque ``object`` properties; the graph is only
      expanded through explicit relationships
    - Relationship properties are never node properties
    - Relationships are de-duplicated by (source label, type, target label)
    - The compiler does not recurse and needs no depth guard

Example:
    >>> schema = compile_graph_schema(Order)
    >>> schema.relationships[0].type
    'PLACED_BY'
    >>> schema.constraint_statements()[0]
    'CREATE CONSTRAINT Order_id_unique IF NOT EXISTS FOR (n:Order) REQUIRE n.id IS UNIQUE'
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..config import get_settings
from ..errors import SchemaDefinitionError
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
    Direction,
    PropertyDescriptor,
    ScalarType,
    render_value,
)

logger = logging.getLogger(__name__)

OBJECT_TYPE = "object"
ARRAY_SUFFIX = "[]"


@dataclass(frozen=True)
class GraphProperty:
    """A flattened node property."""

    name: str
    type: str
    unique: Optional[bool] = None
    optional: Optional[bool] = None
    is_identifier: bool = False
    enum: Optional[tuple] = None
    default: Any = NO_DEFAULT

    @property
    def is_array(self) -> bool:
        return self.type.endswith(ARRAY_SUFFIX)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"type": self.type}
        if self.unique is not None:
            result["unique"] = self.unique
        if self.optional is not None:
            result["optional"] = self.optional
        if self.is_identifier:
            result["is_identifier"] = True
        if self.enum is not None:
            result["enum"] = list(self.enum)
        if self.default is not NO_DEFAULT:
            result["default"] = render_value(self.default)
        return result


@dataclass(frozen=True)
class NodeSchema:
    """Node definition for one class."""

    label: str
    properties: tuple = ()
    unique_together: tuple = ()

    def get(self, name: str) -> Optional[GraphProperty]:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def property_names(self) -> List[str]:
        return [p.name for p in self.properties]

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "label": self.label,
            "properties": {p.name: p.to_dict() for p in self.properties},
        }
        if self.unique_together:
            result["unique_together"] = [list(group) for group in self.unique_together]
        return result


@dataclass(frozen=True)
class RelationshipSchema:
    """Relationship definition between two node labels.

    Attributes:
        source_label: Label of the declaring class
        target_label: Label of the resolved target class
        type: Relationship type
        direction: Direction relative to the source node
        key: Declaring property key
        cardinality: Declared cardinality, if any
        edge_properties: Source property names copied onto the edge
    """

    source_label: str
    target_label: str
    type: str
    direction: Direction = Direction.OUTGOING
    key: Optional[str] = None
    cardinality: Optional[Cardinality] = None
    edge_properties: tuple = ()

    @property
    def identity(self) -> tuple:
        return (self.source_label, self.type, self.target_label)

    def pattern(self) -> str:
        """Cypher pattern for this relationship."""
        if self.direction == Direction.INCOMING:
            return f"(:{self.source_label})<-[:{self.type}]-(:{self.target_label})"
        if self.direction == Direction.BOTH:
            return f"(:{self.source_label})-[:{self.type}]-(:{self.target_label})"
        return f"(:{self.source_label})-[:{self.type}]->(:{self.target_label})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_label": self.source_label,
            "target_label": self.target_label,
            "type": self.type,
            "direction": self.direction.value,
            "key": self.key,
            "cardinality": self.cardinality.value if self.cardinality else None,
            "edge_properties": list(self.edge_properties),
        }


@dataclass(frozen=True)
class GraphSchema:
    """Compiled graph schema: nodes and relationships."""

    nodes: tuple = ()
    relationships: tuple = ()

    def node(self, label: str) -> Optional[NodeSchema]:
        for node in self.nodes:
            if node.label == label:
                return node
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "relationships": [r.to_dict() for r in self.relationships],
        }

    def constraint_statements(self) -> List[str]:
        """Cypher statements creating uniqueness and node key constraints."""
        statements = []
        for node in self.nodes:
            for prop in node.properties:
                if prop.unique:
                    statements.append(
                        f"CREATE CONSTRAINT {node.label}_{prop.name}_unique IF NOT EXISTS "
                        f"FOR (n:{node.label}) REQUIRE n.{prop.name} IS UNIQUE"
                    )
            for group in node.unique_together:
                keys = ", ".join(f"n.{name}" for name in group)
                statements.append(
                    f"CREATE CONSTRAINT {node.label}_{'_'.join(group)}_key IF NOT EXISTS "
                    f"FOR (n:{node.label}) REQUIRE ({keys}) IS NODE KEY"
                )
        return statements


def _scalar_type(scalar: ScalarType) -> str:
    return scalar.value


def _property_for(prop: PropertyDescriptor, name: str) -> GraphProperty:
    c = prop.classification
    enum = None
    if isinstance(c, ArrayOf):
        inner = c.inner
        if isinstance(inner, Embedded):
            type_tag = OBJECT_TYPE + ARRAY_SUFFIX
        else:
            type_tag = _scalar_type(inner.scalar) + ARRAY_SUFFIX
            if isinstance(inner, EnumeratedSet):
                enum = inner.values
    elif isinstance(c, Embedded):
        type_tag = OBJECT_TYPE
    elif isinstance(c, EnumeratedSet):
        type_tag = _scalar_type(c.scalar)
        enum = c.values
    elif isinstance(c, (WrappedIdentifier, Primitive)):
        type_tag = _scalar_type(c.scalar)
    else:
        raise TypeError(f"Unclassified property '{prop.key}'")

    return GraphProperty(
        name=name,
        type=type_tag,
        unique=True if prop.is_identifier else prop.unique,
        optional=prop.optional,
        is_identifier=prop.is_identifier,
        enum=enum,
        default=prop.default,
    )


def compile_graph_schema(
    cls: type,
    *,
    registry: Optional[MetadataRegistry] = None,
) -> GraphSchema:
    """Compile a registered class into a GraphSchema.

    Args:
        cls: The class to compile
        registry: Registry to read from (defaults to the global registry)

    Returns:
        GraphSchema with exactly one node and the class's relationships

    Raises:
        MetadataMissingError: If cls is not registered
        UnresolvedRelationshipTarget: If a relationship target cannot be resolved
        SchemaDefinitionError: If an edge property names an unknown property
    """
    registry = registry or get_registry()
    descriptor = registry.get_merged_descriptor(cls)
    settings = get_settings()
    label = descriptor.name

    renamed: Dict[str, str] = {}
    properties = []
    relationship_props = []
    for prop in descriptor.properties:
        if isinstance(prop.classification, Relationship):
            relationship_props.append(prop)
            continue
        name = prop.key
        if prop.is_identifier and prop.key == settings.document_id_field:
            name = settings.graph_id_field
        renamed[prop.key] = name
        properties.append(_property_for(prop, name))

    relationships: Dict[tuple, RelationshipSchema] = {}
    for prop in relationship_props:
        rel = prop.relationship
        target = registry.resolve_target(cls, prop)
        unknown = [k for k in rel.edge_properties if k not in renamed]
        if unknown:
            raise SchemaDefinitionError(
                f"Edge properties of '{label}.{prop.key}' name unknown properties: {unknown}",
                class_name=label,
                key=prop.key,
            )
        schema = RelationshipSchema(
            source_label=label,
            target_label=registry.name_of(target),
            type=rel.edge_type,
            direction=rel.direction,
            key=prop.key,
            cardinality=rel.cardinality,
            edge_properties=tuple(renamed[k] for k in rel.edge_properties),
        )
        if schema.identity in relationships:
            logger.debug(f"Collapsing duplicate relationship {schema.identity} on {label}.{prop.key}")
            continue
        relationships[schema.identity] = schema

    node = NodeSchema(
        label=label,
        properties=tuple(properties),
        unique_together=tuple(
            tuple(renamed[key] for key in group)
            for group in descriptor.unique_together
            if all(key in renamed for key in group)
        ),
    )
    logger.debug(f"Compiled graph schema for {label}: {len(relationships)} relationship(s)")
    return GraphSchema(nodes=(node,), relationships=tuple(relationships.values()))
