"""
Metadata Registry for polydb.

The MetadataRegistry is the central authority for per-class property and
relationship declarations. It provides:
- Registration of entities, properties, relationships (single or bulk)
- Inheritance-aware merging into ClassDescriptors
- Identifier synthesis for root entities
- Freeze mechanism and schema fingerprinting

Invariants:
    - Registration is idempotent per (class, key): re-registering merges
      the new options over the stored ones
    - Merging folds base-to-derived; derived options win field by field
    - Domain base properties are injected at the root of the chain
    - Exactly one identifier per hierarchy; root entities without one get
      a synthesized ``id``
    - Once frozen, the registry is read-only and lookups are lock-free

How to change safely:
    - Register all classes before the first compile call, or freeze()
    - Relationship targets may be classes, names or resolvers; they are
      only resolved by the compilers

Example:
    >>> registry = MetadataRegistry()
    >>> registry.register_entity(User)
    >>> registry.register_bulk(User, {"name": {"type": str}, "email": {"type": str, "unique": True}})
    >>> registry.get_merged_descriptor(User).get("email").unique
    True
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Optional

from ..errors import (
    MetadataMissingError,
    RegistryFrozenError,
    SchemaDefinitionError,
)
from .classifier import Classification, array_element_type, classify, is_supported_type, unwrap_optional
from .domain import (
    Enumeration,
    UniqueIdentifier,
    ValueObject,
    generate_id,
    get_domain_properties,
    is_embeddable_domain_class,
    is_plain_class,
)
from .types import (
    Cardinality,
    ClassDescriptor,
    Direction,
    NO_DEFAULT,
    PropertyDescriptor,
    RelationshipDescriptor,
)

logger = logging.getLogger(__name__)

# Global registry instance
_global_registry: Optional[MetadataRegistry] = None
_registry_lock = threading.Lock()

PROPERTY_OPTIONS = frozenset(
    {"type", "unique", "optional", "is_identifier", "enum", "default", "relationship"}
)
RELATIONSHIP_OPTIONS = frozenset(
    {
        "edge_type",
        "type",
        "target",
        "direction",
        "cardinality",
        "owner",
        "inverse_property",
        "join_columns",
        "join_table",
        "cascade",
        "eager",
        "edge_properties",
    }
)
_BOOL_OPTIONS = ("unique", "optional", "is_identifier")


@dataclass
class _EntityRegistration:
    name: str | None = None
    embedded: bool | None = None
    unique_together: tuple[tuple[str, ...], ...] = ()


def _as_str_tuple(value: Any, option: str) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise SchemaDefinitionError(f"Option '{option}' must be a string or a list of strings")


class MetadataRegistry:
    """Central registry for schema metadata.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups after freeze are lock-free and cached
        - Freeze is atomic and irreversible

    Attributes:
        frozen: Whether the registry is frozen (immutable)
        fingerprint: SHA-256 hash of the merged schema (computed on freeze)
    """

    def __init__(self) -> None:
        """Initialize an empty, mutable registry."""
        self._entities: dict[type, _EntityRegistration] = {}
        self._declarations: dict[type, dict[str, dict[str, Any]]] = {}
        self._merged: dict[type, ClassDescriptor] = {}
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self._lock = threading.RLock()

    @property
    def frozen(self) -> bool:
        """Whether the registry is frozen."""
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        """Schema fingerprint (available after freeze)."""
        return self._fingerprint

    def _check_mutable(self, what: str) -> None:
        if self._frozen:
            raise RegistryFrozenError(f"Cannot register {what}: registry is frozen")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_entity(
        self,
        cls: type,
        *,
        name: str | None = None,
        embedded: bool | None = None,
        unique_together: tuple[tuple[str, ...], ...] | list[list[str]] = (),
    ) -> type:
        """Mark a class as schema-eligible.

        Args:
            cls: The class to register
            name: Entity name override (label / table name)
            embedded: Force inline storage (None infers from the base class)
            unique_together: Composite unique keys

        Returns:
            The class, so this can be used as a decorator

        Raises:
            SchemaDefinitionError: If cls is not a class
            RegistryFrozenError: If registry is frozen
        """
        if not isinstance(cls, type):
            raise SchemaDefinitionError(f"Only classes can be registered, got {cls!r}")
        if name is not None and not name:
            raise SchemaDefinitionError("Entity name cannot be empty", class_name=cls.__name__)
        groups = tuple(_as_str_tuple(group, "unique_together") for group in unique_together)

        with self._lock:
            self._check_mutable(f"entity '{cls.__name__}'")
            registration = self._entities.setdefault(cls, _EntityRegistration())
            if name is not None:
                registration.name = name
            if embedded is not None:
                registration.embedded = embedded
            if groups:
                registration.unique_together = groups
            logger.debug(f"Registered entity: {cls.__name__}")
        return cls

    def register_property(
        self,
        cls: type,
        key: str,
        options: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Register (or update) one property of a class.

        Args:
            cls: Declaring class
            key: Property key
            options: Option mapping (type, unique, optional, is_identifier,
                enum, default, relationship)
            **kwargs: Options given as keywords (override ``options``)

        Raises:
            SchemaDefinitionError: If the options are malformed
            RegistryFrozenError: If registry is frozen

        Example:
            >>> registry.register_property(User, "email", type=str, unique=True)
        """
        merged = {**(options or {}), **kwargs}
        normalized = self._normalize_property(cls, key, merged)

        with self._lock:
            self._check_mutable(f"property '{getattr(cls, '__name__', cls)}.{key}'")
            declarations = self._declarations.setdefault(cls, {})
            if normalized.get("is_identifier"):
                for other_key, other in declarations.items():
                    if other_key != key and other.get("is_identifier"):
                        raise SchemaDefinitionError(
                            f"'{cls.__name__}' already declares identifier '{other_key}'",
                            class_name=cls.__name__,
                            key=key,
                        )
            declarations[key] = {**declarations.get(key, {}), **normalized}
            logger.debug(f"Registered property: {cls.__name__}.{key}")

    def register_relationship(
        self,
        cls: type,
        key: str,
        options: Mapping[str, Any] | RelationshipDescriptor | None = None,
        **kwargs: Any,
    ) -> None:
        """Register a relationship-typed property.

        Args:
            cls: Declaring class
            key: Property key
            options: Relationship options or a RelationshipDescriptor
            **kwargs: Options given as keywords

        Example:
            >>> registry.register_relationship(
            ...     Order, "customer",
            ...     edge_type="PLACED_BY", target=lambda: User,
            ...     cardinality="many-to-one", owner=True, join_columns="customer_id",
            ... )
        """
        if isinstance(options, RelationshipDescriptor):
            relationship = options
        else:
            relationship = self._build_relationship(cls, key, {**(options or {}), **kwargs})
        self.register_property(cls, key, relationship=relationship)

    def register_bulk(self, cls: type, properties: Mapping[str, Mapping[str, Any]]) -> None:
        """Register many properties in one call.

        Equivalent to calling register_property() (and register_relationship()
        for entries carrying a ``relationship`` option) once per key.

        Args:
            cls: Declaring class
            properties: Mapping of key to options
        """
        with self._lock:
            for key, options in properties.items():
                self.register_property(cls, key, options)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _normalize_property(self, cls: Any, key: str, options: dict[str, Any]) -> dict[str, Any]:
        """Validate options and convert them to their stored form."""
        class_name = getattr(cls, "__name__", repr(cls))
        if not isinstance(cls, type):
            raise SchemaDefinitionError(f"Only classes can be registered, got {cls!r}")
        if not isinstance(key, str) or not key:
            raise SchemaDefinitionError(
                f"Property key of '{class_name}' must be a non-empty string", class_name=class_name
            )

        unknown = set(options) - PROPERTY_OPTIONS
        if unknown:
            raise SchemaDefinitionError(
                f"Unknown options for '{class_name}.{key}': {sorted(unknown)}",
                class_name=class_name,
                key=key,
            )

        normalized: dict[str, Any] = {}
        if "type" in options:
            declared = options["type"]
            if not is_supported_type(declared) and "relationship" not in options:
                raise SchemaDefinitionError(
                    f"Unsupported type for '{class_name}.{key}': {declared!r}",
                    class_name=class_name,
                    key=key,
                )
            declared, was_optional = unwrap_optional(declared)
            normalized["type"] = declared
            if was_optional and "optional" not in options:
                normalized["optional"] = True

        for option in _BOOL_OPTIONS:
            if option in options:
                if not isinstance(options[option], bool):
                    raise SchemaDefinitionError(
                        f"Option '{option}' of '{class_name}.{key}' must be a bool",
                        class_name=class_name,
                        key=key,
                    )
                normalized[option] = options[option]

        if "enum" in options:
            values = options["enum"]
            if isinstance(values, (str, bytes)) or not isinstance(values, (list, tuple)) or not values:
                raise SchemaDefinitionError(
                    f"Option 'enum' of '{class_name}.{key}' must be a non-empty list",
                    class_name=class_name,
                    key=key,
                )
            normalized["enum"] = tuple(values)

        if "default" in options:
            normalized["default"] = options["default"]

        if "relationship" in options:
            relationship = options["relationship"]
            if isinstance(relationship, Mapping):
                relationship = self._build_relationship(cls, key, dict(relationship))
            if not isinstance(relationship, RelationshipDescriptor):
                raise SchemaDefinitionError(
                    f"Option 'relationship' of '{class_name}.{key}' must be a mapping",
                    class_name=class_name,
                    key=key,
                )
            normalized["relationship"] = relationship

        return normalized

    def _build_relationship(
        self, cls: type, key: str, options: dict[str, Any]
    ) -> RelationshipDescriptor:
        """Validate relationship options and build a descriptor."""
        class_name = getattr(cls, "__name__", repr(cls))
        unknown = set(options) - RELATIONSHIP_OPTIONS
        if unknown:
            raise SchemaDefinitionError(
                f"Unknown relationship options for '{class_name}.{key}': {sorted(unknown)}",
                class_name=class_name,
                key=key,
            )

        try:
            edge_type = options.get("edge_type", options.get("type"))
            if not isinstance(edge_type, str):
                raise SchemaDefinitionError("Relationship requires an 'edge_type' string")

            direction = options.get("direction", Direction.OUTGOING)
            if isinstance(direction, str):
                direction = Direction.from_str(direction)

            cardinality = options.get("cardinality")
            if isinstance(cardinality, str):
                cardinality = Cardinality.from_str(cardinality)

            join_columns = options.get("join_columns", ())
            join_columns = _as_str_tuple(join_columns, "join_columns") if join_columns else ()
            join_table = options.get("join_table")
            owner = bool(options.get("owner", False))

            if (join_columns or join_table) and not owner:
                raise SchemaDefinitionError("Join configuration requires owner=True")
            if join_table and cardinality != Cardinality.MANY_TO_MANY:
                raise SchemaDefinitionError("join_table is only valid for many-to-many relations")
            if join_columns:
                expected = 2 if cardinality == Cardinality.MANY_TO_MANY else 1
                if cardinality in (Cardinality.ONE_TO_MANY, None) or len(join_columns) > expected:
                    raise SchemaDefinitionError(
                        f"join_columns expects at most {expected} name(s) for "
                        f"{cardinality.value if cardinality else 'no'} cardinality"
                    )

            cascade = options.get("cascade", False)
            if not isinstance(cascade, bool):
                cascade = _as_str_tuple(cascade, "cascade")

            edge_properties = options.get("edge_properties", ())
            edge_properties = _as_str_tuple(edge_properties, "edge_properties") if edge_properties else ()

            return RelationshipDescriptor(
                edge_type=edge_type,
                target=options.get("target"),
                direction=direction,
                cardinality=cardinality,
                owner=owner,
                inverse_property=options.get("inverse_property"),
                join_columns=join_columns,
                join_table=join_table,
                cascade=cascade,
                eager=bool(options.get("eager", False)),
                edge_properties=edge_properties,
            )
        except SchemaDefinitionError as e:
            raise SchemaDefinitionError(
                f"Invalid relationship '{class_name}.{key}': {e.message}",
                class_name=class_name,
                key=key,
            ) from e

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def is_registered(self, cls: Any) -> bool:
        """Whether a class was registered as an entity or declares properties."""
        return isinstance(cls, type) and (cls in self._entities or cls in self._declarations)

    def entities(self) -> Iterator[type]:
        """Iterate over all registered classes in registration order."""
        seen: set[type] = set()
        for cls in list(self._entities) + list(self._declarations):
            if cls not in seen:
                seen.add(cls)
                yield cls

    def name_of(self, cls: type) -> str:
        """Entity name of a class (registered override or class name)."""
        registration = self._entities.get(cls)
        if registration is not None and registration.name:
            return registration.name
        return cls.__name__

    def lookup(self, name: str) -> type | None:
        """Find a registered class by entity name."""
        for cls in self.entities():
            if self.name_of(cls) == name:
                return cls
        return None

    def is_embedded(self, cls: type) -> bool:
        """Whether instances of cls are stored inline within their owner."""
        registration = self._entities.get(cls)
        if registration is not None and registration.embedded is not None:
            return registration.embedded
        return issubclass(cls, (ValueObject, Enumeration))

    def is_embeddable(self, cls: type) -> bool:
        return is_embeddable_domain_class(cls) or self.is_registered(cls)

    def resolve_target(self, cls: type, prop: PropertyDescriptor) -> type:
        """Resolve the target class of a relationship property.

        Raises:
            UnresolvedRelationshipTarget: If the resolver does not produce a class
        """
        if prop.relationship is None:
            raise MetadataMissingError(
                f"'{self.name_of(cls)}.{prop.key}' is not a relationship",
                class_name=self.name_of(cls),
                key=prop.key,
            )
        return prop.relationship.resolve_target(self.name_of(cls), prop.key, self.lookup)

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def get_merged_descriptor(self, cls: type) -> ClassDescriptor:
        """Get the merged descriptor of a class and its ancestors.

        Args:
            cls: A registered class

        Returns:
            ClassDescriptor with base-to-derived ordered properties

        Raises:
            MetadataMissingError: If cls (or an embedded type) is not registered
            SchemaDefinitionError: If the hierarchy declares two identifiers
        """
        if not isinstance(cls, type) or not self.is_registered(cls):
            name = getattr(cls, "__name__", repr(cls))
            raise MetadataMissingError(f"Class '{name}' has no registered metadata", class_name=name)

        if self._frozen and cls in self._merged:
            return self._merged[cls]

        descriptor = self._merge(cls)
        if self._frozen:
            self._merged[cls] = descriptor
        return descriptor

    def _merge(self, cls: type) -> ClassDescriptor:
        name = self.name_of(cls)
        folded: dict[str, dict[str, Any]] = {}

        with self._lock:
            for klass in reversed(cls.__mro__):
                if klass is object:
                    continue
                for key, options in get_domain_properties(klass):
                    folded[key] = {**folded.get(key, {}), **options}
                for key, options in self._declarations.get(klass, {}).items():
                    merged = {**folded.get(key, {}), **options}
                    merged.pop("synthetic", None)
                    folded[key] = merged
            registration = self._entities.get(cls, _EntityRegistration())

        explicit_ids = [
            key for key, o in folded.items() if o.get("is_identifier") and not o.get("synthetic")
        ]
        if len(explicit_ids) > 1:
            raise SchemaDefinitionError(
                f"'{name}' declares more than one identifier: {explicit_ids}", class_name=name
            )
        if explicit_ids:
            for key in [k for k, o in folded.items() if o.get("synthetic") and o.get("is_identifier")]:
                if key != explicit_ids[0]:
                    del folded[key]

        embedded = self.is_embedded(cls)
        if not embedded and not any(o.get("is_identifier") for o in folded.values()):
            logger.debug(f"Synthesizing identifier 'id' for {name}")
            folded = {
                "id": {
                    "type": UniqueIdentifier,
                    "is_identifier": True,
                    "default": generate_id,
                    "synthetic": True,
                },
                **folded,
            }

        properties = tuple(self._build_property(cls, key, options) for key, options in folded.items())

        keys = {p.key for p in properties}
        for group in registration.unique_together:
            missing = [k for k in group if k not in keys]
            if missing:
                raise SchemaDefinitionError(
                    f"unique_together of '{name}' names unknown properties: {missing}",
                    class_name=name,
                )

        return ClassDescriptor(
            cls=cls,
            name=name,
            properties=properties,
            embedded=embedded,
            unique_together=registration.unique_together,
        )

    def _build_property(self, cls: type, key: str, options: dict[str, Any]) -> PropertyDescriptor:
        return PropertyDescriptor(
            key=key,
            declared_type=options.get("type"),
            unique=options.get("unique"),
            optional=options.get("optional"),
            is_identifier=bool(options.get("is_identifier", False)),
            enum_values=options.get("enum"),
            default=options.get("default", NO_DEFAULT),
            relationship=options.get("relationship"),
            classification=self._classify(cls, key, options),
            synthetic=bool(options.get("synthetic", False)),
        )

    def _classify(self, cls: type, key: str, options: dict[str, Any]) -> Classification:
        declared = options.get("type")
        try:
            return classify(
                declared,
                enum_values=options.get("enum"),
                relationship=options.get("relationship"),
                is_embeddable=self.is_embeddable,
            )
        except SchemaDefinitionError as e:
            is_array, element = array_element_type(declared)
            inner = element if is_array else declared
            if is_plain_class(inner):
                raise MetadataMissingError(
                    f"'{self.name_of(cls)}.{key}' declares type '{inner.__name__}' "
                    f"which has no registered metadata",
                    class_name=self.name_of(cls),
                    key=key,
                ) from e
            raise SchemaDefinitionError(
                f"Cannot classify '{self.name_of(cls)}.{key}': {e.message}",
                class_name=self.name_of(cls),
                key=key,
            ) from e

    # ------------------------------------------------------------------
    # Freeze / serialization
    # ------------------------------------------------------------------

    def freeze(self) -> str:
        """Freeze the registry and compute fingerprint.

        After freezing, no new classes or properties can be registered and
        merged descriptors are cached.

        Returns:
            Schema fingerprint string

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Registry is already frozen")

            self._fingerprint = self._compute_fingerprint()
            self._frozen = True
            logger.info(
                f"Metadata registry frozen with {len(list(self.entities()))} classes, "
                f"fingerprint={self._fingerprint}"
            )
            return self._fingerprint

    def _compute_fingerprint(self) -> str:
        """Compute SHA-256 fingerprint of the merged schema.

        Returns:
            Fingerprint string in format 'sha256:<hash>'
        """
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), default=str)
        hash_bytes = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
        return f"sha256:{hash_bytes}"

    def to_dict(self) -> dict[str, Any]:
        """Convert registry to dictionary representation.

        Returns:
            Dictionary with an 'entities' list sorted by entity name, each
            entry being a merged descriptor with resolved relationship targets.
        """
        entities = []
        for cls in sorted(self.entities(), key=self.name_of):
            descriptor = self.get_merged_descriptor(cls)
            data = descriptor.to_dict()
            for prop, prop_data in zip(descriptor.properties, data["properties"]):
                if prop.relationship is not None:
                    prop_data["relationship"]["target"] = self.name_of(self.resolve_target(cls, prop))
            entities.append(data)
        return {"entities": entities}

    def to_json(self, indent: Optional[int] = 2) -> str:
        """Convert registry to JSON string."""
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True, default=str)


def get_registry() -> MetadataRegistry:
    """Get the global metadata registry.

    Creates a new registry if none exists.
    """
    global _global_registry
    with _registry_lock:
        if _global_registry is None:
            _global_registry = MetadataRegistry()
        return _global_registry


def freeze_registry() -> str:
    """Freeze the global registry.

    Returns:
        Schema fingerprint
    """
    return get_registry().freeze()


def reset_registry() -> None:
    """Reset the global registry (for testing only).

    Warning: This is intended for test cleanup only.
    Never use in production code.
    """
    global _global_registry
    with _registry_lock:
        _global_registry = None


def register_entity(cls: type, **kwargs: Any) -> type:
    """Register a class with the global registry."""
    return get_registry().register_entity(cls, **kwargs)


def register_property(cls: type, key: str, options: Mapping[str, Any] | None = None, **kwargs: Any) -> None:
    """Register a property with the global registry."""
    get_registry().register_property(cls, key, options, **kwargs)


def register_relationship(
    cls: type, key: str, options: Mapping[str, Any] | None = None, **kwargs: Any
) -> None:
    """Register a relationship with the global registry."""
    get_registry().register_relationship(cls, key, options, **kwargs)


def register_bulk(cls: type, properties: Mapping[str, Mapping[str, Any]]) -> None:
    """Register many properties with the global registry."""
    get_registry().register_bulk(cls, properties)


def entity(
    properties: Mapping[str, Mapping[str, Any]] | None = None,
    *,
    registry: MetadataRegistry | None = None,
    **entity_options: Any,
) -> Callable[[type], type]:
    """Class decorator combining register_entity() and register_bulk().

    Example:
        >>> @entity({"title": {"type": str}}, name="posts")
        ... class Post(Entity):
        ...     pass
    """

    def decorator(cls: type) -> type:
        target = registry or get_registry()
        target.register_entity(cls, **entity_options)
        if properties:
            target.register_bulk(cls, properties)
        return cls

    return decorator
