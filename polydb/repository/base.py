"""
Repository contract for polydb.

A repository binds one registered entity class to a storage engine. All
operations are asynchronous. Reads return hydrated instances produced by
the function registered with on_hydrate(); writes accept entity
instances and persist the properties of their merged descriptor.

Invariants:
    - Reads before on_hydrate() raise HydrationNotConfiguredError
    - Records handed to the hydrate function are keyed by property key,
      whatever the engine's column or field names are
    - Pending domain events are published only after a successful write
    - Relationship properties are persisted as identifier references

How to change safely:
    - Adapters must map engine errors to the polydb error taxonomy
    - Keep record encoding in to_record() so adapters agree on values
"""

from __future__ import annotations

import enum
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Generic, Optional, Protocol, TypeVar, Union

from ..errors import HydrationNotConfiguredError, MetadataMissingError, SchemaDefinitionError
from ..schema.classifier import Relationship
from ..schema.domain import DomainEvent, Entity, Enumeration, UniqueIdentifier
from ..schema.registry import MetadataRegistry, get_registry
from ..schema.types import ClassDescriptor, PropertyDescriptor

logger = logging.getLogger(__name__)

T = TypeVar("T")

Record = dict[str, Any]
Hydrator = Callable[[Record], Any]
Pipeline = Union[Callable[[Any], bool], list[dict[str, Any]]]


class EventPublisher(Protocol):
    """Receives domain events after successful writes."""

    async def publish(self, events: list[DomainEvent]) -> None: ...


def serialize_value(value: Any) -> Any:
    """Convert a domain value into a plain storable value.

    Datetimes and dates are kept as-is; adapters encode them for their
    engine.
    """
    if value is None or isinstance(value, (str, int, float, bool, bytes, datetime, date)):
        return value
    if isinstance(value, UniqueIdentifier):
        return value.value
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Enumeration):
        return value.name
    if isinstance(value, dict):
        return {str(k): serialize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [serialize_value(v) for v in value]
    if hasattr(value, "__dict__"):
        return {k: serialize_value(v) for k, v in vars(value).items() if not k.startswith("_")}
    return value


def _reference(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, Entity):
        return value.id.value
    if isinstance(value, UniqueIdentifier):
        return value.value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_reference(v) for v in value]
    return str(value)


def to_record(entity: Any, descriptor: ClassDescriptor) -> Record:
    """Extract the persisted properties of an entity.

    Missing values fall back to the declared default (factories are
    called). Relationship properties become identifier references.
    """
    record: Record = {}
    for prop in descriptor.properties:
        value = getattr(entity, prop.key, None)
        if value is None and prop.has_default:
            value = prop.default() if callable(prop.default) else prop.default
        if isinstance(prop.classification, Relationship):
            record[prop.key] = _reference(value)
        else:
            record[prop.key] = serialize_value(value)
    return record


@contextmanager
def touched(entity: Any) -> Iterator[None]:
    """Run the entity's touch() hook for an update.

    If the body raises, updated_at is put back so a failed update leaves
    the caller's instance as it was.
    """
    touch = getattr(entity, "touch", None)
    if not callable(touch):
        yield
        return
    previous = getattr(entity, "updated_at", None)
    touch()
    try:
        yield
    except Exception:
        if hasattr(entity, "updated_at"):
            entity.updated_at = previous
        raise


# ----------------------------------------------------------------------
# Query helpers shared by adapters
# ----------------------------------------------------------------------

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "$eq": lambda a, b: a == b,
    "$ne": lambda a, b: a != b,
    "$gt": lambda a, b: a is not None and a > b,
    "$gte": lambda a, b: a is not None and a >= b,
    "$lt": lambda a, b: a is not None and a < b,
    "$lte": lambda a, b: a is not None and a <= b,
    "$in": lambda a, b: a in b,
    "$nin": lambda a, b: a not in b,
}


def matches(record: Record, condition: dict[str, Any]) -> bool:
    """Evaluate a ``$match`` condition against a record.

    Plain values compare by equality (membership for array values);
    mappings of operators support $eq, $ne, $gt, $gte, $lt, $lte, $in, $nin.
    """
    for key, expected in condition.items():
        actual = record.get(key)
        if isinstance(expected, dict) and expected and all(k.startswith("$") for k in expected):
            for op, operand in expected.items():
                comparator = _COMPARATORS.get(op)
                if comparator is None:
                    raise ValueError(f"Unsupported operator '{op}'")
                if not comparator(actual, operand):
                    return False
        elif isinstance(actual, list) and not isinstance(expected, list):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True


def _sort_key(value: Any) -> tuple:
    # None sorts first; mixed types fall back to their string form
    if value is None:
        return (0, "")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, value)
    if isinstance(value, (datetime, date)):
        return (1, value.isoformat())
    return (2, str(value))


def apply_pipeline(records: Iterable[Record], stages: list[dict[str, Any]]) -> list[Record]:
    """Apply $match, $sort, $skip and $limit stages in order.

    Raises:
        ValueError: If a stage is malformed or unsupported
    """
    result = list(records)
    for stage in stages:
        if not isinstance(stage, dict) or len(stage) != 1:
            raise ValueError(f"Pipeline stage must have exactly one operator: {stage!r}")
        op, arg = next(iter(stage.items()))
        if op == "$match":
            result = [r for r in result if matches(r, arg)]
        elif op == "$sort":
            for key, order in reversed(list(arg.items())):
                if order not in (1, -1):
                    raise ValueError(f"Sort order for '{key}' must be 1 or -1")
                result.sort(key=lambda r, k=key: _sort_key(r.get(k)), reverse=order == -1)
        elif op == "$skip":
            result = result[int(arg):]
        elif op == "$limit":
            result = result[: int(arg)]
        else:
            raise ValueError(f"Unsupported pipeline stage '{op}'")
    return result


class Repository(ABC, Generic[T]):
    """Asynchronous repository for one entity class.

    Attributes:
        entity_class: The persisted class
        descriptor: Merged descriptor of the class
    """

    def __init__(
        self,
        entity_class: type[T],
        *,
        registry: Optional[MetadataRegistry] = None,
        publisher: Optional[EventPublisher] = None,
    ) -> None:
        self.entity_class = entity_class
        self.registry = registry or get_registry()
        self.descriptor = self.registry.get_merged_descriptor(entity_class)
        if self.descriptor.identifier is None:
            raise SchemaDefinitionError(
                f"'{self.descriptor.name}' has no identifier and cannot be stored on its own",
                class_name=self.descriptor.name,
            )
        self._publisher = publisher
        self._hydrate: Optional[Hydrator] = None

    @property
    def entity_name(self) -> str:
        return self.descriptor.name

    @property
    def identifier(self) -> PropertyDescriptor:
        return self.descriptor.identifier

    def on_hydrate(self, fn: Hydrator) -> None:
        """Register the function that turns a record into an instance."""
        self._hydrate = fn

    def hydrate(self, record: Record) -> T:
        if self._hydrate is None:
            raise HydrationNotConfiguredError(self.entity_name)
        return self._hydrate(record)

    def _require_hydrator(self) -> None:
        if self._hydrate is None:
            raise HydrationNotConfiguredError(self.entity_name)

    def entity_id(self, entity: T) -> str:
        value = getattr(entity, self.identifier.key, None)
        if value is None:
            raise ValueError(f"{self.entity_name} instance has no '{self.identifier.key}' value")
        return str(serialize_value(value))

    def to_record(self, entity: T) -> Record:
        return to_record(entity, self.descriptor)

    def check_query_keys(self, query: dict[str, Any]) -> None:
        unknown = [k for k in query if self.descriptor.get(k) is None]
        if unknown:
            raise MetadataMissingError(
                f"'{self.entity_name}' has no properties {unknown}",
                class_name=self.entity_name,
                key=unknown[0],
            )

    async def _after_write(self, entity: T, hook: Optional[str] = None) -> None:
        """Run the lifecycle hook and publish pending events."""
        if hook is not None and callable(getattr(entity, hook, None)):
            getattr(entity, hook)()
        pull = getattr(entity, "pull_events", None)
        events = pull() if callable(pull) else []
        if events and self._publisher is not None:
            await self._publisher.publish(events)
            logger.debug(f"Published {len(events)} event(s) for {self.entity_name}")

    @abstractmethod
    async def find_all(self) -> list[T]:
        """All stored instances."""

    @abstractmethod
    async def find_by_id(self, id: Union[str, UniqueIdentifier]) -> Optional[T]:
        """The instance with this identifier, or None."""

    @abstractmethod
    async def insert(self, entity: T) -> None:
        """Store a new instance.

        Raises:
            EntityAlreadyExistsError: If the identifier is already stored
            UniqueConstraintViolation: If a unique value collides
        """

    @abstractmethod
    async def update(self, entity: T) -> None:
        """Replace a stored instance.

        Raises:
            EntityNotFoundError: If the identifier is not stored
            UniqueConstraintViolation: If a unique value collides
        """

    @abstractmethod
    async def delete(self, entity: T) -> None:
        """Remove a stored instance.

        Raises:
            EntityNotFoundError: If the identifier is not stored
        """

    @abstractmethod
    async def search(self, query: dict[str, Any]) -> list[T]:
        """Instances matching every key of the query."""

    @abstractmethod
    async def aggregate(self, pipeline: Pipeline) -> list[T]:
        """Instances selected by a filter callable or a stage list."""
