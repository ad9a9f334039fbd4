"""
In-memory repository.

Stores record snapshots in a dict keyed by identifier. Uniqueness is
checked at the application level (check-then-insert) under an
asyncio.Lock, since there is no engine to delegate it to.

Invariants:
    - Stored records are snapshots; mutating an instance after insert()
      does not change the stored state until update()
    - None values never collide on a unique property
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Optional, Union

from ..errors import EntityAlreadyExistsError, EntityNotFoundError, UniqueConstraintViolation
from ..schema.domain import UniqueIdentifier
from .base import Pipeline, Record, Repository, T, apply_pipeline, touched

logger = logging.getLogger(__name__)


class InMemoryRepository(Repository[T]):
    """Dict-backed repository for tests and prototyping.

    Example:
        >>> repo = InMemoryRepository(User)
        >>> repo.on_hydrate(lambda r: User(**r))
        >>> await repo.insert(user)
        >>> await repo.find_by_id(user.id)
    """

    def __init__(self, entity_class: type[T], **kwargs: Any) -> None:
        super().__init__(entity_class, **kwargs)
        self._records: dict[str, Record] = {}
        self._lock = asyncio.Lock()

    def _unique_groups(self) -> list[tuple[str, ...]]:
        groups = [(p.key,) for p in self.descriptor.unique_properties]
        groups.extend(self.descriptor.unique_together)
        return groups

    def _check_unique(self, record: Record, exclude_id: Optional[str] = None) -> None:
        for group in self._unique_groups():
            values = tuple(record.get(key) for key in group)
            if any(v is None for v in values):
                continue
            for stored_id, stored in self._records.items():
                if stored_id == exclude_id:
                    continue
                if tuple(stored.get(key) for key in group) == values:
                    raise UniqueConstraintViolation(
                        f"{self.entity_name} with {dict(zip(group, values))} already exists",
                        entity_name=self.entity_name,
                        fields=list(group),
                    )

    async def find_all(self) -> list[T]:
        self._require_hydrator()
        return [self.hydrate(copy.deepcopy(r)) for r in self._records.values()]

    async def find_by_id(self, id: Union[str, UniqueIdentifier]) -> Optional[T]:
        self._require_hydrator()
        record = self._records.get(str(id))
        return self.hydrate(copy.deepcopy(record)) if record is not None else None

    async def insert(self, entity: T) -> None:
        entity_id = self.entity_id(entity)
        record = self.to_record(entity)
        async with self._lock:
            if entity_id in self._records:
                raise EntityAlreadyExistsError(
                    f"{self.entity_name} with ID {entity_id} already exists",
                    entity_name=self.entity_name,
                    entity_id=entity_id,
                )
            self._check_unique(record)
            self._records[entity_id] = record
        logger.debug(f"Inserted {self.entity_name} {entity_id}")
        await self._after_write(entity, "create")

    async def update(self, entity: T) -> None:
        entity_id = self.entity_id(entity)
        async with self._lock:
            if entity_id not in self._records:
                raise EntityNotFoundError(
                    f"{self.entity_name} with ID {entity_id} not found for update",
                    entity_name=self.entity_name,
                    entity_id=entity_id,
                )
            with touched(entity):
                record = self.to_record(entity)
                self._check_unique(record, exclude_id=entity_id)
            self._records[entity_id] = record
        logger.debug(f"Updated {self.entity_name} {entity_id}")
        await self._after_write(entity)

    async def delete(self, entity: T) -> None:
        entity_id = self.entity_id(entity)
        async with self._lock:
            if self._records.pop(entity_id, None) is None:
                raise EntityNotFoundError(
                    f"{self.entity_name} with ID {entity_id} not found for deletion",
                    entity_name=self.entity_name,
                    entity_id=entity_id,
                )
        logger.debug(f"Deleted {self.entity_name} {entity_id}")
        await self._after_write(entity, "delete")

    async def search(self, query: dict[str, Any]) -> list[T]:
        """Match every query key; strings match by substring."""
        self._require_hydrator()
        self.check_query_keys(query)
        results = []
        for record in self._records.values():
            if all(self._value_matches(record.get(k), v) for k, v in query.items()):
                results.append(self.hydrate(copy.deepcopy(record)))
        return results

    @staticmethod
    def _value_matches(actual: Any, expected: Any) -> bool:
        if isinstance(actual, str) and isinstance(expected, str):
            return expected in actual
        return actual == expected

    async def aggregate(self, pipeline: Pipeline) -> list[T]:
        """Filter with a callable over instances, or run a stage list over records."""
        self._require_hydrator()
        if callable(pipeline):
            return [e for e in await self.find_all() if pipeline(e)]
        records = apply_pipeline((copy.deepcopy(r) for r in self._records.values()), pipeline)
        return [self.hydrate(r) for r in records]
