"""
Repository adapters for polydb.

- Repository: asynchronous contract (on_hydrate, find_all, find_by_id,
  insert, update, delete, search, aggregate)
- InMemoryRepository: dict-backed, application-level unique checks
- SqliteRepository: table generated from the relational schema,
  engine-enforced unique constraints
"""

from .base import EventPublisher, Repository, apply_pipeline, serialize_value, to_record
from .memory import InMemoryRepository
from .sqlite import SqliteRepository

__all__ = [
    "Repository",
    "EventPublisher",
    "InMemoryRepository",
    "SqliteRepository",
    "apply_pipeline",
    "serialize_value",
    "to_record",
]
