"""
SQLite repository adapter.

Binds a compiled RelationalSchema to a SQLite table: the table is created
from the schema's columns, and uniqueness is enforced by the engine
through PRIMARY KEY / UNIQUE constraints generated from the same
metadata.

Invariants:
    - One table per entity, named after the entity
    - Embedded values and arrays are stored as JSON text
    - Owning to-one relations store the target identifier in their join
      column; other relations are not stored in the table
    - sqlite3.IntegrityError on a unique key surfaces as
      UniqueConstraintViolation, never as a raw engine error
    - Writes run in an explicit transaction (BEGIN IMMEDIATE); the insert
      existence check runs inside it

How to change safely:
    - Column changes need a table migration; CREATE TABLE IF NOT EXISTS
      never alters an existing table
    - Keep SQLITE_TYPES in step with the relational compiler's type names

Table schema (for a User{id, name, email unique}):
    CREATE TABLE IF NOT EXISTS "User" (
        "id" TEXT PRIMARY KEY NOT NULL,
        "name" TEXT,
        "email" TEXT UNIQUE
    )
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional, Union

from ..compilers.relational import JSON_TYPE, SIMPLE_ARRAY_TYPE, Column, compile_relational_schema
from ..config import get_settings
from ..errors import (
    EntityAlreadyExistsError,
    EntityNotFoundError,
    MetadataMissingError,
    UniqueConstraintViolation,
)
from ..schema.classifier import Relationship
from ..schema.domain import UniqueIdentifier
from .base import Pipeline, Record, Repository, T, apply_pipeline, touched

logger = logging.getLogger(__name__)

SQLITE_TYPES: dict[str, str] = {
    "varchar": "TEXT",
    "bigint": "INTEGER",
    "double precision": "REAL",
    "boolean": "INTEGER",
    "timestamptz": "TEXT",
    "date": "TEXT",
    "bytea": "BLOB",
    JSON_TYPE: "TEXT",
    SIMPLE_ARRAY_TYPE: "TEXT",
}

_UNIQUE_FAILED = re.compile(r"UNIQUE constraint failed: (.+)$")


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def encode_value(column: Column, value: Any) -> Any:
    """Convert a record value into a SQLite parameter."""
    if value is None:
        return None
    if column.type in (JSON_TYPE, SIMPLE_ARRAY_TYPE):
        return json.dumps(value, default=str, sort_keys=True)
    if column.type == "boolean":
        return int(bool(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def decode_value(column: Column, value: Any) -> Any:
    """Convert a SQLite value back into a record value."""
    if value is None:
        return None
    if column.type in (JSON_TYPE, SIMPLE_ARRAY_TYPE):
        return json.loads(value)
    if column.type == "boolean":
        return bool(value)
    if column.type == "timestamptz":
        return datetime.fromisoformat(value)
    if column.type == "date":
        return date.fromisoformat(value)
    return value


def column_sql(column: Column) -> str:
    """Column definition for CREATE TABLE."""
    parts = [_quote(column.name), SQLITE_TYPES.get(column.type, "TEXT")]
    if column.primary:
        parts.append("PRIMARY KEY")
    if column.primary or column.nullable is False:
        parts.append("NOT NULL")
    if column.unique and not column.primary:
        parts.append("UNIQUE")
    if column.enum is not None and column.type not in (JSON_TYPE, SIMPLE_ARRAY_TYPE):
        allowed = ", ".join(_literal(v) for v in column.enum)
        parts.append(f"CHECK ({_quote(column.name)} IN ({allowed}))")
    return " ".join(parts)


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, (int, float)):
        return repr(value)
    return "'" + str(value).replace("'", "''") + "'"


class SqliteRepository(Repository[T]):
    """Relational repository backed by SQLite.

    Thread safety:
        Writes are serialized by an asyncio.Lock. File databases use one
        connection per operation; ``:memory:`` databases keep a single
        connection for the repository's lifetime.

    Example:
        >>> repo = SqliteRepository(User, "/var/lib/app/users.db")
        >>> await repo.initialize()
        >>> repo.on_hydrate(lambda r: User(**r))
        >>> await repo.insert(user)
    """

    def __init__(
        self,
        entity_class: type[T],
        db_path: Optional[str] = None,
        *,
        busy_timeout_ms: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the repository.

        Args:
            entity_class: Registered entity class
            db_path: SQLite file path or ':memory:' (defaults to settings.sqlite_path)
            busy_timeout_ms: SQLite busy timeout (defaults to settings)
            **kwargs: registry / publisher, see Repository
        """
        super().__init__(entity_class, **kwargs)
        settings = get_settings()
        self.db_path = db_path or settings.sqlite_path
        self.busy_timeout_ms = busy_timeout_ms or settings.sqlite_busy_timeout_ms
        self.schema = compile_relational_schema(entity_class, registry=self.registry)
        self.table = _quote(self.schema.name)

        # Property key -> column, in declaration order
        self._columns: list[tuple[str, Column]] = []
        for prop in self.descriptor.properties:
            if isinstance(prop.classification, Relationship):
                join_column = self._join_column_for(prop.key)
                if join_column is not None:
                    self._columns.append((prop.key, join_column))
                continue
            self._columns.append((prop.key, self._column_named(prop.key, prop.is_identifier)))
        self._pk_column = self.schema.primary_key
        self._shared_conn: Optional[sqlite3.Connection] = None
        self._lock = asyncio.Lock()

    def _column_named(self, key: str, is_identifier: bool) -> Column:
        column = self.schema.column(key)
        if column is None and is_identifier:
            column = self.schema.primary_key
        if column is None:
            raise KeyError(f"No column for property '{key}' in {self.schema.name}")
        return column

    def _join_column_for(self, key: str) -> Optional[Column]:
        """Foreign-key column of an owning to-one relation, or None."""
        relation = self.schema.relation(key)
        if relation is None or not relation.join_column:
            return None
        if isinstance(relation.join_column, dict):
            name = relation.join_column["name"]
        else:
            name = f"{key}_id"
        return Column(name=name, type="varchar", nullable=True)

    def _connect(self) -> sqlite3.Connection:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        return conn

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection.

        Yields:
            SQLite connection
        """
        if self.db_path == ":memory:":
            if self._shared_conn is None:
                self._shared_conn = self._connect()
            yield self._shared_conn
            return

        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    def close(self) -> None:
        """Close the shared in-memory connection, if any."""
        if self._shared_conn is not None:
            self._shared_conn.close()
            self._shared_conn = None

    def create_table_sql(self) -> str:
        """CREATE TABLE statement generated from the relational schema."""
        definitions = [column_sql(c) for _, c in self._columns]
        for group in self.schema.unique_together:
            definitions.append(f"UNIQUE ({', '.join(_quote(k) for k in group)})")
        body = ",\n    ".join(definitions)
        return f"CREATE TABLE IF NOT EXISTS {self.table} (\n    {body}\n)"

    async def initialize(self) -> None:
        """Create the table if it does not exist."""
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute(self.create_table_sql())
        logger.info(f"Initialized table {self.schema.name} at {self.db_path}")

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    def _row_to_record(self, row: sqlite3.Row) -> Record:
        record: Record = {}
        for key, column in self._columns:
            record[key] = decode_value(column, row[column.name])
        return record

    def _params(self, record: Record) -> list[Any]:
        return [encode_value(column, record.get(key)) for key, column in self._columns]

    def _violation(self, error: sqlite3.IntegrityError) -> Optional[UniqueConstraintViolation]:
        match = _UNIQUE_FAILED.search(str(error))
        if match is None:
            return None
        fields = []
        by_column = {column.name: key for key, column in self._columns}
        for qualified in match.group(1).split(","):
            column = qualified.strip().split(".", 1)[-1]
            fields.append(by_column.get(column, column))
        return UniqueConstraintViolation(
            f"{self.entity_name} violates unique constraint on {fields}",
            entity_name=self.entity_name,
            fields=fields,
        )

    def _select(self, conn: sqlite3.Connection, where: str = "", params: tuple = ()) -> list[Record]:
        sql = f"SELECT * FROM {self.table}"
        if where:
            sql += f" WHERE {where}"
        rows = conn.execute(sql, params).fetchall()
        return [self._row_to_record(row) for row in rows]

    # ------------------------------------------------------------------
    # Repository contract
    # ------------------------------------------------------------------

    async def find_all(self) -> list[T]:
        self._require_hydrator()
        with self._get_connection() as conn:
            records = self._select(conn)
        return [self.hydrate(r) for r in records]

    async def find_by_id(self, id: Union[str, UniqueIdentifier]) -> Optional[T]:
        self._require_hydrator()
        with self._get_connection() as conn:
            records = self._select(conn, f"{_quote(self._pk_column.name)} = ?", (str(id),))
        return self.hydrate(records[0]) if records else None

    async def insert(self, entity: T) -> None:
        entity_id = self.entity_id(entity)
        record = self.to_record(entity)
        names = ", ".join(_quote(column.name) for _, column in self._columns)
        placeholders = ", ".join("?" for _ in self._columns)

        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    exists = conn.execute(
                        f"SELECT 1 FROM {self.table} WHERE {_quote(self._pk_column.name)} = ?",
                        (entity_id,),
                    ).fetchone()
                    if exists:
                        raise EntityAlreadyExistsError(
                            f"{self.entity_name} with ID {entity_id} already exists",
                            entity_name=self.entity_name,
                            entity_id=entity_id,
                        )
                    conn.execute(
                        f"INSERT INTO {self.table} ({names}) VALUES ({placeholders})",
                        self._params(record),
                    )
                    conn.execute("COMMIT")
                except sqlite3.IntegrityError as e:
                    conn.execute("ROLLBACK")
                    violation = self._violation(e)
                    if violation is None:
                        raise
                    raise violation from e
                except Exception:
                    conn.execute("ROLLBACK")
                    raise

        logger.debug(f"Inserted {self.entity_name} {entity_id}")
        await self._after_write(entity, "create")

    async def update(self, entity: T) -> None:
        entity_id = self.entity_id(entity)
        assignments = ", ".join(f"{_quote(column.name)} = ?" for _, column in self._columns)

        with touched(entity):
            record = self.to_record(entity)
            async with self._lock:
                with self._get_connection() as conn:
                    conn.execute("BEGIN IMMEDIATE")
                    try:
                        cursor = conn.execute(
                            f"UPDATE {self.table} SET {assignments} "
                            f"WHERE {_quote(self._pk_column.name)} = ?",
                            [*self._params(record), entity_id],
                        )
                        conn.execute("COMMIT")
                    except sqlite3.IntegrityError as e:
                        conn.execute("ROLLBACK")
                        violation = self._violation(e)
                        if violation is None:
                            raise
                        raise violation from e
                    except Exception:
                        conn.execute("ROLLBACK")
                        raise

            if cursor.rowcount == 0:
                raise EntityNotFoundError(
                    f"{self.entity_name} with ID {entity_id} not found for update",
                    entity_name=self.entity_name,
                    entity_id=entity_id,
                )
        logger.debug(f"Updated {self.entity_name} {entity_id}")
        await self._after_write(entity)

    async def delete(self, entity: T) -> None:
        entity_id = self.entity_id(entity)
        async with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    f"DELETE FROM {self.table} WHERE {_quote(self._pk_column.name)} = ?",
                    (entity_id,),
                )
        if cursor.rowcount == 0:
            raise EntityNotFoundError(
                f"{self.entity_name} with ID {entity_id} not found for deletion",
                entity_name=self.entity_name,
                entity_id=entity_id,
            )
        logger.debug(f"Deleted {self.entity_name} {entity_id}")
        await self._after_write(entity, "delete")

    async def search(self, query: dict[str, Any]) -> list[T]:
        """Match every query key by equality."""
        self._require_hydrator()
        self.check_query_keys(query)
        columns = dict(self._columns)
        conditions = []
        params = []
        for key, value in query.items():
            column = columns.get(key)
            if column is None:
                raise MetadataMissingError(
                    f"'{self.entity_name}.{key}' has no join column and cannot be searched",
                    class_name=self.entity_name,
                    key=key,
                )
            conditions.append(f"{_quote(column.name)} = ?")
            params.append(encode_value(column, value))
        with self._get_connection() as conn:
            records = self._select(conn, " AND ".join(conditions), tuple(params))
        return [self.hydrate(r) for r in records]

    async def aggregate(self, pipeline: Pipeline) -> list[T]:
        """Filter with a callable over instances, or run a stage list over records."""
        self._require_hydrator()
        if callable(pipeline):
            return [e for e in await self.find_all() if pipeline(e)]
        with self._get_connection() as conn:
            records = self._select(conn)
        return [self.hydrate(r) for r in apply_pipeline(records, pipeline)]
