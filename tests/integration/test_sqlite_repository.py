"""
Integration tests for the SQLite repository.

Tests cover:
- Table creation from the relational schema
- CRUD against a real SQLite file
- Engine-enforced unique and composite constraints
- Value encoding (JSON, booleans, timestamps)
- Join-column persistence for owning relations
"""

import os
import sqlite3
import tempfile

import pytest
import pytest_asyncio

from polydb.errors import (
    EntityAlreadyExistsError,
    EntityNotFoundError,
    HydrationNotConfiguredError,
    MetadataMissingError,
    UniqueConstraintViolation,
)
from polydb.repository import SqliteRepository

from tests.models import (
    Address,
    Membership,
    Order,
    OrderStatus,
    User,
    build_registry,
    hydrate_order,
    hydrate_user,
)


class TestSqliteRepository:
    """Tests for SqliteRepository with a file database."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def registry(self):
        return build_registry()

    @pytest_asyncio.fixture
    async def repo(self, data_dir, registry):
        repo = SqliteRepository(User, os.path.join(data_dir, "users.db"), registry=registry)
        await repo.initialize()
        repo.on_hydrate(hydrate_user)
        return repo

    def test_create_table_sql(self, data_dir, registry):
        """The table definition follows the relational schema."""
        repo = SqliteRepository(User, os.path.join(data_dir, "users.db"), registry=registry)
        sql = repo.create_table_sql()

        assert sql.startswith('CREATE TABLE IF NOT EXISTS "User"')
        assert '"id" TEXT PRIMARY KEY NOT NULL' in sql
        assert '"email" TEXT UNIQUE' in sql
        assert """CHECK ("role" IN ('admin', 'member'))""" in sql
        assert '"orders"' not in sql

    @pytest.mark.asyncio
    async def test_insert_and_find(self, repo):
        """Inserted rows round-trip through hydration."""
        alice = User(
            name="Alice",
            email="alice@example.com",
            tags=["admin", "ops"],
            address=Address("1 Main", "Springfield"),
            active=False,
        )
        await repo.insert(alice)

        fetched = await repo.find_by_id(alice.id)
        assert fetched == alice
        assert fetched.tags == ["admin", "ops"]
        assert fetched.address == Address("1 Main", "Springfield")
        assert fetched.active is False
        assert fetched.created_at == alice.created_at

    @pytest.mark.asyncio
    async def test_find_missing(self, repo):
        """Unknown identifiers give None."""
        assert await repo.find_by_id("missing") is None

    @pytest.mark.asyncio
    async def test_unique_violation(self, repo):
        """Engine unique errors surface as UniqueConstraintViolation."""
        first = User(name="Alice", email="a@x.io")
        second = User(name="Alicia", email="a@x.io")
        await repo.insert(first)

        with pytest.raises(UniqueConstraintViolation) as exc_info:
            await repo.insert(second)

        assert exc_info.value.fields == ["email"]
        assert (await repo.find_by_id(first.id)).name == "Alice"
        assert await repo.find_by_id(second.id) is None

    @pytest.mark.asyncio
    async def test_duplicate_id(self, repo):
        """Re-inserting an identifier raises EntityAlreadyExistsError."""
        alice = User(name="Alice", email="alice@example.com")
        await repo.insert(alice)

        with pytest.raises(EntityAlreadyExistsError):
            await repo.insert(alice)

    @pytest.mark.asyncio
    async def test_check_constraint_is_not_unique_violation(self, repo):
        """Other integrity errors are not reported as unique violations."""
        with pytest.raises(sqlite3.IntegrityError):
            await repo.insert(User(name="Eve", email="eve@example.com", role="root"))

    @pytest.mark.asyncio
    async def test_update(self, repo):
        """Updates persist and set updated_at."""
        alice = User(name="Alice", email="alice@example.com")
        await repo.insert(alice)

        alice.name = "Alice Smith"
        await repo.update(alice)

        fetched = await repo.find_by_id(alice.id)
        assert fetched.name == "Alice Smith"
        assert fetched.updated_at is not None

    @pytest.mark.asyncio
    async def test_update_collision(self, repo):
        """Updating into a taken unique value raises and keeps the row."""
        alice = User(name="Alice", email="alice@example.com")
        bob = User(name="Bob", email="bob@example.com")
        await repo.insert(alice)
        await repo.insert(bob)

        bob.email = "alice@example.com"
        with pytest.raises(UniqueConstraintViolation):
            await repo.update(bob)
        assert (await repo.find_by_id(bob.id)).email == "bob@example.com"

    @pytest.mark.asyncio
    async def test_failed_update_leaves_entity_untouched(self, repo):
        """Rejected updates restore updated_at on the caller's instance."""
        alice = User(name="Alice", email="alice@example.com")
        bob = User(name="Bob", email="bob@example.com")
        await repo.insert(alice)
        await repo.insert(bob)

        bob.email = "alice@example.com"
        with pytest.raises(UniqueConstraintViolation):
            await repo.update(bob)
        assert bob.updated_at is None

        ghost = User(name="Ghost", email="ghost@example.com")
        with pytest.raises(EntityNotFoundError):
            await repo.update(ghost)
        assert ghost.updated_at is None

    @pytest.mark.asyncio
    async def test_duplicate_id_from_another_writer(self, data_dir, registry, repo):
        """A row written through another connection is reported as already existing."""
        other = SqliteRepository(User, os.path.join(data_dir, "users.db"), registry=registry)
        alice = User(name="Alice", email="alice@example.com")
        await other.insert(alice)

        with pytest.raises(EntityAlreadyExistsError):
            await repo.insert(User(name="Alice", email="other@example.com", id=alice.id.value))

    @pytest.mark.asyncio
    async def test_update_and_delete_missing(self, repo):
        """Writes against unknown identifiers raise EntityNotFoundError."""
        ghost = User(name="Ghost", email="ghost@example.com")

        with pytest.raises(EntityNotFoundError):
            await repo.update(ghost)
        with pytest.raises(EntityNotFoundError):
            await repo.delete(ghost)

    @pytest.mark.asyncio
    async def test_delete(self, repo):
        """Deleted rows are gone."""
        alice = User(name="Alice", email="alice@example.com")
        await repo.insert(alice)

        await repo.delete(alice)

        assert await repo.find_all() == []

    @pytest.mark.asyncio
    async def test_search(self, repo):
        """Search matches by equality."""
        await repo.insert(User(name="Alice", email="alice@example.com", role="admin"))
        await repo.insert(User(name="Bob", email="bob@example.com"))

        admins = await repo.search({"role": "admin"})
        assert [u.name for u in admins] == ["Alice"]
        assert await repo.search({"name": "Ali"}) == []

    @pytest.mark.asyncio
    async def test_search_inverse_relation(self, repo):
        """Relations without a join column cannot be searched."""
        with pytest.raises(MetadataMissingError):
            await repo.search({"orders": "x"})

    @pytest.mark.asyncio
    async def test_aggregate(self, repo):
        """Pipelines run over decoded records."""
        for name in ["Carol", "Alice", "Bob"]:
            await repo.insert(User(name=name, email=f"{name.lower()}@example.com"))

        result = await repo.aggregate([{"$sort": {"name": -1}}, {"$limit": 2}])
        assert [u.name for u in result] == ["Carol", "Bob"]

        result = await repo.aggregate(lambda u: u.name.startswith("A"))
        assert [u.name for u in result] == ["Alice"]

    @pytest.mark.asyncio
    async def test_data_persists_across_instances(self, data_dir, registry, repo):
        """A second repository on the same file sees the rows."""
        alice = User(name="Alice", email="alice@example.com")
        await repo.insert(alice)

        other = SqliteRepository(User, os.path.join(data_dir, "users.db"), registry=registry)
        await other.initialize()
        other.on_hydrate(hydrate_user)

        assert (await other.find_by_id(alice.id)).name == "Alice"

    @pytest.mark.asyncio
    async def test_reads_require_hydrator(self, data_dir, registry):
        """Reads before on_hydrate raise HydrationNotConfiguredError."""
        repo = SqliteRepository(User, os.path.join(data_dir, "users.db"), registry=registry)
        await repo.initialize()

        with pytest.raises(HydrationNotConfiguredError):
            await repo.find_all()


class TestSqliteConstraints:
    """Tests for composite keys and relations."""

    @pytest.fixture
    def data_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.mark.asyncio
    async def test_unique_together(self, data_dir):
        """Composite unique keys are enforced by the engine."""
        repo = SqliteRepository(
            Membership, os.path.join(data_dir, "members.db"), registry=build_registry()
        )
        await repo.initialize()

        await repo.insert(Membership(org="acme", member="alice"))
        await repo.insert(Membership(org="acme", member="bob"))

        with pytest.raises(UniqueConstraintViolation) as exc_info:
            await repo.insert(Membership(org="acme", member="alice"))
        assert exc_info.value.fields == ["org", "member"]

    @pytest.mark.asyncio
    async def test_join_column_persisted(self, data_dir):
        """Owning to-one relations store the target identifier."""
        repo = SqliteRepository(Order, os.path.join(data_dir, "orders.db"), registry=build_registry())
        await repo.initialize()
        repo.on_hydrate(hydrate_order)
        alice = User(name="Alice", email="alice@example.com")
        order = Order(total=9.99, customer=alice)

        await repo.insert(order)

        assert '"customer_id" TEXT' in repo.create_table_sql()
        fetched = await repo.find_by_id(order.id)
        assert fetched.customer == alice.id.value
        assert fetched.status is OrderStatus.PENDING
        assert [o.id for o in await repo.search({"customer": alice.id.value})] == [order.id]


class TestSqliteInMemory:
    """Tests for ':memory:' databases."""

    @pytest.mark.asyncio
    async def test_shared_connection(self):
        """An in-memory database keeps its table across operations."""
        repo = SqliteRepository(User, ":memory:", registry=build_registry())
        await repo.initialize()
        repo.on_hydrate(hydrate_user)
        try:
            alice = User(name="Alice", email="alice@example.com")
            await repo.insert(alice)
            assert (await repo.find_by_id(alice.id)).name == "Alice"
        finally:
            repo.close()

    @pytest.mark.asyncio
    async def test_duplicate_id_rolls_back(self):
        """A rejected duplicate leaves no open transaction on the shared connection."""
        repo = SqliteRepository(User, ":memory:", registry=build_registry())
        await repo.initialize()
        repo.on_hydrate(hydrate_user)
        try:
            alice = User(name="Alice", email="alice@example.com")
            await repo.insert(alice)
            with pytest.raises(EntityAlreadyExistsError):
                await repo.insert(alice)

            bob = User(name="Bob", email="bob@example.com")
            await repo.insert(bob)
            assert (await repo.find_by_id(bob.id)).name == "Bob"
        finally:
            repo.close()
