"""
Unit tests for the HTTP surface.

Tests cover:
- Error code to status mapping
- Error handler response bodies
- Schema inspection routes
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from polydb.api import STATUS_BY_CODE, create_app, install_error_handlers, status_for
from polydb.errors import (
    EntityNotFoundError,
    HydrationNotConfiguredError,
    MetadataMissingError,
    PolyDbError,
    RegistryFrozenError,
    SchemaDefinitionError,
    UniqueConstraintViolation,
    UnresolvedRelationshipTarget,
)

from tests.models import build_registry


class TestStatusMapping:
    """Tests for error code to HTTP status mapping."""

    @pytest.mark.parametrize(
        "error,status",
        [
            (SchemaDefinitionError("bad option"), 422),
            (MetadataMissingError("missing", class_name="User"), 404),
            (UnresolvedRelationshipTarget("broken", class_name="Order", key="customer"), 500),
            (RegistryFrozenError("frozen"), 409),
            (UniqueConstraintViolation("dup", entity_name="User", fields=["email"]), 409),
            (EntityNotFoundError("gone", entity_name="User", entity_id="u1"), 404),
            (HydrationNotConfiguredError("User"), 500),
        ],
    )
    def test_status_for(self, error, status):
        """Each error code maps to a fixed status."""
        assert status_for(error) == status

    def test_unknown_code_is_server_error(self):
        """Codes outside the table map to 500."""
        assert status_for(PolyDbError("boom", code="SOMETHING_ELSE")) == 500

    def test_every_error_code_is_mapped(self):
        """The table covers the whole error taxonomy."""
        assert set(STATUS_BY_CODE) >= {
            "SCHEMA_DEFINITION_ERROR",
            "METADATA_MISSING",
            "UNRESOLVED_RELATIONSHIP_TARGET",
            "REGISTRY_FROZEN",
            "UNIQUE_CONSTRAINT_VIOLATION",
            "ENTITY_ALREADY_EXISTS",
            "ENTITY_NOT_FOUND",
            "HYDRATE_FUNCTION_NOT_SET",
        }


class TestErrorHandlers:
    """Tests for the installed exception handlers."""

    @pytest.fixture
    def client(self):
        app = FastAPI()
        install_error_handlers(app)

        @app.get("/conflict")
        async def conflict():
            raise UniqueConstraintViolation(
                "User with {'email': 'a@x.io'} already exists", entity_name="User", fields=["email"]
            )

        @app.get("/missing")
        async def missing():
            raise EntityNotFoundError("User with ID u1 not found", entity_name="User", entity_id="u1")

        return TestClient(app)

    def test_unique_violation_is_conflict(self, client):
        """UniqueConstraintViolation becomes 409 with the error body."""
        response = client.get("/conflict")

        assert response.status_code == 409
        body = response.json()
        assert body["error_code"] == "UNIQUE_CONSTRAINT_VIOLATION"
        assert body["details"] == {"entity_name": "User", "fields": ["email"]}

    def test_not_found(self, client):
        """EntityNotFoundError becomes 404."""
        response = client.get("/missing")

        assert response.status_code == 404
        assert response.json()["error_code"] == "ENTITY_NOT_FOUND"


class TestSchemaRoutes:
    """Tests for the schema inspection API."""

    @pytest.fixture
    def client(self):
        return TestClient(create_app(build_registry()))

    def test_health(self, client):
        """Health endpoint responds."""
        assert client.get("/v1/health").json() == {"status": "ok"}

    def test_list_entities(self, client):
        """Registered entities are listed with their keys."""
        body = client.get("/v1/schema").json()

        names = [e["name"] for e in body["entities"]]
        assert "User" in names
        assert body["frozen"] is False
        user = next(e for e in body["entities"] if e["name"] == "User")
        assert user["properties"][:3] == ["id", "created_at", "updated_at"]

    def test_describe_entity(self, client):
        """The merged descriptor is returned as JSON."""
        body = client.get("/v1/schema/User").json()

        assert body["name"] == "User"
        email = next(p for p in body["properties"] if p["key"] == "email")
        assert email["unique"] is True

    def test_unknown_entity(self, client):
        """Unknown entities are 404 with METADATA_MISSING."""
        response = client.get("/v1/schema/Ghost")

        assert response.status_code == 404
        assert response.json()["error_code"] == "METADATA_MISSING"

    def test_compile_relational(self, client):
        """Compiled artifacts are returned per backend."""
        response = client.get("/v1/schema/Order/relational")

        assert response.status_code == 200
        body = response.json()
        assert body["backend"] == "relational"
        assert body["artifact"]["relations"]["customer"]["join_column"] == {"name": "customer_id"}

    def test_compile_document_with_depth(self, client):
        """max_depth bounds embedded recursion."""
        body = client.get("/v1/schema/TreeNode/document", params={"max_depth": 0}).json()

        child = body["artifact"]["fields"]["child"]["schema"]
        assert child["placeholder"] == "depth_limit"

    def test_unknown_backend(self, client):
        """Unknown backends are rejected with 400."""
        assert client.get("/v1/schema/User/columnar").status_code == 400

    def test_negative_depth_rejected(self, client):
        """max_depth must be non-negative."""
        assert client.get("/v1/schema/User/document", params={"max_depth": -1}).status_code == 422
