"""
Schema inspection routes.

Read-only endpoints exposing the merged descriptors and the compiled
artifacts of a registry. Errors propagate as PolyDbError and are
translated by the handlers in polydb.api.errors.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ..compilers import BACKENDS, compile_schema
from ..errors import MetadataMissingError
from ..schema.registry import MetadataRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["Schema"])


class EntitySummary(BaseModel):
    """One registered entity."""
    name: str
    embedded: bool
    properties: list[str]


class SchemaListResponse(BaseModel):
    """All registered entities."""
    entities: list[EntitySummary]
    frozen: bool
    fingerprint: str | None = None


class CompiledSchemaResponse(BaseModel):
    """A compiled artifact."""
    entity: str
    backend: str
    artifact: dict[str, Any] = Field(..., description="Backend artifact as a dict")


def get_registry_from_app(request: Request) -> MetadataRegistry:
    return request.app.state.registry


def _lookup(registry: MetadataRegistry, name: str) -> type:
    cls = registry.lookup(name)
    if cls is None:
        raise MetadataMissingError(f"Entity '{name}' is not registered", class_name=name)
    return cls


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/schema", response_model=SchemaListResponse)
async def list_entities(request: Request) -> SchemaListResponse:
    registry = get_registry_from_app(request)
    entities = []
    for cls in registry.entities():
        descriptor = registry.get_merged_descriptor(cls)
        entities.append(
            EntitySummary(
                name=descriptor.name,
                embedded=descriptor.embedded,
                properties=descriptor.keys(),
            )
        )
    return SchemaListResponse(
        entities=entities, frozen=registry.frozen, fingerprint=registry.fingerprint
    )


@router.get("/schema/{entity}")
async def describe_entity(entity: str, request: Request) -> dict[str, Any]:
    registry = get_registry_from_app(request)
    return registry.get_merged_descriptor(_lookup(registry, entity)).to_dict()


@router.get("/schema/{entity}/{backend}", response_model=CompiledSchemaResponse)
async def compile_entity(
    entity: str,
    backend: str,
    request: Request,
    max_depth: int | None = Query(default=None, ge=0),
) -> CompiledSchemaResponse:
    if backend not in BACKENDS:
        raise HTTPException(status_code=400, detail=f"Unknown backend: {backend}")
    registry = get_registry_from_app(request)
    artifact = compile_schema(_lookup(registry, entity), backend, max_depth, registry=registry)
    return CompiledSchemaResponse(entity=entity, backend=backend, artifact=artifact.to_dict())
