"""
HTTP error translation for polydb errors.

Repository and registry errors are domain-level; API layers translate
them by their stable code, never by exception type or message text.

Response body:
    {"error": message, "error_code": code, "details": {...}}
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..errors import PolyDbError

logger = logging.getLogger(__name__)

STATUS_BY_CODE: dict[str, int] = {
    "SCHEMA_DEFINITION_ERROR": 422,
    "METADATA_MISSING": 404,
    "UNRESOLVED_RELATIONSHIP_TARGET": 500,
    "REGISTRY_FROZEN": 409,
    "UNIQUE_CONSTRAINT_VIOLATION": 409,
    "ENTITY_ALREADY_EXISTS": 409,
    "ENTITY_NOT_FOUND": 404,
    "HYDRATE_FUNCTION_NOT_SET": 500,
}


def status_for(error: PolyDbError) -> int:
    """HTTP status for an error code (500 for unknown codes)."""
    return STATUS_BY_CODE.get(error.code, 500)


async def polydb_error_handler(request: Request, exc: PolyDbError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    else:
        logger.debug(f"{request.method} {request.url.path} -> {status} {exc.code}")
    return JSONResponse(status_code=status, content=exc.to_dict())


def install_error_handlers(app: FastAPI) -> None:
    """Register the PolyDbError handler on a FastAPI app."""
    app.add_exception_handler(PolyDbError, polydb_error_handler)
