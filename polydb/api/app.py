"""
polydb schema API.

Serves the registered model and its compiled artifacts over HTTP.

Usage:
    uvicorn polydb.api.app:app --port 8080
"""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI

from ..schema.registry import MetadataRegistry, get_registry
from .errors import install_error_handlers
from .routes import router


def create_app(registry: Optional[MetadataRegistry] = None) -> FastAPI:
    """Create the schema API app.

    Args:
        registry: Registry to serve (defaults to the global registry)
    """
    app = FastAPI(
        title="polydb schema",
        description="Merged descriptors and compiled document, graph and relational schemas.",
        version="0.1.0",
    )
    app.state.registry = registry or get_registry()
    install_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()
