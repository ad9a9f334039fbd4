"""
Backend schema compilers for polydb.

Each compiler reads merged descriptors from the metadata registry and
returns a plain artifact with ``to_dict()``:
- compile_document_schema: nested document schema (``_id`` identifier)
- compile_graph_schema: node + relationship definitions
- compile_relational_schema: table columns + relation descriptors

Invariants:
    - Artifacts are pure functions of (descriptor, backend, depth)
    - Depth limit breaches produce placeholders, never errors
"""

from .document import DocumentField, DocumentSchema, compile_document_schema
from .graph import (
    GraphProperty,
    GraphSchema,
    NodeSchema,
    RelationshipSchema,
    compile_graph_schema,
)
from .guard import EMPTY_DEPTH, within_limit
from .relational import (
    PLACEHOLDER_NAME,
    Column,
    RelationalSchema,
    RelationSchema,
    compile_relational_schema,
)

BACKENDS = ("document", "graph", "relational")


def compile_schema(cls: type, backend: str, max_depth=None, *, registry=None):
    """Compile cls for a backend selected by name.

    Raises:
        ValueError: If backend is unknown
    """
    if backend == "document":
        return compile_document_schema(cls, max_depth, registry=registry)
    if backend == "graph":
        return compile_graph_schema(cls, registry=registry)
    if backend == "relational":
        return compile_relational_schema(cls, max_depth, registry=registry)
    raise ValueError(f"Unknown backend '{backend}'. Valid backends: {list(BACKENDS)}")


__all__ = [
    "BACKENDS",
    "compile_schema",
    # Document
    "DocumentField",
    "DocumentSchema",
    "compile_document_schema",
    # Graph
    "GraphProperty",
    "NodeSchema",
    "RelationshipSchema",
    "GraphSchema",
    "compile_graph_schema",
    # Relational
    "Column",
    "RelationSchema",
    "RelationalSchema",
    "PLACEHOLDER_NAME",
    "compile_relational_schema",
    # Guard
    "EMPTY_DEPTH",
    "within_limit",
]
