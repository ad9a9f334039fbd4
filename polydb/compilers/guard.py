"""
Recursion guard shared by the document and relational compilers.

Self-referential embedded types (a Node embedding a Node) would recurse
forever. Compilers call within_limit() before expanding a class and
substitute an empty placeholder schema when the limit is exceeded.
Reaching the limit is not an error and is never raised.

The graph compiler does not expand embedded types and does not use this.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..config import get_settings

logger = logging.getLogger(__name__)

# Marker carried by placeholder artifacts produced past the depth limit
EMPTY_DEPTH = "depth_limit"


def within_limit(depth: int, limit: int) -> bool:
    """Whether a class at ``depth`` may still be expanded."""
    return depth <= limit


def resolve_limit(max_depth: Optional[int]) -> int:
    """Explicit limit, or the configured default."""
    if max_depth is None:
        return get_settings().max_depth
    if max_depth < 0:
        raise ValueError(f"max_depth must be >= 0, got {max_depth}")
    return max_depth


def log_cutoff(name: str, depth: int, limit: int) -> None:
    logger.debug(f"Depth limit reached compiling {name} (depth={depth}, limit={limit})")
