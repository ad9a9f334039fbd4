"""
Schema CLI tool for polydb.

This tool inspects registered models and their compiled artifacts:
- compile: Compile one entity for one backend
- describe: Show the merged descriptor of one entity
- snapshot: Export every entity, every backend and the fingerprint

Usage:
    polydb-schema compile --module app.models --entity User --backend relational
    polydb-schema describe --module app.models --entity User
    polydb-schema snapshot --module app.models > schema.lock.json

Invariants:
    - Output is deterministic (sorted JSON)
    - polydb errors exit with code 1 and print their code to stderr

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for CI parsing
"""

from __future__ import annotations

import argparse
import importlib
import json
import logging
import sys
from typing import Any, Optional

from ..compilers import BACKENDS, compile_schema
from ..errors import MetadataMissingError, PolyDbError
from ..logging_setup import setup_logging
from ..schema.registry import MetadataRegistry, get_registry

logger = logging.getLogger(__name__)


class SchemaCLI:
    """CLI tool for schema inspection.

    Example:
        >>> cli = SchemaCLI()
        >>> print(cli.compile(registry, "User", "document"))
        >>> print(cli.snapshot(registry))
    """

    def _entity(self, registry: MetadataRegistry, name: str) -> type:
        cls = registry.lookup(name)
        if cls is None:
            raise MetadataMissingError(f"Entity '{name}' is not registered", class_name=name)
        return cls

    def compile(
        self,
        registry: MetadataRegistry,
        entity: str,
        backend: str,
        max_depth: Optional[int] = None,
    ) -> str:
        """Compile one entity and return the artifact as JSON."""
        artifact = compile_schema(
            self._entity(registry, entity), backend, max_depth, registry=registry
        )
        return json.dumps(artifact.to_dict(), indent=2, sort_keys=True)

    def describe(self, registry: MetadataRegistry, entity: str) -> str:
        """Return the merged descriptor of one entity as JSON."""
        descriptor = registry.get_merged_descriptor(self._entity(registry, entity))
        return json.dumps(descriptor.to_dict(), indent=2, sort_keys=True)

    def snapshot(self, registry: MetadataRegistry) -> str:
        """Export all entities for all backends.

        Embedded-only classes are listed in the descriptors but only
        compiled for the document backend.
        """
        compiled: dict[str, dict[str, Any]] = {}
        for cls in registry.entities():
            descriptor = registry.get_merged_descriptor(cls)
            backends = ("document",) if descriptor.embedded else BACKENDS
            compiled[descriptor.name] = {
                backend: compile_schema(cls, backend, registry=registry).to_dict()
                for backend in backends
            }

        output = {
            "version": 1,
            "fingerprint": registry.fingerprint or "unfrozen",
            "schema": registry.to_dict(),
            "compiled": compiled,
        }
        return json.dumps(output, indent=2, sort_keys=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="polydb schema tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    compile_parser = subparsers.add_parser("compile", help="Compile one entity for a backend")
    compile_parser.add_argument("--module", help="Python module containing model registrations")
    compile_parser.add_argument("--entity", required=True, help="Entity name")
    compile_parser.add_argument("--backend", required=True, choices=list(BACKENDS))
    compile_parser.add_argument("--max-depth", type=int, default=None, help="Recursion limit")

    describe_parser = subparsers.add_parser("describe", help="Show the merged descriptor")
    describe_parser.add_argument("--module", help="Python module containing model registrations")
    describe_parser.add_argument("--entity", required=True, help="Entity name")

    snapshot_parser = subparsers.add_parser("snapshot", help="Export all compiled schemas")
    snapshot_parser.add_argument("--module", help="Python module containing model registrations")
    snapshot_parser.add_argument("--output", "-o", help="Output file (default: stdout)")

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point for schema tool."""
    args = build_parser().parse_args(argv)
    setup_logging()
    cli = SchemaCLI()

    try:
        registry = _load_registry(args.module)

        if args.command == "compile":
            print(cli.compile(registry, args.entity, args.backend, args.max_depth))

        elif args.command == "describe":
            print(cli.describe(registry, args.entity))

        elif args.command == "snapshot":
            if registry.fingerprint is None:
                registry.freeze()
            output = cli.snapshot(registry)
            if args.output:
                with open(args.output, "w") as f:
                    f.write(output)
                print(f"Schema exported to {args.output}", file=sys.stderr)
            else:
                print(output)

    except PolyDbError as e:
        print(f"error [{e.code}]: {e.message}", file=sys.stderr)
        sys.exit(1)

    sys.exit(0)


def _load_registry(module_path: str | None = None) -> MetadataRegistry:
    """Load the metadata registry from a module.

    Importing the module runs its registrations. A module exposing
    ``registry`` or ``get_registry()`` provides its own registry;
    otherwise the global registry is used.

    Args:
        module_path: Python module path containing registrations

    Returns:
        MetadataRegistry instance
    """
    if module_path:
        module = importlib.import_module(module_path)
        if isinstance(getattr(module, "registry", None), MetadataRegistry):
            return module.registry
        if hasattr(module, "get_registry"):
            return module.get_registry()

    return get_registry()


if __name__ == "__main__":
    main()
