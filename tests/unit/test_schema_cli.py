"""
Unit tests for the schema CLI.

Tests cover:
- compile / describe / snapshot commands
- Error reporting and exit codes
"""

import json
import logging
import os
import tempfile

import pytest

from polydb.schema import MetadataRegistry
from polydb.tools.schema_cli import SchemaCLI, _load_registry, main

from tests import models
from tests.models import build_registry


class TestSchemaCLI:
    """Tests for SchemaCLI."""

    def test_compile(self):
        """compile returns the artifact as JSON."""
        output = json.loads(SchemaCLI().compile(build_registry(), "User", "graph"))
        assert output["nodes"][0]["label"] == "User"

    def test_describe(self):
        """describe returns the merged descriptor."""
        output = json.loads(SchemaCLI().describe(build_registry(), "Order"))
        assert output["name"] == "Order"

    def test_snapshot(self):
        """snapshot lists every backend for stored entities."""
        registry = build_registry()
        fingerprint = registry.freeze()

        output = json.loads(SchemaCLI().snapshot(registry))

        assert output["fingerprint"] == fingerprint
        assert set(output["compiled"]["User"]) == {"document", "graph", "relational"}
        assert set(output["compiled"]["Address"]) == {"document"}

    def test_load_registry_from_module(self):
        """A module's registry attribute is used."""
        assert _load_registry("tests.models") is models.registry

    def test_load_registry_default(self):
        """Without a module the global registry is used."""
        assert isinstance(_load_registry(None), MetadataRegistry)


class TestMain:
    """Tests for the CLI entry point."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_compile_command(self, capsys):
        """compile prints JSON and exits 0."""
        with pytest.raises(SystemExit) as exc_info:
            main(["compile", "--module", "tests.models", "--entity", "User", "--backend", "relational"])

        assert exc_info.value.code == 0
        output = json.loads(capsys.readouterr().out)
        assert output["columns"]["email"]["unique"] is True

    def test_max_depth_option(self, capsys):
        """--max-depth bounds embedded recursion."""
        with pytest.raises(SystemExit):
            main(
                [
                    "compile",
                    "--module",
                    "tests.models",
                    "--entity",
                    "TreeNode",
                    "--backend",
                    "document",
                    "--max-depth",
                    "0",
                ]
            )

        output = json.loads(capsys.readouterr().out)
        assert output["fields"]["child"]["schema"]["placeholder"] == "depth_limit"

    def test_unknown_entity(self, capsys):
        """polydb errors exit 1 and print their code."""
        with pytest.raises(SystemExit) as exc_info:
            main(["describe", "--module", "tests.models", "--entity", "Ghost"])

        assert exc_info.value.code == 1
        assert "METADATA_MISSING" in capsys.readouterr().err

    def test_snapshot_to_file(self, capsys, monkeypatch):
        """snapshot writes the export to --output."""
        monkeypatch.setattr(models, "registry", build_registry())

        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "schema.lock.json")
            with pytest.raises(SystemExit) as exc_info:
                main(["snapshot", "--module", "tests.models", "--output", path])

            assert exc_info.value.code == 0
            with open(path) as f:
                data = json.load(f)

        assert data["fingerprint"].startswith("sha256:")
        assert "Schema exported" in capsys.readouterr().err
