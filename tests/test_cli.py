"""Tests for the command line interface."""

import json

import pytest
from click.testing import CliRunner

from scriptorium.__main__ import cli


@pytest.fixture
def config(tmp_path):
    """Config file with a temporary data root and no index sources."""
    path = tmp_path / "config.yaml"
    path.write_text(f"data_root: {tmp_path / 'data'}\nsources: []\n")
    return path


@pytest.fixture
def run(config):
    runner = CliRunner()

    def invoke(*args):
        return runner.invoke(cli, ["--config", str(config), *args])

    return invoke


class TestImportCommands:
    """Tests for import and stored content commands."""

    def test_import_then_query(self, run, builder):
        """An imported package can be listed, searched and deleted."""
        directory = builder.translation("test-kjv")

        result = run("import", str(directory))
        assert result.exit_code == 0, result.output
        assert "Imported test-kjv" in result.output
        assert "Verses: 56" in result.output

        result = run("repositories")
        assert result.exit_code == 0, result.output
        assert "test-kjv" in result.output

        result = run("search", "1.1 of Exodus")
        assert result.exit_code == 0, result.output
        assert "Exodus 1:1" in result.output

        result = run("delete", "test-kjv", "--yes")
        assert result.exit_code == 0, result.output
        assert run("delete", "test-kjv", "--yes").exit_code == 1

    def test_failed_import_exits_nonzero(self, run, builder):
        """Import failures print errors and exit 1."""
        directory = builder.translation("test-kjv")
        (directory / "books" / "01-genesis.json").write_text("{}")

        result = run("import", str(directory))
        assert result.exit_code == 1
        assert "IntegrityError" in result.output

    def test_stats(self, run):
        """Stats print row counts."""
        result = run("stats")
        assert result.exit_code == 0, result.output
        assert "Verses" in result.output


class TestValidationCommands:
    """Tests for validate and scan."""

    def test_validate(self, run, builder):
        """Valid packages exit 0, invalid ones exit 1."""
        directory = builder.translation("test-kjv")
        assert run("validate", str(directory)).exit_code == 0

        manifest = builder.read_manifest(directory)
        manifest["technical"]["encoding"] = "latin-1"
        builder.write_manifest(directory, manifest)
        result = run("validate", str(directory))
        assert result.exit_code == 1
        assert "UNSUPPORTED_ENCODING" in result.output

    def test_scan_json(self, run, builder):
        """scan --json prints the scan result."""
        builder.translation("test-kjv")
        result = run("scan", str(builder.root), "--json")
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["repositories"][0]["manifest"]["repository"]["id"] == "test-kjv"


class TestAdminCommands:
    """Tests for migrate and config handling."""

    def test_migrate(self, run):
        """migrate reports the schema version."""
        result = run("migrate")
        assert result.exit_code == 0, result.output
        assert "Schema version: 7" in result.output

    def test_invalid_config(self, tmp_path):
        """A broken config file exits 1."""
        path = tmp_path / "config.yaml"
        path.write_text("server: [unclosed")
        result = CliRunner().invoke(cli, ["--config", str(path), "stats"])
        assert result.exit_code == 1
        assert "Error" in result.output
