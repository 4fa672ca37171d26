"""Tests for the rebac CLI and schema files."""

from __future__ import annotations

import json

import pytest

SCHEMA_YAML = """\
entities:
  user: {}
  folder:
    relations:
      owner:
        kind: direct
        allowed: [user]
      parent:
        kind: direct
        allowed: [folder]
      viewer:
        kind: derived
        rewrite:
          op: union
          children:
            - op: sameObjectRelation
              relation: owner
            - op: followRelation
              through: parent
              relation: viewer
"""

INVALID_SCHEMA_YAML = """\
entities:
  user: {}
  doc:
    relations:
      viewer:
        rewrite:
          op: sameObjectRelation
          relation: missing_relation
"""

EMPTY_CHILDREN_YAML = """\
entities:
  doc:
    relations:
      viewer:
        rewrite:
          op: union
          children:
"""

SCALAR_CHILDREN_YAML = """\
entities:
  doc:
    relations:
      viewer:
        rewrite:
          op: difference
          base:
            op: union
          subtract: owner
"""


@pytest.fixture
def schema_file(tmp_path):
    path = tmp_path / "schema.yaml"
    path.write_text(SCHEMA_YAML)
    return path


class TestSchemaFiles:
    """Tests for loading and dumping schema files."""

    def test_load_yaml(self, schema_file):
        """Test loading a YAML schema."""
        from rebac import RelationKind, load_schema_file

        schema = load_schema_file(schema_file)

        assert schema.entity_types == ["user", "folder"]
        assert schema.get_relation("folder", "viewer").kind == RelationKind.DERIVED

    def test_dump_and_reload(self, schema_file, tmp_path):
        """Test YAML and JSON output load back to the same schema."""
        from rebac import dump_schema_file, load_schema_file

        schema = load_schema_file(schema_file)

        for name in ["out.yaml", "out.json"]:
            path = dump_schema_file(schema, tmp_path / name)
            assert load_schema_file(path).to_dict() == schema.to_dict()

        assert json.loads((tmp_path / "out.json").read_text())["entities"]["user"] == {
            "relations": {}
        }

    def test_load_invalid_schema(self, tmp_path):
        """Test validation errors from a file."""
        from rebac import SchemaValidationError, load_schema_file

        path = tmp_path / "bad.yaml"
        path.write_text(INVALID_SCHEMA_YAML)

        with pytest.raises(SchemaValidationError, match="missing_relation"):
            load_schema_file(path)

        assert load_schema_file(path, validate=False).has_relation("doc", "viewer")

    def test_load_unparseable_file(self, tmp_path):
        """Test that syntax errors surface as schema errors."""
        from rebac import SchemaValidationError, load_schema_file

        path = tmp_path / "broken.json"
        path.write_text("{entities:")

        with pytest.raises(SchemaValidationError, match="cannot parse"):
            load_schema_file(path)

        path = tmp_path / "list.yaml"
        path.write_text("- user\n- doc\n")

        with pytest.raises(SchemaValidationError, match="must contain a mapping"):
            load_schema_file(path)


    def test_load_empty_operand_list(self, tmp_path):
        """Test that a bare 'children:' loads as an empty union."""
        from rebac import UnionRewrite, load_schema_file

        path = tmp_path / "empty.yaml"
        path.write_text(EMPTY_CHILDREN_YAML)

        schema = load_schema_file(path)

        assert schema.get_relation("doc", "viewer").rewrite == UnionRewrite(children=())

    def test_load_non_list_operands(self, tmp_path):
        """Test that operands given as a scalar are rejected."""
        from rebac import SchemaValidationError, load_schema_file

        path = tmp_path / "scalar.yaml"
        path.write_text(SCALAR_CHILDREN_YAML)

        with pytest.raises(SchemaValidationError, match="must be a list"):
            load_schema_file(path)


class TestValidateCommand:
    """Tests for `rebac validate`."""

    def test_valid(self, schema_file):
        """Test a valid schema file."""
        from typer.testing import CliRunner

        from rebac.cli import app

        runner = CliRunner()
        result = runner.invoke(app, ["validate", str(schema_file)])

        assert result.exit_code == 0
        assert "Schema is valid (2 entity types)" in result.output

    def test_invalid(self, tmp_path):
        """Test an invalid schema file lists its errors."""
        from typer.testing import CliRunner

        from rebac.cli import app

        path = tmp_path / "bad.yaml"
        path.write_text(INVALID_SCHEMA_YAML)

        runner = CliRunner()
        result = runner.invoke(app, ["validate", str(path)])

        assert result.exit_code == 1
        assert "Schema has 1 error(s):" in result.output
        assert "rewrite 'doc.viewer'" in result.output

    def test_malformed_operands(self, tmp_path):
        """Test a malformed rewrite is reported without a traceback."""
        from typer.testing import CliRunner

        from rebac.cli import app

        path = tmp_path / "scalar.yaml"
        path.write_text(SCALAR_CHILDREN_YAML)

        runner = CliRunner()
        result = runner.invoke(app, ["validate", str(path)])

        assert result.exit_code == 1
        assert "must be a list" in result.output
        assert result.exception is None or isinstance(result.exception, SystemExit)

    def test_missing_file(self, tmp_path):
        """Test a schema path that does not exist."""
        from typer.testing import CliRunner

        from rebac.cli import app

        runner = CliRunner()
        result = runner.invoke(app, ["validate", str(tmp_path / "nope.yaml")])

        assert result.exit_code == 1


class TestTupleCommands:
    """Tests for `rebac write`, `delete`, `check` and `query`."""

    def _write(self, runner, app, schema_file, tuples_file, obj, rel, subj):
        return runner.invoke(app, [
            "write", str(schema_file),
            "-o", obj, "-r", rel, "-s", subj,
            "--tuples", str(tuples_file),
        ])

    def test_write_then_check(self, schema_file, tmp_path):
        """Test the hierarchy scenario end to end."""
        from typer.testing import CliRunner

        from rebac.cli import app

        runner = CliRunner()
        tuples_file = tmp_path / "tuples.json"

        result = self._write(
            runner, app, schema_file, tuples_file, "folder:root", "owner", "user:alice"
        )
        assert result.exit_code == 0
        assert "Wrote folder:root#owner@user:alice" in result.output

        result = self._write(
            runner, app, schema_file, tuples_file, "folder:child", "parent", "folder:root"
        )
        assert result.exit_code == 0

        result = runner.invoke(app, [
            "check", str(schema_file), "user:alice", "folder:child", "viewer",
            "--tuples", str(tuples_file),
        ])
        assert result.exit_code == 0
        assert "ALLOWED: user:alice viewer folder:child" in result.output

        result = runner.invoke(app, [
            "check", str(schema_file), "user:bob", "folder:child", "viewer",
            "--tuples", str(tuples_file), "--strict",
        ])
        assert result.exit_code == 1
        assert "DENIED: user:bob viewer folder:child" in result.output

    def test_check_max_depth(self, schema_file, tmp_path):
        """Test the depth ceiling option."""
        from typer.testing import CliRunner

        from rebac.cli import app

        runner = CliRunner()
        tuples_file = tmp_path / "tuples.json"
        self._write(runner, app, schema_file, tuples_file, "folder:root", "owner", "user:alice")
        self._write(runner, app, schema_file, tuples_file, "folder:a", "parent", "folder:root")

        result = runner.invoke(app, [
            "check", str(schema_file), "user:alice", "folder:a", "viewer",
            "--tuples", str(tuples_file), "--max-depth", "1",
        ])
        assert "DENIED" in result.output

    def test_check_invalid_request_warns(self, schema_file, tmp_path):
        """Test that request problems are reported and denied."""
        from typer.testing import CliRunner

        from rebac.cli import app

        runner = CliRunner()
        result = runner.invoke(app, [
            "check", str(schema_file), "user:alice", "repo:1", "viewer",
            "--tuples", str(tmp_path / "tuples.json"),
        ])

        assert result.exit_code == 0
        assert "Warning: object: unknown entity type 'repo'" in result.output
        assert "DENIED" in result.output

    def test_write_rejects_derived_relation(self, schema_file, tmp_path):
        """Test that invalid writes fail without touching the file."""
        from typer.testing import CliRunner

        from rebac.cli import app

        runner = CliRunner()
        tuples_file = tmp_path / "tuples.json"
        result = self._write(
            runner, app, schema_file, tuples_file, "folder:root", "viewer", "user:alice"
        )

        assert result.exit_code == 1
        assert "derived relation" in result.output
        assert not tuples_file.exists()

    def test_delete(self, schema_file, tmp_path):
        """Test deleting a written tuple."""
        from typer.testing import CliRunner

        from rebac.cli import app

        runner = CliRunner()
        tuples_file = tmp_path / "tuples.json"
        self._write(runner, app, schema_file, tuples_file, "folder:root", "owner", "user:alice")

        result = runner.invoke(app, [
            "delete", str(schema_file),
            "-o", "folder:root", "-r", "owner", "-s", "user:alice",
            "--tuples", str(tuples_file),
        ])

        assert result.exit_code == 0
        assert "Deleted folder:root#owner@user:alice" in result.output
        assert json.loads(tuples_file.read_text()) == []

    def test_query(self, schema_file, tmp_path):
        """Test listing tuples in console and JSON formats."""
        from typer.testing import CliRunner

        from rebac.cli import app

        runner = CliRunner()
        tuples_file = tmp_path / "tuples.json"
        self._write(runner, app, schema_file, tuples_file, "folder:root", "owner", "user:alice")
        self._write(runner, app, schema_file, tuples_file, "folder:a", "parent", "folder:root")

        result = runner.invoke(app, ["query", "--tuples", str(tuples_file)])
        assert result.exit_code == 0
        assert "folder:root" in result.output
        assert "2 tuple(s)" in result.output

        result = runner.invoke(app, [
            "query", "--tuples", str(tuples_file), "-r", "owner", "--format", "json",
        ])
        assert result.exit_code == 0
        assert json.loads(result.output) == [
            {"object": "folder:root", "relation": "owner", "subject": "user:alice"}
        ]

        result = runner.invoke(app, ["query", "--tuples", str(tuples_file), "-o", "folder:zzz"])
        assert "No tuples found." in result.output

    def test_query_missing_file(self, tmp_path):
        """Test querying a tuple file that does not exist."""
        from typer.testing import CliRunner

        from rebac.cli import app

        runner = CliRunner()
        result = runner.invoke(app, ["query", "--tuples", str(tmp_path / "none.json")])

        assert result.exit_code == 1
