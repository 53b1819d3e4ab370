"""
Tests for crudable.schema.validator

Covers:
  - validate_yaml_file()           - single-file validation (valid + invalid)
  - validate_metadata_dir()        - directory walk (real metadata passes)
  - validate_metadata_dir(strict=True)
  - validate_registry()            - relation targets, role cycles, sort keys
"""
from __future__ import annotations

from pathlib import Path

import yaml

from crudable.schema.validator import (
    ValidationIssue,
    validate_metadata_dir,
    validate_registry,
    validate_yaml_file,
)

from helpers import ROLES, make_registry


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _write_yaml(path: Path, data: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data))
    return path


def _write_raw(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


# Path to the real metadata directory
_REPO_ROOT = Path(__file__).resolve().parents[2]
_METADATA_DIR = _REPO_ROOT / "metadata"


# ---------------------------------------------------------------------------
# validate_yaml_file
# ---------------------------------------------------------------------------


class TestTableFile:
    def test_valid_minimal_table(self, tmp_path):
        path = _write_yaml(tmp_path / "Tag.yaml", {"table": "Tag", "fields": {"name": {"type": "varchar"}}})
        assert validate_yaml_file(path, "table.schema.json") == []

    def test_missing_table_key(self, tmp_path):
        path = _write_yaml(tmp_path / "Tag.yaml", {"fields": {"name": {}}})
        issues = validate_yaml_file(path, "table.schema.json")
        assert any("'table' is a required property" in i.message for i in issues)

    def test_missing_fields_key(self, tmp_path):
        path = _write_yaml(tmp_path / "Tag.yaml", {"table": "Tag"})
        issues = validate_yaml_file(path, "table.schema.json")
        assert any("'fields' is a required property" in i.message for i in issues)

    def test_invalid_capability(self, tmp_path):
        path = _write_yaml(
            tmp_path / "Tag.yaml",
            {"table": "Tag", "granted": {"public": ["browse"]}, "fields": {"name": {}}},
        )
        issues = validate_yaml_file(path, "table.schema.json")
        assert [i.path for i in issues] == ["granted/public[0]"]

    def test_invalid_relationship_strength(self, tmp_path):
        path = _write_yaml(
            tmp_path / "Tag.yaml",
            {"table": "Tag", "fields": {"idPage": {"relation": "Page", "relationshipStrength": "Medium"}}},
        )
        issues = validate_yaml_file(path, "table.schema.json")
        assert [i.path for i in issues] == ["fields/idPage/relationshipStrength"]

    def test_sort_key_forms(self, tmp_path):
        path = _write_yaml(
            tmp_path / "Track.yaml",
            {
                "table": "Track",
                "fields": {
                    "a": {"relation": "X", "defaultSort": "position"},
                    "b": {"relation": "X", "defaultSort": {"field": "position", "order": "desc"}},
                    "c": {"relation": "X", "defaultSort": [{"field": "position"}]},
                },
            },
        )
        assert validate_yaml_file(path, "table.schema.json") == []

    def test_empty_yaml_file_returns_error(self, tmp_path):
        path = _write_raw(tmp_path / "Empty.yaml", "")
        issues = validate_yaml_file(path, "table.schema.json")
        assert len(issues) == 1
        assert "empty" in issues[0].message

    def test_malformed_yaml_returns_error(self, tmp_path):
        path = _write_raw(tmp_path / "Bad.yaml", "table: [unclosed\n")
        issues = validate_yaml_file(path, "table.schema.json")
        assert len(issues) == 1
        assert "YAML parse error" in issues[0].message


class TestSchemaFile:
    def test_valid_schema_document(self, tmp_path):
        path = _write_yaml(tmp_path / "schema.yaml", {"roles": ROLES, "commonFields": {}})
        assert validate_yaml_file(path, "schema.schema.json") == []

    def test_unknown_role_key(self, tmp_path):
        path = _write_yaml(tmp_path / "schema.yaml", {"roles": {"public": {"parents": []}}})
        issues = validate_yaml_file(path, "schema.schema.json")
        assert issues and issues[0].path == "roles/public"


# ---------------------------------------------------------------------------
# validate_metadata_dir
# ---------------------------------------------------------------------------


class TestMetadataDir:
    def test_real_metadata_is_valid(self):
        issues = validate_metadata_dir(_METADATA_DIR)
        errors = [i for i in issues if i.severity == "error"]
        assert errors == [], "\n".join(str(i) for i in errors)

    def test_nonexistent_dir_returns_issue(self, tmp_path):
        issues = validate_metadata_dir(tmp_path / "nope")
        assert len(issues) == 1
        assert "does not exist" in issues[0].message

    def test_empty_dir_returns_no_issues(self, tmp_path):
        assert validate_metadata_dir(tmp_path) == []

    def test_multiple_invalid_files_all_reported(self, tmp_path):
        _write_yaml(tmp_path / "tables" / "A.yaml", {"table": "A"})
        _write_yaml(tmp_path / "tables" / "B.yaml", {"fields": {}})
        issues = validate_metadata_dir(tmp_path)
        assert {i.file.name for i in issues} == {"A.yaml", "B.yaml"}

    def test_strict_mode_escalates_warnings(self, tmp_path):
        _write_yaml(tmp_path / "tables" / "A.yaml", {"table": "A"})
        issues = validate_metadata_dir(tmp_path, strict=True)
        assert issues and all(i.severity == "error" for i in issues)


# ---------------------------------------------------------------------------
# validate_registry
# ---------------------------------------------------------------------------


def _semantic(tables=None, roles=None):
    return validate_registry(make_registry({"roles": roles or ROLES, "tables": tables or {}}))


class TestRegistry:
    def test_shared_fixture_schema_is_clean(self):
        assert validate_registry(make_registry()) == []

    def test_unknown_relation_target(self):
        issues = _semantic({"A": {"fields": {"ref": {"relation": "Missing"}}}})
        assert [i.message for i in issues] == ["Relation target 'Missing' is not a table"]
        assert issues[0].path == "tables/A/fields/ref"

    def test_relation_target_is_case_insensitive(self):
        issues = _semantic({
            "Album": {"fields": {"name": {}}},
            "Track": {
                "fields": {
                    "position": {},
                    "ref": {"relation": "album", "foreignKey": "name", "defaultSort": "position"},
                },
            },
        })
        assert issues == []

    def test_case_insensitive_target_still_checks_foreign_key(self):
        issues = _semantic({
            "Album": {"fields": {"name": {}}},
            "Track": {"fields": {"ref": {"relation": "ALBUM", "foreignKey": "code"}}},
        })
        assert [i.message for i in issues] == ["Foreign key 'code' is not a field of 'Album'"]

    def test_unknown_foreign_key(self):
        issues = _semantic({
            "A": {"fields": {"name": {}}},
            "B": {"fields": {"ref": {"relation": "A", "foreignKey": "code"}}},
        })
        assert "Foreign key 'code'" in issues[0].message

    def test_sort_field_must_exist_on_source_table(self):
        issues = _semantic({
            "A": {"fields": {"name": {}}},
            "B": {"fields": {"ref": {"relation": "A", "defaultSort": "position"}}},
        })
        assert issues[0].path == "tables/B/fields/ref/defaultSort"

    def test_role_cycle_is_an_error(self):
        issues = _semantic(roles={"a": {"inherits": ["b"]}, "b": {"inherits": ["a"]}})
        assert len(issues) == 1
        assert issues[0].severity == "error"
        assert "a -> b -> a" in issues[0].message

    def test_unknown_parent_role_is_a_warning(self):
        issues = _semantic(roles={"member": {"inherits": ["ghost"]}})
        assert [(i.severity, i.path) for i in issues] == [("warning", "roles/member")]

    def test_duplicate_reverse_name_is_a_warning(self):
        issues = _semantic({
            "A": {"fields": {"name": {}}},
            "B": {"fields": {"ref": {"relation": "A", "arrayName": "items"}}},
            "C": {"fields": {"ref": {"relation": "A", "arrayName": "items"}}},
        })
        assert len(issues) == 1
        assert issues[0].severity == "warning"
        assert "B.ref" in issues[0].message

    def test_missing_display_field_is_a_warning(self):
        issues = _semantic({"A": {"displayFields": ["title"], "fields": {"name": {}}}})
        assert issues[0].severity == "warning"


def test_issue_str_format():
    issue = ValidationIssue(file=Path("x.yaml"), message="bad", path="fields/a")
    assert str(issue) == "[ERROR] x.yaml at fields/a: bad"
    assert str(ValidationIssue(file=None, message="m", severity="warning")) == "[WARNING] <schema>: m"
