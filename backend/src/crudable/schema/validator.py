"""
schema/validator.py: validation for the YAML schema files.

Two passes:

* JSON Schema validation of ``schema.yaml`` and every ``tables/*.yaml`` file.
* Semantic validation of a built :class:`SchemaRegistry`: relation targets,
  role inheritance references and cycles, display fields, sort keys.

Usage:
    from crudable.schema.validator import validate_metadata_dir, validate_registry

    issues = validate_metadata_dir(Path("metadata"))
    for issue in issues:
        print(issue)
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError as JSONSchemaError
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from crudable.schema.loader import SchemaRegistry

logger = logging.getLogger(__name__)

_SCHEMAS_DIR = Path(__file__).parent / "schemas"

_SCHEMA_NAMES = [
    "_defs.schema.json",
    "schema.schema.json",
    "table.schema.json",
]


@dataclass
class ValidationIssue:
    """A single validation finding for a schema file or table."""

    file: Path | None
    message: str
    path: str = ""          # JSON pointer path within the document, e.g. "fields/idPage"
    severity: str = "error" # "error" | "warning"

    def __str__(self) -> str:
        loc = f" at {self.path}" if self.path else ""
        source = self.file if self.file is not None else "<schema>"
        return f"[{self.severity.upper()}] {source}{loc}: {self.message}"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _load_schema(name: str) -> dict[str, Any]:
    schema_path = _SCHEMAS_DIR / name
    with schema_path.open() as fh:
        return json.load(fh)


def _load_registry() -> Registry:
    """Build a jsonschema Registry containing all schema documents."""
    resources = []
    for name in _SCHEMA_NAMES:
        schema = _load_schema(name)
        resources.append(
            (schema["$id"], Resource(contents=schema, specification=DRAFT202012))
        )
    return Registry().with_resources(resources)


def _json_path(error: JSONSchemaError) -> str:
    """Convert a jsonschema ValidationError path to a readable string."""
    parts = []
    for p in error.absolute_path:
        if isinstance(p, int):
            parts.append(f"[{p}]")
        else:
            parts.append(str(p))
    return "/".join(parts).replace("/[", "[")


# ---------------------------------------------------------------------------
# JSON Schema pass
# ---------------------------------------------------------------------------


def validate_yaml_file(
    yaml_path: Path,
    schema_name: str,
    *,
    registry: Registry | None = None,
) -> list[ValidationIssue]:
    """Validate a single YAML file against the named schema.

    Args:
        yaml_path:   Path to the YAML file to validate.
        schema_name: Filename of the schema (e.g. ``"table.schema.json"``).
        registry:    Pre-built schema registry.  Built automatically if omitted.

    Returns:
        A list of :class:`ValidationIssue` objects (empty on success).
    """
    try:
        with yaml_path.open() as fh:
            doc = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        return [ValidationIssue(file=yaml_path, message=f"YAML parse error: {exc}")]

    if doc is None:
        return [
            ValidationIssue(file=yaml_path, message="File is empty or contains only whitespace")
        ]

    if registry is None:
        registry = _load_registry()

    schema = _load_schema(schema_name)
    validator = Draft202012Validator(schema, registry=registry)

    return [
        ValidationIssue(file=yaml_path, message=error.message, path=_json_path(error))
        for error in sorted(validator.iter_errors(doc), key=lambda e: list(e.path))
    ]


def validate_metadata_dir(
    metadata_dir: Path,
    *,
    strict: bool = False,
) -> list[ValidationIssue]:
    """Validate ``schema.yaml`` and ``tables/*.yaml`` under *metadata_dir*.

    Args:
        metadata_dir: Root metadata directory.
        strict:       If ``True``, warnings are escalated to errors.

    Returns:
        A flat list of :class:`ValidationIssue` objects across all files.
    """
    if not metadata_dir.is_dir():
        return [
            ValidationIssue(
                file=metadata_dir,
                message=f"Metadata directory does not exist: {metadata_dir}",
            )
        ]

    try:
        registry = _load_registry()
    except (FileNotFoundError, json.JSONDecodeError) as exc:
        return [
            ValidationIssue(
                file=_SCHEMAS_DIR,
                message=f"Failed to load JSON Schema files: {exc}",
            )
        ]

    all_issues: list[ValidationIssue] = []

    schema_file = metadata_dir / "schema.yaml"
    if schema_file.exists():
        all_issues.extend(
            validate_yaml_file(schema_file, "schema.schema.json", registry=registry)
        )

    tables_dir = metadata_dir / "tables"
    if tables_dir.is_dir():
        for yaml_file in sorted(tables_dir.glob("*.yaml")):
            all_issues.extend(
                validate_yaml_file(yaml_file, "table.schema.json", registry=registry)
            )

    if strict:
        for issue in all_issues:
            issue.severity = "error"

    return all_issues


# ---------------------------------------------------------------------------
# Semantic pass
# ---------------------------------------------------------------------------


def _find_role_cycle(registry: SchemaRegistry) -> list[str] | None:
    """Return one inheritance cycle as a list of role names, or None."""
    visiting: set[str] = set()
    done: set[str] = set()
    stack: list[str] = []

    def visit(role: str) -> list[str] | None:
        if role in done or role not in registry.roles:
            return None
        if role in visiting:
            return stack[stack.index(role):] + [role]
        visiting.add(role)
        stack.append(role)
        for parent in registry.roles[role].inherits:
            cycle = visit(parent)
            if cycle:
                return cycle
        stack.pop()
        visiting.discard(role)
        done.add(role)
        return None

    for role_name in registry.roles:
        cycle = visit(role_name)
        if cycle:
            return cycle
    return None


def validate_registry(registry: SchemaRegistry) -> list[ValidationIssue]:
    """Check cross references that JSON Schema cannot express."""
    issues: list[ValidationIssue] = []

    for role in registry.roles.values():
        for parent in role.inherits:
            if parent not in registry.roles:
                issues.append(ValidationIssue(
                    file=None,
                    path=f"roles/{role.name}",
                    message=f"Role '{role.name}' inherits unknown role '{parent}'",
                    severity="warning",
                ))

    cycle = _find_role_cycle(registry)
    if cycle:
        issues.append(ValidationIssue(
            file=None,
            path="roles",
            message=f"Role inheritance cycle: {' -> '.join(cycle)}",
        ))

    reverse_names: dict[tuple[str, str], str] = {}

    for table in registry.tables.values():
        for fdef in table.fields.values():
            if fdef.relation:
                target_name = registry.get_table_name(fdef.relation)
                target = registry.tables[target_name] if target_name else None
                if target is None:
                    issues.append(ValidationIssue(
                        file=None,
                        path=f"tables/{table.name}/fields/{fdef.name}",
                        message=f"Relation target '{fdef.relation}' is not a table",
                    ))
                    continue
                if fdef.foreign_key and fdef.foreign_key not in target.fields:
                    issues.append(ValidationIssue(
                        file=None,
                        path=f"tables/{table.name}/fields/{fdef.name}",
                        message=(
                            f"Foreign key '{fdef.foreign_key}' is not a field of "
                            f"'{target.name}'"
                        ),
                    ))
                for key in fdef.default_sort:
                    if key.field not in table.fields:
                        issues.append(ValidationIssue(
                            file=None,
                            path=f"tables/{table.name}/fields/{fdef.name}/defaultSort",
                            message=f"Sort field '{key.field}' is not a field of '{table.name}'",
                        ))

                rel_name = fdef.array_name or fdef.relation
                owner = (target.name, rel_name)
                if owner in reverse_names:
                    issues.append(ValidationIssue(
                        file=None,
                        path=f"tables/{table.name}/fields/{fdef.name}",
                        message=(
                            f"One-to-many relation '{rel_name}' on '{target.name}' is also "
                            f"declared by {reverse_names[owner]}; the later declaration wins"
                        ),
                        severity="warning",
                    ))
                reverse_names[owner] = f"{table.name}.{fdef.name}"

        for display_field in table.display_fields or ():
            if display_field not in table.fields:
                issues.append(ValidationIssue(
                    file=None,
                    path=f"tables/{table.name}/displayFields",
                    message=f"Display field '{display_field}' is not a field of '{table.name}'",
                    severity="warning",
                ))

        for rel in table.relations.values():
            if registry.get_table_name(rel.related_table) is None:
                issues.append(ValidationIssue(
                    file=None,
                    path=f"tables/{table.name}/relations/{rel.name}",
                    message=f"Relation target '{rel.related_table}' is not a table",
                ))

    logger.debug("Semantic schema validation: %d issue(s)", len(issues))
    return issues
