"""Schema CLI commands: validate, relations and permissions."""

from pathlib import Path

import click
import yaml

from crudable.auth import PERMISSION_ACTIONS, PermissionResolver, UserContext
from crudable.core.config import AppConfig
from crudable.errors import SchemaError
from crudable.relations import RelationGraphResolver
from crudable.schema import SchemaLoader, SchemaRegistry
from crudable.schema.validator import validate_metadata_dir, validate_registry

_metadata_option = click.option(
    "--metadata",
    "metadata_path",
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help="Schema directory (defaults to CRUDABLE_METADATA_PATH or ./metadata).",
)

_role_option = click.option(
    "--role",
    "roles",
    multiple=True,
    help="Role held by the simulated user; repeatable. 'public' is always held.",
)


def _resolve_metadata(metadata_path: Path | None) -> Path:
    if metadata_path is not None:
        return metadata_path
    return AppConfig.from_env().metadata_path


def _load_registry(metadata_path: Path) -> SchemaRegistry:
    if not metadata_path.exists():
        click.echo(f"Error: Schema directory not found at {metadata_path}", err=True)
        raise SystemExit(1)
    try:
        return SchemaLoader(metadata_path).load()
    except (SchemaError, yaml.YAMLError) as e:
        click.echo(click.style(f"Failed to load schema: {e}", fg="red"), err=True)
        raise SystemExit(1)


@click.group()
def schema():
    """Schema commands."""
    pass


@schema.command()
@click.option(
    "--strict",
    is_flag=True,
    default=False,
    help="Treat warnings as errors.",
)
@_metadata_option
def validate(strict: bool, metadata_path: Path | None):
    """Validate schema YAML files and their cross references."""
    metadata_path = _resolve_metadata(metadata_path)
    if not metadata_path.exists():
        click.echo(f"Error: Schema directory not found at {metadata_path}", err=True)
        raise SystemExit(1)

    # ── JSON Schema validation ──────────────────────────────────────────────
    issues = validate_metadata_dir(metadata_path, strict=strict)

    # ── Semantic validation ─────────────────────────────────────────────────
    registry = None
    if not any(i.severity == "error" for i in issues):
        registry = _load_registry(metadata_path)
        semantic = validate_registry(registry)
        if strict:
            for issue in semantic:
                issue.severity = "error"
        issues.extend(semantic)

    errors = [i for i in issues if i.severity == "error"]
    warnings = [i for i in issues if i.severity == "warning"]

    for issue in issues:
        colour = "red" if issue.severity == "error" else "yellow"
        click.echo(click.style(str(issue), fg=colour))

    if errors:
        click.echo(
            click.style(
                f"\n{len(errors)} error(s) found"
                + (f", {len(warnings)} warning(s)" if warnings else ""),
                fg="red",
                bold=True,
            )
        )
        raise SystemExit(1)

    if warnings:
        click.echo(click.style(f"{len(warnings)} warning(s) found.", fg="yellow"))

    tables = registry.list_tables()
    click.echo(f"\nLoaded {len(tables)} tables, {len(registry.roles)} roles:")
    for name in tables:
        click.echo(f"  ✓ {name} ({len(registry.tables[name].fields)} fields)")

    click.echo(click.style("\nSchema is valid.", fg="green", bold=True))


@schema.command()
@click.argument("table")
@_role_option
@_metadata_option
def relations(table: str, roles: tuple[str, ...], metadata_path: Path | None):
    """Show the relations of TABLE as seen by the given roles."""
    registry = _load_registry(_resolve_metadata(metadata_path))
    if registry.get_table(table) is None:
        click.echo(f"Error: Unknown table '{table}'", err=True)
        raise SystemExit(1)

    permissions = PermissionResolver(registry)
    role_set = permissions.resolve_roles(UserContext(roles=list(roles)))
    graph = RelationGraphResolver(registry, permissions).describe_relations(role_set, table)

    click.echo(f"Roles: {', '.join(sorted(role_set))}")
    click.echo(click.style("\nMany-to-one:", bold=True))
    if not graph.many_to_one:
        click.echo("  (none)")
    for name, info in graph.many_to_one.items():
        line = f"  {name} -> {info.related_table}.{info.foreign_key}"
        click.echo(line if info.accessible else click.style(f"{line} (no access)", fg="yellow"))

    click.echo(click.style("\nOne-to-many:", bold=True))
    if not graph.one_to_many:
        click.echo("  (none)")
    for name, info in graph.one_to_many.items():
        line = f"  {name} <- {info.related_table}.{info.related_field}"
        if info.strong:
            line += " [Strong]"
        click.echo(line if info.accessible else click.style(f"{line} (no access)", fg="yellow"))


@schema.command()
@_role_option
@_metadata_option
def permissions(roles: tuple[str, ...], metadata_path: Path | None):
    """Print the table capability matrix for the given roles."""
    registry = _load_registry(_resolve_metadata(metadata_path))
    resolver = PermissionResolver(registry)
    role_set = resolver.resolve_roles(UserContext(roles=list(roles)))
    matrix = resolver.all_permissions(role_set)

    click.echo(f"Roles: {', '.join(sorted(role_set))}\n")
    width = max((len(name) for name in matrix), default=5)
    actions = PERMISSION_ACTIONS
    click.echo(f"{'table'.ljust(width)}  " + "  ".join(a.ljust(7) for a in actions))
    for name, caps in matrix.items():
        cells = "  ".join(("yes" if caps[a] else "-").ljust(7) for a in actions)
        click.echo(f"{name.ljust(width)}  {cells}")
