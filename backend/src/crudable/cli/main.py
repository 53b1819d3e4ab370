"""Crudable CLI entry point."""

import click


@click.group()
def cli():
    """Crudable: role-filtered table data CLI."""
    pass


# Register subcommand groups
from crudable.cli.schema_cmd import schema  # noqa: E402

cli.add_command(schema)
