"""
Configuration commands for the Character Chat CLI.
"""

import json
from typing import Optional

import click
import yaml


@click.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command()
@click.option(
    "--format",
    type=click.Choice(["json", "yaml", "table"]),
    default="table",
    help="Output format",
)
@click.option("--section", help="Show specific configuration section")
@click.pass_context
def show(ctx: click.Context, format: str, section: Optional[str]) -> None:
    """Show the effective configuration (API keys masked)."""
    data = ctx.obj["config"].to_dict()

    if section:
        if section not in data or not isinstance(data[section], dict):
            click.echo(f"Unknown section: {section}", err=True)
            raise click.Abort()
        data = data[section]

    if format == "json":
        click.echo(json.dumps(data, indent=2, default=str))
    elif format == "yaml":
        click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
    else:
        _print_table(data)


def _print_table(data: dict, indent: int = 0) -> None:
    pad = "  " * indent
    for key, value in data.items():
        if isinstance(value, dict):
            click.echo(f"{pad}{key}:")
            _print_table(value, indent + 1)
        else:
            click.echo(f"{pad}{key}: {value}")
