"""CLI entry point for Schema Explorer."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import click
import yaml

from .config import Config
from .exceptions import ConfigurationError, ExplorerError
from .explorer import SchemaExplorer
from .models.common import APIProtocol
from .models.schema import UniversalSchema
from .models.storage import SchemaQuery
from .utils.logging import configure_logging

PROTOCOL_CHOICES = [p.value for p in APIProtocol]


def parse_headers_option(value: Optional[str]) -> Dict[str, str]:
    """Parses the --headers JSON object. Anything but a string-to-string object is rejected."""
    if not value:
        return {}
    try:
        headers = json.loads(value)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid headers JSON: {e}", context={"headers": value}) from e
    if not isinstance(headers, dict):
        raise ConfigurationError("Headers must be a JSON object", context={"headers": value})
    return {str(k): str(v) for k, v in headers.items()}


def render_schema(schema: UniversalSchema, output_format: str) -> str:
    if output_format == "yaml":
        return yaml.safe_dump(schema.model_dump(mode="json", by_alias=True), sort_keys=False, allow_unicode=True)
    return schema.model_dump_json(by_alias=True, indent=2)


def run_with_explorer(config: Config, action: Callable[[SchemaExplorer], Awaitable[Any]]) -> Any:
    """Runs ``action`` against an initialized explorer and maps explorer errors to exit code 1."""
    async def _run() -> Any:
        async with SchemaExplorer(config) as explorer:
            return await action(explorer)

    try:
        return asyncio.run(_run())
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user.", err=True)
        sys.exit(130)
    except ExplorerError as e:
        click.echo(f"Error [{e.code}]: {e.message}", err=True)
        sys.exit(1)


@click.group()
@click.option(
    "--config-file", "-c",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    help="Path to a JSON configuration file.",
    envvar="SCHEMA_EXPLORER_CONFIG_FILE"
)
@click.option(
    "--log-level", "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Override the logging level (e.g., DEBUG, INFO).",
)
@click.option(
    "--log-format",
    type=click.Choice(["console", "json"], case_sensitive=False),
    default=None,
    help="Override logging format.",
)
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[str], log_level: Optional[str], log_format: Optional[str]) -> None:
    """Schema Explorer - Discovers REST, GraphQL and WebSocket API schemas."""
    try:
        if config_file:
            cfg = Config.from_file(Path(config_file))
        else:
            cfg = Config()
    except Exception as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)

    if log_level:
        cfg.logging.level = log_level.upper()
    if log_format:
        cfg.logging.format = log_format.lower()
    configure_logging(cfg.logging)

    ctx.ensure_object(dict)
    ctx.obj["config"] = cfg


@cli.command()
@click.argument("protocol", type=click.Choice(["auto"] + PROTOCOL_CHOICES, case_sensitive=False))
@click.argument("url")
@click.option("--headers", help='Custom headers as a JSON object, e.g. \'{"Authorization": "Bearer x"}\'.')
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None, help="Request timeout in seconds.")
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False, writable=True, resolve_path=True),
    help="Write the schema to this file instead of stdout."
)
@click.option("--format", "-f", "output_format", type=click.Choice(["json", "yaml"]), default="json", help="Output format.")
@click.option("--no-save", is_flag=True, help="Do not persist the discovered schema.")
@click.pass_context
def introspect(
    ctx: click.Context,
    protocol: str,
    url: str,
    headers: Optional[str],
    timeout: Optional[float],
    output: Optional[str],
    output_format: str,
    no_save: bool,
) -> None:
    """Introspects the API at URL and prints its schema."""
    config: Config = ctx.obj["config"]
    try:
        options: Dict[str, Any] = {"headers": parse_headers_option(headers)}
    except ConfigurationError as e:
        raise click.BadParameter(e.message, param_hint="--headers") from e
    if timeout is not None:
        options["timeout_seconds"] = timeout
    if no_save:
        config.explorer.auto_save = False

    async def action(explorer: SchemaExplorer):
        if protocol.lower() == "auto":
            return await explorer.auto_introspect(url, options)
        return await explorer.introspect(protocol.lower(), url, options)

    result = run_with_explorer(config, action)

    for warning in result.warnings:
        click.echo(f"Warning: {warning}", err=True)
    if not result.success or result.schema_ is None:
        click.echo(f"Introspection failed: {result.error}", err=True)
        sys.exit(1)

    schema = result.schema_
    rendered = render_schema(schema, output_format)
    if output:
        try:
            Path(output).write_text(rendered, encoding="utf-8")
        except OSError as e:
            click.echo(f"Error writing output file {output}: {e}", err=True)
            sys.exit(1)
        click.echo(f"Schema written to {output}", err=True)
    else:
        click.echo(rendered)

    click.echo(
        f"Discovered {len(schema.operations)} operations and {len(schema.types)} types from {schema.name} ({schema.protocol}).",
        err=True,
    )
    if result.metadata.get("saved"):
        click.echo(f"Saved as {schema.id}", err=True)


@cli.command("list")
@click.option("--protocol", "-p", type=click.Choice(PROTOCOL_CHOICES, case_sensitive=False), help="Filter by protocol.")
@click.option("--search", "-s", help="Search in schema names and descriptions.")
@click.option("--limit", "-l", type=click.IntRange(min=0), default=10, show_default=True)
@click.option("--offset", type=click.IntRange(min=0), default=0, show_default=True)
@click.option("--format", "output_format", type=click.Choice(["table", "json"]), default="table")
@click.pass_context
def list_schemas(
    ctx: click.Context,
    protocol: Optional[str],
    search: Optional[str],
    limit: int,
    offset: int,
    output_format: str,
) -> None:
    """Lists stored schemas, newest first."""
    query = SchemaQuery(protocol=protocol.lower() if protocol else None, search=search, limit=limit, offset=offset)
    result = run_with_explorer(ctx.obj["config"], lambda explorer: explorer.list_schemas(query))

    if output_format == "json":
        click.echo(result.model_dump_json(by_alias=True, indent=2))
        return
    if not result.schemas:
        click.echo("No schemas found.")
        return

    for schema in result.schemas:
        click.echo(f"{schema.id}  {schema.protocol:<9}  {schema.name}  ({len(schema.operations)} operations)")
        click.echo(f"    {schema.source_url}  discovered {schema.discovered_at.isoformat()}")
    shown = offset + len(result.schemas)
    click.echo(f"\nShowing {offset + 1}-{shown} of {result.total_count} schemas")
    if result.has_more:
        click.echo(f"Use --offset {shown} to see more results")


@cli.command()
@click.argument("schema_id")
@click.option("--operations", "show_operations", is_flag=True, help="List every operation.")
@click.option("--types", "show_types", is_flag=True, help="List every type definition.")
@click.option("--format", "output_format", type=click.Choice(["pretty", "json", "yaml"]), default="pretty")
@click.pass_context
def show(ctx: click.Context, schema_id: str, show_operations: bool, show_types: bool, output_format: str) -> None:
    """Shows a stored schema."""
    schema = run_with_explorer(ctx.obj["config"], lambda explorer: explorer.get_schema(schema_id))
    if schema is None:
        click.echo(f"Schema not found: {schema_id}", err=True)
        sys.exit(1)

    if output_format != "pretty":
        click.echo(render_schema(schema, output_format))
        return

    click.echo(f"{schema.name} v{schema.version} ({schema.protocol})")
    if schema.description:
        click.echo(f"  {schema.description}")
    click.echo(f"  Base URL:   {schema.base_url}")
    click.echo(f"  Source:     {schema.source_url}")
    click.echo(f"  Discovered: {schema.discovered_at.isoformat()}")
    if schema.authentication:
        click.echo(f"  Auth:       {schema.authentication.type}")
    click.echo(f"  Operations: {len(schema.operations)}")
    click.echo(f"  Types:      {len(schema.types)}")

    if show_operations:
        click.echo("\nOperations:")
        for operation in schema.operations:
            target = " ".join(part for part in (operation.method, operation.path) if part)
            click.echo(f"  [{operation.type}] {operation.name}" + (f"  {target}" if target else ""))
    if show_types:
        click.echo("\nTypes:")
        for name, field in schema.types.items():
            click.echo(f"  {name}: {field.type}" + (f" ({len(field.properties)} properties)" if field.properties else ""))


@cli.command()
@click.argument("schema_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def delete(ctx: click.Context, schema_id: str, yes: bool) -> None:
    """Deletes a stored schema."""
    if not yes:
        click.confirm(f"Delete schema {schema_id}?", abort=True)
    deleted = run_with_explorer(ctx.obj["config"], lambda explorer: explorer.delete_schema(schema_id))
    if not deleted:
        click.echo(f"Schema not found: {schema_id}", err=True)
        sys.exit(1)
    click.echo(f"Deleted {schema_id}")


@cli.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Shows storage statistics."""
    result = run_with_explorer(ctx.obj["config"], lambda explorer: explorer.get_storage_stats())
    click.echo(result.model_dump_json(by_alias=True, indent=2))


@cli.command()
@click.pass_context
def version(ctx: click.Context) -> None:
    """Show version information."""
    from . import __version__
    click.echo(f"Schema Explorer v{__version__}")


@cli.command()
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration."""
    config = ctx.obj["config"]
    click.echo(config.model_dump_json(indent=2))


if __name__ == "__main__":
    cli()
