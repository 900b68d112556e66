"""
manifest-back CLI.

Commands:
- serve:  Run the HTTP server
- schema: Show the tables generated from a manifest
- check:  Validate a manifest file
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from manifest_back import __version__
from manifest_back.errors import ConfigurationError
from manifest_back.runtime.relation_resolver import RelationRegistry
from manifest_back.runtime.repository import join_table_ddl, table_ddl
from manifest_back.runtime.schema_builder import build_schemas
from manifest_back.runtime.server import ServerConfig, run_app
from manifest_back.specs import AppManifest, load_manifest

app = typer.Typer(
    help="Backend-as-a-service driven by a manifest file",
    no_args_is_help=True,
)

console = Console()


def _load(manifest: Path) -> AppManifest:
    try:
        return load_manifest(manifest)
    except ConfigurationError as e:
        console.print(f"[red]Invalid manifest: {escape(e.message)}[/red]")
        raise typer.Exit(1)


@app.command(name="serve")
def serve_command(
    manifest: Path | None = typer.Option(
        None, "--manifest", "-m", help="Manifest file (default: $MANIFEST_PATH)"
    ),
    db: Path | None = typer.Option(None, "--db", help="SQLite database file"),
    host: str | None = typer.Option(None, "--host", help="Host to bind to"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to bind to"),
) -> None:
    """Run the HTTP server."""
    config = ServerConfig.from_env()
    if manifest is not None:
        config.manifest_path = manifest
    if db is not None:
        config.db_path = db
    if host is not None:
        config.host = host
    if port is not None:
        config.port = port

    _load(config.manifest_path)
    run_app(config)


@app.command(name="schema")
def schema_command(
    manifest: Path = typer.Option(
        Path("manifest/backend.yml"), "--manifest", "-m", help="Manifest file"
    ),
    sql: bool = typer.Option(False, "--sql", help="Print CREATE TABLE statements"),
) -> None:
    """Show the tables generated from a manifest."""
    app_manifest = _load(manifest)
    try:
        registry = RelationRegistry.from_manifest(app_manifest)
        schemas = build_schemas(app_manifest.entities, registry)
    except ConfigurationError as e:
        console.print(f"[red]Invalid manifest: {escape(e.message)}[/red]")
        raise typer.Exit(1)

    if sql:
        for schema in schemas.values():
            typer.echo(f"{table_ddl(schema)};")
        for join_table in registry.join_tables:
            typer.echo(f"{join_table_ddl(join_table)};")
        return

    for schema in schemas.values():
        table = Table(title=schema.table_name)
        table.add_column("Column")
        table.add_column("Type")
        table.add_column("Relation")
        for column in schema.columns.values():
            relation = next(
                (r for r in schema.foreign_keys if r.foreign_key_field == column.name), None
            )
            table.add_row(
                column.name,
                column.type,
                f"-> {relation.to_entity}" if relation else "",
            )
        console.print(table)

    for join_table in registry.join_tables:
        console.print(
            f"[dim]join table[/dim] {join_table.name} "
            f"({join_table.source_column} -> {join_table.source_entity}, "
            f"{join_table.target_column} -> {join_table.target_entity})"
        )


@app.command(name="check")
def check_command(
    manifest: Path = typer.Argument(Path("manifest/backend.yml"), help="Manifest file"),
) -> None:
    """Validate a manifest file."""
    app_manifest = _load(manifest)
    try:
        registry = RelationRegistry.from_manifest(app_manifest)
        build_schemas(app_manifest.entities, registry)
    except ConfigurationError as e:
        console.print(f"[red]Invalid manifest: {escape(e.message)}[/red]")
        raise typer.Exit(1)

    console.print(
        f"[green]OK[/green] {app_manifest.name}: {len(app_manifest.entities)} entities, "
        f"{len(registry.join_tables)} join tables"
    )


@app.command(name="version")
def version_command() -> None:
    """Show the version."""
    typer.echo(__version__)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
