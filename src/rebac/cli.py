"""Command-line interface for rebac."""

import json
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from rebac.client import RebacClient, RebacClientConfig
from rebac.core import RebacError, RelationTuple, TupleQuery
from rebac.engine import DEFAULT_MAX_DEPTH
from rebac.loader import load_schema_file
from rebac.schema import Schema, validate_schema
from rebac.storage import FileStorageConfig, FileTupleStore

app = typer.Typer(
    name="rebac",
    help="Relationship-based access control: validate schemas, manage tuples, run checks",
    add_completion=False,
)

SchemaArg = Annotated[Path, typer.Argument(help="Schema file (YAML or JSON)")]
TuplesOpt = Annotated[
    Path,
    typer.Option("--tuples", "-t", help="Tuple file (JSON)"),
]


def _load_schema(schema_file: Path, validate: bool = True) -> Schema:
    if not schema_file.exists():
        typer.echo(f"Error: Schema file not found: {schema_file}", err=True)
        raise typer.Exit(1)
    return load_schema_file(schema_file, validate=validate)


def _open_store(tuples_file: Path) -> FileTupleStore:
    config = FileStorageConfig(
        base_path=tuples_file.parent,
        tuples_file=tuples_file.name,
    )
    return FileTupleStore(config=config)


@app.command(name="validate")
def validate_cmd(schema_file: SchemaArg) -> None:
    """Validate a schema file."""
    try:
        schema = _load_schema(schema_file, validate=False)
        result = validate_schema(schema)

        if result.valid:
            typer.echo(f"Schema is valid ({len(schema.entities)} entity types)")
            return

        typer.echo(f"Schema has {len(result.errors)} error(s):")
        for err in result.errors:
            typer.echo(f"  - {err}")
        raise typer.Exit(1)

    except typer.Exit:
        raise
    except RebacError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command(name="check")
def check_cmd(
    schema_file: SchemaArg,
    subject: Annotated[str, typer.Argument(help="Subject ref (type:id or type:id#relation)")],
    object: Annotated[str, typer.Argument(help="Object ref (type:id)")],
    relation: Annotated[str, typer.Argument(help="Relation to check")],
    tuples_file: TuplesOpt = Path("tuples.json"),
    max_depth: Annotated[
        int,
        typer.Option("--max-depth", help="Recursion depth ceiling"),
    ] = DEFAULT_MAX_DEPTH,
    strict: Annotated[
        bool,
        typer.Option("--strict", help="Exit with code 1 if access is denied"),
    ] = False,
) -> None:
    """Check whether SUBJECT has RELATION on OBJECT."""
    try:
        schema = _load_schema(schema_file)
        client = RebacClient(
            schema,
            _open_store(tuples_file),
            config=RebacClientConfig(max_depth=max_depth),
        )

        validation = client.validate_check(subject, object, relation)
        for err in validation.errors:
            typer.echo(f"Warning: {err}", err=True)

        allowed = client.check(subject, object, relation)
        typer.echo(f"{'ALLOWED' if allowed else 'DENIED'}: {subject} {relation} {object}")

        if strict and not allowed:
            raise typer.Exit(1)

    except typer.Exit:
        raise
    except (RebacError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _tuple_cmd(
    action: str,
    schema_file: Path,
    tuples_file: Path,
    object: str,
    relation: str,
    subject: str,
) -> None:
    try:
        schema = _load_schema(schema_file)
        client = RebacClient(schema, _open_store(tuples_file))
        t = RelationTuple(object=object, relation=relation, subject=subject)

        if action == "write":
            client.write([t])
            typer.echo(f"Wrote {t}")
        else:
            client.delete([t])
            typer.echo(f"Deleted {t}")

    except typer.Exit:
        raise
    except RebacError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


@app.command(name="write")
def write_cmd(
    schema_file: SchemaArg,
    object: Annotated[str, typer.Option("--object", "-o", help="Object ref")],
    relation: Annotated[str, typer.Option("--relation", "-r", help="Direct relation")],
    subject: Annotated[str, typer.Option("--subject", "-s", help="Subject ref")],
    tuples_file: TuplesOpt = Path("tuples.json"),
) -> None:
    """Write a tuple after validating it against the schema."""
    _tuple_cmd("write", schema_file, tuples_file, object, relation, subject)


@app.command(name="delete")
def delete_cmd(
    schema_file: SchemaArg,
    object: Annotated[str, typer.Option("--object", "-o", help="Object ref")],
    relation: Annotated[str, typer.Option("--relation", "-r", help="Direct relation")],
    subject: Annotated[str, typer.Option("--subject", "-s", help="Subject ref")],
    tuples_file: TuplesOpt = Path("tuples.json"),
) -> None:
    """Delete a tuple."""
    _tuple_cmd("delete", schema_file, tuples_file, object, relation, subject)


@app.command(name="query")
def query_cmd(
    tuples_file: TuplesOpt = Path("tuples.json"),
    object: Annotated[
        Optional[str],
        typer.Option("--object", "-o", help="Filter by object ref"),
    ] = None,
    relation: Annotated[
        Optional[str],
        typer.Option("--relation", "-r", help="Filter by relation"),
    ] = None,
    subject: Annotated[
        Optional[str],
        typer.Option("--subject", "-s", help="Filter by subject ref"),
    ] = None,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (console, json)"),
    ] = "console",
) -> None:
    """List stored tuples matching the filters."""
    try:
        if not tuples_file.exists():
            typer.echo(f"Error: Tuple file not found: {tuples_file}", err=True)
            raise typer.Exit(1)

        store = _open_store(tuples_file)
        tuples = store.query(TupleQuery(object=object, relation=relation, subject=subject))

        if format == "json":
            typer.echo(json.dumps([t.to_dict() for t in tuples], indent=2))
            return

        if not tuples:
            typer.echo("No tuples found.")
            return

        table = Table(show_header=True, header_style="bold")
        table.add_column("Object", style="cyan")
        table.add_column("Relation", style="white")
        table.add_column("Subject", style="green")
        for t in tuples:
            table.add_row(t.object, t.relation, t.subject)

        console = Console()
        console.print(table)
        console.print(f"{len(tuples)} tuple(s)")

    except typer.Exit:
        raise
    except RebacError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
