from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import List, Optional, Tuple

import typer
from rich.console import Console
from rich.table import Table

from schema_bridge.adapters.base import AdapterResult
from schema_bridge.core.casing import normalize_casing
from schema_bridge.core.diagnostics import describe
from schema_bridge.core.diff import Op, diff_interim
from schema_bridge.core.filter import (
    EntitiesParams,
    EntityFilter,
    EntityFilterParams,
    ExistingEntity,
    RolesFilter,
    default_schema_for,
    prepare_entity_filter,
)
from schema_bridge.core.ir import InterimSchema
from schema_bridge.core.registry import AdapterRegistry, DialectRegistry, IntrospectorRegistry
from schema_bridge.core.snapshot import validate_interim
from schema_bridge.errors import UnreachableCaseError
from schema_bridge.introspect.base import AsyncpgDatabase, DuckDBDatabase
from schema_bridge.policy.config import load_cli_config
from schema_bridge.policy.hints import load_schema_hints

app = typer.Typer(add_completion=False, help="Schema Bridge CLI")
console = Console()

INTROSPECT_DIALECTS = {"postgres": "postgresql", "duckdb": "duckdb"}


@app.callback()
def main() -> None:
    """Normalize declared or live database schemas into interim snapshots."""
    return None


def _build_filter(
    dialect: str,
    schemas: Optional[List[str]],
    tables: Optional[List[str]],
    roles=False,
    extensions: Optional[List[str]] = None,
    existing: Optional[List[ExistingEntity]] = None,
) -> EntityFilter:
    if isinstance(roles, dict):
        roles = RolesFilter(**roles)
    params = EntityFilterParams(
        schemas=schemas or None,
        tables=tables or None,
        entities=EntitiesParams(roles=roles),
        extensions=extensions or [],
    )
    try:
        return prepare_entity_filter(dialect, params, existing or [])
    except UnreachableCaseError as exc:
        raise typer.BadParameter(str(exc))


def _project_models(
    repo_dir: str,
    module: Optional[str],
    adapter: str,
    dialect: str,
    casing: Optional[str],
    entity_filter: EntityFilter,
) -> AdapterResult:
    source_factory = AdapterRegistry.get(adapter)
    if not source_factory:
        raise typer.BadParameter(f"Unknown adapter '{adapter}'. Available: {', '.join(AdapterRegistry.names())}")
    dialect_adapter = DialectRegistry.get_adapter(dialect)
    if dialect_adapter is None:
        raise typer.BadParameter(
            f"Unsupported dialect '{dialect}'. Supported: {', '.join(DialectRegistry.supported_dialects())}"
        )
    declared = source_factory().load(repo_path=repo_dir, module_hint=module)
    return dialect_adapter.from_declared_schema(declared, casing=casing, entity_filter=entity_filter)


async def _introspect(
    driver: str,
    database_url: Optional[str],
    database: Optional[str],
    entity_filter: EntityFilter,
) -> InterimSchema:
    introspector = IntrospectorRegistry.get(driver)
    if introspector is None:
        raise typer.BadParameter(f"Unknown driver '{driver}'. Available: {', '.join(IntrospectorRegistry.drivers())}")

    def on_progress(stage: str, count: int, status: str) -> None:
        if status == "done":
            console.print(f"[dim]{stage}: {count}[/dim]")

    if driver == "duckdb":
        db = DuckDBDatabase.connect(database_url or ":memory:")
    else:
        if not database_url:
            raise typer.BadParameter("--database-url is required for the postgres driver")
        db = await AsyncpgDatabase.connect(database_url)
    try:
        return await introspector.from_database(db, database, entity_filter, progress_callback=on_progress)
    finally:
        await db.close()


def _write_json(path: Optional[str], payload: str) -> None:
    if not path:
        return
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    Path(path).write_text(payload)
    console.print(f"[green]wrote {path}[/green]")


def _print_diagnostics(errors: list, warnings: list) -> None:
    if not errors and not warnings:
        console.print("[green]No diagnostics[/green]")
        return
    table = Table(title="Schema Bridge Diagnostics")
    table.add_column("Level")
    table.add_column("Code")
    table.add_column("Message")
    for err in errors:
        table.add_row("[red]error[/red]", err.type, describe(err))
    for warn in warnings:
        table.add_row("[yellow]warning[/yellow]", warn.type, describe(warn))
    console.print(table)


def _print_ops(ops: List[Op]) -> None:
    if not ops:
        console.print("[green]No schema changes detected[/green]")
        return
    table = Table(title="Schema Bridge Diff")
    table.add_column("Op")
    table.add_column("Schema")
    table.add_column("Table")
    table.add_column("Detail")
    for op in ops:
        table.add_row(op.kind.value, op.schema_name or "", op.table or "", json.dumps(op.payload, sort_keys=True))
    console.print(table)


def _finish(snapshot: InterimSchema, errors: list, warnings: list, out: Optional[str], strict: bool) -> None:
    checked = validate_interim(snapshot)
    errors = list(errors) + list(checked.errors)
    console.print(
        f"{len(checked.snapshot.tables)} tables, {len(checked.snapshot.columns)} columns, "
        f"{len(checked.snapshot.views)} views"
    )
    _print_diagnostics(errors, list(warnings))
    _write_json(out, checked.snapshot.model_dump_json(indent=2))
    if strict and errors:
        raise typer.Exit(code=2)


@app.command("snapshot")
def snapshot(
    repo_dir: str = typer.Option(..., help="Repo directory containing the models"),
    module: Optional[str] = typer.Option(None, help="Dotted module for the models"),
    dialect: str = typer.Option("postgresql", help="Target DB dialect"),
    adapter: str = typer.Option("sqlalchemy", help=f"Schema source to use. Available: {', '.join(AdapterRegistry.names())}"),
    casing: Optional[str] = typer.Option(None, help="Column casing: camelCase or snake_case"),
    schema: Optional[List[str]] = typer.Option(None, "--schema", help="Schema glob, repeatable; prefix with ! to exclude"),
    table: Optional[List[str]] = typer.Option(None, "--table", help="Table glob, repeatable; prefix with ! to exclude"),
    roles: bool = typer.Option(False, help="Include roles"),
    out: Optional[str] = typer.Option(None, help="Write the interim snapshot JSON to this file"),
    strict: bool = typer.Option(False, help="Exit with code 2 when errors were collected"),
):
    """Load declared models and project them into an interim snapshot."""
    try:
        normalize_casing(casing)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))
    entity_filter = _build_filter(dialect, schema, table, roles)
    result = _project_models(repo_dir, module, adapter, dialect, casing, entity_filter)
    _finish(result.schema, result.errors, result.warnings, out, strict)


@app.command("pull")
def pull(
    driver: str = typer.Option("postgres", help="Database driver: postgres or duckdb"),
    database_url: Optional[str] = typer.Option(None, help="DSN for postgres, file path for duckdb"),
    database: Optional[str] = typer.Option(None, help="DuckDB catalog name; defaults to the current database"),
    schema: Optional[List[str]] = typer.Option(None, "--schema", help="Schema glob, repeatable; prefix with ! to exclude"),
    table: Optional[List[str]] = typer.Option(None, "--table", help="Table glob, repeatable; prefix with ! to exclude"),
    roles: bool = typer.Option(False, help="Include roles"),
    out: Optional[str] = typer.Option(None, help="Write the interim snapshot JSON to this file"),
    strict: bool = typer.Option(False, help="Exit with code 2 when errors were collected"),
):
    """Introspect a live database into an interim snapshot."""
    if driver not in INTROSPECT_DIALECTS:
        raise typer.BadParameter(f"Unknown driver '{driver}'. Available: {', '.join(sorted(INTROSPECT_DIALECTS))}")
    entity_filter = _build_filter(INTROSPECT_DIALECTS[driver], schema, table, roles)
    result = asyncio.run(_introspect(driver, database_url, database, entity_filter))
    _finish(result, [], [], out, strict)


def _load_side(
    path: Optional[str], repo_dir: Optional[str], module: Optional[str], dialect: str, label: str
) -> Tuple[InterimSchema, list]:
    if path:
        return InterimSchema.model_validate_json(Path(path).read_text()), []
    if not repo_dir:
        raise typer.BadParameter(f"Provide --{label} or --{label}-dir")
    result = _project_models(repo_dir, module, "sqlalchemy", dialect, None, _build_filter(dialect, None, None))
    return result.schema, result.errors


@app.command("diff")
def diff(
    base: Optional[str] = typer.Option(None, help="Base interim snapshot JSON"),
    head: Optional[str] = typer.Option(None, help="Head interim snapshot JSON"),
    base_dir: Optional[str] = typer.Option(None, help="Base repo directory, used when --base is not given"),
    base_module: Optional[str] = typer.Option(None, help="Dotted module for base models"),
    head_dir: Optional[str] = typer.Option(None, help="Head repo directory, used when --head is not given"),
    head_module: Optional[str] = typer.Option(None, help="Dotted module for head models"),
    dialect: str = typer.Option("postgresql", help="Dialect used when loading models"),
    schema_hints: Optional[str] = typer.Option(None, help="Path to schema_hints.yml. If not provided, will look for './schema_hints.yml'"),
    out: Optional[str] = typer.Option(None, help="Write the ops as JSON to this file"),
    strict: bool = typer.Option(False, help="Exit with code 2 when either side has errors"),
):
    """Compare two snapshots and list the operations that turn base into head."""
    hints_path = schema_hints
    if not hints_path:
        candidate = os.path.join(os.getcwd(), "schema_hints.yml")
        if os.path.exists(candidate):
            hints_path = candidate
    hints = load_schema_hints(hints_path)
    hints.setdefault("default_schema", default_schema_for(dialect) or "")

    base_ir, base_errors = _load_side(base, base_dir, base_module, dialect, "base")
    head_ir, head_errors = _load_side(head, head_dir, head_module, dialect, "head")
    base_checked = validate_interim(base_ir)
    head_checked = validate_interim(head_ir)
    errors = base_errors + head_errors + base_checked.errors + head_checked.errors

    ops = diff_interim(base_checked.snapshot, head_checked.snapshot, hints)
    _print_ops(ops)
    if errors:
        _print_diagnostics(errors, [])
    _write_json(out, json.dumps([op.model_dump(mode="json") for op in ops], indent=2))
    if strict and errors:
        raise typer.Exit(code=2)


@app.command("run")
def run(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to schema-bridge.yml config"),
    out: Optional[str] = typer.Option(None, help="Output file (overrides config)"),
):
    """Run using a YAML config file. Looks for ./schema-bridge.yml if not provided."""
    cfg_path = config or os.path.join(os.getcwd(), "schema-bridge.yml")
    cfg = load_cli_config(cfg_path)
    if not cfg:
        raise typer.BadParameter(f"Config not found or invalid at {cfg_path}")

    driver = cfg.get("driver")
    dialect = INTROSPECT_DIALECTS[driver] if driver in INTROSPECT_DIALECTS else cfg.get("dialect", "postgresql")
    existing = [
        ExistingEntity(type=e["type"], name=e["name"], schema_name=e.get("schema_name", e.get("schema")))
        for e in cfg.get("existing") or []
    ]
    entity_filter = _build_filter(
        dialect,
        cfg.get("schemas"),
        cfg.get("tables"),
        (cfg.get("entities") or {}).get("roles", False),
        cfg.get("extensions"),
        existing,
    )
    target = out or cfg.get("out")
    strict = bool(cfg.get("strict", False))

    if driver:
        result = asyncio.run(_introspect(driver, cfg.get("database_url"), cfg.get("database"), entity_filter))
        return _finish(result, [], [], target, strict)

    repo_dir = cfg.get("repo_dir")
    if not repo_dir:
        raise typer.BadParameter("Config needs either 'driver' or 'repo_dir'")
    projected = _project_models(
        repo_dir, cfg.get("module"), cfg.get("adapter", "sqlalchemy"), dialect, cfg.get("casing"), entity_filter
    )
    return _finish(projected.schema, projected.errors, projected.warnings, target, strict)


if __name__ == "__main__":
    app()
