from __future__ import annotations

import contextlib
import json
import sys
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

import typer

from pg_cutover.config import Settings, get_settings
from pg_cutover.domain.models import CutoverTarget
from pg_cutover.exceptions import CutoverError
from pg_cutover.infrastructure.db_factory import get_sync_connection
from pg_cutover.orchestrator import RunConfig, available_phases, render_plan, run_phases
from pg_cutover.phases.prepare import RebuildIndexPhase
from pg_cutover.phases.preflight import inspect_preflight
from pg_cutover.reporter import print_plan, print_preflight, print_results, print_verification
from pg_cutover.utils.logging import configure_logging

app = typer.Typer(help="Zero-downtime range-partition cutover for a live PostgreSQL table.")

_DSN_OPTION = typer.Option(None, "--dsn", help="Connection string; overrides DB_* settings.")
_TABLE_OPTION = typer.Option(None, "--table", "-t", help="Table to partition (CUTOVER_TABLE).")
_START_OPTION = typer.Option(
    None, "--range-start", help="Lower bound of the legacy partition (CUTOVER_RANGE_START)."
)
_END_OPTION = typer.Option(
    None, "--range-end", help="Upper bound of the legacy partition (CUTOVER_RANGE_END)."
)


def _effective_settings(
    table: Optional[str] = None,
    range_start: Optional[datetime] = None,
    range_end: Optional[datetime] = None,
    **overrides: Any,
) -> Settings:
    """Settings from the environment with per-invocation CLI overrides applied."""
    settings = get_settings()
    update: Dict[str, Any] = {
        "cutover_table": table,
        "cutover_range_start": range_start,
        "cutover_range_end": range_end,
        **overrides,
    }
    update = {k: v for k, v in update.items() if v is not None}
    if not update:
        return settings
    # Re-validate so the range and identifier checks still apply.
    return Settings(**{**settings.model_dump(), **update})


@contextlib.contextmanager
def _cli_errors() -> Iterator[None]:
    """Map runbook failures to exit code 1 with a readable message."""
    try:
        yield
    except CutoverError as exc:
        report = exc.details.get("report")
        if report:
            print_verification(report)
        typer.secho(f"{type(exc).__name__}: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc
    except ValueError as exc:
        typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc


@app.callback()
def _setup(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL."),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--no-log-json", help="Override LOG_JSON."),
) -> None:
    settings = get_settings()
    configure_logging(
        level=(log_level or settings.log_level).upper(),
        json_logs=settings.log_json if log_json is None else log_json,
    )


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    with _cli_errors():
        target = CutoverTarget.from_settings(settings)
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"table={target.schema_name}.{target.table} key=({target.id_column}, "
        f"{target.partition_column}) | legacy range "
        f"[{target.legacy_range.lower_literal}, {target.legacy_range.upper_literal}) | "
        f"premake={settings.cutover_premake} lock_timeout={settings.cutover_lock_timeout_ms}ms "
        f"statement_timeout={settings.cutover_statement_timeout_ms}ms"
    )


@app.command()
def plan(
    phase: List[str] = typer.Option(
        ["all"], "--phase", "-p", help="Phase(s) to render (prepare, validate, cutover, rehome, verify, all)."
    ),
    table: Optional[str] = _TABLE_OPTION,
    range_start: Optional[datetime] = _START_OPTION,
    range_end: Optional[datetime] = _END_OPTION,
    connect: bool = typer.Option(
        False, "--connect", help="Read the catalog to include mirrored indexes, triggers and the sequence."
    ),
    dsn: Optional[str] = _DSN_OPTION,
) -> None:
    """
    Print the SQL script of the runbook. Offline unless --connect is given.
    """
    with _cli_errors():
        settings = _effective_settings(table, range_start, range_end)
        if not connect:
            print_plan(render_plan(settings, phase))
            return
        with get_sync_connection(dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                print_plan(render_plan(settings, phase, cur=cur))


@app.command()
def preflight(
    table: Optional[str] = _TABLE_OPTION,
    range_start: Optional[datetime] = _START_OPTION,
    range_end: Optional[datetime] = _END_OPTION,
    dsn: Optional[str] = _DSN_OPTION,
) -> None:
    """
    Inspect both pre-flight state machines without changing anything.

    Exits with code 3 when the table is not ready for the cutover.
    """
    with _cli_errors():
        settings = _effective_settings(table, range_start, range_end)
        target = CutoverTarget.from_settings(settings)
        with get_sync_connection(dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                report = inspect_preflight(cur, target)
    print_preflight(report)
    if not report.ready_for_cutover:
        raise typer.Exit(code=3)


@app.command()
def run(
    phase: List[str] = typer.Option(
        ["all"],
        "--phase",
        "--phases",
        "-p",
        help="Phase(s) to run (prepare, validate, cutover, rehome, verify, all, list).",
    ),
    table: Optional[str] = _TABLE_OPTION,
    range_start: Optional[datetime] = _START_OPTION,
    range_end: Optional[datetime] = _END_OPTION,
    capture_baseline: bool = typer.Option(
        False, "--capture-baseline", help="Count rows during prepare and check them in verify."
    ),
    baseline_rows: Optional[int] = typer.Option(
        None, "--baseline-rows", help="Pre-migration row count verify must not fall below."
    ),
    rehome: bool = typer.Option(
        True, "--rehome/--no-rehome", help="Re-home triggers and sequence inside the cutover transaction."
    ),
    persist: bool = typer.Option(True, "--persist/--no-persist", help="Write results/latest.json."),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON instead of a table."),
    dsn: Optional[str] = _DSN_OPTION,
) -> None:
    """
    Run one phase, several phases, or the whole runbook in order.
    """
    if phase == ["list"]:
        typer.echo("Available phases: " + ", ".join(available_phases()))
        return

    with _cli_errors():
        settings = _effective_settings(table, range_start, range_end)
        typer.echo(
            f"Running phase(s) {', '.join(phase)} on "
            f"{settings.cutover_schema}.{settings.cutover_table}."
        )
        results = run_phases(
            RunConfig(
                phase_names=phase,
                persist=persist,
                capture_baseline=capture_baseline,
                rehome_in_cutover=rehome,
                baseline_rows=baseline_rows,
                dsn_override=dsn,
            ),
            settings=settings,
        )
    if as_json:
        typer.echo(json.dumps(results, indent=2, default=str))
    else:
        print_results(results)


@app.command("rebuild-index")
def rebuild_index(
    table: Optional[str] = _TABLE_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    dsn: Optional[str] = _DSN_OPTION,
) -> None:
    """
    Drop the invalid unique index and build it again concurrently.
    """
    with _cli_errors():
        phase = RebuildIndexPhase(_effective_settings(table), dsn_override=dsn)
        if not yes:
            typer.confirm(
                f"Drop and rebuild {phase.target.schema_name}.{phase.target.unique_index}?",
                abort=True,
            )
        result = phase.execute()
    print_results([result])


@app.command()
def verify(
    table: Optional[str] = _TABLE_OPTION,
    range_start: Optional[datetime] = _START_OPTION,
    range_end: Optional[datetime] = _END_OPTION,
    baseline_rows: Optional[int] = typer.Option(
        None, "--baseline-rows", help="Pre-migration row count the total must not fall below."
    ),
    expected_index: Optional[str] = typer.Option(
        None, "--expected-index", help="Index the pruning probe is expected to use."
    ),
    persist: bool = typer.Option(True, "--persist/--no-persist", help="Write results/latest.json."),
    dsn: Optional[str] = _DSN_OPTION,
) -> None:
    """
    Post-migration checks: partition pruning, index validity, row counts.
    """
    with _cli_errors():
        settings = _effective_settings(
            table, range_start, range_end, verify_expected_index=expected_index
        )
        results = run_phases(
            RunConfig(
                phase_names=["verify"],
                persist=persist,
                baseline_rows=baseline_rows,
                dsn_override=dsn,
            ),
            settings=settings,
        )
    print_results(results)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
