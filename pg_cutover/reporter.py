from __future__ import annotations

from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from pg_cutover.domain.models import CheckState, PreflightReport, UniqueKeyState

_STATE_STYLE = {
    UniqueKeyState.UNIQUE_KEY_VALID: "bold green",
    CheckState.CHECK_VALIDATED: "bold green",
    UniqueKeyState.UNIQUE_KEY_INVALID: "bold red",
    UniqueKeyState.UNIQUE_KEY_BUILDING: "yellow",
    CheckState.CHECK_NOT_VALID: "yellow",
}


def _flag(ok: bool) -> str:
    return "[green]yes[/green]" if ok else "[red]no[/red]"


def print_results(results: List[Dict[str, Any]], console: Optional[Console] = None) -> None:
    """
    Render phase results as a rich table.

    Failed phases are shown with their error; the statements column counts
    what actually ran.
    """
    console = console or Console()

    if not results:
        console.print("[yellow]No results to display.[/yellow]")
        return

    table = Table(
        title="pg-cutover run",
        box=box.ROUNDED,
        caption="Phases in runbook order",
    )
    table.add_column("Phase", style="cyan", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Duration (s)", justify="right", style="green")
    table.add_column("Statements", justify="right", style="magenta")
    table.add_column("Notes")

    for res in results:
        if res.get("error"):
            status = "[bold red]FAILED[/bold red]"
            notes = res["error"]
        else:
            status = "[bold green]OK[/bold green]"
            notes = res.get("notes") or ""
            skipped = res.get("skipped") or []
            if skipped:
                notes = f"{notes}\n[dim]skipped: {'; '.join(skipped)}[/dim]"
        table.add_row(
            res.get("phase", "unknown"),
            status,
            f"{res.get('duration_seconds', 0.0):.3f}",
            str(len(res.get("statements") or [])),
            notes,
        )

    console.print(table)

    for res in results:
        report = (res.get("extra") or {}).get("report")
        if report:
            print_verification(report, console)


def print_preflight(report: PreflightReport, console: Optional[Console] = None) -> None:
    """Render both pre-flight state machines and the gate verdict."""
    console = console or Console()

    table = Table(title=f"Pre-flight: {report.table}", box=box.ROUNDED, show_header=False)
    table.add_column("Check", style="cyan", no_wrap=True)
    table.add_column("Value")

    table.add_row(
        "Unique key",
        f"[{_STATE_STYLE.get(report.unique_key, 'white')}]{report.unique_key.value}[/] "
        f"[dim]({report.unique_index})[/dim]",
    )
    table.add_row(
        "Range check",
        f"[{_STATE_STYLE.get(report.check, 'white')}]{report.check.value}[/]",
    )
    table.add_row("Attach bounds", f"{report.expected_bounds[0]} .. {report.expected_bounds[1]}")
    table.add_row(
        "Constraint bounds",
        f"{report.constraint_bounds[0]} .. {report.constraint_bounds[1]}"
        if report.constraint_bounds
        else "[dim]n/a[/dim]",
    )
    table.add_row("Bounds match", _flag(report.bounds_match))
    table.add_row("NOT NULL proven", _flag(report.not_null_proven))
    table.add_row(
        "Inbound foreign keys",
        ", ".join(report.referencing_foreign_keys) or "[green]none[/green]",
    )
    table.add_row(
        "Already partitioned",
        "[red]yes[/red]" if report.already_partitioned else "[green]no[/green]",
    )
    table.add_row(
        "Ready for cutover",
        "[bold green]READY[/bold green]" if report.ready_for_cutover else "[bold red]NOT READY[/bold red]",
    )
    console.print(table)


def print_verification(report: Dict[str, Any], console: Optional[Console] = None) -> None:
    """Render a VerificationReport (as dumped into a PhaseResult)."""
    console = console or Console()

    table = Table(title=f"Verification: {report['table']}", box=box.ROUNDED, show_header=False)
    table.add_column("Check", style="cyan", no_wrap=True)
    table.add_column("Value")

    window = report.get("window") or ("?", "?")
    scanned = report.get("scanned_relations") or []
    table.add_row("Probe window", f"{window[0]} .. {window[1]}")
    table.add_row(
        "Scanned relations",
        ", ".join(scanned) if scanned else "[dim]none[/dim]",
    )
    table.add_row("Pruned", _flag(len(scanned) == 1))
    table.add_row("Indexes used", ", ".join(report.get("index_names") or []) or "[dim]none[/dim]")
    invalid = report.get("invalid_indexes") or []
    table.add_row("Invalid indexes", ", ".join(invalid) if invalid else "[green]none[/green]")

    if report.get("total_rows") is not None:
        table.add_row("Rows (parent)", f"{report['total_rows']:,}")
        for name, count in sorted((report.get("partition_rows") or {}).items()):
            table.add_row(f"  {name}", f"{count:,}")
    if report.get("baseline_rows") is not None:
        table.add_row("Baseline rows", f"{report['baseline_rows']:,}")

    for problem in report.get("problems") or []:
        table.add_row("[red]Problem[/red]", problem)

    console.print(table)


def print_plan(plan: Dict[str, List[str]], console: Optional[Console] = None) -> None:
    """Print the rendered SQL script, one commented block per phase."""
    console = console or Console()
    for phase, statements in plan.items():
        body = "\n".join(f"{stmt};" for stmt in statements) or "-- nothing to do"
        console.print(Syntax(f"-- phase: {phase}\n{body}\n", "sql", word_wrap=True))
