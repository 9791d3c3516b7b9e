"""
Orchestrator for running runbook phases, profiling execution, and persisting results.

Usage (example from CLI):
    from pg_cutover.orchestrator import RunConfig, run_phases

    results = run_phases(RunConfig(phase_names=["prepare", "validate"]))
    print(results)

Phases run in runbook order and the run stops at the first failure: every
later phase depends on the previous one having succeeded. The artifact is
written before the error is re-raised, so a failed run still leaves a record.

Outputs are saved to `results/` by default:
- `results/latest.json` (last run)
- `results/run-<timestamp>.json` (timestamped archive)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import psycopg

from pg_cutover.config import Settings, get_settings
from pg_cutover.phases.abstract import PhaseResult, RunbookPhase
from pg_cutover.phases.cutover import CutoverPhase
from pg_cutover.phases.prepare import PreparePhase
from pg_cutover.phases.rehome import RehomePhase
from pg_cutover.phases.validate import ValidatePhase
from pg_cutover.phases.verify import VerifyPhase
from pg_cutover.statements import render
from pg_cutover.utils.logging import get_logger
from pg_cutover.utils.profiler import ProfileStats, profile_block

log = get_logger(__name__)

PHASE_ORDER = ("prepare", "validate", "cutover", "rehome", "verify")


@dataclass
class RunConfig:
    """
    Options of one orchestrated run.

    Attributes
    ----------
    phase_names : iterable[str] | None
        Phases to execute. None or ["all"] runs the whole runbook. The standalone
        rehome phase is skipped by "all" because the cutover re-homes in its
        own transaction unless `rehome_in_cutover` is False.
    results_dir : Path | str | None
        Directory to store JSON artifacts. Defaults to settings.results_dir.
    persist : bool
        Whether to write results to disk.
    capture_baseline : bool
        Record the row count during prepare and hand it to verify.
    rehome_in_cutover : bool
        Re-home triggers and sequence ownership inside the cutover transaction.
    baseline_rows : int | None
        Baseline row count for verify, overriding settings.
    dsn_override : str | None
        Connect to this DSN instead of the one composed from settings.
    """

    phase_names: Optional[Iterable[str]] = None
    results_dir: Path | str | None = None
    persist: bool = True
    capture_baseline: bool = False
    rehome_in_cutover: bool = True
    baseline_rows: Optional[int] = None
    dsn_override: Optional[str] = None


def _round_float(value: float, decimals: int = 3) -> float:
    """Round a float to specified decimal places for human-readable output."""
    return round(value, decimals)


def _phase_factories(
    config: RunConfig, settings: Settings
) -> Dict[str, Callable[[], RunbookPhase]]:
    """Registry of runbook phases, in runbook order."""
    dsn = config.dsn_override
    return {
        "prepare": lambda: PreparePhase(
            settings, dsn_override=dsn, capture_baseline=config.capture_baseline
        ),
        "validate": lambda: ValidatePhase(settings, dsn_override=dsn),
        "cutover": lambda: CutoverPhase(
            settings, dsn_override=dsn, rehome=config.rehome_in_cutover
        ),
        "rehome": lambda: RehomePhase(settings, dsn_override=dsn),
        "verify": lambda: VerifyPhase(
            settings, dsn_override=dsn, baseline_rows=config.baseline_rows
        ),
    }


def available_phases() -> List[str]:
    """List phase names in runbook order."""
    return list(PHASE_ORDER)


def resolve_phase_names(names: Optional[Iterable[str]], rehome_in_cutover: bool = True) -> List[str]:
    """
    Expand "all", reject unknown names and sort into runbook order.

    Raises ValueError for an unknown phase name.
    """
    requested = list(names) if names is not None else ["all"]
    if "all" in requested:
        return [
            name
            for name in PHASE_ORDER
            if not (name == "rehome" and rehome_in_cutover)
        ]
    unknown = [name for name in requested if name not in PHASE_ORDER]
    if unknown:
        raise ValueError(
            f"Unknown phase(s) {', '.join(unknown)}. Available: {', '.join(PHASE_ORDER)}"
        )
    return [name for name in PHASE_ORDER if name in requested]


def _persist_results(payload: dict, results_dir: Path) -> None:
    results_dir.mkdir(parents=True, exist_ok=True)
    latest_path = results_dir / "latest.json"
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    archive_path = results_dir / f"run-{timestamp}.json"

    with latest_path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True, default=str)
    with archive_path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True, default=str)

    log.info("Results persisted", extra={"latest": str(latest_path), "archive": str(archive_path)})


def _merge_result(result: PhaseResult, stats: ProfileStats) -> dict:
    """Merge a phase result with profiler stats."""
    merged = dict(result)
    merged.setdefault("statements", [])
    merged.setdefault("skipped", [])
    merged.setdefault("extra", {})
    merged["duration_seconds"] = _round_float(stats.duration_seconds)
    merged["profile"] = {
        "label": stats.label,
        "started_at": stats.started_at,
        "duration_seconds": _round_float(stats.duration_seconds),
    }
    return merged


def _profiled_execute(phase: RunbookPhase) -> tuple[dict, Optional[BaseException]]:
    """
    Execute one phase under the profiler.

    Returns the merged result and the exception the phase raised, if any.
    """
    log.info(f"[PHASE START] {phase.name}", extra={"phase": phase.name})
    error: Optional[BaseException] = None
    with profile_block(phase.name) as stats:
        try:
            result = phase.execute()
            log.info(
                f"[PHASE SUCCESS] {phase.name}",
                extra={"phase": phase.name, "statements": len(result.get("statements", []))},
            )
        except Exception as exc:  # noqa: BLE001 - recorded, then re-raised by run_phases
            log.exception(f"[PHASE FAILED] {phase.name}", extra={"phase": phase.name})
            error = exc
            result = PhaseResult(
                phase=phase.name,
                error=str(exc),
                notes="Phase failed; the runbook stopped here.",
                extra={
                    "failed": True,
                    "error_type": type(exc).__name__,
                    **getattr(exc, "details", {}),
                },
            )

    return _merge_result(result, stats), error


def run_phases(
    config: Optional[RunConfig] = None, settings: Optional[Settings] = None
) -> List[dict]:
    """
    Run the selected phases in runbook order and persist the results.

    Parameters
    ----------
    config : RunConfig | None
        Run options; defaults run the whole runbook and persist.
    settings : Settings | None
        Effective settings; defaults to the cached environment settings.

    Returns
    -------
    List[dict]
        One result dictionary per executed phase, including profiler stats.

    Raises
    ------
    Exception
        The error of the first failing phase, after the artifact is written.
    """
    config = replace(config) if config else RunConfig()
    settings = settings or get_settings()
    names = resolve_phase_names(config.phase_names, config.rehome_in_cutover)
    factories = _phase_factories(config, settings)

    results: List[dict] = []
    failure: Optional[BaseException] = None
    for name in names:
        log.info(f"{'=' * 60}")
        log.info(f"[PHASE] {name.upper()}", extra={"phase": name})
        log.info(f"{'=' * 60}")

        phase = factories[name]()
        result, failure = _profiled_execute(phase)
        results.append(result)
        if failure is not None:
            break

        # Factories read the config lazily, so verify picks up the prepare baseline.
        baseline = result.get("extra", {}).get("baseline_rows")
        if baseline is not None and config.baseline_rows is None:
            config.baseline_rows = baseline

    payload = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "table": f"{settings.cutover_schema}.{settings.cutover_table}",
        "phases": names,
        "succeeded": failure is None,
        "results": results,
    }

    if config.persist:
        _persist_results(payload, Path(config.results_dir or settings.results_dir))

    if failure is not None:
        raise failure

    log.info(
        f"[ORCHESTRATOR COMPLETE] {len(names)} phase(s) executed successfully",
        extra={"phases": names},
    )
    return results


def render_plan(
    settings: Optional[Settings] = None,
    phase_names: Optional[Sequence[str]] = None,
    cur: Optional[psycopg.Cursor] = None,
    rehome_in_cutover: bool = True,
) -> Dict[str, List[str]]:
    """
    SQL each phase would run, rendered to text, keyed by phase name.

    Without a cursor nothing touches the database and catalog-derived
    statements (mirrored indexes, triggers, the sequence) are omitted.
    """
    settings = settings or get_settings()
    config = RunConfig(phase_names=phase_names, rehome_in_cutover=rehome_in_cutover)
    factories = _phase_factories(config, settings)
    plan: Dict[str, List[str]] = {}
    for name in resolve_phase_names(phase_names, rehome_in_cutover):
        phase = factories[name]()
        plan[name] = render(phase.plan(cur), cur)
    return plan


__all__ = [
    "PHASE_ORDER",
    "RunConfig",
    "available_phases",
    "resolve_phase_names",
    "run_phases",
    "render_plan",
]
