"""
Runbook phases.

Each phase implements the RunbookPhase protocol and returns a PhaseResult.
Phases run in the order prepare, validate, cutover, rehome, verify.
"""

from pg_cutover.phases.abstract import AbstractPhase, PhaseResult, RunbookPhase
from pg_cutover.phases.cutover import CutoverPhase
from pg_cutover.phases.prepare import PreparePhase, RebuildIndexPhase
from pg_cutover.phases.preflight import (
    check_state,
    inspect_preflight,
    require_ready,
    unique_key_state,
)
from pg_cutover.phases.rehome import RehomePhase, rehome_statements
from pg_cutover.phases.validate import ValidatePhase
from pg_cutover.phases.verify import VerifyPhase, collect_plan_relations

__all__ = [
    "AbstractPhase",
    "PhaseResult",
    "RunbookPhase",
    "PreparePhase",
    "RebuildIndexPhase",
    "ValidatePhase",
    "CutoverPhase",
    "RehomePhase",
    "VerifyPhase",
    "check_state",
    "inspect_preflight",
    "require_ready",
    "unique_key_state",
    "rehome_statements",
    "collect_plan_relations",
]
