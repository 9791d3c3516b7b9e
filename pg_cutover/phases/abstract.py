"""
Abstract phase interfaces and result contracts for pg-cutover.

Concrete runbook phases (prepare, validate, cutover, rehome, verify) implement
the RunbookPhase protocol and return a PhaseResult TypedDict so the
orchestrator and reporter can treat them uniformly.
"""

from __future__ import annotations

import abc
import time
from typing import Any, Dict, List, Optional, Protocol, TypedDict, runtime_checkable

import psycopg
from psycopg import Connection, sql

from pg_cutover.config import Settings, get_settings
from pg_cutover.domain.models import CutoverTarget
from pg_cutover.infrastructure.db_factory import get_sync_connection
from pg_cutover.utils.logging import get_logger

log = get_logger(__name__)


class PhaseResult(TypedDict, total=False):
    """
    Outcome of a single runbook phase.

    `statements` holds the rendered SQL that was executed (or, for a skipped
    step, nothing); `extra` carries phase-specific details such as the
    verification report.
    """

    phase: str
    duration_seconds: float
    statements: List[str]
    skipped: List[str]
    notes: Optional[str]
    error: Optional[str]
    extra: Dict[str, Any]


@runtime_checkable
class RunbookPhase(Protocol):
    """
    Common interface all runbook phases implement.

    Attributes
    ----------
    name : str
        A short machine-friendly identifier.
    description : str
        A human-friendly summary of the step, including the lock it takes.
    """

    name: str
    description: str

    def execute(self) -> PhaseResult:
        """
        Run the phase against the database.

        Returns
        -------
        PhaseResult
            Executed statements, timing and phase-specific details.

        Raises
        ------
        CutoverError
            When a gate of the phase is not satisfied.
        """
        ...

    def plan(self, cur: Optional[psycopg.Cursor] = None) -> List[sql.Composable]:
        """
        Statements the phase would run.

        With a cursor, catalog-derived statements (mirrored indexes, triggers)
        are included; without one they are omitted.
        """
        ...


class AbstractPhase(abc.ABC):
    """
    Base class holding settings, the derived target and connection handling.

    Subclasses set `name` and `description` and implement `execute` and `plan`.
    """

    name: str
    description: str
    autocommit: bool = True

    def __init__(self, settings: Optional[Settings] = None, dsn_override: Optional[str] = None) -> None:
        self.settings = settings or get_settings()
        self.target = CutoverTarget.from_settings(self.settings)
        self._dsn_override = dsn_override

    def _connect(self) -> Connection:
        return get_sync_connection(self._dsn_override, autocommit=self.autocommit)

    def _run(self, cur: psycopg.Cursor, statement: sql.Composable, executed: List[str]) -> None:
        """Execute one statement, logging and recording its rendered text."""
        text = statement.as_string(cur)
        log.info(f"[SQL] {text}", extra={"phase": self.name})
        start = time.perf_counter()
        cur.execute(statement)
        elapsed = time.perf_counter() - start
        log.debug(
            f"[SQL DONE] {elapsed:.3f}s", extra={"phase": self.name, "elapsed_seconds": elapsed}
        )
        executed.append(text)

    @abc.abstractmethod
    def execute(self) -> PhaseResult:  # pragma: no cover - interface only
        """Run the phase and return its result."""
        raise NotImplementedError

    @abc.abstractmethod
    def plan(
        self, cur: Optional[psycopg.Cursor] = None
    ) -> List[sql.Composable]:  # pragma: no cover - interface only
        """Statements the phase would run."""
        raise NotImplementedError


__all__ = [
    "PhaseResult",
    "RunbookPhase",
    "AbstractPhase",
]
