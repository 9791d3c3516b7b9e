"""
Exception hierarchy for pg-cutover.

Every failure the runbook detects on its own derives from CutoverError so the
CLI can report it without a traceback. Driver errors (psycopg.Error) are not
wrapped and propagate unchanged.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence


class CutoverError(RuntimeError):
    """Base class for runbook failures detected by pg-cutover."""

    # Read-only fallback for subclasses whose __init__ comes from another base.
    details: Mapping[str, Any] = MappingProxyType({})

    def __init__(self, *args: Any) -> None:
        super().__init__(*args)
        # Structured context copied into the persisted run artifact.
        self.details: Dict[str, Any] = {}


class PreflightError(CutoverError):
    """A gate before the cutover transaction is not satisfied."""


class InvalidIndexError(PreflightError):
    """A concurrently built index ended up marked invalid in pg_index."""

    def __init__(self, index_name: str) -> None:
        super().__init__(
            f"Index {index_name!r} is invalid (indisvalid = false). "
            "Run `pg-cutover rebuild-index` before proceeding."
        )
        self.index_name = index_name


class BoundsMismatchError(PreflightError):
    """Check constraint bounds differ from the ATTACH PARTITION bounds."""

    def __init__(self, expected: Sequence[str], actual: Sequence[str]) -> None:
        super().__init__(
            "Check constraint bounds do not match the attach bounds: "
            f"expected FROM {expected[0]!r} TO {expected[1]!r}, "
            f"constraint has {tuple(actual)!r}. ATTACH would fall back to a full "
            "validating scan under ACCESS EXCLUSIVE."
        )
        self.expected = tuple(expected)
        self.actual = tuple(actual)


class PartitionLayoutError(ValueError, CutoverError):
    """Partition ranges overlap, leave gaps, or are empty."""


class VerificationError(CutoverError):
    """Post-migration verification found a problem."""

    def __init__(self, problems: Sequence[str], report: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("; ".join(problems))
        self.problems = list(problems)
        self.details = {"report": report} if report is not None else {}


__all__ = [
    "CutoverError",
    "PreflightError",
    "InvalidIndexError",
    "BoundsMismatchError",
    "PartitionLayoutError",
    "VerificationError",
]
