"""
Domain models for pg-cutover.

Defines the row schema of the table being migrated, the partition ranges
and derived object names of a cutover, the catalog records read back from
PostgreSQL, and the reports produced by the pre-flight and verification
phases.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

# PostgreSQL truncates identifiers longer than NAMEDATALEN - 1 bytes.
MAX_IDENTIFIER_BYTES = 63


class TransactionRecord(BaseModel):
    """
    Representation of a single row in the `transaction` table.
    """

    id: int = Field(..., description="Surrogate key (BIGSERIAL).")
    ref_id: str = Field(..., description="Client reference id.")
    txn_ref_id: str = Field(..., description="Upstream transaction reference.")
    msg_id: str = Field(..., description="Message id of the originating request.")
    biller_id: str = Field(..., description="Biller the transaction belongs to.")
    api: str = Field(..., description="API operation that produced the row.")
    request_payload: Dict[str, Any] = Field(..., description="Raw request JSON.")
    response_payload: Optional[Dict[str, Any]] = Field(None, description="Raw response JSON.")
    status: str = Field("PENDING", description="Processing status.")
    created_at: datetime = Field(..., description="Row creation timestamp (partition key).")
    modified_at: datetime = Field(..., description="Last update timestamp.")
    is_deleted: bool = Field(False, description="Soft-delete flag.")

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "arbitrary_types_allowed": False,
    }


def format_bound(value: datetime) -> str:
    """
    Canonical text of a range bound.

    Both the check constraint and ATTACH PARTITION render their bounds through
    this function so the literals are byte-identical.
    """
    return value.isoformat(sep=" ")


class PartitionRange(BaseModel):
    """Half-open range [start, end) covered by one partition."""

    name: str
    start: datetime
    end: datetime

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _non_empty(self) -> "PartitionRange":
        if self.start >= self.end:
            raise ValueError(f"Empty partition range for {self.name}: {self.start} >= {self.end}")
        return self

    @property
    def lower_literal(self) -> str:
        return format_bound(self.start)

    @property
    def upper_literal(self) -> str:
        return format_bound(self.end)

    def contains(self, value: datetime) -> bool:
        return self.start <= value < self.end


class CutoverTarget(BaseModel):
    """
    Every object name the runbook touches, derived from the source table.

    Names follow `<table>_partitioned` for the shell and `<table>_old` for the
    renamed source, which becomes the first partition.
    """

    schema_name: str
    table: str
    id_column: str
    partition_column: str
    legacy_range: PartitionRange

    model_config = {"frozen": True}

    @field_validator("schema_name", "table", "id_column", "partition_column")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("identifier must not be blank")
        return value

    @model_validator(mode="after")
    def _identifier_lengths(self) -> "CutoverTarget":
        for name in self.derived_names():
            if len(name.encode("utf-8")) > MAX_IDENTIFIER_BYTES:
                raise ValueError(
                    f"Derived identifier {name!r} exceeds {MAX_IDENTIFIER_BYTES} bytes; "
                    "PostgreSQL would silently truncate it."
                )
        return self

    @property
    def partitioned_table(self) -> str:
        return f"{self.table}_partitioned"

    @property
    def old_table(self) -> str:
        return f"{self.table}_old"

    @property
    def unique_index(self) -> str:
        return f"{self.table}_{self.id_column}_{self.partition_column}_uidx"

    @property
    def check_constraint(self) -> str:
        return f"{self.table}_{self.partition_column}_range_check"

    @property
    def parent_pkey(self) -> str:
        return f"{self.table}_pkey"

    @property
    def shell_pkey(self) -> str:
        return f"{self.partitioned_table}_pkey"

    @property
    def partition_pkey(self) -> str:
        return f"{self.old_table}_pkey"

    def derived_names(self) -> List[str]:
        return [
            self.partitioned_table,
            self.old_table,
            self.unique_index,
            self.check_constraint,
            self.shell_pkey,
            self.partition_pkey,
        ]

    @classmethod
    def from_settings(cls, settings: Any) -> "CutoverTarget":
        table = settings.cutover_table
        return cls(
            schema_name=settings.cutover_schema,
            table=table,
            id_column=settings.cutover_id_column,
            partition_column=settings.cutover_partition_column,
            legacy_range=PartitionRange(
                name=f"{table}_old",
                start=settings.cutover_range_start,
                end=settings.cutover_range_end,
            ),
        )


class IndexInfo(BaseModel):
    """An index as read from pg_index."""

    name: str
    # Key columns only; INCLUDE columns are kept apart in `include_columns`.
    columns: Tuple[str, ...]
    include_columns: Tuple[str, ...] = ()
    method: str = "btree"
    is_unique: bool = False
    is_primary: bool = False
    is_valid: bool = True
    is_ready: bool = True
    is_partial: bool = False
    has_expressions: bool = False
    definition: str = ""

    model_config = {"frozen": True}

    @property
    def is_plain(self) -> bool:
        """Column-only, non-partial index that can be mirrored onto a parent."""
        return not (self.is_partial or self.has_expressions)


class ConstraintInfo(BaseModel):
    """A constraint as read from pg_constraint."""

    name: str
    contype: str
    validated: bool
    definition: str

    model_config = {"frozen": True}


class TriggerInfo(BaseModel):
    """A user trigger as read from pg_trigger."""

    name: str
    definition: str
    enabled: str = "O"

    model_config = {"frozen": True}


class UniqueKeyState(str, Enum):
    NO_UNIQUE_KEY = "NO_UNIQUE_KEY"
    UNIQUE_KEY_BUILDING = "UNIQUE_KEY_BUILDING"
    UNIQUE_KEY_VALID = "UNIQUE_KEY_VALID"
    UNIQUE_KEY_INVALID = "UNIQUE_KEY_INVALID"


class CheckState(str, Enum):
    NO_CHECK = "NO_CHECK"
    CHECK_NOT_VALID = "CHECK_NOT_VALID"
    CHECK_VALIDATED = "CHECK_VALIDATED"


class PreflightReport(BaseModel):
    """Snapshot of both pre-flight state machines plus the bound comparison."""

    table: str
    unique_index: str
    unique_key: UniqueKeyState
    check: CheckState
    expected_bounds: Tuple[str, str]
    constraint_bounds: Optional[Tuple[str, str]] = None
    not_null_proven: bool = True
    referencing_foreign_keys: List[str] = Field(default_factory=list)
    already_partitioned: bool = False

    @property
    def bounds_match(self) -> bool:
        return self.constraint_bounds is not None and self.constraint_bounds == self.expected_bounds

    @property
    def ready_for_cutover(self) -> bool:
        return (
            self.unique_key is UniqueKeyState.UNIQUE_KEY_VALID
            and self.check is CheckState.CHECK_VALIDATED
            and self.bounds_match
            and self.not_null_proven
            and not self.referencing_foreign_keys
            and not self.already_partitioned
        )


class VerificationReport(BaseModel):
    """Outcome of post-migration verification."""

    table: str
    window: Tuple[str, str]
    scanned_relations: List[str] = Field(default_factory=list)
    index_names: List[str] = Field(default_factory=list)
    invalid_indexes: List[str] = Field(default_factory=list)
    total_rows: Optional[int] = None
    partition_rows: Dict[str, int] = Field(default_factory=dict)
    baseline_rows: Optional[int] = None
    problems: List[str] = Field(default_factory=list)

    @property
    def pruned(self) -> bool:
        return len(self.scanned_relations) == 1

    @property
    def ok(self) -> bool:
        return not self.problems


__all__ = [
    "MAX_IDENTIFIER_BYTES",
    "TransactionRecord",
    "format_bound",
    "PartitionRange",
    "CutoverTarget",
    "IndexInfo",
    "ConstraintInfo",
    "TriggerInfo",
    "UniqueKeyState",
    "CheckState",
    "PreflightReport",
    "VerificationReport",
]
