from __future__ import annotations

from datetime import datetime

import pytest
from pydantic import ValidationError

from pg_cutover.domain.bounds import (
    add_months,
    build_partition_plan,
    check_requires_not_null,
    parse_check_bounds,
    validate_layout,
    verification_window,
)
from pg_cutover.domain.models import CutoverTarget, PartitionRange, format_bound
from pg_cutover.exceptions import CutoverError, PartitionLayoutError

DEPARSED_CHECK = (
    "CHECK (((created_at IS NOT NULL) AND "
    "(created_at >= '2019-01-01 00:00:00'::timestamp without time zone) AND "
    "(created_at < '2024-07-01 00:00:00'::timestamp without time zone)))"
)


def _target(start: datetime = datetime(2019, 1, 1), end: datetime = datetime(2024, 7, 1)) -> CutoverTarget:
    return CutoverTarget(
        schema_name="public",
        table="transaction",
        id_column="id",
        partition_column="created_at",
        legacy_range=PartitionRange(name="transaction_old", start=start, end=end),
    )


def test_format_bound_is_space_separated_iso():
    assert format_bound(datetime(2019, 1, 1)) == "2019-01-01 00:00:00"
    assert format_bound(datetime(2024, 6, 30, 23, 59, 59)) == "2024-06-30 23:59:59"


def test_partition_range_rejects_empty_range():
    with pytest.raises(ValidationError, match="Empty partition range"):
        PartitionRange(name="p", start=datetime(2024, 1, 1), end=datetime(2024, 1, 1))


def test_partition_range_is_half_open():
    rng = PartitionRange(name="p", start=datetime(2024, 1, 1), end=datetime(2024, 2, 1))
    assert rng.contains(datetime(2024, 1, 1))
    assert rng.contains(datetime(2024, 1, 31, 23, 59, 59))
    assert not rng.contains(datetime(2024, 2, 1))


@pytest.mark.parametrize(
    ("value", "months", "expected"),
    [
        (datetime(2024, 1, 31), 1, datetime(2024, 2, 29)),
        (datetime(2024, 11, 1), 3, datetime(2025, 2, 1)),
        (datetime(2024, 3, 1), -3, datetime(2023, 12, 1)),
        (datetime(2024, 3, 31, 12, 30), -1, datetime(2024, 2, 29, 12, 30)),
        (datetime(2024, 2, 29), 12, datetime(2025, 2, 28)),
        (datetime(2023, 12, 15), 26, datetime(2026, 2, 15)),
    ],
)
def test_add_months(value, months, expected):
    assert add_months(value, months) == expected


def test_build_partition_plan_premakes_contiguous_months():
    plan = build_partition_plan(_target(), interval_months=1, premake=3)

    assert [r.name for r in plan] == [
        "transaction_old",
        "transaction_p2024_07",
        "transaction_p2024_08",
        "transaction_p2024_09",
    ]
    assert plan[1].start == plan[0].end
    assert plan[-1].end == datetime(2024, 10, 1)


def test_build_partition_plan_without_premake_is_legacy_only():
    plan = build_partition_plan(_target(), premake=0)
    assert len(plan) == 1


def test_build_partition_plan_rejects_bad_interval():
    with pytest.raises(PartitionLayoutError):
        build_partition_plan(_target(), interval_months=0)


def test_validate_layout_detects_overlap():
    ranges = [
        PartitionRange(name="a", start=datetime(2024, 1, 1), end=datetime(2024, 2, 15)),
        PartitionRange(name="b", start=datetime(2024, 2, 1), end=datetime(2024, 3, 1)),
    ]
    with pytest.raises(PartitionLayoutError, match="overlap"):
        validate_layout(ranges)


def test_validate_layout_detects_gap():
    ranges = [
        PartitionRange(name="a", start=datetime(2024, 1, 1), end=datetime(2024, 2, 1)),
        PartitionRange(name="b", start=datetime(2024, 2, 2), end=datetime(2024, 3, 1)),
    ]
    with pytest.raises(PartitionLayoutError, match="Gap"):
        validate_layout(ranges)


def test_validate_layout_rejects_duplicate_names_and_empty_input():
    rng = PartitionRange(name="a", start=datetime(2024, 1, 1), end=datetime(2024, 2, 1))
    with pytest.raises(PartitionLayoutError, match="Duplicate"):
        validate_layout([rng, rng])
    with pytest.raises(PartitionLayoutError):
        validate_layout([])


def test_partition_layout_error_is_both_value_and_cutover_error():
    assert issubclass(PartitionLayoutError, ValueError)
    assert issubclass(PartitionLayoutError, CutoverError)


def test_parse_check_bounds_from_deparsed_definition():
    assert parse_check_bounds(DEPARSED_CHECK, "created_at") == (
        "2019-01-01 00:00:00",
        "2024-07-01 00:00:00",
    )


def test_parse_check_bounds_accepts_quoted_column():
    definition = DEPARSED_CHECK.replace("created_at", '"created_at"')
    assert parse_check_bounds(definition, "created_at") == (
        "2019-01-01 00:00:00",
        "2024-07-01 00:00:00",
    )


def test_parse_check_bounds_returns_none_without_upper_bound():
    definition = "CHECK ((created_at >= '2019-01-01 00:00:00'::timestamp without time zone))"
    assert parse_check_bounds(definition, "created_at") is None


def test_parse_check_bounds_ignores_less_or_equal():
    definition = (
        "CHECK (((created_at >= '2019-01-01 00:00:00'::timestamp without time zone) AND "
        "(created_at <= '2024-07-01 00:00:00'::timestamp without time zone)))"
    )
    assert parse_check_bounds(definition, "created_at") is None


def test_check_requires_not_null():
    assert check_requires_not_null(DEPARSED_CHECK, "created_at")
    assert not check_requires_not_null(DEPARSED_CHECK.replace("(created_at IS NOT NULL) AND ", ""), "created_at")


def test_verification_window_is_last_month_of_legacy_range():
    lower, upper = verification_window(_target().legacy_range)
    assert (lower, upper) == (datetime(2024, 6, 1), datetime(2024, 7, 1))


def test_verification_window_is_clipped_to_range_start():
    legacy = PartitionRange(name="p", start=datetime(2024, 6, 20), end=datetime(2024, 7, 1))
    assert verification_window(legacy) == (datetime(2024, 6, 20), datetime(2024, 7, 1))
