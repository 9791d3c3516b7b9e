from __future__ import annotations

import json
from datetime import datetime

from pg_cutover.config import Settings
from pg_cutover.domain.models import VerificationReport
from pg_cutover.exceptions import VerificationError
from pg_cutover.phases.verify import VerifyPhase, collect_plan_relations, row_count_problems

PRUNED_PLAN = [
    {
        "Plan": {
            "Node Type": "Index Scan",
            "Relation Name": "transaction_old",
            "Schema": "public",
            "Index Name": "transaction_old_biller_id_created_at_idx",
            "Actual Rows": 0,
        },
        "Planning Time": 0.2,
        "Execution Time": 0.1,
    }
]

UNPRUNED_PLAN = [
    {
        "Plan": {
            "Node Type": "Append",
            "Plans": [
                {"Node Type": "Seq Scan", "Relation Name": "transaction_old"},
                {
                    "Node Type": "Bitmap Heap Scan",
                    "Relation Name": "transaction_p2024_07",
                    "Plans": [
                        {
                            "Node Type": "Bitmap Index Scan",
                            "Index Name": "transaction_p2024_07_created_at_idx",
                        }
                    ],
                },
                {"Node Type": "Seq Scan", "Relation Name": "transaction_old"},
            ],
        }
    }
]


def test_pruned_plan_scans_one_relation():
    relations, indexes = collect_plan_relations(PRUNED_PLAN)
    assert relations == ["transaction_old"]
    assert indexes == ["transaction_old_biller_id_created_at_idx"]


def test_unpruned_plan_lists_each_relation_once():
    relations, indexes = collect_plan_relations(UNPRUNED_PLAN)
    assert relations == ["transaction_old", "transaction_p2024_07"]
    assert indexes == ["transaction_p2024_07_created_at_idx"]


def test_plan_can_be_passed_as_json_text():
    relations, _ = collect_plan_relations(json.dumps(PRUNED_PLAN))
    assert relations == ["transaction_old"]


def test_report_pruned_property():
    report = VerificationReport(table="public.transaction", window=("a", "b"))
    report.scanned_relations = ["transaction_old"]
    assert report.pruned
    report.scanned_relations.append("transaction_p2024_07")
    assert not report.pruned


def test_row_counts_reconcile():
    assert row_count_problems(10, {"transaction_old": 7, "transaction_p2024_07": 3}, baseline=10) == []


def test_row_count_mismatch_and_baseline_shortfall_are_reported():
    problems = row_count_problems(9, {"transaction_old": 10}, baseline=10)
    assert len(problems) == 2
    assert "differs from the sum" in problems[0]
    assert "below the pre-migration baseline" in problems[1]


def test_total_above_baseline_is_fine_while_writes_continue():
    assert row_count_problems(12, {"transaction_old": 12}, baseline=10) == []


def test_verify_window_and_plan_are_built_offline():
    settings = Settings(
        cutover_range_start=datetime(2019, 1, 1),
        cutover_range_end=datetime(2030, 1, 1),
        verify_baseline_rows=42,
    )
    phase = VerifyPhase(settings)
    assert phase.window == ("2029-12-01 00:00:00", "2030-01-01 00:00:00")
    assert phase.baseline_rows == 42
    rendered = [s.as_string(None) for s in phase.plan()]
    assert rendered[0].startswith("EXPLAIN (ANALYZE, FORMAT JSON)")
    assert len(rendered) == 3


def test_explicit_baseline_overrides_settings():
    settings = Settings(cutover_range_end=datetime(2030, 1, 1), verify_baseline_rows=42)
    assert VerifyPhase(settings, baseline_rows=7).baseline_rows == 7
    assert VerifyPhase(settings, count_rows=False).plan()[-1].as_string(None).startswith("EXPLAIN")


def test_verification_error_carries_report():
    report = VerificationReport(table="public.transaction", window=("a", "b"), problems=["x"])
    exc = VerificationError(report.problems, report=report.model_dump())
    assert exc.details["report"]["problems"] == ["x"]
    assert str(exc) == "x"
