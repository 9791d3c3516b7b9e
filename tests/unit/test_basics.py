import csv
import json
from datetime import datetime
from pathlib import Path
from time import sleep

import pytest
from pydantic import ValidationError

from pg_cutover import config
from pg_cutover.config import Settings
from pg_cutover.domain.models import CutoverTarget
from pg_cutover.exceptions import CutoverError, PartitionLayoutError, PreflightError
from pg_cutover.orchestrator import available_phases
from pg_cutover.utils import profiler
from scripts import generate_data


def test_get_settings_defaults(monkeypatch):
    for name in ("DB_HOST", "DB_PORT", "DB_USER", "DB_NAME", "CUTOVER_TABLE", "CUTOVER_RANGE_START"):
        monkeypatch.delenv(name, raising=False)
    config.get_settings.cache_clear()
    try:
        settings = config.get_settings()
    finally:
        config.get_settings.cache_clear()
    assert settings.db_host == "localhost"
    assert settings.db_port == 5432
    assert settings.db_user == "postgres"
    assert settings.cutover_table == "transaction"
    assert settings.cutover_partition_column == "created_at"
    assert settings.cutover_range_start == datetime(2019, 1, 1)
    assert settings.cutover_lock_timeout_ms > 0


def test_settings_reject_empty_range():
    with pytest.raises(ValidationError, match="strictly before"):
        Settings(cutover_range_start=datetime(2024, 7, 1), cutover_range_end=datetime(2024, 7, 1))


def test_settings_environment_aliases(monkeypatch):
    monkeypatch.setenv("CUTOVER_TABLE", "payment_log")
    monkeypatch.setenv("CUTOVER_RANGE_END", "2031-01-01T00:00:00")
    settings = Settings()
    assert settings.cutover_table == "payment_log"
    assert settings.cutover_range_end == datetime(2031, 1, 1)


def test_cutover_target_derives_names():
    target = CutoverTarget.from_settings(Settings(cutover_range_end=datetime(2030, 1, 1)))
    assert target.partitioned_table == "transaction_partitioned"
    assert target.old_table == "transaction_old"
    assert target.unique_index == "transaction_id_created_at_uidx"
    assert target.check_constraint == "transaction_created_at_range_check"
    assert target.legacy_range.name == "transaction_old"


def test_cutover_target_rejects_truncated_identifiers():
    with pytest.raises(ValidationError, match="exceeds 63 bytes"):
        CutoverTarget.from_settings(
            Settings(cutover_table="t" * 60, cutover_range_end=datetime(2030, 1, 1))
        )


def test_profile_block_measures_time():
    with profiler.profile_block("sleep") as stats:
        sleep(0.05)
    assert stats.duration_seconds >= 0.05
    assert stats.started_at is not None


def test_profile_block_records_duration_on_error():
    with pytest.raises(RuntimeError):
        with profiler.profile_block("boom") as stats:
            raise RuntimeError("boom")
    assert stats.end_ts >= stats.start_ts


def test_available_phases_in_runbook_order():
    assert available_phases() == ["prepare", "validate", "cutover", "rehome", "verify"]


def test_generate_data_writes_csv(tmp_path: Path):
    csv_path = tmp_path / "transaction.csv"
    start, end = datetime(2024, 1, 1), datetime(2024, 2, 1)
    generate_data._generate_rows_csv(
        csv_path, rows=5, batch_size=2, seed=123, start=start, end=end
    )
    assert csv_path.exists()
    with csv_path.open("r", newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    # header + 5 rows = 6 lines
    assert len(rows) == 6
    header = rows[0]
    assert header == generate_data.COLUMNS
    created_at = header.index("created_at")
    for row in rows[1:]:
        assert start <= datetime.fromisoformat(row[created_at]) < end
    # Ensure payload is valid JSON for first data row
    json.loads(rows[1][header.index("request_payload")])


def test_generate_data_is_deterministic(tmp_path: Path):
    first, second = tmp_path / "a.csv", tmp_path / "b.csv"
    for path in (first, second):
        generate_data._generate_rows_csv(
            path,
            rows=20,
            batch_size=7,
            seed=7,
            start=datetime(2023, 1, 1),
            end=datetime(2023, 6, 1),
        )
    assert first.read_text(encoding="utf-8") == second.read_text(encoding="utf-8")


def test_error_details_are_not_shared_between_instances():
    first = PreflightError("unique index missing")
    second = PreflightError("check constraint missing")

    first.details["table"] = "public.transaction"

    assert second.details == {}
    assert CutoverError.details == {}
    with pytest.raises(TypeError):
        CutoverError.details["table"] = "public.transaction"  # type: ignore[index]
    assert dict(PartitionLayoutError("gap").details) == {}
