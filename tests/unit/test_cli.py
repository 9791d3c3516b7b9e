from __future__ import annotations

from typer.testing import CliRunner

from pg_cutover import main as cli
from pg_cutover.exceptions import InvalidIndexError

runner = CliRunner()


def test_info_prints_target_and_lock_budget() -> None:
    result = runner.invoke(cli.app, ["info"])
    assert result.exit_code == 0, result.output
    assert "table=public.transaction" in result.output
    assert "lock_timeout=" in result.output


def test_plan_is_rendered_offline() -> None:
    result = runner.invoke(
        cli.app,
        ["plan", "--phase", "prepare", "--range-end", "2030-01-01"],
    )
    assert result.exit_code == 0, result.output
    assert "-- phase: prepare" in result.output
    assert "CONCURRENTLY" in result.output
    assert "NOT VALID" in result.output


def test_plan_rejects_inverted_range() -> None:
    result = runner.invoke(
        cli.app,
        ["plan", "--range-start", "2030-01-01", "--range-end", "2029-01-01"],
    )
    assert result.exit_code == 2


def test_run_list_shows_phases() -> None:
    result = runner.invoke(cli.app, ["run", "--phase", "list"])
    assert result.exit_code == 0
    assert "prepare, validate, cutover, rehome, verify" in result.output


def test_run_maps_cutover_errors_to_exit_code_one(monkeypatch) -> None:
    def failing_run(config, settings=None):
        raise InvalidIndexError("transaction_id_created_at_uidx")

    monkeypatch.setattr(cli, "run_phases", failing_run)

    result = runner.invoke(cli.app, ["run", "--phase", "prepare", "--no-persist"])

    assert result.exit_code == 1
    assert "InvalidIndexError" in result.output
