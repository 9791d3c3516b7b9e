"""
Configuration settings for pg-cutover.

Uses Pydantic Settings to load environment variables for the database
connection, logging, and the cutover target (table, partition key, range
bounds, lock budget). CLI options override these per invocation.
"""
from __future__ import annotations

from datetime import datetime
from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("payments", alias="DB_NAME")
    db_connect_timeout_s: int = Field(10, alias="DB_CONNECT_TIMEOUT_S")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")
    results_dir: str = Field("results", alias="RESULTS_DIR")

    # Cutover target
    cutover_schema: str = Field("public", alias="CUTOVER_SCHEMA")
    cutover_table: str = Field("transaction", alias="CUTOVER_TABLE")
    cutover_id_column: str = Field("id", alias="CUTOVER_ID_COLUMN")
    cutover_partition_column: str = Field("created_at", alias="CUTOVER_PARTITION_COLUMN")
    cutover_range_start: datetime = Field(
        datetime(2019, 1, 1), alias="CUTOVER_RANGE_START"
    )
    cutover_range_end: datetime = Field(datetime(2024, 7, 1), alias="CUTOVER_RANGE_END")
    cutover_interval_months: int = Field(1, alias="CUTOVER_INTERVAL_MONTHS", ge=1)
    cutover_premake: int = Field(3, alias="CUTOVER_PREMAKE", ge=0)
    cutover_drop_check_after_attach: bool = Field(
        True, alias="CUTOVER_DROP_CHECK_AFTER_ATTACH"
    )

    # Lock budget for the cutover transaction
    cutover_lock_timeout_ms: int = Field(5_000, alias="CUTOVER_LOCK_TIMEOUT_MS", ge=0)
    cutover_statement_timeout_ms: int = Field(
        30_000, alias="CUTOVER_STATEMENT_TIMEOUT_MS", ge=0
    )

    # Verification
    verify_expected_index: Optional[str] = Field(None, alias="VERIFY_EXPECTED_INDEX")
    verify_row_counts: bool = Field(True, alias="VERIFY_ROW_COUNTS")
    verify_baseline_rows: Optional[int] = Field(None, alias="VERIFY_BASELINE_ROWS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def _check_range(self) -> "Settings":
        if self.cutover_range_start >= self.cutover_range_end:
            raise ValueError(
                "CUTOVER_RANGE_START must be strictly before CUTOVER_RANGE_END "
                f"({self.cutover_range_start} >= {self.cutover_range_end})"
            )
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
