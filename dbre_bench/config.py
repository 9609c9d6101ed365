"""
Configuration settings for the betting query optimization toolkit.

Uses Pydantic Settings to load environment variables for database connections,
logging, benchmark defaults, health-check thresholds and the synthetic data
generator sizes.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("betting", alias="DB_NAME")
    db_statement_timeout_ms: int = Field(60_000, alias="DB_STATEMENT_TIMEOUT_MS")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Benchmark defaults
    benchmark_runs: int = Field(10, alias="BENCHMARK_RUNS")
    benchmark_warmup: bool = Field(True, alias="BENCHMARK_WARMUP")
    benchmark_target_ms: float = Field(5.0, alias="BENCHMARK_TARGET_MS")
    session_tuning: bool = Field(True, alias="SESSION_TUNING")
    results_dir: str = Field("results", alias="RESULTS_DIR")
    plans_dir: str = Field("plans", alias="PLANS_DIR")

    # Health checks
    health_latency_slo_ms: float = Field(5.0, alias="HEALTH_LATENCY_SLO_MS")
    health_connection_warn_pct: int = Field(80, alias="HEALTH_CONNECTION_WARN_PCT")
    health_replication_lag_warn_mb: int = Field(10, alias="HEALTH_REPLICATION_LAG_WARN_MB")
    health_long_query_seconds: int = Field(60, alias="HEALTH_LONG_QUERY_SECONDS")
    health_data_dir: Optional[str] = Field(None, alias="HEALTH_DATA_DIR")
    health_disk_warn_pct: float = Field(85.0, alias="HEALTH_DISK_WARN_PCT")

    # Synthetic dataset
    data_users: int = Field(200_000, alias="DATA_USERS")
    data_events: int = Field(800_000, alias="DATA_EVENTS")
    data_bets: int = Field(4_000_000, alias="DATA_BETS")
    data_seed: int = Field(42, alias="DATA_SEED")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
