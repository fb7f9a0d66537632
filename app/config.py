"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from db.config import load_env_files


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    """
    Read an integer from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """
    Read a float from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


@dataclass(frozen=True)
class IngestionSettings:
    """
    Runtime settings for CSV upload, sniffing and row loading.
    """

    row_chunk_size: int = 1000
    sniff_sample_limit: int = 20
    max_datasets_per_owner: int = 2
    max_batches_per_dataset: int = 5
    max_column_name_length: int = 255


@dataclass(frozen=True)
class CacheSettings:
    """
    Redis connection, key namespace and per-view TTLs (seconds).
    """

    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "bi"
    kpi_summary_ttl_seconds: int = 600
    distribution_ttl_seconds: int = 900
    monthly_trend_ttl_seconds: int = 600
    all_metrics_ttl_seconds: int = 300
    scan_batch_size: int = 500
    socket_timeout_seconds: float = 2.0


@dataclass(frozen=True)
class MaterializationSettings:
    """
    Background materialization queue settings.
    """

    max_attempts: int = 3
    retry_backoff_seconds: float = 5.0
    worker_threads: int = 4
    recover_on_start: bool = True


@lru_cache(maxsize=1)
def get_ingestion_settings() -> IngestionSettings:
    """
    Return cached ingestion settings from environment variables.
    """

    return IngestionSettings(
        row_chunk_size=max(1, _get_int_env("INGEST_ROW_CHUNK_SIZE", 1000)),
        sniff_sample_limit=max(1, _get_int_env("INGEST_SNIFF_SAMPLE_LIMIT", 20)),
        max_datasets_per_owner=max(1, _get_int_env("INGEST_MAX_DATASETS_PER_OWNER", 2)),
        max_batches_per_dataset=max(1, _get_int_env("INGEST_MAX_BATCHES_PER_DATASET", 5)),
        max_column_name_length=max(16, _get_int_env("INGEST_MAX_COLUMN_NAME_LENGTH", 255)),
    )


@lru_cache(maxsize=1)
def get_cache_settings() -> CacheSettings:
    """
    Return cached metric-cache settings from environment variables.
    """

    return CacheSettings(
        redis_url=_get_str_env("REDIS_URL", "redis://localhost:6379/0"),
        key_prefix=_get_str_env("CACHE_KEY_PREFIX", "bi"),
        kpi_summary_ttl_seconds=max(1, _get_int_env("CACHE_KPI_SUMMARY_TTL_SECONDS", 600)),
        distribution_ttl_seconds=max(1, _get_int_env("CACHE_DISTRIBUTION_TTL_SECONDS", 900)),
        monthly_trend_ttl_seconds=max(1, _get_int_env("CACHE_MONTHLY_TREND_TTL_SECONDS", 600)),
        all_metrics_ttl_seconds=max(1, _get_int_env("CACHE_ALL_METRICS_TTL_SECONDS", 300)),
        scan_batch_size=max(10, _get_int_env("CACHE_SCAN_BATCH_SIZE", 500)),
        socket_timeout_seconds=max(0.1, _get_float_env("CACHE_SOCKET_TIMEOUT_SECONDS", 2.0)),
    )


@lru_cache(maxsize=1)
def get_materialization_settings() -> MaterializationSettings:
    """
    Return cached materialization queue settings from environment variables.
    """

    return MaterializationSettings(
        max_attempts=max(1, _get_int_env("MATERIALIZATION_MAX_ATTEMPTS", 3)),
        retry_backoff_seconds=max(0.0, _get_float_env("MATERIALIZATION_RETRY_BACKOFF_SECONDS", 5.0)),
        worker_threads=max(1, _get_int_env("MATERIALIZATION_WORKER_THREADS", 4)),
        recover_on_start=_get_bool_env("MATERIALIZATION_RECOVER_ON_START", True),
    )
