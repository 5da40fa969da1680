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


def _get_optional_str_env(name: str) -> str | None:
    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _get_list_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = _get_optional_str_env(name)
    if raw is None:
        return default
    items = tuple(item.strip().lower() for item in raw.split(",") if item.strip())
    return items or default


@dataclass(frozen=True)
class PipelineSettings:
    """
    Batch sizes and schema detection limits for the stage handlers.
    """

    batch_size: int = 1000
    duplicate_query_chunk_size: int = 1000
    schema_sample_size: int = 1000
    schema_max_depth: int = 5
    enum_threshold: int = 50
    enum_mode: str = "count"
    default_language: str = "eng"
    max_task_attempts: int = 3
    max_upload_bytes: int = 100 * 1024 * 1024


@dataclass(frozen=True)
class UrlFetchSettings:
    """
    Defaults for scheduled remote fetches; schedules may override most of them.
    """

    timeout_seconds: float = 30.0
    max_file_size_mb: float = 100.0
    max_retries: int = 3
    retry_delay_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    max_retry_delay_seconds: float = 300.0
    rate_limit_per_second: float = 2.0
    user_agent: str = "event-import-pipeline/1.0"


@dataclass(frozen=True)
class GeocodingSettings:
    """
    Built-in geocoding provider settings used when no providers are stored.
    """

    enabled: bool = True
    provider_order: tuple[str, ...] = ("nominatim",)
    nominatim_base_url: str = "https://nominatim.openstreetmap.org"
    nominatim_rate_limit_per_second: float = 1.0
    google_api_key: str | None = None
    google_rate_limit_per_second: float = 10.0
    timeout_seconds: float = 10.0
    user_agent: str = "event-import-pipeline/1.0"


@dataclass(frozen=True)
class StorageSettings:
    upload_root_dir: str = "data/imports"


@dataclass(frozen=True)
class SchedulerSettings:
    """
    Cadence of the background jobs that drive the task queue and schedules.
    """

    enabled: bool = True
    task_queue_interval_seconds: int = 10
    schedule_manager_interval_seconds: int = 60
    task_queue_batch_limit: int = 50


@dataclass(frozen=True)
class FeatureFlagSettings:
    cache_ttl_seconds: float = 60.0


@lru_cache(maxsize=1)
def get_pipeline_settings() -> PipelineSettings:
    """
    Return cached pipeline settings from environment variables.
    """

    enum_mode = _get_str_env("PIPELINE_ENUM_MODE", "count").lower()
    return PipelineSettings(
        batch_size=max(1, _get_int_env("PIPELINE_BATCH_SIZE", 1000)),
        duplicate_query_chunk_size=max(1, _get_int_env("PIPELINE_DUPLICATE_QUERY_CHUNK_SIZE", 1000)),
        schema_sample_size=max(1, _get_int_env("PIPELINE_SCHEMA_SAMPLE_SIZE", 1000)),
        schema_max_depth=max(1, _get_int_env("PIPELINE_SCHEMA_MAX_DEPTH", 5)),
        enum_threshold=max(1, _get_int_env("PIPELINE_ENUM_THRESHOLD", 50)),
        enum_mode=enum_mode if enum_mode in {"count", "percentage"} else "count",
        default_language=_get_str_env("PIPELINE_DEFAULT_LANGUAGE", "eng").lower(),
        max_task_attempts=max(1, _get_int_env("PIPELINE_MAX_TASK_ATTEMPTS", 3)),
        max_upload_bytes=max(1, _get_int_env("PIPELINE_MAX_UPLOAD_BYTES", 100 * 1024 * 1024)),
    )


@lru_cache(maxsize=1)
def get_url_fetch_settings() -> UrlFetchSettings:
    """
    Return default remote-fetch settings from environment variables.
    """

    return UrlFetchSettings(
        timeout_seconds=max(1.0, _get_float_env("URL_FETCH_TIMEOUT_SECONDS", 30.0)),
        max_file_size_mb=max(0.001, _get_float_env("URL_FETCH_MAX_FILE_SIZE_MB", 100.0)),
        max_retries=max(0, _get_int_env("URL_FETCH_MAX_RETRIES", 3)),
        retry_delay_seconds=max(0.0, _get_float_env("URL_FETCH_RETRY_DELAY_SECONDS", 1.0)),
        backoff_multiplier=max(1.0, _get_float_env("URL_FETCH_BACKOFF_MULTIPLIER", 2.0)),
        max_retry_delay_seconds=max(1.0, _get_float_env("URL_FETCH_MAX_RETRY_DELAY_SECONDS", 300.0)),
        rate_limit_per_second=max(0.1, _get_float_env("URL_FETCH_RATE_LIMIT_PER_SECOND", 2.0)),
        user_agent=_get_str_env("URL_FETCH_USER_AGENT", "event-import-pipeline/1.0"),
    )


@lru_cache(maxsize=1)
def get_geocoding_settings() -> GeocodingSettings:
    """
    Return geocoding settings from environment variables.
    """

    return GeocodingSettings(
        enabled=_get_bool_env("GEOCODING_ENABLED", True),
        provider_order=_get_list_env("GEOCODING_PROVIDER_ORDER", ("nominatim",)),
        nominatim_base_url=_get_str_env("NOMINATIM_BASE_URL", "https://nominatim.openstreetmap.org"),
        nominatim_rate_limit_per_second=max(0.1, _get_float_env("NOMINATIM_RATE_LIMIT_PER_SECOND", 1.0)),
        google_api_key=_get_optional_str_env("GOOGLE_GEOCODING_API_KEY"),
        google_rate_limit_per_second=max(0.1, _get_float_env("GOOGLE_GEOCODING_RATE_LIMIT_PER_SECOND", 10.0)),
        timeout_seconds=max(1.0, _get_float_env("GEOCODING_TIMEOUT_SECONDS", 10.0)),
        user_agent=_get_str_env("GEOCODING_USER_AGENT", "event-import-pipeline/1.0"),
    )


@lru_cache(maxsize=1)
def get_storage_settings() -> StorageSettings:
    return StorageSettings(upload_root_dir=_get_str_env("IMPORT_STORAGE_DIR", "data/imports"))


@lru_cache(maxsize=1)
def get_scheduler_settings() -> SchedulerSettings:
    """
    Return background scheduler settings from environment variables.
    """

    return SchedulerSettings(
        enabled=_get_bool_env("SCHEDULER_ENABLED", True),
        task_queue_interval_seconds=max(1, _get_int_env("TASK_QUEUE_INTERVAL_SECONDS", 10)),
        schedule_manager_interval_seconds=max(5, _get_int_env("SCHEDULE_MANAGER_INTERVAL_SECONDS", 60)),
        task_queue_batch_limit=max(1, _get_int_env("TASK_QUEUE_BATCH_LIMIT", 50)),
    )


@lru_cache(maxsize=1)
def get_feature_flag_settings() -> FeatureFlagSettings:
    return FeatureFlagSettings(
        cache_ttl_seconds=max(0.0, _get_float_env("FEATURE_FLAG_CACHE_TTL_SECONDS", 60.0)),
    )
