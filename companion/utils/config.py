"""Runtime settings loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_optional_int(name: str) -> Optional[int]:
    value = _env_optional(name)
    return int(value) if value is not None else None


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str

    api_base_url: str
    api_token_url: str
    api_client_id: Optional[str]
    api_client_secret: Optional[str]
    api_timeout_seconds: float
    api_max_attempts: int
    api_backoff_base_seconds: float
    api_backoff_jitter: float
    api_rate_limit_default_seconds: float
    api_rate_limit_min_seconds: float
    api_page_size: int
    api_page_delay_seconds: float
    api_fanout_workers: int

    token_store_path: Path
    token_refresh_margin_seconds: int
    token_refresh_min_delay_seconds: int

    cache_path: Path
    cache_default_ttl_seconds: float
    cache_sweep_interval_seconds: float
    slot_cache_ttl_seconds: float
    project_name_cache_ttl_seconds: float
    profile_cache_ttl_seconds: float

    time_zone: str
    logtime_default_days: int
    logtime_max_days: int
    slot_length_minutes: int
    slot_lead_minutes: int
    slot_merge_epsilon_seconds: float
    slot_details_chunk_size: int

    profile_login: Optional[str]
    profile_refresh_interval_seconds: float

    campus_id: Optional[int]
    campus_cache_dir: Path
    campus_cache_ttl_seconds: float
    campus_refresh_interval_seconds: float
    campus_events_limit: int

    search_page_size: int
    search_min_query_length: int


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; tests derive variants with replace()."""
    data_dir = Path(_env_str("COMPANION_DATA_DIR", "data"))
    return Settings(
        app_name=_env_str("COMPANION_APP_NAME", "Intra Companion"),
        app_version=_env_str("COMPANION_APP_VERSION", "0.1.0"),
        log_level=_env_str("COMPANION_LOG_LEVEL", "INFO"),
        api_base_url=_env_str("INTRA_API_BASE_URL", "https://api.intra.42.fr"),
        api_token_url=_env_str("INTRA_TOKEN_URL", "https://api.intra.42.fr/oauth/token"),
        api_client_id=_env_optional("INTRA_CLIENT_ID"),
        api_client_secret=_env_optional("INTRA_CLIENT_SECRET"),
        api_timeout_seconds=_env_float("INTRA_API_TIMEOUT_SECONDS", 30.0),
        api_max_attempts=_env_int("INTRA_API_MAX_ATTEMPTS", 3),
        api_backoff_base_seconds=_env_float("INTRA_API_BACKOFF_BASE_SECONDS", 0.8),
        api_backoff_jitter=_env_float("INTRA_API_BACKOFF_JITTER", 0.4),
        api_rate_limit_default_seconds=_env_float("INTRA_API_RATE_LIMIT_DEFAULT_SECONDS", 1.0),
        api_rate_limit_min_seconds=_env_float("INTRA_API_RATE_LIMIT_MIN_SECONDS", 0.5),
        api_page_size=_env_int("INTRA_API_PAGE_SIZE", 100),
        api_page_delay_seconds=_env_float("INTRA_API_PAGE_DELAY_SECONDS", 0.7),
        api_fanout_workers=_env_int("INTRA_API_FANOUT_WORKERS", 8),
        token_store_path=Path(
            _env_str("COMPANION_TOKEN_STORE_PATH", str(data_dir / "tokens.json"))
        ),
        token_refresh_margin_seconds=_env_int("COMPANION_TOKEN_REFRESH_MARGIN_SECONDS", 60),
        token_refresh_min_delay_seconds=_env_int("COMPANION_TOKEN_REFRESH_MIN_DELAY_SECONDS", 10),
        cache_path=Path(
            _env_str("COMPANION_CACHE_PATH", str(data_dir / "network_cache.json"))
        ),
        cache_default_ttl_seconds=_env_float("COMPANION_CACHE_DEFAULT_TTL_SECONDS", 300.0),
        cache_sweep_interval_seconds=_env_float("COMPANION_CACHE_SWEEP_INTERVAL_SECONDS", 300.0),
        slot_cache_ttl_seconds=_env_float("COMPANION_SLOT_CACHE_TTL_SECONDS", 120.0),
        project_name_cache_ttl_seconds=_env_float(
            "COMPANION_PROJECT_NAME_CACHE_TTL_SECONDS", 3600.0
        ),
        profile_cache_ttl_seconds=_env_float("COMPANION_PROFILE_CACHE_TTL_SECONDS", 86400.0),
        time_zone=_env_str("COMPANION_TIME_ZONE", "UTC"),
        logtime_default_days=_env_int("COMPANION_LOGTIME_DEFAULT_DAYS", 14),
        logtime_max_days=_env_int("COMPANION_LOGTIME_MAX_DAYS", 366),
        slot_length_minutes=_env_int("COMPANION_SLOT_LENGTH_MINUTES", 15),
        slot_lead_minutes=_env_int("COMPANION_SLOT_LEAD_MINUTES", 30),
        slot_merge_epsilon_seconds=_env_float("COMPANION_SLOT_MERGE_EPSILON_SECONDS", 0.5),
        slot_details_chunk_size=_env_int("COMPANION_SLOT_DETAILS_CHUNK_SIZE", 50),
        profile_login=_env_optional("INTRA_LOGIN"),
        profile_refresh_interval_seconds=_env_float(
            "COMPANION_PROFILE_REFRESH_INTERVAL_SECONDS", 300.0
        ),
        campus_id=_env_optional_int("INTRA_CAMPUS_ID"),
        campus_cache_dir=Path(_env_str("COMPANION_CAMPUS_CACHE_DIR", str(data_dir))),
        campus_cache_ttl_seconds=_env_float("COMPANION_CAMPUS_CACHE_TTL_SECONDS", 300.0),
        campus_refresh_interval_seconds=_env_float(
            "COMPANION_CAMPUS_REFRESH_INTERVAL_SECONDS", 300.0
        ),
        campus_events_limit=_env_int("COMPANION_CAMPUS_EVENTS_LIMIT", 20),
        search_page_size=_env_int("COMPANION_SEARCH_PAGE_SIZE", 15),
        search_min_query_length=_env_int("COMPANION_SEARCH_MIN_QUERY_LENGTH", 2),
    )
