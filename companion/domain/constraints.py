"""Domain-level validation rules for the API client and cache configuration."""

from __future__ import annotations

from dataclasses import dataclass

from companion.utils.config import Settings


@dataclass(frozen=True)
class ClientConfig:
    timeout_seconds: float
    max_attempts: int
    backoff_base_seconds: float
    backoff_jitter: float
    rate_limit_default_seconds: float
    rate_limit_min_seconds: float
    page_size: int
    page_delay_seconds: float
    fanout_workers: int

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClientConfig":
        return cls(
            timeout_seconds=settings.api_timeout_seconds,
            max_attempts=settings.api_max_attempts,
            backoff_base_seconds=settings.api_backoff_base_seconds,
            backoff_jitter=settings.api_backoff_jitter,
            rate_limit_default_seconds=settings.api_rate_limit_default_seconds,
            rate_limit_min_seconds=settings.api_rate_limit_min_seconds,
            page_size=settings.api_page_size,
            page_delay_seconds=settings.api_page_delay_seconds,
            fanout_workers=settings.api_fanout_workers,
        )


@dataclass(frozen=True)
class CacheConfig:
    default_ttl_seconds: float
    sweep_interval_seconds: float

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheConfig":
        return cls(
            default_ttl_seconds=settings.cache_default_ttl_seconds,
            sweep_interval_seconds=settings.cache_sweep_interval_seconds,
        )


def validate_client_config(config: ClientConfig) -> None:
    if config.timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be > 0")
    if config.max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    if config.backoff_base_seconds < 0:
        raise ValueError("backoff_base_seconds must be >= 0")
    if not 0.0 <= config.backoff_jitter <= 1.0:
        raise ValueError("backoff_jitter must be between 0 and 1")
    if config.rate_limit_min_seconds < 0:
        raise ValueError("rate_limit_min_seconds must be >= 0")
    if config.rate_limit_default_seconds < config.rate_limit_min_seconds:
        raise ValueError("rate_limit_default_seconds must be >= rate_limit_min_seconds")
    if not 1 <= config.page_size <= 100:
        raise ValueError("page_size must be in [1, 100]")
    if config.page_delay_seconds < 0:
        raise ValueError("page_delay_seconds must be >= 0")
    if config.fanout_workers <= 0:
        raise ValueError("fanout_workers must be > 0")


def validate_cache_config(config: CacheConfig) -> None:
    if config.default_ttl_seconds <= 0:
        raise ValueError("default_ttl_seconds must be > 0")
    if config.sweep_interval_seconds <= 0:
        raise ValueError("sweep_interval_seconds must be > 0")
