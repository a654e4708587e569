"""Tests for API client and cache configuration validation.

Covers every validation branch in validate_client_config() and
validate_cache_config().
"""

from __future__ import annotations

import pytest

from companion.domain.constraints import (
    CacheConfig,
    ClientConfig,
    validate_cache_config,
    validate_client_config,
)


def valid_config(**overrides) -> ClientConfig:
    """Return a valid baseline ClientConfig, optionally overriding fields."""
    defaults = {
        "timeout_seconds": 30.0,
        "max_attempts": 3,
        "backoff_base_seconds": 0.8,
        "backoff_jitter": 0.4,
        "rate_limit_default_seconds": 1.0,
        "rate_limit_min_seconds": 0.5,
        "page_size": 100,
        "page_delay_seconds": 0.7,
        "fanout_workers": 8,
    }
    defaults.update(overrides)
    return ClientConfig(**defaults)


# --- Baseline pass ---

def test_valid_config_passes() -> None:
    """A fully valid config must not raise."""
    validate_client_config(valid_config())


def test_defaults_from_settings_pass(settings) -> None:
    validate_client_config(ClientConfig.from_settings(settings))
    validate_cache_config(CacheConfig.from_settings(settings))


# --- Invalid values ---

@pytest.mark.parametrize(
    "overrides",
    [
        {"timeout_seconds": 0},
        {"max_attempts": 0},
        {"backoff_base_seconds": -0.1},
        {"backoff_jitter": -0.01},
        {"backoff_jitter": 1.01},
        {"rate_limit_min_seconds": -1},
        {"rate_limit_default_seconds": 0.2},
        {"page_size": 0},
        {"page_size": 101},
        {"page_delay_seconds": -0.5},
        {"fanout_workers": 0},
    ],
)
def test_invalid_client_values_raise(overrides) -> None:
    with pytest.raises(ValueError):
        validate_client_config(valid_config(**overrides))


# --- Boundary values ---

def test_single_attempt_passes() -> None:
    """One attempt means retries are disabled, which is allowed."""
    validate_client_config(valid_config(max_attempts=1))


def test_jitter_bounds_pass() -> None:
    validate_client_config(valid_config(backoff_jitter=0.0))
    validate_client_config(valid_config(backoff_jitter=1.0))


def test_page_size_bounds_pass() -> None:
    validate_client_config(valid_config(page_size=1))
    validate_client_config(valid_config(page_size=100))


def test_zero_page_delay_passes() -> None:
    validate_client_config(valid_config(page_delay_seconds=0.0))


# --- Cache ---

def test_cache_ttl_zero_raises() -> None:
    with pytest.raises(ValueError):
        validate_cache_config(CacheConfig(default_ttl_seconds=0, sweep_interval_seconds=300))


def test_cache_sweep_interval_negative_raises() -> None:
    with pytest.raises(ValueError):
        validate_cache_config(CacheConfig(default_ttl_seconds=300, sweep_interval_seconds=-1))
