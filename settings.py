from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_ENDPOINT_URL_ENV = "UPLINK_ENDPOINT_URL"
_ENDPOINT_TIMEOUT_ENV = "UPLINK_TIMEOUT_SECONDS"
_USE_MOCK_ENV = "USE_MOCK_DATA"
_MOCK_DAYS_ENV = "MOCK_DAYS"
_MOCK_SEED_ENV = "MOCK_SEED"
_CO2_MIN_ENV = "CO2_MIN_PPM"
_CO2_MAX_ENV = "CO2_MAX_PPM"
_CO2_HIGH_ENV = "CO2_HIGH_PPM"
_REFRESH_ENV = "FEED_REFRESH_SECONDS"
_STORE_PATH_ENV = "FEED_STORE_PATH"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    uplink_endpoint_url: Optional[str]
    uplink_timeout: float
    use_mock_data: bool
    mock_days: int
    mock_seed: Optional[int]
    co2_min_ppm: float
    co2_max_ppm: float
    refresh_interval: float
    store_path: Optional[str]
    log_level: str
    co2_high_ppm: float = 1000.0


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in _TRUTHY:
        return True
    if candidate in _FALSY:
        return False
    return default


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def _read_float(name: str, default: float, allow_zero: bool = False) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    if parsed > 0 or (allow_zero and parsed == 0):
        return parsed
    return default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    co2_min = _read_float(_CO2_MIN_ENV, 200.0, allow_zero=True)
    co2_max = _read_float(_CO2_MAX_ENV, 5000.0)
    if co2_max <= co2_min:
        co2_min, co2_max = 200.0, 5000.0
    return Settings(
        uplink_endpoint_url=_read_optional_env(_ENDPOINT_URL_ENV, None),
        uplink_timeout=_read_float(_ENDPOINT_TIMEOUT_ENV, 10.0),
        use_mock_data=_read_bool(_USE_MOCK_ENV, False),
        mock_days=_read_positive_int(_MOCK_DAYS_ENV, 3),
        mock_seed=_read_optional_int(_MOCK_SEED_ENV),
        co2_min_ppm=co2_min,
        co2_max_ppm=co2_max,
        refresh_interval=_read_float(_REFRESH_ENV, 60.0, allow_zero=True),
        store_path=_read_optional_env(_STORE_PATH_ENV, "./tmp/feed_store.json"),
        log_level=_read_log_level("INFO"),
        co2_high_ppm=_read_float(_CO2_HIGH_ENV, 1000.0),
    )
