from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_DIRECTORY_NAME_ENV = "RECIPIENT_DIRECTORY_NAME"
_DIRECTORY_PATH_ENV = "RECIPIENT_DIRECTORY_PATH"
_WORKER_COUNT_ENV = "PIPELINE_WORKER_COUNT"
_MAX_PENDING_ENV = "PIPELINE_MAX_PENDING"
_BATCH_SIZE_ENV = "DISPATCH_BATCH_SIZE"
_MAX_ATTEMPTS_ENV = "DISPATCH_MAX_ATTEMPTS"
_RETRY_DELAY_ENV = "DISPATCH_RETRY_DELAY"
_RETRY_JITTER_ENV = "DISPATCH_RETRY_JITTER"
_CALL_TIMEOUT_ENV = "DISPATCH_CALL_TIMEOUT"
_LATEST_ONLY_ENV = "FEED_LATEST_ONLY"
_GATEWAY_URL_ENV = "PUSH_GATEWAY_URL"
_GATEWAY_KEY_ENV = "PUSH_GATEWAY_API_KEY"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    directory_name: str
    directory_persistence_path: Optional[str]
    pipeline_workers: int
    pipeline_max_pending: int
    batch_size: int
    max_attempts: int
    retry_delay: float
    retry_jitter: float
    call_timeout: float
    feed_latest_only: bool
    push_gateway_url: Optional[str]
    push_gateway_api_key: Optional[str]
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


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


def _read_non_negative_float(name: str, default: float) -> float:
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
    return parsed if parsed >= 0 else default


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
    return Settings(
        directory_name=_read_str_env(_DIRECTORY_NAME_ENV, "recipients"),
        directory_persistence_path=_read_optional_env(
            _DIRECTORY_PATH_ENV, "./tmp/recipients.json"
        ),
        pipeline_workers=_read_positive_int(_WORKER_COUNT_ENV, 4),
        pipeline_max_pending=_read_positive_int(_MAX_PENDING_ENV, 100),
        batch_size=_read_positive_int(_BATCH_SIZE_ENV, 500),
        max_attempts=_read_positive_int(_MAX_ATTEMPTS_ENV, 3),
        retry_delay=_read_non_negative_float(_RETRY_DELAY_ENV, 3.0),
        retry_jitter=_read_non_negative_float(_RETRY_JITTER_ENV, 0.0),
        call_timeout=_read_non_negative_float(_CALL_TIMEOUT_ENV, 10.0),
        feed_latest_only=_read_bool(_LATEST_ONLY_ENV, False),
        push_gateway_url=_read_optional_env(_GATEWAY_URL_ENV, None),
        push_gateway_api_key=_read_optional_env(_GATEWAY_KEY_ENV, None),
        log_level=_read_log_level("INFO"),
    )
