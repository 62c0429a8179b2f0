from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Scheduling
    poll_interval_s: int = _env_int("HIKUP_POLL_INTERVAL_S", 3600)
    list_retry_s: int = _env_int("HIKUP_LIST_RETRY_S", 60)

    # Docker API deadlines
    api_timeout_s: int = _env_int("HIKUP_API_TIMEOUT_S", 60)
    pull_timeout_s: int = _env_int("HIKUP_PULL_TIMEOUT_S", 600)
    stop_timeout_s: int = _env_int("HIKUP_STOP_TIMEOUT_S", 10)

    # Recreate pipeline
    # Rename the original aside and delete it only once the replacement runs.
    shadow_recreate: bool = _env_bool("HIKUP_SHADOW_RECREATE", True)
    verify_delay_s: int = _env_int("HIKUP_VERIFY_DELAY_S", 2)

    # Journal
    db_path: str = os.getenv("HIKUP_DB_PATH", "hikup.db")

    # Logging
    log_target: str = os.getenv("HIKUP_LOG_TARGET", "syslog")  # syslog|stderr
    syslog_address: str = os.getenv("HIKUP_SYSLOG_ADDRESS", "/dev/log")
    log_level: str = os.getenv("HIKUP_LOG_LEVEL", "INFO")


settings = Settings()
