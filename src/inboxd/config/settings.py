from __future__ import annotations

import os
from dataclasses import dataclass

# Importing paths also loads .env before we read any variable.
from inboxd.config import paths  # noqa: F401
from inboxd.errors import InvalidArgument


def _env_positive_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise InvalidArgument(f"{key} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise InvalidArgument(f"{key} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    # Upper bound for concurrent Gmail requests per fan-out.
    max_workers: int = 8
    # Per rule, per account cap on server-side search results.
    default_limit: int = 50
    log_level: str = "WARNING"
    # Passed to googleapiclient execute(num_retries=...).
    api_retries: int = 1

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            max_workers=_env_positive_int("INBOXD_MAX_WORKERS", cls.max_workers),
            default_limit=_env_positive_int("INBOXD_DEFAULT_LIMIT", cls.default_limit),
            log_level=(os.getenv("INBOXD_LOG_LEVEL") or cls.log_level).upper(),
            api_retries=_env_positive_int("INBOXD_API_RETRIES", cls.api_retries),
        )
