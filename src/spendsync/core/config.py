from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
MAX_PAGE_SIZE = 500


@dataclass(frozen=True, slots=True)
class SyncConfig:
    """Sync runtime configuration loaded at process startup."""

    database_url: str = "sqlite:///spendsync.db"
    page_size: int = MAX_PAGE_SIZE
    request_timeout_seconds: float = 30.0
    lease_seconds: float = 600.0
    rules_path: Path | None = None
    log_level: str = "INFO"


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def load_sync_config_from_env() -> SyncConfig:
    """Load sync config from env and validate startup requirements."""
    database_url = os.environ.get(
        "SPENDSYNC_DATABASE_URL", "sqlite:///spendsync.db"
    ).strip()
    if not database_url:
        raise ValueError("SPENDSYNC_DATABASE_URL must not be empty")

    page_size_raw = os.environ.get("SPENDSYNC_PAGE_SIZE", str(MAX_PAGE_SIZE)).strip()
    try:
        page_size = int(page_size_raw)
    except ValueError as e:
        raise ValueError(
            f"SPENDSYNC_PAGE_SIZE must be an integer, got {page_size_raw!r}"
        ) from e
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValueError(f"SPENDSYNC_PAGE_SIZE must be between 1 and {MAX_PAGE_SIZE}")

    log_level = os.environ.get("SPENDSYNC_LOG_LEVEL", "INFO").strip().upper()
    if log_level not in LOG_LEVELS:
        raise ValueError(
            f"SPENDSYNC_LOG_LEVEL must be one of: {', '.join(sorted(LOG_LEVELS))}"
        )

    lease_seconds = _float_env("SPENDSYNC_LEASE_SECONDS", 600.0)
    if lease_seconds == 0:
        raise ValueError("SPENDSYNC_LEASE_SECONDS must be positive")

    rules_raw = os.environ.get("SPENDSYNC_RULES_PATH", "").strip()

    return SyncConfig(
        database_url=database_url,
        page_size=page_size,
        request_timeout_seconds=_float_env("SPENDSYNC_REQUEST_TIMEOUT", 30.0),
        lease_seconds=lease_seconds,
        rules_path=Path(rules_raw) if rules_raw else None,
        log_level=log_level,
    )
