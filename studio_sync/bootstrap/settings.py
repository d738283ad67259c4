from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_DRAIN_INTERVAL_SECONDS = 30.0
DEFAULT_SCAN_INTERVAL_SECONDS = 10.0
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE_SECONDS = 1.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_BACKOFF_MAX_SECONDS = 30.0
DEFAULT_WORKERS = 4
DEFAULT_BREAKER_THRESHOLD = 10
DEFAULT_BREAKER_RESET_SECONDS = 120.0


def project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def resolve_log_dir() -> Path:
    candidates: list[Path] = []
    env_dir = os.environ.get("STUDIO_SYNC_LOG_DIR")
    if env_dir:
        candidates.append(Path(env_dir))
    candidates.append(project_root() / "logs")
    candidates.append(Path(tempfile.gettempdir()) / "StudioSync" / "logs")

    for candidate in candidates:
        try:
            candidate.mkdir(parents=True, exist_ok=True)
            test_file = candidate / "_write_test.tmp"
            test_file.write_text("ok", encoding="utf-8")
            test_file.unlink(missing_ok=True)
            return candidate
        except OSError:
            continue

    fallback = project_root()
    fallback.mkdir(parents=True, exist_ok=True)
    return fallback


@dataclass(frozen=True)
class AppSettings:
    db_path: Path | None = None
    drain_interval_seconds: float = DEFAULT_DRAIN_INTERVAL_SECONDS
    scan_interval_seconds: float = DEFAULT_SCAN_INTERVAL_SECONDS
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    backoff_max_seconds: float = DEFAULT_BACKOFF_MAX_SECONDS
    workers: int = DEFAULT_WORKERS
    breaker_failure_threshold: int = DEFAULT_BREAKER_THRESHOLD
    breaker_reset_seconds: float = DEFAULT_BREAKER_RESET_SECONDS


def _safe_int_env(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        logger.warning("Ignoring invalid integer in %s=%r", name, raw_value)
        return default


def _safe_float_env(name: str, default: float) -> float:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        logger.warning("Ignoring invalid number in %s=%r", name, raw_value)
        return default


def load_settings() -> AppSettings:
    db_path = os.getenv("STUDIO_SYNC_DB_PATH")
    return AppSettings(
        db_path=Path(db_path) if db_path else None,
        drain_interval_seconds=_safe_float_env("STUDIO_SYNC_DRAIN_INTERVAL", DEFAULT_DRAIN_INTERVAL_SECONDS),
        scan_interval_seconds=_safe_float_env("STUDIO_SYNC_SCAN_INTERVAL", DEFAULT_SCAN_INTERVAL_SECONDS),
        http_timeout_seconds=_safe_float_env("STUDIO_SYNC_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT_SECONDS),
        max_attempts=max(1, _safe_int_env("STUDIO_SYNC_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)),
        backoff_base_seconds=_safe_float_env("STUDIO_SYNC_BACKOFF_BASE", DEFAULT_BACKOFF_BASE_SECONDS),
        backoff_multiplier=_safe_float_env("STUDIO_SYNC_BACKOFF_MULTIPLIER", DEFAULT_BACKOFF_MULTIPLIER),
        backoff_max_seconds=_safe_float_env("STUDIO_SYNC_BACKOFF_MAX", DEFAULT_BACKOFF_MAX_SECONDS),
        workers=max(1, _safe_int_env("STUDIO_SYNC_WORKERS", DEFAULT_WORKERS)),
        breaker_failure_threshold=max(1, _safe_int_env("STUDIO_SYNC_BREAKER_THRESHOLD", DEFAULT_BREAKER_THRESHOLD)),
        breaker_reset_seconds=_safe_float_env("STUDIO_SYNC_BREAKER_RESET", DEFAULT_BREAKER_RESET_SECONDS),
    )
