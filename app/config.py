"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from app.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the chat push service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_level: str
  log_dir: str | None
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  firebase_project_id: str | None
  firebase_service_account: str | None
  firebase_service_account_json_path: str | None
  auth_check_revoked: bool
  push_dry_run: bool
  prune_max_attempts: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return ()

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if "*" in origins:
    raise ValueError("CHATPUSH_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("CHATPUSH_ENV", "development").lower()

  # Diagnostics (stack traces, provider error info) are only returned to callers in debug mode.
  debug = _parse_bool(os.getenv("CHATPUSH_DEBUG"))

  log_level = (os.getenv("CHATPUSH_LOG_LEVEL") or "INFO").strip().upper()
  log_max_bytes = int(os.getenv("CHATPUSH_LOG_MAX_BYTES", "5242880"))  # 5MB default
  if log_max_bytes <= 0:
    raise ValueError("CHATPUSH_LOG_MAX_BYTES must be a positive integer.")

  log_backup_count = int(os.getenv("CHATPUSH_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("CHATPUSH_LOG_BACKUP_COUNT must be zero or a positive integer.")

  prune_max_attempts = int(os.getenv("CHATPUSH_PRUNE_MAX_ATTEMPTS", "5"))
  if prune_max_attempts <= 0:
    raise ValueError("CHATPUSH_PRUNE_MAX_ATTEMPTS must be a positive integer.")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("CHATPUSH_ALLOWED_ORIGINS")),
    log_level=log_level,
    log_dir=_optional_str(os.getenv("CHATPUSH_LOG_DIR")),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("CHATPUSH_LOG_HTTP_4XX")),
    firebase_project_id=_optional_str(os.getenv("FIREBASE_PROJECT_ID")),
    firebase_service_account=_optional_str(os.getenv("FIREBASE_SERVICE_ACCOUNT")),
    firebase_service_account_json_path=_optional_str(os.getenv("FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
    auth_check_revoked=_parse_bool(os.getenv("CHATPUSH_AUTH_CHECK_REVOKED")),
    push_dry_run=_parse_bool(os.getenv("CHATPUSH_PUSH_DRY_RUN")),
    prune_max_attempts=prune_max_attempts,
  )


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
