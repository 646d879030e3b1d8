from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]
IssuanceMode = Literal["queue", "inline"]


def _getenv(name: str, default: str) -> str:
    # Centralize env access so it’s easy to extend later (type casting, required vars)
    return os.environ.get(name, default).strip()


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    certificate_issuance: IssuanceMode
    certificate_max_attempts: int
    certificate_backoff_seconds: float
    worker_concurrency: int

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"

    @property
    def issues_inline(self) -> bool:
        return self.certificate_issuance == "inline"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    port_raw = _getenv("PORT", "8000")
    issuance_raw = _getenv("CERTIFICATE_ISSUANCE", "queue").lower()
    attempts_raw = _getenv("CERTIFICATE_MAX_ATTEMPTS", "3")
    backoff_raw = _getenv("CERTIFICATE_BACKOFF_SECONDS", "3")
    concurrency_raw = _getenv("WORKER_CONCURRENCY", "5")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if issuance_raw not in ("queue", "inline"):
        raise ValueError(
            f"CERTIFICATE_ISSUANCE must be queue|inline (got {issuance_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    try:
        max_attempts = int(attempts_raw)
    except ValueError:
        raise ValueError(
            f"CERTIFICATE_MAX_ATTEMPTS must be an integer (got {attempts_raw!r})"
        ) from None
    if max_attempts < 1:
        raise ValueError(
            f"CERTIFICATE_MAX_ATTEMPTS must be >= 1 (got {max_attempts})"
        )

    try:
        backoff_seconds = float(backoff_raw)
    except ValueError:
        raise ValueError(
            f"CERTIFICATE_BACKOFF_SECONDS must be a number (got {backoff_raw!r})"
        ) from None
    if backoff_seconds < 0:
        raise ValueError(
            f"CERTIFICATE_BACKOFF_SECONDS must be >= 0 (got {backoff_seconds})"
        )

    try:
        concurrency = int(concurrency_raw)
    except ValueError:
        raise ValueError(
            f"WORKER_CONCURRENCY must be an integer (got {concurrency_raw!r})"
        ) from None
    if concurrency < 1:
        raise ValueError(f"WORKER_CONCURRENCY must be >= 1 (got {concurrency})")

    log_json = _parse_bool("LOG_JSON", _getenv("LOG_JSON", "false"))
    database_url = _getenv("DATABASE_URL", "") or None
    redis_url = _getenv("REDIS_URL", "") or None

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json,
        port=port,
        database_url=database_url,
        redis_url=redis_url,
        certificate_issuance=issuance_raw,
        certificate_max_attempts=max_attempts,
        certificate_backoff_seconds=backoff_seconds,
        worker_concurrency=concurrency,
    )


# Optional: module-level singleton so imports are cheap
SETTINGS = load_settings()
