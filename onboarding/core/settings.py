from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(slots=True)
class Settings:
    """Runtime configuration for the onboarding service."""

    remote_url: str | None = None
    remote_api_key: str | None = None
    remote_timeout: float = 10.0
    default_debounce_ms: int = 0
    machine_debounce_ms: int = 500
    max_write_attempts: int = 3
    catalog_path: Path | None = None
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"])

    @classmethod
    def from_env(cls) -> "Settings":
        origins_env = os.getenv("API_CORS_ORIGINS", "")
        origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]
        catalog_env = os.getenv("ONBOARDING_CATALOG_PATH")
        settings = cls(
            remote_url=os.getenv("ONBOARDING_REMOTE_URL") or None,
            remote_api_key=os.getenv("ONBOARDING_REMOTE_API_KEY") or None,
            remote_timeout=_env_float("ONBOARDING_REMOTE_TIMEOUT", 10.0),
            default_debounce_ms=_env_int("ONBOARDING_DEFAULT_DEBOUNCE_MS", 0),
            machine_debounce_ms=_env_int("ONBOARDING_MACHINE_DEBOUNCE_MS", 500),
            max_write_attempts=_env_int("ONBOARDING_MAX_WRITE_ATTEMPTS", 3),
            catalog_path=Path(catalog_env).expanduser().resolve() if catalog_env else None,
        )
        if origins:
            settings.cors_origins = origins
        return settings
