from __future__ import annotations

import os
from dataclasses import dataclass


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    database_url: str
    frontend_origin: str
    fx_api_url: str
    fx_timeout_seconds: float
    fx_cache_ttl_seconds: float
    log_level: str

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./finance_tracker.db"),
            frontend_origin=os.getenv("FRONTEND_ORIGIN", "http://localhost:5173"),
            fx_api_url=os.getenv("FX_API_URL", "https://api.exchangerate-api.com/v4/latest/RSD"),
            fx_timeout_seconds=_float_env("FX_TIMEOUT_SECONDS", 5.0),
            fx_cache_ttl_seconds=_float_env("FX_CACHE_TTL_SECONDS", 60 * 60),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
