"""Configuration helpers for backend runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .errors import ConfigurationError

OFFER_TTL_SECONDS = 120

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class BackendSettings:
    offer_secret: str
    game_secret: str
    database_url: str | None
    host: str
    port: int
    log_level: str = "INFO"
    single_use_sessions: bool = False


def _require(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ConfigurationError(f"{name} is not set")
    return value


def load_settings() -> BackendSettings:
    port_raw = os.getenv("CARDVAULT_PORT", "8000")
    try:
        port = int(port_raw)
    except ValueError as exc:
        raise ConfigurationError(f"CARDVAULT_PORT must be an integer, got {port_raw!r}") from exc
    return BackendSettings(
        offer_secret=_require("CARDVAULT_OFFER_SECRET"),
        game_secret=_require("CARDVAULT_GAME_SECRET"),
        database_url=os.getenv("CARDVAULT_DATABASE_URL") or None,
        host=os.getenv("CARDVAULT_HOST", "127.0.0.1"),
        port=port,
        log_level=os.getenv("CARDVAULT_LOG_LEVEL", "INFO").upper(),
        single_use_sessions=os.getenv("CARDVAULT_SINGLE_USE_SESSIONS", "").strip().lower() in _TRUTHY,
    )
