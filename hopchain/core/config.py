"""
Runtime settings, read from the environment (and a local .env file).
"""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger("hopchain.config").warning(f"{name}={raw!r} is not an integer, using {default}")
        return default


@dataclass(frozen=True)
class Settings:
    http_timeout: int = 12
    proxy: Optional[str] = None
    user_agent: str = DEFAULT_UA
    sandbox_enabled: bool = True            # False → never execute remote decoder code
    sandbox_timeout_ms: int = 5000
    sandbox_max_memory: int = 64 * 1024 * 1024
    trap_log_limit: int = 5000
    timer_depth: int = 32
    validate_playlists: bool = False
    max_concurrency: int = 4
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            http_timeout=_env_int("HOPCHAIN_HTTP_TIMEOUT", cls.http_timeout),
            proxy=os.getenv("HOPCHAIN_PROXY") or None,
            user_agent=os.getenv("HOPCHAIN_USER_AGENT") or DEFAULT_UA,
            sandbox_enabled=_env_bool("HOPCHAIN_ENABLE_SANDBOX", True),
            sandbox_timeout_ms=_env_int("HOPCHAIN_SANDBOX_TIMEOUT_MS", cls.sandbox_timeout_ms),
            sandbox_max_memory=_env_int("HOPCHAIN_SANDBOX_MAX_MEMORY", cls.sandbox_max_memory),
            trap_log_limit=_env_int("HOPCHAIN_TRAP_LOG_LIMIT", cls.trap_log_limit),
            timer_depth=_env_int("HOPCHAIN_TIMER_DEPTH", cls.timer_depth),
            validate_playlists=_env_bool("HOPCHAIN_VALIDATE_PLAYLISTS", False),
            max_concurrency=max(1, _env_int("HOPCHAIN_MAX_CONCURRENCY", cls.max_concurrency)),
            log_level=(os.getenv("HOPCHAIN_LOG_LEVEL") or "INFO").upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def configure_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
