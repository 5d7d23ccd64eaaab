"""Runtime configuration read from the environment."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./app.db"
ALGORITHM = "HS256"


def _split_uids(raw: str) -> frozenset[str]:
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    secret_key: str = "super-secret-key-change-me"
    access_token_expire_minutes: int = 60 * 24 * 7  # 7 days
    admin_uids: frozenset[str] = field(default_factory=frozenset)
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "phi3:latest"
    summary_timeout: float = 30.0
    log_level: str = "INFO"
    port: int = 8000

    @property
    def using_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


def load_settings() -> Settings:
    # Prefer PostgreSQL if provided, otherwise fall back to SQLite (so server always boots)
    database_url = os.getenv("DATABASE_URL", "").strip() or DEFAULT_DATABASE_URL
    return Settings(
        database_url=database_url,
        secret_key=os.getenv("SECRET_KEY", "super-secret-key-change-me"),
        access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7)),
        admin_uids=_split_uids(os.getenv("ADMIN_UIDS", "")),
        ollama_url=os.getenv("OLLAMA_URL", "http://localhost:11434").rstrip("/"),
        ollama_model=os.getenv("OLLAMA_MODEL", "phi3:latest"),
        summary_timeout=float(os.getenv("SUMMARY_TIMEOUT", "30")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        port=int(os.getenv("PORT", 8000)),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
