import os
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings

# Heroku sets DATABASE_URL without a prefix -- map it to the
# TURNCHAIN_-prefixed name that pydantic-settings expects.
if "DATABASE_URL" in os.environ and "TURNCHAIN_DATABASE_URL" not in os.environ:
    _url = os.environ["DATABASE_URL"]
    if _url.startswith("postgres://"):
        _url = _url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif _url.startswith("postgresql://"):
        _url = _url.replace("postgresql://", "postgresql+asyncpg://", 1)
    os.environ["TURNCHAIN_DATABASE_URL"] = _url


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./turnchain.db"
    ECHO_SQL: bool = False
    LOG_LEVEL: str = "INFO"

    # Players who receive moderation, stall and scheduler escalations.
    ADMIN_PLAYER_IDS: list[str] = []
    # "fewest_turns" or "type_balance"
    PUSH_RULE: str = "fewest_turns"

    SCHEDULER_POLL_INTERVAL: float = 5.0
    SCHEDULER_MAX_ATTEMPTS: int = 5
    SCHEDULER_BACKOFF_BASE: float = 2.0
    SCHEDULER_BACKOFF_MAX: float = 300.0

    DRAFT_TTL: str = "30m"

    # Season defaults
    SEASON_TURN_PATTERN: str = "writing,drawing"
    SEASON_CLAIM_TIMEOUT: str = "1d"
    SEASON_WRITING_TIMEOUT: str = "1d"
    SEASON_WRITING_WARNING: str = "1m"
    SEASON_DRAWING_TIMEOUT: str = "1d"
    SEASON_DRAWING_WARNING: str = "10m"
    SEASON_OPEN_DURATION: str = "7d"
    SEASON_MIN_PLAYERS: int = 6
    SEASON_MAX_PLAYERS: int = 20

    # On-demand game defaults
    ONDEMAND_TURN_PATTERN: str = "writing,drawing"
    ONDEMAND_CLAIM_TIMEOUT: str = "1h"
    ONDEMAND_WRITING_TIMEOUT: str = "5m"
    ONDEMAND_WRITING_WARNING: str = "1m"
    ONDEMAND_DRAWING_TIMEOUT: str = "20m"
    ONDEMAND_DRAWING_WARNING: str = "2m"
    ONDEMAND_STALE_TIMEOUT: str = "3d"
    ONDEMAND_MIN_TURNS: int = 6
    ONDEMAND_MAX_TURNS: Optional[int] = None
    ONDEMAND_MAX_PLAYS: int = 1
    ONDEMAND_RETURN_GAP: int = 3

    model_config = {"env_prefix": "TURNCHAIN_"}


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
