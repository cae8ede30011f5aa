from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from turnchain.config import Settings
from turnchain.game import durations
from turnchain.game.notifier import ModerationVerdict
from turnchain.main import create_runtime
from turnchain.models.base import Base
from turnchain.models import (  # noqa: F401
    player, season, game, turn, scheduled_job, draft_session,
)
from turnchain.models.game import Game
from turnchain.models.turn import Turn

ADMIN = "admin"
START = datetime(2026, 1, 5, 12, 0, 0)

# Small season used by most engine tests; timeouts are distinct so a clock
# advance fires one kind of job at a time.
SEASON_POLICY = {
    "min_players": 2,
    "max_players": 3,
    "open_duration": "1d",
    "claim_timeout": "3h",
    "writing_timeout": "1h",
    "writing_warning": "10m",
    "drawing_timeout": "2h",
    "drawing_warning": "10m",
}


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict]] = []

    async def notify(self, player_id: str, key: str, data: dict) -> None:
        self.sent.append((player_id, key, data))

    def keys_for(self, player_id: str) -> list[str]:
        return [key for pid, key, _ in self.sent if pid == player_id]

    def clear(self) -> None:
        self.sent.clear()


class ScriptedModeration:
    """Flags any submission containing one of ``banned``."""

    def __init__(self) -> None:
        self.banned: set[str] = {"forbidden"}
        self.checked: list[str] = []

    async def check(self, content: str, content_kind: str) -> ModerationVerdict:
        self.checked.append(content)
        hits = [word for word in self.banned if word in content]
        if hits:
            return ModerationVerdict(flagged=True, reason=f"contains {hits[0]}")
        return ModerationVerdict(flagged=False)


@pytest.fixture
def clock(monkeypatch):
    frozen = FrozenClock(START)
    monkeypatch.setattr(durations, "utcnow", frozen)
    return frozen


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    # A file database: every session gets its own connection and transaction.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'turnchain.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def moderation():
    return ScriptedModeration()


@pytest.fixture
def test_settings():
    return Settings(
        ADMIN_PLAYER_IDS=[ADMIN],
        SCHEDULER_MAX_ATTEMPTS=3,
        SCHEDULER_BACKOFF_MAX=0.0,
        SCHEDULER_POLL_INTERVAL=60.0,
    )


@pytest.fixture
def runtime(session_factory, notifier, moderation, test_settings, clock):
    return create_runtime(session_factory, notifier, moderation, test_settings)


@pytest.fixture
def service(runtime):
    return runtime.service


# -- Helpers -------------------------------------------------------------------

async def fetch_all(session_factory, stmt) -> list:
    async with session_factory() as db:
        return list((await db.execute(stmt)).scalars().all())


async def fetch_one(session_factory, model, row_id):
    async with session_factory() as db:
        return await db.get(model, row_id)


async def season_games(session_factory, season_id: str) -> list[tuple[Game, list[Turn]]]:
    """Games of a season (by author id) with their turns in order."""
    async with session_factory() as db:
        games = (
            await db.execute(
                select(Game).where(Game.season_id == season_id).order_by(Game.creator_id)
            )
        ).scalars().all()
        result = []
        for g in games:
            turns = (
                await db.execute(
                    select(Turn).where(Turn.game_id == g.id).order_by(Turn.turn_number)
                )
            ).scalars().all()
            result.append((g, list(turns)))
        return result


async def game_turns(session_factory, game_id: str) -> list[Turn]:
    return await fetch_all(
        session_factory,
        select(Turn).where(Turn.game_id == game_id).order_by(Turn.turn_number),
    )


async def start_season(service, players=("p1", "p2", "p3"), **overrides) -> str:
    """Create a season sized for *players* and join them all, activating it."""
    policy = {**SEASON_POLICY, "max_players": len(players), **overrides}
    created = await service.create_season(players[0], policy)
    assert created.success, created
    season_id = created.data["season_id"]
    for pid in players:
        joined = await service.join_season(season_id, pid)
        assert joined.success, joined
    return season_id
