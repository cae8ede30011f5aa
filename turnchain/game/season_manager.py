r"""Season lifecycle.

    SETUP -> OPEN --(max players joined | open duration over, min met)--> ACTIVE
               \--(open duration over, min not met)--> CANCELLED
    ACTIVE -> COMPLETED   (every game final)
    OPEN/ACTIVE -> TERMINATED   (operator)

Activation creates one game per member.  Each game starts with a PENDING
turn for its author and the engine immediately offers turn 2.
"""
import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from turnchain.game import constants as C
from turnchain.game import durations
from turnchain.game import policy as P
from turnchain.game.errors import ConflictError
from turnchain.game.game_manager import GameManager
from turnchain.game.players import ensure_active_player
from turnchain.game.repository import (
    conditional_update, get_or_404, queue_notice, transition,
)
from turnchain.game.scheduler import DurableScheduler
from turnchain.game.turn_engine import season_member_ids
from turnchain.models.game import Game
from turnchain.models.season import Membership, Policy, Season

log = logging.getLogger(__name__)


class SeasonManager:
    def __init__(self, games: GameManager, scheduler: DurableScheduler) -> None:
        self.games = games
        self.scheduler = scheduler

    async def member_count(self, db: AsyncSession, season_id: str) -> int:
        return (
            await db.execute(
                select(func.count()).select_from(Membership).where(Membership.season_id == season_id)
            )
        ).scalar_one()

    async def create_season(
        self, db: AsyncSession, creator_id: str, policy_data: dict | None = None,
    ) -> Season:
        """Validate the policy, create the season and open it for joining."""
        policy = P.build_season_policy(policy_data)
        await ensure_active_player(db, creator_id)
        db.add(policy)
        await db.flush()

        now = durations.utcnow()
        season = Season(
            status=C.SEASON_SETUP,
            creator_id=creator_id,
            policy_id=policy.id,
            created_at=now,
            updated_at=now,
        )
        db.add(season)
        await db.flush()

        await transition(db, Season, season.id, C.SEASON_SETUP, status=C.SEASON_OPEN, updated_at=now)
        await self.scheduler.schedule(
            db, C.JOB_OPEN_DURATION_TIMEOUT, season.id,
            now + durations.parse_duration(policy.open_duration),
        )
        log.info("Season %s opened by %s", season.id, creator_id)
        return season

    async def join_season(self, db: AsyncSession, season_id: str, player_id: str) -> Season:
        """Add *player_id*; activates the season when it fills up."""
        season = await get_or_404(db, Season, season_id, key="season_not_found")
        await ensure_active_player(db, player_id)
        now = durations.utcnow()
        # Touching the row serialises concurrent joins on the season.
        await transition(
            db, Season, season.id, C.SEASON_OPEN, key="season_not_open", updated_at=now,
        )
        existing = await db.get(Membership, (player_id, season.id))
        if existing is not None:
            raise ConflictError(f"{player_id} already joined {season_id}", key="already_joined")

        policy = await db.get(Policy, season.policy_id)
        count = await self.member_count(db, season.id)
        if count >= policy.max_players:
            raise ConflictError(f"Season {season_id} is full", key="season_full")

        db.add(Membership(player_id=player_id, season_id=season.id, joined_at=now))
        await db.flush()
        count += 1
        log.info("%s joined season %s (%d/%d)", player_id, season.id, count, policy.max_players)

        if count >= policy.max_players:
            await self.activate(db, season)
        return season

    async def activate(self, db: AsyncSession, season: Season) -> list[Game]:
        now = durations.utcnow()
        await transition(
            db, Season, season.id, C.SEASON_OPEN, key="season_not_open",
            status=C.SEASON_ACTIVE, activated_at=now, updated_at=now,
        )
        await self.scheduler.cancel(db, C.JOB_OPEN_DURATION_TIMEOUT, season.id)

        policy = await db.get(Policy, season.policy_id)
        members = await season_member_ids(db, season.id)
        games = []
        for member_id in members:
            games.append(await self.games.create_season_game(db, season, member_id, policy))
        # Offers go out only after every initial turn exists, so the fairness
        # statistics see the whole season.
        for game in games:
            await self.games.open_follow_up(db, game, policy, exclude={game.creator_id})

        for member_id, game in zip(members, games):
            queue_notice(db, member_id, C.MSG_SEASON_ACTIVATED,
                         {"season_id": season.id, "game_id": game.id, "games": len(games)})
        log.info("Season %s activated with %d games", season.id, len(games))
        return games

    async def handle_open_duration_timeout(self, db: AsyncSession, season_id: str) -> Optional[str]:
        """Activate or cancel a season whose joining window closed.

        Returns the season's new status, or None when it was no longer OPEN.
        """
        season = await db.get(Season, season_id)
        if season is None or season.status != C.SEASON_OPEN:
            log.debug("Open-duration timeout ignored for season %s", season_id)
            return None
        policy = await db.get(Policy, season.policy_id)
        count = await self.member_count(db, season.id)
        if count >= policy.min_players:
            await self.activate(db, season)
            return C.SEASON_ACTIVE

        now = durations.utcnow()
        if not await conditional_update(
            db, Season, season.id, C.SEASON_OPEN,
            status=C.SEASON_CANCELLED, finished_at=now, updated_at=now,
        ):
            return None
        await self.scheduler.cancel(db, C.JOB_OPEN_DURATION_TIMEOUT, season.id)
        for member_id in await season_member_ids(db, season.id):
            queue_notice(db, member_id, C.MSG_SEASON_CANCELLED,
                         {"season_id": season.id, "players": count, "min_players": policy.min_players})
        log.info("Season %s cancelled: %d/%d players", season.id, count, policy.min_players)
        return C.SEASON_CANCELLED

    async def terminate_season(self, db: AsyncSession, season_id: str, admin_id: str) -> Season:
        season = await get_or_404(db, Season, season_id, key="season_not_found")
        now = durations.utcnow()
        await transition(
            db, Season, season.id, (C.SEASON_OPEN, C.SEASON_ACTIVE), key="season_not_active",
            status=C.SEASON_TERMINATED, finished_at=now, updated_at=now,
        )
        await self.scheduler.cancel(db, C.JOB_OPEN_DURATION_TIMEOUT, season.id)

        games = (
            await db.execute(
                select(Game).where(
                    Game.season_id == season.id,
                    Game.status.not_in(C.GAME_FINAL_STATUSES),
                )
            )
        ).scalars().all()
        for game in games:
            await self.games.terminate_game(db, game, reason="season_terminated")

        for member_id in await season_member_ids(db, season.id):
            queue_notice(db, member_id, C.MSG_SEASON_TERMINATED, {"season_id": season.id})
        log.info("Season %s terminated by %s (%d games stopped)", season.id, admin_id, len(games))
        return season
