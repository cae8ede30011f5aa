"""Game lifecycle -- creation, advancing to the next turn, completion and termination.

A game is finished when:

* season game -- every member has had a turn in it (finished turns, COMPLETED
  or SKIPPED, reach the member count) and nothing is still open;
* on-demand game -- ``max_turns`` COMPLETED turns were reached, or the
  STALE_TIMEOUT job finds it idle with at least ``min_turns`` completed.
"""
import logging
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from turnchain.game import constants as C
from turnchain.game import durations
from turnchain.game import policy as P
from turnchain.game.errors import ConflictError, NotFoundError
from turnchain.game.players import ensure_active_player
from turnchain.game.repository import (
    conditional_update, queue_admin_notice, queue_notice,
)
from turnchain.game.scheduler import DurableScheduler
from turnchain.game.selection import OpenGame, can_play, select_pull_game
from turnchain.game.turn_engine import TurnEngine, chain_history, load_policy, season_member_ids
from turnchain.models.game import Game
from turnchain.models.season import Policy, Season
from turnchain.models.turn import Turn

log = logging.getLogger(__name__)

_LIVE_GAME_STATUSES = (C.GAME_ACTIVE, C.GAME_STALLED, C.GAME_PAUSED)


class GameManager:
    def __init__(self, engine: TurnEngine, scheduler: DurableScheduler) -> None:
        self.engine = engine
        self.scheduler = scheduler

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def turn_counts(self, db: AsyncSession, game_id: str) -> dict[str, int]:
        rows = await db.execute(
            select(Turn.status, func.count(Turn.id))
            .where(Turn.game_id == game_id)
            .group_by(Turn.status)
        )
        counts = {status: 0 for status in C.TURN_TRANSITIONS}
        counts.update({status: n for status, n in rows.all()})
        return counts

    async def statistics(self, db: AsyncSession, game_id: str) -> dict:
        """Turn totals of a game; completion counts SKIPPED turns as done."""
        counts = await self.turn_counts(db, game_id)
        total = sum(counts.values())
        done = sum(counts[s] for s in C.TURN_FINISHED_STATUSES)
        return {
            "total_turns": total,
            "completed_turns": counts[C.TURN_COMPLETED],
            "skipped_turns": counts[C.TURN_SKIPPED],
            "flagged_turns": counts[C.TURN_FLAGGED],
            "open_turns": counts[C.TURN_OFFERED] + counts[C.TURN_PENDING],
            "completion_percentage": round(done / total * 100) if total else 0,
        }

    async def game_turns(self, db: AsyncSession, game_id: str) -> list[Turn]:
        rows = await db.execute(
            select(Turn).where(Turn.game_id == game_id).order_by(Turn.turn_number)
        )
        return list(rows.scalars().all())

    async def season_games(
        self, db: AsyncSession, season_id: str, status: Optional[str] = None,
    ) -> list[Game]:
        query = select(Game).where(Game.season_id == season_id)
        if status is not None:
            query = query.where(Game.status == status)
        rows = await db.execute(query.order_by(Game.created_at, Game.id))
        return list(rows.scalars().all())

    async def on_demand_games(self, db: AsyncSession, status: Optional[str] = None) -> list[Game]:
        """On-demand games, newest first."""
        query = select(Game).where(Game.season_id.is_(None))
        if status is not None:
            query = query.where(Game.status == status)
        rows = await db.execute(query.order_by(Game.created_at.desc(), Game.id))
        return list(rows.scalars().all())

    async def active_games_for(self, db: AsyncSession, player_id: str) -> list[Game]:
        """On-demand games in which *player_id* holds the PENDING turn."""
        rows = await db.execute(
            select(Game)
            .join(Turn, Turn.game_id == Game.id)
            .where(
                Game.season_id.is_(None),
                Turn.player_id == player_id,
                Turn.status == C.TURN_PENDING,
            )
        )
        return list(rows.scalars().all())

    async def _target_turns(self, db: AsyncSession, game: Game, policy: Policy) -> Optional[int]:
        if game.season_id is not None:
            return len(await season_member_ids(db, game.season_id))
        return policy.max_turns

    async def is_finished(self, db: AsyncSession, game: Game, policy: Policy) -> bool:
        counts = await self.turn_counts(db, game.id)
        open_turns = sum(counts[s] for s in C.TURN_OPEN_STATUSES)
        target = await self._target_turns(db, game, policy)
        if target is None:
            return False
        if game.season_id is not None:
            finished = sum(counts[s] for s in C.TURN_FINISHED_STATUSES)
            return open_turns == 0 and finished >= target
        return counts[C.TURN_COMPLETED] >= target

    async def _turn_ids(self, db: AsyncSession, game_id: str) -> list[str]:
        rows = await db.execute(select(Turn.id).where(Turn.game_id == game_id))
        return list(rows.scalars().all())

    async def _participants(self, db: AsyncSession, game_id: str) -> list[str]:
        rows = await db.execute(
            select(Turn.player_id)
            .where(Turn.game_id == game_id, Turn.player_id.is_not(None))
            .distinct()
        )
        return sorted(rows.scalars().all())

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_season_game(
        self, db: AsyncSession, season: Season, author_id: str, policy: Policy,
    ) -> Game:
        now = durations.utcnow()
        game = Game(
            season_id=season.id,
            creator_id=author_id,
            status=C.GAME_ACTIVE,
            created_at=now,
            updated_at=now,
        )
        db.add(game)
        await db.flush()
        await self.engine.create_initial_turn(db, game, author_id, policy)
        return game

    async def open_follow_up(
        self, db: AsyncSession, game: Game, policy: Policy, exclude: Iterable[str] = (),
    ) -> Optional[Turn]:
        """Pre-open the next turn while the current one is still being played."""
        target = await self._target_turns(db, game, policy)
        if target is not None:
            counts = await self.turn_counts(db, game.id)
            used = sum(counts[s] for s in C.TURN_OPEN_STATUSES + C.TURN_FINISHED_STATUSES)
            if used >= target:
                return None
        return await self.engine.open_next_turn(db, game, policy, exclude)

    async def create_on_demand_game(
        self, db: AsyncSession, creator_id: str, policy_data: dict | None = None,
    ) -> Game:
        await ensure_active_player(db, creator_id)
        policy = P.build_on_demand_policy(policy_data)
        if await self.engine.has_pending_turn(db, creator_id):
            raise ConflictError(
                f"{creator_id} already has a pending turn", key="already_has_pending_turn",
            )
        db.add(policy)
        await db.flush()

        now = durations.utcnow()
        game = Game(
            season_id=None,
            creator_id=creator_id,
            policy_id=policy.id,
            status=C.GAME_ACTIVE,
            created_at=now,
            updated_at=now,
        )
        db.add(game)
        await db.flush()
        await self.engine.create_initial_turn(db, game, creator_id, policy)
        await self.scheduler.schedule(
            db, C.JOB_STALE_TIMEOUT, game.id, now + durations.parse_duration(policy.stale_timeout),
        )
        log.info("On-demand game %s created by %s", game.id, creator_id)
        return game

    # ------------------------------------------------------------------
    # Reacting to turns
    # ------------------------------------------------------------------

    async def on_turn_completed(self, db: AsyncSession, game: Game, turn: Turn) -> None:
        await self._advance(db, game, {turn.player_id})

    async def on_turn_skipped(self, db: AsyncSession, game: Game, turn: Turn) -> None:
        # Skipped turns do not consume a pattern slot.  An early offer already
        # waiting behind the skipped turn becomes its replacement; otherwise
        # _advance opens one of the same type.
        successor = (
            await db.execute(
                select(Turn)
                .where(
                    Turn.game_id == game.id,
                    Turn.turn_number > turn.turn_number,
                    Turn.status == C.TURN_OFFERED,
                )
                .order_by(Turn.turn_number)
                .limit(1)
            )
        ).scalar_one_or_none()
        if successor is not None:
            await self.engine.retype_offer(db, successor, turn.turn_type)
        await self._advance(db, game, {turn.player_id})

    async def _advance(self, db: AsyncSession, game: Game, exclude: set[str]) -> None:
        if game.status in C.GAME_FINAL_STATUSES:
            return
        policy = await load_policy(db, game)
        if await self.is_finished(db, game, policy):
            await self.complete_game(db, game)
            return

        counts = await self.turn_counts(db, game.id)
        if any(counts[s] for s in C.TURN_OPEN_STATUSES):
            # A stalled offer survives a moderation pause.
            if game.season_id is not None and game.status == C.GAME_ACTIVE:
                unassigned = (
                    await db.execute(
                        select(Turn.id).where(
                            Turn.game_id == game.id,
                            Turn.status == C.TURN_OFFERED,
                            Turn.player_id.is_(None),
                        ).limit(1)
                    )
                ).scalar_one_or_none()
                if unassigned is not None:
                    await conditional_update(db, Game, game.id, C.GAME_ACTIVE, status=C.GAME_STALLED)
            await self.engine.start_claim_clock(db, game, policy)
            return

        await self.engine.open_next_turn(db, game, policy, exclude)

    # ------------------------------------------------------------------
    # Endings
    # ------------------------------------------------------------------

    async def complete_game(self, db: AsyncSession, game: Game) -> bool:
        now = durations.utcnow()
        if not await conditional_update(
            db, Game, game.id, _LIVE_GAME_STATUSES,
            status=C.GAME_COMPLETED, completed_at=now, updated_at=now,
        ):
            return False
        await self.scheduler.cancel_for_targets(db, [game.id, *await self._turn_ids(db, game.id)])
        for player_id in await self._participants(db, game.id):
            queue_notice(db, player_id, C.MSG_GAME_COMPLETED,
                         {"game_id": game.id, "season_id": game.season_id})
        log.info("Game %s completed", game.id)
        if game.season_id is not None:
            await self.maybe_complete_season(db, game.season_id)
        return True

    async def terminate_game(self, db: AsyncSession, game: Game, reason: str) -> bool:
        """Stop *game* for good: release open turns and cancel its jobs."""
        now = durations.utcnow()
        if not await conditional_update(
            db, Game, game.id, _LIVE_GAME_STATUSES,
            status=C.GAME_TERMINATED, completed_at=now, updated_at=now,
        ):
            return False

        held = (
            await db.execute(
                select(Turn).where(
                    Turn.game_id == game.id,
                    Turn.status.in_((C.TURN_PENDING, C.TURN_FLAGGED)),
                )
            )
        ).scalars().all()
        for turn in held:
            await conditional_update(
                db, Turn, turn.id, turn.status,
                status=C.TURN_SKIPPED, skipped_at=now, updated_at=now,
            )
        await self.scheduler.cancel_for_targets(db, [game.id, *await self._turn_ids(db, game.id)])
        for player_id in await self._participants(db, game.id):
            queue_notice(db, player_id, C.MSG_GAME_TERMINATED,
                         {"game_id": game.id, "season_id": game.season_id, "reason": reason})
        log.info("Game %s terminated (%s)", game.id, reason)
        return True

    async def on_game_terminated_by_moderation(self, db: AsyncSession, game: Game) -> None:
        if not await self.terminate_game(db, game, reason="moderation"):
            return
        queue_admin_notice(db, C.MSG_GAME_TERMINATED,
                           {"game_id": game.id, "season_id": game.season_id, "reason": "moderation"})
        if game.season_id is not None:
            await self.maybe_complete_season(db, game.season_id)

    async def maybe_complete_season(self, db: AsyncSession, season_id: str) -> bool:
        """Mark the season COMPLETED once every one of its games is final."""
        live = (
            await db.execute(
                select(func.count(Game.id)).where(
                    Game.season_id == season_id,
                    Game.status.not_in(C.GAME_FINAL_STATUSES),
                )
            )
        ).scalar_one()
        if live:
            return False
        now = durations.utcnow()
        if not await conditional_update(
            db, Season, season_id, C.SEASON_ACTIVE,
            status=C.SEASON_COMPLETED, finished_at=now, updated_at=now,
        ):
            return False
        for player_id in await season_member_ids(db, season_id):
            queue_notice(db, player_id, C.MSG_SEASON_COMPLETED, {"season_id": season_id})
        log.info("Season %s completed", season_id)
        return True

    # ------------------------------------------------------------------
    # Staleness
    # ------------------------------------------------------------------

    async def handle_stale_timeout(self, db: AsyncSession, game_id: str) -> Optional[Game]:
        """STALE_TIMEOUT: finish an idle on-demand game or re-arm the check.

        Returns the game when it was completed.
        """
        game = await db.get(Game, game_id)
        if game is None or game.season_id is not None or game.status in C.GAME_FINAL_STATUSES:
            return None
        policy = await load_policy(db, game)
        stale = durations.parse_duration(policy.stale_timeout)
        now = durations.utcnow()

        idle_until = game.updated_at + stale
        if now < idle_until:
            await self.scheduler.schedule(db, C.JOB_STALE_TIMEOUT, game.id, idle_until)
            return None

        counts = await self.turn_counts(db, game.id)
        busy = counts[C.TURN_PENDING] or counts[C.TURN_FLAGGED]
        if not busy and counts[C.TURN_COMPLETED] >= policy.min_turns:
            await self.complete_game(db, game)
            return game

        await self.scheduler.schedule(db, C.JOB_STALE_TIMEOUT, game.id, now + stale)
        log.debug("Game %s idle but not finishable yet; re-armed stale check", game.id)
        return None

    # ------------------------------------------------------------------
    # Pull play
    # ------------------------------------------------------------------

    async def open_on_demand_games(self, db: AsyncSession) -> list[tuple[Turn, OpenGame]]:
        """ACTIVE on-demand games waiting for a player, with their open turn."""
        rows = (
            await db.execute(
                select(Turn, Game, Policy)
                .join(Game, Game.id == Turn.game_id)
                .join(Policy, Policy.id == Game.policy_id)
                .where(
                    Game.season_id.is_(None),
                    Game.status == C.GAME_ACTIVE,
                    Turn.status == C.TURN_OFFERED,
                    Turn.player_id.is_(None),
                )
            )
        ).all()
        result = []
        for turn, game, policy in rows:
            result.append((turn, OpenGame(
                game_id=game.id,
                updated_at=game.updated_at,
                stale_timeout=durations.parse_duration(policy.stale_timeout),
                history=await chain_history(db, game.id),
                max_plays=policy.max_plays,
                return_gap=policy.return_gap,
            )))
        return result

    async def joinable_games(self, db: AsyncSession, player_id: str) -> list[OpenGame]:
        """Open on-demand games *player_id* may still play under the returns policy."""
        return [
            g for _, g in await self.open_on_demand_games(db)
            if can_play(g.history, player_id, g.max_plays, g.return_gap)
        ]

    async def join_on_demand_game(self, db: AsyncSession, player_id: str) -> Turn:
        """Give *player_id* the open turn of the on-demand game closest to going stale."""
        await ensure_active_player(db, player_id)
        if await self.engine.has_pending_turn(db, player_id):
            raise ConflictError(
                f"{player_id} already has a pending turn", key="already_has_pending_turn",
            )
        open_games = await self.open_on_demand_games(db)
        open_turns = {g.game_id: turn for turn, g in open_games}

        game_id = select_pull_game([g for _, g in open_games], player_id, durations.utcnow())
        if game_id is None:
            raise NotFoundError("No on-demand game is waiting for a player", key="no_game_available")
        return await self.engine.join_open_turn(db, open_turns[game_id], player_id)
