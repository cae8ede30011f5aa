"""Operations exposed to the platform adapter and the control API.

Every operation runs in its own transaction and returns a :class:`Result`.
Expected business failures (:class:`TurnchainError`) become failed Results;
anything else propagates.  Notifications queued during the transaction are
delivered only after it commits, and a delivery failure never rolls game
state back.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from turnchain.game import constants as C
from turnchain.game import drafts, players
from turnchain.game.errors import (
    ConflictError, NotFoundError, PersistenceError, SchedulerFailure, TurnchainError, ValidationError,
)
from turnchain.game.game_manager import GameManager
from turnchain.game.notifier import Notifier
from turnchain.game.repository import ADMINS, ensure_player, get_or_404, take_outbox
from turnchain.game.scheduler import DurableScheduler, JobHandler
from turnchain.game.season_manager import SeasonManager
from turnchain.game.turn_engine import TurnEngine, load_policy, season_member_ids
from turnchain.models.game import Game
from turnchain.models.player import Player
from turnchain.models.scheduled_job import ScheduledJob
from turnchain.models.season import Policy, Season
from turnchain.models.turn import Turn

log = logging.getLogger(__name__)


class Result(BaseModel):
    success: bool
    key: str
    data: dict[str, Any] = {}

    @classmethod
    def ok(cls, key: str, data: dict | None = None) -> "Result":
        return cls(success=True, key=key, data=data or {})

    @classmethod
    def fail(cls, error: TurnchainError) -> "Result":
        return cls(success=False, key=error.key, data={"message": str(error), **error.data})


# ---------------------------------------------------------------------------
# Serialisers
# ---------------------------------------------------------------------------


def season_data(season: Season) -> dict:
    return {
        "season_id": season.id,
        "status": season.status,
        "creator_id": season.creator_id,
        "created_at": season.created_at.isoformat(),
    }


def game_data(game: Game) -> dict:
    return {
        "game_id": game.id,
        "season_id": game.season_id,
        "status": game.status,
    }


def turn_data(turn: Turn) -> dict:
    return {
        "turn_id": turn.id,
        "game_id": turn.game_id,
        "player_id": turn.player_id,
        "turn_number": turn.turn_number,
        "turn_type": turn.turn_type,
        "status": turn.status,
    }


def policy_data(policy: Policy) -> dict:
    return {
        column.name: getattr(policy, column.name)
        for column in Policy.__table__.columns
        if column.name != "id"
    }


class TurnchainService:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        scheduler: DurableScheduler,
        notifier: Notifier,
        engine: TurnEngine,
        games: GameManager,
        seasons: SeasonManager,
        admin_ids: list[str] | tuple[str, ...] = (),
    ) -> None:
        self._session_factory = session_factory
        self.scheduler = scheduler
        self.notifier = notifier
        self.engine = engine
        self.games = games
        self.seasons = seasons
        self.admin_ids = list(admin_ids)

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self):
        """Yield a session; commit on success, then deliver queued notices."""
        async with self._session_factory() as db:
            try:
                yield db
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                raise ConflictError(str(exc.orig), key="no_longer_available") from exc
            except SQLAlchemyError as exc:
                await db.rollback()
                log.exception("Repository failure; transaction rolled back")
                raise PersistenceError(str(exc)) from exc
            except BaseException:
                await db.rollback()
                raise
            notices = take_outbox(db)
        await self._deliver(notices)

    async def _deliver(self, notices: list[tuple[str, str, dict]]) -> None:
        for player_id, key, data in notices:
            recipients = self.admin_ids if player_id == ADMINS else [player_id]
            for recipient in recipients:
                try:
                    await self.notifier.notify(recipient, key, data)
                except Exception:
                    log.exception("Failed to deliver %s to %s", key, recipient)

    async def _call(self, op, *args, **kwargs) -> Result:
        try:
            async with self.transaction() as db:
                key, data = await op(db, *args, **kwargs)
        except TurnchainError as exc:
            log.info("%s failed: %s (%s)", op.__name__.lstrip("_"), exc.key, exc)
            return Result.fail(exc)
        return Result.ok(key, data)

    # ------------------------------------------------------------------
    # Players
    # ------------------------------------------------------------------

    async def register_player(self, player_id: str, name: str = "") -> Result:
        async def _register_player(db: AsyncSession):
            player: Player = await ensure_player(db, player_id, name)
            return "player_registered", {"player_id": player.id, "name": player.name}
        return await self._call(_register_player)

    async def ban_player(self, player_id: str, admin_id: str, reason: Optional[str] = None) -> Result:
        async def _ban_player(db):
            player = await players.ban_player(db, player_id, reason)
            log.info("Operator %s banned %s", admin_id, player_id)
            return "ban_applied", {"player_id": player.id, "reason": reason,
                                   "banned_at": player.banned_at.isoformat()}
        return await self._call(_ban_player)

    async def unban_player(self, player_id: str, admin_id: str) -> Result:
        async def _unban_player(db):
            player = await players.unban_player(db, player_id)
            log.info("Operator %s lifted the ban on %s", admin_id, player_id)
            return "ban_lifted", {"player_id": player.id}
        return await self._call(_unban_player)

    async def is_player_banned(self, player_id: str) -> Result:
        async def _is_player_banned(db):
            return "ban_status", {"player_id": player_id, "banned": await players.is_banned(db, player_id)}
        return await self._call(_is_player_banned)

    # ------------------------------------------------------------------
    # Seasons
    # ------------------------------------------------------------------

    async def create_season(self, creator_id: str, policy: dict | None = None) -> Result:
        async def _create_season(db):
            season = await self.seasons.create_season(db, creator_id, policy)
            return "season_created", season_data(season)
        return await self._call(_create_season)

    async def join_season(self, season_id: str, player_id: str) -> Result:
        async def _join_season(db):
            season = await self.seasons.join_season(db, season_id, player_id)
            data = season_data(season)
            data["player_id"] = player_id
            data["activated"] = season.status == C.SEASON_ACTIVE
            return "season_joined", data
        return await self._call(_join_season)

    async def terminate_season(self, season_id: str, admin_id: str) -> Result:
        async def _terminate_season(db):
            season = await self.seasons.terminate_season(db, season_id, admin_id)
            return "season_terminated", season_data(season)
        return await self._call(_terminate_season)

    async def handle_open_duration_timeout(self, season_id: str) -> Result:
        async def _handle_open_duration_timeout(db):
            status = await self.seasons.handle_open_duration_timeout(db, season_id)
            if status == C.SEASON_ACTIVE:
                return "season_activated", {"season_id": season_id}
            if status == C.SEASON_CANCELLED:
                return "season_cancelled", {"season_id": season_id}
            return "no_change", {"season_id": season_id}
        return await self._call(_handle_open_duration_timeout)

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def offer_turn(self, turn_id: str, player_id: Optional[str] = None,
                         admin_id: Optional[str] = None) -> Result:
        async def _offer_turn(db):
            turn = await self.engine.offer(db, turn_id, player_id)
            log.info("Operator %s offered turn %s", admin_id, turn_id)
            key = "turn_offered" if turn.player_id else "turn_unassigned"
            return key, turn_data(turn)
        return await self._call(_offer_turn)

    async def claim_turn(self, turn_id: str, player_id: str) -> Result:
        async def _claim_turn(db):
            turn = await self.engine.claim(db, turn_id, player_id)
            return "turn_claimed", turn_data(turn)
        return await self._call(_claim_turn)

    async def submit_turn(self, turn_id: str, player_id: str, content: str,
                          content_kind: Optional[str] = None) -> Result:
        async def _submit_turn(db):
            turn = await self.engine.submit(db, turn_id, player_id, content, content_kind)
            key = "turn_flagged" if turn.status == C.TURN_FLAGGED else "turn_submitted"
            return key, turn_data(turn)
        return await self._call(_submit_turn)

    async def skip_turn(self, turn_id: str) -> Result:
        async def _skip_turn(db):
            turn = await self.engine.skip(db, turn_id)
            if turn is None:
                return "no_change", {"turn_id": turn_id}
            return "turn_skipped", turn_data(turn)
        return await self._call(_skip_turn)

    async def dismiss_offer(self, turn_id: str) -> Result:
        async def _dismiss_offer(db):
            turn = await self.engine.dismiss_offer(db, turn_id)
            if turn is None:
                return "no_change", {"turn_id": turn_id}
            return "offer_dismissed", turn_data(turn)
        return await self._call(_dismiss_offer)

    async def approve_flagged(self, turn_id: str, admin_id: str) -> Result:
        async def _approve_flagged(db):
            turn = await self.engine.approve_flagged(db, turn_id, admin_id)
            return "turn_approved", turn_data(turn)
        return await self._call(_approve_flagged)

    async def reject_flagged(self, turn_id: str, admin_id: str) -> Result:
        async def _reject_flagged(db):
            turn = await self.engine.reject_flagged(db, turn_id, admin_id)
            return "turn_rejected", turn_data(turn)
        return await self._call(_reject_flagged)

    # ------------------------------------------------------------------
    # On-demand games
    # ------------------------------------------------------------------

    async def create_on_demand_game(self, creator_id: str, policy: dict | None = None) -> Result:
        async def _create_on_demand_game(db):
            game = await self.games.create_on_demand_game(db, creator_id, policy)
            return "game_created", game_data(game)
        return await self._call(_create_on_demand_game)

    async def join_on_demand_game(self, player_id: str) -> Result:
        async def _join_on_demand_game(db):
            turn = await self.games.join_on_demand_game(db, player_id)
            return "game_joined", turn_data(turn)
        return await self._call(_join_on_demand_game)

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    async def save_draft(self, owner_id: str, kind: str, payload: dict) -> Result:
        async def _save_draft(db):
            await ensure_player(db, owner_id)
            draft = await drafts.save_draft(db, owner_id, kind, payload)
            return "draft_saved", {"owner_id": owner_id, "kind": kind,
                                   "expires_at": draft.expires_at.isoformat()}
        return await self._call(_save_draft)

    async def load_draft(self, owner_id: str, kind: str) -> Result:
        async def _load_draft(db):
            payload = await drafts.load_draft(db, owner_id, kind)
            return "draft_loaded", {"owner_id": owner_id, "kind": kind, "payload": payload}
        result = await self._call(_load_draft)
        # Commit first so an expired draft stays deleted
        if result.success and result.data["payload"] is None:
            return Result.fail(NotFoundError(f"No draft {kind} for {owner_id}", key="draft_not_found"))
        return result

    async def discard_draft(self, owner_id: str, kind: str) -> Result:
        async def _discard_draft(db):
            removed = await drafts.discard_draft(db, owner_id, kind)
            return "draft_discarded", {"owner_id": owner_id, "kind": kind, "removed": removed}
        return await self._call(_discard_draft)

    async def create_season_from_draft(self, owner_id: str) -> Result:
        async def _create_season_from_draft(db):
            payload = await drafts.load_draft(db, owner_id, C.DRAFT_SEASON_CREATE)
            if payload is None:
                raise NotFoundError(f"No season draft for {owner_id}", key="draft_not_found")
            policy = payload.get("policy", {})
            if not isinstance(policy, dict):
                raise ValidationError("Draft policy must be an object", key="invalid_draft")
            season = await self.seasons.create_season(db, owner_id, policy)
            await drafts.discard_draft(db, owner_id, C.DRAFT_SEASON_CREATE)
            return "season_created", season_data(season)
        return await self._call(_create_season_from_draft)

    async def purge_expired_drafts(self) -> Result:
        async def _purge_expired_drafts(db):
            return "drafts_purged", {"removed": await drafts.purge_expired(db)}
        return await self._call(_purge_expired_drafts)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_season(self, season_id: str) -> Result:
        async def _get_season(db):
            season = await get_or_404(db, Season, season_id, key="season_not_found")
            members = await season_member_ids(db, season.id)
            data = season_data(season)
            data["policy"] = policy_data(await db.get(Policy, season.policy_id))
            data["player_ids"] = members
            data["player_count"] = len(members)
            data["game_ids"] = [g.id for g in await self.games.season_games(db, season.id)]
            return "season_found", data
        return await self._call(_get_season)

    async def get_game_status(self, game_id: str) -> Result:
        async def _get_game_status(db):
            game = await get_or_404(db, Game, game_id, key="game_not_found")
            data = game_data(game)
            data["turns"] = [turn_data(t) for t in await self.games.game_turns(db, game.id)]
            data["statistics"] = await self.games.statistics(db, game.id)
            data["is_finished"] = game.status in C.GAME_FINAL_STATUSES or await self.games.is_finished(
                db, game, await load_policy(db, game),
            )
            return "game_status", data
        return await self._call(_get_game_status)

    async def list_season_games(self, season_id: str, status: Optional[str] = None) -> Result:
        async def _list_season_games(db):
            await get_or_404(db, Season, season_id, key="season_not_found")
            games = await self.games.season_games(db, season_id, status)
            return "games_listed", {"season_id": season_id, "games": [game_data(g) for g in games]}
        return await self._call(_list_season_games)

    async def list_games_for_player(self, player_id: str) -> Result:
        """On-demand games *player_id* is playing, and those still open to them."""
        async def _list_games_for_player(db):
            active = await self.games.active_games_for(db, player_id)
            available = await self.games.joinable_games(db, player_id)
            return "games_listed", {
                "player_id": player_id,
                "active": [game_data(g) for g in active],
                "available": [g.game_id for g in available],
            }
        return await self._call(_list_games_for_player)

    async def list_on_demand_games(self, status: Optional[str] = None) -> Result:
        async def _list_on_demand_games(db):
            games = await self.games.on_demand_games(db, status)
            return "games_listed", {"games": [game_data(g) for g in games]}
        return await self._call(_list_on_demand_games)

    # ------------------------------------------------------------------
    # Scheduler handlers
    # ------------------------------------------------------------------

    def job_handlers(self) -> dict[str, JobHandler]:
        return {
            C.JOB_CLAIM_TIMEOUT: self._job(self.engine.dismiss_offer),
            C.JOB_SUBMIT_WARNING: self._job(self.engine.send_submit_warning),
            C.JOB_SUBMIT_TIMEOUT: self._job(self.engine.skip),
            C.JOB_OPEN_DURATION_TIMEOUT: self._job(self.seasons.handle_open_duration_timeout),
            C.JOB_STALE_TIMEOUT: self._job(self.games.handle_stale_timeout),
        }

    def _job(self, handler) -> JobHandler:
        async def run(job: ScheduledJob) -> None:
            try:
                async with self.transaction() as db:
                    await handler(db, job.target_id)
            except (ConflictError, NotFoundError) as exc:
                # The target moved on between firing and handling.
                log.info("%s for %s dropped: %s", job.job_type, job.target_id, exc.key)
        return run

    async def report_job_failure(self, job: ScheduledJob, failure: SchedulerFailure) -> None:
        await self._deliver([(ADMINS, C.MSG_JOB_FAILED, {"message": str(failure), **failure.data})])
