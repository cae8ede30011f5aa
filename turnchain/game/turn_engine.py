r"""Turn state machine.

    OFFERED --claim--> PENDING --submit--> COMPLETED
                          |  \--flagged--> FLAGGED --approve--> COMPLETED
                          |                        \--reject--> SKIPPED
                          \--timeout--> SKIPPED

Every transition is a conditional UPDATE keyed on ``(turn id, expected
status)``; the losing writer gets :class:`ConflictError`.  Timeout-driven
transitions (skip, dismiss, warning) re-check the status and quietly do
nothing when the turn has already moved on.

Who is offered the next turn depends on the game's selection mode:
:class:`PushMode` for season games and :class:`PullMode` for on-demand
games, where offers stay open until a player pulls them.

A turn may be offered while the turn before it is still open (season
activation offers turn 2 straight away).  Such an early offer cannot be
claimed, and its CLAIM_TIMEOUT is not armed, until every earlier turn of the
game is finished.
"""
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterable, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from turnchain.game import constants as C
from turnchain.game import durations
from turnchain.game import policy as P
from turnchain.game.errors import ConflictError, ValidationError
from turnchain.game.notifier import ContentModerationChecker
from turnchain.game.players import banned_ids, ensure_not_banned
from turnchain.game.repository import (
    conditional_update, get_or_404, queue_admin_notice, queue_notice, transition,
)
from turnchain.game.scheduler import DurableScheduler
from turnchain.game.selection import PUSH_RULES, PlayerStats, can_play, select_push_candidate
from turnchain.models.game import Game
from turnchain.models.season import Membership, Policy, Season
from turnchain.models.turn import Turn

log = logging.getLogger(__name__)

# Statuses that put a player into a chain's history for the returns policy.
_HISTORY_STATUSES = (C.TURN_PENDING, C.TURN_COMPLETED, C.TURN_SKIPPED, C.TURN_FLAGGED)

_CONTENT_KIND_FOR = {C.TURN_WRITING: C.CONTENT_TEXT, C.TURN_DRAWING: C.CONTENT_IMAGE}

TurnHook = Callable[[AsyncSession, Game, Turn], Awaitable[None]]
GameHook = Callable[[AsyncSession, Game], Awaitable[None]]


async def _ignore_turn(db: AsyncSession, game: Game, turn: Turn) -> None:
    return None


async def _ignore_game(db: AsyncSession, game: Game) -> None:
    return None


# ---------------------------------------------------------------------------
# Shared queries
# ---------------------------------------------------------------------------


async def load_policy(db: AsyncSession, game: Game) -> Policy:
    """Return the policy snapshot governing *game*."""
    if game.policy_id is not None:
        return await db.get(Policy, game.policy_id)
    season = await db.get(Season, game.season_id)
    return await db.get(Policy, season.policy_id)


async def chain_history(db: AsyncSession, game_id: str) -> list[str]:
    """Player ids of the game's turns in turn order, unassigned offers excluded."""
    rows = await db.execute(
        select(Turn.player_id)
        .where(
            Turn.game_id == game_id,
            Turn.player_id.is_not(None),
            Turn.status.in_(_HISTORY_STATUSES),
        )
        .order_by(Turn.turn_number)
    )
    return list(rows.scalars().all())


async def season_member_ids(db: AsyncSession, season_id: str) -> list[str]:
    rows = await db.execute(
        select(Membership.player_id)
        .where(Membership.season_id == season_id)
        .order_by(Membership.joined_at, Membership.player_id)
    )
    return list(rows.scalars().all())


async def season_stats(db: AsyncSession, season_id: str, member_ids: Iterable[str]) -> list[PlayerStats]:
    """Build fairness statistics for the season's members."""
    stats = {pid: PlayerStats(player_id=pid) for pid in member_ids}
    rows = await db.execute(
        select(
            Turn.player_id, Turn.turn_type, Turn.status,
            Turn.created_at, Turn.offered_at, Turn.claimed_at,
        )
        .join(Game, Game.id == Turn.game_id)
        .where(
            Game.season_id == season_id,
            Turn.player_id.in_(list(stats)),
            Turn.status.in_(C.TURN_ASSIGNED_STATUSES),
        )
    )
    for player_id, turn_type, status, created_at, offered_at, claimed_at in rows.all():
        entry = stats[player_id]
        entry.turns_taken += 1
        entry.turns_by_type[turn_type] = entry.turns_by_type.get(turn_type, 0) + 1
        if status == C.TURN_PENDING:
            entry.pending_turns += 1
        seen = claimed_at or offered_at or created_at
        if entry.last_turn_at is None or seen > entry.last_turn_at:
            entry.last_turn_at = seen
    return list(stats.values())


# ---------------------------------------------------------------------------
# Selection modes
# ---------------------------------------------------------------------------


class SelectionMode(Protocol):
    name: str
    # Whether a game with nobody eligible for its open offer is marked STALLED.
    stalls_when_empty: bool

    async def pick(
        self, db: AsyncSession, game: Game, turn_type: str, exclude: set[str],
    ) -> Optional[str]:
        ...


class PushMode:
    """Season games: the engine chooses the next holder by a fairness rule."""

    name = "push"
    stalls_when_empty = True

    def __init__(self, rule: str = C.PUSH_RULE_FEWEST_TURNS) -> None:
        if rule not in PUSH_RULES:
            raise ValueError(f"Unknown push rule {rule!r}")
        self.rule = rule

    async def pick(self, db, game, turn_type, exclude):
        season = await db.get(Season, game.season_id)
        policy = await db.get(Policy, season.policy_id)
        members = await season_member_ids(db, season.id)
        history = await chain_history(db, game.id)
        excluded = set(exclude)
        excluded.update(
            pid for pid in members
            if not can_play(history, pid, policy.max_plays, policy.return_gap)
        )
        excluded.update(await banned_ids(db, members))
        stats = await season_stats(db, season.id, members)
        return select_push_candidate(stats, turn_type, excluded, self.rule)


class PullMode:
    """On-demand games: offers stay unassigned until a player pulls one."""

    name = "pull"
    stalls_when_empty = False

    async def pick(self, db, game, turn_type, exclude):
        return None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class TurnEngine:
    """Owns every Turn row and drives it through its states."""

    def __init__(
        self,
        scheduler: DurableScheduler,
        moderation: ContentModerationChecker,
        push_mode: PushMode | None = None,
        pull_mode: PullMode | None = None,
    ) -> None:
        self.scheduler = scheduler
        self.moderation = moderation
        self.push_mode = push_mode or PushMode()
        self.pull_mode = pull_mode or PullMode()
        self._on_turn_completed: TurnHook = _ignore_turn
        self._on_turn_skipped: TurnHook = _ignore_turn
        self._on_turn_rejected: GameHook = _ignore_game

    def bind_lifecycle(
        self,
        *,
        on_turn_completed: TurnHook,
        on_turn_skipped: TurnHook,
        on_turn_rejected: GameHook,
    ) -> None:
        """Install the game-level reactions to finished turns."""
        self._on_turn_completed = on_turn_completed
        self._on_turn_skipped = on_turn_skipped
        self._on_turn_rejected = on_turn_rejected

    def mode_for(self, game: Game) -> SelectionMode:
        return self.push_mode if game.season_id is not None else self.pull_mode

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def has_pending_turn(self, db: AsyncSession, player_id: str) -> bool:
        row = await db.execute(
            select(Turn.id)
            .where(Turn.player_id == player_id, Turn.status == C.TURN_PENDING)
            .limit(1)
        )
        return row.scalar_one_or_none() is not None

    async def next_turn_type(self, db: AsyncSession, game: Game, policy: Policy) -> str:
        """Pattern slot for the next turn.

        Non-skipped turns fill the pattern in turn order: a skipped turn frees
        its slot and an early offer behind it is re-typed into that slot (see
        :meth:`retype_offer`), so their count is the index of the next slot.
        """
        pattern = P.turn_pattern(policy)
        played = (
            await db.execute(
                select(func.count(Turn.id)).where(
                    Turn.game_id == game.id, Turn.status != C.TURN_SKIPPED,
                )
            )
        ).scalar_one()
        return pattern[played % len(pattern)]

    async def _next_number(self, db: AsyncSession, game_id: str) -> int:
        highest = (
            await db.execute(select(func.max(Turn.turn_number)).where(Turn.game_id == game_id))
        ).scalar_one()
        return (highest or 0) + 1

    async def earlier_turn_open(self, db: AsyncSession, turn: Turn) -> bool:
        row = await db.execute(
            select(Turn.id)
            .where(
                Turn.game_id == turn.game_id,
                Turn.turn_number < turn.turn_number,
                Turn.status.in_(C.TURN_OPEN_STATUSES),
            )
            .limit(1)
        )
        return row.scalar_one_or_none() is not None

    # ------------------------------------------------------------------
    # Creating turns
    # ------------------------------------------------------------------

    async def create_initial_turn(
        self, db: AsyncSession, game: Game, author_id: str, policy: Policy,
    ) -> Turn:
        """Turn 1 starts PENDING for its author, or OFFERED when they are busy."""
        now = durations.utcnow()
        turn_type = P.turn_pattern(policy)[0]
        busy = await self.has_pending_turn(db, author_id)
        turn = Turn(
            game_id=game.id,
            player_id=author_id,
            turn_number=1,
            turn_type=turn_type,
            status=C.TURN_OFFERED if busy else C.TURN_PENDING,
            created_at=now,
            updated_at=now,
            offered_at=now,
            claimed_at=None if busy else now,
        )
        db.add(turn)
        await db.flush()

        if busy:
            await self.scheduler.schedule(
                db, C.JOB_CLAIM_TIMEOUT, turn.id, now + P.claim_timeout(policy),
            )
            queue_notice(db, author_id, C.MSG_TURN_OFFERED, self._turn_data(game, turn))
            log.info("Initial turn of game %s offered to busy author %s", game.id, author_id)
        else:
            await self._arm_submit_jobs(db, turn, policy, now)
            queue_notice(db, author_id, C.MSG_TURN_STARTED, self._turn_data(game, turn, policy))
        return turn

    async def open_next_turn(
        self,
        db: AsyncSession,
        game: Game,
        policy: Policy,
        exclude: Iterable[str] = (),
    ) -> Turn:
        """Append an OFFERED turn and try to assign it through the game's mode."""
        now = durations.utcnow()
        turn = Turn(
            game_id=game.id,
            player_id=None,
            turn_number=await self._next_number(db, game.id),
            turn_type=await self.next_turn_type(db, game, policy),
            status=C.TURN_OFFERED,
            created_at=now,
            updated_at=now,
        )
        db.add(turn)
        await db.flush()
        log.debug("Opened turn %d (%s) in game %s", turn.turn_number, turn.turn_type, game.id)
        await self._assign(db, game, turn, policy, set(exclude))
        return turn

    # ------------------------------------------------------------------
    # Offers
    # ------------------------------------------------------------------

    async def offer(
        self,
        db: AsyncSession,
        turn_id: str,
        candidate_id: str | None = None,
    ) -> Turn:
        """(Re)offer an OFFERED turn, to *candidate_id* or to the mode's pick.

        This is the operator path used to resume a STALLED game.
        """
        turn = await get_or_404(db, Turn, turn_id, key="turn_not_found")
        if turn.status != C.TURN_OFFERED:
            raise ConflictError(f"Turn {turn_id} is {turn.status}", key="turn_not_offerable")
        game = await db.get(Game, turn.game_id)
        if game.status in C.GAME_FINAL_STATUSES:
            raise ConflictError(f"Game {game.id} is {game.status}", key="game_not_active")
        policy = await load_policy(db, game)

        if candidate_id is None:
            exclude = {turn.player_id} if turn.player_id else set()
            await self._assign(db, game, turn, policy, exclude)
            return turn

        if game.season_id is not None:
            members = await season_member_ids(db, game.season_id)
            if candidate_id not in members:
                raise ValidationError(
                    f"{candidate_id} is not a member of the season",
                    key="not_a_member", data={"player_id": candidate_id},
                )
        if turn.player_id and turn.player_id != candidate_id:
            queue_notice(db, turn.player_id, C.MSG_TURN_OFFER_EXPIRED, self._turn_data(game, turn))
        await self._offer_to(db, game, turn, policy, candidate_id)
        return turn

    async def _assign(
        self, db: AsyncSession, game: Game, turn: Turn, policy: Policy, exclude: set[str],
    ) -> Optional[str]:
        mode = self.mode_for(game)
        candidate = await mode.pick(db, game, turn.turn_type, exclude)
        if candidate is not None:
            await self._offer_to(db, game, turn, policy, candidate)
            return candidate

        now = durations.utcnow()
        await transition(
            db, Turn, turn.id, C.TURN_OFFERED,
            player_id=None, offered_at=None, updated_at=now,
        )
        await self.scheduler.cancel(db, C.JOB_CLAIM_TIMEOUT, turn.id)
        if mode.stalls_when_empty:
            if await conditional_update(db, Game, game.id, C.GAME_ACTIVE, status=C.GAME_STALLED):
                log.warning("Game %s stalled: nobody eligible for turn %d", game.id, turn.turn_number)
                queue_admin_notice(db, C.MSG_GAME_STALLED, self._turn_data(game, turn))
        else:
            log.debug("Turn %d of game %s left open for %s selection",
                      turn.turn_number, game.id, mode.name)
        return None

    async def _offer_to(
        self, db: AsyncSession, game: Game, turn: Turn, policy: Policy, candidate_id: str,
    ) -> None:
        now = durations.utcnow()
        await transition(
            db, Turn, turn.id, C.TURN_OFFERED,
            player_id=candidate_id, offered_at=now, updated_at=now,
        )
        if await self.earlier_turn_open(db, turn):
            # The claim clock starts once the previous turn is finished.
            await self.scheduler.cancel(db, C.JOB_CLAIM_TIMEOUT, turn.id)
        else:
            await self.scheduler.schedule(
                db, C.JOB_CLAIM_TIMEOUT, turn.id, now + P.claim_timeout(policy),
            )
        if game.status == C.GAME_STALLED:
            await conditional_update(db, Game, game.id, C.GAME_STALLED, status=C.GAME_ACTIVE)
            log.info("Game %s resumed", game.id)
        queue_notice(db, candidate_id, C.MSG_TURN_OFFERED, self._turn_data(game, turn))
        log.info("Turn %d of game %s offered to %s", turn.turn_number, game.id, candidate_id)

    async def start_claim_clock(self, db: AsyncSession, game: Game, policy: Policy) -> Optional[Turn]:
        """Arm CLAIM_TIMEOUT for an early offer whose earlier turns are now finished."""
        turn = (
            await db.execute(
                select(Turn)
                .where(Turn.game_id == game.id, Turn.status.in_(C.TURN_OPEN_STATUSES))
                .order_by(Turn.turn_number)
                .limit(1)
            )
        ).scalar_one_or_none()
        if turn is None or turn.status != C.TURN_OFFERED or turn.player_id is None:
            return None
        await self.scheduler.schedule(
            db, C.JOB_CLAIM_TIMEOUT, turn.id, durations.utcnow() + P.claim_timeout(policy),
        )
        queue_notice(db, turn.player_id, C.MSG_TURN_CLAIMABLE, self._turn_data(game, turn, policy))
        log.info("Turn %d of game %s is now claimable by %s", turn.turn_number, game.id, turn.player_id)
        return turn

    async def retype_offer(self, db: AsyncSession, turn: Turn, turn_type: str) -> bool:
        """Give an OFFERED turn another type (it moved into a skipped turn's slot)."""
        if turn.turn_type == turn_type:
            return False
        changed = await conditional_update(
            db, Turn, turn.id, C.TURN_OFFERED,
            turn_type=turn_type, updated_at=durations.utcnow(),
        )
        if changed:
            log.info("Turn %d of game %s is now %s", turn.turn_number, turn.game_id, turn_type)
        return changed

    # ------------------------------------------------------------------
    # Player actions
    # ------------------------------------------------------------------

    async def claim(self, db: AsyncSession, turn_id: str, player_id: str) -> Turn:
        turn = await get_or_404(db, Turn, turn_id, key="turn_not_found")
        if turn.status != C.TURN_OFFERED or turn.player_id != player_id:
            raise ConflictError(f"Turn {turn_id} is not offered to {player_id}", key="turn_not_offered")
        game = await db.get(Game, turn.game_id)
        if game.status not in (C.GAME_ACTIVE, C.GAME_STALLED):
            raise ConflictError(f"Game {game.id} is {game.status}", key="game_not_active")
        if await self.earlier_turn_open(db, turn):
            raise ConflictError(
                f"An earlier turn of game {game.id} is not finished yet",
                key="previous_turn_open",
            )
        await ensure_not_banned(db, player_id)
        if await self.has_pending_turn(db, player_id):
            raise ConflictError(f"{player_id} already has a pending turn", key="already_has_pending_turn")

        now = durations.utcnow()
        await transition(
            db, Turn, turn.id, C.TURN_OFFERED, Turn.player_id == player_id,
            key="turn_not_offered",
            status=C.TURN_PENDING, claimed_at=now, updated_at=now,
        )
        await self.scheduler.cancel(db, C.JOB_CLAIM_TIMEOUT, turn.id)
        policy = await load_policy(db, game)
        await self._arm_submit_jobs(db, turn, policy, now)
        game.updated_at = now
        queue_notice(db, player_id, C.MSG_TURN_CLAIMED, self._turn_data(game, turn, policy))
        log.info("Turn %d of game %s claimed by %s", turn.turn_number, game.id, player_id)
        return turn

    async def join_open_turn(self, db: AsyncSession, turn: Turn, player_id: str) -> Turn:
        """Assign an unassigned OFFERED turn to *player_id* and claim it at once."""
        game = await db.get(Game, turn.game_id)
        now = durations.utcnow()
        await transition(
            db, Turn, turn.id, C.TURN_OFFERED, Turn.player_id.is_(None),
            key="turn_taken",
            status=C.TURN_PENDING, player_id=player_id,
            offered_at=now, claimed_at=now, updated_at=now,
        )
        policy = await load_policy(db, game)
        await self._arm_submit_jobs(db, turn, policy, now)
        game.updated_at = now
        queue_notice(db, player_id, C.MSG_TURN_STARTED, self._turn_data(game, turn, policy))
        log.info("%s joined game %s at turn %d", player_id, game.id, turn.turn_number)
        return turn

    async def submit(
        self,
        db: AsyncSession,
        turn_id: str,
        player_id: str,
        content: str,
        content_kind: str | None = None,
    ) -> Turn:
        turn = await get_or_404(db, Turn, turn_id, key="turn_not_found")
        if turn.status != C.TURN_PENDING or turn.player_id != player_id:
            raise ConflictError(f"Turn {turn_id} is not pending for {player_id}", key="turn_not_pending")
        expected_kind = _CONTENT_KIND_FOR[turn.turn_type]
        kind = content_kind or expected_kind
        if kind != expected_kind:
            raise ValidationError(
                f"A {turn.turn_type} turn takes {expected_kind} content, not {kind}",
                key="wrong_content_kind",
                data={"expected": expected_kind, "got": kind},
            )
        if content is None or not str(content).strip():
            raise ValidationError("Submission is empty", key="empty_submission")

        verdict = await self.moderation.check(content, kind)
        game = await db.get(Game, turn.game_id)
        now = durations.utcnow()

        if verdict.flagged:
            await transition(
                db, Turn, turn.id, C.TURN_PENDING,
                status=C.TURN_FLAGGED, content=content, content_kind=kind, updated_at=now,
            )
            await self.scheduler.cancel_for_targets(
                db, [turn.id], (C.JOB_SUBMIT_WARNING, C.JOB_SUBMIT_TIMEOUT),
            )
            await conditional_update(
                db, Game, game.id, (C.GAME_ACTIVE, C.GAME_STALLED), status=C.GAME_PAUSED,
            )
            data = self._turn_data(game, turn)
            data["reason"] = verdict.reason
            queue_admin_notice(db, C.MSG_TURN_FLAGGED, data)
            log.info("Turn %s flagged for review (%s)", turn.id, verdict.reason)
            return turn

        await transition(
            db, Turn, turn.id, C.TURN_PENDING,
            status=C.TURN_COMPLETED, content=content, content_kind=kind,
            completed_at=now, updated_at=now,
        )
        await self.scheduler.cancel_for_targets(
            db, [turn.id], (C.JOB_SUBMIT_WARNING, C.JOB_SUBMIT_TIMEOUT),
        )
        game.updated_at = now
        log.info("Turn %d of game %s completed by %s", turn.turn_number, game.id, player_id)
        await self._on_turn_completed(db, game, turn)
        return turn

    # ------------------------------------------------------------------
    # Timeouts
    # ------------------------------------------------------------------

    async def skip(self, db: AsyncSession, turn_id: str) -> Optional[Turn]:
        """SUBMIT_TIMEOUT: PENDING -> SKIPPED; no-op when the turn moved on."""
        turn = await db.get(Turn, turn_id)
        if turn is None or turn.status != C.TURN_PENDING:
            log.debug("Skip ignored for turn %s", turn_id)
            return None
        now = durations.utcnow()
        if not await conditional_update(
            db, Turn, turn.id, C.TURN_PENDING,
            status=C.TURN_SKIPPED, skipped_at=now, updated_at=now,
        ):
            return None
        await self.scheduler.cancel_for_targets(db, [turn.id], C.TURN_JOB_TYPES)
        game = await db.get(Game, turn.game_id)
        queue_notice(db, turn.player_id, C.MSG_TURN_SKIPPED, self._turn_data(game, turn))
        log.info("Turn %d of game %s skipped (%s timed out)", turn.turn_number, game.id, turn.player_id)
        await self._on_turn_skipped(db, game, turn)
        return turn

    async def dismiss_offer(self, db: AsyncSession, turn_id: str) -> Optional[Turn]:
        """CLAIM_TIMEOUT: move the same OFFERED row on to another candidate."""
        turn = await db.get(Turn, turn_id)
        if turn is None or turn.status != C.TURN_OFFERED or turn.player_id is None:
            log.debug("Dismiss ignored for turn %s", turn_id)
            return None
        game = await db.get(Game, turn.game_id)
        if game.status in C.GAME_FINAL_STATUSES:
            return None
        lapsed = turn.player_id
        queue_notice(db, lapsed, C.MSG_TURN_OFFER_EXPIRED, self._turn_data(game, turn))
        policy = await load_policy(db, game)
        await self._assign(db, game, turn, policy, {lapsed})
        log.info("Offer of turn %d in game %s lapsed for %s", turn.turn_number, game.id, lapsed)
        return turn

    async def send_submit_warning(self, db: AsyncSession, turn_id: str) -> Optional[Turn]:
        turn = await db.get(Turn, turn_id)
        if turn is None or turn.status != C.TURN_PENDING:
            return None
        game = await db.get(Game, turn.game_id)
        policy = await load_policy(db, game)
        deadline = turn.claimed_at + P.submit_timeout(policy, turn.turn_type)
        remaining = max(deadline - durations.utcnow(), timedelta(0))
        data = self._turn_data(game, turn)
        data["remaining"] = durations.format_duration(remaining)
        queue_notice(db, turn.player_id, C.MSG_SUBMIT_WARNING, data)
        return turn

    # ------------------------------------------------------------------
    # Moderation
    # ------------------------------------------------------------------

    async def approve_flagged(self, db: AsyncSession, turn_id: str, admin_id: str) -> Turn:
        turn = await get_or_404(db, Turn, turn_id, key="turn_not_found")
        now = durations.utcnow()
        await transition(
            db, Turn, turn.id, C.TURN_FLAGGED, key="turn_not_flagged",
            status=C.TURN_COMPLETED, completed_at=now, updated_at=now,
        )
        game = await db.get(Game, turn.game_id)
        await conditional_update(
            db, Game, game.id, C.GAME_PAUSED, status=C.GAME_ACTIVE, updated_at=now,
        )
        queue_notice(db, turn.player_id, C.MSG_TURN_APPROVED, self._turn_data(game, turn))
        log.info("Turn %s approved by %s", turn.id, admin_id)
        await self._on_turn_completed(db, game, turn)
        return turn

    async def reject_flagged(self, db: AsyncSession, turn_id: str, admin_id: str) -> Turn:
        turn = await get_or_404(db, Turn, turn_id, key="turn_not_found")
        now = durations.utcnow()
        await transition(
            db, Turn, turn.id, C.TURN_FLAGGED, key="turn_not_flagged",
            status=C.TURN_SKIPPED, skipped_at=now, updated_at=now,
        )
        game = await db.get(Game, turn.game_id)
        queue_notice(db, turn.player_id, C.MSG_TURN_REJECTED, self._turn_data(game, turn))
        log.info("Turn %s rejected by %s; terminating game %s", turn.id, admin_id, game.id)
        await self._on_turn_rejected(db, game)
        return turn

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _arm_submit_jobs(
        self, db: AsyncSession, turn: Turn, policy: Policy, start: datetime,
    ) -> None:
        deadline = start + P.submit_timeout(policy, turn.turn_type)
        warn_at = max(start, deadline - P.submit_warning(policy, turn.turn_type))
        await self.scheduler.schedule(db, C.JOB_SUBMIT_WARNING, turn.id, warn_at)
        await self.scheduler.schedule(db, C.JOB_SUBMIT_TIMEOUT, turn.id, deadline)

    @staticmethod
    def _turn_data(game: Game, turn: Turn, policy: Policy | None = None) -> dict:
        data = {
            "game_id": game.id,
            "season_id": game.season_id,
            "turn_id": turn.id,
            "turn_number": turn.turn_number,
            "turn_type": turn.turn_type,
        }
        if policy is not None:
            data["timeout"] = durations.format_duration(P.submit_timeout(policy, turn.turn_type))
        return data
