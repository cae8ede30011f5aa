"""Next-participant selection.

Pure functions over plain data; callers load the statistics and pass them
in.  Two strategies:

* **push** -- a season game needs a holder for its next turn; pick a member
  by a fairness rule.
* **pull** -- a player asks for "any game"; pick the open on-demand game
  that is closest to going stale.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Sequence

from turnchain.game import constants as C


@dataclass
class PlayerStats:
    """Season-wide turn statistics for one member."""

    player_id: str
    turns_taken: int = 0
    turns_by_type: dict[str, int] = field(default_factory=dict)
    pending_turns: int = 0
    last_turn_at: Optional[datetime] = None


@dataclass
class OpenGame:
    """An on-demand game with an unassigned OFFERED turn."""

    game_id: str
    updated_at: datetime
    stale_timeout: timedelta
    # Player ids of the game's assigned turns, oldest first.
    history: list[str] = field(default_factory=list)
    max_plays: int = 1
    return_gap: int = 0


# ---------------------------------------------------------------------------
# Returns policy
# ---------------------------------------------------------------------------


def can_play(history: Sequence[str], player_id: str, max_plays: int, return_gap: int) -> bool:
    """Whether *player_id* may take the next turn of a chain.

    *history* lists the player ids of the chain's turns in order.  The
    player who took the latest turn never goes again immediately.
    """
    plays = sum(1 for pid in history if pid == player_id)
    if plays == 0:
        return True
    if plays >= max_plays:
        return False
    if history and history[-1] == player_id:
        return False
    last_index = max(i for i, pid in enumerate(history) if pid == player_id)
    elapsed = len(history) - 1 - last_index
    return elapsed >= return_gap


# ---------------------------------------------------------------------------
# Push selection
# ---------------------------------------------------------------------------


def _idle_key(stats: PlayerStats) -> tuple:
    # Never-played first, then the oldest last turn.
    if stats.last_turn_at is None:
        return (0, datetime.min)
    return (1, stats.last_turn_at)


def fewest_turns_key(stats: PlayerStats, turn_type: str) -> tuple:
    return (stats.turns_taken, _idle_key(stats), stats.player_id)


def type_balance_key(stats: PlayerStats, turn_type: str) -> tuple:
    return (
        stats.turns_by_type.get(turn_type, 0),
        stats.turns_taken,
        stats.pending_turns,
        _idle_key(stats),
        stats.player_id,
    )


PUSH_RULES: dict[str, Callable[[PlayerStats, str], tuple]] = {
    C.PUSH_RULE_FEWEST_TURNS: fewest_turns_key,
    C.PUSH_RULE_TYPE_BALANCE: type_balance_key,
}


def select_push_candidate(
    members: Iterable[PlayerStats],
    turn_type: str,
    exclude: Iterable[str] = (),
    rule: str = C.PUSH_RULE_FEWEST_TURNS,
) -> Optional[str]:
    """Return the member id that should be offered the next turn, or None."""
    try:
        key = PUSH_RULES[rule]
    except KeyError:
        raise ValueError(f"Unknown push rule {rule!r}") from None
    excluded = set(exclude)
    pool = [m for m in members if m.player_id not in excluded]
    if not pool:
        return None
    return min(pool, key=lambda m: key(m, turn_type)).player_id


# ---------------------------------------------------------------------------
# Pull selection
# ---------------------------------------------------------------------------


def select_pull_game(
    games: Iterable[OpenGame],
    player_id: str,
    now: datetime,
) -> Optional[str]:
    """Return the id of the eligible game that goes stale soonest, or None."""
    eligible = [
        g for g in games
        if can_play(g.history, player_id, g.max_plays, g.return_gap)
    ]
    if not eligible:
        return None
    best = min(
        eligible,
        key=lambda g: ((g.updated_at + g.stale_timeout) - now, g.updated_at, g.game_id),
    )
    return best.game_id
