"""Player bans.

A banned player cannot create or join seasons and games, cannot claim
offers, and is left out of push selection.  Turns they already hold run
out on their normal timeouts.
"""
import logging
from typing import Iterable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from turnchain.game import durations
from turnchain.game.errors import ConflictError
from turnchain.game.repository import ensure_player, get_or_404
from turnchain.models.player import Player

log = logging.getLogger(__name__)


async def is_banned(db: AsyncSession, player_id: str) -> bool:
    banned_at = (
        await db.execute(select(Player.banned_at).where(Player.id == player_id))
    ).scalar_one_or_none()
    return banned_at is not None


async def banned_ids(db: AsyncSession, player_ids: Iterable[str]) -> set[str]:
    ids = list(player_ids)
    if not ids:
        return set()
    rows = await db.execute(
        select(Player.id).where(Player.id.in_(ids), Player.banned_at.is_not(None))
    )
    return set(rows.scalars().all())


async def ensure_not_banned(db: AsyncSession, player_id: str) -> None:
    if await is_banned(db, player_id):
        raise ConflictError(f"Player {player_id} is banned", key="player_banned",
                            data={"player_id": player_id})


async def ensure_active_player(db: AsyncSession, player_id: str) -> Player:
    """Get or register *player_id*, refusing banned players."""
    player = await ensure_player(db, player_id)
    await ensure_not_banned(db, player_id)
    return player


async def ban_player(db: AsyncSession, player_id: str, reason: str | None = None) -> Player:
    player = await get_or_404(db, Player, player_id, key="player_not_found")
    result = await db.execute(
        update(Player)
        .where(Player.id == player_id, Player.banned_at.is_(None))
        .values(banned_at=durations.utcnow())
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        raise ConflictError(f"Player {player_id} is already banned", key="already_banned",
                            data={"player_id": player_id})
    log.info("Player %s banned%s", player_id, f" ({reason})" if reason else "")
    return player


async def unban_player(db: AsyncSession, player_id: str) -> Player:
    player = await get_or_404(db, Player, player_id, key="player_not_found")
    result = await db.execute(
        update(Player)
        .where(Player.id == player_id, Player.banned_at.is_not(None))
        .values(banned_at=None)
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        raise ConflictError(f"Player {player_id} is not banned", key="not_banned",
                            data={"player_id": player_id})
    log.info("Player %s unbanned", player_id)
    return player
