"""Session helpers shared by the engine modules.

* ``conditional_update`` / ``transition`` -- optimistic state changes keyed
  on ``(id, expected status)``; the losing writer sees rowcount 0.
* ``on_commit`` -- callbacks run only once the surrounding transaction
  commits (used by the scheduler to arm and disarm timers).
* ``queue_notice`` / ``take_outbox`` -- notifications collected during a
  transaction and delivered by the service after commit.
"""
import logging
from typing import Callable, Optional

from sqlalchemy import event, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from turnchain.game.errors import ConflictError, NotFoundError, ValidationError
from turnchain.models.player import Player

log = logging.getLogger(__name__)

_AFTER_COMMIT = "turnchain.after_commit"
_OUTBOX = "turnchain.outbox"

# Recipient placeholder expanded to the configured admin ids on delivery.
ADMINS = "__admins__"


# ---------------------------------------------------------------------------
# Conditional updates
# ---------------------------------------------------------------------------


async def conditional_update(
    db: AsyncSession,
    model,
    row_id,
    expected_status: str | tuple[str, ...],
    *criteria,
    **values,
) -> bool:
    """UPDATE ``model`` SET ``values`` WHERE id = row_id AND status matches.

    Returns True when exactly one row changed.
    """
    if isinstance(expected_status, str):
        status_clause = model.status == expected_status
    else:
        status_clause = model.status.in_(expected_status)
    result = await db.execute(
        update(model)
        .where(model.id == row_id, status_clause, *criteria)
        .values(**values)
        .execution_options(synchronize_session="evaluate")
    )
    return result.rowcount == 1


async def transition(
    db: AsyncSession,
    model,
    row_id,
    expected_status: str | tuple[str, ...],
    *criteria,
    key: str = "no_longer_available",
    **values,
) -> None:
    """Like :func:`conditional_update` but raises ConflictError on a lost race."""
    if not await conditional_update(db, model, row_id, expected_status, *criteria, **values):
        raise ConflictError(
            f"{model.__name__} {row_id} is no longer {expected_status}",
            key=key,
            data={"id": row_id},
        )


async def get_or_404(db: AsyncSession, model, row_id, key: str = "not_found"):
    obj = await db.get(model, row_id)
    if obj is None:
        raise NotFoundError(f"{model.__name__} {row_id} not found", key=key, data={"id": row_id})
    return obj


async def ensure_player(db: AsyncSession, player_id: str, name: str = "") -> Player:
    """Return the player row, registering it on first reference."""
    if not player_id:
        raise ValidationError("Player id is required", key="invalid_player")
    player = await db.get(Player, player_id)
    if player is None:
        player = Player(id=player_id, name=name or player_id)
        db.add(player)
        await db.flush()
        log.info("Registered player %s", player_id)
    elif name and player.name != name:
        player.name = name
    return player


# ---------------------------------------------------------------------------
# Post-commit hooks
# ---------------------------------------------------------------------------


def on_commit(db: AsyncSession, callback: Callable[[], None]) -> None:
    db.info.setdefault(_AFTER_COMMIT, []).append(callback)


@event.listens_for(Session, "after_commit")
def _run_after_commit(session: Session) -> None:
    callbacks = session.info.pop(_AFTER_COMMIT, [])
    for callback in callbacks:
        try:
            callback()
        except Exception:
            log.exception("after_commit callback failed")


@event.listens_for(Session, "after_rollback")
def _discard_after_rollback(session: Session) -> None:
    session.info.pop(_AFTER_COMMIT, None)
    session.info.pop(_OUTBOX, None)


# ---------------------------------------------------------------------------
# Notification outbox
# ---------------------------------------------------------------------------


def queue_notice(db: AsyncSession, player_id: Optional[str], key: str, data: dict | None = None) -> None:
    if player_id is None:
        return
    db.info.setdefault(_OUTBOX, []).append((player_id, key, dict(data or {})))


def queue_admin_notice(db: AsyncSession, key: str, data: dict | None = None) -> None:
    queue_notice(db, ADMINS, key, data)


def take_outbox(db: AsyncSession) -> list[tuple[str, str, dict]]:
    return db.info.pop(_OUTBOX, [])
