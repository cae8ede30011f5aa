"""Draft sessions -- half-finished multi-step input (e.g. a season setup wizard).

Drafts are keyed by ``(owner_id, kind)`` and expire after a TTL.  An expired
draft reads as absent and is deleted on access; :func:`purge_expired`
removes the rest in bulk.
"""
import json
import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from turnchain.config import settings
from turnchain.game import durations
from turnchain.game.errors import ValidationError
from turnchain.models.draft_session import DraftSession

log = logging.getLogger(__name__)


async def save_draft(
    db: AsyncSession,
    owner_id: str,
    kind: str,
    payload: dict,
    ttl: timedelta | None = None,
) -> DraftSession:
    """Create or replace the owner's draft of *kind* and restart its TTL."""
    if not isinstance(payload, dict):
        raise ValidationError("Draft payload must be an object", key="invalid_draft")
    ttl = ttl or durations.parse_duration(settings.DRAFT_TTL)
    now = durations.utcnow()
    draft = await db.get(DraftSession, (owner_id, kind))
    if draft is None:
        draft = DraftSession(owner_id=owner_id, kind=kind)
        db.add(draft)
    draft.payload = json.dumps(payload)
    draft.updated_at = now
    draft.expires_at = now + ttl
    await db.flush()
    return draft


async def load_draft(db: AsyncSession, owner_id: str, kind: str) -> Optional[dict]:
    draft = await db.get(DraftSession, (owner_id, kind))
    if draft is None:
        return None
    if draft.expires_at <= durations.utcnow():
        await db.delete(draft)
        await db.flush()
        log.debug("Draft %s/%s expired", owner_id, kind)
        return None
    return json.loads(draft.payload or "{}")


async def discard_draft(db: AsyncSession, owner_id: str, kind: str) -> bool:
    draft = await db.get(DraftSession, (owner_id, kind))
    if draft is None:
        return False
    await db.delete(draft)
    await db.flush()
    return True


async def purge_expired(db: AsyncSession) -> int:
    result = await db.execute(
        delete(DraftSession)
        .where(DraftSession.expires_at <= durations.utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        log.info("Purged %d expired drafts", result.rowcount)
    return result.rowcount
