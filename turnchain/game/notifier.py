"""Contracts for the platform adapter and content moderation.

The chat platform adapter implements :class:`Notifier`; the moderation
policy implements :class:`ContentModerationChecker`.  The defaults here log
notices and accept every submission.
"""
import logging
from typing import Optional, Protocol

from pydantic import BaseModel

log = logging.getLogger(__name__)


class ModerationVerdict(BaseModel):
    flagged: bool = False
    reason: Optional[str] = None


class Notifier(Protocol):
    async def notify(self, player_id: str, key: str, data: dict) -> None:
        ...


class ContentModerationChecker(Protocol):
    async def check(self, content: str, content_kind: str) -> ModerationVerdict:
        ...


class LoggingNotifier:
    """Writes every notice to the log instead of a chat platform."""

    async def notify(self, player_id: str, key: str, data: dict) -> None:
        log.info("notify player=%s key=%s data=%s", player_id, key, data)


class AllowAllChecker:
    async def check(self, content: str, content_kind: str) -> ModerationVerdict:
        return ModerationVerdict(flagged=False)
