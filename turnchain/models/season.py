import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Policy(Base):
    """Policy snapshot owned by exactly one season or one on-demand game."""

    __tablename__ = "policies"

    id: Mapped[int] = mapped_column(primary_key=True)
    turn_pattern: Mapped[str] = mapped_column(String(256), default="writing,drawing")
    claim_timeout: Mapped[str] = mapped_column(String(32), default="1d")
    writing_timeout: Mapped[str] = mapped_column(String(32), default="1d")
    writing_warning: Mapped[str] = mapped_column(String(32), default="1m")
    drawing_timeout: Mapped[str] = mapped_column(String(32), default="1d")
    drawing_warning: Mapped[str] = mapped_column(String(32), default="10m")
    # Season-only
    open_duration: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    min_players: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_players: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # On-demand only
    stale_timeout: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    min_turns: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_turns: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # Returns policy: max_plays=1 means a player never returns to a chain.
    max_plays: Mapped[int] = mapped_column(Integer, default=1)
    return_gap: Mapped[int] = mapped_column(Integer, default=0)


class Season(Base):
    __tablename__ = "seasons"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    status: Mapped[str] = mapped_column(String(16), index=True)
    creator_id: Mapped[str] = mapped_column(ForeignKey("players.id"), index=True)
    policy_id: Mapped[int] = mapped_column(ForeignKey("policies.id"), unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime)
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class Membership(Base):
    __tablename__ = "memberships"

    player_id: Mapped[str] = mapped_column(ForeignKey("players.id"), primary_key=True)
    season_id: Mapped[str] = mapped_column(
        ForeignKey("seasons.id"), primary_key=True, index=True
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime)
