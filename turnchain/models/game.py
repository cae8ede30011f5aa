import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Game(Base):
    __tablename__ = "games"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    # Null for on-demand games.
    season_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("seasons.id"), nullable=True, index=True
    )
    creator_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("players.id"), nullable=True
    )
    # Set for on-demand games; season games use the season's policy.
    policy_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("policies.id"), nullable=True, unique=True
    )
    status: Mapped[str] = mapped_column(String(16), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime)
    # Doubles as the staleness clock.
    updated_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
