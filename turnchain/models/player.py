from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Player(Base):
    __tablename__ = "players"

    # Platform user id; players are registered on first reference.
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), default="")
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    # Set while an operator ban is in force.
    banned_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, default=None)
