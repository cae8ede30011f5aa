from .player import Player
from .season import Membership, Policy, Season
from .game import Game
from .turn import Turn
from .scheduled_job import ScheduledJob
from .draft_session import DraftSession

__all__ = [
    "Player", "Policy", "Season", "Membership", "Game", "Turn",
    "ScheduledJob", "DraftSession",
]
