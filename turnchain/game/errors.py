"""Error types raised by the orchestration engine.

Each error carries a message key (resolved to text by the platform layer)
and optional data; the service layer turns them into failed Results.
"""


class TurnchainError(Exception):
    """Base class for expected business failures."""

    default_key = "error"

    def __init__(self, message: str = "", key: str | None = None, data: dict | None = None):
        super().__init__(message or key or self.default_key)
        self.key = key or self.default_key
        self.data = data or {}


class ValidationError(TurnchainError):
    """Raised when input is malformed; nothing has been mutated"""

    default_key = "validation_error"


class ConflictError(TurnchainError):
    """Raised when an entity is no longer in the expected state"""

    default_key = "no_longer_available"


class NotFoundError(TurnchainError):
    """Raised when a season, game, turn or player id is unknown"""

    default_key = "not_found"


class PersistenceError(TurnchainError):
    """Raised when the repository fails; the transaction is rolled back"""

    default_key = "persistence_error"


class SchedulerFailure(TurnchainError):
    """Raised inside the scheduler when a job exhausts its attempt budget"""

    default_key = "scheduler_failure"
