"""Status, type and message-key constants shared by the engine modules."""

# ---------------------------------------------------------------------------
# Season lifecycle
# ---------------------------------------------------------------------------
SEASON_SETUP = "SETUP"
SEASON_OPEN = "OPEN"
SEASON_ACTIVE = "ACTIVE"
SEASON_COMPLETED = "COMPLETED"
SEASON_CANCELLED = "CANCELLED"
SEASON_TERMINATED = "TERMINATED"

# ---------------------------------------------------------------------------
# Game lifecycle
# ---------------------------------------------------------------------------
GAME_ACTIVE = "ACTIVE"
# No eligible candidate for the open offer; waits for an admin offer.
GAME_STALLED = "STALLED"
# A FLAGGED turn awaits a moderation decision.
GAME_PAUSED = "PAUSED"
GAME_COMPLETED = "COMPLETED"
GAME_TERMINATED = "TERMINATED"

GAME_FINAL_STATUSES = (GAME_COMPLETED, GAME_TERMINATED)

# ---------------------------------------------------------------------------
# Turns
# ---------------------------------------------------------------------------
TURN_WRITING = "WRITING"
TURN_DRAWING = "DRAWING"

TURN_OFFERED = "OFFERED"
TURN_PENDING = "PENDING"
TURN_COMPLETED = "COMPLETED"
TURN_SKIPPED = "SKIPPED"
TURN_FLAGGED = "FLAGGED"

# Every edge the turn state machine may produce.
TURN_TRANSITIONS = {
    TURN_OFFERED: (TURN_PENDING,),
    TURN_PENDING: (TURN_COMPLETED, TURN_SKIPPED, TURN_FLAGGED),
    TURN_FLAGGED: (TURN_COMPLETED, TURN_SKIPPED),
    TURN_COMPLETED: (),
    TURN_SKIPPED: (),
}

TURN_OPEN_STATUSES = (TURN_OFFERED, TURN_PENDING, TURN_FLAGGED)
TURN_FINISHED_STATUSES = (TURN_COMPLETED, TURN_SKIPPED)
# Statuses that count as "assigned to" a player for fairness statistics.
TURN_ASSIGNED_STATUSES = (
    TURN_OFFERED, TURN_PENDING, TURN_COMPLETED, TURN_SKIPPED, TURN_FLAGGED,
)

CONTENT_TEXT = "text"
CONTENT_IMAGE = "image"

# ---------------------------------------------------------------------------
# Scheduled jobs
# ---------------------------------------------------------------------------
JOB_CLAIM_TIMEOUT = "CLAIM_TIMEOUT"
JOB_SUBMIT_WARNING = "SUBMIT_WARNING"
JOB_SUBMIT_TIMEOUT = "SUBMIT_TIMEOUT"
JOB_OPEN_DURATION_TIMEOUT = "OPEN_DURATION_TIMEOUT"
JOB_STALE_TIMEOUT = "STALE_TIMEOUT"

JOB_TYPES = (
    JOB_CLAIM_TIMEOUT,
    JOB_SUBMIT_WARNING,
    JOB_SUBMIT_TIMEOUT,
    JOB_OPEN_DURATION_TIMEOUT,
    JOB_STALE_TIMEOUT,
)
TURN_JOB_TYPES = (JOB_CLAIM_TIMEOUT, JOB_SUBMIT_WARNING, JOB_SUBMIT_TIMEOUT)

JOB_PENDING = "PENDING"
JOB_FIRED = "FIRED"
JOB_CANCELLED = "CANCELLED"
JOB_FAILED = "FAILED"

# ---------------------------------------------------------------------------
# Push selection rules
# ---------------------------------------------------------------------------
PUSH_RULE_FEWEST_TURNS = "fewest_turns"
PUSH_RULE_TYPE_BALANCE = "type_balance"

# ---------------------------------------------------------------------------
# Draft sessions
# ---------------------------------------------------------------------------
DRAFT_SEASON_CREATE = "season_create"

# ---------------------------------------------------------------------------
# Notification keys (resolved to text by the platform layer)
# ---------------------------------------------------------------------------
MSG_TURN_STARTED = "turn_started"
MSG_TURN_OFFERED = "turn_offered"
MSG_TURN_OFFER_EXPIRED = "turn_offer_expired"
MSG_TURN_CLAIMED = "turn_claimed"
# An early offer became claimable because the turn before it finished.
MSG_TURN_CLAIMABLE = "turn_claimable"
MSG_SUBMIT_WARNING = "turn_submit_warning"
MSG_TURN_SKIPPED = "turn_skipped"
MSG_TURN_FLAGGED = "turn_flagged"
MSG_TURN_APPROVED = "turn_approved"
MSG_TURN_REJECTED = "turn_rejected"
MSG_GAME_STALLED = "game_stalled"
MSG_GAME_COMPLETED = "game_completed"
MSG_GAME_TERMINATED = "game_terminated"
MSG_SEASON_ACTIVATED = "season_activated"
MSG_SEASON_CANCELLED = "season_cancelled"
MSG_SEASON_COMPLETED = "season_completed"
MSG_SEASON_TERMINATED = "season_terminated"
MSG_JOB_FAILED = "scheduler_job_failed"
