"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

_PENDING = sa.text("status = 'PENDING'")


def upgrade() -> None:
    op.create_table(
        "players",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(128), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "policies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("turn_pattern", sa.String(256), nullable=False),
        sa.Column("claim_timeout", sa.String(32), nullable=False),
        sa.Column("writing_timeout", sa.String(32), nullable=False),
        sa.Column("writing_warning", sa.String(32), nullable=False),
        sa.Column("drawing_timeout", sa.String(32), nullable=False),
        sa.Column("drawing_warning", sa.String(32), nullable=False),
        sa.Column("open_duration", sa.String(32), nullable=True),
        sa.Column("min_players", sa.Integer(), nullable=True),
        sa.Column("max_players", sa.Integer(), nullable=True),
        sa.Column("stale_timeout", sa.String(32), nullable=True),
        sa.Column("min_turns", sa.Integer(), nullable=True),
        sa.Column("max_turns", sa.Integer(), nullable=True),
        sa.Column("max_plays", sa.Integer(), nullable=False),
        sa.Column("return_gap", sa.Integer(), nullable=False),
    )
    op.create_table(
        "seasons",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("status", sa.String(16), nullable=False, index=True),
        sa.Column("creator_id", sa.String(64), sa.ForeignKey("players.id"), nullable=False, index=True),
        sa.Column("policy_id", sa.Integer(), sa.ForeignKey("policies.id"), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("activated_at", sa.DateTime(), nullable=True),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
    )
    op.create_table(
        "memberships",
        sa.Column("player_id", sa.String(64), sa.ForeignKey("players.id"), primary_key=True),
        sa.Column("season_id", sa.String(36), sa.ForeignKey("seasons.id"), primary_key=True, index=True),
        sa.Column("joined_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "games",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("season_id", sa.String(36), sa.ForeignKey("seasons.id"), nullable=True, index=True),
        sa.Column("creator_id", sa.String(64), sa.ForeignKey("players.id"), nullable=True),
        sa.Column("policy_id", sa.Integer(), sa.ForeignKey("policies.id"), nullable=True, unique=True),
        sa.Column("status", sa.String(16), nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False, index=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
    )
    op.create_table(
        "turns",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("game_id", sa.String(36), sa.ForeignKey("games.id"), nullable=False, index=True),
        sa.Column("player_id", sa.String(64), sa.ForeignKey("players.id"), nullable=True, index=True),
        sa.Column("turn_number", sa.Integer(), nullable=False),
        sa.Column("turn_type", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, index=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("content_kind", sa.String(16), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("offered_at", sa.DateTime(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("skipped_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("game_id", "turn_number", name="uq_turns_game_number"),
    )
    op.create_index(
        "uq_turns_player_pending", "turns", ["player_id"], unique=True,
        sqlite_where=_PENDING, postgresql_where=_PENDING,
    )
    op.create_table(
        "scheduled_jobs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_type", sa.String(32), nullable=False),
        sa.Column("target_id", sa.String(36), nullable=False, index=True),
        sa.Column("due_at", sa.DateTime(), nullable=False, index=True),
        sa.Column("status", sa.String(16), nullable=False, index=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.String(2048), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("fired_at", sa.DateTime(), nullable=True),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
    )
    op.create_index(
        "uq_scheduled_jobs_pending_key", "scheduled_jobs", ["job_type", "target_id"], unique=True,
        sqlite_where=_PENDING, postgresql_where=_PENDING,
    )
    op.create_table(
        "draft_sessions",
        sa.Column("owner_id", sa.String(64), primary_key=True),
        sa.Column("kind", sa.String(64), primary_key=True),
        sa.Column("payload", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("expires_at", sa.DateTime(), nullable=False, index=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("draft_sessions")
    op.drop_index("uq_scheduled_jobs_pending_key", table_name="scheduled_jobs")
    op.drop_table("scheduled_jobs")
    op.drop_index("uq_turns_player_pending", table_name="turns")
    op.drop_table("turns")
    op.drop_table("games")
    op.drop_table("memberships")
    op.drop_table("seasons")
    op.drop_table("policies")
    op.drop_table("players")
