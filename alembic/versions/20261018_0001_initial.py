"""workout templates and live gym sessions"""

from alembic import op
import sqlalchemy as sa


revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "workout_templates",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("gym_slug", sa.String(length=80), nullable=True),
        sa.Column("name", sa.String(length=180), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_demo", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("blocks", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_workout_templates_gym_slug", "workout_templates", ["gym_slug"])

    op.create_table(
        "gym_sessions",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("gym_slug", sa.String(length=80), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("view_mode", sa.String(length=20), nullable=False, server_default="follow_steps"),
        sa.Column("current_block_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_step_index", sa.Integer(), nullable=True),
        sa.Column("step_end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("block_end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("remaining_ms", sa.Integer(), nullable=True),
        sa.Column("state_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("template_snapshot", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint("state_version >= 1", name="ck_gym_sessions_state_version"),
        sa.CheckConstraint("remaining_ms IS NULL OR remaining_ms >= 0", name="ck_gym_sessions_remaining_ms"),
        sa.CheckConstraint("status in ('running', 'paused', 'stopped', 'ended')", name="ck_gym_sessions_status"),
    )
    op.create_index("ix_gym_sessions_gym_slug", "gym_sessions", ["gym_slug"])
    op.create_index("ix_gym_sessions_gym_status_created", "gym_sessions", ["gym_slug", "status", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_gym_sessions_gym_status_created", table_name="gym_sessions")
    op.drop_index("ix_gym_sessions_gym_slug", table_name="gym_sessions")
    op.drop_table("gym_sessions")
    op.drop_index("ix_workout_templates_gym_slug", table_name="workout_templates")
    op.drop_table("workout_templates")
