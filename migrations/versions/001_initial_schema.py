"""
001 — Initial schema: event_log + user_trust

Revision ID: 001
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSON

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "event_log",
        sa.Column("seq", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("id", sa.String(36), nullable=False, unique=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(100), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=True),

        sa.Column("payload", JSON, nullable=False),
        sa.Column("schema_version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("dedupe_key", sa.String(200), nullable=True, unique=True),

        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_index("ix_event_log_entity", "event_log", ["entity_type", "entity_id"])
    op.create_index("ix_event_log_action_created", "event_log", ["action", "created_at"])

    op.create_table(
        "user_trust",
        sa.Column("user_id", sa.String(100), primary_key=True),
        sa.Column("trust_score", sa.Float, nullable=False),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("user_trust")
    op.drop_index("ix_event_log_action_created", table_name="event_log")
    op.drop_index("ix_event_log_entity", table_name="event_log")
    op.drop_table("event_log")
