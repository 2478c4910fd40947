"""Conversations and per-turn usage log.

Revision ID: 001
Revises:
Create Date: 2026-10-17

Creates the transcript table (one row per conversation id, verbatim message
list as JSON) and the append-only turn_usage table.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "conversations",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("role", sa.String(20), nullable=True),
        sa.Column("patient_id", sa.String(128), nullable=True),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_message", sa.Text(), nullable=True),
        sa.Column("messages", sa.JSON(), nullable=False),
    )
    op.create_index("ix_conversations_patient_id", "conversations", ["patient_id"])
    op.create_index("ix_conversations_updated_at", "conversations", ["updated_at"])

    op.create_table(
        "turn_usage",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("model", sa.String(100), nullable=False),
        sa.Column("latency_ms", sa.Integer(), nullable=False),
        sa.Column("finish_reason", sa.String(50), nullable=True),
        sa.Column("role", sa.String(20), nullable=True),
        sa.Column("patient_id", sa.String(128), nullable=True),
        sa.Column("conversation_id", sa.String(128), nullable=True),
        sa.Column("last_user_text", sa.Text(), nullable=True),
        sa.Column("assistant_text", sa.Text(), nullable=True),
        sa.Column("input_tokens", sa.Integer(), nullable=True),
        sa.Column("output_tokens", sa.Integer(), nullable=True),
        sa.Column("total_tokens", sa.Integer(), nullable=True),
        sa.Column("usage_details", sa.JSON(), nullable=True),
        sa.Column("cost_input_usd", sa.Float(), nullable=True),
        sa.Column("cost_output_usd", sa.Float(), nullable=True),
        sa.Column("cost_total_usd", sa.Float(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
    )
    op.create_index("ix_turn_usage_conversation_id", "turn_usage", ["conversation_id"])
    op.create_index("ix_turn_usage_created_at", "turn_usage", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_turn_usage_created_at", table_name="turn_usage")
    op.drop_index("ix_turn_usage_conversation_id", table_name="turn_usage")
    op.drop_table("turn_usage")
    op.drop_index("ix_conversations_updated_at", table_name="conversations")
    op.drop_index("ix_conversations_patient_id", table_name="conversations")
    op.drop_table("conversations")
