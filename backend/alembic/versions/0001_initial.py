"""chat sessions, chat messages and report artifacts

Revision ID: 0001_initial
Revises:
Create Date: 2025-01-15 10:00:00

"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "ai_results",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("purchase_id", sa.String(length=64), nullable=False),
        sa.Column("result_data", sa.JSON(), nullable=True),
        sa.Column("website_analysis", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_ai_results_id", "ai_results", ["id"])
    op.create_index("ix_ai_results_purchase_id", "ai_results", ["purchase_id"], unique=True)
    op.create_index("ix_ai_results_created_at", "ai_results", ["created_at"])

    op.create_table(
        "chat_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("purchase_id", sa.String(length=64), nullable=False),
        sa.Column("report_type", sa.String(length=20), nullable=False),
        sa.Column("assistant_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("message_count", sa.Integer(), nullable=False),
        sa.Column("last_message_at", sa.DateTime(), nullable=False),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_chat_sessions_id", "chat_sessions", ["id"])
    op.create_index("ix_chat_sessions_purchase_id", "chat_sessions", ["purchase_id"])
    op.create_index("ix_chat_sessions_report_type", "chat_sessions", ["report_type"])
    op.create_index("ix_chat_sessions_is_active", "chat_sessions", ["is_active"])
    op.create_index("ix_chat_sessions_last_message_at", "chat_sessions", ["last_message_at"])
    op.create_index("ix_chat_sessions_created_at", "chat_sessions", ["created_at"])
    op.create_index(
        "uq_chat_sessions_active_pair",
        "chat_sessions",
        ["purchase_id", "report_type"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("chat_session_id", sa.Integer(), sa.ForeignKey("chat_sessions.id"), nullable=False),
        sa.Column("thread_id", sa.String(length=64), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("message_order", sa.Integer(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("error_type", sa.String(length=50), nullable=True),
        sa.Column("model_used", sa.String(length=80), nullable=True),
        sa.Column("run_id", sa.String(length=64), nullable=True),
        sa.Column("latency_ms", sa.Float(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("chat_session_id", "message_order", name="uq_chat_messages_session_order"),
    )
    op.create_index("ix_chat_messages_id", "chat_messages", ["id"])
    op.create_index("ix_chat_messages_chat_session_id", "chat_messages", ["chat_session_id"])
    op.create_index("ix_chat_messages_thread_id", "chat_messages", ["thread_id"])
    op.create_index("ix_chat_messages_role", "chat_messages", ["role"])
    op.create_index("ix_chat_messages_created_at", "chat_messages", ["created_at"])


def downgrade() -> None:
    op.drop_table("chat_messages")
    op.drop_index("uq_chat_sessions_active_pair", table_name="chat_sessions")
    op.drop_table("chat_sessions")
    op.drop_table("ai_results")
