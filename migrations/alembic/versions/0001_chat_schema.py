"""Chat gateway schema - Providers, Models, Conversations, Messages

Revision ID: 0001
Revises:
Create Date: 2026-10-18

Tables:
- providers: Upstream LLM vendor/account configuration
- models: Upstream model identifiers with capability flags
- conversations: User-owned chat threads
- messages: Append-only turns with typed parts

Invariants:
- every model references an existing provider
- every message references an existing conversation
- deletion is soft (is_deleted + deleted_at); rows are never removed by the gateway
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    # ==========================================================================
    # Step 1: Providers and models
    # ==========================================================================
    op.create_table(
        "providers",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("slug", sa.String(64), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("base_url", sa.Text(), nullable=True),
        sa.Column("api_version", sa.String(64), nullable=True),
        sa.Column("auth_type", sa.String(16), server_default="api_key", nullable=False),
        sa.Column("details", sa.JSON(), server_default=sa.text("'{}'"), nullable=False),
        sa.Column("status", sa.String(16), server_default="active", nullable=False),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug", name="uix_providers_slug"),
        sa.CheckConstraint(
            "auth_type IN ('api_key', 'oauth', 'none')", name="ck_providers_auth_type"
        ),
        sa.CheckConstraint(
            "status IN ('active', 'inactive', 'deprecated')", name="ck_providers_status"
        ),
    )

    op.create_table(
        "models",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("provider_id", sa.UUID(), nullable=False),
        sa.Column("has_reasoning", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column(
            "supports_streaming", sa.Boolean(), server_default=sa.text("true"), nullable=False
        ),
        sa.Column(
            "supports_tool_calling", sa.Boolean(), server_default=sa.text("false"), nullable=False
        ),
        sa.Column("status", sa.String(16), server_default="active", nullable=False),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("slug", name="uix_models_slug"),
        sa.CheckConstraint("status IN ('active', 'inactive', 'deprecated')", name="ck_models_status"),
    )

    # ==========================================================================
    # Step 2: Conversations and messages
    # ==========================================================================
    op.create_table(
        "conversations",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("model_id", sa.UUID(), nullable=True),
        sa.Column("status", sa.String(16), server_default="active", nullable=False),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["model_id"], ["models.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "status IN ('active', 'archived', 'deleted')", name="ck_conversations_status"
        ),
    )
    op.create_index(
        "idx_conversations_user_updated", "conversations", ["user_id", sa.text("updated_at DESC")]
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("conversation_id", sa.UUID(), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("parts", sa.JSON(), server_default=sa.text("'[]'"), nullable=False),
        sa.Column("status", sa.String(16), server_default="received", nullable=False),
        sa.Column("reference_id", sa.String(255), nullable=True),
        sa.Column("details", sa.JSON(), server_default=sa.text("'{}'"), nullable=False),
        sa.Column("version", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "role IN ('user', 'assistant', 'system', 'data', 'tool')", name="ck_messages_role"
        ),
        sa.CheckConstraint(
            "status IN ('received', 'draft', 'sent', 'delivered', 'failed')",
            name="ck_messages_status",
        ),
    )
    op.create_index(
        "idx_messages_conversation_created", "messages", ["conversation_id", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("idx_messages_conversation_created", table_name="messages")
    op.drop_table("messages")
    op.drop_index("idx_conversations_user_updated", table_name="conversations")
    op.drop_table("conversations")
    op.drop_table("models")
    op.drop_table("providers")
