
"""Migração inicial: conversas e mensagens do agente vendedor."""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "agent_conversations",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("workspace_id", sa.String(64), nullable=False),
        sa.Column("order_id", sa.String(64), nullable=True),
        sa.Column("client_name", sa.String(120), nullable=False, server_default=""),
        sa.Column("client_phone", sa.String(32), nullable=False),
        sa.Column("chat_id", sa.String(64), nullable=False),
        sa.Column("product_name", sa.String(160), nullable=False, server_default=""),
        sa.Column("product_price", sa.Float, nullable=False, server_default="0"),
        sa.Column("state", sa.String(32), nullable=False, server_default="pending_confirmation"),
        sa.Column("confidence_score", sa.Integer, nullable=False, server_default="50"),
        sa.Column("sentiment", sa.String(16), nullable=False, server_default="unknown"),
        sa.Column("relance_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("processed_message_ids", sa.JSON(), nullable=False),
        sa.Column("message_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("client_message_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("agent_message_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("extra", sa.JSON(), nullable=False),
        sa.Column("last_interaction_at", sa.TIMESTAMP(timezone=False), nullable=False),
        sa.Column("last_client_message_at", sa.TIMESTAMP(timezone=False), nullable=True),
        sa.Column("last_agent_message_at", sa.TIMESTAMP(timezone=False), nullable=True),
        sa.Column("last_relance_at", sa.TIMESTAMP(timezone=False), nullable=True),
        sa.Column("confirmed_at", sa.TIMESTAMP(timezone=False), nullable=True),
        sa.Column("cancelled_at", sa.TIMESTAMP(timezone=False), nullable=True),
        sa.Column("escalated_at", sa.TIMESTAMP(timezone=False), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=False), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=False), nullable=False),
        sa.UniqueConstraint("workspace_id", "chat_id", name="uq_conversation_chat"),
    )
    op.create_index("ix_agent_conversations_workspace_id", "agent_conversations", ["workspace_id"])
    op.create_index("ix_agent_conversations_order_id", "agent_conversations", ["order_id"])
    op.create_index("ix_agent_conversations_client_phone", "agent_conversations", ["client_phone"])
    op.create_index("ix_agent_conversations_active", "agent_conversations", ["active"])
    op.create_index("ix_conversation_active_state", "agent_conversations", ["active", "state"])

    op.create_table(
        "agent_messages",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("conversation_id", sa.Integer, sa.ForeignKey("agent_conversations.id"), nullable=False),
        sa.Column("workspace_id", sa.String(64), nullable=False),
        sa.Column("direction", sa.String(8), nullable=False),
        sa.Column("sender", sa.String(8), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("message_type", sa.String(16), nullable=False, server_default="text"),
        sa.Column("intent", sa.String(32), nullable=False, server_default="unknown"),
        sa.Column("sentiment", sa.String(16), nullable=False, server_default="unknown"),
        sa.Column("confidence_impact", sa.Integer, nullable=False, server_default="0"),
        sa.Column("provider_message_id", sa.String(128), nullable=True),
        sa.Column("delivery_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text, nullable=False, server_default=""),
        sa.Column("extra", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=False), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=False), nullable=False),
        sa.UniqueConstraint("direction", "provider_message_id", name="uq_message_provider_id"),
    )
    op.create_index("ix_agent_messages_conversation_id", "agent_messages", ["conversation_id"])
    op.create_index("ix_agent_messages_provider_message_id", "agent_messages", ["provider_message_id"])
    op.create_index("ix_message_conversation_created", "agent_messages", ["conversation_id", "created_at"])

def downgrade() -> None:
    op.drop_table("agent_messages")
    op.drop_table("agent_conversations")
