
"""Modelos SQLAlchemy para Conversas e Mensagens do agente."""
from __future__ import annotations
from datetime import datetime, timezone
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import String, Integer, Float, Boolean, Text, JSON, UniqueConstraint, Index, ForeignKey, TIMESTAMP

STATE_PENDING = "pending_confirmation"
STATE_NEGOTIATING = "negotiating_time"
STATE_CONFIRMED = "confirmed"
STATE_CANCELLED = "cancelled"
STATE_ESCALATED = "escalated"
STATE_COMPLETED = "completed"

STATES = (STATE_PENDING, STATE_NEGOTIATING, STATE_CONFIRMED, STATE_CANCELLED, STATE_ESCALATED, STATE_COMPLETED)
TERMINAL_STATES = frozenset({STATE_CONFIRMED, STATE_CANCELLED, STATE_ESCALATED, STATE_COMPLETED})

def utcnow() -> datetime:
    """UTC sem tzinfo (colunas TIMESTAMP sem fuso)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

class Base(DeclarativeBase):
    """Base declarativa."""
    pass

class AgentConversation(Base):
    __tablename__ = "agent_conversations"
    id: Mapped[int] = mapped_column(primary_key=True)
    workspace_id: Mapped[str] = mapped_column(String(64), index=True)
    order_id: Mapped[str | None] = mapped_column(String(64), index=True)
    client_name: Mapped[str] = mapped_column(String(120), default="")
    client_phone: Mapped[str] = mapped_column(String(32), index=True)
    chat_id: Mapped[str] = mapped_column(String(64))
    product_name: Mapped[str] = mapped_column(String(160), default="")
    product_price: Mapped[float] = mapped_column(Float, default=0)
    state: Mapped[str] = mapped_column(String(32), default=STATE_PENDING)
    confidence_score: Mapped[int] = mapped_column(Integer, default=50)
    sentiment: Mapped[str] = mapped_column(String(16), default="unknown")
    relance_count: Mapped[int] = mapped_column(Integer, default=0)
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    processed_message_ids: Mapped[list] = mapped_column(JSON, default=list)
    message_count: Mapped[int] = mapped_column(Integer, default=0)
    client_message_count: Mapped[int] = mapped_column(Integer, default=0)
    agent_message_count: Mapped[int] = mapped_column(Integer, default=0)
    extra: Mapped[dict] = mapped_column(JSON, default=dict)
    last_interaction_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=False), default=utcnow)
    last_client_message_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=False))
    last_agent_message_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=False))
    last_relance_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=False))
    confirmed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=False))
    cancelled_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=False))
    escalated_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=False))
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=False), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=False), default=utcnow, onupdate=utcnow)
    __table_args__ = (
        UniqueConstraint("workspace_id", "chat_id", name="uq_conversation_chat"),
        Index("ix_conversation_active_state", "active", "state"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def is_message_processed(self, message_id: str) -> bool:
        return message_id in (self.processed_message_ids or [])

class AgentMessage(Base):
    __tablename__ = "agent_messages"
    id: Mapped[int] = mapped_column(primary_key=True)
    conversation_id: Mapped[int] = mapped_column(ForeignKey("agent_conversations.id"), index=True)
    workspace_id: Mapped[str] = mapped_column(String(64))
    direction: Mapped[str] = mapped_column(String(8))  # inbound|outbound
    sender: Mapped[str] = mapped_column(String(8))  # client|agent|system
    content: Mapped[str] = mapped_column(Text)
    message_type: Mapped[str] = mapped_column(String(16), default="text")
    intent: Mapped[str] = mapped_column(String(32), default="unknown")
    sentiment: Mapped[str] = mapped_column(String(16), default="unknown")
    confidence_impact: Mapped[int] = mapped_column(Integer, default=0)
    provider_message_id: Mapped[str | None] = mapped_column(String(128), index=True)
    delivery_status: Mapped[str] = mapped_column(String(16), default="pending")
    error_message: Mapped[str] = mapped_column(Text, default="")
    extra: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=False), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=False), default=utcnow, onupdate=utcnow)
    __table_args__ = (
        UniqueConstraint("direction", "provider_message_id", name="uq_message_provider_id"),
        Index("ix_message_conversation_created", "conversation_id", "created_at"),
    )
