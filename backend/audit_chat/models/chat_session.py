"""
ChatSession model: one standing conversation about one report of one purchase.
Sessions are soft-archived (is_active=False), never deleted.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Index, text
from sqlalchemy.orm import relationship
from datetime import datetime
from .base import BaseModel

class ChatSession(BaseModel):
    """
    Chat session entity scoped to a (purchase, report type) pair.
    """

    __tablename__ = "chat_sessions"
    __table_args__ = (
        # At most one active session per (purchase, report type)
        Index(
            "uq_chat_sessions_active_pair",
            "purchase_id",
            "report_type",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    # Opaque purchase reference (owned by the billing side)
    purchase_id = Column(String(64), nullable=False, index=True)

    # 'marketing' | 'website'
    report_type = Column(String(20), nullable=False, index=True)

    # Assistant used for runs in this session
    assistant_id = Column(String(64), nullable=False)

    # Display name shown in the session list
    name = Column(String(255), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    message_count = Column(Integer, default=0, nullable=False)

    last_message_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    ended_at = Column(DateTime, nullable=True)

    messages = relationship(
        "ChatMessage",
        back_populates="chat_session",
        order_by="ChatMessage.message_order",
    )

    def __repr__(self):
        return (
            f"<ChatSession(id={self.id}, purchase_id='{self.purchase_id}', "
            f"report_type='{self.report_type}', is_active={self.is_active})>"
        )
