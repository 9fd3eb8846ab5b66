"""
ChatMessage model: one ordered turn in a chat session.
Each message remembers which provider thread it was exchanged on.
"""

from sqlalchemy import Column, String, Text, Integer, ForeignKey, JSON, Float, UniqueConstraint
from sqlalchemy.orm import relationship
from .base import BaseModel

class ChatMessage(BaseModel):
    """
    Message entity that represents a single turn in a chat session.

    - message_order: strictly increasing ordinal per session; the unique
      constraint rejects a second turn racing for the same ordinal
    - thread_id: provider thread the message was exchanged on; the highest
      ordinal message names the session's current thread
    - meta: role-specific flags, e.g. {"user_initiated": true, "intent": "substantive"},
      {"ai_generated": true}, {"error": true}, {"rotated_from": "thread_abc"}
    """

    __tablename__ = "chat_messages"
    __table_args__ = (
        UniqueConstraint("chat_session_id", "message_order", name="uq_chat_messages_session_order"),
    )

    chat_session_id = Column(Integer, ForeignKey("chat_sessions.id"), nullable=False, index=True)
    chat_session = relationship("ChatSession", back_populates="messages")

    # Null only if the provider never gave us a thread (first-turn failure)
    thread_id = Column(String(64), nullable=True, index=True)

    # 'user' | 'assistant'
    role = Column(String(20), nullable=False, index=True)

    content = Column(Text, nullable=False)

    message_order = Column(Integer, nullable=False)

    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=False, default=dict)

    # Set on synthetic error replies, e.g. "provider_terminal", "provider_timeout"
    error_type = Column(String(50), nullable=True)

    # Assistant-only usage info
    model_used = Column(String(80), nullable=True)
    run_id = Column(String(64), nullable=True)
    latency_ms = Column(Float, nullable=True)

    def __repr__(self):
        return (
            f"<ChatMessage(id={self.id}, role='{self.role}', "
            f"chat_session_id={self.chat_session_id}, order={self.message_order})>"
        )
