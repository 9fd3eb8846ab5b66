"""
Pydantic schemas for ChatMessage entity.
Aligned with models.message.ChatMessage and repositories.message.MessageRepository.
"""

from typing import Optional, Dict, Any, Literal
from pydantic import Field

from .base import BaseSchema, BaseResponseSchema

class MessageCreate(BaseSchema):
    """
    Schema for creating new messages.
    """
    role: Literal["user", "assistant"] = Field(..., description="Message author")
    content: str = Field(..., description="Message text content")
    chat_session_id: int = Field(..., description="Parent chat session id")
    message_order: int = Field(..., ge=1, description="Per-session ordinal")
    thread_id: Optional[str] = Field(None, description="Provider thread the message belongs to")
    meta: Dict[str, Any] = Field(default_factory=dict)

class MessageUpdate(BaseSchema):
    """
    Schema for updating message metadata after creation.
    """
    meta: Optional[Dict[str, Any]] = None
    error_type: Optional[str] = None
    model_used: Optional[str] = None
    run_id: Optional[str] = None
    latency_ms: Optional[float] = Field(None, ge=0.0)


class MessageResponse(BaseResponseSchema):
    """
    Message as shown in the chat transcript.
    """
    role: Literal["user", "assistant"]
    content: str
    chat_session_id: int
    message_order: int
    thread_id: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    error_type: Optional[str] = None
