"""
Pydantic schemas for ChatSession entity.
"""

from typing import Dict, List, Literal, Optional
from datetime import datetime
from pydantic import Field

from .base import BaseSchema, BaseResponseSchema
from .message import MessageResponse

ReportType = Literal["marketing", "website"]


class SessionCreate(BaseSchema):
    """
    Schema for creating new chat sessions.
    """
    purchase_id: str = Field(..., min_length=1, description="Purchase the report belongs to")
    report_type: ReportType = Field(..., description="Which report this session discusses")
    assistant_id: str = Field(..., min_length=1, description="Assistant used for runs")
    name: Optional[str] = None
    is_active: Optional[bool] = True  # Sessions start active by default


class SessionUpdate(BaseSchema):
    """
    Schema for updating existing chat sessions.
    """
    name: Optional[str] = None
    is_active: Optional[bool] = None
    message_count: Optional[int] = None
    last_message_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class SessionResponse(BaseResponseSchema):
    """
    Session data returned to the frontend.
    """
    purchase_id: str
    report_type: ReportType
    name: Optional[str] = None
    is_active: bool
    message_count: int
    last_message_at: datetime
    ended_at: Optional[datetime] = None


class SessionSummary(SessionResponse):
    """
    Session list entry with a short preview of the latest message.
    """
    preview: str = ""


class SessionListResponse(BaseSchema):
    marketing: List[SessionSummary] = Field(default_factory=list)
    website: List[SessionSummary] = Field(default_factory=list)
    all: List[SessionSummary] = Field(default_factory=list)


class CreateSessionRequest(BaseSchema):
    purchase_id: str = Field(..., min_length=1)
    initial_message: Optional[str] = Field(None, description="First user message, sent as a full turn")
    report_type: ReportType = "marketing"


class CreateSessionResponse(BaseSchema):
    success: bool = True
    chat_session_id: int
    report_type: ReportType
    messages: List[MessageResponse] = Field(default_factory=list)


class SendMessageRequest(BaseSchema):
    message: str = Field(..., min_length=1, description="User message text")


class HistoryResponse(BaseSchema):
    messages: List[MessageResponse]
    session_info: SessionResponse


class SuggestedQuestionsResponse(BaseSchema):
    questions: List[str]
    report_type: ReportType
