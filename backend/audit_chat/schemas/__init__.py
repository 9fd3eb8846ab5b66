# Schemas package for API request/response validation

from .base import BaseSchema, BaseResponseSchema

from .message import MessageCreate, MessageUpdate, MessageResponse

from .session import (
    ReportType, SessionCreate, SessionUpdate, SessionResponse, SessionSummary,
    SessionListResponse, CreateSessionRequest, CreateSessionResponse,
    SendMessageRequest, HistoryResponse, SuggestedQuestionsResponse,
)

from .report import MarketingReport, WebsiteReport, WebsiteScore, StructuredReport

from .stream import (
    DONE_SENTINEL, TokenEvent, ProgressEvent, WarningEvent, ErrorEvent,
    DoneEvent, StreamEvent, encode_sse,
)

__all__ = [
    # Base
    "BaseSchema", "BaseResponseSchema",

    # Message
    "MessageCreate", "MessageUpdate", "MessageResponse",

    # Session
    "ReportType", "SessionCreate", "SessionUpdate", "SessionResponse", "SessionSummary",
    "SessionListResponse", "CreateSessionRequest", "CreateSessionResponse",
    "SendMessageRequest", "HistoryResponse", "SuggestedQuestionsResponse",

    # Report
    "MarketingReport", "WebsiteReport", "WebsiteScore", "StructuredReport",

    # Stream
    "DONE_SENTINEL", "TokenEvent", "ProgressEvent", "WarningEvent", "ErrorEvent",
    "DoneEvent", "StreamEvent", "encode_sse",
]
