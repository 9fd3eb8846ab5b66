"""
Server-sent event payloads for a streamed chat turn.

Wire format: one `data: <json>` line per event, blank-line separated, and a
literal `data: [DONE]` sentinel that ends every stream.
"""

from typing import Literal, Optional, Union
from pydantic import BaseModel

DONE_SENTINEL = "[DONE]"


class TokenEvent(BaseModel):
    type: Literal["token"] = "token"
    token: str


class ProgressEvent(BaseModel):
    type: Literal["progress"] = "progress"
    message: str
    attempt: Optional[int] = None


class WarningEvent(BaseModel):
    type: Literal["warning"] = "warning"
    message: str
    code: Optional[str] = None


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str
    code: str
    retryable: bool = True


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"


StreamEvent = Union[TokenEvent, ProgressEvent, WarningEvent, ErrorEvent, DoneEvent]


def encode_sse(event: StreamEvent) -> str:
    """Render one event as an SSE `data:` frame."""
    if isinstance(event, DoneEvent):
        return f"data: {DONE_SENTINEL}\n\n"
    return f"data: {event.model_dump_json(exclude_none=True)}\n\n"
