# audit_chat/routers/chat_sessions.py
from __future__ import annotations

from typing import Callable, Optional
import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from audit_chat.database import DBFactory, get_db, get_db_context
from audit_chat.schemas.session import (
    CreateSessionRequest,
    CreateSessionResponse,
    HistoryResponse,
    ReportType,
    SendMessageRequest,
    SessionListResponse,
    SuggestedQuestionsResponse,
)
from audit_chat.schemas.stream import encode_sse
from audit_chat.services.chat_service import ChatService
from audit_chat.services.errors import ChatError, ConfigurationError, NotFoundError
from audit_chat.services.session_orchestrator import SessionOrchestrator
from audit_chat.services.streaming import detach, drain

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat-sessions", tags=["chat-sessions"])

OrchestratorFactory = Callable[[], SessionOrchestrator]

# ------- DI providers -------
def get_chat_service() -> ChatService:
    return ChatService()

def get_db_factory() -> DBFactory:
    """Session factory for work that outlives the request scope (streamed turns)."""
    return get_db_context

def get_orchestrator_factory(db_factory: DBFactory = Depends(get_db_factory)) -> OrchestratorFactory:
    """Deferred construction: routes that may not run a turn never need provider credentials."""
    def build() -> SessionOrchestrator:
        try:
            return SessionOrchestrator.from_settings(db_factory)
        except RuntimeError as e:
            logger.error(f"Assistant provider unavailable: {e}")
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Assistant provider is not configured")
    return build

def get_orchestrator(build: OrchestratorFactory = Depends(get_orchestrator_factory)) -> SessionOrchestrator:
    return build()

# ------- Helpers -------
def _http_error(e: ChatError) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.public_detail)
    if isinstance(e, ConfigurationError):
        logger.error(f"Configuration error: {e}")
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.public_detail)
    logger.error(f"Request failed [{e.code}]: {e}")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.public_detail)

# Sync store work for the async routes; called through asyncio.to_thread
def _open_session(db_factory: DBFactory, chat_service: ChatService, payload: CreateSessionRequest) -> int:
    with db_factory() as db:
        return chat_service.get_or_create_session(db, payload.purchase_id, payload.report_type).id

def _load_history(db_factory: DBFactory, chat_service: ChatService, session_id: int) -> HistoryResponse:
    with db_factory() as db:
        return chat_service.get_history(db, session_id)

def _missing_session(db_factory: DBFactory, chat_service: ChatService, session_id: int) -> Optional[NotFoundError]:
    with db_factory() as db:
        try:
            chat_service.require_session(db, session_id, active_only=True)
        except NotFoundError as e:
            return e
    return None

# ------- Routes -------
@router.post(
    "/create",
    response_model=CreateSessionResponse,
    summary="Create or resume the chat session for a purchase's report, optionally running a first turn",
)
async def create_session(
    payload: CreateSessionRequest,
    db_factory: DBFactory = Depends(get_db_factory),
    chat_service: ChatService = Depends(get_chat_service),
    build_orchestrator: OrchestratorFactory = Depends(get_orchestrator_factory),
):
    first_message = (payload.initial_message or "").strip()
    # Provider checks come first so a misconfigured deployment creates nothing
    orchestrator = build_orchestrator() if first_message else None

    try:
        session_id = await asyncio.to_thread(_open_session, db_factory, chat_service, payload)
    except ChatError as e:
        raise _http_error(e)

    if orchestrator is not None:
        # Failures are recorded in the transcript as an assistant error reply
        await drain(orchestrator.stream_turn(session_id, first_message))

    history = await asyncio.to_thread(_load_history, db_factory, chat_service, session_id)

    return CreateSessionResponse(
        success=True,
        chat_session_id=session_id,
        report_type=payload.report_type,
        messages=history.messages,
    )

@router.post(
    "/{session_id}/message",
    summary="Send a message and stream the assistant's answer as server-sent events",
)
async def send_message(
    session_id: int,
    payload: SendMessageRequest,
    db_factory: DBFactory = Depends(get_db_factory),
    chat_service: ChatService = Depends(get_chat_service),
    orchestrator: SessionOrchestrator = Depends(get_orchestrator),
):
    # Check before the stream starts so a bad id is a plain 404
    missing = await asyncio.to_thread(_missing_session, db_factory, chat_service, session_id)
    if missing is not None:
        raise _http_error(missing)

    # detach: a client disconnect stops the relay, not the turn
    events = detach(orchestrator.stream_turn(session_id, payload.message))

    async def body():
        async for event in events:
            yield encode_sse(event)

    return StreamingResponse(
        body(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )

@router.get(
    "/{session_id}/messages",
    response_model=HistoryResponse,
    summary="Full transcript of a session in order",
)
def get_messages(
    session_id: int,
    db: Session = Depends(get_db),
    chat_service: ChatService = Depends(get_chat_service),
):
    try:
        return chat_service.get_history(db, session_id)
    except ChatError as e:
        raise _http_error(e)

@router.get(
    "",
    response_model=SessionListResponse,
    summary="List a purchase's chat sessions grouped by report type",
)
def list_sessions(
    purchase_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    chat_service: ChatService = Depends(get_chat_service),
):
    return chat_service.list_sessions(db, purchase_id)

@router.post(
    "/{session_id}/archive",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Archive (soft-delete) a session",
)
def archive_session(
    session_id: int,
    db: Session = Depends(get_db),
    chat_service: ChatService = Depends(get_chat_service),
):
    try:
        chat_service.archive(db, session_id)
    except ChatError as e:
        raise _http_error(e)
    return

@router.get(
    "/suggested-questions/{purchase_id}",
    response_model=SuggestedQuestionsResponse,
    summary="Starter questions for a purchase's report",
)
def suggested_questions(
    purchase_id: str,
    report_type: ReportType = Query("marketing"),
    db: Session = Depends(get_db),
    chat_service: ChatService = Depends(get_chat_service),
):
    return SuggestedQuestionsResponse(
        questions=chat_service.suggested_questions(db, purchase_id, report_type),
        report_type=report_type,
    )
