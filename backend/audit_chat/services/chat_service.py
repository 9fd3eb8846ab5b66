# audit_chat/services/chat_service.py
"""
Session-level chat operations: create or resume, list, history, archive and
suggested questions. A single turn is handled by SessionOrchestrator.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from audit_chat.config import settings
from audit_chat.models.chat_session import ChatSession
from audit_chat.repositories.ai_result import AIResultRepository
from audit_chat.repositories.message import MessageRepository
from audit_chat.repositories.session import ChatSessionRepository
from audit_chat.schemas.message import MessageResponse
from audit_chat.schemas.session import (
    HistoryResponse,
    SessionListResponse,
    SessionResponse,
    SessionSummary,
)
from audit_chat.services.context_formatter import parse_report
from audit_chat.services.errors import ConfigurationError, NotFoundError

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 100

FALLBACK_QUESTIONS: Dict[str, List[str]] = {
    "marketing": [
        "What are my biggest marketing priorities right now?",
        "How should I allocate my marketing budget for maximum ROI?",
        "What tools do you recommend I implement first?",
        "How can I improve my customer acquisition strategy?",
        "What content strategy would work best for my business?",
    ],
    "website": [
        "What website issues should I fix first?",
        "How can I improve my website's conversion rate?",
        "What SEO improvements would have the biggest impact?",
        "How can I make my website more trustworthy to visitors?",
        "What design changes would improve user experience?",
    ],
}


class ChatService:
    """
    Entry point for the /api/chat-sessions endpoints that do not stream.
    """

    def __init__(
        self,
        *,
        sess_repo: Optional[ChatSessionRepository] = None,
        msg_repo: Optional[MessageRepository] = None,
        report_repo: Optional[AIResultRepository] = None,
    ):
        self.sess_repo = sess_repo or ChatSessionRepository()
        self.msg_repo = msg_repo or MessageRepository(self.sess_repo)
        self.report_repo = report_repo or AIResultRepository()

    def get_or_create_session(self, db: Session, purchase_id: str, report_type: str) -> ChatSession:
        """
        Reuse the active session for (purchase, report type) or start one.
        """
        report = self.report_repo.get_report_payload(db, purchase_id, report_type)
        if report is None:
            raise NotFoundError(f"{report_type.capitalize()} report", purchase_id)

        existing = self.sess_repo.get_active_for_pair(db, purchase_id, report_type)
        if existing:
            logger.info(f"Resuming {report_type} session {existing.id} for purchase {purchase_id}")
            return existing

        assistant_id = settings.assistant_id_for(report_type)
        if not assistant_id:
            raise ConfigurationError(f"no assistant id configured for report type {report_type!r}")

        try:
            session = self.sess_repo.create_session(db, purchase_id, report_type, assistant_id)
            db.commit()
        except IntegrityError:
            # Another request created the active session first
            db.rollback()
            session = self.sess_repo.get_active_for_pair(db, purchase_id, report_type)
            if session is None:
                raise
            return session

        logger.info(f"Created {report_type} session {session.id} for purchase {purchase_id}")
        return session

    def require_session(self, db: Session, session_id: int, *, active_only: bool = False) -> ChatSession:
        s = self.sess_repo.get_active(db, session_id) if active_only else self.sess_repo.get(db, session_id)
        if s is None:
            raise NotFoundError("Session", session_id)
        return s

    def get_history(self, db: Session, session_id: int) -> HistoryResponse:
        s = self.require_session(db, session_id)
        msgs = self.msg_repo.get_by_session_id(db, session_id)
        return HistoryResponse(
            messages=[MessageResponse.model_validate(m) for m in msgs],
            session_info=SessionResponse.model_validate(s),
        )

    def list_sessions(self, db: Session, purchase_id: str) -> SessionListResponse:
        out = SessionListResponse()
        for s in self.sess_repo.get_by_purchase(db, purchase_id):
            latest = self.msg_repo.get_latest(db, s.id)
            preview = ""
            if latest is not None:
                text = " ".join((latest.content or "").split())
                preview = text if len(text) <= PREVIEW_CHARS else text[:PREVIEW_CHARS].rstrip() + "..."
            item = SessionSummary.model_validate(s).model_copy(update={"preview": preview})
            out.all.append(item)
            if s.report_type == "website":
                out.website.append(item)
            else:
                out.marketing.append(item)
        return out

    def archive(self, db: Session, session_id: int) -> None:
        self.require_session(db, session_id)
        self.sess_repo.deactivate_session(db, session_id)
        logger.info(f"Archived session {session_id}")

    def suggested_questions(self, db: Session, purchase_id: str, report_type: str) -> List[str]:
        """Follow-up topics from the report, else a fixed list for the report type."""
        report: Any = self.report_repo.get_report_payload(db, purchase_id, report_type)
        if isinstance(report, dict):
            try:
                follow_up = parse_report(report, report_type).follow_up
            except Exception as e:
                logger.warning(f"Could not read follow-up topics for purchase {purchase_id}: {e}")
                follow_up = None
            if follow_up:
                return follow_up
        return list(FALLBACK_QUESTIONS.get(report_type, FALLBACK_QUESTIONS["marketing"]))
