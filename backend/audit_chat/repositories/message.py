"""
Message repository: ordered transcript storage.
Ordinals are assigned by the caller from next_order(); the
(chat_session_id, message_order) unique constraint rejects duplicates.
"""

from typing import Optional, List, Dict, Any
from sqlalchemy.orm import Session
from sqlalchemy import desc, func
import logging

from .base import BaseRepository
from .session import ChatSessionRepository
from ..models.message import ChatMessage
from ..schemas.message import MessageCreate, MessageUpdate

logger = logging.getLogger(__name__)


class MessageRepository(BaseRepository[ChatMessage, MessageCreate, MessageUpdate]):

    def __init__(self, sess_repo: Optional[ChatSessionRepository] = None):
        super().__init__(ChatMessage)
        self.sess_repo = sess_repo or ChatSessionRepository()

    # ---------- Queries ----------

    def next_order(self, db: Session, chat_session_id: int) -> int:
        """max(message_order) + 1, or 1 for an empty session."""
        try:
            current = (
                db.query(func.max(ChatMessage.message_order))
                .filter(ChatMessage.chat_session_id == chat_session_id)
                .scalar()
            )
            return (current or 0) + 1
        except Exception as e:
            logger.error(f"next_order failed (session={chat_session_id}): {e}")
            raise

    def get_latest(self, db: Session, chat_session_id: int) -> Optional[ChatMessage]:
        """Highest-ordinal message; its thread_id is the session's current thread."""
        try:
            return (
                db.query(ChatMessage)
                .filter(ChatMessage.chat_session_id == chat_session_id)
                .order_by(desc(ChatMessage.message_order))
                .first()
            )
        except Exception as e:
            logger.error(f"get_latest failed (session={chat_session_id}): {e}")
            raise

    def get_current_thread_id(self, db: Session, chat_session_id: int) -> Optional[str]:
        """Thread of the most recent message that has one."""
        try:
            row = (
                db.query(ChatMessage.thread_id)
                .filter(
                    ChatMessage.chat_session_id == chat_session_id,
                    ChatMessage.thread_id.isnot(None),
                )
                .order_by(desc(ChatMessage.message_order))
                .first()
            )
            return row[0] if row else None
        except Exception as e:
            logger.error(f"get_current_thread_id failed (session={chat_session_id}): {e}")
            raise

    def get_by_session_id(
        self,
        db: Session,
        chat_session_id: int,
        skip: int = 0,
        limit: int = 500,
    ) -> List[ChatMessage]:
        """Messages for a session in ordinal order."""
        try:
            return (
                db.query(ChatMessage)
                .filter(ChatMessage.chat_session_id == chat_session_id)
                .order_by(ChatMessage.message_order)
                .offset(skip)
                .limit(limit)
                .all()
            )
        except Exception as e:
            logger.error(f"get_by_session_id failed (session={chat_session_id}): {e}")
            raise

    # ---------- Mutations ----------

    def _create(
        self,
        db: Session,
        chat_session_id: int,
        role: str,
        content: str,
        message_order: int,
        thread_id: Optional[str],
        meta: Dict[str, Any],
    ) -> ChatMessage:
        msg = self.create(db, MessageCreate(
            role=role,
            content=content,
            chat_session_id=chat_session_id,
            message_order=message_order,
            thread_id=thread_id,
            meta=meta,
        ))
        self.sess_repo.touch(db, chat_session_id)
        db.flush()
        return msg

    def create_user_message(
        self,
        db: Session,
        chat_session_id: int,
        content: str,
        *,
        message_order: int,
        thread_id: Optional[str],
        meta: Optional[Dict[str, Any]] = None,
    ) -> ChatMessage:
        try:
            return self._create(
                db, chat_session_id, "user", content, message_order, thread_id,
                {"user_initiated": True, **(meta or {})},
            )
        except Exception as e:
            logger.error(f"create_user_message failed (session={chat_session_id}, order={message_order}): {e}")
            db.rollback()
            raise

    def create_assistant_message(
        self,
        db: Session,
        chat_session_id: int,
        content: str,
        *,
        message_order: int,
        thread_id: Optional[str],
        run_id: Optional[str] = None,
        model_used: Optional[str] = None,
        latency_ms: Optional[float] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> ChatMessage:
        try:
            msg = self._create(
                db, chat_session_id, "assistant", content, message_order, thread_id,
                {"ai_generated": True, **(meta or {})},
            )
            update_payload: Dict[str, Any] = {}
            if run_id is not None:      update_payload["run_id"] = run_id
            if model_used is not None:  update_payload["model_used"] = model_used
            if latency_ms is not None:  update_payload["latency_ms"] = latency_ms
            if update_payload:
                msg = self.update(db, msg, MessageUpdate(**update_payload))
            return msg
        except Exception as e:
            logger.error(f"create_assistant_message failed (session={chat_session_id}, order={message_order}): {e}")
            db.rollback()
            raise

    def create_error_message(
        self,
        db: Session,
        chat_session_id: int,
        content: str,
        *,
        message_order: int,
        thread_id: Optional[str],
        error_type: str,
    ) -> ChatMessage:
        """Synthetic assistant reply standing in for an answer that never arrived."""
        try:
            msg = self._create(
                db, chat_session_id, "assistant", content, message_order, thread_id,
                {"error": True, "ai_generated": False},
            )
            return self.update(db, msg, MessageUpdate(error_type=error_type))
        except Exception as e:
            logger.error(f"create_error_message failed (session={chat_session_id}, order={message_order}): {e}")
            db.rollback()
            raise
