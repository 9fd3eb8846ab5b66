"""
Chat session repository.
Sessions are looked up per (purchase, report type) and soft-archived, never deleted.
"""

from typing import Optional, List
from sqlalchemy.orm import Session
from sqlalchemy import and_, desc
from datetime import datetime
import logging

from .base import BaseRepository
from ..models.chat_session import ChatSession
from ..schemas.session import SessionCreate, SessionUpdate

logger = logging.getLogger(__name__)


class ChatSessionRepository(BaseRepository[ChatSession, SessionCreate, SessionUpdate]):

    def __init__(self):
        super().__init__(ChatSession)

    # ---------- Queries ----------
    def get_active(self, db: Session, session_id: int) -> Optional[ChatSession]:
        """Session by id, only if it has not been archived."""
        s = self.get(db, session_id)
        return s if s is not None and s.is_active else None

    def get_active_for_pair(self, db: Session, purchase_id: str, report_type: str) -> Optional[ChatSession]:
        """The canonical session new messages for this (purchase, report type) go to."""
        try:
            return (
                db.query(ChatSession)
                  .filter(and_(
                      ChatSession.purchase_id == purchase_id,
                      ChatSession.report_type == report_type,
                      ChatSession.is_active.is_(True),
                  ))
                  .order_by(desc(ChatSession.last_message_at))
                  .first()
            )
        except Exception as e:
            logger.error(f"Error getting active {report_type} session for purchase {purchase_id}: {e}")
            raise

    def get_by_purchase(
        self,
        db: Session,
        purchase_id: str,
        report_type: Optional[str] = None,
        active_only: bool = False,
    ) -> List[ChatSession]:
        """Sessions for a purchase, most recently used first."""
        try:
            q = db.query(ChatSession).filter(ChatSession.purchase_id == purchase_id)
            if report_type:
                q = q.filter(ChatSession.report_type == report_type)
            if active_only:
                q = q.filter(ChatSession.is_active.is_(True))
            return q.order_by(desc(ChatSession.last_message_at), desc(ChatSession.id)).all()
        except Exception as e:
            logger.error(f"Error listing sessions for purchase {purchase_id}: {e}")
            raise

    # ---------- Mutations ----------
    def create_session(
        self,
        db: Session,
        purchase_id: str,
        report_type: str,
        assistant_id: str,
        name: Optional[str] = None,
    ) -> ChatSession:
        """Create an active session; last_message_at starts at now()."""
        try:
            session = self.create(db, SessionCreate(
                purchase_id=purchase_id,
                report_type=report_type,
                assistant_id=assistant_id,
                name=name,
                is_active=True,
            ))
            session.last_message_at = datetime.utcnow()
            db.add(session)
            db.flush()
            return session
        except Exception as e:
            logger.error(f"Error creating {report_type} session for purchase {purchase_id}: {e}")
            db.rollback()
            raise

    def deactivate_session(self, db: Session, session_id: int) -> ChatSession:
        """Mark a session as inactive and stamp ended_at."""
        try:
            s = self.get(db, session_id)
            if not s:
                raise ValueError(f"Session {session_id} not found")
            return self.update(db, s, SessionUpdate(is_active=False, ended_at=datetime.utcnow()))
        except Exception as e:
            logger.error(f"Error deactivating session {session_id}: {e}")
            db.rollback()
            raise

    def touch(self, db: Session, session_id: int) -> None:
        """Bump counters and recency when a message lands in the session."""
        s = self.get(db, session_id)
        if not s:
            return
        s.message_count = (s.message_count or 0) + 1
        s.last_message_at = datetime.utcnow()
        s.updated_at = s.last_message_at
        db.add(s)

    def set_name_if_empty(self, db: Session, session_id: int, name: str) -> ChatSession:
        """Set a display name only if not already set (auto-named from the first user message)."""
        s = self.get(db, session_id)
        if not s:
            raise ValueError(f"Session {session_id} not found")
        if not s.name:
            s.name = name[:255]
            db.add(s)
            db.flush()
        return s
