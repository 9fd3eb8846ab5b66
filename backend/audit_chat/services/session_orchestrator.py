# audit_chat/services/session_orchestrator.py
"""
Session orchestrator: one chat turn, from the user's message to a finished
event stream.

Per turn:
- resolve the session and its current provider thread
- rotate the thread if it is over the token budget
- persist the user message (before any provider call)
- append it to the thread and start a run
- poll the run, emitting progress while it works
- persist the assistant message, then stream it in chunks
- always finish with exactly one done marker

If anything fails after the user message was saved, a synthetic assistant
error reply is saved in its place so every question has an answer row.

Store work is synchronous SQLAlchemy, so every store step runs through
asyncio.to_thread and other sessions' turns keep moving meanwhile. A turn
uses its Session from one thread at a time.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional
import asyncio
import logging
import time
import weakref

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from audit_chat.clients.assistant_client import AssistantClient
from audit_chat.config import settings
from audit_chat.database import DBFactory
from audit_chat.models.chat_session import ChatSession
from audit_chat.repositories.ai_result import AIResultRepository
from audit_chat.repositories.message import MessageRepository
from audit_chat.repositories.session import ChatSessionRepository
from audit_chat.schemas.stream import (
    DoneEvent,
    ErrorEvent,
    ProgressEvent,
    StreamEvent,
    TokenEvent,
    WarningEvent,
)
from audit_chat.services.context_formatter import ContextFormatter
from audit_chat.services.errors import (
    ChatError,
    NotFoundError,
    PersistenceError,
    ProviderTerminalError,
    ProviderTimeoutError,
    ProviderTransientError,
    RotationError,
)
from audit_chat.services.intent_service import IntentResult, IntentService
from audit_chat.services.streaming import split_into_chunks
from audit_chat.services.summarizer import ConversationSummarizer
from audit_chat.services.thread_rotation import ThreadRotationManager
from audit_chat.services.token_budget import TokenBudgetMonitor

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

RUN_FAILED_STATUSES = {"failed", "cancelled", "expired", "incomplete"}
RUN_PENDING_STATUSES = {"queued", "in_progress", "cancelling"}


class TurnLocks:
    """
    Per-session asyncio locks: one turn per session at a time in this process.
    Other workers are fenced off by the message ordinal unique constraint.
    Entries are weak: a lock disappears once no turn holds or awaits it.
    """

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, session_id: int) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def __len__(self) -> int:
        return len(self._locks)


_shared_locks = TurnLocks()


@dataclass
class TurnState:
    session_id: int
    user_text: str
    next_order: int = 0
    thread_id: Optional[str] = None
    rotated_from: Optional[str] = None
    intent: Optional[IntentResult] = None
    user_persisted: bool = False
    run_id: Optional[str] = None
    response_text: str = ""
    started_at: float = field(default_factory=time.time)


class SessionOrchestrator:
    def __init__(
        self,
        *,
        db_factory: DBFactory,
        assistant_client: AssistantClient,
        monitor: Optional[TokenBudgetMonitor] = None,
        rotation: Optional[ThreadRotationManager] = None,
        summarizer: Optional[ConversationSummarizer] = None,
        formatter: Optional[ContextFormatter] = None,
        intent_service: Optional[IntentService] = None,
        sess_repo: Optional[ChatSessionRepository] = None,
        msg_repo: Optional[MessageRepository] = None,
        report_repo: Optional[AIResultRepository] = None,
        sleep: Optional[Sleep] = None,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        progress_every: Optional[int] = None,
        chunk_chars: Optional[int] = None,
        chunk_delay: Optional[float] = None,
        locks: Optional[TurnLocks] = None,
    ):
        self.db_factory = db_factory
        self.assistant = assistant_client
        self.monitor = monitor or TokenBudgetMonitor(assistant_client)
        self.rotation = rotation or ThreadRotationManager(
            assistant_client,
            summarizer or ConversationSummarizer(),
            formatter or ContextFormatter(),
        )
        self.intent = intent_service or IntentService()
        self.sess_repo = sess_repo or ChatSessionRepository()
        self.msg_repo = msg_repo or MessageRepository(self.sess_repo)
        self.report_repo = report_repo or AIResultRepository()

        self.sleep = sleep or asyncio.sleep
        self.poll_interval = settings.RUN_POLL_INTERVAL_S if poll_interval is None else poll_interval
        self.max_attempts = max_attempts or settings.RUN_POLL_MAX_ATTEMPTS
        self.progress_every = progress_every or settings.PROGRESS_EVERY_N_POLLS
        self.chunk_chars = chunk_chars or settings.STREAM_CHUNK_CHARS
        self.chunk_delay = settings.STREAM_CHUNK_DELAY_S if chunk_delay is None else chunk_delay
        self.locks = _shared_locks if locks is None else locks

    # ---------------------- public API ----------------------

    async def stream_turn(self, session_id: int, user_text: str) -> AsyncIterator[StreamEvent]:
        """Run one turn and yield its events; the last event is always DoneEvent."""
        lock = self.locks.lock_for(session_id)
        async with lock:
            with self.db_factory() as db:
                async for event in self._run_turn(db, session_id, user_text):
                    yield event
                # hand the connection back to the pool off the event loop
                await asyncio.to_thread(db.close)

    # ---------------------- state machine ----------------------

    async def _run_turn(self, db: Session, session_id: int, user_text: str) -> AsyncIterator[StreamEvent]:
        turn = TurnState(session_id=session_id, user_text=user_text)
        try:
            session = await asyncio.to_thread(self._resolve_thread, db, turn)

            if turn.thread_id:
                if await self._maybe_rotate(db, session, turn):
                    yield WarningEvent(
                        code="thread_rotated",
                        message="This conversation was getting long, so earlier messages were summarized to keep things fast.",
                    )

            await self._persist_user_message(db, session, turn)
            await self._dispatch(session, turn)

            async for event in self._poll(turn):
                yield event

            saved = await asyncio.to_thread(self._persist_assistant_message, db, session, turn)
            if not saved:
                yield WarningEvent(
                    code="not_saved",
                    message="This answer could not be saved to your chat history.",
                )

            for chunk in split_into_chunks(turn.response_text, self.chunk_chars):
                yield TokenEvent(token=chunk)
                if self.chunk_delay:
                    await self.sleep(self.chunk_delay)

        except ChatError as e:
            logger.error(f"Turn failed for session {session_id} [{e.code}]: {e}")
            await asyncio.to_thread(self._persist_error_reply, db, turn, e)
            yield ErrorEvent(error=e.public_detail, code=e.code, retryable=e.retryable)
        except Exception as e:
            logger.exception(f"Unexpected failure in turn for session {session_id}: {e}")
            err = ChatError(
                code="INTERNAL",
                public_detail="Something went wrong while answering. Please resend your message.",
                log_detail=str(e),
            )
            await asyncio.to_thread(self._persist_error_reply, db, turn, err)
            yield ErrorEvent(error=err.public_detail, code=err.code, retryable=True)

        yield DoneEvent()

    def _resolve_thread(self, db: Session, turn: TurnState) -> ChatSession:
        """RESOLVE_THREAD: load the session, next ordinal and current thread from the store."""
        session = self.sess_repo.get_active(db, turn.session_id)
        if session is None:
            raise NotFoundError("Session", turn.session_id)
        turn.next_order = self.msg_repo.next_order(db, turn.session_id)
        turn.thread_id = self.msg_repo.get_current_thread_id(db, turn.session_id)
        turn.intent = self.intent.classify(turn.user_text)
        return session

    def _load_report(self, db: Session, session: ChatSession) -> Any:
        return self.report_repo.get_report_payload(db, session.purchase_id, session.report_type)

    async def _maybe_rotate(self, db: Session, session: ChatSession, turn: TurnState) -> bool:
        """MAYBE_ROTATE: swap an over-budget thread for a fresh seeded one."""
        if not await self.monitor.should_rotate(turn.thread_id):
            return False
        old = turn.thread_id
        try:
            report = await asyncio.to_thread(self._load_report, db, session)
            turn.thread_id = await self.rotation.rotate(old, report, session.id, session.report_type)
        except Exception as e:
            raise RotationError(f"rotating thread {old} for session {session.id}: {e}") from e
        turn.rotated_from = old
        return True

    async def _persist_user_message(self, db: Session, session: ChatSession, turn: TurnState) -> None:
        """PERSIST_USER_MSG: save the question before the provider sees it."""
        if not turn.thread_id:
            try:
                report = await asyncio.to_thread(self._load_report, db, session)
                turn.thread_id = await self.rotation.open_thread(report, session.report_type)
            except ChatError:
                raise
            except Exception as e:
                logger.error(f"Could not open a thread for session {session.id}: {e}")
                raise ProviderTerminalError("thread_create_failed") from e

        await asyncio.to_thread(self._save_user_message, db, session, turn)

    def _save_user_message(self, db: Session, session: ChatSession, turn: TurnState) -> None:
        meta: Dict[str, Any] = {"intent": turn.intent.intent if turn.intent else None}
        if turn.rotated_from:
            meta["rotated_from"] = turn.rotated_from
        try:
            self.msg_repo.create_user_message(
                db,
                session.id,
                turn.user_text,
                message_order=turn.next_order,
                thread_id=turn.thread_id,
                meta=meta,
            )
            self._autoname_if_empty(db, session.id, turn.user_text)
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise PersistenceError(
                "Another message in this chat is still being answered. Please wait for it to finish.",
                f"ordinal {turn.next_order} already taken in session {session.id}: {e}",
            ) from e
        except Exception as e:
            db.rollback()
            raise PersistenceError(
                "Your message could not be saved. Please try again.",
                f"user message write failed for session {session.id}: {e}",
            ) from e
        turn.user_persisted = True

    async def _dispatch(self, session: ChatSession, turn: TurnState) -> None:
        """DISPATCH: append the question to the thread and start one run."""
        instructions = self.intent.instructions_for(
            turn.intent.intent if turn.intent else "substantive", session.report_type
        )
        try:
            await self.assistant.append_message(turn.thread_id, "user", turn.user_text)
            turn.run_id = await self.assistant.create_run(
                turn.thread_id,
                session.assistant_id,
                additional_instructions=instructions,
            )
        except ChatError:
            raise
        except Exception as e:
            logger.error(f"Dispatch failed on thread {turn.thread_id}: {e}")
            raise ProviderTerminalError("dispatch_failed") from e

    async def _poll(self, turn: TurnState) -> AsyncIterator[StreamEvent]:
        """POLL_STREAM: bounded wait for the run; transient errors spend attempts."""
        for attempt in range(1, self.max_attempts + 1):
            await self.sleep(self.poll_interval)
            try:
                run = await self.assistant.get_run(turn.thread_id, turn.run_id)
                if run.status == "completed":
                    text = await self.assistant.get_run_response_text(turn.thread_id, turn.run_id)
                    if not text.strip():
                        raise ProviderTerminalError("completed", "the assistant returned an empty answer")
                    turn.response_text = text
                    logger.info(
                        f"Run {turn.run_id} completed for session {turn.session_id} "
                        f"after {attempt} polls ({(time.time() - turn.started_at):.1f}s)"
                    )
                    return
            except ProviderTransientError as e:
                logger.warning(f"Transient provider error polling run {turn.run_id} (attempt {attempt}): {e}")
                continue

            if run.status in RUN_FAILED_STATUSES:
                raise ProviderTerminalError(run.status, run.last_error)
            if run.status == "requires_action":
                raise ProviderTerminalError(run.status, "the assistant asked for a tool call this chat cannot run")
            if run.status not in RUN_PENDING_STATUSES:
                logger.warning(f"Unknown run status {run.status!r} for run {turn.run_id}; still waiting")

            if attempt % self.progress_every == 0:
                yield ProgressEvent(message="Still working on your answer...", attempt=attempt)

        raise ProviderTimeoutError(self.max_attempts, self.poll_interval)

    def _persist_assistant_message(self, db: Session, session: ChatSession, turn: TurnState) -> bool:
        """PERSIST_ASSISTANT_MSG: a failed write is logged, not fatal."""
        try:
            self.msg_repo.create_assistant_message(
                db,
                session.id,
                turn.response_text,
                message_order=turn.next_order + 1,
                thread_id=turn.thread_id,
                run_id=turn.run_id,
                latency_ms=(time.time() - turn.started_at) * 1000.0,
            )
            db.commit()
            return True
        except Exception as e:
            db.rollback()
            logger.warning(f"Assistant message for session {session.id} could not be saved: {e}")
            return False

    def _persist_error_reply(self, db: Session, turn: TurnState, err: ChatError) -> None:
        """Answer an already-saved question with the failure explanation."""
        if not turn.user_persisted:
            return
        try:
            self.msg_repo.create_error_message(
                db,
                turn.session_id,
                err.public_detail,
                message_order=turn.next_order + 1,
                thread_id=turn.thread_id,
                error_type=err.code.lower(),
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"Could not save error reply for session {turn.session_id}: {e}")

    def _autoname_if_empty(self, db: Session, session_id: int, user_text: str) -> None:
        """
        Name the session after its first user message.
        """
        raw = " ".join((user_text or "").split())
        if not raw:
            return
        candidate = raw
        # Trim to ~60 chars on a word boundary (but don't cut too short)
        if len(candidate) > 60:
            head = candidate[:60]
            cut_at = head.rfind(" ")
            candidate = head[:cut_at] if cut_at >= 30 else head
        candidate = candidate[0].upper() + candidate[1:]
        self.sess_repo.set_name_if_empty(db, session_id, candidate)

    # ---------------------- wiring ----------------------

    @classmethod
    def from_settings(cls, db_factory: DBFactory) -> "SessionOrchestrator":
        return cls(db_factory=db_factory, assistant_client=AssistantClient())
