"""
Shared fixtures: a throwaway SQLite database, in-memory provider fakes and
an orchestrator factory wired to them.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["RUN_MIGRATIONS"] = "false"
os.environ.setdefault("OPENAI_ASSISTANT_ID_MARKETING", "asst_marketing_test")
os.environ.setdefault("OPENAI_ASSISTANT_ID_WEBSITE", "asst_website_test")

from contextlib import contextmanager
from typing import Dict, List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from audit_chat.clients.assistant_client import RunState, ThreadMessage
from audit_chat.models import AIResult, Base, ChatMessage
from audit_chat.repositories.session import ChatSessionRepository
from audit_chat.services.session_orchestrator import SessionOrchestrator, TurnLocks
from audit_chat.services.summarizer import ConversationSummarizer

PURCHASE_ID = "pur_123"

MARKETING_REPORT = {
    "Executive Summary": "Solid local reputation, thin online presence.",
    "Marketing Health Score": {"overall": 58, "social": 41},
    "Red Flags": ["No email list", "Ads running without tracking"],
    "Opportunity Areas": ["Collect reviews", "Start a monthly newsletter"],
    "Follow Up Questions": ["How do I set up conversion tracking?", "What should my first newsletter say?"],
}

WEBSITE_REPORT = {
    "website_analysis": {
        "score": {"value": 71, "status": "fair"},
        "analysis": {"speed": "Slow on mobile", "seo": "Missing meta descriptions"},
        "recommendations": ["Compress hero images", "Add meta descriptions"],
    }
}


class FakeAssistantClient:
    """
    In-memory AssistantClient. get_run consumes `statuses` in order: each item
    is a status string, a (status, reason) tuple or an exception to raise.
    Once the script is used up runs report "completed".
    """

    def __init__(self, reply: str = "Start by fixing conversion tracking, then build the email list."):
        self.reply = reply
        self.statuses: List = []
        self.fail: Dict[str, Exception] = {}
        self.threads: Dict[str, List[ThreadMessage]] = {}
        self.runs: Dict[str, dict] = {}
        self.run_calls: List[dict] = []
        self._n = 0

    def _next_id(self, prefix: str) -> str:
        self._n += 1
        return f"{prefix}_{self._n}"

    def _maybe_fail(self, name: str) -> None:
        exc = self.fail.get(name)
        if exc is not None:
            raise exc

    async def create_thread(self) -> str:
        self._maybe_fail("create_thread")
        tid = self._next_id("thread")
        self.threads[tid] = []
        return tid

    async def append_message(self, thread_id, role, text, *, metadata=None) -> str:
        self._maybe_fail("append_message")
        mid = self._next_id("msg")
        self.threads[thread_id].append(
            ThreadMessage(id=mid, role=role, text=text, created_at=self._n, metadata=dict(metadata or {}))
        )
        return mid

    async def create_run(self, thread_id, assistant_id, *, additional_instructions=None) -> str:
        self._maybe_fail("create_run")
        rid = self._next_id("run")
        call = {"run_id": rid, "thread_id": thread_id, "assistant_id": assistant_id,
                "instructions": additional_instructions}
        self.runs[rid] = {**call, "answered": False}
        self.run_calls.append(call)
        return rid

    async def get_run(self, thread_id, run_id) -> RunState:
        self._maybe_fail("get_run")
        status = self.statuses.pop(0) if self.statuses else "completed"
        if isinstance(status, Exception):
            raise status
        reason = None
        if isinstance(status, tuple):
            status, reason = status
        run = self.runs[run_id]
        if status == "completed" and not run["answered"]:
            run["answered"] = True
            self.threads[thread_id].append(
                ThreadMessage(id=self._next_id("msg"), role="assistant", text=self.reply,
                              created_at=self._n, run_id=run_id)
            )
        return RunState(id=run_id, status=status, last_error=reason)

    async def list_messages(self, thread_id, *, order="desc", limit=100, run_id=None):
        self._maybe_fail("list_messages")
        msgs = [m for m in self.threads.get(thread_id, []) if run_id is None or m.run_id == run_id]
        if order == "desc":
            msgs.reverse()
        return msgs[:limit]

    async def get_run_response_text(self, thread_id, run_id) -> str:
        self._maybe_fail("get_run_response_text")
        return "\n\n".join(
            m.text for m in self.threads[thread_id] if m.role == "assistant" and m.run_id == run_id
        )


class FakeLLMClient:
    model = "fake-llm"

    def __init__(self, text: str = "We talked about tracking and the email list."):
        self.text = text
        self.error = None
        self.calls: List[dict] = []

    async def chat(self, system_prompt, user_prompt, *, temperature=None, max_tokens=None):
        self.calls.append({"system": system_prompt, "user": user_prompt, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return {"text": self.text, "model": self.model, "tokens_in": 10, "tokens_out": 5, "latency_ms": 1.0}


class RecordingSleep:
    """Drop-in for asyncio.sleep that returns immediately and remembers delays."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'chat.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False, future=True)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def db_factory(session_factory):
    @contextmanager
    def factory():
        s = session_factory()
        try:
            yield s
            s.commit()
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()
    return factory


@pytest.fixture
def load_messages(session_factory):
    """Fresh read of a session's transcript, bypassing any cached identity map."""
    def _load(session_id: int) -> List[ChatMessage]:
        s = session_factory()
        try:
            return (
                s.query(ChatMessage)
                .filter(ChatMessage.chat_session_id == session_id)
                .order_by(ChatMessage.message_order)
                .all()
            )
        finally:
            s.close()
    return _load


@pytest.fixture
def reports(db):
    db.add(AIResult(purchase_id=PURCHASE_ID, result_data=MARKETING_REPORT,
                    website_analysis=WEBSITE_REPORT, status="completed"))
    db.commit()
    return PURCHASE_ID


@pytest.fixture
def session_id(db, reports):
    s = ChatSessionRepository().create_session(db, reports, "marketing", "asst_marketing_test")
    db.commit()
    return s.id


@pytest.fixture
def assistant():
    return FakeAssistantClient()


@pytest.fixture
def llm():
    return FakeLLMClient()


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def make_orchestrator(db_factory, assistant, llm, sleeper):
    locks = TurnLocks()

    def _make(**overrides) -> SessionOrchestrator:
        kwargs = dict(
            db_factory=db_factory,
            assistant_client=assistant,
            summarizer=ConversationSummarizer(llm_client=llm),
            sleep=sleeper,
            poll_interval=2.0,
            max_attempts=5,
            progress_every=3,
            chunk_chars=16,
            chunk_delay=0,
            locks=locks,
        )
        kwargs.update(overrides)
        return SessionOrchestrator(**kwargs)
    return _make
