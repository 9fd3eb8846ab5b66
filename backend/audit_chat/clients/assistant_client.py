# audit_chat/clients/assistant_client.py
"""
OpenAI Assistants (threads + runs) wrapper.

Threads are provider-owned conversation contexts referenced by opaque ids.
This client only creates threads, appends messages, starts runs, reads run
status and lists messages; polling policy lives in the session orchestrator.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional
import logging

import openai
from openai import AsyncOpenAI

from audit_chat.config import settings
from audit_chat.services.errors import ProviderTransientError

logger = logging.getLogger(__name__)

_TRANSIENT = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


@dataclass
class ThreadMessage:
    id: str
    role: str          # "user" | "assistant"
    text: str
    created_at: int = 0
    run_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class RunState:
    id: str
    status: str        # queued | in_progress | completed | failed | cancelled | expired | requires_action | ...
    last_error: Optional[str] = None


def _message_text(message: Any) -> str:
    """Join the text blocks of a provider message (images etc. are skipped)."""
    parts: List[str] = []
    for block in getattr(message, "content", None) or []:
        if getattr(block, "type", None) == "text":
            parts.append(block.text.value)
    return "".join(parts)


class AssistantClient:
    def __init__(self, client: Optional[AsyncOpenAI] = None):
        if client is None:
            if not settings.OPENAI_API_KEY:
                raise RuntimeError("OPENAI_API_KEY is not set")
            client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        self.client = client

    async def _call(self, what: str, coro):
        try:
            return await coro
        except _TRANSIENT as e:
            raise ProviderTransientError(f"{what}: {type(e).__name__}: {e}") from e

    async def create_thread(self) -> str:
        thread = await self._call("create_thread", self.client.beta.threads.create())
        logger.info(f"Created provider thread {thread.id}")
        return thread.id

    async def append_message(
        self,
        thread_id: str,
        role: Literal["user", "assistant"],
        text: str,
        *,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        params: Dict[str, Any] = {"role": role, "content": text}
        if metadata:
            params["metadata"] = metadata
        msg = await self._call(
            "append_message",
            self.client.beta.threads.messages.create(thread_id=thread_id, **params),
        )
        return msg.id

    async def create_run(
        self,
        thread_id: str,
        assistant_id: str,
        *,
        additional_instructions: Optional[str] = None,
    ) -> str:
        params: Dict[str, Any] = {"assistant_id": assistant_id}
        if additional_instructions:
            params["additional_instructions"] = additional_instructions
        run = await self._call(
            "create_run",
            self.client.beta.threads.runs.create(thread_id=thread_id, **params),
        )
        return run.id

    async def get_run(self, thread_id: str, run_id: str) -> RunState:
        run = await self._call(
            "get_run",
            self.client.beta.threads.runs.retrieve(run_id, thread_id=thread_id),
        )
        err = getattr(run, "last_error", None)
        return RunState(id=run.id, status=run.status, last_error=getattr(err, "message", None))

    async def list_messages(
        self,
        thread_id: str,
        *,
        order: Literal["asc", "desc"] = "desc",
        limit: int = 100,
        run_id: Optional[str] = None,
    ) -> List[ThreadMessage]:
        params: Dict[str, Any] = {"order": order, "limit": limit}
        if run_id:
            params["run_id"] = run_id
        page = await self._call(
            "list_messages",
            self.client.beta.threads.messages.list(thread_id=thread_id, **params),
        )
        return [
            ThreadMessage(
                id=m.id,
                role=m.role,
                text=_message_text(m),
                created_at=getattr(m, "created_at", 0) or 0,
                run_id=getattr(m, "run_id", None),
                metadata=dict(getattr(m, "metadata", None) or {}),
            )
            for m in page.data
        ]

    async def get_run_response_text(self, thread_id: str, run_id: str) -> str:
        """Text the assistant produced in a completed run (oldest part first)."""
        msgs = await self.list_messages(thread_id, order="asc", limit=20, run_id=run_id)
        return "\n\n".join(m.text for m in msgs if m.role == "assistant" and m.text).strip()
