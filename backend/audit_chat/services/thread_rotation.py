# audit_chat/services/thread_rotation.py
"""
Open provider threads for a session and rotate over-budget ones.

A fresh thread is seeded with one user-role message carrying the report
briefing (and, on rotation, a summary of the retired thread), so the
assistant keeps context without replaying the old transcript. Seed messages
live only in the provider thread, tagged with SEED_METADATA; they are never
stored as chat messages and never summarized.
"""
from __future__ import annotations
from typing import Any, Optional
import logging

from audit_chat.clients.assistant_client import AssistantClient, ThreadMessage
from audit_chat.config import settings
from audit_chat.services.context_formatter import ContextFormatter
from audit_chat.services.summarizer import ConversationSummarizer

logger = logging.getLogger(__name__)

# Provider-side tag on seed messages; they are context, not conversation
SEED_METADATA = {"audit_chat_role": "seed"}


def is_seed(message: ThreadMessage) -> bool:
    return message.metadata.get("audit_chat_role") == "seed"


def _kind_label(kind: str) -> str:
    return "website analysis" if kind == "website" else "marketing audit"


def compose_seed_message(kind: str, briefing: str) -> str:
    return (
        f"Here is the {_kind_label(kind)} report we will be discussing.\n\n"
        f"{briefing}\n\n"
        "Use this report as the basis for your answers. Reply to my next message."
    )


def compose_rotation_seed(kind: str, briefing: str, summary: str) -> str:
    return (
        f"We are continuing our {_kind_label(kind)} discussion in a fresh conversation.\n\n"
        f"{briefing}\n\n"
        f"PREVIOUS CONVERSATION SUMMARY:\n{summary}\n\n"
        "Please keep the earlier discussion in mind and continue helping me from where we left off."
    )


class ThreadRotationManager:
    """
    rotate() is not idempotent: every call creates a provider thread. Callers
    check TokenBudgetMonitor first and rotate at most once per turn. Failures
    propagate; the caller must not fall back to the over-budget thread.
    """

    def __init__(
        self,
        assistant_client: AssistantClient,
        summarizer: ConversationSummarizer,
        formatter: Optional[ContextFormatter] = None,
        *,
        window: Optional[int] = None,
    ):
        self.assistant = assistant_client
        self.summarizer = summarizer
        self.formatter = formatter or ContextFormatter()
        self.window = window or settings.ROTATION_WINDOW

    async def open_thread(self, report: Any, kind: str) -> str:
        """First thread of a session: briefing only."""
        thread_id = await self.assistant.create_thread()
        briefing = self.formatter.format(report, kind)
        await self.assistant.append_message(
            thread_id, "user", compose_seed_message(kind, briefing), metadata=SEED_METADATA
        )
        return thread_id

    async def rotate(self, old_thread_id: str, report: Any, session_id: int, kind: str) -> str:
        # provider lists newest first; the summary wants oldest first
        recent = await self.assistant.list_messages(old_thread_id, order="desc", limit=self.window)
        window = [m for m in reversed(recent) if not is_seed(m)]

        summary = await self.summarizer.summarize(window)

        new_thread_id = await self.assistant.create_thread()
        briefing = self.formatter.format(report, kind)
        seed = compose_rotation_seed(kind, briefing, summary)
        await self.assistant.append_message(new_thread_id, "user", seed, metadata=SEED_METADATA)

        logger.info(
            f"Rotated session {session_id} ({kind}) from thread {old_thread_id} to {new_thread_id} "
            f"(summarized {len(window)} messages)"
        )
        return new_thread_id
