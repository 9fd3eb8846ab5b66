# audit_chat/services/token_budget.py
"""
Decide when a provider thread has to be rotated out.

Token counts are estimated, not measured: total characters of the thread's
recent messages divided by a fixed characters-per-token ratio.
"""
from __future__ import annotations
from typing import Iterable, Optional
import logging

from audit_chat.clients.assistant_client import AssistantClient
from audit_chat.config import settings

logger = logging.getLogger(__name__)


def estimate_tokens(texts: Iterable[str], chars_per_token: int = 4) -> float:
    """Rough token estimate: ~4 chars per token for English text."""
    return sum(len(t or "") for t in texts) / chars_per_token


class TokenBudgetMonitor:
    """
    should_rotate(thread_id) is True once the estimate is strictly above the
    threshold. Any provider failure answers False (keep using the thread).
    """

    def __init__(
        self,
        assistant_client: AssistantClient,
        *,
        threshold_tokens: Optional[int] = None,
        chars_per_token: Optional[int] = None,
        message_limit: Optional[int] = None,
    ):
        self.assistant = assistant_client
        self.threshold_tokens = threshold_tokens or settings.ROTATION_TOKEN_THRESHOLD
        self.chars_per_token = chars_per_token or settings.CHARS_PER_TOKEN
        self.message_limit = message_limit or settings.TOKEN_MONITOR_MESSAGE_LIMIT

    async def estimate(self, thread_id: str) -> float:
        msgs = await self.assistant.list_messages(thread_id, order="desc", limit=self.message_limit)
        return estimate_tokens((m.text for m in msgs), self.chars_per_token)

    async def should_rotate(self, thread_id: str) -> bool:
        try:
            tokens = await self.estimate(thread_id)
        except Exception as e:
            logger.warning(f"Token estimate failed for thread {thread_id}; keeping thread: {e}")
            return False

        over = tokens > self.threshold_tokens
        if over:
            logger.info(
                f"Thread {thread_id} over budget: ~{tokens:.0f} tokens > {self.threshold_tokens}"
            )
        else:
            logger.debug(f"Thread {thread_id} within budget: ~{tokens:.0f}/{self.threshold_tokens} tokens")
        return over
