# audit_chat/services/summarizer.py
"""
Conversation summarizer used to carry continuity across thread rotation.
Best-effort: any failure yields a fixed placeholder summary.
"""
from __future__ import annotations
from typing import Any, List, Optional, Sequence
import logging

from audit_chat.clients.llm_client import LLMClient

logger = logging.getLogger(__name__)

FALLBACK_SUMMARY = "The previous conversation covered various aspects of the report."


def _role_and_text(message: Any) -> tuple:
    if isinstance(message, dict):
        return message.get("role", "user"), message.get("text") or message.get("content") or ""
    return getattr(message, "role", "user"), getattr(message, "text", None) or getattr(message, "content", "") or ""


def build_transcript(messages: Sequence[Any]) -> str:
    """Messages are expected oldest first."""
    lines: List[str] = []
    for m in messages:
        role, text = _role_and_text(m)
        text = (text or "").strip()
        if not text:
            continue
        speaker = "Assistant" if role == "assistant" else "User"
        lines.append(f"{speaker}: {text}")
    return "\n\n".join(lines)


class ConversationSummarizer:
    SYSTEM_PROMPT = (
        "You summarize a conversation between a business owner and an AI marketing consultant "
        "about the owner's audit report. Be factual and concise. Do not invent details."
    )

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        *,
        temperature: float = 0.3,
        max_tokens: int = 500,
    ):
        self._llm = llm_client  # lazy-inited if None
        self.temperature = temperature
        self.max_tokens = max_tokens

    @property
    def llm(self) -> LLMClient:
        if self._llm is None:
            self._llm = LLMClient(temperature=self.temperature)
        return self._llm

    async def summarize(self, messages: Sequence[Any]) -> str:
        transcript = build_transcript(messages)
        if not transcript:
            return FALLBACK_SUMMARY

        user_prompt = (
            "Summarize the conversation below in 2-3 short paragraphs. Cover:\n"
            "- the topics discussed\n"
            "- concrete recommendations that were given\n"
            "- concerns the user raised\n"
            "- any decisions or next steps that were agreed\n\n"
            f"---CONVERSATION START---\n{transcript}\n---CONVERSATION END---"
        )
        try:
            result = await self.llm.chat(
                self.SYSTEM_PROMPT,
                user_prompt,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
            text = (result.get("text") or "").strip()
            if not text:
                logger.warning("Summarizer returned empty text; using fallback summary")
                return FALLBACK_SUMMARY
            return text
        except Exception as e:
            logger.warning(f"Summarizer failed; using fallback summary: {e}")
            return FALLBACK_SUMMARY
