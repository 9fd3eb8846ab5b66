# audit_chat/clients/llm_client.py
"""
OpenAI chat-completions wrapper with latency and token tracking.
Used for one-shot requests outside the assistant threads (conversation summaries).
"""
from __future__ import annotations
from typing import Dict, Optional, Any
import time
from openai import AsyncOpenAI
from audit_chat.config import settings

class LLMClient:
    def __init__(
        self,
        model: Optional[str] = None,
        temperature: float = 0.2,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model or settings.OPENAI_MODEL
        self.temperature = temperature
        if client is None:
            if not settings.OPENAI_API_KEY:
                raise RuntimeError("OPENAI_API_KEY is not set")
            client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        self.client = client

    async def chat(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Returns a dict with: {"text", "model", "tokens_in", "tokens_out", "latency_ms"}
        """
        started = time.time()
        resp = await self.client.chat.completions.create(
            model=self.model,
            temperature=self.temperature if temperature is None else temperature,
            max_tokens=max_tokens,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        )

        txt = (resp.choices[0].message.content or "").strip()
        usage = getattr(resp, "usage", None)
        latency_ms = (time.time() - started) * 1000.0

        return {
            "text": txt,
            "model": self.model,
            "tokens_in": getattr(usage, "prompt_tokens", None),
            "tokens_out": getattr(usage, "completion_tokens", None),
            "latency_ms": latency_ms,
        }
