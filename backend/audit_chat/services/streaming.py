# audit_chat/services/streaming.py
"""
Helpers for pushing a finished answer to the client as a token stream.
"""
from __future__ import annotations
from typing import AsyncIterator, List, Set
import asyncio
import logging
import re

logger = logging.getLogger(__name__)

# Preferred break points, best first. Each pattern matches the separator that
# should stay attached to the end of the chunk.
_BOUNDARIES = [
    re.compile(r"\n\s*\n"),           # paragraph
    re.compile(r"\n"),                # line (list items, headers)
    re.compile(r"[.!?][\"')\]]*\s+"),  # sentence
    re.compile(r"[,;:]\s+"),          # clause
    re.compile(r"\s+"),               # word
]


def _best_cut(window: str) -> int:
    """Index right after the last preferred boundary in window, or 0."""
    floor = len(window) // 3
    for pat in _BOUNDARIES:
        cut = 0
        for m in pat.finditer(window):
            cut = m.end()
        if cut > floor:
            return cut
    return 0


def split_into_chunks(text: str, max_chars: int = 48) -> List[str]:
    """
    Split text into chunks of at most max_chars, breaking at natural
    boundaries where possible. "".join(result) == text.
    """
    if max_chars <= 0:
        raise ValueError("max_chars must be positive")
    chunks: List[str] = []
    rest = text or ""
    while rest:
        if len(rest) <= max_chars:
            chunks.append(rest)
            break
        cut = _best_cut(rest[:max_chars]) or max_chars
        chunks.append(rest[:cut])
        rest = rest[cut:]
    return chunks


# Keep references so detached turns are not garbage collected mid-flight
_background_tasks: Set[asyncio.Task] = set()


async def detach(events: AsyncIterator, *, queue_size: int = 0) -> AsyncIterator:
    """
    Run an event generator to completion in a background task and relay its
    events. Cancelling the relay (client went away) does not cancel the turn.
    """
    queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
    end = object()

    async def pump() -> None:
        try:
            async for event in events:
                await queue.put(event)
        except Exception as e:
            logger.error(f"Detached turn crashed: {e}")
        finally:
            await queue.put(end)

    task = asyncio.create_task(pump())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)

    while True:
        item = await queue.get()
        if item is end:
            break
        yield item


async def drain(events: AsyncIterator) -> list:
    """Collect every event of a stream (used for non-streaming callers)."""
    return [event async for event in events]
